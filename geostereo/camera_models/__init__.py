# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


"""
This package provides the sensor models used by the parameter store, the alignment routines, the jitter cost
functions and the triangulation view.

The variants are tagged with :class:`.CameraType`; code that needs per-variant behavior dispatches on that tag rather
than on the class hierarchy.
"""

from geostereo.camera_models.camera_model import CameraModel, CameraType, ProjectionError, save, load
from geostereo.camera_models.distortion import (Distortion, NoDistortion, FovDistortion, FisheyeDistortion,
                                                RadTanDistortion, make_distortion, DISTORTION_TYPES)
from geostereo.camera_models.pinhole import PinholeModel
from geostereo.camera_models.optical_bar import OpticalBarModel
from geostereo.camera_models.csm import (CSMFrameModel, CSMLinescanModel, to_csm_pixel, from_csm_pixel,
                                         check_csm_scale, lagrange_interpolate)
from geostereo.camera_models.adjusted import AdjustedCameraModel


__all__ = ['CameraModel', 'CameraType', 'ProjectionError', 'save', 'load',
           'Distortion', 'NoDistortion', 'FovDistortion', 'FisheyeDistortion', 'RadTanDistortion', 'make_distortion',
           'DISTORTION_TYPES',
           'PinholeModel', 'OpticalBarModel', 'CSMFrameModel', 'CSMLinescanModel', 'AdjustedCameraModel',
           'to_csm_pixel', 'from_csm_pixel', 'check_csm_scale', 'lagrange_interpolate']
