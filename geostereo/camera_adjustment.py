# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


"""
This module converts between camera objects and the 7 value extrinsics record kept in the parameter store.

A record is ``[x, y, z, qw, qx, qy, qz]``: a position followed by a scalar-first unit quaternion.  What the record
means depends on the sensor variant:

============================ ===========================================================================================
Variant                      Record
============================ ===========================================================================================
pinhole, optical bar         the camera center and the camera-to-world rotation
CSM frame, CSM linescan      a rigid adjustment (translation and rotation about the origin) applied to the whole
                             trajectory.  It starts as the identity.
adjusted                     the translation and rotation of the adjustment (its pivot and scale stay with the camera)
============================ ===========================================================================================

The conversions are collected in dispatch tables keyed on :class:`.CameraType` (:data:`EXTRINSICS_READERS` and
:data:`EXTRINSICS_WRITERS`).
"""

from typing import Callable

import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY
from geostereo.camera_models import (CameraModel, CameraType, PinholeModel, OpticalBarModel, CSMFrameModel,
                                     CSMLinescanModel, AdjustedCameraModel)
from geostereo.rotations import Rotation, scalar_first_to_scalar_last, scalar_last_to_scalar_first


RECORD_SIZE: int = 7
"""
The number of values in a camera extrinsics record
"""


class CameraAdjustment:
    """
    A position and rotation that can be read from and written to a 7 value camera record.
    """

    def __init__(self, position: ARRAY_LIKE = (0, 0, 0), rotation: ARRAY_LIKE | Rotation | None = None):
        """
        :param position: The position part of the record
        :param rotation: The rotation part of the record
        """

        self.position = np.array(position, dtype=np.float64)
        self.rotation = Rotation(rotation)

    @classmethod
    def from_record(cls, record: ARRAY_LIKE) -> 'CameraAdjustment':
        """
        Read an adjustment from a record, renormalizing the quaternion.

        :raises ValueError: if the record holds a zero quaternion
        """

        record = np.asarray(record, dtype=np.float64)

        if record.size != RECORD_SIZE:
            raise ValueError(f'A camera record must have {RECORD_SIZE} values, not {record.size}')

        return cls(record[:3], scalar_first_to_scalar_last(record[3:]))

    def pack_to_array(self, record: DOUBLE_ARRAY) -> None:
        """
        Write this adjustment into ``record`` in place.
        """

        record[:3] = self.position
        record[3:] = scalar_last_to_scalar_first(self.rotation.quaternion)

    def to_record(self) -> DOUBLE_ARRAY:
        """
        A new record holding this adjustment.
        """

        record = np.zeros(RECORD_SIZE)
        self.pack_to_array(record)

        return record

    @classmethod
    def copy_from_pinhole(cls, camera: PinholeModel) -> 'CameraAdjustment':
        return cls(camera.center, camera.rotation)

    @classmethod
    def copy_from_optical_bar(cls, camera: OpticalBarModel) -> 'CameraAdjustment':
        return cls(camera.center, camera.rotation)

    @classmethod
    def copy_from_csm(cls, camera: CSMFrameModel | CSMLinescanModel) -> 'CameraAdjustment':
        # the trajectory itself stays in the camera
        return cls()

    @classmethod
    def copy_from_adjusted_camera(cls, camera: AdjustedCameraModel) -> 'CameraAdjustment':
        return cls(camera.translation, camera.rotation)

    def apply_to_pinhole(self, camera: PinholeModel) -> None:
        camera.center = self.position.copy()
        camera.rotation = self.rotation.copy()

    def apply_to_optical_bar(self, camera: OpticalBarModel) -> None:
        camera.center = self.position.copy()
        camera.rotation = self.rotation.copy()

    def apply_to_csm(self, camera: CSMFrameModel | CSMLinescanModel) -> None:
        camera.apply_transform(self.rotation.matrix, self.position, 1.0)

    def apply_to_adjusted_camera(self, camera: AdjustedCameraModel) -> None:
        camera.translation = self.position.copy()
        camera.rotation = self.rotation.copy()


EXTRINSICS_READERS: dict[CameraType, Callable[[CameraModel], CameraAdjustment]] = {
    CameraType.PINHOLE: CameraAdjustment.copy_from_pinhole,
    CameraType.OPTICAL_BAR: CameraAdjustment.copy_from_optical_bar,
    CameraType.CSM_FRAME: CameraAdjustment.copy_from_csm,
    CameraType.CSM_LINESCAN: CameraAdjustment.copy_from_csm,
    CameraType.ADJUSTED: CameraAdjustment.copy_from_adjusted_camera,
}
"""
Camera object to record conversions for each variant
"""

EXTRINSICS_WRITERS: dict[CameraType, Callable[[CameraAdjustment, CameraModel], None]] = {
    CameraType.PINHOLE: CameraAdjustment.apply_to_pinhole,
    CameraType.OPTICAL_BAR: CameraAdjustment.apply_to_optical_bar,
    CameraType.CSM_FRAME: CameraAdjustment.apply_to_csm,
    CameraType.CSM_LINESCAN: CameraAdjustment.apply_to_csm,
    CameraType.ADJUSTED: CameraAdjustment.apply_to_adjusted_camera,
}
"""
Record to camera object conversions for each variant.  The camera is modified in place.
"""


def adjustment_from_camera(camera: CameraModel) -> CameraAdjustment:
    """
    Read the extrinsics record of any supported camera.
    """

    return EXTRINSICS_READERS[camera.camera_type](camera)


def apply_adjustment(adjustment: CameraAdjustment, camera: CameraModel) -> None:
    """
    Write an extrinsics record into any supported camera in place.
    """

    EXTRINSICS_WRITERS[camera.camera_type](adjustment, camera)
