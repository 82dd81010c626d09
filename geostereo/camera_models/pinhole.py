# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


r"""
This module provides the :class:`PinholeModel` frame camera.

The camera is described by its center :math:`\mathbf{C}`, the rotation :math:`\mathbf{T}` from the camera frame to
the world frame, a focal length :math:`f` and optical center :math:`(c_x, c_y)` in pixels, and a lens
:class:`.Distortion` model.  The camera frame has +z along the boresight, +x along increasing columns and +y along
increasing rows.  A world point :math:`\mathbf{x}` projects to

.. math::
    \mathbf{x}_C = \mathbf{T}^T(\mathbf{x}-\mathbf{C}) \\
    (u, v) = f\,\text{distort}(x_C/z_C, y_C/z_C) + (c_x, c_y)
"""

import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY
from geostereo.camera_models.camera_model import CameraModel, CameraType, ProjectionError
from geostereo.camera_models.distortion import Distortion, NoDistortion
from geostereo.rotations import Rotation


class PinholeModel(CameraModel):
    """
    A frame camera with a single center of projection and orientation.
    """

    camera_type = CameraType.PINHOLE

    def __init__(self, center: ARRAY_LIKE = (0, 0, 0), rotation: ARRAY_LIKE | Rotation | None = None,
                 focal_length: float = 1.0, optical_center: ARRAY_LIKE = (0, 0),
                 distortion: Distortion | None = None, image_size: ARRAY_LIKE = (1, 1)):
        """
        :param center: The camera center in the world frame
        :param rotation: The camera-to-world rotation
        :param focal_length: The focal length in pixels
        :param optical_center: The (column, row) of the principal point in pixels
        :param distortion: The lens distortion model.  Defaults to :class:`.NoDistortion`
        :param image_size: The (columns, rows) of the detector
        """

        super().__init__()

        self.center = np.array(center, dtype=np.float64)
        self.rotation = Rotation(rotation)
        self.focal_length = float(focal_length)
        self.optical_center = np.array(optical_center, dtype=np.float64)
        self.distortion = distortion if distortion is not None else NoDistortion()
        self.image_size = np.array(image_size, dtype=np.int64)

        self.important_attributes.extend(['center', 'rotation', 'focal_length', 'optical_center', 'distortion',
                                          'image_size'])

    @property
    def distortion_parameters(self) -> DOUBLE_ARRAY:
        """
        The lens distortion coefficients
        """

        return self.distortion.coefficients

    @distortion_parameters.setter
    def distortion_parameters(self, val: ARRAY_LIKE):
        self.distortion = type(self.distortion)(val)

    def camera_center(self, pixel: ARRAY_LIKE = (0, 0)) -> DOUBLE_ARRAY:
        return self.center.copy()

    def pixel_to_vector(self, pixel: ARRAY_LIKE) -> DOUBLE_ARRAY:

        pixel = np.asarray(pixel, dtype=np.float64)

        normalized = self.distortion.undistort((pixel - self.optical_center) / self.focal_length)

        direction = self.rotation.matrix @ np.array([normalized[0], normalized[1], 1.0])

        return direction / np.linalg.norm(direction)

    def point_to_pixel(self, point: ARRAY_LIKE) -> DOUBLE_ARRAY:

        point_camera = self.rotation.matrix.T @ (np.asarray(point, dtype=np.float64) - self.center)

        if point_camera[2] <= 0:
            raise ProjectionError('The point is behind the camera')

        distorted = self.distortion.distort(point_camera[:2] / point_camera[2])

        return self.focal_length * distorted + self.optical_center

    def apply_transform(self, rotation: ARRAY_LIKE, translation: ARRAY_LIKE, scale: float = 1.0) -> None:

        rotation = np.asarray(rotation, dtype=np.float64)

        self.center = scale * rotation @ self.center + np.asarray(translation, dtype=np.float64)
        self.rotation = Rotation(rotation @ self.rotation.matrix)
