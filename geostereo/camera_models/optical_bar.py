r"""
This module provides the :class:`OpticalBarModel`, a panoramic camera whose lens sweeps across track during the
exposure while the platform moves along track.

Column :math:`u` is imaged at scan angle :math:`\alpha=(u-c_x)/f` and time :math:`t=t_s(u-c_x)/n_u` relative to the
center of the scan, where :math:`t_s` is the scan time and :math:`n_u` the number of columns.  The camera center moves
along the camera +y axis at the platform speed, and the image motion compensation tilts the ray along track to cancel
part of that motion:

.. math::
    \mathbf{C}(t) = \mathbf{C}_0 + s\,t\,\mathbf{T}\hat{\mathbf{y}} \\
    \mathbf{d}_C = \left[\sin\alpha,\ (v-c_y)/f - m\,s\,t/D,\ \cos\alpha\right]

where :math:`s` is the speed, :math:`m` the motion compensation factor and :math:`D` the nominal ground distance.
"""

import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY
from geostereo.camera_models.camera_model import CameraModel, CameraType, ProjectionError
from geostereo.rotations import Rotation


class OpticalBarModel(CameraModel):
    """
    A panoramic (optical bar) camera.

    The quantities :attr:`speed`, :attr:`motion_compensation` and :attr:`scan_time` take the place of lens distortion
    in the intrinsics record of the parameter store; they are exposed together as :attr:`distortion_parameters`.
    """

    camera_type = CameraType.OPTICAL_BAR

    def __init__(self, center: ARRAY_LIKE = (0, 0, 0), rotation: ARRAY_LIKE | Rotation | None = None,
                 focal_length: float = 1.0, optical_center: ARRAY_LIKE = (0, 0), image_size: ARRAY_LIKE = (1, 1),
                 speed: float = 0.0, motion_compensation: float = 0.0, scan_time: float = 0.0,
                 nominal_distance: float = 1.0e5):

        super().__init__()

        self.center = np.array(center, dtype=np.float64)
        self.rotation = Rotation(rotation)
        self.focal_length = float(focal_length)
        self.optical_center = np.array(optical_center, dtype=np.float64)
        self.image_size = np.array(image_size, dtype=np.int64)
        self.speed = float(speed)
        self.motion_compensation = float(motion_compensation)
        self.scan_time = float(scan_time)
        self.nominal_distance = float(nominal_distance)

        self.important_attributes.extend(['center', 'rotation', 'focal_length', 'optical_center', 'image_size',
                                          'speed', 'motion_compensation', 'scan_time', 'nominal_distance'])

    @property
    def distortion_parameters(self) -> DOUBLE_ARRAY:
        """
        The (speed, motion compensation, scan time) triple
        """

        return np.array([self.speed, self.motion_compensation, self.scan_time])

    @distortion_parameters.setter
    def distortion_parameters(self, val: ARRAY_LIKE):
        self.speed, self.motion_compensation, self.scan_time = (float(v) for v in val)

    def _time_at_column(self, column: float) -> float:
        return self.scan_time * (column - self.optical_center[0]) / self.image_size[0]

    def _center_at_time(self, time: float) -> DOUBLE_ARRAY:
        return self.center + self.speed * time * self.rotation.matrix[:, 1]

    def _compensation(self, time: float) -> float:
        return self.motion_compensation * self.speed * time / self.nominal_distance

    def camera_center(self, pixel: ARRAY_LIKE = (0, 0)) -> DOUBLE_ARRAY:
        return self._center_at_time(self._time_at_column(float(pixel[0])))

    def pixel_to_vector(self, pixel: ARRAY_LIKE) -> DOUBLE_ARRAY:

        column, row = float(pixel[0]), float(pixel[1])

        alpha = (column - self.optical_center[0]) / self.focal_length
        time = self._time_at_column(column)

        direction = np.array([np.sin(alpha),
                              (row - self.optical_center[1]) / self.focal_length - self._compensation(time),
                              np.cos(alpha)])

        direction = self.rotation.matrix @ direction

        return direction / np.linalg.norm(direction)

    def point_to_pixel(self, point: ARRAY_LIKE, max_iter: int = 50, tol: float = 1e-10) -> DOUBLE_ARRAY:

        point = np.asarray(point, dtype=np.float64)
        rotation_t = self.rotation.matrix.T

        column = self.optical_center[0]
        point_camera = rotation_t @ (point - self.center)

        # the column sets the time which sets the center, so iterate to a fixed point
        for _ in range(max_iter):

            time = self._time_at_column(column)
            point_camera = rotation_t @ (point - self._center_at_time(time))

            if point_camera[2] <= 0:
                raise ProjectionError('The point is outside of the scan')

            new_column = self.optical_center[0] + self.focal_length * np.arctan2(point_camera[0], point_camera[2])

            converged = abs(new_column - column) < tol
            column = new_column

            if converged:
                break

        else:
            raise ProjectionError('The optical bar projection did not converge')

        time = self._time_at_column(column)
        radius = np.hypot(point_camera[0], point_camera[2])

        row = self.optical_center[1] + self.focal_length * (point_camera[1] / radius + self._compensation(time))

        return np.array([column, row])

    def apply_transform(self, rotation: ARRAY_LIKE, translation: ARRAY_LIKE, scale: float = 1.0) -> None:

        rotation = np.asarray(rotation, dtype=np.float64)

        self.center = scale * rotation @ self.center + np.asarray(translation, dtype=np.float64)
        self.rotation = Rotation(rotation @ self.rotation.matrix)
        # along track motion and ground distance are lengths and scale with the world
        self.speed *= scale
        self.nominal_distance *= scale
