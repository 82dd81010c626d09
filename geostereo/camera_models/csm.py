# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


r"""
This module provides the community sensor model (CSM) style frame and linescan cameras.

CSM cameras address the image with (line, sample) coordinates whose origin is the corner of the first pixel, so they
are half a pixel away from the (column, row) pixel-center convention used elsewhere in geostereo.  Use
:func:`to_csm_pixel` and :func:`from_csm_pixel` at that boundary.

The linescan model samples its trajectory at uniform times: positions at :math:`t_{0,p}+k\Delta t_p` and
scalar-last sensor-to-world quaternions at :math:`t_{0,q}+k\Delta t_q`.  Poses between samples are found with
Lagrange interpolation of order 8 (4 samples on each side, fewer near the ends of the arrays), so a pose at time
:math:`t` only depends on samples :math:`\lfloor(t-t_0)/\Delta t\rfloor-3` through
:math:`\lfloor(t-t_0)/\Delta t\rfloor+4`.  The jitter cost functions rely on this locality.

Both models share their camera frame convention with :class:`.PinholeModel`: +z along the boresight, +x along
increasing samples and +y along increasing lines.  For the linescan model the detector is the line of the focal plane
where :math:`f y_d + c_y = 0`.
"""

import copy

import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY
from geostereo.camera_models.camera_model import CameraModel, CameraType, ProjectionError
from geostereo.camera_models.distortion import Distortion, NoDistortion
from geostereo.rotations import quaternion_to_rotmat, rotmat_to_quaternion, quaternion_multiplication


CSM_PIXEL_OFFSET: float = 0.5
"""
The offset between the CSM image coordinates and pixel-center coordinates
"""

CSM_SCALE_TOLERANCE: float = 1e-6
"""
How far from 1 the scale of a similarity applied to a CSM camera may be
"""

LAGRANGE_ORDER: int = 8
"""
The number of samples used to interpolate the linescan trajectory
"""


def to_csm_pixel(pixel: ARRAY_LIKE) -> DOUBLE_ARRAY:
    """
    Convert a (column, row) pixel into a CSM (line, sample) image coordinate.
    """

    return np.array([pixel[1] + CSM_PIXEL_OFFSET, pixel[0] + CSM_PIXEL_OFFSET], dtype=np.float64)


def from_csm_pixel(image_coord: ARRAY_LIKE) -> DOUBLE_ARRAY:
    """
    Convert a CSM (line, sample) image coordinate into a (column, row) pixel.
    """

    return np.array([image_coord[1] - CSM_PIXEL_OFFSET, image_coord[0] - CSM_PIXEL_OFFSET], dtype=np.float64)


def check_csm_scale(scale: float) -> None:
    """
    CSM cameras cannot absorb a scale change without rescaling every trajectory sample.

    :raises ValueError: if ``scale`` differs from 1 by more than :data:`CSM_SCALE_TOLERANCE`
    """

    if abs(scale - 1.0) > CSM_SCALE_TOLERANCE:
        raise ValueError("CSM camera models do not support applying a transform with a scale.")


def lagrange_interpolate(values: DOUBLE_ARRAY, t0: float, dt: float, time: float,
                         order: int = LAGRANGE_ORDER) -> DOUBLE_ARRAY:
    """
    Interpolate uniformly sampled vectors at ``time``.

    :param values: The samples, one per row
    :param t0: The time of the first sample
    :param dt: The spacing between samples
    :param time: The time to interpolate at
    :param order: The maximum number of samples to use (half on each side of ``time``)
    :return: The interpolated vector
    """

    num = values.shape[0]

    if num < 2:
        raise ProjectionError('Too few samples for interpolation')

    frac = (time - t0) / dt

    index = int(frac)
    index = min(max(index, 0), num - 2)

    half = min(order // 2, index + 1, num - 1 - index)

    samples = np.arange(index - half + 1, index + half + 1)

    result = np.zeros(values.shape[1])

    for j in samples:
        weight = 1.0
        for k in samples:
            if k != j:
                weight *= (frac - k) / (j - k)
        result += weight * values[j]

    return result


class CSMFrameModel(CameraModel):
    """
    A CSM style frame camera.

    The exterior orientation is the 7 element :attr:`parameters` vector (x, y, z, qx, qy, qz, qw) with a scalar-last
    sensor-to-world quaternion, which the jitter cost functions update directly.
    """

    camera_type = CameraType.CSM_FRAME

    def __init__(self, position: ARRAY_LIKE = (0, 0, 0), quaternion: ARRAY_LIKE = (0, 0, 0, 1),
                 focal_length: float = 1.0, optical_center: ARRAY_LIKE = (0, 0),
                 distortion: Distortion | None = None, image_size: ARRAY_LIKE = (1, 1)):

        super().__init__()

        self.position = np.array(position, dtype=np.float64)
        self.quaternion = np.array(quaternion, dtype=np.float64)
        self.focal_length = float(focal_length)
        self.optical_center = np.array(optical_center, dtype=np.float64)
        self.distortion = distortion if distortion is not None else NoDistortion()
        self.image_size = np.array(image_size, dtype=np.int64)

        self.important_attributes.extend(['position', 'quaternion', 'focal_length', 'optical_center', 'distortion',
                                          'image_size'])

    @property
    def parameters(self) -> DOUBLE_ARRAY:
        """
        The (x, y, z, qx, qy, qz, qw) exterior orientation
        """

        return np.concatenate([self.position, self.quaternion])

    @parameters.setter
    def parameters(self, val: ARRAY_LIKE):
        val = np.asarray(val, dtype=np.float64)
        self.position = val[:3].copy()
        self.quaternion = val[3:7].copy()

    @property
    def distortion_parameters(self) -> DOUBLE_ARRAY:
        """
        The lens distortion coefficients
        """

        return self.distortion.coefficients

    @distortion_parameters.setter
    def distortion_parameters(self, val: ARRAY_LIKE):
        self.distortion = type(self.distortion)(val)

    def shallow_copy(self) -> 'CSMFrameModel':
        """
        A copy that shares the intrinsics with ``self`` but owns its exterior orientation.
        """

        out = copy.copy(self)
        out.position = self.position.copy()
        out.quaternion = self.quaternion.copy()

        return out

    def ground_to_image(self, ground: ARRAY_LIKE, desired_precision: float = 1e-8) -> DOUBLE_ARRAY:
        """
        Project a ground point to a CSM (line, sample) image coordinate.

        :param ground: The world point
        :param desired_precision: Unused for frame cameras, which project in closed form
        :raises ProjectionError: if the point is behind the camera
        """

        point_camera = quaternion_to_rotmat(self.quaternion).T @ (np.asarray(ground, dtype=np.float64) - self.position)

        if point_camera[2] <= 0:
            raise ProjectionError('The point is behind the camera')

        pixel = self.focal_length * self.distortion.distort(point_camera[:2] / point_camera[2]) + self.optical_center

        return to_csm_pixel(pixel)

    def camera_center(self, pixel: ARRAY_LIKE = (0, 0)) -> DOUBLE_ARRAY:
        return self.position.copy()

    def pixel_to_vector(self, pixel: ARRAY_LIKE) -> DOUBLE_ARRAY:

        normalized = self.distortion.undistort((np.asarray(pixel, dtype=np.float64) - self.optical_center) /
                                               self.focal_length)

        direction = quaternion_to_rotmat(self.quaternion) @ np.array([normalized[0], normalized[1], 1.0])

        return direction / np.linalg.norm(direction)

    def point_to_pixel(self, point: ARRAY_LIKE) -> DOUBLE_ARRAY:
        return from_csm_pixel(self.ground_to_image(point))

    def apply_transform(self, rotation: ARRAY_LIKE, translation: ARRAY_LIKE, scale: float = 1.0) -> None:

        check_csm_scale(scale)

        rotation = np.asarray(rotation, dtype=np.float64)

        self.position = rotation @ self.position + np.asarray(translation, dtype=np.float64)
        self.quaternion = quaternion_multiplication(rotmat_to_quaternion(rotation), self.quaternion)


class CSMLinescanModel(CameraModel):
    """
    A CSM style pushbroom camera with a sampled trajectory.

    :attr:`positions` is an Nx3 array and :attr:`quaternions` an Mx4 array of scalar-last sensor-to-world
    quaternions.  Row :math:`r` of the image is exposed at :attr:`first_line_time` :math:`+ r` :attr:`line_period`.
    """

    camera_type = CameraType.CSM_LINESCAN

    def __init__(self, positions: ARRAY_LIKE = ((0, 0, 0), (0, 0, 0)), t0_ephem: float = 0.0, dt_ephem: float = 1.0,
                 quaternions: ARRAY_LIKE = ((0, 0, 0, 1), (0, 0, 0, 1)), t0_quat: float = 0.0, dt_quat: float = 1.0,
                 first_line_time: float = 0.0, line_period: float = 1.0,
                 focal_length: float = 1.0, optical_center: ARRAY_LIKE = (0, 0),
                 distortion: Distortion | None = None, image_size: ARRAY_LIKE = (1, 1)):

        super().__init__()

        self.positions = np.array(positions, dtype=np.float64).reshape(-1, 3)
        self.t0_ephem = float(t0_ephem)
        self.dt_ephem = float(dt_ephem)
        self.quaternions = np.array(quaternions, dtype=np.float64).reshape(-1, 4)
        self.t0_quat = float(t0_quat)
        self.dt_quat = float(dt_quat)
        self.first_line_time = float(first_line_time)
        self.line_period = float(line_period)
        self.focal_length = float(focal_length)
        self.optical_center = np.array(optical_center, dtype=np.float64)
        self.distortion = distortion if distortion is not None else NoDistortion()
        self.image_size = np.array(image_size, dtype=np.int64)

        self.important_attributes.extend(['positions', 't0_ephem', 'dt_ephem', 'quaternions', 't0_quat', 'dt_quat',
                                          'first_line_time', 'line_period', 'focal_length', 'optical_center',
                                          'distortion', 'image_size'])

    @property
    def num_positions(self) -> int:
        return self.positions.shape[0]

    @property
    def num_quaternions(self) -> int:
        return self.quaternions.shape[0]

    @property
    def distortion_parameters(self) -> DOUBLE_ARRAY:
        """
        The lens distortion coefficients
        """

        return self.distortion.coefficients

    @distortion_parameters.setter
    def distortion_parameters(self, val: ARRAY_LIKE):
        self.distortion = type(self.distortion)(val)

    def shallow_copy(self) -> 'CSMLinescanModel':
        """
        A copy that shares the intrinsics and image geometry with ``self`` but owns its trajectory samples, so the
        samples can be overwritten without touching ``self``.
        """

        out = copy.copy(self)
        out.positions = self.positions.copy()
        out.quaternions = self.quaternions.copy()

        return out

    def get_image_time(self, image_coord: ARRAY_LIKE) -> float:
        """
        The time a CSM (line, sample) image coordinate was exposed.
        """

        return self.first_line_time + (image_coord[0] - CSM_PIXEL_OFFSET) * self.line_period

    def position_at(self, time: float) -> DOUBLE_ARRAY:
        """
        The interpolated sensor position at ``time``
        """

        return lagrange_interpolate(self.positions, self.t0_ephem, self.dt_ephem, time)

    def quaternion_at(self, time: float) -> DOUBLE_ARRAY:
        """
        The interpolated unit sensor-to-world quaternion at ``time``
        """

        quaternion = lagrange_interpolate(self.quaternions, self.t0_quat, self.dt_quat, time)

        norm = np.linalg.norm(quaternion)

        if norm == 0:
            raise ProjectionError('Interpolated a zero quaternion')

        return quaternion / norm

    def _focal_plane(self, ground: DOUBLE_ARRAY, line: float) -> DOUBLE_ARRAY:

        time = self.get_image_time((line, 0.0))

        point_camera = quaternion_to_rotmat(self.quaternion_at(time)).T @ (ground - self.position_at(time))

        if point_camera[2] <= 0:
            raise ProjectionError('The point is behind the camera')

        return self.focal_length * self.distortion.distort(point_camera[:2] / point_camera[2]) + self.optical_center

    def ground_to_image(self, ground: ARRAY_LIKE, desired_precision: float = 1e-8,
                        initial_line: float | None = None, max_iter: int = 100) -> DOUBLE_ARRAY:
        """
        Project a ground point to a CSM (line, sample) image coordinate.

        The line is found with secant iterations on the along track focal plane coordinate, which is zero when the
        detector sees the point.

        :param ground: The world point
        :param desired_precision: The convergence tolerance on the line
        :param initial_line: Where to start the search.  Defaults to the middle of the image
        :param max_iter: The maximum number of secant iterations
        :raises ProjectionError: if the point is behind the sensor or the search does not converge
        """

        ground = np.asarray(ground, dtype=np.float64)

        if initial_line is None:
            initial_line = self.image_size[1] / 2.0 + CSM_PIXEL_OFFSET

        line0 = float(initial_line)
        offset0 = self._focal_plane(ground, line0)[1]

        line1 = line0 + 1.0
        offset1 = self._focal_plane(ground, line1)[1]

        for _ in range(max_iter):

            if offset1 == offset0:
                # flat secant, only acceptable when already on the detector
                if abs(offset1) < desired_precision:
                    break
                raise ProjectionError('The linescan ground to image search stalled')

            line2 = line1 - offset1 * (line1 - line0) / (offset1 - offset0)

            line0, offset0 = line1, offset1
            line1 = line2
            offset1 = self._focal_plane(ground, line1)[1]

            if abs(line1 - line0) < desired_precision:
                break

        else:
            raise ProjectionError('The linescan ground to image search did not converge')

        return np.array([line1, self._focal_plane(ground, line1)[0] + CSM_PIXEL_OFFSET])

    def camera_center(self, pixel: ARRAY_LIKE = (0, 0)) -> DOUBLE_ARRAY:
        return self.position_at(self.get_image_time(to_csm_pixel(pixel)))

    def pixel_to_vector(self, pixel: ARRAY_LIKE) -> DOUBLE_ARRAY:

        time = self.get_image_time(to_csm_pixel(pixel))

        detector = np.array([float(pixel[0]), 0.0])

        normalized = self.distortion.undistort((detector - self.optical_center) / self.focal_length)

        direction = quaternion_to_rotmat(self.quaternion_at(time)) @ np.array([normalized[0], normalized[1], 1.0])

        return direction / np.linalg.norm(direction)

    def point_to_pixel(self, point: ARRAY_LIKE) -> DOUBLE_ARRAY:
        return from_csm_pixel(self.ground_to_image(point))

    def apply_transform(self, rotation: ARRAY_LIKE, translation: ARRAY_LIKE, scale: float = 1.0) -> None:

        check_csm_scale(scale)

        rotation = np.asarray(rotation, dtype=np.float64)

        self.positions = self.positions @ rotation.T + np.asarray(translation, dtype=np.float64)

        rotation_quaternion = np.tile(rotmat_to_quaternion(rotation).reshape(4, 1), (1, self.num_quaternions))
        self.quaternions = np.ascontiguousarray(quaternion_multiplication(rotation_quaternion, self.quaternions.T).T)
