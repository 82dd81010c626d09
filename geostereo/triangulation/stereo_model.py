r"""
This module provides the :class:`StereoModel`, which intersects the rays of several cameras observing the same point.

For two rays the point is the midpoint of the shortest segment joining them and the error is the vector along that
segment.  For more rays the point is the least squares closest point to all of them,

.. math::
    \mathbf{x} = \left(\sum_i\mathbf{I}-\mathbf{d}_i\mathbf{d}_i^T\right)^{-1}
    \sum_i\left(\mathbf{I}-\mathbf{d}_i\mathbf{d}_i^T\right)\mathbf{c}_i

and the error is ``(e, 0, 0)`` where ``e`` is twice the mean distance from the point to the rays (which is the length of
the gap for two rays).

A zero point marks a failed triangulation: fewer than two valid pixels, rays that are too close to parallel, or a
camera that cannot back project its pixel.
"""

import logging

from typing import Sequence

import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY
from geostereo.camera_models import CameraModel
from geostereo.estimators import LMAEstimator, LMAOptions


_LOGGER: logging.Logger = logging.getLogger(__name__)


def robust_1_minus_cos(angle: float) -> float:
    """
    :math:`1-\\cos(\\theta)` computed without cancellation for small angles (in radians).
    """

    return 2 * np.sin(angle / 2) ** 2


class StereoModel:
    """
    Triangulates pixels observed by a fixed set of cameras.

    :param cameras: The cameras, in the order pixels are given to :meth:`triangulate`
    :param least_squares: Refine each point by minimizing its reprojection error
    :param angle_tolerance: Rays whose :math:`1-\\cos` of the angle between them is below this are treated as
                            parallel.  See :func:`robust_1_minus_cos`
    """

    def __init__(self, cameras: Sequence[CameraModel], least_squares: bool = False, angle_tolerance: float = 0.0):

        self.cameras = list(cameras)
        self.least_squares = least_squares
        self.angle_tolerance = angle_tolerance

    def __call__(self, pixels: Sequence[ARRAY_LIKE]) -> tuple[DOUBLE_ARRAY, DOUBLE_ARRAY]:
        return self.triangulate(pixels)

    def triangulate(self, pixels: Sequence[ARRAY_LIKE]) -> tuple[DOUBLE_ARRAY, DOUBLE_ARRAY]:
        """
        Intersect the rays through ``pixels``.

        NaN pixels are skipped.

        :param pixels: One (column, row) pixel per camera
        :return: The point and the error vector, both zero on failure
        """

        if len(pixels) != len(self.cameras):
            raise ValueError(f'Expected {len(self.cameras)} pixels, got {len(pixels)}')

        centers, directions, used = [], [], []

        for index, (camera, pixel) in enumerate(zip(self.cameras, pixels)):

            pixel = np.asarray(pixel, dtype=np.float64)

            if not np.isfinite(pixel).all():
                continue

            try:
                centers.append(camera.camera_center(pixel))
                directions.append(camera.pixel_to_vector(pixel))
            except ValueError:
                return np.zeros(3), np.zeros(3)

            used.append(index)

        if len(used) < 2 or not self._wide_enough(directions):
            return np.zeros(3), np.zeros(3)

        if len(used) == 2:
            point, error = self._triangulate_pair(centers[0], directions[0], centers[1], directions[1])
        else:
            point, error = self._triangulate_many(centers, directions)

        if point is None:
            return np.zeros(3), np.zeros(3)

        if self.least_squares:
            point = self._refine(point, [self.cameras[index] for index in used],
                                 [np.asarray(pixels[index], dtype=np.float64) for index in used])

        return point, error

    def _wide_enough(self, directions: list[DOUBLE_ARRAY]) -> bool:

        for first in range(len(directions)):
            for second in range(first + 1, len(directions)):
                if 1 - directions[first] @ directions[second] >= self.angle_tolerance:
                    return True

        return False

    @staticmethod
    def _triangulate_pair(center1: DOUBLE_ARRAY, direction1: DOUBLE_ARRAY, center2: DOUBLE_ARRAY,
                          direction2: DOUBLE_ARRAY) -> tuple[DOUBLE_ARRAY | None, DOUBLE_ARRAY]:

        offset = center1 - center2

        b = direction1 @ direction2
        d = direction1 @ offset
        e = direction2 @ offset

        denominator = 1 - b * b

        if denominator <= 0:
            return None, np.zeros(3)

        along1 = (b * e - d) / denominator
        along2 = (e - b * d) / denominator

        closest1 = center1 + along1 * direction1
        closest2 = center2 + along2 * direction2

        return (closest1 + closest2) / 2, closest1 - closest2

    @staticmethod
    def _triangulate_many(centers: list[DOUBLE_ARRAY],
                          directions: list[DOUBLE_ARRAY]) -> tuple[DOUBLE_ARRAY | None, DOUBLE_ARRAY]:

        lhs = np.zeros((3, 3))
        rhs = np.zeros(3)

        projectors = []
        for center, direction in zip(centers, directions):
            projector = np.eye(3) - np.outer(direction, direction)
            projectors.append(projector)
            lhs += projector
            rhs += projector @ center

        try:
            point = np.linalg.solve(lhs, rhs)
        except np.linalg.LinAlgError:
            return None, np.zeros(3)

        distances = [np.linalg.norm(projector @ (point - center)) for projector, center in zip(projectors, centers)]

        return point, np.array([2 * np.mean(distances), 0.0, 0.0])

    @staticmethod
    def _refine(point: DOUBLE_ARRAY, cameras: list[CameraModel], pixels: list[DOUBLE_ARRAY]) -> DOUBLE_ARRAY:

        def residuals(state: DOUBLE_ARRAY) -> DOUBLE_ARRAY:
            return np.concatenate([camera.point_to_pixel(state) - pixel for camera, pixel in zip(cameras, pixels)])

        estimator = LMAEstimator(residuals, options=LMAOptions(max_iter=20))

        try:
            return estimator.estimate(point)
        except ValueError:
            # keep the closed form point if refinement leaves the cameras' domain
            return point
