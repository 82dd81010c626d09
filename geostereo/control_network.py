"""
This module provides the control network: the world points observed in the images together with their pixel
measurements.

Ground control points (:attr:`ControlPointType.GROUND`) carry a surveyed position that the cameras are aligned to.
Measurement points (:attr:`ControlPointType.MEASUREMENT`) get their position by triangulation with
:func:`triangulate_control_point`.  A zero position means the position is unknown.
"""

import logging

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Sequence

import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY
from geostereo.camera_models import CameraModel
from geostereo.triangulation.stereo_model import StereoModel


_LOGGER: logging.Logger = logging.getLogger(__name__)


class ControlPointType(Enum):
    """
    The kind of a control point
    """

    MEASUREMENT = "measurement"
    GROUND = "ground"


@dataclass
class ControlMeasure:
    """
    The pixel location of a control point in one image.
    """

    image_id: int
    """
    The index of the camera that made the measurement
    """

    pixel: DOUBLE_ARRAY
    """
    The (column, row) location of the measurement
    """

    def __post_init__(self):
        self.pixel = np.asarray(self.pixel, dtype=np.float64)


@dataclass
class ControlPoint:
    """
    A world point and its measurements.
    """

    point_type: ControlPointType = ControlPointType.MEASUREMENT
    position: DOUBLE_ARRAY = field(default_factory=lambda: np.zeros(3))
    measures: list[ControlMeasure] = field(default_factory=list)

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=np.float64)

    def __len__(self) -> int:
        return len(self.measures)

    def __iter__(self) -> Iterator[ControlMeasure]:
        return iter(self.measures)

    @property
    def is_gcp(self) -> bool:
        return self.point_type is ControlPointType.GROUND

    @property
    def has_position(self) -> bool:
        return bool(np.any(self.position != 0))

    def add_measure(self, image_id: int, pixel: ARRAY_LIKE) -> None:
        self.measures.append(ControlMeasure(image_id, np.asarray(pixel, dtype=np.float64)))


class ControlNetwork(list):
    """
    An ordered list of :class:`ControlPoint`.
    """

    def gcps(self) -> list[ControlPoint]:
        return [point for point in self if point.is_gcp]

    def num_gcps(self) -> int:
        return sum(1 for point in self if point.is_gcp)


def triangulate_control_point(point: ControlPoint, cameras: Sequence[CameraModel],
                              forced_distance: float = 0.0, angle_tolerance: float = 0.0) -> tuple[DOUBLE_ARRAY, float]:
    """
    Triangulate a control point from its measurements.

    Each consecutive pair of measurements is triangulated and the successful results are averaged.  If none succeed
    and ``forced_distance`` is positive, the point is placed ``forced_distance`` along the ray of the first
    measurement, which is the only option for a point seen by a single camera.

    The position of ``point`` is not modified.

    :param point: The control point
    :param cameras: All cameras, indexed by the measurement image ids
    :param forced_distance: The distance along the first ray to fall back on
    :param angle_tolerance: Passed to :class:`.StereoModel`
    :return: The position (zero if unknown) and the mean triangulation error (-1 if nothing was triangulated)
    """

    position = np.zeros(3)
    error_sum = 0.0
    count = 0

    for first, second in zip(point.measures[:-1], point.measures[1:]):

        model = StereoModel([cameras[first.image_id], cameras[second.image_id]], angle_tolerance=angle_tolerance)

        pair_position, pair_error = model([first.pixel, second.pixel])

        if np.any(pair_position != 0):
            position += pair_position
            error_sum += float(np.linalg.norm(pair_error))
            count += 1

    if count:
        return position / count, error_sum / count

    if forced_distance > 0 and point.measures:

        first = point.measures[0]
        camera = cameras[first.image_id]

        try:
            position = camera.camera_center(first.pixel) + forced_distance * camera.pixel_to_vector(first.pixel)
        except ValueError:
            _LOGGER.debug(f'Could not back project the first measurement from camera {first.image_id}')
            position = np.zeros(3)

    return position, -1.0
