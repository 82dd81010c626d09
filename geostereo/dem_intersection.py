r"""
This module intersects camera rays with a :class:`.DEM`.

The intersection is the length :math:`l` along the ray :math:`\mathbf{o}+l\mathbf{d}` where the height above the DEM is
zero.  The search starts from the intersection of the ray with the datum and is solved with the
:class:`.LMAEstimator`.

Where the DEM has no height at the starting point (it falls in a hole or off the edge) the start is wiggled along the
ray by increasing amounts until a height is found.  If the solve does not reach the surface it is restarted from where
it stopped with larger wiggles, up to :attr:`.DEMIntersectionOptions.max_attempts` times, after which there is no
intersection.
"""

import logging

from dataclasses import dataclass

import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY
from geostereo.camera_models import CameraModel
from geostereo.dem import DEM
from geostereo.estimators import LMAEstimator, LMAOptions
from geostereo.utilities.options import UserOptions


_LOGGER: logging.Logger = logging.getLogger(__name__)


BIG_VALUE: float = 1e50
"""
The residual used where the DEM has no height
"""


@dataclass
class DEMIntersectionOptions(UserOptions):

    residual_tolerance: float = 1e-14
    """
    The absolute and relative tolerance on the sum of squares of the height
    """

    state_tolerance: float = 1e-14
    """
    The absolute and relative tolerance on the update to the length along the ray
    """

    max_iterations: int = 100
    """
    The iteration cap of each solve
    """

    max_attempts: int = 10
    """
    How many times the solve is restarted before giving up
    """

    height_error_tolerance: float = 1e-3
    """
    The height above the DEM in meters below which a solution is accepted
    """

    num_wiggles: int = 10
    """
    The number of increasingly large perturbations tried when the starting point has no height
    """

    wiggle_fraction: float = 0.02
    """
    The largest perturbation of the first attempt as a fraction of the radius of the datum
    """


def _height_residual(dem: DEM, origin: DOUBLE_ARRAY, direction: DOUBLE_ARRAY, length: float) -> float:

    height = dem.height_above_dem(origin + length * direction)

    if not np.isfinite(height):
        return BIG_VALUE

    return height


def intersect_ray_with_dem(dem: DEM, origin: ARRAY_LIKE, direction: ARRAY_LIKE,
                           options: DEMIntersectionOptions | None = None,
                           initial_length: float | None = None, attempt: int = 0) -> DOUBLE_ARRAY | None:
    """
    Intersect the ray from ``origin`` along ``direction`` with the DEM.

    :param dem: The DEM
    :param origin: The start of the ray
    :param direction: The direction of the ray
    :param options: The solver settings
    :param initial_length: Where along the ray to start.  Defaults to the intersection with the datum
    :param attempt: How many times the solve has already been restarted
    :return: The intersection point, or ``None`` if none was found
    """

    if options is None:
        options = DEMIntersectionOptions()

    if attempt > options.max_attempts:
        return None

    origin = np.asarray(origin, dtype=np.float64)
    direction = np.asarray(direction, dtype=np.float64)
    direction = direction / np.linalg.norm(direction)

    if initial_length is None:

        datum_point = dem.datum.intersect_ray(origin, direction)

        if datum_point is None:
            _LOGGER.debug('The ray does not intersect the datum')
            return None

        initial_length = float(np.linalg.norm(datum_point - origin))

    small = dem.datum.radius() * options.wiggle_fraction / 2 ** options.num_wiggles

    start = None
    for step in range(options.num_wiggles):

        delta = small * 2 ** step * 2 ** attempt

        if attempt == 0 and step == 0:
            delta = 0.0

        for length in (initial_length + delta, initial_length - delta):
            if _height_residual(dem, origin, direction, length) != BIG_VALUE:
                start = length
                break

        if start is not None:
            break

    if start is None:
        return intersect_ray_with_dem(dem, origin, direction, options, initial_length, attempt + 1)

    estimator = LMAEstimator(lambda state: [_height_residual(dem, origin, direction, state[0])],
                             options=LMAOptions(max_iter=options.max_iterations,
                                                residual_atol=options.residual_tolerance,
                                                residual_rtol=options.residual_tolerance,
                                                state_atol=options.state_tolerance,
                                                state_rtol=options.state_tolerance))

    length = float(estimator.estimate([start])[0])

    height = _height_residual(dem, origin, direction, length)

    if abs(height) > options.height_error_tolerance:
        _LOGGER.debug(f'DEM intersection attempt {attempt} stopped {height} m from the surface')
        return intersect_ray_with_dem(dem, origin, direction, options, length, attempt + 1)

    return origin + length * direction


def camera_pixel_to_dem_xyz(camera: CameraModel, pixel: ARRAY_LIKE, dem: DEM,
                            options: DEMIntersectionOptions | None = None) -> DOUBLE_ARRAY | None:
    """
    Intersect the ray through ``pixel`` with the DEM.

    :return: The intersection point, or ``None`` if none was found or the camera cannot back project the pixel
    """

    try:
        origin = camera.camera_center(pixel)
        direction = camera.pixel_to_vector(pixel)
    except ValueError:
        return None

    return intersect_ray_with_dem(dem, origin, direction, options)
