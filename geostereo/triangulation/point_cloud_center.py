"""
This module estimates a point near the middle of a point cloud.

The center is subtracted from every point before a cloud is written as float32 so the written values stay small.  It
is the coordinate-wise median of the points found in the tiles closest to the middle of the raster, nudged by a tiny
relative amount so that it never lands exactly on a point (a zero point marks a missing pixel).
"""

import logging

from typing import Protocol, Sequence

import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY
from geostereo.triangulation.raster import BBox


_LOGGER: logging.Logger = logging.getLogger(__name__)


MIN_CENTER_POINTS: int = 100
"""
The search stops as soon as more than this many points have been found
"""


CENTER_PERTURBATION: float = 1e-10
"""
The largest relative perturbation applied to the median
"""


class RasterizableCloud(Protocol):
    """
    A point cloud raster that can be computed one box at a time.
    """

    cols: int
    rows: int

    def rasterize(self, bbox: BBox) -> DOUBLE_ARRAY:
        ...


def find_approx_points_median(points: Sequence[ARRAY_LIKE] | DOUBLE_ARRAY,
                              rng: np.random.Generator | None = None) -> DOUBLE_ARRAY:
    """
    The coordinate-wise median of ``points``, each coordinate perturbed by a random fraction of up to
    :data:`CENTER_PERTURBATION` of itself.

    For an even number of points the upper of the two middle values is used.

    :param points: The n x 3 points
    :param rng: The generator of the perturbation.  Defaults to a generator with a fixed seed so the center is
                repeatable
    :return: The perturbed median, or zero if there are no points
    """

    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)

    if points.shape[0] == 0:
        return np.zeros(3)

    if rng is None:
        rng = np.random.default_rng(0)

    median = np.sort(points, axis=0)[points.shape[0] // 2]

    return median + median * CENTER_PERTURBATION * rng.random(3)


def find_point_cloud_center(tile_size: int | tuple[int, int], cloud: RasterizableCloud,
                            crop_box: BBox | None = None, rng: np.random.Generator | None = None) -> DOUBLE_ARRAY:
    """
    Estimate the center of a point cloud from the tiles around the middle of its raster.

    Tiles are aligned to multiples of ``tile_size``, the same tiles the cloud is written in.  The search starts with
    the middle tile and spirals outwards one square ring of tiles at a time, stopping as soon as more than
    :data:`MIN_CENTER_POINTS` nonzero points have been found.  If the whole raster has fewer points, all of them are
    used.

    :param tile_size: The (columns, rows) size of a tile, or one size for both
    :param cloud: The cloud.  Its rasters hold the point in the first three channels
    :param crop_box: Only points inside this box are used
    :param rng: See :func:`find_approx_points_median`
    :return: The center
    """

    if isinstance(tile_size, int):
        tile_size = (tile_size, tile_size)

    num_x = int(np.ceil(cloud.cols / tile_size[0]))
    num_y = int(np.ceil(cloud.rows / tile_size[1]))

    full = BBox(0, 0, cloud.cols, cloud.rows)
    if crop_box is not None:
        full = full.crop(crop_box)

    points = []
    num_points = 0

    for ring in range(max(num_x // 2, num_y // 2) + 1):

        for x in range(num_x // 2 - ring, num_x // 2 + ring + 1):
            for y in range(num_y // 2 - ring, num_y // 2 + ring + 1):

                # only the boundary of the ring
                if x not in (num_x // 2 - ring, num_x // 2 + ring) and y not in (num_y // 2 - ring,
                                                                                  num_y // 2 + ring):
                    continue

                if x < 0 or y < 0 or x >= num_x or y >= num_y:
                    continue

                box = BBox.from_size(x * tile_size[0], y * tile_size[1], tile_size[0], tile_size[1]).crop(full)

                if box.empty:
                    continue

                xyz = cloud.rasterize(box)[..., :3].reshape(-1, 3)
                xyz = xyz[xyz.any(axis=1)]

                points.append(xyz)
                num_points += xyz.shape[0]

                if num_points > MIN_CENTER_POINTS:
                    _LOGGER.debug(f'Found the cloud center from {num_points} points')
                    return find_approx_points_median(np.concatenate(points), rng)

    _LOGGER.warning(f'Only {num_points} points were available for the point cloud center')

    if not points:
        return np.zeros(3)

    return find_approx_points_median(np.concatenate(points), rng)
