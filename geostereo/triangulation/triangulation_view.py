# Copyright 2021 United States Government as represented by the Administrator of the National Aeronautics and Space
# Administration.  No copyright is claimed in the United States under Title 17, U.S. Code. All Other Rights Reserved.


r"""
This module triangulates dense disparities into point clouds.

Description
-----------

The left image is shared by every stereo pair of a multiview system, so the n-1 disparities of an n image system are
all defined on the pixels of the aligned left image.  For each of those pixels :class:`TriangulationView`

#. reverses the left pixel through the transform of the left image to get the native left pixel,
#. reads each disparity and reverses the left pixel plus the disparity through the transform of the other image
   (a pixel with an invalid disparity becomes a NaN pixel which is left out),
#. intersects the rays of the native pixels with a :class:`.StereoModel`.

The result of a pixel is the 6 vector of the point and the error vector, zero where triangulation failed.

The view is computed one box at a time.  :meth:`TriangulationView.prerasterize` copies the disparities of the box into
memory and, for map projected images, gives the box its own copies of the transforms with their DEM windows primed.
The pixels of a box do not depend on one another or on other boxes, so boxes can be computed in parallel and always
give the same result.

:class:`PointCloud` wraps the view with a :class:`UniverseRadiusFilter` and computes it tile by tile on a thread pool.

Use
---

:class:`StereoTriangulator`, configured with :class:`TriangulationOptions`, builds the cloud from the disparities,
transforms and cameras, finds the cloud center, and writes the cloud.
"""

import logging
import threading
import warnings

from dataclasses import dataclass
from multiprocessing.pool import ThreadPool
from pathlib import Path
from typing import Sequence

import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY, PATH
from geostereo.camera_models import CameraModel
from geostereo.triangulation.image_transforms import NAN_PIXEL, ImageTransform
from geostereo.triangulation.io import read_point, write_point, write_point_cloud
from geostereo.triangulation.point_cloud_center import find_point_cloud_center
from geostereo.triangulation.raster import BBox, DisparityMap, tile_boxes
from geostereo.triangulation.stereo_model import StereoModel, robust_1_minus_cos
from geostereo.utilities.mixin_classes import UserOptionConfigured
from geostereo.utilities.options import UserOptions


_LOGGER: logging.Logger = logging.getLogger(__name__)


UNIVERSE_CENTERS: tuple[str, ...] = ("none", "camera", "zero")
"""
The accepted values of :attr:`TriangulationOptions.universe_center`
"""


def point_and_error_norm(cloud: ARRAY_LIKE) -> DOUBLE_ARRAY:
    """
    Replace the error vector of each pixel of a 6 band cloud with its length.

    :param cloud: The ``... x 6`` cloud
    :return: The ``... x 4`` cloud
    """

    cloud = np.asarray(cloud, dtype=np.float64)

    return np.concatenate([cloud[..., :3], np.linalg.norm(cloud[..., 3:6], axis=-1, keepdims=True)], axis=-1)


class UniverseRadiusFilter:
    """
    Zeroes the points whose distance to a center is outside ``[near_radius, far_radius]``.

    A radius of zero turns off that side of the check.  Zero points are missing already and are passed through.  The
    filter counts the points it sees and rejects, and can be shared by threads.

    :param center: The center the distances are measured from
    :param near_radius: The smallest allowed distance
    :param far_radius: The largest allowed distance
    """

    def __init__(self, center: ARRAY_LIKE = (0, 0, 0), near_radius: float = 0.0, far_radius: float = 0.0):

        self.center = np.array(center, dtype=np.float64)
        self.near_radius = float(near_radius)
        self.far_radius = float(far_radius)

        self.num_total = 0
        self.num_rejected = 0

        self._lock = threading.Lock()

    def __call__(self, result: ARRAY_LIKE) -> DOUBLE_ARRAY:
        """
        Filter one pixel.
        """

        return self.filter_tile(np.asarray(result, dtype=np.float64)[np.newaxis])[0]

    def filter_tile(self, tile: DOUBLE_ARRAY) -> DOUBLE_ARRAY:
        """
        Filter every pixel of a ``... x bands`` raster holding the point in its first three bands.

        :return: A filtered copy
        """

        tile = np.array(tile, dtype=np.float64)

        valid = tile[..., :3].any(axis=-1)

        distance = np.linalg.norm(tile[..., :3] - self.center, axis=-1)

        rejected = np.zeros(valid.shape, dtype=bool)
        if self.near_radius != 0:
            rejected |= distance < self.near_radius
        if self.far_radius != 0:
            rejected |= distance > self.far_radius

        rejected &= valid

        tile[rejected] = 0

        with self._lock:
            self.num_total += int(valid.sum())
            self.num_rejected += int(rejected.sum())

        return tile

    def __str__(self) -> str:

        return (f'Universe radius filter: rejected {self.num_rejected} of {self.num_total} points outside '
                f'[{self.near_radius}, {self.far_radius}] from {self.center.tolist()}')


class TriangulationView:
    """
    The lazy point cloud of a multiview system.

    :param disparities: The n-1 disparities from the aligned left image to each other aligned image
    :param transforms: The n transforms from the aligned images back to the native images, left first
    :param stereo_model: The model intersecting the n native pixels
    :param is_map_projected: Whether the images were map projected, in which case each box works on primed copies of
                             the transforms
    :raises ValueError: if the disparities differ in size or the number of transforms is not one more than the number
                        of disparities
    """

    def __init__(self, disparities: Sequence[DisparityMap], transforms: Sequence[ImageTransform],
                 stereo_model: StereoModel, is_map_projected: bool = False):

        if not disparities:
            raise ValueError("At least one disparity is needed for triangulation.")

        for disparity in disparities[1:]:
            if disparity.full_size != disparities[0].full_size:
                raise ValueError("In multi-view triangulation, all disparities must have the same dimensions.")

        if len(transforms) != len(disparities) + 1:
            raise ValueError("In multi-view triangulation, the number of disparities must be one less than the "
                             "number of images.")

        self.disparities = list(disparities)
        self.transforms = list(transforms)
        self.stereo_model = stereo_model
        self.is_map_projected = is_map_projected

    @property
    def cols(self) -> int:
        return self.disparities[0].cols

    @property
    def rows(self) -> int:
        return self.disparities[0].rows

    def pixel(self, col: int, row: int) -> DOUBLE_ARRAY:
        """
        The point and error vector of aligned left pixel ``(col, row)``.
        """

        pixels = [self.transforms[0].reverse((col, row))]

        for disparity, transform in zip(self.disparities, self.transforms[1:]):

            offset = disparity(col, row)

            if offset is None:
                pixels.append(NAN_PIXEL.copy())
            else:
                pixels.append(transform.reverse((col + offset[0], row + offset[1])))

        point, error = self.stereo_model(pixels)

        return np.concatenate([point, error])

    def prerasterize(self, bbox: BBox) -> 'TriangulationView':
        """
        A view of the same cloud with the disparities of ``bbox`` in memory.

        For map projected images the new view also owns copies of the transforms.  The left copy caches the DEM under
        ``bbox`` and each other copy caches the DEM under ``bbox`` moved by the range of its disparity.
        """

        clips = [disparity.crop(bbox) for disparity in self.disparities]

        if not self.is_map_projected:
            return TriangulationView(clips, self.transforms, self.stereo_model, self.is_map_projected)

        transforms = [transform.copy() for transform in self.transforms]

        transforms[0].reverse_bbox(bbox)

        for clip, transform in zip(clips, transforms[1:]):

            disparity_range = clip.disparity_range()
            if disparity_range is None:
                continue

            # the pixels of the other image this box touches
            transform.reverse_bbox(BBox(bbox.min_col + disparity_range.min_col,
                                        bbox.min_row + disparity_range.min_row,
                                        bbox.max_col + disparity_range.max_col + 1,
                                        bbox.max_row + disparity_range.max_row + 1))

        return TriangulationView(clips, transforms, self.stereo_model, self.is_map_projected)

    def rasterize(self, bbox: BBox) -> DOUBLE_ARRAY:
        """
        Compute the pixels of ``bbox``.

        :return: The ``height x width x 6`` results
        """

        view = self.prerasterize(bbox)

        out = np.zeros((bbox.height, bbox.width, 6))

        for row in range(bbox.height):
            for col in range(bbox.width):
                out[row, col] = view.pixel(bbox.min_col + col, bbox.min_row + row)

        return out


class PointCloud:
    """
    A :class:`TriangulationView` with its universe radius filter, computed on tiles.

    :param view: The view
    :param universe_filter: The filter applied to each tile.  Defaults to no filtering
    :param tile_size: The size of the square tiles
    :param num_threads: The number of threads computing tiles.  ``None`` uses one per processor
    """

    def __init__(self, view: TriangulationView, universe_filter: UniverseRadiusFilter | None = None,
                 tile_size: int = 256, num_threads: int | None = None):

        self.view = view
        self.universe_filter = universe_filter if universe_filter is not None else UniverseRadiusFilter()
        self.tile_size = tile_size
        self.num_threads = num_threads

    @property
    def cols(self) -> int:
        return self.view.cols

    @property
    def rows(self) -> int:
        return self.view.rows

    def rasterize(self, bbox: BBox) -> DOUBLE_ARRAY:
        return self.universe_filter.filter_tile(self.view.rasterize(bbox))

    def tiles(self, bbox: BBox | None = None) -> list[BBox]:
        """
        The tiles covering ``bbox``, or the whole cloud.  Tiles stay aligned to multiples of the tile size.
        """

        full = BBox(0, 0, self.cols, self.rows)
        if bbox is not None:
            full = full.crop(bbox)

        tiles = [tile.crop(full) for tile in tile_boxes(self.cols, self.rows, self.tile_size)]

        return [tile for tile in tiles if not tile.empty]

    def rasterize_all(self, bbox: BBox | None = None) -> DOUBLE_ARRAY:
        """
        Compute every pixel of ``bbox``, or of the whole cloud, one tile per task.

        :return: The ``height x width x 6`` cloud
        """

        full = BBox(0, 0, self.cols, self.rows)
        if bbox is not None:
            full = full.crop(bbox)

        tiles = self.tiles(full)

        if self.num_threads == 1:
            results = [self.rasterize(tile) for tile in tiles]
        else:
            with ThreadPool(self.num_threads) as pool:
                results = pool.map(self.rasterize, tiles)

        out = np.zeros((full.height, full.width, 6))

        for tile, result in zip(tiles, results):
            out[tile.min_row - full.min_row:tile.max_row - full.min_row,
                tile.min_col - full.min_col:tile.max_col - full.min_col] = result

        return out


@dataclass
class TriangulationOptions(UserOptions):

    stereo_session: str = "pinhole"
    """
    The name of the stereo session.  Sessions whose name contains ``map`` work on map projected images
    """

    universe_center: str = "none"
    """
    Where the universe radius is measured from: ``"none"`` turns the filter off, ``"camera"`` uses the center of the
    left camera and ``"zero"`` uses the origin
    """

    near_universe_radius: float = 0.0
    """
    Points closer than this to the universe center are removed.  Zero turns the check off
    """

    far_universe_radius: float = 0.0
    """
    Points farther than this from the universe center are removed.  Zero turns the check off
    """

    tile_size: int = 256
    """
    The size of the square tiles the cloud is computed and searched in
    """

    num_threads: int | None = None
    """
    The number of threads computing tiles.  ``None`` uses one per processor
    """

    save_double_precision: bool = False
    """
    Write the cloud as float64 without subtracting the cloud center
    """

    compute_error_vector: bool = False
    """
    Write the full error vector instead of its length
    """

    use_least_squares: bool = False
    """
    Refine each triangulated point by minimizing its reprojection error
    """

    min_triangulation_angle: float = 0.0
    """
    Pixels whose rays meet at a smaller angle in degrees are not triangulated
    """


class StereoTriangulator(UserOptionConfigured[TriangulationOptions], TriangulationOptions):
    """
    Builds and writes the point cloud of a multiview system.
    """

    def __init__(self, options: TriangulationOptions | None = None):
        """
        :param options: The options dataclass to configure the class with
        """

        super().__init__(TriangulationOptions, options=options)

    @property
    def is_map_projected(self) -> bool:
        return "map" in self.stereo_session

    def universe_filter(self, cameras: Sequence[CameraModel]) -> UniverseRadiusFilter:
        """
        The universe radius filter for the configured center.

        If the center of the left camera cannot be found a warning is issued and the filter does nothing.

        :raises ValueError: if the center is unknown, or is the camera for an RPC session
        """

        if self.universe_center not in UNIVERSE_CENTERS:
            raise ValueError(f'The universe center must be one of {UNIVERSE_CENTERS}, not {self.universe_center}')

        if self.universe_center == "camera":

            if self.stereo_session == "rpc":
                raise ValueError("Stereo with RPC cameras cannot have the camera as the universe center.")

            try:
                center = cameras[0].camera_center((0, 0))
            except ValueError as error:
                _LOGGER.info(str(error))
                warnings.warn("Could not find the camera center. "
                              "Will not be able to filter triangulated points by radius.")
                return UniverseRadiusFilter()

            return UniverseRadiusFilter(center, self.near_universe_radius, self.far_universe_radius)

        if self.universe_center == "zero":
            return UniverseRadiusFilter((0, 0, 0), self.near_universe_radius, self.far_universe_radius)

        return UniverseRadiusFilter()

    def build(self, disparities: Sequence[DisparityMap], transforms: Sequence[ImageTransform],
              cameras: Sequence[CameraModel]) -> PointCloud:
        """
        Build the filtered cloud.

        :param disparities: The n-1 disparities from the aligned left image
        :param transforms: The n transforms back to the native images
        :param cameras: The n cameras of the native images
        """

        if len(cameras) != len(transforms):
            raise ValueError(f'Got {len(cameras)} cameras for {len(transforms)} images')

        if self.is_map_projected:
            _LOGGER.info("Inputs are map projected")

        angle_tolerance = robust_1_minus_cos(np.deg2rad(self.min_triangulation_angle))

        stereo_model = StereoModel(cameras, self.use_least_squares, angle_tolerance)

        view = TriangulationView(disparities, transforms, stereo_model, self.is_map_projected)

        return PointCloud(view, self.universe_filter(cameras), self.tile_size, self.num_threads)

    def cloud_center(self, cloud: PointCloud, center_file: PATH | None = None,
                     crop_box: BBox | None = None) -> DOUBLE_ARRAY | None:
        """
        The center to subtract from the cloud.

        A center already in ``center_file`` is reused unless the cloud is cropped.  A computed center is written to
        ``center_file``.

        :return: The center, or ``None`` when writing in double precision
        """

        if self.save_double_precision:
            return None

        if center_file is not None and crop_box is None:
            center = read_point(center_file)
            if center is not None:
                return center

        center = find_point_cloud_center(self.tile_size, cloud, crop_box)

        if center_file is not None:
            write_point(center_file, center)

        return center

    def triangulate(self, output_prefix: PATH, disparities: Sequence[DisparityMap],
                    transforms: Sequence[ImageTransform], cameras: Sequence[CameraModel],
                    crop_box: BBox | None = None, crs=None, transform=None) -> Path:
        """
        Triangulate and write ``<output_prefix>-PC.tif``, with its center in ``<output_prefix>-PC-center.txt``.

        :param crop_box: Only triangulate the pixels in this box
        :param crs: The coordinate system of the aligned left image, if it has one
        :param transform: The georeference of the aligned left image, if it has one
        :return: The path of the written cloud
        """

        cloud = self.build(disparities, transforms, cameras)

        center = self.cloud_center(cloud, f'{output_prefix}-PC-center.txt', crop_box)

        points = cloud.rasterize_all(crop_box)

        if self.compute_error_vector:
            if len(cameras) > 2:
                warnings.warn("For more than two cameras, the error vector between rays is not meaningful. "
                              "Setting it to (err_len, 0, 0).")
        else:
            points = point_and_error_norm(points)

        point_cloud_file = Path(f'{output_prefix}-PC.tif')

        write_point_cloud(point_cloud_file, points, center, self.save_double_precision, crs, transform)

        _LOGGER.info(str(cloud.universe_filter))

        return point_cloud_file
