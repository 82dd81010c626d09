r"""
This module provides the transforms between the native pixels of an image and the pixels of the aligned image the
disparity was computed on.

:meth:`~ImageTransform.forward` goes from native to aligned pixels and :meth:`~ImageTransform.reverse` goes back.
Triangulation only needs :meth:`~ImageTransform.reverse`.

For images that were map projected onto a DEM the aligned pixels are pixels of the map, and going back to the camera
means finding the DEM height under the map pixel and projecting the surface point into the camera.  A
:class:`MapProjectTransform` can hold an in memory window of the DEM for the pixels it is about to reverse, which is
primed by :meth:`~ImageTransform.reverse_bbox`.  The window makes a transform unsafe to share between threads, so
every tile works on its own :meth:`~ImageTransform.copy`.
"""

import copy

from abc import ABCMeta, abstractmethod
from typing import Any

import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY
from geostereo.camera_models import CameraModel
from geostereo.dem import DEM, DEMWindow
from geostereo.dem_intersection import DEMIntersectionOptions, camera_pixel_to_dem_xyz
from geostereo.triangulation.raster import BBox


NAN_PIXEL: DOUBLE_ARRAY = np.array([np.nan, np.nan])
"""
The pixel returned where a transform has no answer
"""


DEM_WINDOW_MARGIN: int = 2
"""
The number of DEM pixels added on each side of a cached window
"""


class ImageTransform(metaclass=ABCMeta):
    """
    The interface of a transform between native and aligned pixels.
    """

    @abstractmethod
    def forward(self, pixel: ARRAY_LIKE) -> DOUBLE_ARRAY:
        """
        Map a native (column, row) pixel to the aligned image.
        """

    @abstractmethod
    def reverse(self, pixel: ARRAY_LIKE) -> DOUBLE_ARRAY:
        """
        Map an aligned (column, row) pixel back to the native image.
        """

    def reverse_bbox(self, bbox: BBox) -> None:
        """
        Prepare for reversing the pixels in ``bbox``.  Transforms without caches do nothing.
        """

    def copy(self) -> 'ImageTransform':
        return copy.copy(self)


class IdentityTransform(ImageTransform):
    """
    The transform of an image that was not aligned.
    """

    def forward(self, pixel: ARRAY_LIKE) -> DOUBLE_ARRAY:
        return np.array(pixel, dtype=np.float64)

    def reverse(self, pixel: ARRAY_LIKE) -> DOUBLE_ARRAY:
        return np.array(pixel, dtype=np.float64)


class HomographyTransform(ImageTransform):
    """
    A planar homography taking native pixels to aligned pixels.

    :param matrix: The 3x3 homography acting on homogeneous (column, row, 1) pixels
    """

    def __init__(self, matrix: ARRAY_LIKE):

        self.matrix = np.array(matrix, dtype=np.float64).reshape(3, 3)
        self.inverse = np.linalg.inv(self.matrix)

    @staticmethod
    def _apply(matrix: DOUBLE_ARRAY, pixel: ARRAY_LIKE) -> DOUBLE_ARRAY:

        homogeneous = matrix @ np.append(np.asarray(pixel, dtype=np.float64), 1.0)

        return homogeneous[:2] / homogeneous[2]

    def forward(self, pixel: ARRAY_LIKE) -> DOUBLE_ARRAY:
        return self._apply(self.matrix, pixel)

    def reverse(self, pixel: ARRAY_LIKE) -> DOUBLE_ARRAY:
        return self._apply(self.inverse, pixel)


class MapProjectTransform(ImageTransform):
    """
    The transform of an image map projected onto a DEM.

    The map shares the coordinate system of the DEM.

    :param camera: The camera of the native image
    :param dem: The DEM the image was projected onto
    :param image_transform: The affine transform from (column, row) pixel corners of the map projected image to map
                            coordinates, as :mod:`rasterio` reports it
    :param intersection_options: The settings used to intersect camera rays with the DEM in :meth:`forward`
    """

    def __init__(self, camera: CameraModel, dem: DEM, image_transform: Any,
                 intersection_options: DEMIntersectionOptions | None = None):

        self.camera = camera
        self.dem = dem
        self.image_transform = image_transform
        self.intersection_options = intersection_options

        self._window: DEMWindow | None = None

    def forward(self, pixel: ARRAY_LIKE) -> DOUBLE_ARRAY:

        xyz = camera_pixel_to_dem_xyz(self.camera, pixel, self.dem, self.intersection_options)

        if xyz is None:
            return NAN_PIXEL.copy()

        x, y, _ = self.dem.cartesian_to_map(xyz)

        col, row = ~self.image_transform * (x, y)

        return np.array([col - 0.5, row - 0.5])

    def reverse(self, pixel: ARRAY_LIKE) -> DOUBLE_ARRAY:

        x, y = self.image_transform * (float(pixel[0]) + 0.5, float(pixel[1]) + 0.5)

        xyz = self.dem.xyz_at_map(x, y, self._window)

        if not np.isfinite(xyz).all():
            return NAN_PIXEL.copy()

        try:
            return self.camera.point_to_pixel(xyz)
        except ValueError:
            return NAN_PIXEL.copy()

    def reverse_bbox(self, bbox: BBox) -> None:
        """
        Cache the window of the DEM under the map pixels in ``bbox``.
        """

        if bbox.empty:
            self._window = None
            return

        rows, cols = [], []
        for col in (bbox.min_col - 1, bbox.max_col + 1):
            for row in (bbox.min_row - 1, bbox.max_row + 1):
                dem_row, dem_col = self.dem.map_to_grid(*(self.image_transform * (col, row)))
                rows.append(dem_row)
                cols.append(dem_col)

        self._window = self.dem.window(int(np.floor(min(rows))) - DEM_WINDOW_MARGIN,
                                       int(np.ceil(max(rows))) + DEM_WINDOW_MARGIN,
                                       int(np.floor(min(cols))) - DEM_WINDOW_MARGIN,
                                       int(np.ceil(max(cols))) + DEM_WINDOW_MARGIN)

    def copy(self) -> 'MapProjectTransform':

        out = copy.copy(self)
        out._window = None

        return out
