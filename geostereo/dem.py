"""
This module provides a digital elevation model (DEM) that can be sampled at body-fixed points.

The heights are read with :mod:`rasterio` and interpolated bilinearly between pixel centers with
:class:`scipy.interpolate.RegularGridInterpolator`.  Heights are measured above the :class:`.Datum` of the DEM.  Points
outside the DEM or near no-data pixels have a NaN height.
"""

import logging

from dataclasses import dataclass
from typing import Any

import numpy as np
import rasterio

from pyproj import CRS, Transformer
from scipy.interpolate import RegularGridInterpolator

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY, PATH
from geostereo.geodesy import WGS84, Datum


_LOGGER: logging.Logger = logging.getLogger(__name__)


@dataclass
class DEMWindow:
    """
    A rectangular piece of a DEM held in memory.
    """

    row_min: int
    row_max: int
    col_min: int
    col_max: int
    interpolator: RegularGridInterpolator

    def contains(self, row: float, col: float) -> bool:
        return self.row_min <= row <= self.row_max and self.col_min <= col <= self.col_max


class DEM:
    """
    A gridded height model.

    :param heights: The heights above the datum, one per pixel
    :param transform: The affine transform from (column, row) pixel corner coordinates to map coordinates, as
                      :mod:`rasterio` reports it
    :param crs: The coordinate system of the map coordinates.  Defaults to longitude and latitude on ``datum``
    :param datum: The datum the heights are measured from
    :param nodata: The value marking pixels without a height
    """

    def __init__(self, heights: ARRAY_LIKE, transform: Any, crs: CRS | str | None = None, datum: Datum = WGS84,
                 nodata: float | None = None):

        self.heights = np.array(heights, dtype=np.float64)
        self.transform = transform
        self.datum = datum
        self.crs = CRS.from_user_input(crs) if crs is not None else datum.geographic_crs
        self.nodata = nodata

        if nodata is not None:
            self.heights[self.heights == nodata] = np.nan

        rows = np.arange(self.heights.shape[0], dtype=np.float64)
        cols = np.arange(self.heights.shape[1], dtype=np.float64)

        self._interpolator = RegularGridInterpolator((rows, cols), self.heights, bounds_error=False,
                                                     fill_value=np.nan)

        self._to_map = None
        if not self.crs.is_geographic:
            self._to_map = Transformer.from_crs(datum.geographic_crs, self.crs, always_xy=True)

    @classmethod
    def from_file(cls, file: PATH, datum: Datum = WGS84) -> 'DEM':
        """
        Read the first band of a raster.

        :raises rasterio.errors.RasterioIOError: if the file cannot be read
        """

        _LOGGER.info(f'Reading DEM: {file}')

        with rasterio.open(file) as src:
            heights = src.read(1)
            return cls(heights, src.transform, src.crs, datum, src.nodata)

    def map_to_grid(self, x: float, y: float) -> tuple[float, float]:
        """
        The (row, column) grid coordinates of map coordinates ``(x, y)``, with pixel centers at integers.
        """

        col, row = ~self.transform * (x, y)

        return row - 0.5, col - 0.5

    def window(self, row_min: int, row_max: int, col_min: int, col_max: int) -> 'DEMWindow | None':
        """
        A copy of the rows and columns ``[row_min, row_max]`` and ``[col_min, col_max]`` of the DEM.

        The window is clamped to the DEM.  Inside the window it gives the same heights as the full DEM, since its grid
        keeps the absolute pixel coordinates.

        :return: The window, or ``None`` if it does not overlap the DEM
        """

        row_min, col_min = max(int(row_min), 0), max(int(col_min), 0)
        row_max = min(int(row_max), self.heights.shape[0] - 1)
        col_max = min(int(col_max), self.heights.shape[1] - 1)

        if row_max - row_min < 1 or col_max - col_min < 1:
            return None

        interpolator = RegularGridInterpolator((np.arange(row_min, row_max + 1, dtype=np.float64),
                                                np.arange(col_min, col_max + 1, dtype=np.float64)),
                                               self.heights[row_min:row_max + 1, col_min:col_max + 1].copy(),
                                               bounds_error=False, fill_value=np.nan)

        return DEMWindow(row_min, row_max, col_min, col_max, interpolator)

    def height_at_map(self, x: float, y: float, window: 'DEMWindow | None' = None) -> float:
        """
        The interpolated height at map coordinates ``(x, y)``.

        :param window: A window of the DEM to read from when it holds the point
        """

        row, col = self.map_to_grid(x, y)

        interpolator = self._interpolator
        if window is not None and window.contains(row, col):
            interpolator = window.interpolator

        return float(interpolator([[row, col]])[0])

    def cartesian_to_map(self, xyz: ARRAY_LIKE) -> tuple[float, float, float]:
        """
        The map coordinates and the height above the datum of a body-fixed point.
        """

        lon, lat, height = self.datum.cartesian_to_geodetic(xyz)

        if self._to_map is not None:
            x, y = self._to_map.transform(lon, lat)
        else:
            x, y = lon, lat

        return float(x), float(y), float(height)

    def map_to_cartesian(self, x: float, y: float, height: float) -> DOUBLE_ARRAY:
        """
        The body-fixed point at map coordinates ``(x, y)`` and ``height`` above the datum.
        """

        if self._to_map is not None:
            lon, lat = self._to_map.transform(x, y, direction='INVERSE')
        else:
            lon, lat = x, y

        return self.datum.geodetic_to_cartesian([lon, lat, height])

    def height_above_dem(self, xyz: ARRAY_LIKE) -> float:
        """
        The height of a body-fixed point above the DEM surface, NaN if the DEM has no height there.
        """

        x, y, height = self.cartesian_to_map(xyz)

        return height - self.height_at_map(x, y)

    def xyz_at_map(self, x: float, y: float, window: 'DEMWindow | None' = None) -> DOUBLE_ARRAY:
        """
        The body-fixed point on the DEM surface at map coordinates ``(x, y)``.  It is NaN where the DEM has no height.
        """

        return self.map_to_cartesian(x, y, self.height_at_map(x, y, window))
