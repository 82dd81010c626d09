"""
This module provides the pixel boxes and the disparity maps the triangulation works on.

Pixels are addressed as (column, row) with the center of the first pixel at ``(0, 0)``.  Arrays are indexed
``[row, column]``.
"""

import logging

from dataclasses import dataclass

import numpy as np
import rasterio

from geostereo._typing import ARRAY_LIKE, BOOL_ARRAY, PATH


_LOGGER: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BBox:
    """
    An integer pixel box.  The minimum corner is included and the maximum corner is not.
    """

    min_col: int
    min_row: int
    max_col: int
    max_row: int

    @classmethod
    def from_size(cls, col: int, row: int, width: int, height: int) -> 'BBox':
        return cls(col, row, col + width, row + height)

    @property
    def width(self) -> int:
        return max(self.max_col - self.min_col, 0)

    @property
    def height(self) -> int:
        return max(self.max_row - self.min_row, 0)

    @property
    def empty(self) -> bool:
        return self.width == 0 or self.height == 0

    def crop(self, other: 'BBox') -> 'BBox':
        """
        The intersection of this box with ``other``.
        """

        return BBox(max(self.min_col, other.min_col), max(self.min_row, other.min_row),
                    min(self.max_col, other.max_col), min(self.max_row, other.max_row))

    def contains(self, col: int, row: int) -> bool:
        return self.min_col <= col < self.max_col and self.min_row <= row < self.max_row


def tile_boxes(cols: int, rows: int, tile_size: int) -> list[BBox]:
    """
    Split a ``cols`` by ``rows`` raster into boxes aligned to multiples of ``tile_size``, in row major order.
    """

    full = BBox(0, 0, cols, rows)

    return [BBox.from_size(col, row, tile_size, tile_size).crop(full)
            for row in range(0, rows, tile_size) for col in range(0, cols, tile_size)]


class DisparityMap:
    """
    A dense disparity from the left image to another image.

    Each pixel holds a 2D offset (along the columns then along the rows) and a flag saying whether the offset is valid.
    A map can be a crop of a larger one, in which case :attr:`origin` gives the (column, row) of its first pixel in
    the full raster and :attr:`full_size` the (columns, rows) of the full raster.

    :param values: The offsets as a ``rows x cols x 2`` array
    :param valid: The ``rows x cols`` validity flags.  Defaults to every finite offset
    """

    def __init__(self, values: ARRAY_LIKE, valid: ARRAY_LIKE | None = None, origin: tuple[int, int] = (0, 0),
                 full_size: tuple[int, int] | None = None):

        self.values = np.asarray(values, dtype=np.float32)

        if self.values.ndim != 3 or self.values.shape[2] != 2:
            raise ValueError(f'Disparity values must be rows x cols x 2, not {self.values.shape}')

        if valid is None:
            valid = np.isfinite(self.values).all(axis=2)

        self.valid: BOOL_ARRAY = np.asarray(valid, dtype=bool)

        if self.valid.shape != self.values.shape[:2]:
            raise ValueError("The disparity mask must have the same shape as the disparity")

        self.origin = (int(origin[0]), int(origin[1]))

        if full_size is None:
            full_size = (self.values.shape[1] + self.origin[0], self.values.shape[0] + self.origin[1])

        self.full_size = (int(full_size[0]), int(full_size[1]))

    @property
    def cols(self) -> int:
        return self.full_size[0]

    @property
    def rows(self) -> int:
        return self.full_size[1]

    @property
    def bbox(self) -> BBox:
        """
        The box of the full raster this map holds in memory
        """

        return BBox.from_size(self.origin[0], self.origin[1], self.values.shape[1], self.values.shape[0])

    def __call__(self, col: int, row: int) -> tuple[float, float] | None:
        """
        The offset at pixel ``(col, row)`` of the full raster, ``None`` if it is invalid or not held in memory.
        """

        local_col, local_row = col - self.origin[0], row - self.origin[1]

        if not (0 <= local_row < self.valid.shape[0] and 0 <= local_col < self.valid.shape[1]):
            return None

        if not self.valid[local_row, local_col]:
            return None

        offset = self.values[local_row, local_col]

        return float(offset[0]), float(offset[1])

    def crop(self, bbox: BBox) -> 'DisparityMap':
        """
        A copy of the part of the map inside ``bbox``, which keeps its place in the full raster.
        """

        box = bbox.crop(self.bbox)

        rows = slice(box.min_row - self.origin[1], box.min_row - self.origin[1] + box.height)
        cols = slice(box.min_col - self.origin[0], box.min_col - self.origin[0] + box.width)

        return DisparityMap(self.values[rows, cols].copy(), self.valid[rows, cols].copy(),
                            origin=(box.min_col, box.min_row), full_size=self.full_size)

    def disparity_range(self) -> BBox | None:
        """
        The integer box holding every valid offset, or ``None`` if no offset is valid.

        The maximum corner is included, matching the offsets themselves rather than a pixel span.
        """

        if not self.valid.any():
            return None

        good = self.values[self.valid]

        low = np.floor(good.min(axis=0)).astype(int)
        high = np.ceil(good.max(axis=0)).astype(int)

        return BBox(int(low[0]), int(low[1]), int(high[0]), int(high[1]))

    @classmethod
    def from_file(cls, file: PATH) -> 'DisparityMap':
        """
        Read a 3 band disparity raster: the column offset, the row offset and the validity flag.

        :raises ValueError: if the raster does not have 3 bands
        """

        _LOGGER.info(f'Reading disparity: {file}')

        with rasterio.open(file) as src:

            if src.count != 3:
                raise ValueError(f'The disparity {file} must have 3 bands, not {src.count}')

            bands = src.read()

        return cls(np.moveaxis(bands[:2], 0, -1), bands[2] != 0)

    def to_file(self, file: PATH) -> None:
        """
        Write the held pixels as a 3 band float32 raster with no georeference.
        """

        _LOGGER.info(f'Writing: {file}')

        bands = np.concatenate([np.moveaxis(self.values, -1, 0),
                                self.valid[np.newaxis].astype(np.float32)]).astype(np.float32)

        bands[:2, ~self.valid] = 0

        with rasterio.open(file, 'w', driver='GTiff', width=bands.shape[2], height=bands.shape[1], count=3,
                           dtype='float32') as dst:
            dst.write(bands)
