"""
This module reads and writes the products of triangulation.

* The point cloud center is a text file holding the three coordinates of the center.
* Point clouds are 4 band (point and error length) or 6 band (point and error vector) GeoTIFFs.  Unless they are
  written in double precision the center is subtracted from every valid point and the bands are float32.
* Match files hold pairs of interest points in the little endian binary layout read by bundle adjustment: the number
  of left and right points as two unsigned 64 bit integers followed by one record per point.
"""

import logging

from pathlib import Path

import numpy as np
import rasterio

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY, PATH


_LOGGER: logging.Logger = logging.getLogger(__name__)


POINT_PRECISION: int = 18
"""
The number of significant digits written for each coordinate of a point
"""


INTEREST_POINT_DTYPE: np.dtype = np.dtype([('x', '<f4'), ('y', '<f4'), ('ix', '<i4'), ('iy', '<i4'),
                                           ('orientation', '<f4'), ('scale', '<f4'), ('interest', '<f4'),
                                           ('polarity', '?'), ('octave', '<u4'), ('scale_lvl', '<u4'),
                                           ('descriptor_size', '<u8')])
"""
The binary record of one interest point without a descriptor
"""


_COUNT_DTYPE: np.dtype = np.dtype('<u8')


def write_point(file: PATH, point: ARRAY_LIKE) -> None:
    """
    Write the three coordinates of ``point`` on one line, each followed by a space.
    """

    Path(file).write_text(''.join(f'{float(value):.{POINT_PRECISION}g} ' for value in np.ravel(point)) + '\n')


def read_point(file: PATH) -> DOUBLE_ARRAY | None:
    """
    Read a point written by :func:`write_point`.

    :return: The point, or ``None`` if the file does not exist or does not start with three numbers
    """

    try:
        tokens = Path(file).read_text().split()
    except OSError:
        return None

    try:
        return np.array([float(token) for token in tokens[:3]]) if len(tokens) >= 3 else None
    except ValueError:
        return None


def write_point_cloud(file: PATH, cloud: ARRAY_LIKE, center: ARRAY_LIKE | None = None,
                      double_precision: bool = False, crs=None, transform=None) -> None:
    """
    Write a point cloud raster.

    Zero points are missing pixels and are written unchanged.

    :param file: The GeoTIFF to write
    :param cloud: The ``rows x cols x bands`` cloud, with the point in the first three bands
    :param center: The center subtracted from each valid point.  It is ignored when writing in double precision
    :param double_precision: Write float64 bands holding the points as they are
    :param crs: The coordinate system of the left image, if it has one
    :param transform: The affine georeference of the left image, if it has one
    """

    cloud = np.array(cloud, dtype=np.float64)

    if cloud.ndim != 3 or cloud.shape[2] < 3:
        raise ValueError(f'A point cloud must be rows x cols x bands with at least 3 bands, not {cloud.shape}')

    if double_precision:
        dtype = 'float64'
    else:
        dtype = 'float32'

        if center is not None:
            valid = cloud[..., :3].any(axis=2)
            cloud[valid, :3] -= np.asarray(center, dtype=np.float64)

    _LOGGER.info(f'Writing point cloud: {file}')

    profile = {'driver': 'GTiff', 'width': cloud.shape[1], 'height': cloud.shape[0], 'count': cloud.shape[2],
               'dtype': dtype}

    if crs is not None:
        profile['crs'] = crs
    if transform is not None:
        profile['transform'] = transform

    with rasterio.open(file, 'w', **profile) as dst:
        dst.write(np.moveaxis(cloud, -1, 0).astype(dtype))


def read_point_cloud(file: PATH, center: ARRAY_LIKE | None = None) -> DOUBLE_ARRAY:
    """
    Read a point cloud raster, adding ``center`` back to each valid point.

    :return: The ``rows x cols x bands`` cloud
    """

    with rasterio.open(file) as src:
        cloud = np.moveaxis(src.read(), 0, -1).astype(np.float64)

    if center is not None:
        valid = cloud[..., :3].any(axis=2)
        cloud[valid, :3] += np.asarray(center, dtype=np.float64)

    return cloud


def _ip_records(pixels: DOUBLE_ARRAY) -> np.ndarray:

    records = np.zeros(pixels.shape[0], dtype=INTEREST_POINT_DTYPE)

    records['x'] = pixels[:, 0]
    records['y'] = pixels[:, 1]
    records['ix'] = pixels[:, 0].astype(np.int32)
    records['iy'] = pixels[:, 1].astype(np.int32)
    records['scale'] = 1
    records['polarity'] = False

    return records


def write_match_file(file: PATH, left: ARRAY_LIKE, right: ARRAY_LIKE) -> None:
    """
    Write matching left and right pixels as interest points.

    :param left: The n x 2 (column, row) left pixels
    :param right: The n x 2 (column, row) right pixels
    :raises ValueError: if the number of left and right pixels differ
    """

    left = np.asarray(left, dtype=np.float64).reshape(-1, 2)
    right = np.asarray(right, dtype=np.float64).reshape(-1, 2)

    if left.shape[0] != right.shape[0]:
        raise ValueError(f'Got {left.shape[0]} left and {right.shape[0]} right interest points')

    _LOGGER.info(f'Writing: {file}')

    with open(file, 'wb') as out:
        np.array([left.shape[0], right.shape[0]], dtype=_COUNT_DTYPE).tofile(out)
        _ip_records(left).tofile(out)
        _ip_records(right).tofile(out)


def read_match_file(file: PATH) -> tuple[DOUBLE_ARRAY, DOUBLE_ARRAY]:
    """
    Read the left and right pixels of a match file.

    Descriptors stored with the points are skipped.

    :return: The n x 2 left pixels and the m x 2 right pixels
    """

    data = Path(file).read_bytes()

    num_left, num_right = np.frombuffer(data, dtype=_COUNT_DTYPE, count=2)

    offset = 2 * _COUNT_DTYPE.itemsize

    pixels = []
    for count in (int(num_left), int(num_right)):

        side = np.empty((count, 2))

        for index in range(count):

            record = np.frombuffer(data, dtype=INTEREST_POINT_DTYPE, count=1, offset=offset)[0]
            side[index] = record['x'], record['y']

            offset += INTEREST_POINT_DTYPE.itemsize + int(record['descriptor_size']) * 4

        pixels.append(side)

    return pixels[0], pixels[1]
