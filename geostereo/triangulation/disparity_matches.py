"""
This module turns a disparity between an aligned pair of images back into correspondences between the native images.

:func:`compute_matches_from_disp` samples the disparity into interest point matches for bundle adjustment and
:func:`unalign_disparity` resamples the whole disparity onto the grid of the native left image.

In the triplet mode of :func:`compute_matches_from_disp` the matches are placed on a regular grid of the native left
image in a first pass and of the native right image in a second pass.  When several images overlap, an image that is
on the left of one pair and on the right of another then gets interest points at the same places in both pairs, so
more points are seen in three or more images.
"""

import logging

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from geostereo._typing import DOUBLE_ARRAY, PATH
from geostereo.triangulation.image_transforms import ImageTransform
from geostereo.triangulation.io import write_match_file
from geostereo.triangulation.raster import DisparityMap
from geostereo.utilities.mixin_classes import UserOptionConfigured
from geostereo.utilities.options import UserOptions


_LOGGER: logging.Logger = logging.getLogger(__name__)


def _round(value: float) -> int:
    """
    Round to the nearest integer with halves away from zero.
    """

    return int(np.sign(value) * np.floor(abs(value) + 0.5))


def _check_pair(disparities: Sequence[DisparityMap], transforms: Sequence[ImageTransform]) -> None:

    if len(disparities) != 1 or len(transforms) != 2:
        raise ValueError("Expecting two images and one disparity.")


def _binned_matches(disparity: DisparityMap, left_transform: ImageTransform, right_transform: ImageTransform,
                    max_num_matches: int) -> tuple[list, list]:

    num_pixels = float(disparity.cols) * float(disparity.rows)
    bin_len = np.sqrt(num_pixels / min(float(max_num_matches), num_pixels))

    len_x = max(1, _round(disparity.cols / bin_len))
    len_y = max(1, _round(disparity.rows / bin_len))

    left, right = [], []

    for bin_x in range(len_x):

        # the disparity at the center of the bin
        col = _round((bin_x + 0.5) * bin_len)

        for bin_y in range(len_y):

            row = _round((bin_y + 0.5) * bin_len)

            if col >= disparity.cols or row >= disparity.rows:
                continue

            offset = disparity(col, row)
            if offset is None:
                continue

            left_pix = left_transform.reverse((col, row))
            right_pix = right_transform.reverse((col + offset[0], row + offset[1]))

            if np.isfinite(left_pix).all() and np.isfinite(right_pix).all():
                left.append(left_pix)
                right.append(right_pix)

    return left, right


def _grid_bin_len(image_size: tuple[int, int], max_num_matches: int) -> int:

    num_pixels = float(image_size[0]) * float(image_size[1])
    bin_len = _round(np.sqrt(num_pixels / min(float(max_num_matches), num_pixels)))

    if bin_len < 1:
        raise ValueError("Expecting bin_len >= 1.")

    return bin_len


def _triplet_matches(disparity: DisparityMap, left_transform: ImageTransform, right_transform: ImageTransform,
                     max_num_matches: int, left_image_size: tuple[int, int],
                     right_image_size: tuple[int, int]) -> tuple[list, list]:

    left, right = [], []
    left_done, right_done = set(), set()

    def add(left_pix: DOUBLE_ARRAY, right_pix: DOUBLE_ARRAY):

        left_key = (float(left_pix[0]), float(left_pix[1]))
        right_key = (float(right_pix[0]), float(right_pix[1]))

        # an interest point added twice is dropped by bundle adjustment along with its copy
        if left_key in left_done or right_key in right_done:
            return

        left_done.add(left_key)
        right_done.add(right_key)

        left.append(np.array(left_key))
        right.append(np.array(right_key))

    # left pixels on the grid
    bin_len = _grid_bin_len(left_image_size, max_num_matches)

    len_x = max(1, _round(left_image_size[0] / bin_len))
    len_y = max(1, _round(left_image_size[1] / bin_len))

    for bin_x in range(len_x + 1):

        col = bin_x * bin_len

        for bin_y in range(len_y + 1):

            row = bin_y * bin_len

            if col >= left_image_size[0] or row >= left_image_size[1]:
                continue

            aligned = left_transform.forward((col, row))
            if not np.isfinite(aligned).all():
                continue

            aligned_col, aligned_row = _round(aligned[0]), _round(aligned[1])

            if not (0 <= aligned_col < disparity.cols and 0 <= aligned_row < disparity.rows):
                continue

            offset = disparity(aligned_col, aligned_row)
            if offset is None:
                continue

            right_pix = right_transform.reverse((aligned_col + offset[0], aligned_row + offset[1]))
            if not np.isfinite(right_pix).all():
                continue

            add(np.array([col, row], dtype=np.float64), right_pix)

    # right pixels on the grid, which needs every disparity since it goes from left to right
    _LOGGER.info("Doing a second pass over the whole disparity")

    bin_len = _grid_bin_len(right_image_size, max_num_matches)

    for col in range(disparity.cols):
        for row in range(disparity.rows):

            offset = disparity(col, row)
            if offset is None:
                continue

            left_pix = left_transform.reverse((col, row))
            right_pix = right_transform.reverse((col + offset[0], row + offset[1]))

            if not (np.isfinite(left_pix).all() and np.isfinite(right_pix).all()):
                continue

            right_pix = np.array([_round(right_pix[0]), _round(right_pix[1])], dtype=np.float64)

            if int(right_pix[0]) % bin_len != 0 or int(right_pix[1]) % bin_len != 0:
                continue

            add(left_pix, right_pix)

    return left, right


def compute_matches_from_disp(disparities: Sequence[DisparityMap], transforms: Sequence[ImageTransform],
                              max_num_matches: int, gen_triplets: bool = False,
                              left_image_size: tuple[int, int] | None = None,
                              right_image_size: tuple[int, int] | None = None) -> tuple[DOUBLE_ARRAY, DOUBLE_ARRAY]:
    """
    Sample up to about ``max_num_matches`` matches between the native left and right images from a disparity.

    Without ``gen_triplets`` the disparity is split into square bins and the disparity at the center of each bin gives
    one match.

    :param disparities: The one disparity of the pair
    :param transforms: The left and right transforms
    :param max_num_matches: The number of matches wanted
    :param gen_triplets: Place the matches on grids of the native images
    :param left_image_size: The (columns, rows) of the native left image.  Needed with ``gen_triplets``
    :param right_image_size: The (columns, rows) of the native right image.  Needed with ``gen_triplets``
    :return: The n x 2 left pixels and the matching n x 2 right pixels
    :raises ValueError: if there is not exactly one disparity and two transforms
    """

    _check_pair(disparities, transforms)

    if max_num_matches < 1:
        raise ValueError(f'The number of matches must be positive, not {max_num_matches}')

    _LOGGER.info("Computing interest point matches based on disparity.")

    if gen_triplets:

        if left_image_size is None or right_image_size is None:
            raise ValueError("The sizes of both images are needed to place triplet friendly matches")

        left, right = _triplet_matches(disparities[0], transforms[0], transforms[1], max_num_matches,
                                       left_image_size, right_image_size)

    else:
        left, right = _binned_matches(disparities[0], transforms[0], transforms[1], max_num_matches)

    _LOGGER.info(f'Determined {len(left)} interest point matches from disparity.')

    return np.array(left, dtype=np.float64).reshape(-1, 2), np.array(right, dtype=np.float64).reshape(-1, 2)


def unalign_disparity(disparities: Sequence[DisparityMap], transforms: Sequence[ImageTransform],
                      left_image_size: tuple[int, int]) -> DisparityMap:
    """
    Resample a disparity onto the grid of the native left image.

    Each valid disparity gives the offset between its native left and right pixels.  That offset is added to the
    3x3 block of native left pixels around the rounded native left pixel, and each native pixel gets the average of
    what it received.  Pixels that received nothing are invalid.

    :param disparities: The one disparity of the pair
    :param transforms: The left and right transforms
    :param left_image_size: The (columns, rows) of the native left image
    :return: The disparity between the native images
    :raises ValueError: if there is not exactly one disparity and two transforms
    """

    _check_pair(disparities, transforms)

    disparity = disparities[0]
    left_transform, right_transform = transforms

    cols, rows = int(left_image_size[0]), int(left_image_size[1])

    sums = np.zeros((rows, cols, 2))
    counts = np.zeros((rows, cols), dtype=int)

    _LOGGER.info("Unwarping the disparity.")

    for col in range(disparity.cols):
        for row in range(disparity.rows):

            offset = disparity(col, row)
            if offset is None:
                continue

            left_pix = left_transform.reverse((col, row))
            right_pix = right_transform.reverse((col + offset[0], row + offset[1]))

            direction = right_pix - left_pix
            if not np.isfinite(direction).all():
                continue

            center_col, center_row = _round(left_pix[0]), _round(left_pix[1])

            for local_col in range(max(center_col - 1, 0), min(center_col + 2, cols)):
                for local_row in range(max(center_row - 1, 0), min(center_row + 2, rows)):
                    sums[local_row, local_col] += direction
                    counts[local_row, local_col] += 1

    valid = counts > 0

    values = np.zeros((rows, cols, 2))
    values[valid] = sums[valid] / counts[valid, np.newaxis]

    return DisparityMap(values, valid)


@dataclass
class DisparityMatchOptions(UserOptions):

    num_matches: int = 0
    """
    The number of matches to sample from the disparity on bins.  Zero turns it off
    """

    triplets: int = 0
    """
    The number of matches to place on grids of the native images.  Zero turns it off
    """


class DisparityMatcher(UserOptionConfigured[DisparityMatchOptions], DisparityMatchOptions):
    """
    Writes the match file of a stereo pair from its disparity when asked to.
    """

    def __init__(self, options: DisparityMatchOptions | None = None):
        """
        :param options: The options dataclass to configure the class with
        """

        super().__init__(DisparityMatchOptions, options=options)

    def write_matches(self, match_file: PATH, disparities: Sequence[DisparityMap],
                      transforms: Sequence[ImageTransform], left_image_size: tuple[int, int] | None = None,
                      right_image_size: tuple[int, int] | None = None) -> int | None:
        """
        Compute and write the matches.

        :return: The number of matches written, or ``None`` if no matches were requested
        :raises ValueError: if both kinds of matches are requested
        """

        if self.num_matches > 0 and self.triplets > 0:
            raise ValueError("Cannot have both num_matches and triplets.")

        if self.num_matches > 0:
            left, right = compute_matches_from_disp(disparities, transforms, self.num_matches)
        elif self.triplets > 0:
            left, right = compute_matches_from_disp(disparities, transforms, self.triplets, True,
                                                    left_image_size, right_image_size)
        else:
            return None

        write_match_file(match_file, left, right)

        return left.shape[0]
