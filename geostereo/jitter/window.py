r"""
This module finds which trajectory samples of a linescan camera can affect an observation.

A linescan pose at time :math:`t` is interpolated from samples :math:`k-3` through :math:`k+4` where
:math:`k=\lfloor(t-t_0)/\Delta t\rfloor`.  An observation is given a margin of lines on each side, since the point and
pixel move during the solve, and the union of the samples touched over that time interval forms a
:class:`TimeWindow`.
"""

from dataclasses import dataclass

import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY
from geostereo.camera_models import CSMLinescanModel, to_csm_pixel


NUM_INTERP_SAMPLES: int = 8
"""
The number of samples the trajectory interpolation uses
"""

LINE_MARGIN: float = 5.0
"""
Lines added beyond the largest expected reprojection error when forming the time interval of an observation
"""


def calc_index_bounds(time1: float, time2: float, t0: float, dt: float, num_values: int) -> tuple[int, int]:
    """
    The range of sample indices needed to interpolate anywhere between ``time1`` and ``time2``.

    :param time1: One end of the time interval
    :param time2: The other end of the time interval
    :param t0: The time of the first sample
    :param dt: The sample spacing
    :param num_values: The number of samples
    :return: The first index and one past the last index, clamped to the samples
    :raises ValueError: if the range is empty
    """

    index1 = int((time1 - t0) / dt)
    index2 = int((time2 - t0) / dt)

    beg = min(index1, index2) - NUM_INTERP_SAMPLES // 2 + 1
    end = max(index1, index2) + NUM_INTERP_SAMPLES // 2 + 1

    beg = max(0, beg)
    end = min(end, num_values)

    if beg >= end:
        raise ValueError("Book-keeping error in interpolation. Likely image order is different than camera order.")

    return beg, end


@dataclass
class TimeWindow:
    """
    A contiguous range ``[beg, end)`` of the rows of a sample array.
    """

    buffer: DOUBLE_ARRAY
    """
    The samples, one per row
    """

    beg: int
    end: int

    @property
    def stride(self) -> int:
        return self.buffer.shape[1]

    def __len__(self) -> int:
        return self.end - self.beg

    def blocks(self) -> list[DOUBLE_ARRAY]:
        """
        A view of each sample in the window, for use as parameter blocks.
        """

        return [self.buffer[index] for index in range(self.beg, self.end)]

    def write(self, target: DOUBLE_ARRAY, values) -> None:
        """
        Overwrite the window rows of ``target`` with ``values``, one sample each.
        """

        for index, value in zip(range(self.beg, self.end), values):
            target[index] = value


def time_bounds(camera: CSMLinescanModel, pixel: ARRAY_LIKE, line_extra: float) -> tuple[float, float]:
    """
    The times at which the lines ``line_extra`` before and after ``pixel`` were exposed.
    """

    pixel = np.asarray(pixel, dtype=np.float64)

    time1 = camera.get_image_time(to_csm_pixel(pixel - [0.0, line_extra]))
    time2 = camera.get_image_time(to_csm_pixel(pixel + [0.0, line_extra]))

    return time1, time2


def trajectory_windows(camera: CSMLinescanModel, time1: float, time2: float) -> tuple[TimeWindow, TimeWindow]:
    """
    The quaternion and position windows of ``camera`` that can affect poses between ``time1`` and ``time2``.
    """

    quaternion_bounds = calc_index_bounds(time1, time2, camera.t0_quat, camera.dt_quat, camera.num_quaternions)
    position_bounds = calc_index_bounds(time1, time2, camera.t0_ephem, camera.dt_ephem, camera.num_positions)

    return TimeWindow(camera.quaternions, *quaternion_bounds), TimeWindow(camera.positions, *position_bounds)
