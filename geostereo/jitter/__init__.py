"""
This package builds the residuals that refine linescan trajectories to remove jitter.

A linescan pose is interpolated from a handful of neighboring trajectory samples, so each observation depends on a
small window of samples.  :mod:`.window` finds those windows, :mod:`.cost_functions` provides the residuals, and
:class:`.JitterCostFactory` adds them to a :class:`.Problem`.
"""

from geostereo.jitter.window import TimeWindow, calc_index_bounds, time_bounds, trajectory_windows
from geostereo.jitter.cost_functions import (BIG_PIXEL_VALUE, FrameReprojectionCost, LinescanReprojectionCost,
                                             QuaternionNormRegularizer, RigLinescanFrameReprojectionCost,
                                             RollYawRegularizer, linescan_to_curr_sensor_trans, satellite_to_world)
from geostereo.jitter.factory import JitterCostFactory, JitterOptions, normalize_quaternions


__all__ = ['TimeWindow', 'calc_index_bounds', 'time_bounds', 'trajectory_windows',
           'BIG_PIXEL_VALUE', 'FrameReprojectionCost', 'LinescanReprojectionCost', 'QuaternionNormRegularizer',
           'RigLinescanFrameReprojectionCost', 'RollYawRegularizer', 'linescan_to_curr_sensor_trans',
           'satellite_to_world', 'JitterCostFactory', 'JitterOptions', 'normalize_quaternions']
