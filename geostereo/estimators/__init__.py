"""
This package provides the least squares machinery used by the alignment, jitter and intersection routines.

* :class:`.LMAEstimator` is a small dense Levenberg-Marquardt solver for a residual function of a state vector.  It is
  used where a handful of parameters are refined, such as intersecting a ray with a DEM.
* :class:`.Problem` is a sparse problem of residual blocks over views into a :class:`.ParameterStore`, solved with
  :func:`scipy.optimize.least_squares`.
* :class:`.DavenportQMethod` solves for the rotation between two sets of vectors.
"""

from geostereo.estimators.davenport_q_method import DavenportQMethod
from geostereo.estimators.lma import LMAEstimator, LMAOptions
from geostereo.estimators.problem import Problem, ResidualBlock, SolverOptions, SolverSummary, cauchy_scale


__all__ = ['DavenportQMethod', 'LMAEstimator', 'LMAOptions', 'Problem', 'ResidualBlock', 'SolverOptions',
           'SolverSummary', 'cauchy_scale']
