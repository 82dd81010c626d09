r"""
This module provides a sparse nonlinear least squares problem built from residual blocks over parameter views.

Description
-----------

A :class:`Problem` collects residual blocks.  Each block is a cost function together with the list of parameter
blocks (numpy views, usually into a :class:`.ParameterStore` buffer) that it reads.  The cost function is called with
those views and returns its residual vector.  It must not modify the views.

When solved, the distinct non constant parameter blocks are gathered into one state vector which is handed to
:func:`scipy.optimize.least_squares`.  Before each evaluation the state is written back into the views, so the solver
is the only thing that ever modifies them and the final state is left in place when :meth:`Problem.solve` returns.
The Jacobian sparsity follows from which blocks each residual block reads.

A robust Cauchy loss may be attached to individual residual blocks.  The loss is applied by rescaling the residuals of
the block so that their sum of squares equals

.. math::
    \rho(s) = c^2\log\left(1 + s/c^2\right)

where :math:`s` is the plain sum of squares of the block and :math:`c` the robust threshold.
"""

import logging

from dataclasses import dataclass, field
from typing import Callable, Sequence

import numpy as np

from scipy.optimize import least_squares
from scipy.sparse import lil_matrix

from geostereo._typing import DOUBLE_ARRAY
from geostereo.utilities.options import UserOptions


_LOGGER: logging.Logger = logging.getLogger(__name__)


CostFunction = Callable[..., DOUBLE_ARRAY]
"""
A cost function takes the parameter block views as positional arguments and returns its residuals
"""


def cauchy_scale(residuals: DOUBLE_ARRAY, threshold: float) -> DOUBLE_ARRAY:
    """
    Rescale a block of residuals so its sum of squares is the Cauchy loss of the original sum of squares.
    """

    squared = float(residuals @ residuals)

    if squared == 0:
        return residuals

    c2 = threshold * threshold

    return residuals * np.sqrt(c2 * np.log1p(squared / c2) / squared)


@dataclass
class ResidualBlock:
    """
    A cost function and the parameter blocks it reads.
    """

    cost_function: CostFunction
    parameter_blocks: list[DOUBLE_ARRAY]
    num_residuals: int
    robust_threshold: float | None = None
    """
    The scale of the Cauchy loss for this block, or ``None`` for a plain squared loss
    """

    def evaluate(self) -> DOUBLE_ARRAY:
        residuals = np.asarray(self.cost_function(*self.parameter_blocks), dtype=np.float64).ravel()

        if residuals.size != self.num_residuals:
            raise ValueError(f'A cost function returned {residuals.size} residuals instead of {self.num_residuals}')

        if self.robust_threshold is not None:
            return cauchy_scale(residuals, self.robust_threshold)

        return residuals


@dataclass
class SolverOptions(UserOptions):

    max_iterations: int = 100
    """
    The maximum number of cost function evaluations (not counting those used for the Jacobian)
    """

    function_tolerance: float = 1e-8
    """
    The relative change in the cost below which the solve stops
    """

    parameter_tolerance: float = 1e-8
    """
    The relative change in the state below which the solve stops
    """

    gradient_tolerance: float = 1e-10
    """
    The gradient norm below which the solve stops
    """


@dataclass
class SolverSummary:
    """
    What happened in a call to :meth:`Problem.solve`.
    """

    initial_cost: float
    final_cost: float
    num_evaluations: int
    converged: bool
    message: str
    residuals: DOUBLE_ARRAY = field(repr=False)


def _block_key(block: DOUBLE_ARRAY) -> tuple[int, int]:
    return block.__array_interface__['data'][0], block.size


class Problem:
    """
    A nonlinear least squares problem over parameter views.
    """

    def __init__(self):

        self.residual_blocks: list[ResidualBlock] = []

        self._parameter_blocks: dict[tuple[int, int], DOUBLE_ARRAY] = {}
        self._constant: set[tuple[int, int]] = set()

    @property
    def num_residuals(self) -> int:
        return sum(block.num_residuals for block in self.residual_blocks)

    @property
    def num_parameter_blocks(self) -> int:
        return len(self._parameter_blocks)

    def add_residual_block(self, cost_function: CostFunction, parameter_blocks: Sequence[DOUBLE_ARRAY],
                           num_residuals: int, robust_threshold: float | None = None) -> ResidualBlock:
        """
        Register a cost function.

        :param cost_function: Called with ``parameter_blocks`` as positional arguments
        :param parameter_blocks: Views the cost function reads.  Views of the same memory are the same block
        :param num_residuals: The number of residuals the cost function returns
        :param robust_threshold: The scale of a Cauchy loss wrapped around the block, if any
        :return: The registered block
        """

        for block in parameter_blocks:

            if block.ndim != 1 or not block.flags.c_contiguous:
                raise ValueError('Parameter blocks must be contiguous 1D views')

            self._parameter_blocks.setdefault(_block_key(block), block)

        residual_block = ResidualBlock(cost_function, list(parameter_blocks), int(num_residuals), robust_threshold)
        self.residual_blocks.append(residual_block)

        return residual_block

    def set_parameter_block_constant(self, block: DOUBLE_ARRAY) -> None:
        """
        Keep a parameter block fixed during the solve.
        """

        self._constant.add(_block_key(block))

    def evaluate(self) -> DOUBLE_ARRAY:
        """
        The stacked residuals of every block at the current parameter values.
        """

        if not self.residual_blocks:
            return np.zeros(0)

        return np.concatenate([block.evaluate() for block in self.residual_blocks])

    def solve(self, options: SolverOptions | None = None) -> SolverSummary:
        """
        Minimize the sum of squares of the residuals, leaving the solution in the parameter views.
        """

        if options is None:
            options = SolverOptions()

        free = [(key, block) for key, block in self._parameter_blocks.items() if key not in self._constant]

        offsets = {}
        size = 0
        for key, block in free:
            offsets[key] = size
            size += block.size

        initial_residuals = self.evaluate()
        initial_cost = 0.5 * float(initial_residuals @ initial_residuals)

        if size == 0 or initial_residuals.size == 0:
            return SolverSummary(initial_cost, initial_cost, 0, True, 'nothing to solve', initial_residuals)

        sparsity = lil_matrix((initial_residuals.size, size), dtype=int)
        row = 0
        for residual_block in self.residual_blocks:
            for block in residual_block.parameter_blocks:
                key = _block_key(block)
                if key in offsets:
                    sparsity[row:row + residual_block.num_residuals,
                             offsets[key]:offsets[key] + block.size] = 1
            row += residual_block.num_residuals

        def scatter(state: DOUBLE_ARRAY):
            for key, block in free:
                block[:] = state[offsets[key]:offsets[key] + block.size]

        def fun(state: DOUBLE_ARRAY) -> DOUBLE_ARRAY:
            scatter(state)
            return self.evaluate()

        initial_state = np.concatenate([block for _, block in free])

        eps = np.finfo(np.float64).eps

        result = least_squares(fun, initial_state, jac_sparsity=sparsity, method='trf',
                               ftol=max(options.function_tolerance, eps),
                               xtol=max(options.parameter_tolerance, eps),
                               gtol=max(options.gradient_tolerance, eps),
                               max_nfev=options.max_iterations)

        scatter(result.x)

        summary = SolverSummary(initial_cost, float(result.cost), int(result.nfev), result.status > 0,
                                str(result.message), result.fun)

        _LOGGER.info(f'Solved {len(self.residual_blocks)} residual blocks over {size} parameters: cost '
                     f'{summary.initial_cost} -> {summary.final_cost} in {summary.num_evaluations} evaluations '
                     f'({summary.message})')

        return summary
