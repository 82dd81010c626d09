r"""
This module provides a Levenberg-Marquardt estimator for small dense problems given as a residual function.

The estimator minimizes :math:`\mathbf{r}(\mathbf{x})^T\mathbf{r}(\mathbf{x})` by iterating

.. math::
    (\mathbf{J}^T\mathbf{J} + \lambda\,\text{diag}(\mathbf{J}^T\mathbf{J}))\mathbf{u} = -\mathbf{J}^T\mathbf{r}

with a forward difference Jacobian :math:`\mathbf{J}`.  The damping :math:`\lambda` starts at
:math:`0.001\,\text{tr}(\mathbf{J}^T\mathbf{J})/n`, is divided by 10 after each step that reduces the sum of squares and
multiplied by 10 after each step that increases it.

Convergence is reached when either

.. math::
    :nowrap:

    \begin{gather*}
    \left|\mathbf{r}_{pre}^T\mathbf{r}_{pre} - \mathbf{r}_{post}^T\mathbf{r}_{post}\right|
    \le(a_r+r_r\mathbf{r}_{pre}^T\mathbf{r}_{pre}) \\
    \text{all}\left[\left|\mathbf{u}\right|\le(a_s+r_s\left|\mathbf{x}_{pre}\right|)\right]
    \end{gather*}

If :attr:`~LMAOptions.max_divergence_steps` steps in a row fail to reduce the sum of squares, the current state cannot
be improved along the damped Gauss-Newton direction and is accepted as converged.  Only running out of iterations is
reported as a failure.

The implementation of the LMA in this class is inspired by
https://link.springer.com/article/10.1007/s40295-016-0091-3
"""

import logging
import warnings

from dataclasses import dataclass
from typing import Callable

import numpy as np

from geostereo._typing import ARRAY_LIKE, DOUBLE_ARRAY
from geostereo.utilities.mixin_classes import UserOptionConfigured
from geostereo.utilities.options import UserOptions


_LOGGER: logging.Logger = logging.getLogger(__name__)


@dataclass
class LMAOptions(UserOptions):

    max_iter: int = 20
    """
    The maximum number of iteration steps to attempt to reach convergence.
    """

    residual_atol: float = 1e-10
    """
    The absolute convergence tolerance for the sum of squares of the residual.
    """

    residual_rtol: float = 1e-10
    """
    The relative convergence tolerance for the sum of squares of the residual.
    """

    state_atol: float = 1e-10
    """
    The absolute convergence tolerance for the elements of the update vector.
    """

    state_rtol: float = 1e-10
    """
    The relative convergence tolerance for the elements of the update vector.
    """

    max_divergence_steps: int = 5
    """
    The maximum number of steps in a row that can diverge before breaking iteration
    """

    jacobian_step: float = 1e-7
    """
    The relative step used for the forward difference Jacobian
    """


class LMAEstimator(UserOptionConfigured[LMAOptions], LMAOptions):
    """
    A Levenberg-Marquardt estimator for a residual function of a state vector.

    Give the residual function at construction and call :meth:`estimate` with an initial guess.  After the call
    :attr:`successful`, :attr:`postfit_residuals` and :attr:`iterations` describe the result.
    """

    def __init__(self, residual_function: Callable[[DOUBLE_ARRAY], ARRAY_LIKE], options: LMAOptions | None = None):
        """
        :param residual_function: A function returning the residual vector for a state vector
        :param options: The options dataclass to configure the class with
        """

        super().__init__(LMAOptions, options=options)

        self.residual_function = residual_function

        self._successful: bool = False
        self._postfit_residuals: DOUBLE_ARRAY | None = None
        self._iterations: int = 0

    @property
    def successful(self) -> bool:
        """
        Whether the last call to :meth:`estimate` converged
        """

        return self._successful

    @property
    def postfit_residuals(self) -> DOUBLE_ARRAY | None:
        """
        The residuals at the solved state, or ``None`` if :meth:`estimate` has not been called
        """

        return self._postfit_residuals

    @property
    def iterations(self) -> int:
        """
        The number of iterations taken by the last call to :meth:`estimate`
        """

        return self._iterations

    def compute_residuals(self, state: DOUBLE_ARRAY) -> DOUBLE_ARRAY:
        return np.asarray(self.residual_function(state), dtype=np.float64).ravel()

    def compute_jacobian(self, state: DOUBLE_ARRAY, residuals: DOUBLE_ARRAY) -> DOUBLE_ARRAY:
        """
        The forward difference Jacobian of the residuals at ``state``.
        """

        jacobian = np.zeros((residuals.size, state.size), dtype=np.float64)

        for index in range(state.size):

            step = self.jacobian_step * max(abs(state[index]), 1.0)

            perturbed = state.copy()
            perturbed[index] += step

            jacobian[:, index] = (self.compute_residuals(perturbed) - residuals) / step

        return jacobian

    def estimate(self, initial_state: ARRAY_LIKE) -> DOUBLE_ARRAY:
        """
        Iterate from ``initial_state`` to convergence.

        :param initial_state: The initial guess
        :return: The solved state
        """

        state = np.array(initial_state, dtype=np.float64).ravel()

        prefit_residuals = self.compute_residuals(state)
        pre_ss = prefit_residuals @ prefit_residuals

        self._successful = False
        self._iterations = 0

        first = True
        lma_coefficient = 0.0
        n_diverge = 0

        for iteration in range(self.max_iter):

            self._iterations = iteration + 1

            jacobian = self.compute_jacobian(state, prefit_residuals)

            lhs = jacobian.T @ jacobian
            rhs = -jacobian.T @ prefit_residuals

            if first:
                lma_coefficient = 0.001 * np.trace(lhs) / jacobian.shape[1]
                first = False

            try:
                update_vec = np.linalg.solve(lhs + lma_coefficient * np.diag(np.diag(lhs)), rhs)
            except np.linalg.LinAlgError:
                update_vec = np.linalg.lstsq(lhs + lma_coefficient * np.diag(np.diag(lhs)), rhs, rcond=None)[0]

            new_state = state + update_vec

            postfit_residuals = self.compute_residuals(new_state)
            post_ss = postfit_residuals @ postfit_residuals
            resid_change = abs(pre_ss - post_ss)

            _LOGGER.debug(f'LMA iteration {iteration}: pre {pre_ss}, post {post_ss}, lambda {lma_coefficient}')

            if post_ss <= pre_ss and ((resid_change <= (self.residual_atol + self.residual_rtol * pre_ss)) or
                                      (np.abs(update_vec) <= (self.state_atol + self.state_rtol * np.abs(state))).all()):
                self._successful = True
                self._postfit_residuals = postfit_residuals
                return new_state

            elif pre_ss < post_ss or not np.isfinite(post_ss):

                n_diverge += 1

                if n_diverge > self.max_divergence_steps:
                    _LOGGER.debug(f'No improving step after {n_diverge} tries, accepting the state with residual '
                                  f'sum of squares {pre_ss}')
                    self._successful = True
                    self._postfit_residuals = prefit_residuals
                    return state

                lma_coefficient *= 10

            else:
                n_diverge = 0
                lma_coefficient /= 10
                state = new_state
                prefit_residuals = postfit_residuals
                pre_ss = post_ss

        warnings.warn("Solution didn't converge in the requested number of iterations")
        self._postfit_residuals = prefit_residuals

        return state
