from unittest import TestCase

import numpy as np

from geostereo.estimators import (DavenportQMethod, LMAEstimator, LMAOptions, Problem, SolverOptions, cauchy_scale)
from geostereo.rotations import Rotation


class TestLMAEstimator(TestCase):

    def setUp(self):

        self.times = np.linspace(0, 4, 20)
        self.observed = 2 * np.exp(-0.5 * self.times)

    def decay_residuals(self, state):
        return state[0] * np.exp(state[1] * self.times) - self.observed

    def test_converges(self):

        estimator = LMAEstimator(self.decay_residuals, options=LMAOptions(max_iter=100))

        prefit = self.decay_residuals(np.array([1.0, 0.0]))

        solved = estimator.estimate([1.0, 0.0])

        self.assertTrue(estimator.successful)
        self.assertIsNotNone(estimator.postfit_residuals)
        self.assertLess(np.linalg.norm(estimator.postfit_residuals), np.linalg.norm(prefit))

        np.testing.assert_allclose(solved, [2, -0.5], atol=1e-5)

    def test_not_converged(self):

        def rosenbrock(state):
            return [10 * (state[1] - state[0] ** 2), 1 - state[0]]

        estimator = LMAEstimator(rosenbrock, options=LMAOptions(max_iter=1))

        with self.assertWarns(UserWarning):
            estimator.estimate([-1.2, 1.0])

        self.assertFalse(estimator.successful)
        self.assertEqual(estimator.iterations, 1)

    def test_flat_residuals(self):

        estimator = LMAEstimator(lambda state: [1.0, 2.0])

        np.testing.assert_array_equal(estimator.estimate([3.0]), [3.0])
        self.assertTrue(estimator.successful)

    def test_reset_settings(self):

        estimator = LMAEstimator(self.decay_residuals, options=LMAOptions(max_iter=3))

        estimator.max_iter = 50
        estimator.reset_settings()

        self.assertEqual(estimator.max_iter, 3)
        self.assertEqual(estimator.original_options.max_iter, 3)


class TestProblem(TestCase):

    def setUp(self):

        self.times = np.arange(5, dtype=np.float64)
        self.observed = 3 * self.times - 1

        self.buffer = np.zeros(2)
        self.slope = self.buffer[:1]
        self.intercept = self.buffer[1:]

    def line_residuals(self, slope, intercept):
        return slope[0] * self.times + intercept[0] - self.observed

    def test_line_fit(self):

        problem = Problem()
        problem.add_residual_block(self.line_residuals, [self.slope, self.intercept], 5)

        self.assertEqual(problem.num_residuals, 5)
        self.assertEqual(problem.num_parameter_blocks, 2)

        summary = problem.solve()

        self.assertTrue(summary.converged)
        self.assertGreater(summary.initial_cost, 1)
        self.assertLess(summary.final_cost, 1e-16)
        self.assertEqual(summary.residuals.size, 5)

        # the solution is left in the buffer
        np.testing.assert_allclose(self.buffer, [3, -1], atol=1e-8)

    def test_constant_block(self):

        self.intercept[0] = 2

        problem = Problem()
        problem.add_residual_block(self.line_residuals, [self.slope, self.intercept], 5)
        problem.set_parameter_block_constant(self.intercept)

        problem.solve()

        self.assertEqual(self.intercept[0], 2)

        # least squares slope through the origin shifted by the fixed intercept
        expected = self.times @ (self.observed - 2) / (self.times @ self.times)
        self.assertAlmostEqual(self.slope[0], expected, places=8)

    def test_nothing_to_solve(self):

        problem = Problem()
        problem.add_residual_block(self.line_residuals, [self.slope, self.intercept], 5)
        problem.set_parameter_block_constant(self.slope)
        problem.set_parameter_block_constant(self.intercept)

        summary = problem.solve()

        self.assertEqual(summary.num_evaluations, 0)
        self.assertEqual(summary.initial_cost, summary.final_cost)

    def test_shared_views(self):

        problem = Problem()

        line = self.buffer[:]

        problem.add_residual_block(lambda values: values - [3, -1], [line], 2)
        problem.add_residual_block(lambda values: values[:1] - 3, [self.buffer[0:2]], 1)

        self.assertEqual(problem.num_parameter_blocks, 1)

    def test_block_checks(self):

        problem = Problem()

        with self.assertRaises(ValueError):
            problem.add_residual_block(lambda values: values, [np.zeros(6)[::2]], 3)

        problem.add_residual_block(lambda values: np.zeros(3), [self.slope], 2)

        with self.assertRaises(ValueError):
            problem.evaluate()

    def test_robust_block(self):

        problem = Problem()
        problem.add_residual_block(lambda values: np.array([3.0, 4.0]), [self.slope], 2, robust_threshold=1.0)

        residuals = problem.evaluate()

        self.assertAlmostEqual(residuals @ residuals, np.log(26), places=12)

    def test_max_iterations(self):

        problem = Problem()
        problem.add_residual_block(lambda slope: [np.exp(slope[0]) - 10, slope[0] - 5], [self.slope], 2)

        summary = problem.solve(SolverOptions(max_iterations=2))

        self.assertLessEqual(summary.num_evaluations, 2)


class TestCauchyScale(TestCase):

    def test_scale(self):

        residuals = np.array([0.3, -0.4])

        scaled = cauchy_scale(residuals, 2.0)

        self.assertAlmostEqual(scaled @ scaled, 4 * np.log1p(0.25 / 4), places=14)

        # the direction is kept
        np.testing.assert_allclose(scaled / np.linalg.norm(scaled), residuals / 0.5)

        np.testing.assert_array_equal(cauchy_scale(np.zeros(2), 2.0), np.zeros(2))

    def test_small_residuals(self):

        residuals = np.array([1e-6, 2e-6])

        np.testing.assert_allclose(cauchy_scale(residuals, 10.0), residuals, rtol=1e-12)


class TestDavenportQMethod(TestCase):

    def test_rotation(self):

        truth = Rotation([0.1, -0.3, 0.25])

        base = np.random.default_rng(3).normal(size=(3, 10))

        target = truth.matrix @ base

        solved = DavenportQMethod().estimate(target, base)

        np.testing.assert_allclose(solved.matrix, truth.matrix, atol=1e-12)

    def test_weights(self):

        truth = Rotation([0.0, 0.2, 0.0])

        base = np.eye(3)

        target = truth.matrix @ base

        # a bad pair with no weight does not change the answer
        target_bad = np.hstack([target, [[0], [0], [1]]])
        base_bad = np.hstack([base, [[1], [0], [0]]])

        solved = DavenportQMethod().estimate(target_bad, base_bad, weights=[1, 1, 1, 0])

        np.testing.assert_allclose(solved.matrix, truth.matrix, atol=1e-12)
