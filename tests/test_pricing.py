"""Tests for the pseudo inverse, the regression projector and the AAD estimator."""
from collections import OrderedDict

import pytest
import torch

from simmflow import utils
from simmflow.pricing import (ConditionalExpectationRegression, SensitivitiesEstimator, exercise_indicator,
                              identity, matrix_product, pseudo_inverse, regression_basis, vector_matrix_product)

from .conftest import assert_close


class TestPseudoInverse:
    """Per path generalized inverse."""

    def test_square_matrix_gives_identity_per_path(self):
        generator = torch.Generator().manual_seed(1)
        num_paths = 7
        matrix = torch.rand((4, 4, num_paths), generator=generator, dtype=torch.float64)
        matrix = matrix + 4.0 * identity(4, torch.ones(num_paths, dtype=torch.float64))
        product = matrix_product(matrix, pseudo_inverse(matrix))
        assert_close(product, identity(4, torch.ones(num_paths, dtype=torch.float64)), atol=1e-10)

    def test_each_path_inverted_independently(self):
        matrix = torch.zeros((2, 2, 2), dtype=torch.float64)
        matrix[0, 0] = torch.tensor([2.0, 4.0])
        matrix[1, 1] = torch.tensor([5.0, 10.0])
        inverse = pseudo_inverse(matrix)
        assert_close(inverse[0, 0], [0.5, 0.25])
        assert_close(inverse[1, 1], [0.2, 0.1])

    def test_rectangular_shape(self):
        matrix = torch.rand((2, 3, 5), dtype=torch.float64)
        assert pseudo_inverse(matrix).shape == (3, 2, 5)

    def test_non_finite_input_raises(self):
        matrix = torch.eye(2, dtype=torch.float64).unsqueeze(2).repeat(1, 1, 3)
        matrix[0, 1, 2] = float('nan')
        with pytest.raises(utils.SingularMatrix):
            pseudo_inverse(matrix)

    def test_vector_matrix_product(self):
        vector = torch.tensor([[1.0, 2.0], [3.0, 4.0]], dtype=torch.float64)
        matrix = identity(2, torch.ones(2, dtype=torch.float64)) * 2.0
        assert_close(vector_matrix_product(vector, matrix), 2.0 * vector)


class TestConditionalExpectationRegression:
    """Regression based projection."""

    def setup_method(self):
        generator = torch.Generator().manual_seed(3)
        self.short_rate = 0.02 + 0.01 * torch.rand(200, generator=generator, dtype=torch.float64)
        self.long_rate = 0.03 + 0.01 * torch.rand(200, generator=generator, dtype=torch.float64)

    def test_basis_shape(self):
        basis = regression_basis([self.short_rate, self.long_rate], order=2)
        assert basis.shape == (200, 5)
        assert_close(basis[:, 0], torch.ones(200, dtype=torch.float64))

    def test_constant_is_reproduced(self):
        projector = ConditionalExpectationRegression([self.short_rate, self.long_rate])
        constant = torch.full((200,), 3.0, dtype=torch.float64)
        assert_close(projector.project(constant), constant, rtol=1e-8)

    def test_function_of_regressors_is_reproduced(self):
        projector = ConditionalExpectationRegression([self.short_rate, self.long_rate])
        value = 1.0 + 2.0 * self.short_rate - 3.0 * self.long_rate
        assert_close(projector.project(value), value, rtol=1e-6)

    def test_block_projection_matches_rows(self):
        projector = ConditionalExpectationRegression([self.short_rate, self.long_rate])
        noise = torch.rand((3, 200), dtype=torch.float64)
        block = projector.project(noise)
        assert block.shape == (3, 200)
        assert_close(block[1], projector.project(noise[1]))

    def test_unexercised_paths_project_onto_the_mean(self):
        exercise_time = torch.full((200,), float('inf'), dtype=torch.float64)
        indicator = exercise_indicator(exercise_time, 1.0)
        projector = ConditionalExpectationRegression(
            [self.short_rate * indicator, self.long_rate * indicator])
        value = torch.rand(200, dtype=torch.float64)
        assert_close(projector.project(value), torch.full_like(value, value.mean().item()), rtol=1e-8)

    def test_exercise_indicator_barrier(self):
        exercise_time = torch.tensor([0.5, 1.0, float('inf')], dtype=torch.float64)
        assert_close(exercise_indicator(exercise_time, 1.0), [1.0, 1.0, 0.0])
        assert_close(exercise_indicator(exercise_time, 0.5), [1.0, 0.0, 0.0])


class TestSensitivitiesEstimator:
    """Pathwise reverse mode gradients."""

    def test_pathwise_gradient(self):
        x = torch.tensor([1.0, 2.0, 3.0], dtype=torch.float64, requires_grad=True)
        y = torch.tensor([0.5, 1.5, 2.5], dtype=torch.float64, requires_grad=True)
        unused = torch.ones(3, dtype=torch.float64, requires_grad=True)
        value = 2.0 * x + y * y
        estimator = SensitivitiesEstimator(value, OrderedDict([('x', x), ('y', y), ('unused', unused)]))
        assert_close(estimator.get('x'), [2.0, 2.0, 2.0])
        assert_close(estimator.get('y'), 2.0 * y)
        assert 'unused' not in estimator

    def test_missing_factor_reads_as_zero(self):
        x = torch.tensor([1.0, 2.0], dtype=torch.float64, requires_grad=True)
        estimator = SensitivitiesEstimator(x * 3.0, OrderedDict([('x', x)]))
        assert_close(estimator.get(utils.Factor('Libor', (0, 99))), [0.0, 0.0])

    def test_constant_value_has_no_gradient(self):
        x = torch.tensor([1.0, 2.0], dtype=torch.float64, requires_grad=True)
        estimator = SensitivitiesEstimator(torch.zeros(2, dtype=torch.float64), OrderedDict([('x', x)]))
        assert len(estimator.grad) == 0
