"""Tests for the forward sensitivity transformation (dV/dL, dL/dS and the OIS chain)."""
import numpy as np
import pytest
import torch

from simmflow import utils
from simmflow.calculation import SIMMPortfolio
from simmflow.instruments import construct_instrument
from simmflow.pricing import get_projector

from .conftest import assert_close


def make_portfolio(model, swap_params, **params):
    deal = construct_instrument(dict(swap_params))
    settings = {'Sensitivity_Mode': 'Exact', 'Weight_Mode': 'Constant', 'Reset_Step': 1.0}
    settings.update(params)
    return SIMMPortfolio([deal], settings, model)


def relative_difference(a, b):
    return float((a - b).norm() / b.norm())


class TestLiborSwapSensitivities:

    def test_initial_weights(self, flat_model, swap_params):
        portfolio = make_portfolio(flat_model, swap_params)
        weights = portfolio.constant_weights
        assert weights.shape == (20, 20, flat_model.num_paths)
        assert_close(weights[0, 0], torch.ones(flat_model.num_paths))
        # lower bidiagonal
        assert float(weights[3, 5].abs().sum()) == 0.0
        assert float(weights[5, 3].abs().sum()) == 0.0
        discount = np.exp(-0.02 * 0.5 * np.arange(1, 21))
        expected = -discount[0] / discount[1]
        assert float(weights[1, 0, 0]) == pytest.approx(expected, rel=1e-10)
        assert float(weights[1, 1, 0]) == pytest.approx((discount[0] + discount[1]) / discount[1], rel=1e-10)

    def test_remaining_libors(self, flat_model, swap_params):
        transformation = make_portfolio(flat_model, swap_params).transformation
        assert transformation.get_number_of_remaining_libors(0.0) == 20
        assert transformation.get_number_of_remaining_libors(1.5) == 17
        assert transformation.get_number_of_remaining_libors(1.6) == 16
        assert transformation.get_number_of_remaining_libors(10.0) == 0
        assert transformation.native_days(9.0).tolist() == [183.0, 365.0]


class TestForwardCurveSensitivities:

    def test_constant_and_stochastic_weights_agree_on_a_flat_curve(self, flat_model, swap_params):
        constant = make_portfolio(flat_model, swap_params, Weight_Mode='Constant').instruments[0]
        stochastic = make_portfolio(flat_model, swap_params, Weight_Mode='Stochastic').instruments[0]
        constant_values, days = constant.get_exact_sensitivities('Libor6m', 1.5)
        stochastic_values, _ = stochastic.get_exact_sensitivities('Libor6m', 1.5)
        assert constant_values.shape == (17, flat_model.num_paths)
        assert days.size == 17
        assert_close(stochastic_values, constant_values, rtol=1e-8, atol=1e-10)

    def test_constant_and_stochastic_weights_diverge_on_a_steep_curve(self, steep_model, swap_params):
        constant = make_portfolio(steep_model, swap_params, Weight_Mode='Constant').instruments[0]
        stochastic = make_portfolio(steep_model, swap_params, Weight_Mode='Stochastic').instruments[0]
        constant_values, _ = constant.get_exact_sensitivities('Libor6m', 1.5)
        stochastic_values, _ = stochastic.get_exact_sensitivities('Libor6m', 1.5)
        assert relative_difference(stochastic_values, constant_values) > 1e-5

    def test_weights_coincide_at_time_zero(self, steep_model, swap_params):
        constant = make_portfolio(steep_model, swap_params, Weight_Mode='Constant').instruments[0]
        stochastic = make_portfolio(steep_model, swap_params, Weight_Mode='Stochastic').instruments[0]
        assert_close(stochastic.get_exact_sensitivities('Libor6m', 0.0)[0],
                     constant.get_exact_sensitivities('Libor6m', 0.0)[0], rtol=1e-10)

    def test_first_swap_rate_sensitivity_of_a_spot_swap(self, flat_model, swap_params):
        par_rate = (np.exp(0.02 * 0.5) - 1.0) / 0.5
        instrument = make_portfolio(flat_model, dict(swap_params, Fixed_Rate=par_rate)).instruments[0]
        value_libor = instrument.transformation.get_value_libor_sensitivities(
            instrument.get_gradient(), 0.0, instrument.get_projector(0.0))
        # dV/dL_0 = notional * delta * P(0, T_1)
        assert float(value_libor[0, 0]) == pytest.approx(100.0 * 0.5 * np.exp(-0.01), rel=1e-8)

    def test_grid_adjustment_is_skipped_on_the_grid(self, stochastic_model, swap_params):
        adjusted = make_portfolio(stochastic_model, swap_params).instruments[0]
        plain = make_portfolio(stochastic_model, swap_params, Use_Time_Grid_Adjustment='No').instruments[0]
        assert_close(adjusted.get_exact_sensitivities('Libor6m', 2.0)[0],
                     plain.get_exact_sensitivities('Libor6m', 2.0)[0])

    def test_grid_adjustment_off_the_grid(self, stochastic_model, swap_params):
        instrument = make_portfolio(stochastic_model, swap_params).instruments[0]
        adjustment = instrument.transformation.get_time_grid_adjustment(1.6)
        assert adjustment.shape == (16, 17, stochastic_model.num_paths)
        values, days = instrument.get_exact_sensitivities('Libor6m', 1.6)
        assert values.shape == (16, stochastic_model.num_paths)
        assert bool(torch.isfinite(values).all())

    def test_unknown_curve_is_zero(self, flat_model, swap_params):
        instrument = make_portfolio(flat_model, swap_params).instruments[0]
        values, days = instrument.get_exact_sensitivities('Libor3m', 1.0)
        assert values.shape == (18, flat_model.num_paths)
        assert float(values.abs().sum()) == 0.0

    def test_matured_swap_has_no_sensitivity(self, flat_model, swap_params):
        params = dict(swap_params, Maturity=2.0)
        instrument = make_portfolio(flat_model, params).instruments[0]
        values, _ = instrument.get_exact_sensitivities('Libor6m', 3.0)
        assert float(values.abs().sum()) == 0.0


class TestDiscountCurveSensitivities:

    def test_shape_and_finiteness(self, steep_model, swap_params):
        instrument = make_portfolio(steep_model, swap_params).instruments[0]
        values, days = instrument.get_exact_sensitivities('OIS', 1.5)
        assert values.shape == (17, steep_model.num_paths)
        assert days.size == 17
        assert bool(torch.isfinite(values).all())
        assert float(values.abs().sum()) > 0.0

    def test_pillar_to_grid_derivative(self, steep_model, swap_params):
        transformation = make_portfolio(steep_model, swap_params).transformation
        grid_pillar = transformation.get_grid_pillar_sensitivities(0.0, 0)
        assert grid_pillar.shape == (20, 5, steep_model.num_paths)
        # T_1 = 0.5 is the first pillar itself
        assert float(grid_pillar[0, 0, 0]) == pytest.approx(1.0, rel=1e-12)
        # T_4 = 2.0 is the third pillar
        assert float(grid_pillar[3, 2, 0]) == pytest.approx(1.0, rel=1e-12)
        assert float(grid_pillar[3, 1, 0]) == 0.0

    def test_swap_bond_jacobian_is_lower_triangular(self, flat_model, swap_params):
        transformation = make_portfolio(flat_model, swap_params).transformation
        jacobian = transformation.get_swap_bond_sensitivities(1.0, get_projector(flat_model, 1.0))
        assert jacobian.shape == (18, 18, flat_model.num_paths)
        assert float(torch.triu(jacobian[:, :, 0], diagonal=1).abs().sum()) == 0.0
        bond = np.exp(-0.01)
        assert float(jacobian[0, 0, 0]) == pytest.approx(-1.0 / (0.5 * bond * bond), rel=1e-10)

    def test_no_model_attached(self, swap_params):
        portfolio = SIMMPortfolio([construct_instrument(dict(swap_params))], {})
        with pytest.raises(utils.ModelUnavailable):
            portfolio.get_bucket_sensitivities('InterestRate', 'OIS', 0.0)
