"""Tests for the LIBOR market model and the curves it is built on."""
import numpy as np
import pytest
import torch

from simmflow import utils
from simmflow.riskfactors import DiscountCurve, make_flat_discount_curve
from simmflow.stochasticprocess import construct_model

from .conftest import assert_close, model_params, steep_curves, STEEP_DISCOUNT_FACTORS, STEEP_PILLARS


class TestDiscountCurve:

    def test_reprices_pillars(self):
        one = utils.torch_unit(3)
        curve = DiscountCurve(STEEP_PILLARS, STEEP_DISCOUNT_FACTORS, one)
        for pillar, df in zip(STEEP_PILLARS, STEEP_DISCOUNT_FACTORS):
            assert_close(curve.get_discount_factor(pillar), [df] * 3)
            assert curve.get_deterministic_discount_factor(pillar) == pytest.approx(df)

    def test_flat_extrapolation_of_zero_rates(self):
        one = utils.torch_unit(2)
        curve = make_flat_discount_curve(0.03, [1.0, 5.0], one)
        assert curve.get_deterministic_discount_factor(0.25) == pytest.approx(np.exp(-0.03 * 0.25))
        assert curve.get_deterministic_discount_factor(10.0) == pytest.approx(np.exp(-0.3))

    def test_leading_zero_pillar_is_dropped(self):
        curve = DiscountCurve([0.0, 1.0], [1.0, 0.98], utils.torch_unit(2))
        assert len(curve) == 1
        assert curve.get_factor(0) == utils.Factor('DiscountFactor', ('OIS', 0))


class TestLiborMarketModel:

    def test_zero_volatility_keeps_initial_forwards(self, flat_model):
        forward = (np.exp(0.02 * 0.5) - 1.0) / 0.5
        for time_index in (0, 5, 20):
            assert_close(flat_model.get_libor(time_index, 19), [forward] * flat_model.num_paths)

    def test_numeraire_reprices_discount_curve(self, steep_model):
        assert_close(steep_model.get_numeraire(0.0), torch.ones(steep_model.num_paths, dtype=torch.float64))
        for maturity in (0.5, 1.75, 3.0, 9.5):
            expected = steep_model.discount_curve.get_deterministic_discount_factor(maturity)
            assert_close(1.0 / steep_model.get_numeraire(maturity), [expected] * steep_model.num_paths, rtol=1e-12)

    def test_stochastic_numeraire_reprices_discount_curve_on_average(self):
        model = construct_model(model_params(volatility=0.1, num_paths=4096))
        for maturity in (2.0, 5.0, 10.0):
            expected = model.discount_curve.get_deterministic_discount_factor(maturity)
            assert (1.0 / model.get_numeraire(maturity)).mean().item() == pytest.approx(expected, rel=1e-2)

    def test_fixed_libors_are_frozen(self, stochastic_model):
        assert stochastic_model.get_libor(10, 3) is stochastic_model.get_libor(3, 3)
        assert stochastic_model.libor_factor(10, 3) == utils.Factor('Libor', (3, 3))
        assert stochastic_model.libor_factor(2, 3) == utils.Factor('Libor', (2, 3))

    def test_risk_factors_are_unique_nodes(self, flat_model):
        factors = flat_model.risk_factors()
        num_libor_nodes = sum(i + 1 for i in range(20))
        assert len(factors) == num_libor_nodes + len(flat_model.discount_curve)
        assert factors[utils.Factor('DiscountFactor', ('OIS', 0))] is flat_model.discount_curve.tensors[0]

    def test_forward_rate_on_the_grid_is_the_libor(self, stochastic_model):
        assert_close(stochastic_model.get_forward_rate(1.0, 1.0, 1.5), stochastic_model.get_libor(2, 2))

    def test_outside_horizon_is_unavailable(self, flat_model):
        with pytest.raises(utils.ModelUnavailable):
            flat_model.get_numeraire(10.5)
        with pytest.raises(utils.ModelUnavailable):
            flat_model.get_libor(0, 20)

    def test_time_step_must_divide_the_period(self):
        params = model_params()
        params['Time_Step'] = 0.3
        with pytest.raises(Exception):
            construct_model(params)

    def test_same_seed_same_paths(self):
        first = construct_model(model_params(volatility=0.2, num_paths=8))
        second = construct_model(model_params(volatility=0.2, num_paths=8))
        assert_close(first.get_libor(10, 15), second.get_libor(10, 15))

    def test_steep_curve_changes_the_numeraire(self):
        model = construct_model(model_params(curves=steep_curves()))
        assert 1.0 / model.get_numeraire(5.0)[0].item() == pytest.approx(0.9)
