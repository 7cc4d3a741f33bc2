"""Shared fixtures: small LIBOR market models on flat and steep curves."""
import numpy as np
import pytest
import torch

from simmflow import make_flat_curves
from simmflow.stochasticprocess import construct_model

STEEP_PILLARS = [0.5, 1.0, 2.0, 5.0, 30.0]
STEEP_DISCOUNT_FACTORS = [0.99, 0.98, 0.97, 0.9, 0.7]


def model_params(volatility=0.0, num_paths=16, curves=None, seed=42):
    params = {'Libor_Period_Length': 0.5, 'Number_Of_Libors': 20, 'Time_Step': 0.5,
              'Number_Of_Paths': num_paths, 'Volatility': volatility, 'Random_Seed': seed}
    params.update(curves if curves is not None else make_flat_curves(0.02))
    return params


def steep_curves():
    return {'Discount_Curve': {'Pillars': STEEP_PILLARS, 'Discount_Factors': STEEP_DISCOUNT_FACTORS},
            'Forward_Curve': {'Fixings': [0.0, 2.0, 5.0, 10.0], 'Forwards': [0.01, 0.015, 0.03, 0.035]}}


@pytest.fixture
def flat_model():
    """zero volatility model on a flat 2% curve"""
    return construct_model(model_params())


@pytest.fixture
def steep_model():
    """zero volatility model on a steep curve"""
    return construct_model(model_params(curves=steep_curves()))


@pytest.fixture
def stochastic_model():
    return construct_model(model_params(volatility=0.15, num_paths=256))


@pytest.fixture
def swap_params():
    return {'Object': 'SwapDeal', 'Reference': 'Swap10Y', 'Start': 0.0, 'Maturity': 10.0,
            'Fixed_Rate': 0.02, 'Notional': 100.0, 'Pay_Fixed': 'Yes'}


def assert_close(actual, expected, rtol=1e-8, atol=1e-10):
    np.testing.assert_allclose(torch.as_tensor(actual).detach().cpu().numpy(),
                               torch.as_tensor(expected).detach().cpu().numpy(), rtol=rtol, atol=atol)
