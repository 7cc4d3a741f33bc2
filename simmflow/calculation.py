########################################################################
# Copyright (C)  Shuaib Osman (sosman@investec.co.za)
# This file is part of SIMMFlow.
#
# SIMMFlow is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# any later version.
#
# SIMMFlow is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with SIMMFlow.  If not, see <http://www.gnu.org/licenses/>.
########################################################################


# import standard libraries
import time
import logging

import numpy as np
import pandas as pd
import torch

# import the stochastic processes
from .stochasticprocess import construct_model
# import the sensitivity machinery
from .pricing import SensitivitiesEstimator, get_projector
from .sensitivities import ForwardSensitivityTransformation
from .interpolation import SensitivityInterpolation
from .config import parse_period
from . import utils


class PortfolioInstrument(object):
    """
    A deal inside a portfolio. Owns the gradient of the deal, its projector and its
    sensitivity caches - nothing is shared between instruments.
    """

    def __init__(self, deal, portfolio):
        self.deal = deal
        self.portfolio = portfolio
        self.engine = SensitivityInterpolation(self, portfolio.mode, portfolio.reset_step)
        self.estimator = None
        self.projector = None
        self.projector_time = None

    def reset(self):
        self.estimator = None
        self.projector = None
        self.projector_time = None
        self.engine.reset()

    @property
    def transformation(self):
        return self.portfolio.get_transformation()

    def get_model(self):
        return self.portfolio.get_model()

    def get_gradient(self):
        if self.estimator is None:
            model = self.get_model()
            value = self.deal.value(model)
            self.estimator = SensitivitiesEstimator(value, model.risk_factors())
        return self.estimator

    def reset_gradient(self, value):
        """replaces the gradient (e.g. by the gradient of an exercised underlying)"""
        self.estimator = SensitivitiesEstimator(value, self.get_model().risk_factors())
        self.projector = None
        self.projector_time = None

    def get_projector(self, time):
        if self.projector is None or abs(self.projector_time - time) > 1e-10:
            self.projector = get_projector(self.get_model(), time, self.deal.get_exercise_time(),
                                           order=self.portfolio.regression_order)
            self.projector_time = time
        return self.projector

    def get_exact_sensitivities(self, curve, time):
        """native grid dV/dS at time for the named curve"""
        return self.transformation.get_sensitivities(self.get_gradient(), time, curve, self.get_projector(time))

    def compose_libor_sensitivities(self, value_libor, time):
        return self.transformation.compose_libor_sensitivities(value_libor, time, self.get_projector(time))

    def get_bucket_sensitivities(self, risk_class, curve, time):
        return self.engine.get_bucket_sensitivities(risk_class, curve, time)


class SIMMPortfolio(object):
    """
    Holds the deals whose SIMM delta sensitivities are required, the sensitivity mode and the
    model. The constant libor to swap weights are computed once per model and shared.
    """

    def __init__(self, deals, params, model=None):
        self.params = params
        self.mode = utils.lookup_enum(utils.SensitivityMode, params.get('Sensitivity_Mode', 'Melting_On_Buckets'))
        self.weight_mode = utils.lookup_enum(utils.WeightMode, params.get('Weight_Mode', 'Constant'))
        self.reset_step = parse_period(params.get('Reset_Step', 1.0))
        if self.reset_step <= 0.0:
            raise Exception('Reset_Step must be positive - got {0}'.format(self.reset_step))
        self.currency = params.get('Calculation_Currency', 'EUR')
        self.discount_curve = params.get('Discount_Curve')
        self.use_time_grid_adjustment = params.get('Use_Time_Grid_Adjustment', 'Yes') == 'Yes'
        self.regression_order = int(params.get('Regression_Order', 2))

        self.model = None
        self.transformation = None
        self.constant_weights = None
        self.instruments = [PortfolioInstrument(deal, self) for deal in deals]
        if model is not None:
            self.set_model(model)

    def set_model(self, model):
        if model is self.model:
            return
        if self.discount_curve is not None and self.discount_curve != model.discount_curve.name:
            raise Exception('Discount curve {0} is not the discount curve {1} of the model'.format(
                self.discount_curve, model.discount_curve.name))
        if self.model is not None:
            logging.info('Model changed - resetting {0} instruments'.format(len(self.instruments)))
        self.model = model
        self.transformation = ForwardSensitivityTransformation(
            model, self.weight_mode, use_time_grid_adjustment=self.use_time_grid_adjustment)
        # the constant weights are the weights at time 0 (needed by the analytic re-accumulation too)
        self.constant_weights = self.transformation.get_libor_swap_sensitivities(
            0.0, get_projector(model, 0.0, order=self.regression_order))
        self.transformation.constant_weights = self.constant_weights
        for instrument in self.instruments:
            instrument.reset()

    def get_model(self):
        if self.model is None:
            raise utils.ModelUnavailable('No model attached to the portfolio')
        return self.model

    def get_transformation(self):
        self.get_model()
        return self.transformation

    def get_value(self):
        model = self.get_model()
        return sum(instrument.deal.value(model) for instrument in self.instruments)

    def get_bucket_sensitivities(self, risk_class, curve, time, currency=None):
        """sum over the instruments of the currency of the bucketed sensitivities at time"""
        currency = currency or self.currency
        risk_class = utils.lookup_enum(utils.RiskClass, risk_class)
        total = utils.zeros_like_paths(utils.get_bucket_days(risk_class).size, self.get_model().one)
        for instrument in self.instruments:
            if instrument.deal.get_currency() == currency:
                logging.root.name = instrument.deal.get_reference()
                total = total + instrument.get_bucket_sensitivities(risk_class, curve, time)
        return total

    def get_delta_sensitivity(self, risk_class, curve, bucket, time, currency=None):
        """pathwise sensitivity for a single bucket (label such as '5y' or index) - zero if unknown"""
        labels = utils.get_bucket_labels(risk_class)
        index = labels.index(bucket) if bucket in labels else bucket
        if not isinstance(index, (int, np.integer)) or not 0 <= index < len(labels):
            return self.get_model().one.new_zeros(self.get_model().one.shape)
        return self.get_bucket_sensitivities(risk_class, curve, time, currency)[index]

    def report(self, times, curves, risk_class=utils.RiskClass.InterestRate, currency=None):
        """path averaged bucket sensitivities over increasing evaluation times"""
        labels = utils.get_bucket_labels(risk_class)
        rows = []
        for evaluation_time in sorted(times):
            for curve in curves:
                bucket = self.get_bucket_sensitivities(risk_class, curve, evaluation_time, currency)
                mean = bucket.mean(dim=1).cpu().numpy()
                rows.extend([(evaluation_time, curve, label, value) for label, value in zip(labels, mean)])
        return pd.DataFrame(rows, columns=['Time', 'Curve', 'Bucket', 'Sensitivity'])


class Calculation(object):

    def __init__(self, config, prec=torch.float64, device=torch.device('cpu')):
        """
        Construct a new calculation - all calculations must set up their own tensors.
        """
        self.config = config
        self.dtype = prec
        self.device = device
        # performance and admin feedback
        self.calc_stats = {}
        # the calculation parameters (defined by calling execute)
        self.params = {}
        # output of calc stored here
        self.output = {}

    def execute(self, params):
        pass


class SIMM_Sensitivities(Calculation):
    """Dynamic SIMM delta sensitivities of a portfolio over a grid of evaluation times"""

    def __init__(self, config, **kwargs):
        super(SIMM_Sensitivities, self).__init__(config, **kwargs)
        self.model = None
        self.portfolio = None

    def execute(self, params):
        self.params = params
        # set the logging name
        logging.root.name = self.config.file_ref or 'SIMM_Sensitivities'

        self.calc_stats['Model_Setup_Time'] = time.monotonic()
        self.model = construct_model(self.config.model, prec=self.dtype, device=self.device)
        self.portfolio = SIMMPortfolio(self.config.deals, self.config.calculation, self.model)
        self.calc_stats['Model_Setup_Time'] = time.monotonic() - self.calc_stats['Model_Setup_Time']

        horizon = self.config.parse_period(params.get('Horizon', self.model.get_horizon()))
        horizon = min(horizon, self.model.get_horizon())
        times = self.config.parse_grid(params.get('Time_Grid', '0d 1m(1m)'), horizon)
        curves = params.get('Curves', [self.model.forward_curve.name, self.model.discount_curve.name])

        self.calc_stats['Sensitivity_Time'] = time.monotonic()
        results = self.portfolio.report(times, curves)
        self.calc_stats['Sensitivity_Time'] = time.monotonic() - self.calc_stats['Sensitivity_Time']

        self.output = {'Stats': self.calc_stats,
                       'Value': self.portfolio.get_value().mean().item(),
                       'Results': results}
        return self.output


def construct_calculation(calc_type, config, **kwargs):
    return globals().get(calc_type)(config, **kwargs)
