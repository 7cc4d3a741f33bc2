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
import logging
from collections import OrderedDict

# 3rd party libraries
import numpy as np
import torch

# Internal modules
from . import utils


class StochasticProcess(object):
    """Base class for all stochastic processes"""

    def __init__(self, factor, param):
        self.factor = factor
        self.param = param
        self.params_ok = True


class LiborMarketModel(StochasticProcess):
    """Single factor lognormal LIBOR market model under the spot measure"""

    documentation = (
        'Interest Rates', [
            'Forward rates $L_i(t)=L(t;T_i,T_{i+1})$ on a uniform tenor structure $0=T_0<T_1<...<T_n$ with',
            'period length $\\delta$ follow',
            '',
            '$$ \\frac{dL_i(t)}{L_i(t)} = \\sigma\\mu_i(t)dt + \\sigma dW(t)$$',
            '',
            'with spot measure drift',
            '',
            '$$ \\mu_i(t) = \\sum_{j=m(t)}^{i}\\frac{\\delta\\sigma L_j(t)}{1+\\delta L_j(t)}$$',
            '',
            'where $m(t)$ is the index of the first period that has not fixed yet. The numeraire is the',
            'rolling bank account $N(T_j)=\\prod_{l<j}(1+\\delta L_l(T_l))$, linearly accrued between',
            'tenor dates and scaled by the deterministic factor $P_L(0,t)/P_D(0,t)$ so that',
            '$E[1/N(T)]=P_D(0,T)$ reproduces the discount curve. The simulation uses log-Euler steps',
            'on a uniform grid whose step divides $\\delta$.'])

    def __init__(self, factor, param):
        super(LiborMarketModel, self).__init__(factor, param)
        self.period_length = param.get('Libor_Period_Length', 0.5)
        self.num_libors = param.get('Number_Of_Libors', 20)
        self.time_step = param.get('Time_Step', self.period_length)
        self.num_paths = param.get('Number_Of_Paths', 1000)
        self.volatility = param.get('Volatility', 0.2)
        self.seed = param.get('Random_Seed', 1234)

        steps_per_period = self.period_length / self.time_step
        if abs(steps_per_period - round(steps_per_period)) > 1e-8:
            raise Exception('Time_Step {0} must divide Libor_Period_Length {1}'.format(
                self.time_step, self.period_length))
        self.steps_per_period = int(round(steps_per_period))

        self.libor_periods = utils.TimeDiscretization.uniform(0.0, self.num_libors, self.period_length)
        self.time_discretization = utils.TimeDiscretization.uniform(
            0.0, self.num_libors * self.steps_per_period, self.time_step)

        self.discount_curve = None
        self.forward_curve = None
        self.one = None
        self.libors = None
        self.numeraire_cache = {}

    def precalculate(self, discount_curve, forward_curve, one):
        self.discount_curve = discount_curve
        self.forward_curve = forward_curve
        self.one = one
        self.num_paths = one.shape[0]
        # deterministic forward bond (from the initial forwards) used for the numeraire adjustment
        self.initial_forwards = np.array(
            [forward_curve.get_forward(self.libor_periods[i]) for i in range(self.num_libors)])
        # the time index at which each libor fixes
        self.fixing_index = np.array(
            [i * self.steps_per_period for i in range(self.num_libors)], dtype=np.int64)

    def generate(self, generator=None):
        if generator is None:
            generator = torch.Generator(device=self.one.device)
            generator.manual_seed(self.seed)

        num_steps = len(self.time_discretization) - 1
        random_numbers = torch.randn(
            (num_steps, self.num_paths), generator=generator, dtype=self.one.dtype, device=self.one.device)
        sigma, delta = self.volatility, self.period_length

        state = [self.one.new_full(self.one.shape, rate, requires_grad=True) for rate in self.initial_forwards]
        self.libors = [list(state)]
        self.numeraire_cache.clear()

        for k in range(num_steps):
            t, dt = self.time_discretization[k], self.time_discretization.get_time_step(k)
            # libors whose fixing date is on or after the end of this step keep evolving
            first_alive = self.libor_periods.get_time_index_nearest_greater_or_equal(t + dt)
            if first_alive < self.num_libors:
                alive = torch.stack(state[first_alive:])
                drift = torch.cumsum(delta * sigma * alive / (1.0 + delta * alive), dim=0)
                stoch = sigma * np.sqrt(dt) * random_numbers[k]
                evolved = alive * torch.exp((sigma * drift - 0.5 * sigma * sigma) * dt + stoch)
                state = state[:first_alive] + list(torch.unbind(evolved, dim=0))
            self.libors.append(list(state))

        logging.info('Simulated {0} libors on {1} paths over {2} steps'.format(
            self.num_libors, self.num_paths, num_steps))
        return self

    def check_model(self):
        if self.libors is None:
            raise utils.ModelUnavailable('LiborMarketModel has not been simulated')

    def get_horizon(self):
        return self.libor_periods[-1]

    def get_number_of_libors(self):
        return self.num_libors

    def get_libor_period_discretization(self):
        return self.libor_periods

    def get_time_discretization(self):
        return self.time_discretization

    def get_time_index(self, time):
        """index of the simulation time nearest less or equal to time"""
        if time < -1e-10 or time > self.get_horizon() + 1e-10:
            raise utils.ModelUnavailable('Time {0} outside the model horizon [0, {1}]'.format(
                time, self.get_horizon()))
        return self.time_discretization.get_time_index_nearest_less_or_equal(time)

    def get_libor(self, time_index, libor_index):
        self.check_model()
        if libor_index < 0 or libor_index >= self.num_libors or time_index >= len(self.libors):
            raise utils.ModelUnavailable('Libor ({0}, {1}) is not part of the model state'.format(
                time_index, libor_index))
        return self.libors[time_index][libor_index]

    def libor_factor(self, time_index, libor_index):
        """canonical risk factor id of the state node L_i(t_k) (fixed libors map to their fixing node)"""
        return utils.Factor('Libor', (min(time_index, int(self.fixing_index[libor_index])), libor_index))

    def get_fixed_libor(self, libor_index):
        return self.get_libor(int(self.fixing_index[libor_index]), libor_index)

    def get_forward_bond_ratio(self, time_index, start, end):
        """prod(1 + L_j * overlap_j) over the libor periods overlapping [start, end]"""
        ratio = self.one
        first = max(self.libor_periods.get_time_index_nearest_less_or_equal(start), 0)
        for j in range(first, self.num_libors):
            period_start, period_end = self.libor_periods[j], self.libor_periods[j + 1]
            overlap = min(period_end, end) - max(period_start, start)
            if overlap <= 1e-12:
                if period_start >= end:
                    break
                continue
            ratio = ratio * (1.0 + self.get_libor(time_index, j) * overlap)
        return ratio

    def get_forward_rate(self, time, start, end):
        """simple compounded forward rate L(time; start, end) from the state at time"""
        time_index = self.get_time_index(time)
        if end - start <= 1e-12:
            raise utils.ModelUnavailable('Forward rate period [{0}, {1}] is empty'.format(start, end))
        return (self.get_forward_bond_ratio(time_index, start, end) - 1.0) / (end - start)

    def get_forward_bond(self, time, maturity):
        """P(time, maturity) from the libors observed at time, scaled by the deterministic curve adjustment"""
        time_index = self.get_time_index(time)
        ratio = self.get_forward_bond_ratio(time_index, time, maturity)
        curve = self.discount_curve
        adjustment = (curve.get_deterministic_discount_factor(maturity) / self.get_initial_forward_bond(maturity)) / (
            curve.get_deterministic_discount_factor(time) / self.get_initial_forward_bond(time))
        return adjustment / ratio

    def get_initial_forward_bond(self, time):
        j = self.libor_periods.get_time_index_nearest_less_or_equal(time)
        j = min(j, self.num_libors - 1)
        growth = np.prod(1.0 + self.period_length * self.initial_forwards[:j])
        growth *= 1.0 + self.initial_forwards[j] * (time - self.libor_periods[j])
        return 1.0 / growth

    def get_numeraire(self, time):
        self.check_model()
        key = round(time, 10)
        if key not in self.numeraire_cache:
            self.get_time_index(time)
            j = min(self.libor_periods.get_time_index_nearest_less_or_equal(time), self.num_libors - 1)
            numeraire = self.one
            for l in range(j):
                numeraire = numeraire * (1.0 + self.period_length * self.get_fixed_libor(l))
            accrual = time - self.libor_periods[j]
            if accrual > 1e-12:
                numeraire = numeraire * (1.0 + self.get_fixed_libor(j) * accrual)
            adjustment = self.get_initial_forward_bond(time) / self.discount_curve.get_discount_factor(time)
            self.numeraire_cache[key] = numeraire * adjustment
        return self.numeraire_cache[key]

    def get_discount_factor(self, pillar_index):
        return self.discount_curve.tensors[pillar_index]

    def risk_factors(self):
        """All differentiable nodes of the model keyed by their canonical risk factor"""
        self.check_model()
        factors = OrderedDict(self.discount_curve.risk_factors())
        for k, state in enumerate(self.libors):
            for i, libor in enumerate(state):
                factor = self.libor_factor(k, i)
                if factor not in factors:
                    factors[factor] = libor
        return factors


def construct_process(sp_type, factor, param):
    return globals().get(sp_type)(factor, param)


def construct_model(params, prec=torch.float64, device=torch.device('cpu')):
    """Builds and simulates a model from a parameter dictionary"""
    from .riskfactors import construct_curves

    model = construct_process(params.get('Object', 'LiborMarketModel'), params.get('Name', 'LMM'), params)
    one = utils.torch_unit(model.num_paths, prec=prec, device=device)
    discount_curve, forward_curve = construct_curves(params, model.period_length, one)
    model.precalculate(discount_curve, forward_curve, one)
    return model.generate()
