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
import numpy as np
import scipy.interpolate

from . import utils


class DiscountCurve(object):
    """Discount curve parametrized by discount factors at pillar times.

    Each pillar discount factor is held as a pathwise leaf tensor (one value per simulated path)
    so that reverse mode differentiation returns a pathwise dV/dP for every pillar.
    Interpolation is linear in log(P(T))/T between pillars with constant zero rate extrapolation
    on both ends.
    """

    def __init__(self, pillars, discount_factors, one, name='OIS'):
        pillars = np.asarray(pillars, dtype=np.float64)
        discount_factors = np.asarray(discount_factors, dtype=np.float64)
        # a pillar at time 0 carries no information (P(0)=1)
        if pillars[0] == 0.0:
            pillars, discount_factors = pillars[1:], discount_factors[1:]

        self.name = name
        self.pillars = pillars
        self.one = one
        self.values = discount_factors
        self.tensors = [one.new_full(one.shape, df, requires_grad=True) for df in discount_factors]

    def __len__(self):
        return self.pillars.size

    def get_factor(self, pillar_index):
        return utils.Factor('DiscountFactor', (self.name, pillar_index))

    def interpolation_weights(self, time):
        """
        Returns [(pillar index, weight)] such that log(P(time)) = time * sum(weight * log(P_j) / T_j)
        """
        if time <= self.pillars[0]:
            return [(0, 1.0)]
        if time >= self.pillars[-1]:
            return [(self.pillars.size - 1, 1.0)]
        lower = int(np.searchsorted(self.pillars, time, side='right')) - 1
        upper = lower + 1
        alpha = (time - self.pillars[lower]) / (self.pillars[upper] - self.pillars[lower])
        return [(lower, 1.0 - alpha), (upper, alpha)]

    def get_discount_factor(self, time):
        if time == 0.0:
            return self.one
        log_df = sum(weight * self.tensors[index].log() / self.pillars[index]
                     for index, weight in self.interpolation_weights(time))
        return (log_df * time).exp()

    def get_deterministic_discount_factor(self, time):
        if time == 0.0:
            return 1.0
        log_df = sum(weight * np.log(self.values[index]) / self.pillars[index]
                     for index, weight in self.interpolation_weights(time))
        return np.exp(log_df * time)

    def risk_factors(self):
        return [(self.get_factor(index), tensor) for index, tensor in enumerate(self.tensors)]


class ForwardCurve(object):
    """Simple forward rates on fixing times (flat extrapolation)"""

    def __init__(self, fixings, forwards, period_length, name='Libor6m'):
        self.name = name
        self.fixings = np.asarray(fixings, dtype=np.float64)
        self.forwards = np.asarray(forwards, dtype=np.float64)
        self.period_length = period_length
        if self.fixings.size > 1:
            self.interp = scipy.interpolate.interp1d(
                self.fixings, self.forwards, kind='linear', bounds_error=False,
                fill_value=(self.forwards[0], self.forwards[-1]))
        else:
            self.interp = lambda t: np.full_like(np.asarray(t, dtype=np.float64), self.forwards[0])

    def get_forward(self, fixing_time):
        return float(self.interp(fixing_time))


def make_flat_discount_curve(rate, pillars, one, name='OIS'):
    """
    generates a discount curve with a constant continuously compounded zero rate
    """
    pillars = np.asarray(pillars, dtype=np.float64)
    return DiscountCurve(pillars, np.exp(-rate * pillars), one, name=name)


def construct_curves(params, period_length, one):
    """Builds the discount and forward curve from a model parameter dictionary"""
    discount = params['Discount_Curve']
    forward = params['Forward_Curve']
    discount_curve = DiscountCurve(
        discount['Pillars'], discount['Discount_Factors'], one, name=discount.get('Name', 'OIS'))
    forward_curve = ForwardCurve(
        forward['Fixings'], forward['Forwards'], period_length, name=forward.get('Name', 'Libor6m'))
    return discount_curve, forward_curve
