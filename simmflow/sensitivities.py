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

# third party stuff
import numpy as np
import torch

# Internal modules
from . import utils
from .pricing import pseudo_inverse, vector_matrix_product


def bucket_weights(days, bucket_days):
    """
    Linear redistribution matrix (buckets x native points) in day space. Points before the first
    bucket go to the first bucket, points on or after the last bucket go to the last one.
    """
    bucket_days = np.asarray(bucket_days, dtype=np.float64)
    weights = np.zeros((bucket_days.size, len(days)))
    for col, day in enumerate(days):
        if day < bucket_days[0]:
            weights[0, col] = 1.0
        elif day >= bucket_days[-1]:
            weights[-1, col] = 1.0
        else:
            k = int(np.searchsorted(bucket_days, day, side='right')) - 1
            span = bucket_days[k + 1] - bucket_days[k]
            weights[k, col] = (bucket_days[k + 1] - day) / span
            weights[k + 1, col] = (day - bucket_days[k]) / span
    return weights


def map_to_buckets(values, days, bucket_days):
    """maps a (rows, paths) block of sensitivities on the given days onto the regulatory buckets"""
    weights = bucket_weights(days, bucket_days)
    if values.shape[0] == 0:
        return values.new_zeros((weights.shape[0],) + tuple(values.shape[1:]))
    return torch.as_tensor(weights, dtype=values.dtype, device=values.device) @ values


def melt(values, days, elapsed_days):
    """
    Linear decay of each sensitivity towards its maturity. Points whose residual maturity has
    expired are dropped. Returns the decayed values and their shifted day offsets.
    """
    days = np.asarray(days, dtype=np.float64)
    alive = np.flatnonzero(days > elapsed_days)
    decay = torch.as_tensor(1.0 - elapsed_days / days[alive], dtype=values.dtype, device=values.device)
    decayed = values[torch.as_tensor(alive, dtype=torch.long, device=values.device)] * decay.unsqueeze(1)
    return decayed, days[alive] - elapsed_days


def melt_to_buckets(values, days, elapsed_days, bucket_days):
    decayed, shifted_days = melt(values, days, elapsed_days)
    return map_to_buckets(decayed, shifted_days, bucket_days)


class ForwardSensitivityTransformation(object):
    """
    Converts the pathwise gradient of a product with respect to the native model state into
    sensitivities with respect to market swap rates at a future evaluation time.

    Every result is a (rows, paths) block on the native grid of remaining libor periods, i.e.
    row i is the swap with maturity (i+1) * delta after the evaluation time.
    """

    def __init__(self, model, weight_mode=utils.WeightMode.Constant, constant_weights=None,
                 use_time_grid_adjustment=True):
        self.model = model
        self.weight_mode = utils.lookup_enum(utils.WeightMode, weight_mode)
        self.constant_weights = constant_weights
        self.use_time_grid_adjustment = use_time_grid_adjustment

    def get_first_libor_index(self, time):
        """index of the first libor period starting at or after time"""
        return self.model.get_libor_period_discretization().get_time_index_nearest_greater_or_equal(time)

    def get_number_of_remaining_libors(self, time):
        return max(self.model.get_number_of_libors() - self.get_first_libor_index(time), 0)

    def native_days(self, time):
        delta = self.model.period_length
        return np.array([utils.time_to_days((i + 1) * delta)
                         for i in range(self.get_number_of_remaining_libors(time))], dtype=np.float64)

    def get_value_libor_sensitivities(self, estimator, time, projector):
        """dV/dL at time for the remaining libors, conditional on the information at time"""
        model = self.model
        first = self.get_first_libor_index(time)
        num_remaining = self.get_number_of_remaining_libors(time)
        if num_remaining == 0:
            return utils.zeros_like_paths(0, model.one)

        time_index = model.get_time_index(time)
        numeraire = model.get_numeraire(time).detach()
        sensitivities = torch.stack(
            [estimator.get(model.libor_factor(time_index, i)) * numeraire
             for i in range(first, model.get_number_of_libors())])
        sensitivities = projector.project(sensitivities)

        if model.get_libor_period_discretization().contains(time) or not self.use_time_grid_adjustment:
            return sensitivities

        # off the libor grid - the last fixed libor also carries sensitivity
        fixed = model.libor_factor(len(model.libors) - 1, first - 1)
        extended = torch.cat([(estimator.get(fixed) * numeraire).unsqueeze(0), sensitivities])
        adjustment = self.get_time_grid_adjustment(time)
        return vector_matrix_product(extended, pseudo_inverse(adjustment))

    def get_time_grid_adjustment(self, time):
        """
        d(forward starting at time + j * delta)/d(native libor) from log linear interpolation of
        neighbouring libors. Shape (m, m + 1, paths) where column 0 is the last fixed libor.
        """
        model = self.model
        periods = model.get_libor_period_discretization()
        first = self.get_first_libor_index(time)
        num_remaining = self.get_number_of_remaining_libors(time)
        delta = model.period_length
        time_index = model.get_time_discretization().get_time_index_nearest_greater_or_equal(time)

        adjustment = model.one.new_zeros((num_remaining, num_remaining + 1, model.num_paths))
        for j in range(num_remaining):
            start = time + j * delta
            previous_time, libor_time, next_time = periods[first + j - 1], periods[first + j], periods[first + j + 1]
            libor_previous = model.get_libor(time_index, first + j - 1).detach()
            libor_next = model.get_libor(time_index, first + j).detach()
            factor1 = (next_time - (start + delta)) / (next_time - libor_time)
            factor2 = (start - previous_time) / (libor_time - previous_time)
            growth_previous = 1.0 + libor_previous * (libor_time - previous_time)
            growth_next = 1.0 + libor_next * (next_time - libor_time)
            log_interpolation = torch.exp(-factor1 * torch.log(growth_next) - factor2 * torch.log(growth_previous))
            adjustment[j, j] = growth_next * log_interpolation * (1.0 - factor2)
            adjustment[j, j + 1] = growth_previous * log_interpolation * (1.0 - factor1)
        return adjustment

    def get_libor_swap_sensitivities(self, time, projector):
        """dL/dS at time from the running sums of numeraire reciprocals (shape (m, m, paths))"""
        model = self.model
        delta = model.period_length
        num_remaining = self.get_number_of_remaining_libors(time)
        weights = model.one.new_zeros((num_remaining, num_remaining, model.num_paths))
        if num_remaining == 0:
            return weights

        weights[0, 0] = 1.0
        sum_df = 1.0 / model.get_numeraire(time + delta).detach()
        for i in range(1, num_remaining):
            df = 1.0 / model.get_numeraire(time + (i + 1) * delta).detach()
            denominator = projector.project(df)
            weights[i, i - 1] = -projector.project(sum_df) / denominator
            sum_df = sum_df + df
            weights[i, i] = projector.project(sum_df) / denominator
        return weights

    def get_weights(self, time, projector):
        if self.weight_mode == utils.WeightMode.Constant:
            if self.constant_weights is None:
                raise utils.ModelUnavailable('Constant libor to swap weights have not been computed')
            num_remaining = self.get_number_of_remaining_libors(time)
            return self.constant_weights[:num_remaining, :num_remaining]
        return self.get_libor_swap_sensitivities(time, projector)

    def get_value_swap_sensitivities(self, estimator, time, projector):
        """dV/dS for the forward curve"""
        value_libor = self.get_value_libor_sensitivities(estimator, time, projector)
        if value_libor.shape[0] == 0:
            return value_libor
        return vector_matrix_product(value_libor, self.get_weights(time, projector))

    def compose_libor_sensitivities(self, value_libor, time, projector):
        """composes an externally supplied dV/dL block with the libor to swap weights"""
        if value_libor.shape[0] == 0:
            return value_libor
        return vector_matrix_product(value_libor, self.get_weights(time, projector))

    def get_first_pillar_index(self, time):
        pillars = self.model.discount_curve.pillars
        return max(int(np.searchsorted(pillars, time, side='right')) - 1, 0)

    def get_value_discount_sensitivities(self, estimator, time, projector):
        """dV/dS for the discount curve via pillars -> grid bonds -> swap rates"""
        model = self.model
        curve = model.discount_curve
        num_remaining = self.get_number_of_remaining_libors(time)
        if num_remaining == 0:
            return utils.zeros_like_paths(0, model.one)

        first_pillar = self.get_first_pillar_index(time)
        value_pillar = torch.stack(
            [estimator.get(curve.get_factor(j)) for j in range(first_pillar, len(curve))])

        grid_pillar = self.get_grid_pillar_sensitivities(time, first_pillar)
        value_grid = vector_matrix_product(value_pillar, pseudo_inverse(grid_pillar))
        swap_bond = self.get_swap_bond_sensitivities(time, projector)
        return vector_matrix_product(value_grid, pseudo_inverse(swap_bond))

    def get_grid_pillar_sensitivities(self, time, first_pillar):
        """
        dP(T_i)/dP(pillar_j) for T_i = time + (i+1) * delta under log linear interpolation.
        Shape (m, pillars from first_pillar, paths).
        """
        model = self.model
        curve = model.discount_curve
        delta = model.period_length
        num_remaining = self.get_number_of_remaining_libors(time)
        grid_pillar = model.one.new_zeros((num_remaining, len(curve) - first_pillar, model.num_paths))
        for i in range(num_remaining):
            maturity = time + (i + 1) * delta
            df = curve.get_discount_factor(maturity).detach()
            for index, weight in curve.interpolation_weights(maturity):
                if index < first_pillar:
                    continue
                pillar_df = curve.tensors[index].detach()
                grid_pillar[i, index - first_pillar] = df * maturity * weight / (curve.pillars[index] * pillar_df)
        return grid_pillar

    def get_swap_bond_sensitivities(self, time, projector):
        """
        dS_s/dP_b for par swap rates S_s = (1 - P_s) / (delta * A_s), A_s = sum_{j<=s} P_j and
        bonds P_b = E[N(t) / N(t + (b+1) delta)]. Lower triangular, shape (m, m, paths).
        """
        model = self.model
        delta = model.period_length
        num_remaining = self.get_number_of_remaining_libors(time)
        numeraire = model.get_numeraire(time).detach()
        bonds = [projector.project(numeraire / model.get_numeraire(time + (b + 1) * delta).detach())
                 for b in range(num_remaining)]

        swap_bond = model.one.new_zeros((num_remaining, num_remaining, model.num_paths))
        annuity = torch.zeros_like(numeraire)
        for s in range(num_remaining):
            annuity = annuity + bonds[s]
            denominator = delta * annuity * annuity
            for b in range(s):
                swap_bond[s, b] = -(1.0 - bonds[s]) / denominator
            swap_bond[s, s] = (-annuity - (1.0 - bonds[s])) / denominator
        return swap_bond

    def get_sensitivities(self, estimator, time, curve_name, projector):
        """
        Native grid dV/dS for the named curve. Returns (values, days) - unknown curves give zeros.
        """
        model = self.model
        days = self.native_days(time)
        if curve_name == model.discount_curve.name:
            values = self.get_value_discount_sensitivities(estimator, time, projector)
        elif curve_name == model.forward_curve.name:
            values = self.get_value_swap_sensitivities(estimator, time, projector)
        else:
            logging.warning('No sensitivities for curve {0} - returning zero'.format(curve_name))
            values = utils.zeros_like_paths(days.size, model.one)
        return values, days
