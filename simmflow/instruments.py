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

# third party stuff
import numpy as np
import torch

# Internal modules
from . import utils
from .pricing import exercise_indicator, get_projector
from .sensitivities import map_to_buckets


class Deal(object):
    """
    Base class for representing a trade/deal. Products value themselves pathwise at time 0 and
    describe their lifecycle boundaries (dates after which their sensitivities must be re-anchored).
    """
    documentation = ''
    risk_classes = (utils.RiskClass.InterestRate,)

    def __init__(self, params, valuation_options=None):
        # valuation options
        self.options = valuation_options if valuation_options is not None else {}
        # instrument parameters
        self.field = params
        # is this instrument path dependent
        self.path_dependent = False

    def get_reference(self):
        return self.field.get('Reference', self.__class__.__name__)

    def get_currency(self):
        return self.field.get('Currency', 'EUR')

    def is_cancelable(self):
        return self.field.get('Is_Cancelable', 'No') == 'Yes'

    def get_remaining_value(self, model, time):
        """realised pathwise value at time of the cashflows after time"""
        raise Exception('get_remaining_value in class {} not implemented yet for deal {}'.format(
            self.__class__.__name__, self.get_reference()))

    def value(self, model):
        raise Exception('value in class {} not implemented yet for deal {}'.format(
            self.__class__.__name__, self.get_reference()))

    def get_exercise_time(self):
        """pathwise exercise time (infinity where never exercised), None if not exercisable"""
        return None

    def get_lifecycle_boundaries(self, model):
        return []

    def get_final_interpolation_time(self, model):
        return np.inf

    def on_lifecycle_boundary(self, engine, boundary, previous):
        pass


class SwapDeal(Deal):
    documentation = (
        'Interest Rates', [
            'A fixed for floating swap on the libor periods of the model between `Start` and `Maturity`',
            '(both on the libor period grid). Each period pays',
            '',
            '$$\\omega N_i \\delta (L_i(T_i) - K_i)$$',
            '',
            'at $T_{i+1}$ where $\\omega=1$ if `Pay_Fixed` is `Yes` and $-1$ otherwise. `Notional` and',
            '`Fixed_Rate` may be a single number or one number per period. The pathwise value is',
            '',
            '$$\\sum_i \\frac{\\omega N_i \\delta (L_i(T_i) - K_i)}{N(T_{i+1})}$$',
            '',
            'Forward starting swaps ($T_s>0$) re-anchor their sensitivities on the start date.',
            '',
            'Deals with `Is_Cancelable` set to `Yes` are cancelled on paths where the projected value of',
            'their remaining cashflows is no longer positive; melted sensitivities are scaled by the',
            'fraction of paths still alive.'])

    def __init__(self, params, valuation_options=None):
        super(SwapDeal, self).__init__(params, valuation_options)

    def get_start(self):
        return float(self.field.get('Start', 0.0))

    def get_direction(self):
        return 1.0 if self.field.get('Pay_Fixed', 'Yes') == 'Yes' else -1.0

    def get_libor_index(self, model, time, name):
        index = model.get_libor_period_discretization().get_time_index(time)
        if index < 0:
            raise Exception('{0} {1} {2} is not on the libor period grid'.format(
                self.get_reference(), name, time))
        return index

    def get_periods(self, model):
        """libor index -> (notional, fixed rate) for every period of the swap"""
        start = self.get_libor_index(model, self.get_start(), 'Start')
        end = self.get_libor_index(model, float(self.field['Maturity']), 'Maturity')
        if end <= start:
            raise Exception('{0} matures before it starts'.format(self.get_reference()))
        indices = np.arange(start, end)
        notionals = np.broadcast_to(np.asarray(self.field.get('Notional', 1.0), dtype=np.float64), indices.shape)
        rates = np.broadcast_to(np.asarray(self.field['Fixed_Rate'], dtype=np.float64), indices.shape)
        return OrderedDict([(i, (n, k)) for i, n, k in zip(indices, notionals, rates)])

    def get_schedule(self, model, start_time=None):
        periods = self.get_periods(model)
        if start_time is None:
            return list(periods.keys())
        first = model.get_libor_period_discretization().get_time_index_nearest_greater_or_equal(start_time)
        return [i for i in periods if i >= first]

    def value_from(self, model, schedule):
        """realised pathwise value (in units of N(0)) of the periods in schedule"""
        periods = self.get_periods(model)
        delta = model.period_length
        value = model.one.new_zeros(model.one.shape)
        for i in schedule:
            notional, rate = periods[i]
            cashflow = self.get_direction() * notional * delta * (model.get_fixed_libor(i) - rate)
            value = value + cashflow / model.get_numeraire(model.libor_periods[i + 1])
        return value

    def get_value_at(self, model, time, schedule):
        """value of the periods in schedule measurable at time"""
        periods = self.get_periods(model)
        delta = model.period_length
        time_index = model.get_time_index(time)
        value = model.one.new_zeros(model.one.shape)
        for i in schedule:
            notional, rate = periods[i]
            bond = model.get_forward_bond(time, model.libor_periods[i + 1])
            value = value + self.get_direction() * notional * delta * (model.get_libor(time_index, i) - rate) * bond
        return value

    def get_exercised_libor_sensitivities(self, model, time, schedule):
        """analytic dV/dL at time of the periods in schedule for the libors remaining after time"""
        periods = self.get_periods(model)
        delta = model.period_length
        first = model.get_libor_period_discretization().get_time_index_nearest_greater_or_equal(time)
        rows = []
        for i in range(first, model.get_number_of_libors()):
            if i in schedule:
                notional, _ = periods[i]
                bond = model.get_forward_bond(time, model.libor_periods[i + 1]).detach()
                rows.append(self.get_direction() * notional * delta * bond)
            else:
                rows.append(model.one.new_zeros(model.one.shape))
        return torch.stack(rows) if rows else utils.zeros_like_paths(0, model.one)

    def value(self, model):
        return self.value_from(model, self.get_schedule(model))

    def get_remaining_value(self, model, time):
        remaining = self.value_from(model, self.get_schedule(model, time))
        return (remaining * model.get_numeraire(time)).detach()

    def get_lifecycle_boundaries(self, model):
        return [self.get_start()] if self.get_start() > 0.0 else []


class SwaptionDeal(SwapDeal):
    documentation = (
        'Interest Rates', [
            'A European option to enter the underlying `SwapDeal` on its start date $T_e$. The exercise',
            'decision is taken on the swap value measurable at $T_e$',
            '',
            '$$U(T_e)=\\sum_i \\omega N_i \\delta (L_i(T_e) - K_i) P(T_e, T_{i+1})$$',
            '',
            'and is not differentiated. With `Physical` delivery the exercised paths receive the swap',
            'cashflows; with `Cash` delivery $U(T_e)^+$ is paid at $T_e$. Physically settled swaptions',
            're-anchor their sensitivities on the exercise date on the exercised swap.'])

    def __init__(self, params, valuation_options=None):
        super(SwaptionDeal, self).__init__(params, valuation_options)
        self.delivery = utils.lookup_enum(utils.DeliveryType, self.field.get('Delivery', 'Physical'))
        self.exercise_time = None

    def get_exercise_date(self):
        return self.get_start()

    def get_exercise_indicator(self, model):
        schedule = self.get_schedule(model)
        intrinsic = self.get_value_at(model, self.get_exercise_date(), schedule).detach()
        return (intrinsic > 0.0).type(model.one.dtype)

    def get_exercised_value(self, model):
        return self.get_exercise_indicator(model) * self.value_from(model, self.get_schedule(model))

    def value(self, model):
        exercise_date = self.get_exercise_date()
        indicator = self.get_exercise_indicator(model)
        self.exercise_time = torch.where(
            indicator > 0.0, torch.full_like(indicator, exercise_date), torch.full_like(indicator, np.inf))
        if self.delivery == utils.DeliveryType.Physical:
            return self.get_exercised_value(model)
        payoff = self.get_value_at(model, exercise_date, self.get_schedule(model))
        return indicator * payoff / model.get_numeraire(exercise_date)

    def get_remaining_value(self, model, time):
        if self.delivery == utils.DeliveryType.Physical:
            remaining = self.get_exercise_indicator(model) * self.value_from(model, self.get_schedule(model, time))
        elif time < self.get_exercise_date() - 1e-10:
            remaining = self.value(model)
        else:
            remaining = model.one.new_zeros(model.one.shape)
        return (remaining * model.get_numeraire(time)).detach()

    def get_lifecycle_boundaries(self, model):
        return [self.get_exercise_date()] if self.delivery == utils.DeliveryType.Physical else []

    def get_final_interpolation_time(self, model):
        return self.get_exercise_date()

    def on_lifecycle_boundary(self, engine, boundary, previous):
        logging.info('{0} exercised at {1} - switching to the underlying swap'.format(
            self.get_reference(), boundary))
        engine.instrument.reset_gradient(self.get_exercised_value(engine.instrument.get_model()))


class BermudanSwaptionDeal(SwapDeal):
    documentation = (
        'Interest Rates', [
            'An option to enter the remaining periods of the underlying swap on any of the',
            '`Exercise_Dates` (on the libor period grid). Exercise is decided by Longstaff-Schwartz',
            'regression: on each exercise date (backwards) the conditional expectations of the exercise',
            'value and of the continuation value are estimated on the forward rate regressors and the',
            'option is exercised where the exercise value is positive and exceeds the continuation',
            'value. The pathwise exercise time (infinity where never exercised) is recorded.',
            '',
            'After exercise the sensitivities are re-accumulated analytically from the exercised swap',
            'on each exercise date, using only the paths that exercised since the previous exercise',
            'date, on top of the previous exercise date\'s snapshot melted forward.'])

    def __init__(self, params, valuation_options=None):
        super(BermudanSwaptionDeal, self).__init__(params, valuation_options)
        self.path_dependent = True
        self.exercise_time = None

    def get_exercise_dates(self):
        return sorted(float(x) for x in self.field['Exercise_Dates'])

    def get_start(self):
        return self.get_exercise_dates()[0]

    def value(self, model):
        order = self.options.get('Regression_Order', 2)
        value = model.one.new_zeros(model.one.shape)
        exercise_time = torch.full_like(model.one, np.inf)
        for exercise_date in reversed(self.get_exercise_dates()):
            exercised = self.value_from(model, self.get_schedule(model, exercise_date))
            numeraire = model.get_numeraire(exercise_date).detach()
            projector = get_projector(model, exercise_date, order=order)
            exercise_value = projector.project(exercised * numeraire)
            continuation_value = projector.project(value * numeraire)
            exercise = (exercise_value > continuation_value) & (exercise_value > 0.0)
            value = torch.where(exercise, exercised, value)
            exercise_time = torch.where(exercise, torch.full_like(exercise_time, exercise_date), exercise_time)
        self.exercise_time = exercise_time
        return value

    def get_exercise_time(self):
        return self.exercise_time

    def get_remaining_value(self, model, time):
        if self.exercise_time is None:
            self.value(model)
        remaining = model.one.new_zeros(model.one.shape)
        for exercise_date in self.get_exercise_dates():
            exercised = (self.exercise_time == exercise_date).type(model.one.dtype)
            remaining = remaining + exercised * self.value_from(
                model, self.get_schedule(model, max(exercise_date, time)))
        return (remaining * model.get_numeraire(time)).detach()

    def get_first_exercise_time(self):
        if self.exercise_time is None:
            raise utils.ModelUnavailable('{0} has not been valued'.format(self.get_reference()))
        return float(self.exercise_time.min())

    def get_lifecycle_boundaries(self, model):
        first = self.get_first_exercise_time()
        return [date for date in self.get_exercise_dates() if date >= first - 1e-10]

    def get_final_interpolation_time(self, model):
        first = self.get_first_exercise_time()
        return first if np.isfinite(first) else self.get_exercise_dates()[-1]

    def on_lifecycle_boundary(self, engine, boundary, previous):
        instrument = engine.instrument
        model = instrument.get_model()
        risk_class = utils.RiskClass.InterestRate
        curve = model.forward_curve.name
        bucket_days = utils.get_bucket_days(risk_class)
        previous_boundary = engine.previous_boundary

        # only paths exercised since the previous exercise date contribute
        exercised = exercise_indicator(self.exercise_time, boundary)
        if previous_boundary is not None:
            exercised = exercised * (self.exercise_time > previous_boundary + utils.TIME_EPSILON).type(
                exercised.dtype)

        value_libor = self.get_exercised_libor_sensitivities(
            model, boundary, self.get_schedule(model, boundary)) * exercised
        values = map_to_buckets(instrument.compose_libor_sensitivities(value_libor, boundary),
                                instrument.transformation.native_days(boundary), bucket_days)

        base = previous.get(utils.make_snapshot_key(previous_boundary, risk_class, curve)) \
            if previous_boundary is not None else None
        if base is not None:
            values = values + engine.melt_snapshot(base, risk_class, boundary)

        logging.info('{0} re-accumulated sensitivities on {1} paths at exercise date {2}'.format(
            self.get_reference(), int(exercised.sum().item()), boundary))
        engine.put_anchor(risk_class, curve, boundary, values, bucket_days)


def construct_instrument(param, all_valuation_options=None):
    if param.get('Object') not in globals():
        raise Exception('Instrument {0} not defined'.format(param.get('Object')))
    else:
        deal_options = (all_valuation_options or {}).get(param.get('Object'), {})
        return globals().get(param.get('Object'))(param, deal_options)
