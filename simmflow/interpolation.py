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
from collections import namedtuple, OrderedDict

# Internal modules
from . import utils
from .sensitivities import map_to_buckets, melt_to_buckets

# a sensitivity vector tagged with how and when it was produced
Snapshot = namedtuple('Snapshot', 'kind time values days')

MELTING_MODES = (utils.SensitivityMode.MeltingOnBuckets, utils.SensitivityMode.MeltingOnGrid)


class SensitivityCache(object):
    """Snapshots keyed by (day, risk class, curve). Only ever cleared as a whole."""

    def __init__(self):
        self.snapshots = OrderedDict()

    def __contains__(self, key):
        return key in self.snapshots

    def __len__(self):
        return len(self.snapshots)

    def get(self, key):
        return self.snapshots.get(key)

    def put(self, key, snapshot):
        self.snapshots[key] = snapshot

    def clear(self):
        self.snapshots.clear()

    def copy(self):
        cache = SensitivityCache()
        cache.snapshots.update(self.snapshots)
        return cache


class Lifecycle(object):
    """
    Tracks which lifecycle boundaries (exercise or start dates) of an instrument have been crossed.
    Each boundary fires once, and only forward in time.
    """

    def __init__(self, boundaries):
        self.boundaries = sorted(set(float(b) for b in boundaries))
        self.crossed = []
        self.state = utils.LifecycleState.PreBoundary

    @property
    def last_boundary(self):
        return self.crossed[-1] if self.crossed else None

    def check(self, time):
        if self.last_boundary is not None and time < self.last_boundary - 1e-10:
            raise utils.StaleCacheAccess(
                'Evaluation time {0} is before the lifecycle boundary {1} already crossed'.format(
                    time, self.last_boundary))

    def advance(self, time):
        """moves to time and returns the boundaries crossed for the first time (ascending)"""
        self.check(time)
        newly_crossed = [b for b in self.boundaries if b not in self.crossed and b <= time + 1e-10]
        for boundary in newly_crossed:
            self.crossed.append(boundary)
            self.state = utils.LifecycleState.PostBoundary
        return newly_crossed


class SensitivityInterpolation(object):
    """
    Produces bucketed sensitivities of one instrument at arbitrary evaluation times from exact
    snapshots, either exactly, by melting a snapshot or by interpolating between two snapshots.
    """

    def __init__(self, instrument, mode, reset_step):
        self.instrument = instrument
        self.configured_mode = utils.lookup_enum(utils.SensitivityMode, mode)
        self.reset_step = reset_step
        self.reset_grid = utils.reset_times(reset_step)
        self.reset()

    def reset(self):
        self.mode = self.configured_mode
        # exact anchors
        self.cache = SensitivityCache()
        # derived results for the current evaluation time
        self.results = SensitivityCache()
        self.lifecycle = None
        self.final_interpolation_time = None
        self.last_evaluation_time = None
        self.previous_boundary = None
        # pathwise life indicators of cancelable deals by day
        self.life_indicators = OrderedDict()

    def get_lifecycle(self):
        if self.lifecycle is None:
            model = self.instrument.get_model()
            # the boundaries of path dependent products are only known after valuation
            self.instrument.get_gradient()
            self.lifecycle = Lifecycle(self.instrument.deal.get_lifecycle_boundaries(model))
            self.final_interpolation_time = self.instrument.deal.get_final_interpolation_time(model)
        return self.lifecycle

    def get_bucket_days(self, risk_class):
        return utils.get_bucket_days(risk_class)

    def get_nominal_melting_time(self, time):
        return self.reset_grid[self.reset_grid.get_time_index_nearest_less_or_equal(time)]

    def get_initial_melting_time(self, time):
        """the latest reset point before time, pinned to the last lifecycle boundary once crossed"""
        boundary = self.get_lifecycle().last_boundary
        return boundary if boundary is not None else self.get_nominal_melting_time(time)

    def advance(self, time):
        lifecycle = self.get_lifecycle()
        newly_crossed = lifecycle.advance(time)

        if self.mode == utils.SensitivityMode.Interpolation and time >= self.final_interpolation_time - 1e-10:
            logging.info('Interpolation no longer possible at {0} - switching to melting'.format(time))
            self.mode = utils.SensitivityMode.MeltingOnBuckets

        time_changed = self.last_evaluation_time is None or abs(time - self.last_evaluation_time) > 1e-10
        if time_changed:
            self.results.clear()
            if (self.mode in MELTING_MODES and lifecycle.state == utils.LifecycleState.PreBoundary
                    and self.reset_grid.contains(time) and len(self.cache)):
                logging.info('Reset point {0} reached - clearing {1} snapshots'.format(time, len(self.cache)))
                self.cache.clear()

        for boundary in newly_crossed:
            position = lifecycle.crossed.index(boundary)
            self.previous_boundary = lifecycle.crossed[position - 1] if position > 0 else None
            previous = self.cache.copy()
            logging.info('Lifecycle boundary {0} crossed at {1} - clearing {2} snapshots'.format(
                boundary, time, len(previous)))
            self.cache.clear()
            self.results.clear()
            self.instrument.deal.on_lifecycle_boundary(self, boundary, previous)

        self.last_evaluation_time = time

    def get_bucket_sensitivities(self, risk_class, curve, time):
        risk_class = utils.lookup_enum(utils.RiskClass, risk_class)
        self.advance(time)
        key = utils.make_snapshot_key(time, risk_class, curve)
        result = self.results.get(key)
        if result is None:
            if risk_class not in self.instrument.deal.risk_classes:
                values = utils.zeros_like_paths(self.get_bucket_days(risk_class).size, self.instrument.get_model().one)
            elif self.mode == utils.SensitivityMode.Exact:
                values = self.get_exact_bucket_sensitivities(risk_class, curve, time)
            elif self.mode == utils.SensitivityMode.Interpolation:
                values = self.get_interpolated_sensitivities(risk_class, curve, time)
            else:
                values = self.get_melted_sensitivities(risk_class, curve, time)
            result = Snapshot(utils.SnapshotKind.Derived, time, values, self.get_bucket_days(risk_class))
            self.results.put(key, result)
        return result.values

    def get_exact_bucket_sensitivities(self, risk_class, curve, time):
        values, days = self.instrument.get_exact_sensitivities(curve, time)
        return map_to_buckets(values, days, self.get_bucket_days(risk_class))

    def get_anchor(self, risk_class, curve, time):
        """exact snapshot at time (bucketed, or on the native grid when melting on the grid)"""
        key = utils.make_snapshot_key(time, risk_class, curve)
        snapshot = self.cache.get(key)
        if snapshot is None:
            logging.info('Computing exact {0} sensitivities for {1} at {2}'.format(risk_class.value, curve, time))
            values, days = self.instrument.get_exact_sensitivities(curve, time)
            if self.mode != utils.SensitivityMode.MeltingOnGrid:
                values = map_to_buckets(values, days, self.get_bucket_days(risk_class))
                days = self.get_bucket_days(risk_class)
            snapshot = Snapshot(utils.SnapshotKind.Exact, time, values, days)
            self.cache.put(key, snapshot)
        return snapshot

    def put_anchor(self, risk_class, curve, time, values, days):
        self.cache.put(utils.make_snapshot_key(time, risk_class, curve),
                       Snapshot(utils.SnapshotKind.Exact, time, values, days))

    def melt_snapshot(self, snapshot, risk_class, time):
        elapsed_days = utils.time_to_days(time - snapshot.time)
        return melt_to_buckets(snapshot.values, snapshot.days, elapsed_days, self.get_bucket_days(risk_class))

    def get_melted_sensitivities(self, risk_class, curve, time):
        anchor = self.get_anchor(risk_class, curve, self.get_initial_melting_time(time))
        return self.melt_snapshot(anchor, risk_class, time) * self.get_survival_probability(time)

    def get_survival_probability(self, time):
        """
        Fraction of paths on which a cancelable deal is still alive at time. A path dies once the
        projected value of its remaining cashflows is no longer positive and stays dead.
        """
        deal = self.instrument.deal
        if time <= 1e-10 or not deal.is_cancelable():
            return 1.0
        day = utils.time_to_days(time)
        if day not in self.life_indicators:
            model = self.instrument.get_model()
            earlier = [d for d in self.life_indicators if d < day]
            previous = self.life_indicators[max(earlier)] if earlier else model.one
            value = self.instrument.get_projector(time).project(deal.get_remaining_value(model, time))
            self.life_indicators[day] = previous * (value > 0.0).type(model.one.dtype)
        return self.life_indicators[day].mean().item()

    def get_interpolation_times(self, time):
        """the exact times bracketing time: reset points, never before the last lifecycle boundary"""
        nominal_time = self.get_nominal_melting_time(time)
        boundary = self.get_lifecycle().last_boundary
        initial_time = max(boundary, nominal_time) if boundary is not None else nominal_time
        final_time = min(nominal_time + self.reset_step, self.final_interpolation_time,
                         self.instrument.get_model().get_horizon())
        return initial_time, final_time

    def get_interpolated_sensitivities(self, risk_class, curve, time):
        initial_time, final_time = self.get_interpolation_times(time)
        initial = self.get_anchor(risk_class, curve, initial_time)
        if final_time - initial_time <= 1e-10:
            return initial.values
        final = self.get_anchor(risk_class, curve, final_time)
        weight = (time - initial_time) / (final_time - initial_time)
        return initial.values + (final.values - initial.values) * weight
