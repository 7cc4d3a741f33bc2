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


from enum import Enum
from collections import namedtuple

import numpy as np
import torch

# Days in year - native grid day offsets are act/365
DAYS_IN_YEAR = 365.0

# small offset used when comparing pathwise exercise times with evaluation times
TIME_EPSILON = 1e-4

# the fixed regulatory maturity buckets (labels and their day counts)
IR_MATURITY_BUCKETS = ['2w', '1m', '3m', '6m', '1y', '2y', '3y', '5y', '10y', '15y', '20y', '30y']
IR_BUCKET_DAYS = np.array([14, 30, 90, 180, 365, 730, 1095, 1825, 3650, 5475, 7300, 10950])

CREDIT_MATURITY_BUCKETS = ['1y', '2y', '3y', '5y', '10y']
CREDIT_BUCKET_DAYS = np.array([365, 730, 1095, 1825, 3650])

# reset grid anchors are generated up to this many years
MAX_RESET_HORIZON = 50.0

# Named tuples to make life easier
Factor = namedtuple('Factor', 'type name')
SnapshotKey = namedtuple('SnapshotKey', 'day risk_class curve')


class RiskClass(Enum):
    InterestRate = 'InterestRate'
    CreditQ = 'CreditQ'
    CreditNonQ = 'CreditNonQ'


class SensitivityMode(Enum):
    Exact = 'Exact'
    MeltingOnBuckets = 'Melting_On_Buckets'
    MeltingOnGrid = 'Melting_On_Grid'
    Interpolation = 'Interpolation'


class WeightMode(Enum):
    Constant = 'Constant'
    Stochastic = 'Stochastic'


class DeliveryType(Enum):
    Physical = 'Physical'
    Cash = 'Cash'


class SnapshotKind(Enum):
    Exact = 'Exact'
    Derived = 'Derived'


class LifecycleState(Enum):
    PreBoundary = 'PreBoundary'
    PostBoundary = 'PostBoundary'


# Custom Exceptions
class ModelUnavailable(Exception):
    def __init__(self, message):
        super(ModelUnavailable, self).__init__(message)
        self.message = message


class SingularMatrix(Exception):
    def __init__(self, message):
        super(SingularMatrix, self).__init__(message)
        self.message = message


class StaleCacheAccess(Exception):
    def __init__(self, message):
        super(StaleCacheAccess, self).__init__(message)
        self.message = message


def lookup_enum(enum_type, value):
    """Accepts either an enum member, its value or its member name"""
    if isinstance(value, enum_type):
        return value
    for member in enum_type:
        if value in (member.value, member.name):
            return member
    raise Exception('{0} {1} not implemented'.format(enum_type.__name__, value))


def get_bucket_days(risk_class):
    """Day counts of the regulatory buckets for the given risk class"""
    return IR_BUCKET_DAYS if lookup_enum(RiskClass, risk_class) == RiskClass.InterestRate else CREDIT_BUCKET_DAYS


def get_bucket_labels(risk_class):
    if lookup_enum(RiskClass, risk_class) == RiskClass.InterestRate:
        return IR_MATURITY_BUCKETS
    return CREDIT_MATURITY_BUCKETS


def time_to_days(time_in_years):
    """canonical integer day count for a time in years (act/365)"""
    return int(np.floor(DAYS_IN_YEAR * time_in_years + 0.5))


def make_snapshot_key(time_in_years, risk_class, curve):
    return SnapshotKey(time_to_days(time_in_years), lookup_enum(RiskClass, risk_class), curve)


def zeros_like_paths(num_rows, one):
    """A block of zero pathwise vectors with the dtype and device of the unit tensor"""
    return one.new_zeros((num_rows, one.shape[0]))


class TimeDiscretization(object):
    """Sorted set of times with nearest index lookups (tolerant to floating point noise)"""

    def __init__(self, times, tolerance=1e-10):
        self.times = np.unique(np.asarray(times, dtype=np.float64))
        self.tolerance = tolerance

    def __len__(self):
        return self.times.size

    def __getitem__(self, index):
        return self.times[index]

    @classmethod
    def uniform(cls, start, num_steps, step):
        return cls(start + step * np.arange(num_steps + 1))

    def get_time_step(self, index):
        return self.times[index + 1] - self.times[index]

    def get_time_index(self, time):
        """Exact index of time or -1 if not on the grid"""
        index = self.get_time_index_nearest_less_or_equal(time)
        if index >= 0 and abs(self.times[index] - time) <= self.tolerance:
            return index
        return -1

    def get_time_index_nearest_less_or_equal(self, time):
        return int(np.searchsorted(self.times, time + self.tolerance, side='right')) - 1

    def get_time_index_nearest_greater_or_equal(self, time):
        return int(np.searchsorted(self.times, time - self.tolerance, side='left'))

    def contains(self, time):
        return self.get_time_index(time) >= 0


def reset_times(reset_step):
    """The fixed grid of exact recomputation anchors"""
    return TimeDiscretization(np.arange(0.0, MAX_RESET_HORIZON + reset_step / 2.0, reset_step))


def torch_unit(num_paths, prec=torch.float64, device=torch.device('cpu')):
    """storing a unit tensor allows the dtype and device to be encoded"""
    return torch.ones(num_paths, dtype=prec, device=device)
