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


__author__ = "Shuaib Osman"
__license__ = "Free for non-commercial use"
__all__ = ['version_info', '__version__', '__author__', '__license__', 'Context', 'SIMMPortfolio',
           'make_flat_curves', 'load_job', 'run_sensitivities', 'update_dict']

import logging
import collections.abc

import numpy as np
import torch

from ._version import version_info, __version__
from . import utils
from .config import Context
from .calculation import SIMMPortfolio


def update_dict(d, u):
    for k, v in u.items():
        d[k] = update_dict(d.get(k, {}), v) if isinstance(v, collections.abc.Mapping) else v
    return d


def make_flat_curves(rate, pillars=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0), period_length=0.5, num_libors=20):
    """
    generates flat discount and forward curve sections (continuously compounded rate) for a model
    :return: a dictionary with the Discount_Curve and Forward_Curve definitions
    """
    pillars = np.asarray(pillars, dtype=np.float64)
    fixings = period_length * np.arange(num_libors)
    forward = (np.exp(rate * period_length) - 1.0) / period_length
    return {'Discount_Curve': {'Pillars': pillars.tolist(), 'Discount_Factors': np.exp(-rate * pillars).tolist()},
            'Forward_Curve': {'Fixings': fixings.tolist(), 'Forwards': [forward] * num_libors}}


def load_job(filename):
    """
    Loads a json job file (model, calculation parameters and deals)
    :return: a context object with the job loaded
    """
    config = Context()
    config.parse_json(filename)
    return config


def run_sensitivities(context, prec=torch.float64, overrides=None):
    """
    Runs the dynamic sensitivity calculation on the provided context
    :param context: a Context object
    :param prec: the numerical precision to use (default float64)
    :param overrides: a dictionary of overrides to replace the calculation parameters
    :return: a tuple containing the calculation object and the output dictionary
    """
    from .calculation import construct_calculation

    if torch.cuda.is_available():
        device = torch.device("cuda:0")
        torch.cuda.empty_cache()
    else:
        device = torch.device("cpu")

    params = {'Time_Grid': '0d 1m(1m)', 'Horizon': '10Y'}
    if overrides is not None:
        update_dict(params, overrides)

    logging.info('Running sensitivities on {0}'.format(device))
    calc = construct_calculation('SIMM_Sensitivities', context, device=device, prec=prec)
    out = calc.execute(params)
    return calc, out
