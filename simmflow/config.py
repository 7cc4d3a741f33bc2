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


import os
# import standard libraries
import json
import logging
from collections import OrderedDict

import numpy as np
from pyparsing import Literal, Word, nums, OneOrMore, delimitedList, oneOf, Optional, Group

# import libraries
from . import utils
from .instruments import construct_instrument


def get_grid_grammar():
    """
    Contains the grammar definition rules for parsing periods and grids of evaluation times
    """

    def push_int(strg, loc, toks):
        return int(toks[0])

    def push_single_period(strg, loc, toks):
        return toks[0] * Context.offset_lookup[toks[1].upper()]

    def push_period(strg, loc, toks):
        return float(sum(toks.asList()))

    def push_grid(strg, loc, toks):
        return tuple(tuple(group) if len(group) == 2 else (group[0], None) for group in toks.asList())

    lpar = Literal("(").suppress()
    rpar = Literal(")").suppress()
    decimal = Literal(".")

    integer = (Word("+-" + nums, nums) + ~decimal).setName('int').setParseAction(push_int)
    single_period = (integer + oneOf(['D', 'M', 'Y', 'W'], caseless=True)).setName('single_period').setParseAction(
        push_single_period)
    period = OneOrMore(single_period).setName('period').setParseAction(push_period)
    grid = delimitedList(Group(period + Optional(lpar + period + rpar)),
                         delim=' ').leaveWhitespace().setParseAction(push_grid)

    return grid, period


def parse_period(period, period_parser=None):
    """a period string such as '6M' or '1Y6M' in years - numbers are taken as years"""
    if isinstance(period, (int, float)):
        return float(period)
    if period_parser is None:
        period_parser = get_grid_grammar()[1]
    return period_parser.parseString(period.strip(), parseAll=True)[0]


class Context(object):
    """
    Reads (parses) a JSON job file holding the model, the calculation parameters and the deals.
    Provides support for parsing periods and grids of evaluation times.
    """

    # year fractions of the period units (act/365 for days and weeks)
    offset_lookup = {'D': 1.0 / utils.DAYS_IN_YEAR, 'W': 7.0 / utils.DAYS_IN_YEAR, 'M': 1.0 / 12.0, 'Y': 1.0}

    calculation_defaults = OrderedDict([
        ('Sensitivity_Mode', utils.SensitivityMode.MeltingOnBuckets.value),
        ('Weight_Mode', utils.WeightMode.Constant.value),
        ('Reset_Step', '1Y'),
        ('Calculation_Currency', 'EUR'),
        ('Discount_Curve', 'OIS'),
        ('Use_Time_Grid_Adjustment', 'Yes'),
        ('Regression_Order', 2)
    ])

    def __init__(self):
        self.model = {}
        self.calculation = OrderedDict(self.calculation_defaults)
        self.deals = []
        self.valuation_options = {}
        self.file_ref = None
        self.last_file_loaded = None
        self.grid_parser, self.period_parser = get_grid_grammar()

    def parse_period(self, period):
        return parse_period(period, self.period_parser)

    def parse_grid(self, grid, horizon):
        """
        A grid such as '0d 3m(3m) 2y(1y)' - each offset is followed by an optional step that
        repeats until the next offset (or the horizon).
        """
        groups = self.grid_parser.parseString(grid.strip(), parseAll=True)[0]
        times = []
        for index, (start, step) in enumerate(groups):
            end = groups[index + 1][0] if index + 1 < len(groups) else horizon
            if step is None or step <= 0.0:
                times.append(start)
            else:
                times.extend(np.arange(start, end + 1e-10, step).tolist())
        return np.unique(np.clip(np.round(times, 10), 0.0, horizon))

    def parse_calculation(self, params):
        calculation = OrderedDict(self.calculation_defaults)
        calculation.update(params)
        # check the options early
        utils.lookup_enum(utils.SensitivityMode, calculation['Sensitivity_Mode'])
        utils.lookup_enum(utils.WeightMode, calculation['Weight_Mode'])
        calculation['Reset_Step'] = self.parse_period(calculation['Reset_Step'])
        if calculation['Reset_Step'] <= 0.0:
            raise Exception('Reset_Step must be positive - got {0}'.format(calculation['Reset_Step']))
        return calculation

    def parse_json(self, filename):
        with open(filename, 'rt') as f:
            self.last_file_loaded = filename
            self.file_ref = os.path.splitext(os.path.split(self.last_file_loaded)[-1])[0]
            data = json.load(f, object_pairs_hook=OrderedDict)

        self.load(data)

    def load(self, data):
        if 'Model' not in data:
            raise Exception('Job {0} has no Model section'.format(self.file_ref))
        self.model = data['Model']
        self.calculation = self.parse_calculation(data.get('Calculation', {}))
        self.valuation_options = data.get('Valuation_Configuration', {})
        self.deals = [construct_instrument(deal, self.valuation_options) for deal in data.get('Deals', [])]
        logging.info('Loaded {0} deals from {1}'.format(len(self.deals), self.file_ref))

    def write_json(self, json_filename):
        calculation = OrderedDict(self.calculation)
        with open(json_filename, 'wt') as f:
            f.write(json.dumps({'Model': self.model,
                                'Calculation': calculation,
                                'Valuation_Configuration': self.valuation_options,
                                'Deals': [deal.field for deal in self.deals]}, indent=2))
