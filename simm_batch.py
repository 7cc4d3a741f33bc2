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
import sys
import time
import logging
import traceback
import pandas as pd

from simmflow import load_job
from simmflow.calculation import SIMMPortfolio
from simmflow.stochasticprocess import construct_model


class JOB(object):
    def __init__(self, cx, output_file, time_grid, horizon, curves=None):
        self.cx = cx
        self.output_file = output_file
        self.time_grid = time_grid
        self.horizon = horizon
        self.curves = curves
        self.stats = {}
        self.model = None

    def run_deal(self, deal):
        portfolio = SIMMPortfolio([deal], self.cx.calculation, self.model)
        horizon = min(self.cx.parse_period(self.horizon), self.model.get_horizon())
        times = self.cx.parse_grid(self.time_grid, horizon)
        curves = self.curves or [self.model.forward_curve.name, self.model.discount_curve.name]
        report = portfolio.report(times, curves)
        report.insert(0, 'Reference', deal.get_reference())
        return report

    def perform_calc(self):
        self.stats['Model_Setup_Time'] = time.monotonic()
        self.model = construct_model(self.cx.model)
        self.stats['Model_Setup_Time'] = time.monotonic() - self.stats['Model_Setup_Time']

        reports = []
        for deal in self.cx.deals:
            logging.root.name = deal.get_reference()
            try:
                reports.append(self.run_deal(deal))
            except Exception as e:
                logging.error('!! CRITICAL ERROR In Calc !! - {0} - Skipping'.format(e.args))
                exc_type, exc_value, exc_traceback = sys.exc_info()
                traceback.print_exception(exc_type, exc_value, exc_traceback, limit=2, file=sys.stdout)

        if reports:
            pd.concat(reports, ignore_index=True).to_csv(self.output_file, index=False)
            logging.info('Wrote {0} deals to {1}'.format(len(reports), self.output_file))
        return len(reports)


def main():
    import argparse

    parser = argparse.ArgumentParser(description='Run dynamic SIMM delta sensitivities on a .json job file.')
    parser.add_argument('job', type=str, help='the job file (model, calculation and deals)')
    parser.add_argument('output', type=str, help='output csv file')
    parser.add_argument('--times', type=str, default='0d 1m(1m)', help='evaluation grid e.g. \'0d 3m(3m)\'')
    parser.add_argument('--horizon', type=str, default='10Y', help='last evaluation time e.g. 5Y')
    parser.add_argument('--curves', type=str, nargs='*', help='curves to report (default all model curves)')

    # get the arguments
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(name)-12s %(levelname)-8s %(message)s')

    if not os.path.isfile(args.job):
        logging.error('Job file {0} not found'.format(args.job))
        return 1

    cx = load_job(args.job)
    completed = JOB(cx, args.output, args.times, args.horizon, args.curves).perform_calc()
    return 0 if completed == len(cx.deals) else 1


if __name__ == '__main__':
    sys.exit(main())
