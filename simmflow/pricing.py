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
from collections import OrderedDict

# third party stuff
import torch

# Internal modules
from . import utils


class SensitivitiesEstimator(object):
    """ Implements the pathwise AAD sensitivities

    Attributes:

        value: pathwise function output (tensor)
        params: risk factor identifier to model node (OrderedDict of tensor(s))

    Nodes without a path to the value are not stored and read back as zero.
    """

    def __init__(self, value, params):
        """
        Args:
            value: pathwise value (tensor with one entry per path)
            params: OrderedDict of risk factor -> tensor
        """
        self.one = value.new_ones(value.shape)
        factors = [(key, tensor) for key, tensor in params.items() if tensor.requires_grad]
        if factors and value.requires_grad:
            # each path only depends on its own inputs so the gradient of the sum is pathwise
            grads = torch.autograd.grad(
                value.sum(), [tensor for _, tensor in factors], retain_graph=True, allow_unused=True)
        else:
            grads = []
        self.grad = OrderedDict(
            [(key, grad.detach()) for (key, _), grad in zip(factors, grads) if grad is not None])

    def __contains__(self, factor):
        return factor in self.grad

    def get(self, factor):
        """pathwise dV/d(factor), zero if the factor does not influence the value"""
        return self.grad.get(factor, self.one.new_zeros(self.one.shape))

    def report_grad(self):
        return OrderedDict([(factor, tensor.mean().item()) for factor, tensor in self.grad.items()])


def check_finite(matrix, name):
    if not torch.isfinite(matrix).all():
        raise utils.SingularMatrix('{0} contains non-finite entries'.format(name))


def pseudo_inverse(matrix):
    """
    Per path SVD pseudo inverse of a (rows, cols, paths) block of pathwise entries.
    Returns a (cols, rows, paths) block.
    """
    check_finite(matrix, 'Matrix')
    try:
        inverse = torch.linalg.pinv(matrix.permute(2, 0, 1))
    except RuntimeError as e:
        raise utils.SingularMatrix('Pseudo inverse failed - {0}'.format(e))
    check_finite(inverse, 'Pseudo inverse')
    return inverse.permute(1, 2, 0)


def matrix_product(left, right):
    """pathwise (rows, k, paths) x (k, cols, paths)"""
    return torch.einsum('ikp,kjp->ijp', left, right)


def vector_matrix_product(vector, matrix):
    """pathwise (rows, paths) x (rows, cols, paths) -> (cols, paths)"""
    return torch.einsum('ip,ijp->jp', vector, matrix)


def identity(size, one):
    return torch.eye(size, dtype=one.dtype, device=one.device).unsqueeze(2).expand(
        size, size, one.shape[0]).clone()


def exercise_indicator(exercise_time, time):
    """1 on paths that exercised on or before time, 0 otherwise"""
    return (exercise_time <= time + utils.TIME_EPSILON).type(exercise_time.dtype)


def regression_basis(regressors, order=2):
    """the constant plus powers 1..order of each regressor, shape (paths, basis)"""
    regressors = [regressor.detach() for regressor in regressors]
    basis = [torch.ones_like(regressors[0])]
    for regressor in regressors:
        basis.extend([regressor ** power for power in range(1, order + 1)])
    return torch.stack(basis, dim=1)


class ConditionalExpectationRegression(object):
    """
    Least squares estimate of E[Y | regressors] on a polynomial basis. The operator is built once
    and is then a pure function of the projected value.
    """

    def __init__(self, regressors, order=2):
        self.basis = regression_basis(regressors, order)
        check_finite(self.basis, 'Regression basis')
        try:
            self.basis_inverse = torch.linalg.pinv(self.basis)
        except RuntimeError as e:
            raise utils.SingularMatrix('Regression failed - {0}'.format(e))

    def project(self, value):
        """projects a pathwise vector (paths,) or a block of them (rows, paths)"""
        value = value.detach()
        if value.dim() == 1:
            return self.basis @ (self.basis_inverse @ value)
        return (self.basis @ (self.basis_inverse @ value.T)).T


def get_projector(model, time, exercise_time=None, order=2):
    """
    Builds the projector at time from a short tenor forward L(t; t, t+delta) and the forward to
    the last libor date L(t; t, T_{n-1}). Regressors are zero on paths that have not exercised.
    """
    delta = model.period_length
    last_date = model.get_libor_period_discretization()[model.get_number_of_libors() - 1]
    short_rate = model.get_forward_rate(time, time, time + delta)
    if last_date - time > 1e-8:
        long_rate = model.get_forward_rate(time, time, last_date)
    else:
        long_rate = short_rate
    regressors = [short_rate, long_rate]
    if exercise_time is not None:
        indicator = exercise_indicator(exercise_time, time)
        regressors = [regressor * indicator for regressor in regressors]
    return ConditionalExpectationRegression(regressors, order)
