"""
Util
==================
A set of useful extra functions for NEWUOA.

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program. If not, see <http://www.gnu.org/licenses/>.

The development of this software was sponsored by NAG Ltd. (http://www.nag.co.uk)
and the EPSRC Centre For Doctoral Training in Industrially Focused Mathematical
Modelling (EP/L015803/1) at the University of Oxford. Please contact NAG for
alternative licensing.

Copyright 2017, Lindon Roberts

"""
import logging
from math import pi
import numpy as np

__all__ = ['NewuoaError', 'PreconditionViolation', 'IllConditioned', 'DivergedGeometry', 'NonFiniteObjective',
           'sumsq', 'get_vector_max', 'get_vector_min', 'all_square_distances', 'calculate_model_value',
           'eval_objective', 'circle_search', 'ZERO_THRESH']

ZERO_THRESH = 1e-14
NUM_ANGLES = 50  # samples on the circle used by circle_search


class NewuoaError(Exception):
    def __init__(self, msg, x=None, f=None):
        super().__init__(msg)
        self.x = x  # best point found before the run was stopped (if any)
        self.f = f


class PreconditionViolation(NewuoaError, ValueError):
    # Bad parameters or initial point, raised before any evaluation
    pass


class IllConditioned(NewuoaError):
    # Incremental update of the inverse KKT matrix is unsafe; recovered by a full rebuild
    pass


class DivergedGeometry(NewuoaError, np.linalg.LinAlgError):
    # The interpolation points are degenerate, so even a full rebuild fails
    pass


class NonFiniteObjective(NewuoaError, ArithmeticError):
    # The objective returned inf or nan
    pass


def sumsq(x):
    # There are several ways to calculate sum of squares of a vector:
    #   np.dot(x,x)
    #   np.sum(x**2)
    #   np.sum(np.square(x))
    #   etc.
    # Using the timeit routine, it seems like dot(x,x) is ~3-4x faster than other methods
    return np.dot(x, x)


def get_vector_max(x):
    # Get k and x[k] with max value of x
    idx = np.argmax(x)
    return idx, x[idx]


def get_vector_min(x):
    # Get k and x[k] with min value of x
    idx = np.argmin(x)
    return idx, x[idx]


def all_square_distances(xpt, xopt):
    # Return vector of squared Euclidean distances between each row of xpt and xopt
    npt, n = xpt.shape
    assert xopt.size == n, "xpt and xopt have incompatible sizes"
    diffs = xpt - xopt
    return np.sum(diffs * diffs, axis=1)


def calculate_model_value(gopt, hq, s):
    # Calculate model value (s^T * gopt + 0.5* s^T * H * s) = s^T * (gopt + 0.5 * H*s)
    assert gopt.shape == s.shape, "gopt and s have incompatible sizes"
    assert hq.shape == (s.size, s.size), "hq and s have incompatible sizes"
    return np.dot(s, gopt + 0.5 * np.dot(hq, s))


def eval_objective(objfun, x, verbose=True, eval_num=0, full_x_thresh=6):
    # Evaluate objective on a copy of x, so the caller cannot alter our arrays
    f = float(objfun(x.copy()))

    if verbose:
        if len(x) < full_x_thresh:
            logging.info("Function eval %i has f = %.15g at x = " % (eval_num, f) + str(x))
        else:
            logging.info("Function eval %i has f = %.15g at x = [...]" % (eval_num, f))

    return f


def circle_search(fun, nsamples=NUM_ANGLES):
    # Minimise a scalar function of an angle over [0, 2*pi).
    # Sample at equally spaced angles (theta=0 included, so we never do worse than the
    # starting point), then refine with a parabola through the best sample and its neighbours.
    angles = (2.0 * pi / nsamples) * np.arange(nsamples)
    vals = np.array([fun(theta) for theta in angles])
    isav, fmin = get_vector_min(vals)

    fprev = vals[isav - 1]  # wraps around for isav = 0
    fnext = vals[(isav + 1) % nsamples]
    curv = fprev + fnext - 2.0 * fmin
    if curv <= 0.0:
        return angles[isav], fmin

    theta = (isav + 0.5 * (fprev - fnext) / curv) * (2.0 * pi / nsamples)
    ftheta = fun(theta)
    if ftheta < fmin:
        return theta, ftheta
    return angles[isav], fmin
