"""
Geometry
==================
Choosing which interpolation point to replace, and geometry-improving steps.
Based on the KNEW selection and the routine BIGLAG from NEWUOA (Powell, 2004).


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
from math import sqrt, sin, cos
import numpy as np

from .util import *

__all__ = ['choose_knew', 'select_slot', 'farthest_point', 'lagrange_step', 'TIE_RTOL']

TIE_RTOL = 1.0e-10  # scores this close (relatively) are treated as equal


def select_slot(scores, distsq, threshold=0.0, skip=None):
    # Index k maximising scores[k], provided scores[k] > threshold and k != skip.
    # Ties are broken in favour of the point farthest from xopt. Returns None if no k qualifies.
    knew = None
    for k in range(scores.size):
        if k == skip or not scores[k] > threshold:
            continue
        if knew is None or scores[k] > scores[knew] * (1.0 + TIE_RTOL):
            knew = k
        elif scores[k] >= scores[knew] * (1.0 - TIE_RTOL) and distsq[k] > distsq[knew]:
            knew = k
    return knew


def choose_knew(model, delta, rho, xnew, f):
    # in model, uses: npt, xpt, kopt/xopt, fval, denominators()
    # model unchanged by this method

    # After a trust region step to xnew (with value f), pick the point to be replaced.
    # Criteria is to maximise: |sigma_k| * max(1, (||yk-xopt||^2/rhosq)^3)
    # where sigma_k is the denominator of the update if xnew replaces yk.
    # If f is not a new best value, xopt is kept and we only replace a point if it
    # gives a score above one; otherwise xnew is discarded (None is returned).
    rhosq = max(0.1 * delta, rho) ** 2
    sigma, vlag, beta = model.denominators(xnew)
    distsq = model.square_distances_to_xopt()
    scores = np.abs(sigma) * np.maximum(1.0, (distsq / rhosq) ** 3)

    if f >= model.fval_opt():
        return select_slot(scores, distsq, threshold=1.0, skip=model.kopt)
    else:
        return select_slot(scores, distsq, threshold=0.0)


def farthest_point(model):
    # Index and squared distance of the point farthest from xopt
    return get_vector_max(model.square_distances_to_xopt())


def lagrange_step(model, knew, adelt):
    """
    Find a step d with ||d|| = adelt which makes |L(xopt+d)| large, where L is the knew-th
    Lagrange function. Moving the knew-th point to xopt+d then keeps the interpolation
    set well-poised.

    First try line searches along the directions to each interpolation point and along
    the gradient of L at xopt. The best of these is then improved by searches around
    circles in 2D planes containing the current d and the gradient of L at xopt+d.
    """
    npt, n = model.xpt.shape
    assert 0 <= knew < npt, "knew must be in range 0, ..., npt-1"
    assert adelt > 0.0, "adelt must be strictly positive"
    xopt = model.xopt()
    lam, c, g = model.lagrange_coefficients(knew)
    yxopt = np.dot(model.xpt, xopt)
    lopt = c + np.dot(g, xopt)

    def lagrange_value(yd, gd, ys=None, gs=0.0, theta=0.0):
        # L(xopt + cos(theta)*d + sin(theta)*s), where yd = xpt*d, gd = g^T d (similarly ys, gs)
        ct, st = cos(theta), sin(theta)
        yt = yxopt + ct * yd + (st * ys if ys is not None else 0.0)
        return lopt + ct * gd + st * gs + 0.5 * np.dot(lam, yt ** 2)

    # Line searches (both directions) from xopt
    directions = [model.xpt[j, :] - xopt for j in range(npt) if j != model.kopt]
    directions.append(model.lagrange_gradient(knew, xopt))
    d = None
    best_abs_l = -1.0
    for dirn in directions:
        norm_dirn = sqrt(sumsq(dirn))
        if norm_dirn < ZERO_THRESH:
            continue
        for sign in [1.0, -1.0]:
            dtest = (sign * adelt / norm_dirn) * dirn
            abs_l = abs(lagrange_value(np.dot(model.xpt, dtest), np.dot(g, dtest)))
            if abs_l > best_abs_l:
                d = dtest
                best_abs_l = abs_l

    if d is None:  # only possible if every point coincides with xopt
        raise DivergedGeometry("No search direction available for geometry step")

    # Plane searches on the sphere ||d|| = adelt
    for iterc in range(n):
        glag = model.lagrange_gradient(knew, xopt + d)
        dd = sumsq(d)
        dg = np.dot(d, glag)
        temp = dd * sumsq(glag) - dg ** 2
        if temp <= 1.0e-8 * dd * sumsq(glag) or temp <= 0.0:
            break  # gradient (nearly) parallel to d
        # s orthogonal to d, ||s|| = ||d||
        s = (dd * glag - dg * d) / sqrt(temp)

        yd, ys = np.dot(model.xpt, d), np.dot(model.xpt, s)
        gd, gs = np.dot(g, d), np.dot(g, s)
        theta, neg_abs_l = circle_search(lambda t: -abs(lagrange_value(yd, gd, ys, gs, t)))
        if -neg_abs_l <= best_abs_l:
            break

        d = cos(theta) * d + sin(theta) * s
        improvement = -neg_abs_l - best_abs_l
        best_abs_l = -neg_abs_l
        if improvement <= 0.01 * best_abs_l:
            break

    logging.debug("Geometry step for point %i has |L| = %g" % (knew, best_abs_l))
    return d
