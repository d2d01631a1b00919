"""
Trust Region
==================
Approximate minimisation of a quadratic model in a ball.
Based on the routine TRSAPP from NEWUOA (Powell, 2004).


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
from math import sqrt, sin, cos
import numpy as np

from .util import *

__all__ = ['trsapp', 'trsapp_boundary']


def trsapp(gopt, hq, delta):
    """
    Approximately solve
        min_d  gopt^T d + 0.5 * d^T hq d
        s.t.   ||d|| <= delta
    with truncated conjugate gradients. If the CG iterates reach the trust region
    boundary (or a direction of negative curvature is found), the step is then
    refined on the boundary by trsapp_boundary.

    Returns d, the predicted reduction in the model (always >= 0), and crvmin.
    crvmin is zero if d is on the boundary, otherwise it is the least curvature
    of hq seen along the search directions.
    """
    n = gopt.size
    assert hq.shape == (n, n), "gopt and hq have incompatible sizes"
    assert delta > 0.0, "delta must be strictly positive"

    d = np.zeros((n,))
    g = gopt.copy()  # gradient of the model at d
    gg = sumsq(g)
    ggbeg = gg
    if sqrt(gg) < ZERO_THRESH:
        return d, 0.0, 0.0

    s = -g
    ss = gg
    crvmin = -1.0  # not yet set
    qred = 0.0
    on_boundary = False
    delsq = delta ** 2

    for iterc in range(2 * n):
        hs = np.dot(hq, s)
        shs = np.dot(s, hs)
        ds = np.dot(d, s)
        temp = delsq - sumsq(d)
        if temp <= 0.0:
            on_boundary = True
            break
        bstep = temp / (ds + sqrt(ds ** 2 + ss * temp))  # step to the boundary along s

        gs = np.dot(g, s)
        if shs > 0.0:
            alpha = -gs / shs
            crv = shs / ss
            crvmin = crv if crvmin < 0.0 else min(crvmin, crv)
        if shs <= 0.0 or alpha >= bstep:
            # negative curvature or CG step would leave the trust region
            alpha = bstep
            on_boundary = True

        qadd = -alpha * (gs + 0.5 * alpha * shs)
        qred += qadd
        d += alpha * s
        g += alpha * hs
        if on_boundary:
            break

        ggnew = sumsq(g)
        if sqrt(ggnew) <= 0.01 * sqrt(ggbeg) or qadd <= 0.01 * qred:
            break  # converged to (approximately) the interior minimiser
        s = -g + (ggnew / gg) * s
        ss = sumsq(s)
        gg = ggnew

    if on_boundary:
        crvmin = 0.0
        d = trsapp_boundary(gopt, hq, d)
    elif crvmin < 0.0:
        crvmin = 0.0

    pred_reduction = -calculate_model_value(gopt, hq, d)
    if pred_reduction <= 0.0:
        return np.zeros((n,)), 0.0, crvmin  # rounding errors dominate, no useful step
    return d, pred_reduction, crvmin


def trsapp_boundary(gopt, hq, d, maxiter=None):
    # Improve a step d on the trust region boundary ||d|| = delta by searching the
    # circle through d in the plane spanned by d and the model gradient at d.
    # Each search keeps ||d|| unchanged, so this works in a 2D subspace each time.
    n = d.size
    maxiter = n if maxiter is None else maxiter
    d = d.copy()
    qcurrent = calculate_model_value(gopt, hq, d)
    qred = -qcurrent

    for iterc in range(maxiter):
        g = gopt + np.dot(hq, d)
        dd = sumsq(d)
        dg = np.dot(d, g)
        temp = dd * sumsq(g) - dg ** 2
        if temp <= 1.0e-4 * qred ** 2 or temp <= 0.0:
            break  # gradient (nearly) parallel to d, so d is optimal on the circle
        # s is orthogonal to d with ||s|| = ||d||, and a descent direction
        s = (dg * d - dd * g) / sqrt(temp)

        hd = np.dot(hq, d)
        hs = np.dot(hq, s)
        gd, gs = np.dot(gopt, d), np.dot(gopt, s)
        dhd, dhs, shs = np.dot(d, hd), np.dot(d, hs), np.dot(s, hs)

        def model_on_circle(theta):
            ct, st = cos(theta), sin(theta)
            return ct * gd + st * gs + 0.5 * (ct * ct * dhd + 2.0 * ct * st * dhs + st * st * shs)

        theta, qnew = circle_search(model_on_circle)
        reduction = qcurrent - qnew
        if reduction <= 0.0:
            break

        d = cos(theta) * d + sin(theta) * s
        qcurrent = qnew
        qred += reduction
        if reduction <= 0.01 * qred:
            break

    return d
