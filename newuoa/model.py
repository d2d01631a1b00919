"""
Model
==================
The quadratic interpolation model used by NEWUOA, together with the inverse of the
KKT matrix of the minimum Frobenius norm interpolation problem (Powell, 2004).

For npt interpolation points y_1, ..., y_npt (relative to xbase), the KKT matrix is
    W = [ A    e    Y ]
        [ e^T  0    0 ]
        [ Y^T  0    0 ]
where A[i,j] = 0.5*(y_i^T y_j)^2, e is a vector of ones and Y has rows y_i.
Its inverse H gives the coefficients of every Lagrange function, and is updated
by a rank-two formula whenever a single interpolation point is moved.


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
from collections import namedtuple
from math import sqrt
import warnings
import numpy as np
import scipy.linalg as sp_linalg

from .util import *
from .workspace import Workspace

__all__ = ['Model', 'ModelUpdateResult', 'PIVOT_TOL', 'SINGULAR_TOL']

PIVOT_TOL = 1.0e-8  # smallest acceptable |denominator| of the rank-two update (it is 1 when nothing changes)
SINGULAR_TOL = 1.0e-14  # smallest acceptable pivot of the scaled KKT matrix, relative to the largest


ModelUpdateResult = namedtuple('ModelUpdateResult', ['knew', 'denom', 'rebuilt'])


class Model:
    def __init__(self, n, npt, x0, workspace=None, pivot_tol=PIVOT_TOL):
        assert n + 2 <= npt <= (n + 1) * (n + 2) // 2, "npt must be in range n+2, ..., (n+1)(n+2)/2"
        assert x0.size == n, "x0 has wrong size given input n"
        # Problem sizes
        self.n = n
        self.npt = npt

        self.ws = workspace if workspace is not None else Workspace(n, npt)
        self.ws.resize(n, npt)
        self.ws.clear()

        # Actual model info
        # Here, the model is centred around xbase
        #    m(x) = model_const_term + gq*(x-xbase) + 0.5*(x-xbase)*hq*(x-xbase)
        # All of the arrays below are views into the workspace, and are only ever updated in place
        self.xbase = self.ws.xbase  # base point
        self.xbase[:] = x0
        self.xpt = self.ws.xpt  # interpolation points
        self.fval = self.ws.fval  # objective value at each xpt(+xbase)
        self.model_const_term = 0.0
        self.gq = self.ws.gq
        self.hq = self.ws.hq
        self.kkt_inv = self.ws.kkt_inv  # H = inverse of W

        self.kopt = None  # index of current best x
        self.pivot_tol = pivot_tol
        self.nrebuilds = 0  # number of full O(npt^3) rebuilds

    def xopt(self):
        # Current best x (relative to xbase)
        return self.xpt[self.kopt, :].copy()

    def fval_opt(self):
        return self.fval[self.kopt]

    def model_value(self, x):
        # Model value at x (relative to xbase)
        return self.model_const_term + calculate_model_value(self.gq, self.hq, x)

    def gopt(self):
        # Model gradient at xopt
        return self.gq + np.dot(self.hq, self.xopt())

    def square_distances_to_xopt(self):
        return all_square_distances(self.xpt, self.xopt())

    def max_interpolation_error(self):
        return max(abs(self.model_value(self.xpt[k, :]) - self.fval[k]) for k in range(self.npt))

    def kkt_vector(self, x):
        # The column W would have if x (relative to xbase) were an interpolation point.
        # Stored in the workspace scratch vector, so use it before calling this again
        w = self.ws.w
        w[:self.npt] = 0.5 * np.dot(self.xpt, x) ** 2
        w[self.npt] = 1.0
        w[self.npt + 1:] = x
        return w

    def lagrange_coefficients(self, k):
        # k-th Lagrange function is c + g*(x-xbase) + 0.5*sum_j lam[j]*(xpt[j]*(x-xbase))^2
        col = self.kkt_inv[:, k]
        return col[:self.npt], col[self.npt], col[self.npt + 1:]

    def lagrange_value(self, k, x):
        lam, c, g = self.lagrange_coefficients(k)
        return c + np.dot(g, x) + 0.5 * np.dot(lam, np.dot(self.xpt, x) ** 2)

    def lagrange_gradient(self, k, x):
        lam, c, g = self.lagrange_coefficients(k)
        return g + np.dot(self.xpt.T, lam * np.dot(self.xpt, x))

    def denominators(self, x):
        # If x replaced the k-th point, the rank-two update would divide by
        #     sigma[k] = H[k,k]*beta + vlag[k]^2
        # where vlag = H*w (so vlag[k] is the k-th Lagrange function at x).
        w = self.kkt_vector(x)
        vlag = np.dot(self.kkt_inv, w)
        beta = 0.5 * sumsq(x) ** 2 - np.dot(w, vlag)
        sigma = np.diag(self.kkt_inv)[:self.npt] * beta + vlag[:self.npt] ** 2
        return sigma, vlag, beta

    def update_point(self, knew, xnew, f):
        # Move the knew-th point to xnew (relative to xbase) with objective value f,
        # and make the least Frobenius norm change to hq that keeps interpolation
        diff = f - self.model_value(xnew)  # error of the current model at xnew

        try:
            denom = self._update_inverse(knew, xnew)
            rebuilt = False
        except IllConditioned as e:
            logging.debug("Rebuilding model from scratch: %s" % str(e))
            denom = None
            rebuilt = True

        self.xpt[knew, :] = xnew
        self.fval[knew] = f
        if knew == self.kopt:
            self.kopt, _ = get_vector_min(self.fval)
        elif f < self.fval_opt():
            self.kopt = knew

        if rebuilt:
            self.rebuild()
        else:
            # Model changes by diff * (knew-th Lagrange function of the new point set)
            lam, c, g = self.lagrange_coefficients(knew)
            self.model_const_term += diff * c
            self.gq += diff * g
            self.hq += diff * self._hessian_from_lam(lam)

        return ModelUpdateResult(knew, denom, rebuilt)

    def _update_inverse(self, knew, xnew):
        # Rank-two update of H when xpt[knew,:] is replaced by xnew (Powell, 2004)
        sigma, vlag, beta = self.denominators(xnew)
        alpha = self.kkt_inv[knew, knew]
        tau = vlag[knew]
        denom = sigma[knew]
        if not np.isfinite(denom) or abs(denom) <= self.pivot_tol:
            raise IllConditioned("denominator %g for point %i is below %g" % (denom, knew, self.pivot_tol))

        u = -vlag
        u[knew] += 1.0  # e_knew - H*w
        h = self.kkt_inv[:, knew].copy()  # H*e_knew
        self.kkt_inv += (alpha * np.outer(u, u) - beta * np.outer(h, h)
                         + tau * (np.outer(h, u) + np.outer(u, h))) / denom
        return denom

    def _hessian_from_lam(self, lam):
        # sum_j lam[j] * xpt[j]*xpt[j]^T
        hess = np.dot(self.xpt.T * lam, self.xpt)
        return 0.5 * (hess + hess.T)

    def build_kkt_matrix(self):
        # W for the current points (relative to xbase)
        npt, n = self.npt, self.n
        W = np.zeros((npt + n + 1, npt + n + 1))
        W[:npt, :npt] = 0.5 * np.dot(self.xpt, self.xpt.T) ** 2
        W[:npt, npt] = 1.0
        W[npt, :npt] = 1.0
        W[:npt, npt + 1:] = self.xpt
        W[npt + 1:, :npt] = self.xpt.T
        return W

    def kkt_scaling(self):
        # Diagonal d so that diag(d)*W*diag(d) is balanced. Each point row is scaled by its own
        # length, so the A block becomes 0.5*cos^2 of the angles between points, whatever the
        # spread of distances from xbase. The constant and linear parts use a single length scale.
        sqnorms = np.sum(self.xpt ** 2, axis=1)
        scale = sqrt(np.max(sqnorms))
        if not np.isfinite(scale) or scale <= 0.0:
            raise DivergedGeometry("Interpolation points all coincide with the base point")

        d = np.zeros((self.npt + self.n + 1,))
        d[:self.npt] = 1.0 / scale ** 2  # for a point at xbase
        at_base = sqnorms <= 0.0
        d[:self.npt][~at_base] = 1.0 / sqnorms[~at_base]
        d[self.npt] = scale ** 2
        d[self.npt + 1:] = scale
        return d

    def factorise(self):
        # LU factorisation of the scaled KKT matrix, built from the raw geometry of all points
        d = self.kkt_scaling()
        What = d[:, None] * self.build_kkt_matrix() * d[None, :]
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', sp_linalg.LinAlgWarning)
            try:
                lu, piv = sp_linalg.lu_factor(What)
            except (np.linalg.LinAlgError, ValueError) as e:  # ValueError happens when What has Inf or NaN
                raise DivergedGeometry("Factorisation of interpolation matrix failed: %s" % str(e))

        pivots = np.abs(np.diag(lu))
        if not np.all(np.isfinite(pivots)) or np.min(pivots) <= SINGULAR_TOL * np.max(pivots):
            raise DivergedGeometry("Singular interpolation matrix (degenerate interpolation points)")
        return lu, piv, d

    def solve_kkt(self, factorisation, rhs):
        # Solve W*x = rhs using the output of factorise(), where (D*W*D)*(x/d) = D*rhs
        lu, piv, d = factorisation
        if rhs.ndim == 1:
            return d * sp_linalg.lu_solve((lu, piv), d * rhs)
        return d[:, None] * sp_linalg.lu_solve((lu, piv), d[:, None] * rhs)

    def _set_inverse(self, factorisation):
        hinv = self.solve_kkt(factorisation, np.eye(self.npt + self.n + 1))
        self.kkt_inv[:, :] = 0.5 * (hinv + hinv.T)

    def rebuild(self):
        # Recompute H from scratch, then make the least Frobenius norm change to the model
        # so that it interpolates f at every point again
        factorisation = self.factorise()
        self._set_inverse(factorisation)

        rhs = np.zeros((self.npt + self.n + 1,))
        for k in range(self.npt):
            rhs[k] = self.fval[k] - self.model_value(self.xpt[k, :])
        soln = self.solve_kkt(factorisation, rhs)
        if not np.all(np.isfinite(soln)):
            raise DivergedGeometry("Non-finite model coefficients after rebuild")

        self.model_const_term += soln[self.npt]
        self.gq += soln[self.npt + 1:]
        self.hq += self._hessian_from_lam(soln[:self.npt])
        self.nrebuilds += 1
        return

    def shift_base(self):
        # Move xbase to the current best point. The model is re-expressed exactly,
        # the inverse KKT matrix is recomputed for the new coordinates
        xopt = self.xopt()
        self.model_const_term = self.model_value(xopt)
        self.gq += np.dot(self.hq, xopt)

        self.xpt -= xopt
        self.xbase += xopt

        self._set_inverse(self.factorise())
        logging.debug("Shifted base point by %s" % str(xopt))
        return
