"""

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

import numpy as np
import unittest

from newuoa.model import *
from newuoa.util import DivergedGeometry


def array_compare(x, y, thresh=1e-14):
    return np.max(np.abs(x - y)) < thresh


def smooth_objective(x):
    return np.exp(0.3 * x[0]) + np.cos(x[1]) + x[0] * x[1]


def quadratic_objective(x):
    return 2.0 * x[0] ** 2 - x[0] * x[1] + 3.0 * x[1] ** 2 + x[0] - 2.0 * x[1] + 1.0


# Same pattern as the initial NEWUOA points with rhobeg = 1
XPT5 = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [-1.0, 0.0], [0.0, -1.0]])
XPT6 = np.vstack([XPT5, np.array([[1.0, 1.0]])])


def build_model(objfun, xpt, x0, pivot_tol=PIVOT_TOL):
    npt, n = xpt.shape
    model = Model(n, npt, x0, pivot_tol=pivot_tol)
    for k in range(npt):
        model.xpt[k, :] = xpt[k, :]
        model.fval[k] = objfun(x0 + xpt[k, :])
    model.kopt = int(np.argmin(model.fval[:npt]))
    model.rebuild()
    return model


class TestInitialBuild(unittest.TestCase):
    def runTest(self):
        x0 = np.array([0.5, -0.3])
        model = build_model(smooth_objective, XPT5, x0)
        self.assertTrue(model.max_interpolation_error() < 1e-12, 'Model does not interpolate')
        self.assertTrue(array_compare(model.hq, model.hq.T), 'Hessian not symmetric')
        self.assertEqual(model.nrebuilds, 1, 'Wrong number of rebuilds')


class TestInverseKKT(unittest.TestCase):
    def runTest(self):
        model = build_model(smooth_objective, XPT5, np.array([0.5, -0.3]))
        W = model.build_kkt_matrix()
        self.assertTrue(array_compare(np.dot(model.kkt_inv, W), np.eye(W.shape[0]), thresh=1e-10),
                        'kkt_inv is not the inverse of W')


class TestLagrangeFunctions(unittest.TestCase):
    def runTest(self):
        model = build_model(smooth_objective, XPT5, np.array([0.5, -0.3]))
        for k in range(model.npt):
            for j in range(model.npt):
                expected = 1.0 if j == k else 0.0
                self.assertAlmostEqual(model.lagrange_value(k, model.xpt[j, :]), expected, places=10,
                                       msg='Lagrange function %i wrong at point %i' % (k, j))
        # Lagrange values at a point are the first npt entries of vlag
        x = np.array([0.3, -0.7])
        sigma, vlag, beta = model.denominators(x)
        for k in range(model.npt):
            self.assertAlmostEqual(vlag[k], model.lagrange_value(k, x), places=10, msg='Wrong vlag')


class TestLagrangeGradient(unittest.TestCase):
    def runTest(self):
        model = build_model(smooth_objective, XPT5, np.array([0.5, -0.3]))
        x = np.array([0.2, 0.4])
        h = 1e-6
        for k in range(model.npt):
            g = model.lagrange_gradient(k, x)
            for i in range(model.n):
                e = np.zeros((model.n,))
                e[i] = h
                fd = (model.lagrange_value(k, x + e) - model.lagrange_value(k, x - e)) / (2.0 * h)
                self.assertAlmostEqual(g[i], fd, places=6, msg='Wrong gradient')


class TestFullQuadraticIsExact(unittest.TestCase):
    def runTest(self):
        # With npt = (n+1)(n+2)/2, interpolation determines the quadratic uniquely
        x0 = np.array([1.0, 2.0])
        model = build_model(quadratic_objective, XPT6, x0)
        self.assertTrue(array_compare(model.hq, np.array([[4.0, -1.0], [-1.0, 6.0]]), thresh=1e-10),
                        'Wrong Hessian')
        x = np.array([-0.4, 1.7])
        self.assertAlmostEqual(model.model_value(x), quadratic_objective(x0 + x), places=10, msg='Wrong value')


class TestIncrementalUpdate(unittest.TestCase):
    def runTest(self):
        x0 = np.array([0.5, -0.3])
        model = build_model(smooth_objective, XPT5, x0)
        xnew = np.array([0.7, 0.6])
        result = model.update_point(4, xnew, smooth_objective(x0 + xnew))
        self.assertFalse(result.rebuilt, 'Update should not need a rebuild')
        self.assertEqual(result.knew, 4, 'Wrong knew')
        self.assertTrue(abs(result.denom) > PIVOT_TOL, 'Wrong denominator')
        self.assertEqual(model.nrebuilds, 1, 'Unexpected rebuild')
        self.assertTrue(array_compare(model.xpt[4, :], xnew), 'Point not moved')
        self.assertTrue(model.max_interpolation_error() < 1e-10, 'Model does not interpolate after update')
        W = model.build_kkt_matrix()
        self.assertTrue(array_compare(np.dot(model.kkt_inv, W), np.eye(W.shape[0]), thresh=1e-9),
                        'kkt_inv is not the inverse of W after update')


class TestUpdateKeepsExactQuadratic(unittest.TestCase):
    def runTest(self):
        x0 = np.array([1.0, 2.0])
        model = build_model(quadratic_objective, XPT6, x0)
        for knew, xnew in [(2, np.array([0.5, 0.5])), (5, np.array([-0.8, 0.3])), (0, np.array([0.1, -0.2]))]:
            model.update_point(knew, xnew, quadratic_objective(x0 + xnew))
        self.assertTrue(array_compare(model.hq, np.array([[4.0, -1.0], [-1.0, 6.0]]), thresh=1e-9),
                        'Wrong Hessian after updates')
        self.assertEqual(model.kopt, int(np.argmin(model.fval)), 'Wrong kopt')


class TestUpdateChangesBestPoint(unittest.TestCase):
    def runTest(self):
        x0 = np.array([0.5, -0.3])
        model = build_model(smooth_objective, XPT5, x0)
        xnew = np.array([0.6, 0.5])
        model.update_point(1, xnew, -100.0)  # not the true value, but the best so far
        self.assertEqual(model.kopt, 1, 'New best point not recorded')
        self.assertTrue(array_compare(model.xopt(), xnew), 'Wrong xopt')


class TestForcedRebuild(unittest.TestCase):
    def runTest(self):
        # Nearly coincident points make the update denominator tiny, so the model is rebuilt
        x0 = np.array([0.5, -0.3])
        model = build_model(smooth_objective, XPT5, x0, pivot_tol=1e-4)
        xnew = model.xpt[1, :] + 1e-5 * np.array([1.0, 1.0])
        result = model.update_point(3, xnew, smooth_objective(x0 + xnew))
        self.assertTrue(result.rebuilt, 'Model was not rebuilt')
        self.assertIsNone(result.denom, 'Denominator should not be set after a rebuild')
        self.assertEqual(model.nrebuilds, 2, 'Wrong number of rebuilds')
        self.assertTrue(model.max_interpolation_error() < 1e-6, 'Model does not interpolate after rebuild')
        for k in range(model.npt):
            self.assertAlmostEqual(model.model_value(model.xpt[k, :]), smooth_objective(x0 + model.xpt[k, :]),
                                   places=6, msg='Wrong model value at point %i' % k)


class TestRebuildWidelySpreadPoints(unittest.TestCase):
    def runTest(self):
        # One point much closer to the base than the others, but the set is not degenerate
        x0 = np.array([1.0, 2.0])
        xpt = np.vstack([XPT5, np.array([[1e-5, 1e-5]])])
        model = build_model(quadratic_objective, xpt, x0)
        self.assertEqual(model.nrebuilds, 1, 'Wrong number of rebuilds')
        self.assertTrue(model.max_interpolation_error() < 1e-10, 'Model does not interpolate')
        # Full quadratic model of a quadratic is exact
        self.assertTrue(array_compare(model.hq, np.array([[4.0, -1.0], [-1.0, 6.0]]), thresh=1e-4), 'Wrong Hessian')

        # Distances from the base between 1e-7 and 5e-3
        xpt = np.vstack([5e-3 * XPT5, np.array([[9e-8, 3e-8]])])
        model = build_model(smooth_objective, xpt, x0)
        self.assertEqual(model.nrebuilds, 1, 'Wrong number of rebuilds')
        self.assertTrue(np.all(np.isfinite(model.kkt_inv)), 'Non-finite inverse KKT matrix')
        self.assertTrue(np.all(np.isfinite(model.hq)), 'Non-finite Hessian')


class TestDegenerateGeometry(unittest.TestCase):
    def runTest(self):
        # Exactly coincident points: the rebuild itself must fail
        x0 = np.array([0.5, -0.3])
        model = build_model(smooth_objective, XPT5, x0)
        xnew = model.xpt[1, :].copy()
        with self.assertRaises(DivergedGeometry):
            model.update_point(3, xnew, smooth_objective(x0 + xnew))


class TestShiftBase(unittest.TestCase):
    def runTest(self):
        x0 = np.array([0.5, -0.3])
        model = build_model(smooth_objective, XPT5, x0)
        model.update_point(4, np.array([0.9, 0.8]), -1.0)  # force a best point away from xbase
        xtest_abs = np.array([1.1, 0.2])
        mval = model.model_value(xtest_abs - model.xbase)
        xopt_abs = model.xbase + model.xopt()

        model.shift_base()
        self.assertTrue(array_compare(model.xbase, xopt_abs), 'Wrong new base')
        self.assertTrue(array_compare(model.xopt(), np.zeros((2,))), 'xopt should be at base')
        self.assertAlmostEqual(model.model_value(xtest_abs - model.xbase), mval, places=12, msg='Model changed')
        self.assertTrue(model.max_interpolation_error() < 1e-10, 'Model does not interpolate after shift')
        W = model.build_kkt_matrix()
        self.assertTrue(array_compare(np.dot(model.kkt_inv, W), np.eye(W.shape[0]), thresh=1e-9),
                        'kkt_inv not recomputed after shift')
