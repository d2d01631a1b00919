"""
NEWUOA
====================
A derivative-free solver for unconstrained minimisation, using quadratic interpolation
models which are updated by the least Frobenius norm change to their Hessian
(M. J. D. Powell, The NEWUOA software for unconstrained optimization without derivatives, 2004)

Call structure is:
    soln = solve(objfun, x0, npt=None, maxfun=1000, rhobeg=None, rhoend=1e-8)

Required inputs:
    objfun          Objective function, callable as: f = objfun(x)
    x0              Initial starting point, NumPy ndarray with at least 2 entries
Optional inputs:
    npt             Number of interpolation points, n+2 <= npt <= (n+1)(n+2)/2 (default 2n+1)
    maxfun          Maximum number of allowable function evalutions, must be > npt (default 1000)
    rhobeg          Initial trust region radius (default 0.1*max(1, ||x0||_infty)
    rhoend          Termination condition on trust region radius, 0 < rhoend <= rhobeg (default 1e-8)

Outputs (attributes of the returned object):
    x               Estimate of minimiser
    f               Value of objective at x
    nf              Number of objective evaluations used to find x
    flag            Integer flag indicating termination criterion (see list below imports)
    msg             String with more detailed termination message

The same algorithm is available as a reusable object, which owns its workspace:
    engine = Newuoa(n, npt=None, rhobeg=1.0, rhoend=1e-8, maxfun=1000)
    f = engine.perform(x, objfun)   # x[:n] is overwritten with the best point found


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
from enum import Enum
import logging
from math import sqrt
import numpy as np

from .util import *
from .model import *
from .geometry import *
from .trust_region import *
from .workspace import Workspace

__all__ = ['solve', 'Newuoa', 'OptimResults', 'EXIT_SUCCESS', 'EXIT_MAXFUN_WARNING', 'EXIT_NONFINITE_OBJECTIVE',
           'EXIT_DIVERGED_GEOMETRY']

#######################
# Exit codes
EXIT_SUCCESS = 0  # successful finish (rho=rhoend)
EXIT_MAXFUN_WARNING = 1  # warning, reached max function evals
EXIT_NONFINITE_OBJECTIVE = 2  # error, objective returned inf or nan
EXIT_DIVERGED_GEOMETRY = 3  # error, interpolation points became degenerate
#######################


class OptimResults:
    def __init__(self, xmin, fmin, nf, exit_flag, exit_msg):
        self.x = xmin
        self.f = fmin
        self.nf = nf
        self.flag = exit_flag
        self.msg = exit_msg
        # Set standard names for exit flags
        self.EXIT_SUCCESS = EXIT_SUCCESS
        self.EXIT_MAXFUN_WARNING = EXIT_MAXFUN_WARNING
        self.EXIT_NONFINITE_OBJECTIVE = EXIT_NONFINITE_OBJECTIVE
        self.EXIT_DIVERGED_GEOMETRY = EXIT_DIVERGED_GEOMETRY


class Step(Enum):
    TRUST_REGION = 'trust region'
    GEOMETRY = 'geometry'


class Evaluator:
    # Counts evaluations and remembers the best point seen (in absolute coordinates)
    def __init__(self, objfun, maxfun):
        self.objfun = objfun
        self.maxfun = maxfun
        self.nf = 0
        self.xsave = None
        self.fsave = None

    def budget_left(self):
        return self.nf < self.maxfun

    def __call__(self, x):
        assert self.budget_left(), "Evaluation budget exhausted"
        self.nf += 1
        f = eval_objective(self.objfun, x, eval_num=self.nf)
        if not np.isfinite(f):
            if self.xsave is None:  # x0 itself is bad, nothing better to return
                self.xsave = x.copy()
                self.fsave = f
            raise NonFiniteObjective("Objective returned %g at evaluation %i" % (f, self.nf),
                                     x=self.xsave, f=self.fsave)
        if self.fsave is None or f < self.fsave:
            self.xsave = x.copy()
            self.fsave = f
        return f


def initial_point(k, n, rhobeg, fval):
    # Displacement from x0 of the k-th initial interpolation point (k = 0, ..., npt-1).
    # fval holds the values at points 0, ..., k-1
    xk = np.zeros((n,))
    if k == 0:
        pass
    elif k <= n:
        xk[k - 1] = rhobeg
    elif k <= 2 * n:
        xk[k - n - 1] = -rhobeg
    else:
        # Pairs of coordinate directions, 1-indexed p > q
        itemp = (k - n - 1) // n
        q = k - itemp * n - n
        p = q + itemp
        if p > n:
            p, q = q, p - n
        # Step along e_p and e_q in whichever sign gave the lower value before
        xk[p - 1] = -rhobeg if fval[p + n] < fval[p] else rhobeg
        xk[q - 1] = -rhobeg if fval[q + n] < fval[q] else rhobeg
    return xk


def build_initial_set(evaluate, x0, npt, rhobeg, workspace=None, pivot_tol=PIVOT_TOL):
    n = np.size(x0)

    # Initialise model (sets x0 as base point and xpt = zeros, so xpt[0,:] = x0)
    model = Model(n, npt, x0, workspace=workspace, pivot_tol=pivot_tol)

    for k in range(npt):
        model.xpt[k, :] = initial_point(k, n, rhobeg, model.fval)
        model.fval[k] = evaluate(model.xbase + model.xpt[k, :])
        if k == 0 or model.fval[k] < model.fval_opt():  # update optimal point
            model.kopt = k

    # First model, with least Frobenius norm Hessian
    model.rebuild()
    return model


def reduce_rho(old_rho, rhoend):
    ratio = old_rho/rhoend
    if ratio <= 16.0:
        new_rho = rhoend
    elif ratio <= 250.0:
        new_rho = sqrt(ratio)*rhoend
    else:
        new_rho = 0.1*old_rho
    delta = max(0.5*old_rho, new_rho)
    return delta, new_rho


def update_delta(delta, rho, ratio, dnorm):
    # Pick the next value of DELTA after a trust region step
    if ratio <= 0.1:
        delta = 0.5 * dnorm
    elif ratio <= 0.7:
        delta = max(0.5 * delta, dnorm)
    else:
        delta = max(0.5 * delta, 2.0 * dnorm)
    if delta <= 1.5 * rho:  # trust region radius never below rho
        delta = rho
    return delta


def newuoa_main(objfun, x0, npt, rhobeg, rhoend, maxfun, workspace=None, pivot_tol=PIVOT_TOL):
    evaluate = Evaluator(objfun, maxfun)
    exit_flag = None
    exit_str = None

    try:
        ###########################################################
        # Set up initial interpolation set
        ###########################################################
        model = build_initial_set(evaluate, x0, npt, rhobeg, workspace=workspace, pivot_tol=pivot_tol)

        ###########################################################
        # Set other variables before begin iterations
        ###########################################################
        rho, delta = rhobeg, rhobeg
        nfsav = evaluate.nf
        diffs = [0.0, 0.0, 0.0]  # errors in the model predictions for the last three steps
        ratio = 1.0
        dnorm = 0.0
        step = Step.TRUST_REGION
        knew = None  # point to be moved by a geometry step
        dstep = None  # length of geometry step
        short_step = None  # last trust region step, if it was too short to evaluate

        ###########################################################
        # Start of main loop
        ###########################################################
        while True:
            if step is Step.TRUST_REGION:
                # Solve trust region subproblem to get tentative step d
                d, pred_reduction, crvmin = trsapp(model.gopt(), model.hq, delta)
                dsq = sumsq(d)
                dnorm = min(delta, sqrt(dsq))

                if dnorm < 0.5 * rho:
                    ###################
                    # Short trust region step: either reduce rho, or check geometry
                    ###################
                    logging.debug("Short trust region step, ||d|| = %g (rho = %g)" % (dnorm, rho))
                    short_step = d
                    delta = 0.1 * delta
                    ratio = -1.0
                    if delta <= 1.5 * rho:
                        delta = rho
                    done_with_rho = evaluate.nf > nfsav + 2 and 0.125 * crvmin * rho ** 2 > max(diffs)
                else:
                    ###################
                    # Evaluate trust region step
                    ###################
                    short_step = None
                    # Severe cancellation is likely to occur if XOPT is too far from XBASE
                    if dsq <= 1.0e-3 * sumsq(model.xopt()):
                        model.shift_base()
                    xnew = model.xopt() + d

                    if not evaluate.budget_left():
                        exit_flag = EXIT_MAXFUN_WARNING
                        exit_str = "Objective has been called MAXFUN times"
                        break  # quit
                    fopt = model.fval_opt()
                    f = evaluate(model.xbase + xnew)

                    # Use the quadratic model to predict the change in F due to the step D,
                    # and set DIFF to the error of this prediction.
                    actual_reduction = fopt - f
                    diffs = [abs(pred_reduction - actual_reduction), diffs[0], diffs[1]]
                    if dnorm > rho:
                        nfsav = evaluate.nf

                    ratio = actual_reduction / pred_reduction
                    delta = update_delta(delta, rho, ratio, dnorm)
                    logging.debug("New delta = %g (rho = %g) from ratio %g" % (delta, rho, ratio))

                    # Set KNEW to the index of the interpolation point to be replaced by xnew
                    knew = choose_knew(model, delta, rho, xnew, f)
                    if knew is not None:
                        logging.debug("Updating with knew = %i" % knew)
                        model.update_point(knew, xnew, f)
                    else:
                        logging.debug("Trust region point not added to interpolation set")

                    # If a trust region step has provided a sufficient decrease in F, then
                    # branch for another trust region calculation.
                    if ratio >= 0.1:
                        continue  # next trust region step
                    done_with_rho = False
            else:
                ###################
                # Geometry-improving step, to replace the knew-th point
                ###################
                if dstep ** 2 <= 1.0e-3 * sumsq(model.xopt()):
                    model.shift_base()
                d = lagrange_step(model, knew, dstep)
                xnew = model.xopt() + d

                if not evaluate.budget_left():
                    exit_flag = EXIT_MAXFUN_WARNING
                    exit_str = "Objective has been called MAXFUN times"
                    break  # quit
                fopt = model.fval_opt()
                pred_reduction = -calculate_model_value(model.gopt(), model.hq, d)
                f = evaluate(model.xbase + xnew)

                diffs = [abs(pred_reduction - (fopt - f)), diffs[0], diffs[1]]
                dnorm = dstep
                if dnorm > rho:
                    nfsav = evaluate.nf

                logging.debug("Geometry step, updating with knew = %i" % knew)
                model.update_point(knew, xnew, f)
                step = Step.TRUST_REGION
                continue  # next trust region step

            if not done_with_rho:
                # Find out if the interpolation points are close enough to the best point so far.
                knew_tmp, distsq = farthest_point(model)
                if distsq > 4.0 * delta ** 2:
                    knew = knew_tmp
                    dstep = max(min(0.1 * sqrt(distsq), 0.5 * delta), rho)
                    step = Step.GEOMETRY
                    continue  # next iteration is a geometry step

                if ratio > 0.0 or max(delta, dnorm) > rho:
                    continue  # next trust region step

            ###################
            # The calculations with the current value of rho are complete
            ###################
            if rho > rhoend:
                delta, rho = reduce_rho(rho, rhoend)
                logging.info("New rho = %g after %i function evaluations" % (rho, evaluate.nf))
                logging.debug("Best so far: f = %.15g at x = " % evaluate.fsave + str(evaluate.xsave))
                nfsav = evaluate.nf
                continue  # next trust region step

            # Cannot reduce rho, so try the last (short) trust region step if possible, then quit
            exit_flag = EXIT_SUCCESS
            exit_str = "rho has reached rhoend"
            if short_step is not None and sumsq(short_step) > 0.0 and evaluate.budget_left():
                evaluate(model.xbase + model.xopt() + short_step)
            break  # quit
        ###########################################################
        # End of main loop
        ###########################################################

    except NonFiniteObjective as e:
        exit_flag = EXIT_NONFINITE_OBJECTIVE
        exit_str = str(e)
    except DivergedGeometry as e:
        exit_flag = EXIT_DIVERGED_GEOMETRY
        exit_str = str(e)

    x, f = evaluate.xsave, evaluate.fsave
    logging.debug("At return from NEWUOA, number of function evals = %i" % evaluate.nf)
    logging.debug("Smallest objective value = %.15g at x = " % f + str(x))
    return x, f, evaluate.nf, exit_flag, exit_str


class Newuoa:
    """
    Reusable NEWUOA engine. The workspace is kept between runs, and only
    reallocated when n or npt change.
    """
    def __init__(self, n, npt=None, rhobeg=1.0, rhoend=1.0e-8, maxfun=1000):
        self.n = n
        self.npt = (npt if npt is not None else 2 * n + 1)
        self.rhobeg = rhobeg
        self.rhoend = rhoend
        self.maxfun = maxfun
        self.pivot_tol = PIVOT_TOL
        self.workspace = None

    def check(self, x):
        # Input & parameter checks, before any evaluation of the objective
        n, npt = self.n, self.npt
        if not isinstance(n, (int, np.integer)) or n < 2:
            raise PreconditionViolation("Input error: n must be an integer >= 2")
        if not isinstance(npt, (int, np.integer)) or npt < n + 2 or npt > (n + 1) * (n + 2) // 2:
            raise PreconditionViolation("Input error: npt must be in range n+2, ..., (n+1)(n+2)/2")
        if not self.rhobeg > 0.0:
            raise PreconditionViolation("Input error: rhobeg must be strictly positive")
        if not self.rhoend > 0.0:
            raise PreconditionViolation("Input error: rhoend must be strictly positive")
        if self.rhoend > self.rhobeg:
            raise PreconditionViolation("Input error: rhoend must be <= rhobeg")
        if self.maxfun <= npt:
            raise PreconditionViolation("Input error: maxfun must be > npt")
        if np.ndim(x) != 1 or np.size(x) < n:
            raise PreconditionViolation("Input error: x0 must be a vector with at least n entries")
        if not np.all(np.isfinite(x[:n])):
            raise PreconditionViolation("Input error: x0 must be finite")
        return

    def resize_workspace(self):
        if self.workspace is None:
            self.workspace = Workspace(self.n, self.npt)
        elif self.workspace.resize(self.n, self.npt):
            logging.debug("Resized workspace for n = %i, npt = %i" % (self.n, self.npt))
        return self.workspace

    def run(self, objfun, x):
        self.check(x)
        self.resize_workspace()
        x0 = np.array(x[:self.n], dtype=float)

        x, f, nf, exit_flag, exit_str = newuoa_main(objfun, x0, self.npt, self.rhobeg, self.rhoend, self.maxfun,
                                                    workspace=self.workspace, pivot_tol=self.pivot_tol)

        # Clean up exit_str to have better information:
        if exit_flag == EXIT_SUCCESS:
            exit_str = "Success: " + exit_str
        elif exit_flag == EXIT_MAXFUN_WARNING:
            exit_str = "Warning: " + exit_str
        elif exit_flag == EXIT_NONFINITE_OBJECTIVE:
            exit_str = "Objective error: " + exit_str
        elif exit_flag == EXIT_DIVERGED_GEOMETRY:
            exit_str = "Linear algebra error: " + exit_str
        else:
            exit_str = "Unknown exit flag " + str(exit_flag) + " with message " + str(exit_str)

        return OptimResults(x, f, nf, exit_flag, exit_str)

    def perform(self, x, objfun):
        # Overwrite x[:n] with the best point found, and return its objective value
        soln = self.run(objfun, x)
        x[:self.n] = soln.x
        if soln.flag == EXIT_NONFINITE_OBJECTIVE:
            raise NonFiniteObjective(soln.msg, x=soln.x, f=soln.f)
        elif soln.flag == EXIT_DIVERGED_GEOMETRY:
            raise DivergedGeometry(soln.msg, x=soln.x, f=soln.f)
        return soln.f


def solve(objfun, x0, npt=None, maxfun=1000, rhobeg=None, rhoend=1e-8):
    x0 = np.asarray(x0, dtype=float)

    # Set default value of rhobeg to something sensible
    rhobeg = (rhobeg if rhobeg is not None else 0.1 * max(np.max(np.abs(x0)), 1.0))

    engine = Newuoa(np.size(x0), npt=npt, rhobeg=rhobeg, rhoend=rhoend, maxfun=maxfun)
    return engine.run(objfun, x0)
