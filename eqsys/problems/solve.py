# Copyright (C) 2024 Collimator, Inc.
# SPDX-License-Identifier: AGPL-3.0-only
#
# This program is free software: you can redistribute it and/or modify it under
# the terms of the GNU Affero General Public License as published by the Free
# Software Foundation, version 3. This program is distributed in the hope that it
# will be useful, but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the GNU Affero General
# Public License for more details.  You should have received a copy of the GNU
# Affero General Public License along with this program. If not, see
# <https://www.gnu.org/licenses/>.

"""Reference solvers for the problems, built on `scipy.optimize` and
`scipy.integrate`."""

from functools import singledispatch
from typing import NamedTuple

import numpy as np
from scipy import integrate, optimize
from scipy import sparse as sps

from ..error import ArgumentError
from ..logging import logger, logdata
from .nonlinear import (
    IntervalNonlinearProblem,
    NonlinearLeastSquaresProblem,
    NonlinearProblem,
)
from .ode import ODEProblem
from .scc_problem import SCCNonlinearProblem

__all__ = ["NonlinearSolution", "ODESolution", "solve", "solve_staged"]


class NonlinearSolution(NamedTuple):
    u: np.ndarray
    resid: np.ndarray
    success: bool
    message: str = ""


class ODESolution(NamedTuple):
    t: np.ndarray
    u: np.ndarray
    success: bool
    message: str = ""


def _dense_jac(f, p):
    def jac(u):
        J = f.jac(u, p)
        return J.toarray() if sps.issparse(J) else np.asarray(J)

    return jac


@singledispatch
def solve(prob, **kwargs):
    raise ArgumentError(f"Cannot solve a {type(prob).__name__}")


@solve.register
def _(prob: NonlinearProblem, method="hybr", **kwargs):
    f, p = prob.f, prob.p
    options = {**prob.kwargs, **kwargs}
    jac = _dense_jac(f, p) if f.has_jac else None
    result = optimize.root(
        lambda u: np.asarray(f(u, p), dtype=float),
        prob.u0,
        jac=jac,
        method=method,
        **options,
    )
    logger.debug("root: %s", result.message, **logdata(system=prob.sys))
    return NonlinearSolution(
        result.x, np.asarray(f(result.x, p)), bool(result.success), str(result.message)
    )


@solve.register
def _(prob: NonlinearLeastSquaresProblem, **kwargs):
    f, p = prob.f, prob.p
    options = {**prob.kwargs, **kwargs}
    if f.has_jac:
        options.setdefault("jac", lambda u: f.jac(u, p))
    result = optimize.least_squares(
        lambda u: np.asarray(f(u, p), dtype=float), prob.u0, **options
    )
    logger.debug("least_squares: %s", result.message, **logdata(system=prob.sys))
    return NonlinearSolution(
        result.x, result.fun, bool(result.success), str(result.message)
    )


@solve.register
def _(prob: IntervalNonlinearProblem, **kwargs):
    f, p = prob.f, prob.p
    options = {**prob.kwargs, **kwargs}
    lo, hi = prob.uspan
    root, result = optimize.brentq(
        lambda x: float(f(x, p)), lo, hi, full_output=True, **options
    )
    return NonlinearSolution(
        np.array([root]),
        np.array([f(root, p)], dtype=float),
        bool(result.converged),
        str(result.flag),
    )


@solve.register
def _(prob: SCCNonlinearProblem, **kwargs):
    return solve_staged(prob, **kwargs)


def solve_staged(prob: SCCNonlinearProblem, **kwargs) -> NonlinearSolution:
    """Solve the stages in order. Before stage `i`, its cache writer is run on
    the solutions of the stages before it.

    The solution is ordered as `prob.sys.unknowns()`.
    """
    sols = []
    resids = []
    success = True
    message = ""
    for i, (writer, stage) in enumerate(zip(prob.explicitfuns, prob.probs)):
        previous = np.concatenate(sols) if sols else np.zeros(0)
        writer(prob.p, previous)
        sol = solve(stage, **kwargs)
        logger.debug("Stage %d solved: %s", i, sol.success, **logdata(system=prob.sys))
        sols.append(np.atleast_1d(sol.u))
        resids.append(np.atleast_1d(sol.resid))
        if success and not sol.success:
            success = False
            message = f"stage {i}: {sol.message}"

    return NonlinearSolution(
        np.concatenate(sols), np.concatenate(resids), success, message
    )


@solve.register
def _(prob: ODEProblem, method="RK45", t_eval=None, **kwargs):
    f, p = prob.f, prob.p
    if f.mass_matrix is not None:
        raise ArgumentError(
            "Systems with algebraic equations need a DAE solver", system=prob.sys
        )
    options = {**prob.kwargs, **kwargs}
    if f.has_jac and method in ("Radau", "BDF", "LSODA"):
        options.setdefault("jac", lambda t, u: f.jac(u, p, t))
    result = integrate.solve_ivp(
        lambda t, u: np.asarray(f(u, p, t), dtype=float),
        prob.tspan,
        prob.u0,
        method=method,
        t_eval=t_eval,
        **options,
    )
    return ODESolution(result.t, result.y, bool(result.success), str(result.message))
