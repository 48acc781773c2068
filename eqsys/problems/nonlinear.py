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

"""Numerical problems built from nonlinear systems.

Initial values are taken, in order of priority, from the explicit `u0map`, the
defaults and the guesses of the system. Parameter values come from the
explicit `parammap` and the defaults. Symbolic values are evaluated by
substituting the other known values, including the parameter dependencies,
until a number is obtained.
"""

from dataclasses import dataclass, field
from typing import Any

import numpy as np
import sympy as sp

from ..error import ArgumentError, MissingValuesError
from ..logging import logger, logdata
from ..symbolic.expr_utils import fixpoint_sub
from ..symbolic.variables import scalarize
from ..systems.index_cache import ParameterBuckets
from .functions import IntervalNonlinearFunction, NonlinearFunction, check_complete

__all__ = [
    "process_problem",
    "varmap_to_values",
    "NonlinearProblem",
    "NonlinearLeastSquaresProblem",
    "IntervalNonlinearProblem",
]


def _as_map(values) -> dict:
    if values is None:
        return {}
    return dict(values)


def _lookup(values: dict, var):
    if var in values:
        return values[var]
    if isinstance(var, sp.Indexed) and var.base in values:
        indices = tuple(int(i) for i in var.indices)
        return np.asarray(values[var.base], dtype=object)[indices]
    return None


def _numeric(value, rules):
    """Evaluate `value`, or None if it does not reduce to numbers."""
    if isinstance(value, (list, tuple, np.ndarray)):
        items = [_numeric(v, rules) for v in np.ravel(np.asarray(value, dtype=object))]
        if any(v is None for v in items):
            return None
        return np.reshape(np.asarray(items), np.shape(value))
    if isinstance(value, sp.Basic):
        value = fixpoint_sub(value, rules)
        if value in (sp.true, sp.false):
            return bool(value)
        if not value.is_number:
            return None
        if value.is_Integer:
            return int(value)
        return float(value)
    return value


def varmap_to_values(sys, varlist, *maps, extra_rules=None) -> dict:
    """Values of `varlist` from the first of `maps` providing them.

    Raises:
        MissingValuesError: naming every variable without a numeric value.
    """
    rules = {}
    for values in reversed(maps):
        for var, value in values.items():
            if value is None:
                continue
            if not isinstance(value, (list, tuple, np.ndarray)):
                rules[var] = sp.sympify(value)
            else:
                # whole arrays are substituted element by element
                for elem, v in zip(scalarize(var), np.ravel(np.asarray(value, dtype=object))):
                    rules[elem] = sp.sympify(v)
    rules.update(extra_rules or {})

    out = {}
    missing = []
    for var in varlist:
        value = None
        for values in maps:
            value = _lookup(values, var)
            if value is not None:
                break
        value = _numeric(value, rules) if value is not None else None
        if value is None:
            missing.append(var)
        else:
            out[var] = value

    if missing:
        raise MissingValuesError(
            "Initial values or parameter values could not be determined",
            system=sys,
            variables=missing,
        )
    return out


def process_problem(sys, u0map=None, parammap=None):
    """Numeric initial values and parameter object of `sys`.

    Returns:
        `(u0, p)`, `p` being `ParameterBuckets` when the system is split and a
        flat vector in `parameters()` order otherwise.
    """
    u0map = _as_map(u0map)
    parammap = _as_map(parammap)
    defaults = sys.defaults()
    guesses = sys.guesses()
    pdeps = {eq.lhs: eq.rhs for eq in sys.parameter_dependencies()}

    unknowns = sys.unknowns()
    params = sys.parameters()

    u0_values = varmap_to_values(
        sys, unknowns, u0map, parammap, defaults, guesses, extra_rules=pdeps
    )
    u0 = np.array([u0_values[u] for u in unknowns], dtype=float)

    p_values = varmap_to_values(sys, params, parammap, defaults, extra_rules=pdeps)
    if sys.split:
        p = ParameterBuckets.from_values(sys.index_cache, p_values)
    else:
        p = np.array(
            [
                np.ravel(np.asarray(p_values[q], dtype=float))[k]
                for q in params
                for k in range(len(scalarize(q)))
            ],
            dtype=float,
        )

    logger.debug(
        "Initial values %s, parameters %s", u0, p, **logdata(system=sys)
    )
    return u0, p


@dataclass(frozen=True)
class NonlinearProblem:
    """Find `u` such that `f(u, p) = 0`, starting from `u0`."""

    f: NonlinearFunction
    u0: np.ndarray
    p: Any
    kwargs: dict = field(default_factory=dict)

    @property
    def sys(self):
        return self.f.sys

    @classmethod
    def from_system(
        cls,
        sys,
        u0map=None,
        parammap=None,
        *,
        jac=False,
        sparse=False,
        simplify=False,
        backend=None,
        check_length=True,
        use_homotopy_continuation=False,
        **kwargs,
    ):
        check_complete(sys, cls.__name__)
        if use_homotopy_continuation:
            logger.warning(
                "Homotopy continuation is not available, creating an ordinary "
                "%s instead",
                cls.__name__,
                **logdata(system=sys),
            )
        if check_length and len(sys.residuals()) != len(sys.unknowns()):
            raise ArgumentError(
                f"{len(sys.residuals())} equations for {len(sys.unknowns())} "
                "unknowns, pass `check_length=False` to skip this check",
                system=sys,
            )
        f = NonlinearFunction.from_system(
            sys, jac=jac, sparse=sparse, simplify=simplify, backend=backend
        )
        u0, p = process_problem(sys, u0map, parammap)
        return cls(f, u0, p, kwargs)


@dataclass(frozen=True)
class NonlinearLeastSquaresProblem(NonlinearProblem):
    """Minimize `|f(u, p)|^2`. The number of equations may differ from the
    number of unknowns."""

    @classmethod
    def from_system(cls, sys, u0map=None, parammap=None, *, check_length=False, **kwargs):
        return super().from_system(
            sys, u0map, parammap, check_length=check_length, **kwargs
        )


@dataclass(frozen=True)
class IntervalNonlinearProblem:
    """Find the root of the scalar `f(x, p)` inside `uspan`."""

    f: IntervalNonlinearFunction
    uspan: tuple[float, float]
    p: Any
    kwargs: dict = field(default_factory=dict)

    @property
    def sys(self):
        return self.f.sys

    @classmethod
    def from_system(cls, sys, uspan, parammap=None, *, backend=None, **kwargs):
        check_complete(sys, cls.__name__)
        if len(sys.residuals()) != 1 or len(sys.unknowns()) != 1:
            raise ArgumentError(
                "An IntervalNonlinearProblem needs a system with a single equation "
                "and a single unknown",
                system=sys,
            )
        lo, hi = uspan
        f = IntervalNonlinearFunction.from_system(sys, backend=backend)
        u0map = {sys.unknowns()[0]: lo}
        _, p = process_problem(sys, u0map, parammap)
        return cls(f, (float(lo), float(hi)), p, kwargs)
