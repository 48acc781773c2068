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

"""Functions evaluating observed quantities from unknowns and parameters."""

import sympy as sp
from sympy.core.function import AppliedUndef

from ..codegen.assignments import equations_used_by
from ..codegen.function_builder import build_function_wrapper
from ..error import UnknownVariableError
from ..logging import logger, logdata
from ..symbolic.expr_utils import ExprKind, expr_kind, vars_of
from ..symbolic.variables import isconstant, isindependent

__all__ = ["observed_equations_used_by", "build_explicit_observed_function"]


def observed_equations_used_by(sys, exprs, obs=None) -> list[int]:
    """Indices into `obs` (the observed equations of `sys` by default) of the
    equations needed to evaluate `exprs`, in dependency order."""
    if obs is None:
        obs = sys.observed()
    return equations_used_by(obs, exprs)


def _known_variables(sys) -> set:
    known = set(sys.unknowns())
    for p in sys.parameters():
        known.add(p)
    known.update(eq.lhs for eq in sys.observed())
    known.update(eq.lhs for eq in sys.parameter_dependencies())
    iv = getattr(sys, "iv", None)
    if iv is not None:
        known.add(iv)
    return known


def _is_known(var, known, iv) -> bool:
    if var in known or isinstance(var, sp.Dummy):
        return True
    if isinstance(var, sp.Indexed) and var.base in known:
        return True
    if isconstant(var) or isindependent(var):
        return True
    # delayed unknowns x(t - tau)
    if isinstance(var, AppliedUndef) and iv is not None:
        return var.func(iv) in known
    return False


def build_explicit_observed_function(
    sys,
    ts,
    *,
    throw: bool = True,
    backend: str | None = None,
    output_type=None,
    expression: bool = False,
):
    """Generate a function evaluating `ts` at `(u, p)`, or `(u, p, t)` for
    time dependent systems.

    `ts` is a single expression or a sequence of expressions, which may
    reference unknowns, parameters, constants, observed variables and the
    independent variable. Only the observed equations needed by `ts` are
    evaluated.

    Raises:
        UnknownVariableError: if `ts` references any other variable, unless
            `throw` is False, in which case None is returned.
    """
    iv = getattr(sys, "iv", None)
    known = _known_variables(sys)
    for var in vars_of(ts):
        if _is_known(var, known, iv):
            continue
        if not throw:
            logger.debug("Cannot resolve %s", var, **logdata(system=sys))
            return None
        raise UnknownVariableError(
            f"{var} is neither an observed nor an unknown variable.",
            system=sys,
            variables=[var],
        )

    if expr_kind(ts) is ExprKind.ARRAY and not isinstance(ts, sp.MatrixBase):
        ts = list(ts)

    args = [sys.unknowns(), sys.parameters()]
    if iv is not None:
        args.append(iv)
    oop, _ = build_function_wrapper(
        sys,
        ts,
        *args,
        p_start=1,
        output_type=output_type,
        name="observed",
        backend=backend,
        expression=expression,
    )
    return oop
