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

from enum import Enum
from typing import Iterable

import numpy as np
import sympy as sp
from sympy.core.function import AppliedUndef

from ..logging import logger
from .variables import (
    get_metadata,
    isconstant,
    isindependent,
    rename,
    var_name,
)

__all__ = [
    "ExprKind",
    "expr_kind",
    "is_variable",
    "vars_of",
    "fixpoint_sub",
    "substitute",
    "collect_constants",
    "subexpressions_not_involving_vars",
    "namespace_expr",
    "as_expr_list",
    "unique",
]


class ExprKind(Enum):
    """Shape of an expression node.

    SYMBOL: a variable handle (symbol, `x(t)`, array or array element).
    CALL: an operation applied to arguments.
    ARRAY: an array literal (matrix, list or numpy array).
    CONSTANT: a plain number.
    """

    SYMBOL = 0
    CALL = 1
    ARRAY = 2
    CONSTANT = 3


def expr_kind(expr) -> ExprKind:
    match expr:
        case sp.Symbol() | sp.Indexed() | sp.IndexedBase() | AppliedUndef():
            return ExprKind.SYMBOL
        case sp.MatrixBase() | sp.NDimArray() | np.ndarray() | list() | tuple():
            return ExprKind.ARRAY
        case sp.Basic() if expr.args and not expr.is_number:
            return ExprKind.CALL
        case _:
            return ExprKind.CONSTANT


def is_variable(expr) -> bool:
    return expr_kind(expr) is ExprKind.SYMBOL


def as_expr_list(exprs) -> list:
    """Flatten nested containers of expressions into a list."""
    match expr_kind(exprs):
        case ExprKind.ARRAY:
            out = []
            items = exprs if isinstance(exprs, (list, tuple)) else list(exprs)
            for item in items:
                out.extend(as_expr_list(item))
            return out
        case _:
            return [exprs]


def _collect(expr, out: dict, include_derivatives: bool):
    match expr:
        case sp.Derivative():
            if include_derivatives:
                out[expr] = None
            else:
                _collect(expr.expr, out, include_derivatives)
        case sp.Indexed():
            out[expr] = None
        case AppliedUndef():
            out[expr] = None
            for arg in expr.args:
                _collect(arg, out, include_derivatives)
        case sp.Symbol() | sp.IndexedBase():
            out[expr] = None
        case sp.Basic():
            for arg in expr.args:
                _collect(arg, out, include_derivatives)


def vars_of(exprs, *, include_derivatives=False) -> list:
    """Ordered unique variables referenced by `exprs`.

    Array elements `p[i]` and applied functions `x(t)` are reported as atoms,
    the arguments of applied functions are reported too.
    """
    out = {}
    for expr in as_expr_list(exprs):
        if hasattr(expr, "lhs") and hasattr(expr, "rhs"):
            _collect(sp.sympify(expr.lhs), out, include_derivatives)
            _collect(sp.sympify(expr.rhs), out, include_derivatives)
        else:
            _collect(sp.sympify(expr), out, include_derivatives)
    return list(out)


def substitute(expr, rules: dict):
    """Structural substitution, mapped over containers."""
    if not rules:
        return expr
    match expr_kind(expr):
        case ExprKind.ARRAY if isinstance(expr, (list, tuple)):
            return type(expr)(substitute(e, rules) for e in expr)
        case ExprKind.ARRAY if isinstance(expr, np.ndarray):
            return np.vectorize(lambda e: substitute(e, rules), otypes=[object])(expr)
        case ExprKind.CONSTANT if not isinstance(expr, sp.Basic):
            return expr
        case _:
            return expr.xreplace(rules)


def fixpoint_sub(expr, rules: dict, maxiters: int = 1000):
    """Substitute repeatedly until no rule applies anymore."""
    if not rules:
        return expr
    for _ in range(maxiters):
        new = substitute(expr, rules)
        if _same(new, expr):
            return new
        expr = new
    logger.warning(
        "Substitution did not reach a fixpoint after %d iterations", maxiters
    )
    return expr


def _same(a, b) -> bool:
    if isinstance(a, np.ndarray):
        return a.shape == b.shape and all(x == y for x, y in zip(a.flat, b.flat))
    return a == b


def collect_constants(exprs) -> list:
    """Declared constants referenced by `exprs`."""
    return [v for v in vars_of(exprs) if isconstant(v)]


def _involves(expr, banned: set) -> bool:
    return any(v in banned for v in vars_of(expr))


def subexpressions_not_involving_vars(expr, banned, state: dict):
    """Replace the largest subexpressions that reference none of `banned` by
    fresh dummy symbols.

    `state` maps each factored subexpression to its dummy and is shared across
    calls, so identical subexpressions map to the same dummy. Variables on
    their own are never factored.
    """
    banned = set(banned)
    return _hoist(sp.sympify(expr), banned, state)


def _hoist(expr, banned, state):
    kind = expr_kind(expr)
    if kind is not ExprKind.CALL:
        return expr
    if expr in state:
        return state[expr]

    if not _involves(expr, banned):
        var = sp.Dummy("subexpr")
        state[expr] = var
        return var

    if isinstance(expr, (sp.Add, sp.Mul)):
        indep = [a for a in expr.args if not _involves(a, banned)]
        dep = [a for a in expr.args if _involves(a, banned)]
        args = [_hoist(a, banned, state) for a in dep]
        if indep:
            args.insert(0, _hoist(expr.func(*indep), banned, state))
        return expr.func(*args)

    return expr.func(*(_hoist(a, banned, state) for a in expr.args))


def namespace_expr(expr, prefix: str):
    """Prefix every local variable in `expr` with `prefix.`"""
    rules = {}
    calls = []
    for var in vars_of(expr):
        if isinstance(var, sp.Dummy) or isindependent(var):
            continue
        md = get_metadata(var)
        if md is not None and md.scope == "global":
            continue
        if isinstance(var, AppliedUndef):
            calls.append(var)
            continue
        if isinstance(var, sp.Indexed):
            var = var.base
        rules[var] = rename(var, f"{prefix}.{var_name(var)}")

    # arguments of applied functions may reference renamed symbols, eg. delays
    for call in calls:
        head = rename(call, f"{prefix}.{var_name(call)}").func
        rules[call] = head(*(substitute(arg, rules) for arg in call.args))

    if isinstance(expr, (list, tuple)):
        return type(expr)(substitute(e, rules) for e in expr)
    return substitute(expr, rules)


def unique(items: Iterable) -> list:
    return list(dict.fromkeys(items))
