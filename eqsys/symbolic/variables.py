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

"""Declaration of symbolic variables and the metadata attached to them.

Variables are plain sympy objects:

- scalar unknowns and parameters are `sympy.Symbol`,
- time dependent unknowns are applied undefined functions, `x(t)`,
- array variables are `sympy.IndexedBase` with a concrete shape, whose elements
  `p[i]` are individually addressable.

Everything else (role, default value, initial guess, numeric type, scope) is
kept in a registry keyed by the sympy handle, since sympy objects are compared
and hashed structurally and cannot carry extra attributes reliably.

Because the key is structural, declaring a name again with the same kind of
handle replaces the earlier metadata: the last declaration wins, and handles
obtained from the earlier declaration see the new role and default.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

import numpy as np
import sympy as sp
from sympy.core.function import AppliedUndef

from ..error import ArgumentError

__all__ = [
    "VariableRole",
    "VariableMetadata",
    "Differential",
    "independent_variable",
    "variables",
    "parameters",
    "constants",
    "get_metadata",
    "set_metadata",
    "getdefault",
    "hasdefault",
    "getguess",
    "isparameter",
    "isconstant",
    "isindependent",
    "symtype",
    "var_name",
    "rename",
    "scalarize",
    "array_base",
]


class VariableRole(Enum):
    """Role of a declared variable.

    UNKNOWN: solved for by the system.
    PARAMETER: externally supplied, constant during one solve.
    CONSTANT: a named numeric value, inlined into generated functions.
    INDEPENDENT: the independent variable of a time dependent system.
    """

    UNKNOWN = 0
    PARAMETER = 1
    CONSTANT = 2
    INDEPENDENT = 3


@dataclass(frozen=True)
class VariableMetadata:
    role: VariableRole = VariableRole.UNKNOWN
    default: Any = None
    guess: Any = None
    dtype: type = float
    scope: str = "local"
    description: str = ""


_registry: dict[sp.Basic, VariableMetadata] = {}


def array_base(var):
    """The aggregate array handle of an element `p[i]`, or None."""
    if isinstance(var, sp.Indexed):
        return var.base
    return None


def get_metadata(var) -> VariableMetadata | None:
    md = _registry.get(var)
    if md is None and isinstance(var, sp.Indexed):
        md = _registry.get(var.base)
    return md


def set_metadata(var, **changes) -> VariableMetadata:
    md = _registry.get(var, VariableMetadata())
    md = replace(md, **changes)
    _registry[var] = md
    return md


def _split_names(names) -> list[str]:
    if isinstance(names, str):
        return names.replace(",", " ").split()
    return list(names)


def _declare(names, role, *, iv=None, shape=None, **metadata):
    if shape is not None and iv is not None:
        raise ArgumentError("Time dependent array variables are not supported.")

    if isinstance(shape, int):
        shape = (shape,)

    handles = []
    for name in _split_names(names):
        if shape is not None:
            var = sp.IndexedBase(name, shape=shape)
        elif iv is not None:
            var = sp.Function(name)(iv)
        else:
            var = sp.Symbol(name)
        _registry[var] = VariableMetadata(role=role, **metadata)
        handles.append(var)

    return handles[0] if len(handles) == 1 else tuple(handles)


def independent_variable(name: str = "t"):
    """Declare the independent variable of a time dependent system."""
    return _declare(name, VariableRole.INDEPENDENT)


def variables(
    names,
    *,
    iv=None,
    default=None,
    guess=None,
    shape=None,
    dtype=float,
    scope="local",
    description="",
):
    """Declare one or more unknowns.

    Args:
        names: Space or comma separated names, or a sequence of names.
        iv: If given, the unknowns are functions of this independent variable.
        default: Default value, used for the initial values of problems.
        guess: Initial guess, used when no default is available.
        shape: Declares array variables of this shape.
        dtype: Numeric type of the variable.
        scope: "global" variables are never prefixed by sub-system names.

    Returns:
        A single handle if one name is given, otherwise a tuple of handles.
    """
    return _declare(
        names,
        VariableRole.UNKNOWN,
        iv=iv,
        shape=shape,
        default=default,
        guess=guess,
        dtype=dtype,
        scope=scope,
        description=description,
    )


def parameters(
    names,
    *,
    default=None,
    shape=None,
    dtype=float,
    scope="local",
    description="",
):
    """Declare one or more parameters, see `variables`."""
    return _declare(
        names,
        VariableRole.PARAMETER,
        shape=shape,
        default=default,
        dtype=dtype,
        scope=scope,
        description=description,
    )


def constants(names, *, value, dtype=float, scope="local", description=""):
    """Declare named constants. Their value is inlined by generated functions."""
    return _declare(
        names,
        VariableRole.CONSTANT,
        default=value,
        dtype=dtype,
        scope=scope,
        description=description,
    )


def _role(var):
    md = get_metadata(var)
    return md.role if md is not None else None


def isparameter(var) -> bool:
    return _role(var) is VariableRole.PARAMETER


def isconstant(var) -> bool:
    return _role(var) is VariableRole.CONSTANT


def isindependent(var) -> bool:
    return _role(var) is VariableRole.INDEPENDENT


def symtype(var) -> type:
    md = get_metadata(var)
    return md.dtype if md is not None else float


def _element_value(value, var):
    if value is None or not isinstance(var, sp.Indexed):
        return value
    indices = tuple(int(i) for i in var.indices)
    return np.asarray(value, dtype=object)[indices]


def getdefault(var):
    """Default value of `var`, or None. Elements index into the array default."""
    md = get_metadata(var)
    if md is None:
        return None
    return _element_value(md.default, var)


def hasdefault(var) -> bool:
    return getdefault(var) is not None


def getguess(var):
    md = get_metadata(var)
    if md is None:
        return None
    return _element_value(md.guess, var)


def var_name(var) -> str:
    match var:
        case sp.Indexed():
            return str(var.base.label)
        case sp.IndexedBase():
            return str(var.label)
        case AppliedUndef():
            return var.func.__name__
        case sp.Derivative():
            return var_name(var.expr)
        case sp.Symbol():
            return var.name
        case _:
            raise ArgumentError(f"{var} is not a variable.")


def rename(var, name: str):
    """A copy of `var` named `name`, carrying the same metadata."""
    match var:
        case sp.Indexed():
            return rename(var.base, name)[var.indices]
        case sp.IndexedBase():
            new = sp.IndexedBase(name, shape=var.shape)
        case AppliedUndef():
            new = sp.Function(name)(*var.args)
        case sp.Symbol():
            new = sp.Symbol(name)
        case _:
            raise ArgumentError(f"{var} is not a variable and cannot be renamed.")

    md = _registry.get(var)
    if md is not None:
        _registry[new] = md
    return new


def scalarize(var) -> list:
    """Elements of an array variable in row-major order, or `[var]`."""
    if isinstance(var, sp.IndexedBase):
        shape = tuple(int(n) for n in var.shape)
        return [var[idx] for idx in np.ndindex(*shape)]
    return [var]


class Differential:
    """Time derivative operator, `D = Differential(t); D(x)`."""

    def __init__(self, iv):
        self.iv = iv

    def __call__(self, expr):
        return sp.Derivative(expr, self.iv)

    def __repr__(self):
        return f"Differential({self.iv})"
