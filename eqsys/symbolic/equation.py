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

from typing import NamedTuple

import sympy as sp

from ..error import ArgumentError
from .variables import scalarize

__all__ = [
    "Equation",
    "as_equation",
    "canonical_form",
    "is_array_equation",
    "flatten_equations",
]


class Equation(NamedTuple):
    """`lhs = rhs`. A residual form equation has `lhs = 0`."""

    lhs: sp.Basic
    rhs: sp.Basic

    def __str__(self):
        return f"{self.lhs} ~ {self.rhs}"

    def residual(self):
        return self.rhs - self.lhs

    def xreplace(self, rules) -> "Equation":
        return Equation(self.lhs.xreplace(rules), self.rhs.xreplace(rules))


def _as_expr(side):
    if isinstance(side, (list, tuple)) or isinstance(side, sp.MatrixBase):
        return sp.ImmutableMatrix(side)
    return sp.sympify(side)


def as_equation(eq) -> Equation:
    """Accepts `Equation`, `sympy.Eq`, `(lhs, rhs)` or a bare expression `0 = expr`."""
    match eq:
        case Equation():
            return Equation(_as_expr(eq.lhs), _as_expr(eq.rhs))
        case sp.Equality():
            return Equation(_as_expr(eq.lhs), _as_expr(eq.rhs))
        case (lhs, rhs):
            return Equation(_as_expr(lhs), _as_expr(rhs))
        case sp.Basic() | int() | float():
            return Equation(sp.S.Zero, _as_expr(eq))
        case _:
            raise ArgumentError(f"Cannot interpret {eq!r} as an equation.")


def is_array_equation(eq: Equation) -> bool:
    return isinstance(eq.lhs, (sp.MatrixBase, sp.IndexedBase))


def canonical_form(eq: Equation) -> Equation:
    """`0 = rhs - lhs`, unless the left side is a whole array."""
    if is_array_equation(eq):
        return eq
    if eq.lhs == 0:
        return Equation(sp.S.Zero, eq.rhs)
    return Equation(sp.S.Zero, eq.rhs - eq.lhs)


def flatten_equations(eqs) -> list[Equation]:
    """Split whole-array equations into elementwise residual form equations."""
    flat = []
    for eq in eqs:
        if not is_array_equation(eq):
            flat.append(eq)
            continue

        lhs = eq.lhs
        if isinstance(lhs, sp.IndexedBase):
            lhs = sp.ImmutableMatrix(scalarize(lhs))
        rhs = eq.rhs
        if not isinstance(rhs, sp.MatrixBase):
            rhs = sp.ImmutableMatrix([rhs] * len(lhs))
        if len(lhs) != len(rhs):
            raise ArgumentError(
                f"Array equation {eq} has sides of different sizes "
                f"({len(lhs)} and {len(rhs)})."
            )
        for left, right in zip(lhs, rhs):
            flat.append(Equation(sp.S.Zero, right - left))
    return flat
