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

import pytest
import sympy as sp

from eqsys.error import ArgumentError
from eqsys.symbolic import (
    Equation,
    as_equation,
    canonical_form,
    flatten_equations,
    is_array_equation,
    variables,
)


def test_as_equation_forms():
    x, y = variables("x y")

    assert as_equation(Equation(x, y)) == Equation(x, y)
    assert as_equation(sp.Eq(x, y + 1, evaluate=False)) == Equation(x, y + 1)
    assert as_equation((x, 2)) == Equation(x, sp.Integer(2))
    assert as_equation(x**2 - 1) == Equation(sp.S.Zero, x**2 - 1)
    assert str(Equation(x, y)) == "x ~ y"

    with pytest.raises(ArgumentError):
        as_equation("x = y")


def test_canonical_form():
    x, y = variables("x y")

    assert canonical_form(Equation(x, y)) == Equation(sp.S.Zero, y - x)
    assert canonical_form(Equation(0, y)) == Equation(sp.S.Zero, y)


def test_flatten_array_equations():
    x, y = variables("x y")
    u = variables("u", shape=2)

    eq = as_equation((u, [x, y]))
    assert is_array_equation(eq)
    assert canonical_form(eq) is eq

    flat = flatten_equations([eq, Equation(0, x - 1)])
    assert flat == [
        Equation(sp.S.Zero, x - u[0]),
        Equation(sp.S.Zero, y - u[1]),
        Equation(0, x - 1),
    ]

    # a scalar right side is broadcast
    assert flatten_equations([Equation(u, 0)]) == [
        Equation(sp.S.Zero, -u[0]),
        Equation(sp.S.Zero, -u[1]),
    ]


def test_flatten_size_mismatch():
    x = variables("x")
    u = variables("u", shape=3)

    with pytest.raises(ArgumentError, match="different sizes"):
        flatten_equations([as_equation((u, [x, x]))])
