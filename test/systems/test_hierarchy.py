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
from eqsys.symbolic import Equation, isparameter, parameters, var_name, variables
from eqsys.systems import NonlinearSystem, complete, flatten


def _model():
    x, y, w = variables("x y w")
    a = parameters("a", default=2.0)
    sub = NonlinearSystem(
        [x - a], name="sub", observed=[Equation(w, 2 * x)], defaults={x: 1.0}
    )
    top = NonlinearSystem([y - 1], name="top", systems=[sub])
    return top, sub, (x, y, w, a)


def test_hierarchical_accessors():
    top, sub, (x, y, w, a) = _model()

    assert top.get_unknowns() == [y]
    assert [var_name(u) for u in top.unknowns()] == ["y", "sub.x"]
    assert [var_name(p) for p in top.parameters()] == ["sub.a"]
    assert isparameter(top.parameters()[0])

    sub_x = sp.Symbol("sub.x")
    sub_a = sp.Symbol("sub.a")
    assert top.equations() == [Equation(0, y - 1), Equation(0, sub_x - sub_a)]
    assert top.observed() == [Equation(sp.Symbol("sub.w"), 2 * sub_x)]
    assert top.defaults() == {sub_x: 1.0, sub_a: 2.0}


def test_duplicate_names():
    x = variables("x")
    s1 = NonlinearSystem([x - 1], name="foo")
    s2 = NonlinearSystem([x - 2], name="foo")

    with pytest.raises(ArgumentError, match="Duplicated names: foo"):
        NonlinearSystem([], name="top", systems=[s1, s2])


def test_member_access():
    top, _, (x, y, _, _) = _model()

    assert top.y == sp.Symbol("top.y")
    assert top.sub.x == sp.Symbol("top.sub.x")
    with pytest.raises(AttributeError):
        top.nothing

    done = complete(top)
    assert done.y == y
    # complete systems address sub-system variables as they appear in the
    # hierarchical accessors
    assert done.sub.x == top.unknowns()[1]


def test_flatten():
    top, sub, _ = _model()

    assert flatten(sub) is sub

    flat = flatten(top)
    assert flat.get_systems() == []
    assert flat.equations() == top.equations()
    assert flat.unknowns() == top.unknowns()
    assert flat.observed() == top.observed()
    assert flat.defaults() == top.defaults()
    assert flatten(flat) is flat


def test_subsystem_types_must_match():
    from eqsys.symbolic import Differential, independent_variable
    from eqsys.systems import ODESystem

    t = independent_variable("t")
    z = variables("z", iv=t)
    ode = ODESystem([Equation(Differential(t)(z), -z)], t, name="ode")
    x = variables("x")

    with pytest.raises(ArgumentError, match="expected a NonlinearSystem"):
        NonlinearSystem([x - 1], name="top", systems=[ode])
