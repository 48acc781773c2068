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
from sympy.core.function import AppliedUndef

from eqsys.error import ArgumentError
from eqsys.symbolic import (
    Differential,
    VariableRole,
    constants,
    get_metadata,
    getdefault,
    getguess,
    hasdefault,
    independent_variable,
    isconstant,
    isindependent,
    isparameter,
    parameters,
    rename,
    scalarize,
    symtype,
    var_name,
    variables,
)


def test_scalar_declarations():
    x, y = variables("x, y", default=1.0, guess=2.0)
    a = parameters("a", default=3.0, dtype=int)
    g = constants("g", value=9.81)

    assert isinstance(x, sp.Symbol)
    assert var_name(y) == "y"
    assert getdefault(x) == 1.0
    assert getguess(y) == 2.0
    assert get_metadata(x).role is VariableRole.UNKNOWN

    assert isparameter(a)
    assert not isparameter(x)
    assert symtype(a) is int
    assert symtype(x) is float

    assert isconstant(g)
    assert getdefault(g) == 9.81


def test_array_declarations():
    p = parameters("p", shape=3, default=[1.0, 2.0, 3.0])
    u = variables("u", shape=(2, 2))

    assert isinstance(p, sp.IndexedBase)
    assert isparameter(p[1])
    assert getdefault(p[1]) == 2.0
    assert hasdefault(p[2])
    assert not hasdefault(u[0, 0])

    assert scalarize(p) == [p[0], p[1], p[2]]
    assert scalarize(u) == [u[0, 0], u[0, 1], u[1, 0], u[1, 1]]
    assert var_name(u[1, 0]) == "u"


def test_time_dependent_declarations():
    t = independent_variable("t")
    x = variables("x", iv=t)

    assert isindependent(t)
    assert isinstance(x, AppliedUndef)
    assert x.args == (t,)
    assert var_name(x) == "x"

    D = Differential(t)
    assert D(x) == sp.Derivative(x, t)
    assert var_name(D(x)) == "x"

    with pytest.raises(ArgumentError, match="Time dependent array"):
        variables("z", iv=t, shape=2)


def test_rename_keeps_metadata():
    t = independent_variable("t")
    a = parameters("a", default=0.5)
    x = variables("x", iv=t)
    p = parameters("p", shape=2)

    b = rename(a, "sub.a")
    assert var_name(b) == "sub.a"
    assert isparameter(b)
    assert getdefault(b) == 0.5

    y = rename(x, "sub.x")
    assert isinstance(y, AppliedUndef)
    assert y.args == (t,)

    q1 = rename(p[1], "sub.p")
    assert q1 == sp.IndexedBase("sub.p", shape=(2,))[1]
    assert isparameter(q1)

    with pytest.raises(ArgumentError):
        rename(a + 1, "nope")


def test_redeclaration_replaces_metadata():
    k1 = parameters("k_redeclared", default=1)
    k2 = parameters("k_redeclared", default=2)

    assert k1 == k2
    assert getdefault(k1) == 2
    assert isparameter(k1)

    variables("k_redeclared")
    assert not isparameter(k2)
