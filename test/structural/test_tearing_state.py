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

import sympy as sp

from eqsys import structural_simplify
from eqsys.structural import BipartiteGraph, TearingState, VariableType
from eqsys.symbolic import Differential, Equation, independent_variable, variables
from eqsys.systems import NonlinearSystem, ODESystem


def test_bipartite_graph():
    graph = BipartiteGraph(2, 3)
    graph.add_edge(1, 2)
    graph.add_edge(1, 0)
    graph.add_edge(0, 0)
    graph.add_edge(1, 0)

    assert graph.fadj == [[0], [0, 2]]
    assert graph.badj == [[0, 1], [], [1]]
    assert graph.nedges() == 3
    assert graph.has_edge(1, 2)
    assert not graph.has_edge(0, 2)

    nxgraph = graph.to_networkx([1], [0, 2])
    assert sorted(nxgraph.nodes) == [1, 2, 4]
    assert sorted(tuple(sorted(e)) for e in nxgraph.edges) == [(1, 2), (1, 4)]


def test_nonlinear_incidence():
    x, y = variables("x y")
    sys = NonlinearSystem([x - 1, y - x], name="chain")
    state = TearingState(sys)

    assert state.fullvars == [x, y]
    assert state.graph.fadj == [[0], [0, 1]]
    assert state.graph.badj == [[0, 1], [1]]
    assert state.algebraic_variables() == [0, 1]
    assert state.algebraic_equations() == [0, 1]


def test_observed_substituted():
    x, y = variables("x y")
    sys = NonlinearSystem([y**2 - 4], [x], [], observed=[Equation(y, x + 1)], name="obs")
    state = TearingState(sys)

    assert state.equations == [(x + 1) ** 2 - 4]
    assert state.graph.fadj == [[0]]


def test_ode_incidence():
    t = independent_variable("t")
    D = Differential(t)
    x, y = variables("x y", iv=t)
    sys = ODESystem([Equation(D(x), -x), Equation(y, 2 * x)], t, name="ode")
    state = TearingState(sys)

    assert state.fullvars == [x, y, D(x)]
    assert state.var_types == [
        VariableType.DIFFERENTIAL,
        VariableType.ALGEBRAIC,
        VariableType.DERIVATIVE,
    ]
    assert state.graph.fadj == [[0, 2], [0, 1]]
    assert state.algebraic_variables() == [1]
    assert state.algebraic_equations() == [1]


def test_structural_simplify():
    x, y = variables("x y")
    sub = NonlinearSystem([x - 1], name="sub")
    top = NonlinearSystem([y - 2], name="top", systems=[sub])

    simplified = structural_simplify(top)
    assert simplified.complete
    assert simplified.split
    assert simplified.get_systems() == []
    assert simplified.unknowns() == [y, sp.Symbol("sub.x")]
    assert simplified.tearing_state.graph.fadj == [[0], [1]]

    flat = structural_simplify(top, split=False)
    assert flat.complete
    assert flat.index_cache is None
    assert flat.tearing_state is not None
