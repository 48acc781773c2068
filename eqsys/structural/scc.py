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

"""Block lower triangular decomposition of the algebraic part of a system."""

from typing import NamedTuple

import networkx as nx
from networkx.algorithms import bipartite

from ..error import StructuralSingularityError
from ..logging import logger
from .tearing_state import TearingState

__all__ = ["SCCDecomposition", "maximum_matching", "algebraic_variables_scc"]


class SCCDecomposition(NamedTuple):
    """Equation and variable indices of each strongly connected component, in
    solve order. `var_sccs[k][n]` is the variable matched to `eq_sccs[k][n]`."""

    eq_sccs: list[list[int]]
    var_sccs: list[list[int]]


def maximum_matching(state: TearingState, eqs, vars_) -> dict[int, int]:
    """Maximum matching of equations `eqs` to variables `vars_`, mapping
    equation index to variable index."""
    graph = state.graph.to_networkx(eqs, vars_)
    offset = state.graph.nsrcs
    matching = bipartite.hopcroft_karp_matching(graph, top_nodes=list(eqs))
    return {i: matching[i] - offset for i in eqs if i in matching}


def algebraic_variables_scc(state: TearingState) -> SCCDecomposition:
    """Partition the algebraic equations and variables into strongly connected
    components.

    Equations are matched to the variables they are solved for. Equation `a`
    precedes equation `b` when `b` references the variable matched to `a`;
    the components of that graph, topologically sorted, form the stages.
    Components and the equations inside each are ordered by equation index
    when otherwise unconstrained.

    Raises:
        StructuralSingularityError: if the algebraic equations and variables
            have no perfect matching.
    """
    eqs = state.algebraic_equations()
    vars_ = state.algebraic_variables()
    matching = maximum_matching(state, eqs, vars_)

    if len(eqs) != len(vars_) or len(matching) != len(eqs):
        matched = set(matching.values())
        raise StructuralSingularityError(
            f"The system is structurally singular: {len(eqs)} equations, "
            f"{len(vars_)} unknowns, matching of size {len(matching)}",
            variables=[state.fullvars[j] for j in vars_ if j not in matched],
        )

    # Equation dependency graph in terms of the matched variables
    graph = nx.DiGraph()
    graph.add_nodes_from(eqs)
    for parent, var in matching.items():
        for child in state.graph.badj[var]:
            if child != parent and child in matching:
                graph.add_edge(parent, child)

    condensed = nx.condensation(graph)
    members = nx.get_node_attributes(condensed, "members")
    order = nx.lexicographical_topological_sort(
        condensed, key=lambda n: min(members[n])
    )

    eq_sccs = []
    var_sccs = []
    for node in order:
        block = sorted(members[node])
        eq_sccs.append(block)
        var_sccs.append([matching[i] for i in block])

    logger.debug("Found %d strongly connected components", len(eq_sccs))
    return SCCDecomposition(eq_sccs, var_sccs)
