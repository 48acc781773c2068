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

"""Structural description of a flattened system: the incidence of the
variables in the equations, as a bipartite graph over integer indices."""

from enum import Enum

import networkx as nx
import sympy as sp

from ..logging import logger, logdata
from ..symbolic.equation import flatten_equations
from ..symbolic.expr_utils import fixpoint_sub, vars_of
from ..systems.abstract_system import complete, flatten

__all__ = ["BipartiteGraph", "VariableType", "TearingState", "structural_simplify"]


class BipartiteGraph:
    """Equation/variable incidence.

    `fadj[i]` lists the variables of equation `i` and `badj[j]` the equations
    referencing variable `j`, both in ascending order.
    """

    def __init__(self, nsrcs: int, ndsts: int):
        self.fadj: list[list[int]] = [[] for _ in range(nsrcs)]
        self.badj: list[list[int]] = [[] for _ in range(ndsts)]

    @property
    def nsrcs(self) -> int:
        return len(self.fadj)

    @property
    def ndsts(self) -> int:
        return len(self.badj)

    def add_edge(self, src: int, dst: int):
        if dst in self.fadj[src]:
            return
        self.fadj[src].append(dst)
        self.fadj[src].sort()
        self.badj[dst].append(src)
        self.badj[dst].sort()

    def has_edge(self, src: int, dst: int) -> bool:
        return dst in self.fadj[src]

    def nedges(self) -> int:
        return sum(len(adj) for adj in self.fadj)

    def to_networkx(self, srcs=None, dsts=None) -> nx.Graph:
        """Undirected graph restricted to `srcs` and `dsts`. Source `i` is node
        `i`, destination `j` is node `nsrcs + j`."""
        srcs = range(self.nsrcs) if srcs is None else srcs
        dsts = set(range(self.ndsts) if dsts is None else dsts)
        graph = nx.Graph()
        graph.add_nodes_from(srcs, bipartite=0)
        graph.add_nodes_from((self.nsrcs + j for j in sorted(dsts)), bipartite=1)
        for i in srcs:
            graph.add_edges_from(
                (i, self.nsrcs + j) for j in self.fadj[i] if j in dsts
            )
        return graph

    def __repr__(self):
        return f"BipartiteGraph({self.nsrcs} x {self.ndsts}, {self.nedges()} edges)"


class VariableType(Enum):
    ALGEBRAIC = 0
    DIFFERENTIAL = 1
    DERIVATIVE = 2


class TearingState:
    """Incidence of the variables in the equations of a flat system.

    `fullvars` holds the unknowns, in order, followed by the derivatives of the
    differential unknowns. Observed variables are substituted before the
    incidence is computed.
    """

    def __init__(self, sys):
        rules = {eq.lhs: eq.rhs for eq in sys.observed()}
        self.equations = [
            fixpoint_sub(eq.rhs - eq.lhs, rules)
            for eq in flatten_equations(sys.equations())
        ]

        unknowns = sys.unknowns()
        iv = getattr(sys, "iv", None)
        derivatives = []
        if iv is not None:
            derivatives = [
                eq.lhs for eq in sys.equations() if isinstance(eq.lhs, sp.Derivative)
            ]
        differential = {d.expr for d in derivatives}

        self.fullvars = unknowns + derivatives
        self.var_types = [
            VariableType.DIFFERENTIAL if u in differential else VariableType.ALGEBRAIC
            for u in unknowns
        ] + [VariableType.DERIVATIVE] * len(derivatives)

        index = {v: j for j, v in enumerate(self.fullvars)}
        self.graph = BipartiteGraph(len(self.equations), len(self.fullvars))
        for i, expr in enumerate(self.equations):
            for var in vars_of(expr, include_derivatives=True):
                j = index.get(var)
                if j is not None:
                    self.graph.add_edge(i, j)

    def algebraic_variables(self) -> list[int]:
        return [
            j for j, vt in enumerate(self.var_types) if vt is VariableType.ALGEBRAIC
        ]

    def algebraic_equations(self) -> list[int]:
        """Equations not referencing any derivative."""
        return [
            i
            for i, adj in enumerate(self.graph.fadj)
            if all(self.var_types[j] is not VariableType.DERIVATIVE for j in adj)
        ]

    def __repr__(self):
        return f"TearingState({len(self.fullvars)} variables, {self.graph!r})"


def structural_simplify(sys, split: bool = True):
    """Flatten and complete `sys`, and attach its `TearingState`.

    No variable is eliminated: the unknowns and equations of the result are the
    ones of the flattened system.
    """
    flat = flatten(sys)
    state = TearingState(flat)
    logger.debug("Structural analysis: %r", state, **logdata(system=flat))
    return complete(flat, split=split)._replace(tearing_state=state)
