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

"""Planning of the statements that precede the evaluation of a generated
function: array views over arguments and ordered intermediate assignments."""

import keyword
import re
from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple, Sequence

import networkx as nx
import sympy as sp

from ..error import ArgumentError
from ..symbolic.expr_utils import vars_of
from ..symbolic.variables import scalarize

__all__ = [
    "Assignment",
    "ViewKind",
    "ArrayView",
    "DestructuredArgs",
    "NameAllocator",
    "generated_argument_name",
    "array_variable_assignments",
    "equations_used_by",
]


class Assignment(NamedTuple):
    lhs: sp.Basic
    rhs: sp.Basic

    def __str__(self):
        return f"{self.lhs} := {self.rhs}"


class ViewKind(Enum):
    ASCENDING = 0
    DESCENDING = 1
    ELEMENTWISE = 2


@dataclass(frozen=True)
class ArrayView:
    """Reconstruction of an array variable from the arguments holding its
    elements.

    `sources` holds the (argument name, position) of every element of `base`,
    in row-major order.
    """

    base: sp.IndexedBase
    kind: ViewKind
    sources: tuple[tuple[str, int], ...]
    shape: tuple[int, ...]

    def render(self, printer) -> str:
        arg, start = self.sources[0]
        match self.kind:
            case ViewKind.ASCENDING:
                code = f"{arg}[{start}:{start + len(self.sources)}]"
            case ViewKind.DESCENDING:
                stop = self.sources[-1][1] - 1
                code = f"{arg}[{start}::-1]" if stop < 0 else f"{arg}[{start}:{stop}:-1]"
            case ViewKind.ELEMENTWISE:
                items = ", ".join(f"{a}[{k}]" for a, k in self.sources)
                code = printer.array(f"[{items}]", dtype=None)
        if len(self.shape) != 1:
            code = f"{code}.reshape({self.shape})"
        return code


@dataclass
class DestructuredArgs:
    """An argument holding a flat sequence of variables.

    Args:
        elems: The variables, in the order they appear in the argument.
        name: Name of the argument in the generated signature, defaults to
            `_arg{i}` where `i` is its 1-based position.
        create_bindings: If True, referenced elements are bound to local names
            before evaluation, otherwise they are indexed inline.
    """

    elems: Sequence[sp.Basic]
    name: str | None = None
    create_bindings: bool = True

    def scalarized(self) -> list:
        return [e for v in self.elems for e in scalarize(v)]


def generated_argument_name(i: int) -> str:
    return f"_arg{i + 1}"


_reserved = {
    "numpy",
    "jax",
    "scipy",
    "functools",
    "math",
    "builtins",
    "float",
    "_out",
    "_p",
    "_h",
}


class NameAllocator:
    """Hands out unique valid Python identifiers derived from variable names."""

    def __init__(self, reserved=()):
        self.taken = set(_reserved) | set(reserved)

    def reserve(self, name: str):
        self.taken.add(name)

    def __call__(self, hint: str) -> str:
        base = re.sub(r"\W", "_", hint)
        if not base or base[0].isdigit():
            base = f"_{base}"
        if keyword.iskeyword(base):
            base = f"{base}_"
        name, k = base, 1
        while name in self.taken:
            name = f"{base}_{k}"
            k += 1
        self.taken.add(name)
        return name


def array_variable_assignments(groups) -> list[ArrayView]:
    """Views over array variables whose elements all appear in `groups`.

    Args:
        groups: Sequence of (argument name, elements) pairs.

    Returns:
        One `ArrayView` per fully covered array variable, in order of first
        appearance. Arrays with at least one element missing from every
        argument are skipped, their elements are accessed individually.
    """
    positions: dict[sp.Basic, tuple[str, int]] = {}
    bases = {}
    for argname, elems in groups:
        for k, elem in enumerate(elems):
            if isinstance(elem, sp.Indexed):
                positions.setdefault(elem, (argname, k))
                bases.setdefault(elem.base, None)

    views = []
    for base in bases:
        elems = scalarize(base)
        if not all(e in positions for e in elems):
            continue

        sources = tuple(positions[e] for e in elems)
        shape = tuple(int(n) for n in base.shape)
        argnames = {a for a, _ in sources}
        steps = {b[1] - a[1] for a, b in zip(sources, sources[1:])}
        if len(argnames) == 1 and steps <= {1}:
            kind = ViewKind.ASCENDING
        elif len(argnames) == 1 and steps == {-1}:
            kind = ViewKind.DESCENDING
        else:
            kind = ViewKind.ELEMENTWISE
        views.append(ArrayView(base, kind, sources, shape))
    return views


def equations_used_by(eqs, exprs) -> list[int]:
    """Indices of the equations in `eqs` needed to evaluate `exprs`.

    An equation is needed when its left side is referenced by `exprs` or,
    transitively, by the right side of another needed equation. The indices
    are returned in dependency order, ties broken by declaration order.
    """
    lhs_index = {eq.lhs: i for i, eq in enumerate(eqs)}
    if not lhs_index:
        return []

    needed = set()
    stack = [lhs_index[v] for v in vars_of(exprs) if v in lhs_index]
    while stack:
        i = stack.pop()
        if i in needed:
            continue
        needed.add(i)
        stack.extend(lhs_index[v] for v in vars_of(eqs[i].rhs) if v in lhs_index)

    graph = nx.DiGraph()
    graph.add_nodes_from(needed)
    for i in needed:
        for v in vars_of(eqs[i].rhs):
            j = lhs_index.get(v)
            if j is not None:
                graph.add_edge(j, i)

    try:
        return list(nx.lexicographical_topological_sort(graph))
    except nx.NetworkXUnfeasible as exc:
        cycle = nx.find_cycle(graph)
        raise ArgumentError(
            "Cyclic dependency between explicit equations",
            variables=[eqs[i].lhs for i, _ in cycle],
        ) from exc
