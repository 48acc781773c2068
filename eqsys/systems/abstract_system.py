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

"""Common data model of `NonlinearSystem` and `ODESystem`.

A system owns its equations, unknowns, parameters, observed equations,
defaults, guesses, parameter dependencies and sub-systems. These core fields
are never mutated after construction: structural changes produce a new system
through `_replace`, with a new tag and empty derived-artifact caches.

Variables of sub-systems are prefixed by the sub-system name, with "." as the
separator, when accessed through the hierarchical accessors (`equations()`,
`unknowns()`, ...) of the parent.
"""

import copy
import itertools
import threading
from collections import Counter

import networkx as nx
import sympy as sp

from ..error import ArgumentError
from ..logging import logger, logdata
from ..symbolic.equation import Equation, as_equation
from ..symbolic.expr_utils import is_variable, namespace_expr, unique, vars_of
from ..symbolic.variables import (
    get_metadata,
    getdefault,
    getguess,
    isconstant,
    isindependent,
    isparameter,
    scalarize,
    var_name,
)
from .index_cache import IndexCache

__all__ = [
    "TagCounter",
    "SYSTEM_COUNT",
    "CacheCell",
    "AbstractSystem",
    "complete",
    "flatten",
    "process_parameter_dependencies",
    "process_parameters",
    "process_unknowns",
    "collect_variables",
]


class TagCounter:
    """Thread safe, monotonically increasing source of system tags."""

    def __init__(self, start: int = 1):
        self._count = itertools.count(start)
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            return next(self._count)


SYSTEM_COUNT = TagCounter()


class CacheCell:
    """Single-slot memo of a derived artifact, keyed by the request flags."""

    __slots__ = ("key", "value")

    def __init__(self):
        self.key = None
        self.value = None

    def get(self, key):
        if self.value is not None and self.key == key:
            return self.value
        return None

    def set(self, key, value):
        self.key = key
        self.value = value
        return value

    def copy(self) -> "CacheCell":
        cell = CacheCell()
        cell.key, cell.value = self.key, self.value
        return cell


def process_parameter_dependencies(pdeps, ps):
    """Order the parameter dependencies topologically.

    Returns:
        The ordered dependency equations and `ps` without their left sides.
    """
    pdeps = [as_equation(eq) for eq in pdeps]
    if not pdeps:
        return [], list(ps)

    lhs_index = {}
    for i, eq in enumerate(pdeps):
        if not is_variable(eq.lhs):
            raise ArgumentError(
                f"Parameter dependency {eq} must define a single parameter"
            )
        if eq.lhs in lhs_index:
            raise ArgumentError(
                "Parameters can only be defined once by parameter dependencies",
                variables=[eq.lhs],
            )
        lhs_index[eq.lhs] = i

    graph = nx.DiGraph()
    graph.add_nodes_from(range(len(pdeps)))
    for i, eq in enumerate(pdeps):
        for var in vars_of(eq.rhs):
            j = lhs_index.get(var)
            if j is not None:
                graph.add_edge(j, i)

    try:
        order = list(nx.lexicographical_topological_sort(graph))
    except nx.NetworkXUnfeasible as exc:
        cycle = nx.find_cycle(graph)
        raise ArgumentError(
            "Parameter dependencies are cyclic",
            variables=[pdeps[i].lhs for i, _ in cycle],
        ) from exc

    ps = [p for p in ps if p not in lhs_index]
    return [pdeps[i] for i in order], ps


def process_parameters(ps, *, inferred=False) -> list:
    """Replace array elements by their whole array.

    A declared parameter list must hold either all elements of an array or
    none. Inferred parameter lists promote any referenced element to the
    whole array.
    """
    ps = list(ps)
    present = set(ps)
    out = []
    partial = []
    for p in ps:
        if not isinstance(p, sp.Indexed):
            out.append(p)
            continue
        if inferred or all(e in present for e in scalarize(p.base)):
            out.append(p.base)
        else:
            partial.append(p)

    if partial:
        raise ArgumentError(
            "Array parameters must be declared as a whole, only some elements "
            "were given",
            variables=partial,
        )
    return unique(out)


def process_unknowns(unknowns) -> list:
    return unique(e for u in unknowns for e in scalarize(u))


def _check_names(name, systems):
    if name is None:
        raise ArgumentError(
            "The `name` keyword must be provided. Systems are identified and "
            "namespaced by their name."
        )

    counts = Counter(s.name for s in systems)
    duplicates = [n for n, c in counts.items() if c > 1]
    if duplicates:
        raise ArgumentError(
            f"System names must be unique. Duplicated names: {', '.join(duplicates)}",
            system_name=name,
        )


def _merged_values(vars_, getter, explicit) -> dict:
    merged = {}
    for var in vars_:
        value = getter(var)
        if value is not None:
            merged[var] = value
    merged.update(explicit or {})
    return merged


class AbstractSystem:
    """Base class of the systems of equations.

    Subclasses normalize and infer their equations and variables, then call
    this constructor, which validates them and assigns the identity tag.
    """

    _structural_fields = frozenset(
        {
            "name",
            "_eqs",
            "_unknowns",
            "_ps",
            "_observed",
            "_systems",
            "_defaults",
            "_guesses",
            "_parameter_dependencies",
        }
    )

    def __init__(
        self,
        eqs,
        unknowns,
        ps,
        *,
        name=None,
        description="",
        observed=(),
        systems=(),
        defaults=None,
        guesses=None,
        parameter_dependencies=(),
        checks=True,
        tag_counter: TagCounter = None,
    ):
        systems = list(systems)
        _check_names(name, systems)

        self.name = str(name)
        self.description = description
        self._eqs = list(eqs)
        self._unknowns = process_unknowns(unknowns)
        self._parameter_dependencies, ps = process_parameter_dependencies(
            parameter_dependencies, ps
        )
        self._ps = list(ps)
        self._observed = [as_equation(eq) for eq in observed]
        self._systems = systems

        if checks:
            self._check()

        self._defaults = _merged_values(
            self._unknowns + self._ps, getdefault, defaults
        )
        self._guesses = _merged_values(self._unknowns, getguess, guesses)
        self._var_to_name = {
            var_name(v): v
            for v in itertools.chain(
                self._unknowns,
                self._ps,
                (eq.lhs for eq in self._observed),
                (eq.lhs for eq in self._parameter_dependencies),
            )
        }

        self._tag_counter = tag_counter or SYSTEM_COUNT
        self.tag = self._tag_counter.next()
        self.complete = False
        self.split = False
        self.index_cache: IndexCache | None = None
        self.tearing_state = None
        self._reset_caches()

        logger.debug(
            "Created %s with %d equations, %d unknowns and %d parameters",
            type(self).__name__,
            len(self._eqs),
            len(self._unknowns),
            len(self._ps),
            **logdata(system=self),
        )

    def _check(self):
        for sys in self._systems:
            if not isinstance(sys, type(self)):
                raise ArgumentError(
                    f"Sub-system {sys.name} is a {type(sys).__name__}, "
                    f"expected a {type(self).__name__}",
                    system_name=self.name,
                )

        unknowns = set(self._unknowns)
        for eq in self._observed:
            if not is_variable(eq.lhs):
                raise ArgumentError(
                    f"The left side of observed equation {eq} must be a single variable",
                    system_name=self.name,
                )
            if eq.lhs in unknowns:
                raise ArgumentError(
                    "Observed variables cannot also be unknowns",
                    system_name=self.name,
                    variables=[eq.lhs],
                )

        for eq in self._parameter_dependencies:
            if get_metadata(eq.lhs) is not None and not isparameter(eq.lhs):
                raise ArgumentError(
                    "Parameter dependencies must define parameters",
                    system_name=self.name,
                    variables=[eq.lhs],
                )

    def _reset_caches(self):
        self._jac = CacheCell()
        self._hess = CacheCell()

    def _replace(self, **changes):
        """A copy with `changes` applied.

        Changing a core field produces a structurally different system: it gets
        a new tag and empty caches, and is no longer complete.
        """
        new = copy.copy(self)
        for key, value in changes.items():
            setattr(new, key, value)

        if self._structural_fields.intersection(changes):
            new.tag = new._tag_counter.next()
            new._reset_caches()
            for key, value in (
                ("complete", False),
                ("split", False),
                ("index_cache", None),
                ("tearing_state", None),
            ):
                if key not in changes:
                    setattr(new, key, value)
        else:
            for key, value in list(vars(new).items()):
                if isinstance(value, CacheCell):
                    setattr(new, key, value.copy())
        return new

    # Raw accessors, without the variables of sub-systems

    def get_eqs(self) -> list[Equation]:
        return list(self._eqs)

    def get_unknowns(self) -> list:
        return list(self._unknowns)

    def get_ps(self) -> list:
        return list(self._ps)

    def get_observed(self) -> list[Equation]:
        return list(self._observed)

    def get_systems(self) -> list["AbstractSystem"]:
        return list(self._systems)

    def get_defaults(self) -> dict:
        return dict(self._defaults)

    def get_guesses(self) -> dict:
        return dict(self._guesses)

    def get_parameter_dependencies(self) -> list[Equation]:
        return list(self._parameter_dependencies)

    # Hierarchical accessors

    def _collect_equations(self, own, accessor) -> list[Equation]:
        eqs = list(own)
        for sys in self._systems:
            eqs.extend(
                Equation(
                    namespace_expr(eq.lhs, sys.name), namespace_expr(eq.rhs, sys.name)
                )
                for eq in accessor(sys)
            )
        return eqs

    def _collect_vars(self, own, accessor) -> list:
        out = list(own)
        for sys in self._systems:
            out.extend(namespace_expr(v, sys.name) for v in accessor(sys))
        return unique(out)

    def _collect_map(self, own, accessor) -> dict:
        out = {}
        for sys in self._systems:
            for k, v in accessor(sys).items():
                if isinstance(v, sp.Basic):
                    v = namespace_expr(v, sys.name)
                out[namespace_expr(k, sys.name)] = v
        out.update(own)
        return out

    def equations(self) -> list[Equation]:
        return self._collect_equations(self._eqs, type(self).equations)

    def unknowns(self) -> list:
        return self._collect_vars(self._unknowns, type(self).unknowns)

    def parameters(self) -> list:
        return self._collect_vars(self._ps, type(self).parameters)

    def observed(self) -> list[Equation]:
        return self._collect_equations(self._observed, type(self).observed)

    def parameter_dependencies(self) -> list[Equation]:
        return self._collect_equations(
            self._parameter_dependencies, type(self).parameter_dependencies
        )

    def defaults(self) -> dict:
        return self._collect_map(self._defaults, type(self).defaults)

    def guesses(self) -> dict:
        return self._collect_map(self._guesses, type(self).guesses)

    def constants(self) -> list:
        return [v for v in vars_of(self.equations() + self.observed()) if isconstant(v)]

    # Namespaced member access

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)

        for sys in self.__dict__.get("_systems", ()):
            if sys.name == name:
                prefix = name if self.complete else f"{self.name}.{name}"
                return sys._replace(name=prefix)

        var = self.__dict__.get("_var_to_name", {}).get(name)
        if var is None:
            raise AttributeError(f"Variable {name} does not exist in system {self.name}")
        if isinstance(var, sp.Indexed):
            var = var.base
        if self.complete:
            return var
        return namespace_expr(var, self.name)

    def __dir__(self):
        return list(super().__dir__()) + list(self.__dict__.get("_var_to_name", {}))

    # Structure

    def flatten(self) -> "AbstractSystem":
        if not self._systems:
            return self
        return self._flat_copy()

    def _flat_copy(self) -> "AbstractSystem":
        raise NotImplementedError

    def _eq_fields(self, other) -> bool:
        return (
            self.name == other.name
            and Counter(self._eqs) == Counter(other._eqs)
            and Counter(self._unknowns) == Counter(other._unknowns)
            and Counter(self._ps) == Counter(other._ps)
            and len(self._systems) == len(other._systems)
            and all(a == b for a, b in zip(self._systems, other._systems))
        )

    def __eq__(self, other):
        if self is other:
            return True
        if type(self) is not type(other):
            return NotImplemented
        return self._eq_fields(other)

    def __hash__(self):
        return hash((type(self).__name__, self.name))

    def __repr__(self):
        return (
            f"{type(self).__name__}({self.name!r}, "
            f"{len(self._eqs)} equations, {len(self._unknowns)} unknowns, "
            f"{len(self._ps)} parameters, {len(self._systems)} sub-systems)"
        )


def flatten(sys: AbstractSystem) -> AbstractSystem:
    """Absorb all sub-systems into a single system without children."""
    return sys.flatten()


def complete(sys: AbstractSystem, split: bool = True) -> AbstractSystem:
    """Mark `sys` as complete: member access no longer prefixes names.

    With `split`, parameters use the bucket representation described by an
    `IndexCache`, otherwise a flat vector in `parameters()` order.
    """
    index_cache = IndexCache.from_system(sys) if split else None
    return sys._replace(complete=True, split=split, index_cache=index_cache)


def collect_variables(eqs, observed=(), parameter_dependencies=()):
    """Classify the variables referenced by equations by their declared role.

    Variables in `eqs` are unknowns unless declared parameters. Observed and
    parameter dependency right sides only contribute parameters.

    Returns:
        The ordered unknowns and parameters.
    """
    skip = {eq.lhs for eq in itertools.chain(observed, parameter_dependencies)}
    unknowns, ps = [], []

    def visit(var, allow_unknown):
        if var in skip or isinstance(var, sp.Dummy):
            return
        if isconstant(var) or isindependent(var):
            return
        if isparameter(var):
            ps.append(var)
        elif allow_unknown:
            unknowns.append(var)

    for var in vars_of(eqs):
        visit(var, True)
    for eq in itertools.chain(observed, parameter_dependencies):
        for var in vars_of(eq.rhs):
            visit(var, False)
    return unique(unknowns), unique(ps)
