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
from sympy.core.function import AppliedUndef

from ..codegen.function_builder import build_function_wrapper
from ..codegen.printer import DelayedValue
from ..error import ArgumentError
from ..logging import logger, logdata
from ..symbolic.equation import as_equation
from ..symbolic.expr_utils import fixpoint_sub, substitute, unique, vars_of
from ..symbolic.variables import isindependent, var_name
from .abstract_system import (
    AbstractSystem,
    CacheCell,
    TagCounter,
    collect_variables,
    process_parameters,
)

__all__ = ["ODESystem"]


def _infer_iv(eqs):
    ivs = unique(
        var
        for eq in eqs
        for d in vars_of(eq, include_derivatives=True)
        if isinstance(d, sp.Derivative)
        for var, _ in d.variable_count
    )
    if len(ivs) != 1:
        raise ArgumentError(
            "The independent variable cannot be inferred, pass `iv` explicitly"
        )
    return ivs[0]


def _check_single_iv(eqs, iv, name):
    for eq in eqs:
        for var in vars_of(eq, include_derivatives=True):
            if isinstance(var, sp.Derivative):
                others = [v for v, _ in var.variable_count if v != iv]
            elif isindependent(var) and var != iv:
                others = [var]
            else:
                continue
            if others:
                raise ArgumentError(
                    "An ODESystem can only have one independent variable.",
                    system_name=name,
                    variables=[iv] + others,
                )


def _differential_variables(eqs, name) -> list:
    diffvars = []
    for eq in eqs:
        if not isinstance(eq.lhs, sp.Derivative):
            continue
        if eq.lhs.derivative_count != 1:
            raise ArgumentError(
                f"Equation {eq} is not first order, introduce new unknowns for "
                "the intermediate derivatives",
                system_name=name,
            )
        var = eq.lhs.expr
        if var in diffvars:
            raise ArgumentError(
                f"The differential variable {var} is not unique in the system "
                "of equations.",
                system_name=name,
                variables=[var],
            )
        diffvars.append(var)
    return diffvars


def _undelayed(var, iv):
    if isinstance(var, AppliedUndef) and var.args != (iv,):
        return var.func(iv)
    return var


class ODESystem(AbstractSystem):
    """A system of first order differential-algebraic equations.

    Differential equations are written `D(x) ~ f(x, p, t)` with
    `D = Differential(t)`; any other equation is algebraic, `0 = rhs - lhs`.
    Unknowns are applied functions of the independent variable, `x(t)`.
    References to past values `x(t - tau)` make the system a delay
    differential equation, whose generated functions take a history argument.

    When inferred, unknowns are ordered differential variables first, in the
    order of their equations.
    """

    def __init__(
        self,
        eqs,
        iv=None,
        unknowns=None,
        ps=None,
        *,
        tspan=None,
        name=None,
        observed=(),
        systems=(),
        defaults=None,
        guesses=None,
        parameter_dependencies=(),
        description="",
        checks=True,
        tag_counter: TagCounter = None,
    ):
        eqs = [as_equation(eq) for eq in eqs]
        observed = [as_equation(eq) for eq in observed]
        parameter_dependencies = [as_equation(eq) for eq in parameter_dependencies]

        if iv is None:
            iv = _infer_iv(eqs)
        if checks:
            _check_single_iv(eqs, iv, name)
        diffvars = _differential_variables(eqs, name)

        if unknowns is None or ps is None:
            inferred_unknowns, inferred_ps = collect_variables(
                eqs, observed, parameter_dependencies
            )
            if unknowns is None:
                algebraic = [_undelayed(v, iv) for v in inferred_unknowns if v != iv]
                unknowns = unique(diffvars + algebraic)
            ps = process_parameters(
                inferred_ps if ps is None else ps, inferred=ps is None
            )
        else:
            ps = process_parameters(ps)

        self.iv = iv
        self.tspan = tspan
        super().__init__(
            eqs,
            unknowns,
            ps,
            name=name,
            description=description,
            observed=observed,
            systems=systems,
            defaults=defaults,
            guesses=guesses,
            parameter_dependencies=parameter_dependencies,
            checks=checks,
            tag_counter=tag_counter,
        )

    def _check(self):
        super()._check()
        for sys in self._systems:
            if sys.iv != self.iv:
                raise ArgumentError(
                    "An ODESystem can only have one independent variable.",
                    system_name=self.name,
                    variables=[self.iv, sys.iv],
                )

    def _reset_caches(self):
        super()._reset_caches()
        self._tgrad = CacheCell()

    def _flat_copy(self):
        return ODESystem(
            self.equations(),
            self.iv,
            self.unknowns(),
            self.parameters(),
            tspan=self.tspan,
            name=self.name,
            observed=self.observed(),
            defaults=self.defaults(),
            guesses=self.guesses(),
            parameter_dependencies=self.parameter_dependencies(),
            description=self.description,
            checks=False,
            tag_counter=self._tag_counter,
        )

    def _eq_fields(self, other) -> bool:
        return self.iv == other.iv and super()._eq_fields(other)

    # Delays

    def _delayed_calls(self, expr) -> list:
        unknowns = set(self.unknowns())
        return [
            v
            for v in vars_of(expr)
            if isinstance(v, AppliedUndef)
            and v.args != (self.iv,)
            and _undelayed(v, self.iv) in unknowns
        ]

    @property
    def is_dde(self) -> bool:
        return bool(self._delayed_calls(self.equations() + self.observed()))

    def delay_to_function(self, expr):
        """Replace every delayed unknown `x(t - tau)` by a lookup into the
        history function."""
        delayed = self._delayed_calls(expr)
        if not delayed:
            return expr
        index = {u: i for i, u in enumerate(self.unknowns())}
        rules = {
            v: DelayedValue(v.args[0], index[_undelayed(v, self.iv)]) for v in delayed
        }
        return substitute(expr, rules)

    # Derived expressions

    def rhss(self) -> list:
        """Right sides `f` of the mass matrix form `M du/dt = f(u, p, t)`."""
        return [
            eq.rhs if isinstance(eq.lhs, sp.Derivative) else eq.rhs - eq.lhs
            for eq in self.equations()
        ]

    def _substituted_rhss(self) -> list:
        rules = {eq.lhs: eq.rhs for eq in self.observed()}
        return fixpoint_sub(self.rhss(), rules)

    def calculate_jacobian(self, sparse=False, simplify=False):
        """Jacobian of `f` with respect to the unknowns, memoized on the flags."""
        key = (sparse, simplify)
        cached = self._jac.get(key)
        if cached is not None:
            return cached

        rhss = self._substituted_rhss()
        unknowns = self.unknowns()
        jac = sp.Matrix(rhss).jacobian(unknowns) if rhss else sp.zeros(0, len(unknowns))
        if simplify:
            jac = jac.applyfunc(sp.simplify)
        jac = sp.ImmutableSparseMatrix(jac) if sparse else sp.ImmutableMatrix(jac)

        logger.debug("Computed jacobian %s", jac.shape, **logdata(system=self))
        return self._jac.set(key, jac)

    def calculate_tgrad(self, simplify=False) -> list:
        """Partial derivative of `f` with respect to the independent variable,
        unknowns held fixed."""
        key = (simplify,)
        cached = self._tgrad.get(key)
        if cached is not None:
            return cached

        frozen = {u: sp.Dummy(var_name(u)) for u in self.unknowns()}
        thawed = {d: u for u, d in frozen.items()}
        tgrad = []
        for rhs in self._substituted_rhss():
            grad = substitute(sp.diff(substitute(rhs, frozen), self.iv), thawed)
            tgrad.append(sp.simplify(grad) if simplify else grad)
        return self._tgrad.set(key, tuple(tgrad))

    def calculate_massmatrix(self) -> sp.ImmutableMatrix:
        """`M[i, j] = 1` when equation `i` is `D(u_j) ~ ...`, zero otherwise."""
        unknowns = self.unknowns()
        column = {u: j for j, u in enumerate(unknowns)}
        eqs = self.equations()
        mass = sp.zeros(len(eqs), len(unknowns))
        for i, eq in enumerate(eqs):
            if isinstance(eq.lhs, sp.Derivative):
                mass[i, column[eq.lhs.expr]] = 1
        return sp.ImmutableMatrix(mass)

    # Code generation

    def generate_function(self, *, backend=None, expression=False, **kwargs):
        """Right side functions `f(u, p, t)` and `f(du, u, p, t)`. Delay
        differential equations take the history `h(p, t)` as well,
        `f(u, h, p, t)`."""
        return build_function_wrapper(
            self,
            self.rhss(),
            self.unknowns(),
            self.parameters(),
            self.iv,
            p_start=1,
            name=kwargs.pop("name", "rhs"),
            backend=backend,
            expression=expression,
            **kwargs,
        )

    def generate_tgrad(self, *, simplify=False, backend=None, expression=False, **kwargs):
        return build_function_wrapper(
            self,
            list(self.calculate_tgrad(simplify=simplify)),
            self.unknowns(),
            self.parameters(),
            self.iv,
            p_start=1,
            name=kwargs.pop("name", "tgrad"),
            backend=backend,
            expression=expression,
            **kwargs,
        )

    def generate_jacobian(
        self, *, sparse=False, simplify=False, backend=None, expression=False, **kwargs
    ):
        jac = self.calculate_jacobian(sparse=sparse, simplify=simplify)
        return build_function_wrapper(
            self,
            jac,
            self.unknowns(),
            self.parameters(),
            self.iv,
            p_start=1,
            output_type="sparse" if sparse else None,
            name=kwargs.pop("name", "jacobian"),
            backend=backend,
            expression=expression,
            **kwargs,
        )
