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

import numpy as np
import sympy as sp
from scipy import sparse as sps

from ..codegen.function_builder import build_function_wrapper
from ..error import ArgumentError
from ..logging import logger, logdata
from ..symbolic.equation import as_equation, canonical_form, flatten_equations
from ..symbolic.expr_utils import fixpoint_sub, vars_of
from .abstract_system import (
    AbstractSystem,
    TagCounter,
    collect_variables,
    process_parameters,
)

__all__ = ["NonlinearSystem", "sparsity_pattern"]


def sparsity_pattern(entries, shape) -> sps.csc_matrix:
    """Boolean sparse matrix with `True` at each (row, col) of `entries`."""
    entries = sorted(set(entries))
    rows = [i for i, _ in entries]
    cols = [j for _, j in entries]
    data = np.ones(len(entries), dtype=bool)
    return sps.csc_matrix((data, (rows, cols)), shape=shape)


class NonlinearSystem(AbstractSystem):
    """A system of nonlinear algebraic equations `0 = f(u, p)`.

    Equations are stored in residual form `0 = rhs - lhs`, except when the left
    side is a whole array. If neither `unknowns` nor `ps` are given, they are
    inferred from the equations: declared parameters become parameters, every
    other variable an unknown.

    Parameters:
        eqs : list
            Equations, as `Equation`, `sympy.Eq`, `(lhs, rhs)` or bare
            expressions meaning `0 = expr`.
        unknowns : list, optional
            Variables solved for. Array variables are scalarized.
        ps : list, optional
            Parameters. Arrays must be declared as a whole.
        name : str
            Name of the system, required.
        observed : list
            Explicit equations `y = g(u, p)` of eliminated variables.
        systems : list
            Sub-systems, with pairwise distinct names.
        defaults, guesses : dict
            Default values and initial guesses, merged over the ones declared
            with the variables.
        parameter_dependencies : list
            Equations `q = h(p)` defining parameters from other parameters.
        tag_counter : TagCounter
            Source of the identity tag, defaults to the process wide counter.
    """

    def __init__(
        self,
        eqs,
        unknowns=None,
        ps=None,
        *,
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
        eqs = [canonical_form(as_equation(eq)) for eq in eqs]
        observed = [as_equation(eq) for eq in observed]
        parameter_dependencies = [as_equation(eq) for eq in parameter_dependencies]

        if unknowns is None or ps is None:
            inferred_unknowns, inferred_ps = collect_variables(
                eqs, observed, parameter_dependencies
            )
            if unknowns is None:
                unknowns = inferred_unknowns
            if ps is None:
                ps = process_parameters(inferred_ps, inferred=True)
            else:
                ps = process_parameters(ps)
        else:
            ps = process_parameters(ps)

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

    def _flat_copy(self):
        return NonlinearSystem(
            self.equations(),
            self.unknowns(),
            self.parameters(),
            name=self.name,
            observed=self.observed(),
            defaults=self.defaults(),
            guesses=self.guesses(),
            parameter_dependencies=self.parameter_dependencies(),
            description=self.description,
            checks=False,
            tag_counter=self._tag_counter,
        )

    def residuals(self) -> list:
        """Right sides of the scalar residual equations, in equation order."""
        return [eq.rhs - eq.lhs for eq in flatten_equations(self.equations())]

    def _substituted_residuals(self) -> list:
        rules = {eq.lhs: eq.rhs for eq in self.observed()}
        return fixpoint_sub(self.residuals(), rules)

    def calculate_jacobian(self, sparse=False, simplify=False):
        """Jacobian of the residuals with respect to the unknowns.

        Observed variables are substituted first. The result is memoized: a
        second call with the same flags returns the same matrix object.
        """
        key = (sparse, simplify)
        cached = self._jac.get(key)
        if cached is not None:
            return cached

        rhss = self._substituted_residuals()
        unknowns = self.unknowns()
        if rhss:
            jac = sp.Matrix(rhss).jacobian(unknowns)
        else:
            jac = sp.zeros(0, len(unknowns))
        if simplify:
            jac = jac.applyfunc(sp.simplify)
        jac = sp.ImmutableSparseMatrix(jac) if sparse else sp.ImmutableMatrix(jac)

        logger.debug("Computed jacobian %s", jac.shape, **logdata(system=self))
        return self._jac.set(key, jac)

    def calculate_hessian(self, sparse=False, simplify=False):
        """Hessians of every residual with respect to the unknowns, memoized
        like the jacobian."""
        key = (sparse, simplify)
        cached = self._hess.get(key)
        if cached is not None:
            return cached

        unknowns = self.unknowns()
        hessians = []
        for rhs in self._substituted_residuals():
            hess = sp.hessian(rhs, unknowns)
            if simplify:
                hess = hess.applyfunc(sp.simplify)
            if sparse:
                hessians.append(sp.ImmutableSparseMatrix(hess))
            else:
                hessians.append(sp.ImmutableMatrix(hess))
        return self._hess.set(key, tuple(hessians))

    def jacobian_sparsity(self) -> sps.csc_matrix:
        """Structural nonzeros of the jacobian, from the incidence of the
        unknowns in the residuals."""
        unknowns = self.unknowns()
        rhss = self._substituted_residuals()
        column = {u: j for j, u in enumerate(unknowns)}
        entries = [
            (i, column[v])
            for i, rhs in enumerate(rhss)
            for v in vars_of(rhs)
            if v in column
        ]
        return sparsity_pattern(entries, (len(rhss), len(unknowns)))

    def hessian_sparsity(self) -> list[sps.csc_matrix]:
        n = len(self.unknowns())
        return [
            sparsity_pattern(sp.ImmutableSparseMatrix(hess).todok().keys(), (n, n))
            for hess in self.calculate_hessian()
        ]

    def generate_function(self, *, scalar=False, backend=None, expression=False, **kwargs):
        """Residual functions `f(u, p)` and `f(out, u, p)`.

        With `scalar`, the system must have a single equation and a single
        unknown: the functions take and return numbers, `f(x, p)`, and there is
        no in-place function.
        """
        residuals = self.residuals()
        unknowns = self.unknowns()
        if scalar:
            if len(residuals) != 1 or len(unknowns) != 1:
                raise ArgumentError(
                    "A scalar residual needs exactly one equation and one unknown",
                    system=self,
                )
            residuals = residuals[0]
            unknowns = unknowns[0]
        return build_function_wrapper(
            self,
            residuals,
            unknowns,
            self.parameters(),
            p_start=1,
            name=kwargs.pop("name", "residual"),
            backend=backend,
            expression=expression,
            **kwargs,
        )

    def generate_jacobian(
        self, *, sparse=False, simplify=False, backend=None, expression=False, **kwargs
    ):
        """Jacobian functions `J(u, p)` and `J(out, u, p)`."""
        jac = self.calculate_jacobian(sparse=sparse, simplify=simplify)
        return build_function_wrapper(
            self,
            jac,
            self.unknowns(),
            self.parameters(),
            p_start=1,
            output_type="sparse" if sparse else None,
            name=kwargs.pop("name", "jacobian"),
            backend=backend,
            expression=expression,
            **kwargs,
        )

    def generate_hessian(self, *, simplify=False, backend=None, expression=False, **kwargs):
        """Functions returning the stacked hessians, of shape (neqs, n, n)."""
        hessians = [sp.ImmutableMatrix(h) for h in self.calculate_hessian(simplify=simplify)]
        return build_function_wrapper(
            self,
            hessians,
            self.unknowns(),
            self.parameters(),
            p_start=1,
            name=kwargs.pop("name", "hessian"),
            backend=backend,
            expression=expression,
            **kwargs,
        )
