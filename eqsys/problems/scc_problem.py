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

"""Staged solution of a nonlinear system, one strongly connected component
at a time.

The components are solved in block lower triangular order. Before stage `i`
is solved, its cache writer evaluates, from the solutions of the previous
stages, every value that stage `i` needs but does not solve for: the
previous unknowns and observed variables it references, and its
subexpressions that involve none of its own unknowns. These values live in
cache buffers appended to the parameter object, one buffer per numeric type,
sized for the most demanding stage and shared by all stages.
"""

from dataclasses import dataclass, field
from typing import Any, Callable

import numpy as np
import sympy as sp

from ..codegen.function_builder import build_function_wrapper
from ..error import ParameterModeError, SystemNotSimplifiedError
from ..logging import logger, logdata
from ..structural.scc import algebraic_variables_scc
from ..symbolic.equation import Equation, flatten_equations
from ..symbolic.expr_utils import (
    fixpoint_sub,
    subexpressions_not_involving_vars,
    vars_of,
)
from ..symbolic.variables import symtype
from ..systems.abstract_system import complete
from ..systems.index_cache import BufferTemplate, bucket_dtype
from ..systems.nonlinear_system import NonlinearSystem
from ..systems.observed import observed_equations_used_by
from .functions import NonlinearFunction, check_complete
from .nonlinear import NonlinearProblem, process_problem

__all__ = ["CacheWriter", "SCCNonlinearProblem"]


class CacheWriter:
    """Fills the cache buffers of `p` from the concatenated solutions of the
    previous stages. Without a function, there is nothing to write."""

    def __init__(self, fn: Callable | None = None):
        self.fn = fn

    def __call__(self, p, sols):
        if self.fn is None:
            return None
        values = self.fn(np.asarray(sols, dtype=float), p)
        for buffer, vals in zip(p.caches, values):
            vals = np.asarray(vals)
            buffer[: vals.size] = vals
        return None

    def __repr__(self):
        return f"CacheWriter({getattr(self.fn, 'name', None)})"


@dataclass
class _Stage:
    dvs: list
    rhss: list
    obs: list
    original_rhss: list
    original_obs: list
    cachevars: dict = field(default_factory=dict)
    cacheexprs: dict = field(default_factory=dict)

    def add_cached(self, var, expr):
        dtype = bucket_dtype(symtype(var))
        self.cachevars.setdefault(dtype, []).append(var)
        self.cacheexprs.setdefault(dtype, []).append(expr)


def _plan_stages(sys, eq_sccs, var_sccs):
    dvs = sys.unknowns()
    eqs = flatten_equations(sys.equations())
    obs = sys.observed()

    stages = []
    prev_obs = []
    solved = set()
    for escc, vscc in zip(eq_sccs, var_sccs):
        _dvs = [dvs[j] for j in vscc]
        rhss = [eqs[i].rhs - eqs[i].lhs for i in escc]

        # observed needed by earlier stages are computed by the cache writers
        obsidxs = [
            k for k in observed_equations_used_by(sys, rhss, obs) if k not in prev_obs
        ]
        _obs = [obs[k] for k in obsidxs]

        banned = set(_dvs) | {eq.lhs for eq in _obs}
        state = {}
        hoisted_obs = [
            Equation(eq.lhs, subexpressions_not_involving_vars(eq.rhs, banned, state))
            for eq in _obs
        ]
        hoisted_rhss = [
            subexpressions_not_involving_vars(r, banned, state) for r in rhss
        ]
        stage = _Stage(_dvs, hoisted_rhss, hoisted_obs, rhss, _obs)

        prev_obs_lhs = {obs[k].lhs for k in prev_obs}
        refs = vars_of(hoisted_rhss + [eq.rhs for eq in hoisted_obs])
        for var in refs:
            if var in solved or var in prev_obs_lhs:
                stage.add_cached(var, var)
        for expr, dummy in state.items():
            if dummy in refs:
                stage.add_cached(dummy, expr)

        stages.append(stage)
        prev_obs.extend(obsidxs)
        solved.update(_dvs)
    return stages


def _cache_templates(stages) -> list[BufferTemplate]:
    sizes = {}
    for stage in stages:
        for dtype, buf in stage.cachevars.items():
            sizes[dtype] = max(sizes.get(dtype, 0), len(buf))
    return [BufferTemplate(dtype, n) for dtype, n in sizes.items()]


def _stage_system(sys, stage):
    subsys = NonlinearSystem(
        [Equation(sp.S.Zero, r) for r in stage.original_rhss],
        stage.dvs,
        sys.parameters(),
        name=sys.name,
        observed=stage.original_obs,
        parameter_dependencies=sys.parameter_dependencies(),
        checks=False,
        tag_counter=sys._tag_counter,
    )
    return subsys._replace(complete=True, split=True, index_cache=sys.index_cache)


@dataclass(frozen=True)
class SCCNonlinearProblem:
    """A nonlinear problem split into stages solved in sequence.

    `probs[i]` solves the unknowns `var_sccs[i]` once `explicitfuns[i]` has
    filled the cache buffers of the shared parameter object `p`. The unknowns
    and equations of `sys` are reordered stage by stage.
    """

    probs: tuple[NonlinearProblem, ...]
    explicitfuns: tuple[CacheWriter, ...]
    p: Any
    sys: Any
    eq_sccs: list[list[int]]
    var_sccs: list[list[int]]

    @property
    def u0(self) -> np.ndarray:
        return np.concatenate([prob.u0 for prob in self.probs])

    @classmethod
    def from_system(
        cls, sys, u0map=None, parammap=None, *, jac=False, backend=None, **kwargs
    ):
        check_complete(sys, cls.__name__)
        if sys.tearing_state is None:
            raise SystemNotSimplifiedError(
                "A simplified system is required. Call `structural_simplify` on "
                "the system before creating an SCCNonlinearProblem.",
                system=sys,
            )
        if not sys.split:
            raise ParameterModeError(
                "The system has been simplified with `split=False`, pass "
                "`split=True` to `structural_simplify` to use SCCNonlinearProblem.",
                system=sys,
            )

        eq_sccs, var_sccs = algebraic_variables_scc(sys.tearing_state)
        if len(var_sccs) == 1:
            prob = NonlinearProblem.from_system(
                sys, u0map, parammap, jac=jac, backend=backend, **kwargs
            )
            return cls((prob,), (CacheWriter(),), prob.p, sys, eq_sccs, var_sccs)

        u0, p = process_problem(sys, u0map, parammap)
        stages = _plan_stages(sys, eq_sccs, var_sccs)
        templates = _cache_templates(stages)
        cachetypes = [t.dtype for t in templates]
        logger.debug(
            "Staged solve with %d stages, cache buffers %s",
            len(stages),
            templates,
            **logdata(system=sys),
        )

        dvs = sys.unknowns()
        ps = sys.parameters()
        probs = []
        writers = []
        for i, (stage, vscc) in enumerate(zip(stages, var_sccs)):
            groups = [stage.cachevars.get(dtype, []) for dtype in cachetypes]
            residual = build_function_wrapper(
                sys,
                stage.rhss,
                stage.dvs,
                ps,
                *groups,
                p_start=1,
                p_end=2 + len(groups),
                observed=stage.obs,
                name=f"scc_residual_{i}",
                backend=backend,
            )
            jacobian = None
            if jac:
                rules = {eq.lhs: eq.rhs for eq in stage.obs}
                rhss = fixpoint_sub(stage.rhss, rules)
                jacobian = build_function_wrapper(
                    sys,
                    sp.ImmutableMatrix(sp.Matrix(rhss).jacobian(stage.dvs)),
                    stage.dvs,
                    ps,
                    *groups,
                    p_start=1,
                    p_end=2 + len(groups),
                    add_observed=False,
                    name=f"scc_jacobian_{i}",
                    backend=backend,
                )
            f = NonlinearFunction(_stage_system(sys, stage), *residual, jac=jacobian)
            probs.append((f, u0[vscc]))

            if not stage.cachevars:
                writers.append(CacheWriter())
                continue
            solsyms = [dvs[j] for scc in var_sccs[:i] for j in scc]
            exprs = [stage.cacheexprs.get(dtype, []) for dtype in cachetypes]
            writer, _ = build_function_wrapper(
                sys,
                exprs,
                solsyms,
                ps,
                p_start=1,
                output_type=tuple,
                name=f"scc_cache_writer_{i}",
                backend=backend,
            )
            writers.append(CacheWriter(writer))

        p = p.rebuild_with_caches(*templates)
        probs = tuple(NonlinearProblem(f, u0_i, p, kwargs) for f, u0_i in probs)

        order = [j for scc in var_sccs for j in scc]
        eqs = flatten_equations(sys.equations())
        reordered = sys._replace(
            _unknowns=[dvs[j] for j in order],
            _eqs=[eqs[i] for scc in eq_sccs for i in scc],
        )
        return cls(
            probs,
            tuple(writers),
            p,
            complete(reordered, split=True),
            eq_sccs,
            var_sccs,
        )
