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

"""Wraps symbolic expressions into Python functions with the calling
convention of the numerical solvers.

`build_function_wrapper` generates the source of two functions, an allocating
("out-of-place") one returning its output and an in-place one writing into a
caller supplied buffer `_out`. The body of both consists of, in order:

1. bindings of the referenced argument elements to local names,
2. views reconstructing array variables from their elements,
3. values of the declared constants,
4. the parameter dependencies needed by the output,
5. the observed equations needed by the output,

followed by the output itself. Sources are compiled in the same way as
`sympy.lambdify` does, and registered with `linecache` so that tracebacks show
the generated code.
"""

import itertools
import linecache
import re
from dataclasses import dataclass, field
from typing import Callable

import numpy as np
import sympy as sp
from sympy.core.function import AppliedUndef
from sympy.matrices import ImmutableSparseMatrix, MutableSparseMatrix

from ..backend import load_namespace, resolve_backend, supports_inplace
from ..error import ArgumentError
from ..logging import logger
from ..symbolic.equation import Equation
from ..symbolic.expr_utils import ExprKind, collect_constants, expr_kind, vars_of
from ..symbolic.variables import getdefault, var_name
from .assignments import (
    ArrayView,
    Assignment,
    DestructuredArgs,
    NameAllocator,
    array_variable_assignments,
    equations_used_by,
    generated_argument_name,
)
from .printer import printer_for

__all__ = [
    "GeneratedFunction",
    "Placeholder",
    "HISTORY",
    "PARAMETERS",
    "build_function_wrapper",
]


class Placeholder:
    """An opaque argument, bound by name rather than destructured."""

    def __init__(self, kind: str):
        self.kind = kind

    def __repr__(self):
        return f"<{self.kind}>"


# History function `h(p, t)` of delay differential equations
HISTORY = Placeholder("history")
# Whole parameter object: buckets in split mode, flat vector otherwise
PARAMETERS = Placeholder("parameters")


@dataclass(frozen=True)
class GeneratedFunction:
    fn: Callable
    source: str
    name: str
    assignments: tuple[Assignment, ...] = ()
    array_views: tuple[ArrayView, ...] = ()
    inplace: bool = False
    backend: str = "numpy"

    def __call__(self, *args):
        return self.fn(*args)


@dataclass
class _Body:
    signature: list[str] = field(default_factory=list)
    lines: list[str] = field(default_factory=list)
    views: list[ArrayView] = field(default_factory=list)
    history: str | None = None
    params: str | None = None


_compiled_count = itertools.count()


def _is_sparse(expr) -> bool:
    return isinstance(expr, (ImmutableSparseMatrix, MutableSparseMatrix))


def _to_nested(expr):
    match expr_kind(expr):
        case ExprKind.ARRAY if isinstance(expr, sp.MatrixBase):
            return expr.tolist()
        case ExprKind.ARRAY:
            return [_to_nested(e) for e in expr]
        case _:
            return expr


def _object_array(expr) -> np.ndarray:
    arr = np.array(_to_nested(expr), dtype=object)
    for idx in np.ndindex(arr.shape):
        arr[idx] = sp.sympify(arr[idx])
    return arr


def _nested_source(printer, arr) -> str:
    if not isinstance(arr, np.ndarray):
        return printer.doprint(arr)
    if arr.ndim == 0:
        return printer.doprint(arr[()])
    return "[" + ", ".join(_nested_source(printer, a) for a in arr) + "]"


def _index_source(idx) -> str:
    return ", ".join(str(i) for i in idx)


def _plan_assignments(sys, expr, observed, pdeps) -> list[Assignment]:
    obs = [observed[i] for i in equations_used_by(observed, [expr])]
    deps = [
        pdeps[i] for i in equations_used_by(pdeps, [expr] + [eq.rhs for eq in obs])
    ]
    rhss = [expr] + [eq.rhs for eq in deps] + [eq.rhs for eq in obs]

    assignments = []
    for const in collect_constants(rhss):
        value = getdefault(const)
        if value is None:
            raise ArgumentError(
                f"Constant {const} has no value", system=sys, variables=[const]
            )
        assignments.append(Assignment(const, sp.sympify(value)))
    assignments.extend(Assignment(eq.lhs, eq.rhs) for eq in deps)
    assignments.extend(Assignment(eq.lhs, eq.rhs) for eq in obs)
    return assignments


def _bind_parameters(sys, body, bindings, allocate, group, buffer, referenced):
    """Bind a member of the parameter range to slots of the parameter object.

    The first member is the parameter set itself, bound through the index
    cache. Further members are cache variables, member `k` living in buffer
    `buffer` after the parameter buckets.
    """
    if buffer is not None:
        for j, var in enumerate(group):
            bindings.setdefault(var, f"_p[{buffer}][{j}]")
        return

    for param, index in sys.index_cache.param_index.items():
        slot = f"_p[{index.bucket}]"
        if index.shape:
            code = f"{slot}[{index.offset}:{index.offset + index.size}]"
            if len(index.shape) != 1:
                code = f"{code}.reshape({index.shape})"
        else:
            code = f"{slot}[{index.offset}]"

        if param in referenced:
            name = allocate(var_name(param))
            body.lines.append(f"{name} = {code}")
            code = name
        bindings.setdefault(param, code)


def _element_hint(elem) -> str:
    indices = "_".join(str(i) for i in elem.indices)
    return f"{var_name(elem)}_{indices}"


def _bind_arguments(sys, args, p_start, p_end, split, printer, allocate, referenced):
    bindings = printer.bindings
    body = _Body()
    # (argument name, elements, create bindings, bare value)
    dense = []

    for i, arg in enumerate(args):
        if split and p_start <= i < p_end:
            if body.params is None:
                body.params = "_p"
                body.signature.append("_p")
            buffer = None
            if i > p_start:
                buffer = sys.index_cache.nbuckets + i - p_start - 1
            group = [] if arg is PARAMETERS else list(arg)
            _bind_parameters(sys, body, bindings, allocate, group, buffer, referenced)
            continue

        if arg is HISTORY:
            body.history = "_h"
            body.signature.append("_h")
            continue

        if arg is PARAMETERS:
            arg = DestructuredArgs(sys.parameters(), name="_p")
        elif isinstance(arg, (list, tuple)):
            arg = DestructuredArgs(arg)

        if isinstance(arg, DestructuredArgs):
            argname = arg.name or generated_argument_name(i)
            dense.append((argname, arg.scalarized(), arg.create_bindings, False))
        else:
            # a single variable, eg. the independent variable
            argname = generated_argument_name(i)
            dense.append((argname, [arg], True, True))
        allocate.reserve(argname)
        body.signature.append(argname)
        if i == p_start:
            body.params = argname

    referenced_bases = {e.base for e in referenced if isinstance(e, sp.Indexed)}
    views = array_variable_assignments(
        [(argname, elems) for argname, elems, _, bare in dense if not bare]
    )
    for view in views:
        if view.base not in referenced and view.base not in referenced_bases:
            continue
        name = allocate(var_name(view.base))
        body.lines.append(f"{name} = {view.render(printer)}")
        bindings[view.base] = name
        body.views.append(view)

    for argname, elems, create_bindings, bare in dense:
        for k, elem in enumerate(elems):
            if elem in bindings:
                continue
            if isinstance(elem, sp.Indexed) and elem.base in bindings:
                continue
            code = argname if bare else f"{argname}[{k}]"
            if create_bindings and elem in referenced:
                if isinstance(elem, sp.Indexed):
                    name = allocate(_element_hint(elem))
                else:
                    name = allocate(var_name(elem))
                body.lines.append(f"{name} = {code}")
                code = name
            bindings[elem] = code

    return body


def _output_source(printer, expr, output_type, inplace: bool, backend: str):
    """Source lines producing the output, or None if there is no in-place form."""
    if output_type in (tuple, "tuple"):
        if inplace:
            return None
        items = []
        for item in expr:
            if expr_kind(item) is ExprKind.ARRAY:
                items.append(printer.array(_nested_source(printer, _object_array(item))))
            else:
                items.append(printer.doprint(item))
        return [f"return ({', '.join(items)},)"]

    if output_type == "sparse" or _is_sparse(expr):
        if backend != "numpy":
            raise ArgumentError(f"Sparse outputs are not supported by the {backend} backend")
        matrix = ImmutableSparseMatrix(expr)
        entries = sorted(matrix.todok().items(), key=lambda kv: (kv[0][1], kv[0][0]))
        if inplace:
            lines = [
                f"_out.data[{k}] = {printer.doprint(value)}"
                for k, (_, value) in enumerate(entries)
            ]
            return lines + ["return None"]
        data = printer.array("[" + ", ".join(printer.doprint(v) for _, v in entries) + "]")
        rows = [i for (i, _), _ in entries]
        cols = [j for (_, j), _ in entries]
        csc = printer.qualified("scipy.sparse.csc_matrix")
        return [f"return {csc}(({data}, ({rows}, {cols})), shape={matrix.shape})"]

    if expr_kind(expr) is ExprKind.ARRAY:
        arr = _object_array(expr)
        if inplace:
            lines = [
                f"_out[{_index_source(idx)}] = {printer.doprint(arr[idx])}"
                for idx in np.ndindex(arr.shape)
            ]
            return lines + ["return None"]
        if arr.size == 0:
            zeros = printer.qualified(f"{printer._module}.zeros")
            return [f"return {zeros}({arr.shape})"]
        return [f"return {printer.array(_nested_source(printer, arr))}"]

    if inplace:
        return None
    return [f"return {printer.doprint(expr)}"]


def _function_source(name, signature, lines, result) -> str:
    body = "\n".join(f"    {line}" for line in lines + result)
    return f"def {name}({', '.join(signature)}):\n{body}\n"


def _compile(source: str, name: str, printer) -> Callable:
    filename = f"<eqsys-generated {name}-{next(_compiled_count)}>"
    namespace = load_namespace(printer.module_imports)
    code = compile(source, filename, "exec")
    linecache.cache[filename] = (len(source), None, source.splitlines(True), filename)
    exec(code, namespace)  # pylint: disable=exec-used
    return namespace[name]


def build_function_wrapper(
    sys,
    expr,
    *args,
    p_start: int = 1,
    p_end: int | None = None,
    wrap_delays: bool | None = None,
    add_observed: bool = True,
    filter_observed: Callable[[Equation], bool] | None = None,
    observed=None,
    output_type=None,
    wrap_parameters: bool = True,
    name: str = "generated",
    backend: str | None = None,
    expression: bool = False,
):
    """Generate the out-of-place and in-place functions evaluating `expr`.

    Args:
        sys: The system owning the variables of `expr`. Its observed
            equations, parameter dependencies and index cache are used.
        expr: A scalar expression, a sequence, a matrix or a nested list.
        *args: Argument groups, each either a sequence of variables (or a
            `DestructuredArgs`), a single variable, or a `Placeholder`.
        p_start: Position of the parameter argument in `args`.
        p_end: End (exclusive) of the parameter range. In split mode the
            whole range is replaced by a single parameter object `_p`; members
            after the first are cache variables living in the cache buffers.
        wrap_delays: Route delayed variable references through a history
            argument inserted before the parameters. Defaults to whether the
            system has delays.
        add_observed: Whether observed equations may be used at all.
        filter_observed: Keep only the observed equations satisfying it.
        observed: Observed equations to use instead of the system's.
        output_type: `tuple` to return a tuple, "sparse" for a sparse matrix.
            Inferred from `expr` otherwise.
        wrap_parameters: Apply the split parameter layout if the system has one.
        name: Name of the generated function.
        backend: "numpy" or "jax", defaults to `eqsys.backend.DEFAULT_BACKEND`.
        expression: Return the generated sources instead of functions.

    Returns:
        A pair `(oop, iip)`. The in-place function is None for scalar and tuple
        outputs and for backends without mutable arrays.
    """
    backend = resolve_backend(backend)
    name = re.sub(r"\W", "_", name)
    args = list(args)
    if p_end is None:
        p_end = p_start + 1

    if not add_observed:
        obs = []
    elif observed is not None:
        obs = list(observed)
    else:
        obs = sys.observed()
    if filter_observed is not None:
        obs = [eq for eq in obs if filter_observed(eq)]

    if wrap_delays is None:
        wrap_delays = getattr(sys, "is_dde", False)
    if wrap_delays:
        expr = sys.delay_to_function(expr)
        obs = [Equation(eq.lhs, sys.delay_to_function(eq.rhs)) for eq in obs]
        args.insert(p_start, HISTORY)
        p_start += 1
        p_end += 1

    assignments = _plan_assignments(sys, expr, obs, sys.parameter_dependencies())

    referenced = set(vars_of([expr] + [a.rhs for a in assignments]))
    for var in list(referenced):
        if isinstance(var, AppliedUndef):
            referenced.update(vars_of(var.args))

    split = wrap_parameters and getattr(sys, "index_cache", None) is not None
    printer = printer_for(backend, {})
    allocate = NameAllocator()
    body = _bind_arguments(
        sys, args, p_start, p_end, split, printer, allocate, referenced
    )
    printer.history = body.history
    printer.params = body.params

    lines = list(body.lines)
    for assignment in assignments:
        rhs = printer.doprint(assignment.rhs)
        local = allocate(var_name(assignment.lhs))
        lines.append(f"{local} = {rhs}")
        printer.bindings[assignment.lhs] = local

    oop_result = _output_source(printer, expr, output_type, False, backend)
    oop_source = _function_source(name, body.signature, lines, oop_result)

    iip_source = None
    if supports_inplace(backend):
        iip_result = _output_source(printer, expr, output_type, True, backend)
        if iip_result is not None:
            iip_source = _function_source(
                f"{name}_inplace", ["_out"] + body.signature, lines, iip_result
            )

    logger.debug("Generated %s:\n%s", name, oop_source)
    if expression:
        return oop_source, iip_source

    oop = GeneratedFunction(
        _compile(oop_source, name, printer),
        oop_source,
        name,
        tuple(assignments),
        tuple(body.views),
        False,
        backend,
    )
    iip = None
    if iip_source is not None:
        iip = GeneratedFunction(
            _compile(iip_source, f"{name}_inplace", printer),
            iip_source,
            f"{name}_inplace",
            tuple(assignments),
            tuple(body.views),
            True,
            backend,
        )
    return oop, iip
