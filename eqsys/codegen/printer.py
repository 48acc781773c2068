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

"""Code printers that resolve variables through explicit bindings.

Unlike the printers used by `sympy.lambdify`, variables are never printed by
name: every symbol must be bound to a Python expression (an argument element, a
local assignment or a parameter bucket slot) before printing.
"""

import sympy as sp
from sympy.printing.numpy import JaxPrinter, NumPyPrinter

from ..backend import resolve_backend
from ..error import UnknownVariableError

__all__ = ["DelayedValue", "printer_for"]


class DelayedValue(sp.Function):
    """Value of unknown number `idx` at the delayed time `time`.

    Printed as a call to the history function of delay differential equations.
    """

    nargs = 2

    @property
    def time(self):
        return self.args[0]

    @property
    def idx(self):
        return self.args[1]


class _BindingPrinterMixin:
    _printer_settings = {
        "fully_qualified_modules": True,
        "inline": True,
        "allow_unknown_functions": False,
    }

    def __init__(self, bindings: dict, *, history=None, params=None):
        super().__init__(settings=dict(self._printer_settings))
        self.bindings = bindings
        self.history = history
        self.params = params

    def _lookup(self, expr):
        try:
            return self.bindings[expr]
        except KeyError:
            raise UnknownVariableError(
                f"{expr} is neither an argument nor defined by an assignment "
                "of the generated function",
                variables=[expr],
            ) from None

    def _print_Symbol(self, expr):
        return self._lookup(expr)

    _print_Dummy = _print_Symbol
    _print_AppliedUndef = _print_Symbol
    _print_Derivative = _print_Symbol
    _print_IndexedBase = _print_Symbol

    def _print_Indexed(self, expr):
        if expr in self.bindings:
            return self.bindings[expr]
        base = self._lookup(expr.base)
        indices = ", ".join(self._print(i) for i in expr.indices)
        return f"{base}[{indices}]"

    def _print_DelayedValue(self, expr):
        if self.history is None:
            raise UnknownVariableError(
                f"{expr} requires a history argument", variables=[expr]
            )
        return f"{self.history}({self.params}, {self._print(expr.time)})[{self._print(expr.idx)}]"

    def array(self, items: str, dtype: str | None = "float") -> str:
        func = self._module_format(f"{self._module}.array")
        if dtype is None:
            return f"{func}({items})"
        return f"{func}({items}, dtype={dtype})"

    def qualified(self, fqn: str) -> str:
        return self._module_format(fqn)


class NumpyBindingPrinter(_BindingPrinterMixin, NumPyPrinter):
    pass


class JaxBindingPrinter(_BindingPrinterMixin, JaxPrinter):
    pass


_printers = {
    "numpy": NumpyBindingPrinter,
    "jax": JaxBindingPrinter,
}


def printer_for(backend, bindings, **kwargs) -> _BindingPrinterMixin:
    return _printers[resolve_backend(backend)](bindings, **kwargs)
