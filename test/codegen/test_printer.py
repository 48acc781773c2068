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

import pytest
import sympy as sp

from eqsys.codegen import DelayedValue, printer_for
from eqsys.error import ArgumentError, UnknownVariableError
from eqsys.symbolic import independent_variable, parameters, variables


def test_symbols_print_through_bindings():
    x, y = variables("x y")
    printer = printer_for("numpy", {x: "_arg1[0]", y: "y_local"})

    assert printer.doprint(x + y) == "_arg1[0] + y_local"
    assert printer.doprint(sp.sin(x)) == "numpy.sin(_arg1[0])"
    assert "numpy" in printer.module_imports


def test_unbound_symbol_raises():
    x, y = variables("x y")
    printer = printer_for("numpy", {x: "x"})

    with pytest.raises(UnknownVariableError) as excinfo:
        printer.doprint(x * y)
    assert excinfo.value.variables == [y]


def test_indexed_falls_back_to_array_binding():
    p = parameters("p", shape=3)
    printer = printer_for("numpy", {p: "p_view", p[0]: "p0"})

    assert printer.doprint(p[0]) == "p0"
    assert printer.doprint(p[2]) == "p_view[2]"


def test_delayed_value():
    t = independent_variable("t")
    tau = parameters("tau")
    printer = printer_for("numpy", {t: "t", tau: "tau"}, history="_h", params="_p")

    assert printer.doprint(DelayedValue(t - tau, 1)) == "_h(_p, t - tau)[1]"

    printer.history = None
    with pytest.raises(UnknownVariableError):
        printer.doprint(DelayedValue(t - tau, 1))


def test_array_helper_and_backends():
    printer = printer_for("numpy", {})
    assert printer.array("[1, 2]") == "numpy.array([1, 2], dtype=float)"
    assert printer.array("[1, 2]", dtype=None) == "numpy.array([1, 2])"

    jax_printer = printer_for("jax", {})
    assert jax_printer.array("[1]") == "jax.numpy.array([1], dtype=float)"

    with pytest.raises(ArgumentError, match="not supported"):
        printer_for("torch", {})
