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

"""Numerical problems built from ODE systems."""

from dataclasses import dataclass, field
from typing import Any, Callable

import numpy as np

from ..error import ArgumentError
from .functions import ODEFunction, check_complete
from .nonlinear import process_problem

__all__ = ["ODEProblem", "DDEProblem", "constant_history"]


def _tspan(sys, tspan):
    tspan = tspan if tspan is not None else sys.tspan
    if tspan is None:
        raise ArgumentError(
            "No time span given and the system has no `tspan`", system=sys
        )
    t0, tf = tspan
    return float(t0), float(tf)


def constant_history(u0) -> Callable:
    """History `h(p, t)` holding `u0` before the initial time."""
    u0 = np.array(u0, dtype=float)

    def history(p, t):
        return u0

    return history


@dataclass(frozen=True)
class ODEProblem:
    """Integrate `M du/dt = f(u, p, t)` from `u0` over `tspan`."""

    f: ODEFunction
    u0: np.ndarray
    tspan: tuple[float, float]
    p: Any
    kwargs: dict = field(default_factory=dict)

    @property
    def sys(self):
        return self.f.sys

    @classmethod
    def from_system(
        cls,
        sys,
        u0map=None,
        tspan=None,
        parammap=None,
        *,
        jac=False,
        tgrad=False,
        sparse=False,
        simplify=False,
        backend=None,
        **kwargs,
    ):
        check_complete(sys, cls.__name__)
        if sys.is_dde:
            raise ArgumentError(
                "The system has delays, use a DDEProblem instead", system=sys
            )
        f = ODEFunction.from_system(
            sys, jac=jac, tgrad=tgrad, sparse=sparse, simplify=simplify, backend=backend
        )
        u0, p = process_problem(sys, u0map, parammap)
        return cls(f, u0, _tspan(sys, tspan), p, kwargs)


@dataclass(frozen=True)
class DDEProblem:
    """Integrate `du/dt = f(u, h, p, t)`, where the history `h(p, t)` gives
    the unknowns at times before `t`."""

    f: ODEFunction
    u0: np.ndarray
    h: Callable
    tspan: tuple[float, float]
    p: Any
    kwargs: dict = field(default_factory=dict)

    @property
    def sys(self):
        return self.f.sys

    @classmethod
    def from_system(
        cls,
        sys,
        u0map=None,
        tspan=None,
        parammap=None,
        *,
        h=None,
        jac=False,
        backend=None,
        **kwargs,
    ):
        check_complete(sys, cls.__name__)
        f = ODEFunction.from_system(sys, jac=jac, backend=backend)
        u0, p = process_problem(sys, u0map, parammap)
        if h is None:
            h = constant_history(u0)
        return cls(f, u0, h, _tspan(sys, tspan), p, kwargs)
