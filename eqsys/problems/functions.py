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

"""Callable wrappers around the generated functions of a system, in the calling
conventions of the numerical solvers."""

import numpy as np
import sympy as sp

from ..error import ArgumentError, SystemNotCompleteError
from ..systems.nonlinear_system import sparsity_pattern
from ..systems.observed import build_explicit_observed_function

__all__ = [
    "ObservedFunctionCache",
    "NonlinearFunction",
    "IntervalNonlinearFunction",
    "ODEFunction",
    "check_complete",
]


def check_complete(sys, what: str):
    if not sys.complete:
        raise SystemNotCompleteError(
            f"A completed system is required to create a {what}. Call `complete` "
            "or `structural_simplify` on the system first.",
            system=sys,
        )


def _cache_key(ts):
    if isinstance(ts, (list, tuple)):
        return tuple(_cache_key(t) for t in ts)
    if isinstance(ts, sp.MatrixBase):
        return sp.ImmutableMatrix(ts)
    return ts


class ObservedFunctionCache:
    """Observed functions of a system, generated on first use per expression."""

    def __init__(self, sys, backend=None):
        self.sys = sys
        self.backend = backend
        self._cache = {}

    def __len__(self):
        return len(self._cache)

    def get(self, ts):
        key = _cache_key(ts)
        fn = self._cache.get(key)
        if fn is None:
            fn = build_explicit_observed_function(self.sys, ts, backend=self.backend)
            self._cache[key] = fn
        return fn

    def __call__(self, ts, *args):
        return self.get(ts)(*args)


class _SystemFunction:
    def __init__(self, sys, f_oop, f_iip=None, *, jac=None, jac_prototype=None, backend=None):
        self.sys = sys
        self.f_oop = f_oop
        self.f_iip = f_iip
        self.jac_oop, self.jac_iip = jac if jac is not None else (None, None)
        self.jac_prototype = jac_prototype
        self.observed = ObservedFunctionCache(sys, backend=backend)

    @property
    def has_jac(self) -> bool:
        return self.jac_oop is not None

    def _dispatch(self, oop, iip, nargs, args):
        if len(args) == nargs:
            return oop(*args)
        if len(args) == nargs + 1:
            out, *rest = args
            if iip is not None:
                return iip(out, *rest)
            out[...] = np.asarray(oop(*rest))
            return None
        raise ArgumentError(
            f"Expected {nargs} or {nargs + 1} arguments, got {len(args)}"
        )

    def jac(self, *args):
        if self.jac_oop is None:
            raise ArgumentError("No jacobian was generated, pass `jac=True`")
        return self._dispatch(self.jac_oop, self.jac_iip, self._nargs, args)

    def __call__(self, *args):
        return self._dispatch(self.f_oop, self.f_iip, self._nargs, args)


class NonlinearFunction(_SystemFunction):
    """Residual `f(u, p)`, or in place `f(out, u, p)`."""

    _nargs = 2

    @classmethod
    def from_system(cls, sys, *, jac=False, sparse=False, simplify=False, backend=None):
        check_complete(sys, "NonlinearFunction")
        f_oop, f_iip = sys.generate_function(backend=backend)
        jacs = None
        prototype = None
        if jac:
            jacs = sys.generate_jacobian(sparse=sparse, simplify=simplify, backend=backend)
            if sparse:
                jac_matrix = sys.calculate_jacobian(sparse=True, simplify=simplify)
                prototype = sparsity_pattern(jac_matrix.todok().keys(), jac_matrix.shape)
        return cls(sys, f_oop, f_iip, jac=jacs, jac_prototype=prototype, backend=backend)


class IntervalNonlinearFunction(_SystemFunction):
    """Scalar residual `f(x, p)` of a single equation in a single unknown."""

    _nargs = 2

    @classmethod
    def from_system(cls, sys, *, backend=None):
        check_complete(sys, "IntervalNonlinearFunction")
        f_oop, _ = sys.generate_function(scalar=True, backend=backend)
        return cls(sys, f_oop, None, backend=backend)

    def __call__(self, x, p):
        return self.f_oop(x, p)


class ODEFunction(_SystemFunction):
    """Right side `f(u, p, t)`, or in place `f(du, u, p, t)`. Delay differential
    equations take the history as well, `f(u, h, p, t)`."""

    def __init__(self, sys, f_oop, f_iip=None, *, tgrad=None, mass_matrix=None, **kwargs):
        super().__init__(sys, f_oop, f_iip, **kwargs)
        self.tgrad_oop, self.tgrad_iip = tgrad if tgrad is not None else (None, None)
        self.mass_matrix = mass_matrix
        self._nargs = 4 if sys.is_dde else 3

    @classmethod
    def from_system(
        cls, sys, *, jac=False, tgrad=False, sparse=False, simplify=False, backend=None
    ):
        check_complete(sys, "ODEFunction")
        f_oop, f_iip = sys.generate_function(backend=backend)
        jacs = None
        if jac:
            jacs = sys.generate_jacobian(sparse=sparse, simplify=simplify, backend=backend)
        tgrads = None
        if tgrad:
            tgrads = sys.generate_tgrad(simplify=simplify, backend=backend)

        mass = np.asarray(sys.calculate_massmatrix().tolist(), dtype=float)
        if np.array_equal(mass, np.eye(*mass.shape)):
            mass = None
        return cls(
            sys,
            f_oop,
            f_iip,
            jac=jacs,
            tgrad=tgrads,
            mass_matrix=mass,
            backend=backend,
        )

    def tgrad(self, *args):
        if self.tgrad_oop is None:
            raise ArgumentError("No time gradient was generated, pass `tgrad=True`")
        return self._dispatch(self.tgrad_oop, self.tgrad_iip, self._nargs, args)
