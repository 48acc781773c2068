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

"""Numerical backends that generated functions can target.

The default backend is read from the `EQSYS_BACKEND` environment variable and
falls back to numpy. Every generator also accepts an explicit `backend=`.
"""

import importlib
import os

from .error import ArgumentError

__all__ = [
    "BACKENDS",
    "DEFAULT_BACKEND",
    "resolve_backend",
    "supports_inplace",
    "load_namespace",
]

BACKENDS = ("numpy", "jax")
REQUESTED_BACKEND = os.environ.get("EQSYS_BACKEND", None)
DEFAULT_BACKEND = REQUESTED_BACKEND or "numpy"


def resolve_backend(backend: str | None = None) -> str:
    backend = backend or DEFAULT_BACKEND
    if backend not in BACKENDS:
        raise ArgumentError(f"Backend {backend} not supported")
    return backend


def supports_inplace(backend: str) -> bool:
    """jax arrays are immutable, so only numpy gets in-place variants."""
    return resolve_backend(backend) == "numpy"


def _configure_jax():
    import jax

    # FIXME can't switch to 32 bits after init
    enable_x64 = os.environ.get("JAX_ENABLE_X64", "true").lower() != "false"
    jax.config.update("jax_enable_x64", enable_x64)


def load_namespace(module_imports) -> dict:
    """Globals for generated code, binding the root package of each module.

    Generated code uses fully qualified names (`numpy.sin`, `jax.numpy.sin`,
    `scipy.sparse.csc_matrix`), so importing the module and binding its root
    package name is enough.
    """
    namespace = {}
    for module in sorted(module_imports):
        importlib.import_module(module)
        root = module.split(".")[0]
        if root == "jax" and root not in namespace:
            _configure_jax()
        namespace[root] = importlib.import_module(root)
    return namespace
