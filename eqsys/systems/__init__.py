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

from .abstract_system import (
    SYSTEM_COUNT,
    AbstractSystem,
    TagCounter,
    complete,
    flatten,
)
from .index_cache import BufferTemplate, IndexCache, ParameterBuckets, ParameterIndex
from .nonlinear_system import NonlinearSystem
from .observed import build_explicit_observed_function, observed_equations_used_by
from .ode_system import ODESystem

__all__ = [
    "AbstractSystem",
    "NonlinearSystem",
    "ODESystem",
    "TagCounter",
    "SYSTEM_COUNT",
    "complete",
    "flatten",
    "IndexCache",
    "ParameterIndex",
    "ParameterBuckets",
    "BufferTemplate",
    "observed_equations_used_by",
    "build_explicit_observed_function",
]
