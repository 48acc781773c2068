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

from .functions import (
    IntervalNonlinearFunction,
    NonlinearFunction,
    ObservedFunctionCache,
    ODEFunction,
)
from .nonlinear import (
    IntervalNonlinearProblem,
    NonlinearLeastSquaresProblem,
    NonlinearProblem,
    process_problem,
    varmap_to_values,
)
from .ode import DDEProblem, ODEProblem, constant_history
from .scc_problem import CacheWriter, SCCNonlinearProblem
from .solve import NonlinearSolution, ODESolution, solve, solve_staged

__all__ = [
    "NonlinearFunction",
    "IntervalNonlinearFunction",
    "ODEFunction",
    "ObservedFunctionCache",
    "NonlinearProblem",
    "NonlinearLeastSquaresProblem",
    "IntervalNonlinearProblem",
    "ODEProblem",
    "DDEProblem",
    "SCCNonlinearProblem",
    "CacheWriter",
    "process_problem",
    "varmap_to_values",
    "constant_history",
    "NonlinearSolution",
    "ODESolution",
    "solve",
    "solve_staged",
]
