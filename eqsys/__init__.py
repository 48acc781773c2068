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

from . import _init  # noqa: F401
from .error import (
    ArgumentError,
    EqsysError,
    MissingValuesError,
    ParameterModeError,
    StructuralSingularityError,
    SystemNotCompleteError,
    SystemNotSimplifiedError,
    UnknownVariableError,
)
from .problems import (
    DDEProblem,
    IntervalNonlinearProblem,
    NonlinearLeastSquaresProblem,
    NonlinearProblem,
    ODEProblem,
    SCCNonlinearProblem,
    solve,
)
from .structural import structural_simplify
from .symbolic import (
    Differential,
    Equation,
    constants,
    independent_variable,
    parameters,
    variables,
)
from .systems import NonlinearSystem, ODESystem, complete, flatten
from .version import __version__

__all__ = [
    "__version__",
    "variables",
    "parameters",
    "constants",
    "independent_variable",
    "Differential",
    "Equation",
    "NonlinearSystem",
    "ODESystem",
    "complete",
    "flatten",
    "structural_simplify",
    "NonlinearProblem",
    "NonlinearLeastSquaresProblem",
    "IntervalNonlinearProblem",
    "ODEProblem",
    "DDEProblem",
    "SCCNonlinearProblem",
    "solve",
    "EqsysError",
    "ArgumentError",
    "SystemNotCompleteError",
    "SystemNotSimplifiedError",
    "ParameterModeError",
    "UnknownVariableError",
    "MissingValuesError",
    "StructuralSingularityError",
]
