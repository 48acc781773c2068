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

from .equation import (
    Equation,
    as_equation,
    canonical_form,
    flatten_equations,
    is_array_equation,
)
from .expr_utils import (
    ExprKind,
    collect_constants,
    expr_kind,
    fixpoint_sub,
    is_variable,
    namespace_expr,
    subexpressions_not_involving_vars,
    substitute,
    vars_of,
)
from .variables import (
    Differential,
    VariableMetadata,
    VariableRole,
    constants,
    get_metadata,
    getdefault,
    getguess,
    hasdefault,
    independent_variable,
    isconstant,
    isindependent,
    isparameter,
    parameters,
    rename,
    scalarize,
    set_metadata,
    symtype,
    var_name,
    variables,
)

__all__ = [
    "Equation",
    "as_equation",
    "canonical_form",
    "flatten_equations",
    "is_array_equation",
    "ExprKind",
    "collect_constants",
    "expr_kind",
    "fixpoint_sub",
    "is_variable",
    "namespace_expr",
    "subexpressions_not_involving_vars",
    "substitute",
    "vars_of",
    "Differential",
    "VariableMetadata",
    "VariableRole",
    "constants",
    "get_metadata",
    "getdefault",
    "getguess",
    "hasdefault",
    "independent_variable",
    "isconstant",
    "isindependent",
    "isparameter",
    "parameters",
    "rename",
    "scalarize",
    "set_metadata",
    "symtype",
    "var_name",
    "variables",
]
