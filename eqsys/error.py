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

from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    import sympy as sp
    from .systems.abstract_system import AbstractSystem

__all__ = [
    "EqsysError",
    "ArgumentError",
    "SystemNotCompleteError",
    "SystemNotSimplifiedError",
    "ParameterModeError",
    "UnknownVariableError",
    "MissingValuesError",
    "StructuralSingularityError",
]


class EqsysError(Exception):
    """Base class for all custom eqsys errors."""

    def __init__(
        self,
        message=None,
        *,
        system: Optional["AbstractSystem"] = None,
        system_name: str = None,
        variables: Optional[Sequence["sp.Basic"]] = None,
    ):
        """Create a new EqsysError.

        Only `message` is a positional argument, all others are keyword arguments.

        Args:
            message: A custom error message, defaults to the error class name.
            system: The system that the error occurred in, if available.
            system_name: The name of the system, use if system can't be passed
                (eg. while it is being constructed).
            variables: The offending symbols, if any.
        """
        super().__init__(message)
        self.message = message
        self.system_name = system.name if system is not None else system_name
        self.variables = list(variables) if variables is not None else None

    def __str__(self):
        message = self.message or self.default_message
        return f"{message}{self._context_info()}"

    def _context_info(self) -> str:
        strbuf = []

        if self.system_name:
            strbuf.append(f" in system {self.system_name}")
        if self.variables:
            names = ", ".join(str(v) for v in self.variables)
            strbuf.append(f" (variables: {names})")
        if self.__cause__ is not None:
            strbuf.append(f": {self.__cause__}")

        return "".join(strbuf)

    @property
    def default_message(self):
        return type(self).__name__


class ArgumentError(EqsysError, ValueError):
    """Invalid inputs to a system constructor or a generator."""

    pass


class SystemNotCompleteError(EqsysError):
    """A derived artifact was requested from a system that is not complete."""

    @property
    def default_message(self):
        return (
            "A completed system is required. Call `complete` or "
            "`structural_simplify` before creating problems."
        )


class SystemNotSimplifiedError(EqsysError):
    @property
    def default_message(self):
        return (
            "The system has not been structurally simplified. Call "
            "`structural_simplify` first."
        )


class ParameterModeError(EqsysError):
    """The system uses the wrong parameter representation for the request."""

    @property
    def default_message(self):
        return (
            "This operation requires the split parameter representation. Call "
            "`complete` or `structural_simplify` with `split=True`."
        )


class UnknownVariableError(EqsysError):
    """A referenced symbol could not be resolved."""

    pass


class MissingValuesError(EqsysError):
    """Initial values or parameter values could not be determined."""

    pass


class StructuralSingularityError(EqsysError):
    """The equation/variable incidence graph has no perfect matching."""

    pass
