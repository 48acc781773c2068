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

# Logging setup follows
# https://www.firedrakeproject.org/_modules/firedrake/logging.html
import logging
from logging import CRITICAL, DEBUG, ERROR, INFO, WARNING

__all__ = [
    "logger",
    "logdata",
    "set_log_level",
    "set_file_handler",
    "set_stream_handler",
    "StructuredFormatter",
    "DEBUG",
    "INFO",
    "WARNING",
    "ERROR",
    "CRITICAL",
]

packages = [__package__]


class StructuredFormatter(logging.Formatter):
    """Appends the structured fields attached by `logdata` as `key=value`."""

    def format(self, record):
        s = super().format(record)
        extras: dict | None = record.__dict__.get("extras")
        if extras:
            s += " " + " ".join(f"{k}={v}" for k, v in extras.items())
        return s


__fmt = "%(name)s:%(levelname)s %(message)s"
__formatter = StructuredFormatter(fmt=__fmt)
__stream_handler = logging.StreamHandler()
__stream_handler.setFormatter(__formatter)


def set_file_handler(file, formatter=None):
    """Set a file handler to all packages and return it."""
    if formatter is None:
        formatter = __formatter
    fh = logging.FileHandler(file, mode="w")
    fh.setFormatter(formatter)
    for package in packages:
        logger_ = logging.getLogger(package)
        logger_.addHandler(fh)
    return fh


def set_stream_handler(handler=None):
    """Set the stream handler to all packages."""
    for package in packages:
        logger_ = logging.getLogger(package)
        logger_.addHandler(handler if handler else __stream_handler)


def set_log_level(level, pkg: str | None = None):
    """Set the log level for the specified or all packages.

    Args:
        level: The log level to set.
        pkg: If set, apply the log level only to the specified package.
    """
    if pkg is not None:
        logger_ = logging.getLogger(pkg)
        logger_.setLevel(level)
        return

    for package in packages:
        logger_ = logging.getLogger(package)
        logger_.setLevel(level)


def _system_info(system) -> dict:
    name = getattr(system, "name", None)
    if name is None:
        return {}
    return {"system": name, "tag": getattr(system, "tag", None)}


def logdata(*, system=None, **kwargs):
    """Structured fields for a log record, eg.

    logger.debug("message", **logdata(system=sys))
    """
    extras = kwargs or {}
    if system is not None:
        extras.update(_system_info(system))

    if len(extras) == 0:
        return {}

    # "extra" is for python logging, the formatter reads "extras"
    return {"extra": {"extras": extras}}


logger = logging.getLogger(__package__)
