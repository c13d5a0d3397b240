# SPDX-License-Identifier: MIT
"""Exception types raised by the mdstore core."""

from __future__ import annotations


class MdStoreError(Exception):
    """Base class for every error raised by mdstore."""

    def __init__(self, message: str, line: int = 0) -> None:
        self.message = message
        self.line = line
        super().__init__(f"{message} (line {line})" if line else message)


class ParseError(MdStoreError):
    """Raised when a document header cannot be delimited or decoded."""


class SchemaError(MdStoreError):
    """Raised when schema source fails to parse or compile."""


class ConfigError(MdStoreError):
    """Raised when user/team configuration is structurally invalid."""
