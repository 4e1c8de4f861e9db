# moovspector/_exceptions.py
# !/usr/bin/env python3

from typing import Optional


class MoovspectorError(Exception):
    """Base class for every error raised while parsing a container."""

    def __init__(self, message: str, offset: Optional[int] = None):
        self.message = message
        self.offset = offset
        if offset is not None:
            message = f"{message} (at offset {offset})"
        super().__init__(message)


class UnexpectedEOFError(MoovspectorError):
    """A fixed-width read ran past end-of-stream or end-of-parent."""


class MalformedBoxError(MoovspectorError):
    """A box header or table does not fit inside its parent."""


class UnsupportedVersionError(MoovspectorError):
    """A FullBox carried a version this parser does not know."""


class InconsistentTablesError(MoovspectorError):
    """Sample tables of one track disagree on the sample count."""


class InvariantViolationError(MoovspectorError):
    """The cursor moved past a declared box end during descent."""


class ParserStateError(MoovspectorError):
    """The parser API was used out of order."""
