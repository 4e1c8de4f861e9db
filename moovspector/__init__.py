# moovspector/__init__.py
# !/usr/bin/env python3

__version__ = "0.1.0"

from typing import BinaryIO

from ._exceptions import (
    MoovspectorError,
    UnexpectedEOFError,
    MalformedBoxError,
    UnsupportedVersionError,
    InconsistentTablesError,
    InvariantViolationError,
    ParserStateError,
)
from .format_handlers.mp4.mp4 import Mp4Parser
from .format_handlers.mp4.mp4_records import PresentationSummary, TrackInfo
from .inspector import MediaInspector


def open_parser(f: BinaryIO, build_timelines: bool = True) -> Mp4Parser:
    """Creates a parser over a seekable binary stream."""
    if not f.seekable():
        raise ValueError("moovspector needs a seekable stream")
    return Mp4Parser(f, build_timelines=build_timelines)
