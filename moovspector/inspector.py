# moovspector/inspector.py
# !/usr/bin/env python3

import os
import logging
import struct
from typing import Dict, Optional, Any, BinaryIO

from ._exceptions import MoovspectorError
from .format_handlers.mp4.mp4 import (
    Mp4Parser,
    discontinuity_to_dict,
    summary_to_dict,
    track_to_dict,
)

logger = logging.getLogger(__name__)

# Top-level atoms that may open an ISO Base Media file
_MP4_TOP_LEVEL_TYPES = (b"ftyp", b"moov", b"mdat", b"free", b"skip", b"wide")

SECTIONS = ("summary", "tracks", "discontinuities")


class MediaInspector:
    def __init__(self, filepath: str):
        if not os.path.exists(filepath):
            raise FileNotFoundError(f"File not found at '{filepath}'")
        self.filepath = filepath

    @staticmethod
    def _looks_like_mp4(f: BinaryIO) -> bool:
        """Walks box headers in the first KB looking for a known top-level atom."""
        pos = 0
        try:
            while pos < 1024:
                f.seek(pos)
                header = f.read(8)
                if len(header) < 8:
                    return False
                size, atom_type = struct.unpack(">I4s", header)
                if atom_type in (b"ftyp", b"moov", b"mdat"):
                    return True
                if atom_type not in _MP4_TOP_LEVEL_TYPES:
                    return False
                if size == 1:  # Extended size (64-bit)
                    large = f.read(8)
                    if len(large) < 8:
                        return False
                    size = struct.unpack(">Q", large)[0]
                if size < 8:
                    return False
                pos += size
            return False
        finally:
            f.seek(0)

    def inspect(
        self, section: Optional[str] = None, include_timeline: bool = False
    ) -> Dict[str, Any]:
        """
        Inspects the media file and returns its summary, tracks and
        timestamp discontinuities as JSON-ready dictionaries.
        """
        try:
            with open(self.filepath, "rb") as f:
                if not self._looks_like_mp4(f):
                    raise ValueError(f"Unsupported file format for '{self.filepath}'.")
                parser = Mp4Parser(f, build_timelines=True)
                logger.info(f"Using parser: {type(parser).__name__}")
                summary = parser.parse()
                tracks = parser.tracks()
        except (FileNotFoundError, ValueError, MoovspectorError):
            raise
        except OSError as e:
            raise IOError(f"Error parsing media file '{self.filepath}': {e}") from e

        result = {
            "summary": summary_to_dict(summary),
            "tracks": [track_to_dict(track, include_timeline) for track in tracks],
            "discontinuities": [
                discontinuity_to_dict(issue) for issue in summary.discontinuities
            ],
        }

        if section:
            if section in result:
                return {section: result[section]}
            else:
                raise ValueError(
                    f"Invalid section '{section}'. Available sections are: {', '.join(result.keys())}"
                )
        return result
