"""
Pytest configuration for the moovspector test suite.

MP4 inputs are synthesized in memory with the builders in mp4_builders;
no binary fixtures are stored in the repository.
"""

import io

import pytest

from moovspector import Mp4Parser

from tests import mp4_builders


@pytest.fixture
def parse_bytes():
    """
    Factory fixture that parses raw MP4 bytes and returns (summary, tracks).

    Usage:
        def test_something(parse_bytes):
            summary, tracks = parse_bytes(mp4_builders.minimal_file())
    """

    def _parse(data: bytes, **kwargs):
        parser = Mp4Parser(io.BytesIO(data), **kwargs)
        summary = parser.parse()
        return summary, parser.tracks()

    return _parse


@pytest.fixture
def mp4_file(tmp_path):
    """Factory fixture that writes MP4 bytes to a temporary file and returns its path."""

    def _write(data: bytes, name: str = "sample.mp4") -> str:
        path = tmp_path / name
        path.write_bytes(data)
        return str(path)

    return _write


@pytest.fixture
def video_audio_bytes():
    return mp4_builders.video_audio_file()
