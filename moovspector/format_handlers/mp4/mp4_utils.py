# moovspector/format_handlers/mp4/mp4_utils.py
# !/usr/bin/env python3

import struct
import logging

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import BinaryIO, Iterator, List, Optional, Sequence, Tuple

from moovspector._exceptions import MalformedBoxError, UnexpectedEOFError

logger = logging.getLogger(__name__)

_MAC_EPOCH = datetime(1904, 1, 1, tzinfo=timezone.utc)

_VIDEO_CODEC_MAP = {
    "avc1": "h264",
    "avc3": "h264",
    "hvc1": "hevc",
    "hev1": "hevc",
    "dvh1": "hevc",
    "dvhe": "hevc",
    "av01": "av1",
    "vp09": "vp9",
    "mp4v": "mpeg4",
    "encv": "encrypted",
}

_AUDIO_CODEC_MAP = {
    "mp4a": "aac",
    "ec-3": "eac3",
    "ac-3": "ac3",
    "alac": "alac",
    "fLaC": "flac",
    "Opus": "opus",
    "samr": "amr",
    "sawb": "amr-wb",
    "enca": "encrypted",
}

_SUBTITLE_CODEC_MAP = {
    "tx3g": "mov_text",
    "c608": "eia_608",
    "stpp": "ttml",
    "wvtt": "webvtt",
}

_H264_PROFILE_MAP = {
    66: "Baseline",
    77: "Main",
    88: "Extended",
    100: "High",
    110: "High 10",
    122: "High 4:2:2",
    144: "High 4:4:4",
    244: "High 4:4:4 Predictive",
    44: "CAVLC 4:4:4 Intra",
    83: "Scalable Baseline",
    86: "Scalable High",
    118: "Multi-view High",
    128: "Stereo High",
}


class ByteSource:
    """
    Seekable big-endian cursor over a binary stream.

    Reads are checked against the end of the stream and against the
    innermost bound pushed with ``bounded()``; both failures raise
    UnexpectedEOFError carrying the offset where the read started.
    Seeks are never checked, so skipping past a bound is detected by
    the caller comparing ``position()`` to the box end.
    """

    def __init__(self, f: BinaryIO):
        self._f = f
        self._limits: List[int] = []
        self._size: Optional[int] = None

    @property
    def stream(self) -> BinaryIO:
        return self._f

    def size(self) -> int:
        if self._size is None:
            pos = self._f.tell()
            self._size = self._f.seek(0, 2)
            self._f.seek(pos)
        return self._size

    def position(self) -> int:
        return self._f.tell()

    def seek_abs(self, pos: int) -> None:
        self._f.seek(pos)

    def seek_rel(self, delta: int) -> None:
        self._f.seek(delta, 1)

    def limit(self) -> Optional[int]:
        return self._limits[-1] if self._limits else None

    def remaining(self) -> int:
        """Bytes left before the innermost bound, or before end-of-stream."""
        end = self.limit()
        if end is None:
            end = self.size()
        return max(0, end - self.position())

    @contextmanager
    def bounded(self, end: int) -> Iterator["ByteSource"]:
        outer = self.limit()
        self._limits.append(end if outer is None else min(end, outer))
        try:
            yield self
        finally:
            self._limits.pop()

    def read_exact(self, n: int) -> bytes:
        start = self._f.tell()
        end = self.limit()
        if end is not None and start + n > end:
            raise UnexpectedEOFError(
                f"read of {n} bytes runs past the end of the enclosing box at {end}",
                start,
            )
        data = self._f.read(n)
        if len(data) < n:
            raise UnexpectedEOFError(
                f"read of {n} bytes hit end of stream after {len(data)} bytes", start
            )
        return data

    def skip(self, n: int) -> None:
        """Consumes n bytes of fixed layout; bounded like a read."""
        start = self._f.tell()
        end = self.limit()
        if end is not None and start + n > end:
            raise UnexpectedEOFError(
                f"skip of {n} bytes runs past the end of the enclosing box at {end}",
                start,
            )
        if start + n > self.size():
            raise UnexpectedEOFError(
                f"skip of {n} bytes runs past end of stream at {self.size()}", start
            )
        self._f.seek(n, 1)

    def read_u8(self) -> int:
        return self.read_exact(1)[0]

    def read_u16(self) -> int:
        return struct.unpack(">H", self.read_exact(2))[0]

    def read_i16(self) -> int:
        return struct.unpack(">h", self.read_exact(2))[0]

    def read_u24(self) -> int:
        b = self.read_exact(3)
        return (b[0] << 16) | (b[1] << 8) | b[2]

    def read_u32(self) -> int:
        return struct.unpack(">I", self.read_exact(4))[0]

    def read_i32(self) -> int:
        return struct.unpack(">i", self.read_exact(4))[0]

    def read_u64(self) -> int:
        return struct.unpack(">Q", self.read_exact(8))[0]

    def read_fourcc(self) -> str:
        return self.read_exact(4).decode("latin-1")


@dataclass
class BoxHeader:
    """Decoded box header. ``size`` always holds the resolved total size."""

    type: bytes
    start: int
    size: int
    header_length: int
    large_size: Optional[int] = None
    user_type: Optional[bytes] = None

    @property
    def name(self) -> str:
        return self.type.decode("latin-1")

    @property
    def end(self) -> int:
        return self.start + self.size

    @property
    def payload_start(self) -> int:
        return self.start + self.header_length

    @property
    def payload_length(self) -> int:
        return self.size - self.header_length


def read_box_header(source: ByteSource, parent_end: Optional[int] = None) -> BoxHeader:
    """
    Reads a box header at the current position.

    ``parent_end`` is the absolute end of the enclosing box. When it is
    None the box sits at the file root and is bounded only by the stream:
    a size of 0 resolves to end-of-stream and oversize boxes surface later
    as UnexpectedEOFError on the first read past the end.
    """
    start = source.position()
    if parent_end is None:
        return _read_box_header(source, start, None)
    with source.bounded(parent_end):
        return _read_box_header(source, start, parent_end)


def _read_box_header(
    source: ByteSource, start: int, parent_end: Optional[int]
) -> BoxHeader:
    size_32 = source.read_u32()
    box_type = source.read_exact(4)
    header_length = 8
    large_size = None
    user_type = None

    if size_32 == 1:  # Extended size (64-bit)
        large_size = source.read_u64()
        header_length = 16
        box_size = large_size
    elif size_32 == 0:  # Box extends to end of parent
        end = parent_end if parent_end is not None else source.size()
        box_size = end - start
    else:
        box_size = size_32

    if box_type == b"uuid":
        user_type = source.read_exact(16)
        header_length += 16

    if box_size < header_length:
        raise MalformedBoxError(
            f"box '{box_type.decode('latin-1')}' declares size {box_size} "
            f"smaller than its {header_length}-byte header",
            start,
        )
    if parent_end is not None and start + box_size > parent_end:
        raise MalformedBoxError(
            f"box '{box_type.decode('latin-1')}' of size {box_size} overruns "
            f"its parent ending at {parent_end}",
            start,
        )

    logger.debug(
        f"Box '{box_type.decode('latin-1')}' at {start}: size {box_size}, header {header_length}"
    )
    return BoxHeader(
        type=box_type,
        start=start,
        size=box_size,
        header_length=header_length,
        large_size=large_size,
        user_type=user_type,
    )


def read_full_box_header(source: ByteSource) -> Tuple[int, int]:
    """Returns (version, flags) of a FullBox."""
    version = source.read_u8()
    flags = source.read_u24()
    return version, flags


def decode_language_code(lang_bits: int) -> str:
    """Decodes a packed ISO-639-2/T code (three 5-bit letters offset by 0x60)."""
    lang_bits &= 0x7FFF
    if lang_bits == 0:
        return "und"
    chars = [(lang_bits >> 10) & 0x1F, (lang_bits >> 5) & 0x1F, lang_bits & 0x1F]
    return "".join(chr(c + 0x60) for c in chars)


def encode_language_code(language: str) -> int:
    if language == "und":
        return 0
    if len(language) != 3 or not all("a" <= c <= "z" for c in language):
        raise ValueError(f"Not a lowercase three-letter language code: {language!r}")
    value = 0
    for c in language:
        value = (value << 5) | (ord(c) - 0x60)
    return value


def rotation_from_matrix(matrix: Sequence[int]) -> int:
    """
    Classifies a tkhd matrix {a, b, u, c, d, v, x, y, w} into 0/90/180/270
    degrees from the signs of a, b, c and d. Anything else counts as 0.
    """
    if len(matrix) < 5:
        return 0
    a, b, c, d = matrix[0], matrix[1], matrix[3], matrix[4]
    if a > 0 and d > 0 and b == 0 and c == 0:
        return 0
    if a == 0 and d == 0 and b > 0 and c < 0:
        return 90
    if a < 0 and d < 0 and b == 0 and c == 0:
        return 180
    if a == 0 and d == 0 and b < 0 and c > 0:
        return 270
    return 0


def mac_time_to_datetime(seconds: int) -> Optional[datetime]:
    """Converts seconds since 1904-01-01 UTC to an aware datetime."""
    try:
        return _MAC_EPOCH + timedelta(seconds=seconds)
    except OverflowError:
        logger.debug(f"Timestamp {seconds} is out of datetime range")
        return None


def fixed_16_16(value: int) -> float:
    return value / 65536.0


def fixed_8_8(value: int) -> float:
    return value / 256.0


def codec_family(codec_tag: Optional[str]) -> Optional[str]:
    if codec_tag is None:
        return None
    for codec_map in (_VIDEO_CODEC_MAP, _AUDIO_CODEC_MAP, _SUBTITLE_CODEC_MAP):
        if codec_tag in codec_map:
            return codec_map[codec_tag]
    return codec_tag


def h264_profile_name(profile_idc: int) -> str:
    return _H264_PROFILE_MAP.get(profile_idc, f"Profile {profile_idc}")


def format_duration(seconds: float) -> str:
    """Formats seconds as HH:MM:SS.mmm, or MM:SS.mmm under an hour."""
    total_ms = int(round(seconds * 1000))
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, millis = divmod(rem, 1000)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"
    return f"{minutes:02d}:{secs:02d}.{millis:03d}"
