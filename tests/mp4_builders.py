"""
Builders for synthetic MP4 files.

Each function returns the complete bytes of one box so tests can compose
files the way a muxer would lay them out.
"""

import struct
from typing import Iterable, List, Optional, Sequence, Tuple

UNITY_MATRIX = [0x00010000, 0, 0, 0, 0x00010000, 0, 0, 0, 0x40000000]
ROTATE_90_MATRIX = [0, 0x00010000, 0, -0x00010000, 0, 0, 0, 0, 0x40000000]
ROTATE_180_MATRIX = [-0x00010000, 0, 0, 0, -0x00010000, 0, 0, 0, 0x40000000]
ROTATE_270_MATRIX = [0, -0x00010000, 0, 0x00010000, 0, 0, 0, 0, 0x40000000]


def box(box_type: bytes, payload: bytes = b"") -> bytes:
    return struct.pack(">I4s", 8 + len(payload), box_type) + payload


def large_box(box_type: bytes, payload: bytes = b"") -> bytes:
    return struct.pack(">I4sQ", 1, box_type, 16 + len(payload)) + payload


def full_box(box_type: bytes, version: int, flags: int, payload: bytes = b"") -> bytes:
    return box(box_type, bytes([version]) + flags.to_bytes(3, "big") + payload)


def ftyp(major: str = "isom", minor: int = 0, brands: Sequence[str] = ("isom", "mp41")) -> bytes:
    payload = major.encode("ascii") + struct.pack(">I", minor)
    payload += b"".join(brand.encode("ascii") for brand in brands)
    return box(b"ftyp", payload)


def mvhd(
    timescale: int,
    duration: int,
    version: int = 0,
    creation_time: int = 0,
    modification_time: int = 0,
    next_track_id: int = 2,
    matrix: Sequence[int] = UNITY_MATRIX,
) -> bytes:
    if version == 1:
        times = struct.pack(">QQIQ", creation_time, modification_time, timescale, duration)
    else:
        times = struct.pack(">IIII", creation_time, modification_time, timescale, duration)
    payload = times + struct.pack(">ih", 0x00010000, 0x0100) + bytes(10)
    payload += struct.pack(">9i", *matrix) + bytes(24) + struct.pack(">I", next_track_id)
    return full_box(b"mvhd", version, 0, payload)


def tkhd(
    track_id: int,
    width: int = 0,
    height: int = 0,
    duration: int = 0,
    version: int = 0,
    matrix: Sequence[int] = UNITY_MATRIX,
) -> bytes:
    if version == 1:
        times = struct.pack(">QQIIQ", 0, 0, track_id, 0, duration)
    else:
        times = struct.pack(">IIIII", 0, 0, track_id, 0, duration)
    payload = times + bytes(8) + struct.pack(">hhhH", 0, 0, 0, 0)
    payload += struct.pack(">9i", *matrix) + struct.pack(">II", width << 16, height << 16)
    return full_box(b"tkhd", version, 3, payload)


def pack_language(language: str) -> int:
    if language == "und":
        return 0
    value = 0
    for c in language:
        value = (value << 5) | (ord(c) - 0x60)
    return value


def mdhd(timescale: int, duration: int, language: str = "und", version: int = 0) -> bytes:
    if version == 1:
        times = struct.pack(">QQIQ", 0, 0, timescale, duration)
    else:
        times = struct.pack(">IIII", 0, 0, timescale, duration)
    payload = times + struct.pack(">HH", pack_language(language), 0)
    return full_box(b"mdhd", version, 0, payload)


def hdlr(handler_type: str, name: str = "Handler") -> bytes:
    payload = struct.pack(">I", 0) + handler_type.encode("ascii") + bytes(12)
    payload += name.encode("utf-8") + b"\x00"
    return full_box(b"hdlr", 0, 0, payload)


def visual_entry(
    fmt: str = "avc1",
    width: int = 1920,
    height: int = 1080,
    children: bytes = b"",
    compressor: str = "",
) -> bytes:
    name = compressor.encode("ascii")
    payload = bytes(6) + struct.pack(">H", 1) + bytes(16)
    payload += struct.pack(">HH", width, height)
    payload += struct.pack(">III", 0x00480000, 0x00480000, 0) + struct.pack(">H", 1)
    payload += bytes([len(name)]) + name + bytes(31 - len(name))
    payload += struct.pack(">Hh", 0x18, -1)
    return box(fmt.encode("ascii"), payload + children)


def audio_entry(
    fmt: str = "mp4a",
    channels: int = 2,
    sample_size: int = 16,
    sample_rate: int = 48000 << 16,
    children: bytes = b"",
    sound_version: int = 0,
    extension: bytes = b"",
) -> bytes:
    payload = bytes(6) + struct.pack(">H", 1) + struct.pack(">H", sound_version) + bytes(6)
    payload += struct.pack(">HHHHI", channels, sample_size, 0, 0, sample_rate)
    return box(fmt.encode("ascii"), payload + extension + children)


def sound_v2_extension(sample_rate: float, channels: int, bits_per_channel: int) -> bytes:
    """The 36-byte QuickTime sound description version 2 extension."""
    return struct.pack(
        ">IdIIIIII", 72, sample_rate, channels, 0x7F000000, bits_per_channel, 0, 0, 1
    )


def other_entry(fmt: str = "tx3g", body: bytes = b"\x00" * 4) -> bytes:
    return box(fmt.encode("ascii"), bytes(6) + struct.pack(">H", 1) + body)


def stsd(*entries: bytes, entry_count: Optional[int] = None) -> bytes:
    count = len(entries) if entry_count is None else entry_count
    return full_box(b"stsd", 0, 0, struct.pack(">I", count) + b"".join(entries))


def stts(entries: Iterable[Tuple[int, int]]) -> bytes:
    entries = list(entries)
    payload = struct.pack(">I", len(entries))
    payload += b"".join(struct.pack(">II", count, delta) for count, delta in entries)
    return full_box(b"stts", 0, 0, payload)


def ctts(entries: Iterable[Tuple[int, int]], version: int = 0) -> bytes:
    entries = list(entries)
    layout = ">II" if version == 0 else ">Ii"
    payload = struct.pack(">I", len(entries))
    payload += b"".join(struct.pack(layout, count, offset) for count, offset in entries)
    return full_box(b"ctts", version, 0, payload)


def stsz(sizes: Sequence[int] = (), uniform: int = 0, count: int = 0) -> bytes:
    if uniform:
        return full_box(b"stsz", 0, 0, struct.pack(">II", uniform, count))
    payload = struct.pack(">II", 0, len(sizes)) + b"".join(struct.pack(">I", s) for s in sizes)
    return full_box(b"stsz", 0, 0, payload)


def stbl(*children: bytes) -> bytes:
    return box(b"stbl", b"".join(children))


def minf(*children: bytes) -> bytes:
    return box(b"minf", b"".join(children))


def mdia(*children: bytes) -> bytes:
    return box(b"mdia", b"".join(children))


def trak(*children: bytes) -> bytes:
    return box(b"trak", b"".join(children))


def moov(*children: bytes) -> bytes:
    return box(b"moov", b"".join(children))


def video_trak(
    track_id: int = 1,
    width: int = 1920,
    height: int = 1080,
    timescale: int = 30000,
    duration: int = 60000,
    language: str = "eng",
    stts_entries: Sequence[Tuple[int, int]] = ((60, 1000),),
    extra_stbl: Sequence[bytes] = (),
    entry: Optional[bytes] = None,
    matrix: Sequence[int] = UNITY_MATRIX,
) -> bytes:
    sample_entry = entry if entry is not None else visual_entry("avc1", width, height)
    return trak(
        tkhd(track_id, width, height, matrix=matrix),
        mdia(
            mdhd(timescale, duration, language),
            hdlr("vide", "VideoHandler"),
            minf(
                box(b"vmhd", bytes(12)),
                stbl(stsd(sample_entry), stts(stts_entries), *extra_stbl),
            ),
        ),
    )


def audio_trak(
    track_id: int = 2,
    timescale: int = 48000,
    duration: int = 96256,
    stts_entries: Sequence[Tuple[int, int]] = ((94, 1024),),
    entry: Optional[bytes] = None,
    extra_stbl: Sequence[bytes] = (),
) -> bytes:
    sample_entry = entry if entry is not None else audio_entry("mp4a", 2, 16, 48000 << 16)
    return trak(
        tkhd(track_id),
        mdia(
            mdhd(timescale, duration, "eng"),
            hdlr("soun", "SoundHandler"),
            minf(
                box(b"smhd", bytes(8)),
                stbl(stsd(sample_entry), stts(stts_entries), *extra_stbl),
            ),
        ),
    )


def minimal_file() -> bytes:
    return ftyp("isom", 0, ["isom", "mp41"]) + moov(mvhd(600, 1200))


def video_file() -> bytes:
    return ftyp("isom", 0, ["isom", "mp41"]) + moov(mvhd(600, 1200), video_trak())


def video_audio_file() -> bytes:
    return ftyp("isom", 0, ["isom", "mp41"]) + moov(
        mvhd(600, 1200, next_track_id=3), video_trak(), audio_trak()
    )


def avcc_payload(profile: int = 100, level: int = 40) -> bytes:
    sps = bytes([0x67, profile, 0x00, level, 0xAC, 0xD9])
    pps = bytes([0x68, 0xEB, 0xE3, 0xCB])
    return (
        bytes([1, profile, 0x00, level, 0xFF, 0xE1])
        + struct.pack(">H", len(sps))
        + sps
        + bytes([1])
        + struct.pack(">H", len(pps))
        + pps
    )


def esds_payload(object_type: int = 0x40, max_bitrate: int = 128000, avg_bitrate: int = 96000) -> bytes:
    asc = bytes([0x11, 0x90])
    dec_specific = bytes([0x05, len(asc)]) + asc
    dec_config = (
        bytes([object_type, (0x05 << 2) | 0x01])
        + (6144).to_bytes(3, "big")
        + struct.pack(">II", max_bitrate, avg_bitrate)
        + dec_specific
    )
    dec_config_descr = bytes([0x04, len(dec_config)]) + dec_config
    sl_config = bytes([0x06, 0x01, 0x02])
    es_body = struct.pack(">HB", 1, 0) + dec_config_descr + sl_config
    return bytes(4) + bytes([0x03, 0x80, 0x80, 0x80, len(es_body)]) + es_body


def box_headers(data: bytes, start: int = 0, end: Optional[int] = None) -> List[Tuple[int, int]]:
    """Returns (offset, header_length) for every box in a file built by these helpers."""
    containers = {b"moov", b"trak", b"mdia", b"minf", b"stbl"}
    end = len(data) if end is None else end
    found = []
    pos = start
    while pos < end:
        size, box_type = struct.unpack_from(">I4s", data, pos)
        found.append((pos, 8))
        if box_type in containers:
            found.extend(box_headers(data, pos + 8, pos + size))
        pos += size
    return found
