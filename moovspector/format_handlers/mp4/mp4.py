# moovspector/format_handlers/mp4/mp4.py
# !/usr/bin/env python3

import logging

from dataclasses import asdict
from datetime import datetime
from typing import Any, BinaryIO, Callable, Dict, List, Optional
from moovspector._exceptions import (
    InconsistentTablesError,
    InvariantViolationError,
    ParserStateError,
    UnexpectedEOFError,
)
from moovspector.format_handlers.base import BaseMediaParser
from .mp4_boxes import MP4BoxParser
from .mp4_records import (
    Discontinuity,
    FileType,
    MovieHeader,
    PresentationSummary,
    TrackInfo,
)
from .mp4_timeline import (
    build_dts_timeline,
    build_pts_timeline,
    detect_discontinuities,
    sample_count,
)
from .mp4_utils import (
    BoxHeader,
    ByteSource,
    codec_family,
    fixed_8_8,
    fixed_16_16,
    format_duration,
    h264_profile_name,
    mac_time_to_datetime,
    read_box_header,
    rotation_from_matrix,
)

logger = logging.getLogger(__name__)

BoxHandler = Callable[[BoxHeader, Optional[TrackInfo]], None]

_HANDLER_FLAGS = {
    "vide": "has_video",
    "soun": "has_audio",
    "hint": "has_hint",
    "meta": "has_meta",
    "auxv": "has_auxv",
    "subt": "has_subtitle",
    "sbtl": "has_subtitle",
    "text": "has_text",
}


class Mp4Parser(BaseMediaParser):
    """
    Parses the Movie Box of an ISO Base Media (MP4) file into a
    presentation summary and one TrackInfo per 'trak'.

    The parser owns the stream it is given: ``parse()`` may be called once
    and closes the stream on every exit path.
    """

    def __init__(self, f: BinaryIO, build_timelines: bool = True):
        self._source = ByteSource(f)
        self.build_timelines = build_timelines
        self._tracks: List[TrackInfo] = []
        self._file_type: Optional[FileType] = None
        self._movie_header: Optional[MovieHeader] = None
        self._summary: Optional[PresentationSummary] = None
        self._parse_called = False

        self._moov_table: Dict[bytes, BoxHandler] = {
            b"mvhd": self._on_mvhd,
            b"trak": self._on_trak,
        }
        self._trak_table: Dict[bytes, BoxHandler] = {
            b"tkhd": self._on_tkhd,
            b"mdia": self._on_mdia,
        }
        self._mdia_table: Dict[bytes, BoxHandler] = {
            b"mdhd": self._on_mdhd,
            b"hdlr": self._on_hdlr,
            b"minf": self._on_minf,
        }
        self._minf_table: Dict[bytes, BoxHandler] = {
            b"stbl": self._on_stbl,
        }
        self._stbl_table: Dict[bytes, BoxHandler] = {
            b"stsd": self._on_stsd,
            b"stts": self._on_stts,
            b"ctts": self._on_ctts,
            b"stsz": self._on_stsz,
        }

    def parse(self) -> PresentationSummary:
        """Parses the MP4 file from the stream given to the constructor."""
        if self._parse_called:
            raise ParserStateError("parse() may only be called once per parser")
        self._parse_called = True

        try:
            self._scan_root()
            summary = self._summarize()
        finally:
            self._source.stream.close()

        self._summary = summary
        return summary

    def tracks(self) -> List[TrackInfo]:
        """Tracks in file order; only valid after a successful parse()."""
        if self._summary is None:
            raise ParserStateError("tracks() is only available after a successful parse()")
        return list(self._tracks)

    def _scan_root(self) -> None:
        """Reads top-level boxes until 'moov', decoding 'ftyp' on the way."""
        source = self._source
        source.seek_abs(0)
        while True:
            position = source.position()
            if position >= source.size():
                raise UnexpectedEOFError(
                    "reached end of stream before finding a 'moov' box", position
                )

            header = read_box_header(source)
            if header.type == b"ftyp":
                with source.bounded(header.end):
                    self._file_type = MP4BoxParser.parse_ftyp(source, header)
            elif header.type == b"moov":
                self._walk(header.payload_start, header.end, self._moov_table, None)
                return
            else:
                logger.debug(f"Skipping top-level '{header.name}' at {header.start}")
            source.seek_abs(header.end)

    def _walk(
        self,
        start: int,
        end: int,
        table: Dict[bytes, BoxHandler],
        track: Optional[TrackInfo],
    ) -> None:
        """
        Enumerates the children of the region [start, end), handing each to
        its handler in ``table`` with reads bounded to the child. The cursor
        is forced to the child's declared end afterwards; unknown types are
        skipped by the same seek. Returns with the cursor exactly at ``end``.
        """
        source = self._source
        source.seek_abs(start)
        position = start
        while position < end:
            header = read_box_header(source, end)
            handler = table.get(header.type)
            if handler is None:
                logger.debug(f"Skipping '{header.name}' at {header.start}")
            else:
                with source.bounded(header.end):
                    handler(header, track)
                if source.position() > header.end:
                    raise InvariantViolationError(
                        f"decoding '{header.name}' moved the cursor past its end {header.end}",
                        source.position(),
                    )
            source.seek_abs(header.end)
            position = header.end

        if position != end:
            raise InvariantViolationError(
                f"children overshoot their container ending at {end}", position
            )

    def _on_mvhd(self, header: BoxHeader, _track: Optional[TrackInfo]) -> None:
        self._movie_header = MP4BoxParser.parse_mvhd(self._source, header)

    def _on_trak(self, header: BoxHeader, _track: Optional[TrackInfo]) -> None:
        track = TrackInfo()
        self._walk(header.payload_start, header.end, self._trak_table, track)
        track.codec_name = codec_family(track.codec)
        self._tracks.append(track)

    def _on_tkhd(self, header: BoxHeader, track: Optional[TrackInfo]) -> None:
        tkhd = MP4BoxParser.parse_tkhd(self._source, header)
        track.track_id = tkhd.track_id
        track.movie_duration = tkhd.duration
        track.width = tkhd.width
        track.height = tkhd.height
        track.matrix = tkhd.matrix
        track.rotation = rotation_from_matrix(tkhd.matrix)

    def _on_mdia(self, header: BoxHeader, track: Optional[TrackInfo]) -> None:
        self._walk(header.payload_start, header.end, self._mdia_table, track)

    def _on_mdhd(self, header: BoxHeader, track: Optional[TrackInfo]) -> None:
        mdhd = MP4BoxParser.parse_mdhd(self._source, header)
        track.timescale = mdhd.timescale
        track.duration = mdhd.duration
        track.language = mdhd.language

    def _on_hdlr(self, header: BoxHeader, track: Optional[TrackInfo]) -> None:
        hdlr = MP4BoxParser.parse_hdlr(self._source, header)
        track.handler_type = hdlr.handler_type
        track.handler_name = hdlr.name

    def _on_minf(self, header: BoxHeader, track: Optional[TrackInfo]) -> None:
        self._walk(header.payload_start, header.end, self._minf_table, track)

    def _on_stbl(self, header: BoxHeader, track: Optional[TrackInfo]) -> None:
        self._walk(header.payload_start, header.end, self._stbl_table, track)

        if track.stts_entries is not None and track.ctts_entries is not None:
            ctts_count = sample_count(track.ctts_entries)
            if ctts_count != track.sample_count:
                raise InconsistentTablesError(
                    f"track {track.track_id}: ctts describes {ctts_count} samples "
                    f"but stts describes {track.sample_count}",
                    header.start,
                )
        # stsz counts real samples; an stts total that disagrees cannot be expanded.
        if (
            track.sample_size_count is not None
            and track.stts_entries is not None
            and track.sample_size_count != track.sample_count
        ):
            raise InconsistentTablesError(
                f"track {track.track_id}: stsz lists {track.sample_size_count} samples "
                f"but stts describes {track.sample_count}",
                header.start,
            )

    def _on_stsd(self, header: BoxHeader, track: Optional[TrackInfo]) -> None:
        entries = MP4BoxParser.parse_stsd(self._source, header)
        for entry in entries:
            if track.codec is None:
                track.codec = entry.format
            track.sample_entries.append(entry)

    def _on_stts(self, header: BoxHeader, track: Optional[TrackInfo]) -> None:
        track.stts_entries = MP4BoxParser.parse_stts(self._source, header)
        track.sample_count = sample_count(track.stts_entries)

    def _on_ctts(self, header: BoxHeader, track: Optional[TrackInfo]) -> None:
        track.ctts_entries = MP4BoxParser.parse_ctts(self._source, header)

    def _on_stsz(self, header: BoxHeader, track: Optional[TrackInfo]) -> None:
        sizes = MP4BoxParser.parse_stsz(self._source, header)
        track.sample_size_count = sizes.sample_count
        track.total_sample_bytes = sizes.total_bytes

    def _summarize(self) -> PresentationSummary:
        """Folds the movie header, ftyp and per-track results into one summary."""
        summary = PresentationSummary()

        if self._file_type:
            summary.major_brand = self._file_type.major_brand
            summary.minor_version = self._file_type.minor_version
            summary.compatible_brands = list(self._file_type.compatible_brands)

        mvhd = self._movie_header
        if mvhd:
            summary.duration = mvhd.duration_seconds
            summary.timescale = mvhd.timescale
            summary.creation_time = mac_time_to_datetime(mvhd.creation_time)
            summary.modification_time = mac_time_to_datetime(mvhd.modification_time)
            summary.rate = fixed_16_16(mvhd.rate)
            summary.volume = fixed_8_8(mvhd.volume)
            summary.next_track_id = mvhd.next_track_id

        for track in self._tracks:
            flag = _HANDLER_FLAGS.get(track.handler_type)
            if flag:
                setattr(summary, flag, True)

            seconds = track.duration_seconds
            if track.total_sample_bytes and seconds:
                track.bitrate = int(track.total_sample_bytes * 8 / seconds)

            if self.build_timelines and track.stts_entries is not None:
                track.dts = build_dts_timeline(track.stts_entries)
                track.pts = build_pts_timeline(track.dts, track.ctts_entries)
                summary.discontinuities.extend(
                    detect_discontinuities(track.track_id, track.dts, track.pts)
                )

        video = self._first_track("vide")
        if video:
            entry = video.first_entry("visual")
            summary.width = video.width or (entry.width if entry else 0)
            summary.height = video.height or (entry.height if entry else 0)
            summary.video_codec = video.codec
            summary.fps = video.fps
            summary.rotation = video.rotation
            summary.video_bitrate = video.bitrate
            if entry and entry.avc_config:
                summary.video_profile = h264_profile_name(entry.avc_config.profile)
                summary.video_level = entry.avc_config.level

        audio = self._first_track("soun")
        if audio:
            summary.audio_codec = audio.codec
            summary.audio_bitrate = audio.bitrate
            entry = audio.first_entry("audio")
            if entry:
                summary.audio_sample_rate = entry.sample_rate
                summary.audio_channels = entry.channel_count
                summary.audio_sample_size = entry.sample_size

        return summary

    def _first_track(self, handler_type: str) -> Optional[TrackInfo]:
        for track in self._tracks:
            if track.handler_type == handler_type:
                return track
        return None


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def summary_to_dict(summary: PresentationSummary) -> Dict[str, Any]:
    """Converts a summary to JSON-ready output, with discontinuities split off."""
    output = _jsonable(asdict(summary))
    output.pop("discontinuities", None)
    if summary.duration is not None:
        output["duration_text"] = format_duration(summary.duration)
    return output


def track_to_dict(track: TrackInfo, include_timeline: bool = False) -> Dict[str, Any]:
    """Converts a track to JSON-ready output; sample entries carry their kind."""
    output = _jsonable(asdict(track))
    output["duration_seconds"] = track.duration_seconds
    output["fps"] = track.fps
    output["sample_entries"] = [
        {"kind": entry.kind, **_jsonable(asdict(entry))} for entry in track.sample_entries
    ]
    if not include_timeline:
        output.pop("dts", None)
        output.pop("pts", None)
    return output


def discontinuity_to_dict(issue: Discontinuity) -> Dict[str, Any]:
    return asdict(issue)
