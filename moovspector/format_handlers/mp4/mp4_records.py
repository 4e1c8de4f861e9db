# moovspector/format_handlers/mp4/mp4_records.py
# !/usr/bin/env python3

"""
Records produced while descending the box tree.

Box payloads are transient: decoders copy the fields they need into these
records and discard the raw bytes, except for the child boxes of sample
entries, which are kept verbatim in ``children``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union


@dataclass
class FileType:
    major_brand: str
    minor_version: int
    compatible_brands: List[str] = field(default_factory=list)


@dataclass
class MovieHeader:
    version: int
    creation_time: int
    modification_time: int
    timescale: int
    duration: int
    rate: int
    volume: int
    matrix: List[int]
    next_track_id: int

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.timescale <= 0:
            return None
        return self.duration / self.timescale


@dataclass
class TrackHeader:
    version: int
    flags: int
    track_id: int
    duration: int
    layer: int
    alternate_group: int
    volume: int
    matrix: List[int]
    width: int
    height: int


@dataclass
class MediaHeader:
    version: int
    timescale: int
    duration: int
    language: str


@dataclass
class HandlerReference:
    handler_type: str
    name: str


@dataclass
class TimeToSampleEntry:
    count: int
    delta: int


@dataclass
class CompositionOffsetEntry:
    count: int
    offset: int


@dataclass
class SampleSizes:
    sample_size: int
    sample_count: int
    total_bytes: int


@dataclass
class AvcConfiguration:
    configuration_version: int
    profile: int
    profile_compatibility: int
    level: int
    length_size: int
    sps: List[bytes] = field(default_factory=list)
    pps: List[bytes] = field(default_factory=list)


@dataclass
class EsDescriptor:
    es_id: int
    object_type_indication: Optional[int] = None
    stream_type: Optional[int] = None
    buffer_size_db: Optional[int] = None
    max_bitrate: Optional[int] = None
    avg_bitrate: Optional[int] = None
    decoder_specific_info: Optional[bytes] = None


@dataclass
class VisualSampleEntry:
    format: str
    data_reference_index: int
    width: int
    height: int
    compressor_name: str = ""
    depth: int = 0
    avc_config: Optional[AvcConfiguration] = None
    pixel_aspect_ratio: Optional[Tuple[int, int]] = None
    max_bitrate: Optional[int] = None
    avg_bitrate: Optional[int] = None
    children: Dict[str, bytes] = field(default_factory=dict)

    kind = "visual"


@dataclass
class AudioSampleEntry:
    format: str
    data_reference_index: int
    channel_count: int
    sample_size: int
    sample_rate: int
    es_descriptor: Optional[EsDescriptor] = None
    children: Dict[str, bytes] = field(default_factory=dict)

    kind = "audio"


@dataclass
class OtherSampleEntry:
    format: str
    data_reference_index: int

    kind = "other"


SampleEntry = Union[VisualSampleEntry, AudioSampleEntry, OtherSampleEntry]


@dataclass
class TrackInfo:
    track_id: int = 0
    handler_type: Optional[str] = None
    handler_name: Optional[str] = None
    timescale: int = 0
    duration: int = 0
    movie_duration: int = 0
    language: str = "und"
    width: int = 0
    height: int = 0
    rotation: int = 0
    matrix: List[int] = field(default_factory=list)
    codec: Optional[str] = None
    codec_name: Optional[str] = None
    sample_entries: List[SampleEntry] = field(default_factory=list)
    stts_entries: Optional[List[TimeToSampleEntry]] = None
    ctts_entries: Optional[List[CompositionOffsetEntry]] = None
    sample_count: int = 0
    sample_size_count: Optional[int] = None
    total_sample_bytes: Optional[int] = None
    bitrate: Optional[int] = None
    dts: Optional[List[int]] = None
    pts: Optional[List[int]] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.timescale <= 0:
            return None
        return self.duration / self.timescale

    @property
    def fps(self) -> Optional[float]:
        seconds = self.duration_seconds
        if not seconds or self.sample_count <= 0:
            return None
        return self.sample_count / seconds

    def first_entry(self, kind: str) -> Optional[SampleEntry]:
        for entry in self.sample_entries:
            if entry.kind == kind:
                return entry
        return None


@dataclass
class Discontinuity:
    track_id: int
    sample_index: int
    prev: int
    next: int
    kind: str


@dataclass
class PresentationSummary:
    duration: Optional[float] = None
    timescale: int = 0
    creation_time: Optional[datetime] = None
    modification_time: Optional[datetime] = None
    rate: Optional[float] = None
    volume: Optional[float] = None
    next_track_id: Optional[int] = None
    major_brand: Optional[str] = None
    minor_version: Optional[int] = None
    compatible_brands: List[str] = field(default_factory=list)
    width: int = 0
    height: int = 0
    fps: Optional[float] = None
    rotation: int = 0
    video_codec: Optional[str] = None
    video_profile: Optional[str] = None
    video_level: Optional[int] = None
    video_bitrate: Optional[int] = None
    audio_codec: Optional[str] = None
    audio_sample_rate: Optional[int] = None
    audio_channels: Optional[int] = None
    audio_sample_size: Optional[int] = None
    audio_bitrate: Optional[int] = None
    has_video: bool = False
    has_audio: bool = False
    has_hint: bool = False
    has_meta: bool = False
    has_auxv: bool = False
    has_subtitle: bool = False
    has_text: bool = False
    discontinuities: List[Discontinuity] = field(default_factory=list)
