# moovspector/format_handlers/mp4/mp4_boxes.py
# !/usr/bin/env python3

import logging
import struct

from typing import Dict, List, Optional, Tuple
from moovspector._exceptions import (
    InvariantViolationError,
    MalformedBoxError,
    UnsupportedVersionError,
)
from .mp4_records import (
    AudioSampleEntry,
    AvcConfiguration,
    CompositionOffsetEntry,
    EsDescriptor,
    FileType,
    HandlerReference,
    MediaHeader,
    MovieHeader,
    OtherSampleEntry,
    SampleEntry,
    SampleSizes,
    TimeToSampleEntry,
    TrackHeader,
    VisualSampleEntry,
)
from .mp4_utils import (
    BoxHeader,
    ByteSource,
    decode_language_code,
    read_box_header,
    read_full_box_header,
)

logger = logging.getLogger(__name__)

# Sample entry formats sharing the VisualSampleEntry layout
_VISUAL_FORMATS = {
    "avc1", "avc3", "hev1", "hvc1", "encv", "dvh1", "dvhe", "av01", "vp09", "mp4v",
}

# Sample entry formats sharing the AudioSampleEntry layout
_AUDIO_FORMATS = {"mp4a", "enca", "ac-3", "ec-3", "Opus", "fLaC", "alac"}

_VISUAL_CHILDREN = {b"avcC", b"hvcC", b"pasp", b"btrt"}
_AUDIO_CHILDREN = {b"esds", b"dOps", b"wave"}

# ISO/IEC 14496-1 descriptor tags used inside esds
_ES_DESCR_TAG = 0x03
_DECODER_CONFIG_DESCR_TAG = 0x04
_DEC_SPECIFIC_INFO_TAG = 0x05


def _check_version(box_name: str, version: int, offset: int) -> None:
    if version not in (0, 1):
        raise UnsupportedVersionError(
            f"'{box_name}' version {version} is not supported", offset
        )


class MP4BoxParser:
    """
    A collection of static methods for decoding specific MP4 boxes.

    Every decoder expects the source positioned at the first payload byte
    of ``header`` and bounded to ``header.end`` by the caller. Decoders
    read only the fields they return; the caller seeks to the box end.
    """

    @staticmethod
    def parse_ftyp(source: ByteSource, header: BoxHeader) -> FileType:
        """Parses 'ftyp' for the major brand and the compatible brands."""
        major_brand = source.read_fourcc()
        minor_version = source.read_u32()
        brands = []
        while header.end - source.position() >= 4:
            brands.append(source.read_fourcc())
        return FileType(major_brand, minor_version, brands)

    @staticmethod
    def parse_mvhd(source: ByteSource, header: BoxHeader) -> MovieHeader:
        """Parses 'mvhd' box to get the overall movie duration and timescale."""
        version, _ = read_full_box_header(source)
        _check_version("mvhd", version, header.start)
        if version == 1:
            creation_time = source.read_u64()
            modification_time = source.read_u64()
            timescale = source.read_u32()
            duration = source.read_u64()
        else:
            creation_time = source.read_u32()
            modification_time = source.read_u32()
            timescale = source.read_u32()
            duration = source.read_u32()

        rate = source.read_i32()
        volume = source.read_i16()
        source.skip(10)
        matrix = [source.read_i32() for _ in range(9)]
        source.skip(24)
        next_track_id = source.read_u32()

        logger.debug(
            f"mvhd v{version}: timescale {timescale}, duration {duration}, next track {next_track_id}"
        )
        return MovieHeader(
            version=version,
            creation_time=creation_time,
            modification_time=modification_time,
            timescale=timescale,
            duration=duration,
            rate=rate,
            volume=volume,
            matrix=matrix,
            next_track_id=next_track_id,
        )

    @staticmethod
    def parse_tkhd(source: ByteSource, header: BoxHeader) -> TrackHeader:
        """Parses 'tkhd' for the track id, matrix and presentation size."""
        version, flags = read_full_box_header(source)
        _check_version("tkhd", version, header.start)
        if version == 1:
            source.skip(16)  # creation_time, modification_time
            track_id = source.read_u32()
            source.skip(4)
            duration = source.read_u64()
        else:
            source.skip(8)
            track_id = source.read_u32()
            source.skip(4)
            duration = source.read_u32()

        source.skip(8)
        layer = source.read_i16()
        alternate_group = source.read_i16()
        volume = source.read_i16()
        source.skip(2)
        matrix = [source.read_i32() for _ in range(9)]
        width = source.read_u32() >> 16
        height = source.read_u32() >> 16

        logger.debug(f"tkhd v{version}: track {track_id}, {width}x{height}")
        return TrackHeader(
            version=version,
            flags=flags,
            track_id=track_id,
            duration=duration,
            layer=layer,
            alternate_group=alternate_group,
            volume=volume,
            matrix=matrix,
            width=width,
            height=height,
        )

    @staticmethod
    def parse_mdhd(source: ByteSource, header: BoxHeader) -> MediaHeader:
        """Parses 'mdhd' box to get timescale, duration, and language code."""
        version, _ = read_full_box_header(source)
        _check_version("mdhd", version, header.start)
        if version == 1:
            source.skip(16)
            timescale = source.read_u32()
            duration = source.read_u64()
        else:
            source.skip(8)
            timescale = source.read_u32()
            duration = source.read_u32()

        language = decode_language_code(source.read_u16())
        source.skip(2)
        return MediaHeader(version, timescale, duration, language)

    @staticmethod
    def parse_hdlr(source: ByteSource, header: BoxHeader) -> HandlerReference:
        """Parses 'hdlr' box to get handler_type and handler_name."""
        read_full_box_header(source)
        source.skip(4)  # pre_defined
        handler_type = source.read_fourcc()
        source.skip(12)
        # The name runs to the end of the box, NUL-terminated or not.
        name_data = source.read_exact(max(0, header.end - source.position()))
        handler_name = (
            name_data.split(b"\x00", 1)[0].decode("utf-8", errors="replace").strip()
        )
        return HandlerReference(handler_type, handler_name)

    @staticmethod
    def parse_stts(source: ByteSource, header: BoxHeader) -> List[TimeToSampleEntry]:
        """Parses 'stts' into (count, delta) runs."""
        read_full_box_header(source)
        entry_count = source.read_u32()
        data = source.read_exact(entry_count * 8)
        return [
            TimeToSampleEntry(count, delta)
            for count, delta in struct.iter_unpack(">II", data)
        ]

    @staticmethod
    def parse_ctts(
        source: ByteSource, header: BoxHeader
    ) -> List[CompositionOffsetEntry]:
        """Parses 'ctts'; offsets are unsigned in version 0 and signed in version 1."""
        version, _ = read_full_box_header(source)
        _check_version("ctts", version, header.start)
        entry_count = source.read_u32()
        data = source.read_exact(entry_count * 8)
        layout = ">II" if version == 0 else ">Ii"
        return [
            CompositionOffsetEntry(count, offset)
            for count, offset in struct.iter_unpack(layout, data)
        ]

    @staticmethod
    def parse_stsz(source: ByteSource, header: BoxHeader) -> SampleSizes:
        """Parses 'stsz' to total the sample payload bytes."""
        read_full_box_header(source)
        sample_size = source.read_u32()
        sample_count = source.read_u32()
        if sample_size != 0:
            total_bytes = sample_size * sample_count
        else:
            sizes_data = source.read_exact(sample_count * 4)
            total_bytes = sum(size for (size,) in struct.iter_unpack(">I", sizes_data))
        return SampleSizes(sample_size, sample_count, total_bytes)

    @staticmethod
    def parse_stsd(source: ByteSource, header: BoxHeader) -> List[SampleEntry]:
        """
        Parses 'stsd' and each of its sample entries.

        Every entry is bounded by its declared size, which must fit in what
        is left of the stsd payload; the cursor is repositioned to the
        entry end by absolute seek after each one.
        """
        read_full_box_header(source)
        entry_count = source.read_u32()
        entries: List[SampleEntry] = []

        for index in range(entry_count):
            entry_start = source.position()
            if header.end - entry_start < 8:
                raise MalformedBoxError(
                    f"'stsd' declares {entry_count} entries but only {index} fit",
                    entry_start,
                )
            entry_size = source.read_u32()
            entry_format = source.read_fourcc()
            entry_end = entry_start + entry_size
            if entry_size < 8 or entry_end > header.end:
                raise MalformedBoxError(
                    f"sample entry '{entry_format}' of size {entry_size} does not fit "
                    f"in the {header.end - entry_start} bytes left in 'stsd'",
                    entry_start,
                )

            with source.bounded(entry_end):
                entries.append(
                    MP4BoxParser._parse_sample_entry(source, entry_format, entry_end)
                )
            if source.position() > entry_end:
                raise InvariantViolationError(
                    f"sample entry '{entry_format}' consumed past its end {entry_end}",
                    source.position(),
                )
            source.seek_abs(entry_end)

        return entries

    @staticmethod
    def _parse_sample_entry(
        source: ByteSource, entry_format: str, entry_end: int
    ) -> SampleEntry:
        source.skip(6)  # reserved
        data_reference_index = source.read_u16()

        if entry_format in _VISUAL_FORMATS:
            return MP4BoxParser._parse_visual_entry(
                source, entry_format, data_reference_index, entry_end
            )
        if entry_format in _AUDIO_FORMATS:
            return MP4BoxParser._parse_audio_entry(
                source, entry_format, data_reference_index, entry_end
            )

        logger.debug(f"Skipping sample entry '{entry_format}'")
        return OtherSampleEntry(entry_format, data_reference_index)

    @staticmethod
    def _parse_visual_entry(
        source: ByteSource, entry_format: str, data_reference_index: int, entry_end: int
    ) -> VisualSampleEntry:
        source.skip(16)  # pre_defined, reserved, pre_defined[3]
        width = source.read_u16()
        height = source.read_u16()
        source.skip(14)  # horiz/vert resolution, reserved, frame_count
        raw_name = source.read_exact(32)
        name_length = min(raw_name[0], 31)
        compressor_name = raw_name[1 : 1 + name_length].decode("utf-8", errors="replace")
        depth = source.read_u16()
        source.skip(2)

        entry = VisualSampleEntry(
            format=entry_format,
            data_reference_index=data_reference_index,
            width=width,
            height=height,
            compressor_name=compressor_name,
            depth=depth,
        )
        entry.children = MP4BoxParser._read_entry_children(
            source, entry_end, _VISUAL_CHILDREN
        )

        if "avcC" in entry.children:
            entry.avc_config = MP4BoxParser.decode_avcc(entry.children["avcC"])
        if "pasp" in entry.children:
            entry.pixel_aspect_ratio = MP4BoxParser.decode_pasp(entry.children["pasp"])
        if "btrt" in entry.children:
            bitrates = MP4BoxParser.decode_btrt(entry.children["btrt"])
            if bitrates:
                entry.max_bitrate, entry.avg_bitrate = bitrates

        logger.debug(f"Visual sample entry '{entry_format}': {width}x{height}")
        return entry

    @staticmethod
    def _parse_audio_entry(
        source: ByteSource, entry_format: str, data_reference_index: int, entry_end: int
    ) -> AudioSampleEntry:
        # QuickTime reuses the first reserved field as a sound description version.
        sound_version = source.read_u16()
        source.skip(6)
        channel_count = source.read_u16()
        sample_size = source.read_u16()
        source.skip(4)  # pre_defined, reserved
        sample_rate = source.read_u32() >> 16

        if sound_version == 1:
            source.skip(16)
        elif sound_version == 2:
            # The fixed fields hold placeholders; the real values follow.
            (
                _struct_size,
                rate,
                channels,
                _always_7f000000,
                bits_per_channel,
                _format_flags,
                _bytes_per_packet,
                _frames_per_packet,
            ) = struct.unpack(">IdIIIIII", source.read_exact(36))
            sample_rate = int(rate)
            channel_count = channels
            if bits_per_channel:
                sample_size = bits_per_channel

        entry = AudioSampleEntry(
            format=entry_format,
            data_reference_index=data_reference_index,
            channel_count=channel_count,
            sample_size=sample_size,
            sample_rate=sample_rate,
        )
        entry.children = MP4BoxParser._read_entry_children(
            source, entry_end, _AUDIO_CHILDREN
        )
        if "esds" in entry.children:
            entry.es_descriptor = MP4BoxParser.decode_esds(entry.children["esds"])

        logger.debug(
            f"Audio sample entry '{entry_format}': {channel_count} ch, {sample_rate} Hz"
        )
        return entry

    @staticmethod
    def _read_entry_children(
        source: ByteSource, entry_end: int, recognized: set
    ) -> Dict[str, bytes]:
        """Walks the child boxes of a sample entry, keeping recognized payloads raw."""
        children: Dict[str, bytes] = {}
        # Fewer than 8 trailing bytes cannot hold a box; QuickTime pads with zeros.
        while entry_end - source.position() >= 8:
            child = read_box_header(source, entry_end)
            if child.type in recognized:
                with source.bounded(child.end):
                    children[child.name] = source.read_exact(child.payload_length)
            else:
                logger.debug(f"Skipping sample entry child '{child.name}'")
            source.seek_abs(child.end)
        return children

    @staticmethod
    def decode_avcc(data: bytes) -> Optional[AvcConfiguration]:
        """Decodes an AVCDecoderConfigurationRecord; None if it is truncated."""
        try:
            config = AvcConfiguration(
                configuration_version=data[0],
                profile=data[1],
                profile_compatibility=data[2],
                level=data[3],
                length_size=(data[4] & 0x03) + 1,
            )
            pos = 5
            num_sps = data[pos] & 0x1F
            pos += 1
            for _ in range(num_sps):
                (length,) = struct.unpack_from(">H", data, pos)
                pos += 2
                config.sps.append(data[pos : pos + length])
                pos += length
            num_pps = data[pos]
            pos += 1
            for _ in range(num_pps):
                (length,) = struct.unpack_from(">H", data, pos)
                pos += 2
                config.pps.append(data[pos : pos + length])
                pos += length
            return config
        except (IndexError, struct.error) as e:
            logger.debug(f"Error parsing avcC: {e}")
            return None

    @staticmethod
    def decode_pasp(data: bytes) -> Optional[Tuple[int, int]]:
        if len(data) < 8:
            return None
        return struct.unpack_from(">II", data, 0)

    @staticmethod
    def decode_btrt(data: bytes) -> Optional[Tuple[int, int]]:
        """Returns (max_bitrate, avg_bitrate) from a 'btrt' payload."""
        if len(data) < 12:
            return None
        _, max_bitrate, avg_bitrate = struct.unpack_from(">III", data, 0)
        return max_bitrate, avg_bitrate

    @staticmethod
    def _read_descriptor_header(data: bytes, pos: int) -> Tuple[int, int, int]:
        """Returns (tag, size, payload_pos) of an MPEG-4 descriptor at pos."""
        tag = data[pos]
        pos += 1
        size = 0
        for _ in range(4):
            b = data[pos]
            pos += 1
            size = (size << 7) | (b & 0x7F)
            if not b & 0x80:
                break
        return tag, size, pos

    @staticmethod
    def decode_esds(data: bytes) -> Optional[EsDescriptor]:
        """
        Decodes the ES_Descriptor carried by an 'esds' payload.

        Only the fields needed to describe the stream are kept: ES_ID, the
        DecoderConfigDescriptor and its DecoderSpecificInfo bytes.
        """
        try:
            tag, size, pos = MP4BoxParser._read_descriptor_header(data, 4)
            if tag != _ES_DESCR_TAG:
                return None
            es_end = min(pos + size, len(data))
            (es_id,) = struct.unpack_from(">H", data, pos)
            flags = data[pos + 2]
            pos += 3
            if flags & 0x80:  # streamDependenceFlag
                pos += 2
            if flags & 0x40:  # URL_Flag
                pos += 1 + data[pos]
            if flags & 0x20:  # OCRstreamFlag
                pos += 2

            descriptor = EsDescriptor(es_id=es_id)
            while pos < es_end:
                tag, size, payload = MP4BoxParser._read_descriptor_header(data, pos)
                if tag == _DECODER_CONFIG_DESCR_TAG:
                    descriptor.object_type_indication = data[payload]
                    descriptor.stream_type = data[payload + 1] >> 2
                    descriptor.buffer_size_db = int.from_bytes(
                        data[payload + 2 : payload + 5], "big"
                    )
                    descriptor.max_bitrate, descriptor.avg_bitrate = struct.unpack_from(
                        ">II", data, payload + 5
                    )
                    inner = payload + 13
                    config_end = min(payload + size, len(data))
                    while inner < config_end:
                        sub_tag, sub_size, sub_payload = (
                            MP4BoxParser._read_descriptor_header(data, inner)
                        )
                        if sub_tag == _DEC_SPECIFIC_INFO_TAG:
                            descriptor.decoder_specific_info = data[
                                sub_payload : sub_payload + sub_size
                            ]
                        inner = sub_payload + sub_size
                pos = payload + size
            return descriptor
        except (IndexError, struct.error) as e:
            logger.debug(f"Error parsing esds: {e}")
            return None
