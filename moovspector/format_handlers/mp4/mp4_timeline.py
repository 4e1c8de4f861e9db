# moovspector/format_handlers/mp4/mp4_timeline.py
# !/usr/bin/env python3

"""
Expansion of the run-length stts/ctts tables into per-sample timestamps.

All values are in the track timescale. DTS starts at 0 and advances by the
delta of the run each sample belongs to; PTS adds the composition offset of
the sample's ctts run and is clamped at 0.
"""

import logging

from typing import List, Optional, Sequence
from moovspector._exceptions import InconsistentTablesError
from .mp4_records import CompositionOffsetEntry, Discontinuity, TimeToSampleEntry

logger = logging.getLogger(__name__)

DTS_NOT_INCREASING = "dts_not_increasing"
PTS_DECREASING = "pts_decreasing"


def sample_count(entries: Optional[Sequence]) -> int:
    """Total samples described by a run-length table."""
    if not entries:
        return 0
    return sum(entry.count for entry in entries)


def build_dts_timeline(stts: Sequence[TimeToSampleEntry]) -> List[int]:
    dts: List[int] = []
    current = 0
    for entry in stts:
        for _ in range(entry.count):
            dts.append(current)
            current += entry.delta
    return dts


def build_pts_timeline(
    dts: Sequence[int], ctts: Optional[Sequence[CompositionOffsetEntry]]
) -> List[int]:
    """Applies composition offsets to a DTS timeline. Without ctts, PTS equals DTS."""
    if not ctts:
        return list(dts)
    if sample_count(ctts) != len(dts):
        raise InconsistentTablesError(
            f"ctts describes {sample_count(ctts)} samples but stts describes {len(dts)}"
        )

    pts: List[int] = []
    index = 0
    for entry in ctts:
        for _ in range(entry.count):
            pts.append(max(0, dts[index] + entry.offset))
            index += 1
    return pts


def detect_discontinuities(
    track_id: int, dts: Sequence[int], pts: Sequence[int]
) -> List[Discontinuity]:
    """
    Flags samples where DTS fails to strictly increase or PTS decreases.
    Results are ordered by sample index, DTS before PTS for the same sample.
    """
    issues: List[Discontinuity] = []
    for i in range(1, len(dts)):
        if dts[i] <= dts[i - 1]:
            issues.append(
                Discontinuity(track_id, i, dts[i - 1], dts[i], DTS_NOT_INCREASING)
            )
        if i < len(pts) and pts[i] < pts[i - 1]:
            issues.append(
                Discontinuity(track_id, i, pts[i - 1], pts[i], PTS_DECREASING)
            )
    for issue in issues:
        logger.warning(
            f"Track {track_id}: {issue.kind} at sample {issue.sample_index}: "
            f"{issue.prev} -> {issue.next}"
        )
    return issues
