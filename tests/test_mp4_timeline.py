import pytest

from moovspector import InconsistentTablesError
from moovspector.format_handlers.mp4.mp4_records import (
    CompositionOffsetEntry,
    TimeToSampleEntry,
)
from moovspector.format_handlers.mp4.mp4_timeline import (
    DTS_NOT_INCREASING,
    PTS_DECREASING,
    build_dts_timeline,
    build_pts_timeline,
    detect_discontinuities,
    sample_count,
)


def _stts(*runs):
    return [TimeToSampleEntry(count, delta) for count, delta in runs]


def _ctts(*runs):
    return [CompositionOffsetEntry(count, offset) for count, offset in runs]


def test_dts_timeline_accumulates_run_deltas():
    dts = build_dts_timeline(_stts((3, 100), (2, 150)))
    assert dts == [0, 100, 200, 300, 450]


def test_pts_timeline_applies_offsets_per_run():
    stts = _stts((3, 100), (2, 150))
    dts = build_dts_timeline(stts)
    pts = build_pts_timeline(dts, _ctts((2, 0), (3, 50)))
    assert pts == [0, 100, 250, 350, 500]
    assert detect_discontinuities(1, dts, pts) == []


@pytest.mark.parametrize(
    "runs",
    [((1, 1),), ((60, 1000),), ((3, 100), (2, 150), (10, 1)), ((5, 3003), (1, 1001))],
)
def test_timeline_length_matches_sample_count(runs):
    stts = _stts(*runs)
    dts = build_dts_timeline(stts)
    assert len(dts) == sample_count(stts)
    assert all(dts[n] > dts[n - 1] for n in range(1, len(dts)))


def test_pts_equals_dts_without_ctts():
    dts = build_dts_timeline(_stts((4, 10)))
    assert build_pts_timeline(dts, None) == dts
    assert build_pts_timeline(dts, []) == dts


def test_negative_offsets_are_clamped_to_zero():
    dts = build_dts_timeline(_stts((3, 10)))
    pts = build_pts_timeline(dts, _ctts((1, -20), (2, -5)))
    assert pts == [0, 5, 15]


def test_pts_rejects_mismatched_ctts():
    dts = build_dts_timeline(_stts((3, 10)))
    with pytest.raises(InconsistentTablesError):
        build_pts_timeline(dts, _ctts((2, 0)))


def test_zero_delta_is_reported_as_dts_discontinuity():
    dts = build_dts_timeline(_stts((2, 100), (2, 0), (1, 100)))
    issues = detect_discontinuities(7, dts, dts)
    assert [(i.sample_index, i.prev, i.next, i.kind) for i in issues] == [
        (3, 200, 200, DTS_NOT_INCREASING),
        (4, 200, 200, DTS_NOT_INCREASING),
    ]
    assert all(issue.track_id == 7 for issue in issues)


def test_pts_going_backwards_is_reported():
    dts = [0, 100, 200, 300]
    pts = [200, 100, 300, 400]
    issues = detect_discontinuities(1, dts, pts)
    assert len(issues) == 1
    assert (issues[0].sample_index, issues[0].prev, issues[0].next, issues[0].kind) == (
        1, 200, 100, PTS_DECREASING,
    )


def test_sample_count_of_missing_table_is_zero():
    assert sample_count(None) == 0
    assert sample_count([]) == 0
