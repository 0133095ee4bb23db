"""
Tests for stage timing - Verifying window partitioning.

These tests verify:
1. FRACTIONS: each layout splits the window 1/3, 1/3, 1/9, 2/9 (or 2/3, 1/9, 2/9)
2. CONTIGUITY: windows touch, the first starts at start, the last ends at end
3. FLAGS: exactly one window is active while now is inside [start, end)
"""

from datetime import datetime, timedelta, timezone

import pytest

from decido.models import ConsentStage, StageLayout
from decido.services.errors import ValidationError
from decido.services.stage_timing import (
    compute_stage_windows,
    first_stage,
    stage_end_time,
)

START = datetime(2026, 3, 1, 0, 0, tzinfo=timezone.utc)


class TestFractions:
    def test_distinct_layout_nine_days(self):
        end = START + timedelta(days=9)
        windows = compute_stage_windows(START, end, StageLayout.DISTINCT, START)

        assert [w.stage for w in windows] == [
            ConsentStage.CLARIFICATIONS,
            ConsentStage.AVIS,
            ConsentStage.AMENDEMENTS,
            ConsentStage.OBJECTIONS,
        ]
        assert [w.end_time - START for w in windows] == [
            timedelta(days=3),
            timedelta(days=6),
            timedelta(days=7),
            timedelta(days=9),
        ]

    def test_merged_layout_nine_days(self):
        end = START + timedelta(days=9)
        windows = compute_stage_windows(START, end, StageLayout.MERGED, START)

        assert [w.stage for w in windows] == [
            ConsentStage.CLARIFAVIS,
            ConsentStage.AMENDEMENTS,
            ConsentStage.OBJECTIONS,
        ]
        assert [w.end_time - START for w in windows] == [
            timedelta(days=6),
            timedelta(days=7),
            timedelta(days=9),
        ]

    def test_first_stage_per_layout(self):
        assert first_stage(StageLayout.DISTINCT) == ConsentStage.CLARIFICATIONS
        assert first_stage(StageLayout.MERGED) == ConsentStage.CLARIFAVIS


class TestContiguity:
    @pytest.mark.parametrize("layout", [StageLayout.DISTINCT, StageLayout.MERGED])
    def test_windows_are_contiguous_for_uneven_durations(self, layout):
        end = START + timedelta(days=10, seconds=7, microseconds=13)
        windows = compute_stage_windows(START, end, layout, START)

        assert windows[0].start_time == START
        assert windows[-1].end_time == end
        for previous, following in zip(windows, windows[1:]):
            assert previous.end_time == following.start_time
            assert previous.start_time < previous.end_time

    def test_start_must_precede_end(self):
        with pytest.raises(ValidationError):
            compute_stage_windows(START, START, StageLayout.DISTINCT, START)

        with pytest.raises(ValidationError):
            compute_stage_windows(
                START, START - timedelta(days=1), StageLayout.MERGED, START
            )


class TestFlags:
    def test_boundary_belongs_to_the_next_stage(self):
        end = START + timedelta(days=9)
        now = START + timedelta(days=3)
        windows = compute_stage_windows(START, end, StageLayout.DISTINCT, now)
        by_stage = {w.stage: w for w in windows}

        assert by_stage[ConsentStage.CLARIFICATIONS].is_past
        assert by_stage[ConsentStage.AVIS].is_active
        assert by_stage[ConsentStage.AMENDEMENTS].is_future
        assert sum(w.is_active for w in windows) == 1

    def test_no_active_window_outside_the_voting_window(self):
        end = START + timedelta(days=9)

        before = compute_stage_windows(START, end, StageLayout.DISTINCT, START - timedelta(hours=1))
        after = compute_stage_windows(START, end, StageLayout.DISTINCT, end)

        assert not any(w.is_active for w in before)
        assert all(w.is_future for w in before)
        assert not any(w.is_active for w in after)
        assert all(w.is_past for w in after)

    def test_to_dict_serializes_values(self):
        end = START + timedelta(days=9)
        window = compute_stage_windows(START, end, StageLayout.MERGED, START)[0]

        data = window.to_dict()
        assert data["stage"] == "clarifavis"
        assert data["start_time"] == START.isoformat()
        assert data["is_active"] is True


class TestStageEndTime:
    def test_end_of_named_stage(self):
        end = START + timedelta(days=9)
        assert stage_end_time(START, end, StageLayout.DISTINCT, ConsentStage.AMENDEMENTS) == (
            START + timedelta(days=7)
        )

    def test_terminee_ends_at_deadline(self):
        end = START + timedelta(days=9)
        assert stage_end_time(START, end, StageLayout.MERGED, ConsentStage.TERMINEE) == end

    def test_stage_missing_from_layout(self):
        end = START + timedelta(days=9)
        assert stage_end_time(START, end, StageLayout.DISTINCT, ConsentStage.CLARIFAVIS) is None
