"""
Stage timing for CONSENT decisions.

The voting window [start, end) is split into consecutive stages whose lengths
are fixed fractions of the total duration:

    DISTINCT: CLARIFICATIONS 1/3, AVIS 1/3, AMENDEMENTS 1/9, OBJECTIONS 2/9
    MERGED:   CLARIFAVIS 2/3, AMENDEMENTS 1/9, OBJECTIONS 2/9

Every boundary is computed from ``start`` with the cumulative fraction, so
rounding never accumulates and the last window always ends exactly at ``end``.
"""

from dataclasses import dataclass
from datetime import datetime
from fractions import Fraction

from ..models import ConsentStage, StageLayout
from .errors import ValidationError


STAGE_FRACTIONS: dict[StageLayout, tuple[tuple[ConsentStage, Fraction], ...]] = {
    StageLayout.DISTINCT: (
        (ConsentStage.CLARIFICATIONS, Fraction(1, 3)),
        (ConsentStage.AVIS, Fraction(1, 3)),
        (ConsentStage.AMENDEMENTS, Fraction(1, 9)),
        (ConsentStage.OBJECTIONS, Fraction(2, 9)),
    ),
    StageLayout.MERGED: (
        (ConsentStage.CLARIFAVIS, Fraction(2, 3)),
        (ConsentStage.AMENDEMENTS, Fraction(1, 9)),
        (ConsentStage.OBJECTIONS, Fraction(2, 9)),
    ),
}


@dataclass(frozen=True)
class StageWindow:
    """One stage of a CONSENT decision and where ``now`` sits relative to it."""
    stage: ConsentStage
    start_time: datetime
    end_time: datetime
    is_active: bool
    is_past: bool
    is_future: bool

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "is_active": self.is_active,
            "is_past": self.is_past,
            "is_future": self.is_future,
        }


def first_stage(layout: StageLayout) -> ConsentStage:
    """Initial stage of a freshly launched decision."""
    return STAGE_FRACTIONS[layout][0][0]


def compute_stage_windows(
    start: datetime,
    end: datetime,
    layout: StageLayout,
    now: datetime,
) -> list[StageWindow]:
    """Partition [start, end) into the layout's stage windows.

    Raises ValidationError if ``start`` is not strictly before ``end``.
    """
    if start >= end:
        raise ValidationError("Stage window requires start_time before end_time")

    total = end - start
    fractions = STAGE_FRACTIONS[layout]

    windows: list[StageWindow] = []
    cumulative = Fraction(0)
    window_start = start
    for index, (stage, fraction) in enumerate(fractions):
        cumulative += fraction
        if index == len(fractions) - 1:
            window_end = end
        else:
            window_end = start + (total * cumulative.numerator) / cumulative.denominator

        windows.append(StageWindow(
            stage=stage,
            start_time=window_start,
            end_time=window_end,
            is_active=window_start <= now < window_end,
            is_past=now >= window_end,
            is_future=now < window_start,
        ))
        window_start = window_end

    return windows


def stage_end_time(
    start: datetime,
    end: datetime,
    layout: StageLayout,
    stage: ConsentStage,
) -> datetime | None:
    """End of ``stage``'s window, or None if the layout has no such stage."""
    if stage == ConsentStage.TERMINEE:
        return end
    for window in compute_stage_windows(start, end, layout, start):
        if window.stage == stage:
            return window.end_time
    return None
