#!/usr/bin/env python3
"""
Coverage Analysis Module

Measures how completely a subject's cleaned timeline covers the study window.

Two independent qualification metrics are provided:
1. Expected-grid coverage: fraction of expected instants actually present,
   plus a per-day variant (days with >= 80% of the day covered)
2. Wear time: span between first and last sample relative to the window
"""

import logging
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional

import pandas as pd

from errors import DegenerateWindowError, EmptyTimelineError
from preprocessing import SUBJECT_COL, TIME_COL
from study_window import SECONDS_PER_DAY, StudyWindow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CoverageReport:
    """Expected-grid coverage of one subject."""
    subject_id: str
    total_expected: int
    missing_count: int
    proportion_missing: float
    coverage_ratio: float

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True, eq=False)
class DailyCoverage:
    """Per-day coverage of one subject and the days-meeting tally."""
    subject_id: str
    per_day: pd.DataFrame
    days_meeting: int
    eligible_days: int
    required_days: float

    @property
    def passed(self) -> bool:
        return self.days_meeting >= self.required_days


def _subject_of(timeline: pd.DataFrame, subject_id: Optional[str]) -> str:
    if subject_id is not None:
        return str(subject_id)
    if SUBJECT_COL in timeline.columns and len(timeline) > 0:
        return str(timeline[SUBJECT_COL].iloc[0])
    return 'unknown'


def timeline_instants(timeline: pd.DataFrame) -> pd.DatetimeIndex:
    """Timestamps of a timeline as a UTC DatetimeIndex."""
    if len(timeline) == 0:
        return pd.DatetimeIndex([], tz='UTC')
    return pd.DatetimeIndex(timeline[TIME_COL]).as_unit('ns')


def find_missing_instants(timeline: pd.DataFrame, window: StudyWindow) -> pd.DatetimeIndex:
    """Expected-grid instants with no sample in the timeline (exact match)."""
    grid = window.require_grid()
    return grid[~grid.isin(timeline_instants(timeline))]


def missing_instants_frame(timeline: pd.DataFrame,
                           window: StudyWindow,
                           subject_id: Optional[str] = None) -> pd.DataFrame:
    """Missing instants as a table, for the per-subject missing-data report."""
    missing = find_missing_instants(timeline, window)
    return pd.DataFrame({
        SUBJECT_COL: _subject_of(timeline, subject_id),
        TIME_COL: missing,
    })


def compute_coverage_report(timeline: pd.DataFrame,
                            window: StudyWindow,
                            subject_id: Optional[str] = None) -> CoverageReport:
    """
    Compare a timeline against the window's expected grid.

    Args:
        timeline: Deduplicated samples of one subject
        window: Study window (grid already excludes excluded dates)
        subject_id: Override for the subject label

    Returns:
        CoverageReport

    Raises:
        DegenerateWindowError: the expected grid is empty
    """
    total_expected = len(window.require_grid())
    missing_count = len(find_missing_instants(timeline, window))
    proportion_missing = missing_count / total_expected
    logger.debug(f"  {_subject_of(timeline, subject_id)}: {missing_count}/{total_expected} expected instants missing")

    return CoverageReport(
        subject_id=_subject_of(timeline, subject_id),
        total_expected=total_expected,
        missing_count=missing_count,
        proportion_missing=proportion_missing,
        coverage_ratio=1.0 - proportion_missing,
    )


def compute_daily_coverage(timeline: pd.DataFrame,
                           window: StudyWindow,
                           subject_id: Optional[str] = None,
                           min_day_fraction: float = 0.8,
                           min_days_fraction: float = 0.5) -> DailyCoverage:
    """
    Per-calendar-day coverage: samples x interval / 86400 for each eligible day.
    Only samples inside [start, end] count; a date the window touches partially
    still has 86400 s as its denominator.

    A day meets coverage when its fraction is >= min_day_fraction. The
    subject passes when the number of such days is at least
    min_days_fraction x (days in window - excluded days).

    Raises:
        EmptyTimelineError: the timeline has no samples
        DegenerateWindowError: every window date is excluded
    """
    subject_id = _subject_of(timeline, subject_id)
    if len(timeline) == 0:
        raise EmptyTimelineError(f"No samples for subject {subject_id}")

    eligible = window.eligible_dates
    if len(eligible) == 0:
        raise DegenerateWindowError("All dates in the study window are excluded")

    instants = timeline[TIME_COL]
    in_window = instants.between(window.start, window.end)
    kept = instants[in_window & ~window.is_excluded(instants)]
    counts = kept.dt.date.value_counts()

    per_day = pd.DataFrame({'date': eligible})
    per_day['n_samples'] = per_day['date'].map(counts).fillna(0).astype(int)
    per_day['seconds_covered'] = per_day['n_samples'] * window.sampling_interval_sec
    per_day['coverage_fraction'] = per_day['seconds_covered'] / SECONDS_PER_DAY
    per_day['meets_coverage'] = per_day['coverage_fraction'] >= min_day_fraction
    per_day.insert(0, SUBJECT_COL, subject_id)

    return DailyCoverage(
        subject_id=subject_id,
        per_day=per_day,
        days_meeting=int(per_day['meets_coverage'].sum()),
        eligible_days=len(eligible),
        required_days=min_days_fraction * len(eligible),
    )


def compute_wear_time_ratio(timeline: pd.DataFrame, window: StudyWindow) -> float:
    """
    Wear time as a fraction of the study window:
    (last sample - first sample) / (window end - window start), in seconds.

    Raises:
        EmptyTimelineError: the timeline has no samples
        DegenerateWindowError: the window has zero length
    """
    if len(timeline) == 0:
        raise EmptyTimelineError(f"No samples for subject {_subject_of(timeline, None)}")

    window_sec = window.duration_sec
    if window_sec <= 0:
        raise DegenerateWindowError(f"Study window has zero length ({window.start})")

    instants = timeline[TIME_COL]
    span_sec = (instants.max() - instants.min()).total_seconds()
    return span_sec / window_sec


def coverage_table(reports: List[CoverageReport]) -> pd.DataFrame:
    columns = list(CoverageReport.__dataclass_fields__)
    if not reports:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame([r.to_dict() for r in reports], columns=columns)
