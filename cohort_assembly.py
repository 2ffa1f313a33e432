#!/usr/bin/env python3
"""
Cohort Assembly Module

Merges aligned subject timelines into the final cohort tables and reports
per-subject data quality (observation counts, missing values per field,
residual duplicate timestamps).
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pandas as pd

from common_timeline import CommonTimeline
from errors import InvariantViolation
from preprocessing import (
    HR_COL, SUBJECT_COL, TIME_COL,
    count_duplicate_timestamps, drop_duplicate_timestamps,
)
from study_window import StudyWindow

logger = logging.getLogger(__name__)

PERIOD_COL = 'period'


@dataclass
class Cohort:
    subject_ids: List[str]
    common_timestamps: pd.DatetimeIndex
    combined: pd.DataFrame
    per_subject: Dict[str, pd.DataFrame] = field(default_factory=dict)
    summary: pd.DataFrame = field(default_factory=pd.DataFrame)
    issues: List[Dict] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return len(self.subject_ids) == 0

    @property
    def mean_observations(self) -> float:
        if self.is_empty:
            return 0.0
        return float(self.summary['n_observations'].mean())


def empty_cohort() -> Cohort:
    return Cohort(
        subject_ids=[],
        common_timestamps=pd.DatetimeIndex([], tz='UTC'),
        combined=pd.DataFrame(columns=[SUBJECT_COL, TIME_COL, HR_COL]),
        summary=pd.DataFrame(columns=[SUBJECT_COL, 'n_observations', 'duplicate_timestamps']),
    )


def subject_quality(subject_id: str, timeline: pd.DataFrame) -> Dict:
    """Observation count, missing values per field and duplicate timestamps."""
    row = {
        SUBJECT_COL: subject_id,
        'n_observations': len(timeline),
        'duplicate_timestamps': count_duplicate_timestamps(timeline),
    }
    for col, n_missing in timeline.isna().sum().items():
        if col in (SUBJECT_COL, TIME_COL):
            continue
        row[f'missing_{col}'] = int(n_missing)
    return row


def assemble_cohort(common: CommonTimeline, window: Optional[StudyWindow] = None) -> Cohort:
    """
    Merge aligned timelines into one table ordered by (subject_id, timestamp).

    A duplicate timestamp found here breaks the alignment invariant; it is
    reported as an InvariantViolation warning and the first occurrence kept.

    Args:
        common: Output of resolve_common_timeline
        window: Study window; adds a day/night 'period' column when the
            window has day/night boundaries

    Returns:
        Cohort (empty when the common timeline is empty)
    """
    if common.is_empty:
        logger.warning("  Common timeline is empty - cohort is empty")
        return empty_cohort()

    per_subject = {}
    quality_rows = []
    issues = []

    for sid in common.subject_ids:
        timeline = common.timelines[sid]
        quality = subject_quality(sid, timeline)
        quality_rows.append(quality)

        if quality['duplicate_timestamps'] > 0:
            msg = (f"{sid}: {quality['duplicate_timestamps']} duplicate timestamp(s) "
                   f"after alignment; keeping first occurrence")
            warnings.warn(msg, InvariantViolation, stacklevel=2)
            logger.warning(f"  {msg}")
            issues.append({SUBJECT_COL: sid, 'stage': 'assemble',
                           'error': 'InvariantViolation', 'reason': msg})
            timeline = drop_duplicate_timestamps(timeline)
            quality.update({k: v for k, v in subject_quality(sid, timeline).items()
                            if k != 'duplicate_timestamps'})

        timeline = timeline.copy()
        timeline[SUBJECT_COL] = sid
        if window is not None and window.has_day_night:
            timeline[PERIOD_COL] = window.label_period(timeline[TIME_COL])
        per_subject[sid] = timeline

    combined = pd.concat(list(per_subject.values()), ignore_index=True)
    combined = combined.sort_values([SUBJECT_COL, TIME_COL], kind='mergesort').reset_index(drop=True)

    summary = pd.DataFrame(quality_rows)
    missing_cols = [c for c in summary.columns if c.startswith('missing_')]
    if missing_cols:
        summary[missing_cols] = summary[missing_cols].fillna(0).astype(int)

    cohort = Cohort(
        subject_ids=common.subject_ids,
        common_timestamps=common.common_timestamps,
        combined=combined,
        per_subject=per_subject,
        summary=summary,
        issues=issues,
    )
    logger.info(f"  Cohort: {len(cohort.subject_ids)} subjects, {len(combined)} rows, "
                f"mean {cohort.mean_observations:.1f} observations/subject")
    return cohort


def observation_summary(cohort: Cohort) -> pd.DataFrame:
    """Observation counts per subject followed by the cohort mean."""
    if cohort.is_empty:
        return pd.DataFrame(columns=[SUBJECT_COL, 'n_observations'])
    counts = cohort.summary[[SUBJECT_COL, 'n_observations']].copy()
    mean_row = pd.DataFrame([{SUBJECT_COL: 'cohort_mean', 'n_observations': cohort.mean_observations}])
    return pd.concat([counts, mean_row], ignore_index=True)
