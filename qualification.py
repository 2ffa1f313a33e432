#!/usr/bin/env python3
"""
Subject Qualification Module

Admit/reject decisions for the merged cohort. Each strategy is a pure
threshold predicate over one coverage metric; every subject gets exactly one
decision, with a reason when rejected.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Dict, Optional

import pandas as pd

from coverage_analysis import (
    CoverageReport, DailyCoverage,
    compute_coverage_report, compute_daily_coverage, compute_wear_time_ratio,
)
from errors import EmptyTimelineError
from study_window import StudyWindow

logger = logging.getLogger(__name__)

STRATEGIES = ('wear_time', 'daily_coverage', 'coverage_ratio')


@dataclass(frozen=True)
class QualificationThresholds:
    wear_time: float = 0.8
    coverage_ratio: float = 0.8
    min_day_fraction: float = 0.8
    min_days_fraction: float = 0.5

    @classmethod
    def from_config(cls, qual_cfg: Dict) -> 'QualificationThresholds':
        return cls(
            wear_time=float(qual_cfg.get('wear_time_threshold', 0.8)),
            coverage_ratio=float(qual_cfg.get('coverage_threshold', 0.8)),
            min_day_fraction=float(qual_cfg.get('min_day_fraction', 0.8)),
            min_days_fraction=float(qual_cfg.get('min_days_fraction', 0.5)),
        )


@dataclass(frozen=True)
class QualificationDecision:
    subject_id: str
    admitted: bool
    strategy: str
    value: Optional[float] = None
    threshold: Optional[float] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


def qualify_by_wear_time(subject_id: str, ratio: float, threshold: float = 0.8) -> QualificationDecision:
    admitted = bool(ratio >= threshold)
    return QualificationDecision(
        subject_id=subject_id,
        admitted=admitted,
        strategy='wear_time',
        value=ratio,
        threshold=threshold,
        reason=None if admitted else f"wear time ratio {ratio:.3f} below {threshold}",
    )


def qualify_by_coverage_ratio(report: CoverageReport, threshold: float = 0.8) -> QualificationDecision:
    admitted = bool(report.coverage_ratio >= threshold)
    return QualificationDecision(
        subject_id=report.subject_id,
        admitted=admitted,
        strategy='coverage_ratio',
        value=report.coverage_ratio,
        threshold=threshold,
        reason=None if admitted else (
            f"coverage ratio {report.coverage_ratio:.3f} below {threshold} "
            f"({report.missing_count}/{report.total_expected} instants missing)"
        ),
    )


def qualify_by_daily_coverage(daily: DailyCoverage) -> QualificationDecision:
    admitted = daily.passed
    return QualificationDecision(
        subject_id=daily.subject_id,
        admitted=admitted,
        strategy='daily_coverage',
        value=float(daily.days_meeting),
        threshold=daily.required_days,
        reason=None if admitted else (
            f"{daily.days_meeting} of {daily.eligible_days} days met daily coverage, "
            f"{daily.required_days:g} required"
        ),
    )


def qualify_subject(timeline: pd.DataFrame,
                    window: StudyWindow,
                    subject_id: str,
                    strategy: str = 'wear_time',
                    thresholds: Optional[QualificationThresholds] = None,
                    coverage: Optional[CoverageReport] = None,
                    daily: Optional[DailyCoverage] = None) -> QualificationDecision:
    """
    Compute the strategy's metric for a subject and apply its threshold.

    Args:
        timeline: Deduplicated samples of the subject
        window: Study window
        subject_id: Subject identifier
        strategy: One of STRATEGIES
        thresholds: Threshold values (defaults when None)
        coverage: Precomputed CoverageReport, reused for 'coverage_ratio'
        daily: Precomputed DailyCoverage, reused for 'daily_coverage'

    Returns:
        QualificationDecision (an empty timeline is a rejection, not an error)
    """
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown qualification strategy '{strategy}'. Use one of {STRATEGIES}")
    thresholds = thresholds or QualificationThresholds()

    if len(timeline) == 0:
        logger.warning(f"  {subject_id}: empty timeline - rejected")
        return QualificationDecision(subject_id, False, strategy, reason='empty timeline')

    try:
        if strategy == 'wear_time':
            ratio = compute_wear_time_ratio(timeline, window)
            decision = qualify_by_wear_time(subject_id, ratio, thresholds.wear_time)
        elif strategy == 'daily_coverage':
            if daily is None:
                daily = compute_daily_coverage(
                    timeline, window, subject_id=subject_id,
                    min_day_fraction=thresholds.min_day_fraction,
                    min_days_fraction=thresholds.min_days_fraction,
                )
            decision = qualify_by_daily_coverage(daily)
        else:
            if coverage is None:
                coverage = compute_coverage_report(timeline, window, subject_id=subject_id)
            decision = qualify_by_coverage_ratio(coverage, thresholds.coverage_ratio)
    except EmptyTimelineError as e:
        return QualificationDecision(subject_id, False, strategy, reason=str(e))

    if decision.admitted:
        logger.info(f"  ✓ {subject_id} admitted ({strategy}={decision.value:.3f})")
    else:
        logger.info(f"  ✗ {subject_id} rejected: {decision.reason}")
    return decision
