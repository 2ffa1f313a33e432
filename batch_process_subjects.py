#!/usr/bin/env python3
"""
Batch Processing for Multiple Subjects

Runs the per-subject part of the pipeline (parsing, deduplication, coverage,
qualification) for every subject, optionally in parallel worker processes.
Results are keyed by subject id, so the outcome does not depend on
completion order. Per-subject failures are recorded, never fatal.
"""

import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, List, Optional

import pandas as pd

from coverage_analysis import (
    CoverageReport, DailyCoverage,
    compute_coverage_report, compute_daily_coverage, compute_wear_time_ratio,
    missing_instants_frame,
)
from data_loading import SubjectSource, create_data_summary, prepare_samples
from errors import DegenerateWindowError, EmptyTimelineError, MalformedInputError
from preprocessing import SUBJECT_COL, deduplicate_timestamps
from qualification import QualificationDecision, QualificationThresholds, qualify_subject
from study_window import StudyWindow

logger = logging.getLogger(__name__)

DIAGNOSTIC_COLUMNS = [SUBJECT_COL, 'source', 'stage', 'error', 'reason']


@dataclass
class SubjectResult:
    """Everything computed for one subject before cross-subject alignment."""
    subject_id: str
    status: str  # ADMITTED, REJECTED, FAILED, ERROR
    source: str = ''
    timeline: Optional[pd.DataFrame] = None
    missing: Optional[pd.DataFrame] = None
    coverage: Optional[CoverageReport] = None
    daily: Optional[DailyCoverage] = None
    wear_time_ratio: Optional[float] = None
    decision: Optional[QualificationDecision] = None
    data_summary: Optional[Dict] = None
    n_raw_samples: int = 0
    n_hr_masked: int = 0
    error: Optional[str] = None
    reason: Optional[str] = None

    @property
    def admitted(self) -> bool:
        return self.status == 'ADMITTED'

    def report_row(self) -> Dict:
        row = {
            SUBJECT_COL: self.subject_id,
            'status': self.status,
            'n_raw_samples': self.n_raw_samples,
            'n_samples': len(self.timeline) if self.timeline is not None else 0,
            'n_hr_masked': self.n_hr_masked,
        }
        if self.data_summary is not None:
            row.update({k: v for k, v in self.data_summary.items() if k != 'n_samples'})
        if self.coverage is not None:
            row.update({k: v for k, v in self.coverage.to_dict().items() if k != 'subject_id'})
        row['wear_time_ratio'] = self.wear_time_ratio
        if self.daily is not None:
            row['days_meeting_coverage'] = self.daily.days_meeting
            row['eligible_days'] = self.daily.eligible_days
        if self.decision is not None:
            row['strategy'] = self.decision.strategy
            row['admitted'] = self.decision.admitted
        row['reason'] = self.reason
        return row

    def diagnostics_row(self) -> Optional[Dict]:
        if self.admitted:
            return None
        return {
            SUBJECT_COL: self.subject_id,
            'source': self.source,
            'stage': 'qualify' if self.status == 'REJECTED' else 'load',
            'error': self.error,
            'reason': self.reason,
        }


def process_subject(source: SubjectSource,
                    window: StudyWindow,
                    strategy: str = 'wear_time',
                    thresholds: Optional[QualificationThresholds] = None,
                    hr_min: float = 30,
                    hr_max: float = 220) -> SubjectResult:
    """
    Process a single subject: parse, deduplicate, measure coverage, qualify.

    Returns:
        SubjectResult with status ADMITTED / REJECTED, or FAILED / ERROR when
        the subject's input could not be processed
    """
    subject_id = source.subject_id
    logger.info(f"Processing subject: {subject_id}")
    thresholds = thresholds or QualificationThresholds()
    raw = source.raw_records()

    try:
        samples, n_masked = prepare_samples(raw, source=source.source_name,
                                            hr_min=hr_min, hr_max=hr_max)
        if n_masked:
            logger.warning(f"  {subject_id}: masked {n_masked} implausible heart-rate values")
        timeline = deduplicate_timestamps(samples, interval_sec=window.sampling_interval_sec,
                                          source=source.source_name)
        logger.info(f"  {len(raw)} raw records -> {len(timeline)} timeline samples")

        coverage = compute_coverage_report(timeline, window, subject_id=subject_id)
        missing = missing_instants_frame(timeline, window, subject_id=subject_id)

        try:
            wear_time_ratio = compute_wear_time_ratio(timeline, window)
        except EmptyTimelineError:
            wear_time_ratio = None

        try:
            daily = compute_daily_coverage(timeline, window, subject_id=subject_id,
                                           min_day_fraction=thresholds.min_day_fraction,
                                           min_days_fraction=thresholds.min_days_fraction)
        except EmptyTimelineError:
            daily = None

        decision = qualify_subject(timeline, window, subject_id,
                                   strategy=strategy, thresholds=thresholds,
                                   coverage=coverage, daily=daily)

    except DegenerateWindowError:
        raise

    except MalformedInputError as e:
        logger.error(f"  ✗ Malformed input for {subject_id}: {e}")
        return SubjectResult(subject_id, 'FAILED', source=source.source_name,
                             n_raw_samples=len(raw), error='MalformedInputError', reason=str(e))

    except Exception as e:
        logger.error(f"  ✗ Unexpected error for {subject_id}: {str(e)}")
        return SubjectResult(subject_id, 'ERROR', source=source.source_name,
                             n_raw_samples=len(raw), error=type(e).__name__, reason=str(e))

    return SubjectResult(
        subject_id=subject_id,
        status='ADMITTED' if decision.admitted else 'REJECTED',
        source=source.source_name,
        timeline=timeline,
        missing=missing,
        coverage=coverage,
        daily=daily,
        wear_time_ratio=wear_time_ratio,
        decision=decision,
        data_summary=create_data_summary(timeline),
        n_raw_samples=len(raw),
        n_hr_masked=n_masked,
        error=None if decision.admitted else 'Rejected',
        reason=decision.reason,
    )


def process_subjects(sources: Dict[str, SubjectSource],
                     window: StudyWindow,
                     strategy: str = 'wear_time',
                     thresholds: Optional[QualificationThresholds] = None,
                     hr_min: float = 30,
                     hr_max: float = 220,
                     max_workers: int = 1) -> Dict[str, SubjectResult]:
    """
    Process every subject, serially or across worker processes.

    Args:
        sources: {subject_id: SubjectSource}
        window: Shared study window
        strategy: Qualification strategy
        thresholds: Qualification thresholds
        hr_min, hr_max: Plausible heart-rate range
        max_workers: Number of worker processes (1 = in-process)

    Returns:
        {subject_id: SubjectResult}, ordered by subject id
    """
    kwargs = dict(window=window, strategy=strategy, thresholds=thresholds,
                  hr_min=hr_min, hr_max=hr_max)
    results: Dict[str, SubjectResult] = {}

    max_workers = min(max_workers, len(sources))
    if max_workers > 1:
        logger.info(f"  Using {max_workers} worker processes")
        with ProcessPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(process_subject, source, **kwargs): subject_id
                       for subject_id, source in sources.items()}
            for future in as_completed(futures):
                results[futures[future]] = future.result()
    else:
        for idx, (subject_id, source) in enumerate(sources.items(), 1):
            logger.info(f"[{idx}/{len(sources)}] {subject_id}")
            results[subject_id] = process_subject(source, **kwargs)

    return dict(sorted(results.items()))


def build_diagnostics(results: Dict[str, SubjectResult],
                      read_failures: Optional[List[Dict]] = None,
                      issues: Optional[List[Dict]] = None) -> pd.DataFrame:
    """Exclusions and problems for the run: one row per rejected/failed subject or issue
    (alignment losses, cohort invariant warnings)."""
    rows = list(read_failures or [])
    rows.extend(r.diagnostics_row() for r in results.values() if not r.admitted)
    rows.extend(issues or [])
    if not rows:
        return pd.DataFrame(columns=DIAGNOSTIC_COLUMNS)
    return pd.DataFrame(rows).reindex(columns=DIAGNOSTIC_COLUMNS)


def log_batch_summary(results: Dict[str, SubjectResult]) -> None:
    logger.info("\n" + "=" * 80)
    logger.info("BATCH PROCESSING SUMMARY")
    logger.info("=" * 80)

    summary_df = pd.DataFrame([{'subject_id': sid, 'status': r.status} for sid, r in results.items()],
                              columns=['subject_id', 'status'])
    logger.info(f"\nTotal subjects: {len(summary_df)}")
    logger.info(f"Admitted: {int((summary_df['status'] == 'ADMITTED').sum())}")
    logger.info(f"Not admitted: {int((summary_df['status'] != 'ADMITTED').sum())}")

    logger.info("\nStatus breakdown:")
    for status, count in summary_df['status'].value_counts().items():
        logger.info(f"  {status}: {count}")
