#!/usr/bin/env python3
"""
HR Cohort Alignment Pipeline - Main Script

Pipeline for:
1. Loading per-subject heart-rate exports
2. Timestamp deduplication and coverage analysis per subject
3. Subject qualification against coverage / wear-time thresholds
4. Common-timeline resolution across admitted subjects
5. Cohort assembly and output tables

All computation happens in the component modules; this script reads the
configuration, calls them in order and writes every output file.
"""

import argparse
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict

import pandas as pd

from batch_process_subjects import (
    SubjectResult, build_diagnostics, log_batch_summary, process_subjects,
)
from cohort_assembly import Cohort, assemble_cohort, observation_summary
from common_timeline import (
    CommonTimeline, alignment_exclusions, check_alignment, resolve_common_timeline,
)
from data_loading import collect_subject_sources, discover_subject_files
from errors import DegenerateWindowError
from preprocessing import SUBJECT_COL, TIME_COL
from qualification import STRATEGIES, QualificationThresholds
from study_window import StudyWindow, create_default_config, load_config, write_config

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    window: StudyWindow
    results: Dict[str, SubjectResult]
    common: CommonTimeline
    cohort: Cohort
    diagnostics: pd.DataFrame
    output_dir: Path


def _safe_name(subject_id: str) -> str:
    return str(subject_id).strip().replace(' ', '_').replace('/', '_')


def coverage_report_table(results: Dict[str, SubjectResult], common: CommonTimeline) -> pd.DataFrame:
    rows = []
    for sid, result in results.items():
        row = result.report_row()
        row['common_count'] = common.common_count.get(sid)
        rows.append(row)
    return pd.DataFrame(rows)


def write_outputs(output_dir: Path,
                  results: Dict[str, SubjectResult],
                  common: CommonTimeline,
                  cohort: Cohort,
                  diagnostics: pd.DataFrame) -> None:
    """Write per-subject series, coverage reports, cohort tables and diagnostics."""
    subjects_dir = output_dir / 'subjects'
    subjects_dir.mkdir(parents=True, exist_ok=True)

    for sid, result in results.items():
        if result.missing is not None:
            result.missing.to_csv(subjects_dir / f'{_safe_name(sid)}_missing.csv', index=False)
    for sid, timeline in cohort.per_subject.items():
        timeline.to_csv(subjects_dir / f'{_safe_name(sid)}_aligned.csv', index=False)
    logger.info(f"  Saved per-subject series to {subjects_dir}")

    coverage_report_table(results, common).to_csv(output_dir / 'coverage_report.csv', index=False)

    daily_frames = [r.daily.per_day for r in results.values() if r.daily is not None]
    if daily_frames:
        pd.concat(daily_frames, ignore_index=True).to_csv(output_dir / 'daily_coverage.csv', index=False)

    pd.DataFrame({TIME_COL: common.common_timestamps}).to_csv(
        output_dir / 'common_timestamps.csv', index=False)
    cohort.combined.to_csv(output_dir / 'cohort_combined.csv', index=False)
    cohort.summary.to_csv(output_dir / 'cohort_quality.csv', index=False)
    observation_summary(cohort).to_csv(output_dir / 'observation_summary.csv', index=False)
    diagnostics.to_csv(output_dir / 'diagnostics.csv', index=False)
    logger.info(f"  Saved cohort tables and diagnostics to {output_dir}")


def run_alignment_pipeline(cfg: dict) -> PipelineResult:
    """
    Main pipeline execution.

    Args:
        cfg: Configuration dict (see create_default_config)

    Raises:
        DegenerateWindowError: the study window has no expected instants
        FileNotFoundError: no input files
    """
    logger.info("=" * 80)
    logger.info("HR Cohort Alignment Pipeline")
    logger.info("=" * 80)

    output_dir = Path(cfg['project']['output_dir'])
    output_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"Output directory: {output_dir}")

    # ========================================================================
    # STEP 1: Study window
    # ========================================================================
    logger.info("\n[STEP 1] Building study window...")
    window = StudyWindow.from_config(cfg['window'])
    grid = window.require_grid()
    logger.info(f"  Window: {window.start} to {window.end}, every {window.sampling_interval_sec}s")
    logger.info(f"  Expected instants: {len(grid)} "
                f"({len(window.excluded_dates)} excluded date(s))")

    qual_cfg = cfg['qualification']
    strategy = qual_cfg.get('strategy', 'wear_time')
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown qualification strategy '{strategy}'. Use one of {STRATEGIES}")
    thresholds = QualificationThresholds.from_config(qual_cfg)

    # ========================================================================
    # STEP 2: Load subject files
    # ========================================================================
    logger.info("\n[STEP 2] Loading subject files...")
    files = discover_subject_files(Path(cfg['project']['input_dir']),
                                   cfg['project'].get('file_pattern', '*.csv*'))
    logger.info(f"  Found {len(files)} input files")
    sources, read_failures = collect_subject_sources(files, cfg['project'].get('subject_map'))

    # ========================================================================
    # STEP 3: Per-subject deduplication, coverage and qualification
    # ========================================================================
    logger.info(f"\n[STEP 3] Processing {len(sources)} subjects (strategy: {strategy})...")
    results = process_subjects(
        sources, window,
        strategy=strategy,
        thresholds=thresholds,
        hr_min=cfg['cleaning'].get('hr_min', 30),
        hr_max=cfg['cleaning'].get('hr_max', 220),
        max_workers=int(cfg['processing'].get('max_workers', 1)),
    )
    log_batch_summary(results)

    # ========================================================================
    # STEP 4: Common timeline across admitted subjects
    # ========================================================================
    logger.info("\n[STEP 4] Resolving common timeline...")
    admitted = {sid: r.timeline for sid, r in results.items() if r.admitted}
    logger.info(f"  Admitted subjects: {len(admitted)}/{len(results)}")
    common = resolve_common_timeline(admitted)
    if common.is_empty:
        logger.warning("  No common timeline - the cohort will be empty")
    else:
        logger.info(f"  Max common count: {common.max_common_count}")

    # ========================================================================
    # STEP 5: Cohort assembly
    # ========================================================================
    logger.info("\n[STEP 5] Assembling cohort...")
    cohort = assemble_cohort(common, window=window)
    misaligned = check_alignment(common)
    if misaligned:
        logger.warning(f"  Timestamp sets differ from the common set for: {misaligned}")

    align_rows = alignment_exclusions(common)
    for row in align_rows:
        row['source'] = results[row[SUBJECT_COL]].source
    diagnostics = build_diagnostics(results, read_failures, align_rows + cohort.issues)

    # ========================================================================
    # STEP 6: Outputs
    # ========================================================================
    logger.info("\n[STEP 6] Writing outputs...")
    write_outputs(output_dir, results, common, cohort, diagnostics)

    logger.info("\n" + "=" * 80)
    logger.info("PIPELINE SUMMARY")
    logger.info("=" * 80)
    logger.info(f"  Subjects processed: {len(results)}")
    logger.info(f"  Subjects in cohort: {len(cohort.subject_ids)}")
    logger.info(f"  Common timestamps: {len(common.common_timestamps)}")
    logger.info(f"  Mean observations per subject: {cohort.mean_observations:.2f}")
    logger.info(f"  Excluded / failed entries: {len(diagnostics)}")
    for _, row in diagnostics.iterrows():
        logger.info(f"    {row[SUBJECT_COL]} [{row['stage']}]: {row['reason']}")

    logger.info("\n" + "=" * 80)
    logger.info("Pipeline completed!")
    logger.info(f"Output saved to: {output_dir}")
    logger.info("=" * 80)

    return PipelineResult(window, results, common, cohort, diagnostics, output_dir)


def main(argv=None) -> int:
    """Command-line interface."""
    parser = argparse.ArgumentParser(
        description='Align wearable heart-rate series across a study cohort',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
            Examples:
            # Run with existing config
            python run_alignment.py --config config.yaml

            # Create default config template
            python run_alignment.py --config config.yaml --create-config
            """
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        required=True,
        help='Path to YAML configuration file'
    )

    parser.add_argument(
        '--create-config',
        action='store_true',
        help='Create default config template'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    config_path = args.config

    if args.create_config:
        write_config(create_default_config(), config_path)
        print(f"Created default config template: {config_path}")
        print("Please edit the config file with your data paths and settings.")
        return 0

    if not Path(config_path).exists():
        logger.error(f"Config file not found: {config_path}")
        return 1

    try:
        run_alignment_pipeline(load_config(config_path))
    except DegenerateWindowError as e:
        logger.error(f"Degenerate study window: {e}")
        return 1
    except FileNotFoundError as e:
        logger.error(f"Input error: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    return 0


if __name__ == '__main__':
    raise SystemExit(main())
