#!/usr/bin/env python3
"""
Data Loading Module

Utilities for locating and reading per-subject heart-rate exports.
Supports one file per subject (ID from a mapping or the file name) and
files carrying a subject identifier column (split into one frame per subject).
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pandas as pd

from preprocessing import (
    HR_COL, SUBJECT_COL, TIME_COL,
    mask_implausible_heart_rate, parse_heart_rate, parse_timestamps,
)

logger = logging.getLogger(__name__)

TIME_OPTIONS = ['timestamp', 'time', 'datetime', 'date_time', 'date time']
HR_OPTIONS = ['heart_rate', 'heartrate', 'heart rate', 'hr', 'bpm', 'value']
SUBJECT_OPTIONS = ['subject_id', 'subject', 'participant_id', 'participant', 'id']


@dataclass
class SubjectSource:
    """Raw records for one subject, possibly gathered from several files."""
    subject_id: str
    frames: List[pd.DataFrame] = field(default_factory=list)
    files: List[str] = field(default_factory=list)

    @property
    def source_name(self) -> str:
        return ', '.join(self.files)

    def raw_records(self) -> pd.DataFrame:
        if not self.frames:
            return pd.DataFrame(columns=[SUBJECT_COL, TIME_COL, HR_COL])
        return pd.concat(self.frames, ignore_index=True)


def _find_column(columns, options) -> Optional[str]:
    for opt in options:
        if opt in columns:
            return opt
    return None


def file_stem(path: Path) -> str:
    """File name without data suffixes ('s01.csv.gz' -> 's01')."""
    name = Path(path).name
    for suffix in ('.gz', '.zip', '.bz2', '.csv', '.txt'):
        if name.lower().endswith(suffix):
            name = name[:-len(suffix)]
    return name


def subject_id_for_file(path: Path, subject_map: Optional[Dict[str, str]] = None) -> str:
    """Resolve a subject ID for a file without an ID column."""
    path = Path(path)
    if subject_map:
        for key in (path.name, file_stem(path), str(path)):
            if key in subject_map:
                return str(subject_map[key])
    return file_stem(path)


def discover_subject_files(input_dir: Path, pattern: str = '*.csv*') -> List[Path]:
    """
    List input files matching the pattern, sorted by name.

    Raises:
        FileNotFoundError: directory missing or no file matches
    """
    input_dir = Path(input_dir)
    if not input_dir.is_dir():
        raise FileNotFoundError(f"Input directory not found: {input_dir}")

    files = sorted(p for p in input_dir.glob(pattern) if p.is_file())
    if len(files) == 0:
        raise FileNotFoundError(f"No files matching '{pattern}' in {input_dir}")
    return files


def read_hr_file(data_path: Path,
                 subject_map: Optional[Dict[str, str]] = None) -> Dict[str, pd.DataFrame]:
    """
    Read one heart-rate export with flexible column detection.

    Values are kept as raw strings; parsing happens per subject so a bad
    record only costs that subject.

    Args:
        data_path: Path to CSV (compression inferred from the suffix)
        subject_map: Optional {file name or stem: subject id}

    Returns:
        {subject_id: DataFrame[subject_id, timestamp, heart_rate, ...passthrough]}
    """
    data_path = Path(data_path)

    try:
        df = pd.read_csv(data_path, dtype=str, compression='infer')
    except Exception as e:
        raise IOError(f"Failed to read {data_path}: {str(e)}")

    # Normalize column names
    df.columns = [c.strip().lower() for c in df.columns]

    time_col = _find_column(df.columns, TIME_OPTIONS)
    if time_col is None:
        raise ValueError(f"No time column found in {data_path.name}. Columns: {df.columns.tolist()}")

    hr_col = _find_column(df.columns, HR_OPTIONS)
    if hr_col is None:
        raise ValueError(f"No heart-rate column found in {data_path.name}. Columns: {df.columns.tolist()}")

    subject_col = _find_column(df.columns, SUBJECT_OPTIONS)

    df = df.rename(columns={time_col: TIME_COL, hr_col: HR_COL})
    if subject_col is not None:
        df = df.rename(columns={subject_col: SUBJECT_COL})
        df[SUBJECT_COL] = df[SUBJECT_COL].str.strip()
    else:
        df.insert(0, SUBJECT_COL, subject_id_for_file(data_path, subject_map))

    ordered = [SUBJECT_COL, TIME_COL, HR_COL]
    df = df[ordered + [c for c in df.columns if c not in ordered]]

    missing_id = df[SUBJECT_COL].isna()
    if missing_id.any():
        logger.warning(f"  {data_path.name}: dropping {int(missing_id.sum())} rows without a subject id")
        df = df[~missing_id]

    return {str(sid): part.reset_index(drop=True)
            for sid, part in df.groupby(SUBJECT_COL, sort=True)}


def collect_subject_sources(files: List[Path],
                            subject_map: Optional[Dict[str, str]] = None
                            ) -> Tuple[Dict[str, SubjectSource], List[dict]]:
    """
    Read every input file and gather raw records per subject.

    Returns:
        Tuple of ({subject_id: SubjectSource}, read failures as diagnostics rows)
    """
    sources: Dict[str, SubjectSource] = {}
    failures = []

    for path in files:
        try:
            per_subject = read_hr_file(path, subject_map=subject_map)
        except (IOError, ValueError) as e:
            logger.warning(f"  ✗ Could not read {path.name}: {e}")
            failures.append({
                'subject_id': subject_id_for_file(path, subject_map),
                'source': path.name,
                'stage': 'load',
                'error': type(e).__name__,
                'reason': str(e),
            })
            continue

        for subject_id, frame in per_subject.items():
            src = sources.setdefault(subject_id, SubjectSource(subject_id))
            src.frames.append(frame)
            src.files.append(path.name)

    logger.info(f"  Read {len(files) - len(failures)}/{len(files)} files, {len(sources)} subjects")
    return dict(sorted(sources.items())), failures


def prepare_samples(raw: pd.DataFrame,
                    source: Optional[str] = None,
                    hr_min: float = 30,
                    hr_max: float = 220) -> Tuple[pd.DataFrame, int]:
    """
    Parse a subject's raw records into typed samples.

    Returns:
        Tuple of (samples with UTC timestamps and Int64 heart rate,
                  number of implausible heart-rate values masked)

    Raises:
        MalformedInputError: unparsable timestamp or heart-rate value
    """
    samples = raw.copy()
    samples[TIME_COL] = parse_timestamps(samples[TIME_COL], source=source)
    samples[HR_COL] = parse_heart_rate(samples[HR_COL], source=source)
    return mask_implausible_heart_rate(samples, hr_min=hr_min, hr_max=hr_max)


def create_data_summary(samples: pd.DataFrame) -> Dict:
    """Summary statistics for one subject's samples."""
    if len(samples) == 0:
        return {'n_samples': 0, 'time_start': None, 'time_end': None,
                'hr_mean': None, 'hr_min': None, 'hr_max': None, 'hr_missing': 0}
    hr = samples[HR_COL].astype('float')
    return {
        'n_samples': len(samples),
        'time_start': samples[TIME_COL].min(),
        'time_end': samples[TIME_COL].max(),
        'hr_mean': hr.mean(),
        'hr_min': hr.min(),
        'hr_max': hr.max(),
        'hr_missing': int(hr.isna().sum()),
    }
