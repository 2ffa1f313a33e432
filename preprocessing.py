#!/usr/bin/env python3
"""
Timeline Preprocessing Module

Turns a subject's raw heart-rate records into a canonical timeline:
- Timestamp parsing (month/day/year clock strings, UTC, second resolution)
- Heart-rate field parsing and plausibility masking
- Collision resolution for repeated timestamps (deduplication)
"""

import logging
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from errors import MalformedInputError

logger = logging.getLogger(__name__)

TIME_COL = 'timestamp'
HR_COL = 'heart_rate'
SUBJECT_COL = 'subject_id'

# Tried in order; the first format that parses a value wins
TIMESTAMP_FORMATS = (
    '%m/%d/%Y %I:%M:%S %p',
    '%m/%d/%Y %I:%M %p',
    '%m/%d/%Y %H:%M:%S',
    '%m/%d/%Y %H:%M',
    '%Y-%m-%d %H:%M:%S',
)


def _first_bad_row(mask: pd.Series) -> int:
    return int(np.flatnonzero(mask.to_numpy(dtype=bool))[0])


def parse_timestamps(values: pd.Series,
                     source: Optional[str] = None,
                     formats: Sequence[str] = TIMESTAMP_FORMATS) -> pd.Series:
    """
    Parse raw timestamp values into UTC instants at second resolution.

    Args:
        values: Raw timestamp column (strings or datetime-like)
        source: Name of the originating file, used in error messages
        formats: strptime formats tried in order

    Returns:
        Series of dtype datetime64[ns, UTC], same index as the input

    Raises:
        MalformedInputError: a value is empty or matches none of the formats
    """
    values = pd.Series(values)

    if pd.api.types.is_datetime64_any_dtype(values):
        parsed = values
    else:
        raw = values.astype('string').str.strip()
        parsed = pd.Series(pd.NaT, index=values.index, dtype='datetime64[ns]')
        for fmt in formats:
            remaining = parsed.isna() & raw.notna()
            if not remaining.any():
                break
            parsed.loc[remaining] = pd.to_datetime(raw[remaining], format=fmt, errors='coerce')

    bad = parsed.isna()
    if bad.any():
        row = _first_bad_row(bad)
        raise MalformedInputError(
            f"Unparsable timestamp ({int(bad.sum())} bad value(s))",
            source=source, row=row, value=values.iloc[row]
        )

    if parsed.dt.tz is None:
        parsed = parsed.dt.tz_localize('UTC')
    else:
        parsed = parsed.dt.tz_convert('UTC')
    return parsed.dt.floor('s').astype('datetime64[ns, UTC]')


def parse_heart_rate(values: pd.Series, source: Optional[str] = None) -> pd.Series:
    """
    Parse the heart-rate column into nullable integers.

    Empty cells become missing values. Anything else that is not numeric is
    malformed input.
    """
    values = pd.Series(values)
    numeric = pd.to_numeric(values, errors='coerce')

    blank = values.isna() | values.astype('string').str.strip().eq('').fillna(True)
    bad = numeric.isna() & ~blank
    if bad.any():
        row = _first_bad_row(bad)
        raise MalformedInputError(
            f"Non-numeric heart rate ({int(bad.sum())} bad value(s))",
            source=source, row=row, value=values.iloc[row]
        )

    return numeric.round().astype('Int64')


def mask_implausible_heart_rate(df: pd.DataFrame,
                                hr_min: float = 30,
                                hr_max: float = 220,
                                hr_col: str = HR_COL) -> Tuple[pd.DataFrame, int]:
    """
    Blank out heart-rate values outside the physiological range.

    Returns:
        Tuple of (cleaned copy, number of values masked)
    """
    out = df.copy()
    hr = out[hr_col]
    implausible = hr.notna() & ((hr < hr_min) | (hr > hr_max))
    n_masked = int(implausible.sum())
    if n_masked:
        out.loc[implausible, hr_col] = pd.NA
    return out, n_masked


def deduplicate_timestamps(df: pd.DataFrame,
                           interval_sec: int = 15,
                           time_col: str = TIME_COL,
                           source: Optional[str] = None) -> pd.DataFrame:
    """
    Spread colliding timestamps across nominal sampling slots.

    Samples are stably sorted by time. Each run of k samples sharing a
    timestamp t is spread to t, t+interval, ..., t+(k-1)*interval, keeping
    their original relative order. This is a single pass: a large burst may
    overflow onto an instant already held by a later sample, and that
    overflow is kept as is (the later sample is never moved). Such residual
    collisions are collapsed keep-first when the common timeline is built.
    Nothing is dropped here.

    Args:
        df: One subject's raw samples
        interval_sec: Nominal sampling interval (seconds)
        time_col: Name of timestamp column
        source: Name of the originating file, used in error messages

    Returns:
        New DataFrame sorted by time
    """
    if interval_sec <= 0:
        raise ValueError(f"interval_sec must be > 0, got {interval_sec}")

    out = df.copy()
    if len(out) == 0:
        return out.reset_index(drop=True)

    if not isinstance(out[time_col].dtype, pd.DatetimeTZDtype):
        out[time_col] = parse_timestamps(out[time_col], source=source)

    out = out.sort_values(time_col, kind='mergesort').reset_index(drop=True)
    step = pd.Timedelta(seconds=interval_sec)

    offsets = out.groupby(time_col, sort=False).cumcount()
    out[time_col] = out[time_col] + offsets * step
    out = out.sort_values(time_col, kind='mergesort').reset_index(drop=True)

    n_overflow = count_duplicate_timestamps(out, time_col=time_col)
    if n_overflow:
        logger.debug(f"{n_overflow} spread sample(s) overflowed onto occupied instants "
                     f"in {source or 'timeline'}")

    return out


def count_duplicate_timestamps(df: pd.DataFrame, time_col: str = TIME_COL) -> int:
    if len(df) == 0:
        return 0
    return int(df[time_col].duplicated(keep='first').sum())


def drop_duplicate_timestamps(df: pd.DataFrame, time_col: str = TIME_COL) -> pd.DataFrame:
    """Collapse repeated timestamps, keeping the first occurrence in timeline order."""
    if len(df) == 0:
        return df.reset_index(drop=True)
    return df[~df[time_col].duplicated(keep='first')].reset_index(drop=True)
