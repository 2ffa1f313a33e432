#!/usr/bin/env python3
"""
Study Window Module

Holds the shared study configuration (window bounds, sampling interval,
excluded calendar dates, day/night boundaries) and the YAML config loading
used by the pipeline entry points.

The expected grid is derived from the window once and cached on the
instance, so a single StudyWindow can be shared read-only by every
per-subject task.
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from functools import cached_property
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional

import numpy as np
import pandas as pd
import yaml

from errors import DegenerateWindowError

logger = logging.getLogger(__name__)

DEFAULT_SAMPLING_INTERVAL_SEC = 15
SECONDS_PER_DAY = 86400


def to_utc_timestamp(value) -> pd.Timestamp:
    """Convert a config value (string, datetime, Timestamp) to a UTC Timestamp."""
    ts = pd.Timestamp(value)
    if ts is pd.NaT:
        raise ValueError(f"Invalid instant: {value!r}")
    if ts.tzinfo is None:
        ts = ts.tz_localize('UTC')
    return ts.tz_convert('UTC').as_unit('ns')


def to_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return pd.Timestamp(str(value)).date()


def parse_time_of_day(value) -> Optional[time]:
    """Parse 'HH:MM' (or 'HH:MM:SS') into a time; None passes through."""
    if value is None or isinstance(value, time):
        return value
    if isinstance(value, int):
        # YAML 1.1 reads unquoted 7:00 / 22:00:00 as base-60 integers.
        # H:M gives at most 23*60+59; H:M:S with h >= 1 gives at least 3600.
        if 0 <= value < 24 * 60:
            return time(value // 60, value % 60)
        if 3600 <= value < SECONDS_PER_DAY:
            return time(value // 3600, (value // 60) % 60, value % 60)
        raise ValueError(f"Invalid time of day: {value!r} (quote times as 'HH:MM')")
    for fmt in ('%H:%M', '%H:%M:%S'):
        try:
            return datetime.strptime(str(value).strip(), fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Invalid time of day: {value!r}")


def is_daytime(instant: pd.Timestamp, day_start: time, day_end: time) -> bool:
    """Fixed-window time-of-day predicate; handles windows wrapping midnight."""
    t = instant.time()
    if day_start <= day_end:
        return day_start <= t < day_end
    return t >= day_start or t < day_end


@dataclass(frozen=True)
class StudyWindow:
    """Shared, immutable study configuration."""
    start: pd.Timestamp
    end: pd.Timestamp
    sampling_interval_sec: int = DEFAULT_SAMPLING_INTERVAL_SEC
    excluded_dates: FrozenSet[date] = field(default_factory=frozenset)
    day_start: Optional[time] = None
    day_end: Optional[time] = None

    def __post_init__(self):
        object.__setattr__(self, 'start', to_utc_timestamp(self.start))
        object.__setattr__(self, 'end', to_utc_timestamp(self.end))
        object.__setattr__(self, 'excluded_dates',
                           frozenset(to_date(d) for d in self.excluded_dates))
        object.__setattr__(self, 'day_start', parse_time_of_day(self.day_start))
        object.__setattr__(self, 'day_end', parse_time_of_day(self.day_end))

        if self.sampling_interval_sec <= 0:
            raise ValueError(f"sampling_interval_sec must be > 0, got {self.sampling_interval_sec}")
        if self.end < self.start:
            raise ValueError(f"Window end ({self.end}) is before start ({self.start})")
        if (self.day_start is None) != (self.day_end is None):
            raise ValueError("day_start and day_end must be given together")

    @classmethod
    def from_config(cls, window_cfg: Dict) -> 'StudyWindow':
        """Build a window from the 'window' section of the YAML config."""
        if window_cfg.get('start') is None or window_cfg.get('end') is None:
            raise ValueError("Config 'window' section needs 'start' and 'end'")
        return cls(
            start=window_cfg['start'],
            end=window_cfg['end'],
            sampling_interval_sec=int(window_cfg.get('sampling_interval_sec',
                                                     DEFAULT_SAMPLING_INTERVAL_SEC)),
            excluded_dates=window_cfg.get('excluded_dates') or [],
            day_start=window_cfg.get('day_start'),
            day_end=window_cfg.get('day_end'),
        )

    @property
    def interval(self) -> pd.Timedelta:
        return pd.Timedelta(seconds=self.sampling_interval_sec)

    @property
    def duration_sec(self) -> float:
        return (self.end - self.start).total_seconds()

    @property
    def has_day_night(self) -> bool:
        return self.day_start is not None

    @cached_property
    def expected_grid(self) -> pd.DatetimeIndex:
        """
        Instants at which a sample should exist: every interval from start to
        end (inclusive), minus instants on excluded calendar dates.
        """
        grid = pd.date_range(self.start, self.end, freq=self.interval, unit='ns')
        if self.excluded_dates:
            on_excluded = pd.Index(grid.date).isin(list(self.excluded_dates))
            grid = grid[~np.asarray(on_excluded)]
        logger.debug(f"Expected grid: {len(grid)} instants "
                     f"({self.start} to {self.end}, every {self.sampling_interval_sec}s)")
        return grid

    def require_grid(self) -> pd.DatetimeIndex:
        """Return the expected grid, failing if the configuration leaves it empty."""
        grid = self.expected_grid
        if len(grid) == 0:
            raise DegenerateWindowError(
                f"Expected grid is empty for window {self.start} - {self.end} "
                f"with {len(self.excluded_dates)} excluded date(s)"
            )
        return grid

    @cached_property
    def window_dates(self) -> List[date]:
        """All calendar dates touched by the window."""
        return list(pd.date_range(self.start.normalize(), self.end.normalize(), freq='D').date)

    @property
    def eligible_dates(self) -> List[date]:
        return [d for d in self.window_dates if d not in self.excluded_dates]

    def is_excluded(self, instants: pd.Series) -> pd.Series:
        """Boolean mask of instants falling on an excluded date."""
        if not self.excluded_dates:
            return pd.Series(False, index=instants.index)
        return instants.dt.date.isin(self.excluded_dates)

    def label_period(self, instants: pd.Series) -> pd.Series:
        """Tag each instant 'day' or 'night' using the configured boundaries."""
        if not self.has_day_night:
            raise ValueError("Window has no day/night boundaries configured")
        mask = instants.apply(lambda ts: is_daytime(ts, self.day_start, self.day_end))
        return mask.map({True: 'day', False: 'night'})


def create_default_config() -> dict:
    """Create default configuration template."""
    return {
        'project': {
            'name': 'hr-cohort-alignment',
            'input_dir': './data',
            'output_dir': './output',
            'file_pattern': '*.csv*',
            'subject_map': None,  # Optional {file name: subject id}
        },
        'window': {
            'start': '2024-01-01 00:00:00',
            'end': '2024-01-07 23:59:45',
            'sampling_interval_sec': DEFAULT_SAMPLING_INTERVAL_SEC,
            'excluded_dates': [],
            'day_start': '07:00',
            'day_end': '22:00',
        },
        'qualification': {
            'strategy': 'wear_time',  # One of: wear_time, daily_coverage, coverage_ratio
            'wear_time_threshold': 0.8,
            'coverage_threshold': 0.8,
            'min_day_fraction': 0.8,
            'min_days_fraction': 0.5,
        },
        'cleaning': {
            'hr_min': 30,
            'hr_max': 220,
        },
        'processing': {
            'max_workers': 1,
        },
    }


def _merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path) -> dict:
    """Load YAML configuration file, filling gaps from the default template."""
    with open(config_path, 'r') as f:
        user_cfg = yaml.safe_load(f) or {}
    if not isinstance(user_cfg, dict):
        raise ValueError(f"Config root must be a mapping: {config_path}")
    return _merge(create_default_config(), user_cfg)


def write_config(config: dict, config_path) -> Path:
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, 'w') as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)
    return config_path
