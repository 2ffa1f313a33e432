from typing import Iterable, Optional

import pandas as pd
import pytest

from study_window import StudyWindow

T0 = pd.Timestamp('2024-03-01 00:00:00', tz='UTC')


def at(seconds: float) -> pd.Timestamp:
    return T0 + pd.Timedelta(seconds=seconds)


def make_timeline(subject_id: str,
                  offsets_sec: Iterable[float],
                  hr: Optional[Iterable] = None,
                  start: pd.Timestamp = T0) -> pd.DataFrame:
    offsets_sec = list(offsets_sec)
    instants = pd.to_datetime([start + pd.Timedelta(seconds=s) for s in offsets_sec], utc=True).as_unit('ns')
    hr = list(hr) if hr is not None else [70] * len(offsets_sec)
    return pd.DataFrame({
        'subject_id': subject_id,
        'timestamp': instants,
        'heart_rate': pd.array(hr, dtype='Int64'),
    })


@pytest.fixture
def minute_window() -> StudyWindow:
    """[T0, T0+60s] at 15 s: five expected instants."""
    return StudyWindow(start=T0, end=at(60), sampling_interval_sec=15)
