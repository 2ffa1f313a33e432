import pandas as pd
import pytest

from cohort_assembly import assemble_cohort, observation_summary
from common_timeline import CommonTimeline, resolve_common_timeline
from conftest import T0, at, make_timeline
from errors import InvariantViolation
from study_window import StudyWindow


def _aligned_pair() -> CommonTimeline:
    return resolve_common_timeline({
        'B': make_timeline('B', [0, 15, 45], hr=[60, None, 62]),
        'A': make_timeline('A', [0, 15, 30, 45, 60]),
    })


def test_combined_table_is_ordered_by_subject_then_time() -> None:
    cohort = assemble_cohort(_aligned_pair())

    combined = cohort.combined
    assert combined['subject_id'].tolist() == ['A', 'A', 'A', 'B', 'B', 'B']
    assert list(combined['timestamp']) == [at(0), at(15), at(45)] * 2
    assert cohort.subject_ids == ['A', 'B']
    assert len(cohort.common_timestamps) == 3


def test_quality_summary_counts_missing_values() -> None:
    cohort = assemble_cohort(_aligned_pair())
    summary = cohort.summary.set_index('subject_id')

    assert summary.loc['A', 'n_observations'] == 3
    assert summary.loc['B', 'missing_heart_rate'] == 1
    assert summary.loc['A', 'missing_heart_rate'] == 0
    assert (summary['duplicate_timestamps'] == 0).all()
    assert cohort.issues == []


def test_observation_summary_appends_mean() -> None:
    common = resolve_common_timeline({
        'A': make_timeline('A', [0, 15]),
        'B': make_timeline('B', [0, 15]),
    })
    cohort = assemble_cohort(common)
    table = observation_summary(cohort)

    assert table['subject_id'].tolist() == ['A', 'B', 'cohort_mean']
    assert table['n_observations'].tolist() == [2, 2, 2.0]
    assert cohort.mean_observations == pytest.approx(2.0)


def test_duplicate_after_alignment_is_a_warning() -> None:
    tampered = CommonTimeline(
        common_timestamps=pd.DatetimeIndex([at(0), at(15)]),
        common_count={'A': 2},
        max_common_count=2,
        timelines={'A': make_timeline('A', [0, 15, 15], hr=[70, 71, 72])},
    )

    with pytest.warns(InvariantViolation):
        cohort = assemble_cohort(tampered)

    assert cohort.per_subject['A']['heart_rate'].tolist() == [70, 71]
    assert cohort.summary.loc[0, 'duplicate_timestamps'] == 1
    assert cohort.summary.loc[0, 'n_observations'] == 2
    assert cohort.issues[0]['error'] == 'InvariantViolation'


def test_day_night_period_column() -> None:
    window = StudyWindow(start=T0, end=T0 + pd.Timedelta(days=1),
                         day_start='07:00', day_end='22:00')
    common = resolve_common_timeline({
        'A': make_timeline('A', [0, 8 * 3600]),
        'B': make_timeline('B', [0, 8 * 3600]),
    })

    cohort = assemble_cohort(common, window=window)

    assert cohort.per_subject['A']['period'].tolist() == ['night', 'day']


def test_empty_common_timeline_gives_empty_cohort() -> None:
    cohort = assemble_cohort(resolve_common_timeline({}))

    assert cohort.is_empty
    assert cohort.combined.empty
    assert cohort.mean_observations == 0.0
    assert observation_summary(cohort).empty
