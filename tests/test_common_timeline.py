import pandas as pd

from conftest import at, make_timeline
from common_timeline import alignment_exclusions, check_alignment, resolve_common_timeline


def test_two_subject_scenario() -> None:
    timelines = {
        'A': make_timeline('A', [0, 15, 30, 45, 60]),
        'B': make_timeline('B', [0, 15, 45]),
    }

    common = resolve_common_timeline(timelines)

    assert list(common.common_timestamps) == [at(0), at(15), at(45)]
    assert common.common_count == {'A': 3, 'B': 3}
    assert common.max_common_count == 3
    for sid in ('A', 'B'):
        assert list(common.timelines[sid]['timestamp']) == [at(0), at(15), at(45)]
    assert check_alignment(common) == []
    assert not common.is_empty
    assert alignment_exclusions(common) == []


def test_all_subjects_share_identical_timestamp_sets() -> None:
    timelines = {
        's1': make_timeline('s1', range(0, 600, 15)),
        's2': make_timeline('s2', range(30, 900, 15)),
        's3': make_timeline('s3', [t for t in range(0, 900, 15) if t % 60 != 0]),
    }

    common = resolve_common_timeline(timelines)

    sets = [set(tl['timestamp']) for tl in common.timelines.values()]
    assert all(s == sets[0] for s in sets)
    assert len(sets[0]) == len(common.common_timestamps)
    assert check_alignment(common) == []


def test_passthrough_columns_survive_filtering() -> None:
    a = make_timeline('A', [0, 15, 30])
    a['steps'] = [1, 2, 3]
    b = make_timeline('B', [15, 30])

    common = resolve_common_timeline({'A': a, 'B': b})

    assert common.timelines['A']['steps'].tolist() == [2, 3]


def test_residual_duplicates_collapse_to_first() -> None:
    a = make_timeline('A', [0, 15, 15], hr=[70, 71, 72])
    b = make_timeline('B', [0, 15])

    common = resolve_common_timeline({'A': a, 'B': b})

    assert common.timelines['A']['heart_rate'].tolist() == [70, 71]


def test_no_admitted_subjects_is_empty_not_error() -> None:
    common = resolve_common_timeline({})

    assert common.is_empty
    assert len(common.common_timestamps) == 0
    assert common.subject_ids == []


def test_disjoint_subjects_give_empty_intersection() -> None:
    common = resolve_common_timeline({
        'A': make_timeline('A', [0, 15]),
        'B': make_timeline('B', [30, 45]),
    })

    assert common.is_empty
    assert common.common_count == {'A': 0, 'B': 0}
    assert all(len(tl) == 0 for tl in common.timelines.values())

    rows = alignment_exclusions(common)
    assert [r['subject_id'] for r in rows] == ['A', 'B']
    assert all(r['stage'] == 'align' for r in rows)
    assert rows[0]['reason'] == 'empty common timeline'


def test_single_subject_keeps_its_timeline() -> None:
    common = resolve_common_timeline({'A': make_timeline('A', [0, 15, 30])})

    assert len(common.common_timestamps) == 3
    assert common.max_common_count == 3


def test_check_alignment_flags_mismatch() -> None:
    common = resolve_common_timeline({
        'A': make_timeline('A', [0, 15]),
        'B': make_timeline('B', [0, 15]),
    })
    common.timelines['B'] = common.timelines['B'].iloc[:1]

    assert check_alignment(common) == ['B']
    assert isinstance(common.common_timestamps, pd.DatetimeIndex)
