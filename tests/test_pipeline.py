from pathlib import Path

import pandas as pd
import pytest
import yaml

from batch_process_subjects import build_diagnostics, process_subject, process_subjects
from conftest import at
from data_loading import SubjectSource, collect_subject_sources, discover_subject_files
from run_alignment import main, run_alignment_pipeline
from study_window import StudyWindow, create_default_config


def _write_subject(input_dir: Path, name: str, rows) -> None:
    lines = ['Time,Heart Rate'] + [f'{ts},{hr}' for ts, hr in rows]
    (input_dir / f'{name}.csv').write_text('\n'.join(lines) + '\n')


@pytest.fixture
def study_inputs(tmp_path: Path) -> Path:
    input_dir = tmp_path / 'input'
    input_dir.mkdir()
    # A: two readings share 12:00:00, spread to 12:00:15 by deduplication
    _write_subject(input_dir, 'A', [
        ('3/1/2024 12:00:00 AM', 70), ('3/1/2024 12:00:00 AM', 71),
        ('3/1/2024 12:00:30 AM', 72), ('3/1/2024 12:00:45 AM', 73),
        ('3/1/2024 12:01:00 AM', 74),
    ])
    _write_subject(input_dir, 'B', [
        ('3/1/2024 12:00:00 AM', 80), ('3/1/2024 12:00:15 AM', 81),
        ('3/1/2024 12:00:45 AM', 82),
    ])
    _write_subject(input_dir, 'C', [
        ('3/1/2024 12:00:00 AM', 90), ('13/45/2024 99:00 PM', 91),
    ])
    _write_subject(input_dir, 'D', [('3/1/2024 12:00:30 AM', 65)])
    return input_dir


def _config(input_dir: Path, output_dir: Path, strategy='coverage_ratio', threshold=0.5) -> dict:
    cfg = create_default_config()
    cfg['project'].update({'input_dir': str(input_dir), 'output_dir': str(output_dir)})
    cfg['window'].update({'start': '2024-03-01 00:00:00', 'end': '2024-03-01 00:01:00',
                          'sampling_interval_sec': 15, 'excluded_dates': []})
    cfg['qualification'].update({'strategy': strategy, 'coverage_threshold': threshold})
    return cfg


def test_pipeline_end_to_end(study_inputs: Path, tmp_path: Path) -> None:
    output_dir = tmp_path / 'out'

    result = run_alignment_pipeline(_config(study_inputs, output_dir))

    assert result.results['A'].coverage.coverage_ratio == pytest.approx(1.0)
    assert result.results['B'].coverage.coverage_ratio == pytest.approx(0.6)
    assert result.results['C'].status == 'FAILED'
    assert result.results['D'].status == 'REJECTED'

    cohort = result.cohort
    assert cohort.subject_ids == ['A', 'B']
    assert list(cohort.common_timestamps) == [at(0), at(15), at(45)]
    assert cohort.per_subject['A']['heart_rate'].tolist() == [70, 71, 73]
    assert len(cohort.combined) == 6

    for name in ('cohort_combined.csv', 'coverage_report.csv', 'daily_coverage.csv',
                 'observation_summary.csv', 'cohort_quality.csv', 'common_timestamps.csv',
                 'diagnostics.csv', 'subjects/A_aligned.csv', 'subjects/B_missing.csv'):
        assert (output_dir / name).exists(), name

    diagnostics = pd.read_csv(output_dir / 'diagnostics.csv')
    assert sorted(diagnostics['subject_id']) == ['C', 'D']
    failed = diagnostics.set_index('subject_id').loc['C']
    assert failed['error'] == 'MalformedInputError'
    assert failed['stage'] == 'load'

    report = pd.read_csv(output_dir / 'coverage_report.csv').set_index('subject_id')
    assert report.loc['B', 'common_count'] == 3
    assert report.loc['B', 'missing_count'] == 2
    assert report.loc['B', 'hr_mean'] == pytest.approx(81.0)
    assert report.loc['B', 'hr_missing'] == 0
    assert report.loc['A', 'time_end'].startswith('2024-03-01 00:01:00')

    summary = pd.read_csv(output_dir / 'observation_summary.csv')
    assert summary['subject_id'].tolist() == ['A', 'B', 'cohort_mean']
    assert summary['n_observations'].tolist() == [3, 3, 3]

    missing_b = pd.read_csv(output_dir / 'subjects' / 'B_missing.csv')
    assert len(missing_b) == 2


def test_no_admitted_subjects_still_writes_reports(study_inputs: Path, tmp_path: Path) -> None:
    output_dir = tmp_path / 'out'

    result = run_alignment_pipeline(_config(study_inputs, output_dir, threshold=1.01))

    assert result.cohort.is_empty
    assert result.common.is_empty
    diagnostics = pd.read_csv(output_dir / 'diagnostics.csv')
    assert sorted(diagnostics['subject_id']) == ['A', 'B', 'C', 'D']
    assert diagnostics['reason'].notna().all()
    assert pd.read_csv(output_dir / 'cohort_combined.csv').empty


def test_disjoint_admitted_subjects_are_reported(tmp_path: Path) -> None:
    input_dir = tmp_path / 'input'
    input_dir.mkdir()
    _write_subject(input_dir, 'E', [
        ('3/1/2024 12:00:00 AM', 70), ('3/1/2024 12:00:15 AM', 71), ('3/1/2024 12:00:30 AM', 72),
    ])
    _write_subject(input_dir, 'F', [('3/1/2024 12:00:45 AM', 80), ('3/1/2024 12:01:00 AM', 81)])
    output_dir = tmp_path / 'out'

    result = run_alignment_pipeline(_config(input_dir, output_dir, threshold=0.3))

    assert result.results['E'].admitted and result.results['F'].admitted
    assert result.common.is_empty
    assert result.cohort.is_empty
    diagnostics = pd.read_csv(output_dir / 'diagnostics.csv').set_index('subject_id')
    assert sorted(diagnostics.index) == ['E', 'F']
    assert (diagnostics['stage'] == 'align').all()
    assert (diagnostics['reason'] == 'empty common timeline').all()
    assert diagnostics.loc['F', 'source'] == 'F.csv'


def test_wear_time_strategy_rejects_short_span(study_inputs: Path, tmp_path: Path) -> None:
    result = run_alignment_pipeline(_config(study_inputs, tmp_path / 'out', strategy='wear_time'))

    # B spans 45 of 60 seconds
    assert result.results['B'].wear_time_ratio == pytest.approx(0.75)
    assert result.results['B'].status == 'REJECTED'
    assert result.cohort.subject_ids == ['A']


def test_parallel_processing_matches_serial(study_inputs: Path) -> None:
    window = StudyWindow(start='2024-03-01 00:00:00', end='2024-03-01 00:01:00')
    sources, _ = collect_subject_sources(discover_subject_files(study_inputs))

    serial = process_subjects(sources, window, strategy='coverage_ratio', max_workers=1)
    parallel = process_subjects(sources, window, strategy='coverage_ratio', max_workers=2)

    assert list(parallel) == list(serial) == ['A', 'B', 'C', 'D']
    for sid in serial:
        assert parallel[sid].status == serial[sid].status
        if serial[sid].timeline is not None:
            pd.testing.assert_frame_equal(parallel[sid].timeline, serial[sid].timeline)


def test_process_subject_records_unexpected_errors() -> None:
    window = StudyWindow(start='2024-03-01 00:00:00', end='2024-03-01 00:01:00')
    source = SubjectSource('X', frames=[pd.DataFrame({'timestamp': ['3/1/2024 12:00:00 AM']})],
                           files=['x.csv'])

    result = process_subject(source, window)

    assert result.status == 'ERROR'
    assert result.error == 'KeyError'
    diagnostics = build_diagnostics({'X': result})
    assert diagnostics.loc[0, 'subject_id'] == 'X'


def test_main_creates_config_template(tmp_path: Path) -> None:
    path = tmp_path / 'config.yaml'

    assert main(['--config', str(path), '--create-config']) == 0

    cfg = yaml.safe_load(path.read_text())
    assert cfg['window']['sampling_interval_sec'] == 15


def test_main_fails_on_degenerate_window(tmp_path: Path) -> None:
    cfg = _config(tmp_path / 'input', tmp_path / 'out')
    cfg['window']['excluded_dates'] = ['2024-03-01']
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump(cfg))

    assert main(['--config', str(path)]) == 1


def test_main_fails_without_inputs(tmp_path: Path) -> None:
    (tmp_path / 'input').mkdir()
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump(_config(tmp_path / 'input', tmp_path / 'out')))

    assert main(['--config', str(path)]) == 1
    assert main(['--config', str(tmp_path / 'nope.yaml')]) == 1


def test_main_runs_pipeline(study_inputs: Path, tmp_path: Path) -> None:
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump(_config(study_inputs, tmp_path / 'out')))

    assert main(['--config', str(path)]) == 0
    assert (tmp_path / 'out' / 'cohort_combined.csv').exists()
