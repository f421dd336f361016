"""Tests for logging, progress files and archives."""

import logging
import sys

import numpy as np
import pytest

from msspm.log_utils import ProgressReporter, configure_logger, load_from_jac, read_excel, save_to_jac


def test_configure_logger_single_handler():
    logger = configure_logger('msspm.test', level=logging.DEBUG)
    logger = configure_logger('msspm.test', level=logging.DEBUG)
    assert len(logger.handlers) == 1
    assert logger.handlers[0].stream is sys.stdout
    assert logger.level == logging.DEBUG
    assert not logger.propagate


class TestProgressReporter:

    def test_progress_round_trip(self, reporter):
        reporter.write_progress('Run 1-1', 1000, 12.5, 'Least Squares')
        reporter.write_progress('Run 1-1', 2000, -0.8, 'Model Efficiency')
        df = reporter.read_progress()
        assert df.columns.tolist() == ['run', 'count', 'fitness', 'unused']
        assert df['count'].tolist() == [1000, 2000]
        assert df['fitness'].tolist() == [12.5, 0.8]

    def test_progress_empty(self, reporter):
        assert reporter.read_progress().empty

    def test_stop_record(self, reporter):
        assert reporter.read_stop() is None
        reporter.write_stop('Elapsed runtime: 1.000 sec', "Est'd Parameters: 4\nTotal Parameters: 4")
        assert reporter.read_stop() == ['Stop', '', 'Elapsed runtime: 1.000 sec',
                                        "Est'd Parameters: 4", 'Total Parameters: 4']

    def test_clear(self, reporter):
        reporter.write_progress('Run 1-1', 1000, 1.0, 'Least Squares')
        reporter.write_stop('0', '')
        reporter.clear()
        assert not reporter.progress_path.exists()
        assert not reporter.stop_path.exists()

    def test_default_paths(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        reporter = ProgressReporter()
        assert reporter.progress_path == tmp_path / 'msspm_progress.csv'
        assert reporter.stop_path == tmp_path / 'msspm_stop.txt'


class TestArchives:

    def test_round_trip(self, tmp_path):
        results = {'Run 1': {'x': np.array([0.5, 0.3]), 'fun': 0.0}}
        path = save_to_jac(results, tmp_path / 'results.jac')
        loaded = load_from_jac(path)
        np.testing.assert_array_equal(loaded['Run 1']['x'], [0.5, 0.3])
        assert loaded['Run 1']['fun'] == 0.0

    def test_missing_archive(self, tmp_path):
        assert load_from_jac(tmp_path / 'nothing.jac') is None

    def test_corrupt_archive(self, tmp_path):
        path = tmp_path / 'broken.jac'
        path.write_bytes(b'not a pickle')
        assert load_from_jac(path) is None


def test_read_excel_missing(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError, match='data.xlsx'):
        read_excel()
