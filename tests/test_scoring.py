"""Tests for rescaling and fitness criteria."""

import logging

import numpy as np
import pytest

from msspm.iden_scoring import (fitness, maximum_likelihood, model_efficiency, report_fitness,
                                rescale, rescale_mean, rescale_minmax, sum_of_squares)
from msspm.krnl_config import ConfigurationError


@pytest.fixture
def series():
    return np.array([[1.0, 10.0], [3.0, 30.0], [2.0, 50.0], [5.0, 20.0]])


class TestRescale:

    def test_minmax_maps_extremes(self, series):
        out = rescale_minmax(series)
        np.testing.assert_array_equal(out.min(axis=0), [0.0, 0.0])
        np.testing.assert_array_equal(out.max(axis=0), [1.0, 1.0])
        assert out[1, 0] == pytest.approx(0.5)

    def test_mean_centres_columns(self, series):
        out = rescale_mean(series)
        np.testing.assert_allclose(out.mean(axis=0), [0.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(out.max(axis=0) - out.min(axis=0), [1.0, 1.0])

    def test_constant_column_propagates_nan(self):
        out = rescale_minmax(np.array([[2.0, 1.0], [2.0, 3.0]]))
        assert np.isnan(out[:, 0]).all()
        np.testing.assert_array_equal(out[:, 1], [0.0, 1.0])

    def test_unknown_method_falls_back_to_minmax(self, series, caplog):
        with caplog.at_level(logging.WARNING, logger='msspm.iden_scoring'):
            out = rescale(series, 'Z-Score')
        np.testing.assert_array_equal(out, rescale_minmax(series))
        assert 'Defaulting to Min Max' in caplog.text


class TestCriteria:

    def test_sum_of_squares(self):
        assert sum_of_squares([[1.0, 2.0]], [[0.0, 4.0]]) == 5.0

    def test_model_efficiency_perfect(self, series):
        assert model_efficiency(series, series) == 1.0

    def test_model_efficiency_column_means(self, series):
        means = np.tile(series.mean(axis=0), (4, 1))
        assert model_efficiency(means, series) == pytest.approx(0.0)

    def test_maximum_likelihood_prefers_better_fit(self, series):
        close = series * 1.01
        far = series * np.array([[1.2], [0.8], [1.3], [0.7]])
        assert maximum_likelihood(close, series) < maximum_likelihood(far, series)

    def test_least_squares_on_rescaled(self, series):
        assert fitness(series * 3.0, series, 'Least Squares', 'Min Max') == pytest.approx(0.0)

    def test_model_efficiency_negated(self, series):
        assert fitness(series, series, 'Model Efficiency', 'Min Max') == -1.0

    def test_maximum_likelihood_unscaled(self, series):
        assert fitness(series * 2.0, series, 'Maximum Likelihood', 'Min Max') == maximum_likelihood(
            series * 2.0, series)

    def test_unknown_criterion_raises(self, series):
        with pytest.raises(ConfigurationError):
            fitness(series, series, 'Chi Square', 'Min Max')

    def test_report_fitness(self):
        assert report_fitness(-0.9, 'Model Efficiency') == 0.9
        assert report_fitness(12.5, 'Least Squares') == 12.5
