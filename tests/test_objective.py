"""Tests for the objective function and run context."""

import numpy as np
import pytest

import msspm.iden_objective as iden_objective
from msspm.iden_objective import (DEFAULT_FITNESS, PROGRESS_INTERVAL, UNAVAILABLE_FITNESS,
                                  ForcedStop, RunContext, objective_function)
from msspm.iden_parmest import parmest
from msspm.krnl_codec import decode, encode
from msspm.krnl_config import check_config
from msspm.krnl_forms import make_forms
from msspm.krnl_simula import simula

from conftest import TRUE_K, logistic_series, make_config


class TestObjectiveFunction:

    def test_true_parameters_score_zero(self, logistic_config, true_params):
        cfg = check_config(logistic_config)
        assert objective_function(encode(cfg, true_params), cfg, make_forms(cfg)) == 0.0

    def test_model_efficiency_of_truth_is_minus_one(self, logistic_config, true_params):
        cfg = check_config({**logistic_config, 'ob': 'Model Efficiency'})
        assert objective_function(encode(cfg, true_params), cfg, make_forms(cfg)) == -1.0

    def test_invalid_biomass_returns_default_without_scoring(self, logistic_config, monkeypatch):
        cfg = check_config(logistic_config)

        def no_scoring(*args, **kwargs):
            raise AssertionError('fitness must not be computed for an invalid trajectory')

        monkeypatch.setattr(iden_objective, 'fitness', no_scoring)
        theta = encode(cfg, {'growth_rate': np.array([5.0, 0.3]), 'carrying_capacity': TRUE_K})
        context = RunContext()
        assert objective_function(theta, cfg, make_forms(cfg), context) == DEFAULT_FITNESS
        assert context.num_evals == 1

    def test_missing_forms_return_unavailable(self, logistic_config, true_params):
        cfg = check_config(logistic_config)
        context = RunContext()
        assert objective_function(encode(cfg, true_params), cfg, None, context) == UNAVAILABLE_FITNESS
        assert context.num_evals == 1

    def test_quit_flag_stops_before_simulation(self, logistic_config, true_params, monkeypatch):
        cfg = check_config(logistic_config)

        def no_simulation(*args, **kwargs):
            raise AssertionError('simulator must not run after a stop request')

        monkeypatch.setattr(iden_objective, 'simula', no_simulation)
        context = RunContext()
        context.request_stop()
        with pytest.raises(ForcedStop):
            objective_function(encode(cfg, true_params), cfg, make_forms(cfg), context)
        assert context.num_evals == 0


class TestRunContext:

    def test_label(self):
        context = RunContext(name='Run')
        context.reset(3)
        assert context.label == 'Run 3-1'

    def test_reset_keeps_quit_flag(self):
        context = RunContext()
        context.request_stop()
        context.num_evals = 12
        context.reset(2)
        assert context.quit
        assert context.num_evals == 0
        assert context.run_num == 2

    def test_clear_stop(self):
        context = RunContext()
        context.request_stop()
        context.clear_stop()
        context.checkpoint()
        assert not context.quit

    def test_progress_every_interval(self, reporter):
        context = RunContext(reporter=reporter, name='Run', criterion='Least Squares')
        context.reset(1)
        for k in range(2 * PROGRESS_INTERVAL + 500):
            context.record(float(k))
        df = reporter.read_progress()
        assert len(df) == 2
        assert df['count'].tolist() == [PROGRESS_INTERVAL, 2 * PROGRESS_INTERVAL]
        assert df['run'].tolist() == ['Run 1-1', 'Run 1-1']
        assert df['fitness'].tolist() == [PROGRESS_INTERVAL - 1.0, 2 * PROGRESS_INTERVAL - 1.0]
        assert df['unused'].tolist() == [-1, -1]

    def test_progress_model_efficiency_renegated(self, reporter):
        context = RunContext(reporter=reporter, criterion='Model Efficiency')
        for _ in range(PROGRESS_INTERVAL):
            context.record(-0.75)
        assert reporter.read_progress()['fitness'].tolist() == [0.75]


class TestTwoSpeciesLogisticScenario:
    """r=[0.3, 0.4], K=[100, 200], B0=[50, 80], five years, one guild."""

    R = np.array([0.3, 0.4])
    K = np.array([100.0, 200.0])

    @pytest.fixture
    def scenario(self):
        observed = logistic_series(self.R, self.K, np.array([50.0, 80.0]), 5)
        return make_config(run_length=5, biomass=observed,
                           ranges={'growth_rate': (self.R, self.R), 'carrying_capacity': (self.K, self.K)})

    def test_trajectory_matches_recurrence(self, scenario):
        cfg = check_config(scenario)
        params = decode(cfg, encode(cfg, {'growth_rate': self.R, 'carrying_capacity': self.K}))
        sim = simula(cfg, params, make_forms(cfg))
        assert sim['status'] == 'ok'
        np.testing.assert_array_equal(sim['biomass'], scenario['biomass'])
        assert sim['biomass'][1, 0] == pytest.approx(50.0 + 0.3 * 50.0 * 0.5)

    def test_fitness_is_zero(self, scenario):
        cfg = check_config(scenario)
        theta = encode(cfg, {'growth_rate': self.R, 'carrying_capacity': self.K})
        assert objective_function(theta, cfg, make_forms(cfg)) == 0.0

    def test_estimation_scores_zero(self, scenario, reporter):
        res = parmest(scenario, reporter=reporter)
        assert res.state == 'completed'
        assert res.fun == 0.0
        assert res.nfev == 1
