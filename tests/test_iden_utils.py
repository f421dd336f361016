"""Tests for run summaries and fit plots."""

import numpy as np
from scipy.optimize import OptimizeResult

from msspm.iden_utils import convert_values_1d, convert_values_2d, create_output_str, plot_fit
from msspm.krnl_codec import decode, encode
from msspm.krnl_config import check_config


def test_convert_values():
    assert convert_values_1d('Growth Rate', [0.5, 0.25]) == "\n  Growth Rate:  5.000e-01  2.500e-01"
    assert convert_values_1d('K', [1.0, 2.0], include_total=True).endswith("Total K:  3.000e+00")
    assert convert_values_2d('Handling', np.eye(2)).splitlines() == [
        '', '  Handling:', '    1.000e+00  0.000e+00', '    0.000e+00  1.000e+00']


class TestCreateOutputStr:

    def test_logistic_summary(self, logistic_config, true_params):
        out = create_output_str(logistic_config, true_params, 4, 4, 1, 0.0,
                                initial_k=np.array([1000.0, 1000.0]))
        assert out.startswith("Est'd Parameters: 4\nTotal Parameters: 4")
        assert 'Best Fitness (SSE) value of all runs: 0.000000' in out
        assert out.index('Initial Parameters:') < out.index('Estimated Parameters:')
        assert 'Total Carrying Capacity:  1.800e+03' in out

    def test_competition_and_predation_sections(self, logistic_config):
        cfg = {**logistic_config, 'growth': 'Linear', 'competition': 'MS-PROD',
               'predation': 'Type III', 'ob': 'Maximum Likelihood'}
        params = {'growth_rate': [0.1, 0.2], 'beta_species': np.zeros((2, 2)),
                  'beta_guilds': np.full((2, 1), 7.0), 'rho': np.zeros((2, 2)),
                  'handling': np.zeros((2, 2)), 'exponent': [1.5, 2.0]}
        out = create_output_str(cfg, params, 16, 16, 1, 3.0, initial_k=np.array([1.0, 1.0]))
        assert 'Initial Parameters' not in out
        assert 'Best Fitness (NLL)' in out
        guilds_block = out.split('Competition (beta::guilds):')[1]
        assert guilds_block.splitlines()[1].strip() == '7.000e+00'
        assert 'Handling:' in out
        assert 'Predation Exponent:  1.500e+00  2.000e+00' in out


def test_plot_fit_writes_png(logistic_config, true_params, tmp_path):
    cfg = check_config(logistic_config)
    path = plot_fit(cfg, OptimizeResult(params=decode(cfg, encode(cfg, true_params))), path=tmp_path / 'fit.png')
    assert path.exists()
    assert path.stat().st_size > 0
