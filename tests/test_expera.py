"""Tests for in-silico data generation."""

import numpy as np
import pytest

from msspm.krnl_codec import encode
from msspm.krnl_config import check_config
from msspm.krnl_expera import expera
from msspm.log_utils import read_excel

from conftest import B0, RUN_LENGTH, TRUE_K


class TestExpera:

    def test_noise_free_matches_simulation(self, logistic_config, true_params):
        cfg = expera({**logistic_config, 'biomass': np.vstack([B0, np.ones((RUN_LENGTH, 2))])},
                     true_params)
        np.testing.assert_array_equal(cfg['biomass'], logistic_config['biomass'])
        np.testing.assert_array_equal(cfg['guild_biomass'][:, 0], cfg['biomass'].sum(axis=1))

    def test_flat_vector(self, logistic_config, true_params):
        theta = encode(check_config(logistic_config), true_params)
        cfg = expera(logistic_config, theta)
        np.testing.assert_array_equal(cfg['biomass'], logistic_config['biomass'])

    def test_seeded_noise(self, logistic_config, true_params):
        a = expera(logistic_config, true_params, noise=0.1, seed=3)
        b = expera(logistic_config, true_params, noise=0.1, seed=3)
        np.testing.assert_array_equal(a['biomass'], b['biomass'])
        np.testing.assert_array_equal(a['biomass'][0], B0)
        assert not np.allclose(a['biomass'][1:], logistic_config['biomass'][1:])
        assert np.all(a['biomass'] > 0)

    def test_invalid_parameters(self, logistic_config):
        with pytest.raises(ValueError, match='invalid'):
            expera(logistic_config, {'growth_rate': [5.0, 0.3], 'carrying_capacity': TRUE_K})

    def test_writes_biomass_sheet(self, logistic_config, true_params, tmp_path):
        path = tmp_path / 'insilico.xlsx'
        expera({**logistic_config, 'species_names': ['Herring', 'Cod']}, true_params, path=path)
        df = read_excel(path)['Biomass']
        assert df.columns.tolist() == ['Year', 'Herring', 'Cod']
        np.testing.assert_allclose(df[['Herring', 'Cod']].to_numpy(), logistic_config['biomass'])

        expera(logistic_config, true_params, noise=0.05, seed=1, path=path)
        assert list(read_excel(path)) == ['Biomass']
