"""
Fixtures for msspm tests.

Scenarios are small (two or three species, twenty years) so the optimizers
finish in well under a second per run.
"""

import matplotlib
matplotlib.use('Agg')

import numpy as np
import pytest

from msspm.log_utils import ProgressReporter


TRUE_R = np.array([0.5, 0.3])
TRUE_K = np.array([1000.0, 800.0])
B0 = np.array([100.0, 200.0])
RUN_LENGTH = 20


def logistic_series(r, k, b0, run_length):
    """Independent two-species logistic recurrence, no interactions."""
    out = np.zeros((run_length + 1, len(b0)))
    out[0] = b0
    for t in range(1, run_length + 1):
        for i in range(len(b0)):
            b = out[t - 1, i]
            out[t, i] = b + r[i] * b * (1.0 - b / k[i])
    return out


def make_config(**overrides):
    config = {
        'name': 'Test',
        'growth': 'Logistic',
        'harvest': 'Null',
        'competition': 'Null',
        'predation': 'Null',
        'n_species': 2,
        'n_guilds': 1,
        'run_length': RUN_LENGTH,
        'guilds': {0: [0, 1]},
        'biomass': logistic_series(TRUE_R, TRUE_K, B0, RUN_LENGTH),
        'ranges': {
            'growth_rate': (0.1, 1.0),
            'carrying_capacity': (500.0, 1500.0),
        },
        'ob': 'Least Squares',
        'scaling': 'Min Max',
        'meth': 'NMS',
    }
    config.update(overrides)
    return config


@pytest.fixture
def logistic_config():
    """Two species, one guild, logistic growth, data generated from TRUE_R/TRUE_K."""
    return make_config()


@pytest.fixture
def fixed_k_config():
    """Same scenario with carrying capacities pinned at their true values."""
    return make_config(ranges={
        'growth_rate': (0.1, 1.0),
        'carrying_capacity': (TRUE_K, TRUE_K),
    })


@pytest.fixture
def true_params():
    return {'growth_rate': TRUE_R.copy(), 'carrying_capacity': TRUE_K.copy()}


@pytest.fixture
def interaction_config():
    """Three species in two guilds with NO_K competition and Type II predation."""
    biomass = np.array([[300.0, 200.0, 100.0]] * (RUN_LENGTH + 1))
    return make_config(
        n_species=3, n_guilds=2, guilds={0: [0, 1], 1: [2]},
        competition='NO_K', predation='Type II', harvest='Catch',
        biomass=biomass,
        catch=np.full((RUN_LENGTH + 1, 3), 5.0),
        ranges={
            'growth_rate': (0.1, 1.0),
            'carrying_capacity': (500.0, 1500.0),
            'alpha': (0.0, 1e-4),
            'rho': (0.0, 1e-4),
            'handling': (0.0, 1e-3),
        },
    )


@pytest.fixture
def reporter(tmp_path):
    return ProgressReporter(tmp_path / 'progress.csv', tmp_path / 'stop.txt')
