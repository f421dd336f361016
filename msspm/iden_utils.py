# iden_utils.py

import logging
from pathlib import Path

import numpy as np
import matplotlib.pyplot as plt

from msspm.krnl_config import is_agg_prod, observed_biomass
from msspm.krnl_forms import make_forms
from msspm.krnl_simula import simula

logger = logging.getLogger(__name__)

_FITNESS_LABELS = {
    'Least Squares': 'SSE',
    'Model Efficiency': 'MEF',
    'Maximum Likelihood': 'NLL',
}


def _sci(value):
    return f"{value:.3e}"


def convert_values_1d(label, values, include_total=False):
    """One summary line per vector, optionally followed by its total."""
    values = np.asarray(values, dtype=float).ravel()
    out = f"\n  {label}:  " + "  ".join(_sci(v) for v in values)
    if include_total:
        out += f"\n  Total {label}:  {_sci(values.sum())}"
    return out


def convert_values_2d(label, matrix):
    """Label line followed by one indented line per matrix row."""
    matrix = np.atleast_2d(np.asarray(matrix, dtype=float))
    out = f"\n  {label}:"
    for row in matrix:
        out += "\n    " + "  ".join(_sci(v) for v in row)
    return out


def create_output_str(config, params, n_estimated, n_total, n_runs, best_fitness,
                      fitness_std=0.0, initial_k=None):
    """
    Build the human-readable summary of a finished run.

    Parameters
    ----------
    config : dict
        Run configuration (form names and objective criterion).
    params : dict[str, np.ndarray]
        Decoded best parameters.
    n_estimated : int
        Number of parameters in the estimation vector.
    n_total : int
        Total number of model parameters.
    n_runs : int
        Number of repeated searches behind the best fitness.
    best_fitness : float
        Best fitness in its reported sign.
    fitness_std : float, optional
        Standard deviation of the per-run best fitness values (default: 0.0).
    initial_k : np.ndarray, optional
        Initial guess for the carrying capacities, echoed for logistic growth.

    Returns
    -------
    str
        Multi-line summary.
    """
    label = _FITNESS_LABELS.get(config.get('ob'), 'SSE')
    out = f"Est'd Parameters: {n_estimated}"
    out += f"\nTotal Parameters: {n_total}"
    out += f"\n\nNumber of Runs: {n_runs}"
    out += f"\nBest Fitness ({label}) value of all runs: {best_fitness:.6f}"
    out += f"\nStd dev of Best Fitness values from all runs: {fitness_std:.6f}"

    logistic = config['growth'] == 'Logistic'
    if logistic and initial_k is not None:
        out += "\n\nInitial Parameters:"
        out += convert_values_1d("Carrying Capacity", initial_k, include_total=True)

    out += "\n\nEstimated Parameters:"
    out += convert_values_1d("Growth Rate", params['growth_rate'])
    if logistic:
        out += convert_values_1d("Carrying Capacity", params['carrying_capacity'], include_total=True)
    if config['harvest'] == 'Effort (qE)':
        out += convert_values_1d("Catchability", params['catchability'])

    competition = config['competition']
    if competition == 'NO_K':
        out += convert_values_2d("Competition (alpha)", params['alpha'])
    elif competition in ('MS-PROD', 'AGG-PROD'):
        if competition == 'MS-PROD':
            out += convert_values_2d("Competition (beta::species)", params['beta_species'])
        out += convert_values_2d("Competition (beta::guilds)", params['beta_guilds'])

    predation = config['predation']
    if predation in ('Type I', 'Type II', 'Type III'):
        out += convert_values_2d("Predation (rho)", params['rho'])
    if predation in ('Type II', 'Type III'):
        out += convert_values_2d("Handling", params['handling'])
    if predation == 'Type III':
        out += convert_values_1d("Predation Exponent", params['exponent'])
    return out


def plot_fit(config, result, path=None, pltshow=False):
    """
    Plot observed against estimated biomass, one panel per species (or guild).

    Parameters
    ----------
    config : dict
        Validated run configuration.
    result : OptimizeResult
        Estimation result carrying the decoded best parameters in 'params'.
    path : str or Path, optional
        Output PNG (default: '<run name>_fit.png' in the working directory).
    pltshow : bool, optional
        Show the figure interactively after saving (default: False).

    Returns
    -------
    Path
        Saved figure path.
    """
    sim = simula(config, result['params'], make_forms(config))
    obs = observed_biomass(config)
    years = np.arange(obs.shape[0])
    n = obs.shape[1]
    if is_agg_prod(config):
        names = config.get('guild_names') or [f"Guild {g}" for g in range(n)]
    else:
        names = config.get('species_names') or [f"Species {i}" for i in range(n)]

    fig, axes = plt.subplots(n, 1, figsize=(8, 3 * n), sharex=True, squeeze=False)
    for i, ax in enumerate(axes[:, 0]):
        ax.scatter(years, obs[:, i], color='k', marker='o', alpha=0.6, label='Observed')
        if sim['status'] == 'ok':
            ax.plot(years, sim['biomass'][:, i], color='b', linestyle='-', label='Estimated')
        ax.set_ylabel(f"{names[i]} biomass")
        ax.legend()
    axes[-1, 0].set_xlabel('Year')
    fig.suptitle(f"{config.get('name', 'Run')}: {config['ob']} fit", fontsize=12)
    fig.tight_layout()

    if sim['status'] != 'ok':
        logger.warning(f"Best parameters give a {sim['status']} trajectory; only observations are plotted.")

    file_path = Path(path) if path else Path.cwd() / f"{config.get('name', 'Run')}_fit.png"
    fig.savefig(file_path, dpi=150)
    if pltshow:
        plt.show()
    plt.close(fig)
    return file_path
