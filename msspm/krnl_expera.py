# krnl_expera.py

import os

import numpy as np
import pandas as pd

from msspm.krnl_codec import decode, encode
from msspm.krnl_config import check_config, is_agg_prod, sum_guilds
from msspm.krnl_forms import make_forms
from msspm.krnl_simula import simula


def expera(config, params, noise=0.0, seed=None, path=None):
    r"""
    Generate in-silico biomass observations from known parameters.

    The configured model is simulated with the given parameters and the
    trajectory replaces the observed series of the returned configuration, so an
    estimation run on it can be checked against the known truth.

    Parameters
    ----------
    config : dict
        Run configuration. Only row 0 of the observed series is used, as the
        initial state of the simulation.
    params : dict[str, array-like] or np.ndarray
        True parameters, either decoded quantities or a flat parameter vector.
    noise : float, optional
        Standard deviation of multiplicative lognormal observation error
        (default: 0.0, noise-free).
    seed : int, optional
        Random seed of the observation error.
    path : str or Path, optional
        If given, the observed series is also written to the 'Biomass' sheet of
        this workbook (created if missing, sheet replaced if present).

    Returns
    -------
    dict
        Validated copy of config whose observed biomass is the simulated (and
        optionally perturbed) trajectory. For AGG-PROD the guild series is
        replaced; otherwise the species series, with guild totals recomputed.

    Raises
    ------
    ValueError
        If the parameters drive the biomass negative or NaN.

    Notes
    -----
    The perturbed observation of a simulated value :math:`B` is
    :math:`B \exp(\varepsilon)` with :math:`\varepsilon \sim N(0, \sigma^2)`.
    Row 0 is left unperturbed so that every estimation starts from the same state.
    """
    cfg = check_config(config)
    if not isinstance(params, dict):
        params = decode(cfg, params)
    else:
        params = decode(cfg, encode(cfg, params))

    sim = simula(cfg, params, make_forms(cfg))
    if sim['status'] != 'ok':
        raise ValueError(f"Simulation is {sim['status']} at year {sim['year']}, unit {sim['unit']}.")

    traj = sim['biomass'].copy()
    if noise > 0:
        rng = np.random.default_rng(seed)
        traj[1:] = traj[1:] * np.exp(rng.normal(0.0, noise, size=traj[1:].shape))

    if is_agg_prod(cfg):
        cfg['guild_biomass'] = traj
    else:
        cfg['biomass'] = traj
        cfg['guild_biomass'] = sum_guilds(traj, cfg['guilds'], cfg['n_guilds'])

    if path is not None:
        _write_biomass(cfg, traj, path)
    return cfg


def _write_biomass(cfg, traj, path):
    if is_agg_prod(cfg):
        names = cfg.get('guild_names') or [f"Guild {g}" for g in range(traj.shape[1])]
    else:
        names = cfg.get('species_names') or [f"Species {i}" for i in range(traj.shape[1])]
    df = pd.DataFrame(traj, columns=names)
    df.insert(0, 'Year', np.arange(traj.shape[0]))

    if os.path.isfile(path):
        with pd.ExcelWriter(path, mode='a', engine='openpyxl', if_sheet_exists='replace') as writer:
            df.to_excel(writer, sheet_name='Biomass', index=False)
    else:
        with pd.ExcelWriter(path, engine='openpyxl') as writer:
            df.to_excel(writer, sheet_name='Biomass', index=False)
    print(f"[INFO] In-silico biomass saved to: {path}")
