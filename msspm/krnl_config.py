# krnl_config.py

import copy
import logging
import numpy as np

logger = logging.getLogger(__name__)


GROWTH_FORMS = ('Null', 'Linear', 'Logistic')
HARVEST_FORMS = ('Null', 'Catch', 'Effort (qE)', 'Exploitation (F)')
COMPETITION_FORMS = ('Null', 'NO_K', 'MS-PROD', 'AGG-PROD')
PREDATION_FORMS = ('Null', 'Type I', 'Type II', 'Type III')

CRITERIA = ('Least Squares', 'Model Efficiency', 'Maximum Likelihood')
SCALINGS = ('Min Max', 'Mean')

_DEFAULTS = {
    'name': 'Run',
    'growth': 'Logistic',
    'harvest': 'Null',
    'competition': 'Null',
    'predation': 'Null',
    'ob': 'Least Squares',
    'scaling': 'Min Max',
    'meth': 'NMS',
    'stopval': None,
    'maxtime': None,
    'maxeval': None,
    'maxit': 1000,
    'tol': 1e-6,
    'diagnostics': False,
    'var-cov': None,
}


class ConfigurationError(ValueError):
    """Raised when a run configuration cannot drive an estimation."""


def check_config(config):
    """
    Validate a run configuration and return a normalized copy.

    The configuration is the single read-only input of an estimation run. It names
    the active sub-model forms, the species/guild layout, the historical series and
    the optimizer settings. Missing optional entries are filled with defaults and all
    series are converted to float arrays.

    Parameters
    ----------
    config : dict
        Run configuration:
            - 'growth', 'harvest', 'competition', 'predation' : str
                Active form names for each biological aspect.
            - 'n_species', 'n_guilds', 'run_length' : int
                Positive counts. Series have run_length + 1 rows (years).
            - 'guilds' : dict[int, list[int]]
                Guild index -> member species indices. Must partition all species.
            - 'biomass' : array-like, shape (run_length + 1, n_species)
                Observed biomass per species.
            - 'guild_biomass' : array-like, shape (run_length + 1, n_guilds), optional
                Observed biomass per guild. Derived from 'biomass' when absent.
            - 'catch', 'effort', 'exploitation' : array-like, optional
                Harvest series, same shape as 'biomass'. Zeros when absent.
            - 'ranges' : dict[str, tuple]
                Search bounds (lower, upper) per parameter name.
            - 'ob' : str
                Objective criterion ('Least Squares', 'Model Efficiency',
                'Maximum Likelihood').
            - 'scaling' : str
                Rescaling method ('Min Max' or 'Mean').
            - 'meth' : str
                Minimizer key.
            - 'stopval', 'maxtime', 'maxeval' : float, float, int or None
                Optional stopping criteria (None disables).

    Returns
    -------
    dict
        Normalized configuration.

    Raises
    ------
    ConfigurationError
        If counts, guild membership, series shapes, form names or the objective
        criterion are invalid.

    Notes
    -----
    Unknown scaling names are accepted here; scoring falls back to min-max
    rescaling for them.
    """
    cfg = copy.deepcopy(_DEFAULTS)
    cfg.update(copy.deepcopy(config))

    for key in ('n_species', 'n_guilds', 'run_length'):
        if key not in cfg:
            raise ConfigurationError(f"Missing required key '{key}'.")
        try:
            cfg[key] = int(cfg[key])
        except (TypeError, ValueError):
            raise ConfigurationError(f"'{key}' must be an integer, got {cfg[key]!r}.") from None
        if cfg[key] <= 0:
            raise ConfigurationError(f"'{key}' must be positive, got {cfg[key]}.")

    n_species, n_guilds = cfg['n_species'], cfg['n_guilds']
    n_years = cfg['run_length'] + 1

    for key, allowed in (('growth', GROWTH_FORMS), ('harvest', HARVEST_FORMS),
                         ('competition', COMPETITION_FORMS), ('predation', PREDATION_FORMS)):
        if cfg[key] not in allowed and not _is_registered(key, cfg[key]):
            raise ConfigurationError(f"Unknown {key} form '{cfg[key]}'. Expected one of {allowed}.")

    if cfg['ob'] not in CRITERIA:
        raise ConfigurationError(f"Unknown objective criterion '{cfg['ob']}'. Expected one of {CRITERIA}.")
    if cfg['scaling'] not in SCALINGS:
        logger.warning(f"Scaling '{cfg['scaling']}' not recognized. Defaulting to Min Max.")

    cfg['guilds'] = _check_guilds(cfg.get('guilds'), n_species, n_guilds)

    if 'biomass' not in cfg:
        raise ConfigurationError("Missing observed 'biomass' series.")
    cfg['biomass'] = _as_series(cfg['biomass'], (n_years, n_species), 'biomass')

    if cfg.get('guild_biomass') is None:
        cfg['guild_biomass'] = sum_guilds(cfg['biomass'], cfg['guilds'], n_guilds)
    else:
        cfg['guild_biomass'] = _as_series(cfg['guild_biomass'], (n_years, n_guilds), 'guild_biomass')

    for key in ('catch', 'effort', 'exploitation'):
        if cfg.get(key) is None:
            cfg[key] = np.zeros((n_years, n_species))
        else:
            cfg[key] = _as_series(cfg[key], (n_years, n_species), key)

    cfg['ranges'] = dict(cfg.get('ranges') or {})
    return cfg


def _is_registered(aspect, name):
    # Late import: krnl_forms depends on this module.
    from msspm.krnl_forms import FORM_REGISTRY
    return name in FORM_REGISTRY.get(aspect, {})


def _check_guilds(guilds, n_species, n_guilds):
    if guilds is None:
        raise ConfigurationError("Missing 'guilds' membership mapping.")
    try:
        guilds = {int(g): [int(s) for s in members] for g, members in dict(guilds).items()}
    except (TypeError, ValueError):
        raise ConfigurationError("'guilds' must map guild indices to lists of species indices.") from None
    if sorted(guilds) != list(range(n_guilds)):
        raise ConfigurationError(f"Guild indices {sorted(guilds)} do not match n_guilds={n_guilds}.")
    members = sorted(s for ss in guilds.values() for s in ss)
    if members != list(range(n_species)):
        raise ConfigurationError("Guild membership must include every species exactly once.")
    return guilds


def _as_series(values, shape, label):
    try:
        arr = np.array(values, dtype=float)
    except (TypeError, ValueError):
        raise ConfigurationError(f"'{label}' is not a numeric (years x units) table.") from None
    if arr.ndim == 1 and shape[1] == 1:
        arr = arr.reshape(-1, 1)
    if arr.shape != shape:
        raise ConfigurationError(f"'{label}' has shape {arr.shape}, expected {shape}.")
    return arr


def is_agg_prod(config):
    return config['competition'] == 'AGG-PROD'


def n_units(config):
    """Number of simulated units: guilds for AGG-PROD, species otherwise."""
    return config['n_guilds'] if is_agg_prod(config) else config['n_species']


def observed_biomass(config):
    """Observed series the fit is scored against (guild level for AGG-PROD)."""
    return config['guild_biomass'] if is_agg_prod(config) else config['biomass']


def guild_of(config):
    """
    Map each simulated unit to its guild index.

    Returns
    -------
    np.ndarray
        Guild index per unit. For AGG-PROD every unit is its own guild.
    """
    if is_agg_prod(config):
        return np.arange(config['n_guilds'])
    owner = np.zeros(config['n_species'], dtype=int)
    for g, members in config['guilds'].items():
        owner[members] = g
    return owner


def sum_guilds(biomass, guilds, n_guilds):
    """
    Aggregate species columns into guild columns.

    Parameters
    ----------
    biomass : np.ndarray
        Array of shape (n_years, n_species) or (n_species,).
    guilds : dict[int, list[int]]
        Guild membership.
    n_guilds : int
        Number of guilds.

    Returns
    -------
    np.ndarray
        Array of shape (n_years, n_guilds) or (n_guilds,).
    """
    biomass = np.asarray(biomass, dtype=float)
    out = np.zeros(biomass.shape[:-1] + (n_guilds,))
    for g, members in guilds.items():
        out[..., g] = biomass[..., members].sum(axis=-1)
    return out


def config_from_excel(path=None, **overrides):
    """
    Build a run configuration from a workbook.

    Parameters
    ----------
    path : str or Path, optional
        Workbook path. Defaults to 'data.xlsx' in the current working directory.
    **overrides
        Entries replacing values read from the workbook (e.g. meth='DE').

    Returns
    -------
    dict
        Validated run configuration (see check_config).

    Raises
    ------
    ConfigurationError
        If a required sheet or column is missing.

    Notes
    -----
    Sheets:
        - 'Settings': 'Key'/'Value' rows (GrowthForm, HarvestForm, CompetitionForm,
          PredationForm, ObjectiveCriterion, Scaling, Minimizer, StopVal,
          StopAfterTime, StopAfterIter, RunName).
        - 'Species': Name, Guild and the per-species range columns
          (GrowthRateMin/Max, KMin/Max, CatchabilityMin/Max, ExponentMin/Max).
        - 'Biomass': 'Year' column plus one column per species.
        - 'Catch', 'Effort', 'Exploitation' (optional): same layout as 'Biomass'.
        - '<Matrix>Min' / '<Matrix>Max' (optional) for Alpha, BetaSpecies,
          BetaGuilds, Rho and Handling, first column used as row labels.
    """
    from msspm.log_utils import read_excel

    sheets = read_excel(path)
    for required in ('Settings', 'Species', 'Biomass'):
        if required not in sheets:
            raise ConfigurationError(f"Workbook is missing the '{required}' sheet.")

    settings = dict(zip(sheets['Settings']['Key'].astype(str), sheets['Settings']['Value']))
    species = sheets['Species']
    names = species['Name'].astype(str).tolist()

    guild_names = list(dict.fromkeys(species['Guild'].astype(str)))
    guilds = {g: [i for i, gn in enumerate(species['Guild'].astype(str)) if gn == name]
              for g, name in enumerate(guild_names)}

    def _series(sheet):
        if sheet not in sheets:
            return None
        df = sheets[sheet].drop(columns=['Year'], errors='ignore')
        missing = [n for n in names if n not in df.columns]
        if missing:
            raise ConfigurationError(f"Sheet '{sheet}' has no column for species {missing}.")
        return df[names].to_numpy(dtype=float)

    biomass = _series('Biomass')
    config = {
        'name': str(settings.get('RunName', 'Run')),
        'growth': str(settings.get('GrowthForm', 'Logistic')),
        'harvest': str(settings.get('HarvestForm', 'Null')),
        'competition': str(settings.get('CompetitionForm', 'Null')),
        'predation': str(settings.get('PredationForm', 'Null')),
        'ob': str(settings.get('ObjectiveCriterion', 'Least Squares')),
        'scaling': str(settings.get('Scaling', 'Min Max')),
        'meth': str(settings.get('Minimizer', 'NMS')),
        'stopval': _optional(settings.get('StopVal'), float),
        'maxtime': _optional(settings.get('StopAfterTime'), float),
        'maxeval': _optional(settings.get('StopAfterIter'), int),
        'n_species': len(names),
        'n_guilds': len(guild_names),
        'run_length': biomass.shape[0] - 1,
        'guilds': guilds,
        'biomass': biomass,
        'catch': _series('Catch'),
        'effort': _series('Effort'),
        'exploitation': _series('Exploitation'),
        'species_names': names,
        'guild_names': guild_names,
    }

    ranges = {}
    for key, column in (('growth_rate', 'GrowthRate'), ('carrying_capacity', 'K'),
                        ('catchability', 'Catchability'), ('exponent', 'Exponent')):
        lo, hi = f"{column}Min", f"{column}Max"
        if lo in species and hi in species:
            ranges[key] = (species[lo].to_numpy(dtype=float), species[hi].to_numpy(dtype=float))
    for key, sheet in (('alpha', 'Alpha'), ('beta_species', 'BetaSpecies'),
                       ('beta_guilds', 'BetaGuilds'), ('rho', 'Rho'), ('handling', 'Handling')):
        lo, hi = f"{sheet}Min", f"{sheet}Max"
        if lo in sheets and hi in sheets:
            ranges[key] = (sheets[lo].iloc[:, 1:].to_numpy(dtype=float),
                           sheets[hi].iloc[:, 1:].to_numpy(dtype=float))
    config['ranges'] = ranges

    config.update(overrides)
    return check_config(config)


def _optional(value, cast):
    if value is None:
        return None
    try:
        if np.isnan(float(value)):
            return None
    except (TypeError, ValueError):
        return None
    return cast(float(value))
