# krnl_simula.py

import numpy as np

from msspm.krnl_config import guild_of, is_agg_prod, n_units, observed_biomass, sum_guilds
from msspm.krnl_forms import ASPECTS


def simula(config, params, forms, context=None):
    r"""
    Run the discrete-time multi-species surplus production recurrence.

    Starting from the observed initial biomass, every unit is advanced one year at a
    time by adding its growth and subtracting its harvest, competition and predation
    losses. All four terms for year t are evaluated on the year t-1 state only, so
    the order in which units are visited within a year does not matter.

    Parameters
    ----------
    config : dict
        Validated run configuration (see krnl_config.check_config).
    params : dict[str, np.ndarray]
        Decoded parameter quantities (see krnl_codec.decode).
    forms : dict[str, _Form] or None
        Sub-model evaluators keyed by aspect (see krnl_forms.make_forms).
    context : RunContext, optional
        Run context; its cancellation flag is polled once per simulated year.

    Returns
    -------
    result : dict
        - 'status' : str
            'ok', 'invalid' (negative or NaN biomass) or 'unavailable'
            (missing evaluators, nothing simulated).
        - 'biomass' : np.ndarray or None
            Estimated trajectory of shape (run_length + 1, N).
        - 'guild_biomass' : np.ndarray or None
            Guild trajectory of shape (run_length + 1, n_guilds).
        - 'year', 'unit' : int or None
            Location of the first invalid value when status is 'invalid'.

    Raises
    ------
    ForcedStop
        If the context's cancellation flag is set during the simulation.

    Notes
    -----
    The recurrence for unit :math:`i` is

    .. math::
        B_{t,i} = B_{t-1,i} + G_i(B_{t-1}) - H_i(B_{t-1}) - C_i(B_{t-1}) - P_i(B_{t-1})

    N is the number of guilds when competition is AGG-PROD and the number of species
    otherwise. The system carrying capacity adds the running guild total once per
    member species, so multi-species guilds are counted more than once.
    """
    result = {'status': 'unavailable', 'biomass': None, 'guild_biomass': None,
              'year': None, 'unit': None}
    if forms is None or any(forms.get(aspect) is None for aspect in ASPECTS):
        return result

    n = n_units(config)
    n_guilds = config['n_guilds']
    n_years = config['run_length'] + 1
    agg = is_agg_prod(config)

    growth, harvest = forms['growth'], forms['harvest']
    competition, predation = forms['competition'], forms['predation']

    guild_k, system_k = guild_carrying_capacity(config, params['carrying_capacity'])
    owner = guild_of(config)
    catch, effort, exploitation = _harvest_series(config)

    biomass = np.zeros((n_years, n))
    guild_biomass = np.zeros((n_years, n_guilds))
    biomass[0] = observed_biomass(config)[0]
    guild_biomass[0] = config['guild_biomass'][0]

    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        for t in range(1, n_years):
            if context is not None:
                context.checkpoint()
            prev, prev_guild = biomass[t - 1], guild_biomass[t - 1]
            for i in range(n):
                b = prev[i]
                g = growth.evaluate(i, b, params['growth_rate'], params['carrying_capacity'])
                h = harvest.evaluate(t - 1, i, catch, effort, exploitation, b, params['catchability'])
                c = competition.evaluate(t - 1, i, b, system_k, params['growth_rate'],
                                         guild_k[owner[i]], params['alpha'], params['beta_species'],
                                         params['beta_guilds'], prev, prev_guild)
                p = predation.evaluate(t - 1, i, params['rho'], params['handling'],
                                       params['exponent'], prev, b)
                value = b + g - h - c - p
                if not value >= 0:
                    result.update(status='invalid', year=t, unit=i)
                    return result
                biomass[t, i] = value
            guild_biomass[t] = biomass[t] if agg else sum_guilds(biomass[t], config['guilds'], n_guilds)

    result.update(status='ok', biomass=biomass, guild_biomass=guild_biomass)
    return result


def guild_carrying_capacity(config, k):
    """
    Guild and system carrying capacities.

    Parameters
    ----------
    config : dict
        Run configuration.
    k : np.ndarray
        Carrying capacity per unit; empty when growth is not logistic.

    Returns
    -------
    guild_k : np.ndarray
        Carrying capacity per guild (zeros when k is empty). For AGG-PROD the
        unit capacities are the guild capacities.
    system_k : np.float64
        Sum over guilds of the running guild total taken at every member.
    """
    n_guilds = config['n_guilds']
    guild_k = np.zeros(n_guilds)
    system_k = np.float64(0.0)
    k = np.asarray(k, dtype=float)
    if k.size == 0:
        return guild_k, system_k
    members = {g: [g] for g in range(n_guilds)} if is_agg_prod(config) else config['guilds']
    for g in range(n_guilds):
        for s in members[g]:
            guild_k[g] += k[s]
            system_k += guild_k[g]
    return guild_k, system_k


def _harvest_series(config):
    # Unit-level harvest inputs: guild totals for AGG-PROD (mean rate for exploitation).
    if not is_agg_prod(config):
        return config['catch'], config['effort'], config['exploitation']
    guilds, n_guilds = config['guilds'], config['n_guilds']
    sizes = np.array([len(guilds[g]) for g in range(n_guilds)], dtype=float)
    return (sum_guilds(config['catch'], guilds, n_guilds),
            sum_guilds(config['effort'], guilds, n_guilds),
            sum_guilds(config['exploitation'], guilds, n_guilds) / sizes)
