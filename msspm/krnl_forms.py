# krnl_forms.py

import logging
import numpy as np

from msspm.krnl_config import ConfigurationError, n_units

logger = logging.getLogger(__name__)


ASPECTS = ('growth', 'harvest', 'competition', 'predation')

# Parameter segments declared by each shipped form, in codec order.
FORM_PARAMETERS = {
    'growth': {
        'Null': ('growth_rate',),
        'Linear': ('growth_rate',),
        'Logistic': ('growth_rate', 'carrying_capacity'),
    },
    'harvest': {
        'Null': (),
        'Catch': (),
        'Effort (qE)': ('catchability',),
        'Exploitation (F)': (),
    },
    'competition': {
        'Null': (),
        'NO_K': ('alpha',),
        'MS-PROD': ('beta_species', 'beta_guilds'),
        'AGG-PROD': ('beta_guilds',),
    },
    'predation': {
        'Null': (),
        'Type I': ('rho',),
        'Type II': ('rho', 'handling'),
        'Type III': ('rho', 'handling', 'exponent'),
    },
}

PARAMETER_NAMES = ('growth_rate', 'carrying_capacity', 'catchability', 'alpha',
                   'beta_species', 'beta_guilds', 'rho', 'handling', 'exponent')

# Custom forms installed with register_form: aspect -> name -> (term, parameters)
FORM_REGISTRY = {aspect: {} for aspect in ASPECTS}


def parameter_shape(name, config):
    """
    Shape of one parameter quantity.

    Vectors have one entry per simulated unit (species, or guilds for AGG-PROD).
    Interaction matrices are unit x unit, except beta_guilds which is unit x guild.
    """
    n = n_units(config)
    if name in ('growth_rate', 'carrying_capacity', 'catchability', 'exponent'):
        return (n,)
    if name in ('alpha', 'beta_species', 'rho', 'handling'):
        return (n, n)
    if name == 'beta_guilds':
        return (n, config['n_guilds'])
    raise ConfigurationError(f"Unknown parameter '{name}'.")


def register_form(aspect, name, term, parameters=()):
    """
    Install a custom sub-model term under a form name.

    Parameters
    ----------
    aspect : str
        One of 'growth', 'harvest', 'competition', 'predation'.
    name : str
        Form name used in the run configuration.
    term : callable
        Function with the same signature as the aspect's ``evaluate`` method,
        returning the contribution for one unit in one step.
    parameters : tuple[str], optional
        Parameter quantities the term reads, in codec order. Must be drawn from
        PARAMETER_NAMES.

    Raises
    ------
    ConfigurationError
        If the aspect or a declared parameter name is unknown.
    """
    if aspect not in FORM_REGISTRY:
        raise ConfigurationError(f"Unknown aspect '{aspect}'. Expected one of {ASPECTS}.")
    unknown = [p for p in parameters if p not in PARAMETER_NAMES]
    if unknown:
        raise ConfigurationError(f"Unknown parameter names {unknown} for form '{name}'.")
    FORM_REGISTRY[aspect][name] = (term, tuple(parameters))
    logger.info(f"Registered {aspect} form '{name}' with parameters {tuple(parameters)}.")


def form_parameters(aspect, name):
    """Parameter quantities declared by a form, in codec order."""
    if name in FORM_REGISTRY[aspect]:
        return FORM_REGISTRY[aspect][name][1]
    try:
        return FORM_PARAMETERS[aspect][name]
    except KeyError:
        raise ConfigurationError(f"Unknown {aspect} form '{name}'.") from None


class _Form:
    """Common behaviour of the four aspect evaluators."""

    aspect = None

    def __init__(self, name):
        self.name = name
        self.parameters = form_parameters(self.aspect, name)
        self._custom = FORM_REGISTRY[self.aspect].get(name, (None, ()))[0]

    def __repr__(self):
        return f"{type(self).__name__}({self.name!r})"

    def parameter_names(self, config=None):
        return list(self.parameters)

    def load_parameter_ranges(self, config):
        """
        Flattened (lower, upper) bounds for this form's parameters.

        Each side of ``config['ranges'][name]`` is broadcast to the parameter's
        shape and flattened row-major, so the result lines up with the codec.

        Raises
        ------
        ConfigurationError
            If a range is missing, cannot be broadcast, or has lower > upper.
        """
        ranges = config.get('ranges', {})
        out = []
        for name in self.parameters:
            if name not in ranges:
                raise ConfigurationError(f"Missing range for parameter '{name}' ({self.aspect} form '{self.name}').")
            shape = parameter_shape(name, config)
            try:
                lo, hi = ranges[name]
            except (TypeError, ValueError):
                raise ConfigurationError(f"Range for '{name}' must be a (lower, upper) pair.") from None
            try:
                lo = np.broadcast_to(np.asarray(lo, dtype=float), shape).ravel()
                hi = np.broadcast_to(np.asarray(hi, dtype=float), shape).ravel()
            except (TypeError, ValueError):
                raise ConfigurationError(f"Range for '{name}' cannot be broadcast to shape {shape}.") from None
            if np.any(lo > hi):
                raise ConfigurationError(f"Range for '{name}' has a lower bound above its upper bound.")
            out.extend(zip(lo.tolist(), hi.tolist()))
        return out


class GrowthForm(_Form):
    aspect = 'growth'

    def evaluate(self, i, b, growth_rate, carrying_capacity):
        if self._custom is not None:
            return self._custom(i, b, growth_rate, carrying_capacity)
        if self.name == 'Null':
            return 0.0
        if self.name == 'Linear':
            return growth_rate[i] * b
        return growth_rate[i] * b * (1.0 - b / carrying_capacity[i])


class HarvestForm(_Form):
    aspect = 'harvest'

    def evaluate(self, t, i, catch, effort, exploitation, b, catchability):
        if self._custom is not None:
            return self._custom(t, i, catch, effort, exploitation, b, catchability)
        if self.name == 'Catch':
            return catch[t, i]
        if self.name == 'Effort (qE)':
            return catchability[i] * effort[t, i] * b
        if self.name == 'Exploitation (F)':
            return exploitation[t, i] * b
        return 0.0


class CompetitionForm(_Form):
    aspect = 'competition'

    def evaluate(self, t, i, b, system_k, growth_rate, guild_k, alpha,
                 beta_species, beta_guilds, prev_biomass, prev_guild_biomass):
        if self._custom is not None:
            return self._custom(t, i, b, system_k, growth_rate, guild_k, alpha,
                                beta_species, beta_guilds, prev_biomass, prev_guild_biomass)
        if self.name == 'NO_K':
            return b * np.dot(alpha[i], prev_biomass)
        if self.name == 'MS-PROD':
            pressure = np.dot(beta_species[i], prev_biomass) + np.dot(beta_guilds[i], prev_guild_biomass)
            return growth_rate[i] * b / system_k * pressure
        if self.name == 'AGG-PROD':
            return growth_rate[i] * b / system_k * np.dot(beta_guilds[i], prev_guild_biomass)
        return 0.0


class PredationForm(_Form):
    aspect = 'predation'

    def evaluate(self, t, i, rho, handling, exponent, prev_biomass, b):
        if self._custom is not None:
            return self._custom(t, i, rho, handling, exponent, prev_biomass, b)
        if self.name == 'Type I':
            return b * np.dot(rho[i], prev_biomass)
        if self.name == 'Type II':
            return b * np.sum(rho[i] * prev_biomass / (1.0 + handling[i] * b))
        if self.name == 'Type III':
            bb = b ** exponent[i]
            return bb * np.sum(rho[i] * prev_biomass / (1.0 + handling[i] * bb))
        return 0.0


_FORM_CLASSES = {
    'growth': GrowthForm,
    'harvest': HarvestForm,
    'competition': CompetitionForm,
    'predation': PredationForm,
}


def make_forms(config):
    """
    Build the four sub-model evaluators named in a run configuration.

    Parameters
    ----------
    config : dict
        Run configuration with 'growth', 'harvest', 'competition' and
        'predation' form names.

    Returns
    -------
    dict[str, _Form]
        Evaluators keyed by aspect.

    Raises
    ------
    ConfigurationError
        If any form name is neither shipped nor registered.
    """
    return {aspect: cls(config[aspect]) for aspect, cls in _FORM_CLASSES.items()}


def load_bounds(config, forms):
    """Concatenate form bounds in growth, harvest, competition, predation order."""
    bounds = []
    for aspect in ASPECTS:
        bounds.extend(forms[aspect].load_parameter_ranges(config))
    return bounds
