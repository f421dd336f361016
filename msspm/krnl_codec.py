# krnl_codec.py

import numpy as np

from msspm.krnl_forms import ASPECTS, PARAMETER_NAMES, form_parameters, parameter_shape


def segment_layout(config):
    """
    Ordered parameter segments of the flat parameter vector.

    The layout is a pure function of the configured form names: growth segments
    first, then harvest, competition and predation, each in the order its form
    declares them.

    Parameters
    ----------
    config : dict
        Run configuration (form names, n_species, n_guilds).

    Returns
    -------
    list[tuple[str, tuple[int, ...]]]
        (parameter name, shape) per active segment.

    Examples
    --------
    >>> cfg = {'growth': 'Logistic', 'harvest': 'Null', 'competition': 'NO_K',
    ...        'predation': 'Null', 'n_species': 2, 'n_guilds': 1}
    >>> segment_layout(cfg)
    [('growth_rate', (2,)), ('carrying_capacity', (2,)), ('alpha', (2, 2))]
    """
    layout = []
    for aspect in ASPECTS:
        for name in form_parameters(aspect, config[aspect]):
            layout.append((name, parameter_shape(name, config)))
    return layout


def n_parameters(config):
    return int(sum(np.prod(shape, dtype=int) for _, shape in segment_layout(config)))


def decode(config, theta):
    """
    Split a flat parameter vector into named quantities.

    Parameters
    ----------
    config : dict
        Run configuration.
    theta : array-like
        Flat parameter vector of length n_parameters(config).

    Returns
    -------
    dict[str, np.ndarray]
        One entry per name in PARAMETER_NAMES. Active quantities take their
        segment shape (matrices row-major); inactive ones are empty arrays.

    Raises
    ------
    ValueError
        If theta is shorter than the layout requires.
    """
    theta = np.asarray(theta, dtype=float).ravel()
    params = {name: np.empty(0) for name in PARAMETER_NAMES}
    pos = 0
    for name, shape in segment_layout(config):
        size = int(np.prod(shape, dtype=int))
        if pos + size > theta.size:
            raise ValueError(f"Parameter vector of length {theta.size} is too short for segment '{name}'.")
        params[name] = theta[pos:pos + size].reshape(shape)
        pos += size
    return params


def encode(config, params):
    """
    Concatenate named quantities into a flat vector in canonical segment order.

    Used to build initial guesses and reference vectors; the inverse of decode.
    """
    pieces = [np.asarray(params[name], dtype=float).reshape(shape).ravel()
              for name, shape in segment_layout(config)]
    if not pieces:
        return np.empty(0)
    return np.concatenate(pieces)
