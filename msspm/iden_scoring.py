# iden_scoring.py

import logging
import numpy as np
from scipy.stats import norm

from msspm.krnl_config import ConfigurationError

logger = logging.getLogger(__name__)


def rescale_minmax(m):
    """Column-wise (x - min) / (max - min). Constant columns give NaN/Inf."""
    m = np.asarray(m, dtype=float)
    lo, hi = m.min(axis=0), m.max(axis=0)
    with np.errstate(divide='ignore', invalid='ignore'):
        return (m - lo) / (hi - lo)


def rescale_mean(m):
    """Column-wise (x - mean) / (max - min). Constant columns give NaN/Inf."""
    m = np.asarray(m, dtype=float)
    lo, hi = m.min(axis=0), m.max(axis=0)
    with np.errstate(divide='ignore', invalid='ignore'):
        return (m - m.mean(axis=0)) / (hi - lo)


def rescale(m, method):
    if method == 'Mean':
        return rescale_mean(m)
    if method != 'Min Max':
        logger.warning(f"No scaling algorithm named '{method}'. Defaulting to Min Max.")
    return rescale_minmax(m)


def sum_of_squares(est, obs):
    est, obs = np.asarray(est, dtype=float), np.asarray(obs, dtype=float)
    return float(np.sum((est - obs) ** 2))


def model_efficiency(est, obs):
    r"""
    Nash-Sutcliffe model efficiency.

    .. math::
        MEF = 1 - \frac{\sum (\hat{B} - B)^2}{\sum (B - \bar{B}_j)^2}

    with :math:`\bar{B}_j` the column mean of the observations. The best value
    is 1; values below 0 mean the column means predict better than the model.
    """
    est, obs = np.asarray(est, dtype=float), np.asarray(obs, dtype=float)
    sse = np.sum((est - obs) ** 2)
    sst = np.sum((obs - obs.mean(axis=0)) ** 2)
    with np.errstate(divide='ignore', invalid='ignore'):
        return float(1.0 - sse / sst)


def maximum_likelihood(est, obs):
    r"""
    Negative log-likelihood of lognormal observation errors.

    Residuals are taken on the log scale, :math:`r = \ln \hat{B} - \ln B`, with one
    standard deviation per column estimated from the residuals themselves:

    .. math::
        \sigma_j = \sqrt{\frac{1}{T} \sum_t r_{tj}^2}, \qquad
        NLL = -\sum_{t,j} \ln \phi(r_{tj}; 0, \sigma_j)

    Parameters
    ----------
    est, obs : np.ndarray
        Estimated and observed biomass on their original (unscaled) units.

    Returns
    -------
    float
        Negative log-likelihood (lower is better).

    Notes
    -----
    A perfect fit has zero residual spread; sigma is floored at 1e-12 so the
    score stays finite.
    """
    est, obs = np.asarray(est, dtype=float), np.asarray(obs, dtype=float)
    with np.errstate(divide='ignore', invalid='ignore'):
        r = np.log(est) - np.log(obs)
        sigma = np.maximum(np.sqrt(np.mean(r ** 2, axis=0)), 1e-12)
        return float(-np.sum(norm.logpdf(r, loc=0.0, scale=sigma)))


def fitness(est, obs, criterion, scaling):
    """
    Score an estimated trajectory against observations.

    Parameters
    ----------
    est, obs : np.ndarray
        Estimated and observed biomass, shape (n_years, N).
    criterion : str
        'Least Squares', 'Model Efficiency' or 'Maximum Likelihood'.
    scaling : str
        'Min Max' or 'Mean'; any other name falls back to min-max.

    Returns
    -------
    float
        Fitness to be minimized. Model Efficiency is returned negated; Maximum
        Likelihood is computed on the unscaled series.

    Raises
    ------
    ConfigurationError
        If the criterion is not recognized.
    """
    if criterion == 'Maximum Likelihood':
        return maximum_likelihood(est, obs)
    if criterion == 'Least Squares':
        return sum_of_squares(rescale(est, scaling), rescale(obs, scaling))
    if criterion == 'Model Efficiency':
        return -model_efficiency(rescale(est, scaling), rescale(obs, scaling))
    raise ConfigurationError(f"Unknown objective criterion '{criterion}'.")


def report_fitness(value, criterion):
    """Convert an internal fitness to its reported sign (Model Efficiency re-negated)."""
    return -value if criterion == 'Model Efficiency' else value
