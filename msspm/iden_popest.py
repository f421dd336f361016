# iden_popest.py

import logging

import numpy as np
from pymoo.algorithms.soo.nonconvex.de import DE
from pymoo.algorithms.soo.nonconvex.pattern import PatternSearch
from pymoo.core.problem import ElementwiseProblem
from pymoo.operators.sampling.lhs import LHS
from pymoo.optimize import minimize as pymoo_minimize

from msspm.iden_parmest import ParameterEstimator
from msspm.iden_scoring import report_fitness
from msspm.krnl_config import ConfigurationError

logger = logging.getLogger(__name__)

POPULATION_METHODS = ('DE', 'PS', 'DEPS')


class _Problem(ElementwiseProblem):
    def __init__(self, tracker, bounds, objective_args):
        lower, upper = np.array(bounds, dtype=float).T
        super().__init__(n_var=len(bounds), n_obj=1, xl=lower, xu=upper)
        self.tracker = tracker
        self.objective_args = objective_args

    def _evaluate(self, x, out, *args, **kwargs):
        out['F'] = self.tracker(x, *self.objective_args)


class PopulationEstimator(ParameterEstimator):
    """
    Repeated population-based search over the same objective and lifecycle.

    Each estimation runs the pymoo search 'n_runs' times and keeps the best
    point over all repetitions. The summary reports the number of repetitions
    and the standard deviation of their best fitness values.

    Run configuration keys used on top of ParameterEstimator's:
        - 'meth' : 'DE' (differential evolution with LHS sampling), 'PS'
          (pattern search from the range midpoints) or 'DEPS' (DE, then pattern
          search from the DE optimum).
        - 'popsize' : int, population size (default: 50).
        - 'n_gen' : int, generations per search (default: 100).
        - 'n_runs' : int, repetitions (default: 1).
        - 'seed' : int or None, seed of the first repetition; repetition r
          uses seed + r.
    """

    def _resolve(self, name):
        if name not in POPULATION_METHODS:
            raise ConfigurationError(f"Unknown population method '{name}'. Expected one of {POPULATION_METHODS}.")
        return name

    def _search(self, method, tracker, x0, bounds, args, cfg):
        if len(x0) == 0:
            return super()._search(method, tracker, x0, bounds, args, cfg)

        n_runs = max(1, int(cfg.get('n_runs', 1)))
        popsize = int(cfg.get('popsize', 50))
        n_gen = int(cfg.get('n_gen', 100))
        seed = cfg.get('seed')
        problem = _Problem(tracker, bounds, args)

        bests = []
        for r in range(n_runs):
            res = _pymoo_runner(problem, method, x0, popsize, n_gen,
                                seed=None if seed is None else seed + r)
            best = float(np.atleast_1d(res.F)[0])
            bests.append(best)
            logger.info(f"Sub-run {r + 1}/{n_runs} best fitness: {report_fitness(best, cfg['ob'])}")

        return {'code': 1, 'n_runs': n_runs, 'fitness_std': float(np.std(bests))}


def _pymoo_runner(problem, method, x0, popsize, n_gen, seed=None):
    """
    One pymoo search.

    Parameters
    ----------
    problem : ElementwiseProblem
        Problem over the free parameters.
    method : str
        'DE', 'PS' or 'DEPS'.
    x0 : np.ndarray
        Starting point for pattern search.
    popsize : int
        DE population size.
    n_gen : int
        Generations (DEPS gives half to DE and all of them to the refinement).
    seed : int, optional
        Random seed.

    Returns
    -------
    pymoo.core.result.Result
        Result of the last stage.
    """
    if method == 'PS':
        return pymoo_minimize(problem, PatternSearch(), termination=('n_gen', n_gen),
                              seed=seed, verbose=False, x0=x0)

    if method == 'DE':
        algorithm = DE(pop_size=popsize, sampling=LHS(), variant='DE/rand/1/bin', CR=0.7)
        return pymoo_minimize(problem, algorithm, termination=('n_gen', n_gen),
                              seed=seed, verbose=False)

    algorithm_de = DE(pop_size=popsize, sampling=LHS(), variant='DE/rand/1/bin', CR=0.9)
    res_de = pymoo_minimize(problem, algorithm_de, termination=('n_gen', max(1, n_gen // 2)),
                            seed=seed, verbose=False)
    return pymoo_minimize(problem, PatternSearch(), termination=('n_gen', n_gen),
                          seed=seed, verbose=False, x0=res_de.X)


def popest(config, reporter=None, on_complete=None, context=None):
    """
    Estimate parameters with a one-off PopulationEstimator.

    Defaults 'meth' to 'DE' when the configuration does not name a method.

    Returns
    -------
    scipy.optimize.OptimizeResult
        Estimation result with 'n_runs' and 'fitness_std' from the repetitions.
    """
    estimator = PopulationEstimator(reporter=reporter, on_complete=on_complete)
    return estimator.estimate_parameters({'meth': 'DE', **config}, context=context)
