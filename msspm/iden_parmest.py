# iden_parmest.py

import logging
import time

import numpy as np
import scipy
from numdifftools import Hessian
from scipy.optimize import OptimizeResult, differential_evolution, direct, dual_annealing, minimize

from msspm.iden_objective import ForcedStop, RunContext, objective_function
from msspm.iden_scoring import report_fitness
from msspm.iden_utils import create_output_str
from msspm.krnl_codec import decode
from msspm.krnl_config import ConfigurationError, check_config
from msspm.krnl_forms import load_bounds, make_forms
from msspm.log_utils import ProgressReporter

logger = logging.getLogger(__name__)


RETURN_CODES = {
    1: 'SUCCESS',
    2: 'STOPVAL_REACHED',
    3: 'FTOL_REACHED',
    4: 'XTOL_REACHED',
    5: 'MAXEVAL_REACHED',
    6: 'MAXTIME_REACHED',
    7: 'MAXITER_REACHED',
    -1: 'FAILURE',
    -2: 'INVALID_ARGS',
    -3: 'OUT_OF_MEMORY',
    -4: 'ROUNDOFF_LIMITED',
    -5: 'FORCED_STOP',
}

MINIMIZERS = ('NMS', 'POWELL', 'COBYLA', 'SLSQP', 'LMBFGS', 'TNC', 'TC',
              'DE', 'DA', 'DIRECT', 'DIRECT_L')

# Algorithm names carried over from NLopt-based run files.
MINIMIZER_ALIASES = {
    'LN_NELDERMEAD': 'NMS',
    'LN_SBPLX': 'NMS',
    'LN_PRAXIS': 'POWELL',
    'LN_BOBYQA': 'POWELL',
    'LN_COBYLA': 'COBYLA',
    'LD_SLSQP': 'SLSQP',
    'LD_LBFGS': 'LMBFGS',
    'LD_MMA': 'TNC',
    'GN_DIRECT_L': 'DIRECT_L',
    'GN_ORIG_DIRECT_L': 'DIRECT_L',
    'GN_DIRECT_L_RAND': 'DIRECT_L',
    'GN_CRS2_LM': 'DE',
    'GD_StoGO': 'DA',
}


class StoppingCriterion(Exception):
    """Raised from an evaluation when a stop value, time or evaluation budget is reached."""

    def __init__(self, code):
        super().__init__(return_code(code))
        self.code = code


def return_code(code):
    """Name of an optimizer return code, e.g. return_code(2) -> 'STOPVAL_REACHED'."""
    return RETURN_CODES.get(code, 'UNKNOWN')


def resolve_minimizer(name):
    """
    Map a minimizer key or legacy algorithm name to a supported key.

    Raises
    ------
    ConfigurationError
        If the name is neither a key nor a known alias.
    """
    key = MINIMIZER_ALIASES.get(name, name)
    if key not in MINIMIZERS:
        raise ConfigurationError(f"Unknown minimizer '{name}'. Expected one of {MINIMIZERS}.")
    return key


def _expand(x, template, free):
    theta = template.copy()
    theta[free] = x
    return theta


class _Tracker:
    """
    Objective seen by the optimizers: free parameters in, fitness out.

    Fixed parameters are re-inserted from the template before every evaluation.
    The best point seen so far is kept so that a run interrupted by a stopping
    criterion or an optimizer error still has a result.
    """

    def __init__(self, template, free, stopval=None, maxtime=None, maxeval=None):
        self.template = template
        self.free = free
        self.stopval = stopval
        self.maxtime = maxtime
        self.maxeval = maxeval
        self.start = time.time()
        self.nfev = 0
        self.best_x = None
        self.best_f = np.nan

    def __call__(self, x, config, forms, context):
        if self.maxeval is not None and self.nfev >= self.maxeval:
            raise StoppingCriterion(5)
        if self.maxtime is not None and time.time() - self.start >= self.maxtime:
            raise StoppingCriterion(6)

        f = objective_function(_expand(x, self.template, self.free), config, forms, context)
        self.nfev += 1
        if np.isnan(self.best_f) or f < self.best_f:
            self.best_x = np.array(x, dtype=float)
            self.best_f = f
        if self.stopval is not None and f <= self.stopval:
            raise StoppingCriterion(2)
        return f


def _scipy_code(res):
    """
    Return code of a native scipy result.

    Evaluation limits map to MAXEVAL_REACHED (5). The optimizer's own iteration
    limit ('maxit') maps to MAXITER_REACHED (7), which has no NLopt counterpart.
    """
    if res.get('success', False):
        return 1
    msg = str(res.get('message', '')).lower()
    if 'evaluation' in msg or 'maxfun' in msg or 'maxfev' in msg:
        return 5
    if 'iteration' in msg or 'maxiter' in msg:
        return 7
    if 'precision' in msg or 'roundoff' in msg:
        return -4
    return -1


def _runner(method, tracker, x0, bounds, args, maxit, tol, seed=None):
    """
    Run one scipy optimizer over the free parameters.

    Parameters
    ----------
    method : str
        Minimizer key (see MINIMIZERS).
    tracker : _Tracker
        Objective wrapper.
    x0 : np.ndarray
        Initial guess of the free parameters.
    bounds : list[tuple[float, float]]
        Bounds of the free parameters.
    args : tuple
        Extra arguments forwarded to the objective: (config, forms, context).
    maxit : int
        Maximum optimizer iterations.
    tol : float
        Convergence tolerance.
    seed : int, optional
        Seed of the stochastic global methods (DE, DA).

    Returns
    -------
    scipy.optimize.OptimizeResult
        Native optimizer result.
    """
    if method == 'NMS':
        return minimize(tracker, x0, args=args, method='Nelder-Mead', bounds=bounds,
                        options={'maxiter': maxit, 'fatol': tol, 'xatol': tol, 'disp': False})
    if method == 'POWELL':
        return minimize(tracker, x0, args=args, method='Powell', bounds=bounds,
                        options={'maxiter': maxit, 'ftol': tol, 'disp': False})
    if method == 'COBYLA':
        return minimize(tracker, x0, args=args, method='COBYLA', bounds=bounds, tol=tol,
                        options={'maxiter': maxit, 'disp': False})
    if method == 'SLSQP':
        return minimize(tracker, x0, args=args, method='SLSQP', bounds=bounds,
                        options={'maxiter': maxit, 'ftol': tol, 'disp': False})
    if method == 'LMBFGS':
        return minimize(tracker, x0, args=args, method='L-BFGS-B', bounds=bounds,
                        options={'maxiter': maxit, 'ftol': tol, 'disp': False})
    if method == 'TNC':
        return minimize(tracker, x0, args=args, method='TNC', bounds=bounds,
                        options={'maxfun': maxit, 'ftol': tol, 'disp': False})
    if method == 'TC':
        return minimize(tracker, x0, args=args, method='trust-constr', bounds=bounds,
                        options={'maxiter': maxit, 'xtol': tol, 'gtol': 1e-2})
    if method == 'DE':
        return differential_evolution(tracker, bounds, args=args, x0=x0,
                                      maxiter=maxit, popsize=18, tol=tol,
                                      strategy='best1bin', mutation=(0.5, 1.5),
                                      recombination=0.7, polish=False, seed=seed,
                                      updating='deferred', workers=1)
    if method == 'DA':
        return dual_annealing(tracker, bounds, args=args, x0=x0, maxiter=maxit, seed=seed)
    if method in ('DIRECT', 'DIRECT_L'):
        return direct(tracker, bounds, args=args, maxiter=maxit,
                      locally_biased=(method == 'DIRECT_L'))
    raise ConfigurationError(f"Unknown minimizer '{method}'.")


class ParameterEstimator:
    """
    Drives one estimation run per call: bounds, optimizer, result and reporting.

    Parameters
    ----------
    reporter : ProgressReporter, optional
        Progress/stop file writer (default: ProgressReporter() in the working
        directory).
    on_complete : callable, optional
        Called once per run as ``on_complete(summary, show_diagnostics)``.

    Attributes
    ----------
    run_num : int
        Number of runs started by this estimator.
    context : RunContext or None
        Context of the current (or last) run.
    result : scipy.optimize.OptimizeResult or None
        Result of the last run.
    """

    n_runs = 1

    def __init__(self, reporter=None, on_complete=None):
        self.reporter = reporter if reporter is not None else ProgressReporter()
        self.on_complete = on_complete
        self.run_num = 0
        self.context = None
        self.result = None

    # ----- cancellation -----

    def stop(self):
        """Ask the current run to stop at its next cancellation point."""
        if self.context is not None:
            self.context.request_stop()

    # ----- run -----

    def estimate_parameters(self, config, context=None):
        r"""
        Estimate the model parameters that best reproduce the observed biomass.

        Parameters
        ----------
        config : dict
            Run configuration (see krnl_config.check_config). Optimizer settings:
                - 'meth' : str
                    Minimizer key or legacy algorithm alias.
                - 'ob' : str
                    'Least Squares', 'Model Efficiency' or 'Maximum Likelihood'.
                - 'stopval' : float or None
                    Stop as soon as the reported fitness reaches this value.
                - 'maxtime' : float or None
                    Wall-clock budget in seconds.
                - 'maxeval' : int or None
                    Objective evaluation budget.
                - 'maxit', 'tol' : int, float
                    Native iteration limit and tolerance of the optimizer.
                - 'var-cov' : str or None
                    'H' adds a numerical Hessian and covariance of the free
                    parameters after a normal completion.
        context : RunContext, optional
            Caller-owned context. Its counters are reset for the run; a cancellation
            flag already set is kept, so the run stops before its first evaluation.
            The flag is cleared once a cancelled run has been recorded, so the
            context can be reused.

        Returns
        -------
        result : scipy.optimize.OptimizeResult
            - 'x' : np.ndarray
                Best full parameter vector.
            - 'fun' : float
                Best internal fitness (Model Efficiency negated).
            - 'fitness' : float
                Best fitness in its reported sign.
            - 'params' : dict[str, np.ndarray]
                Decoded best parameters.
            - 'code', 'message' : int, str
                Optimizer return code and its name.
            - 'state' : str
                'completed', 'completed_with_exception' or 'cancelled'.
            - 'nfev', 'run', 'elapsed' : int, int, float
            - 'summary' : str
            - 'n_runs', 'fitness_std' : int, float
            - 'hessian', 'v', 'free' : np.ndarray, optional
                Present when 'var-cov' is 'H'.

        Notes
        -----
        No exception escapes this method. Cancellation ends the run in state
        'cancelled'; stopping criteria end it normally with their return code;
        configuration and optimizer errors are logged and end it in state
        'completed_with_exception' with the best point seen so far.

        Parameters whose lower and upper bounds coincide are held at that value and
        removed from the search space. The initial guess of the others is the
        midpoint of their range.

        Examples
        --------
        >>> estimator = ParameterEstimator(reporter=ProgressReporter(tmp / 'p.csv', tmp / 's.txt'))
        >>> res = estimator.estimate_parameters(config)
        >>> res.state, res.message
        ('completed', 'SUCCESS')
        >>> estimator.get_est_growth_rates()
        array([0.5, 0.3])
        """
        self.run_num += 1
        if context is None:
            context = RunContext(self.reporter)
        elif context.reporter is None:
            context.reporter = self.reporter
        context.reset(self.run_num)
        self.context = context

        try:
            cfg = check_config(config)
            forms = make_forms(cfg)
            bounds = np.array(load_bounds(cfg, forms), dtype=float).reshape(-1, 2)
            method = self._resolve(cfg['meth'])
        except (ConfigurationError, TypeError, ValueError) as e:
            logger.error(f"Invalid run configuration: {e}")
            return self._abort(config, context, e)

        context.name = cfg['name']
        context.criterion = cfg['ob']

        lower, upper = bounds[:, 0], bounds[:, 1]
        template = np.where(lower == upper, lower, lower + (upper - lower) / 2.0)
        free = lower < upper

        direction = 'maximum' if cfg['ob'] == 'Model Efficiency' else 'minimum'
        stopval = self._apply_stopping(cfg)
        tracker = _Tracker(template, free, stopval=stopval,
                           maxtime=cfg['maxtime'], maxeval=cfg['maxeval'])
        args = (cfg, forms, context)

        state, code = 'completed', 1
        found = {}
        try:
            found = self._search(method, tracker, template[free], list(map(tuple, bounds[free])), args, cfg)
            code = found.get('code', 1)
            logger.info(f"Optimizer return code: {return_code(code)}")
        except ForcedStop as e:
            logger.info(f"User terminated application: {e}")
            state, code = 'cancelled', -5
        except StoppingCriterion as e:
            logger.info(f"Optimizer return code: {return_code(e.code)}")
            code = e.code
        except MemoryError:
            logger.error("Optimizer ran out of memory.")
            state, code = 'completed_with_exception', -3
        except Exception as e:
            logger.exception(f"Optimizer failed: {e}")
            state, code = 'completed_with_exception', -2 if isinstance(e, ValueError) else -1

        x_free = tracker.best_x if tracker.best_x is not None else template[free]
        x = _expand(x_free, template, free)
        fun = tracker.best_f
        params = decode(cfg, x)

        logger.info(f"Found {direction} fitness of: {report_fitness(fun, cfg['ob'])}")
        for i, value in enumerate(x):
            logger.debug(f"  Est Param[{i}]: {value}")

        res = OptimizeResult(
            x=x, fun=fun, fitness=report_fitness(fun, cfg['ob']), params=params,
            code=code, message=return_code(code), state=state,
            success=(state == 'completed' and code > 0),
            nfev=context.num_evals, run=self.run_num,
            n_runs=found.get('n_runs', self.n_runs), fitness_std=found.get('fitness_std', 0.0),
        )

        if state == 'completed' and cfg.get('var-cov') == 'H' and free.any():
            self._hessian(res, x, template, free, cfg, forms)

        initial_k = decode(cfg, template)['carrying_capacity']
        res.summary = create_output_str(cfg, params, len(x), cfg.get('n_total_params', len(x)),
                                        res.n_runs, res.fitness, res.fitness_std, initial_k=initial_k)
        return self._finish(res, context, cfg.get('diagnostics', False))

    def _resolve(self, name):
        return resolve_minimizer(name)

    def _apply_stopping(self, cfg):
        stopval = cfg['stopval']
        if stopval is not None:
            logger.info(f"Setting stop fitness value: {stopval}")
            if cfg['ob'] == 'Model Efficiency':
                stopval = -stopval
        if cfg['maxtime'] is not None:
            logger.info(f"Setting max run time: {cfg['maxtime']}")
        if cfg['maxeval'] is not None:
            logger.info(f"Setting max num function evaluations: {cfg['maxeval']}")
        return stopval

    def _search(self, method, tracker, x0, bounds, args, cfg):
        """Single scipy search; returns the return code and run statistics."""
        if len(x0) == 0:
            tracker(x0, *args)
            return {'code': 1, 'n_runs': 1, 'fitness_std': 0.0}
        native = _runner(method, tracker, x0, bounds, args, cfg['maxit'], cfg['tol'], cfg.get('seed'))
        return {'code': _scipy_code(native), 'n_runs': 1, 'fitness_std': 0.0}

    def _hessian(self, res, x, template, free, cfg, forms):
        try:
            loss = lambda t: objective_function(_expand(t, template, free), cfg, forms)
            H = Hessian(loss, step=1e-4, method='central', order=2)(x[free])
            res.hessian = H
            res.v = np.linalg.pinv(H)
        except Exception as e:
            logger.warning(f"Hessian computation failed: {e}")
            res.hessian = None
            res.v = None
        res.free = free

    def _abort(self, config, context, error):
        res = OptimizeResult(
            x=np.empty(0), fun=np.nan, fitness=np.nan, params={}, code=-2,
            message=return_code(-2), state='completed_with_exception', success=False,
            nfev=context.num_evals, run=self.run_num, n_runs=0, fitness_std=0.0,
            summary=f"Run aborted: {error}",
        )
        diagnostics = config.get('diagnostics', False) if isinstance(config, dict) else False
        return self._finish(res, context, diagnostics)

    def _finish(self, res, context, show_diagnostics):
        res.elapsed = context.elapsed()
        elapsed = f"Elapsed runtime: {res.elapsed:.3f} sec"
        logger.info(elapsed)
        self.result = res
        try:
            self.reporter.write_stop(elapsed, res.summary)
        except OSError as e:
            logger.exception(f"Could not write the stop record: {e}")
        if self.on_complete is not None:
            try:
                self.on_complete(res.summary, show_diagnostics)
            except Exception as e:
                logger.exception(f"Completion callback failed: {e}")
        if res.state == 'cancelled':
            context.clear_stop()
        return res

    # ----- accessors -----

    def _est(self, name):
        if self.result is None or name not in self.result.params:
            return np.empty(0)
        return np.array(self.result.params[name], copy=True)

    def get_est_growth_rates(self):
        return self._est('growth_rate')

    def get_est_carrying_capacities(self):
        return self._est('carrying_capacity')

    def get_est_catchability(self):
        return self._est('catchability')

    def get_est_competition_alpha(self):
        return self._est('alpha')

    def get_est_competition_beta_species(self):
        return self._est('beta_species')

    def get_est_competition_beta_guilds(self):
        return self._est('beta_guilds')

    def get_est_predation(self):
        return self._est('rho')

    def get_est_handling(self):
        return self._est('handling')

    def get_est_exponent(self):
        return self._est('exponent')

    def get_version(self):
        return f"scipy {scipy.__version__}"


def parmest(config, reporter=None, on_complete=None, context=None):
    """
    Estimate parameters with a one-off ParameterEstimator.

    Parameters
    ----------
    config : dict
        Run configuration (see ParameterEstimator.estimate_parameters).
    reporter : ProgressReporter, optional
        Progress/stop file writer.
    on_complete : callable, optional
        Completion callback ``on_complete(summary, show_diagnostics)``.
    context : RunContext, optional
        Caller-owned context, e.g. to cancel the run from another thread.

    Returns
    -------
    scipy.optimize.OptimizeResult
        Estimation result.

    Examples
    --------
    >>> res = parmest({**config, 'meth': 'DE', 'ob': 'Model Efficiency'})
    >>> print(res.summary)
    """
    estimator = ParameterEstimator(reporter=reporter, on_complete=on_complete)
    return estimator.estimate_parameters(config, context=context)
