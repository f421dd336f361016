# iden_objective.py

import logging
import time

from msspm.iden_scoring import fitness
from msspm.krnl_codec import decode
from msspm.krnl_config import observed_biomass
from msspm.krnl_simula import simula

logger = logging.getLogger(__name__)

DEFAULT_FITNESS = 99999.0
UNAVAILABLE_FITNESS = -1.0
PROGRESS_INTERVAL = 1000


class ForcedStop(Exception):
    """Raised inside an evaluation when the user has asked the run to stop."""


class RunContext:
    """
    Mutable state shared by one estimation run and its objective evaluations.

    Parameters
    ----------
    reporter : ProgressReporter, optional
        Receives a progress record every PROGRESS_INTERVAL evaluations.
    name : str, optional
        Run label prefix used in progress records (default: 'Run').
    criterion : str, optional
        Objective criterion, used to sign progress records.

    Attributes
    ----------
    run_num : int
        Run counter, set by the driver at the start of every run.
    num_evals : int
        Objective evaluations in the current run, sentinel returns included.
    quit : bool
        Cooperative cancellation flag. Set from any thread with request_stop();
        polled before every evaluation and once per simulated year. Survives
        reset() and is cleared by the driver once a cancelled run is recorded.
    start : float
        Wall-clock start of the current run (time.time()).
    """

    def __init__(self, reporter=None, name='Run', criterion='Least Squares'):
        self.reporter = reporter
        self.name = name
        self.criterion = criterion
        self.run_num = 0
        self.num_evals = 0
        self.quit = False
        self.start = time.time()

    @property
    def label(self):
        return f"{self.name} {self.run_num}-1"

    def request_stop(self):
        self.quit = True

    def clear_stop(self):
        """Drop a pending stop request so the context can drive another run."""
        self.quit = False

    def checkpoint(self):
        if self.quit:
            raise ForcedStop(f"{self.label} stopped by user after {self.num_evals} evaluations.")

    def reset(self, run_num):
        """Start a new run: set the run number and clear the evaluation counter."""
        self.run_num = run_num
        self.num_evals = 0
        self.start = time.time()

    def elapsed(self):
        return time.time() - self.start

    def record(self, value):
        self.num_evals += 1
        if self.reporter is not None and self.num_evals % PROGRESS_INTERVAL == 0:
            self.reporter.write_progress(self.label, self.num_evals, value, self.criterion)


def _record(context, value):
    if context is not None:
        context.record(value)
    return value


def objective_function(theta, config, forms, context=None):
    """
    Fitness of one candidate parameter vector.

    This is the function handed to the optimizers. It decodes the vector,
    simulates the biomass recurrence, and scores the trajectory against the
    observed series with the configured criterion and scaling.

    Parameters
    ----------
    theta : np.ndarray
        Full flat parameter vector (see krnl_codec.segment_layout).
    config : dict
        Validated run configuration.
    forms : dict or None
        Sub-model evaluators from krnl_forms.make_forms.
    context : RunContext, optional
        Counters, cancellation flag and progress reporter of the current run.

    Returns
    -------
    float
        Fitness to minimize. Special values:
            - DEFAULT_FITNESS (99999.0) when the simulated biomass goes negative
              or NaN; no scoring is done.
            - UNAVAILABLE_FITNESS (-1.0) when the evaluators are missing.

    Raises
    ------
    ForcedStop
        If the context's cancellation flag is set.
    """
    if context is not None:
        context.checkpoint()

    params = decode(config, theta)
    sim = simula(config, params, forms, context)

    if sim['status'] == 'unavailable':
        return _record(context, UNAVAILABLE_FITNESS)
    if sim['status'] == 'invalid':
        return _record(context, DEFAULT_FITNESS)

    value = fitness(sim['biomass'], observed_biomass(config), config['ob'], config['scaling'])
    return _record(context, value)
