# log_utils.py

import logging
import pickle
import sys
from pathlib import Path

import pandas as pd

PROGRESS_FILE = "msspm_progress.csv"
STOP_FILE = "msspm_stop.txt"
ARCHIVE_FILE = "msspm_results.jac"
PROGRESS_COLUMNS = ['run', 'count', 'fitness', 'unused']


def configure_logger(name=None, level=logging.INFO):
    r"""
    Configure a logger with standard output formatting for estimation runs.

    Existing handlers are removed so repeated calls do not duplicate messages, a
    single stdout handler is attached, and propagation to parent loggers is disabled.

    Parameters
    ----------
    name : str, optional
        Logger name. If None, configures the root logger (default: None).
    level : int, optional
        Logging level (default: logging.INFO).

    Returns
    -------
    logger : logging.Logger
        Configured logger instance.

    Examples
    --------
    >>> logger = configure_logger('msspm', level=logging.DEBUG)
    >>> logger.info("Starting estimation")
    INFO: Starting estimation
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.hasHandlers():
        logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
    logger.addHandler(handler)

    logger.propagate = False
    return logger


class ProgressReporter:
    """
    File-based progress channel between a running estimation and its observers.

    Progress records are appended to a CSV-like text file, one line per record,
    opening and closing the file for each write so a reader in another process
    always sees complete lines. At the end of a run a stop record is written to a
    separate file.

    Parameters
    ----------
    progress_path : str or Path, optional
        Progress file (default: 'msspm_progress.csv' in the working directory).
    stop_path : str or Path, optional
        Stop file (default: 'msspm_stop.txt' in the working directory).
    """

    def __init__(self, progress_path=None, stop_path=None):
        self.progress_path = Path(progress_path) if progress_path else Path.cwd() / PROGRESS_FILE
        self.stop_path = Path(stop_path) if stop_path else Path.cwd() / STOP_FILE

    def write_progress(self, label, count, fitness, criterion, unused=-1):
        """
        Append one progress record ``"label, count, fitness, unused"``.

        Model Efficiency is minimized as its negation; the record carries the
        re-negated value so observers see it approach +1.
        """
        adjusted = -fitness if criterion == 'Model Efficiency' else fitness
        with open(self.progress_path, 'a') as f:
            f.write(f"{label}, {count}, {adjusted}, {unused}\n")

    def write_stop(self, elapsed, summary):
        """Write the stop record: command, empty run name, elapsed time, summary."""
        with open(self.stop_path, 'w') as f:
            f.write("Stop\n")
            f.write("\n")
            f.write(f"{elapsed}\n")
            f.write(f"{summary}\n")

    def read_progress(self):
        """
        Read the progress file.

        Returns
        -------
        pd.DataFrame
            Columns 'run', 'count', 'fitness', 'unused'. Empty when no record has
            been written yet.
        """
        if not self.progress_path.exists():
            return pd.DataFrame(columns=PROGRESS_COLUMNS)
        return pd.read_csv(self.progress_path, names=PROGRESS_COLUMNS, skipinitialspace=True)

    def read_stop(self):
        """Lines of the stop record, or None if the run has not stopped."""
        if not self.stop_path.exists():
            return None
        return self.stop_path.read_text().splitlines()

    def clear(self):
        for path in (self.progress_path, self.stop_path):
            if path.exists():
                path.unlink()


def read_excel(path=None):
    """
    Read every sheet of a run workbook.

    Parameters
    ----------
    path : str or Path, optional
        Workbook path. Defaults to 'data.xlsx' in the current working directory.

    Returns
    -------
    data : dict[str, pd.DataFrame]
        Sheet name -> DataFrame.

    Raises
    ------
    FileNotFoundError
        If the workbook does not exist.

    See Also
    --------
    krnl_config.config_from_excel : Builds a run configuration from these sheets.
    """
    file_path = Path(path) if path else Path.cwd() / "data.xlsx"

    if not file_path.exists():
        raise FileNotFoundError(
            f"{file_path.name} not found. "
            f"Please create the run workbook as Excel and add it to your project directory."
        )

    print(f"[INFO] Reading from {file_path.name}")
    return pd.read_excel(file_path, sheet_name=None)


def save_to_jac(results, path=None):
    """
    Serialize estimation results to a binary .jac archive using pickle.

    Parameters
    ----------
    results : object
        Results to archive, typically an EstimationResult or a dict of them.
    path : str or Path, optional
        Archive path (default: 'msspm_results.jac' in the working directory).

    Returns
    -------
    Path or None
        Path written, or None if writing failed.

    Notes
    -----
    Pickle archives can execute code when loaded. Only load archives from
    trusted sources.
    """
    file_path = Path(path) if path else Path.cwd() / ARCHIVE_FILE
    try:
        with open(file_path, 'wb') as file:
            pickle.dump(results, file, protocol=pickle.HIGHEST_PROTOCOL)
        print(f"[INFO] Results saved to: {file_path}")
        return file_path
    except (OSError, pickle.PicklingError) as e:
        print(f"[ERROR] Failed to save results: {e}")
        return None


def load_from_jac(path=None):
    """
    Load results archived with save_to_jac.

    Returns
    -------
    object or None
        The archived results, or None if the file is missing or unreadable.
    """
    file_path = Path(path) if path else Path.cwd() / ARCHIVE_FILE
    if not file_path.exists():
        print(f"[INFO] No archive found at: {file_path}")
        return None
    try:
        with open(file_path, 'rb') as file:
            results = pickle.load(file)
        print(f"[INFO] Results loaded from: {file_path}")
        return results
    except (OSError, pickle.UnpicklingError, EOFError) as e:
        print(f"[ERROR] Could not load {file_path.name}: {e}")
        return None
