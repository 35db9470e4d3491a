'''
This module provides a logger class for handling console and file logging with verbosity control.
It includes methods for printing messages with different log levels, timing scoped blocks
and attaching a scoped output prefix to every emitted line (used by the eigensolvers
to tag the messages of a nested solve).

@note If one wants to use file logging, the environment variable PYLOGFILE should be set to a non-zero value.
@note If one wants to disable colored output, the environment variable PYLOGCOLORS should be set to '0'.

-------------------------------------------------------
file        :   krylov_eigen/common/flog.py
description :   Console and file logging with verbosity control and output prefixes.
-------------------------------------------------------
'''

__all__         = [
    "Logger",
    "Colors",
    "get_global_logger"
]

import os
import re
import sys
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from time import perf_counter
from typing import Optional, Iterator

# set the logging level to WARNING
logging.getLogger("jax").setLevel(logging.WARNING)
logging.getLogger("numba").setLevel(logging.WARNING)

######################################################
#! PRINT THE OUTPUT WITH A GIVEN COLOR
######################################################

class Colors:
    """
    ANSI escape codes of the console colors.
    """

    black   = "\033[30m"
    red     = "\033[31m"
    green   = "\033[32m"
    yellow  = "\033[33m"
    blue    = "\033[34m"
    reset   = "\033[0m"

    @classmethod
    def code(cls, name: str) -> str:
        return getattr(cls, name.lower(), cls.reset) if name else cls.reset

# Regex for ANSI colour codes (CSI sequences: ESC [ ... m)
_ansi_escape = re.compile(r'\x1b\[[0-9;]*m')

class StripAnsiFormatter(logging.Formatter):
    def format(self, record):
        msg = super().format(record)
        return _ansi_escape.sub('', msg)

######################################################
#! PRINT THE OUTPUT WITH A GIVEN LEVEL
######################################################

ENV_LOGGER_FILE     = 'PYLOGFILE'
ENV_LOGGER_COLORS   = 'PYLOGCOLORS'

class Logger:
    """
    Logger class for handling console and file logging with verbosity control.

    Every message is prefixed with the current output prefix (empty by default).
    The prefix is a scoped diagnostic context: ``output_prefix`` pushes a label
    and restores the previous one on exit.
    """

    LEVELS_R = {
        'debug'   : logging.DEBUG,
        'info'    : logging.INFO,
        'warning' : logging.WARNING,
        'error'   : logging.ERROR,
    }

    def __init__(self,
                name            : str           = "Global",
                logfile         : Optional[str] = None,
                lvl             : int           = logging.INFO,
                append_ts       : bool          = False,
                use_ts_in_cmd   : bool          = False):
        """
        Initialize the logger instance.

        Args:
            name (str):
                Name of the underlying ``logging`` logger.
            logfile (str):
                Name of the log file (without extension if empty, a timestamp will be used).
            lvl (int):
                Logging level (default: logging.INFO).
            append_ts (bool):
                Whether to append a timestamp to the log file name (default: False).
            use_ts_in_cmd (bool):
                Whether to use a timestamp in console output (default: False).
        """
        self.now                = datetime.now()
        self.now_str            = self.now.strftime("%d_%m_%Y_%H-%M_%S")
        self.lvl                = Logger.LEVELS_R.get(lvl, logging.INFO) if isinstance(lvl, str) else lvl
        self.handler_added      = False
        self.use_console_ts     = use_ts_in_cmd
        self.has_colors         = sys.stdout.isatty() and os.environ.get(ENV_LOGGER_COLORS, '1') != '0'
        self.prefix             = ""

        self.logger             = logging.getLogger(name or __name__)
        self.logger.setLevel(self.lvl)
        self.logger.propagate   = False

        console_fmt = '%(asctime)s [%(levelname)s] %(message)s' if use_ts_in_cmd else '[%(levelname)s] %(message)s'

        # Clear any existing handlers on this specific logger
        for h in list(self.logger.handlers):
            self.logger.removeHandler(h)
            h.close()

        ch = logging.StreamHandler(sys.stdout)
        ch.setLevel(self.lvl)
        ch.setFormatter(logging.Formatter(console_fmt, datefmt="%d_%m_%Y_%H-%M_%S"))
        self.logger.addHandler(ch)

        # Set the log file name
        if logfile is not None and os.environ.get(ENV_LOGGER_FILE, '0') != '0':
            self.logfile = (logfile.split('.log')[0] if logfile.endswith('.log') else f'{logfile}') if len(logfile) > 0 else self.now_str
            if append_ts:
                self.logfile += f'_{self.now_str}'
            self.configure("./log")
        else:
            self.logfile = self.now_str

    # --------------------------------------------------------------

    @staticmethod
    def colorize(txt: str, color: str):
        ''' Wrap ``txt`` in the ANSI code of ``color`` (unknown colors leave it plain). '''
        code = Colors.code(color)
        return str(txt) if code == Colors.reset else f"{code}{txt}{Colors.reset}"

    # --------------------------------------------------------------

    def configure(self, directory: str):
        """
        Configure the logger to use a specific directory for log files.

        Args:
            directory (str): Path to the directory where log files will be stored.
        """
        base_name       = self.now_str if len(self.logfile) == 0 else self.logfile
        self.logfile    = os.path.join(directory, f'{base_name}.log')
        os.makedirs(directory, exist_ok=True)

        if not self.handler_added:
            self._f_handler = logging.FileHandler(self.logfile, encoding='utf-8')
            self._f_handler.setLevel(self.lvl)
            self._f_handler.setFormatter(StripAnsiFormatter('%(asctime)s [%(levelname)s] %(message)s', datefmt="%d_%m_%Y_%H-%M-%S"))
            self.logger.addHandler(self._f_handler)
            self.handler_added = True
            self._log_message(logging.INFO, f"Log file created: {self.logfile}")

    # --------------------------------------------------------------
    #! Output prefix
    # --------------------------------------------------------------

    def set_prefix(self, prefix: Optional[str]) -> str:
        """
        Replace the output prefix and return the previous one.
        """
        previous    = self.prefix
        self.prefix = prefix or ""
        return previous

    @contextmanager
    def output_prefix(self, prefix: Optional[str]) -> Iterator['Logger']:
        """
        Scoped output prefix. The previous prefix is restored on exit,
        also when the body raises.

        Example:
            >>> with logger.output_prefix("deflation: "):
            ...     logger.info("solving")       # -> [INFO] deflation: solving
        """
        previous = self.set_prefix(prefix)
        try:
            yield self
        finally:
            self.prefix = previous

    # --------------------------------------------------------------

    @staticmethod
    def print_tab(lvl=0):
        """
        Generate indentation for message formatting.
        """
        return '\t' * lvl + ('->' if lvl > 0 else '')

    def print(self, msg: str, lvl=0):
        """
        Format a message with the indentation and the current prefix.
        """
        return f"{self.prefix}{Logger.print_tab(lvl)}{msg}"

    # --------------------------------------------------------------
    #! Emission
    # --------------------------------------------------------------

    def _emit(self, level: int, msg: str, lvl: int, verbose: bool, color: Optional[str]):
        if not verbose:
            return
        if color is not None and self.has_colors:
            msg = self.colorize(msg, color)
        self.logger.log(level, self.print(msg, lvl))

    def info(self, msg: str, lvl=0, verbose=True, color=None):
        self._emit(logging.INFO, msg, lvl, verbose, color)

    def debug(self, msg: str, lvl=0, verbose=True, color=None):
        self._emit(logging.DEBUG, msg, lvl, verbose, color)

    def warning(self, msg: str, lvl=0, verbose=True, color='yellow'):
        self._emit(logging.WARNING, msg, lvl, verbose, color)

    def error(self, msg: str, lvl=0, verbose=True, color='red'):
        self._emit(logging.ERROR, msg, lvl, verbose, color)

    def _log_message(self, log_level, msg, lvl = 0):
        self._emit(log_level, msg, lvl, True, None)

    # --------------------------------------------------------------

    @contextmanager
    def timed(self, label: str, lvl=0, level: int = logging.DEBUG) -> Iterator['Logger']:
        """
        Log the wall time spent in the body under ``label``.

        Example:
            >>> with logger.timed("IRLM solve"):
            ...     solver.solve(kspace, evals)
        """
        start = perf_counter()
        try:
            yield self
        finally:
            self._emit(level, f"{label}: {perf_counter() - start:.4f} s", lvl, True, None)

######################################################

_G_LOGGER     = None
_G_LOGGER_PID = None
_G_LOCK       = threading.Lock()

def get_global_logger(**kwargs) -> Logger:
    """
    One Logger wrapper per process (PID), safe across threads/forks.

    Args:
        **kwargs: Arguments to pass to the Logger constructor.
        - name (str): Name of the logger (default: "krylov_eigen").
        - lvl (int): Logging level (default: logging.INFO).
        - use_ts_in_cmd (bool): Whether to use timestamps in the console (default: True).
        - logfile (str or None): Path to a logfile (default: None).

    Example
    -------
        >>> logger = get_global_logger()
        >>> logger.info("This is an informational message.")
    """
    global  _G_LOGGER, _G_LOGGER_PID
    pid     = os.getpid()

    if _G_LOGGER is not None and _G_LOGGER_PID == pid:
        return _G_LOGGER

    with _G_LOCK:
        if _G_LOGGER is not None and _G_LOGGER_PID == pid:
            return _G_LOGGER

        _G_LOGGER = Logger(
            name            = kwargs.get("name",            "krylov_eigen"),
            lvl             = kwargs.get("lvl",             logging.INFO),
            append_ts       = kwargs.get("append_ts",       True),
            use_ts_in_cmd   = kwargs.get("use_ts_in_cmd",   True),
            logfile         = kwargs.get("logfile",         None),
        )
        _G_LOGGER_PID = pid
        return _G_LOGGER

######################################################
#! EOF
######################################################
