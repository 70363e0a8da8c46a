"""
Default logging interface
"""

import logging
import os


_LOG_FORMATTER = logging.Formatter(
    "[%(asctime)s][%(name)s][%(levelname)s]:%(message)s"
)

# Environment variable overriding the default level of package loggers.
_LOG_LEVEL_ENV_VAR = "EIGENINDEXER_LOG_LEVEL"


def get_log_level(default: int = logging.INFO) -> int:
    """
    Get the log level configured for the package loggers.

    :param default: The level used if the environment does not set one.
    :return: The numeric log level.
    """
    level_name = os.getenv(_LOG_LEVEL_ENV_VAR)
    if level_name is None:
        return default
    level = logging.getLevelName(level_name.strip().upper())
    # getLevelName() returns a "Level X" string for unknown names.
    return level if isinstance(level, int) else default


def get_default_logger(name: str) -> logging.Logger:
    """
    Get default logger for a given name.

    :param name: The logger name.
    :return: The logger object.
    """

    # Set Null log handler to avoid "No handlers could be found for logger XXX".
    # This is important for library code, which may contain code to log events
    # if a user of the library does not configure logging.
    if len(logging.getLogger().handlers) == 0:
        logging.getLogger().addHandler(logging.NullHandler())

    log = logging.getLogger(name)
    log.setLevel(get_log_level())

    # Add a handler for the log if one isn't present.
    if len(log.handlers) == 0:
        handler = logging.StreamHandler()
        handler.setFormatter(_LOG_FORMATTER)
        log.addHandler(handler)
        log.propagate = False

    return log
