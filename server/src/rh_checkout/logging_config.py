"""Common logging configuration for the checkout service"""

import logging
import sys

from rh_checkout.config import config

# Money has moved but our records disagree; anything logged here needs a human.
RECONCILIATION_LOGGER = "rh_checkout.reconciliation"


class InfoFilter(logging.Filter):
    """Filter to only allow INFO and DEBUG logs (exclude WARNING and above)"""

    def filter(self, record):
        return record.levelno < logging.WARNING


def setup_logging():
    """
    Configure logging to send INFO/DEBUG to stdout and WARNING/ERROR to stderr.
    Reads log level from application config.

    The reconciliation logger gets its own stderr handler and does not
    propagate, so its alerts survive any root level setting.
    """
    log_level = config.get("log_level", "INFO")
    level = getattr(logging, log_level.upper(), logging.INFO)

    formatter = logging.Formatter("%(levelname)s:%(name)s:%(message)s")

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(logging.DEBUG)
    stdout_handler.addFilter(InfoFilter())
    stdout_handler.setFormatter(formatter)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove any existing handlers to avoid duplicates
    root_logger.handlers.clear()

    root_logger.addHandler(stdout_handler)
    root_logger.addHandler(stderr_handler)

    alert_handler = logging.StreamHandler(sys.stderr)
    alert_handler.setLevel(logging.WARNING)
    alert_handler.setFormatter(
        logging.Formatter("ALERT:%(levelname)s:%(name)s:%(message)s")
    )

    reconciliation_logger = logging.getLogger(RECONCILIATION_LOGGER)
    reconciliation_logger.handlers.clear()
    reconciliation_logger.setLevel(logging.WARNING)
    reconciliation_logger.propagate = False
    reconciliation_logger.addHandler(alert_handler)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for the given module name.

    Args:
        name: Usually __name__ from the calling module

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def get_reconciliation_logger() -> logging.Logger:
    """Logger for payments that succeeded at the gateway but were not recorded"""
    return logging.getLogger(RECONCILIATION_LOGGER)
