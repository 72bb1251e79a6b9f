"""Centralized logging configuration for MiniBeast.

All modules obtain their logger through ``get_logger`` so that a single call
to ``setup_logging`` controls verbosity for the whole process.
"""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that flood debug output with request/response noise
NOISY_LOGGERS = (
    "boto3",
    "botocore",
    "s3transfer",
    "urllib3",
    "uvicorn.access",
    "httpx",
)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger.

    Args:
        name: Logger name, normally ``__name__`` of the calling module

    Returns:
        Configured ``logging.Logger`` instance
    """
    return logging.getLogger(name)


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure root logging for the process.

    Args:
        verbose: Emit DEBUG level messages
        quiet: Only emit WARNING and above (ignored when verbose is set)
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))
