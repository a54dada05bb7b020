"""Logging utilities for the inquiry relay.

Handlers and format are configured once by the entry points (``server`` and
``cli``) through :func:`configure_logging`; modules only ask for a named
logger.

Example:
    Typical usage in a module::

        from inquiry_relay.logger import get_logger

        logger = get_logger("RetryProcessor")
        logger.info("Sweep finished")
"""

import logging

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"


def get_logger(name: str = "InquiryRelay") -> logging.Logger:
    """Return the standard library logger bound to ``name``."""
    return logging.getLogger(name)


def configure_logging(level: str = "INFO") -> None:
    """Install the root handler, replacing any previous configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )
