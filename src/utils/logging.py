"""Logging helpers for the road elevation engine.

Every module obtains its logger through :func:`get_logger` so that pass
summaries and per-edge diagnostics share one format.  Loggers are
configured lazily the first time they are requested; calling the
function again for the same name returns the already configured
instance without stacking handlers.
"""

import logging

LOG_FORMAT = '[%(asctime)s] [%(levelname)s] %(name)s: %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def get_logger(name: str) -> logging.Logger:
    """Return a logger with the engine's preset format.

    Parameters
    ----------
    name : str
        Logger name, normally the calling module's ``__name__``.

    Returns
    -------
    logging.Logger
        The configured logger, at INFO level when newly created.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger
