# backend/logging_config.py
# Logger setup shared by the API process and tests

import logging
import sys

try:
    from backend.config import LOG_LEVEL
except ModuleNotFoundError:
    from config import LOG_LEVEL


def setup_logging(level: str = LOG_LEVEL) -> logging.Logger:
    """
    Configure the "project" logger hierarchy once.

    All modules log through children of this logger (project.data,
    project.auth, project.audit, project.remote, ...). Calling this again
    is a no-op.
    """
    logger = logging.getLogger("project")
    if logger.handlers:
        return logger  # already configured
    logger.setLevel(getattr(logging, level, logging.INFO))
    handler = logging.StreamHandler(sys.stdout)
    fmt = logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    handler.setFormatter(fmt)
    logger.addHandler(handler)
    # keep transport libraries quiet unless debugging
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    return logger
