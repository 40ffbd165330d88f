import logging, sys

from nexustrack.config import settings

# Third-party loggers that report every request at INFO.
_NOISY = ("httpx", "httpcore", "sqlalchemy.engine")


def setup_logging(level: int | None = None):
    """Installs a single stdout handler on the `nexustrack` logger. Safe to call twice."""
    logger = logging.getLogger("nexustrack")
    if logger.handlers:
        return logger
    if level is None:
        level = logging.DEBUG if settings.ENV == "dev" else logging.INFO
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    for name in _NOISY:
        logging.getLogger(name).setLevel(logging.WARNING)
    return logger
