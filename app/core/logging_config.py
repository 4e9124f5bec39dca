import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Chatty client libraries
EXTERNAL_LOGGERS = ["httpx", "httpcore", "openai", "urllib3"]


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """Configure the `app` logger tree with a single console handler.

    Safe to call more than once; existing handlers are replaced.
    """
    level = logging.getLevelName(log_level.upper()) if isinstance(log_level, str) else log_level
    if not isinstance(level, int):
        level = logging.INFO

    logger = logging.getLogger("app")
    logger.setLevel(level)
    logger.propagate = False
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)

    for name in EXTERNAL_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(f"Logging configured at level {logging.getLevelName(level)}")
    return logger
