import logging

from .config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def get_logger(name: str) -> logging.Logger:
    """
    Return a configured logger. Initializes basicConfig once.
    """
    if not logging.getLogger().handlers:
        logging.basicConfig(level=settings.LOG_LEVEL, format=LOG_FORMAT)
    logger = logging.getLogger(name)
    logger.setLevel(settings.LOG_LEVEL)
    return logger
