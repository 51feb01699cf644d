import logging
import sys

from docshift.config import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: Settings) -> logging.Logger:
    """
    Attach stdout (and optional file) handlers to the docshift logger and
    route uvicorn's loggers through the same handlers.

    Returns:
        The configured ``docshift`` logger
    """
    formatter = logging.Formatter(LOG_FORMAT)

    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.logging_file:
        handlers.append(logging.FileHandler(settings.logging_file))
    for handler in handlers:
        handler.setFormatter(formatter)

    logger = logging.getLogger("docshift")
    logger.setLevel(settings.logging_level)
    logger.propagate = False
    # Clear any existing handlers to avoid duplicates when the app is rebuilt
    logger.handlers.clear()
    for handler in handlers:
        logger.addHandler(handler)

    for uvicorn_logger_name in ["uvicorn", "uvicorn.error", "uvicorn.access"]:
        uvicorn_logger = logging.getLogger(uvicorn_logger_name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = False
        uvicorn_logger.setLevel(settings.logging_level)
        for handler in handlers:
            uvicorn_logger.addHandler(handler)

    return logger
