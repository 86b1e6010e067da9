"""Process-wide logging setup shared by the CLI entrypoint and Celery workers."""

from __future__ import annotations

import logging

from cv_worker.core.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Third-party loggers that are noisy at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "botocore", "aiobotocore", "pypdf")


def configure_logging(settings: Settings, logger: logging.Logger | None = None) -> None:
    level = logging.DEBUG if settings.debug else logging.INFO

    if logger is None:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    else:
        # Celery hands us its own root logger in after_setup_logger
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setFormatter(logging.Formatter(LOG_FORMAT))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
