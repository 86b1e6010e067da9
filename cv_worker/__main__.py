"""
Worker entrypoint.

    python -m cv_worker          # or the `cv-worker` console script

Validates configuration up front so a misconfigured deployment exits with a
clear message instead of failing on the first job, then starts a Celery
worker consuming the CV processing queue.
"""

from __future__ import annotations

import logging
import sys

from cv_worker.core.config import get_settings
from cv_worker.core.errors import ConfigurationError
from cv_worker.core.logging_config import configure_logging
from cv_worker.workers.context import validate_settings

logger = logging.getLogger("cv_worker")


def main() -> None:
    settings = get_settings()
    configure_logging(settings)

    try:
        validate_settings(settings)
    except ConfigurationError as exc:
        logger.critical("Invalid worker configuration: %s", exc)
        sys.exit(1)

    from cv_worker.workers.celery_app import MAINTENANCE_QUEUE, celery_app
    import cv_worker.workers.tasks  # noqa: F401  (registers tasks)

    logger.info(
        "Starting worker | env=%s queue=%s concurrency=%d",
        settings.app_env, settings.queue_name, settings.worker_concurrency,
    )
    celery_app.worker_main([
        "worker",
        "--loglevel=DEBUG" if settings.debug else "--loglevel=INFO",
        "-Q", f"{settings.queue_name},{MAINTENANCE_QUEUE}",
        f"--concurrency={settings.worker_concurrency}",
    ])


if __name__ == "__main__":
    main()
