# classroom_realtime/core/logging.py

import logging
import os
import sys


DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(instance)s | %(name)s | %(message)s"

# Third party loggers and the level they are held at
NOISY_LOGGERS = {
    "pymongo": logging.WARNING,
    "motor": logging.WARNING,
    "redis": logging.WARNING,
    "google.cloud.pubsub_v1": logging.WARNING,
    "google.api_core": logging.WARNING,
    "uvicorn": logging.INFO,
    "uvicorn.error": logging.INFO,
    "uvicorn.access": logging.WARNING,
}


class InstanceFilter(logging.Filter):
    """Stamps each record with the process's fan-out instance id."""

    def __init__(self, instance_id: str) -> None:
        super().__init__()
        self.instance_id = instance_id[:8]

    def filter(self, record: logging.LogRecord) -> bool:
        record.instance = self.instance_id
        return True


def setup_logging(instance_id: str | None = None) -> None:
    """
    Configure application-wide logging.

    - Root level from LOG_LEVEL (default INFO)
    - One stdout handler; every line carries the instance id so logs from
      several processes behind one load balancer can be told apart
    - Mongo, Redis and Pub/Sub client chatter held at WARNING
    """
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)

    # Uvicorn (or a test runner) may already own the root handlers
    if any(isinstance(f, InstanceFilter) for h in root_logger.handlers for f in h.filters):
        return

    if instance_id is None:
        from classroom_realtime.core.config import settings

        instance_id = settings.INSTANCE_ID

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(InstanceFilter(instance_id))
    handler.setFormatter(logging.Formatter(os.getenv("LOG_FORMAT", DEFAULT_FORMAT)))
    root_logger.addHandler(handler)


def get_logger(name: str | None = None) -> logging.Logger:
    """
    Usage:
        from classroom_realtime.core.logging import get_logger

        logger = get_logger(__name__)
    """
    return logging.getLogger(name)
