"""
Process logging for the AgriCart services.

One stdout handler on the root logger, every line tagged with the service
that emitted it (order-service, stock-service, coop-time). Client libraries
that log each request or frame are held at WARNING.
"""

from __future__ import annotations

import logging
import sys

from common.config import LOG_LEVEL

# Client libraries that log every HTTP request / AMQP frame at INFO.
CHATTY_LOGGERS = ("httpx", "httpcore", "aio_pika", "aiormq")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(service_name)s %(name)s %(message)s"


class _ServiceFormatter(logging.Formatter):
    def __init__(self, service_name: str, **kwargs: object) -> None:
        super().__init__(**kwargs)
        self._service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "service_name"):
            record.service_name = self._service_name
        return super().format(record)


def setup_logging(service_name: str, level: str | None = None) -> None:
    """
    Point the root logger at stdout, tagged with service_name.

    ``level`` overrides LOG_LEVEL. Calling again (a second service module
    imported into the same process) retags the existing handlers instead of
    adding more.
    """
    root = logging.getLogger()
    root.setLevel((level or LOG_LEVEL).upper())
    formatter = _ServiceFormatter(service_name, fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S")
    if root.handlers:
        for handler in root.handlers:
            handler.setFormatter(formatter)
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
