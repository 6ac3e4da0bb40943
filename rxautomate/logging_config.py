"""JSON logging for the gateway, with NHS numbers masked before emit."""

from __future__ import annotations

import logging
import re
import sys

from pythonjsonlogger import jsonlogger

_NHS_NUMBER = re.compile(r"(?<!\d)(\d{3}[ -]?\d{3}[ -]?)(\d{4})(?!\d)")


def _mask(text: str) -> str:
    return _NHS_NUMBER.sub(lambda m: "*" * len(m.group(1)) + m.group(2), text)


class NHSNumberFilter(logging.Filter):
    """Replaces anything shaped like an NHS number with its masked form."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            record.msg = record.getMessage()
            record.args = None
        if isinstance(record.msg, str):
            record.msg = _mask(record.msg)
        return True


def configure_logging(service_name: str, env: str, level: int = logging.INFO) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "severity"},
            static_fields={"service": service_name, "environment": env},
        )
    )
    handler.addFilter(NHSNumberFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if env == "dev" else level)

    # httpx logs full request URLs at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
