"""Logging setup for the LoanLedger command line.

Library modules only create module loggers; handlers are attached here,
once, by the entry point.
"""
import json
import logging
import sys
from datetime import datetime, timezone

STANDARD_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """One JSON object per log line, for log shippers."""

    def format(self, record):
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(level="INFO", format_type="standard"):
    """Route all LoanLedger logging to stderr.

    Replaces any handlers already on the root logger, so calling it twice
    does not duplicate output.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ...). Unknown names fall back to INFO.
        format_type: "standard" for plain text lines, "json" for JsonFormatter.
    """
    log_level = getattr(logging, str(level).upper(), logging.INFO)
    if format_type == "json":
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(fmt=STANDARD_FORMAT, datefmt=DATE_FORMAT)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for old in root.handlers[:]:
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(log_level)

    # openpyxl logs every sheet part at DEBUG
    logging.getLogger("openpyxl").setLevel(logging.WARNING)
