# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Structured logging for adapter requests.

Log records are rendered as one JSON object per line so the node operator's
log shipper can index them::

    {"logLevel": "warn", "timestamp": 1700000000000, "message": "...", "requestId": "..."}

Use :func:`request_logger` to get a logger that stamps every record with the
request's correlation id. Secret values must never be passed to a logger;
the transport logs URLs without their query string for that reason.
"""

import io
import json
import logging
import unittest
from typing import Optional

LOGGER_NAME = "oracle_adapter"

_LEVEL_NAMES = {
    logging.CRITICAL: "error",
    logging.ERROR: "error",
    logging.WARNING: "warn",
    logging.INFO: "info",
    logging.DEBUG: "debug",
}


class JsonFormatter(logging.Formatter):
    """Formats records as single-line JSON with the request id attached."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "logLevel": _LEVEL_NAMES.get(record.levelno, record.levelname.lower()),
            "timestamp": int(record.created * 1000),
            "message": record.getMessage(),
            "requestId": getattr(record, "request_id", None),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(
    level: str = "WARNING", stream: Optional[io.TextIOBase] = None
) -> logging.Logger:
    """Install the JSON formatter on the package logger.

    :param level: Level name, e.g. ``"INFO"`` or ``"debug"``.
    :param stream: Stream to write to, stderr by default.
    :return: The configured package logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter())
    logger.handlers = [handler]
    logger.setLevel(level.upper())
    logger.propagate = False
    return logger


def request_logger(request_id: Optional[str]) -> logging.LoggerAdapter:
    """Return a logger that stamps records with ``request_id``."""
    return logging.LoggerAdapter(
        logging.getLogger(LOGGER_NAME), {"request_id": request_id}
    )


class Test(unittest.TestCase):
    def tearDown(self):
        logger = logging.getLogger(LOGGER_NAME)
        logger.handlers = []
        logger.propagate = True
        logger.setLevel(logging.NOTSET)

    def test_json_line(self):
        stream = io.StringIO()
        configure_logging("info", stream)
        request_logger("req-1").warning("CoinGecko error")

        entry = json.loads(stream.getvalue())
        self.assertEqual(entry["logLevel"], "warn")
        self.assertEqual(entry["message"], "CoinGecko error")
        self.assertEqual(entry["requestId"], "req-1")
        self.assertIsInstance(entry["timestamp"], int)

    def test_level_filters(self):
        stream = io.StringIO()
        configure_logging("warning", stream)
        request_logger(None).info("hidden")
        self.assertEqual(stream.getvalue(), "")


if __name__ == "__main__":
    unittest.main()
