"""Structured JSON logging for the dashboard service.

Every record carries the request id and the dashboard session id of the
request that produced it, including records from background refresh tasks.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from sys import stdout
from typing import Any

from loguru import logger

request_id_ctx_var: ContextVar[str] = ContextVar("request_id", default="-")
session_id_ctx_var: ContextVar[str] = ContextVar("session_id", default="-")


def _patch_record(record: dict[str, Any]) -> None:
    record["extra"].setdefault("request_id", request_id_ctx_var.get())
    record["extra"].setdefault("session_id", session_id_ctx_var.get())


def setup_logging(level: str = "INFO") -> None:
    """Route stdlib logging through INFO and emit Loguru records as JSON on stdout."""

    logging.basicConfig(level=logging.INFO)
    # httpx logs every outbound request at INFO; the fan-out makes that noisy.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logger.remove()
    logger.configure(patcher=_patch_record)
    logger.add(
        stdout,
        level=level,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        serialize=True,
    )
