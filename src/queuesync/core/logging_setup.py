"""
Central logging for queuesync.

- Console handler: INFO..CRITICAL on stderr (stdout is reserved for reports)
- Timed rotated file handler: DEBUG (logs/app.log, daily rotation)
- Per-run file handler: DEBUG (logs/YYYY-MM-DD/<action>_<run_id>.log)
- Secret redaction: AWS keys, session tokens, bearer tokens, passwords
- UTC timestamps in ISO-8601
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

_CONTEXT_FIELDS = ("run_id", "action", "env", "region")

_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "run=%(run_id)s action=%(action)s env=%(env)s region=%(region)s | "
    "%(message)s"
)


class MaskSecretsFilter(logging.Filter):
    """Redact credentials from log records (message and % args)."""

    _patterns = [
        re.compile(r"(Authorization:\s*Bearer\s+)([A-Za-z0-9._~+/=-]+)", re.IGNORECASE),
        re.compile(r"(secret[_-]?access[_-]?key['\"]?\s*[=:]\s*['\"]?)([A-Za-z0-9/+=]+)", re.IGNORECASE),
        re.compile(r"(session[_-]?token['\"]?\s*[=:]\s*['\"]?)([A-Za-z0-9/+=]+)", re.IGNORECASE),
        re.compile(r"(password['\"]?\s*[=:]\s*['\"]?)([^,\s'\"]+)", re.IGNORECASE),
        re.compile(r"()\b((?:AKIA|ASIA)[A-Z0-9]{16})\b"),
    ]

    @staticmethod
    def _mask(text: str) -> str:
        masked = text
        for pat in MaskSecretsFilter._patterns:
            masked = pat.sub(r"\1***REDACTED***", masked)
        return masked

    def filter(self, record: logging.LogRecord) -> bool:
        # Render first so a secret split between format string and args is still caught.
        if record.args:
            record.msg = self._mask(record.getMessage())
            record.args = None
        elif isinstance(record.msg, str):
            record.msg = self._mask(record.msg)
        return True


class ContextDefaultsFilter(logging.Filter):
    """Fill context fields for records logged without the adapter."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name in _CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, "-")
        return True


def _ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def _utc_formatter(fmt: str) -> logging.Formatter:
    f = logging.Formatter(fmt=fmt, datefmt="%Y-%m-%dT%H:%M:%SZ")
    f.converter = time.gmtime  # type: ignore[attr-defined]
    return f


def _level(name: str, default: int) -> int:
    return getattr(logging, str(name).upper(), default)


def _decorate(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(ContextDefaultsFilter())
    handler.addFilter(MaskSecretsFilter())
    return handler


def _ensure_single_console_handler(
    base_logger: logging.Logger, *, console_level: str, formatter: logging.Formatter
) -> None:
    """
    Exactly ONE StreamHandler bound to the current sys.stderr
    (pytest swaps stdio between tests).
    """
    for h in list(base_logger.handlers):
        if type(h) is logging.StreamHandler:
            base_logger.removeHandler(h)
            h.close()
    sh = logging.StreamHandler(stream=sys.stderr)
    base_logger.addHandler(_decorate(sh, _level(console_level, logging.INFO), formatter))


def _ensure_app_file_handler(
    base_logger: logging.Logger, *, base_dir: str, file_level: str, formatter: logging.Formatter
) -> None:
    """Single TimedRotatingFileHandler on <base_dir>/app.log; replace one pointing elsewhere."""
    _ensure_dir(base_dir)
    desired = os.path.abspath(os.path.join(base_dir, "app.log"))

    for h in list(base_logger.handlers):
        if isinstance(h, logging.handlers.TimedRotatingFileHandler):
            if os.path.abspath(h.baseFilename) != desired:
                base_logger.removeHandler(h)
                h.close()

    if not any(
        isinstance(h, logging.handlers.TimedRotatingFileHandler)
        and os.path.abspath(h.baseFilename) == desired
        for h in base_logger.handlers
    ):
        rh = logging.handlers.TimedRotatingFileHandler(
            desired, when="midnight", backupCount=14, encoding="utf-8", utc=True, delay=False
        )
        base_logger.addHandler(_decorate(rh, _level(file_level, logging.DEBUG), formatter))


def build_logger(
    *,
    name: str = "qs",
    run_id: str,
    action: str,
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    extra: Optional[Dict[str, Any]] = None,
) -> logging.LoggerAdapter:
    """
    Configure and return a LoggerAdapter.

    A base logger `<name>` holds console + rotating file handlers; a child
    `<name>.<action>.<run_id>` adds the per-run file and propagates to the base.
    Module loggers under `<name>.` (used when no adapter is passed) share the
    base sinks.
    """
    formatter = _utc_formatter(_FORMAT)

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)
    _ensure_single_console_handler(base, console_level=console_level, formatter=formatter)
    _ensure_app_file_handler(base, base_dir=base_dir, file_level=file_level, formatter=formatter)

    child = logging.getLogger(f"{name}.{action}.{run_id}")
    child.setLevel(logging.DEBUG)
    child.propagate = True

    if not getattr(child, "_qs_action_configured", False):
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        dated_dir = os.path.join(base_dir, today)
        _ensure_dir(dated_dir)
        action_file = os.path.join(dated_dir, f"{action}_{run_id}.log")
        Path(action_file).touch(exist_ok=True)
        fh = logging.FileHandler(action_file, encoding="utf-8", delay=False)
        child.addHandler(_decorate(fh, _level(file_level, logging.DEBUG), formatter))
        child._qs_action_configured = True  # type: ignore[attr-defined]

    context = {"run_id": run_id, "action": action, "env": "-", "region": "-"}
    for key, value in (extra or {}).items():
        if key in context and value:
            context[key] = value
    adapter = logging.LoggerAdapter(child, context)
    adapter.debug("Logger initialised")
    return adapter
