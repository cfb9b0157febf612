"""
Central logging for nasadmin.

- Console handler: INFO..CRITICAL on stderr by default
- Timed rotated file handler: DEBUG (logs/nasadmin.log, daily rotation)
- Secret redaction: masks passwords, tokens and session cookies in both msg and % args
- UTC timestamps in ISO-8601

Library modules only call `get_logger(__name__)`; handlers are installed by
the CLI (or by an embedding application) through `setup_logging`.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from pathlib import Path
from typing import Optional

ROOT_LOGGER = "nasadmin"

DEF_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


class MaskSecretsFilter(logging.Filter):
    """
    Redact common secrets (passwords, bearer tokens, session cookies) from log records.
    """

    _patterns = [
        re.compile(r"(Authorization:\s*Bearer\s+)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(password['\"]?\s*[=:]\s*['\"]?)([^,\s'\"}]+)", re.IGNORECASE),
        re.compile(r"(\btoken['\"]?\s*[=:]\s*['\"]?)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(\b(?:JSESSIONID|session(?:id)?)=)([^;,\s]+)", re.IGNORECASE),
    ]

    @staticmethod
    def _mask(text: str) -> str:
        masked = text
        for pat in MaskSecretsFilter._patterns:
            masked = pat.sub(r"\1***REDACTED***", masked)
        return masked

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._mask(str(v)) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._mask(a) if isinstance(a, str) else a for a in record.args)
        if isinstance(record.msg, str):
            record.msg = self._mask(record.msg)
        return True


def _utc_formatter(fmt: str) -> logging.Formatter:
    f = logging.Formatter(fmt=fmt, datefmt="%Y-%m-%dT%H:%M:%SZ")
    f.converter = time.gmtime  # type: ignore[assignment]
    return f


def _level(name: Optional[str], default: int) -> int:
    if not name:
        return default
    return getattr(logging, str(name).upper(), default)


def setup_logging(
    *,
    base_dir: Optional[str] = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    name: str = ROOT_LOGGER,
) -> logging.Logger:
    """
    Configure the `nasadmin` logger with a console handler and, when
    `base_dir` is set, a daily rotated file handler.

    Calling it again replaces the handlers instead of stacking them.
    """
    logging.captureWarnings(True)
    mask = MaskSecretsFilter()
    formatter = _utc_formatter(DEF_FORMAT)

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)

    for h in list(base.handlers):
        base.removeHandler(h)
        h.close()

    sh = logging.StreamHandler(stream=sys.stderr)
    sh.setLevel(_level(console_level, logging.INFO))
    sh.setFormatter(formatter)
    sh.addFilter(mask)
    base.addHandler(sh)

    if base_dir:
        os.makedirs(base_dir, exist_ok=True)
        logfile = Path(base_dir) / f"{name}.log"
        rh = logging.handlers.TimedRotatingFileHandler(
            str(logfile),
            when="midnight",
            backupCount=14,
            encoding="utf-8",
            utc=True,
        )
        rh.setLevel(_level(file_level, logging.DEBUG))
        rh.setFormatter(formatter)
        rh.addFilter(mask)
        base.addHandler(rh)

    return base


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger under the `nasadmin` hierarchy."""
    if not name:
        return logging.getLogger(ROOT_LOGGER)
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
