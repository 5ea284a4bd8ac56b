"""
Logging Setup

Console logging for the CLI plus the per-run JSONL audit log
(``<log_dir>/runner.jsonl``).
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

_CONFIGURED = False

AUDIT_LOG_NAME = "runner.jsonl"
AUDIT_LOG_MAX_BYTES = 10 * 1024 * 1024
AUDIT_LOG_BACKUPS = 5


def setup_logging(level=logging.INFO):
    """
    Configure logging idempotently.
    Safe to call multiple times.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    root = logging.getLogger()
    if root.handlers:
        # Someone else already configured handlers; leave them alone
        _CONFIGURED = True
        return

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    _CONFIGURED = True


class JsonlAuditFormatter(logging.Formatter):
    """
    One JSON object per record.

    Entry fields: timestamp, level, step, revision, branch, message, error.
    ``step`` and ``error`` come from the record's ``extra``.
    """

    def __init__(self, revision: Optional[str] = None, branch: Optional[str] = None):
        super().__init__()
        self.revision = revision
        self.branch = branch

    def build_entry(self, record: logging.LogRecord) -> dict:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "step": getattr(record, "step", None),
            "revision": self.revision,
            "branch": self.branch,
            "message": record.getMessage(),
        }
        error = getattr(record, "error", None)
        if error is None and record.exc_info and record.exc_info[1] is not None:
            error = str(record.exc_info[1])
        if error is not None:
            entry["error"] = str(error)
        return entry

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(self.build_entry(record), default=str)


class JsonlAuditHandler(RotatingFileHandler):
    """
    Appends JSON lines to ``<log_dir>/runner.jsonl``, rotating by size.

    ``runner.jsonl`` rolls over to ``runner.jsonl.1`` .. ``.<backup_count>``
    once it reaches ``max_bytes``. Neither the directory nor the file is
    created until the first record is written.
    """

    def __init__(
        self,
        log_dir: Union[str, Path],
        revision: Optional[str] = None,
        branch: Optional[str] = None,
        level=logging.INFO,
        max_bytes: int = AUDIT_LOG_MAX_BYTES,
        backup_count: int = AUDIT_LOG_BACKUPS,
    ):
        self.path = Path(log_dir) / AUDIT_LOG_NAME
        super().__init__(
            self.path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
            delay=True,
        )
        self.setLevel(level)
        self.setFormatter(JsonlAuditFormatter(revision=revision, branch=branch))

    def _open(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return super()._open()
