"""
CCanywhere Errors

Exception taxonomy shared by the lock, deployment, notification and
pipeline layers.

    CcanywhereError
      ├── ConfigurationError   fatal, raised before any side effect
      ├── BuildError           diff / test / setup failures
      ├── LockError            lock contention or lock I/O failure
      └── NotificationError    channel delivery failure (and the aggregate)

Every error may carry the PipelineStage that raised it. The pipeline uses
that tag to name the failing step instead of guessing from message text.
"""

from enum import Enum
from typing import TYPE_CHECKING, Any, List, Optional

if TYPE_CHECKING:
    from ccanywhere.types import NotificationOutcome


class PipelineStage(str, Enum):
    """Steps of a build run, used to attribute failures."""
    INIT = "init"
    LOCK = "lock"
    SETUP = "setup"
    GIT = "git"
    DIFF = "diff"
    DEPLOY = "deploy"
    TEST = "test"
    NOTIFY = "notify"
    UNKNOWN = "unknown"


class CcanywhereError(Exception):
    """Base class for all CCanywhere errors."""

    code = "CCANYWHERE_ERROR"

    def __init__(
        self,
        message: str,
        details: Any = None,
        stage: Optional[PipelineStage] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        self.stage = stage


class ConfigurationError(CcanywhereError):
    """Raised when configuration is missing or invalid."""

    code = "CONFIGURATION_ERROR"


class BuildError(CcanywhereError):
    """Raised when a build step cannot complete."""

    code = "BUILD_ERROR"


class LockError(CcanywhereError):
    """Raised when the build lock cannot be acquired."""

    code = "LOCK_ERROR"

    def __init__(self, message: str, details: Any = None, stage: Optional[PipelineStage] = None):
        super().__init__(message, details=details, stage=stage or PipelineStage.LOCK)


class NotificationError(CcanywhereError):
    """Raised when a notification could not be delivered."""

    code = "NOTIFICATION_ERROR"

    def __init__(
        self,
        message: str,
        details: Any = None,
        stage: Optional[PipelineStage] = None,
        outcomes: Optional[List["NotificationOutcome"]] = None,
    ):
        super().__init__(message, details=details, stage=stage or PipelineStage.NOTIFY)
        self.outcomes = list(outcomes or [])
