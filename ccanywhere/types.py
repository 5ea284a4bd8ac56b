"""
CCanywhere Types

Runtime records (dataclasses) and result contracts (pydantic models).

Runtime records:
    BuildContext        per-run immutable context
    LockRecord          content of a lock file
    DeploymentRecord    evolving deployment status
    NotificationOutcome one channel's delivery result

Result contracts:
    BuildArtifact, TestResult, CommitInfo, BuildResult
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict, Field

from ccanywhere.config import CcanywhereConfig


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


# =============================================================================
# Build Context
# =============================================================================

@dataclass(frozen=True)
class BuildContext:
    """Everything a build step needs to know about the current run."""
    revision: str
    branch: str
    timestamp: int
    work_dir: Path
    artifacts_dir: Path
    log_dir: Path
    lock_file: Path
    config: CcanywhereConfig
    base: Optional[str] = None
    head: Optional[str] = None


# =============================================================================
# Lock Record
# =============================================================================

@dataclass(frozen=True)
class LockRecord:
    """Owner of a lock file. Serialized as the file's JSON content."""
    pid: int
    timestamp: int
    revision: str = "unknown"
    hostname: Optional[str] = None
    timeout: Optional[int] = None  # seconds, as requested by the acquirer

    def age_ms(self, now: Optional[int] = None) -> int:
        return (now if now is not None else now_ms()) - self.timestamp

    def is_stale(self, timeout_seconds: int, now: Optional[int] = None) -> bool:
        """Stale once the age reaches the timeout."""
        return self.age_ms(now) >= timeout_seconds * 1000

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "pid": self.pid,
            "timestamp": self.timestamp,
            "revision": self.revision,
        }
        if self.hostname is not None:
            data["hostname"] = self.hostname
        if self.timeout is not None:
            data["timeout"] = self.timeout
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "LockRecord":
        """Parse lock file content. Raises ValueError when malformed."""
        if not isinstance(data, dict):
            raise ValueError("lock record must be a JSON object")
        pid = data.get("pid")
        timestamp = data.get("timestamp")
        if not isinstance(pid, int) or isinstance(pid, bool):
            raise ValueError(f"invalid pid: {pid!r}")
        if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
            raise ValueError(f"invalid timestamp: {timestamp!r}")
        timeout = data.get("timeout")
        return cls(
            pid=pid,
            timestamp=int(timestamp),
            revision=str(data.get("revision") or "unknown"),
            hostname=data.get("hostname"),
            timeout=int(timeout) if isinstance(timeout, (int, float)) and timeout > 0 else None,
        )


# =============================================================================
# Deployment Record
# =============================================================================

class DeploymentStatus(str, Enum):
    """Normalized deployment lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_DEPLOYMENT_STATUSES: Set[DeploymentStatus] = {
    DeploymentStatus.SUCCESS,
    DeploymentStatus.FAILED,
    DeploymentStatus.CANCELLED,
}


@dataclass
class DeploymentRecord:
    """Status of one triggered deployment."""
    status: DeploymentStatus
    start_time: int
    end_time: Optional[int] = None
    url: Optional[str] = None
    error: Optional[str] = None

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_DEPLOYMENT_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "url": self.url,
            "error": self.error,
        }


# =============================================================================
# Notification Outcome
# =============================================================================

@dataclass(frozen=True)
class NotificationOutcome:
    """Delivery result for one channel in one dispatch."""
    channel: str
    success: bool
    error: Optional[str] = None
    timestamp: int = field(default_factory=now_ms)


# =============================================================================
# Result Contracts
# =============================================================================

class BuildArtifact(BaseModel):
    """A produced output attached to the build result."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["diff", "report", "trace"]
    url: str
    path: str = ""
    size: Optional[int] = None
    timestamp: int


class TestResult(BaseModel):
    """Outcome of the test suite."""

    __test__: ClassVar[bool] = False

    model_config = ConfigDict(extra="forbid")

    status: Literal["pending", "running", "passed", "failed", "skipped"]
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    duration: int = 0
    report_url: Optional[str] = None
    trace_urls: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    message: Optional[str] = None


class CommitInfo(BaseModel):
    """Metadata of the built commit."""

    model_config = ConfigDict(extra="forbid")

    sha: str
    short_sha: str
    author: str
    message: str
    timestamp: int


class BuildResult(BaseModel):
    """
    Result of one pipeline run.

    Produced exactly once per run for success and failure alike. Callers
    branch on ``success``; the pipeline never raises to them.
    """

    model_config = ConfigDict(extra="forbid")

    success: bool
    revision: str
    branch: str
    timestamp: int
    duration: int
    artifacts: List[BuildArtifact] = Field(default_factory=list)
    deployment_url: Optional[str] = None
    test_results: Optional[TestResult] = None
    commit_info: Optional[CommitInfo] = None
    error: Optional[str] = None
    failed_step: Optional[str] = None
    message: Optional[str] = None
