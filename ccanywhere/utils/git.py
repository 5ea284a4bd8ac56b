"""
Git Helpers

Thin wrapper around the ``git`` command line for the working directory of
a build. Lookups that only feed metadata (revision, branch, commit info)
fall back to placeholder values instead of raising.
"""

import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Union

from ccanywhere.errors import BuildError, PipelineStage
from ccanywhere.types import CommitInfo, now_ms

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 60  # seconds


class GitRepository:
    """Git operations scoped to one working directory."""

    def __init__(self, work_dir: Union[str, Path]):
        self.work_dir = Path(work_dir)

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                ["git", *args],
                cwd=self.work_dir,
                capture_output=True,
                text=True,
                timeout=GIT_TIMEOUT,
                check=check,
            )
        except FileNotFoundError as e:
            raise BuildError("git executable not found", stage=PipelineStage.GIT) from e

    def _output(self, *args: str) -> Optional[str]:
        try:
            result = self._run(*args)
        except (subprocess.SubprocessError, BuildError) as e:
            logger.debug(f"git {' '.join(args)} failed: {e}")
            return None
        return result.stdout.strip()

    # =========================================================================
    # Metadata
    # =========================================================================

    def revision(self, head: Optional[str] = None) -> str:
        """Short sha of ``head`` (default HEAD), or ``unknown``."""
        return self._output("rev-parse", "--short", head or "HEAD") or "unknown"

    def branch(self) -> str:
        """Current branch name, or ``detached``."""
        return self._output("symbolic-ref", "--short", "HEAD") or "detached"

    def commit_info(self, revision: str, fallback_timestamp: Optional[int] = None) -> CommitInfo:
        output = self._output("log", "-1", "--pretty=format:%H%n%an%n%ct%n%s", revision)
        lines = output.split("\n", 3) if output else []
        if len(lines) == 4 and lines[2].isdigit():
            sha, author, committed, subject = lines
            return CommitInfo(
                sha=sha,
                short_sha=revision,
                author=author,
                message=subject,
                timestamp=int(committed) * 1000,
            )
        return CommitInfo(
            sha=revision,
            short_sha=revision,
            author="Unknown",
            message="No commit message",
            timestamp=fallback_timestamp if fallback_timestamp is not None else now_ms(),
        )

    # =========================================================================
    # Working tree
    # =========================================================================

    def fetch(self, remote: str = "origin") -> None:
        """``git fetch <remote>``. Raises BuildError(stage=GIT) on failure."""
        try:
            self._run("fetch", remote)
        except subprocess.CalledProcessError as e:
            raise BuildError(
                f"git fetch failed: {e.stderr.strip() or e}", stage=PipelineStage.GIT
            ) from e
        except subprocess.TimeoutExpired as e:
            raise BuildError(f"git fetch timed out after {GIT_TIMEOUT}s", stage=PipelineStage.GIT) from e

    def untracked_files(self) -> List[str]:
        output = self._output("ls-files", "--others", "--exclude-standard")
        return [line for line in (output or "").splitlines() if line]

    def has_changes(self, base: str, head: str = "HEAD") -> bool:
        """Committed, staged, unstaged or untracked changes relative to ``base``."""
        checks = (
            ("diff", "--quiet", f"{base}...{head}"),
            ("diff", "--quiet", "HEAD"),
            ("diff", "--quiet", "--cached"),
        )
        for args in checks:
            try:
                # --quiet exits 1 when there are differences
                if self._run(*args, check=False).returncode != 0:
                    return True
            except subprocess.SubprocessError as e:
                raise BuildError(f"Failed to check for changes: {e}", stage=PipelineStage.DIFF) from e
        return bool(self.untracked_files())

    def diff(
        self,
        base: str,
        head: str = "HEAD",
        exclude_paths: Sequence[str] = (),
    ) -> str:
        """Unified diff of committed, staged, unstaged and untracked changes."""
        pathspec: List[str] = []
        if exclude_paths:
            pathspec = ["--", "."] + [f":(exclude){p}" for p in exclude_paths]

        parts: List[str] = []
        for args in (
            ("diff", "--minimal", f"{base}...{head}"),
            ("diff", "--minimal", "--cached"),
            ("diff", "--minimal"),
        ):
            output = self._output(*args, *pathspec)
            if output:
                parts.append(output)

        for path in self.untracked_files():
            if any(path.startswith(p.rstrip("/")) for p in exclude_paths):
                continue
            # --no-index exits 1 when the files differ, which is always here
            try:
                result = self._run("diff", "--no-index", "/dev/null", path, check=False)
            except subprocess.SubprocessError as e:
                logger.debug(f"Could not diff untracked file {path}: {e}")
                continue
            if result.stdout.strip():
                parts.append(result.stdout.strip())

        return "\n".join(parts)
