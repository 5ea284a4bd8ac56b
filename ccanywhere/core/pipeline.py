"""
Build Pipeline

Sequences one build run against a working directory:

    init → lock → dirs → fetch (best-effort) → diff → [deploy] → test
         → result → notify → release lock

``run()`` always returns a BuildResult. Every exception raised by a step
is caught at one boundary and turned into ``success=False``; the lock is
released on every path once it was acquired.

Failure attribution:
    Each step runs inside ``_stage(...)``. A CcanywhereError without a stage
    gets that step's stage; any other exception is wrapped in
    BuildError(stage=...). ``BuildResult.failed_step`` is read off the tag.

Non-fatal steps:
    - git fetch
    - deployment (failed, timed-out or crashing triggers are logged only)
    - notifications (a failed send never changes the result)
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Union

from ccanywhere.config import CcanywhereConfig
from ccanywhere.core.deployment import DeploymentTrigger, create_deployment_trigger
from ccanywhere.core.diff_generator import HtmlDiffGenerator
from ccanywhere.core.lock_manager import FileLockManager
from ccanywhere.core.test_runner import CommandTestRunner
from ccanywhere.errors import BuildError, CcanywhereError, PipelineStage
from ccanywhere.notifications.dispatcher import NotificationDispatcher
from ccanywhere.notifications.types import NotificationMessage
from ccanywhere.types import (
    BuildArtifact,
    BuildContext,
    BuildResult,
    DeploymentStatus,
    TestResult,
    now_ms,
)
from ccanywhere.utils.git import GitRepository
from ccanywhere.utils.logging_setup import JsonlAuditHandler

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "ccanywhere"
ARTIFACTS_DIR_NAME = ".artifacts"
DRY_RUN_MESSAGE = "Dry run: lock, fetch, deployment and notifications skipped"


def _step(name: str, **fields) -> dict:
    return {"step": name, **fields}


def failed_step_of(exc: BaseException) -> PipelineStage:
    if isinstance(exc, CcanywhereError) and exc.stage is not None:
        return exc.stage
    return PipelineStage.UNKNOWN


@contextmanager
def _stage(stage: PipelineStage) -> Iterator[None]:
    """Tag errors escaping the block with ``stage``."""
    try:
        yield
    except CcanywhereError as e:
        if e.stage is None:
            e.stage = stage
        raise
    except Exception as e:
        raise BuildError(str(e) or type(e).__name__, stage=stage) from e


class BuildPipeline:
    """
    One build run over ``work_dir``.

    Collaborators default to the real implementations built from ``config``
    and can all be injected.

    Raises:
        ConfigurationError: at construction, when notifications are
            configured but no channel can be initialized.
    """

    def __init__(
        self,
        work_dir: Union[str, Path],
        config: CcanywhereConfig,
        dry_run: bool = False,
        lock_manager: Optional[FileLockManager] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        deployment_trigger: Optional[DeploymentTrigger] = None,
        diff_generator: Optional[HtmlDiffGenerator] = None,
        test_runner: Optional[CommandTestRunner] = None,
        git: Optional[GitRepository] = None,
        artifacts_dir: Optional[Union[str, Path]] = None,
        log_dir: Optional[Union[str, Path]] = None,
    ):
        self.work_dir = Path(work_dir).resolve()
        self.config = config
        self.dry_run = dry_run

        self.git = git or GitRepository(self.work_dir)
        self.lock_manager = lock_manager or FileLockManager(default_timeout=config.build.lock_timeout)
        self.diff_generator = diff_generator or HtmlDiffGenerator(git=self.git)
        self.test_runner = test_runner or CommandTestRunner(config.test)
        self.deployment_trigger = deployment_trigger or create_deployment_trigger(config)

        if dispatcher is None and config.notifications is not None:
            dispatcher = NotificationDispatcher(config.notifications)
        self.dispatcher = dispatcher

        self.artifacts_dir = Path(artifacts_dir) if artifacts_dir else self.work_dir / ARTIFACTS_DIR_NAME
        self.log_dir = Path(log_dir) if log_dir else self.work_dir.parent / "logs"

    # =========================================================================
    # Run
    # =========================================================================

    async def run(self, base: Optional[str] = None, head: Optional[str] = None) -> BuildResult:
        """Execute the pipeline. Never raises for ordinary exceptions."""
        started = now_ms()
        context: Optional[BuildContext] = None
        lock_held = False
        audit: Optional[JsonlAuditHandler] = None
        restore_level: Optional[int] = None

        try:
            with _stage(PipelineStage.INIT):
                context = self._create_context(base, head)

            if not self.dry_run:
                with _stage(PipelineStage.LOCK):
                    self.lock_manager.acquire(
                        context.lock_file,
                        self.config.build.lock_timeout,
                        revision=context.revision,
                    )
                lock_held = True

            # Nothing is written under log_dir before the lock is held
            audit, restore_level = self._attach_audit_log(context)
            logger.info(
                f"Starting build {context.revision} on {context.branch}",
                extra=_step("start"),
            )
            if lock_held:
                logger.info("Build lock acquired", extra=_step("lock"))

            with _stage(PipelineStage.SETUP):
                context.artifacts_dir.mkdir(parents=True, exist_ok=True)
                context.log_dir.mkdir(parents=True, exist_ok=True)

            self._fetch_latest()

            with _stage(PipelineStage.DIFF):
                diff_artifact = await self._generate_diff(context)

            deployment_url = await self._trigger_deployment(context)

            with _stage(PipelineStage.TEST):
                test_result = await self._run_tests(context)

            commit_info = self.git.commit_info(context.revision, fallback_timestamp=context.timestamp)

            artifacts: List[BuildArtifact] = [diff_artifact]
            if test_result.report_url:
                artifacts.append(
                    BuildArtifact(type="report", url=test_result.report_url, timestamp=context.timestamp)
                )

            result = BuildResult(
                success=True,
                revision=context.revision,
                branch=context.branch,
                timestamp=context.timestamp,
                duration=now_ms() - started,
                artifacts=artifacts,
                deployment_url=deployment_url,
                test_results=test_result,
                commit_info=commit_info,
                message=DRY_RUN_MESSAGE if self.dry_run else None,
            )

            if not self.dry_run:
                await self._notify_success(result)

            logger.info(
                f"Build completed successfully in {result.duration}ms",
                extra=_step("complete"),
            )
            return result

        except Exception as exc:
            error = str(exc) or type(exc).__name__
            step = failed_step_of(exc)
            logger.error(
                f"Build failed at {step.value}: {error}",
                extra=_step(step.value, error=error),
            )

            if not self.dry_run and context is not None:
                await self._notify_failure(context, error, step)

            return BuildResult(
                success=False,
                revision=context.revision if context else "unknown",
                branch=context.branch if context else "unknown",
                timestamp=context.timestamp if context else started,
                duration=now_ms() - started,
                error=error,
                failed_step=step.value,
            )

        finally:
            if lock_held and context is not None:
                try:
                    self.lock_manager.release(context.lock_file)
                    logger.info("Build lock released", extra=_step("lock"))
                except Exception as e:
                    logger.warning(f"Failed to release lock: {e}", extra=_step("lock", error=str(e)))
            self._detach_audit_log(audit, restore_level)

    # =========================================================================
    # Steps
    # =========================================================================

    def _create_context(self, base: Optional[str], head: Optional[str]) -> BuildContext:
        return BuildContext(
            revision=self.git.revision(head),
            branch=self.git.branch(),
            timestamp=now_ms(),
            work_dir=self.work_dir,
            artifacts_dir=self.artifacts_dir,
            log_dir=self.log_dir,
            lock_file=Path(self.config.build.lock_file),
            config=self.config,
            base=base,
            head=head,
        )

    def _fetch_latest(self) -> None:
        if self.dry_run:
            logger.info("Git fetch skipped (dry run)", extra=_step("git"))
            return
        try:
            self.git.fetch()
            logger.info("Git fetch completed", extra=_step("git"))
        except Exception as e:
            logger.warning(f"Git fetch failed: {e}", extra=_step("git", error=str(e)))

    async def _generate_diff(self, context: BuildContext) -> BuildArtifact:
        base = context.base or self.config.build.base
        head = context.head or "HEAD"
        logger.info(f"Generating diff from {base} to {head}", extra=_step("diff"))
        artifact = await self.diff_generator.generate(base, head, context)
        logger.info(f"Diff generated: {artifact.url}", extra=_step("diff"))
        return artifact

    async def _trigger_deployment(self, context: BuildContext) -> Optional[str]:
        """Deployment URL, or None. Never raises."""
        if self.dry_run or self.deployment_trigger is None:
            logger.info("Deployment skipped (dry run or not configured)", extra=_step("deploy"))
            return None

        logger.info("Triggering deployment", extra=_step("deploy"))
        try:
            record = await self.deployment_trigger.trigger(context)
        except Exception as e:
            logger.warning(f"Deployment trigger error: {e}", extra=_step("deploy", error=str(e)))
            return None

        if record.status in (DeploymentStatus.FAILED, DeploymentStatus.CANCELLED) or record.error:
            logger.warning(
                f"Deployment {record.status.value}: {record.error}",
                extra=_step("deploy", error=record.error),
            )
            return None

        logger.info(
            f"Deployment {record.status.value}" + (f" at {record.url}" if record.url else ""),
            extra=_step("deploy"),
        )
        return record.url

    async def _run_tests(self, context: BuildContext) -> TestResult:
        if not self.config.test.enabled:
            logger.info("Tests disabled by configuration", extra=_step("test"))
            return TestResult(status="skipped", message="Tests disabled by configuration")

        logger.info("Running tests", extra=_step("test"))
        result = await self.test_runner.run(context)
        logger.info(
            f"Tests {result.status}: {result.passed} passed, {result.failed} failed "
            f"({result.duration}ms)",
            extra=_step("test"),
        )
        return result

    # =========================================================================
    # Notifications
    # =========================================================================

    async def _notify_success(self, result: BuildResult) -> None:
        seconds = round(result.duration / 1000)
        if result.commit_info:
            extra = f"Commit: {result.commit_info.message} by {result.commit_info.author} ({seconds}s)"
        else:
            extra = f"Build completed in {seconds}s"

        diff_url = next((a.url for a in result.artifacts if a.type == "diff"), None)
        report_url = result.test_results.report_url if result.test_results else None
        message = NotificationMessage.success(
            result.revision,
            diff_url=diff_url,
            preview_url=result.deployment_url,
            report_url=report_url,
            extra=extra,
        )
        await self._send(message, "Success")

    async def _notify_failure(self, context: BuildContext, error: str, step: PipelineStage) -> None:
        message = NotificationMessage.failure(context.revision, error, step.value)
        await self._send(message, "Error")

    async def _send(self, message: NotificationMessage, kind: str) -> None:
        if self.dispatcher is None:
            logger.debug("No notification channels configured", extra=_step("notify"))
            return
        try:
            await self.dispatcher.send(message)
            logger.info(f"{kind} notification sent", extra=_step("notify"))
        except Exception as e:
            logger.error(
                f"Failed to send {kind.lower()} notification: {e}",
                extra=_step("notify", error=str(e)),
            )

    # =========================================================================
    # Audit log
    # =========================================================================

    def _attach_audit_log(self, context: BuildContext):
        """Attach the runner.jsonl handler for this run."""
        handler = JsonlAuditHandler(context.log_dir, revision=context.revision, branch=context.branch)

        package_logger = logging.getLogger(PACKAGE_LOGGER)
        package_logger.addHandler(handler)
        restore_level = None
        if package_logger.getEffectiveLevel() > logging.INFO:
            restore_level = package_logger.level
            package_logger.setLevel(logging.INFO)
        return handler, restore_level

    @staticmethod
    def _detach_audit_log(handler: Optional[JsonlAuditHandler], restore_level: Optional[int]) -> None:
        if handler is None:
            return
        package_logger = logging.getLogger(PACKAGE_LOGGER)
        package_logger.removeHandler(handler)
        handler.close()
        if restore_level is not None:
            package_logger.setLevel(restore_level)
