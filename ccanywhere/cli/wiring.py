"""
CLI Wiring

Builds configuration, lock manager, dispatcher, deployment trigger and
pipeline for the CLI commands.

Tests inject replacements by setting the module-level instances
(``_config``, ``_lock_manager``, ``_dispatcher``, ``_deployment_trigger``,
``_pipeline``).
"""

from pathlib import Path
from typing import Optional, Union

from ccanywhere.config import CcanywhereConfig, load_config
from ccanywhere.core.deployment import DeploymentTrigger, create_deployment_trigger
from ccanywhere.core.lock_manager import FileLockManager
from ccanywhere.core.pipeline import BuildPipeline
from ccanywhere.errors import ConfigurationError
from ccanywhere.notifications.dispatcher import NotificationDispatcher

# Global instances (lazily initialized, replaceable in tests)
_config: Optional[CcanywhereConfig] = None
_lock_manager: Optional[FileLockManager] = None
_dispatcher: Optional[NotificationDispatcher] = None
_deployment_trigger: Optional[DeploymentTrigger] = None
_pipeline: Optional[BuildPipeline] = None


def get_config(path: Union[str, Path, None] = None) -> CcanywhereConfig:
    """
    Get the configuration.

    An explicit ``path`` is always loaded; otherwise the first loaded
    config is reused.

    Raises:
        ConfigurationError: missing or invalid config file
    """
    global _config
    if path is not None or _config is None:
        _config = load_config(path)
    return _config


def get_lock_manager(config: CcanywhereConfig) -> FileLockManager:
    global _lock_manager
    if _lock_manager is None:
        _lock_manager = FileLockManager(default_timeout=config.build.lock_timeout)
    return _lock_manager


def get_dispatcher(config: CcanywhereConfig) -> NotificationDispatcher:
    """
    Get the notification dispatcher.

    Raises:
        ConfigurationError: notifications not configured, or no channel
            could be initialized
    """
    global _dispatcher
    if _dispatcher is None:
        if config.notifications is None:
            raise ConfigurationError("Notifications are not configured")
        _dispatcher = NotificationDispatcher(config.notifications)
    return _dispatcher


def get_deployment_trigger(config: CcanywhereConfig) -> DeploymentTrigger:
    """
    Get the deployment trigger.

    Raises:
        ConfigurationError: deployment not configured
    """
    global _deployment_trigger
    if _deployment_trigger is None:
        _deployment_trigger = create_deployment_trigger(config)
    if _deployment_trigger is None:
        raise ConfigurationError("Deployment is not configured")
    return _deployment_trigger


def get_pipeline(
    config: CcanywhereConfig,
    work_dir: Union[str, Path] = ".",
    dry_run: bool = False,
) -> BuildPipeline:
    """Pipeline for one run. Built fresh unless a test injected one."""
    if _pipeline is not None:
        return _pipeline
    return BuildPipeline(
        work_dir=work_dir,
        config=config,
        dry_run=dry_run,
        lock_manager=get_lock_manager(config),
    )
