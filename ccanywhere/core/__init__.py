"""
Core

Build lock, deployment trigger, diff and test collaborators, and the
pipeline that sequences them.
"""

from ccanywhere.core.deployment import (
    DeploymentTrigger,
    GenericWebhookDeploymentTrigger,
    WebhookDeploymentTrigger,
    create_deployment_trigger,
    normalize_status,
)
from ccanywhere.core.lock_manager import FileLockManager
from ccanywhere.core.pipeline import BuildPipeline

__all__ = [
    "BuildPipeline",
    "DeploymentTrigger",
    "FileLockManager",
    "GenericWebhookDeploymentTrigger",
    "WebhookDeploymentTrigger",
    "create_deployment_trigger",
    "normalize_status",
]
