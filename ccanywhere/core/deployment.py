"""
Deployment Trigger

Requests a deployment through a webhook and, when a status URL is
configured, polls it until the deployment reaches a terminal state.

Deployment failure is an outcome, not an exception: HTTP errors and
transport failures come back as a DeploymentRecord with status ``failed``.
Only a missing webhook URL raises (ConfigurationError).

Polling:
    - every ``poll_interval`` seconds until ``max_wait`` elapses
    - a failed poll is logged and polling continues
    - on timeout the record stays ``running`` with a note in ``error``
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from ccanywhere import USER_AGENT
from ccanywhere.config import CcanywhereConfig, DeploymentConfig
from ccanywhere.errors import ConfigurationError
from ccanywhere.types import BuildContext, DeploymentRecord, DeploymentStatus, now_ms

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT = 30.0  # seconds
TRIGGER_NAME = "ccanywhere"

# InvalidURL is not an HTTPError subclass
REQUEST_ERRORS = (httpx.HTTPError, httpx.InvalidURL)
# plus undecodable or non-object status bodies
STATUS_ERRORS = REQUEST_ERRORS + (ValueError,)

# =============================================================================
# Status Normalization
# =============================================================================

STATUS_MAP: Dict[str, DeploymentStatus] = {
    "success": DeploymentStatus.SUCCESS,
    "completed": DeploymentStatus.SUCCESS,
    "deployed": DeploymentStatus.SUCCESS,
    "ready": DeploymentStatus.SUCCESS,
    "failed": DeploymentStatus.FAILED,
    "error": DeploymentStatus.FAILED,
    "failure": DeploymentStatus.FAILED,
    "cancelled": DeploymentStatus.CANCELLED,
    "canceled": DeploymentStatus.CANCELLED,
    "aborted": DeploymentStatus.CANCELLED,
    "running": DeploymentStatus.RUNNING,
    "deploying": DeploymentStatus.RUNNING,
    "building": DeploymentStatus.RUNNING,
    "in_progress": DeploymentStatus.RUNNING,
    "pending": DeploymentStatus.PENDING,
    "queued": DeploymentStatus.PENDING,
    "waiting": DeploymentStatus.PENDING,
}


def normalize_status(raw: Any) -> DeploymentStatus:
    """Map a platform status string to DeploymentStatus. Unknown -> running."""
    if not isinstance(raw, str):
        return DeploymentStatus.RUNNING
    return STATUS_MAP.get(raw.strip().lower(), DeploymentStatus.RUNNING)


def _http_error(response: httpx.Response) -> str:
    return f"HTTP {response.status_code}: {response.reason_phrase}"


# =============================================================================
# Triggers
# =============================================================================

class DeploymentTrigger(ABC):
    """Starts a deployment for a build and reports its status."""

    def __init__(
        self,
        config: Optional[DeploymentConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self._client = client

    @abstractmethod
    async def trigger(self, context: BuildContext) -> DeploymentRecord:
        pass

    @abstractmethod
    async def get_status(self, deployment_id: str) -> DeploymentRecord:
        pass

    def _resolve_config(self, context: Optional[BuildContext] = None) -> DeploymentConfig:
        config = self.config
        if config is None and context is not None:
            config = context.config.deployment
        if config is None or not config.webhook:
            raise ConfigurationError("Deployment webhook URL not configured")
        return config

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = {"User-Agent": USER_AGENT, **kwargs.pop("headers", {})}
        if self._client is not None:
            return await self._client.request(
                method, url, headers=headers, timeout=WEBHOOK_TIMEOUT, **kwargs
            )
        async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT) as client:
            return await client.request(method, url, headers=headers, **kwargs)


class WebhookDeploymentTrigger(DeploymentTrigger):
    """Dokploy-style webhook with optional status polling."""

    def __init__(
        self,
        config: Optional[DeploymentConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(config=config, client=client)
        self._sleep = sleep
        self._clock = clock

    async def trigger(self, context: BuildContext) -> DeploymentRecord:
        config = self._resolve_config(context)
        start_time = now_ms()

        payload = {
            "ref": context.revision,
            "branch": context.branch,
            "trigger": TRIGGER_NAME,
            "timestamp": context.timestamp,
        }

        logger.info(f"Triggering deployment for {context.revision} on {context.branch}")
        try:
            response = await self._request("POST", config.webhook, json=payload)
        except REQUEST_ERRORS as e:
            logger.warning(f"Deployment webhook failed: {e}")
            return DeploymentRecord(
                status=DeploymentStatus.FAILED,
                start_time=start_time,
                end_time=now_ms(),
                error=f"Deployment webhook request failed: {e}",
            )

        if not response.is_success:
            logger.warning(f"Deployment webhook rejected: {_http_error(response)}")
            return DeploymentRecord(
                status=DeploymentStatus.FAILED,
                start_time=start_time,
                end_time=now_ms(),
                error=_http_error(response),
            )

        record = DeploymentRecord(status=DeploymentStatus.RUNNING, start_time=start_time)
        if config.status_url:
            return await self.wait_for_completion(record, config)
        return record

    async def wait_for_completion(
        self, record: DeploymentRecord, config: DeploymentConfig
    ) -> DeploymentRecord:
        """Poll ``config.status_url`` until terminal or ``max_wait`` elapses."""
        deadline = self._clock() + config.max_wait

        while self._clock() < deadline:
            try:
                data = await self._fetch_status(config.status_url)
            except STATUS_ERRORS as e:
                logger.warning(f"Status check failed: {e}")
            else:
                self._apply_status(record, data)
                if record.is_terminal():
                    record.end_time = now_ms()
                    logger.info(f"Deployment finished with status {record.status.value}")
                    return record
            await self._sleep(config.poll_interval)

        record.status = DeploymentStatus.RUNNING
        record.error = f"Deployment status check timed out after {config.max_wait}s"
        logger.warning(record.error)
        return record

    async def get_status(self, deployment_id: str) -> DeploymentRecord:
        config = self._resolve_config()
        if not config.status_url:
            raise ConfigurationError("Deployment status URL not configured")

        record = DeploymentRecord(status=DeploymentStatus.RUNNING, start_time=now_ms())
        try:
            data = await self._fetch_status(config.status_url, params={"id": deployment_id})
        except STATUS_ERRORS as e:
            record.status = DeploymentStatus.FAILED
            record.end_time = now_ms()
            record.error = f"Status check failed: {e}"
            return record

        self._apply_status(record, data)
        if record.is_terminal():
            record.end_time = now_ms()
        return record

    async def _fetch_status(
        self, url: str, params: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        response = await self._request("GET", url, params=params)
        if not response.is_success:
            raise httpx.HTTPStatusError(
                _http_error(response), request=response.request, response=response
            )
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError("status response is not a JSON object")
        return data

    @staticmethod
    def _apply_status(record: DeploymentRecord, data: Dict[str, Any]) -> None:
        record.status = normalize_status(data.get("status"))
        if data.get("url"):
            record.url = str(data["url"])
        if data.get("error"):
            record.error = str(data["error"])


class GenericWebhookDeploymentTrigger(DeploymentTrigger):
    """Fire-and-forget webhook with custom headers. 2xx counts as success."""

    def __init__(
        self,
        config: Optional[DeploymentConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(config=config, client=client)
        self.headers = dict(headers if headers is not None else (config.headers if config else {}))

    async def trigger(self, context: BuildContext) -> DeploymentRecord:
        config = self._resolve_config(context)
        start_time = now_ms()

        payload = {
            "repository": context.config.repo.url,
            "ref": context.revision,
            "branch": context.branch,
            "timestamp": context.timestamp,
            "triggered_by": TRIGGER_NAME,
        }
        headers = {**config.headers, **self.headers}

        try:
            response = await self._request("POST", config.webhook, json=payload, headers=headers)
        except REQUEST_ERRORS as e:
            logger.warning(f"Deployment webhook failed: {e}")
            return DeploymentRecord(
                status=DeploymentStatus.FAILED,
                start_time=start_time,
                end_time=now_ms(),
                error=f"Deployment webhook request failed: {e}",
            )

        if not response.is_success:
            return DeploymentRecord(
                status=DeploymentStatus.FAILED,
                start_time=start_time,
                end_time=now_ms(),
                error=_http_error(response),
            )
        return DeploymentRecord(
            status=DeploymentStatus.SUCCESS, start_time=start_time, end_time=now_ms()
        )

    async def get_status(self, deployment_id: str) -> DeploymentRecord:
        # Generic webhooks expose no status endpoint.
        return DeploymentRecord(status=DeploymentStatus.RUNNING, start_time=now_ms())


def create_deployment_trigger(
    config: Optional[CcanywhereConfig],
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[DeploymentTrigger]:
    """Trigger for ``config.deployment``, or None when deployment is off."""
    if config is None or config.deployment is None:
        return None
    deployment = config.deployment
    if deployment.type == "generic":
        return GenericWebhookDeploymentTrigger(deployment, client=client)
    return WebhookDeploymentTrigger(deployment, client=client)
