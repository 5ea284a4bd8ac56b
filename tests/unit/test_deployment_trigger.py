"""
Unit Tests: Deployment Trigger

HTTP is served by httpx.MockTransport; sleep and clock are injected so
polling runs instantly and deterministically.
"""

import json
from pathlib import Path

import httpx
import pytest

from ccanywhere import USER_AGENT
from ccanywhere.config import CcanywhereConfig, DeploymentConfig
from ccanywhere.core.deployment import (
    STATUS_MAP,
    GenericWebhookDeploymentTrigger,
    WebhookDeploymentTrigger,
    create_deployment_trigger,
    normalize_status,
)
from ccanywhere.errors import ConfigurationError
from ccanywhere.types import BuildContext, DeploymentStatus

WEBHOOK = "https://deploy.example.com/hook"
STATUS_URL = "https://deploy.example.com/status"
BAD_URL = "https://deploy.example.com:not-a-port/hook"


def _context(deployment=None, repo_url=None) -> BuildContext:
    config = CcanywhereConfig(
        deployment=deployment,
        repo={"url": repo_url} if repo_url else {},
    )
    return BuildContext(
        revision="abc1234",
        branch="main",
        timestamp=1_700_000_000_000,
        work_dir=Path("/work"),
        artifacts_dir=Path("/work/.artifacts"),
        log_dir=Path("/logs"),
        lock_file=Path("/tmp/ccanywhere-locks/main.lock"),
        config=config,
    )


class FakeClock:
    """Monotonic clock advanced by the injected sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# =============================================================================
# normalize_status
# =============================================================================

class TestNormalizeStatus:

    @pytest.mark.parametrize("raw,expected", [
        ("ready", DeploymentStatus.SUCCESS),
        ("aborted", DeploymentStatus.CANCELLED),
        ("queued", DeploymentStatus.PENDING),
        ("unknown-value", DeploymentStatus.RUNNING),
        ("COMPLETED", DeploymentStatus.SUCCESS),
        ("Failure", DeploymentStatus.FAILED),
        ("canceled", DeploymentStatus.CANCELLED),
        ("in_progress", DeploymentStatus.RUNNING),
    ])
    def test_mapping(self, raw, expected):
        assert normalize_status(raw) == expected

    def test_non_string_defaults_to_running(self):
        assert normalize_status(None) == DeploymentStatus.RUNNING
        assert normalize_status(3) == DeploymentStatus.RUNNING

    def test_table_covers_every_status(self):
        assert set(STATUS_MAP.values()) == set(DeploymentStatus)


# =============================================================================
# WebhookDeploymentTrigger
# =============================================================================

class TestWebhookTrigger:

    @pytest.mark.asyncio
    async def test_missing_webhook_raises_configuration_error(self):
        trigger = WebhookDeploymentTrigger()
        with pytest.raises(ConfigurationError):
            await trigger.trigger(_context(deployment=None))

    @pytest.mark.asyncio
    async def test_posts_payload_and_headers(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            seen["headers"] = request.headers
            return httpx.Response(202)

        config = DeploymentConfig(webhook=WEBHOOK)
        async with _client(handler) as client:
            trigger = WebhookDeploymentTrigger(config, client=client)
            record = await trigger.trigger(_context(config))

        assert seen["method"] == "POST"
        assert seen["url"] == WEBHOOK
        assert seen["body"] == {
            "ref": "abc1234",
            "branch": "main",
            "trigger": "ccanywhere",
            "timestamp": 1_700_000_000_000,
        }
        assert seen["headers"]["user-agent"] == USER_AGENT
        assert seen["headers"]["content-type"] == "application/json"
        assert record.status == DeploymentStatus.RUNNING
        assert record.end_time is None

    @pytest.mark.asyncio
    async def test_non_2xx_is_failed_record(self):
        config = DeploymentConfig(webhook=WEBHOOK)
        async with _client(lambda r: httpx.Response(500)) as client:
            record = await WebhookDeploymentTrigger(config, client=client).trigger(_context(config))

        assert record.status == DeploymentStatus.FAILED
        assert "500" in record.error
        assert record.end_time is not None

    @pytest.mark.asyncio
    async def test_transport_error_is_failed_record(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        config = DeploymentConfig(webhook=WEBHOOK)
        async with _client(handler) as client:
            record = await WebhookDeploymentTrigger(config, client=client).trigger(_context(config))

        assert record.status == DeploymentStatus.FAILED
        assert "connection refused" in record.error

    @pytest.mark.asyncio
    async def test_malformed_webhook_url_is_failed_record(self):
        def handler(request):
            raise AssertionError("no request expected")

        config = DeploymentConfig(webhook=BAD_URL)
        async with _client(handler) as client:
            record = await WebhookDeploymentTrigger(config, client=client).trigger(_context(config))

        assert record.status == DeploymentStatus.FAILED
        assert record.error.startswith("Deployment webhook request failed")

    @pytest.mark.asyncio
    async def test_polls_until_first_terminal_status(self):
        statuses = iter(["running", "running", "success", "failed"])
        polls = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200)
            polls.append(str(request.url))
            return httpx.Response(200, json={"status": next(statuses), "url": "https://app.example.com"})

        clock = FakeClock()
        config = DeploymentConfig(webhook=WEBHOOK, status_url=STATUS_URL, poll_interval=5)
        async with _client(handler) as client:
            trigger = WebhookDeploymentTrigger(config, client=client, sleep=clock.sleep, clock=clock)
            record = await trigger.trigger(_context(config))

        assert record.status == DeploymentStatus.SUCCESS
        assert record.end_time is not None
        assert record.url == "https://app.example.com"
        assert len(polls) == 3
        assert clock.sleeps == [5, 5]

    @pytest.mark.asyncio
    async def test_failed_poll_keeps_polling(self):
        responses = iter([
            httpx.Response(503),
            httpx.Response(200, text="not json"),
            httpx.Response(200, json={"status": "deployed"}),
        ])

        def handler(request):
            if request.method == "POST":
                return httpx.Response(200)
            return next(responses)

        clock = FakeClock()
        config = DeploymentConfig(webhook=WEBHOOK, status_url=STATUS_URL)
        async with _client(handler) as client:
            trigger = WebhookDeploymentTrigger(config, client=client, sleep=clock.sleep, clock=clock)
            record = await trigger.trigger(_context(config))

        assert record.status == DeploymentStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_timeout_leaves_running_with_note(self):
        def handler(request):
            if request.method == "POST":
                return httpx.Response(200)
            return httpx.Response(200, json={"status": "building"})

        clock = FakeClock()
        config = DeploymentConfig(webhook=WEBHOOK, status_url=STATUS_URL, max_wait=20, poll_interval=5)
        async with _client(handler) as client:
            trigger = WebhookDeploymentTrigger(config, client=client, sleep=clock.sleep, clock=clock)
            record = await trigger.trigger(_context(config))

        assert record.status == DeploymentStatus.RUNNING
        assert record.error == "Deployment status check timed out after 20s"
        assert record.end_time is None
        assert len(clock.sleeps) == 4

    @pytest.mark.asyncio
    async def test_status_error_field_is_copied(self):
        def handler(request):
            if request.method == "POST":
                return httpx.Response(200)
            return httpx.Response(200, json={"status": "error", "error": "image pull failed"})

        clock = FakeClock()
        config = DeploymentConfig(webhook=WEBHOOK, status_url=STATUS_URL)
        async with _client(handler) as client:
            trigger = WebhookDeploymentTrigger(config, client=client, sleep=clock.sleep, clock=clock)
            record = await trigger.trigger(_context(config))

        assert record.status == DeploymentStatus.FAILED
        assert record.error == "image pull failed"


class TestGetStatus:

    @pytest.mark.asyncio
    async def test_queries_status_url_with_id(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"status": "ready", "url": "https://app"})

        config = DeploymentConfig(webhook=WEBHOOK, status_url=STATUS_URL)
        async with _client(handler) as client:
            record = await WebhookDeploymentTrigger(config, client=client).get_status("dep-42")

        assert seen["params"] == {"id": "dep-42"}
        assert record.status == DeploymentStatus.SUCCESS
        assert record.url == "https://app"
        assert record.end_time is not None

    @pytest.mark.asyncio
    async def test_transport_error_becomes_failed_record(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        config = DeploymentConfig(webhook=WEBHOOK, status_url=STATUS_URL)
        async with _client(handler) as client:
            record = await WebhookDeploymentTrigger(config, client=client).get_status("dep-42")

        assert record.status == DeploymentStatus.FAILED
        assert "timed out" in record.error

    @pytest.mark.asyncio
    async def test_malformed_status_url_becomes_failed_record(self):
        def handler(request):
            raise AssertionError("no request expected")

        config = DeploymentConfig(webhook=WEBHOOK, status_url=BAD_URL)
        async with _client(handler) as client:
            record = await WebhookDeploymentTrigger(config, client=client).get_status("dep-42")

        assert record.status == DeploymentStatus.FAILED
        assert record.error.startswith("Status check failed")

    @pytest.mark.asyncio
    async def test_missing_status_url_raises(self):
        trigger = WebhookDeploymentTrigger(DeploymentConfig(webhook=WEBHOOK))
        with pytest.raises(ConfigurationError):
            await trigger.get_status("dep-42")


# =============================================================================
# GenericWebhookDeploymentTrigger / factory
# =============================================================================

class TestGenericTrigger:

    @pytest.mark.asyncio
    async def test_generic_payload_and_custom_headers(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["headers"] = request.headers
            return httpx.Response(200)

        config = DeploymentConfig(
            webhook=WEBHOOK, type="generic", headers={"Authorization": "Bearer t0k"}
        )
        async with _client(handler) as client:
            trigger = GenericWebhookDeploymentTrigger(config, client=client)
            record = await trigger.trigger(_context(config, repo_url="https://git.example.com/r"))

        assert seen["body"]["repository"] == "https://git.example.com/r"
        assert seen["body"]["triggered_by"] == "ccanywhere"
        assert seen["headers"]["authorization"] == "Bearer t0k"
        assert record.status == DeploymentStatus.SUCCESS
        assert record.end_time is not None

    def test_factory_picks_by_type(self):
        generic = CcanywhereConfig(deployment={"webhook": WEBHOOK, "type": "generic"})
        dokploy = CcanywhereConfig(deployment=WEBHOOK)

        assert isinstance(create_deployment_trigger(generic), GenericWebhookDeploymentTrigger)
        assert isinstance(create_deployment_trigger(dokploy), WebhookDeploymentTrigger)
        assert create_deployment_trigger(CcanywhereConfig()) is None
