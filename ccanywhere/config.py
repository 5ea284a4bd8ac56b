"""
CCanywhere Configuration

Validated configuration for repository, deployment, notification, build
and test settings.

Config files are JSON. Keys may be camelCase (``lockTimeout``) or
snake_case (``lock_timeout``). A handful of environment variables override
file values so secrets can stay out of the repository.
"""

import json
import logging
import os
from pathlib import Path
from typing import ClassVar, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from ccanywhere.errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV = "CCANYWHERE_CONFIG"
DEFAULT_CONFIG_FILE = Path("ccanywhere.config.json")

DEFAULT_LOCK_DIR = "/tmp/ccanywhere-locks"
DEFAULT_LOCK_FILE = f"{DEFAULT_LOCK_DIR}/main.lock"

NotificationChannel = Literal["telegram", "dingtalk", "wecom", "email"]
ALL_CHANNELS: tuple = ("telegram", "dingtalk", "wecom", "email")


class _ConfigModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


def _webhook_shorthand(value):
    if isinstance(value, str):
        return {"webhook": value}
    return value


# =============================================================================
# Sections
# =============================================================================

class RepoConfig(_ConfigModel):
    """Repository information (auto-detected from .git when absent)."""
    kind: Optional[Literal["github", "gitlab", "bitbucket", "gitee"]] = None
    url: Optional[str] = None
    branch: str = "main"


class DeploymentConfig(_ConfigModel):
    """Deployment webhook and optional status polling."""
    webhook: str = Field(min_length=1)
    status_url: Optional[str] = None
    max_wait: int = Field(default=300, ge=1, le=3600)
    poll_interval: int = Field(default=5, ge=1, le=60)
    type: Literal["dokploy", "generic"] = "dokploy"
    headers: Dict[str, str] = Field(default_factory=dict)


class TelegramConfig(_ConfigModel):
    bot_token: str = Field(pattern=r"^\d+:[\w-]+$")
    chat_id: str = Field(min_length=1)


class DingTalkConfig(_ConfigModel):
    webhook: str = Field(min_length=1)
    secret: Optional[str] = None


class WeComConfig(_ConfigModel):
    webhook: str = Field(min_length=1)


class SmtpConfig(_ConfigModel):
    host: str = Field(min_length=1)
    port: int = Field(default=587, ge=1, le=65535)
    user: str = Field(min_length=1)
    password: str = Field(alias="pass", min_length=1)


class EmailConfig(_ConfigModel):
    to: str = Field(min_length=3)
    from_: Optional[str] = Field(default=None, alias="from")
    smtp: Optional[SmtpConfig] = None


class NotificationsConfig(_ConfigModel):
    """
    Notification channels.

    ``channels`` lists the channels to use; each needs its own section.
    A listed channel without a section is skipped by the dispatcher rather
    than rejected here, so one bad channel never blocks the others.
    """
    channels: List[str] = Field(min_length=1)
    telegram: Optional[TelegramConfig] = None
    dingtalk: Optional[DingTalkConfig] = None
    wecom: Optional[WeComConfig] = None
    email: Optional[EmailConfig] = None

    @field_validator("dingtalk", "wecom", mode="before")
    @classmethod
    def accept_webhook_string(cls, value):
        return _webhook_shorthand(value)


class BuildConfig(_ConfigModel):
    base: str = "origin/main"
    lock_timeout: int = Field(default=300, ge=1, le=3600)
    lock_file: str = DEFAULT_LOCK_FILE
    lock_dir: str = DEFAULT_LOCK_DIR
    cleanup_days: int = Field(default=7, ge=1, le=365)
    exclude_paths: List[str] = Field(default_factory=list)


class TestConfig(_ConfigModel):
    """Test suite command and report location."""
    __test__: ClassVar[bool] = False

    enabled: bool = True
    command: List[str] = Field(default_factory=lambda: ["npx", "playwright", "test"])
    timeout: Optional[int] = Field(default=None, ge=1)
    report_dir: Optional[str] = "playwright-report"


class ArtifactsConfig(_ConfigModel):
    base_url: Optional[str] = None
    retention_days: int = Field(default=7, ge=1)

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, value: Optional[str]) -> Optional[str]:
        return value.rstrip("/") if value else value


class CcanywhereConfig(_ConfigModel):
    """Main configuration container."""
    repo: RepoConfig = Field(default_factory=RepoConfig)
    deployment: Optional[DeploymentConfig] = None
    notifications: Optional[NotificationsConfig] = None
    build: BuildConfig = Field(default_factory=BuildConfig)
    test: TestConfig = Field(default_factory=TestConfig)
    artifacts: ArtifactsConfig = Field(default_factory=ArtifactsConfig)

    @field_validator("deployment", mode="before")
    @classmethod
    def accept_webhook_string(cls, value):
        return _webhook_shorthand(value)


# =============================================================================
# Loading
# =============================================================================

# env var -> dotted path inside the raw config dict
ENV_OVERRIDES: Dict[str, str] = {
    "CCANYWHERE_DEPLOYMENT_WEBHOOK": "deployment.webhook",
    "CCANYWHERE_DEPLOYMENT_STATUS_URL": "deployment.statusUrl",
    "CCANYWHERE_TELEGRAM_BOT_TOKEN": "notifications.telegram.botToken",
    "CCANYWHERE_TELEGRAM_CHAT_ID": "notifications.telegram.chatId",
    "CCANYWHERE_SMTP_PASS": "notifications.email.smtp.pass",
    "CCANYWHERE_LOCK_FILE": "build.lockFile",
    "CCANYWHERE_ARTIFACTS_BASE_URL": "artifacts.baseUrl",
}


def _set_path(data: dict, dotted: str, value: str) -> None:
    node = data
    parts = dotted.split(".")
    for part in parts[:-1]:
        child = node.get(part)
        if isinstance(child, str) and part == "deployment":
            child = {"webhook": child}
        if not isinstance(child, dict):
            child = {}
        node[part] = child
        node = child
    node[parts[-1]] = value


def apply_env_overrides(data: dict, environ: Optional[Dict[str, str]] = None) -> dict:
    """Overlay ``CCANYWHERE_*`` environment variables onto raw config data."""
    environ = os.environ if environ is None else environ
    for env_name, dotted in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            _set_path(data, dotted, value)
    return data


def _format_validation_error(exc: ValidationError) -> str:
    lines = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err["loc"]) or "<root>"
        lines.append(f"{location}: {err['msg']}")
    return "Configuration validation failed:\n" + "\n".join(lines)


def validate_config(data: dict) -> CcanywhereConfig:
    """Validate raw config data, raising ConfigurationError on failure."""
    try:
        return CcanywhereConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(_format_validation_error(e)) from e


def resolve_config_path(path: Union[str, Path, None] = None) -> Optional[Path]:
    """Explicit path, then $CCANYWHERE_CONFIG, then ./ccanywhere.config.json."""
    if path:
        return Path(path)
    env_path = os.getenv(CONFIG_FILE_ENV)
    if env_path:
        return Path(env_path)
    if DEFAULT_CONFIG_FILE.exists():
        return DEFAULT_CONFIG_FILE
    return None


def load_config(path: Union[str, Path, None] = None) -> CcanywhereConfig:
    """
    Load and validate configuration.

    Missing config file is only an error when a path was given explicitly;
    otherwise defaults plus environment overrides are used.
    """
    config_path = resolve_config_path(path)
    data: dict = {}

    if config_path is not None:
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config root must be an object: {config_path}")
        logger.debug(f"Loaded config from {config_path}")

    return validate_config(apply_env_overrides(data))
