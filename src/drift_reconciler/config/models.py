"""Pydantic models for configuration schema."""

from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class EnvironmentConfig(BaseModel):
    """A reconciled environment. Immutable for the lifetime of the process."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, max_length=64, pattern="^[a-z0-9][a-z0-9_-]*$")
    spec_path: str = Field(..., min_length=1, description="Location of the declared spec")
    state_key: str = Field(..., min_length=1, description="State snapshot key for the executors")
    drift_detection_enabled: bool = True
    auto_remediate: bool = False
    schedule_interval_seconds: int = Field(300, ge=10, le=86400)


class StateStoreConfig(BaseModel):
    """Backend holding lock and incident records."""

    backend: str = Field("file", pattern="^(memory|file|dynamodb)$")
    path: str = Field(".drift/state", description="Directory for the file backend")
    table_name: Optional[str] = Field(None, description="DynamoDB table name")
    region: Optional[str] = None
    profile: Optional[str] = None

    @model_validator(mode="after")
    def validate_backend(self):
        """DynamoDB needs a table."""
        if self.backend == "dynamodb" and not self.table_name:
            raise ValueError("table_name is required for the dynamodb backend")
        return self


class LockConfig(BaseModel):
    """Lock record settings."""

    ttl_seconds: int = Field(3600, ge=60, description="Lock expiry after acquisition")


class ExecutorConfig(BaseModel):
    """An external executor invocation."""

    command: List[str] = Field(..., min_length=1, description="argv template")
    timeout_seconds: int = Field(600, ge=1, le=86400)
    working_dir: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)

    @field_validator("command")
    @classmethod
    def validate_command(cls, v: List[str]) -> List[str]:
        """Reject empty program names."""
        if not v[0].strip():
            raise ValueError("command must start with a program name")
        return v


class ExecutorsConfig(BaseModel):
    """Plan and apply executors."""

    plan: ExecutorConfig
    apply: ExecutorConfig


class WebhookConfig(BaseModel):
    """Chat webhook channel. The URL is read from an environment variable."""

    enabled: bool = False
    webhook_url_env: Optional[str] = None

    @model_validator(mode="after")
    def validate_webhook(self):
        """An enabled webhook needs a URL source."""
        if self.enabled and not self.webhook_url_env:
            raise ValueError("webhook_url_env is required when the webhook is enabled")
        return self


class NotificationsConfig(BaseModel):
    """Chat notification channels."""

    slack: WebhookConfig = Field(default_factory=WebhookConfig)
    discord: WebhookConfig = Field(default_factory=WebhookConfig)
    timeout_seconds: float = Field(10.0, gt=0, le=120)
    failure_threshold: int = Field(3, ge=1)
    recovery_timeout_seconds: float = Field(300.0, ge=0)


class GitHubIssuesConfig(BaseModel):
    """GitHub Issues as the incident sink."""

    repository: str = Field(..., pattern="^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
    token_env: str = Field("GITHUB_TOKEN", min_length=1)
    labels: List[str] = Field(default_factory=lambda: ["drift"])
    api_url: str = Field("https://api.github.com")
    timeout_seconds: float = Field(10.0, gt=0, le=120)


class IssuesConfig(BaseModel):
    """Incident sink selection. Without GitHub, incidents live only in the state store."""

    github: Optional[GitHubIssuesConfig] = None


class ProjectConfig(BaseModel):
    """Project-level configuration."""

    name: str = Field(..., min_length=1, max_length=64, pattern="^[a-z0-9-]+$")
