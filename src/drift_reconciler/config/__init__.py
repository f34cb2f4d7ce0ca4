"""Configuration management for the drift reconciler."""

from .models import (
    EnvironmentConfig,
    ExecutorConfig,
    ExecutorsConfig,
    GitHubIssuesConfig,
    IssuesConfig,
    LockConfig,
    NotificationsConfig,
    ProjectConfig,
    StateStoreConfig,
    WebhookConfig,
)
from .parser import Config, ConfigValidationError

__all__ = [
    "EnvironmentConfig",
    "ExecutorConfig",
    "ExecutorsConfig",
    "GitHubIssuesConfig",
    "IssuesConfig",
    "LockConfig",
    "NotificationsConfig",
    "ProjectConfig",
    "StateStoreConfig",
    "WebhookConfig",
    "Config",
    "ConfigValidationError",
]
