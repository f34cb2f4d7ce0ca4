"""YAML configuration parser for the drift reconciler."""

from pathlib import Path
from typing import Any, Dict, List, Optional, Type

import yaml
from pydantic import BaseModel, ValidationError

from .models import (
    EnvironmentConfig,
    ExecutorsConfig,
    IssuesConfig,
    LockConfig,
    NotificationsConfig,
    ProjectConfig,
    StateStoreConfig,
)


class ConfigValidationError(Exception):
    """Exception raised when configuration validation fails."""

    def __init__(self, message: str, errors: Optional[List[Dict]] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(self.message)

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  - {location}: {msg}")

        return "\n".join(error_lines)


# Optional top-level sections and their schema
SECTIONS: Dict[str, Type[BaseModel]] = {
    "state_store": StateStoreConfig,
    "lock": LockConfig,
    "notifications": NotificationsConfig,
    "issues": IssuesConfig,
}


class Config:
    """Configuration manager for the drift reconciler."""

    # Sink calls one cycle can make while holding the lock
    MAX_ISSUE_CALLS_PER_CYCLE = 3
    MAX_NOTIFICATIONS_PER_CYCLE = 2

    def __init__(self, config_path: str):
        """Initialize configuration manager.

        Args:
            config_path: Path to drift.yaml configuration file
        """
        self.config_path = Path(config_path)
        self.data: Dict = {}
        self.project: Optional[ProjectConfig] = None
        self.state_store = StateStoreConfig()
        self.lock = LockConfig()
        self.executors: Optional[ExecutorsConfig] = None
        self.notifications = NotificationsConfig()
        self.issues = IssuesConfig()
        self.environments: Dict[str, EnvironmentConfig] = {}

    def load(self) -> "Config":
        """Load and validate configuration from YAML file.

        Returns:
            Self for method chaining

        Raises:
            ConfigValidationError: If configuration is invalid
            FileNotFoundError: If configuration file doesn't exist
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Failed to parse YAML: {e}")

        return self.load_dict(data)

    def load_dict(self, data: Dict[str, Any]) -> "Config":
        """Validate and parse an already-decoded configuration document.

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        if not isinstance(data, dict):
            raise ConfigValidationError("Configuration must be a mapping")
        self.data = data

        validation_errors = self.validate()
        if validation_errors:
            raise ConfigValidationError(
                f"Configuration validation failed with {len(validation_errors)} error(s)",
                validation_errors,
            )

        self.project = ProjectConfig(**self.data["project"])
        self.executors = ExecutorsConfig(**self.data["executors"])
        for section, model in SECTIONS.items():
            if self.data.get(section) is not None:
                setattr(self, section, model(**self.data[section]))
        self._parse_environments()

        return self

    def validate(self) -> List[Dict]:
        """Validate configuration against schema.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: List[Dict] = []

        for required in ("project", "executors", "environments"):
            if required not in self.data:
                errors.append({"loc": [required], "msg": f"Required field '{required}' is missing"})

        if "project" in self.data:
            errors.extend(self._check(ProjectConfig, self.data["project"], ["project"]))

        executors = None
        if "executors" in self.data:
            section_errors = self._check(ExecutorsConfig, self.data["executors"], ["executors"])
            errors.extend(section_errors)
            if not section_errors:
                executors = ExecutorsConfig(**self.data["executors"])

        sections: Dict[str, BaseModel] = {}
        for section, model in SECTIONS.items():
            if self.data.get(section) is None:
                sections[section] = model()
                continue
            section_errors = self._check(model, self.data[section], [section])
            errors.extend(section_errors)
            if not section_errors:
                sections[section] = model(**self.data[section])

        # A lock must outlive the longest cycle: plan, apply, confirmation plan
        # and the sink calls made while the lock is held
        if executors is not None and len(sections) == len(SECTIONS):
            lock = sections["lock"]
            executor_budget = 2 * executors.plan.timeout_seconds + executors.apply.timeout_seconds
            sink_budget = self.sink_budget(sections["notifications"], sections["issues"])
            longest_cycle = executor_budget + sink_budget
            if lock.ttl_seconds <= longest_cycle:
                errors.append(
                    {
                        "loc": ["lock", "ttl_seconds"],
                        "msg": (
                            f"Lock TTL ({lock.ttl_seconds}s) must exceed the longest cycle "
                            f"({longest_cycle:g}s = 2 x plan timeout + apply timeout "
                            f"+ {sink_budget:g}s of notification and issue calls)"
                        ),
                    }
                )

        if "environments" in self.data:
            environments = self.data["environments"]
            if not isinstance(environments, dict) or not environments:
                errors.append(
                    {"loc": ["environments"], "msg": "Environments must be a non-empty mapping"}
                )
            else:
                for env_name, env_data in environments.items():
                    if not isinstance(env_data, dict):
                        errors.append(
                            {"loc": ["environments", env_name], "msg": "Environment must be a mapping"}
                        )
                        continue
                    errors.extend(
                        self._check(
                            EnvironmentConfig,
                            {"name": env_name, **env_data},
                            ["environments", env_name],
                        )
                    )

        return errors

    @classmethod
    def sink_budget(cls, notifications: NotificationsConfig, issues: IssuesConfig) -> float:
        """Worst-case seconds one cycle spends in notification and issue calls."""
        channels = sum(1 for channel in (notifications.slack, notifications.discord) if channel.enabled)
        budget = cls.MAX_NOTIFICATIONS_PER_CYCLE * channels * notifications.timeout_seconds
        if issues.github is not None:
            budget += cls.MAX_ISSUE_CALLS_PER_CYCLE * issues.github.timeout_seconds
        return budget

    def get_environment(self, env_name: str) -> EnvironmentConfig:
        """Get environment configuration.

        Args:
            env_name: Environment name

        Returns:
            Environment configuration

        Raises:
            ConfigValidationError: If environment doesn't exist
        """
        if env_name not in self.environments:
            available = ", ".join(self.environments.keys())
            raise ConfigValidationError(
                f"Environment '{env_name}' not found. Available environments: {available}"
            )

        return self.environments[env_name]

    def get_environments(self, enabled_only: bool = False) -> List[EnvironmentConfig]:
        """Get environment configurations, optionally only those with drift detection on."""
        environments = list(self.environments.values())
        if enabled_only:
            return [env for env in environments if env.drift_detection_enabled]
        return environments

    def _parse_environments(self):
        """Parse environment configurations."""
        self.environments = {
            env_name: EnvironmentConfig(**{"name": env_name, **env_data})
            for env_name, env_data in self.data["environments"].items()
        }

    @staticmethod
    def _check(model: Type[BaseModel], data: Any, loc: List) -> List[Dict]:
        """Validate one section and translate pydantic errors to loc/msg pairs."""
        if not isinstance(data, dict):
            return [{"loc": loc, "msg": "Section must be a mapping"}]
        try:
            model(**data)
        except ValidationError as e:
            return [
                {"loc": loc + list(error["loc"]), "msg": error["msg"]}
                for error in e.errors()
            ]
        return []

    def to_dict(self) -> Dict:
        """Convert configuration to dictionary.

        Returns:
            Dictionary representation of configuration
        """
        return {
            "project": self.project.model_dump() if self.project else {},
            "state_store": self.state_store.model_dump(),
            "lock": self.lock.model_dump(),
            "executors": self.executors.model_dump() if self.executors else {},
            "notifications": self.notifications.model_dump(),
            "issues": self.issues.model_dump(),
            "environments": {
                name: env.model_dump() for name, env in self.environments.items()
            },
        }
