"""Issue tracker sinks holding the externally visible incident."""

import os
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import requests

from drift_reconciler.config.models import GitHubIssuesConfig
from drift_reconciler.utils.errors import ConfigurationError
from drift_reconciler.utils.logging import get_logger

logger = get_logger(__name__)


class IssueSink(ABC):
    """Outbound issue tracker."""

    @abstractmethod
    def create_incident(self, title: str, body: str, labels: List[str]) -> str:
        """Open an issue.

        Returns:
            External ID of the new issue
        """
        pass

    @abstractmethod
    def update_incident(self, external_id: str, body: str) -> None:
        """Replace the body of an issue."""
        pass

    @abstractmethod
    def close_incident(self, external_id: str) -> None:
        """Close an issue."""
        pass


class GitHubIssueSink(IssueSink):
    """GitHub Issues via the REST API."""

    def __init__(self, config: GitHubIssuesConfig, token: Optional[str] = None):
        """Initialize GitHub sink.

        Args:
            config: Repository and API settings
            token: API token (defaults to the variable named by ``config.token_env``)

        Raises:
            ConfigurationError: If no token is available
        """
        self.config = config
        self.token = token or os.getenv(config.token_env)
        if not self.token:
            raise ConfigurationError(
                f"GitHub token not found in environment variable {config.token_env}",
                suggestions=[f"export {config.token_env}=<token with issues:write>"],
            )
        self.base_url = f"{config.api_url.rstrip('/')}/repos/{config.repository}/issues"

    def _headers(self) -> Dict[str, str]:
        return {
            'Authorization': f"Bearer {self.token}",
            'Accept': 'application/vnd.github+json',
            'X-GitHub-Api-Version': '2022-11-28',
        }

    def create_incident(self, title: str, body: str, labels: List[str]) -> str:
        response = requests.post(
            self.base_url,
            json={'title': title, 'body': body, 'labels': labels},
            headers=self._headers(),
            timeout=self.config.timeout_seconds,
        )
        response.raise_for_status()
        number = str(response.json()['number'])
        logger.info(f"Opened issue #{number} in {self.config.repository}")
        return number

    def update_incident(self, external_id: str, body: str) -> None:
        response = requests.patch(
            f"{self.base_url}/{external_id}",
            json={'body': body},
            headers=self._headers(),
            timeout=self.config.timeout_seconds,
        )
        response.raise_for_status()

    def close_incident(self, external_id: str) -> None:
        response = requests.patch(
            f"{self.base_url}/{external_id}",
            json={'state': 'closed', 'state_reason': 'completed'},
            headers=self._headers(),
            timeout=self.config.timeout_seconds,
        )
        response.raise_for_status()
        logger.info(f"Closed issue #{external_id} in {self.config.repository}")
