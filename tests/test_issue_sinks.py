from unittest import mock

import pytest

from drift_reconciler.config.models import GitHubIssuesConfig
from drift_reconciler.incidents.sinks import GitHubIssueSink
from drift_reconciler.utils.errors import ConfigurationError

CONFIG = GitHubIssuesConfig(repository="acme/infra", api_url="https://github.test/api/v3/")


def test_create_incident():
    sink = GitHubIssueSink(CONFIG, token="ghp_test")
    response = mock.Mock()
    response.json.return_value = {"number": 42}

    with mock.patch("drift_reconciler.incidents.sinks.requests.post", return_value=response) as post:
        external_id = sink.create_incident("Drift in prod", "body", ["drift", "env:prod"])

    assert external_id == "42"
    assert post.call_args.args[0] == "https://github.test/api/v3/repos/acme/infra/issues"
    assert post.call_args.kwargs["json"] == {
        "title": "Drift in prod",
        "body": "body",
        "labels": ["drift", "env:prod"],
    }
    assert post.call_args.kwargs["headers"]["Authorization"] == "Bearer ghp_test"
    assert post.call_args.kwargs["timeout"] == 10.0


def test_update_and_close_incident():
    sink = GitHubIssueSink(CONFIG, token="ghp_test")

    with mock.patch("drift_reconciler.incidents.sinks.requests.patch") as patch:
        sink.update_incident("42", "new body")
        sink.close_incident("42")

    update, close = patch.call_args_list
    assert update.args[0].endswith("/issues/42")
    assert update.kwargs["json"] == {"body": "new body"}
    assert close.kwargs["json"]["state"] == "closed"


def test_token_from_environment(monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_env")
    assert GitHubIssueSink(CONFIG).token == "ghp_env"


def test_missing_token(monkeypatch):
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    with pytest.raises(ConfigurationError):
        GitHubIssueSink(CONFIG)
