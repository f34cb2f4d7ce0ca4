from unittest import mock

import pytest
import requests

from drift_reconciler.config.models import WebhookConfig
from drift_reconciler.incidents.models import Incident, IncidentChange, IncidentState, IncidentTransition
from drift_reconciler.notifications.dispatcher import NotificationDispatcher
from drift_reconciler.notifications.models import (
    NotificationEvent,
    NotificationKind,
    NotificationSeverity,
)
from drift_reconciler.notifications.sinks import DiscordWebhookSink, SlackWebhookSink
from drift_reconciler.utils.errors import ConfigurationError, ConvergenceFailure, ErrorContext

from tests.fakes import EPOCH, FakeChatSink

OPENED = NotificationEvent(NotificationKind.INCIDENT_OPENED, "prod", "Plan: 1 to update.")


def incident(**overrides):
    values = {
        "environment": "prod",
        "external_id": "12",
        "state": IncidentState.OPEN,
        "last_fingerprint": "ab" * 32,
        "change_summary": "Plan: 1 to update.",
        "opened_at": EPOCH,
        "last_updated_at": EPOCH,
    }
    values.update(overrides)
    return Incident(**values)


def test_notify_delivers_to_every_sink():
    slack, discord = FakeChatSink("slack"), FakeChatSink("discord")
    results = NotificationDispatcher([slack, discord]).notify("prod", OPENED)

    assert results == {"slack": True, "discord": True}
    text, severity = slack.messages[0]
    assert text.startswith("Incident Opened: prod")
    assert severity == NotificationSeverity.WARNING


def test_failing_sink_is_swallowed():
    broken, healthy = FakeChatSink("slack", fail=True), FakeChatSink("discord")
    results = NotificationDispatcher([broken, healthy]).notify("prod", OPENED)

    assert results == {"slack": False, "discord": True}
    assert broken.calls == 1
    assert len(healthy.messages) == 1


def test_circuit_opens_after_repeated_failures():
    broken = FakeChatSink("slack", fail=True)
    dispatcher = NotificationDispatcher([broken], failure_threshold=2, recovery_timeout=300)

    for _ in range(4):
        assert dispatcher.notify("prod", OPENED) == {"slack": False}

    assert broken.calls == 2


def test_none_event_is_ignored():
    sink = FakeChatSink()
    assert NotificationDispatcher([sink]).notify("prod", None) == {}
    assert sink.calls == 0


def test_timestamp_refresh_is_not_announced():
    refresh = IncidentChange(IncidentTransition.UPDATED, incident(), content_changed=False)
    assert NotificationEvent.from_incident_change("prod", refresh) is None
    assert NotificationEvent.from_incident_change("prod", IncidentChange(IncidentTransition.NONE)) is None


def test_incident_events():
    opened = NotificationEvent.from_incident_change(
        "prod", IncidentChange(IncidentTransition.OPENED, incident(), content_changed=True)
    )
    assert opened.kind == NotificationKind.INCIDENT_OPENED
    assert opened.details == {"fingerprint": "ab" * 6, "issue": "12"}

    closed = NotificationEvent.from_incident_change(
        "prod", IncidentChange(IncidentTransition.CLOSED, incident(state=IncidentState.CLOSED))
    )
    assert closed.kind == NotificationKind.INCIDENT_CLOSED
    assert closed.severity == NotificationSeverity.INFO


def test_convergence_failure_is_critical():
    error = ConvergenceFailure(
        "Apply succeeded but the environment is still drifted",
        context=ErrorContext(environment="prod", fingerprint="cd" * 32),
    )
    event = NotificationEvent.from_error(NotificationKind.CONVERGENCE_FAILED, "prod", error)

    assert event.severity == NotificationSeverity.CRITICAL
    assert "still drifted" in event.render_text()
    assert event.details["error"] == "ConvergenceFailure"


@pytest.fixture
def slack_config(monkeypatch):
    monkeypatch.setenv("SLACK_WEBHOOK_URL", "https://hooks.slack.test/T000/B000")
    return WebhookConfig(enabled=True, webhook_url_env="SLACK_WEBHOOK_URL")


def test_slack_payload(slack_config):
    sink = SlackWebhookSink(slack_config, timeout=5)
    with mock.patch("drift_reconciler.notifications.sinks.requests.post") as post:
        assert sink.post_message("Convergence Failed: prod\nstill drifted", NotificationSeverity.CRITICAL)

    url = post.call_args.args[0]
    payload = post.call_args.kwargs["json"]
    assert url == "https://hooks.slack.test/T000/B000"
    assert post.call_args.kwargs["timeout"] == 5
    attachment = payload["attachments"][0]
    assert attachment["title"].startswith("<!channel>")
    assert attachment["text"] == "still drifted"
    assert attachment["color"] == SlackWebhookSink.COLORS[NotificationSeverity.CRITICAL]


def test_discord_payload(monkeypatch):
    monkeypatch.setenv("DISCORD_WEBHOOK_URL", "https://discord.test/api/webhooks/1")
    sink = DiscordWebhookSink(WebhookConfig(enabled=True, webhook_url_env="DISCORD_WEBHOOK_URL"))
    with mock.patch("drift_reconciler.notifications.sinks.requests.post") as post:
        sink.post_message("Incident Closed: prod", NotificationSeverity.INFO)

    payload = post.call_args.kwargs["json"]
    assert payload["embeds"][0]["title"] == "Incident Closed: prod"
    assert "content" not in payload
    assert post.call_args.kwargs["timeout"] == 10.0


def test_http_error_reaches_dispatcher_and_is_swallowed(slack_config):
    sink = SlackWebhookSink(slack_config)
    response = mock.Mock()
    response.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
    with mock.patch("drift_reconciler.notifications.sinks.requests.post", return_value=response):
        with pytest.raises(requests.HTTPError):
            sink.post_message("Incident Opened: prod")
        assert NotificationDispatcher([sink]).notify("prod", OPENED) == {"slack": False}


def test_missing_webhook_url(monkeypatch):
    monkeypatch.delenv("SLACK_WEBHOOK_URL", raising=False)
    with pytest.raises(ConfigurationError):
        SlackWebhookSink(WebhookConfig(enabled=True, webhook_url_env="SLACK_WEBHOOK_URL"))
