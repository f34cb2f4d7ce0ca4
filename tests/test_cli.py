import logging
import sys

import pytest
import yaml
from click.testing import CliRunner

from drift_reconciler.cli.main import cli
from drift_reconciler.lock.manager import LockManager
from drift_reconciler.state.store import FileStateStore


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def runner():
    return CliRunner()


def write_config(plan_code="import sys; sys.exit(0)"):
    data = {
        "project": {"name": "platform"},
        "state_store": {"backend": "file", "path": "state"},
        "executors": {
            "plan": {"command": [sys.executable, "-c", plan_code], "timeout_seconds": 30},
            "apply": {"command": [sys.executable, "-c", "pass"], "timeout_seconds": 30},
        },
        "environments": {
            "prod": {"spec_path": "envs/prod", "state_key": "prod.tfstate", "auto_remediate": True},
            "dev": {"spec_path": "envs/dev", "state_key": "dev.tfstate", "drift_detection_enabled": False},
        },
    }
    with open("drift.yaml", "w") as f:
        yaml.safe_dump(data, f)


def test_validate(runner):
    with runner.isolated_filesystem():
        write_config()
        result = runner.invoke(cli, ["validate"])

    assert result.exit_code == 0
    assert "is valid" in result.output
    assert "prod" in result.output


def test_validate_reports_errors(runner):
    with runner.isolated_filesystem():
        with open("drift.yaml", "w") as f:
            yaml.safe_dump({"project": {"name": "platform"}}, f)
        result = runner.invoke(cli, ["validate"])

    assert result.exit_code == 1
    assert "environments" in result.output


def test_missing_config(runner):
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["status", "--config", "nope.yaml"])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_reconcile_clean_environment(runner):
    with runner.isolated_filesystem():
        write_config()
        result = runner.invoke(cli, ["reconcile", "--env", "prod"])

    assert result.exit_code == 0, result.output
    assert "clean" in result.output


def test_reconcile_evaluation_error_exits_nonzero(runner):
    with runner.isolated_filesystem():
        write_config("import sys; sys.stderr.write('boom'); sys.exit(1)")
        result = runner.invoke(cli, ["reconcile", "--env", "prod"])

    assert result.exit_code == 1
    assert "error" in result.output


def test_reconcile_unknown_environment(runner):
    with runner.isolated_filesystem():
        write_config()
        result = runner.invoke(cli, ["reconcile", "--env", "qa"])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_status_and_unlock(runner):
    with runner.isolated_filesystem():
        write_config()
        LockManager(FileStateStore("state"), holder_prefix="ci-runner:7").acquire("prod")

        status = runner.invoke(cli, ["status"])
        refused = runner.invoke(cli, ["unlock", "--env", "prod"])
        forced = runner.invoke(cli, ["unlock", "--env", "prod", "--force"])
        after = LockManager(FileStateStore("state")).inspect("prod")

    assert status.exit_code == 0, status.output
    assert "prod" in status.output
    assert refused.exit_code == 1
    assert "--force" in refused.output
    assert forced.exit_code == 0
    assert "Released" in forced.output
    assert after is None


def test_reconcile_disabled_environment_does_nothing(runner):
    with runner.isolated_filesystem():
        write_config()
        result = runner.invoke(cli, ["reconcile", "--env", "dev"])
        lock = LockManager(FileStateStore("state")).inspect("dev")

    assert result.exit_code == 1
    assert "disabled" in result.output
    assert lock is None
