import os
import sys
import threading
import time

import pytest

from drift_reconciler.config.models import ExecutorConfig
from drift_reconciler.planning.evaluator import PlanEvaluator
from drift_reconciler.planning.executor import (
    SubprocessApplyExecutor,
    SubprocessPlanExecutor,
    SubprocessRunner,
    render_command,
)
from drift_reconciler.planning.models import ActionKind, PlanStatus, ResourceChange
from drift_reconciler.utils.errors import CycleCancelled, ExecutorTimeout

SLEEP = [sys.executable, "-c", "import time; time.sleep(30)"]


def python(code, *args, **overrides):
    return ExecutorConfig(command=[sys.executable, "-c", code, *args], **overrides)


def test_render_command():
    argv = render_command(
        ["terraform", "plan", "-state={state_key}", "{spec_path}", "-var=env={environment}"],
        {"environment": "prod", "spec_path": "envs/prod", "state_key": "prod.tfstate"},
    )
    assert argv == ["terraform", "plan", "-state=prod.tfstate", "envs/prod", "-var=env=prod"]


def test_plan_gets_placeholders_and_environment(prod):
    config = python(
        "import os, sys; print(sys.argv[1], os.environ['DRIFT_STATE_KEY'], os.environ['EXTRA']); sys.exit(2)",
        "{spec_path}",
        env={"EXTRA": "yes"},
    )
    result = SubprocessPlanExecutor(config).plan(prod)

    assert result.exit_code == 2
    assert result.stdout.split() == ["envs/prod", "prod.tfstate", "yes"]
    assert result.duration > 0


def test_plan_output_drives_evaluation(prod):
    config = python(
        "import json, sys; print(json.dumps([['sg-1', 'update']])); sys.exit(2)"
    )
    outcome = PlanEvaluator(SubprocessPlanExecutor(config)).evaluate(prod)

    assert outcome.status == PlanStatus.DRIFTED
    assert outcome.changes == [ResourceChange(resource_id="sg-1", action=ActionKind.UPDATE)]


def test_apply_receives_change_set_file(prod):
    config = python(
        "import json, sys; print(sys.argv[1]); print(json.load(open(sys.argv[1]))[0]['resource_id'])",
        "{change_set_file}",
    )
    changes = [ResourceChange(resource_id="sg-1", action=ActionKind.UPDATE)]

    result = SubprocessApplyExecutor(config).apply(prod, changes)

    path, resource_id = result.stdout.split()
    assert result.exit_code == 0
    assert resource_id == "sg-1"
    assert not os.path.exists(path)


def test_runner_timeout_kills_process():
    runner = SubprocessRunner(poll_interval=0.05, termination_grace=2)
    start = time.monotonic()
    with pytest.raises(ExecutorTimeout):
        runner.run(SLEEP, timeout=0.3)
    assert time.monotonic() - start < 10


def test_plan_timeout_is_error_outcome(prod):
    config = ExecutorConfig(command=SLEEP, timeout_seconds=1)
    outcome = PlanEvaluator(SubprocessPlanExecutor(config, SubprocessRunner(poll_interval=0.05))).evaluate(prod)
    assert outcome.is_error
    assert "timeout" in outcome.error


def test_runner_cancellation():
    runner = SubprocessRunner(poll_interval=0.05, termination_grace=2)
    cancel = threading.Event()
    timer = threading.Timer(0.2, cancel.set)
    timer.start()
    try:
        with pytest.raises(CycleCancelled):
            runner.run(SLEEP, timeout=30, cancel_event=cancel)
    finally:
        timer.cancel()


def test_missing_program_is_error_outcome(prod):
    config = ExecutorConfig(command=["/nonexistent/drift-plan"])
    outcome = PlanEvaluator(SubprocessPlanExecutor(config)).evaluate(prod)
    assert outcome.is_error
    assert "could not be started" in outcome.error


def test_undecodable_output_is_error_outcome(prod):
    config = python(
        "import sys; sys.stdout.buffer.write(b'\\xff\\xfe plan'); "
        "sys.stderr.buffer.write(b'\\xff boom'); sys.exit(1)"
    )
    outcome = PlanEvaluator(SubprocessPlanExecutor(config)).evaluate(prod)

    assert outcome.is_error
    assert outcome.exit_code == 1
    assert "\ufffd boom" in outcome.error


def test_apply_output_is_decoded_leniently(prod):
    config = python("import sys; sys.stdout.buffer.write(b'applied \\xff'); sys.exit(0)")
    result = SubprocessApplyExecutor(config).apply(prod, [])

    assert result.exit_code == 0
    assert result.stdout == "applied \ufffd"
