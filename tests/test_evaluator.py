import threading

import pytest

from drift_reconciler.planning.changeset import fingerprint
from drift_reconciler.planning.evaluator import PlanEvaluator
from drift_reconciler.planning.models import ActionKind, ExecutorResult, PlanStatus, ResourceChange
from drift_reconciler.utils.errors import CycleCancelled, ExecutorTimeout

from tests.fakes import FakePlanExecutor, clean, drifted, failed


def evaluate(prod, clock, *script):
    return PlanEvaluator(FakePlanExecutor(*script), clock=clock).evaluate(prod)


def test_exit_zero_is_clean(prod, clock):
    outcome = evaluate(prod, clock, clean())
    assert outcome.status == PlanStatus.CLEAN
    assert outcome.fingerprint is None
    assert outcome.timestamp == clock.now
    assert outcome.environment == "prod"


def test_exit_two_is_drifted(prod, clock):
    outcome = evaluate(prod, clock, drifted(("sg-1", "update")))
    expected = [ResourceChange(resource_id="sg-1", action=ActionKind.UPDATE)]
    assert outcome.status == PlanStatus.DRIFTED
    assert outcome.changes == expected
    assert outcome.fingerprint == fingerprint(expected)
    assert "sg-1" in outcome.change_summary


@pytest.mark.parametrize("exit_code", [1, 3, 127, -9])
def test_other_exit_codes_are_errors(prod, clock, exit_code):
    outcome = evaluate(prod, clock, failed(exit_code))
    assert outcome.status == PlanStatus.ERROR
    assert outcome.fingerprint is None
    assert outcome.exit_code == exit_code
    assert "provider credentials expired" in outcome.error


def test_unparseable_change_set_is_error(prod, clock):
    outcome = evaluate(prod, clock, ExecutorResult(exit_code=2, stdout="Plan: 3 to add."))
    assert outcome.is_error
    assert outcome.fingerprint is None
    assert "could not be parsed" in outcome.error


def test_timeout_is_error(prod, clock):
    outcome = evaluate(prod, clock, ExecutorTimeout("terraform exceeded its 600s timeout and was killed"))
    assert outcome.is_error
    assert "timeout" in outcome.error


def test_missing_program_is_error(prod, clock):
    outcome = evaluate(prod, clock, FileNotFoundError(2, "No such file or directory", "terraform"))
    assert outcome.is_error
    assert "could not be started" in outcome.error


def test_cancellation_propagates(prod, clock):
    with pytest.raises(CycleCancelled):
        evaluate(prod, clock, CycleCancelled("terraform cancelled"))


def test_cancel_event_is_passed_to_executor(prod, clock):
    seen = []

    class RecordingExecutor(FakePlanExecutor):
        def plan(self, environment, cancel_event=None):
            seen.append(cancel_event)
            return clean()

    event = threading.Event()
    PlanEvaluator(RecordingExecutor(), clock=clock).evaluate(prod, event)
    assert seen == [event]
