"""Plan and apply executor interfaces and their subprocess backends."""

import json
import os
import subprocess
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from drift_reconciler.config.models import EnvironmentConfig, ExecutorConfig
from drift_reconciler.planning.models import ExecutorResult, ResourceChange
from drift_reconciler.utils.errors import CycleCancelled, ErrorContext, ExecutorTimeout
from drift_reconciler.utils.logging import get_logger

logger = get_logger(__name__)


class PlanExecutor(ABC):
    """Produces a classified plan for an environment."""

    @abstractmethod
    def plan(
        self,
        environment: EnvironmentConfig,
        cancel_event: Optional[threading.Event] = None
    ) -> ExecutorResult:
        """Run a plan against the environment's declared spec and state key.

        Args:
            environment: Environment to plan
            cancel_event: Set to abort the run

        Returns:
            Exit code (0 clean, 2 changes pending, anything else error) and output

        Raises:
            ExecutorTimeout: If the run exceeded its timeout
            CycleCancelled: If cancel_event was set during the run
        """
        pass


class ApplyExecutor(ABC):
    """Commits a change-set to the live system."""

    @abstractmethod
    def apply(
        self,
        environment: EnvironmentConfig,
        changes: List[ResourceChange],
        cancel_event: Optional[threading.Event] = None
    ) -> ExecutorResult:
        """Apply pending changes for the environment.

        Args:
            environment: Environment to apply
            changes: The change-set the triggering plan reported
            cancel_event: Set to abort the run

        Returns:
            Exit code (0 success) and output

        Raises:
            ExecutorTimeout: If the run exceeded its timeout
            CycleCancelled: If cancel_event was set during the run
        """
        pass


class SubprocessRunner:
    """Runs a command with a hard timeout and cooperative cancellation."""

    def __init__(self, poll_interval: float = 0.2, termination_grace: float = 5.0):
        """Initialize runner.

        Args:
            poll_interval: How often to check for cancellation while waiting
            termination_grace: Seconds between SIGTERM and SIGKILL
        """
        self.poll_interval = poll_interval
        self.termination_grace = termination_grace

    def run(
        self,
        argv: List[str],
        timeout: float,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        context: Optional[ErrorContext] = None
    ) -> ExecutorResult:
        """Run a command to completion.

        Raises:
            OSError: If the program cannot be started
            ExecutorTimeout: If the command exceeded ``timeout``
            CycleCancelled: If cancel_event was set
        """
        start = time.monotonic()
        deadline = start + timeout

        process = subprocess.Popen(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            text=True,
            encoding="utf-8",
            errors="replace",
            env=env,
            cwd=cwd,
        )
        logger.debug(f"Started {argv[0]} with PID {process.pid}")

        while True:
            try:
                stdout, stderr = process.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel_event is not None and cancel_event.is_set():
                    self._stop(process)
                    raise CycleCancelled(
                        f"{argv[0]} cancelled after {time.monotonic() - start:.1f}s",
                        context=context,
                    )
                if time.monotonic() >= deadline:
                    self._stop(process)
                    raise ExecutorTimeout(
                        f"{argv[0]} exceeded its {timeout:g}s timeout and was killed",
                        context=context,
                    )

        return ExecutorResult(
            exit_code=process.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            duration=time.monotonic() - start,
        )

    def _stop(self, process: subprocess.Popen) -> None:
        """Terminate gracefully, then kill."""
        process.terminate()
        try:
            process.communicate(timeout=self.termination_grace)
        except subprocess.TimeoutExpired:
            logger.warning(f"Process {process.pid} did not terminate gracefully, forcing kill")
            process.kill()
            process.communicate()


def render_command(command: List[str], values: Dict[str, str]) -> List[str]:
    """Substitute ``{placeholder}`` tokens in an argv template."""
    rendered = []
    for part in command:
        for name, value in values.items():
            part = part.replace(f"{{{name}}}", value)
        rendered.append(part)
    return rendered


class _SubprocessExecutor:
    """Shared plumbing for the subprocess backends."""

    operation = "execute"

    def __init__(self, config: ExecutorConfig, runner: Optional[SubprocessRunner] = None):
        self.config = config
        self.runner = runner or SubprocessRunner()

    def _values(self, environment: EnvironmentConfig) -> Dict[str, str]:
        return {
            "environment": environment.name,
            "spec_path": environment.spec_path,
            "state_key": environment.state_key,
        }

    def _build_environment(self, values: Dict[str, str]) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(self.config.env)
        for name, value in values.items():
            env[f"DRIFT_{name.upper()}"] = value
        return env

    def _run(
        self,
        environment: EnvironmentConfig,
        values: Dict[str, str],
        cancel_event: Optional[threading.Event]
    ) -> ExecutorResult:
        argv = render_command(self.config.command, values)
        extra = {'environment': environment.name, 'operation': self.operation}
        logger.info(f"Running {self.operation}: {' '.join(argv)}", extra=extra)

        result = self.runner.run(
            argv,
            timeout=self.config.timeout_seconds,
            env=self._build_environment(values),
            cwd=self.config.working_dir,
            cancel_event=cancel_event,
            context=ErrorContext(environment=environment.name, operation=self.operation),
        )

        logger.info(
            f"{self.operation.capitalize()} exited with {result.exit_code} in {result.duration:.1f}s",
            extra={**extra, 'duration': result.duration},
        )
        return result


class SubprocessPlanExecutor(_SubprocessExecutor, PlanExecutor):
    """Plan executor running an external program."""

    operation = "plan"

    def plan(
        self,
        environment: EnvironmentConfig,
        cancel_event: Optional[threading.Event] = None
    ) -> ExecutorResult:
        return self._run(environment, self._values(environment), cancel_event)


class SubprocessApplyExecutor(_SubprocessExecutor, ApplyExecutor):
    """Apply executor running an external program.

    The change-set is written to a temporary JSON file whose path is available
    as ``{change_set_file}`` in the command and as ``DRIFT_CHANGE_SET_FILE``.
    """

    operation = "apply"

    def apply(
        self,
        environment: EnvironmentConfig,
        changes: List[ResourceChange],
        cancel_event: Optional[threading.Event] = None
    ) -> ExecutorResult:
        fd, change_set_file = tempfile.mkstemp(prefix=f"drift-{environment.name}-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(
                    [
                        {"resource_id": change.resource_id, "action": change.action.value}
                        for change in changes
                    ],
                    f,
                )

            values = {**self._values(environment), "change_set_file": change_set_file}
            return self._run(environment, values, cancel_event)
        finally:
            try:
                os.unlink(change_set_file)
            except FileNotFoundError:
                pass
