from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from threading import Event
from typing import Any, Callable, Optional, Sequence
import logging

from .conditions import ConditionEvaluator
from .config import RolloutConfig
from .context import RunContext
from .errors import ExecutorError, GuardEvaluationError, SecretResolutionError, TransportError
from .executors import Executor, LocalExecutor, SshExecutor
from .operations import OPERATION_REGISTRY, Operation
from .secrets import SecretResolver
from .types import (
    ActionResult,
    HostConfig,
    OnError,
    RunResult,
    RunStatus,
    TaskList,
    TaskResult,
    TaskSpec,
    TaskStatus,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[HostConfig, TaskSpec], None]


class TaskRunner:
    """Runs a task list top-to-bottom against each host.

    Every host gets its own :class:`RunContext` and executor. Within a host
    tasks are strictly sequential; a failed task stops the host's run unless
    the task's error policy is ``ignore``. Hosts may run in parallel.
    """

    def __init__(
        self,
        task_list: TaskList,
        *,
        dry_run: bool = False,
        config: Optional[RolloutConfig] = None,
        progress_callback: Optional[ProgressCallback] = None,
        executor_factory: Optional[Callable[[HostConfig], Executor]] = None,
        secret_resolver: Optional[SecretResolver] = None,
    ):
        self.task_list = task_list
        self.dry_run = dry_run
        self.config = config or RolloutConfig()
        self.progress_callback = progress_callback
        self.executor_factory = executor_factory or self._executor_for
        self.secret_resolver = secret_resolver or SecretResolver()
        self.evaluator = ConditionEvaluator()

    def run(
        self,
        hosts: Sequence[HostConfig],
        *,
        extra_vars: Optional[dict[str, Any]] = None,
        forks: int = 1,
        cancel: Optional[Event] = None,
    ) -> list[RunResult]:
        if forks <= 1 or len(hosts) <= 1:
            return [self.run_host(host, extra_vars=extra_vars, cancel=cancel) for host in hosts]
        cancel = cancel or Event()
        with ThreadPoolExecutor(max_workers=forks, thread_name_prefix="rollout-host") as pool:
            futures = [
                pool.submit(self.run_host, host, extra_vars=extra_vars, cancel=cancel) for host in hosts
            ]
            try:
                return [future.result() for future in futures]
            except BaseException:
                # Let the other hosts stop at their next task boundary.
                cancel.set()
                raise

    def run_host(
        self,
        host: HostConfig,
        *,
        extra_vars: Optional[dict[str, Any]] = None,
        cancel: Optional[Event] = None,
    ) -> RunResult:
        context = RunContext.seed(host.name, self.task_list.variables, host.variables, extra_vars)
        try:
            context.variables = self.secret_resolver.resolve(context.variables)
        except SecretResolutionError as exc:
            logger.error("host=%s secret resolution failed: %s", host.name, exc)
            return RunResult(host=host.name, status=RunStatus.FAILED, error=str(exc))

        executor = self.executor_factory(host)
        status = RunStatus.OK
        error: Optional[str] = None
        try:
            for index, task in enumerate(self.task_list.tasks, start=1):
                if cancel is not None and cancel.is_set():
                    logger.warning("host=%s run aborted before task %d (%s)", host.name, index, task.name)
                    status = RunStatus.ABORTED
                    error = "aborted"
                    break
                result, fatal = self._run_task(task, index, host, executor, context)
                context.record(result, task.register)
                logger.debug(
                    "host=%s task=%d name=%s status=%s", host.name, index, task.name, result.status.value
                )
                if result.failed and (fatal or task.on_error is OnError.FAIL):
                    status = RunStatus.FAILED
                    error = f"task {index} ({task.name}) failed: {result.details}"
                    break
        finally:
            executor.close()
        return RunResult(
            host=host.name,
            status=status,
            results=list(context.history),
            variables=context.variables,
            error=error,
        )

    def _run_task(
        self,
        task: TaskSpec,
        index: int,
        host: HostConfig,
        executor: Executor,
        context: RunContext,
    ) -> tuple[TaskResult, bool]:
        """Returns the task's result and whether a failure must end the host run."""
        try:
            should_run = self.evaluator.evaluate(task.guard, context.variables)
        except GuardEvaluationError as exc:
            logger.error("host=%s task=%s %s", host.name, task.name, exc)
            return self._failed(task, index, host, str(exc), fatal=True), True

        if not should_run:
            return self._task_result(task, index, host, TaskStatus.SKIPPED, "skipped (guard false)"), False

        if self.progress_callback:
            self.progress_callback(host, task)

        try:
            parameters = context.render(task.parameters)
            operation: Operation = OPERATION_REGISTRY[task.operation](parameters, privileged=task.privileged)
            outcome = operation.apply(host, executor)
        except TransportError as exc:
            logger.error("host=%s unreachable: %s", host.name, exc)
            return self._failed(task, index, host, str(exc), fatal=True), True
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "action=%s host=%s failed: %s",
                task.operation.value,
                host.name,
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            stdout = exc.stdout if isinstance(exc, ExecutorError) else None
            exit_code = exc.exit_code if isinstance(exc, ExecutorError) else None
            return self._failed(task, index, host, str(exc), stdout=stdout, exit_code=exit_code), False

        return self._from_outcome(task, index, host, outcome), False

    def _from_outcome(self, task: TaskSpec, index: int, host: HostConfig, outcome: ActionResult) -> TaskResult:
        if outcome.failed:
            status = TaskStatus.FAILED
        elif outcome.changed:
            status = TaskStatus.CHANGED
        else:
            status = TaskStatus.UNCHANGED
        return self._task_result(
            task,
            index,
            host,
            status,
            outcome.details,
            stdout=outcome.stdout,
            exit_code=outcome.exit_code,
        )

    def _failed(
        self, task: TaskSpec, index: int, host: HostConfig, details: str, *, fatal: bool = False, **extra: Any
    ) -> TaskResult:
        result = self._task_result(task, index, host, TaskStatus.FAILED, details, **extra)
        if fatal and result.ignored:
            return replace(result, ignored=False)
        return result

    @staticmethod
    def _task_result(
        task: TaskSpec,
        index: int,
        host: HostConfig,
        status: TaskStatus,
        details: str,
        **extra: Any,
    ) -> TaskResult:
        return TaskResult(
            host=host.name,
            index=index,
            task=task.name,
            operation=task.operation,
            status=status,
            details=details,
            ignored=status is TaskStatus.FAILED and task.on_error is OnError.IGNORE,
            **extra,
        )

    def _executor_for(self, host: HostConfig) -> Executor:
        if host.connection == "local":
            return LocalExecutor(host, dry_run=self.dry_run)
        if host.connection == "ssh":
            return SshExecutor(
                host,
                dry_run=self.dry_run,
                ssh_options=self.config.ssh_options,
                connect_timeout=self.config.connect_timeout,
            )
        raise ValueError(f"Unknown connection type '{host.connection}'")
