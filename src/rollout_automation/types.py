from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class OperationKind(str, Enum):
    ENSURE_DIRECTORY = "ensure_directory"
    SYNC_FILES = "sync_files"
    ENSURE_PACKAGE = "ensure_package"
    ENSURE_VIRTUALENV = "ensure_virtualenv"
    RUN_SHELL = "run_shell"
    MANAGE_PROCESS = "manage_process"
    WAIT_FOR_PORT = "wait_for_port"


class OnError(str, Enum):
    FAIL = "fail"
    IGNORE = "ignore"


class TaskStatus(str, Enum):
    CHANGED = "changed"
    UNCHANGED = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


class RunStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass
class HostConfig:
    name: str
    connection: str = "local"
    address: Optional[str] = None
    user: Optional[str] = None
    port: Optional[int] = None
    variables: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TaskSpec:
    name: str
    operation: OperationKind
    parameters: dict[str, Any] = field(default_factory=dict)
    guard: Optional[Any] = None
    privileged: bool = False
    on_error: OnError = OnError.FAIL
    register: Optional[str] = None


@dataclass
class TaskList:
    tasks: list[TaskSpec]
    variables: dict[str, Any] = field(default_factory=dict)


@dataclass
class ActionResult:
    host: str
    action: str
    changed: bool
    details: str
    failed: bool = False
    resource: Optional[str] = None
    stdout: Optional[str] = None
    exit_code: Optional[int] = None


@dataclass(frozen=True)
class TaskResult:
    host: str
    index: int
    task: str
    operation: OperationKind
    status: TaskStatus
    details: str = ""
    stdout: Optional[str] = None
    exit_code: Optional[int] = None
    ignored: bool = False

    @property
    def changed(self) -> bool:
        return self.status is TaskStatus.CHANGED

    @property
    def failed(self) -> bool:
        return self.status is TaskStatus.FAILED

    def as_variable(self) -> dict[str, Any]:
        """Shape exposed to guards and templates when the task is registered."""
        return {
            "stdout": self.stdout or "",
            "exit_code": self.exit_code,
            "rc": self.exit_code,
            "changed": self.changed,
            "failed": self.failed,
            "skipped": self.status is TaskStatus.SKIPPED,
            "status": self.status.value,
        }


@dataclass
class RunResult:
    host: str
    status: RunStatus
    results: list[TaskResult] = field(default_factory=list)
    variables: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.OK
