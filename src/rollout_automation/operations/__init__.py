from .base import Operation
from .directory import EnsureDirectoryOperation
from .package import EnsurePackageOperation
from .process import ManageProcessOperation
from .shell import RunShellOperation
from .sync import SyncFilesOperation
from .virtualenv import EnsureVirtualenvOperation
from .wait_for import WaitForPortOperation
from ..types import OperationKind

OPERATION_REGISTRY: dict[OperationKind, type[Operation]] = {
    OperationKind.ENSURE_DIRECTORY: EnsureDirectoryOperation,
    OperationKind.SYNC_FILES: SyncFilesOperation,
    OperationKind.ENSURE_PACKAGE: EnsurePackageOperation,
    OperationKind.ENSURE_VIRTUALENV: EnsureVirtualenvOperation,
    OperationKind.RUN_SHELL: RunShellOperation,
    OperationKind.MANAGE_PROCESS: ManageProcessOperation,
    OperationKind.WAIT_FOR_PORT: WaitForPortOperation,
}

# Names accepted in task lists, with parameters implied by the alias.
OPERATION_ALIASES: dict[str, tuple[OperationKind, dict[str, str]]] = {
    "file": (OperationKind.ENSURE_DIRECTORY, {}),
    "directory": (OperationKind.ENSURE_DIRECTORY, {}),
    "copy": (OperationKind.SYNC_FILES, {}),
    "sync": (OperationKind.SYNC_FILES, {}),
    "package": (OperationKind.ENSURE_PACKAGE, {}),
    "yum": (OperationKind.ENSURE_PACKAGE, {"manager": "yum"}),
    "dnf": (OperationKind.ENSURE_PACKAGE, {"manager": "dnf"}),
    "apt": (OperationKind.ENSURE_PACKAGE, {"manager": "apt"}),
    "pip": (OperationKind.ENSURE_PACKAGE, {"manager": "pip"}),
    "virtualenv": (OperationKind.ENSURE_VIRTUALENV, {}),
    "venv": (OperationKind.ENSURE_VIRTUALENV, {}),
    "shell": (OperationKind.RUN_SHELL, {}),
    "command": (OperationKind.RUN_SHELL, {}),
    "exec": (OperationKind.RUN_SHELL, {}),
    "process": (OperationKind.MANAGE_PROCESS, {}),
    "wait_for": (OperationKind.WAIT_FOR_PORT, {}),
}


def resolve_operation(name: str) -> tuple[OperationKind, dict[str, str]]:
    """Map a task-list operation name to its kind and implied parameters."""
    key = str(name).strip().lower().replace("-", "_")
    try:
        return OperationKind(key), {}
    except ValueError:
        pass
    if key in OPERATION_ALIASES:
        kind, implied = OPERATION_ALIASES[key]
        return kind, dict(implied)
    raise KeyError(name)


__all__ = [
    "Operation",
    "EnsureDirectoryOperation",
    "SyncFilesOperation",
    "EnsurePackageOperation",
    "EnsureVirtualenvOperation",
    "RunShellOperation",
    "ManageProcessOperation",
    "WaitForPortOperation",
    "OPERATION_REGISTRY",
    "OPERATION_ALIASES",
    "resolve_operation",
]
