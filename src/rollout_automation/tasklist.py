from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .errors import TaskListError
from .operations import OPERATION_REGISTRY, resolve_operation
from .templating import is_templated
from .types import OnError, TaskList, TaskSpec

CONTROL_KEYS = {
    "name",
    "operation",
    "type",
    "when",
    "become",
    "sudo",
    "privileged",
    "on_error",
    "ignore_errors",
    "register",
    "params",
}


class TaskListLoader:
    """Loads ordered task lists from TOML files."""

    def load(self, path: Path) -> TaskList:
        path = Path(path)
        try:
            data = tomllib.loads(path.read_text())
        except FileNotFoundError:
            raise TaskListError(f"{path}: no such task list") from None
        except tomllib.TOMLDecodeError as exc:
            raise TaskListError(f"{path}: {exc}") from None
        return self.parse(data, base_dir=path.parent, source=str(path))

    def parse(self, data: dict[str, Any], *, base_dir: Optional[Path] = None, source: str = "<tasks>") -> TaskList:
        variables = data.get("vars", {})
        if not isinstance(variables, dict):
            raise TaskListError(f"{source}: [vars] must be a table")
        raw_tasks = data.get("tasks", [])
        if not isinstance(raw_tasks, list):
            raise TaskListError(f"{source}: tasks must be an array of tables")
        tasks = [
            self._parse_task(raw, index, base_dir=base_dir, source=source)
            for index, raw in enumerate(raw_tasks, start=1)
        ]
        return TaskList(tasks=tasks, variables=dict(variables))

    @staticmethod
    def _parse_task(raw: Any, index: int, *, base_dir: Optional[Path], source: str) -> TaskSpec:
        where = f"{source}: task {index}"
        if not isinstance(raw, dict):
            raise TaskListError(f"{where} must be a table")
        op_name = raw.get("operation") or raw.get("type")
        if not op_name:
            raise TaskListError(f"{where} is missing an operation")
        try:
            kind, implied = resolve_operation(str(op_name))
        except KeyError:
            raise TaskListError(f"{where} uses unknown operation '{op_name}'") from None

        nested = raw.get("params", {})
        if not isinstance(nested, dict):
            raise TaskListError(f"{where} params must be a table")
        parameters: dict[str, Any] = dict(implied)
        parameters.update({k: v for k, v in raw.items() if k not in CONTROL_KEYS})
        parameters.update(nested)
        if base_dir is not None:
            parameters.setdefault("_plan_dir", str(base_dir))

        spec = TaskSpec(
            name=str(raw.get("name") or f"{kind.value}-{index}"),
            operation=kind,
            parameters=parameters,
            guard=raw.get("when"),
            privileged=TaskListLoader._privileged(raw, where),
            on_error=TaskListLoader._on_error(raw, where),
            register=str(raw["register"]) if raw.get("register") else None,
        )
        TaskListLoader._validate(spec, where)
        return spec

    @staticmethod
    def _validate(spec: TaskSpec, where: str) -> None:
        # Templated parameters are only known per host, at dispatch.
        if is_templated(spec.parameters):
            return
        try:
            OPERATION_REGISTRY[spec.operation](spec.parameters, privileged=spec.privileged)
        except ValueError as exc:
            raise TaskListError(f"{where}: {exc}") from None

    @staticmethod
    def _privileged(raw: dict[str, Any], where: str) -> bool:
        for key in ("become", "sudo", "privileged"):
            if key in raw:
                value = raw[key]
                if not isinstance(value, bool):
                    raise TaskListError(f"{where} {key} must be true or false")
                return value
        return False

    @staticmethod
    def _on_error(raw: dict[str, Any], where: str) -> OnError:
        if raw.get("ignore_errors") is True:
            return OnError.IGNORE
        value = raw.get("on_error", OnError.FAIL.value)
        try:
            return OnError(str(value).lower())
        except ValueError:
            raise TaskListError(f"{where} on_error must be 'fail' or 'ignore'") from None
