from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence
import logging
import shlex

from .base import Operation
from ..executors import CommandResult, Executor, output_summary
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)


class RunShellOperation(Operation):
    """Run a command on the host.

    Reports changed on every run unless the task marks it ``idempotent``.
    ``creates``/``removes``/``only_if``/``unless`` guards are checked on the
    host before the command runs. Commands marked ``detach`` (or ending in a
    single ``&``) are started in their own session and not waited for.
    """

    action = "run_shell"

    def __init__(self, spec: dict[str, Any], *, privileged: bool = False):
        super().__init__(spec, privileged=privileged)
        raw_command = spec.get("command") or spec.get("cmd")
        if raw_command is None or raw_command == "":
            raise ValueError("run_shell operation requires a command")
        self.raw_command = raw_command
        self.executable = str(spec.get("executable") or "sh")

        self.creates = str(spec["creates"]) if spec.get("creates") else None
        self.removes = str(spec["removes"]) if spec.get("removes") else None
        self.only_if = spec.get("only_if")
        self.unless = spec.get("unless")
        cwd = spec.get("chdir") or spec.get("cwd")
        self.cwd = str(cwd) if cwd else None

        self.env = parse_env(spec.get("env") or spec.get("environment"))
        self.allowed_returns = parse_returns(spec.get("returns"))
        self.timeout = self.parse_number(spec.get("timeout"), "run_shell timeout")
        self.idempotent = self.parse_bool(spec.get("idempotent"))
        self.detach = self.parse_bool(spec.get("detach")) or self._ends_in_background(raw_command)

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        if self.creates and executor.path_kind(self._resolve(self.creates)) is not None:
            return self.result(host, False, f"skipped (creates {self.creates})", resource=self.creates)

        if self.removes and executor.path_kind(self._resolve(self.removes)) is None:
            return self.result(host, False, f"skipped (removes {self.removes})", resource=self.removes)

        if self.only_if:
            guard = self._run_guard(self._normalize_command(self.only_if), executor)
            if guard.returncode != 0:
                return self.result(host, False, f"skipped (only_if rc={guard.returncode})")

        if self.unless:
            guard = self._run_guard(self._normalize_command(self.unless), executor)
            if guard.returncode == 0:
                return self.result(host, False, f"skipped (unless rc={guard.returncode})")

        if self.detach:
            return self._spawn(host, executor)

        command = self._normalize_command(self.raw_command)
        result = executor.run(
            command,
            check=False,
            mutable=True,
            env=self.env,
            cwd=self.cwd,
            timeout=self.timeout,
            privileged=self.privileged,
        )

        if result.returncode not in self.allowed_returns:
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    "run_shell failed rc=%s cmd=%s",
                    result.returncode,
                    " ".join(command),
                )
            return self.result(
                host,
                False,
                failure_detail(result),
                failed=True,
                stdout=result.stdout,
                exit_code=result.returncode,
            )

        detail = "dry-run" if executor.dry_run else f"ran (rc={result.returncode})"
        return self.result(
            host,
            not self.idempotent,
            detail,
            stdout=result.stdout,
            exit_code=result.returncode,
        )

    def _spawn(self, host: HostConfig, executor: Executor) -> ActionResult:
        command = str(self.raw_command).rstrip().rstrip("&").rstrip()
        if self.executable != "sh":
            command = f"{shlex.quote(self.executable)} -c {shlex.quote(command)}"
        pid = executor.spawn(command, env=self.env, cwd=self.cwd, privileged=self.privileged)
        if executor.dry_run:
            return self.result(host, True, "dry-run")
        return self.result(host, True, f"started (pid={pid})", stdout=str(pid or ""), exit_code=0)

    def _run_guard(self, command: Sequence[str], executor: Executor) -> CommandResult:
        return executor.run(
            command,
            check=False,
            mutable=False,
            env=self.env,
            cwd=self.cwd,
            timeout=self.timeout,
            privileged=self.privileged,
        )

    def _resolve(self, path: str) -> str:
        if path.startswith(("/", "~")) or self.cwd is None:
            return path
        return f"{self.cwd.rstrip('/')}/{path}"

    def _normalize_command(self, value: Any) -> list[str]:
        if isinstance(value, str):
            return [self.executable, "-c", value]
        if isinstance(value, Sequence):
            return [str(v) for v in value]
        raise ValueError("run_shell command must be a string or list")

    @staticmethod
    def _ends_in_background(value: Any) -> bool:
        if not isinstance(value, str):
            return False
        stripped = value.rstrip()
        return stripped.endswith("&") and not stripped.endswith("&&")


def parse_env(value: Any) -> Optional[dict[str, str]]:
    """Accept a table or a list of ``KEY=VALUE`` strings."""
    if value is None:
        return None
    if isinstance(value, dict):
        pairs: Iterable[tuple[Any, Any]] = value.items()
    elif isinstance(value, (list, tuple)):
        pairs = [_split_assignment(item) for item in value]
    else:
        raise ValueError("run_shell env must be a table or a list of KEY=VALUE strings")
    return {str(key): str(val) for key, val in pairs}


def _split_assignment(item: Any) -> tuple[str, str]:
    key, sep, val = str(item).partition("=")
    if not sep or not key:
        raise ValueError(f"run_shell env entry {item!r} is not KEY=VALUE")
    return key, val


def parse_returns(value: Any) -> frozenset[int]:
    if value is None:
        return frozenset({0})
    codes = value if isinstance(value, (list, tuple, set)) else [value]
    try:
        return frozenset(int(code) for code in codes)
    except (TypeError, ValueError) as exc:
        raise ValueError("run_shell returns must be an exit code or a list of them") from exc


def failure_detail(result: CommandResult) -> str:
    summary = output_summary(result)
    return f"rc={result.returncode}: {summary}" if summary else f"rc={result.returncode}"
