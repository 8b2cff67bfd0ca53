from __future__ import annotations

from typing import Any, Optional
import logging
import time

from .base import Operation
from ..executors import Executor
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)

STATES = {"started", "restarted", "stopped"}

_SIGNAL_GROUP = 'kill -"$1" -- "-$2" 2>/dev/null || kill -"$1" "$2"'
_WRITE_PIDFILE = 'mkdir -p "$(dirname "$2")" && printf "%s\\n" "$1" > "$2"'
_PROBE = 'kill -0 "$1" 2>/dev/null'


class ManageProcessOperation(Operation):
    """Keep a single long-running process under control via its PID file.

    The PID file is the only way the process is identified, so an unrelated
    process listening on the same port is never touched.
    """

    action = "manage_process"

    def __init__(self, spec: dict[str, Any], *, privileged: bool = False):
        super().__init__(spec, privileged=privileged)
        self.command = self.require("command", "cmd")
        self.pidfile = self.require("pidfile", "pid_file")
        self.state = str(spec.get("state", "started"))
        if self.state not in STATES:
            raise ValueError("manage_process state must be 'started', 'restarted' or 'stopped'")
        cwd = spec.get("chdir") or spec.get("cwd")
        self.cwd = str(cwd) if cwd else None
        self.log = str(spec["log"]) if spec.get("log") else None
        env = spec.get("env")
        if env is not None and not isinstance(env, dict):
            raise ValueError("manage_process env must be a mapping")
        self.env = {str(k): str(v) for k, v in (env or {}).items()} or None
        self.stop_timeout = self.parse_number(spec.get("stop_timeout"), "stop_timeout", 10.0) or 0.0

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        pid = self._running_pid(executor)
        details: list[str] = []

        if self.state == "started" and pid is not None:
            return self.result(host, False, f"running (pid={pid})", resource=self.pidfile)

        if pid is not None:
            self._stop(executor, pid)
            details.append(f"stopped pid={pid}")

        if self.state == "stopped":
            if pid is None:
                return self.result(host, False, "noop", resource=self.pidfile)
            executor.run(["rm", "-f", executor.expand_path(self.pidfile)], privileged=self.privileged)
            return self.result(host, True, ", ".join(details), resource=self.pidfile)

        new_pid = executor.spawn(
            self.command,
            env=self.env,
            cwd=self.cwd,
            privileged=self.privileged,
            log=self.log,
        )
        if new_pid is not None:
            executor.run(
                ["sh", "-c", _WRITE_PIDFILE, "sh", str(new_pid), executor.expand_path(self.pidfile)],
                privileged=self.privileged,
            )
        details.append("dry-run" if executor.dry_run else f"started pid={new_pid}")
        return self.result(host, True, ", ".join(details), resource=self.pidfile, stdout=str(new_pid or ""))

    def _running_pid(self, executor: Executor) -> Optional[int]:
        read = executor.run(["cat", executor.expand_path(self.pidfile)], check=False, mutable=False)
        if read.returncode != 0:
            return None
        try:
            pid = int(read.stdout.strip())
        except ValueError:
            logger.warning("ignoring unreadable pid file %s on %s", self.pidfile, executor.host.name)
            return None
        if not self._alive(executor, pid):
            logger.debug("stale pid file %s (pid %s)", self.pidfile, pid)
            return None
        return pid

    def _alive(self, executor: Executor, pid: int) -> bool:
        probe = executor.run(
            ["sh", "-c", _PROBE, "sh", str(pid)], check=False, mutable=False, privileged=self.privileged
        )
        return probe.returncode == 0

    def _stop(self, executor: Executor, pid: int) -> None:
        self._signal(executor, "TERM", pid)
        if executor.dry_run:
            return
        deadline = time.monotonic() + self.stop_timeout
        while time.monotonic() < deadline:
            if not self._alive(executor, pid):
                return
            time.sleep(0.2)
        if self._alive(executor, pid):
            logger.warning("pid %s ignored SIGTERM on %s; sending SIGKILL", pid, executor.host.name)
            self._signal(executor, "KILL", pid)

    def _signal(self, executor: Executor, signal: str, pid: int) -> None:
        executor.run(["sh", "-c", _SIGNAL_GROUP, "sh", signal, str(pid)], check=False, privileged=self.privileged)
