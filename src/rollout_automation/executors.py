from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence
import hashlib
import logging
import os
import re
import shlex
import shutil
import socket
import stat
import subprocess

from .errors import ExecutorError, TransportError
from .types import HostConfig

logger = logging.getLogger(__name__)

SSH_TRANSPORT_FAILURE = 255

# ssh itself also exits 255, but a remote command may too; only these
# client messages mean the connection failed.
SSH_ERROR_RE = re.compile(
    r"^ssh: |^kex_exchange_identification|Connection (refused|closed|reset|timed out)"
    r"|Permission denied \(|Could not resolve hostname|Host key verification failed"
    r"|No route to host|Network is unreachable|Broken pipe",
    re.MULTILINE,
)

# $1 is the log file, the rest is the command line to detach.
_DETACH_LAUNCHER = (
    'log="$1"; shift; '
    'if command -v setsid >/dev/null 2>&1; then set -- setsid "$@"; fi; '
    'nohup "$@" >>"$log" 2>&1 </dev/null & echo $!'
)


@dataclass
class CommandResult:
    command: list[str]
    stdout: str
    stderr: str
    returncode: int


class Executor:
    """Capability used by operations to act on a target host.

    Implementations provide command execution, file transfer and path checks.
    Every command runs with stdin closed so tools that would prompt fail
    instead of blocking the run.
    """

    def __init__(self, host: HostConfig, *, dry_run: bool = False):
        self.host = host
        self.dry_run = dry_run

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        mutable: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[str] = None,
        timeout: Optional[float] = None,
        privileged: bool = False,
    ) -> CommandResult:
        """Run ``command`` and optionally skip it during dry-runs."""

        cmd_list = [str(part) for part in command]
        if self.dry_run and mutable:
            return CommandResult(cmd_list, "", "skipped (dry-run)", 0)

        result = self._execute(cmd_list, env=env, cwd=cwd, timeout=timeout, privileged=privileged)
        if check and result.returncode != 0:
            summary = output_summary(result) or "no output"
            raise ExecutorError(
                f"{shlex.join(cmd_list)} exited {result.returncode}: {summary}",
                stdout=result.stdout,
                exit_code=result.returncode,
            )
        return result

    def _execute(
        self,
        command: list[str],
        *,
        env: Optional[dict[str, str]],
        cwd: Optional[str],
        timeout: Optional[float],
        privileged: bool,
    ) -> CommandResult:
        raise NotImplementedError

    def spawn(
        self,
        command: str,
        *,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[str] = None,
        privileged: bool = False,
        log: Optional[str] = None,
    ) -> Optional[int]:
        """Start ``command`` detached from the run and return its pid.

        The command gets its own session with output sent to ``log`` (or
        discarded) and stdin closed, so it survives the end of the task and
        the launching shell returns immediately.
        """
        output = self.expand_path(log) if log else "/dev/null"
        result = self.run(
            ["sh", "-c", _DETACH_LAUNCHER, "sh", output, "sh", "-c", command],
            env=env,
            cwd=cwd,
            privileged=privileged,
        )
        if self.dry_run:
            return None
        try:
            return int(result.stdout.strip().splitlines()[-1])
        except (IndexError, ValueError) as exc:
            raise ExecutorError(f"could not determine pid of {command!r}", stdout=result.stdout) from exc

    # Path primitives -----------------------------------------------------
    def expand_path(self, path: str) -> str:
        raise NotImplementedError

    def path_kind(self, path: str) -> Optional[str]:
        """Return ``"dir"``, ``"file"`` or ``None`` when ``path`` is absent."""
        raise NotImplementedError

    def file_digest(self, path: str) -> Optional[str]:
        """SHA-256 of a regular file on the host, ``None`` when absent."""
        raise NotImplementedError

    def copy_file(
        self,
        source: Path,
        dest: str,
        *,
        mode: Optional[int] = None,
        privileged: bool = False,
    ) -> None:
        raise NotImplementedError

    def ensure_directory(
        self,
        path: str,
        *,
        mode: Optional[int] = None,
        privileged: bool = False,
    ) -> tuple[bool, str]:
        """Create ``path`` (with parents) and correct its mode through commands."""
        target = self.expand_path(path)
        kind = self.path_kind(target)
        if kind == "file":
            raise ExecutorError(f"{target} exists and is not a directory")
        changed = False
        reasons: list[str] = []
        if kind is None:
            changed = True
            reasons.append("created")
            self.run(["mkdir", "-p", target], privileged=privileged)
        if mode is not None:
            current = self.run(["stat", "-c", "%a", target], check=False, mutable=False, privileged=privileged)
            text = current.stdout.strip()
            existing = int(text, 8) if current.returncode == 0 and text else None
            if existing != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                self.run(["chmod", f"{mode:o}", target], privileged=privileged)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def port_open(self, address: str, port: int, *, timeout: float = 5) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        """Release transport resources. Nothing to do for most executors."""


class LocalExecutor(Executor):
    """Executor that acts directly on the local host."""

    def _execute(self, command, *, env, cwd, timeout, privileged) -> CommandResult:  # type: ignore[override]
        exec_env = None
        if env:
            exec_env = os.environ.copy()
            exec_env.update(env)
        argv = self._privileged_prefix(env) + command if privileged else command
        logger.debug("host=%s run %s", self.host.name, shlex.join(argv))
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                check=False,
                stdin=subprocess.DEVNULL,
                env=exec_env,
                cwd=self.expand_path(cwd) if cwd is not None else None,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise ExecutorError(f"{shlex.join(argv)} timed out after {timeout}s") from exc
        except OSError as exc:
            raise ExecutorError(f"{argv[0]}: {exc.strerror or exc}") from exc
        return CommandResult(argv, proc.stdout, proc.stderr, proc.returncode)

    @staticmethod
    def _privileged_prefix(env: Optional[dict[str, str]]) -> list[str]:
        if os.geteuid() == 0:
            return []
        prefix = ["sudo", "-n"]
        if env:
            # sudo resets the environment, so pass it explicitly.
            prefix += ["env", *(f"{k}={v}" for k, v in env.items())]
        return prefix

    def expand_path(self, path: str) -> str:
        return os.path.expanduser(str(path))

    def path_kind(self, path: str) -> Optional[str]:
        target = Path(self.expand_path(path))
        if target.is_dir():
            return "dir"
        if target.exists() or target.is_symlink():
            return "file"
        return None

    def file_digest(self, path: str) -> Optional[str]:
        target = Path(self.expand_path(path))
        if not target.is_file():
            return None
        return sha256_file(target)

    @staticmethod
    def _needs_sudo(privileged: bool) -> bool:
        return privileged and os.geteuid() != 0

    def copy_file(
        self,
        source: Path,
        dest: str,
        *,
        mode: Optional[int] = None,
        privileged: bool = False,
    ) -> None:
        if self.dry_run:
            return
        target = Path(self.expand_path(dest))
        if self._needs_sudo(privileged):
            self.run(["mkdir", "-p", str(target.parent)], privileged=True)
            self.run(["cp", str(source), str(target)], privileged=True)
            if mode is not None:
                self.run(["chmod", f"{mode:o}", str(target)], privileged=True)
            return
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
            if mode is not None:
                os.chmod(target, mode)
        except OSError as exc:
            raise ExecutorError(f"copy {source} -> {target} failed: {exc}") from exc

    def ensure_directory(
        self,
        path: str,
        *,
        mode: Optional[int] = None,
        privileged: bool = False,
    ) -> tuple[bool, str]:
        if self._needs_sudo(privileged):
            return super().ensure_directory(path, mode=mode, privileged=True)
        target = Path(self.expand_path(path))
        changed = False
        reasons: list[str] = []

        if target.exists() and not target.is_dir():
            raise ExecutorError(f"{target} exists and is not a directory")
        if not target.exists():
            changed = True
            reasons.append("created")
            if not self.dry_run:
                target.mkdir(parents=True, exist_ok=True)

        if mode is not None:
            existing_mode = self._file_mode(target)
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                if not self.dry_run:
                    os.chmod(target, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def port_open(self, address: str, port: int, *, timeout: float = 5) -> bool:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(timeout)
        try:
            return sock.connect_ex((address, port)) == 0
        except OSError:
            return False
        finally:
            sock.close()

    @staticmethod
    def _file_mode(path: Path) -> Optional[int]:
        try:
            return stat.S_IMODE(path.stat().st_mode)
        except FileNotFoundError:
            return None


class SshExecutor(Executor):
    """Executor that drives a remote host through the OpenSSH client binaries.

    Authentication is left entirely to ``ssh`` (agent, keys, ``~/.ssh/config``);
    ``BatchMode`` makes a missing credential fail instead of prompting.
    """

    def __init__(
        self,
        host: HostConfig,
        *,
        dry_run: bool = False,
        ssh_options: Sequence[str] = (),
        connect_timeout: int = 10,
    ):
        super().__init__(host, dry_run=dry_run)
        self.ssh_options = list(ssh_options)
        self.connect_timeout = connect_timeout

    @property
    def target(self) -> str:
        address = self.host.address or self.host.name
        return f"{self.host.user}@{address}" if self.host.user else address

    def _common_options(self) -> list[str]:
        options = ["-o", "BatchMode=yes", "-o", f"ConnectTimeout={self.connect_timeout}"]
        for option in self.ssh_options:
            options += ["-o", option]
        return options

    def ssh_command(self, remote: str) -> list[str]:
        argv = ["ssh", *self._common_options()]
        if self.host.port:
            argv += ["-p", str(self.host.port)]
        return argv + [self.target, remote]

    def remote_command(
        self,
        command: Sequence[str],
        *,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[str] = None,
        privileged: bool = False,
    ) -> str:
        parts: list[str] = []
        if privileged:
            parts += ["sudo", "-n"]
        if env:
            parts += ["env", *(f"{k}={v}" for k, v in env.items())]
        rendered = shlex.join(parts + list(command))
        if cwd:
            rendered = f"cd {shlex.quote(self.expand_path(cwd))} && {rendered}"
        return rendered

    def _execute(self, command, *, env, cwd, timeout, privileged) -> CommandResult:  # type: ignore[override]
        remote = self.remote_command(command, env=env, cwd=cwd, privileged=privileged)
        argv = self.ssh_command(remote)
        logger.debug("host=%s ssh %s", self.host.name, remote)
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                check=False,
                stdin=subprocess.DEVNULL,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise ExecutorError(f"{remote} timed out after {timeout}s") from exc
        except OSError as exc:
            raise TransportError(f"ssh unavailable: {exc}") from exc
        if transport_failed(proc):
            raise TransportError(f"{self.target}: {proc.stderr.strip()}")
        return CommandResult(list(command), proc.stdout, proc.stderr, proc.returncode)

    def expand_path(self, path: str) -> str:
        # ssh and scp both start in the login directory, so "~/x" is just "x".
        text = str(path)
        if text == "~":
            return "."
        if text.startswith("~/"):
            return text[2:] or "."
        return text

    def path_kind(self, path: str) -> Optional[str]:
        probe = 'if [ -d "$1" ]; then echo dir; elif [ -e "$1" ] || [ -L "$1" ]; then echo file; fi'
        result = self.run(["sh", "-c", probe, "sh", self.expand_path(path)], mutable=False)
        kind = result.stdout.strip()
        return kind or None

    def file_digest(self, path: str) -> Optional[str]:
        probe = '[ -f "$1" ] && sha256sum "$1" || true'
        result = self.run(["sh", "-c", probe, "sh", self.expand_path(path)], mutable=False)
        text = result.stdout.strip()
        return text.split()[0] if text else None

    def copy_file(
        self,
        source: Path,
        dest: str,
        *,
        mode: Optional[int] = None,
        privileged: bool = False,
    ) -> None:
        """Copy ``source`` to ``dest`` with scp.

        scp writes as the login user, so a privileged copy lands in a
        temporary file first and is moved into place with ``sudo``.
        """
        if self.dry_run:
            return
        remote = self.expand_path(dest)
        if not privileged:
            self._scp(source, remote)
            if mode is not None:
                self.run(["chmod", f"{mode:o}", remote])
            return

        staging = self.run(["mktemp"]).stdout.strip()
        if not staging:
            raise ExecutorError(f"{self.target}: mktemp returned no path")
        try:
            self._scp(source, staging)
            # cp keeps the owner and mode of a file that already exists.
            self.run(["cp", staging, remote], privileged=True)
            if mode is not None:
                self.run(["chmod", f"{mode:o}", remote], privileged=True)
        finally:
            self.run(["rm", "-f", staging], check=False)

    def _scp(self, source: Path, remote: str) -> None:
        argv = ["scp", "-q", *self._common_options()]
        if self.host.port:
            argv += ["-P", str(self.host.port)]
        argv += [str(source), f"{self.target}:{remote}"]
        logger.debug("host=%s scp %s -> %s", self.host.name, source, remote)
        try:
            proc = subprocess.run(argv, capture_output=True, text=True, check=False, stdin=subprocess.DEVNULL)
        except OSError as exc:
            raise TransportError(f"scp unavailable: {exc}") from exc
        if transport_failed(proc):
            raise TransportError(f"{self.target}: {proc.stderr.strip()}")
        if proc.returncode != 0:
            raise ExecutorError(f"scp {source} -> {remote} failed: {proc.stderr.strip()}")

    def port_open(self, address: str, port: int, *, timeout: float = 5) -> bool:
        probe = 'exec 3<>"/dev/tcp/$0/$1"'
        result = self.run(
            ["timeout", str(int(max(timeout, 1))), "bash", "-c", probe, address, str(port)],
            check=False,
            mutable=False,
        )
        return result.returncode == 0


def transport_failed(proc: subprocess.CompletedProcess) -> bool:
    """True when an ssh or scp exit means the connection itself failed."""
    return proc.returncode == SSH_TRANSPORT_FAILURE and bool(SSH_ERROR_RE.search(proc.stderr or ""))


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def output_summary(result: CommandResult, limit: int = 160) -> Optional[str]:
    """First non-blank line of stderr, else stdout, cut to ``limit`` characters."""
    for text in (result.stderr, result.stdout):
        lines = [line for line in (text or "").splitlines() if line.strip()]
        if lines:
            line = lines[0].strip()
            return line if len(line) <= limit else line[: limit - 3] + "..."
    return None
