from pathlib import Path

from rollout_automation.executors import CommandResult, LocalExecutor
from rollout_automation.operations.virtualenv import EnsureVirtualenvOperation
from rollout_automation.types import HostConfig


class RecordingExecutor(LocalExecutor):
    def __init__(self, host: HostConfig, **kwargs):
        super().__init__(host, **kwargs)
        self.commands: list[list[str]] = []

    def _execute(self, command, *, env, cwd, timeout, privileged):  # type: ignore[override]
        self.commands.append(command)
        return CommandResult(command, "", "", 0)


def test_virtualenv_created_when_missing(tmp_path: Path) -> None:
    host = HostConfig("local")
    executor = RecordingExecutor(host)
    venv = tmp_path / "venv"

    result = EnsureVirtualenvOperation({"path": str(venv), "system_site_packages": "yes"}).apply(host, executor)

    assert result.changed is True
    assert result.details == "created"
    assert executor.commands == [["python3", "-m", "venv", "--system-site-packages", str(venv)]]


def test_virtualenv_existing_is_noop(tmp_path: Path) -> None:
    host = HostConfig("local")
    executor = RecordingExecutor(host)
    venv = tmp_path / "venv"
    (venv / "bin").mkdir(parents=True)
    (venv / "bin" / "activate").write_text("# activate\n")

    result = EnsureVirtualenvOperation({"path": str(venv)}).apply(host, executor)

    assert result.changed is False
    assert executor.commands == []


def test_virtualenv_dry_run(tmp_path: Path) -> None:
    host = HostConfig("local")
    executor = RecordingExecutor(host, dry_run=True)

    result = EnsureVirtualenvOperation({"path": str(tmp_path / "venv"), "python": "python3.12"}).apply(
        host, executor
    )

    assert result.details == "dry-run"
    assert executor.commands == []
