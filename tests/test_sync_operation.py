from pathlib import Path
import subprocess

from rollout_automation.executors import LocalExecutor, SshExecutor
from rollout_automation.operations.sync import SyncFilesOperation
from rollout_automation.types import HostConfig


def make_source(tmp_path: Path) -> Path:
    src = tmp_path / "src"
    src.mkdir()
    (src / "hello.py").write_text("print('hi')\n")
    (src / "util.py").write_text("X = 1\n")
    (src / "notes.txt").write_text("not synced\n")
    return src


def test_sync_copies_matching_files_then_noop(tmp_path: Path) -> None:
    host = HostConfig("local")
    src = make_source(tmp_path)
    dest = tmp_path / "dest"
    op = SyncFilesOperation({"src": str(src / "*.py"), "dest": str(dest)})

    first = op.apply(host, LocalExecutor(host))
    second = op.apply(host, LocalExecutor(host))

    assert first.changed is True
    assert first.details == "copied=hello.py,util.py"
    assert sorted(p.name for p in dest.iterdir()) == ["hello.py", "util.py"]
    assert second.changed is False
    assert second.details == "noop"


def test_sync_copies_only_changed_files(tmp_path: Path) -> None:
    host = HostConfig("local")
    src = make_source(tmp_path)
    dest = tmp_path / "dest"
    op = SyncFilesOperation({"src": str(src / "*.py"), "dest": str(dest)})
    op.apply(host, LocalExecutor(host))

    (src / "util.py").write_text("X = 2\n")
    result = op.apply(host, LocalExecutor(host))

    assert result.details == "copied=util.py"
    assert (dest / "util.py").read_text() == "X = 2\n"


def test_sync_leaves_extra_destination_files(tmp_path: Path) -> None:
    host = HostConfig("local")
    src = make_source(tmp_path)
    dest = tmp_path / "dest"
    dest.mkdir()
    (dest / "local.cfg").write_text("keep")

    SyncFilesOperation({"src": str(src / "*.py"), "dest": str(dest)}).apply(host, LocalExecutor(host))

    assert (dest / "local.cfg").read_text() == "keep"


def test_sync_resolves_relative_glob_against_task_list(tmp_path: Path) -> None:
    host = HostConfig("local")
    make_source(tmp_path)
    dest = tmp_path / "dest"
    op = SyncFilesOperation({"src": "src/*.py", "dest": str(dest), "_plan_dir": str(tmp_path)})

    result = op.apply(host, LocalExecutor(host))

    assert result.changed is True
    assert (dest / "hello.py").exists()


def test_sync_without_matches_is_unchanged(tmp_path: Path) -> None:
    host = HostConfig("local")
    dest = tmp_path / "dest"

    result = SyncFilesOperation({"src": str(tmp_path / "*.none"), "dest": str(dest)}).apply(
        host, LocalExecutor(host)
    )

    assert result.changed is False
    assert result.details == "no files matched"
    assert not dest.exists()


def test_sync_dry_run_copies_nothing(tmp_path: Path) -> None:
    host = HostConfig("local")
    src = make_source(tmp_path)
    dest = tmp_path / "dest"

    result = SyncFilesOperation({"src": str(src / "*.py"), "dest": str(dest)}).apply(
        host, LocalExecutor(host, dry_run=True)
    )

    assert result.changed is True
    assert not dest.exists()


def record_ssh(monkeypatch) -> list[list[str]]:
    calls: list[list[str]] = []

    def fake_run(argv, **kwargs):
        calls.append(argv)
        if argv[0] == "ssh" and argv[-1] == "mktemp":
            return subprocess.CompletedProcess(argv, 0, "/tmp/tmp.Ab12cd\n", "")
        return subprocess.CompletedProcess(argv, 0, "", "")

    monkeypatch.setattr("rollout_automation.executors.subprocess.run", fake_run)
    return calls


def ssh_web1() -> HostConfig:
    return HostConfig(name="web1", connection="ssh", address="web1", user="deploy")


def test_privileged_sync_over_ssh_stages_then_copies_with_sudo(tmp_path: Path, monkeypatch) -> None:
    calls = record_ssh(monkeypatch)
    (tmp_path / "a.txt").write_text("a\n")
    host = ssh_web1()

    result = SyncFilesOperation({"src": str(tmp_path / "*.txt"), "dest": "/srv/app"}, privileged=True).apply(
        host, SshExecutor(host)
    )

    scp_targets = [argv[-1] for argv in calls if argv[0] == "scp"]
    remotes = [argv[-1] for argv in calls if argv[0] == "ssh"]
    assert result.changed is True
    assert "sudo -n mkdir -p /srv/app" in remotes
    assert scp_targets == ["deploy@web1:/tmp/tmp.Ab12cd"]
    assert "sudo -n cp /tmp/tmp.Ab12cd /srv/app/a.txt" in remotes
    assert remotes[-1] == "rm -f /tmp/tmp.Ab12cd"


def test_unprivileged_sync_over_ssh_copies_directly(tmp_path: Path, monkeypatch) -> None:
    calls = record_ssh(monkeypatch)
    (tmp_path / "a.txt").write_text("a\n")
    host = ssh_web1()

    SyncFilesOperation({"src": str(tmp_path / "*.txt"), "dest": "~/hello"}).apply(host, SshExecutor(host))

    scp_targets = [argv[-1] for argv in calls if argv[0] == "scp"]
    assert scp_targets == ["deploy@web1:hello/a.txt"]
    assert not any("sudo" in argv[-1] for argv in calls)
