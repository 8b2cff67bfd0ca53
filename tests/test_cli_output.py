import pytest

from rollout_automation import cli
from rollout_automation.types import OperationKind, RunResult, RunStatus, TaskResult, TaskStatus


def make_result(status: TaskStatus, details: str = "", ignored: bool = False) -> TaskResult:
    return TaskResult(
        host="local",
        index=1,
        task="app dir",
        operation=OperationKind.ENSURE_DIRECTORY,
        status=status,
        details=details,
        ignored=ignored,
    )


def test_format_result_failed(monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    line = cli.format_result(make_result(TaskStatus.FAILED, "boom"))
    assert line.startswith("local::app dir [ensure_directory] failed - boom")


def test_format_result_success(monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    line = cli.format_result(make_result(TaskStatus.CHANGED, "created"))
    assert line == "local::app dir [ensure_directory] changed - created"


def test_format_result_ignored_failure(monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    line = cli.format_result(make_result(TaskStatus.FAILED, "rc=1", ignored=True))
    assert "failed (ignored) - rc=1" in line


def test_unchanged_hidden_unless_verbose():
    assert cli.should_display_result(make_result(TaskStatus.CHANGED), False) is True
    assert cli.should_display_result(make_result(TaskStatus.FAILED), False) is True
    assert cli.should_display_result(make_result(TaskStatus.UNCHANGED), False) is False
    assert cli.should_display_result(make_result(TaskStatus.SKIPPED), True) is True


def test_summary_counts(monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    run_result = RunResult(
        host="web1",
        status=RunStatus.FAILED,
        results=[
            make_result(TaskStatus.UNCHANGED),
            make_result(TaskStatus.CHANGED),
            make_result(TaskStatus.SKIPPED),
            make_result(TaskStatus.FAILED, ignored=True),
            make_result(TaskStatus.FAILED),
        ],
        error="task 5 (app dir) failed: boom",
    )

    text = cli.Summary.from_run(run_result).render()

    assert text == (
        "web1 : ok=1 changed=1 skipped=1 failed=1 ignored=1 (failed: task 5 (app dir) failed: boom)"
    )


def test_parse_extra_vars():
    assert cli.parse_extra_vars(["PORT=5000 NAME='hello world'", "A="]) == {
        "PORT": "5000",
        "NAME": "hello world",
        "A": "",
    }
    with pytest.raises(ValueError):
        cli.parse_extra_vars(["novalue"])
