from __future__ import annotations

import argparse
import logging
import os
import shlex
import sys
from pathlib import Path
from threading import Event
from typing import Optional, Sequence

from .config import DEFAULT_CONFIG, RolloutConfig, load_config
from .errors import TaskListError
from .inventory import InventoryLoader
from .runner import TaskRunner
from .tasklist import TaskListLoader
from .types import HostConfig, RunResult, RunStatus, TaskResult, TaskSpec, TaskStatus


class Ansi:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    ORANGE = "\033[38;5;208m"
    RESET = "\033[0m"


STATUS_COLORS = {
    TaskStatus.CHANGED: Ansi.YELLOW,
    TaskStatus.UNCHANGED: Ansi.GREEN,
    TaskStatus.SKIPPED: Ansi.BLUE,
    TaskStatus.FAILED: Ansi.RED,
}


def colorize(text: str, color: Optional[str]) -> str:
    if not color:
        return text
    if not sys.stdout.isatty() or os.environ.get("NO_COLOR"):
        return text
    return f"{color}{text}{Ansi.RESET}"

_last_progress_len = 0


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="rollout", description="Rollout provisioning runner")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run a task list against hosts")
    run.add_argument(
        "tasklist",
        nargs="?",
        default=None,
        type=Path,
        help="Path to a TOML task list (default from config)",
    )
    run.add_argument(
        "--hosts",
        type=Path,
        help="Host inventory, one host per line (default: run locally)",
    )
    run.add_argument("--user", help="Remote user for hosts that do not name one")
    run.add_argument(
        "--extra-vars",
        "-e",
        action="append",
        default=[],
        metavar="'k=v ...'",
        help="Variables overriding task list and host values (repeatable)",
    )
    run.add_argument("--verbose", "-v", action="store_true", help="Also show ok and skipped tasks")
    run.add_argument("--dry-run", action="store_true", help="Calculate changes without executing")
    run.add_argument("--forks", type=int, help="Number of hosts to run in parallel")
    run.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Path to rollout config file (default: {DEFAULT_CONFIG})",
    )
    run.add_argument(
        "--log-level",
        default="WARNING",
        help="Python logging level (default: WARNING)",
    )
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(levelname)s %(name)s - %(message)s",
    )


def parse_extra_vars(values: Sequence[str]) -> dict[str, str]:
    extra: dict[str, str] = {}
    for value in values:
        for token in shlex.split(value):
            key, sep, val = token.partition("=")
            if not sep or not key:
                raise ValueError(f"extra var '{token}' must be KEY=VALUE")
            extra[key] = val
    return extra


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        cfg = load_config(args.config)
        task_list, hosts, extra_vars = _load_inputs(args, cfg)
    except (TaskListError, ValueError) as exc:
        _clear_progress()
        print(colorize(f"Task list validation failed: {exc}", Ansi.RED), file=sys.stderr)
        return 1

    _apply_aws_env(cfg)
    forks = args.forks or cfg.forks
    runner = TaskRunner(
        task_list,
        dry_run=args.dry_run,
        config=cfg,
        # Progress lines overwrite each other in place: serial runs on a terminal only.
        progress_callback=print_progress if forks <= 1 and sys.stdout.isatty() else None,
    )
    cancel = Event()
    try:
        run_results = runner.run(hosts, extra_vars=extra_vars, forks=forks, cancel=cancel)
    except KeyboardInterrupt:
        cancel.set()
        _clear_progress()
        print(colorize("Interrupted", Ansi.RED), file=sys.stderr)
        return 130

    _clear_progress()
    for run_result in run_results:
        for result in run_result.results:
            if should_display_result(result, args.verbose):
                print(format_result(result))

    for run_result in run_results:
        print(Summary.from_run(run_result).render())

    return 0 if all(r.status is RunStatus.OK for r in run_results) else 1


def _load_inputs(args: argparse.Namespace, cfg: RolloutConfig):
    tasklist_path = args.tasklist or cfg.tasklist
    if tasklist_path is None:
        raise TaskListError("no task list given and none configured")
    task_list = TaskListLoader().load(tasklist_path)

    user = args.user or cfg.user
    hosts_path = args.hosts or cfg.hosts_file
    if hosts_path is not None:
        hosts = InventoryLoader().load(hosts_path, default_user=user)
    else:
        hosts = [InventoryLoader.local()]
    return task_list, hosts, parse_extra_vars(args.extra_vars)


def format_result(result: TaskResult) -> str:
    status = result.status.value
    color = STATUS_COLORS.get(result.status)
    if result.failed and result.ignored:
        status = "failed (ignored)"
        color = Ansi.ORANGE
    line = f"{result.host}::{result.task} [{result.operation.value}] {status}"
    if result.details:
        line = f"{line} - {result.details}"
    return colorize(line, color)


def should_display_result(result: TaskResult, verbose: bool) -> bool:
    if result.failed or result.changed:
        return True
    return verbose or logging.getLogger().isEnabledFor(logging.DEBUG)


def print_progress(host: HostConfig, task: TaskSpec) -> None:
    global _last_progress_len
    _clear_progress()
    line = f"{host.name}::{task.name} [{task.operation.value}] pending..."
    _last_progress_len = len(line)
    print(colorize(line, Ansi.YELLOW), end="\r", flush=True)


def _clear_progress() -> None:
    global _last_progress_len
    if _last_progress_len:
        print(" " * _last_progress_len, end="\r", flush=True)
        _last_progress_len = 0


def _apply_aws_env(cfg: RolloutConfig) -> None:
    if cfg.aws_profile and "AWS_PROFILE" not in os.environ:
        os.environ["AWS_PROFILE"] = cfg.aws_profile
    if cfg.aws_region:
        if "AWS_REGION" not in os.environ:
            os.environ["AWS_REGION"] = cfg.aws_region
        if "AWS_DEFAULT_REGION" not in os.environ:
            os.environ["AWS_DEFAULT_REGION"] = cfg.aws_region


class Summary:
    def __init__(self, host: str) -> None:
        self.host = host
        self.ok = 0
        self.changed = 0
        self.skipped = 0
        self.failed = 0
        self.ignored = 0
        self.status = RunStatus.OK
        self.error: Optional[str] = None

    @classmethod
    def from_run(cls, run_result: RunResult) -> "Summary":
        summary = cls(run_result.host)
        for result in run_result.results:
            summary.add(result)
        summary.status = run_result.status
        summary.error = run_result.error
        return summary

    def add(self, result: TaskResult) -> None:
        if result.status is TaskStatus.FAILED:
            if result.ignored:
                self.ignored += 1
            else:
                self.failed += 1
        elif result.status is TaskStatus.CHANGED:
            self.changed += 1
        elif result.status is TaskStatus.SKIPPED:
            self.skipped += 1
        else:
            self.ok += 1

    def render(self) -> str:
        parts = [
            f"ok={self.ok}",
            f"changed={self.changed}",
            f"skipped={self.skipped}",
            f"failed={self.failed}",
            f"ignored={self.ignored}",
        ]
        text = f"{self.host} : {' '.join(parts)}"
        if self.status is not RunStatus.OK:
            text = f"{text} ({self.status.value}: {self.error})" if self.error else f"{text} ({self.status.value})"
        color = Ansi.GREEN if self.status is RunStatus.OK else Ansi.RED
        return colorize(text, color)


if __name__ == "__main__":
    raise SystemExit(main())
