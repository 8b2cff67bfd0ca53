from __future__ import annotations

from typing import Any
import posixpath

from .base import Operation
from ..executors import Executor
from ..types import ActionResult, HostConfig


class EnsureVirtualenvOperation(Operation):
    """Create a Python virtual environment unless one already exists."""

    action = "ensure_virtualenv"

    def __init__(self, spec: dict[str, Any], *, privileged: bool = False):
        super().__init__(spec, privileged=privileged)
        self.path = self.require("path", "name", "virtualenv")
        self.python = str(spec.get("python") or "python3")
        self.system_site_packages = self.parse_bool(spec.get("system_site_packages"))

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        root = executor.expand_path(self.path)
        marker = posixpath.join(root, "bin", "activate")
        if executor.path_kind(marker) == "file":
            return self.result(host, False, "noop", resource=self.path)

        command = [self.python, "-m", "venv"]
        if self.system_site_packages:
            command.append("--system-site-packages")
        command.append(root)
        executor.run(command, privileged=self.privileged)
        detail = "dry-run" if executor.dry_run else "created"
        return self.result(host, True, detail, resource=self.path)
