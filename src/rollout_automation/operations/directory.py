from __future__ import annotations

from typing import Any

from .base import Operation
from ..executors import Executor
from ..types import ActionResult, HostConfig


class EnsureDirectoryOperation(Operation):
    """Create a directory when it is missing."""

    action = "ensure_directory"

    def __init__(self, spec: dict[str, Any], *, privileged: bool = False):
        super().__init__(spec, privileged=privileged)
        self.path = self.require("path", "name", "dest")
        self.mode = self.parse_mode(spec.get("mode"))

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        changed, detail = executor.ensure_directory(self.path, mode=self.mode, privileged=self.privileged)
        return self.result(host, changed, detail, resource=self.path)
