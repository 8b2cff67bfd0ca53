from __future__ import annotations

from pathlib import Path
from typing import Any
import glob
import logging
import os
import posixpath

from .base import Operation
from ..executors import Executor, sha256_file
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)


class SyncFilesOperation(Operation):
    """Copy local files matching a glob into a directory on the host.

    The sync is one-way and additive: files already on the host that are not
    part of the glob are left alone.
    """

    action = "sync_files"

    def __init__(self, spec: dict[str, Any], *, privileged: bool = False):
        super().__init__(spec, privileged=privileged)
        self.source = self.require("src", "source")
        self.dest = self.require("dest", "path")
        self.mode = self.parse_mode(spec.get("mode"))

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        sources = self._matching_files()
        if not sources:
            return self.result(host, False, "no files matched", resource=self.dest)

        executor.ensure_directory(self.dest, privileged=self.privileged)
        copied: list[str] = []
        for source in sources:
            target = posixpath.join(self.dest, source.name)
            if executor.file_digest(target) == sha256_file(source):
                continue
            logger.debug("host=%s copy %s -> %s", host.name, source, target)
            executor.copy_file(source, target, mode=self.mode, privileged=self.privileged)
            copied.append(source.name)

        if not copied:
            return self.result(host, False, "noop", resource=self.dest)
        return self.result(host, True, f"copied={','.join(copied)}", resource=self.dest)

    def _matching_files(self) -> list[Path]:
        pattern = os.path.expanduser(self.source)
        if not os.path.isabs(pattern) and self.plan_dir is not None:
            pattern = str(self.plan_dir / pattern)
        return sorted(Path(p) for p in glob.glob(pattern) if os.path.isfile(p))
