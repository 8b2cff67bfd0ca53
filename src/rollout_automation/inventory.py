from __future__ import annotations

from pathlib import Path
from typing import Optional
import re

from .errors import TaskListError
from .types import HostConfig

LOCAL_NAMES = {"local", "localhost", "127.0.0.1"}
HOST_RE = re.compile(r"^(?:(?P<user>[^@\s]+)@)?(?P<address>\[[^\]]+\]|[^:\s]+)(?::(?P<port>\d+))?$")


class InventoryLoader:
    """Reads host inventories: one host per line, ``#`` starts a comment.

    Entries may be ``host``, ``user@host``, ``host:port`` or
    ``user@host:port``.
    """

    def load(self, path: Path, *, default_user: Optional[str] = None) -> list[HostConfig]:
        path = Path(path)
        try:
            text = path.read_text()
        except FileNotFoundError:
            raise TaskListError(f"{path}: no such host inventory") from None
        hosts: list[HostConfig] = []
        for number, line in enumerate(text.splitlines(), start=1):
            entry = line.split("#", 1)[0].strip()
            if not entry:
                continue
            try:
                hosts.append(self.parse_entry(entry, default_user=default_user))
            except ValueError as exc:
                raise TaskListError(f"{path}:{number} {exc}") from None
        if not hosts:
            raise TaskListError(f"{path}: inventory lists no hosts")
        return hosts

    @staticmethod
    def parse_entry(entry: str, *, default_user: Optional[str] = None) -> HostConfig:
        match = HOST_RE.match(entry)
        if not match:
            raise ValueError(f"invalid host entry '{entry}'")
        address = match.group("address").strip("[]")
        user = match.group("user") or default_user
        port = int(match.group("port")) if match.group("port") else None
        if address in LOCAL_NAMES and not match.group("user") and port is None:
            return HostConfig(name=address, connection="local")
        return HostConfig(name=entry, connection="ssh", address=address, user=user, port=port)

    @staticmethod
    def local() -> HostConfig:
        return HostConfig(name="local", connection="local")
