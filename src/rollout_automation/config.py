from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .errors import TaskListError

DEFAULT_CONFIG = Path("/etc/rollout/main.conf")


@dataclass
class RolloutConfig:
    tasklist: Optional[Path] = None
    hosts_file: Optional[Path] = None
    user: Optional[str] = None
    forks: int = 1
    ssh_options: list[str] = field(default_factory=list)
    connect_timeout: int = 10
    aws_region: Optional[str] = None
    aws_profile: Optional[str] = None


def load_config(path: Path) -> RolloutConfig:
    if not path.exists():
        return RolloutConfig()
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise TaskListError(f"{path}: {exc}") from None
    defaults = data.get("defaults", {})
    tasklist = defaults.get("tasklist")
    hosts_file = defaults.get("hosts_file")
    user = defaults.get("user")
    ssh_options = defaults.get("ssh_options", [])
    if isinstance(ssh_options, str):
        ssh_options = [ssh_options]
    aws_region = defaults.get("aws_region")
    aws_profile = defaults.get("aws_profile")
    return RolloutConfig(
        tasklist=Path(tasklist) if tasklist else None,
        hosts_file=Path(hosts_file) if hosts_file else None,
        user=str(user) if user else None,
        forks=max(1, int(defaults.get("forks", 1))),
        ssh_options=[str(opt) for opt in ssh_options],
        connect_timeout=int(defaults.get("connect_timeout", 10)),
        aws_region=str(aws_region) if aws_region else None,
        aws_profile=str(aws_profile) if aws_profile else None,
    )
