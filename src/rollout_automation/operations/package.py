from __future__ import annotations

from typing import Iterable, Optional
import json
import logging
import posixpath
import re

from .base import Operation
from ..executors import CommandResult, Executor
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)

STATES = {"present", "latest", "absent"}
_REQUIREMENT_SPLIT = re.compile(r"[<>=!~\[;\s]")


class EnsurePackageOperation(Operation):
    """Install, upgrade or remove packages using the host's package manager."""

    action = "ensure_package"

    def __init__(self, spec: dict[str, object], *, privileged: bool = False):
        super().__init__(spec, privileged=privileged)
        packages = spec.get("name") or spec.get("packages")
        if isinstance(packages, str):
            self.packages = [p.strip() for p in packages.split(",") if p.strip()]
        else:
            self.packages = [str(p) for p in packages or []]
        if not self.packages:
            raise ValueError("ensure_package operation requires at least one package")
        self.state = str(spec.get("state", "present"))
        if self.state not in STATES:
            raise ValueError("ensure_package state must be 'present', 'latest' or 'absent'")
        self.preferred_manager = spec.get("manager")
        venv = spec.get("virtualenv")
        self.virtualenv = str(venv) if venv else None

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        manager = PackageManagerFactory.create(
            self.preferred_manager,
            executor,
            virtualenv=self.virtualenv,
            privileged=self.privileged,
        )
        logger.debug(
            "package-manager=%s host=%s packages=%s state=%s",
            manager.name,
            host.name,
            self.packages,
            self.state,
        )
        if self.state == "present":
            changed, details = manager.ensure_present(executor, self.packages)
        elif self.state == "latest":
            changed, details = manager.ensure_latest(executor, self.packages)
        else:
            changed, details = manager.ensure_absent(executor, self.packages)
        detail_msg = f"manager={manager.name} {details}" if details else f"manager={manager.name}"
        return self.result(host, changed, detail_msg, resource=", ".join(self.packages))


class PackageManagerFactory:
    _MANAGERS = [
        ("apt-get", "apt", lambda **kw: AptPackageManager(**kw)),
        ("dnf", "dnf", lambda **kw: DnfPackageManager(**kw)),
        ("yum", "yum", lambda **kw: YumPackageManager(**kw)),
        ("brew", "brew", lambda **kw: BrewPackageManager(**kw)),
        ("pacman", "pacman", lambda **kw: PacmanPackageManager(**kw)),
    ]

    @classmethod
    def create(
        cls,
        preferred: Optional[object],
        executor: Executor,
        *,
        virtualenv: Optional[str] = None,
        privileged: bool = False,
    ) -> "PackageManager":
        if isinstance(preferred, str):
            preferred = preferred.lower()
            if preferred in {"pip", "pip3"}:
                return PipPackageManager(privileged=privileged, virtualenv=virtualenv, executor=executor)
            for _, key, factory in cls._MANAGERS:
                if key == preferred:
                    return factory(privileged=privileged)
            raise ValueError(f"Unknown package manager '{preferred}'")
        if virtualenv:
            return PipPackageManager(privileged=privileged, virtualenv=virtualenv, executor=executor)
        for binary, _, factory in cls._MANAGERS:
            if cls._has_binary(executor, binary):
                return factory(privileged=privileged)
        raise RuntimeError(f"No supported package manager found on {executor.host.name}")

    @staticmethod
    def _has_binary(executor: Executor, binary: str) -> bool:
        probe = executor.run(["sh", "-c", 'command -v "$1"', "sh", binary], check=False, mutable=False)
        return probe.returncode == 0


class PackageManager:
    name = "generic"
    env: dict[str, str] = {}

    def __init__(self, *, privileged: bool = False):
        self.privileged = privileged

    def ensure_present(self, executor: Executor, packages: Iterable[str]) -> tuple[bool, str]:
        needed = [pkg for pkg in packages if not self.is_installed(executor, pkg)]
        if not needed:
            return False, "already-installed"
        self.install(executor, needed)
        return True, f"installed={','.join(needed)}"

    def ensure_latest(self, executor: Executor, packages: Iterable[str]) -> tuple[bool, str]:
        missing: list[str] = []
        outdated: list[str] = []
        for pkg in packages:
            if not self.is_installed(executor, pkg):
                missing.append(pkg)
            elif self.is_outdated(executor, pkg):
                outdated.append(pkg)
        if not missing and not outdated:
            return False, "already-latest"
        parts: list[str] = []
        if missing:
            self.install(executor, missing)
            parts.append(f"installed={','.join(missing)}")
        if outdated:
            self.upgrade(executor, outdated)
            parts.append(f"upgraded={','.join(outdated)}")
        return True, " ".join(parts)

    def ensure_absent(self, executor: Executor, packages: Iterable[str]) -> tuple[bool, str]:
        removable = [pkg for pkg in packages if self.is_installed(executor, pkg)]
        if not removable:
            return False, "already-removed"
        self.remove(executor, removable)
        return True, f"removed={','.join(removable)}"

    def command(self, executor: Executor, argv: list[str]) -> CommandResult:
        return executor.run(argv, env=dict(self.env) or None, privileged=self.privileged)

    def query(self, executor: Executor, argv: list[str]) -> CommandResult:
        return executor.run(argv, check=False, mutable=False, env=dict(self.env) or None)

    def install(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def upgrade(self, executor: Executor, packages: list[str]) -> None:
        self.install(executor, packages)

    def remove(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def is_installed(self, executor: Executor, package: str) -> bool:
        raise NotImplementedError

    def is_outdated(self, executor: Executor, package: str) -> bool:
        return False


class AptPackageManager(PackageManager):
    name = "apt"
    env = {"DEBIAN_FRONTEND": "noninteractive"}

    def install(self, executor: Executor, packages: list[str]) -> None:
        self.command(executor, ["apt-get", "install", "-y", "-q", *packages])

    def upgrade(self, executor: Executor, packages: list[str]) -> None:
        self.command(executor, ["apt-get", "install", "-y", "-q", "--only-upgrade", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        self.command(executor, ["apt-get", "remove", "-y", "-q", *packages])

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = self.query(executor, ["dpkg-query", "-W", "-f", "${Status}", package])
        return result.returncode == 0 and "install ok installed" in result.stdout

    def is_outdated(self, executor: Executor, package: str) -> bool:
        result = self.query(executor, ["apt", "list", "--upgradable", package])
        return any(line.startswith(f"{package}/") for line in result.stdout.splitlines())


class DnfPackageManager(PackageManager):
    name = "dnf"
    binary = "dnf"

    def install(self, executor: Executor, packages: list[str]) -> None:
        self.command(executor, [self.binary, "install", "-y", *packages])

    def upgrade(self, executor: Executor, packages: list[str]) -> None:
        self.command(executor, [self.binary, "upgrade", "-y", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        self.command(executor, [self.binary, "remove", "-y", *packages])

    def is_installed(self, executor: Executor, package: str) -> bool:
        return self.query(executor, ["rpm", "-q", package]).returncode == 0

    def is_outdated(self, executor: Executor, package: str) -> bool:
        # check-update exits 100 when updates are available.
        return self.query(executor, [self.binary, "check-update", "-q", package]).returncode == 100


class YumPackageManager(DnfPackageManager):
    name = "yum"
    binary = "yum"


class BrewPackageManager(PackageManager):
    name = "brew"
    env = {"NONINTERACTIVE": "1", "HOMEBREW_NO_AUTO_UPDATE": "1"}

    def install(self, executor: Executor, packages: list[str]) -> None:
        self.command(executor, ["brew", "install", *packages])

    def upgrade(self, executor: Executor, packages: list[str]) -> None:
        self.command(executor, ["brew", "upgrade", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        self.command(executor, ["brew", "uninstall", *packages])

    def is_installed(self, executor: Executor, package: str) -> bool:
        return self.query(executor, ["brew", "list", package]).returncode == 0

    def is_outdated(self, executor: Executor, package: str) -> bool:
        return bool(self.query(executor, ["brew", "outdated", "--quiet", package]).stdout.strip())


class PacmanPackageManager(PackageManager):
    name = "pacman"

    def install(self, executor: Executor, packages: list[str]) -> None:
        self.command(executor, ["pacman", "-S", "--noconfirm", "--needed", *packages])

    def upgrade(self, executor: Executor, packages: list[str]) -> None:
        self.command(executor, ["pacman", "-S", "--noconfirm", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        self.command(executor, ["pacman", "-R", "--noconfirm", *packages])

    def is_installed(self, executor: Executor, package: str) -> bool:
        return self.query(executor, ["pacman", "-Qi", package]).returncode == 0

    def is_outdated(self, executor: Executor, package: str) -> bool:
        result = self.query(executor, ["pacman", "-Qu", package])
        return result.returncode == 0 and bool(result.stdout.strip())


class PipPackageManager(PackageManager):
    """pip, optionally bound to a virtualenv on the host."""

    name = "pip"
    env = {"PIP_NO_INPUT": "1", "PIP_DISABLE_PIP_VERSION_CHECK": "1"}

    def __init__(
        self,
        *,
        privileged: bool = False,
        virtualenv: Optional[str] = None,
        executor: Optional[Executor] = None,
    ):
        super().__init__(privileged=privileged)
        self.virtualenv = virtualenv
        if virtualenv:
            root = executor.expand_path(virtualenv) if executor is not None else virtualenv
            self.pip = posixpath.join(root, "bin", "pip")
        else:
            self.pip = "pip3"

    def install(self, executor: Executor, packages: list[str]) -> None:
        self.command(executor, [self.pip, "install", *packages])

    def upgrade(self, executor: Executor, packages: list[str]) -> None:
        self.command(executor, [self.pip, "install", "--upgrade", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        names = [self.project_name(pkg) for pkg in packages]
        self.command(executor, [self.pip, "uninstall", "-y", *names])

    def is_installed(self, executor: Executor, package: str) -> bool:
        return self.query(executor, [self.pip, "show", self.project_name(package)]).returncode == 0

    def is_outdated(self, executor: Executor, package: str) -> bool:
        result = self.query(executor, [self.pip, "list", "--outdated", "--format=json"])
        if result.returncode != 0 or not result.stdout.strip():
            return False
        try:
            outdated = json.loads(result.stdout)
        except json.JSONDecodeError:
            logger.warning("unparseable pip list output on %s", executor.host.name)
            return False
        wanted = self.canonical(self.project_name(package))
        return any(self.canonical(str(item.get("name", ""))) == wanted for item in outdated)

    @staticmethod
    def project_name(requirement: str) -> str:
        return _REQUIREMENT_SPLIT.split(requirement.strip(), maxsplit=1)[0]

    @staticmethod
    def canonical(name: str) -> str:
        return re.sub(r"[-_.]+", "-", name).lower()
