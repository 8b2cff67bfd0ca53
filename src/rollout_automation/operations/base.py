from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from ..executors import Executor
from ..types import ActionResult, HostConfig


class Operation(ABC):
    """Shared surface for runnable automation actions."""

    action = "operation"

    def __init__(self, spec: dict[str, Any], *, privileged: bool = False):
        self.spec = spec
        self.privileged = privileged
        plan_dir = spec.get("_plan_dir")
        self.plan_dir = Path(str(plan_dir)) if plan_dir else None

    @abstractmethod
    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        """Perform the operation against ``host`` using ``executor``."""

    def result(self, host: HostConfig, changed: bool, details: str, **extra: Any) -> ActionResult:
        return ActionResult(host=host.name, action=self.action, changed=changed, details=details, **extra)

    def require(self, *keys: str) -> str:
        for key in keys:
            value = self.spec.get(key)
            if value not in (None, ""):
                return str(value)
        raise ValueError(f"{self.action} operation requires {' or '.join(keys)}")

    @staticmethod
    def parse_mode(value: Optional[Any]) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, int):
            return value
        text = str(value).strip()
        if not text:
            return None
        base = 8 if text.startswith("0") else 10
        return int(text, base)

    @staticmethod
    def parse_bool(value: Any, default: bool = False) -> bool:
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in {"1", "true", "yes", "on"}:
            return True
        if text in {"0", "false", "no", "off", ""}:
            return False
        raise ValueError(f"expected a boolean, got {value!r}")

    @staticmethod
    def parse_number(value: Any, name: str, default: Optional[float] = None) -> Optional[float]:
        if value is None:
            return default
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{name} must be numeric") from exc
