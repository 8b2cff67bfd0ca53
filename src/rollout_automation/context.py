from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from .templating import render_value
from .types import TaskResult


@dataclass
class RunContext:
    """Variables and results for one task-list run against one host."""

    host: str
    variables: dict[str, Any] = field(default_factory=dict)
    history: list[TaskResult] = field(default_factory=list)

    @classmethod
    def seed(cls, host: str, *layers: Optional[dict[str, Any]]) -> "RunContext":
        """Merge variable layers; later layers take precedence."""
        merged: dict[str, Any] = {}
        for layer in layers:
            if layer:
                merged.update(layer)
        merged.setdefault("inventory_hostname", host)
        return cls(host=host, variables=merged)

    def record(self, result: TaskResult, register: Optional[str] = None) -> None:
        self.history.append(result)
        if register:
            self.variables[register] = result.as_variable()

    def render(self, value: Any) -> Any:
        return render_value(value, self.variables)
