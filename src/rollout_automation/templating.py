from __future__ import annotations

from typing import Any
import re

import jinja2
from jinja2.sandbox import SandboxedEnvironment

from .errors import TaskListError

PLACEHOLDER_RE = re.compile(r"{[{%]")


class EmptyUndefined(jinja2.ChainableUndefined):
    """Undefined value that renders and compares as an empty string.

    Attribute and item access chain, so ``pid.stdout`` on an unset ``pid`` is
    still empty rather than an error.
    """

    __slots__ = ()

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, jinja2.Undefined):
            return True
        return other == ""

    def __ne__(self, other: Any) -> bool:
        return not self.__eq__(other)

    __hash__ = jinja2.ChainableUndefined.__hash__


def build_environment() -> SandboxedEnvironment:
    # Shell uses "{#" in ${#var}, so template comments need a rarer opener.
    return SandboxedEnvironment(
        undefined=EmptyUndefined,
        autoescape=False,
        keep_trailing_newline=True,
        comment_start_string="{##",
        comment_end_string="##}",
    )


_ENV = build_environment()


def render_string(text: str, variables: dict[str, Any]) -> str:
    """Substitute ``{{ name }}`` placeholders; missing names become empty."""
    if not PLACEHOLDER_RE.search(text):
        return text
    try:
        return _ENV.from_string(text).render(**variables)
    except jinja2.TemplateError as exc:
        raise TaskListError(f"cannot render {text!r}: {exc}") from exc


def render_value(value: Any, variables: dict[str, Any]) -> Any:
    if isinstance(value, str):
        return render_string(value, variables)
    if isinstance(value, dict):
        return {k: render_value(v, variables) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [render_value(v, variables) for v in value]
    return value


def is_templated(value: Any) -> bool:
    """True when ``value`` or anything nested in it holds a placeholder."""
    if isinstance(value, str):
        return bool(PLACEHOLDER_RE.search(value))
    if isinstance(value, dict):
        return any(is_templated(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(is_templated(v) for v in value)
    return False
