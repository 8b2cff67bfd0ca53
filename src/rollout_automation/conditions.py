"""Guard (``when``) evaluation.

Guards are Jinja2 expressions evaluated in a sandbox, e.g.::

    pid.stdout != ""
    env == "prod" and not skip_restart

Names that are not bound in the run evaluate to an empty value, so
``missing == ""`` is true and a bare ``missing`` is false.
"""
from __future__ import annotations

from typing import Any, Optional
import re

import jinja2

from .errors import GuardEvaluationError
from .templating import build_environment

WRAPPED_RE = re.compile(r"^\s*{{(.*)}}\s*$", re.DOTALL)


class ConditionEvaluator:
    def __init__(self) -> None:
        self.environment = build_environment()

    def evaluate(self, expression: Optional[Any], variables: dict[str, Any]) -> bool:
        if expression is None:
            return True
        if isinstance(expression, bool):
            return expression
        source = str(expression)
        match = WRAPPED_RE.match(source)
        if match:
            source = match.group(1)
        if not source.strip():
            raise GuardEvaluationError(str(expression), "empty expression")
        try:
            compiled = self.environment.compile_expression(source)
        except jinja2.TemplateSyntaxError as exc:
            raise GuardEvaluationError(str(expression), exc.message or "syntax error") from exc
        try:
            value = compiled(**variables)
        except (jinja2.TemplateError, TypeError, ValueError) as exc:
            raise GuardEvaluationError(str(expression), str(exc)) from exc
        return bool(value)
