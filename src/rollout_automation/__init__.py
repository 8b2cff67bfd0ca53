"""Rollout idempotent provisioning toolkit."""

from .runner import TaskRunner
from .tasklist import TaskListLoader

__all__ = ["TaskRunner", "TaskListLoader"]
