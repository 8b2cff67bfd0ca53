from __future__ import annotations

from typing import Any
import logging
import time

from .base import Operation
from ..errors import PortWaitTimeout
from ..executors import Executor
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300.0


class WaitForPortOperation(Operation):
    """Poll a TCP port from the target host until it opens (or closes).

    ``timeout`` must be a positive number of seconds; waiting forever is
    rejected as a configuration error.
    """

    action = "wait_for_port"

    def __init__(self, spec: dict[str, Any], *, privileged: bool = False):
        super().__init__(spec, privileged=privileged)
        raw_port = spec.get("port")
        if raw_port in (None, ""):
            raise ValueError("wait_for_port operation requires a port")
        try:
            self.port = int(raw_port)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"wait_for_port port must be an integer, got {raw_port!r}") from exc
        if not 0 < self.port < 65536:
            raise ValueError(f"wait_for_port port {self.port} is out of range")
        self.address = str(spec.get("host") or "127.0.0.1")
        self.delay = self.parse_number(spec.get("delay"), "delay", 0.0)
        if self.delay < 0:
            raise ValueError("wait_for_port delay cannot be negative")
        self.sleep = self.parse_number(spec.get("sleep"), "sleep", 1.0)
        if self.sleep <= 0:
            raise ValueError("wait_for_port sleep must be a positive number of seconds")
        self.connect_timeout = self.parse_number(spec.get("connect_timeout"), "connect_timeout", 5.0)
        if self.connect_timeout <= 0:
            raise ValueError("wait_for_port connect_timeout must be a positive number of seconds")
        if "timeout" in spec and spec["timeout"] in (None, ""):
            raise ValueError("wait_for_port timeout must be set; waiting forever is not supported")
        self.timeout = self.parse_number(spec.get("timeout"), "timeout", DEFAULT_TIMEOUT)
        if self.timeout is None or self.timeout <= 0:
            raise ValueError("wait_for_port timeout must be a positive number of seconds")
        self.state = str(spec.get("state", "started"))
        if self.state not in {"started", "stopped"}:
            raise ValueError("wait_for_port state must be 'started' or 'stopped'")

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        want_open = self.state == "started"
        target = f"{self.address}:{self.port}"
        start = time.monotonic()
        # Changed means the port was not yet in the wanted state when the task began.
        initially_settled = executor.port_open(self.address, self.port, timeout=self.connect_timeout) == want_open
        if self.delay > 0:
            time.sleep(self.delay)

        attempts = 0
        while True:
            attempts += 1
            is_open = executor.port_open(self.address, self.port, timeout=self.connect_timeout)
            elapsed = time.monotonic() - start
            if is_open == want_open:
                detail = f"{self.state} after {elapsed:.1f}s"
                return self.result(host, not initially_settled, detail, resource=target)
            if elapsed >= self.timeout:
                raise PortWaitTimeout(
                    f"timeout waiting for {target} to be {self.state} after {elapsed:.1f}s"
                )
            logger.debug("host=%s waiting for %s (%s attempts)", host.name, target, attempts)
            time.sleep(self.sleep)
