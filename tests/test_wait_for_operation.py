import socket

import pytest

from rollout_automation.errors import PortWaitTimeout
from rollout_automation.executors import LocalExecutor
from rollout_automation.operations import wait_for as wait_for_mod
from rollout_automation.operations.wait_for import WaitForPortOperation
from rollout_automation.types import HostConfig


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedExecutor:
    """Reports the port as open from the ``opens_at``-th probe onwards."""

    dry_run = False

    def __init__(self, opens_at=None):
        self.opens_at = opens_at
        self.probes: list[tuple[str, int]] = []

    def port_open(self, address, port, *, timeout=5):
        self.probes.append((address, port))
        return self.opens_at is not None and len(self.probes) >= self.opens_at


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr(wait_for_mod, "time", fake)
    return fake


def test_wait_for_open_port_is_unchanged() -> None:
    host = HostConfig("local")
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
        server.bind(("127.0.0.1", 0))
        server.listen(1)
        port = server.getsockname()[1]

        result = WaitForPortOperation({"port": port, "timeout": 5}).apply(host, LocalExecutor(host))

    assert result.changed is False
    assert result.details.startswith("started after")
    assert result.resource == f"127.0.0.1:{port}"


def test_wait_for_port_that_opens_later_is_changed(clock) -> None:
    executor = ScriptedExecutor(opens_at=4)
    op = WaitForPortOperation({"port": 8000, "delay": 10, "sleep": 1, "timeout": 60})

    result = op.apply(HostConfig("web1"), executor)

    assert result.changed is True
    assert clock.sleeps == [10, 1, 1]
    assert executor.probes[0] == ("127.0.0.1", 8000)


def test_wait_for_times_out(clock) -> None:
    op = WaitForPortOperation({"port": 8000, "sleep": 2, "timeout": 5})

    with pytest.raises(PortWaitTimeout) as excinfo:
        op.apply(HostConfig("web1"), ScriptedExecutor())

    assert "127.0.0.1:8000" in str(excinfo.value)
    assert clock.now >= 5


def test_wait_for_stopped_state(clock) -> None:
    executor = ScriptedExecutor()
    result = WaitForPortOperation({"port": 8000, "state": "stopped", "timeout": 5}).apply(
        HostConfig("web1"), executor
    )

    assert result.changed is False
    assert result.details.startswith("stopped")


def test_wait_for_closed_local_port_times_out() -> None:
    host = HostConfig("local")
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        probe.bind(("127.0.0.1", 0))
        port = probe.getsockname()[1]

    op = WaitForPortOperation({"port": port, "timeout": 0.3, "sleep": 0.1, "connect_timeout": 0.1})
    with pytest.raises(PortWaitTimeout):
        op.apply(host, LocalExecutor(host))


@pytest.mark.parametrize(
    "spec",
    [
        {},
        {"port": "http"},
        {"port": 0},
        {"port": 70000},
        {"port": 8000, "timeout": 0},
        {"port": 8000, "timeout": -1},
        {"port": 8000, "timeout": None},
        {"port": 8000, "sleep": 0},
        {"port": 8000, "sleep": -1},
        {"port": 8000, "delay": -1},
        {"port": 8000, "connect_timeout": 0},
        {"port": 8000, "state": "listening"},
    ],
)
def test_wait_for_rejects_bad_configuration(spec) -> None:
    with pytest.raises(ValueError):
        WaitForPortOperation(spec)
