import pytest

from rollout_automation.operations import OPERATION_ALIASES, OPERATION_REGISTRY, Operation, resolve_operation
from rollout_automation.types import OperationKind


def test_every_kind_is_registered():
    assert set(OPERATION_REGISTRY) == set(OperationKind)
    for operation in OPERATION_REGISTRY.values():
        assert issubclass(operation, Operation)


def test_registered_actions_match_kinds():
    for kind, operation in OPERATION_REGISTRY.items():
        assert operation.action == kind.value


def test_aliases_point_at_registered_kinds():
    for kind, implied in OPERATION_ALIASES.values():
        assert kind in OPERATION_REGISTRY
        assert isinstance(implied, dict)


@pytest.mark.parametrize(
    "name, kind, implied",
    [
        ("run_shell", OperationKind.RUN_SHELL, {}),
        ("Wait-For-Port", OperationKind.WAIT_FOR_PORT, {}),
        ("yum", OperationKind.ENSURE_PACKAGE, {"manager": "yum"}),
        ("copy", OperationKind.SYNC_FILES, {}),
    ],
)
def test_resolve_operation(name, kind, implied):
    assert resolve_operation(name) == (kind, implied)


def test_resolve_operation_returns_fresh_implied_params():
    _, implied = resolve_operation("pip")
    implied["manager"] = "changed"

    assert resolve_operation("pip")[1] == {"manager": "pip"}


def test_unknown_operation_raises_key_error():
    with pytest.raises(KeyError):
        resolve_operation("teleport")
