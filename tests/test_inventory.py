from pathlib import Path

import pytest

from rollout_automation.errors import TaskListError
from rollout_automation.inventory import InventoryLoader


def test_inventory_parses_entries(tmp_path: Path) -> None:
    path = tmp_path / "hosts"
    path.write_text(
        "# web tier\n"
        "web1.example.com\n"
        "deploy@web2.example.com:2222  # bastion forward\n"
        "\n"
        "localhost\n"
        "ops@[2001:db8::1]:22\n"
    )

    hosts = InventoryLoader().load(path, default_user="ec2-user")

    assert [h.name for h in hosts] == [
        "web1.example.com",
        "deploy@web2.example.com:2222",
        "localhost",
        "ops@[2001:db8::1]:22",
    ]
    web1, web2, local, v6 = hosts
    assert (web1.connection, web1.address, web1.user, web1.port) == ("ssh", "web1.example.com", "ec2-user", None)
    assert (web2.user, web2.address, web2.port) == ("deploy", "web2.example.com", 2222)
    assert local.connection == "local"
    assert (v6.address, v6.user, v6.port) == ("2001:db8::1", "ops", 22)


def test_user_on_localhost_means_ssh() -> None:
    host = InventoryLoader.parse_entry("root@localhost")

    assert host.connection == "ssh"
    assert host.user == "root"


def test_empty_inventory_raises(tmp_path: Path) -> None:
    path = tmp_path / "hosts"
    path.write_text("# nothing here\n\n")

    with pytest.raises(TaskListError):
        InventoryLoader().load(path)


def test_invalid_entry_reports_line(tmp_path: Path) -> None:
    path = tmp_path / "hosts"
    path.write_text("web1\nweb 2 extra\n")

    with pytest.raises(TaskListError) as excinfo:
        InventoryLoader().load(path)

    assert ":2" in str(excinfo.value)


def test_missing_inventory_raises(tmp_path: Path) -> None:
    with pytest.raises(TaskListError):
        InventoryLoader().load(tmp_path / "hosts")
