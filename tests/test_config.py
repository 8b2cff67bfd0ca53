from pathlib import Path

import pytest

from rollout_automation.config import RolloutConfig, load_config
from rollout_automation.errors import TaskListError


def test_load_config_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "missing.conf")
    assert isinstance(config, RolloutConfig)
    assert config.tasklist is None
    assert config.forks == 1
    assert config.connect_timeout == 10


def test_load_config_overrides(tmp_path: Path) -> None:
    cfg_path = tmp_path / "main.conf"
    cfg_path.write_text(
        """
        [defaults]
        tasklist = "/opt/rollout/deploy.toml"
        hosts_file = "/opt/rollout/hosts"
        user = "deploy"
        forks = 4
        ssh_options = "StrictHostKeyChecking=accept-new"
        connect_timeout = 3
        aws_region = "ap-southeast-2"
        aws_profile = "myprofile"
        """
    )

    config = load_config(cfg_path)
    assert config.tasklist == Path("/opt/rollout/deploy.toml")
    assert config.hosts_file == Path("/opt/rollout/hosts")
    assert config.user == "deploy"
    assert config.forks == 4
    assert config.ssh_options == ["StrictHostKeyChecking=accept-new"]
    assert config.connect_timeout == 3
    assert config.aws_region == "ap-southeast-2"
    assert config.aws_profile == "myprofile"


def test_load_config_rejects_bad_toml(tmp_path: Path) -> None:
    cfg_path = tmp_path / "main.conf"
    cfg_path.write_text("[defaults\n")

    with pytest.raises(TaskListError):
        load_config(cfg_path)
