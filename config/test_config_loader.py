import pytest
from pydantic import ValidationError

from config.config_loader import ConfigLoader, ToggleSettings


def test_defaults():
    settings = ToggleSettings()

    assert settings.interval == 2
    assert settings.retry == 2
    assert settings.config_file == "toggle.conf"
    assert settings.status_port == 0
    assert settings.reload_command == ["systemctl", "reload", "nginx"]


def test_yaml_then_flags(tmp_path):
    path = tmp_path / "toggle.yaml"
    path.write_text("interval: 5\nretry: 3\nnginx_dir: /tmp/nginx\nlog_level: debug\n")

    settings = ToggleSettings.build(str(path), {"interval": 1, "retry": None})

    assert settings.interval == 1
    assert settings.retry == 3
    assert settings.nginx_dir == "/tmp/nginx"
    assert settings.log_level == "DEBUG"


def test_empty_yaml(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")

    assert ConfigLoader(str(path)).load() == {}


@pytest.mark.parametrize("values", [
    {"interval": 0},
    {"retry": 0},
    {"status_port": -1},
    {"follower": True, "status_port": 0, "main_address": "10.0.0.9"},
    {"follower": True, "status_port": 8080, "main_address": ""},
])
def test_invalid_settings(values):
    with pytest.raises(ValidationError):
        ToggleSettings(**values)


def test_follower_settings():
    settings = ToggleSettings(follower=True, status_port=8080, main_address="10.0.0.9")

    assert settings.follower
