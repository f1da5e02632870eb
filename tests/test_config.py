import os
from unittest import mock
from relay_supervisor import config


def test_settings_defaults(tmp_path):
    # Mock environment to be empty apart from the config home
    with mock.patch.dict(os.environ, {"XDG_CONFIG_HOME": str(tmp_path)}, clear=True):
        settings = config._read_settings()
        assert settings.BOT_TOKEN is None
        assert settings.ALLOWED_CHAT_IDS == set()
        assert settings.RELAY_PORT is None
        assert settings.LOG_LEVEL == "INFO"
        assert settings.NOTIFY_ON_ACTIONS is False
        assert settings.RELAY_CONFIG_PATH == str(tmp_path / "relay-supervisor" / "config.json")
        assert settings.RELAY_STATE_PATH == str(tmp_path / "relay-supervisor" / "state.json")


def test_settings_custom():
    env = {
        "BOT_TOKEN": "123:ABC",
        "ALLOWED_CHAT_IDS": "123, 456, nope",
        "RELAY_PORT": " /dev/ttyUSB1 ",
        "RELAY_CONFIG_PATH": "/etc/relay/config.json",
        "LOG_LEVEL": "debug",
        "NOTIFY_ON_ACTIONS": "Yes",
    }
    with mock.patch.dict(os.environ, env, clear=True):
        settings = config._read_settings()
        assert settings.BOT_TOKEN == "123:ABC"
        assert settings.ALLOWED_CHAT_IDS == {123, 456}
        assert settings.RELAY_PORT == "/dev/ttyUSB1"
        assert settings.RELAY_CONFIG_PATH == "/etc/relay/config.json"
        assert settings.LOG_LEVEL == "DEBUG"
        assert settings.NOTIFY_ON_ACTIONS is True


def test_split_ints():
    assert config._split_ints("1,-2, x ,3") == {1, -2, 3}
    assert config._split_ints("") == set()
