"""
Test layered configuration (defaults < file < overrides).

Usage:
    pytest test_config.py
"""

import pytest

from htcontrol_config import (
    DEFAULTS,
    ConfigurationError,
    Settings,
    environment_overrides,
    load_yaml_config,
    resolve,
)


def write_config(tmp_path, text, name="htcontrol.yaml"):
    path = tmp_path / name
    path.write_text(text)
    return path


def test_precedence_defaults_file_override(tmp_path):
    """File beats defaults, overrides beat the file, no file keeps defaults."""
    config = write_config(tmp_path, "broker: B\n")

    assert resolve({"broker": "A"}, config, {}).get("broker") == "B"
    assert resolve({"broker": "A"}, config, {"broker": "C"}).get("broker") == "C"
    assert resolve({"broker": "A"}, None, {}).get("broker") == "A"


def test_absent_and_empty_values_never_erase(tmp_path):
    config = write_config(tmp_path, "status_topic: house/status\n")

    settings = resolve(DEFAULTS, config, {"broker": "", "username": None})

    assert settings.get("broker") == DEFAULTS["broker"]
    assert settings.status_topic == "house/status"
    assert settings.control_topic == "ht/control"


def test_file_keys_accept_cli_spelling(tmp_path):
    config = write_config(tmp_path, "control-topic: den/control\nunknown_key: 1\n")

    settings = resolve(DEFAULTS, config)

    assert settings.control_topic == "den/control"
    assert settings.get("unknown_key") is None


def test_scalars_are_strings(tmp_path):
    config = write_config(tmp_path, "qos: 1\ncec_address: 4\n")

    settings = resolve(DEFAULTS, config)

    assert settings.get("qos") == "1"
    assert settings.qos == 1
    assert settings.get("cec_address") == "4"


def test_devices_table_from_file(tmp_path):
    config = write_config(tmp_path, "devices:\n  projector: ir\n  tv: cec\n")

    settings = resolve(DEFAULTS, config)

    assert dict(settings.devices) == {"projector": "ir", "tv": "cec"}


def test_devices_must_be_mapping(tmp_path):
    config = write_config(tmp_path, "devices: [tv]\n")

    with pytest.raises(ConfigurationError):
        resolve(DEFAULTS, config)


def test_home_directory_expansion(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    write_config(tmp_path, "broker: home.local\n", name=".htcontrol.yaml")

    assert load_yaml_config("~/.htcontrol.yaml") == {"broker": "home.local"}


@pytest.mark.parametrize("text", [
    "",                      # empty document
    "broker: [unclosed\n",   # YAML syntax error
    "- a\n- b\n",            # not a mapping
])
def test_bad_config_file_is_fatal(tmp_path, text):
    config = write_config(tmp_path, text)

    with pytest.raises(ConfigurationError):
        resolve(DEFAULTS, config)


def test_missing_config_file_is_fatal(tmp_path):
    with pytest.raises(ConfigurationError, match="Cannot read"):
        resolve(DEFAULTS, tmp_path / "nope.yaml")


def test_settings_are_immutable():
    source = {"broker": "A", "devices": {"tv": "cec"}}
    settings = Settings(source)

    source["broker"] = "changed"
    source["devices"]["tv"] = "ir"

    assert settings.get("broker") == "A"
    assert settings.devices["tv"] == "cec"
    with pytest.raises(TypeError):
        settings.values["broker"] = "B"


def test_get_fallbacks():
    settings = Settings({"broker": "A"})

    assert settings.get("missing") is None
    assert settings.get("missing", "fallback") == "fallback"


@pytest.mark.parametrize("broker, host, port", [
    ("127.0.0.1:1883", "127.0.0.1", 1883),
    ("tcp://mqtt.local:1884", "mqtt.local", 1884),
    ("mqtt.local", "mqtt.local", 1883),
])
def test_broker_address(broker, host, port):
    settings = Settings({"broker": broker})

    assert settings.broker_host == host
    assert settings.broker_port == port


@pytest.mark.parametrize("broker", ["mqtt.local:abc", "mqtt.local:70000", ":1883"])
def test_bad_broker_address(broker):
    with pytest.raises(ConfigurationError):
        Settings({"broker": broker}).broker_port


def test_subscribe_topic():
    settings = Settings({"control_topic": "ht/control/", "subscribe_wildcard": "#"})

    assert settings.subscribe_topic == "ht/control/#"


def test_environment_overrides():
    environ = {"MQTT_broker": "env.local", "MQTT_username": "", "HOME": "/root"}

    assert environment_overrides(environ) == {"broker": "env.local"}
