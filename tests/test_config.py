"""Tests for configuration loading and validation."""

import json
from datetime import timedelta

import pytest

from core.config import Config, ConfigError, find_config_file, load_config

YAML_CONFIG = """
listen: "127.0.0.1:8080"
apps:
  - name: backup
    token: s3cr3t
    timeout: 1h30m
    repeat_interval: 10m
    notify: [pager, hook]
receivers:
  pushover:
    - name: pager
      user_key: ukey
      token: ptoken
      priority: 1
  webhook:
    - name: hook
      url: https://hooks.example.com/alive
"""


def _raw_config(**app_overrides):
    app = {
        "name": "backup",
        "token": "s3cr3t",
        "timeout": "30s",
        "repeat_interval": "5m",
        "notify": ["pager"],
    }
    app.update(app_overrides)
    return {
        "apps": [app],
        "receivers": {
            "pushover": [{"name": "pager", "user_key": "u", "token": "t"}],
        },
    }


def test_load_yaml_config_parses_apps_and_receivers(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(YAML_CONFIG)

    config = load_config(path)

    app = config.apps[0]
    assert app.name == "backup"
    assert app.timeout == timedelta(hours=1, minutes=30)
    assert app.repeat_interval == timedelta(minutes=10)
    assert app.notify == ("pager", "hook")
    assert config.receivers.pushover[0].priority == 1
    assert config.receivers.webhook[0].url == "https://hooks.example.com/alive"
    assert config.listen_address() == ("127.0.0.1", 8080)


def test_load_json_and_toml_configs(tmp_path):
    json_path = tmp_path / "config.json"
    json_path.write_text(json.dumps(_raw_config()))
    assert load_config(json_path).apps[0].timeout == timedelta(seconds=30)

    toml_path = tmp_path / "config.toml"
    toml_path.write_text(
        "\n".join(
            [
                'listen = ":9000"',
                "[[apps]]",
                'name = "cron"',
                'token = "abc"',
                'timeout = "2m"',
                'repeat_interval = "1m"',
            ]
        )
    )
    config = load_config(toml_path)
    assert config.apps[0].name == "cron"
    assert config.listen_address() == ("0.0.0.0", 9000)


def test_default_listen_address_is_port_80():
    assert Config().listen_address() == ("0.0.0.0", 80)


def test_unknown_receiver_reference_names_app_and_receiver():
    raw = _raw_config(notify=["pager", "sms"])
    with pytest.raises(ValueError) as exc_info:
        Config.model_validate(raw)
    assert '"backup"' in str(exc_info.value)
    assert '"sms"' in str(exc_info.value)


@pytest.mark.parametrize(
    "overrides",
    [
        {"timeout": "thirty seconds"},
        {"repeat_interval": "5"},
        {"timeout": "0"},
        {"token": ""},
    ],
)
def test_invalid_app_settings_are_rejected(overrides):
    with pytest.raises(ValueError):
        Config.model_validate(_raw_config(**overrides))


def test_duplicate_tokens_are_rejected():
    raw = _raw_config()
    raw["apps"].append(dict(raw["apps"][0], name="other"))
    with pytest.raises(ValueError, match="reuses the token"):
        Config.model_validate(raw)


def test_duplicate_receiver_names_are_rejected():
    raw = _raw_config()
    raw["receivers"]["webhook"] = [{"name": "pager", "url": "https://x"}]
    with pytest.raises(ValueError, match="defined twice"):
        Config.model_validate(raw)


def test_load_config_wraps_validation_errors(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(_raw_config(timeout="soon")))
    with pytest.raises(ConfigError, match="invalid config file"):
        load_config(path)


def test_load_config_rejects_out_of_range_duration(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(YAML_CONFIG.replace("timeout: 1h30m", "timeout: 99999999999h"))
    with pytest.raises(ConfigError, match="invalid config file"):
        load_config(path)


def test_pushover_emergency_settings_parse_durations():
    raw = _raw_config()
    raw["receivers"]["pushover"][0].update(priority=2, retry="2m", expire="90m")

    pushover = Config.model_validate(raw).receivers.pushover[0]

    assert pushover.retry == timedelta(minutes=2)
    assert pushover.expire == timedelta(minutes=90)


@pytest.mark.parametrize(
    "overrides",
    [{"retry": "10s"}, {"expire": "4h"}, {"expire": "0"}],
)
def test_pushover_emergency_settings_outside_api_limits_are_rejected(overrides):
    raw = _raw_config()
    raw["receivers"]["pushover"][0].update(overrides)
    with pytest.raises(ValueError, match="pushover"):
        Config.model_validate(raw)


def test_load_config_missing_file_raises_config_error(tmp_path):
    with pytest.raises(ConfigError, match="cannot read config file"):
        load_config(tmp_path / "missing.yml")


def test_load_config_rejects_unsupported_suffix(tmp_path):
    path = tmp_path / "config.ini"
    path.write_text("[apps]")
    with pytest.raises(ConfigError, match="unsupported"):
        load_config(path)


def test_find_config_file_searches_paths_in_order(tmp_path):
    first = tmp_path / "etc"
    second = tmp_path / "cwd"
    first.mkdir()
    second.mkdir()
    (second / "config.yaml").write_text("apps: []")

    assert find_config_file((first, second)) == second / "config.yaml"

    (first / "config.toml").write_text("")
    assert find_config_file((first, second)) == first / "config.toml"

    with pytest.raises(ConfigError):
        find_config_file((tmp_path / "nowhere",))
