import pytest
from pydantic import ValidationError

from bridge.config import BridgeSettings


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("OPENCLAW_CONFIG_FILE", raising=False)
    monkeypatch.delenv("OPENCLAW_GATEWAY_TOKEN", raising=False)
    monkeypatch.delenv("OPENCLAW_GATEWAY_URL", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))


def test_defaults():
    settings = BridgeSettings()

    assert str(settings.gateway_url).startswith("ws://127.0.0.1:18789")
    assert settings.gateway_token is None
    assert settings.protocol_min == 3
    assert settings.protocol_max == 3
    assert settings.role == "operator"
    assert settings.reconnect_delay_seconds == 5.0
    assert settings.connect_timeout_seconds == 15.0
    assert settings.request_timeout_seconds == 30.0
    assert settings.auto_reconnect


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("OPENCLAW_GATEWAY_TOKEN", "from-env")
    monkeypatch.setenv("OPENCLAW_GATEWAY_URL", "wss://gateway.example:443/ws")
    monkeypatch.setenv("OPENCLAW_LOG_LEVEL", "debug")

    settings = BridgeSettings()

    assert settings.gateway_token == "from-env"
    assert settings.gateway_url.scheme == "wss"
    assert settings.log_level == "DEBUG"


def test_token_is_not_in_repr():
    settings = BridgeSettings(gateway_token="super-secret")

    assert "super-secret" not in repr(settings)


def test_yaml_config_file(monkeypatch, tmp_path):
    config = tmp_path / "bridge.yaml"
    config.write_text(
        "gateway_token: yaml-token\nreconnect_delay_seconds: 1.5\nscopes:\n  - operator.read\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("OPENCLAW_CONFIG_FILE", str(config))

    settings = BridgeSettings()

    assert settings.gateway_token == "yaml-token"
    assert settings.reconnect_delay_seconds == 1.5
    assert settings.scopes == ["operator.read"]
    assert settings.config_path == config


def test_yaml_wins_over_env(monkeypatch, tmp_path):
    config = tmp_path / "bridge.yaml"
    config.write_text("gateway_token: yaml-token\n", encoding="utf-8")
    monkeypatch.setenv("OPENCLAW_CONFIG_FILE", str(config))
    monkeypatch.setenv("OPENCLAW_GATEWAY_TOKEN", "env-token")

    assert BridgeSettings().gateway_token == "yaml-token"


def test_non_mapping_config_is_rejected(monkeypatch, tmp_path):
    config = tmp_path / "bridge.yaml"
    config.write_text("- just\n- a list\n", encoding="utf-8")
    monkeypatch.setenv("OPENCLAW_CONFIG_FILE", str(config))

    with pytest.raises(ValueError):
        BridgeSettings()


def test_http_url_is_rejected():
    with pytest.raises(ValidationError):
        BridgeSettings(gateway_url="http://127.0.0.1:18789")
