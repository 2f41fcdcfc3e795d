from __future__ import annotations

import pytest

from pycrossbar.config import Backend, MqttSettings, TrackerConfig
from pycrossbar.exceptions import ConfigError
from pycrossbar.sync.keys import KeyPolicy

_VARS = (
    "CROSSBAR_BACKEND",
    "CROSSBAR_DATABASE_URL",
    "CROSSBAR_DATABASE_ROOT",
    "CROSSBAR_STORAGE_PATH",
    "CROSSBAR_KEY_POLICY",
    "CROSSBAR_PUSH_RETRIES",
    "CROSSBAR_MQTT_HOST",
    "CROSSBAR_MQTT_PORT",
    "CROSSBAR_MQTT_TLS",
    "CROSSBAR_MQTT_PAYLOAD_KEY",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults_are_local_with_strict_keys() -> None:
    config = TrackerConfig()
    assert config.backend == Backend.LOCAL
    assert config.effective_key_policy == KeyPolicy.STRICT


def test_firebase_requires_database_url() -> None:
    with pytest.raises(ConfigError, match="database_url"):
        TrackerConfig(backend=Backend.FIREBASE)
    config = TrackerConfig(backend="firebase", database_url="https://db.example")  # type: ignore[arg-type]
    assert config.backend is Backend.FIREBASE
    assert config.effective_key_policy == KeyPolicy.FIREBASE


def test_unknown_backend_is_a_config_error() -> None:
    with pytest.raises(ConfigError):
        TrackerConfig(backend="carrier-pigeon")  # type: ignore[arg-type]


@pytest.mark.parametrize(
    "kwargs",
    [{"push_retries": 0}, {"request_timeout": 0}, {"reachability_interval": -1}],
)
def test_numeric_bounds(kwargs: dict[str, float]) -> None:
    with pytest.raises(ConfigError):
        TrackerConfig(**kwargs)  # type: ignore[arg-type]


def test_from_env_reads_crossbar_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CROSSBAR_BACKEND", "MQTT")
    monkeypatch.setenv("CROSSBAR_MQTT_HOST", "broker.lab")
    monkeypatch.setenv("CROSSBAR_MQTT_PORT", "8883")
    monkeypatch.setenv("CROSSBAR_MQTT_TLS", "yes")
    monkeypatch.setenv("CROSSBAR_PUSH_RETRIES", "5")

    config = TrackerConfig.from_env()

    assert config.backend == Backend.MQTT
    assert config.mqtt == MqttSettings(host="broker.lab", port=8883, tls=True)
    assert config.push_retries == 5


def test_from_env_overrides_win(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CROSSBAR_BACKEND", "firebase")
    monkeypatch.setenv("CROSSBAR_DATABASE_URL", "https://db.example")

    config = TrackerConfig.from_env(backend="local", mqtt={"topic_prefix": "lab"})

    assert config.backend == Backend.LOCAL
    assert config.mqtt.topic_prefix == "lab"


def test_from_env_rejects_malformed_numbers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CROSSBAR_MQTT_PORT", "eighteen")
    with pytest.raises(ConfigError):
        TrackerConfig.from_env()
