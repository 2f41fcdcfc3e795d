"""Tracker configuration for pycrossbar."""

from __future__ import annotations

import dataclasses
import enum
import os
from typing import Any

from pycrossbar._constants import DEFAULT_DATABASE_ROOT, DEFAULT_MQTT_PORT, DEFAULT_TOPIC_PREFIX
from pycrossbar.exceptions import ConfigError
from pycrossbar.sync.keys import KeyPolicy


class Backend(enum.StrEnum):
    """Which RemoteStore variant backs the tracker."""

    LOCAL = "local"
    FIREBASE = "firebase"
    MQTT = "mqtt"


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class MqttSettings:
    """Broker connection fields for the MQTT gossip store."""

    host: str = "localhost"
    port: int = DEFAULT_MQTT_PORT
    tls: bool = False
    username: str | None = None
    password: str | None = None
    topic_prefix: str = DEFAULT_TOPIC_PREFIX
    keepalive: int = 60
    payload_key: str | None = None


@dataclasses.dataclass(frozen=True)
class TrackerConfig:
    """Tracker configuration.

    Parameters
    ----------
    backend : Backend
        Which remote store to synchronize through. ``local`` keeps data
        in-process and, when ``storage_path`` is set, in a JSON snapshot.
    database_url : str or None
        Realtime database base URL (``firebase`` backend only).
    database_root : str
        Collection path under the database URL holding the entries.
    mqtt : MqttSettings
        Broker settings (``mqtt`` backend only).
    storage_path : str or None
        Snapshot file for the ``local`` backend.
    key_policy : KeyPolicy
        Character set used to derive remote keys from entry names.
        Defaults to the policy matching the backend.
    push_retries : int
        Attempts per remote write before it is reported as failed.
    request_timeout : float
        Seconds before a single remote request is abandoned.
    reachability_url : str or None
        URL polled for a connectivity signal when the store has none.
    reachability_interval : float
        Seconds between reachability polls.
    """

    backend: Backend = Backend.LOCAL
    database_url: str | None = None
    database_root: str = DEFAULT_DATABASE_ROOT
    mqtt: MqttSettings = dataclasses.field(default_factory=MqttSettings)
    storage_path: str | None = None
    key_policy: KeyPolicy | None = None
    push_retries: int = 3
    request_timeout: float = 10.0
    reachability_url: str | None = None
    reachability_interval: float = 30.0

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "backend", Backend(self.backend))
            if self.key_policy is not None:
                object.__setattr__(self, "key_policy", KeyPolicy(self.key_policy))
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
        if self.backend == Backend.FIREBASE and not self.database_url:
            raise ConfigError("database_url is required for the firebase backend")
        if self.backend == Backend.MQTT and not self.mqtt.host:
            raise ConfigError("mqtt.host is required for the mqtt backend")
        if self.push_retries < 1:
            raise ConfigError(f"push_retries must be >= 1, got {self.push_retries}")
        if self.request_timeout <= 0:
            raise ConfigError(f"request_timeout must be positive, got {self.request_timeout}")
        if self.reachability_interval <= 0:
            raise ConfigError(f"reachability_interval must be positive, got {self.reachability_interval}")

    @property
    def effective_key_policy(self) -> KeyPolicy:
        """Key policy in force, falling back to the backend's own restrictions."""
        if self.key_policy is not None:
            return self.key_policy
        if self.backend == Backend.FIREBASE:
            return KeyPolicy.FIREBASE
        return KeyPolicy.STRICT

    @classmethod
    def from_env(cls, **overrides: Any) -> TrackerConfig:
        """Create configuration from environment variables.

        Reads ``CROSSBAR_*`` variables. Explicit keyword arguments override
        environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        TrackerConfig
            Populated configuration.

        Raises
        ------
        ConfigError
            If a variable holds a value of the wrong shape.
        """
        env = os.environ

        mqtt_kwargs: dict[str, Any] = {}
        _ENV_MQTT_MAP = {
            "CROSSBAR_MQTT_HOST": "host",
            "CROSSBAR_MQTT_USERNAME": "username",
            "CROSSBAR_MQTT_PASSWORD": "password",
            "CROSSBAR_MQTT_TOPIC_PREFIX": "topic_prefix",
            "CROSSBAR_MQTT_PAYLOAD_KEY": "payload_key",
        }
        for env_key, field_name in _ENV_MQTT_MAP.items():
            val = env.get(env_key)
            if val is not None:
                mqtt_kwargs[field_name] = val
        try:
            port_env = env.get("CROSSBAR_MQTT_PORT")
            if port_env is not None:
                mqtt_kwargs["port"] = int(port_env)
            keepalive_env = env.get("CROSSBAR_MQTT_KEEPALIVE")
            if keepalive_env is not None:
                mqtt_kwargs["keepalive"] = int(keepalive_env)
        except ValueError as exc:
            raise ConfigError(f"Invalid MQTT numeric setting: {exc}") from exc
        if "CROSSBAR_MQTT_TLS" in env:
            mqtt_kwargs["tls"] = _env_bool(env.get("CROSSBAR_MQTT_TLS"), False)

        # Allow overriding mqtt fields via a nested dict
        mqtt_overrides = overrides.pop("mqtt", None)
        if isinstance(mqtt_overrides, dict):
            mqtt_kwargs.update(mqtt_overrides)
        elif isinstance(mqtt_overrides, MqttSettings):
            mqtt_kwargs = dataclasses.asdict(mqtt_overrides)

        config_kwargs: dict[str, Any] = {"mqtt": MqttSettings(**mqtt_kwargs)}

        _ENV_CONFIG_MAP = {
            "CROSSBAR_DATABASE_URL": "database_url",
            "CROSSBAR_DATABASE_ROOT": "database_root",
            "CROSSBAR_STORAGE_PATH": "storage_path",
            "CROSSBAR_REACHABILITY_URL": "reachability_url",
        }
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        try:
            backend_env = env.get("CROSSBAR_BACKEND")
            if backend_env is not None:
                config_kwargs["backend"] = Backend(backend_env.strip().lower())
            policy_env = env.get("CROSSBAR_KEY_POLICY")
            if policy_env is not None:
                config_kwargs["key_policy"] = KeyPolicy(policy_env.strip().lower())
            retries_env = env.get("CROSSBAR_PUSH_RETRIES")
            if retries_env is not None:
                config_kwargs["push_retries"] = int(retries_env)
            timeout_env = env.get("CROSSBAR_REQUEST_TIMEOUT")
            if timeout_env is not None:
                config_kwargs["request_timeout"] = float(timeout_env)
            interval_env = env.get("CROSSBAR_REACHABILITY_INTERVAL")
            if interval_env is not None:
                config_kwargs["reachability_interval"] = float(interval_env)
        except ValueError as exc:
            raise ConfigError(f"Invalid CROSSBAR_* setting: {exc}") from exc

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
