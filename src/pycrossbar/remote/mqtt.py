"""Peer-replicated store over retained MQTT messages.

Each entry is the retained message on ``{prefix}/entries/{key}``; an
empty retained payload is the tombstone. Every peer subscribed to
``{prefix}/entries/+`` receives the retained snapshot on connect and
every later publish, its own included.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from typing import Any, cast

import paho.mqtt.client as mqtt

from pycrossbar._crypto.aes import aes_decrypt_utf8, aes_encrypt_hex, parse_key
from pycrossbar._redact import summarize_for_log
from pycrossbar.config import MqttSettings
from pycrossbar.exceptions import CrossbarError, RemoteReadError, RemoteWriteError
from pycrossbar.remote.base import ChangeCallback, ConnectivityCallback, RemoteValue, Subscribers, Subscription

_logger = logging.getLogger(__name__)

_TOPIC_FORBIDDEN = frozenset("+#/")


def encode_document(value: RemoteValue, payload_key: str | None = None) -> bytes:
    """Serialize an entry document (or tombstone) into a message payload."""
    if value is None:
        return b""
    text = json.dumps(value, separators=(",", ":"))
    if payload_key:
        return aes_encrypt_hex(text, payload_key).encode("ascii")
    return text.encode("utf-8")


def decode_document(payload: bytes, payload_key: str | None = None) -> RemoteValue:
    """Parse a message payload; an empty payload is a tombstone.

    Raises
    ------
    RemoteReadError
        If the payload is not a JSON object.
    CryptoError
        If a payload key is configured and decryption fails.
    """
    if not payload:
        return None
    if payload_key:
        # Some bridges re-wrap long hex payloads.
        cipher_hex = "".join(payload.decode("ascii", errors="replace").split())
        text = aes_decrypt_utf8(cipher_hex, payload_key)
    else:
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise RemoteReadError(f"Entry payload is not UTF-8: {exc}") from exc
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise RemoteReadError(f"Entry payload is not JSON: {text[:64]}") from exc
    if not isinstance(parsed, dict):
        raise RemoteReadError("Entry payload decoded to non-object JSON")
    return parsed


class MqttRemoteStore:
    """Threaded paho-mqtt store that emits changes onto an asyncio loop."""

    def __init__(
        self,
        settings: MqttSettings,
        *,
        client_id: str | None = None,
        publish_timeout: float = 10.0,
        logger: logging.Logger | None = None,
    ) -> None:
        if settings.payload_key:
            parse_key(settings.payload_key)
        self._settings = settings
        self._client_id = client_id or f"crossbar_{secrets.token_hex(6)}"
        self._publish_timeout = publish_timeout
        self._logger = logger or _logger
        self._prefix = settings.topic_prefix.strip("/")
        self._client: mqtt.Client | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._changes = Subscribers()
        self._connectivity = Subscribers()
        self._documents: dict[str, dict[str, Any]] = {}
        self._connected = False

    @property
    def entries_filter(self) -> str:
        return f"{self._prefix}/entries/+"

    def topic_for(self, key: str) -> str:
        return f"{self._prefix}/entries/{key}"

    def key_from_topic(self, topic: str) -> str | None:
        prefix = f"{self._prefix}/entries/"
        if not topic.startswith(prefix):
            return None
        key = topic[len(prefix) :]
        return key or None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect in the background; paho keeps reconnecting on its own."""
        if self._client is not None:
            return
        self._loop = loop = asyncio.get_running_loop()
        settings = self._settings
        self._logger.debug(
            "MQTT store start host=%s port=%s filter=%s client_id=%s",
            settings.host,
            settings.port,
            self.entries_filter,
            self._client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if settings.username:
            client.username_pw_set(settings.username, settings.password)
        if settings.tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.debug("MQTT connected, subscribing filter=%s", self.entries_filter)
            c.subscribe(self.entries_filter, qos=1)
            loop.call_soon_threadsafe(self._set_connected, True)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            key = self.key_from_topic(msg.topic)
            if key is None:
                return
            try:
                document = decode_document(msg.payload, settings.payload_key)
            except CrossbarError:
                self._logger.warning("Undecodable entry payload topic=%s", msg.topic, exc_info=True)
                return
            self._logger.debug("MQTT message key=%s document=%s", key, summarize_for_log(document))
            loop.call_soon_threadsafe(self._deliver, key, document)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            self._logger.debug("MQTT disconnected: %s", reason_code)
            loop.call_soon_threadsafe(self._set_connected, False)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect_async(settings.host, settings.port, keepalive=settings.keepalive)
        client.loop_start()
        self._client = client

    async def close(self) -> None:
        client = self._client
        self._client = None
        if client is None:
            return
        loop = self._loop or asyncio.get_running_loop()

        def shutdown() -> None:
            try:
                client.disconnect()
            finally:
                client.loop_stop()

        await loop.run_in_executor(None, shutdown)
        self._set_connected(False)
        self._loop = None
        self._logger.debug("MQTT network loop stopped")

    def _require_client(self) -> mqtt.Client:
        if self._client is None or self._loop is None:
            raise CrossbarError("Store not started. Await 'start()' first.")
        return self._client

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def put(self, key: str, value: RemoteValue) -> None:
        """Publish *value* as the retained entry for *key*.

        While disconnected paho keeps QoS 1 messages queued and sends them
        after reconnecting; the wait here only bounds how long the caller
        hears nothing before a :class:`RemoteWriteError`.
        """
        client = self._require_client()
        assert self._loop is not None  # noqa: S101
        if not key or _TOPIC_FORBIDDEN & set(key):
            raise RemoteWriteError(f"Key {key!r} is not a valid topic level", key=key)
        payload = encode_document(value, self._settings.payload_key)
        info = client.publish(self.topic_for(key), payload, qos=1, retain=True)
        if info.rc == mqtt.MQTT_ERR_NO_CONN:
            raise RemoteWriteError(f"Broker unreachable; publish for {key} queued until reconnect", key=key)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise RemoteWriteError(f"Publish for {key} rejected: {mqtt.error_string(info.rc)}", key=key)
        try:
            await self._loop.run_in_executor(None, info.wait_for_publish, self._publish_timeout)
        except (RuntimeError, ValueError) as exc:
            raise RemoteWriteError(f"Publish for {key} failed: {exc}", key=key) from exc
        if not info.is_published():
            raise RemoteWriteError(f"Publish for {key} not acknowledged within {self._publish_timeout}s", key=key)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, on_change: ChangeCallback) -> Subscription:
        handle = self._changes.add(on_change)
        if self._loop is not None and self._documents:
            initial = dict(self._documents)

            def deliver_initial() -> None:
                for key, document in initial.items():
                    if handle.cancelled:
                        return
                    on_change(key, document)

            self._loop.call_soon(deliver_initial)
        return handle

    def subscribe_connectivity(self, on_status: ConnectivityCallback) -> Subscription | None:
        return self._connectivity.add(on_status)

    def _set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        self._connectivity.notify(connected)

    def _deliver(self, key: str, document: RemoteValue) -> None:
        if document is None:
            self._documents.pop(key, None)
        else:
            self._documents[key] = document
        self._changes.notify(key, document)
