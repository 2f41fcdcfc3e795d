"""Internal constants shared across the library."""

SUPPORTED_SIZES: tuple[int, ...] = (8, 16, 32, 64, 128)
DEFAULT_SIZE = 8

DEFAULT_DATABASE_ROOT = "entries"
DEFAULT_TOPIC_PREFIX = "crossbar"
DEFAULT_MQTT_PORT = 1883
DEFAULT_MQTT_TLS_PORT = 8883

USER_AGENT = "pycrossbar"

# Characters a realtime database refuses in a path segment.
FIREBASE_FORBIDDEN_KEY_CHARS = ".#$[]/"

# Outbound documents remembered per key for self-echo detection.
ECHO_HISTORY = 32
