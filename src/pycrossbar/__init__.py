"""pycrossbar - Collaborative crossbar-array measurement tracker."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pycrossbar")
except PackageNotFoundError:
    __version__ = "0+local"
from pycrossbar.config import Backend, MqttSettings, TrackerConfig
from pycrossbar.exceptions import (
    ConfigError,
    CrossbarError,
    CryptoError,
    DuplicateNameError,
    InvalidCoordinateError,
    InvalidFormatError,
    NotFoundError,
    RemoteError,
    RemoteReadError,
    RemoteWriteError,
)
from pycrossbar.models import (
    ExportDocument,
    MeasurementGrid,
    MeasurementState,
    Statistics,
    next_state,
)
from pycrossbar.state.context import SyncContext
from pycrossbar.state.events import ChangeKind, ChangeOrigin, EntryChange
from pycrossbar.state.store import EntryStore
from pycrossbar.sync.engine import ConnectivityStatus, SyncEngine
from pycrossbar.sync.keys import KeyPolicy, sanitize_key
from pycrossbar.tracker import CrossbarTracker, build_remote_store

__all__ = [
    "__version__",
    "Backend",
    "ChangeKind",
    "ChangeOrigin",
    "ConfigError",
    "ConnectivityStatus",
    "CrossbarError",
    "CrossbarTracker",
    "CryptoError",
    "DuplicateNameError",
    "EntryChange",
    "EntryStore",
    "ExportDocument",
    "InvalidCoordinateError",
    "InvalidFormatError",
    "KeyPolicy",
    "MeasurementGrid",
    "MeasurementState",
    "MqttSettings",
    "NotFoundError",
    "RemoteError",
    "RemoteReadError",
    "RemoteWriteError",
    "Statistics",
    "SyncContext",
    "SyncEngine",
    "TrackerConfig",
    "build_remote_store",
    "next_state",
    "sanitize_key",
]
