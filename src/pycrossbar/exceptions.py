"""Custom exception hierarchy for pycrossbar."""

from __future__ import annotations


class CrossbarError(Exception):
    """Base exception for all pycrossbar errors."""


class ConfigError(CrossbarError):
    """Invalid or missing configuration."""


class CryptoError(CrossbarError):
    """Payload encryption or decryption failure."""


class DuplicateNameError(CrossbarError):
    """An entry with this name (or the same sanitized key) already exists."""

    def __init__(self, message: str, *, name: str = "") -> None:
        self.name = name
        super().__init__(message)


class NotFoundError(CrossbarError):
    """Unknown entry name or cell index outside ``[0, size²)``."""

    def __init__(self, message: str, *, name: str = "") -> None:
        self.name = name
        super().__init__(message)


class InvalidFormatError(CrossbarError):
    """Import document is malformed or misses required fields."""


class InvalidCoordinateError(CrossbarError):
    """Electrode coordinate outside ``[0, size)`` or not a number."""


class RemoteError(CrossbarError):
    """Failure talking to the backing remote store."""

    def __init__(
        self,
        message: str,
        *,
        key: str = "",
        status_code: int | None = None,
    ) -> None:
        self.key = key
        self.status_code = status_code
        super().__init__(message)


class RemoteWriteError(RemoteError):
    """A put or tombstone was rejected or timed out.

    Local state is never rolled back when this is raised; the optimistic
    value stands until a later push succeeds or a remote change overwrites it.
    """


class RemoteReadError(RemoteError):
    """The change stream or a read request failed."""
