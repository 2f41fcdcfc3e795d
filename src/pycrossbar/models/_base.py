"""Base model and timestamp helpers for crossbar documents.

Every document model inherits from :class:`CrossbarBaseModel` which
provides:

* ``alias_generator=to_camel`` so camelCase document keys map
  automatically to snake_case fields.
* ISO-8601 UTC serialization with millisecond precision and a ``Z``
  suffix, the format browsers produce with ``Date.toISOString()``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(UTC)


def format_instant(value: datetime) -> str:
    """Render *value* as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_instant(value: Any) -> datetime | None:
    """Coerce ISO strings or epoch milliseconds to an aware UTC datetime.

    Returns ``None`` for ``None`` and empty strings. Strings are left to
    pydantic when they are not ISO formatted so the error names the field.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=UTC)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return value  # type: ignore[return-value]
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    return value  # type: ignore[no-any-return]


Instant = Annotated[
    datetime,
    BeforeValidator(parse_instant),
    PlainSerializer(format_instant, return_type=str, when_used="json"),
]
"""Annotated datetime that reads ISO/epoch-ms and writes ISO ``Z`` strings."""


class CrossbarBaseModel(BaseModel):
    """Base for stored and exported documents."""

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )
