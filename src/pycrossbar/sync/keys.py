"""Remote-key derivation from human-readable entry names."""

from __future__ import annotations

import enum
import re

from pycrossbar._constants import FIREBASE_FORBIDDEN_KEY_CHARS


class KeyPolicy(enum.StrEnum):
    """Character restrictions of a backing store."""

    STRICT = "strict"
    FIREBASE = "firebase"


_PATTERNS: dict[KeyPolicy, re.Pattern[str]] = {
    # Letters, digits, hyphen and underscore survive; everything else is replaced.
    KeyPolicy.STRICT: re.compile(r"[^A-Za-z0-9_-]"),
    KeyPolicy.FIREBASE: re.compile("[" + re.escape(FIREBASE_FORBIDDEN_KEY_CHARS) + "]"),
}


def sanitize_key(name: str, policy: KeyPolicy = KeyPolicy.STRICT) -> str:
    """Return the remote-store key for *name*.

    Every character outside the policy's allowed set becomes ``_``. The
    same function must back writes, reads and deletes, otherwise an entry
    written under one key is deleted under another and left orphaned.

    >>> sanitize_key("Wafer A.1")
    'Wafer_A_1'
    >>> sanitize_key("Wafer A.1", KeyPolicy.FIREBASE)
    'Wafer A_1'
    """
    return _PATTERNS[KeyPolicy(policy)].sub("_", name)
