"""Cryptographic primitives for shared-broker payloads."""

from __future__ import annotations

from pycrossbar._crypto.aes import aes_decrypt_utf8, aes_encrypt_hex, parse_key

__all__ = [
    "aes_decrypt_utf8",
    "aes_encrypt_hex",
    "parse_key",
]
