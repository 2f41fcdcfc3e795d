"""AES-CBC payload encryption for the MQTT gossip store.

Peers sharing a broker can agree on a hex key; every retained entry
document is then published as ``hex(iv || ciphertext)`` instead of plain
JSON.
"""

from __future__ import annotations

import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from pycrossbar.exceptions import CryptoError

_IV_BYTES = 16


def _parse_hex_bytes(
    value: str,
    *,
    name: str,
    allowed_nbytes: set[int] | None = None,
) -> bytes:
    text = value.strip()
    if text.startswith("0x") or text.startswith("0X"):
        text = text[2:]
    if not text:
        raise CryptoError(f"{name} is empty")
    if len(text) % 2 != 0:
        raise CryptoError(f"{name} hex length must be even (got {len(text)})")
    try:
        data = bytes.fromhex(text)
    except ValueError as exc:
        raise CryptoError(f"{name} must be hex-encoded") from exc

    if allowed_nbytes is not None and len(data) not in allowed_nbytes:
        allowed = ", ".join(str(n) for n in sorted(allowed_nbytes))
        raise CryptoError(f"{name} must be {allowed} bytes (got {len(data)})")
    return data


def parse_key(key_hex: str) -> bytes:
    """Validate a 16/24/32-byte hex key."""
    return _parse_hex_bytes(key_hex, name="AES key", allowed_nbytes={16, 24, 32})


def aes_encrypt_hex(plaintext: str, key_hex: str) -> str:
    """AES-CBC encrypt with a random IV, returning uppercase ``hex(iv || ct)``.

    Raises
    ------
    CryptoError
        If the key is malformed or encryption fails.
    """
    key = parse_key(key_hex)
    try:
        iv = os.urandom(_IV_BYTES)
        padder = padding.PKCS7(128).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ct = encryptor.update(padded) + encryptor.finalize()
        return (iv + ct).hex().upper()
    except Exception as exc:
        raise CryptoError(f"AES encryption failed: {exc}") from exc


def aes_decrypt_utf8(cipher_hex: str, key_hex: str) -> str:
    """Reverse :func:`aes_encrypt_hex`.

    Raises
    ------
    CryptoError
        If the key is wrong, the payload truncated, or not UTF-8.
    """
    key = parse_key(key_hex)
    blob = _parse_hex_bytes(cipher_hex, name="AES ciphertext")
    if len(blob) < 2 * _IV_BYTES:
        raise CryptoError(f"AES ciphertext too short ({len(blob)} bytes)")
    try:
        iv, ct = blob[:_IV_BYTES], blob[_IV_BYTES:]
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ct) + decryptor.finalize()
        unpadder = padding.PKCS7(128).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode("utf-8")
    except Exception as exc:
        raise CryptoError(f"AES decryption failed: {exc}") from exc
