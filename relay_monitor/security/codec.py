"""Authenticated encryption for credentials stored at rest.

Envelope format: ``"v1:" + base64(nonce[12] || tag[16] || ciphertext)``,
AES-256-GCM. The version prefix is reserved for future key rotation.
"""

from __future__ import annotations

import base64
import binascii
import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from ..errors import ConfigurationError, DecryptionError


ENVELOPE_VERSION = "v1"
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32
KDF_SALT = b"ai-relay-monitor"

_HEX_KEY = re.compile(r"^[A-Fa-f0-9]{64}$")


def derive_key(secret: str) -> bytes:
    """Turn the configured secret into a 32-byte key.

    A 64-hex-digit secret is used as raw key bytes; a base64 string that
    decodes to 32 bytes is used directly; anything else is stretched with
    scrypt under a fixed salt so the same secret always yields the same key.
    """
    if not secret:
        raise ConfigurationError("ENCRYPTION_KEY is required")

    if _HEX_KEY.match(secret):
        return bytes.fromhex(secret)

    try:
        decoded = base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError):
        decoded = b""
    if len(decoded) == KEY_SIZE:
        return decoded

    kdf = Scrypt(salt=KDF_SALT, length=KEY_SIZE, n=2**14, r=8, p=1)
    return kdf.derive(secret.encode("utf-8"))


class SecretsCodec:
    """Encrypts and decrypts credential strings."""

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise ConfigurationError(f"Encryption key must be {KEY_SIZE} bytes, got {len(key)}")
        self._aead = AESGCM(key)

    @classmethod
    def from_secret(cls, secret: str) -> "SecretsCodec":
        return cls(derive_key(secret))

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag; the envelope stores it ahead of the ciphertext.
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        payload = base64.b64encode(nonce + tag + ciphertext).decode("ascii")
        return f"{ENVELOPE_VERSION}:{payload}"

    def decrypt(self, envelope: str) -> str:
        """Open an envelope produced by :meth:`encrypt`.

        Raises:
            DecryptionError: envelope is empty, malformed, from an unknown
                version, or fails tag verification.
        """
        if not envelope:
            raise DecryptionError("Empty credential envelope")

        version, sep, data = envelope.partition(":")
        if not sep or version != ENVELOPE_VERSION:
            raise DecryptionError(f"Unsupported envelope version: {version!r}")

        try:
            buf = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError(f"Malformed credential envelope: {e}") from e

        if len(buf) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionError("Credential envelope is truncated")

        nonce = buf[:NONCE_SIZE]
        tag = buf[NONCE_SIZE : NONCE_SIZE + TAG_SIZE]
        ciphertext = buf[NONCE_SIZE + TAG_SIZE :]

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise DecryptionError("Credential failed authentication") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Credential is not valid UTF-8") from e
