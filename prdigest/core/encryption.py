"""Authenticated encryption for secrets stored at rest.

Provider API keys are sealed with AES-256-GCM before they are written to
the database. The sealed form is three hex fields joined by colons:

    <iv: 12 bytes>:<auth tag: 16 bytes>:<ciphertext>

A fresh random IV is drawn on every seal; an IV is never reused with the
same key. Opening a value fails closed: a malformed value raises
FormatError and a tag mismatch raises IntegrityError, so callers never
see partially decrypted or corrupted plaintext.

The symmetric key is supplied once per process as a 64-character hex
string and validated when the vault is constructed (at app startup).
"""

import os
import string

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from fastapi import Request

from prdigest.core.errors import ConfigurationError, FormatError, IntegrityError

IV_LENGTH = 12  # GCM recommended nonce length
TAG_LENGTH = 16
KEY_HEX_LENGTH = 64

_HEX_DIGITS = frozenset(string.hexdigits)


def _parse_key(key_hex: str) -> bytes:
    if not key_hex:
        raise ConfigurationError(
            "ENCRYPTION_KEY not set. Provide a 32-byte (64 character) hex key."
        )
    if len(key_hex) != KEY_HEX_LENGTH:
        raise ConfigurationError(
            "ENCRYPTION_KEY must be 32 bytes (64 characters) in hex format."
        )
    if not _HEX_DIGITS.issuperset(key_hex):
        raise ConfigurationError("ENCRYPTION_KEY must contain only hex characters.")
    return bytes.fromhex(key_hex)


def _unhex(part: str, label: str) -> bytes:
    # bytes.fromhex tolerates whitespace; sealed values never contain any.
    if len(part) % 2 or not _HEX_DIGITS.issuperset(part):
        raise FormatError(f"Invalid encrypted data format: {label} is not hex")
    return bytes.fromhex(part)


class SecretVault:
    """Seal and open secret strings under one process-wide AES-256 key."""

    def __init__(self, key_hex: str) -> None:
        self._aead = AESGCM(_parse_key(key_hex))

    def seal(self, plaintext: str) -> str:
        iv = os.urandom(IV_LENGTH)
        # AESGCM appends the 16-byte tag to the ciphertext.
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def open(self, sealed: str) -> str:
        """Decrypt a value produced by `seal`.

        Raises:
            FormatError: wrong number of parts, empty iv/tag, non-hex
                content, or wrong iv/tag length.
            IntegrityError: the authentication tag does not verify.
        """
        parts = sealed.split(":")
        if len(parts) != 3:
            raise FormatError("Invalid encrypted data format: expected iv:authTag:ciphertext")

        iv_hex, tag_hex, ciphertext_hex = parts
        if not iv_hex or not tag_hex:
            raise FormatError("Invalid encrypted data format: missing iv or authTag")

        iv = _unhex(iv_hex, "iv")
        tag = _unhex(tag_hex, "authTag")
        ciphertext = _unhex(ciphertext_hex, "ciphertext")

        if len(iv) != IV_LENGTH:
            raise FormatError(f"Invalid encrypted data format: iv must be {IV_LENGTH} bytes")
        if len(tag) != TAG_LENGTH:
            raise FormatError(
                f"Invalid encrypted data format: authTag must be {TAG_LENGTH} bytes"
            )

        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            raise IntegrityError("Encrypted data failed authentication") from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise IntegrityError("Decrypted data is not valid UTF-8") from exc


def get_vault(request: Request) -> SecretVault:
    """FastAPI dependency: the vault built once by create_app()."""
    return request.app.state.vault
