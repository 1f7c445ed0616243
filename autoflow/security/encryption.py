"""
Security encryption utilities.

Provides authenticated encryption for credentials stored in the database.
Uses AES-256-GCM (AESGCM) from the cryptography library.

Sealed values are persisted as JSON:
    {"encrypted": "<hex>", "iv": "<hex>", "authTag": "<hex>"}
"""

import hashlib
import json
import logging
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Iterable, Mapping, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from autoflow.exceptions import CorruptRecordError, DecryptionError

logger = logging.getLogger(__name__)

IV_LENGTH = 12
TAG_LENGTH = 16
# AESGCM accepts nonces between 8 and 128 bytes; legacy rows use 16
MIN_IV_LENGTH = 8
MAX_IV_LENGTH = 128

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


def derive_key(material: str) -> bytes:
    """
    Turn ENCRYPTION_KEY into a 32-byte AES key.

    A 64-character hex string is used as the raw key bytes. Any other
    string is hashed with SHA-256 to get consistent 32 bytes.
    """
    if not material or not material.strip():
        raise ValueError("Encryption key material must not be empty")
    material = material.strip()
    if _HEX_KEY.match(material):
        return bytes.fromhex(material)
    return hashlib.sha256(material.encode("utf-8")).digest()


@dataclass(frozen=True)
class SealedSecret:
    """Ciphertext, IV and authentication tag of one sealed value."""

    ciphertext: bytes
    iv: bytes
    tag: bytes

    def to_dict(self) -> Dict[str, str]:
        return {
            "encrypted": self.ciphertext.hex(),
            "iv": self.iv.hex(),
            "authTag": self.tag.hex(),
        }

    def to_storage(self) -> str:
        """Serialize for a text column."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_storage(cls, payload: Union[str, bytes, Mapping[str, Any]]) -> "SealedSecret":
        """
        Parse a persisted sealed value.

        Args:
            payload: JSON text or an already-decoded mapping

        Raises:
            CorruptRecordError: If the payload is not a well-formed sealed value
        """
        data: Any = payload
        if isinstance(payload, (str, bytes)):
            try:
                data = json.loads(payload)
            except ValueError as e:
                raise CorruptRecordError("Sealed value is not valid JSON", cause=e)

        if not isinstance(data, Mapping):
            raise CorruptRecordError(f"Sealed value has unexpected type {type(data).__name__}")

        missing = [key for key in ("encrypted", "iv", "authTag") if key not in data]
        if missing:
            raise CorruptRecordError(f"Sealed value is missing keys: {', '.join(missing)}")

        try:
            ciphertext = bytes.fromhex(data["encrypted"])
            iv = bytes.fromhex(data["iv"])
            tag = bytes.fromhex(data["authTag"])
        except (TypeError, ValueError) as e:
            raise CorruptRecordError("Sealed value contains non-hex data", cause=e)

        if len(tag) != TAG_LENGTH:
            raise CorruptRecordError(f"Auth tag must be {TAG_LENGTH} bytes, got {len(tag)}")
        if not MIN_IV_LENGTH <= len(iv) <= MAX_IV_LENGTH:
            raise CorruptRecordError(f"IV length {len(iv)} is out of range")

        return cls(ciphertext=ciphertext, iv=iv, tag=tag)


class CipherVault:
    """
    Seals and opens secrets with one process-wide AES-256-GCM key.

    A fresh random IV is drawn for every seal() call.
    """

    def __init__(self, key: bytes):
        if len(key) != 32:
            raise ValueError(f"AES-256 key must be 32 bytes, got {len(key)}")
        self._aead = AESGCM(key)

    @classmethod
    def from_material(cls, material: str) -> "CipherVault":
        return cls(derive_key(material))

    def seal(self, plaintext: str) -> SealedSecret:
        """
        Encrypt a string value.

        Args:
            plaintext: The plaintext string to encrypt

        Returns:
            SealedSecret with ciphertext, IV and tag
        """
        iv = os.urandom(IV_LENGTH)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        return SealedSecret(ciphertext=sealed[:-TAG_LENGTH], iv=iv, tag=sealed[-TAG_LENGTH:])

    def open(self, sealed: SealedSecret) -> str:
        """
        Decrypt a sealed value.

        Raises:
            DecryptionError: If the tag does not verify (tamper or wrong key)
        """
        try:
            plaintext = self._aead.decrypt(sealed.iv, sealed.ciphertext + sealed.tag, None)
        except InvalidTag as e:
            raise DecryptionError("Authentication tag verification failed", cause=e)
        except ValueError as e:
            # Nonce length outside what AESGCM accepts
            raise CorruptRecordError(f"Sealed value cannot be decrypted: {e}", cause=e)

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted value is not valid UTF-8", cause=e)

    def seal_dict(self, data: Mapping[str, Any], keys: Iterable[str]) -> Dict[str, Any]:
        """
        Seal selected keys of a mapping.

        Args:
            data: Mapping with plaintext values
            keys: Keys whose values should be sealed; absent or empty values are left as-is

        Returns:
            New dict where each sealed value is its {encrypted, iv, authTag} record

        Example:
            >>> vault.seal_dict({"api_key": "sk-1", "name": "OpenAI"}, ["api_key"])
            {"api_key": {"encrypted": "...", "iv": "...", "authTag": "..."}, "name": "OpenAI"}
        """
        result = dict(data)
        for key in keys:
            if result.get(key):
                result[key] = self.seal(str(result[key])).to_dict()
        return result

    def open_dict(self, data: Mapping[str, Any], keys: Iterable[str]) -> Dict[str, Any]:
        """
        Open selected keys of a mapping produced by seal_dict().

        Raises:
            CorruptRecordError: If a selected value is not a sealed record
            DecryptionError: If a selected value fails authentication
        """
        result = dict(data)
        for key in keys:
            if result.get(key):
                result[key] = self.open(SealedSecret.from_storage(result[key]))
        return result


@lru_cache
def get_cipher_vault() -> CipherVault:
    """
    Get the process-wide vault built from settings.ENCRYPTION_KEY.

    Raises:
        pydantic.ValidationError: If ENCRYPTION_KEY is not configured
    """
    from autoflow.config import get_settings

    vault = CipherVault.from_material(get_settings().ENCRYPTION_KEY)
    logger.debug("Cipher vault initialized")
    return vault

