"""
Message Encryption

AES-256-GCM encryption for direct-message content at rest.

Wire format: ``<iv>:<tag>:<ciphertext>``, each part lowercase hex,
with a 16-byte random IV and a 16-byte authentication tag.
"""

import logging
import os
import re
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..constants import (
    ENCRYPTION_DELIMITER,
    ENCRYPTION_IV_BYTES,
    ENCRYPTION_KEY_HEX_LENGTH,
    ENCRYPTION_TAG_BYTES,
)
from .config import get_settings

logger = logging.getLogger(__name__)

_HEX_PATTERN = re.compile(r"^[0-9a-fA-F]*$")


class EncryptionConfigurationError(Exception):
    """Raised when the message encryption key is missing or malformed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = "ENCRYPTION_CONFIGURATION_ERROR"
        self.details = details or {}
        super().__init__(self.message)


def _is_hex(value: str, expected_bytes: Optional[int] = None) -> bool:
    if len(value) % 2 or not _HEX_PATTERN.match(value):
        return False
    return expected_bytes is None or len(value) == expected_bytes * 2


class MessageEncryptor:
    """
    Authenticated encryption with a process-wide 256-bit key.

    ``decrypt`` returns None for anything that is not authentic ciphertext
    produced with this key: wrong shape, bad hex, wrong IV or tag length,
    or a failed tag check.
    """

    def __init__(self, key_hex: str):
        if not key_hex:
            raise EncryptionConfigurationError("Message encryption key is not set")
        if len(key_hex) != ENCRYPTION_KEY_HEX_LENGTH or not _is_hex(key_hex):
            raise EncryptionConfigurationError(
                f"Message encryption key must be {ENCRYPTION_KEY_HEX_LENGTH} hex characters",
                details={"length": len(key_hex)},
            )
        self._aead = AESGCM(bytes.fromhex(key_hex))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt ``plaintext`` under a fresh random IV."""
        iv = os.urandom(ENCRYPTION_IV_BYTES)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-ENCRYPTION_TAG_BYTES], sealed[-ENCRYPTION_TAG_BYTES:]
        return ENCRYPTION_DELIMITER.join((iv.hex(), tag.hex(), ciphertext.hex()))

    def decrypt(self, encoded: str) -> Optional[str]:
        """Authentic plaintext, or None."""
        if not isinstance(encoded, str):
            return None

        parts = encoded.split(ENCRYPTION_DELIMITER)
        if len(parts) != 3:
            return None

        iv_hex, tag_hex, ciphertext_hex = parts
        if not (
            _is_hex(iv_hex, ENCRYPTION_IV_BYTES)
            and _is_hex(tag_hex, ENCRYPTION_TAG_BYTES)
            and _is_hex(ciphertext_hex)
        ):
            return None

        iv = bytes.fromhex(iv_hex)
        sealed = bytes.fromhex(ciphertext_hex) + bytes.fromhex(tag_hex)
        try:
            plaintext = self._aead.decrypt(iv, sealed, None)
        except InvalidTag:
            logger.warning("Message failed authentication and was not decrypted")
            return None

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            return None

    @staticmethod
    def is_encrypted(value: Any) -> bool:
        """Whether ``value`` has the shape of an encrypted message."""
        if not isinstance(value, str):
            return False
        parts = value.split(ENCRYPTION_DELIMITER)
        return (
            len(parts) == 3
            and _is_hex(parts[0], ENCRYPTION_IV_BYTES)
            and _is_hex(parts[1], ENCRYPTION_TAG_BYTES)
            and _is_hex(parts[2])
        )


_message_encryptor: Optional[MessageEncryptor] = None


def get_message_encryptor() -> MessageEncryptor:
    """Encryptor keyed from ``MESSAGE_ENCRYPTION_KEY``, created on first use."""
    global _message_encryptor
    if _message_encryptor is None:
        _message_encryptor = MessageEncryptor(get_settings().MESSAGE_ENCRYPTION_KEY or "")
    return _message_encryptor


def reset_message_encryptor() -> None:
    global _message_encryptor
    _message_encryptor = None


def encrypt_message(plaintext: str) -> str:
    return get_message_encryptor().encrypt(plaintext)


def decrypt_message(encoded: str) -> Optional[str]:
    return get_message_encryptor().decrypt(encoded)
