"""At-rest encryption for user provider credentials.

Tokens are ``hex(nonce):hex(tag):hex(ciphertext)`` sealed with AES-256-GCM.
Values that do not have this shape are legacy plaintext and are passed
through unchanged on read so that rows written before encryption was
introduced keep working.
"""

import hashlib
import logging
import os
import re
from dataclasses import dataclass
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from chatvault.core.config import Settings, settings
from chatvault.core.errors import ConfigurationError, CredentialCorrupt

logger = logging.getLogger(__name__)

KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16
FINGERPRINT_LENGTH = 16

_SEALED_SHAPE = re.compile(
    r"((?:[0-9a-fA-F]{2})+):((?:[0-9a-fA-F]{2})+):((?:[0-9a-fA-F]{2})*)"
)


@dataclass(frozen=True)
class LegacyToken:
    text: str


@dataclass(frozen=True)
class SealedToken:
    nonce: bytes
    tag: bytes
    ciphertext: bytes

    def encode(self) -> str:
        return f"{self.nonce.hex()}:{self.tag.hex()}:{self.ciphertext.hex()}"


def parse_token(text: str) -> LegacyToken | SealedToken:
    """Classify a stored value as a sealed token or a legacy plaintext value."""
    match = _SEALED_SHAPE.fullmatch(text)
    if not match:
        return LegacyToken(text)
    nonce_hex, tag_hex, ciphertext_hex = match.groups()
    return SealedToken(
        nonce=bytes.fromhex(nonce_hex),
        tag=bytes.fromhex(tag_hex),
        ciphertext=bytes.fromhex(ciphertext_hex),
    )


def fingerprint(plaintext: str) -> str:
    """Short one-way digest, safe to log and display."""
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


class CredentialCipher:
    """Seals and opens credentials under one process-wide symmetric key."""

    def __init__(self, key: bytes):
        if len(key) != KEY_BYTES:
            raise ConfigurationError(f"Encryption key must be {KEY_BYTES} bytes, got {len(key)}")
        self._aead = AESGCM(key)

    @classmethod
    def from_settings(cls, config: Settings) -> "CredentialCipher":
        if config.encryption_key:
            try:
                key = bytes.fromhex(config.encryption_key)
            except ValueError:
                raise ConfigurationError("CHATVAULT_ENCRYPTION_KEY must be hex encoded")
            return cls(key)

        if config.require_persistent_key:
            raise ConfigurationError(
                "CHATVAULT_ENCRYPTION_KEY is required when CHATVAULT_REQUIRE_PERSISTENT_KEY is set"
            )
        logger.warning(
            "CHATVAULT_ENCRYPTION_KEY not set. Using a temporary key - "
            "API keys will not survive a restart."
        )
        return cls(AESGCM.generate_key(bit_length=KEY_BYTES * 8))

    def seal(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_BYTES)
        # AESGCM appends the tag to the ciphertext
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        token = SealedToken(nonce=nonce, tag=sealed[-TAG_BYTES:], ciphertext=sealed[:-TAG_BYTES])
        return token.encode()

    def open(self, token: str) -> str:
        parsed = parse_token(token)
        if isinstance(parsed, LegacyToken):
            return parsed.text

        if len(parsed.tag) != TAG_BYTES:
            raise CredentialCorrupt(f"Sealed credential has a {len(parsed.tag)}-byte tag")
        try:
            plaintext = self._aead.decrypt(parsed.nonce, parsed.ciphertext + parsed.tag, None)
        except (InvalidTag, ValueError):
            raise CredentialCorrupt("Sealed credential failed authentication")
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise CredentialCorrupt("Sealed credential is not valid UTF-8")

    def fingerprint(self, plaintext: str) -> str:
        return fingerprint(plaintext)


@lru_cache(maxsize=1)
def get_cipher() -> CredentialCipher:
    """Process-wide cipher built from settings."""
    return CredentialCipher.from_settings(settings)
