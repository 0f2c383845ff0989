"""Field-level encryption for sensitive preference values."""

from __future__ import annotations

import base64
import binascii
import hashlib

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import CryptoError

ENCRYPTED_PREFIX = "enc:"
# Marks a plaintext value that would otherwise read as one of the prefixes.
PLAIN_PREFIX = "raw:"
KDF_ITERATIONS = 100_000
_SALT_SUFFIX = b"prefstore-salt"

# Fernet token layout: version, timestamp, IV, AES blocks, HMAC.
_TOKEN_VERSION = 0x80
_TOKEN_OVERHEAD = 1 + 8 + 16 + 32
_BLOCK_SIZE = 16


def _is_token(text: str) -> bool:
    if not text.isascii():
        return False
    try:
        raw = base64.b64decode(text.encode("ascii"), altchars=b"-_", validate=True)
    except (binascii.Error, ValueError):
        return False
    body = len(raw) - _TOKEN_OVERHEAD
    return raw[:1] == bytes([_TOKEN_VERSION]) and body >= _BLOCK_SIZE and body % _BLOCK_SIZE == 0


def is_encrypted(value: str) -> bool:
    """Return ``True`` when ``value`` has the shape of :meth:`FieldCipher.encrypt` output.

    A value that merely starts with the prefix, such as a legacy plaintext
    note, is not treated as ciphertext.
    """
    return value.startswith(ENCRYPTED_PREFIX) and _is_token(value[len(ENCRYPTED_PREFIX) :])


def escape_plaintext(value: str) -> str:
    """Make a plaintext value safe to store next to ciphertext."""
    if value.startswith((ENCRYPTED_PREFIX, PLAIN_PREFIX)):
        return PLAIN_PREFIX + value
    return value


def unescape_plaintext(value: str) -> str:
    if value.startswith(PLAIN_PREFIX):
        return value[len(PLAIN_PREFIX) :]
    return value


def derive_key(passphrase: str) -> bytes:
    """Derive a Fernet key from a pre-shared passphrase.

    The salt is derived from the passphrase itself so every process sharing the
    passphrase arrives at the same key without storing a salt.
    """
    if not passphrase:
        raise ValueError("passphrase must not be empty")
    secret = passphrase.encode("utf-8")
    salt = hashlib.sha256(secret + _SALT_SUFFIX).digest()
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=KDF_ITERATIONS)
    return base64.urlsafe_b64encode(kdf.derive(secret))


class FieldCipher:
    """Encrypt and decrypt individual string values.

    Empty strings pass through unchanged in both directions so an empty field
    stays empty at rest.
    """

    def __init__(self, key: bytes) -> None:
        self._fernet = Fernet(key)

    @classmethod
    def from_passphrase(cls, passphrase: str) -> FieldCipher:
        return cls(derive_key(passphrase))

    def encrypt(self, plaintext: str) -> str:
        if plaintext == "":
            return ""
        token = self._fernet.encrypt(plaintext.encode("utf-8"))
        return ENCRYPTED_PREFIX + token.decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        if ciphertext == "":
            return ""
        if not is_encrypted(ciphertext):
            raise CryptoError("value is not an encrypted field")
        token = ciphertext[len(ENCRYPTED_PREFIX) :].encode("ascii", errors="replace")
        try:
            return self._fernet.decrypt(token).decode("utf-8")
        except (InvalidToken, UnicodeDecodeError) as exc:
            # Wrong key or corrupted value; never hand back partial plaintext.
            raise CryptoError("could not decrypt field value") from exc

    def encrypt_map(self, values: dict[str, str]) -> dict[str, str]:
        """Return a new mapping with every value encrypted. ``values`` is not modified."""
        return {key: self.encrypt(value) for key, value in values.items()}

    def decrypt_map(self, values: dict[str, str]) -> dict[str, str]:
        """Return a new mapping with every value decrypted.

        Raises :class:`CryptoError` if any value fails; no partial result is
        returned.
        """
        return {key: self.decrypt(value) for key, value in values.items()}
