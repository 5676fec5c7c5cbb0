"""
Field encryption service.

Uses Fernet symmetric encryption (AES-128 in CBC mode with HMAC-SHA256),
addressed by key reference (current or previous profile) rather than by raw key.
"""
import logging

from cryptography.fernet import InvalidToken

from fieldcrypt.core.crypto.keys import KeyRef, KeyRepository
from fieldcrypt.core.exceptions import CryptoError

logger = logging.getLogger(__name__)

# Every Fernet token starts with the base64 of version byte 0x80 + timestamp
FERNET_PREFIX = 'gAAAAA'


def is_encrypted(value) -> bool:
    """Check if a stored value is a Fernet token rather than plaintext."""
    return isinstance(value, str) and value.startswith(FERNET_PREFIX)


class CryptoService:
    """encrypt(value, key_ref) / decrypt(value, key_ref) over the key repository."""

    def __init__(self, keys: KeyRepository):
        self.keys = keys

    def check(self, key_ref: KeyRef):
        """
        Make sure a key reference resolves to a usable cipher.

        Raises:
            KeyNotFoundError / CryptoError: same as KeyRepository.resolve
        """
        self.keys.resolve(key_ref)

    def encrypt(self, value: str, key_ref: KeyRef = KeyRef.CURRENT) -> str:
        """
        Encrypt plaintext with the cipher for `key_ref`.

        Raises:
            CryptoError: key could not be resolved or encryption failed
        """
        cipher = self.keys.resolve(key_ref)
        try:
            return cipher.encrypt(value.encode('utf-8')).decode('utf-8')
        except (TypeError, AttributeError) as e:
            logger.error(f"Encryption failed for value of type {type(value).__name__}: {e}")
            raise CryptoError(f"Failed to encrypt value: {e}") from e

    def decrypt(self, value: str, key_ref: KeyRef = KeyRef.CURRENT) -> str:
        """
        Decrypt a Fernet token with the cipher for `key_ref`.

        Raises:
            CryptoError: key could not be resolved, or the token was not written with that key
        """
        cipher = self.keys.resolve(key_ref)
        try:
            return cipher.decrypt(value.encode('utf-8')).decode('utf-8')
        except InvalidToken as e:
            # Logged without the value itself: it may be plaintext PII
            logger.error(f"Failed to decrypt value with {key_ref.value} key - token does not match")
            raise CryptoError(f"Value cannot be decrypted with the {key_ref.value} key") from e
        except (TypeError, AttributeError, UnicodeDecodeError) as e:
            logger.error(f"Decryption failed with unexpected error: {e}")
            raise CryptoError(f"Failed to decrypt value: {e}") from e
