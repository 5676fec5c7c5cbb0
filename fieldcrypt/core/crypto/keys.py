"""
Encryption key repository.

Settings name two encryption profiles: the current one (used for all new
encryptions) and, during a key change, the previous one (still able to decrypt
data written before the change). A profile points at a key record, and a key
record says where its Fernet key material lives:

- provider 'env': material is read from an environment variable
  (FIELDCRYPT_KEY_<NAME> unless another variable is given)
- provider 'config': material is stored in the key record itself

Key change workflow:
1. Generate new key:  python -m fieldcrypt keys generate
2. Register it:       python -m fieldcrypt keys add new-key && python -m fieldcrypt profiles add v2 --key new-key
3. Point FIELDCRYPT_PREVIOUS_PROFILE at the old profile and FIELDCRYPT_CURRENT_PROFILE at v2
4. Run:               python -m fieldcrypt rotate
   (a change pass followed by a separate encrypt pass; the old profile and
   key are deleted when the change pass succeeds)
"""
import os
import logging
from enum import Enum
from typing import Dict, List, Optional

from cryptography.fernet import Fernet
from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldcrypt.core.config import Settings, get_settings
from fieldcrypt.core.database.models import EncryptionKey, EncryptionProfile
from fieldcrypt.core.exceptions import CryptoError, KeyNotFoundError

logger = logging.getLogger(__name__)


class KeyRef(str, Enum):
    """Which configured profile a value is encrypted/decrypted with."""
    CURRENT = "current"
    PREVIOUS = "previous"


class KeyRepository:
    """Looks up, creates and retires encryption keys and profiles."""

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self._ciphers: Dict[KeyRef, Fernet] = {}

    @staticmethod
    def generate_key() -> str:
        """Generate new Fernet key material (base64, suitable for an env var)."""
        return Fernet.generate_key().decode('utf-8')

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_key(self, name: str) -> EncryptionKey:
        key = self.db.execute(
            select(EncryptionKey).where(EncryptionKey.name == name)
        ).scalar_one_or_none()
        if key is None:
            raise KeyNotFoundError(f"Encryption key '{name}' not found")
        return key

    def get_profile(self, name: str) -> EncryptionProfile:
        profile = self.db.execute(
            select(EncryptionProfile).where(EncryptionProfile.name == name)
        ).scalar_one_or_none()
        if profile is None:
            raise KeyNotFoundError(f"Encryption profile '{name}' not found")
        return profile

    def list_keys(self) -> List[EncryptionKey]:
        return list(self.db.execute(select(EncryptionKey).order_by(EncryptionKey.name)).scalars())

    def profile_name(self, key_ref: KeyRef) -> str:
        """Name of the profile configured for a key reference."""
        if key_ref == KeyRef.CURRENT:
            return self.settings.current_profile
        if not self.settings.previous_profile:
            raise KeyNotFoundError(
                "No previous encryption profile configured (set FIELDCRYPT_PREVIOUS_PROFILE)"
            )
        return self.settings.previous_profile

    def key_for(self, key_ref: KeyRef) -> EncryptionKey:
        return self.get_profile(self.profile_name(key_ref)).key

    def resolve(self, key_ref: KeyRef) -> Fernet:
        """
        Build (and cache) the cipher for a key reference.

        Raises:
            KeyNotFoundError: profile, key or key material missing
            CryptoError: key material is not a valid Fernet key
        """
        if key_ref in self._ciphers:
            return self._ciphers[key_ref]

        key = self.key_for(key_ref)
        material = self._material(key)
        try:
            cipher = Fernet(material.encode('utf-8'))
        except ValueError as e:
            raise CryptoError(f"Invalid key material for key '{key.name}': {e}") from e

        self._ciphers[key_ref] = cipher
        return cipher

    @staticmethod
    def _material(key: EncryptionKey) -> str:
        if key.provider == "config":
            return key.value
        if key.provider == "env":
            material = os.getenv(key.value)
            if not material:
                raise KeyNotFoundError(
                    f"Key material for '{key.name}' not found in environment variable {key.value}"
                )
            return material
        raise KeyNotFoundError(f"Unknown key provider '{key.provider}' for key '{key.name}'")

    # ------------------------------------------------------------------
    # Create / delete
    # ------------------------------------------------------------------

    def default_env_var(self, name: str) -> str:
        return f"{self.settings.key_env_prefix}{name.upper().replace('-', '_')}"

    def create_key(self, name: str, value: Optional[str] = None, env_var: Optional[str] = None) -> EncryptionKey:
        """
        Register a key.

        With `value` the material is stored in the record (provider 'config');
        otherwise it is read from `env_var` (default FIELDCRYPT_KEY_<NAME>).
        """
        if value is not None:
            try:
                Fernet(value.encode('utf-8'))
            except ValueError as e:
                raise CryptoError(f"Invalid key material for key '{name}': {e}") from e
            key = EncryptionKey(name=name, provider="config", value=value)
        else:
            key = EncryptionKey(name=name, provider="env", value=env_var or self.default_env_var(name))

        self.db.add(key)
        self.db.flush()
        logger.info(f"Registered encryption key '{name}' (provider={key.provider})")
        return key

    def create_profile(self, name: str, key_name: str) -> EncryptionProfile:
        profile = EncryptionProfile(name=name, key=self.get_key(key_name))
        self.db.add(profile)
        self.db.flush()
        self._ciphers.clear()
        logger.info(f"Registered encryption profile '{name}' using key '{key_name}'")
        return profile

    def delete_key(self, name: str) -> List[str]:
        """
        Delete a key and, with it, every profile that uses it.

        Returns:
            Names of the profiles removed along with the key
        """
        key = self.get_key(name)
        profile_names = [p.name for p in key.profiles]
        self.db.delete(key)
        self.db.flush()
        self._ciphers.clear()
        logger.info(f"Deleted encryption key '{name}' and profiles {profile_names}")
        return profile_names

    def delete_profile(self, name: str):
        self.db.delete(self.get_profile(name))
        self.db.flush()
        self._ciphers.clear()
        logger.info(f"Deleted encryption profile '{name}'")
