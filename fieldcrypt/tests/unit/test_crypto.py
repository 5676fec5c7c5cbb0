"""
Unit tests for the key repository and Fernet crypto service.
"""
import pytest
from cryptography.fernet import Fernet
from sqlalchemy import select

from fieldcrypt.core.crypto.keys import KeyRef, KeyRepository
from fieldcrypt.core.crypto.service import CryptoService, is_encrypted
from fieldcrypt.core.database.models import EncryptionKey, EncryptionProfile
from fieldcrypt.core.exceptions import CryptoError, KeyNotFoundError


class TestKeyRepository:
    """Test key and profile lookup, creation and deletion."""

    def test_resolve_current_profile(self, keyring, current_key):
        """Current key reference resolves through the configured profile."""
        cipher = keyring.resolve(KeyRef.CURRENT)
        token = Fernet(current_key.encode()).encrypt(b"hello")
        assert cipher.decrypt(token) == b"hello"

    def test_resolve_is_cached(self, keyring):
        assert keyring.resolve(KeyRef.CURRENT) is keyring.resolve(KeyRef.CURRENT)

    def test_previous_profile_not_configured(self, keyring):
        """Without FIELDCRYPT_PREVIOUS_PROFILE the previous key cannot be resolved."""
        with pytest.raises(KeyNotFoundError, match="previous"):
            keyring.resolve(KeyRef.PREVIOUS)

    def test_missing_profile(self, db, settings):
        keys = KeyRepository(db, settings)
        with pytest.raises(KeyNotFoundError, match="default"):
            keys.resolve(KeyRef.CURRENT)

    def test_env_provider(self, db, settings, monkeypatch):
        """Env keys read their material from FIELDCRYPT_KEY_<NAME> by default."""
        material = Fernet.generate_key().decode()
        monkeypatch.setenv("FIELDCRYPT_KEY_SITE_KEY", material)
        keys = KeyRepository(db, settings)

        key = keys.create_key("site-key")
        keys.create_profile("default", "site-key")

        assert key.provider == "env"
        assert key.value == "FIELDCRYPT_KEY_SITE_KEY"
        token = keys.resolve(KeyRef.CURRENT).encrypt(b"x")
        assert Fernet(material.encode()).decrypt(token) == b"x"

    def test_env_provider_missing_variable(self, db, settings, monkeypatch):
        monkeypatch.delenv("FIELDCRYPT_KEY_UNSET", raising=False)
        keys = KeyRepository(db, settings)
        keys.create_key("unset")
        keys.create_profile("default", "unset")

        with pytest.raises(KeyNotFoundError, match="FIELDCRYPT_KEY_UNSET"):
            keys.resolve(KeyRef.CURRENT)

    def test_invalid_material_rejected(self, db, settings):
        keys = KeyRepository(db, settings)
        with pytest.raises(CryptoError, match="Invalid key material"):
            keys.create_key("bad", value="not-a-fernet-key")

    def test_delete_key_removes_profiles(self, db, rotation_keyring):
        """Deleting a key cascades to every profile built on it."""
        removed = rotation_keyring.delete_key("old")
        db.commit()

        assert removed == ["legacy"]
        names = db.execute(select(EncryptionKey.name)).scalars().all()
        profiles = db.execute(select(EncryptionProfile.name)).scalars().all()
        assert names == ["primary"]
        assert profiles == ["default"]

    def test_delete_profile_keeps_key(self, db, rotation_keyring):
        rotation_keyring.delete_profile("legacy")
        db.commit()

        assert db.execute(select(EncryptionProfile.name)).scalars().all() == ["default"]
        assert [k.name for k in rotation_keyring.list_keys()] == ["old", "primary"]

    def test_delete_unknown_key(self, keyring):
        with pytest.raises(KeyNotFoundError):
            keyring.delete_key("nope")

    def test_generate_key(self):
        key = KeyRepository.generate_key()
        Fernet(key.encode())  # valid material


class TestCryptoService:
    """Test encrypt/decrypt by key reference."""

    def test_round_trip(self, keyring):
        crypto = CryptoService(keyring)
        token = crypto.encrypt("jane@example.com", KeyRef.CURRENT)

        assert token != "jane@example.com"
        assert is_encrypted(token)
        assert crypto.decrypt(token, KeyRef.CURRENT) == "jane@example.com"

    def test_unicode_round_trip(self, keyring):
        crypto = CryptoService(keyring)
        value = "jürgen.müller@例え.jp"
        assert crypto.decrypt(crypto.encrypt(value)) == value

    def test_decrypt_with_wrong_key(self, rotation_keyring):
        """A token written with the previous key does not decrypt with the current one."""
        crypto = CryptoService(rotation_keyring)
        token = crypto.encrypt("jane@example.com", KeyRef.PREVIOUS)

        with pytest.raises(CryptoError, match="current key"):
            crypto.decrypt(token, KeyRef.CURRENT)
        assert crypto.decrypt(token, KeyRef.PREVIOUS) == "jane@example.com"

    def test_decrypt_plaintext_fails(self, keyring):
        crypto = CryptoService(keyring)
        with pytest.raises(CryptoError):
            crypto.decrypt("jane@example.com")

    def test_check_raises_for_missing_key(self, keyring):
        crypto = CryptoService(keyring)
        crypto.check(KeyRef.CURRENT)
        with pytest.raises(KeyNotFoundError):
            crypto.check(KeyRef.PREVIOUS)


class TestIsEncrypted:

    @pytest.mark.parametrize("value,expected", [
        ("gAAAAABlZ...", True),
        ("jane@example.com", False),
        ("", False),
        (None, False),
    ])
    def test_detection(self, value, expected):
        assert is_encrypted(value) is expected
