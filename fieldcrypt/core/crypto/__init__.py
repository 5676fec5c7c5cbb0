"""Field encryption: Fernet ciphers addressed by current/previous profile"""
from .keys import KeyRef, KeyRepository
from .service import CryptoService, is_encrypted

__all__ = [
    'KeyRef',
    'KeyRepository',
    'CryptoService',
    'is_encrypted',
]
