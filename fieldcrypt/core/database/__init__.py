"""Database module: models, sessions and the users row store"""
from .models import Base, User, EncryptionKey, EncryptionProfile, MigrationJob
from .connection import get_db, init_db, create_tables
from .row_store import RowStore, UserRow, MIGRATED_FIELDS, PRIMARY_FIELD, SECONDARY_FIELD

__all__ = [
    'Base',
    'User',
    'EncryptionKey',
    'EncryptionProfile',
    'MigrationJob',
    'get_db',
    'init_db',
    'create_tables',
    'RowStore',
    'UserRow',
    'MIGRATED_FIELDS',
    'PRIMARY_FIELD',
    'SECONDARY_FIELD',
]
