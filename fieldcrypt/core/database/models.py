"""
SQLAlchemy Database Models

Stores:
- Users whose contact address (mail) and initial address (init) are migrated
- Encryption keys and the profiles that point at them
- Migration jobs (persisted batch state for resumable runs)

Encryption:
- users.mail and users.init hold either plaintext or Fernet tokens, depending on
  which migration last ran over them. There is no TypeDecorator here:
  the migration engine reads and writes the raw stored values.
- See fieldcrypt/core/crypto/service.py for the cipher.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, JSON, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
import uuid

Base = declarative_base()

# Wide enough for a Fernet token of a 254 character address
FIELD_LENGTH = 512


class User(Base):
    """
    User account record.

    Only mail and init are touched by the migration engine; rows are never
    created or deleted by it.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(60), nullable=False, unique=True)
    mail = Column(String(FIELD_LENGTH))   # Primary field (plaintext or ciphertext)
    init = Column(String(FIELD_LENGTH))   # Secondary field (plaintext or ciphertext)
    status = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=func.now())

    def __repr__(self) -> str:
        return f"<User(id={self.id}, name={self.name})>"


class EncryptionKey(Base):
    """
    A named Fernet key.

    provider:
    - 'env': value holds the name of the environment variable with the key material
    - 'config': value holds the key material itself
    """
    __tablename__ = "encryption_keys"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    provider = Column(String(20), nullable=False, default="env")
    value = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=func.now())

    # Deleting a key removes every profile built on it
    profiles = relationship(
        "EncryptionProfile",
        back_populates="key",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<EncryptionKey(name={self.name}, provider={self.provider})>"


class EncryptionProfile(Base):
    """Named encryption profile; settings refer to profiles, profiles refer to keys."""
    __tablename__ = "encryption_profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    key_id = Column(Integer, ForeignKey('encryption_keys.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime(timezone=True), default=func.now())

    key = relationship("EncryptionKey", back_populates="profiles")

    def __repr__(self) -> str:
        return f"<EncryptionProfile(name={self.name}, key_id={self.key_id})>"


class MigrationJob(Base):
    """
    Persisted state of a batch migration.

    pending -> processing -> completed | failed

    The full BatchState (cursor + summary) lives in `state`; the counters are
    duplicated into columns for listing and progress queries.
    """
    __tablename__ = "migration_jobs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    operation = Column(String(20), nullable=False)
    context = Column(String(20), nullable=False, default="none")

    # Status
    status = Column(String(20), nullable=False, default='pending')
    processed_count = Column(Integer, default=0)
    total_count = Column(Integer, default=0)
    state = Column(JSON)
    steps = Column(Integer, default=0)
    last_error = Column(Text)
    finalized = Column(Boolean, default=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index('idx_migration_jobs_status', 'status'),
    )

    @property
    def completion_fraction(self) -> float:
        if not self.total_count or (self.processed_count or 0) >= self.total_count:
            return 1.0
        return (self.processed_count or 0) / self.total_count

    def __repr__(self) -> str:
        return f"<MigrationJob(id={self.id}, operation={self.operation}, status={self.status})>"
