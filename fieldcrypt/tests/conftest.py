"""
Shared fixtures: in-memory SQLite database, registered keys and wired services.
"""
# Load .env BEFORE any other imports so FIELDCRYPT_* settings match local runs
from pathlib import Path
from dotenv import load_dotenv

_repo_root = Path(__file__).parent.parent.parent
load_dotenv(_repo_root / ".env")

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fieldcrypt.core.config import Settings
from fieldcrypt.core.crypto.keys import KeyRepository
from fieldcrypt.core.database.connection import enable_sqlite_savepoints
from fieldcrypt.core.database.models import Base, User
from fieldcrypt.core.migration.services import MigrationServices


@pytest.fixture
def engine():
    """In-memory SQLite shared by every connection of the test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(bind=engine, autoflush=False)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def settings():
    """Settings independent of the environment and any .env file."""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        page_size=15,
        inline_threshold=15,
        current_profile="default",
        previous_profile=None,
        restored_field_length=1024,
        mail_index_name="user__mail",
    )


@pytest.fixture
def current_key():
    return Fernet.generate_key().decode()


@pytest.fixture
def previous_key():
    return Fernet.generate_key().decode()


@pytest.fixture
def keyring(db, settings, current_key):
    """Key 'primary' behind profile 'default' (the current profile)."""
    keys = KeyRepository(db, settings)
    keys.create_key("primary", value=current_key)
    keys.create_profile("default", "primary")
    db.commit()
    return keys


@pytest.fixture
def rotation_settings(settings):
    """Settings during a key change: 'default' is current, 'legacy' is being retired."""
    return settings.model_copy(update={"previous_profile": "legacy"})


@pytest.fixture
def rotation_keyring(db, rotation_settings, current_key, previous_key):
    keys = KeyRepository(db, rotation_settings)
    keys.create_key("primary", value=current_key)
    keys.create_profile("default", "primary")
    keys.create_key("old", value=previous_key)
    keys.create_profile("legacy", "old")
    db.commit()
    return keys


@pytest.fixture
def services(db, settings, keyring):
    return MigrationServices.build(db, settings)


@pytest.fixture
def rotation_services(db, rotation_settings, rotation_keyring):
    return MigrationServices.build(db, rotation_settings)


@pytest.fixture
def add_users(db):
    """Factory: add_users(n, mail=..., init=...) inserts n users and returns their ids."""
    def _add(count, mail=lambda i: f"user{i}@example.com", init=lambda i: f"init{i}@example.com"):
        start = db.execute(select(User.id).order_by(User.id.desc())).scalars().first() or 0
        users = []
        for i in range(start + 1, start + count + 1):
            users.append(User(
                name=f"user{i}",
                mail=mail(i) if callable(mail) else mail,
                init=init(i) if callable(init) else init,
            ))
        db.add_all(users)
        db.commit()
        return [u.id for u in users]
    return _add


@pytest.fixture
def stored(db):
    """Read back {id: (mail, init)} straight from the table."""
    def _stored():
        db.expire_all()
        rows = db.execute(select(User.id, User.mail, User.init).order_by(User.id)).all()
        return {row.id: (row.mail, row.init) for row in rows}
    return _stored
