"""Wiring of the migration components around one database session."""
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from fieldcrypt.core.config import Settings, get_settings
from fieldcrypt.core.crypto.keys import KeyRepository
from fieldcrypt.core.crypto.service import CryptoService
from fieldcrypt.core.database.row_store import RowStore
from fieldcrypt.core.messages import OperatorMessages
from fieldcrypt.core.migration.codec import RowCodec
from fieldcrypt.core.migration.finalizer import Finalizer
from fieldcrypt.core.migration.jobs import JobQueue
from fieldcrypt.core.migration.runner import BatchRunner


@dataclass
class MigrationServices:
    """Explicit dependencies of a migration run (no module-level lookups)."""
    db: Session
    settings: Settings
    store: RowStore
    keys: KeyRepository
    crypto: CryptoService
    codec: RowCodec
    runner: BatchRunner
    finalizer: Finalizer
    queue: JobQueue
    messages: OperatorMessages = field(default_factory=OperatorMessages)

    @classmethod
    def build(
        cls,
        db: Session,
        settings: Optional[Settings] = None,
        messages: Optional[OperatorMessages] = None,
    ) -> "MigrationServices":
        settings = settings or get_settings()
        messages = messages if messages is not None else OperatorMessages()
        store = RowStore(db)
        keys = KeyRepository(db, settings)
        crypto = CryptoService(keys)
        codec = RowCodec(crypto)
        runner = BatchRunner(store, codec, page_size=settings.page_size)
        finalizer = Finalizer(store, keys, messages, settings)
        queue = JobQueue(db, runner, finalizer)
        return cls(
            db=db,
            settings=settings,
            store=store,
            keys=keys,
            crypto=crypto,
            codec=codec,
            runner=runner,
            finalizer=finalizer,
            queue=queue,
            messages=messages,
        )
