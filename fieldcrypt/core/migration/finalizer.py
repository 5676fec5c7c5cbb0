"""
Finalizer: reports a finished migration and runs the cleanup its context asks for.

Cleanup only happens when the migration really succeeded (the run reported
success AND at least one user was updated):

- uninstall: widen users.mail / users.init back to plaintext size, make sure
  users.mail is indexed, and suggest deleting the now unused key
- change: delete the previous key, which deletes the previous profile with it
- none: nothing

Cleanup is best effort. Failures are reported, never retried, and never undo
the user rows already migrated.
"""
import logging
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from fieldcrypt.core.config import Settings, get_settings
from fieldcrypt.core.crypto.keys import KeyRef, KeyRepository
from fieldcrypt.core.database.row_store import PRIMARY_FIELD, RowStore
from fieldcrypt.core.exceptions import FieldCryptError
from fieldcrypt.core.messages import OperatorMessages
from fieldcrypt.core.migration.models import (
    CompletedSummary,
    FinalizeResult,
    InvocationContext,
    ResultSummary,
)

logger = logging.getLogger(__name__)


class Finalizer:
    """Turns a migration summary into a status message plus context cleanup."""

    def __init__(
        self,
        store: RowStore,
        keys: KeyRepository,
        messages: OperatorMessages,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.keys = keys
        self.messages = messages
        self.settings = settings or get_settings()

    def finish(self, success: bool, summary: Union[CompletedSummary, ResultSummary]) -> FinalizeResult:
        if isinstance(summary, ResultSummary):
            summary = summary.freeze()

        updated = summary.updated_count
        real_success = bool(success) and updated > 0
        result = FinalizeResult(
            real_success=real_success,
            updated_count=updated,
            total_users=summary.total_users,
        )

        text = f"{summary.operation.label} finished: {updated} of {summary.total_users} users updated."
        if summary.failed_fields or summary.failed_updates:
            text += (
                f" {summary.failed_fields} field(s) could not be transformed,"
                f" {summary.failed_updates} update(s) failed."
            )
        if real_success:
            self.messages.info(text)
        else:
            if not success:
                text += " The migration did not complete."
            self.messages.critical(text)
            return result

        if summary.context is InvocationContext.UNINSTALL:
            self._cleanup_uninstall(result)
        elif summary.context is InvocationContext.CHANGE:
            self._cleanup_change(result)

        return result

    def _cleanup_uninstall(self, result: FinalizeResult):
        try:
            widened = self.store.widen_fields(self.settings.restored_field_length)
            if self.store.ensure_index(PRIMARY_FIELD, self.settings.mail_index_name):
                result.cleanup_actions.append(f"created index {self.settings.mail_index_name}")
            result.cleanup_actions.extend(f"widened {name}" for name in widened)
            self.store.db.commit()
        except SQLAlchemyError as e:
            self._cleanup_failed(result, "Restoring the users table schema", e)
            return

        suggestion = "python -m fieldcrypt keys delete <key name>"
        try:
            suggestion = f"python -m fieldcrypt keys delete {self.keys.key_for(KeyRef.CURRENT).name}"
        except FieldCryptError as e:
            logger.debug(f"Current key unknown, suggesting the generic delete command: {e}")
        self.messages.info("Users are stored in plaintext again; the encryption key is no longer used.", suggestion)

    def _cleanup_change(self, result: FinalizeResult):
        try:
            key = self.keys.key_for(KeyRef.PREVIOUS)
            key_name = key.name
            profiles = self.keys.delete_key(key_name)
            self.store.db.commit()
        except (SQLAlchemyError, FieldCryptError) as e:
            self._cleanup_failed(result, "Deleting the previous encryption key", e)
            return

        result.cleanup_actions.append(f"deleted key {key_name}")
        result.cleanup_actions.extend(f"deleted profile {name}" for name in profiles)
        self.messages.info(f"Deleted previous encryption key '{key_name}' and profile(s) {', '.join(profiles)}.")

    def _cleanup_failed(self, result: FinalizeResult, what: str, error: Exception):
        self.store.db.rollback()
        logger.exception(f"{what} failed")
        result.cleanup_errors.append(f"{what} failed: {error}")
        self.messages.critical(f"{what} failed: {error}. Migrated users were kept.")
