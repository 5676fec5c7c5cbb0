"""
Row codec: computes the new values of one user's migrated fields.

Pure transform, no storage access. A crypto failure on one field drops only
that field's change; the other field is still migrated.

Whether a stored value is ciphertext is decided by the Fernet token prefix
alone (see is_encrypted). A plaintext value that happens to start with
'gAAAAA' is therefore skipped by ENCRYPT, and DECRYPT/CHANGE count it as a
failed field and leave it as it is.
"""
import logging

from fieldcrypt.core.crypto.service import CryptoService, is_encrypted
from fieldcrypt.core.database.row_store import MIGRATED_FIELDS, UserRow
from fieldcrypt.core.exceptions import CryptoError
from fieldcrypt.core.migration.models import FieldChanges, Operation

logger = logging.getLogger(__name__)


class RowCodec:
    """Applies an Operation to the mail/init values of a row."""

    def __init__(self, crypto: CryptoService):
        self.crypto = crypto

    def transform(self, row: UserRow, operation: Operation) -> FieldChanges:
        changes = FieldChanges()
        for field_name in MIGRATED_FIELDS:
            value = row.get(field_name)
            try:
                new_value = self.transform_value(value, operation)
            except CryptoError as e:
                changes.failed_fields.append(field_name)
                logger.warning(f"Leaving users.{field_name} unchanged for user {row.id}: {e}")
                continue
            if new_value != value:
                changes.updated_fields[field_name] = new_value
        return changes

    def transform_value(self, value, operation: Operation):
        """
        New stored value for one field.

        Empty values and values already in the target state come back unchanged:
        encrypt skips Fernet tokens, decrypt/change skip plaintext.
        """
        if not value:
            return value

        if operation is Operation.ENCRYPT:
            if is_encrypted(value):
                return value
            return self.crypto.encrypt(value, operation.key_ref)

        # DECRYPT uses the current key, CHANGE the previous one
        if not is_encrypted(value):
            return value
        return self.crypto.decrypt(value, operation.key_ref)
