"""Exceptions raised by the field migration engine."""


class FieldCryptError(Exception):
    """Base exception for fieldcrypt errors."""


class InvalidOperationError(FieldCryptError):
    """Unknown migration operation or invocation context."""

    def __init__(self, value, kind: str = "operation"):
        self.value = value
        self.kind = kind
        super().__init__(f"Invalid {kind}: {value!r}")


class CryptoError(FieldCryptError):
    """Encryption or decryption of a single value failed."""


class KeyNotFoundError(CryptoError):
    """An encryption profile or key could not be resolved."""


class JobNotFoundError(FieldCryptError):
    """No migration job with the given id."""

    def __init__(self, job_id):
        self.job_id = job_id
        super().__init__(f"Migration job {job_id} not found")
