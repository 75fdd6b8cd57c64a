"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class RemoteDataError(DomainException):
    """Reference-data endpoint returned an error or is unavailable"""

    pass


class StorageError(DomainException):
    """Persistent key-value medium failed to read or write"""

    pass


class StorageQuotaExceededError(StorageError):
    """Write rejected because the storage medium is full"""

    pass


class InvalidAmountError(DomainException):
    """Claim amount is not a positive number"""

    pass


class ProfileStoreError(DomainException):
    """Remote profile store rejected the request or is unreachable"""

    pass
