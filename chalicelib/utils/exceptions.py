__all__ = ["DomainError", "ValidationException", "AccessDenied", "InvalidCredentials", "RecordNotFound",
           "StateConflict", "StorageFailed", "TransientStorageFailure", "NumberOfRetriesExceeded",
           "UpstreamUnavailable"]


class DomainError(Exception):
    LEVEL = 'warning'


# Validations exceptions
class ValidationException(DomainError):
    pass


# Generic Exceptions
class AccessDenied(DomainError):
    pass


class InvalidCredentials(DomainError):
    pass


# Lookup exceptions
class RecordNotFound(DomainError):
    pass


class StateConflict(DomainError):
    pass


# Storage exceptions
class StorageFailed(Exception):
    LEVEL = 'error'


# Throttling, timeouts and dropped connections, worth another try
class TransientStorageFailure(StorageFailed):
    pass


# DB Performance Exception
class NumberOfRetriesExceeded(TransientStorageFailure):
    pass


class UpstreamUnavailable(Exception):
    LEVEL = 'error'
