from __future__ import annotations

from enum import StrEnum
from typing import ClassVar


class ErrorKind(StrEnum):
    NOT_FOUND = "NotFound"
    FORBIDDEN = "Forbidden"
    ALREADY_EXISTS = "AlreadyExists"
    CONDITION_FAILED = "ConditionFailed"
    VALIDATION_FAILED = "ValidationFailed"
    FATAL = "Fatal"


class DynacrudError(Exception):
    kind: ClassVar[ErrorKind] = ErrorKind.FATAL
    code: ClassVar[str] = "FATAL"


class NotFoundError(DynacrudError):
    kind = ErrorKind.NOT_FOUND
    code = "NOT_FOUND"


class ForbiddenError(DynacrudError):
    kind = ErrorKind.FORBIDDEN
    code = "USER_FORBIDDEN"

    def __init__(self, message: str = "user has no access to this record") -> None:
        super().__init__(message)


class ConditionFailedError(DynacrudError):
    kind = ErrorKind.CONDITION_FAILED
    code = "CONDITION_FAILED"


class AlreadyExistsError(ConditionFailedError):
    kind = ErrorKind.ALREADY_EXISTS
    code = "ALREADY_EXISTS"


class IdExistsError(AlreadyExistsError):
    code = "ID_EXISTS"

    def __init__(self, message: str = "id already exists") -> None:
        super().__init__(message)


class EnabledRequiredError(ConditionFailedError):
    code = "ENABLED_REQUIRED"

    def __init__(self, message: str = "record must be enabled to proceed") -> None:
        super().__init__(message)


class ValidationError(DynacrudError):
    kind = ErrorKind.VALIDATION_FAILED
    code = "VALIDATION"


class SchemaValidationError(ValidationError):
    code = "SCHEMA_ERROR"

    def __init__(self, *, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


class DataEmptyError(ValidationError):
    code = "DATA_EMPTY"

    def __init__(self, message: str = "no data") -> None:
        super().__init__(message)


class StatusInvalidError(ValidationError):
    code = "STATUS_INVALID"


class EnvRequiredError(DynacrudError):
    code = "ENV_REQUIRED"

    def __init__(self, name: str) -> None:
        super().__init__(f'environment "{name}" is required')
        self.name = name


class BatchRetryExceededError(DynacrudError):
    code = "BATCH_RETRY_EXCEEDED"

    def __init__(self, *, operation: str, unprocessed_count: int) -> None:
        super().__init__(f"{operation}: retry limit exceeded (unprocessed={unprocessed_count})")
        self.operation = operation
        self.unprocessed_count = unprocessed_count


class TransactionCanceledError(DynacrudError):
    code = "TRANSACTION_CANCELED"

    def __init__(self, *, message: str, reason_codes: tuple[str, ...]) -> None:
        super().__init__(message)
        self.reason_codes = reason_codes

    @property
    def is_conditional(self) -> bool:
        return any(rc in _CONDITIONAL_REASONS for rc in self.reason_codes)


class AwsError(DynacrudError):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.aws_code = code
        self.message = message


_CONDITIONAL_REASONS = frozenset({"ConditionalCheckFailed", "TransactionConflict"})
