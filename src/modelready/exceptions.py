"""Exceptions and failure taxonomy for model readiness."""

from enum import Enum
from typing import Optional


class FailureCause(str, Enum):
    """Classified reason a readiness attempt failed."""
    DOWNLOAD_CORRUPTED = "DOWNLOAD_CORRUPTED"
    CONFIGURATION_MISSING = "CONFIGURATION_MISSING"
    TOKENIZER_CORRUPTED = "TOKENIZER_CORRUPTED"
    NOT_FOUND = "NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    DISK_FULL = "DISK_FULL"
    IO_ERROR = "IO_ERROR"
    CANCELLED = "CANCELLED"
    GENERIC = "GENERIC"


# Retrying after cleanup cannot fix these.
NON_RETRYABLE_CAUSES = frozenset({
    FailureCause.PERMISSION_DENIED,
    FailureCause.DISK_FULL,
    FailureCause.NOT_FOUND,
    FailureCause.CANCELLED,
})


def is_retryable(cause: FailureCause) -> bool:
    return cause not in NON_RETRYABLE_CAUSES


class ModelReadyError(Exception):
    """Base exception for model readiness errors."""

    code = "E_MODEL"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(message)


class UnknownModelError(ModelReadyError, ValueError):
    """Model id is not in the static registry."""

    code = "E_UNKNOWN_MODEL"


class ModelNotFoundError(ModelReadyError):
    """No candidate directory resolved for the model."""

    code = "E_NOT_FOUND"


class IncompleteModelError(ModelReadyError):
    """A required file is missing or too small."""

    code = "E_INCOMPLETE"

    def __init__(self, message: str, file: str = ""):
        self.file = file
        super().__init__(message)


class CorruptedModelError(ModelReadyError):
    """A required file failed its structural check or a download marker was left behind."""

    code = "E_CORRUPTED"

    def __init__(self, message: str, file: str = "", reason: str = ""):
        self.file = file
        self.reason = reason
        super().__init__(message)


class PermissionDeniedError(ModelReadyError):
    code = "E_PERMISSION"


class DiskFullError(ModelReadyError):
    code = "E_DISK_FULL"


class ModelIOError(ModelReadyError):
    code = "E_IO"


class ExternalActivityTimeout(ModelReadyError):
    """External acquisition did not finish within the wait budget."""

    code = "E_EXTERNAL_TIMEOUT"


class RetryBudgetExhaustedError(ModelReadyError):
    """All download attempts of a generation failed."""

    code = "E_RETRY_EXHAUSTED"

    def __init__(self, message: str, cause: FailureCause = FailureCause.GENERIC, attempts: int = 0):
        self.cause = cause
        self.attempts = attempts
        super().__init__(message)


class DownloadError(ModelReadyError):
    """Raised by the download collaborator with a classified cause."""

    code = "E_DOWNLOAD"

    def __init__(self, message: str, cause: FailureCause = FailureCause.GENERIC):
        self.cause = cause
        super().__init__(message)


class AcquisitionConflictError(ModelReadyError):
    """Another model's acquisition is already in flight."""

    code = "E_CONFLICT"


class ReadinessCancelledError(ModelReadyError):
    code = "E_CANCELLED"


CAUSE_EXCEPTIONS = {
    FailureCause.DOWNLOAD_CORRUPTED: CorruptedModelError,
    FailureCause.TOKENIZER_CORRUPTED: CorruptedModelError,
    FailureCause.CONFIGURATION_MISSING: IncompleteModelError,
    FailureCause.NOT_FOUND: ModelNotFoundError,
    FailureCause.PERMISSION_DENIED: PermissionDeniedError,
    FailureCause.DISK_FULL: DiskFullError,
    FailureCause.IO_ERROR: ModelIOError,
    FailureCause.CANCELLED: ReadinessCancelledError,
    FailureCause.GENERIC: ModelReadyError,
}
