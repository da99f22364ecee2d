"""Type definitions for readiness coordination."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field

from modelready.exceptions import (
    CAUSE_EXCEPTIONS,
    FailureCause,
    ModelReadyError,
    ReadinessCancelledError,
    RetryBudgetExhaustedError,
)
from modelready.models.types import ModelDescriptor


class ReadinessState(str, Enum):
    """State of the process-wide readiness machine."""
    NOT_STARTED = "NOT_STARTED"
    CHECKING_CACHE = "CHECKING_CACHE"
    WAITING_FOR_EXTERNAL_ACTIVITY = "WAITING_FOR_EXTERNAL_ACTIVITY"
    DOWNLOADING = "DOWNLOADING"
    VALIDATING = "VALIDATING"
    READY = "READY"
    FAILED = "FAILED"


TERMINAL_STATES = frozenset({ReadinessState.READY, ReadinessState.FAILED})


class OutcomeStatus(str, Enum):
    READY = "READY"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class FailureCategory(str, Enum):
    """Small, stable set of categories shown to users."""
    DOWNLOAD_INTERRUPTED = "DOWNLOAD_INTERRUPTED"
    FILES_MISSING = "FILES_MISSING"
    DISK_OR_PERMISSION = "DISK_OR_PERMISSION"
    CANCELLED = "CANCELLED"


CATEGORY_BY_CAUSE = {
    FailureCause.DOWNLOAD_CORRUPTED: FailureCategory.DOWNLOAD_INTERRUPTED,
    FailureCause.TOKENIZER_CORRUPTED: FailureCategory.DOWNLOAD_INTERRUPTED,
    FailureCause.GENERIC: FailureCategory.DOWNLOAD_INTERRUPTED,
    FailureCause.CONFIGURATION_MISSING: FailureCategory.FILES_MISSING,
    FailureCause.NOT_FOUND: FailureCategory.FILES_MISSING,
    FailureCause.PERMISSION_DENIED: FailureCategory.DISK_OR_PERMISSION,
    FailureCause.DISK_FULL: FailureCategory.DISK_OR_PERMISSION,
    FailureCause.IO_ERROR: FailureCategory.DISK_OR_PERMISSION,
    FailureCause.CANCELLED: FailureCategory.CANCELLED,
}

USER_MESSAGES = {
    FailureCategory.DOWNLOAD_INTERRUPTED: "The AI model download was interrupted. It will be downloaded again on the next attempt.",
    FailureCategory.FILES_MISSING: "Some AI model files are missing. Try clearing the model cache in Settings.",
    FailureCategory.DISK_OR_PERMISSION: "The AI model could not be saved. Check free disk space and folder permissions.",
    FailureCategory.CANCELLED: "AI model preparation was cancelled.",
}


class ReadinessOutcome(BaseModel):
    """Terminal result of one readiness generation, shared by all its waiters.

    Attributes:
        status: READY, FAILED or CANCELLED
        model_id: Model the generation was working on
        generation: Generation number the outcome belongs to
        directory: Snapshot directory to load from (READY only)
        cause: Classified failure cause (FAILED/CANCELLED)
        category: User-facing failure category
        message: Internal description, suitable for logs
        attempts: Download attempts made
        retries_exhausted: True when the retry budget ran out
    """
    status: OutcomeStatus
    model_id: str
    generation: int = 0
    directory: Optional[str] = None
    cause: Optional[FailureCause] = None
    category: Optional[FailureCategory] = None
    message: Optional[str] = None
    attempts: int = 0
    retries_exhausted: bool = False

    @property
    def is_ready(self) -> bool:
        return self.status == OutcomeStatus.READY

    @computed_field
    @property
    def user_message(self) -> Optional[str]:
        if self.category is None:
            return None
        return USER_MESSAGES[self.category]

    @classmethod
    def ready(cls, descriptor: ModelDescriptor, generation: int, directory: str, attempts: int = 0) -> "ReadinessOutcome":
        return cls(
            status=OutcomeStatus.READY,
            model_id=descriptor.model_id,
            generation=generation,
            directory=directory,
            attempts=attempts,
        )

    @classmethod
    def failed(
        cls,
        descriptor: ModelDescriptor,
        generation: int,
        cause: FailureCause,
        message: str,
        attempts: int = 0,
        retries_exhausted: bool = False,
    ) -> "ReadinessOutcome":
        return cls(
            status=OutcomeStatus.FAILED,
            model_id=descriptor.model_id,
            generation=generation,
            cause=cause,
            category=CATEGORY_BY_CAUSE[cause],
            message=message,
            attempts=attempts,
            retries_exhausted=retries_exhausted,
        )

    @classmethod
    def cancelled(cls, model_id: str, generation: int, message: str = "Readiness attempt cancelled") -> "ReadinessOutcome":
        return cls(
            status=OutcomeStatus.CANCELLED,
            model_id=model_id,
            generation=generation,
            cause=FailureCause.CANCELLED,
            category=FailureCategory.CANCELLED,
            message=message,
        )

    def raise_for_status(self):
        """Raise the matching ModelReadyError unless the outcome is READY."""
        if self.status == OutcomeStatus.READY:
            return
        if self.status == OutcomeStatus.CANCELLED:
            raise ReadinessCancelledError(self.message or "cancelled")
        if self.retries_exhausted:
            raise RetryBudgetExhaustedError(
                self.message or "retry budget exhausted",
                cause=self.cause or FailureCause.GENERIC,
                attempts=self.attempts,
            )
        exc_class = CAUSE_EXCEPTIONS.get(self.cause, ModelReadyError)
        raise exc_class(self.message or "model not ready")


class ReadinessStatus(BaseModel):
    """Snapshot of the readiness machine for status endpoints and UIs."""
    state: ReadinessState
    model_id: str
    generation: int
    attempt: int = 0
    progress: float = Field(0.0, ge=0.0, le=1.0)
    waiters: int = 0
    directory: Optional[str] = None
    outcome: Optional[ReadinessOutcome] = None


class ReadyRequest(BaseModel):
    """Request body for starting a readiness attempt."""
    model_id: Optional[str] = Field(None, description="Model id; defaults to the configured model")
    wait: bool = Field(False, description="Block until the attempt reaches a terminal state")


class ReadyResponse(BaseModel):
    """Response for a readiness request; ``outcome`` is set when the caller waited."""
    status: ReadinessStatus
    outcome: Optional[ReadinessOutcome] = None
