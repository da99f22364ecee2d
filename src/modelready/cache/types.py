"""Type definitions for cache inspection and cleanup."""

from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class ValidationFailure(str, Enum):
    """Why a required file was rejected."""
    MISSING = "MISSING"
    TOO_SMALL = "TOO_SMALL"
    UNPARSEABLE_JSON = "UNPARSEABLE_JSON"
    IO_ERROR = "IO_ERROR"


class ValidationResult(BaseModel):
    """Outcome of validating an artifact set.

    Either complete, or incomplete with the first offending file and the reason.
    Truth-testing is refused so callers cannot drop the reason by accident; use
    ``is_complete``.

    Attributes:
        is_complete: True when every required file passed
        file: Offending filename (None when complete)
        reason: Failure reason (None when complete)
        detail: Extra context, e.g. the OS error text
        errno: OS error number for IO_ERROR results
    """
    model_config = ConfigDict(frozen=True)

    is_complete: bool
    file: Optional[str] = None
    reason: Optional[ValidationFailure] = None
    detail: Optional[str] = None
    errno: Optional[int] = None

    @classmethod
    def complete(cls) -> "ValidationResult":
        return cls(is_complete=True)

    @classmethod
    def incomplete(
        cls,
        file: str,
        reason: ValidationFailure,
        detail: Optional[str] = None,
        errno: Optional[int] = None,
    ) -> "ValidationResult":
        return cls(is_complete=False, file=file, reason=reason, detail=detail, errno=errno)

    @property
    def is_corrupted(self) -> bool:
        """File exists but its content is unusable."""
        return self.reason in (ValidationFailure.TOO_SMALL, ValidationFailure.UNPARSEABLE_JSON)

    def __bool__(self):
        raise TypeError("ValidationResult has no truth value; check .is_complete and .reason")


class ResolvedModelDirectory(BaseModel):
    """Directory chosen for a model inside one cache root.

    Attributes:
        root: Cache root the model was found in
        model_dir: Top-level model directory (``models--org--name``)
        snapshot_dir: Directory holding the artifact files
        snapshot_id: Snapshot name, None for legacy layouts
        legacy: True when matched by the explicit legacy layout check
    """
    model_config = ConfigDict(frozen=True)

    root: Path
    model_dir: Path
    snapshot_dir: Path
    snapshot_id: Optional[str] = None
    legacy: bool = False


class CleanupReport(BaseModel):
    """Result of a best-effort cleanup pass.

    Attributes:
        removed: Paths that were deleted
        failed: Paths that could not be deleted, with the error text
        skipped: Paths left alone (e.g. owned by an external acquisition)
    """
    removed: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict)
    skipped: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def merge(self, other: "CleanupReport") -> "CleanupReport":
        self.removed.extend(other.removed)
        self.failed.update(other.failed)
        self.skipped.extend(other.skipped)
        return self


class CacheStatusReport(BaseModel):
    """Aggregate view over all cache roots, for settings screens and debugging."""
    total_size_bytes: int = 0
    model_count: int = 0
    corrupted_files: List[str] = Field(default_factory=list)
    cache_directories: List[str] = Field(default_factory=list)

    @computed_field
    @property
    def total_size_gb(self) -> float:
        return self.total_size_bytes / (1024 ** 3)

    @computed_field
    @property
    def formatted_size(self) -> str:
        if self.total_size_gb >= 1.0:
            return f"{self.total_size_gb:.1f} GB"
        return f"{self.total_size_bytes / (1024 ** 2):.0f} MB"
