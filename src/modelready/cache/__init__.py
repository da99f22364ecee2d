"""On-disk artifact cache: locating, validating and cleaning model directories."""

from modelready.cache.janitor import CacheJanitor
from modelready.cache.locator import CacheLocator
from modelready.cache.types import (
    CacheStatusReport,
    CleanupReport,
    ResolvedModelDirectory,
    ValidationFailure,
    ValidationResult,
)
from modelready.cache.validator import MIN_FILE_SIZE_BYTES, ArtifactValidator

__all__ = [
    "ArtifactValidator",
    "CacheJanitor",
    "CacheLocator",
    "CacheStatusReport",
    "CleanupReport",
    "MIN_FILE_SIZE_BYTES",
    "ResolvedModelDirectory",
    "ValidationFailure",
    "ValidationResult",
]
