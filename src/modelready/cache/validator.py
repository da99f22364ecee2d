"""Artifact set validation.

Checks are deliberately shallow: existence, a tiny minimum size that catches
zero-length placeholders left by interrupted writes, and JSON well-formedness
for ``.json`` files. Weights are never hashed here; a readiness probe cannot
afford a full pass over a multi-gigabyte file.
"""

import json
import os
from pathlib import Path
from typing import Iterable, List, Sequence

from modelready.cache.types import ValidationFailure, ValidationResult
from modelready.logger import create_logger

logger = create_logger(__name__)

MIN_FILE_SIZE_BYTES = 10
CORRUPTION_MARKERS = (".incomplete", ".tmp")
STRUCTURED_SUFFIXES = (".json",)


def has_corruption_marker(name: str) -> bool:
    return any(marker in name for marker in CORRUPTION_MARKERS)


class ArtifactValidator:
    """Validates the fixed artifact set of a model directory."""

    def __init__(self, min_file_size: int = MIN_FILE_SIZE_BYTES):
        self.min_file_size = min_file_size

    def check_file(self, path: Path, parse_structured: bool = True) -> ValidationResult:
        """Validate a single file. Never raises for filesystem problems."""
        name = path.name
        try:
            st = path.stat()
        except FileNotFoundError:
            return ValidationResult.incomplete(name, ValidationFailure.MISSING)
        except OSError as e:
            logger.debug(f"Cannot stat {path}: {e}")
            return ValidationResult.incomplete(name, ValidationFailure.IO_ERROR, str(e), e.errno)

        if not path.is_file():
            return ValidationResult.incomplete(name, ValidationFailure.MISSING, "not a regular file")

        if st.st_size < self.min_file_size:
            return ValidationResult.incomplete(
                name, ValidationFailure.TOO_SMALL, f"{st.st_size} bytes"
            )

        if parse_structured and path.suffix in STRUCTURED_SUFFIXES:
            try:
                with open(path, "rb") as f:
                    json.load(f)
            except OSError as e:
                logger.debug(f"Cannot read {path}: {e}")
                return ValidationResult.incomplete(name, ValidationFailure.IO_ERROR, str(e), e.errno)
            except ValueError as e:
                return ValidationResult.incomplete(name, ValidationFailure.UNPARSEABLE_JSON, str(e))

        return ValidationResult.complete()

    def validate(self, directory: Path, required_files: Sequence[str]) -> ValidationResult:
        """Validate required files in order, stopping at the first failure."""
        directory = Path(directory)
        for filename in required_files:
            result = self.check_file(directory / filename)
            if not result.is_complete:
                logger.debug(
                    f"Validation failed in {directory}: {filename} ({result.reason.value})"
                )
                return result
        return ValidationResult.complete()

    def validate_all(self, directory: Path, required_files: Sequence[str]) -> List[ValidationResult]:
        """Validate every required file and return all failures (empty when complete)."""
        directory = Path(directory)
        problems = []
        for filename in required_files:
            result = self.check_file(directory / filename)
            if not result.is_complete:
                problems.append(result)
        return problems

    def has_required_files(self, directory: Path, required_files: Iterable[str]) -> bool:
        """Cheap presence probe: existence and minimum size only."""
        directory = Path(directory)
        for filename in required_files:
            result = self.check_file(directory / filename, parse_structured=False)
            if not result.is_complete:
                return False
        return True

    def find_corruption_markers(self, directory: Path) -> List[Path]:
        """Every entry under ``directory`` whose name carries an interrupted-download marker."""
        directory = Path(directory)
        found = []

        def on_error(error: OSError):
            logger.debug(f"Skipping unreadable entry while scanning for markers: {error}")

        for dirpath, dirnames, filenames in os.walk(directory, onerror=on_error):
            for name in dirnames + filenames:
                if has_corruption_marker(name):
                    found.append(Path(dirpath) / name)
        return sorted(found)
