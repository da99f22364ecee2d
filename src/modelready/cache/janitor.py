"""Best-effort cache cleanup.

Every removal is attempted on its own. A failure on one entry (permissions,
file in use) is logged and recorded in the returned ``CleanupReport``; the pass
moves on to the next entry. Nothing here raises for filesystem errors.
"""

import os
from pathlib import Path
from typing import Iterable, Optional

from modelready.cache.locator import SNAPSHOTS_DIR, CacheLocator
from modelready.cache.types import CacheStatusReport, CleanupReport
from modelready.cache.validator import ArtifactValidator, has_corruption_marker
from modelready.logger import create_logger
from modelready.models.types import ModelDescriptor

logger = create_logger(__name__)


class CacheJanitor:
    """Removes interrupted downloads and invalid model directories."""

    def __init__(
        self,
        locator: CacheLocator,
        validator: ArtifactValidator,
        detector=None,
    ):
        self.locator = locator
        self.validator = validator
        # ExternalActivityDetector; optional so the janitor is usable standalone.
        self.detector = detector

    def _externally_owned(self, descriptor: ModelDescriptor) -> bool:
        if self.detector is None:
            return False
        return self.detector.is_active(descriptor)

    def _remove_entry(self, path: Path, report: CleanupReport):
        try:
            if path.is_symlink() or not path.is_dir():
                path.unlink()
            else:
                self._remove_tree(path, report)
                return
            report.removed.append(str(path))
            logger.debug(f"Removed {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            report.failed[str(path)] = str(e)
            logger.warning(f"Could not remove {path}: {e}")

    def _remove_tree(self, directory: Path, report: CleanupReport):
        """Delete a directory bottom-up, continuing past entries that cannot be removed."""
        def on_error(error: OSError):
            report.failed[str(error.filename)] = str(error)
            logger.warning(f"Could not scan {error.filename}: {error}")

        for dirpath, dirnames, filenames in os.walk(directory, topdown=False, onerror=on_error):
            for name in filenames:
                self._remove_entry(Path(dirpath) / name, report)
            for name in dirnames:
                sub = Path(dirpath) / name
                if sub.is_symlink():
                    self._remove_entry(sub, report)
                    continue
                self._rmdir(sub, report)
        self._rmdir(directory, report)

    def _rmdir(self, directory: Path, report: CleanupReport):
        try:
            os.rmdir(directory)
            report.removed.append(str(directory))
        except FileNotFoundError:
            pass
        except OSError as e:
            # Non-empty because a child could not be removed; the child is already reported.
            if str(directory) not in report.failed:
                report.failed[str(directory)] = str(e)
            logger.debug(f"Could not remove directory {directory}: {e}")

    def cleanup_markers(self, directory: Path) -> CleanupReport:
        """Remove every entry under ``directory`` carrying an interrupted-download marker."""
        report = CleanupReport()
        for path in self.validator.find_corruption_markers(directory):
            self._remove_entry(path, report)
        if report.removed:
            logger.info(f"Removed {len(report.removed)} incomplete/temp entries under {directory}")
        return report

    def remove_invalid_files(self, directory: Path, required_files: Iterable[str]) -> CleanupReport:
        """Remove required files that exist but are truncated or unparseable."""
        report = CleanupReport()
        directory = Path(directory)
        for problem in self.validator.validate_all(directory, list(required_files)):
            if not problem.is_corrupted:
                continue
            logger.info(f"Removing corrupted file {problem.file} ({problem.reason.value})")
            self._remove_entry(directory / problem.file, report)
        return report

    def cleanup_invalid_model_directories(self, root: Path, descriptor: ModelDescriptor) -> CleanupReport:
        """Delete the model's directory under ``root`` when it fails validation.

        Skipped entirely while an external acquisition is populating the model.
        """
        report = CleanupReport()
        model_dir = Path(root) / descriptor.cache_dir_name
        if not model_dir.is_dir():
            resolved = self.locator.resolve(descriptor, root)
            if resolved is None:
                return report
            model_dir = resolved.model_dir

        if self._externally_owned(descriptor):
            logger.info(f"Not cleaning {model_dir}: external acquisition in progress")
            report.skipped.append(str(model_dir))
            return report

        snapshot = self.locator.select_snapshot(model_dir / SNAPSHOTS_DIR)
        if snapshot is not None:
            result = self.validator.validate(snapshot, descriptor.required_files)
            if result.is_complete:
                return report
            logger.info(
                f"Removing invalid model directory {model_dir}: {result.file} {result.reason.value}"
            )
        else:
            logger.info(f"Removing model directory without snapshots: {model_dir}")

        self._remove_tree(model_dir, report)
        return report

    def cleanup_all(self, root: Path) -> CleanupReport:
        """Remove incomplete/temp entries anywhere under ``root``, skipping hidden directories."""
        report = CleanupReport()
        root = Path(root)

        def on_error(error: OSError):
            report.failed[str(error.filename)] = str(error)
            logger.warning(f"Could not scan {error.filename}: {error}")

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            for name in list(dirnames):
                if has_corruption_marker(name):
                    dirnames.remove(name)
                    self._remove_entry(Path(dirpath) / name, report)
            for name in filenames:
                if has_corruption_marker(name):
                    self._remove_entry(Path(dirpath) / name, report)

        logger.info(
            f"Full cleanup of {root}: removed {len(report.removed)}, failed {len(report.failed)}"
        )
        return report

    def purge_model(self, root: Path, descriptor: ModelDescriptor, lock_file_name: Optional[str] = None) -> CleanupReport:
        """Remove every file of ``descriptor`` under ``root`` (the user "clear cache" action)."""
        report = CleanupReport()
        targets = [Path(root) / descriptor.cache_dir_name, Path(root) / descriptor.model_id]
        targets = [t for t in targets if t.exists()]
        if not targets:
            return report

        if self._externally_owned(descriptor):
            logger.warning(f"Not purging {descriptor.model_id}: external acquisition in progress")
            report.skipped.extend(str(t) for t in targets)
            return report

        for target in targets:
            if lock_file_name:
                self._remove_entry(target / lock_file_name, report)
            self._remove_tree(target, report)
        logger.info(f"Purged {descriptor.model_id} from {root}: removed {len(report.removed)} entries")
        return report

    def cache_status(self, roots: Optional[Iterable[Path]] = None) -> CacheStatusReport:
        """Size, model count and stray markers across cache roots."""
        roots = list(roots) if roots is not None else self.locator.list_cache_roots()
        status = CacheStatusReport(cache_directories=[str(r) for r in roots])

        for root in roots:
            for dirpath, dirnames, filenames in os.walk(root):
                for name in filenames:
                    path = Path(dirpath) / name
                    try:
                        # Snapshot entries are symlinks into blobs; count the bytes once.
                        if not path.is_symlink():
                            status.total_size_bytes += path.stat().st_size
                    except OSError:
                        continue
                    if has_corruption_marker(name):
                        status.corrupted_files.append(str(path))
                    elif name == "config.json":
                        status.model_count += 1
        return status
