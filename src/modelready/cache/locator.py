"""Cache root enumeration and model directory resolution.

Resolution follows the hub layout ``<root>/<models--org--name>/snapshots/<id>/``.
A top-level match without a ``snapshots`` child is rejected; loose files in it
are never taken as a complete model. Directories that hold files directly under
``<root>/<model_id>/`` are only accepted through ``resolve_legacy``.

The nested-layout fallback is bounded: it descends at most ``search_depth``
levels, only into non-hidden directories whose names carry one of
``SEARCH_MARKERS``.
"""

import os
import threading
import time
from pathlib import Path
from typing import List, Optional, Sequence

from modelready.cache.types import ResolvedModelDirectory
from modelready.logger import create_logger
from modelready.models.types import ModelDescriptor

logger = create_logger(__name__)

SNAPSHOTS_DIR = "snapshots"
SEARCH_MARKERS = ("huggingface", "hub", "mlxcache", "cache")


def _creation_time(st: os.stat_result) -> float:
    # st_birthtime exists on macOS and BSD; elsewhere ctime is the closest we get.
    return getattr(st, "st_birthtime", st.st_ctime)


def _is_dir(path: Path) -> bool:
    try:
        return path.is_dir()
    except OSError as e:
        logger.debug(f"Cannot stat {path}: {e}")
        return False


def _list_children(directory: Path) -> List[os.DirEntry]:
    try:
        with os.scandir(directory) as it:
            return sorted(it, key=lambda entry: entry.name)
    except OSError as e:
        logger.debug(f"Cannot list {directory}: {e}")
        return []


def _entry_is_dir(entry: os.DirEntry) -> bool:
    try:
        return entry.is_dir()
    except OSError as e:
        logger.debug(f"Cannot stat {entry.path}: {e}")
        return False


class CacheLocator:
    """Finds cache roots and the snapshot directory of a model within them."""

    def __init__(
        self,
        cache_roots: Sequence[str],
        root_ttl: float = 30.0,
        canonical_snapshot: str = "main",
        search_depth: int = 3,
        allow_legacy_layout: bool = False,
    ):
        if not cache_roots:
            raise ValueError("At least one cache root is required")
        self.cache_roots = [Path(r).expanduser() for r in cache_roots]
        self.root_ttl = root_ttl
        self.canonical_snapshot = canonical_snapshot
        self.search_depth = search_depth
        self.allow_legacy_layout = allow_legacy_layout

        self._lock = threading.Lock()
        self._existing_roots: Optional[List[Path]] = None
        self._roots_checked_at = 0.0

    @property
    def primary_root(self) -> Path:
        """Where new downloads are written."""
        return self.cache_roots[0]

    def invalidate(self):
        with self._lock:
            self._existing_roots = None
            self._roots_checked_at = 0.0

    def list_cache_roots(self) -> List[Path]:
        """Existing cache roots in priority order, cached for ``root_ttl`` seconds."""
        with self._lock:
            now = time.monotonic()
            if self._existing_roots is not None and now - self._roots_checked_at < self.root_ttl:
                return list(self._existing_roots)

            existing = [root for root in self.cache_roots if _is_dir(root)]
            self._existing_roots = existing
            self._roots_checked_at = now
            logger.debug(f"Cache roots refreshed: {[str(r) for r in existing]}")
            return list(existing)

    def locate(self, descriptor: ModelDescriptor) -> Optional[ResolvedModelDirectory]:
        """Resolve the model against every existing root, first match wins."""
        for root in self.list_cache_roots():
            resolved = self.resolve(descriptor, root)
            if resolved is None and self.allow_legacy_layout:
                resolved = self.resolve_legacy(descriptor, root)
            if resolved is not None:
                return resolved
        return None

    def resolve(self, descriptor: ModelDescriptor, root: Path) -> Optional[ResolvedModelDirectory]:
        """Resolve ``descriptor`` inside one cache root.

        Checks the root's immediate children for the exact hub directory name
        first, then falls back to the bounded nested search.
        """
        root = Path(root)
        resolved = self._match_in(descriptor, root, root)
        if resolved is not None:
            return resolved
        return self._search_nested(descriptor, root, root, depth=1)

    def resolve_legacy(self, descriptor: ModelDescriptor, root: Path) -> Optional[ResolvedModelDirectory]:
        """Explicit compatibility check for ``<root>/<model_id>/`` holding files directly."""
        candidate = Path(root) / descriptor.model_id
        if not _is_dir(candidate):
            return None
        logger.info(f"Using legacy layout for {descriptor.model_id}: {candidate}")
        return ResolvedModelDirectory(
            root=Path(root),
            model_dir=candidate,
            snapshot_dir=candidate,
            snapshot_id=None,
            legacy=True,
        )

    def model_dir_candidates(self, descriptor: ModelDescriptor) -> List[Path]:
        """Top-level model directories for ``descriptor`` in every existing root."""
        candidates = []
        for root in self.list_cache_roots():
            candidate = root / descriptor.cache_dir_name
            if _is_dir(candidate):
                candidates.append(candidate)
        return candidates

    def _match_in(
        self, descriptor: ModelDescriptor, root: Path, directory: Path
    ) -> Optional[ResolvedModelDirectory]:
        for entry in _list_children(directory):
            if entry.name != descriptor.cache_dir_name or not _entry_is_dir(entry):
                continue

            model_dir = Path(entry.path)
            snapshots = model_dir / SNAPSHOTS_DIR
            if not _is_dir(snapshots):
                logger.warning(
                    f"Rejecting {model_dir}: no '{SNAPSHOTS_DIR}' directory (half-written or legacy layout)"
                )
                return None

            snapshot = self.select_snapshot(snapshots)
            if snapshot is None:
                logger.debug(f"No snapshot directories in {snapshots}")
                return None

            return ResolvedModelDirectory(
                root=root,
                model_dir=model_dir,
                snapshot_dir=snapshot,
                snapshot_id=snapshot.name,
            )
        return None

    def _search_nested(
        self, descriptor: ModelDescriptor, root: Path, directory: Path, depth: int
    ) -> Optional[ResolvedModelDirectory]:
        if depth > self.search_depth:
            return None

        for entry in _list_children(directory):
            name = entry.name
            if name.startswith(".") or name == descriptor.cache_dir_name:
                continue
            if not any(marker in name.lower() for marker in SEARCH_MARKERS):
                continue
            if not _entry_is_dir(entry):
                continue

            child = Path(entry.path)
            resolved = self._match_in(descriptor, root, child)
            if resolved is None:
                resolved = self._search_nested(descriptor, root, child, depth + 1)
            if resolved is not None:
                logger.debug(f"Found {descriptor.model_id} in nested layout: {resolved.snapshot_dir}")
                return resolved
        return None

    def select_snapshot(self, snapshots_dir: Path) -> Optional[Path]:
        """Canonical snapshot if present, else the most recently created one.

        Ties on creation time go to the lexicographically greatest name.
        """
        canonical = Path(snapshots_dir) / self.canonical_snapshot
        if _is_dir(canonical):
            return canonical

        best = None
        best_key = None
        for entry in _list_children(snapshots_dir):
            if entry.name.startswith(".") or not _entry_is_dir(entry):
                continue
            try:
                created = _creation_time(entry.stat())
            except OSError as e:
                logger.debug(f"Cannot stat snapshot {entry.path}: {e}")
                continue
            key = (created, entry.name)
            if best_key is None or key > best_key:
                best, best_key = Path(entry.path), key
        return best
