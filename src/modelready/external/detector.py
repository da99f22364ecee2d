"""Detection of an out-of-process acquisition populating the same cache.

Two signals, either one sufficient:
- a lock marker file inside the model's hub directory in any cache root;
- a running process whose command line matches a known acquisition tool.

Answers are cached per model for ``ttl`` seconds. No signal means no external
activity; there is no "unknown" answer, so a waiting coordinator always makes
progress.
"""

import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import psutil

from modelready.cache.locator import CacheLocator
from modelready.logger import create_logger
from modelready.models.types import ModelDescriptor

logger = create_logger(__name__)

# Command-line fragments of tools that acquire a model outside this process.
SCRIPT_SIGNATURES = ("manual_model_download.sh",)
MANUAL_TOOL_MODULE = "modelready.manual"
DOWNLOADER_NAMES = ("curl", "wget")
HUB_HOSTS = ("huggingface.co", "hf.co")
HUB_CLI_NAMES = ("huggingface-cli", "hf")


@dataclass
class ExternalActivitySignal:
    active: bool
    checked_at: float
    source: Optional[str] = None


class ExternalActivityDetector:
    """Answers whether another process is currently acquiring a model."""

    def __init__(
        self,
        locator: CacheLocator,
        lock_file_name: str = ".manual_download_lock",
        ttl: float = 2.0,
    ):
        self.locator = locator
        self.lock_file_name = lock_file_name
        self.ttl = ttl
        self._signals: Dict[str, ExternalActivitySignal] = {}
        self._lock = threading.Lock()

    def invalidate(self, descriptor: Optional[ModelDescriptor] = None):
        with self._lock:
            if descriptor is None:
                self._signals.clear()
            else:
                self._signals.pop(descriptor.model_id, None)

    def is_active(self, descriptor: ModelDescriptor) -> bool:
        return self.check(descriptor).active

    def check(self, descriptor: ModelDescriptor) -> ExternalActivitySignal:
        """Cached signal for ``descriptor``, recomputed once the TTL expires."""
        now = time.monotonic()
        with self._lock:
            cached = self._signals.get(descriptor.model_id)
            if cached is not None and now - cached.checked_at < self.ttl:
                return cached

        source = self._find_lock_file(descriptor) or self._find_process(descriptor)
        signal = ExternalActivitySignal(active=source is not None, checked_at=time.monotonic(), source=source)

        with self._lock:
            previous = self._signals.get(descriptor.model_id)
            self._signals[descriptor.model_id] = signal

        if previous is None or previous.active != signal.active:
            if signal.active:
                logger.info(f"External acquisition detected for {descriptor.model_id}: {source}")
            else:
                logger.debug(f"No external acquisition for {descriptor.model_id}")
        return signal

    def lock_file_paths(self, descriptor: ModelDescriptor) -> List[Path]:
        """Lock marker location in every configured root, existing or not."""
        return [root / descriptor.cache_dir_name / self.lock_file_name for root in self.locator.cache_roots]

    def _find_lock_file(self, descriptor: ModelDescriptor) -> Optional[str]:
        for path in self.lock_file_paths(descriptor):
            try:
                if path.exists():
                    return f"lock file {path}"
            except OSError as e:
                logger.debug(f"Cannot stat lock file {path}: {e}")
        return None

    def _find_process(self, descriptor: ModelDescriptor) -> Optional[str]:
        own_pid = os.getpid()
        try:
            for proc in psutil.process_iter(["pid", "name", "cmdline"]):
                try:
                    info = proc.info
                    if info.get("pid") == own_pid:
                        continue
                    cmdline = info.get("cmdline") or []
                    if matches_acquisition(info.get("name") or "", cmdline, descriptor):
                        return f"process {info.get('pid')} ({' '.join(cmdline)[:120]})"
                except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                    continue
        except Exception as e:
            logger.debug(f"Could not scan processes for {descriptor.model_id}: {e}")
        return None


def matches_acquisition(name: str, cmdline: List[str], descriptor: ModelDescriptor) -> bool:
    """True when a process looks like it is downloading ``descriptor``."""
    joined = " ".join(cmdline)
    lowered = joined.lower()

    if any(sig in joined for sig in SCRIPT_SIGNATURES):
        return True
    if MANUAL_TOOL_MODULE in joined and "download" in cmdline:
        return True

    repo = descriptor.hf_repo.lower()
    repo_name = repo.split("/")[-1]
    executable = os.path.basename(cmdline[0]).lower() if cmdline else name.lower()

    if executable in DOWNLOADER_NAMES or name.lower() in DOWNLOADER_NAMES:
        return any(host in lowered for host in HUB_HOSTS) and repo_name in lowered

    if executable in HUB_CLI_NAMES:
        return "download" in cmdline and repo in lowered

    return False
