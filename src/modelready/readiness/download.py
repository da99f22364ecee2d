"""Download collaborator.

The coordinator only needs start, progress and completion from a downloader.
``HubDownloader`` runs ``snapshot_download`` in a child process so a cancelled
acquisition can be torn down completely, child processes included.
"""

import asyncio
import errno
import os
import sys
import time
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

import psutil
from huggingface_hub import snapshot_download

from modelready.exceptions import DownloadError, FailureCause
from modelready.logger import create_logger
from modelready.models.types import ModelDescriptor

logger = create_logger(__name__)

ProgressCallback = Callable[[float], None]


def _download_snapshot_subprocess(repo_id: str, cache_dir: str, allow_patterns: Sequence[str]):
    """Standalone function to download the artifact set - runs in subprocess."""
    return snapshot_download(
        repo_id=repo_id,
        cache_dir=cache_dir,
        allow_patterns=list(allow_patterns),
    )


class Downloader(Protocol):
    async def download(
        self,
        descriptor: ModelDescriptor,
        cache_root: Path,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Transfer the artifact set of ``descriptor`` into ``cache_root``.

        Raises:
            DownloadError: With a classified cause when the transfer fails.
        """
        ...


def classify_download_error(output: str) -> FailureCause:
    """Map a failed download's error output onto a failure cause."""
    if any(s in output for s in ("RepositoryNotFoundError", "RevisionNotFoundError", "EntryNotFoundError")):
        return FailureCause.NOT_FOUND
    if "No space left on device" in output or f"[Errno {errno.ENOSPC}]" in output:
        return FailureCause.DISK_FULL
    if "Permission denied" in output or "PermissionError" in output:
        return FailureCause.PERMISSION_DENIED
    return FailureCause.GENERIC


def classify_os_error(error: OSError) -> FailureCause:
    if error.errno == errno.ENOSPC:
        return FailureCause.DISK_FULL
    if error.errno in (errno.EACCES, errno.EPERM, errno.EROFS):
        return FailureCause.PERMISSION_DENIED
    return FailureCause.IO_ERROR


def repo_size_on_disk(repo_dir: Path) -> int:
    """Bytes held by a hub repo directory, symlinks excluded."""
    total = 0
    for dirpath, _, filenames in os.walk(repo_dir):
        for name in filenames:
            path = Path(dirpath) / name
            try:
                if not path.is_symlink():
                    total += path.stat().st_size
            except OSError:
                continue
    return total


async def terminate_process_tree(process: asyncio.subprocess.Process, timeout: float = 5):
    """Terminate the process and all its children."""
    pid = process.pid

    try:
        parent = psutil.Process(pid)
        processes = parent.children(recursive=True) + [parent]

        for p in processes:
            try:
                p.terminate()
            except psutil.NoSuchProcess:
                pass

        logger.info(f"Sent SIGTERM to download process tree (PID {pid}), waiting for graceful shutdown...")

        _, alive = psutil.wait_procs(processes, timeout=timeout)

        for p in alive:
            try:
                p.kill()
            except psutil.NoSuchProcess:
                pass

    except psutil.NoSuchProcess:
        logger.debug(f"Process {pid} already terminated")

    try:
        await asyncio.wait_for(process.wait(), timeout=10)
    except asyncio.TimeoutError:
        logger.warning(f"Process {pid} did not terminate after 10s")


class HubDownloader:
    """Downloads a model's artifact set with huggingface_hub in a child process."""

    def __init__(self, timeout: float = 86400, progress_interval: float = 2.0):
        self.timeout = timeout
        self.progress_interval = progress_interval

    async def _report_progress(
        self, repo_dir: Path, expected_bytes: int, on_progress: ProgressCallback
    ):
        if expected_bytes <= 0:
            return
        try:
            while True:
                await asyncio.sleep(self.progress_interval)
                size = await asyncio.to_thread(repo_size_on_disk, repo_dir)
                on_progress(min(0.99, size / expected_bytes))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Progress sampling stopped for {repo_dir}: {e}")

    async def download(
        self,
        descriptor: ModelDescriptor,
        cache_root: Path,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        cache_root = Path(cache_root)
        try:
            cache_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DownloadError(f"Cannot create cache root {cache_root}: {e}", classify_os_error(e))

        logger.info(f"Starting download for {descriptor.hf_repo} into {cache_root}")
        start = time.time()

        cmd = [
            sys.executable, "-c",
            f"from modelready.readiness.download import _download_snapshot_subprocess; "
            f"print(_download_snapshot_subprocess({descriptor.hf_repo!r}, {str(cache_root)!r}, "
            f"{list(descriptor.required_files)!r}))"
        ]

        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
        logger.info(f"Download subprocess started with PID {process.pid}")

        monitor_task = None
        if on_progress is not None:
            monitor_task = asyncio.create_task(
                self._report_progress(
                    cache_root / descriptor.cache_dir_name,
                    descriptor.estimated_size_bytes,
                    on_progress,
                )
            )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            await terminate_process_tree(process)
            raise DownloadError(f"Download timeout after {self.timeout:.0f}s for {descriptor.hf_repo}")
        except asyncio.CancelledError:
            logger.info(f"Download cancelled for {descriptor.hf_repo}")
            if process.returncode is None:
                await terminate_process_tree(process)
            raise
        finally:
            if monitor_task is not None:
                monitor_task.cancel()

        if process.returncode != 0:
            error_output = stderr.decode("utf-8", errors="replace")
            cause = classify_download_error(error_output)
            logger.warning(f"Download failed for {descriptor.hf_repo} ({cause.value}): {error_output[-300:]}")
            raise DownloadError(error_output[-500:] or f"exit code {process.returncode}", cause)

        if on_progress is not None:
            on_progress(1.0)

        lines = stdout.decode("utf-8", errors="replace").strip().splitlines()
        snapshot_path = Path(lines[-1]) if lines else cache_root / descriptor.cache_dir_name
        logger.info(f"Download finished for {descriptor.hf_repo} in {time.time() - start:.1f}s: {snapshot_path}")
        return snapshot_path
