"""Process-wide readiness state machine.

One ``ReadinessCoordinator`` is built by the application's composition root.
All state transitions happen on the event loop; registry changes that span an
``await`` take ``self._lock``. Each readiness attempt belongs to a numbered
generation whose future is resolved exactly once, so every waiter attached to a
generation sees the same outcome.
"""

import asyncio
import errno
import threading
import time
from pathlib import Path
from typing import Optional, Tuple

from modelready.cache.janitor import CacheJanitor
from modelready.cache.locator import CacheLocator
from modelready.cache.types import CleanupReport, ResolvedModelDirectory, ValidationFailure, ValidationResult
from modelready.cache.validator import ArtifactValidator
from modelready.config import Settings
from modelready.exceptions import (
    AcquisitionConflictError,
    DownloadError,
    ExternalActivityTimeout,
    FailureCause,
    is_retryable,
)
from modelready.external.detector import ExternalActivityDetector
from modelready.logger import create_logger
from modelready.models import get_descriptor
from modelready.models.types import ModelDescriptor
from modelready.readiness.download import Downloader, classify_os_error
from modelready.readiness.types import (
    OutcomeStatus,
    ReadinessOutcome,
    ReadinessState,
    ReadinessStatus,
)

logger = create_logger(__name__)

PERMISSION_ERRNOS = (errno.EACCES, errno.EPERM)


class _Generation:
    """One readiness attempt and the waiters parked on it."""

    def __init__(self, number: int, descriptor: ModelDescriptor):
        self.number = number
        self.descriptor = descriptor
        self.future: Optional[asyncio.Future] = None
        self.task: Optional[asyncio.Task] = None
        self.outcome: Optional[ReadinessOutcome] = None
        self.waiters = 0
        self.attempt = 0

    @property
    def in_flight(self) -> bool:
        return self.task is not None and self.outcome is None

    def ensure_future(self) -> asyncio.Future:
        if self.future is None:
            self.future = asyncio.get_running_loop().create_future()
            if self.outcome is not None:
                self.future.set_result(self.outcome)
        return self.future

    def resolve(self, outcome: ReadinessOutcome) -> bool:
        if self.outcome is not None:
            return False
        self.outcome = outcome
        if self.future is not None and not self.future.done():
            self.future.set_result(outcome)
        return True


class ReadinessCoordinator:
    """Drives a model from "unknown" to READY or FAILED and shares the result."""

    def __init__(
        self,
        locator: CacheLocator,
        validator: ArtifactValidator,
        janitor: CacheJanitor,
        detector: ExternalActivityDetector,
        downloader: Downloader,
        settings: Optional[Settings] = None,
        default_descriptor: Optional[ModelDescriptor] = None,
    ):
        self.locator = locator
        self.validator = validator
        self.janitor = janitor
        self.detector = detector
        self.downloader = downloader
        self.settings = settings or Settings()
        self.default_descriptor = default_descriptor or get_descriptor(self.settings.default_model)

        self._lock = asyncio.Lock()
        self._generation_counter = 0
        self._generation = _Generation(0, self.default_descriptor)
        self._state = ReadinessState.NOT_STARTED
        self._progress = 0.0
        self._resolved: Optional[ResolvedModelDirectory] = None

        self._probe_lock = threading.Lock()
        self._probe_value = False
        self._probe_checked_at: Optional[float] = None

        logger.info(
            f"ReadinessCoordinator initialized for {self.default_descriptor.model_id}, "
            f"roots: {[str(r) for r in self.locator.cache_roots]}"
        )

    @property
    def state(self) -> ReadinessState:
        return self._state

    @property
    def progress(self) -> float:
        return self._progress

    @property
    def descriptor(self) -> ModelDescriptor:
        return self._generation.descriptor

    def model_directory(self) -> Optional[Path]:
        """Snapshot directory to load from, once READY."""
        if self._state != ReadinessState.READY or self._resolved is None:
            return None
        return self._resolved.snapshot_dir

    def status(self) -> ReadinessStatus:
        gen = self._generation
        return ReadinessStatus(
            state=self._state,
            model_id=gen.descriptor.model_id,
            generation=gen.number,
            attempt=gen.attempt,
            progress=self._progress,
            waiters=gen.waiters,
            directory=str(self._resolved.snapshot_dir) if self._resolved else None,
            outcome=gen.outcome,
        )

    def is_ready_now(self) -> bool:
        """Debounced, non-blocking readiness probe.

        Returns the cached answer until ``debounce_seconds`` have passed, then
        re-checks that the required files still exist with a non-trivial size.
        """
        with self._probe_lock:
            now = time.monotonic()
            if self._probe_checked_at is not None and now - self._probe_checked_at < self.settings.debounce_seconds:
                return self._probe_value

            value = False
            resolved = self._resolved
            if self._state == ReadinessState.READY and resolved is not None:
                value = self.validator.has_required_files(
                    resolved.snapshot_dir, self._generation.descriptor.required_files
                )
                if not value:
                    logger.warning(f"Model files disappeared from {resolved.snapshot_dir}")

            self._probe_value = value
            self._probe_checked_at = now
            return value

    def _clear_probe(self):
        with self._probe_lock:
            self._probe_value = False
            self._probe_checked_at = None

    def _new_generation(self, descriptor: ModelDescriptor) -> _Generation:
        self._generation_counter += 1
        gen = _Generation(self._generation_counter, descriptor)
        self._generation = gen
        self._state = ReadinessState.NOT_STARTED
        self._progress = 0.0
        self._resolved = None
        self._clear_probe()
        self.locator.invalidate()
        self.detector.invalidate()
        return gen

    def _set_state(self, gen: _Generation, state: ReadinessState):
        if gen is not self._generation or self._state == state:
            return
        logger.info(f"[{gen.descriptor.model_id}#{gen.number}] {self._state.value} -> {state.value}")
        self._state = state

    def _set_progress(self, gen: _Generation, value: float):
        if gen is self._generation:
            self._progress = max(0.0, min(1.0, value))

    def _finish(self, gen: _Generation, outcome: ReadinessOutcome):
        if not gen.resolve(outcome):
            return
        if gen is not self._generation or outcome.status == OutcomeStatus.CANCELLED:
            return
        if outcome.is_ready:
            self._progress = 1.0
            self._set_state(gen, ReadinessState.READY)
            self._clear_probe()
            logger.info(f"Model {outcome.model_id} ready at {outcome.directory}")
        else:
            self._set_state(gen, ReadinessState.FAILED)
            logger.error(
                f"Model {outcome.model_id} failed ({outcome.cause.value}) after "
                f"{outcome.attempts} attempt(s): {outcome.message}"
            )

    async def begin(self, descriptor: Optional[ModelDescriptor] = None) -> _Generation:
        """Start an attempt for ``descriptor`` unless one is running or finished.

        Raises:
            AcquisitionConflictError: If another model's attempt is in flight.
        """
        descriptor = descriptor or self._generation.descriptor
        async with self._lock:
            gen = self._generation
            if gen.outcome is not None:
                if gen.descriptor.model_id == descriptor.model_id:
                    return gen
                logger.info(f"Switching model {gen.descriptor.model_id} -> {descriptor.model_id}")
                gen = self._new_generation(descriptor)
            elif gen.task is not None:
                if gen.descriptor.model_id != descriptor.model_id:
                    raise AcquisitionConflictError(
                        f"Model {gen.descriptor.model_id} is being prepared; "
                        f"cannot start {descriptor.model_id}"
                    )
                return gen
            else:
                gen.descriptor = descriptor

            gen.ensure_future()
            gen.task = asyncio.create_task(self._run(gen))
            return gen

    async def request_ready(
        self,
        descriptor: Optional[ModelDescriptor] = None,
        timeout: Optional[float] = None,
    ) -> ReadinessOutcome:
        """Start or join the attempt for ``descriptor`` and wait for its outcome."""
        gen = await self.begin(descriptor)
        return await self._await_generation(gen, timeout)

    async def wait(self, timeout: Optional[float] = None) -> ReadinessOutcome:
        """Park until the current generation reaches a terminal outcome.

        Starts the attempt for the current model if nothing has started it yet.

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first. The attempt keeps running.
        """
        gen = self._generation
        if gen.task is None and gen.outcome is None:
            gen = await self.begin(gen.descriptor)
        return await self._await_generation(gen, timeout)

    async def _await_generation(self, gen: _Generation, timeout: Optional[float]) -> ReadinessOutcome:
        future = gen.ensure_future()
        gen.waiters += 1
        try:
            if timeout is None:
                return await asyncio.shield(future)
            return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        finally:
            gen.waiters -= 1

    async def reset(self, reason: str = "Readiness reset") -> ReadinessStatus:
        """Discard cached state and return to NOT_STARTED.

        Waiters of the discarded generation are resolved with a CANCELLED outcome.
        """
        async with self._lock:
            await self._discard_generation(reason)
        return self.status()

    async def _discard_generation(self, reason: str):
        """Swap in a fresh generation and tear the old attempt down. Caller holds ``self._lock``."""
        old = self._generation
        self._new_generation(old.descriptor)
        logger.info(f"{reason}: generation {old.number} -> {self._generation.number}")
        old.resolve(ReadinessOutcome.cancelled(old.descriptor.model_id, old.number, reason))

        # No new attempt may start until the old one has fully stopped writing.
        task = old.task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            self.locator.invalidate()

    async def shutdown(self):
        await self.reset(reason="Coordinator shutting down")

    async def clear_cache(self, descriptor: Optional[ModelDescriptor] = None) -> CleanupReport:
        """Reset, then remove every cached file of the model from all roots."""
        descriptor = descriptor or self._generation.descriptor
        async with self._lock:
            await self._discard_generation(f"Clearing cache for {descriptor.model_id}")

            report = CleanupReport()
            for root in self.locator.cache_roots:
                report.merge(await self._in_thread(self.janitor.purge_model, root, descriptor))
            self.locator.invalidate()
            return report

    @staticmethod
    async def _in_thread(func, *args):
        """Run blocking ``func`` in a worker thread.

        If the caller is cancelled, the thread's work still finishes before
        the cancellation propagates.
        """
        work = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            return await asyncio.shield(work)
        except asyncio.CancelledError:
            await asyncio.gather(work, return_exceptions=True)
            raise

    async def cleanup(self) -> CleanupReport:
        """Remove interrupted-download leftovers from every existing cache root.

        Raises:
            AcquisitionConflictError: While an attempt is in flight.
        """
        async with self._lock:
            if self._generation.in_flight:
                raise AcquisitionConflictError(
                    f"Cannot clean caches while {self._generation.descriptor.model_id} is being prepared"
                )
            report = CleanupReport()
            for root in self.locator.list_cache_roots():
                report.merge(await self._in_thread(self.janitor.cleanup_all, root))
            return report

    async def _run(self, gen: _Generation):
        try:
            outcome = await self._acquire(gen)
        except asyncio.CancelledError:
            gen.resolve(ReadinessOutcome.cancelled(gen.descriptor.model_id, gen.number))
            raise
        except Exception as e:
            logger.error(f"Unexpected error while preparing {gen.descriptor.model_id}: {e}", exc_info=True)
            outcome = ReadinessOutcome.failed(
                gen.descriptor, gen.number, FailureCause.GENERIC, str(e), attempts=gen.attempt
            )
        self._finish(gen, outcome)

    def _check_cache(self, descriptor: ModelDescriptor) -> Tuple[Optional[ResolvedModelDirectory], Optional[ValidationResult]]:
        resolved = self.locator.locate(descriptor)
        if resolved is None:
            return None, None
        return resolved, self.validator.validate(resolved.snapshot_dir, descriptor.required_files)

    def _ready(self, gen: _Generation, resolved: ResolvedModelDirectory) -> ReadinessOutcome:
        if gen is self._generation:
            self._resolved = resolved
        return ReadinessOutcome.ready(gen.descriptor, gen.number, str(resolved.snapshot_dir), attempts=gen.attempt)

    async def _acquire(self, gen: _Generation) -> ReadinessOutcome:
        descriptor = gen.descriptor
        settings = self.settings
        loop = asyncio.get_running_loop()
        external_deadline = loop.time() + settings.external_wait_timeout_seconds
        external_expired = False

        while True:
            self._set_state(gen, ReadinessState.CHECKING_CACHE)
            resolved, result = await self._in_thread(self._check_cache, descriptor)
            if resolved is not None and result.is_complete:
                return self._ready(gen, resolved)

            if resolved is None:
                logger.info(f"No cached copy of {descriptor.model_id}")
            else:
                logger.info(f"Cached {descriptor.model_id} incomplete: {result.file} {result.reason.value}")

            # Files an external acquisition is still writing must stay put.
            if not external_expired and await self._in_thread(self.detector.is_active, descriptor):
                try:
                    await self._wait_for_external(gen, external_deadline)
                except ExternalActivityTimeout as e:
                    logger.warning(f"{e.message}; taking over")
                    external_expired = True
                continue

            if resolved is not None:
                if result.is_corrupted:
                    await self._in_thread(
                        self.janitor.remove_invalid_files, resolved.snapshot_dir, descriptor.required_files
                    )
                await self._in_thread(self.janitor.cleanup_markers, resolved.model_dir)

            gen.attempt += 1
            self._set_state(gen, ReadinessState.DOWNLOADING)
            self._set_progress(gen, 0.0)
            logger.info(f"Download attempt {gen.attempt}/{settings.max_attempts} for {descriptor.model_id}")

            try:
                await self.downloader.download(
                    descriptor,
                    self.locator.primary_root,
                    lambda fraction: self._set_progress(gen, fraction),
                )
            except DownloadError as e:
                cause, message = e.cause, e.message
            except OSError as e:
                cause, message = classify_os_error(e), str(e)
            else:
                self.locator.invalidate()
                self._set_state(gen, ReadinessState.VALIDATING)
                resolved, result = await self._in_thread(self._check_cache, descriptor)
                if resolved is not None and result.is_complete:
                    return self._ready(gen, resolved)
                cause, message = classify_validation(resolved, result)

            logger.warning(f"Attempt {gen.attempt} for {descriptor.model_id} failed ({cause.value}): {message}")

            if not is_retryable(cause):
                return ReadinessOutcome.failed(descriptor, gen.number, cause, message, attempts=gen.attempt)
            if gen.attempt >= settings.max_attempts:
                return ReadinessOutcome.failed(
                    descriptor, gen.number, cause, message, attempts=gen.attempt, retries_exhausted=True
                )

            for root in self.locator.cache_roots:
                await self._in_thread(self.janitor.cleanup_invalid_model_directories, root, descriptor)
            self.locator.invalidate()

            backoff = settings.retry_backoff_base ** gen.attempt
            logger.info(f"Retrying {descriptor.model_id} in {backoff:.1f}s")
            await asyncio.sleep(backoff)

    async def _wait_for_external(self, gen: _Generation, deadline: float):
        """Yield to an external acquisition until it ends or ``deadline`` passes.

        Raises:
            ExternalActivityTimeout: When the deadline passes with activity still present.
        """
        descriptor = gen.descriptor
        settings = self.settings
        loop = asyncio.get_running_loop()
        total = settings.external_wait_timeout_seconds

        self._set_state(gen, ReadinessState.WAITING_FOR_EXTERNAL_ACTIVITY)
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ExternalActivityTimeout(
                    f"External acquisition of {descriptor.model_id} still running after {total:.0f}s"
                )
            await asyncio.sleep(min(settings.external_poll_interval_seconds, remaining))
            if total > 0:
                self._set_progress(gen, min(0.9, (total - (deadline - loop.time())) / total))
            if not await self._in_thread(self.detector.is_active, descriptor):
                break

        logger.info(f"External acquisition of {descriptor.model_id} finished")
        await asyncio.sleep(settings.external_settle_seconds)
        self.locator.invalidate()


def classify_validation(
    resolved: Optional[ResolvedModelDirectory],
    result: Optional[ValidationResult],
) -> Tuple[FailureCause, str]:
    """Failure cause for an artifact set that is still invalid after a download."""
    if resolved is None or result is None:
        return FailureCause.DOWNLOAD_CORRUPTED, "No snapshot directory after download"

    message = f"{result.file}: {result.reason.value}"
    if result.detail:
        message = f"{message} ({result.detail})"

    if result.reason == ValidationFailure.IO_ERROR:
        if result.errno in PERMISSION_ERRNOS:
            return FailureCause.PERMISSION_DENIED, message
        return FailureCause.IO_ERROR, message
    if result.is_corrupted and result.file.startswith("tokenizer"):
        return FailureCause.TOKENIZER_CORRUPTED, message
    if result.file == "config.json" and result.reason == ValidationFailure.MISSING:
        return FailureCause.CONFIGURATION_MISSING, message
    return FailureCause.DOWNLOAD_CORRUPTED, message
