"""REST API routes for model readiness."""

import asyncio
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request, Response, status

from modelready.cache.types import CacheStatusReport, CleanupReport
from modelready.exceptions import AcquisitionConflictError, UnknownModelError
from modelready.logger import create_logger
from modelready.models import MODEL_REGISTRY, get_descriptor
from modelready.models.types import ModelDescriptor
from modelready.readiness.coordinator import ReadinessCoordinator
from modelready.readiness.types import (
    ReadinessOutcome,
    ReadinessStatus,
    ReadyRequest,
    ReadyResponse,
)

logger = create_logger(__name__)

router = APIRouter()


def get_coordinator(request: Request) -> ReadinessCoordinator:
    """Get the ReadinessCoordinator from app state."""
    return request.app.state.coordinator


def _descriptor_or_404(model_id: Optional[str]) -> Optional[ModelDescriptor]:
    if model_id is None:
        return None
    try:
        return get_descriptor(model_id)
    except UnknownModelError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.get(
    "/status",
    response_model=ReadinessStatus,
    summary="Readiness status",
    description="""Current state of the readiness machine.

    States: NOT_STARTED, CHECKING_CACHE, WAITING_FOR_EXTERNAL_ACTIVITY,
    DOWNLOADING, VALIDATING, READY, FAILED. `progress` is the fraction of the
    current phase; `outcome` is set once the generation is terminal.
    """,
)
async def get_status(request: Request) -> ReadinessStatus:
    return get_coordinator(request).status()


@router.post(
    "/ready",
    response_model=ReadyResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        202: {"description": "Readiness attempt started or joined"},
        404: {"description": "Unknown model id"},
        409: {"description": "Another model is being prepared"},
    },
    summary="Request model readiness",
    description="""Start (or join) the readiness attempt for a model.

    With `wait: true` the call blocks until the attempt is terminal and the
    outcome is returned. A finished attempt for the same model is returned
    as-is until a reset.

    Example request:
    ```json
    {
        "model_id": "gemma3_2B_4bit",
        "wait": false
    }
    ```
    """,
)
async def request_ready(body: ReadyRequest, request: Request) -> ReadyResponse:
    coordinator = get_coordinator(request)
    descriptor = _descriptor_or_404(body.model_id)

    try:
        if body.wait:
            outcome = await coordinator.request_ready(descriptor)
            return ReadyResponse(status=coordinator.status(), outcome=outcome)
        await coordinator.begin(descriptor)
        return ReadyResponse(status=coordinator.status())
    except AcquisitionConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except Exception as e:
        logger.error(f"Error requesting readiness: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error requesting readiness: {str(e)}"
        )


@router.get(
    "/wait",
    response_model=ReadinessOutcome,
    responses={504: {"description": "Timed out before the attempt finished"}},
    summary="Wait for the current attempt",
)
async def wait_ready(
    request: Request,
    timeout: Optional[float] = Query(None, gt=0, description="Seconds to wait before giving up"),
) -> ReadinessOutcome:
    """Block until the current generation is terminal and return its outcome."""
    coordinator = get_coordinator(request)
    try:
        return await coordinator.wait(timeout=timeout)
    except asyncio.TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail=f"Model not ready after {timeout}s"
        )


@router.post("/reset", response_model=ReadinessStatus, summary="Reset readiness state")
async def reset(request: Request) -> ReadinessStatus:
    """Discard cached readiness state; parked waiters receive a CANCELLED outcome."""
    return await get_coordinator(request).reset(reason="Reset requested via API")


@router.post(
    "/clear-cache",
    response_model=CleanupReport,
    responses={404: {"description": "Unknown model id"}},
    summary="Delete a model from every cache root",
)
async def clear_cache(
    request: Request,
    model_id: Optional[str] = Query(None, description="Model id; defaults to the current model"),
) -> CleanupReport:
    coordinator = get_coordinator(request)
    descriptor = _descriptor_or_404(model_id)
    report = await coordinator.clear_cache(descriptor)
    logger.info(f"Cache cleared: removed {len(report.removed)}, skipped {len(report.skipped)}")
    return report


@router.get("/cache", response_model=CacheStatusReport, summary="Cache usage")
async def get_cache_status(request: Request) -> CacheStatusReport:
    """Total size, model count and leftover partial downloads across cache roots."""
    coordinator = get_coordinator(request)
    try:
        return await asyncio.to_thread(coordinator.janitor.cache_status)
    except Exception as e:
        logger.error(f"Error reading cache status: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error reading cache status: {str(e)}"
        )


@router.post(
    "/cleanup",
    response_model=CleanupReport,
    responses={409: {"description": "A readiness attempt is in flight"}},
    summary="Remove interrupted downloads",
)
async def cleanup(request: Request, response: Response) -> CleanupReport:
    coordinator = get_coordinator(request)
    try:
        report = await coordinator.cleanup()
    except AcquisitionConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    if not report.ok:
        response.status_code = status.HTTP_207_MULTI_STATUS
    return report


@router.get("/registry", response_model=List[ModelDescriptor], summary="Known models")
async def get_registry() -> List[ModelDescriptor]:
    return list(MODEL_REGISTRY.values())
