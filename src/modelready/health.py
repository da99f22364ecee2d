import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel

from modelready.readiness.types import ReadinessState

router = APIRouter()

CACHE_TTL = 5.0  # 5 seconds


def new_cache() -> Dict[str, Any]:
    """Per-app liveness cache, stored on ``app.state.health_cache``."""
    return {"data": None, "timestamp": 0}


class HealthResponse(BaseModel):
    status: str
    state: ReadinessState
    model_id: str
    generation: int


class ReadinessResponse(BaseModel):
    ready: bool
    directory: Optional[str] = None


def get_health_data(request: Request) -> HealthResponse:
    coordinator = request.app.state.coordinator
    current = coordinator.status()
    return HealthResponse(
        status="unhealthy" if current.state == ReadinessState.FAILED else "healthy",
        state=current.state,
        model_id=current.model_id,
        generation=current.generation,
    )


@router.get("/health", response_model=HealthResponse, tags=["Health"])
@router.get("/livez", response_model=HealthResponse, tags=["Health"])
async def get_liveness(request: Request, response: Response):
    """Service liveness; unhealthy once the readiness attempt has failed terminally."""
    cache = request.app.state.health_cache
    current_time = time.time()
    if current_time - cache["timestamp"] < CACHE_TTL and cache["data"]:
        cached_response = HealthResponse(**cache["data"])
        if cached_response.status != "healthy":
            response.status_code = 503
        return cached_response

    health_data = get_health_data(request)

    cache["data"] = health_data.model_dump()
    cache["timestamp"] = current_time

    if health_data.status != "healthy":
        response.status_code = 503

    return health_data


@router.get("/readyz", response_model=ReadinessResponse, tags=["Health"])
async def get_readiness(request: Request, response: Response):
    """
    Indicates whether a usable model directory is available.
    Returns 200 if ready, 503 if not.
    """
    coordinator = request.app.state.coordinator
    is_ready = coordinator.is_ready_now()

    if not is_ready:
        response.status_code = 503
        return ReadinessResponse(ready=False)

    directory = coordinator.model_directory()
    return ReadinessResponse(ready=True, directory=str(directory) if directory else None)
