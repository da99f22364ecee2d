from contextlib import asynccontextmanager

from fastapi import FastAPI

from modelready.cache.janitor import CacheJanitor
from modelready.cache.locator import CacheLocator
from modelready.cache.validator import ArtifactValidator
from modelready.config import Settings
from modelready.external.detector import ExternalActivityDetector
from modelready.health import new_cache as new_health_cache
from modelready.health import router as health_router
from modelready.logger import create_logger
from modelready.models import get_descriptor
from modelready.readiness.coordinator import ReadinessCoordinator
from modelready.readiness.download import HubDownloader
from modelready.readiness.routes import router as readiness_router

logger = create_logger(__name__)

API_PREFIX = "/api/v1"


def build_coordinator(settings: Settings) -> ReadinessCoordinator:
    """Wire the collaborators of the single process-wide coordinator."""
    locator = CacheLocator(
        settings.cache_roots,
        root_ttl=settings.root_ttl_seconds,
        canonical_snapshot=settings.canonical_snapshot,
        search_depth=settings.search_depth,
        allow_legacy_layout=settings.allow_legacy_layout,
    )
    validator = ArtifactValidator()
    detector = ExternalActivityDetector(
        locator,
        lock_file_name=settings.lock_file_name,
        ttl=settings.external_ttl_seconds,
    )
    janitor = CacheJanitor(locator, validator, detector)
    downloader = HubDownloader(
        timeout=settings.download_timeout_seconds,
        progress_interval=settings.progress_interval_seconds,
    )
    return ReadinessCoordinator(
        locator,
        validator,
        janitor,
        detector,
        downloader,
        settings=settings,
        default_descriptor=get_descriptor(settings.default_model),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = getattr(app.state, "settings", None) or Settings.from_env()
    app.state.settings = settings
    app.state.coordinator = build_coordinator(settings)
    app.state.health_cache = new_health_cache()

    await app.state.coordinator.begin()

    yield

    await app.state.coordinator.shutdown()


def create_app(settings: Settings = None) -> FastAPI:
    app = FastAPI(lifespan=lifespan)
    if settings is not None:
        app.state.settings = settings

    app.include_router(health_router)

    app.include_router(
        readiness_router,
        prefix=API_PREFIX + "/models",
        tags=["Models"],
    )
    return app


app = create_app()
