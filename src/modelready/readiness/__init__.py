from modelready.readiness.coordinator import ReadinessCoordinator
from modelready.readiness.download import Downloader, HubDownloader
from modelready.readiness.types import (
    FailureCategory,
    OutcomeStatus,
    ReadinessOutcome,
    ReadinessState,
    ReadinessStatus,
)

__all__ = [
    "Downloader",
    "FailureCategory",
    "HubDownloader",
    "OutcomeStatus",
    "ReadinessCoordinator",
    "ReadinessOutcome",
    "ReadinessState",
    "ReadinessStatus",
]
