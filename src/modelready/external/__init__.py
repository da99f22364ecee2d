from modelready.external.detector import (
    ExternalActivityDetector,
    ExternalActivitySignal,
    matches_acquisition,
)

__all__ = ["ExternalActivityDetector", "ExternalActivitySignal", "matches_acquisition"]
