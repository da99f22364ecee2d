"""Runtime settings for the model readiness service."""

import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from modelready.models.types import ModelKey


DEFAULT_LOCK_FILE_NAME = ".manual_download_lock"
DEFAULT_CANONICAL_SNAPSHOT = "main"


def default_hub_cache() -> Path:
    """Primary Hugging Face hub cache, honouring HF_HUB_CACHE and HF_HOME."""
    hub_cache = os.environ.get("HF_HUB_CACHE")
    if hub_cache:
        return Path(hub_cache).expanduser()
    hf_home = os.environ.get("HF_HOME")
    if hf_home:
        return Path(hf_home).expanduser() / "hub"
    return Path.home() / ".cache" / "huggingface" / "hub"


def default_cache_roots() -> List[str]:
    """Well-known cache roots in priority order."""
    roots = [
        default_hub_cache(),
        Path.home() / "Library" / "Caches" / "MLXCache",
        Path("/Library/Caches/MLXCache"),
    ]
    return [str(r) for r in roots]


class Settings(BaseModel):
    """Tunables for cache scanning, external activity and retries.

    Attributes:
        cache_roots: Candidate cache roots, highest priority first. The first
            entry is where downloads land.
        default_model: Model requested at startup.
        root_ttl_seconds: How long the existence check of cache roots is reused.
        external_ttl_seconds: How long an external-activity answer is reused.
        debounce_seconds: Minimum interval between fresh is_ready_now() probes.
        external_wait_timeout_seconds: Upper bound on yielding to an external
            acquisition before taking over.
        external_poll_interval_seconds: Poll period while yielding.
        external_settle_seconds: Pause after external activity ends before re-checking.
        max_attempts: Download attempts per readiness generation.
        retry_backoff_base: Backoff before retry n is ``base ** n`` seconds.
        search_depth: Maximum depth of the nested-layout fallback search.
        allow_legacy_layout: Accept ``<root>/<model_id>/`` directories without snapshots.
    """
    cache_roots: List[str] = Field(default_factory=default_cache_roots)
    default_model: ModelKey = ModelKey.GEMMA3_2B_4BIT
    root_ttl_seconds: float = 30.0
    external_ttl_seconds: float = 2.0
    debounce_seconds: float = 1.5
    external_wait_timeout_seconds: float = 300.0
    external_poll_interval_seconds: float = 5.0
    external_settle_seconds: float = 2.0
    max_attempts: int = Field(3, ge=1)
    retry_backoff_base: float = 2.0
    search_depth: int = Field(3, ge=0)
    allow_legacy_layout: bool = False
    lock_file_name: str = DEFAULT_LOCK_FILE_NAME
    canonical_snapshot: str = DEFAULT_CANONICAL_SNAPSHOT
    download_timeout_seconds: float = 86400.0
    progress_interval_seconds: float = 2.0

    @property
    def primary_root(self) -> Path:
        return Path(self.cache_roots[0]).expanduser()

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "Settings":
        """Build settings from defaults plus MODELREADY_* overrides."""
        env = os.environ if environ is None else environ
        overrides = {}

        if (raw := env.get("MODELREADY_CACHE_ROOTS")):
            overrides["cache_roots"] = [x.strip() for x in raw.split(os.pathsep) if x.strip()]
        if (model := env.get("MODELREADY_DEFAULT_MODEL")):
            overrides["default_model"] = model

        float_fields = {
            "MODELREADY_ROOT_TTL": "root_ttl_seconds",
            "MODELREADY_EXTERNAL_TTL": "external_ttl_seconds",
            "MODELREADY_DEBOUNCE": "debounce_seconds",
            "MODELREADY_EXTERNAL_WAIT_TIMEOUT": "external_wait_timeout_seconds",
            "MODELREADY_EXTERNAL_POLL_INTERVAL": "external_poll_interval_seconds",
            "MODELREADY_RETRY_BACKOFF_BASE": "retry_backoff_base",
            "MODELREADY_DOWNLOAD_TIMEOUT": "download_timeout_seconds",
        }
        for key, field_name in float_fields.items():
            if (value := env.get(key)):
                overrides[field_name] = float(value)

        if (attempts := env.get("MODELREADY_MAX_ATTEMPTS")):
            overrides["max_attempts"] = int(attempts)
        if (depth := env.get("MODELREADY_SEARCH_DEPTH")):
            overrides["search_depth"] = int(depth)
        if (legacy := env.get("MODELREADY_ALLOW_LEGACY_LAYOUT")):
            overrides["allow_legacy_layout"] = legacy.strip().lower() in ("true", "1", "yes")

        return cls(**overrides)
