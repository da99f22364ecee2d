"""Static model descriptors."""

from enum import Enum
from typing import Dict, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


REQUIRED_FILES: Tuple[str, ...] = (
    "config.json",
    "tokenizer.json",
    "tokenizer_config.json",
    "special_tokens_map.json",
    "model.safetensors",
)


def hub_dir_name(repo_id: str) -> str:
    """Hub cache directory name for a repository id."""
    return "models--" + repo_id.replace("/", "--")


class ModelKey(str, Enum):
    """Closed set of supported models."""
    # App ids keep the "gemma3" prefix while pointing at the Gemma 2 MLX repos.
    GEMMA3_2B_4BIT = "gemma3_2B_4bit"
    GEMMA3_9B_4BIT = "gemma3_9B_4bit"
    LLAMA3_2_1B_4BIT = "llama3_2_1B_4bit"
    LLAMA3_2_3B_4BIT = "llama3_2_3B_4bit"


class ModelDescriptor(BaseModel):
    """Identifies one logical model and the artifact set it needs on disk.

    Attributes:
        model_id: Short internal id (the ModelKey value)
        name: Human readable name
        hf_repo: HuggingFace repository ID (e.g., "mlx-community/gemma-2-2b-it-4bit")
        cache_dir_name: Hub cache directory name (``models--<org>--<name>``)
        required_files: Ordered artifact filenames expected in a snapshot
        estimated_size_gb: Approximate download size, used for progress
    """
    model_config = ConfigDict(frozen=True)

    model_id: str = Field(..., description="Internal model id")
    name: str = Field(..., description="Display name")
    hf_repo: str = Field(..., description="HuggingFace repository ID")
    cache_dir_name: str = Field(..., description="Hub cache directory name")
    required_files: Tuple[str, ...] = Field(REQUIRED_FILES, description="Required artifact files")
    estimated_size_gb: float = Field(0.0, description="Approximate size in GB")

    @model_validator(mode="after")
    def cache_dir_matches_repo(self):
        expected = hub_dir_name(self.hf_repo)
        if self.cache_dir_name != expected:
            raise ValueError(
                f"cache_dir_name {self.cache_dir_name!r} does not match repo {self.hf_repo!r} "
                f"(expected {expected!r})"
            )
        if not self.required_files:
            raise ValueError("required_files must not be empty")
        return self

    @property
    def estimated_size_bytes(self) -> int:
        return int(self.estimated_size_gb * (1024 ** 3))


def _descriptor(key: ModelKey, name: str, hf_repo: str, estimated_size_gb: float) -> ModelDescriptor:
    return ModelDescriptor(
        model_id=key.value,
        name=name,
        hf_repo=hf_repo,
        cache_dir_name=hub_dir_name(hf_repo),
        estimated_size_gb=estimated_size_gb,
    )


MODEL_REGISTRY: Dict[ModelKey, ModelDescriptor] = {
    ModelKey.GEMMA3_2B_4BIT: _descriptor(
        ModelKey.GEMMA3_2B_4BIT, "Gemma 2 2B 4-bit (MLX)", "mlx-community/gemma-2-2b-it-4bit", 1.4
    ),
    ModelKey.GEMMA3_9B_4BIT: _descriptor(
        ModelKey.GEMMA3_9B_4BIT, "Gemma 2 9B 4-bit (MLX)", "mlx-community/gemma-2-9b-it-4bit", 5.2
    ),
    ModelKey.LLAMA3_2_1B_4BIT: _descriptor(
        ModelKey.LLAMA3_2_1B_4BIT, "Llama 3.2 1B 4-bit (MLX)", "mlx-community/Llama-3.2-1B-Instruct-4bit", 0.8
    ),
    ModelKey.LLAMA3_2_3B_4BIT: _descriptor(
        ModelKey.LLAMA3_2_3B_4BIT, "Llama 3.2 3B 4-bit (MLX)", "mlx-community/Llama-3.2-3B-Instruct-4bit", 1.9
    ),
}

DEFAULT_MODEL_KEY = ModelKey.GEMMA3_2B_4BIT
