"""Static model registry."""

from modelready.exceptions import UnknownModelError
from modelready.models.types import (
    DEFAULT_MODEL_KEY,
    MODEL_REGISTRY,
    REQUIRED_FILES,
    ModelDescriptor,
    ModelKey,
    hub_dir_name,
)


def get_descriptor(model_id: str) -> ModelDescriptor:
    """Look up a descriptor by internal id.

    Raises:
        UnknownModelError: If the id is not in the registry.
    """
    try:
        key = ModelKey(model_id)
    except ValueError:
        allowed = ", ".join(sorted(k.value for k in ModelKey))
        raise UnknownModelError(f"Unknown model {model_id}. Allowed: {allowed}")
    return MODEL_REGISTRY[key]


__all__ = [
    "DEFAULT_MODEL_KEY",
    "MODEL_REGISTRY",
    "REQUIRED_FILES",
    "ModelDescriptor",
    "ModelKey",
    "get_descriptor",
    "hub_dir_name",
]
