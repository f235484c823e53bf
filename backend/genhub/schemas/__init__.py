"""Pydantic v2 schemas package."""

from genhub.schemas.generation import (
    AdapterError,
    AdapterResponse,
    GenerationResult,
    ProviderConfig,
    TaskStatusResponse,
    UnifiedGenerationRequest,
)

__all__ = [
    "AdapterError",
    "AdapterResponse",
    "GenerationResult",
    "ProviderConfig",
    "TaskStatusResponse",
    "UnifiedGenerationRequest",
]
