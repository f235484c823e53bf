"""Adapter registry and factory.

Maps the ``adapter_name`` a provider is configured with to its adapter
class, resolves the API credential and builds the adapter with its shared
collaborators.

Usage:
    from genhub.services.registry import create_adapter
    async with create_adapter(config, storage=storage) as adapter:
        response = await adapter.dispatch(request)
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

import httpx

from genhub.schemas.generation import AdapterResponse, ProviderConfig, UnifiedGenerationRequest
from genhub.services.error_monitor import ErrorMonitor
from genhub.services.errors import StorageNotConfiguredError, UnknownAdapterError
from genhub.services.polling import TaskPoller
from genhub.services.providers.base import BaseAdapter
from genhub.services.providers.flux import FluxAdapter
from genhub.services.providers.kie import KieAdapter, KieFluxKontextAdapter, KieMidjourneyAdapter
from genhub.services.providers.kling import KlingAdapter
from genhub.services.providers.pollo import PolloAdapter, PolloKlingAdapter
from genhub.services.providers.replicate import ReplicateAdapter
from genhub.services.providers.tuzi_midjourney import (
    TuziMidjourneyImagineAdapter,
    TuziMidjourneyVideoAdapter,
)
from genhub.services.providers.tuzi_openai import TuziOpenAIAdapter
from genhub.services.retry import RetryConfig
from genhub.services.storage import ObjectStorage

logger = logging.getLogger(__name__)


ADAPTER_REGISTRY: dict[str, type[BaseAdapter]] = {
    "FluxAdapter": FluxAdapter,
    "TuziOpenAIAdapter": TuziOpenAIAdapter,
    "KieAdapter": KieAdapter,
    "KieFluxKontextAdapter": KieFluxKontextAdapter,
    "KieMidjourneyAdapter": KieMidjourneyAdapter,
    "KlingAdapter": KlingAdapter,
    "PolloAdapter": PolloAdapter,
    "PolloKlingAdapter": PolloKlingAdapter,
    "ReplicateAdapter": ReplicateAdapter,
    "TuziMidjourneyImagineAdapter": TuziMidjourneyImagineAdapter,
    "TuziMidjourneyVideoAdapter": TuziMidjourneyVideoAdapter,
}


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

def env_var_name(model_identifier: str) -> str:
    """``flux-pro-1.1`` → ``AI_PROVIDER_FLUX_PRO_1.1_API_KEY``."""
    return f"AI_PROVIDER_{model_identifier.upper().replace('-', '_')}_API_KEY"


def resolve_credential(config: ProviderConfig, environ: Mapping[str, str] | None = None) -> ProviderConfig:
    """Return ``config`` with an API key filled from the environment if it has none.

    A stored key always wins. A missing key is not an error here; some
    providers need none and the rest fail with an authentication error.
    """
    if config.stored_auth_key and config.stored_auth_key.strip():
        return config

    environ = os.environ if environ is None else environ
    name = env_var_name(config.model_identifier)
    value = environ.get(name, "")
    if value.strip():
        logger.info("[%s] Using API key from %s", config.adapter_name, name)
        return config.model_copy(update={"stored_auth_key": value})

    logger.debug("[%s] No API key configured (checked %s)", config.adapter_name, name)
    return config


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def available_adapters() -> list[str]:
    return sorted(ADAPTER_REGISTRY)


def is_adapter_available(adapter_name: str) -> bool:
    return adapter_name in ADAPTER_REGISTRY


def create_adapter(
    config: ProviderConfig,
    *,
    storage: ObjectStorage | None = None,
    error_monitor: ErrorMonitor | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    poller: TaskPoller | None = None,
    retry: RetryConfig | None = None,
    environ: Mapping[str, str] | None = None,
) -> BaseAdapter:
    """Build the adapter named by ``config.adapter_name``.

    Raises ``UnknownAdapterError`` for unregistered names and
    ``StorageNotConfiguredError`` when offload is requested without an
    initialised storage client. Both are setup faults, never per-request.
    """
    adapter_cls = ADAPTER_REGISTRY.get(config.adapter_name)
    if adapter_cls is None:
        raise UnknownAdapterError(config.adapter_name, available_adapters())

    if config.storage_offload and (storage is None or not storage.is_configured()):
        raise StorageNotConfiguredError(
            f"{config.adapter_name} has storage offload enabled but no storage client is initialised"
        )

    resolved = resolve_credential(config, environ)
    logger.debug("Creating %s for model %s", config.adapter_name, config.model_identifier)
    return adapter_cls(
        resolved,
        storage=storage,
        retry=retry,
        poller=poller,
        error_monitor=error_monitor,
        transport=transport,
    )


async def dispatch(
    config: ProviderConfig, request: UnifiedGenerationRequest, **deps: Any
) -> AdapterResponse:
    """Create an adapter, run one request and close its HTTP clients."""
    async with create_adapter(config, **deps) as adapter:
        return await adapter.dispatch(request)
