"""Flux image generation provider.

Synchronous: one POST returns ``{"data": [{"url": ...}]}``. Flux has no image
input field, so reference image URLs are prepended to the prompt.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from genhub.schemas.generation import AdapterResponse, UnifiedGenerationRequest
from genhub.schemas.validation import FluxRequest
from genhub.services.errors import ProviderResponseError
from genhub.services.providers.base import LONG_TIMEOUT, BaseAdapter, parse_reply, read_json
from genhub.services.providers.sizing import to_aspect_ratio

logger = logging.getLogger(__name__)


class _FluxImage(BaseModel):
    url: str | None = None


class _FluxReply(BaseModel):
    data: list[_FluxImage] = []


class FluxAdapter(BaseAdapter):
    validation_schema = FluxRequest
    timeout = LONG_TIMEOUT

    def default_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json; charset=utf-8",
        }

    def build_payload(self, request: UnifiedGenerationRequest) -> dict[str, Any]:
        prompt = request.prompt
        if request.input_images:
            prompt = f"{' '.join(request.input_images)} {prompt}"

        size_input = self.get_parameter(request, "size_or_ratio", "1024x1024")
        aspect_ratio = to_aspect_ratio(size_input)
        logger.debug("[%s] size %s -> aspect ratio %s", self.name, size_input, aspect_ratio)

        return {
            "model": self.config.model_identifier,
            "prompt": prompt,
            "aspect_ratio": aspect_ratio,
            "output_format": "png",
            "safety_tolerance": self.get_parameter(request, "safety_tolerance", 6),
            "seed": self.get_parameter(request, "seed"),
            "prompt_upsampling": self.get_parameter(request, "prompt_upsampling", False),
        }

    async def _dispatch(self, request: UnifiedGenerationRequest) -> AdapterResponse:
        payload = self.build_payload(request)
        logger.info("[%s] Calling Flux API %s", self.name, self.config.api_endpoint)

        resp = await self.http_client.post(self.config.api_endpoint, json=payload)
        reply = parse_reply(_FluxReply, read_json(resp), "Flux")

        urls = [item.url for item in reply.data if item.url]
        if not urls:
            raise ProviderResponseError("No image URL found in Flux response")

        results = await self.to_results(urls[:1])
        return AdapterResponse.success(results)
