"""Tuzi OpenAI-compatible image generation provider.

POST ``<endpoint>/generations`` in the OpenAI images shape. Items come back
either as ``b64_json`` (uploaded directly) or ``url`` (downloaded and
re-hosted).
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from genhub.schemas.generation import AdapterResponse, GenerationResult, UnifiedGenerationRequest
from genhub.schemas.validation import TuziOpenAIRequest
from genhub.services.errors import InvalidRequestError, ProviderResponseError
from genhub.services.media import guess_content_type
from genhub.services.providers.base import LONG_TIMEOUT, BaseAdapter, parse_reply, read_json
from genhub.services.providers.sizing import snap_to_nearest

logger = logging.getLogger(__name__)

SUPPORTED_SIZES = ("1024x1024", "1024x1536", "1536x1024")
DEFAULT_MODEL = "gpt-image-1"

# Forwarded verbatim with the OpenAI defaults
_PASSTHROUGH_DEFAULTS: dict[str, Any] = {
    "quality": "auto",
    "output_format": "png",
    "background": "auto",
    "moderation": "auto",
    "output_compression": 100,
}


class _ImageItem(BaseModel):
    url: str | None = None
    b64_json: str | None = None


class _ImagesReply(BaseModel):
    data: list[_ImageItem] = []


class TuziOpenAIAdapter(BaseAdapter):
    validation_schema = TuziOpenAIRequest
    timeout = LONG_TIMEOUT
    path_prefix = "tuzi-images"

    def default_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def build_payload(self, request: UnifiedGenerationRequest) -> dict[str, Any]:
        prompt = request.prompt
        if request.input_images:
            prompt = f"{' '.join(request.input_images)} {prompt}"
            logger.debug("[%s] Prepended %d reference images to prompt", self.name, len(request.input_images))

        size_input = self.get_parameter(request, "size_or_ratio")
        size = (
            snap_to_nearest(size_input, SUPPORTED_SIZES, default="1024x1024")
            if size_input else self.get_parameter(request, "size", "auto")
        )

        payload: dict[str, Any] = {
            "model": DEFAULT_MODEL,
            "prompt": prompt,
            "n": self.get_parameter(request, "n", request.number_of_outputs),
            "size": size,
        }
        for key, default in _PASSTHROUGH_DEFAULTS.items():
            payload[key] = self.get_parameter(request, key, default)
        for key in ("style", "user", "seed"):
            value = self.get_parameter(request, key)
            if value is not None:
                payload[key] = value
        return payload

    async def _item_to_result(self, item: _ImageItem) -> GenerationResult | None:
        if item.b64_json:
            if self.offloader.enabled:
                url = await self.offloader.offload_base64(item.b64_json, self.storage_prefix())
            else:
                # No storage: hand the inline image back to the caller
                logger.warning("[%s] Storage offload disabled, returning inline image", self.name)
                url = f"data:image/png;base64,{item.b64_json}"
            return GenerationResult(type="image", url=url)
        if item.url:
            url = await self.offloader.offload_url(
                item.url, guess_content_type(item.url), self.storage_prefix()
            )
            return GenerationResult(type="image", url=url)
        return None

    async def _dispatch(self, request: UnifiedGenerationRequest) -> AdapterResponse:
        task_type = self.get_parameter(request, "task_type", "generate")
        if task_type == "edit":
            raise InvalidRequestError("Image editing is not supported by this adapter")
        if task_type != "generate":
            raise InvalidRequestError(f"Unsupported task type: {task_type}. Use 'generate'")

        url = f"{self.config.api_endpoint.rstrip('/')}/generations"
        payload = self.build_payload(request)
        logger.info("[%s] Calling generate API %s (n=%s, size=%s)", self.name, url, payload["n"], payload["size"])

        resp = await self.http_client.post(url, json=payload)
        reply = parse_reply(_ImagesReply, read_json(resp), "Tuzi images")

        results = []
        for item in reply.data:
            result = await self._item_to_result(item)
            if result is not None:
                results.append(result)

        if not results:
            raise ProviderResponseError("No image generated from API response")
        return AdapterResponse.success(results)
