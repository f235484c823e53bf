"""Replicate prediction provider (Veo 3 and versioned community models).

Official models are addressed by path
(``/models/google/veo-3/predictions``, no version); anything else goes to
``/predictions`` with a ``version`` field. Images are sent inline as data
URIs.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from genhub.schemas.generation import AdapterResponse, TaskStatusResponse, UnifiedGenerationRequest
from genhub.schemas.validation import ReplicateRequest
from genhub.services.errors import ProviderResponseError
from genhub.services.polling import PollOptions, normalize_task_state
from genhub.services.providers.base import BaseAdapter, parse_reply, read_json

logger = logging.getLogger(__name__)

BASE_URL = "https://api.replicate.com/v1"
OFFICIAL_VEO3_URL = f"{BASE_URL}/models/google/veo-3/predictions"
DEFAULT_VERSION = "google/veo-3"


class _Prediction(BaseModel):
    id: str | None = None
    status: str | None = None
    output: list[Any] | str | None = None
    error: str | None = None

    def output_urls(self) -> list[str]:
        if isinstance(self.output, str):
            return [self.output]
        if isinstance(self.output, list):
            return [item for item in self.output if isinstance(item, str)]
        return []


class ReplicateAdapter(BaseAdapter):
    validation_schema = ReplicateRequest
    result_type = "video"
    content_type = "video/mp4"
    poll_options = PollOptions(max_duration=600, poll_interval=60)

    def default_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _is_official(self) -> bool:
        endpoint = self.config.api_endpoint or ""
        return "google/veo-3" in endpoint or "google/veo3" in endpoint

    async def build_input(self, request: UnifiedGenerationRequest) -> dict[str, Any]:
        data: dict[str, Any] = {
            "prompt": request.prompt,
            "aspectRatio": self.get_parameter(request, "aspect_ratio", "16:9"),
            "generateAudio": True,
        }
        image = self.first_image(request)
        if image:
            data["image"] = image if image.startswith("data:") else await self.fetch_as_data_uri(image)

        data["length"] = self.get_parameter(request, "duration", 8)
        negative = self.get_parameter(request, "negative_prompt")
        if negative:
            data["negativePrompt"] = negative
        seed = self.get_parameter(request, "seed")
        if seed is not None:
            data["seed"] = seed
        audio = self.get_parameter(request, "generate_audio", self.get_parameter(request, "generateAudio"))
        if audio is not None:
            data["generateAudio"] = bool(audio)
        return data

    async def _dispatch(self, request: UnifiedGenerationRequest) -> AdapterResponse:
        prediction_input = await self.build_input(request)
        if self._is_official():
            url = OFFICIAL_VEO3_URL
            payload: dict[str, Any] = {"input": prediction_input}
        else:
            url = self.config.api_endpoint or f"{BASE_URL}/predictions"
            payload = {
                "version": self.config.model_version or DEFAULT_VERSION,
                "input": prediction_input,
            }

        logger.info("[%s] Creating prediction at %s", self.name, url)
        resp = await self.http_client.post(url, json=payload)
        prediction = parse_reply(_Prediction, read_json(resp), "Replicate prediction")
        if not prediction.id:
            raise ProviderResponseError("Prediction ID not found in Replicate response")

        logger.info("[%s] Prediction created: %s", self.name, prediction.id)
        results = await self._await_task(prediction.id)
        return AdapterResponse.success(results, task_id=prediction.id)

    async def check_task_status(self, task_id: str) -> TaskStatusResponse:
        resp = await self.http_client.get(f"{BASE_URL}/predictions/{task_id}", timeout=30.0)
        prediction = parse_reply(_Prediction, read_json(resp), "Replicate prediction")

        state = normalize_task_state(prediction.status)
        if state == "SUCCESS":
            urls = prediction.output_urls()
            if not urls:
                return TaskStatusResponse(status="FAILED", error="API returned success but no video URLs")
            return TaskStatusResponse(status="SUCCESS", output=urls)
        if state == "FAILED":
            return TaskStatusResponse(status="FAILED", error=prediction.error or "Prediction failed")
        return TaskStatusResponse(status="PROCESSING")
