"""Pollo AI video generation providers.

Pollo exposes every model behind one platform API:

    POST <BASE_URL><model path>   {"input": {...}}  -> {"code": "SUCCESS", "data": {"taskId": ...}}
    GET  <BASE_URL>/<taskId>/status                 -> {"code": "SUCCESS", "data": {"generations": [...]}}

``PolloAdapter`` drives Veo 3; ``PolloKlingAdapter`` drives Kling with its
own input fields. Authentication is an ``x-api-key`` header.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from genhub.schemas.generation import AdapterResponse, TaskStatusResponse, UnifiedGenerationRequest
from genhub.schemas.validation import PolloKlingRequest, PolloRequest
from genhub.services.errors import AuthenticationError, InvalidRequestError, ProviderResponseError
from genhub.services.polling import PollOptions, normalize_task_state
from genhub.services.providers.base import BaseAdapter, mask_key, parse_reply, read_json

logger = logging.getLogger(__name__)

BASE_URL = "https://pollo.ai/api/platform/generation"


class _PolloTask(BaseModel):
    taskId: str | None = None


class _PolloSubmitReply(BaseModel):
    code: str | None = None
    message: str | None = None
    data: _PolloTask | None = None


class _PolloGeneration(BaseModel):
    status: str | None = None
    url: str | None = None
    failMsg: str | None = None


class _PolloStatusData(BaseModel):
    generations: list[_PolloGeneration] = []


class _PolloStatusReply(BaseModel):
    code: str | None = None
    message: str | None = None
    data: _PolloStatusData | None = None


class PolloAdapter(BaseAdapter):
    """Pollo Veo 3: text/image to video, 16:9, optional audio."""

    validation_schema = PolloRequest
    result_type = "video"
    content_type = "video/mp4"
    poll_options = PollOptions(max_duration=600, poll_interval=60)
    default_path = "/google/veo3"

    def default_headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    def submit_url(self) -> str:
        endpoint = (self.config.api_endpoint or "").strip() or self.default_path
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        if not endpoint.startswith("/"):
            endpoint = f"/{endpoint}"
        return f"{BASE_URL}{endpoint}"

    def build_input(self, request: UnifiedGenerationRequest) -> dict[str, Any]:
        data: dict[str, Any] = {
            "prompt": request.prompt,
            # Veo 3 on Pollo only renders 16:9
            "aspectRatio": "16:9",
            "generateAudio": True,
        }
        image = self.first_image(request)
        if image:
            if image.startswith("data:"):
                logger.warning("[%s] Pollo documents URL images only, passing data URI as-is", self.name)
            data["image"] = image

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
        if not self.api_key:
            raise AuthenticationError("Pollo API key not configured")

        url = self.submit_url()
        payload = {"input": self.build_input(request)}
        logger.info("[%s] Creating Pollo task at %s (key=%s)", self.name, url, mask_key(self.api_key))

        resp = await self.http_client.post(url, json=payload)
        reply = parse_reply(_PolloSubmitReply, read_json(resp), "Pollo submit")
        if reply.code != "SUCCESS":
            raise ProviderResponseError(f"Pollo API returned error: {reply.message or 'Unknown error'}")
        task_id = reply.data.taskId if reply.data else None
        if not task_id:
            raise ProviderResponseError("TaskId not found in Pollo response")

        logger.info("[%s] Pollo task submitted: %s", self.name, task_id)
        results = await self._await_task(task_id)
        return AdapterResponse.success(results, task_id=task_id)

    async def check_task_status(self, task_id: str) -> TaskStatusResponse:
        resp = await self.http_client.get(f"{BASE_URL}/{task_id}/status", timeout=30.0)
        reply = parse_reply(_PolloStatusReply, read_json(resp), "Pollo status")

        if reply.code != "SUCCESS" or reply.data is None:
            return TaskStatusResponse(
                status="FAILED",
                error=reply.message or "Status query API returned invalid format",
            )
        if not reply.data.generations:
            # Still queued
            return TaskStatusResponse(status="PROCESSING")

        generation = reply.data.generations[0]
        state = normalize_task_state(generation.status)
        if state == "SUCCESS":
            if not generation.url:
                return TaskStatusResponse(status="FAILED", error="Task succeeded but no output URL found")
            return TaskStatusResponse(status="SUCCESS", output=[generation.url])
        if state == "FAILED":
            return TaskStatusResponse(status="FAILED", error=generation.failMsg or "Unknown error")
        return TaskStatusResponse(status="PROCESSING")


class PolloKlingAdapter(PolloAdapter):
    """Pollo Kling: image-to-video from a public image URL, 5s or 10s."""

    validation_schema = PolloKlingRequest
    default_path = "/kling-ai/kling-v2"

    def build_input(self, request: UnifiedGenerationRequest) -> dict[str, Any]:
        data: dict[str, Any] = {"prompt": request.prompt}

        image = self.first_image(request)
        if image:
            if image.startswith("data:"):
                raise InvalidRequestError(
                    "Pollo Kling only accepts image URLs, not base64 data. "
                    "Provide a publicly accessible JPG or PNG URL."
                )
            data["image"] = image

        duration = self.get_parameter(request, "duration", 5)
        if duration not in (5, 10):
            logger.warning("[%s] Unsupported duration %s, using 5s", self.name, duration)
            duration = 5
        data["length"] = duration

        negative = self.get_parameter(request, "negative_prompt")
        if negative:
            data["negativePrompt"] = negative
        data["strength"] = self.get_parameter(request, "strength", 50)
        return data
