"""Kling video generation provider (Tuzi gateway).

Supports:
- Text-to-video (``<endpoint>/text2video``) and image-to-video
  (``<endpoint>/image2video``) with a single reference image
- 5s / 10s clips, aspect ratio snapped to 1:1, 16:9, 9:16, 3:4, 4:3

Submit returns a task id; the adapter polls ``<endpoint>/task/<id>`` until
the clip is ready.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from genhub.schemas.generation import AdapterResponse, TaskStatusResponse, UnifiedGenerationRequest
from genhub.schemas.validation import KlingRequest
from genhub.services.errors import ProviderResponseError
from genhub.services.polling import PollOptions, normalize_task_state
from genhub.services.providers.base import LONG_TIMEOUT, BaseAdapter, parse_reply, read_json
from genhub.services.providers.sizing import snap_to_nearest

logger = logging.getLogger(__name__)

MODEL_NAME = "kling-v2-master"
KLING_RATIOS = ("1:1", "16:9", "9:16", "3:4", "4:3")

_KLING_SIZE_TABLE = {
    "1024x1024": "1:1",
    "512x512": "1:1",
    "768x768": "1:1",
    "1024x1536": "3:4",
    "1024x1792": "9:16",
    "1536x1024": "4:3",
    "1792x1024": "16:9",
}

# Kling API mode names
_MODES = {"standard": "std", "pro": "pro"}


class _KlingVideo(BaseModel):
    url: str | None = None
    video_url: str | None = None
    download_url: str | None = None


class _KlingTaskResult(BaseModel):
    videos: list[_KlingVideo] = []
    video_url: str | None = None
    url: str | None = None
    result_url: str | None = None
    error: str | None = None

    def first_url(self) -> str | None:
        direct = self.video_url or self.url or self.result_url
        if direct:
            return direct
        for video in self.videos:
            found = video.url or video.video_url or video.download_url
            if found:
                return found
        return None


class _KlingTask(BaseModel):
    task_id: str | None = None
    task_status: str | None = None
    task_status_msg: str | None = None
    task_result: _KlingTaskResult = _KlingTaskResult()


class _KlingReply(BaseModel):
    code: int = 0
    message: str | None = None
    task_id: str | None = None
    data: _KlingTask | None = None

    @property
    def any_task_id(self) -> str | None:
        return self.task_id or (self.data.task_id if self.data else None)


class KlingAdapter(BaseAdapter):
    validation_schema = KlingRequest
    result_type = "video"
    content_type = "video/mp4"
    timeout = LONG_TIMEOUT
    poll_options = PollOptions(max_duration=1200, poll_interval=60)

    def default_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @property
    def _base(self) -> str:
        return self.config.api_endpoint.rstrip("/")

    def build_payload(self, request: UnifiedGenerationRequest) -> dict[str, Any]:
        size_input = self.get_parameter(request, "size_or_ratio", "1024x1024")
        duration = self.get_parameter(request, "duration", 5)
        mode = self.get_parameter(request, "mode", "pro")
        return {
            "model_name": MODEL_NAME,
            "mode": _MODES.get(mode, mode),
            "prompt": request.prompt,
            "aspect_ratio": snap_to_nearest(size_input, KLING_RATIOS, "1:1", _KLING_SIZE_TABLE),
            "duration": duration if duration in (5, 10) else 5,
            "image": self.first_image(request),
            "static_mask": None,
            "dynamic_masks": None,
        }

    async def _dispatch(self, request: UnifiedGenerationRequest) -> AdapterResponse:
        route = "image2video" if request.input_images else "text2video"
        url = f"{self._base}/{route}"
        payload = self.build_payload(request)
        logger.info(
            "[%s] Submitting %s task (ratio=%s, duration=%s)",
            self.name, route, payload["aspect_ratio"], payload["duration"],
        )

        resp = await self.http_client.post(url, json=payload)
        reply = parse_reply(_KlingReply, read_json(resp), "Kling submit")
        if reply.code != 0:
            raise ProviderResponseError(f"Kling task creation failed: {reply.message or 'unknown error'}")

        task_id = reply.any_task_id
        if not task_id:
            raise ProviderResponseError("Kling response did not include a task id")

        logger.info("[%s] Kling task created: %s", self.name, task_id)
        results = await self._await_task(task_id)
        return AdapterResponse.success(results, task_id=task_id)

    async def check_task_status(self, task_id: str) -> TaskStatusResponse:
        resp = await self.http_client.get(f"{self._base}/task/{task_id}", timeout=30.0)
        reply = parse_reply(_KlingReply, read_json(resp), "Kling task")

        if reply.code != 0:
            return TaskStatusResponse(status="FAILED", error=reply.message or "API returned error")

        task = reply.data or _KlingTask()
        state = normalize_task_state(task.task_status)
        if state == "SUCCESS":
            video_url = task.task_result.first_url()
            if not video_url:
                return TaskStatusResponse(status="FAILED", error="Task completed but no video URL found")
            return TaskStatusResponse(status="SUCCESS", output=[video_url])
        if state == "FAILED":
            return TaskStatusResponse(
                status="FAILED",
                error=task.task_status_msg or task.task_result.error or "Unknown error",
            )
        return TaskStatusResponse(status="PROCESSING")
