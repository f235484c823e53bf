"""Tuzi Midjourney proxy providers (imagine and video).

The proxy follows the common MJ-proxy protocol:

    POST <endpoint>/mj/submit/imagine|video  -> {"code": 1, "description": ..., "result": "<taskId>"}
    GET  <endpoint>/mj/task/<taskId>/fetch   -> {"status": "IN_PROGRESS", "progress": "45%", "imageUrl": ...}

Unlike the other Tuzi endpoints it takes the bare key in ``Authorization``
(no ``Bearer`` prefix).
"""

from __future__ import annotations

import logging
import re
from abc import abstractmethod
from typing import Any, ClassVar

from pydantic import BaseModel

from genhub.schemas.generation import AdapterResponse, TaskStatusResponse, UnifiedGenerationRequest
from genhub.schemas.validation import BaseGenerationRequest, MidjourneyVideoRequest
from genhub.services.errors import ProviderResponseError
from genhub.services.polling import PollOptions, normalize_task_state, parse_progress
from genhub.services.providers.base import LONG_TIMEOUT, BaseAdapter, parse_reply, read_json

logger = logging.getLogger(__name__)

# Submit codes meaning "accepted": 1 submitted, 21 already exists, 22 queued
_ACCEPTED_CODES = (1, 21, 22)

_DATA_URI_RE = re.compile(r"^data:image/\w+;base64,(.*)$", re.DOTALL)


class _SubmitReply(BaseModel):
    code: int | None = None
    description: str | None = None
    result: str | int | None = None


class _TaskRecord(BaseModel):
    status: str | None = None
    progress: str | float | None = None
    imageUrl: str | None = None
    videoUrl: str | None = None
    videoUrls: list[Any] = []
    failReason: str | None = None

    def output_urls(self, result_type: str) -> list[str]:
        if result_type == "image":
            return [self.imageUrl] if self.imageUrl else []
        urls = [self.videoUrl] if self.videoUrl else []
        for item in self.videoUrls:
            url = item.get("url") if isinstance(item, dict) else item
            if isinstance(url, str) and url not in urls:
                urls.append(url)
        return urls


def _loggable(payload: dict[str, Any]) -> dict[str, Any]:
    """Replace inline base64 blobs with their sizes."""
    if "base64Array" not in payload:
        return payload
    return {**payload, "base64Array": [f"<{len(item)} chars>" for item in payload["base64Array"]]}


class _TuziMidjourneyBase(BaseAdapter):
    timeout = LONG_TIMEOUT
    submit_path: ClassVar[str] = ""

    def default_headers(self) -> dict[str, str]:
        return {
            "Authorization": self.api_key,
            "Content-Type": "application/json",
        }

    @property
    def _base(self) -> str:
        return self.config.api_endpoint.rstrip("/")

    @abstractmethod
    def build_payload(self, request: UnifiedGenerationRequest) -> dict[str, Any]:
        """Provider JSON body for the submit call."""

    async def _dispatch(self, request: UnifiedGenerationRequest) -> AdapterResponse:
        payload = {k: v for k, v in self.build_payload(request).items() if v is not None}
        logger.info("[%s] Submitting %s: %s", self.name, self.submit_path, _loggable(payload))

        resp = await self.http_client.post(f"{self._base}{self.submit_path}", json=payload)
        reply = parse_reply(_SubmitReply, read_json(resp), "Midjourney submit")
        if reply.code not in _ACCEPTED_CODES:
            raise ProviderResponseError(
                f"Midjourney submit rejected: {reply.description or 'unknown error'}",
                {"code": reply.code},
            )
        if reply.result is None or not str(reply.result).strip():
            raise ProviderResponseError("Midjourney response did not include a task id")

        task_id = str(reply.result)
        logger.info("[%s] Midjourney task submitted: %s", self.name, task_id)
        results = await self._await_task(task_id)
        return AdapterResponse.success(results, task_id=task_id)

    async def check_task_status(self, task_id: str) -> TaskStatusResponse:
        resp = await self.http_client.get(f"{self._base}/mj/task/{task_id}/fetch", timeout=30.0)
        record = parse_reply(_TaskRecord, read_json(resp), "Midjourney task")

        state = normalize_task_state(record.status)
        if state == "SUCCESS":
            urls = record.output_urls(self.result_type)
            if not urls:
                return TaskStatusResponse(status="FAILED", error="Task completed but no result URL found")
            return TaskStatusResponse(status="SUCCESS", output=urls, progress=1.0)
        if state == "FAILED":
            return TaskStatusResponse(status="FAILED", error=record.failReason or "Midjourney task failed")
        return TaskStatusResponse(status="PROCESSING", progress=parse_progress(record.progress))


class TuziMidjourneyImagineAdapter(_TuziMidjourneyBase):
    """Midjourney imagine: prompt (plus optional reference images) to a 4-up grid."""

    validation_schema = BaseGenerationRequest
    submit_path = "/mj/submit/imagine"
    poll_options = PollOptions(max_duration=900, poll_interval=20)

    def build_payload(self, request: UnifiedGenerationRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "prompt": request.prompt,
            "botType": self.get_parameter(request, "botType", "MID_JOURNEY"),
            "notifyHook": self.get_parameter(request, "notifyHook"),
            "noStorage": self.get_parameter(request, "noStorage", False),
            "accountFilter": self.get_parameter(request, "accountFilter"),
            "state": self.get_parameter(request, "state"),
        }
        base64_array = self.get_parameter(request, "base64Array")
        if not base64_array:
            # Only inline images can be sent; URL references belong in the prompt
            matches = (_DATA_URI_RE.match(image) for image in request.input_images)
            base64_array = [m.group(1) for m in matches if m and m.group(1)]
        if base64_array:
            payload["base64Array"] = base64_array
        return payload


class TuziMidjourneyVideoAdapter(_TuziMidjourneyBase):
    """Midjourney video: animate a source image, prompt optional."""

    validation_schema = MidjourneyVideoRequest
    result_type = "video"
    content_type = "video/mp4"
    submit_path = "/mj/submit/video"
    poll_options = PollOptions(max_duration=1200, poll_interval=30)

    def build_payload(self, request: UnifiedGenerationRequest) -> dict[str, Any]:
        return {
            "prompt": request.prompt,
            "videoType": self.get_parameter(request, "videoType", "vid_1.1_i2v_720"),
            "motion": self.get_parameter(request, "motion", "low"),
            "image": self.get_parameter(request, "image", self.first_image(request)),
            "endImage": self.get_parameter(request, "endImage"),
            "loop": self.get_parameter(request, "loop", False),
            "batchSize": self.get_parameter(request, "batchSize", 4),
            "action": self.get_parameter(request, "action"),
            "index": self.get_parameter(request, "index"),
            "taskId": self.get_parameter(request, "taskId"),
            "state": self.get_parameter(request, "state"),
            "notifyHook": self.get_parameter(request, "notifyHook"),
            "noStorage": self.get_parameter(request, "noStorage", False),
        }
