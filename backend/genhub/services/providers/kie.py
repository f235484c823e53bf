"""Kie.ai providers: GPT-4o image, Flux Kontext and Midjourney.

All three share one envelope (``{"code": 200, "msg": ..., "data": {...}}``)
and Bearer auth. Submission returns PROCESSING with the task id straight
away; callers come back through ``query_task`` to collect the result.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from genhub.schemas.generation import (
    AdapterResponse,
    GenerationResult,
    ResultType,
    TaskStatusResponse,
    UnifiedGenerationRequest,
)
from genhub.services.errors import ProviderError, ProviderResponseError
from genhub.services.media import guess_content_type
from genhub.services.polling import normalize_task_state, parse_progress
from genhub.services.providers.base import LONG_TIMEOUT, BaseAdapter, parse_reply, read_json
from genhub.services.providers.sizing import snap_to_nearest

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.kie.ai"
KIE_RATIOS = ("1:1", "3:2", "2:3")


class _KieEnvelope(BaseModel):
    code: int
    msg: str | None = None
    data: dict[str, Any] | None = None


class _KieBase(BaseAdapter):
    """Shared Kie.ai transport: envelope checks and task submission."""

    timeout = LONG_TIMEOUT

    def default_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @property
    def _base(self) -> str:
        return (self.config.api_endpoint or DEFAULT_BASE_URL).rstrip("/")

    def _unwrap(self, resp: Any, what: str) -> dict[str, Any]:
        envelope = parse_reply(_KieEnvelope, read_json(resp), what)
        if envelope.code != 200 or envelope.data is None:
            raise ProviderError(
                f"Kie {what} failed: {envelope.msg or 'unknown error'}",
                {"code": envelope.code},
                is_retryable=envelope.code >= 500,
            )
        return envelope.data

    async def _submit(self, path: str, payload: dict[str, Any]) -> AdapterResponse:
        resp = await self.http_client.post(f"{self._base}{path}", json=payload)
        data = self._unwrap(resp, "submit")
        task_id = data.get("taskId")
        if not task_id:
            raise ProviderResponseError("Kie response did not include a taskId", data)
        logger.info("[%s] Kie task submitted: %s", self.name, task_id)
        return AdapterResponse.processing(
            str(task_id), progress=0.0, message="Generation task submitted"
        )

    async def _record(self, path: str, task_id: str) -> dict[str, Any]:
        resp = await self.http_client.get(f"{self._base}{path}", params={"taskId": task_id}, timeout=30.0)
        return self._unwrap(resp, "record-info")


# ---------------------------------------------------------------------------
# GPT-4o image
# ---------------------------------------------------------------------------

class _Kie4oResult(BaseModel):
    resultUrls: list[str] = []


class _Kie4oRecord(BaseModel):
    status: str | None = None
    progress: str | float | None = None
    response: _Kie4oResult | None = None
    errorMessage: str | None = None
    errorCode: int | str | None = None


# Optional fields forwarded when present
_4O_PASSTHROUGH = ("maskUrl", "isEnhance", "uploadCn", "enableFallback", "fallbackModel", "callBackUrl")


class KieAdapter(_KieBase):
    """GPT-4o image generation via Kie.ai."""

    path_prefix = "kie-images"

    def build_payload(self, request: UnifiedGenerationRequest) -> dict[str, Any]:
        size_input = self.get_parameter(request, "size", self.get_parameter(request, "size_or_ratio"))
        payload: dict[str, Any] = {
            "prompt": request.prompt,
            "size": snap_to_nearest(size_input, KIE_RATIOS, "1:1"),
            "nVariants": request.number_of_outputs,
        }
        if request.input_images:
            payload["filesUrl"] = request.input_images
        for key in _4O_PASSTHROUGH:
            value = self.get_parameter(request, key)
            if value is not None:
                payload[key] = value
        return payload

    async def _dispatch(self, request: UnifiedGenerationRequest) -> AdapterResponse:
        return await self._submit("/api/v1/gpt4o-image/generate", self.build_payload(request))

    async def check_task_status(self, task_id: str) -> TaskStatusResponse:
        data = await self._record("/api/v1/gpt4o-image/record-info", task_id)
        record = parse_reply(_Kie4oRecord, data, "Kie 4o record")

        state = normalize_task_state(record.status)
        if state == "SUCCESS":
            urls = record.response.resultUrls if record.response else []
            if not urls:
                # Kie flips to SUCCESS before the URLs are attached
                return TaskStatusResponse(status="PROCESSING", progress=1.0)
            return TaskStatusResponse(status="SUCCESS", output=urls, progress=1.0)
        if state == "FAILED":
            return TaskStatusResponse(
                status="FAILED", error=record.errorMessage or "Image generation failed"
            )
        return TaskStatusResponse(status="PROCESSING", progress=parse_progress(record.progress) or 0.0)


# ---------------------------------------------------------------------------
# Flux Kontext
# ---------------------------------------------------------------------------

class _KontextResult(BaseModel):
    originImageUrl: str | None = None
    resultImageUrl: str | None = None


class _KontextRecord(BaseModel):
    successFlag: int = 0
    errorMessage: str | None = None
    errorCode: int | str | None = None
    response: _KontextResult | None = None


class KieFluxKontextAdapter(_KieBase):
    """Flux Kontext image generation/editing via Kie.ai."""

    content_type = "image/jpeg"
    path_prefix = "kie-flux-kontext"

    def build_payload(self, request: UnifiedGenerationRequest) -> dict[str, Any]:
        params = request.parameters

        def typed(key: str, kind: type, default: Any) -> Any:
            value = params.get(key)
            return value if isinstance(value, kind) and value != "" else default

        payload: dict[str, Any] = {
            "prompt": request.prompt,
            "enableTranslation": typed("enableTranslation", bool, True),
            "aspectRatio": typed("aspectRatio", str, "16:9"),
            "outputFormat": typed("outputFormat", str, "jpeg"),
            "promptUpsampling": typed("promptUpsampling", bool, False),
            "model": typed("model", str, self.config.model_version or "flux-kontext-pro"),
            "safetyTolerance": typed("safetyTolerance", int, 2),
        }
        for key in ("uploadCn", "callBackUrl", "watermark"):
            if params.get(key) is not None:
                payload[key] = params[key]

        input_image = params.get("inputImage")
        if isinstance(input_image, str):
            payload["inputImage"] = input_image
        elif request.input_images:
            payload["inputImage"] = self.first_image(request)
        return payload

    async def _dispatch(self, request: UnifiedGenerationRequest) -> AdapterResponse:
        return await self._submit("/api/v1/flux/kontext/generate", self.build_payload(request))

    async def check_task_status(self, task_id: str) -> TaskStatusResponse:
        data = await self._record("/api/v1/flux/kontext/record-info", task_id)
        record = parse_reply(_KontextRecord, data, "Kie Flux Kontext record")

        if record.successFlag == 1:
            url = record.response.resultImageUrl if record.response else None
            if not url:
                return TaskStatusResponse(status="PROCESSING", progress=1.0)
            return TaskStatusResponse(status="SUCCESS", output=[url], progress=1.0)
        if record.successFlag in (2, 3):
            return TaskStatusResponse(
                status="FAILED", error=record.errorMessage or "Image generation failed"
            )
        return TaskStatusResponse(status="PROCESSING", progress=0.0)

    async def to_results(
        self,
        urls: list[str],
        result_type: ResultType | None = None,
        content_type: str | None = None,
    ) -> list[GenerationResult]:
        # Kontext serves jpeg unless the URL says otherwise
        content_type = content_type or guess_content_type(urls[0], self.content_type)
        return await super().to_results(urls, result_type, content_type)


# ---------------------------------------------------------------------------
# Midjourney
# ---------------------------------------------------------------------------

_VIDEO_TASKS = ("mj_video", "mj_video_hd")
# Task types that run without a speed tier
_NO_SPEED_TASKS = (*_VIDEO_TASKS, "mj_omni_reference")


class _MjResultUrl(BaseModel):
    resultUrl: str


class _MjResultInfo(BaseModel):
    resultUrls: list[_MjResultUrl] = []


class _MjRecord(BaseModel):
    taskType: str | None = None
    successFlag: int = 0
    resultInfoJson: _MjResultInfo | None = None
    errorMessage: str | None = None


class KieMidjourneyAdapter(_KieBase):
    """Midjourney image and video tasks via Kie.ai."""

    path_prefix = "kie-midjourney"

    def build_payload(self, request: UnifiedGenerationRequest) -> dict[str, Any]:
        task_type = self.get_parameter(request, "taskType", "mj_txt2img")
        payload: dict[str, Any] = {
            "prompt": request.prompt,
            "taskType": task_type,
            "enableTranslation": self.get_parameter(request, "enableTranslation", False),
            "aspectRatio": self.get_parameter(request, "aspectRatio", "16:9"),
            "version": self.get_parameter(request, "version", "7"),
        }
        if task_type not in _NO_SPEED_TASKS:
            payload["speed"] = self.get_parameter(request, "speed", "relaxed")
        if request.input_images:
            payload["fileUrls"] = request.input_images

        # Sent only when they differ from the Midjourney defaults
        for key, default in (("variety", 0), ("stylization", 100), ("weirdness", 0)):
            value = self.get_parameter(request, key, default)
            if value != default:
                payload[key] = value

        ow = self.get_parameter(request, "ow")
        if ow is not None and task_type == "mj_omni_reference":
            payload["ow"] = ow
        water_mark = self.get_parameter(request, "waterMark")
        if water_mark:
            payload["waterMark"] = water_mark
        if task_type in _VIDEO_TASKS:
            payload["videoBatchSize"] = self.get_parameter(request, "videoBatchSize", 1)
            payload["motion"] = self.get_parameter(request, "motion", "high")
        return payload

    async def _dispatch(self, request: UnifiedGenerationRequest) -> AdapterResponse:
        return await self._submit("/api/v1/mj/generate", self.build_payload(request))

    async def check_task_status(self, task_id: str) -> TaskStatusResponse:
        data = await self._record("/api/v1/mj/record-info", task_id)
        record = parse_reply(_MjRecord, data, "Kie Midjourney record")

        if record.successFlag == 1:
            urls = [item.resultUrl for item in (record.resultInfoJson or _MjResultInfo()).resultUrls]
            if not urls:
                return TaskStatusResponse(status="FAILED", error="Midjourney task finished without results")
            is_video = (record.taskType or "").startswith("mj_video")
            return TaskStatusResponse(
                status="SUCCESS", output=urls, result_type="video" if is_video else "image"
            )
        if record.successFlag in (2, 3):
            return TaskStatusResponse(
                status="FAILED", error=record.errorMessage or "Midjourney generation failed"
            )
        return TaskStatusResponse(status="PROCESSING")
