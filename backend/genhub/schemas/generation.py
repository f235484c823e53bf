"""Pydantic v2 schemas for the unified generation contract."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from genhub.services.errors import GenerationError

ResultType = Literal["image", "video", "audio"]
ResponseStatus = Literal["SUCCESS", "PROCESSING", "ERROR"]
TaskStatus = Literal["SUCCESS", "PROCESSING", "FAILED"]


class ProviderConfig(BaseModel):
    """Static per-model configuration supplied by the caller."""

    adapter_name: str
    model_identifier: str
    api_endpoint: str
    api_flavor: str | None = None
    stored_auth_key: str | None = None
    storage_offload: bool = False
    storage_path_prefix: str | None = None
    model_version: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def api_key(self) -> str:
        return (self.stored_auth_key or "").strip()


class UnifiedGenerationRequest(BaseModel):
    """Provider-agnostic generation request.

    The prompt is not checked here; adapters validate inside ``dispatch`` so
    that a bad prompt comes back as an ERROR response.
    """

    prompt: str = ""
    input_images: list[str] = Field(default_factory=list)
    number_of_outputs: int = Field(default=1, ge=1)
    parameters: dict[str, Any] = Field(default_factory=dict)
    session_id: str | None = None


class GenerationResult(BaseModel):
    type: ResultType
    url: str
    metadata: dict[str, Any] | None = None


class AdapterError(BaseModel):
    code: str
    message: str
    details: Any = None
    is_retryable: bool = Field(default=False, serialization_alias="isRetryable")

    @classmethod
    def from_exception(cls, exc: GenerationError) -> "AdapterError":
        return cls(
            code=exc.code.value,
            message=exc.message,
            details=exc.details,
            is_retryable=exc.is_retryable,
        )


class AdapterResponse(BaseModel):
    """Normalised outcome of one ``dispatch`` call."""

    status: ResponseStatus
    results: list[GenerationResult] | None = None
    task_id: str | None = Field(default=None, serialization_alias="taskId")
    progress: float | None = Field(default=None, ge=0.0, le=1.0)
    message: str | None = None
    error: AdapterError | None = None

    @model_validator(mode="after")
    def _check_status_fields(self) -> "AdapterResponse":
        if self.status != "SUCCESS" and self.results:
            raise ValueError("results are only allowed on SUCCESS")
        if self.status == "ERROR" and self.error is None:
            raise ValueError("ERROR responses require an error")
        if self.status != "ERROR" and self.error is not None:
            raise ValueError("error is only allowed on ERROR")
        return self

    @classmethod
    def success(
        cls,
        results: list[GenerationResult],
        *,
        task_id: str | None = None,
        message: str | None = None,
    ) -> "AdapterResponse":
        return cls(status="SUCCESS", results=results, task_id=task_id, message=message)

    @classmethod
    def processing(
        cls,
        task_id: str,
        *,
        progress: float | None = None,
        message: str | None = None,
    ) -> "AdapterResponse":
        return cls(status="PROCESSING", task_id=task_id, progress=progress, message=message)

    @classmethod
    def failure(cls, exc: GenerationError, *, task_id: str | None = None) -> "AdapterResponse":
        return cls(
            status="ERROR",
            message=exc.message,
            error=AdapterError.from_exception(exc),
            task_id=task_id,
        )

    def to_wire(self) -> dict[str, Any]:
        """Serialise with the camelCase keys callers expect."""
        return self.model_dump(by_alias=True, exclude_none=True)


class TaskStatusResponse(BaseModel):
    """One status check of a provider task. ``output`` holds raw provider URLs."""

    status: TaskStatus
    output: list[str] | None = None
    error: str | None = None
    progress: float | None = None
    # Set when the media kind is only known once the task finishes
    result_type: ResultType | None = None

    @model_validator(mode="after")
    def _check_output(self) -> "TaskStatusResponse":
        if self.status != "SUCCESS" and self.output:
            raise ValueError("output is only allowed on SUCCESS")
        if self.progress is not None:
            self.progress = min(max(self.progress, 0.0), 1.0)
        return self
