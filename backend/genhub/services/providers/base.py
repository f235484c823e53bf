"""Base adapter contract shared by every generation provider.

An adapter turns one ``UnifiedGenerationRequest`` into one
``AdapterResponse``. Subclasses implement ``_dispatch`` (and
``check_task_status`` when the provider is task based); everything else
comes from collaborators the base owns:

  - ``http_client``: provider client (auth headers, timeout, request logging)
  - ``poller``: the shared task polling state machine
  - ``offloader``: download + re-host of generated media
  - ``error_monitor``: sink for provider/internal failures

``dispatch`` never raises. Every fault is mapped into the error taxonomy and
returned as an ERROR response.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, ClassVar, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from genhub.schemas.generation import (
    AdapterResponse,
    GenerationResult,
    ProviderConfig,
    ResultType,
    TaskStatusResponse,
    UnifiedGenerationRequest,
)
from genhub.schemas.validation import BaseGenerationRequest
from genhub.services.error_monitor import ErrorMonitor, LoggingErrorMonitor, report_error
from genhub.services.errors import (
    MONITORED_CODES,
    InvalidParametersError,
    InvalidRequestError,
    PollingTimeoutError,
    ProviderResponseError,
    TaskFailedError,
    map_exception,
)
from genhub.services.media import MediaOffloader, to_data_uri
from genhub.services.polling import PollOptions, TaskPoller
from genhub.services.retry import RetryConfig, retry_with_backoff
from genhub.services.storage import ObjectStorage

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

DEFAULT_TIMEOUT = 60.0
# Submit calls for long-running generations
LONG_TIMEOUT = 600.0

_DEFAULT_CONTENT_TYPES = {"image": "image/png", "video": "video/mp4", "audio": "audio/mpeg"}


def mask_key(key: str | None) -> str:
    """Mask an API key for safe logging: show first 8 and last 4 chars."""
    if not key:
        return "<none>"
    if len(key) <= 16:
        return "***"
    return f"{key[:8]}...{key[-4:]}"


def parse_reply(model: type[M], data: Any, what: str) -> M:
    """Validate a provider reply against its typed model."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ProviderResponseError(
            f"Unexpected {what} response shape",
            {"errors": [err["msg"] for err in e.errors()], "body": data},
        ) from e


def read_json(resp: httpx.Response) -> Any:
    resp.raise_for_status()
    try:
        return resp.json()
    except ValueError as e:
        raise ProviderResponseError(
            "Provider returned a non-JSON body", {"status": resp.status_code, "body": resp.text[:300]}
        ) from e


class BaseAdapter(ABC):
    """Abstract provider adapter."""

    result_type: ClassVar[ResultType] = "image"
    content_type: ClassVar[str] = "image/png"
    validation_schema: ClassVar[type[BaseGenerationRequest] | None] = None
    timeout: ClassVar[float] = DEFAULT_TIMEOUT
    poll_options: ClassVar[PollOptions] = PollOptions()
    # Storage prefix when the provider config does not set one
    path_prefix: ClassVar[str | None] = None

    def __init__(
        self,
        config: ProviderConfig,
        *,
        storage: ObjectStorage | None = None,
        retry: RetryConfig | None = None,
        poller: TaskPoller | None = None,
        error_monitor: ErrorMonitor | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.name = config.adapter_name
        self.retry = retry or RetryConfig()
        self.poller = poller or TaskPoller()
        self.error_monitor = error_monitor or LoggingErrorMonitor()
        self.http_client = self.build_http_client(transport)
        # Downloads go to CDNs/buckets and must not carry provider credentials
        self._download_client = httpx.AsyncClient(timeout=DEFAULT_TIMEOUT, transport=transport)
        self.offloader = MediaOffloader(config, storage, self._download_client, self.retry)

    # ------------------------------------------------------------------
    # HTTP client
    # ------------------------------------------------------------------

    @property
    def api_key(self) -> str:
        return self.config.api_key

    def default_headers(self) -> dict[str, str]:
        """Headers sent on every provider call. Subclasses add auth."""
        return {"Content-Type": "application/json"}

    def build_http_client(self, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=self.default_headers(),
            timeout=self.timeout,
            transport=transport,
            event_hooks={"request": [self._log_request], "response": [self._log_response]},
        )

    async def _log_request(self, request: httpx.Request) -> None:
        logger.debug("[%s] HTTP %s %s", self.name, request.method, request.url)

    async def _log_response(self, response: httpx.Response) -> None:
        level = logging.WARNING if response.is_error else logging.DEBUG
        logger.log(
            level, "[%s] HTTP %d %s %s",
            self.name, response.status_code, response.request.method, response.request.url,
        )

    async def aclose(self) -> None:
        await self.http_client.aclose()
        await self._download_client.aclose()

    async def __aenter__(self) -> "BaseAdapter":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, request: UnifiedGenerationRequest) -> AdapterResponse:
        """Validate, call the provider and normalise the outcome. Never raises."""
        try:
            validated = self.validate_request(request)
            logger.info(
                "[%s] Dispatching model=%s images=%d outputs=%d key=%s",
                self.name, self.config.model_identifier, len(validated.input_images),
                validated.number_of_outputs, mask_key(self.api_key),
            )
            return await self._dispatch(validated)
        except Exception as e:
            return await self.handle_error(e, f"{self.name} dispatch")

    @abstractmethod
    async def _dispatch(self, request: UnifiedGenerationRequest) -> AdapterResponse:
        """Subclass implements the provider call."""
        ...

    def validate_request(self, request: UnifiedGenerationRequest) -> UnifiedGenerationRequest:
        """Parse against ``validation_schema`` and return the normalised request."""
        schema = self.validation_schema
        if schema is None:
            if not request.prompt or not request.prompt.strip():
                raise InvalidRequestError("Prompt is required")
            return request

        try:
            parsed = schema.model_validate(request.model_dump(exclude={"session_id"}))
        except ValidationError as e:
            messages = [
                f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ]
            logger.warning("[%s] Request validation failed: %s", self.name, messages)
            raise InvalidParametersError(
                f"Invalid request parameters: {'; '.join(messages)}", messages
            ) from e

        return UnifiedGenerationRequest(
            prompt=parsed.prompt,
            input_images=parsed.input_images,
            number_of_outputs=parsed.number_of_outputs,
            parameters=parsed.parameters.model_dump(exclude_none=True),
            session_id=request.session_id,
        )

    async def handle_error(
        self, exc: Exception, context: str | None = None, task_id: str | None = None
    ) -> AdapterResponse:
        error = map_exception(exc)
        logger.error(
            "[%s] %s failed: %s (%s, retryable=%s)",
            self.name, context or "request", error.message, error.code.value, error.is_retryable,
        )
        if error.code in MONITORED_CODES:
            await report_error(
                self.error_monitor,
                self.name,
                error.message,
                {"context": context, "code": error.code.value, "details": error.details},
            )
        return AdapterResponse.failure(error, task_id=task_id)

    # ------------------------------------------------------------------
    # Task polling
    # ------------------------------------------------------------------

    async def check_task_status(self, task_id: str) -> TaskStatusResponse:
        """One status check for a provider task. Task-based adapters override."""
        raise NotImplementedError(f"{self.name} does not support async task polling")

    async def _await_task(self, task_id: str, options: PollOptions | None = None) -> list[GenerationResult]:
        """Poll ``task_id`` to a terminal state and return offloaded results."""
        options = options or self.poll_options
        outcome = await self.poller.poll(self.check_task_status, task_id, options)
        if outcome.timed_out:
            raise PollingTimeoutError(task_id, options.max_duration)
        return await self._finish_task(task_id, outcome.result)

    async def _finish_task(self, task_id: str, status: TaskStatusResponse) -> list[GenerationResult]:
        if status.status == "FAILED":
            raise TaskFailedError(
                f"Task failed: {status.error or 'unknown error'}", {"taskId": task_id}
            )
        if not status.output:
            raise ProviderResponseError("Task finished without output", {"taskId": task_id})
        return await self.to_results(status.output, status.result_type)

    async def query_task(self, task_id: str) -> AdapterResponse:
        """Single status check for a task previously returned as PROCESSING. Never raises."""
        try:
            status = await self.check_task_status(task_id)
            if status.status == "PROCESSING":
                return AdapterResponse.processing(task_id, progress=status.progress)
            results = await self._finish_task(task_id, status)
            return AdapterResponse.success(results, task_id=task_id)
        except Exception as e:
            return await self.handle_error(e, f"{self.name} task {task_id}", task_id=task_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def storage_prefix(self) -> str | None:
        return self.config.storage_path_prefix or self.path_prefix

    async def to_results(
        self,
        urls: list[str],
        result_type: ResultType | None = None,
        content_type: str | None = None,
    ) -> list[GenerationResult]:
        """Offload each provider URL and wrap it as a result."""
        kind = result_type or self.result_type
        if content_type is None:
            content_type = self.content_type if kind == self.result_type else _DEFAULT_CONTENT_TYPES[kind]
        results = []
        for url in urls:
            stored = await self.offloader.offload_url(url, content_type, self.storage_prefix())
            metadata = {"originalUrl": url} if stored != url else None
            results.append(GenerationResult(type=kind, url=stored, metadata=metadata))
        return results

    @staticmethod
    def get_parameter(request: UnifiedGenerationRequest, key: str, default: Any = None) -> Any:
        value = request.parameters.get(key)
        return default if value is None else value

    def first_image(self, request: UnifiedGenerationRequest) -> str | None:
        """Single-image providers use the first input image and drop the rest."""
        if not request.input_images:
            return None
        if len(request.input_images) > 1:
            logger.warning(
                "[%s] %d input images supplied, only the first is used",
                self.name, len(request.input_images),
            )
        return request.input_images[0]

    async def fetch_as_data_uri(self, url: str, default_type: str = "image/png") -> str:
        """Download ``url`` (with retry) and inline it as a base64 data URI."""

        async def _get() -> httpx.Response:
            resp = await self._download_client.get(url, follow_redirects=True)
            resp.raise_for_status()
            return resp

        resp = await retry_with_backoff(_get, self.retry, operation_name=f"{self.name} fetch image")
        mime = resp.headers.get("content-type", default_type).split(";", 1)[0].strip() or default_type
        return to_data_uri(resp.content, mime)
