"""Pytest configuration helpers.

Puts ``backend/`` on ``sys.path`` so tests can import the ``genhub``
package without an editable install, and provides the fakes shared across
the suite: in-memory object storage, a recording sleep and a request
router for ``httpx.MockTransport``.
"""
from __future__ import annotations

import json
import os
import sys
from typing import Any, Callable

import httpx
import pytest

BACKEND = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "backend"))
if BACKEND not in sys.path:
    sys.path.insert(0, BACKEND)

from genhub.schemas.generation import ProviderConfig  # noqa: E402
from genhub.services.polling import TaskPoller  # noqa: E402
from genhub.services.retry import RetryConfig  # noqa: E402


class FakeStorage:
    """In-memory ``ObjectStorage``."""

    def __init__(self, configured: bool = True, fail: bool = False) -> None:
        self.configured = configured
        self.fail = fail
        self.uploads: list[dict[str, Any]] = []
        self.deleted: list[str] = []

    def is_configured(self) -> bool:
        return self.configured

    async def upload_buffer(
        self, data: bytes, path_prefix: str = "uploads", content_type: str | None = None
    ) -> str:
        if self.fail:
            raise RuntimeError("bucket unavailable")
        self.uploads.append({"data": data, "prefix": path_prefix, "content_type": content_type})
        return f"https://cdn.test/{path_prefix}/{len(self.uploads)}"

    async def upload_from_url(self, url: str, path_prefix: str = "uploads") -> str:
        return await self.upload_buffer(url.encode(), path_prefix)

    async def delete_file(self, key: str) -> None:
        self.deleted.append(key)


class RecordingSleep:
    """Replacement for ``asyncio.sleep`` that returns at once and records delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


Handler = Callable[[httpx.Request], Any]


class Router:
    """Route table for ``httpx.MockTransport``.

    ``add`` registers a reply (dict → JSON 200, ``httpx.Response`` as-is, or
    a callable taking the request) for a method and URL prefix. A list of
    replies is consumed in order with the last one repeating.
    """

    def __init__(self) -> None:
        self.routes: list[tuple[str, str, list[Any]]] = []
        self.requests: list[httpx.Request] = []

    def add(self, method: str, url: str, *replies: Any) -> "Router":
        self.routes.append((method.upper(), url, list(replies)))
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for method, prefix, replies in self.routes:
            if request.method == method and str(request.url).startswith(prefix):
                reply = replies.pop(0) if len(replies) > 1 else replies[0]
                if callable(reply):
                    reply = reply(request)
                if isinstance(reply, httpx.Response):
                    return reply
                return httpx.Response(200, json=reply)
        return httpx.Response(404, json={"message": f"no route for {request.method} {request.url}"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def sent(self, method: str, url_prefix: str) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method.upper() and str(r.url).startswith(url_prefix)
        ]

    @staticmethod
    def body(request: httpx.Request) -> Any:
        return json.loads(request.content)


def make_config(adapter_name: str, **overrides: Any) -> ProviderConfig:
    values: dict[str, Any] = {
        "adapter_name": adapter_name,
        "model_identifier": "test-model",
        "api_endpoint": "https://api.test/v1",
        "stored_auth_key": "sk-test",
    }
    values.update(overrides)
    return ProviderConfig(**values)


@pytest.fixture
def router() -> Router:
    return Router()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def poller(sleep: RecordingSleep) -> TaskPoller:
    return TaskPoller(sleep=sleep)


@pytest.fixture
def no_retry() -> RetryConfig:
    return RetryConfig(max_attempts=1, jitter=False)


@pytest.fixture
def adapter_deps(router: Router, storage: FakeStorage, poller: TaskPoller, no_retry: RetryConfig) -> dict[str, Any]:
    """Keyword arguments for ``create_adapter`` wired to the fakes."""
    return {
        "storage": storage,
        "transport": router.transport,
        "poller": poller,
        "retry": no_retry,
        "environ": {},
    }
