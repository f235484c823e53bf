from __future__ import annotations

import base64

import pytest

from conftest import FakeStorage, Router, make_config
from genhub.schemas.generation import UnifiedGenerationRequest
from genhub.services.registry import create_adapter

ENDPOINT = "https://tuzi.test/v1/images"
PNG = b"\x89PNG\r\n\x1a\nbytes"
B64 = base64.b64encode(PNG).decode()


def tuzi(adapter_deps, **config):
    return create_adapter(make_config("TuziOpenAIAdapter", api_endpoint=ENDPOINT + "/", **config), **adapter_deps)


@pytest.mark.asyncio
async def test_payload_defaults_and_size_snapping(router: Router, adapter_deps):
    router.add("POST", f"{ENDPOINT}/generations", {"data": [{"url": "https://img.test/a.png"}]})
    request = UnifiedGenerationRequest(
        prompt="a fox", number_of_outputs=2, parameters={"size_or_ratio": "16:9", "style": "vivid"}
    )

    response = await tuzi(adapter_deps).dispatch(request)

    assert response.status == "SUCCESS"
    body = Router.body(router.sent("POST", f"{ENDPOINT}/generations")[0])
    assert body == {
        "model": "gpt-image-1",
        "prompt": "a fox",
        "n": 2,
        "size": "1536x1024",
        "quality": "auto",
        "output_format": "png",
        "background": "auto",
        "moderation": "auto",
        "output_compression": 100,
        "style": "vivid",
    }


@pytest.mark.asyncio
async def test_size_defaults_to_auto(router: Router, adapter_deps):
    router.add("POST", ENDPOINT, {"data": [{"url": "https://img.test/a.png"}]})
    await tuzi(adapter_deps).dispatch(UnifiedGenerationRequest(prompt="a fox"))
    assert Router.body(router.requests[0])["size"] == "auto"


@pytest.mark.asyncio
async def test_base64_items_are_uploaded(router: Router, adapter_deps, storage: FakeStorage):
    router.add("POST", ENDPOINT, {"data": [{"b64_json": B64}, {"b64_json": B64}]})

    response = await tuzi(adapter_deps, storage_offload=True).dispatch(UnifiedGenerationRequest(prompt="a fox"))

    assert [r.url for r in response.results] == [
        "https://cdn.test/tuzi-images/1",
        "https://cdn.test/tuzi-images/2",
    ]
    assert storage.uploads[0]["data"] == PNG


@pytest.mark.asyncio
async def test_base64_without_offload_is_returned_inline(router: Router, adapter_deps, storage: FakeStorage):
    router.add("POST", ENDPOINT, {"data": [{"b64_json": B64}]})

    response = await tuzi(adapter_deps).dispatch(UnifiedGenerationRequest(prompt="a fox"))

    assert response.results[0].url == f"data:image/png;base64,{B64}"
    assert storage.uploads == []


@pytest.mark.asyncio
@pytest.mark.parametrize("task_type", ["edit", "upscale"])
async def test_unsupported_task_types(router: Router, adapter_deps, task_type):
    response = await tuzi(adapter_deps).dispatch(
        UnifiedGenerationRequest(prompt="a fox", parameters={"task_type": task_type})
    )
    assert response.error.code == "INVALID_REQUEST"
    assert router.requests == []


@pytest.mark.asyncio
async def test_reply_without_images_is_an_error(router: Router, adapter_deps):
    router.add("POST", ENDPOINT, {"data": [{}]})
    response = await tuzi(adapter_deps).dispatch(UnifiedGenerationRequest(prompt="a fox"))
    assert response.status == "ERROR"
    assert response.error.code == "PROVIDER_ERROR"
