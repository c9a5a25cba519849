"""图片供应商测试（httpx.MockTransport 模拟网络）"""

import json
from contextlib import asynccontextmanager

import httpx
import pytest

from conftest import png_data_url
from diary_comic.exceptions import ImageSynthesisError
from diary_comic.services.image_generation import ImageProviderFactory, ImageSynthesisService, ProviderConfig, RenderParams
from diary_comic.services.image_generation.providers.flux_kontext import FluxKontextProvider
from diary_comic.services.image_generation.providers.openai_compatible import (
    OpenAICompatibleProvider,
    build_chat_endpoint,
    extract_image_urls,
)


def _use_transport(provider, handler):
    @asynccontextmanager
    async def factory(timeout=None):
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            yield client

    provider.create_http_client = factory


def _flux(**overrides) -> FluxKontextProvider:
    config = ProviderConfig(
        api_key="flux-key",
        base_url="https://flux.test/v1",
        model_name="flux-kontext-pro",
        poll_interval=0.01,
        poll_backoff=1.0,
        poll_max_interval=0.01,
        poll_timeout=2.0,
    )
    for key, value in overrides.items():
        setattr(config, key, value)
    return ImageProviderFactory.get_provider("flux_kontext", config)


# ============================================================
# Flux Kontext
# ============================================================

async def test_flux_submit_and_poll_until_ready():
    provider = _flux()
    statuses = iter(["Pending", "Processing", "Ready"])
    submitted = {}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            submitted["url"] = str(request.url)
            submitted["headers"] = request.headers
            submitted["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "task-1", "polling_url": "https://flux.test/v1/get_result?id=task-1"})
        status = next(statuses)
        body = {"id": "task-1", "status": status}
        if status == "Ready":
            body["result"] = {"sample": "https://delivery.flux.test/task-1.png"}
        return httpx.Response(200, json=body)

    _use_transport(provider, handler)
    progress = []
    reference = png_data_url()
    url = await provider.render("a cat", reference, RenderParams(), progress.append)

    assert url == "https://delivery.flux.test/task-1.png"
    assert submitted["url"] == "https://flux.test/v1/flux-kontext-pro"
    assert submitted["headers"]["x-key"] == "flux-key"
    assert submitted["body"]["prompt"] == "a cat"
    assert submitted["body"]["input_image"] == reference.split(",", 1)[1]
    assert progress == [5, 10, 50, 100]


async def test_flux_retries_transient_poll_errors():
    provider = _flux()
    responses = iter([
        httpx.Response(503),
        httpx.Response(200, json={"status": "Ready", "result": {"sample": "https://x.test/a.png"}}),
    ])

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"id": "task-2"})
        assert request.url.params["id"] == "task-2"
        return next(responses)

    _use_transport(provider, handler)
    assert await provider.render("a dog", None, RenderParams()) == "https://x.test/a.png"


async def test_flux_poll_times_out():
    provider = _flux(poll_timeout=0.05)

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"id": "task-3"})
        return httpx.Response(200, json={"status": "Pending"})

    _use_transport(provider, handler)
    with pytest.raises(ImageSynthesisError) as exc_info:
        await provider.render("slow", None, RenderParams())
    assert "超时" in exc_info.value.reason


async def test_flux_moderated_task_fails():
    provider = _flux()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"id": "task-4"})
        return httpx.Response(200, json={"status": "Content Moderated"})

    _use_transport(provider, handler)
    with pytest.raises(ImageSynthesisError):
        await provider.render("blocked", None, RenderParams())


async def test_flux_submit_error_fails_fast():
    provider = _flux()
    _use_transport(provider, lambda request: httpx.Response(401, text="bad key"))
    with pytest.raises(ImageSynthesisError) as exc_info:
        await provider.render("a cat", None, RenderParams())
    assert "401" in exc_info.value.reason


async def test_flux_requires_api_key():
    provider = _flux(api_key=None)
    with pytest.raises(ImageSynthesisError):
        await provider.render("a cat", None, RenderParams())


# ============================================================
# OpenAI 兼容（多图合成）
# ============================================================

def test_build_chat_endpoint():
    assert build_chat_endpoint("http://api.test") == "http://api.test/v1/chat/completions"
    assert build_chat_endpoint("http://api.test/v1/") == "http://api.test/v1/chat/completions"
    assert build_chat_endpoint("http://api.test/v1/chat/completions") == "http://api.test/v1/chat/completions"


def test_extract_image_urls_variants():
    assert extract_image_urls({"images": [{"image_url": {"url": "data:image/png;base64,AAAA"}}]}) == [
        "data:image/png;base64,AAAA"
    ]
    assert extract_image_urls({"content": "here ![img](https://cdn.test/out.png) done"}) == [
        "https://cdn.test/out.png"
    ]
    assert extract_image_urls({"content": "plain https://cdn.test/out.webp"}) == ["https://cdn.test/out.webp"]
    assert extract_image_urls({"content": "inline data:image/png;base64,QUJD end"}) == [
        "data:image/png;base64,QUJD"
    ]
    assert extract_image_urls({"content": "no image, sorry"}) == []


async def test_compose_sends_all_images_in_one_call():
    provider = ImageProviderFactory.get_provider(
        "openai_compatible",
        ProviderConfig(api_key="k", base_url="https://compose.test", model_name="img-model"),
    )
    assert isinstance(provider, OpenAICompatibleProvider)
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "choices": [{"message": {"content": "![r](https://cdn.test/result.png)"}}]
        })

    _use_transport(provider, handler)
    url = await provider.compose("two friends", ["https://a.test/1.png", "https://a.test/2.png"], RenderParams())

    assert url == "https://cdn.test/result.png"
    assert captured["url"] == "https://compose.test/v1/chat/completions"
    content = captured["body"]["messages"][0]["content"]
    assert [part["type"] for part in content] == ["image_url", "image_url", "text"]
    assert captured["body"]["model"] == "img-model"


async def test_compose_without_image_in_response_fails():
    provider = ImageProviderFactory.get_provider(
        "openai_compatible", ProviderConfig(base_url="https://compose.test")
    )
    _use_transport(provider, lambda request: httpx.Response(200, json={
        "choices": [{"message": {"content": "I cannot draw that."}}]
    }))
    with pytest.raises(ImageSynthesisError):
        await provider.compose("x", ["https://a.test/1.png"], RenderParams())


# ============================================================
# 图片生成服务
# ============================================================

class _StubProvider:
    PROVIDER_TYPE = "stub"

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def render(self, prompt, reference_image, params, on_progress=None):
        self.calls.append((prompt, reference_image))
        if self.error is not None:
            raise self.error
        return self.result


async def test_service_maps_transport_errors():
    provider = _StubProvider(error=httpx.ConnectError("boom"))
    service = ImageSynthesisService(provider)
    with pytest.raises(ImageSynthesisError):
        await service.render(None, "prompt")


async def test_service_rejects_empty_result():
    service = ImageSynthesisService(_StubProvider(result=""))
    with pytest.raises(ImageSynthesisError):
        await service.render("https://a.test/ref.png", "prompt")


async def test_service_inlines_local_reference(images_root):
    target = images_root / "users" / "u1" / "comics"
    target.mkdir(parents=True)
    (target / "s1.png").write_bytes(b"PNGDATA")
    provider = _StubProvider(result="https://out.test/x.png")
    service = ImageSynthesisService(provider)

    await service.render("/api/images/users/u1/comics/s1.png", "prompt")

    assert provider.calls[0][1].startswith("data:image/png;base64,")


def test_service_from_settings_builds_configured_provider():
    from diary_comic.core.config import settings

    config = settings.model_copy(update={"image_provider": "flux_kontext", "compose_api_base_url": None})
    service = ImageSynthesisService.from_settings(config)
    assert isinstance(service.provider, FluxKontextProvider)
    assert service.supports_compose is False

    bad = settings.model_copy(update={"image_provider": "nope"})
    with pytest.raises(ValueError):
        ImageSynthesisService.from_settings(bad)
