"""Tests for the generation client boundary, retry loop and artifacts."""

import httpx
import pytest
from conftest import FakeGenerationClient

from guidedlook.config import GenerationConfig
from guidedlook.contracts import Collected
from guidedlook.generation import (
    GenerationOrchestrator,
    GenerationRequest,
    GenerationTimeout,
    HttpGenerationClient,
    InsufficientCredits,
    ProviderFailure,
    build_artifact,
    tryon_slot,
)
from guidedlook.generation.artifacts import infer_color
from guidedlook.utils.retry import compute_backoff
from guidedlook.workflow import messages


def test_compute_backoff_doubles():
    assert compute_backoff(1) == pytest.approx(0.7)
    assert compute_backoff(2) == pytest.approx(1.4)
    assert compute_backoff(3) == pytest.approx(2.8)


@pytest.mark.asyncio
async def test_retries_retryable_failures_until_success(no_backoff):
    client = FakeGenerationClient(failures=[ProviderFailure("503", retryable=True), GenerationTimeout("slow")])
    outcome = await GenerationOrchestrator(client).generate(GenerationRequest(prompt="p"))
    assert outcome.ok is True
    assert outcome.attempts == 3
    assert outcome.image_ref == client.image_ref
    assert no_backoff == [1, 2]


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried(no_backoff):
    client = FakeGenerationClient(failures=[ProviderFailure("400", retryable=False)])
    outcome = await GenerationOrchestrator(client).generate(GenerationRequest(prompt="p"))
    assert outcome.ok is False
    assert outcome.error_code == "GENERATION_FAILED"
    assert outcome.attempts == 1
    assert no_backoff == []


@pytest.mark.asyncio
async def test_insufficient_credits_is_not_retried():
    client = FakeGenerationClient(failures=[InsufficientCredits("402")])
    outcome = await GenerationOrchestrator(client).generate(GenerationRequest(prompt="p"))
    assert outcome.error_code == "INSUFFICIENT_CREDITS"
    assert outcome.error_message == messages.GENERATION_ERRORS["INSUFFICIENT_CREDITS"]
    assert len(client.image_calls) == 1


@pytest.mark.asyncio
async def test_attempt_timeout_exhausts_attempts():
    config = GenerationConfig(generation_timeout_seconds=0.01, max_attempts=2)
    client = FakeGenerationClient(delay=0.2)
    outcome = await GenerationOrchestrator(client, config).generate(GenerationRequest(prompt="p"))
    assert outcome.ok is False
    assert outcome.error_code == "GENERATION_TIMEOUT"
    assert outcome.error_message == messages.GENERATION_ERRORS["GENERATION_TIMEOUT"]
    assert len(client.image_calls) == 2


@pytest.mark.asyncio
async def test_tryon_timeout_reports_tryon_failure():
    config = GenerationConfig(tryon_timeout_seconds=0.01)
    client = FakeGenerationClient(delay=0.2)
    request = GenerationRequest(kind="tryon", selfie_ref="data:image/png;base64,A", garment_ref="g", slot="top_base")
    outcome = await GenerationOrchestrator(client, config).generate(request)
    assert outcome.error_code == "TRYON_FAILED"
    assert outcome.error_message == messages.TRYON_ERRORS["GENERATION_TIMEOUT"]
    assert len(client.tryon_calls) == 1


def _http_client(handler):
    transport = httpx.MockTransport(handler)
    return HttpGenerationClient("https://gen.example.com", client=httpx.AsyncClient(transport=transport))


@pytest.mark.asyncio
async def test_http_client_returns_image_url_and_forwards_authorization():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        seen["path"] = request.url.path
        return httpx.Response(200, json={"success": True, "image_url": "https://cdn/x.png"})

    client = _http_client(handler)
    image = await client.generate_image("prompt", {"category": "top"}, authorization="Bearer abc")
    await client.aclose()
    assert image == "https://cdn/x.png"
    assert seen == {"auth": "Bearer abc", "path": "/functions/v1/generate-fashion-image"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response, error, retryable",
    [
        (httpx.Response(402, json={}), InsufficientCredits, None),
        (httpx.Response(200, json={"error_code": "DAILY_BUDGET_LIMIT"}), InsufficientCredits, None),
        (httpx.Response(503, text="down"), ProviderFailure, True),
        (httpx.Response(429, text="slow down"), ProviderFailure, True),
        (httpx.Response(400, text="bad"), ProviderFailure, False),
        (httpx.Response(200, text="<html>"), ProviderFailure, True),
        (httpx.Response(200, json={"success": False}), ProviderFailure, True),
    ],
)
async def test_http_client_maps_provider_errors(response, error, retryable):
    client = _http_client(lambda request: response)
    with pytest.raises(error) as excinfo:
        await client.generate_image("prompt")
    await client.aclose()
    if retryable is not None:
        assert excinfo.value.retryable is retryable


@pytest.mark.asyncio
async def test_http_client_try_on_without_result_is_permanent():
    client = _http_client(lambda request: httpx.Response(200, json={"ok": True}))
    with pytest.raises(ProviderFailure) as excinfo:
        await client.try_on("data:image/png;base64,A", "https://cdn/g.png", "top_base")
    await client.aclose()
    assert excinfo.value.retryable is False


def test_tryon_slot_mapping():
    assert tryon_slot("top") == "top_base"
    assert tryon_slot("bottom") == "bottom"
    assert tryon_slot("shoes") == "shoes"
    assert tryon_slot(None) == "top_base"


def test_build_artifact_infers_color_and_tags():
    collected = Collected(request_text="una campera roja", style="urbano", occasion="noche", category="top")
    artifact = build_artifact("abc", "https://cdn/a.png", "prompt", collected)
    assert artifact.id.startswith("guided_ai_abc_")
    assert artifact.metadata.color_primary == "#DC2626"
    assert artifact.metadata.vibe_tags == ["ai-generated", "urbano", "noche"]
    assert artifact.metadata.seasons == ["spring", "summer", "fall", "winter"]
    assert artifact.ai_generation_prompt == "prompt"
    assert artifact.is_ai_generated is True
    assert artifact.saved_to_inventory is False


def test_infer_color_defaults_to_black():
    assert infer_color("algo sin color") == "#000000"
