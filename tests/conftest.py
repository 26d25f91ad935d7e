import asyncio
from typing import List, Optional

import pytest

from guidedlook.config import GuidedLookConfig
from guidedlook.contracts import ChatRequest, WorkflowPayload, WorkflowRequest
from guidedlook.generation import GenerationOrchestrator
from guidedlook.persistence import InMemoryWorkflowRepository
from guidedlook.quota import InMemoryCreditLedger
from guidedlook.workflow.controller import WorkflowController

USER_ID = "user-1"


class FakeGenerationClient:
    """Generation client that records calls and replays scripted failures."""

    def __init__(
        self,
        image_ref: str = "https://cdn.example.com/generated.png",
        tryon_ref: str = "https://cdn.example.com/tryon.png",
        failures: Optional[List[Exception]] = None,
        delay: float = 0.0,
    ) -> None:
        self.image_ref = image_ref
        self.tryon_ref = tryon_ref
        self.failures = list(failures or [])
        self.delay = delay
        self.image_calls: List[dict] = []
        self.tryon_calls: List[dict] = []

    async def _maybe_fail(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)

    async def generate_image(self, prompt, style_preferences=None, authorization=None):
        self.image_calls.append({"prompt": prompt, "style_preferences": style_preferences})
        await self._maybe_fail()
        return self.image_ref

    async def try_on(self, selfie_ref, garment_ref, slot, authorization=None):
        self.tryon_calls.append({"selfie_ref": selfie_ref, "garment_ref": garment_ref, "slot": slot})
        await self._maybe_fail()
        return self.tryon_ref


def workflow_request(action: str, session_id: Optional[str] = None, inventory=None, **payload) -> ChatRequest:
    return ChatRequest(
        workflow=WorkflowRequest(action=action, session_id=session_id, payload=WorkflowPayload(**payload)),
        inventory_snapshot=inventory or [],
    )


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    delays = []

    async def fake_schedule_retry(attempt, base=0.7):
        delays.append(attempt)

    monkeypatch.setattr("guidedlook.utils.retry.schedule_retry", fake_schedule_retry)
    return delays


@pytest.fixture
def config():
    return GuidedLookConfig()


@pytest.fixture
def repo():
    return InMemoryWorkflowRepository()


@pytest.fixture
def ledger():
    return InMemoryCreditLedger(balance=100)


@pytest.fixture
def client():
    return FakeGenerationClient()


@pytest.fixture
def controller(repo, ledger, client, config):
    return WorkflowController(repo, ledger, GenerationOrchestrator(client, config.generation), config)
