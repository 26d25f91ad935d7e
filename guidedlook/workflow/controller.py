"""Effect-applying adapter around the pure workflow reducer.

One ``handle_turn`` call is one request/response cycle: load the session,
reduce the turn, execute the effects the reducer asked for, persist the
result and project it into a ``ChatResponse``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional

from ..config import GuidedLookConfig
from ..constants import WORKFLOW_MODEL_NAME
from ..contracts import ChatRequest, ChatResponse, WorkflowSession, utcnow
from ..generation import (
    GenerationOrchestrator,
    GenerationRequest,
    build_artifact,
    build_creation_prompt,
    build_edit_prompt,
    tryon_slot,
)
from ..generation.artifacts import style_preferences
from ..inventory import build_outfit_with_artifact, trim_inventory
from ..persistence import WorkflowRepository
from ..quota import CreditLedger, QuotaUnavailable, budget_limit_message
from . import messages
from .gate import ConfirmationGate
from .reducer import (
    BuildOutfit,
    RunBillable,
    SaveArtifact,
    Transition,
    TurnInput,
    build_view,
    claim_lost,
    complete_billable,
    complete_outfit,
    complete_save,
    reduce,
)

logger = logging.getLogger(__name__)

BUDGET_FEATURE_BY_ACTION = {
    "generate": "generate-fashion-image",
    "edit": "generate-fashion-image",
    "tryon": "virtual-try-on",
}


class WorkflowController:
    """Drive one guided creation turn against the store, ledger and generator."""

    def __init__(
        self,
        repository: WorkflowRepository,
        ledger: CreditLedger,
        orchestrator: GenerationOrchestrator,
        config: Optional[GuidedLookConfig] = None,
        gate: Optional[ConfirmationGate] = None,
    ) -> None:
        self.repository = repository
        self.ledger = ledger
        self.orchestrator = orchestrator
        self.config = config or GuidedLookConfig()
        self.gate = gate or ConfirmationGate(self.config.workflow.costs)

    async def handle_turn(
        self, user_id: str, request: ChatRequest, authorization: Optional[str] = None
    ) -> ChatResponse:
        workflow = request.workflow
        session_id = (workflow.session_id or "").strip() or str(uuid.uuid4())
        message = (workflow.payload.message or request.message or "").strip()
        turn = TurnInput(
            action=workflow.action,
            message=message[: self.config.workflow.max_message_length],
            payload=workflow.payload,
            now=utcnow(),
        )

        session = await self.repository.get_session(user_id, session_id)
        if session is None:
            session = WorkflowSession(user_id=user_id, session_id=session_id)

        transition = reduce(session, turn, self.gate, self.config.workflow.request_text_limit)
        logger.info(f"Session {session_id}: {turn.action} in {session.status} -> {transition.session.status}")

        for effect in transition.effects:
            if isinstance(effect, RunBillable):
                transition = await self._run_billable(transition, effect, session, request, authorization)
            elif isinstance(effect, SaveArtifact):
                transition = await self._save(transition)
            elif isinstance(effect, BuildOutfit):
                suggestion, warnings = await self._outfit(transition.session, request)
                transition = complete_outfit(transition, suggestion, warnings)

        if transition.persist:
            await self.repository.save_session(
                transition.session.evolve(
                    expires_at=turn.now + timedelta(hours=self.config.workflow.session_ttl_hours),
                    updated_at=turn.now,
                )
            )

        return ChatResponse(
            content=transition.content,
            outfit_suggestion=transition.outfit_suggestion,
            validation_warnings=transition.validation_warnings,
            workflow=build_view(transition.session, transition.error_code, self.gate.cost_for("generate")),
            credits_used=transition.credits_used,
            thread_id=request.thread_id,
            model=WORKFLOW_MODEL_NAME,
        )

    # ------------------------------------------------------------------
    async def _inventory(self, user_id: str, request: ChatRequest) -> List[Dict[str, Any]]:
        limit = self.config.workflow.max_inventory_items
        inventory = trim_inventory(request.inventory_snapshot, limit)
        if inventory:
            return inventory
        return trim_inventory(await self.repository.list_inventory_items(user_id), limit)

    async def _outfit(self, session: WorkflowSession, request: ChatRequest):
        inventory = await self._inventory(session.user_id, request)
        validation = build_outfit_with_artifact(session.generated_artifact, inventory)
        return validation.suggestion, validation.warnings

    async def _save(self, transition: Transition, autosave: bool = False) -> Transition:
        session = transition.session
        try:
            await self.repository.add_inventory_item(session.user_id, session.generated_artifact)
        except Exception:
            logger.exception(f"Saving artifact {session.generated_artifact.id} to inventory failed")
            return complete_save(transition, saved=False, autosave=autosave)
        logger.info(f"Saved artifact {session.generated_artifact.id} for {session.user_id}")
        return complete_save(transition, saved=True, autosave=autosave)

    async def _run_billable(
        self,
        transition: Transition,
        effect: RunBillable,
        original: WorkflowSession,
        request: ChatRequest,
        authorization: Optional[str],
    ) -> Transition:
        claimed = transition.session.evolve(updated_at=utcnow())
        if not await self.repository.cas_update(claimed, effect.expected_status, effect.expected_token):
            logger.info(f"Session {original.session_id}: claim for {effect.action} lost to a concurrent request")
            current = await self.repository.get_session(original.user_id, original.session_id)
            return claim_lost(current, original)
        logger.info(f"Session {original.session_id}: claimed {effect.action} ({effect.cost} credits)")

        try:
            result = await self._charge_and_generate(claimed, effect, request, authorization)
        except Exception:
            logger.exception(f"Session {original.session_id}: {effect.action} failed unexpectedly")
            failure = "TRYON_FAILED" if effect.action == "tryon" else "GENERATION_FAILED"
            copy = messages.TRYON_ERRORS if effect.action == "tryon" else messages.GENERATION_ERRORS
            result = complete_billable(claimed, effect.action, ok=False, error_code=failure, error_message=copy[failure])
        return result

    async def _charge_and_generate(
        self,
        session: WorkflowSession,
        effect: RunBillable,
        request: ChatRequest,
        authorization: Optional[str],
    ) -> Transition:
        action = effect.action
        feature = BUDGET_FEATURE_BY_ACTION[action]

        budget = await self.ledger.reserve(session.user_id, feature, effect.cost)
        if not budget.allowed:
            logger.info(f"Session {session.session_id}: budget denied ({budget.reason})")
            return complete_billable(
                session,
                action,
                ok=False,
                error_code="INSUFFICIENT_CREDITS",
                error_message=budget_limit_message(budget.reason),
            )
        try:
            can_spend = await self.ledger.can_spend(session.user_id, effect.cost)
        except QuotaUnavailable as exc:
            logger.error(f"Session {session.session_id}: credit check failed: {exc}")
            return complete_billable(
                session, action, ok=False, error_code="GENERATION_FAILED", error_message=messages.CREDIT_CHECK_FAILED
            )
        if not can_spend:
            return complete_billable(
                session,
                action,
                ok=False,
                error_code="INSUFFICIENT_CREDITS",
                error_message=messages.INSUFFICIENT_CREDITS_BY_ACTION[action],
            )

        collected = session.collected
        artifact = session.generated_artifact
        if action == "tryon":
            prompt = ""
            generation = GenerationRequest(
                kind="tryon",
                selfie_ref=collected.tryon_selfie_ref,
                garment_ref=artifact.image_ref,
                slot=tryon_slot(artifact.metadata.category),
                authorization=authorization,
            )
        else:
            if action == "edit":
                prompt = build_edit_prompt(collected, collected.edit_instruction or "", artifact.ai_generation_prompt)
            else:
                prompt = build_creation_prompt(collected)
            generation = GenerationRequest(
                kind="image",
                prompt=prompt,
                style_preferences=style_preferences(collected),
                authorization=authorization,
            )

        outcome = await self.orchestrator.generate(generation)
        if not outcome.ok:
            return complete_billable(
                session, action, ok=False, error_code=outcome.error_code, error_message=outcome.error_message
            )

        incremented = await self.ledger.increment(session.user_id, effect.cost)
        credits_used = effect.cost if incremented else 0
        await self.ledger.record_success(session.user_id, feature, credits_used)
        logger.info(f"Session {session.session_id}: {action} succeeded, {credits_used} credits charged")

        if action == "tryon":
            return complete_billable(
                session, action, ok=True, tryon_result_ref=outcome.image_ref, credits_used=credits_used
            )

        new_artifact = build_artifact(session.session_id, outcome.image_ref, prompt, collected)
        result = complete_billable(session, action, ok=True, artifact=new_artifact, credits_used=credits_used)
        if session.autosave_enabled:
            result = await self._save(result, autosave=True)
        if action == "generate":
            suggestion, warnings = await self._outfit(result.session, request)
            result = complete_outfit(result, suggestion, warnings, after_generation=True)
        return result
