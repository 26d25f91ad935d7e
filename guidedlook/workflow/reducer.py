"""Pure state machine for the guided creation workflow.

``reduce`` never performs I/O. Work that needs the outside world (claiming
the session and running a billable generation, saving into inventory,
building an outfit) is described as an effect on the returned
``Transition``; the controller executes it and folds the result back with
``complete_billable``, ``complete_save`` and ``complete_outfit``.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..constants import (
    CONFIRM_ACTIONS,
    CONFIRMING_STATUSES,
    IN_PROGRESS_STATUSES,
    RUNNING_STATUS_BY_ACTION,
)
from ..contracts import (
    Collected,
    CollectedView,
    GeneratedArtifact,
    OutfitSuggestion,
    WorkflowPayload,
    WorkflowSession,
    WorkflowView,
    utcnow,
)
from . import messages
from .fields import (
    collect_patch,
    field_question,
    get_missing_fields,
    is_affirmative,
    is_negative,
    merge_collected,
    parse_strategy,
    sanitize_strategy,
)
from .gate import ConfirmationGate

ARTIFACT_ACTIONS = frozenset(
    {"request_edit", "upload_selfie", "request_tryon", "request_outfit", "save_generated_item"}
)

_MISSING_ARTIFACT_COPY = {
    "request_edit": messages.NO_ARTIFACT_FOR_EDIT,
    "upload_selfie": messages.NO_ARTIFACT_FOR_SELFIE,
    "request_tryon": messages.NO_ARTIFACT_FOR_TRYON,
    "request_outfit": messages.NO_ARTIFACT_FOR_OUTFIT,
    "save_generated_item": messages.NO_ARTIFACT_FOR_SAVE,
}


class TurnInput(BaseModel):
    """One caller turn as seen by the reducer."""

    action: str = "submit"
    message: str = ""
    payload: WorkflowPayload = Field(default_factory=WorkflowPayload)
    now: datetime = Field(default_factory=utcnow)


class RunBillable(BaseModel):
    """Claim the session and run the confirmed billable action."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["run_billable"] = "run_billable"
    action: Literal["generate", "edit", "tryon"]
    expected_status: str
    expected_token: Optional[str]
    cost: int


class SaveArtifact(BaseModel):
    """Copy the session artifact into permanent inventory."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["save_artifact"] = "save_artifact"


class BuildOutfit(BaseModel):
    """Build an outfit around the session artifact from the caller's inventory."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["build_outfit"] = "build_outfit"


Effect = Union[RunBillable, SaveArtifact, BuildOutfit]


class Transition(BaseModel):
    """Result of reducing one turn."""

    model_config = ConfigDict(frozen=True)

    session: WorkflowSession
    content: str = ""
    error_code: Optional[str] = None
    effects: List[Effect] = Field(default_factory=list)
    persist: bool = True
    credits_used: int = 0
    outfit_suggestion: Optional[OutfitSuggestion] = None
    validation_warnings: List[str] = Field(default_factory=list)

    def evolve(self, **changes) -> "Transition":
        return self.model_copy(update=changes)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def is_valid_selfie_ref(value: Optional[str]) -> bool:
    ref = (value or "").strip()
    return ref.startswith("data:image") or ref.startswith("https://") or ref.startswith("http://")


def _clear_pending(session: WorkflowSession, status: str) -> WorkflowSession:
    """Settle into a non-confirming ``status``, dropping any pending action and token."""
    return session.evolve(
        status=status,
        confirmation_token=None,
        collected=session.collected.model_copy(update={"pending_action": None, "pending_cost_credits": None}),
    )


def _reset(session: WorkflowSession) -> WorkflowSession:
    return session.evolve(
        status="idle",
        collected=Collected(),
        confirmation_token=None,
        generated_artifact=None,
    )


def _expire(session: WorkflowSession) -> Transition:
    expired = session.evolve(
        status="error",
        collected=Collected(),
        confirmation_token=None,
        generated_artifact=None,
    )
    return Transition(session=expired, content=messages.SESSION_EXPIRED, error_code="SESSION_EXPIRED")


def _quote_or_ask(session: WorkflowSession, gate: ConfirmationGate, strategy_just_selected: bool = False) -> Transition:
    strategy = session.collected.strategy
    if not strategy:
        return Transition(
            session=_clear_pending(session, "choosing_mode"),
            content=messages.mode_choice(gate.cost_for("generate")),
        )
    missing = get_missing_fields(strategy, session.collected)
    if missing:
        return Transition(
            session=_clear_pending(session, "collecting"),
            content=field_question(missing[0], strategy, strategy_just_selected),
        )
    confirming = gate.begin_confirmation(session, "generate")
    return Transition(
        session=confirming,
        content=messages.generation_cost(confirming.collected, gate.cost_for("generate")),
    )


def _merge_turn(session: WorkflowSession, turn: TurnInput, strategy: Optional[str], limit: int) -> WorkflowSession:
    collected = merge_collected(session.collected, collect_patch(turn.message, turn.payload), turn.message, limit)
    return session.evolve(collected=collected.model_copy(update={"strategy": strategy}))


def _effective_action(session: WorkflowSession, turn: TurnInput) -> str:
    action = turn.action
    pending = session.collected.pending_action
    if action == "submit":
        if session.status == "confirming":
            if is_affirmative(turn.message):
                action = "confirm_edit" if pending == "edit" else "confirm_generate"
            elif is_negative(turn.message):
                action = "cancel"
        elif session.status == "tryon_confirming":
            if is_affirmative(turn.message):
                action = "confirm_tryon"
            elif is_negative(turn.message):
                action = "cancel"
        elif session.status == "choosing_mode":
            action = "select_strategy"
    if action == "confirm_generate" and pending == "edit":
        action = "confirm_edit"
    if action == "confirm_generate" and pending == "tryon":
        action = "confirm_tryon"
    return action


# ---------------------------------------------------------------------------
# Action handlers
# ---------------------------------------------------------------------------


def _cancel(session: WorkflowSession) -> Transition:
    pending = session.collected.pending_action
    was_tryon = pending == "tryon" or session.status in ("tryon_confirming", "tryon_generating")
    was_edit = pending == "edit" or session.status == "editing"
    if session.generated_artifact is not None:
        if was_tryon:
            content = messages.CANCELLED_TRYON
        elif was_edit:
            content = messages.CANCELLED_EDIT
        else:
            content = messages.CANCELLED_PENDING
        return Transition(session=_clear_pending(session, "generated"), content=content)
    return Transition(session=_clear_pending(session, "cancelled"), content=messages.CANCELLED_FLOW)


def _toggle_autosave(session: WorkflowSession, turn: TurnInput) -> Transition:
    enabled = bool(turn.payload.autosave_enabled)
    return Transition(
        session=session.evolve(autosave_enabled=enabled),
        content=messages.AUTOSAVE_ON if enabled else messages.AUTOSAVE_OFF,
    )


def _select_strategy(session: WorkflowSession, turn: TurnInput, gate: ConfirmationGate, limit: int) -> Transition:
    selected = sanitize_strategy(turn.payload.strategy) or parse_strategy(turn.message)
    if not selected:
        return Transition(
            session=_clear_pending(session, "choosing_mode"),
            content=messages.mode_choice(gate.cost_for("generate")),
        )
    return _quote_or_ask(_merge_turn(session, turn, selected, limit), gate, strategy_just_selected=True)


def _collect(session: WorkflowSession, turn: TurnInput, gate: ConfirmationGate, limit: int) -> Transition:
    strategy = (
        session.collected.strategy or sanitize_strategy(turn.payload.strategy) or parse_strategy(turn.message)
    )
    return _quote_or_ask(_merge_turn(session, turn, strategy, limit), gate)


def _upload_selfie(session: WorkflowSession, turn: TurnInput, gate: ConfirmationGate) -> Transition:
    selfie = (turn.payload.selfie_ref or "").strip()
    if not is_valid_selfie_ref(selfie):
        return Transition(session=session, content=messages.SELFIE_INVALID)
    updated = session.with_collected(tryon_selfie_ref=selfie)
    if updated.status == "idle":
        updated = updated.evolve(status="generated")
    return Transition(session=updated, content=messages.selfie_loaded(gate.cost_for("tryon")))


def _request_edit(session: WorkflowSession, turn: TurnInput, gate: ConfirmationGate) -> Transition:
    if turn.payload.edit_instruction is not None:
        instruction = turn.payload.edit_instruction.strip()
    else:
        instruction = turn.message.strip()
    if not instruction:
        return Transition(session=_clear_pending(session, "generated"), content=messages.ASK_EDIT_INSTRUCTION)
    confirming = gate.begin_confirmation(session.with_collected(edit_instruction=instruction), "edit")
    return Transition(session=confirming, content=messages.edit_cost(instruction, gate.cost_for("edit")))


def _request_tryon(session: WorkflowSession, turn: TurnInput, gate: ConfirmationGate) -> Transition:
    selfie = (turn.payload.selfie_ref or "").strip()
    if is_valid_selfie_ref(selfie):
        session = session.with_collected(tryon_selfie_ref=selfie)
    if not session.collected.tryon_selfie_ref:
        return Transition(session=_clear_pending(session, "generated"), content=messages.ASK_SELFIE)
    confirming = gate.begin_confirmation(session, "tryon")
    return Transition(session=confirming, content=messages.tryon_cost(gate.cost_for("tryon")))


def _save(session: WorkflowSession) -> Transition:
    settled = _clear_pending(session, "generated")
    if session.generated_artifact.saved_to_inventory:
        return Transition(session=settled, content=messages.ALREADY_SAVED)
    return Transition(session=settled, effects=[SaveArtifact()])


def _confirm(session: WorkflowSession, turn: TurnInput, action: str, gate: ConfirmationGate) -> Transition:
    if session.status in IN_PROGRESS_STATUSES:
        # a duplicate of a turn that already claimed the session; never overwrite its row
        return Transition(session=session, content=messages.IN_PROGRESS, persist=False)

    pending_action = CONFIRM_ACTIONS[action]
    if not gate.validate_confirmation(session, turn.payload.confirmation_token, pending_action):
        return Transition(
            session=_clear_pending(session, "error"),
            content=messages.INVALID_CONFIRMATION,
            error_code="INVALID_CONFIRMATION",
            persist=False,
        )

    if pending_action == "tryon" and (
        session.generated_artifact is None or not session.collected.tryon_selfie_ref
    ):
        return Transition(
            session=_clear_pending(session, "error"),
            content=messages.TRYON_PREREQUISITES,
            error_code="SESSION_EXPIRED",
        )
    if pending_action == "edit" and session.generated_artifact is None:
        return Transition(
            session=_clear_pending(session, "error"),
            content=messages.NO_ARTIFACT_FOR_EDIT,
            error_code="SESSION_EXPIRED",
        )
    if pending_action == "generate":
        missing = get_missing_fields(session.collected.strategy, session.collected)
        if missing:
            return Transition(
                session=_clear_pending(session, "collecting"),
                content=field_question(missing[0], session.collected.strategy),
            )

    claimed = session.evolve(status=RUNNING_STATUS_BY_ACTION[pending_action], confirmation_token=None)
    effect = RunBillable(
        action=pending_action,
        expected_status=session.status,
        expected_token=session.confirmation_token,
        cost=session.collected.pending_cost_credits or gate.cost_for(pending_action),
    )
    return Transition(session=claimed, effects=[effect], persist=False)


def reduce(
    session: WorkflowSession,
    turn: TurnInput,
    gate: ConfirmationGate,
    request_text_limit: int = 240,
) -> Transition:
    """Compute the next session state for one turn."""
    if turn.payload.autosave_enabled is not None:
        session = session.evolve(autosave_enabled=turn.payload.autosave_enabled)

    if turn.action == "start":
        return _collect(_reset(session), turn, gate, request_text_limit)
    if session.is_expired(turn.now):
        return _expire(session)

    action = _effective_action(session, turn)
    if action == "cancel":
        return _cancel(session)
    if action in ARTIFACT_ACTIONS and session.generated_artifact is None:
        return Transition(
            session=_clear_pending(session, "error"),
            content=_MISSING_ARTIFACT_COPY[action],
            error_code="SESSION_EXPIRED",
        )
    if action == "toggle_autosave":
        return _toggle_autosave(session, turn)
    if action == "select_strategy":
        return _select_strategy(session, turn, gate, request_text_limit)
    if action == "upload_selfie":
        return _upload_selfie(session, turn, gate)
    if action == "request_edit":
        return _request_edit(session, turn, gate)
    if action == "request_tryon":
        return _request_tryon(session, turn, gate)
    if action == "save_generated_item":
        return _save(session)
    if action == "request_outfit":
        return Transition(session=_clear_pending(session, "generated"), effects=[BuildOutfit()])
    if action in CONFIRM_ACTIONS:
        return _confirm(session, turn, action, gate)
    return _collect(session, turn, gate, request_text_limit)


# ---------------------------------------------------------------------------
# Effect folds
# ---------------------------------------------------------------------------


def claim_lost(current: Optional[WorkflowSession], original: WorkflowSession) -> Transition:
    """Response for a confirm turn whose claim was taken by a concurrent request.

    ``current`` is the row re-read after the failed claim, ``original`` the
    session this turn started from.
    """
    if current is not None and current.status == "generated" and current.generated_artifact is not None:
        return Transition(session=current, content=messages.ALREADY_GENERATED, persist=False)
    if current is not None and current.status in IN_PROGRESS_STATUSES:
        return Transition(session=current, content=messages.IN_PROGRESS, persist=False)
    fallback = current if current is not None else original
    return Transition(
        session=_clear_pending(fallback, "error"),
        content=messages.INVALID_CONFIRMATION,
        error_code="INVALID_CONFIRMATION",
        persist=False,
    )


def complete_billable(
    session: WorkflowSession,
    action: str,
    ok: bool,
    error_code: Optional[str] = None,
    error_message: Optional[str] = None,
    artifact: Optional[GeneratedArtifact] = None,
    tryon_result_ref: Optional[str] = None,
    credits_used: int = 0,
) -> Transition:
    """Fold the outcome of a claimed billable action into the session."""
    if not ok:
        failed = _clear_pending(session, "error")
        return Transition(session=failed, content=error_message or "", error_code=error_code)

    settled = _clear_pending(session, "generated")
    if action == "tryon":
        settled = settled.with_collected(tryon_result_ref=tryon_result_ref)
        return Transition(session=settled, content=messages.TRYON_DONE, credits_used=credits_used)

    settled = settled.evolve(generated_artifact=artifact).with_collected(tryon_result_ref=None)
    if action == "edit":
        content = messages.edited(settled.collected.edit_instruction)
    else:
        content = messages.generated(settled.collected)
    return Transition(session=settled, content=content, credits_used=credits_used)


def complete_save(transition: Transition, saved: bool, autosave: bool = False) -> Transition:
    """Fold an inventory save (explicit or automatic) into ``transition``."""
    session = transition.session
    if saved and session.generated_artifact is not None:
        artifact = session.generated_artifact.model_copy(update={"saved_to_inventory": True})
        session = session.evolve(generated_artifact=artifact)
    if autosave:
        content = transition.content if saved else transition.content + messages.AUTOSAVE_FAILED_SUFFIX
    else:
        content = messages.SAVED if saved else messages.SAVE_FAILED
    return transition.evolve(session=session, content=content, effects=[])


def complete_outfit(
    transition: Transition,
    suggestion: Optional[OutfitSuggestion],
    warnings: Optional[List[str]] = None,
    after_generation: bool = False,
) -> Transition:
    """Fold an outfit built around the artifact into ``transition``."""
    if after_generation:
        content = transition.content + (messages.OUTFIT_SUFFIX if suggestion else "")
    else:
        content = messages.OUTFIT_READY if suggestion else messages.OUTFIT_UNAVAILABLE
    return transition.evolve(
        content=content,
        outfit_suggestion=suggestion,
        validation_warnings=list(warnings or []),
        effects=[],
    )


def build_view(session: WorkflowSession, error_code: Optional[str] = None, default_cost: int = 2) -> WorkflowView:
    """Project ``session`` into the workflow block of the response."""
    collected = session.collected
    return WorkflowView(
        session_id=session.session_id,
        status=session.status,
        strategy=collected.strategy,
        pending_action=collected.pending_action,
        missing_fields=get_missing_fields(collected.strategy, collected),
        collected=CollectedView(
            occasion=collected.occasion,
            style=collected.style,
            category=collected.category,
            request_text=collected.request_text,
        ),
        estimated_cost_credits=collected.pending_cost_credits or default_cost,
        requires_confirmation=session.status in CONFIRMING_STATUSES,
        confirmation_token=session.confirmation_token,
        generated_item=session.generated_artifact,
        try_on_result_ref=collected.tryon_result_ref,
        edit_instruction=collected.edit_instruction,
        autosave_enabled=session.autosave_enabled,
        error_code=error_code,
    )
