"""Tests for the pure workflow reducer and confirmation gate."""

from datetime import timedelta

from guidedlook.config import CreditCosts
from guidedlook.constants import CONFIRMING_STATUSES
from guidedlook.contracts import (
    ArtifactMetadata,
    Collected,
    GeneratedArtifact,
    WorkflowPayload,
    WorkflowRequest,
    WorkflowSession,
    utcnow,
)
from guidedlook.workflow import ConfirmationGate, TurnInput, build_view, reduce
from guidedlook.workflow import messages
from guidedlook.workflow.reducer import (
    BuildOutfit,
    RunBillable,
    SaveArtifact,
    claim_lost,
    complete_billable,
)


def _gate():
    tokens = iter(f"token-{i}" for i in range(100))
    return ConfirmationGate(CreditCosts(generate=2, edit=3, tryon=4), token_factory=lambda: next(tokens))


def _session(**changes):
    return WorkflowSession(user_id="u1", session_id="s1").evolve(**changes)


def _artifact():
    return GeneratedArtifact(
        id="guided_ai_s1",
        image_ref="https://cdn.example.com/a.png",
        metadata=ArtifactMetadata(category="top"),
        ai_generation_prompt="base prompt",
    )


def _turn(action="submit", message="", **payload):
    return TurnInput(action=action, message=message, payload=WorkflowPayload(**payload))


def _confirming(gate):
    session = _session(collected=Collected(strategy="direct", category="top"))
    return reduce(session, _turn("submit", "una remera"), gate).session


def test_start_without_strategy_asks_for_mode():
    result = reduce(_session(), _turn("start", "quiero algo para una cita"), _gate())
    assert result.session.status == "choosing_mode"
    assert result.session.collected.occasion == "cita"
    assert result.content == messages.mode_choice(2)
    assert result.session.confirmation_token is None


def test_start_resets_previous_artifact_and_pending_state():
    session = _session(
        status="confirming",
        confirmation_token="old",
        generated_artifact=_artifact(),
        collected=Collected(strategy="guided", pending_action="edit", pending_cost_credits=3, edit_instruction="x"),
    )
    result = reduce(session, _turn("start", "hola"), _gate())
    assert result.session.generated_artifact is None
    assert result.session.collected.edit_instruction is None
    assert result.session.collected.strategy is None
    assert result.session.confirmation_token is None


def test_guided_collection_asks_fields_in_priority_order():
    gate = _gate()
    session = reduce(_session(), _turn("select_strategy", strategy="guided"), gate).session
    assert session.status == "collecting"
    result = reduce(session, _turn("submit", "algo casual"), gate)
    assert result.session.status == "collecting"
    assert result.content == messages.FIELD_QUESTIONS["occasion"]
    assert build_view(result.session).missing_fields == ["occasion", "category"]


def test_complete_fields_mint_token_and_quote_cost():
    gate = _gate()
    result = reduce(_session(collected=Collected(strategy="direct")), _turn("submit", "un jean"), gate)
    session = result.session
    assert session.status == "confirming"
    assert session.confirmation_token == "token-0"
    assert session.collected.pending_action == "generate"
    assert session.collected.pending_cost_credits == 2
    view = build_view(session)
    assert view.requires_confirmation is True
    assert view.estimated_cost_credits == 2


def test_each_quote_replaces_the_token():
    gate = _gate()
    first = _confirming(gate)
    second = reduce(first, _turn("submit", "mejor una camisa"), gate).session
    assert second.confirmation_token != first.confirmation_token


def test_unknown_action_is_treated_as_submit():
    assert WorkflowRequest(action="dance").action == "submit"
    assert WorkflowRequest(action=None).action == "submit"


def test_confirm_with_valid_token_claims_without_persisting():
    gate = _gate()
    session = _confirming(gate)
    result = reduce(session, _turn("confirm_generate", confirmation_token=session.confirmation_token), gate)
    assert result.persist is False
    assert result.session.status == "generating"
    assert result.session.confirmation_token is None
    (effect,) = result.effects
    assert isinstance(effect, RunBillable)
    assert effect.expected_status == "confirming"
    assert effect.expected_token == session.confirmation_token
    assert effect.cost == 2


def test_confirm_with_wrong_token_is_rejected_without_persisting():
    gate = _gate()
    session = _confirming(gate)
    result = reduce(session, _turn("confirm_generate", confirmation_token="forged"), gate)
    assert result.error_code == "INVALID_CONFIRMATION"
    assert result.session.status == "error"
    assert result.persist is False
    assert result.effects == []


def test_affirmative_submit_needs_the_token():
    gate = _gate()
    session = _confirming(gate)
    result = reduce(session, _turn("submit", "dale", confirmation_token=session.confirmation_token), gate)
    assert isinstance(result.effects[0], RunBillable)


def test_negative_submit_cancels():
    gate = _gate()
    result = reduce(_confirming(gate), _turn("submit", "no"), gate)
    assert result.session.status == "cancelled"
    assert result.session.confirmation_token is None
    assert result.session.collected.pending_action is None
    assert result.content == messages.CANCELLED_FLOW


def test_confirm_while_generating_reports_in_progress():
    result = reduce(_session(status="generating"), _turn("confirm_generate", confirmation_token="x"), _gate())
    assert result.content == messages.IN_PROGRESS
    assert result.persist is False
    assert result.effects == []


def test_expired_session_is_cleared():
    session = _session(
        status="confirming",
        confirmation_token="t",
        generated_artifact=_artifact(),
        expires_at=utcnow() - timedelta(minutes=1),
    )
    result = reduce(session, _turn("confirm_generate", confirmation_token="t"), _gate())
    assert result.error_code == "SESSION_EXPIRED"
    assert result.session.status == "error"
    assert result.session.generated_artifact is None
    assert result.session.confirmation_token is None


def test_artifact_actions_require_an_artifact():
    for action in ("request_edit", "request_tryon", "request_outfit", "save_generated_item", "upload_selfie"):
        result = reduce(_session(status="idle"), _turn(action), _gate())
        assert result.error_code == "SESSION_EXPIRED", action
        assert result.session.status == "error"


def test_request_edit_quotes_edit_cost_and_confirm_generate_routes_to_edit():
    gate = _gate()
    session = _session(status="generated", generated_artifact=_artifact())
    quoted = reduce(session, _turn("request_edit", edit_instruction="cambiar a negro mate"), gate)
    assert quoted.session.status == "confirming"
    assert quoted.session.collected.pending_action == "edit"
    assert quoted.session.collected.pending_cost_credits == 3
    token = quoted.session.confirmation_token
    claimed = reduce(quoted.session, _turn("confirm_generate", confirmation_token=token), gate)
    assert claimed.session.status == "editing"
    assert claimed.effects[0].action == "edit"
    assert claimed.effects[0].cost == 3


def test_request_edit_without_instruction_asks():
    session = _session(status="generated", generated_artifact=_artifact())
    result = reduce(session, _turn("request_edit", "   "), _gate())
    assert result.session.status == "generated"
    assert result.content == messages.ASK_EDIT_INSTRUCTION


def test_tryon_requires_a_selfie_first():
    gate = _gate()
    session = _session(status="generated", generated_artifact=_artifact())
    asked = reduce(session, _turn("request_tryon"), gate)
    assert asked.session.status == "generated"
    assert asked.content == messages.ASK_SELFIE

    invalid = reduce(session, _turn("upload_selfie", selfie_ref="ftp://nope"), gate)
    assert invalid.content == messages.SELFIE_INVALID

    uploaded = reduce(session, _turn("upload_selfie", selfie_ref="data:image/png;base64,AAA"), gate)
    quoted = reduce(uploaded.session, _turn("request_tryon"), gate)
    assert quoted.session.status == "tryon_confirming"
    assert quoted.session.collected.pending_cost_credits == 4


def test_cancel_with_artifact_returns_to_generated():
    gate = _gate()
    session = _session(status="generated", generated_artifact=_artifact())
    quoted = reduce(session, _turn("request_edit", edit_instruction="más largo"), gate).session
    result = reduce(quoted, _turn("cancel"), gate)
    assert result.session.status == "generated"
    assert result.content == messages.CANCELLED_EDIT
    assert result.session.confirmation_token is None


def test_toggle_autosave_only_changes_the_flag():
    session = _session(status="collecting", collected=Collected(strategy="guided"))
    result = reduce(session, _turn("toggle_autosave", autosave_enabled=True), _gate())
    assert result.session.autosave_enabled is True
    assert result.session.status == "collecting"
    assert result.content == messages.AUTOSAVE_ON


def test_save_and_outfit_emit_effects():
    session = _session(status="generated", generated_artifact=_artifact())
    assert isinstance(reduce(session, _turn("save_generated_item"), _gate()).effects[0], SaveArtifact)
    assert isinstance(reduce(session, _turn("request_outfit"), _gate()).effects[0], BuildOutfit)

    saved = session.evolve(generated_artifact=_artifact().model_copy(update={"saved_to_inventory": True}))
    result = reduce(saved, _turn("save_generated_item"), _gate())
    assert result.effects == []
    assert result.content == messages.ALREADY_SAVED


def test_claim_lost_outcomes():
    original = _session(status="confirming", confirmation_token="t")
    generated = _session(status="generated", generated_artifact=_artifact())
    assert claim_lost(generated, original).content == messages.ALREADY_GENERATED
    assert claim_lost(_session(status="generating"), original).content == messages.IN_PROGRESS
    lost = claim_lost(None, original)
    assert lost.error_code == "INVALID_CONFIRMATION"
    assert lost.persist is False


def test_complete_billable_failure_clears_pending_and_keeps_fields():
    claimed = _session(
        status="generating",
        collected=Collected(strategy="direct", category="top", pending_action="generate", pending_cost_credits=2),
    )
    result = complete_billable(claimed, "generate", ok=False, error_code="GENERATION_FAILED", error_message="x")
    assert result.session.status == "error"
    assert result.session.collected.category == "top"
    assert result.session.collected.pending_action is None
    assert result.session.confirmation_token is None
    assert result.credits_used == 0


def _assert_token_matches_status(session):
    assert (session.confirmation_token is not None) == (session.status in CONFIRMING_STATUSES), session.status


def test_token_is_held_exactly_while_confirming():
    gate = _gate()
    session = _session()
    script = [
        _turn("start", "quiero algo para una cita"),
        _turn("select_strategy", strategy="guided"),
        _turn("submit", "algo urbano"),
        _turn("submit", "una campera"),
        _turn("submit", "mejor una camisa"),
        _turn("confirm_generate", confirmation_token="forged"),
        _turn("submit", "no"),
        _turn("submit", "una remera"),
    ]
    for turn in script:
        result = reduce(session, turn, gate)
        _assert_token_matches_status(result.session)
        if result.persist:
            session = result.session

    token = session.confirmation_token
    claimed = reduce(session, _turn("confirm_generate", confirmation_token=token), gate).session
    _assert_token_matches_status(claimed)
    session = complete_billable(claimed, "generate", ok=True, artifact=_artifact(), credits_used=2).session
    _assert_token_matches_status(session)

    follow_ups = [
        _turn("request_edit", edit_instruction="más largo"),
        _turn("cancel"),
        _turn("upload_selfie", selfie_ref="data:image/png;base64,AAA"),
        _turn("request_tryon"),
        _turn("submit", "dale"),
    ]
    for turn in follow_ups:
        result = reduce(session, turn, gate)
        _assert_token_matches_status(result.session)
        session = result.session

    failed = complete_billable(session, "tryon", ok=False, error_code="TRYON_FAILED", error_message="x").session
    _assert_token_matches_status(failed)
    expired = reduce(
        failed.evolve(expires_at=utcnow() - timedelta(minutes=1)), _turn("request_edit", edit_instruction="x"), gate
    ).session
    _assert_token_matches_status(expired)
