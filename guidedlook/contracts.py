"""Core data contracts for the guided look workflow and the stylist chat."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .constants import GUIDED_CREATION_MODE, WORKFLOW_ACTIONS

WorkflowStatus = Literal[
    "idle",
    "collecting",
    "choosing_mode",
    "confirming",
    "generating",
    "generated",
    "editing",
    "tryon_confirming",
    "tryon_generating",
    "cancelled",
    "error",
]
Strategy = Literal["direct", "guided"]
PendingAction = Literal["generate", "edit", "tryon"]
Category = Literal["top", "bottom", "shoes"]
MissingField = Literal["occasion", "style", "category"]
WorkflowErrorCode = Literal[
    "INSUFFICIENT_CREDITS",
    "GENERATION_TIMEOUT",
    "GENERATION_FAILED",
    "TRYON_FAILED",
    "SESSION_EXPIRED",
    "INVALID_CONFIRMATION",
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenModel(CamelModel):
    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------


class Collected(FrozenModel):
    """Structured intent and pending sub-action data gathered by the workflow."""

    occasion: Optional[str] = None
    style: Optional[str] = None
    category: Optional[Category] = None
    request_text: Optional[str] = None
    strategy: Optional[Strategy] = None
    pending_action: Optional[PendingAction] = None
    pending_cost_credits: Optional[int] = None
    edit_instruction: Optional[str] = None
    tryon_selfie_ref: Optional[str] = None
    tryon_result_ref: Optional[str] = None


class ArtifactMetadata(FrozenModel):
    category: Category = "top"
    subcategory: str = ""
    color_primary: str = "#000000"
    vibe_tags: List[str] = Field(default_factory=list)
    seasons: List[str] = Field(default_factory=list)
    description: Optional[str] = None


class GeneratedArtifact(FrozenModel):
    """Item produced by the generation service, owned by the session."""

    id: str
    image_ref: str
    metadata: ArtifactMetadata
    ai_generation_prompt: str = ""
    is_ai_generated: bool = True
    saved_to_inventory: bool = False

    def as_inventory_item(self) -> Dict[str, Any]:
        """Shape the artifact like a caller-supplied inventory item."""
        return {"id": self.id, "metadata": self.metadata.model_dump()}


class WorkflowSession(FrozenModel):
    """Server-held conversation state for one guided creation flow."""

    user_id: str
    session_id: str
    status: WorkflowStatus = "idle"
    collected: Collected = Field(default_factory=Collected)
    confirmation_token: Optional[str] = None
    generated_artifact: Optional[GeneratedArtifact] = None
    autosave_enabled: bool = False
    expires_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def evolve(self, **changes: Any) -> "WorkflowSession":
        """Return a copy with ``changes`` applied to the session fields."""
        return self.model_copy(update=changes)

    def with_collected(self, **changes: Any) -> "WorkflowSession":
        """Return a copy with ``changes`` applied to ``collected``."""
        return self.model_copy(update={"collected": self.collected.model_copy(update=changes)})


# ---------------------------------------------------------------------------
# Outfit suggestions
# ---------------------------------------------------------------------------


class MissingPieceSuggestion(CamelModel):
    item_name: str = ""
    reason: str = ""


class OutfitSuggestion(CamelModel):
    """Three-slot outfit built from inventory ids."""

    top_id: str
    bottom_id: str
    shoes_id: str
    explanation: str = ""
    confidence: Optional[float] = None
    missing_piece_suggestion: Optional[MissingPieceSuggestion] = None


# ---------------------------------------------------------------------------
# Request envelope
# ---------------------------------------------------------------------------


class WorkflowPayload(CamelModel):
    """Action-specific input supplied with a workflow turn."""

    model_config = ConfigDict(extra="ignore")

    message: Optional[str] = None
    occasion: Optional[str] = None
    style: Optional[str] = None
    category: Optional[str] = None
    strategy: Optional[str] = None
    confirmation_token: Optional[str] = None
    edit_instruction: Optional[str] = None
    selfie_ref: Optional[str] = None
    autosave_enabled: Optional[bool] = None


class WorkflowRequest(CamelModel):
    mode: str = GUIDED_CREATION_MODE
    action: str = "submit"
    session_id: Optional[str] = None
    payload: WorkflowPayload = Field(default_factory=WorkflowPayload)

    @field_validator("action", mode="before")
    @classmethod
    def _coerce_action(cls, value: Any) -> str:
        action = str(value or "").strip()
        return action if action in WORKFLOW_ACTIONS else "submit"


class ChatTurn(CamelModel):
    role: Literal["user", "assistant"] = "user"
    content: str = ""

    @field_validator("role", mode="before")
    @classmethod
    def _coerce_role(cls, value: Any) -> str:
        return "assistant" if value == "assistant" else "user"


class ChatRequest(CamelModel):
    """Incoming payload for one conversational turn."""

    model_config = ConfigDict(extra="ignore")

    workflow: Optional[WorkflowRequest] = None
    message: Optional[str] = None
    inventory_snapshot: List[Dict[str, Any]] = Field(default_factory=list)
    thread_id: Optional[str] = None
    chat_history: List[ChatTurn] = Field(default_factory=list)
    response_mode: Literal["text", "structured"] = "text"
    surface: Literal["studio", "closet"] = "closet"
    idempotency_key: Optional[str] = None

    @field_validator("response_mode", mode="before")
    @classmethod
    def _coerce_response_mode(cls, value: Any) -> str:
        return "structured" if value == "structured" else "text"

    @field_validator("surface", mode="before")
    @classmethod
    def _coerce_surface(cls, value: Any) -> str:
        return "studio" if value == "studio" else "closet"

    def is_guided_workflow(self) -> bool:
        return self.workflow is not None and self.workflow.mode == GUIDED_CREATION_MODE


# ---------------------------------------------------------------------------
# Response envelope
# ---------------------------------------------------------------------------


class CollectedView(CamelModel):
    occasion: Optional[str] = None
    style: Optional[str] = None
    category: Optional[Category] = None
    request_text: Optional[str] = None


class WorkflowView(CamelModel):
    """Workflow state returned to the caller after each turn."""

    mode: str = GUIDED_CREATION_MODE
    session_id: str
    status: WorkflowStatus
    strategy: Optional[Strategy] = None
    pending_action: Optional[PendingAction] = None
    missing_fields: List[MissingField] = Field(default_factory=list)
    collected: CollectedView = Field(default_factory=CollectedView)
    estimated_cost_credits: int
    requires_confirmation: bool = False
    confirmation_token: Optional[str] = None
    generated_item: Optional[GeneratedArtifact] = None
    try_on_result_ref: Optional[str] = None
    edit_instruction: Optional[str] = None
    autosave_enabled: bool = False
    error_code: Optional[WorkflowErrorCode] = None


class ChatResponse(CamelModel):
    """Outgoing payload for one conversational turn."""

    role: Literal["assistant"] = "assistant"
    content: str = ""
    outfit_suggestion: Optional[OutfitSuggestion] = None
    validation_warnings: List[str] = Field(default_factory=list)
    workflow: Optional[WorkflowView] = None
    credits_used: int = 0
    thread_id: Optional[str] = None
    model: Optional[str] = None
    cache_hit: bool = False
    idempotent: bool = False
