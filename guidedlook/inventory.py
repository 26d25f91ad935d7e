"""Inventory category resolution and fail-closed outfit validation."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, Field

from .contracts import GeneratedArtifact, MissingPieceSuggestion, OutfitSuggestion

logger = logging.getLogger(__name__)

MAX_INVENTORY_ITEMS = 250
ARTIFACT_OUTFIT_EXPLANATION = "Te armé un outfit completo incorporando la prenda recién generada."
ARTIFACT_OUTFIT_CONFIDENCE = 0.78

_SHOES_KEYWORDS = ("shoe", "calzado", "zapat", "bota", "sandalia")
_BOTTOM_KEYWORDS = ("bottom", "pant", "jean", "falda", "short")
_TOP_KEYWORDS = (
    "top",
    "remera",
    "camisa",
    "blusa",
    "hoodie",
    "buzo",
    "sweater",
    "outerwear",
    "campera",
    "jacket",
)


class OutfitValidation(BaseModel):
    """Outcome of validating a candidate outfit: the suggestion or the reasons it was dropped."""

    suggestion: Optional[OutfitSuggestion] = None
    warnings: List[str] = Field(default_factory=list)


def _to_epoch(value: Any) -> float:
    if not value:
        return 0.0
    if isinstance(value, datetime):
        return value.timestamp()
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


def _metadata(item: Mapping[str, Any]) -> Dict[str, Any]:
    metadata = item.get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def trim_inventory(items: Optional[Iterable[Any]], max_items: int = MAX_INVENTORY_ITEMS) -> List[Dict[str, Any]]:
    """Keep ``{id, metadata}`` of the most recently updated items, capped at ``max_items``."""
    if not items:
        return []
    prepared = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        item_id = str(item.get("id") or "").strip()
        if not item_id:
            continue
        metadata = _metadata(item)
        updated = _to_epoch(metadata.get("updated_at") or item.get("updated_at"))
        prepared.append((updated, item_id, metadata))
    prepared.sort(key=lambda entry: entry[0], reverse=True)
    return [{"id": item_id, "metadata": metadata} for _, item_id, metadata in prepared[:max_items]]


def normalize_category(category: Any, subcategory: Any) -> str:
    """Map free-form category text to ``top``, ``bottom``, ``shoes`` or ``other``."""
    value = f"{str(category or '').lower()} {str(subcategory or '').lower()}"
    if any(keyword in value for keyword in _SHOES_KEYWORDS):
        return "shoes"
    if any(keyword in value for keyword in _BOTTOM_KEYWORDS):
        return "bottom"
    if any(keyword in value for keyword in _TOP_KEYWORDS):
        return "top"
    return "other"


def build_category_map(items: Iterable[Mapping[str, Any]]) -> Dict[str, str]:
    category_by_id: Dict[str, str] = {}
    for item in items or []:
        item_id = str(item.get("id") or "").strip()
        if not item_id:
            continue
        metadata = _metadata(item)
        category_by_id[item_id] = normalize_category(metadata.get("category"), metadata.get("subcategory"))
    return category_by_id


def validate_outfit_suggestion(candidate: Any, category_by_id: Mapping[str, str]) -> OutfitValidation:
    """Validate a three-slot outfit against the resolved inventory categories.

    Fails closed: any missing, repeated, unknown or miscategorized id drops
    the whole suggestion and returns the reasons as warnings.
    """
    if candidate is None:
        return OutfitValidation()
    if isinstance(candidate, BaseModel):
        candidate = candidate.model_dump()
    if not isinstance(candidate, Mapping):
        return OutfitValidation()

    top_id = str(candidate.get("top_id") or "").strip()
    bottom_id = str(candidate.get("bottom_id") or "").strip()
    shoes_id = str(candidate.get("shoes_id") or "").strip()
    explanation = str(candidate.get("explanation") or "").strip()

    if not top_id or not bottom_id or not shoes_id:
        return OutfitValidation(warnings=["Faltan IDs obligatorios para top, bottom o shoes."])
    if len({top_id, bottom_id, shoes_id}) != 3:
        return OutfitValidation(warnings=["El estilista devolvió IDs repetidos. Se descartó la sugerencia."])

    resolved = {slot: category_by_id.get(item_id) for slot, item_id in (("top", top_id), ("bottom", bottom_id), ("shoes", shoes_id))}
    if any(category is None for category in resolved.values()):
        return OutfitValidation(warnings=["El estilista devolvió IDs inexistentes en el armario."])

    ids = {"top": top_id, "bottom": bottom_id, "shoes": shoes_id}
    warnings = [
        f"{slot}_id {ids[slot]} no pertenece a categoría {slot}."
        for slot, category in resolved.items()
        if category != slot
    ]
    if warnings:
        logger.warning(f"Discarded outfit suggestion: {'; '.join(warnings)}")
        return OutfitValidation(warnings=warnings)

    confidence = candidate.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = None
    else:
        confidence = max(0.0, min(1.0, float(confidence)))

    missing_piece = candidate.get("missing_piece_suggestion")
    note = None
    if isinstance(missing_piece, Mapping):
        item_name = str(missing_piece.get("item_name") or "").strip()
        reason = str(missing_piece.get("reason") or "").strip()
        if item_name or reason:
            note = MissingPieceSuggestion(item_name=item_name, reason=reason)

    return OutfitValidation(
        suggestion=OutfitSuggestion(
            top_id=top_id,
            bottom_id=bottom_id,
            shoes_id=shoes_id,
            explanation=explanation,
            confidence=confidence,
            missing_piece_suggestion=note,
        )
    )


def build_outfit_with_artifact(artifact: GeneratedArtifact, inventory: Iterable[Mapping[str, Any]]) -> OutfitValidation:
    """Fill the artifact's slot with the artifact and the rest with the most recent matching items."""
    enriched = [artifact.as_inventory_item()] + [item for item in inventory if item.get("id") != artifact.id]
    category_by_id = build_category_map(enriched)

    slots: Dict[str, Optional[str]] = {"top": None, "bottom": None, "shoes": None}
    slots[artifact.metadata.category] = artifact.id
    for item_id, category in category_by_id.items():
        if category in slots and slots[category] is None:
            slots[category] = item_id

    if not all(slots.values()):
        return OutfitValidation()

    candidate = {
        "top_id": slots["top"],
        "bottom_id": slots["bottom"],
        "shoes_id": slots["shoes"],
        "explanation": ARTIFACT_OUTFIT_EXPLANATION,
        "confidence": ARTIFACT_OUTFIT_CONFIDENCE,
    }
    return validate_outfit_suggestion(candidate, category_by_id)
