"""Tests for inventory category resolution and outfit validation."""

from guidedlook.contracts import ArtifactMetadata, GeneratedArtifact
from guidedlook.inventory import (
    ARTIFACT_OUTFIT_EXPLANATION,
    build_category_map,
    build_outfit_with_artifact,
    normalize_category,
    trim_inventory,
    validate_outfit_suggestion,
)

INVENTORY = [
    {"id": "t1", "metadata": {"category": "top", "subcategory": "remera"}},
    {"id": "b1", "metadata": {"category": "bottom", "subcategory": "jean"}},
    {"id": "s1", "metadata": {"category": "calzado", "subcategory": "zapatillas"}},
    {"id": "a1", "metadata": {"category": "accesorio", "subcategory": "collar"}},
]


def test_normalize_category_precedence():
    assert normalize_category("shoes", None) == "shoes"
    assert normalize_category("Jeans", "") == "bottom"
    assert normalize_category("outerwear", "campera") == "top"
    assert normalize_category("", "") == "other"
    # shoes keywords win over top keywords
    assert normalize_category("top", "botas") == "shoes"


def test_trim_inventory_keeps_most_recent_and_drops_items_without_id():
    items = [
        {"id": "old", "metadata": {"updated_at": "2024-01-01T00:00:00Z"}},
        {"id": "new", "metadata": {"updated_at": "2025-01-01T00:00:00Z"}},
        {"metadata": {"category": "top"}},
        "not-an-item",
    ]
    trimmed = trim_inventory(items, max_items=1)
    assert [item["id"] for item in trimmed] == ["new"]


def test_valid_suggestion_passes_with_clamped_confidence():
    category_by_id = build_category_map(INVENTORY)
    result = validate_outfit_suggestion(
        {"top_id": "t1", "bottom_id": "b1", "shoes_id": "s1", "explanation": "ok", "confidence": 1.7},
        category_by_id,
    )
    assert result.warnings == []
    assert result.suggestion.top_id == "t1"
    assert result.suggestion.confidence == 1.0


def test_missing_ids_fail_closed():
    result = validate_outfit_suggestion({"top_id": "t1", "bottom_id": "b1"}, build_category_map(INVENTORY))
    assert result.suggestion is None
    assert result.warnings == ["Faltan IDs obligatorios para top, bottom o shoes."]


def test_repeated_ids_fail_closed():
    result = validate_outfit_suggestion(
        {"top_id": "t1", "bottom_id": "t1", "shoes_id": "s1"}, build_category_map(INVENTORY)
    )
    assert result.suggestion is None
    assert "repetidos" in result.warnings[0]


def test_unknown_ids_fail_closed():
    result = validate_outfit_suggestion(
        {"top_id": "t1", "bottom_id": "b1", "shoes_id": "ghost"}, build_category_map(INVENTORY)
    )
    assert result.suggestion is None
    assert result.warnings == ["El estilista devolvió IDs inexistentes en el armario."]


def test_miscategorized_ids_fail_closed():
    result = validate_outfit_suggestion(
        {"top_id": "b1", "bottom_id": "t1", "shoes_id": "s1"}, build_category_map(INVENTORY)
    )
    assert result.suggestion is None
    assert "top_id b1 no pertenece a categoría top." in result.warnings
    assert "bottom_id t1 no pertenece a categoría bottom." in result.warnings


def test_none_candidate_returns_empty_validation():
    result = validate_outfit_suggestion(None, {})
    assert result.suggestion is None
    assert result.warnings == []


def _artifact(category="top"):
    return GeneratedArtifact(
        id="guided_ai_s1",
        image_ref="https://cdn.example.com/a.png",
        metadata=ArtifactMetadata(category=category, subcategory="Prenda IA - Top casual"),
    )


def test_outfit_built_around_artifact():
    result = build_outfit_with_artifact(_artifact(), INVENTORY)
    assert result.suggestion is not None
    assert result.suggestion.top_id == "guided_ai_s1"
    assert result.suggestion.bottom_id == "b1"
    assert result.suggestion.shoes_id == "s1"
    assert result.suggestion.explanation == ARTIFACT_OUTFIT_EXPLANATION


def test_outfit_unavailable_without_matching_items():
    result = build_outfit_with_artifact(_artifact(), [INVENTORY[0]])
    assert result.suggestion is None
