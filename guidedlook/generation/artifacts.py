"""Prompts sent to the generation service and the artifact built from its result."""

from __future__ import annotations

import re
import uuid
from typing import Dict, Optional

from ..constants import ALL_SEASONS, DEFAULT_COLOR_HEX
from ..contracts import ArtifactMetadata, Collected, GeneratedArtifact
from ..workflow.messages import category_label

COLOR_HEX_BY_KEYWORD = [
    ("negro", "#111111"),
    ("negra", "#111111"),
    ("blanco", "#F5F5F5"),
    ("blanca", "#F5F5F5"),
    ("gris", "#9CA3AF"),
    ("azul", "#2563EB"),
    ("celeste", "#38BDF8"),
    ("rojo", "#DC2626"),
    ("roja", "#DC2626"),
    ("bordó", "#7F1D1D"),
    ("bordo", "#7F1D1D"),
    ("verde", "#16A34A"),
    ("oliva", "#556B2F"),
    ("amarillo", "#FACC15"),
    ("naranja", "#F97316"),
    ("rosa", "#EC4899"),
    ("fucsia", "#D946EF"),
    ("violeta", "#8B5CF6"),
    ("marrón", "#8B5A2B"),
    ("marron", "#8B5A2B"),
    ("beige", "#D6C7A1"),
    ("crema", "#F3E8C8"),
]
_COLOR_PATTERNS = [(re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE), hex_value) for keyword, hex_value in COLOR_HEX_BY_KEYWORD]

TRYON_SLOTS = {"bottom": "bottom", "shoes": "shoes"}


def artifact_id(session_id: str) -> str:
    """Fresh id per generated or edited artifact."""
    return f"guided_ai_{session_id}_{uuid.uuid4().hex[:12]}"


def infer_color(text: str) -> str:
    """Back-infer the primary color from free text; neutral black when nothing matches."""
    for pattern, hex_value in _COLOR_PATTERNS:
        if pattern.search(text):
            return hex_value
    return DEFAULT_COLOR_HEX


def tryon_slot(category: Optional[str]) -> str:
    return TRYON_SLOTS.get(category or "", "top_base")


def style_preferences(collected: Collected) -> Dict[str, str]:
    preferences = {"category": collected.category or "top"}
    if collected.occasion:
        preferences["occasion"] = collected.occasion
    if collected.style:
        preferences["style"] = collected.style
    return preferences


def build_creation_prompt(collected: Collected) -> str:
    parts = [
        f"Pedido base: {collected.request_text}." if collected.request_text else "",
        f"Ocasión: {collected.occasion}." if collected.occasion else "",
        f"Estilo: {collected.style}." if collected.style else "",
        f"Categoría: {collected.category}." if collected.category else "",
        "Foto de producto de moda, fondo limpio, enfoque e-commerce, alta calidad.",
    ]
    return " ".join(part for part in parts if part)


def build_edit_prompt(collected: Collected, instruction: str, base_prompt: Optional[str] = None) -> str:
    instruction = (instruction or "").strip()
    parts = [
        f"Base de la prenda original: {base_prompt}." if base_prompt else "",
        f"Ocasión objetivo: {collected.occasion}." if collected.occasion else "",
        f"Estilo objetivo: {collected.style}." if collected.style else "",
        f"Categoría: {collected.category}." if collected.category else "",
        f"Cambios solicitados: {instruction}." if instruction else "",
        "Reimaginar la misma prenda con esas modificaciones, foto de producto de moda, "
        "fondo limpio tipo e-commerce, alta calidad, sin modelo.",
    ]
    return " ".join(part for part in parts if part)


def build_artifact(session_id: str, image_ref: str, prompt: str, collected: Collected) -> GeneratedArtifact:
    """Wrap a generated image and its prompt into a session artifact."""
    category = collected.category or "top"
    style = collected.style or "casual"
    combined = " ".join([collected.request_text or "", collected.style or "", collected.occasion or ""])
    vibe_tags = []
    for tag in ("ai-generated", style, collected.occasion or ""):
        if tag and tag not in vibe_tags:
            vibe_tags.append(tag)
    return GeneratedArtifact(
        id=artifact_id(session_id),
        image_ref=image_ref,
        metadata=ArtifactMetadata(
            category=category,
            subcategory=f"Prenda IA - {category_label(category)} {style}".strip(),
            color_primary=infer_color(combined),
            vibe_tags=vibe_tags,
            seasons=list(ALL_SEASONS),
            description=prompt,
        ),
        ai_generation_prompt=prompt,
    )
