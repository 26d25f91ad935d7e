"""Field collection: structured intent parsed from free-text turns.

Everything here is pure and deterministic. Category, style and occasion are
matched against curated vocabularies; the first match wins and there is no
ranking between candidates.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from ..contracts import Collected, WorkflowPayload
from . import messages

CATEGORY_PATTERNS = [
    ("top", re.compile(r"\b(top|remera|camisa|blusa|camiseta|shirt)\b", re.IGNORECASE)),
    ("bottom", re.compile(r"\b(bottom|pantal[oó]n|jean|falda|short|pollera)\b", re.IGNORECASE)),
    ("shoes", re.compile(r"\b(shoes|calzado|zapatillas|zapas|zapatos|botas)\b", re.IGNORECASE)),
]

STYLE_VOCABULARY = [
    "casual",
    "formal",
    "elegante",
    "minimalista",
    "urbano",
    "streetwear",
    "deportivo",
    "boho",
    "romantico",
    "romántico",
    "clasico",
    "clásico",
]

OCCASION_VOCABULARY = [
    "oficina",
    "trabajo",
    "cita",
    "fiesta",
    "evento",
    "casamiento",
    "boda",
    "viaje",
    "salida",
    "universidad",
    "facultad",
    "gimnasio",
    "noche",
    "fin de semana",
]

_AFFIRMATIVE = re.compile(r"^(si|sí|dale|ok|de una|confirmo|confirmar|genera|generar|hag[aá]moslo|listo)$")
_NEGATIVE = re.compile(r"^(no|cancelar|cancela|fren[aá]|mejor no|despu[eé]s)$")


def _phrase_pattern(phrase: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(phrase)}\b", re.IGNORECASE)


_STYLE_PATTERNS = [(style, _phrase_pattern(style)) for style in STYLE_VOCABULARY]
_OCCASION_PATTERNS = [(occasion, _phrase_pattern(occasion)) for occasion in OCCASION_VOCABULARY]


def _first_match(text: str, patterns) -> Optional[str]:
    for value, pattern in patterns:
        if pattern.search(text):
            return value
    return None


def parse_category(text: Optional[str]) -> Optional[str]:
    """Return ``top``, ``bottom`` or ``shoes`` when ``text`` names a garment type."""
    normalized = (text or "").strip()
    if not normalized:
        return None
    return _first_match(normalized, CATEGORY_PATTERNS)


def sanitize_strategy(value: Any) -> Optional[str]:
    return value if value in ("direct", "guided") else None


def parse_strategy(text: Optional[str]) -> Optional[str]:
    normalized = (text or "").strip().lower()
    if not normalized:
        return None
    if "guiad" in normalized:
        return "guided"
    if "direct" in normalized:
        return "direct"
    if re.search(r"r[aá]pido|sin vueltas|ya mismo|ahora", normalized):
        return "direct"
    return None


def parse_fields(text: Optional[str]) -> Dict[str, Optional[str]]:
    """Extract category, style and occasion from ``text``."""
    normalized = (text or "").strip()
    if not normalized:
        return {}
    return {
        "category": parse_category(normalized),
        "style": _first_match(normalized, _STYLE_PATTERNS),
        "occasion": _first_match(normalized, _OCCASION_PATTERNS),
    }


def collect_patch(text: Optional[str], payload: Optional[WorkflowPayload] = None) -> Dict[str, Optional[str]]:
    """Parse ``text`` and let explicit payload fields override the parsed values."""
    patch = parse_fields(text)
    if payload is None:
        return patch
    if isinstance(payload.occasion, str) and payload.occasion.strip():
        patch["occasion"] = payload.occasion.strip()
    if isinstance(payload.style, str) and payload.style.strip():
        patch["style"] = payload.style.strip()
    explicit_category = parse_category(payload.category)
    if explicit_category:
        patch["category"] = explicit_category
    return patch


def merge_collected(
    previous: Collected,
    patch: Dict[str, Optional[str]],
    fallback_text: Optional[str] = None,
    limit: int = 240,
) -> Collected:
    """Merge a parsed patch into previously collected fields.

    Empty values in ``patch`` never erase what was already collected. The raw
    turn text is kept as ``request_text`` the first time one is seen.
    """
    changes: Dict[str, Any] = {
        key: value for key, value in patch.items() if value and key in ("occasion", "style", "category")
    }
    fallback = (fallback_text or "").strip()
    if not previous.request_text and fallback:
        changes["request_text"] = fallback[:limit]
    return previous.model_copy(update=changes)


def get_missing_fields(strategy: Optional[str], collected: Collected) -> List[str]:
    """Fields still required before the pending generation can be quoted."""
    if strategy == "direct":
        return [] if collected.category else ["category"]
    if strategy == "guided":
        missing = []
        if not collected.occasion:
            missing.append("occasion")
        if not collected.style:
            missing.append("style")
        if not collected.category:
            missing.append("category")
        return missing
    return []


def is_affirmative(text: Optional[str]) -> bool:
    return bool(_AFFIRMATIVE.match((text or "").strip().lower()))


def is_negative(text: Optional[str]) -> bool:
    return bool(_NEGATIVE.match((text or "").strip().lower()))


def field_question(field: str, strategy: Optional[str] = None, strategy_just_selected: bool = False) -> str:
    """Question asked for the next missing ``field``."""
    if strategy == "direct" and field == "category":
        return messages.DIRECT_SELECTED_QUESTION if strategy_just_selected else messages.DIRECT_CATEGORY_QUESTION
    return messages.FIELD_QUESTIONS.get(field, messages.FIELD_QUESTIONS["category"])
