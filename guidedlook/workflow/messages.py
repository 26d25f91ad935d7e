"""User-facing copy for the guided creation workflow (Spanish, rioplatense)."""

from __future__ import annotations

from typing import Optional

from ..contracts import Collected

CATEGORY_LABELS = {"top": "Top", "bottom": "Bottom", "shoes": "Calzado"}

FIELD_QUESTIONS = {
    "occasion": "Perfecto. ¿Para qué ocasión lo querés? (ej: oficina, cita, fiesta, fin de semana)",
    "style": "Genial. ¿Qué estilo buscás? (ej: casual, elegante, formal, streetwear)",
    "category": "¿Qué categoría querés crear? Elegí una: top, bottom o calzado.",
}
DIRECT_CATEGORY_QUESTION = "Para ir en modo directo necesito solo la categoría: top, bottom o calzado."
DIRECT_SELECTED_QUESTION = "Perfecto, modo directo. Decime solo la categoría (top, bottom o calzado) y genero."

SESSION_EXPIRED = "La sesión para crear look expiró. Empecemos de nuevo."
CANCELLED_TRYON = "Perfecto, cancelé el probador virtual."
CANCELLED_EDIT = "Perfecto, cancelé la edición de la prenda."
CANCELLED_PENDING = "Perfecto, cancelé la operación."
CANCELLED_FLOW = "Listo, cancelé la creación del look. Cuando quieras lo retomamos."

AUTOSAVE_ON = "Auto-guardado activado. La próxima prenda generada se guardará automáticamente."
AUTOSAVE_OFF = "Auto-guardado desactivado. Vas a poder guardar manualmente cada prenda."

SELFIE_INVALID = "No pude leer la selfie. Subila de nuevo en formato imagen."
NO_ARTIFACT_FOR_EDIT = "No encontré una prenda generada para editar. Primero generemos una."
NO_ARTIFACT_FOR_TRYON = "No encontré una prenda generada para el probador. Primero generemos una."
NO_ARTIFACT_FOR_SAVE = "No encontré una prenda generada para guardar."
NO_ARTIFACT_FOR_OUTFIT = "No encontré una prenda generada en esta sesión. Volvamos a crearla."
NO_ARTIFACT_FOR_SELFIE = "Primero generemos una prenda para poder usar el probador virtual."
ASK_EDIT_INSTRUCTION = 'Contame qué querés cambiar en la prenda. Ejemplo: "cambiar a negro mate".'
ASK_SELFIE = "Primero subí una selfie para usar el probador virtual."
TRYON_PREREQUISITES = "Necesito una selfie y una prenda generada para ejecutar el probador virtual."

ALREADY_SAVED = "Esta prenda ya estaba guardada en tu armario."
SAVED = "Listo, guardé la prenda en tu armario."
SAVE_FAILED = "No pude guardarla automáticamente, pero podés reintentar en unos segundos."
AUTOSAVE_FAILED_SUFFIX = " No pude guardarla automáticamente, pero podés guardarla manualmente con un click."

IN_PROGRESS = "Sigo procesando tu pedido. Esperá unos segundos."
ALREADY_GENERATED = "Esta confirmación ya fue procesada. Tu prenda ya está generada."
INVALID_CONFIRMATION = "No pude validar la confirmación. Volvé a confirmar el costo para continuar."
CREDIT_CHECK_FAILED = "No pude validar tus créditos ahora. Intentá nuevamente."

TRYON_DONE = "¡Listo! Generé tu prueba virtual con la selfie."
OUTFIT_READY = "Te armé un outfit completo usando tu nueva prenda. Si querés, te doy otra variante."
OUTFIT_UNAVAILABLE = "Generé la prenda, pero no pude armar un outfit completo con tu armario actual."
OUTFIT_SUFFIX = " También te propuse un outfit completo usando esta prenda."
OUTFIT_EXPLANATION = "Te armé un outfit completo incorporando la prenda recién generada."

GENERATION_ERRORS = {
    "INSUFFICIENT_CREDITS": "No tenés créditos suficientes para generar esta prenda. Hacé upgrade o sumá créditos.",
    "GENERATION_TIMEOUT": "La generación tardó demasiado. Intentá nuevamente.",
    "GENERATION_FAILED": "No se pudo generar la prenda",
}
TRYON_ERRORS = {
    "INSUFFICIENT_CREDITS": (
        "No tenés créditos suficientes para usar el probador virtual. Hacé upgrade o sumá créditos para continuar."
    ),
    "GENERATION_TIMEOUT": "El probador virtual tardó más de lo esperado. Intentá de nuevo en unos segundos.",
    "TRYON_FAILED": "No se pudo generar el probador virtual con esa selfie.",
}
INSUFFICIENT_CREDITS_BY_ACTION = {
    "generate": GENERATION_ERRORS["INSUFFICIENT_CREDITS"],
    "edit": "No tenés créditos suficientes para editar esta prenda. Hacé upgrade o sumá créditos.",
    "tryon": TRYON_ERRORS["INSUFFICIENT_CREDITS"],
}


def category_label(category: Optional[str]) -> str:
    return CATEGORY_LABELS.get(category or "", "-")


def mode_choice(cost: int) -> str:
    return "\n".join(
        [
            "Podemos hacerlo de dos formas:",
            f"1) Modo directo: genero rápido con lo mínimo ({cost} créditos al confirmar).",
            f"2) Modo guiado: te hago preguntas paso a paso ({cost} créditos al confirmar).",
            "",
            'Decime "directo" o "guiado".',
        ]
    )


def generation_cost(collected: Collected, cost: int) -> str:
    return (
        "Tengo todo para generar tu prenda:\n"
        f"- Ocasión: {collected.occasion or 'uso diario'}\n"
        f"- Estilo: {collected.style or 'casual'}\n"
        f"- Categoría: {category_label(collected.category)}\n\n"
        f"Esta generación cuesta {cost} créditos. ¿Confirmás que la genere ahora?"
    )


def edit_cost(instruction: str, cost: int) -> str:
    return f'Perfecto. Puedo modificar la prenda aplicando "{instruction}". Esta edición cuesta {cost} créditos. ¿Confirmás?'


def tryon_cost(cost: int) -> str:
    return f"El probador virtual con selfie cuesta {cost} créditos. ¿Confirmás que lo genere ahora?"


def selfie_loaded(cost: int) -> str:
    return f"Selfie cargada. El probador virtual cuesta {cost} créditos cuando confirmes."


def generated(collected: Collected) -> str:
    return (
        f"¡Listo! Generé tu prenda ({collected.category or 'top'}) para "
        f"{collected.occasion or 'tu ocasión'} con estilo {collected.style or 'casual'}."
    )


def edited(instruction: Optional[str]) -> str:
    return f'¡Listo! Apliqué la edición "{instruction or "solicitada"}" a tu prenda.'
