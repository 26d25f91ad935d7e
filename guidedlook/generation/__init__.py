"""Generation service boundary: clients, retry orchestration and artifacts."""

from .artifacts import build_artifact, build_creation_prompt, build_edit_prompt, tryon_slot
from .client import GenerationClient, HttpGenerationClient
from .errors import GenerationError, GenerationTimeout, InsufficientCredits, ProviderFailure
from .orchestrator import GenerationOrchestrator, GenerationOutcome, GenerationRequest

__all__ = [
    "GenerationClient",
    "HttpGenerationClient",
    "GenerationError",
    "GenerationTimeout",
    "InsufficientCredits",
    "ProviderFailure",
    "GenerationOrchestrator",
    "GenerationOutcome",
    "GenerationRequest",
    "build_artifact",
    "build_creation_prompt",
    "build_edit_prompt",
    "tryon_slot",
]
