"""guidedlook: guided wardrobe look creation and stylist chat."""

from .chat import ChatService, PydanticAIStylist
from .config import GuidedLookConfig, load_config
from .contracts import ChatRequest, ChatResponse, WorkflowSession
from .persistence import get_repository
from .workflow import ConfirmationGate, reduce
from .workflow.controller import WorkflowController

__version__ = "0.1.0"
__all__ = [
    "ChatRequest",
    "ChatResponse",
    "ChatService",
    "ConfirmationGate",
    "GuidedLookConfig",
    "PydanticAIStylist",
    "WorkflowController",
    "WorkflowSession",
    "get_repository",
    "load_config",
    "reduce",
]
