"""Guided creation workflow: field collection, confirmation gate and state machine."""

from .gate import ConfirmationGate
from .reducer import Transition, TurnInput, build_view, reduce

__all__ = ["ConfirmationGate", "Transition", "TurnInput", "build_view", "reduce"]
