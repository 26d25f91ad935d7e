"""Confirmation and billing gate for billable workflow actions."""

from __future__ import annotations

import logging
import uuid
from typing import Callable, Optional

from ..config import CreditCosts
from ..constants import CONFIRMING_STATUS_BY_ACTION
from ..contracts import WorkflowSession

logger = logging.getLogger(__name__)


def _new_token() -> str:
    return uuid.uuid4().hex


class ConfirmationGate:
    """Quote credit costs and mint/validate single-use confirmation tokens."""

    def __init__(self, costs: Optional[CreditCosts] = None, token_factory: Callable[[], str] = _new_token):
        self.costs = costs or CreditCosts()
        self._token_factory = token_factory

    def cost_for(self, action: str) -> int:
        if action == "edit":
            return self.costs.edit
        if action == "tryon":
            return self.costs.tryon
        return self.costs.generate

    def begin_confirmation(self, session: WorkflowSession, action: str) -> WorkflowSession:
        """Move ``session`` into the confirming state for ``action`` with a fresh token.

        Any previously issued token is discarded.
        """
        token = self._token_factory()
        cost = self.cost_for(action)
        return session.evolve(
            status=CONFIRMING_STATUS_BY_ACTION[action],
            confirmation_token=token,
            collected=session.collected.model_copy(
                update={"pending_action": action, "pending_cost_credits": cost}
            ),
        )

    def validate_confirmation(self, session: WorkflowSession, supplied_token: Optional[str], action: str) -> bool:
        """Check ``supplied_token`` against the stored token, pending action and status."""
        stored = session.confirmation_token
        if not stored or not supplied_token or supplied_token != stored:
            logger.info(f"Rejected confirmation for session {session.session_id}: token mismatch")
            return False
        if session.collected.pending_action != action:
            logger.info(
                f"Rejected confirmation for session {session.session_id}: "
                f"pending {session.collected.pending_action}, requested {action}"
            )
            return False
        if session.status != CONFIRMING_STATUS_BY_ACTION[action]:
            logger.info(f"Rejected confirmation for session {session.session_id}: status {session.status}")
            return False
        return True
