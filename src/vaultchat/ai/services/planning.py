"""Plan and next-action generation written into the session scratchpad."""

from __future__ import annotations

import logging

from ...services.plan_writer import PlanWriter
from ..client import AIClient
from ..prompts import NEXT_ACTIONS_PROMPT, PLAN_PROMPT, conversation_snippet
from .heuristics import should_auto_plan

LOGGER = logging.getLogger(__name__)

PLAN_TEMPERATURE = 0.1
PLAN_SECTION = "Plan"
NEXT_SECTION = "Next"


class PlanningService:
    """Asks the model for a short plan and next actions for multi-step requests.

    Errors propagate to the caller; the orchestrator runs these methods inside
    background error boundaries.
    """

    def __init__(self, plan_writer: PlanWriter) -> None:
        self._plan_writer = plan_writer

    async def generate_plan(self, session_id: str, user_text: str, client: AIClient) -> str | None:
        if not user_text or not should_auto_plan(user_text):
            return None
        text = await client.complete(
            [
                {"role": "system", "content": PLAN_PROMPT},
                {"role": "user", "content": user_text},
            ],
            temperature=PLAN_TEMPERATURE,
        )
        plan = text.strip()
        if plan:
            LOGGER.debug("Queued plan for session %s", session_id)
            self._plan_writer.update_section(session_id, PLAN_SECTION, plan)
        return plan or None

    async def generate_next_actions(
        self,
        session_id: str,
        user_text: str,
        assistant_text: str,
        client: AIClient,
    ) -> str | None:
        if not user_text or not should_auto_plan(user_text):
            return None
        text = await client.complete(
            [
                {"role": "system", "content": NEXT_ACTIONS_PROMPT},
                {"role": "user", "content": conversation_snippet(user_text, assistant_text)},
            ],
            temperature=PLAN_TEMPERATURE,
        )
        next_actions = text.strip()
        if next_actions:
            self._plan_writer.update_section(session_id, NEXT_SECTION, next_actions)
        return next_actions or None


__all__ = ["PlanningService", "PLAN_SECTION", "NEXT_SECTION"]
