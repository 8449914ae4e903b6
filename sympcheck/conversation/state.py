"""ConversationStateMachine: conversation phase and question-budget counters."""

from __future__ import annotations

import logging

from sympcheck.models import ConversationPhase, ConversationStateData

logger = logging.getLogger(__name__)

INITIAL_LIMIT = 5
SESSION_CAP = 15
MAX_ADDITIONAL_REQUEST = 10

ANSWERING_PHASES = frozenset(
    {ConversationPhase.ASKING_QUESTIONS, ConversationPhase.ASKING_ADDITIONAL}
)

# Target phase -> phases it may be entered from.
_ALLOWED_SOURCES: dict[ConversationPhase, frozenset[ConversationPhase]] = {
    ConversationPhase.MORE_QUESTIONS_PROMPT: frozenset({ConversationPhase.ASKING_QUESTIONS}),
    ConversationPhase.MORE_QUESTIONS_COUNT: frozenset({ConversationPhase.MORE_QUESTIONS_PROMPT}),
    ConversationPhase.ASKING_ADDITIONAL: frozenset({ConversationPhase.MORE_QUESTIONS_COUNT}),
    ConversationPhase.COMPLETE: frozenset(
        {
            ConversationPhase.ASKING_QUESTIONS,
            ConversationPhase.MORE_QUESTIONS_PROMPT,
            ConversationPhase.MORE_QUESTIONS_COUNT,
            ConversationPhase.ASKING_ADDITIONAL,
        }
    ),
}


class ConversationStateMachine:
    """Holds the current phase and enforces the question budget.

    The state snapshot is immutable; every transition swaps in a new
    ``ConversationStateData`` rather than editing the old one.
    """

    def __init__(self) -> None:
        self._state = ConversationStateData()

    @property
    def state(self) -> ConversationStateData:
        return self._state

    def _transition(self, **changes: object) -> None:
        previous = self._state.phase
        self._state = self._state.model_copy(update=changes)
        if self._state.phase != previous:
            logger.debug("Conversation phase %s -> %s", previous.value, self._state.phase.value)

    def _move_to(self, target: ConversationPhase, **changes: object) -> bool:
        current = self._state.phase
        if current not in _ALLOWED_SOURCES[target]:
            logger.warning(
                "Rejected phase change %s -> %s", current.value, target.value
            )
            return False
        self._transition(phase=target, **changes)
        return True

    def start_conversation(self, initial_symptom: str) -> None:
        self._state = ConversationStateData(
            phase=ConversationPhase.ASKING_QUESTIONS,
            initial_symptom=initial_symptom,
        )

    def increment_question_count(self) -> bool:
        """Count one interaction.

        Returns True when this interaction exhausted the base budget, i.e. the
        total just reached INITIAL_LIMIT with no additional budget in effect.
        Interactions outside the answering phases, or past SESSION_CAP, are
        refused and leave the counters untouched.
        """
        current = self._state
        if current.phase not in ANSWERING_PHASES:
            logger.warning("Interaction not counted in phase %s", current.phase.value)
            return False
        if current.total_questions_asked >= SESSION_CAP:
            logger.warning("Session cap of %s interactions reached", SESSION_CAP)
            return False

        new_total = current.total_questions_asked + 1
        remaining = current.remaining_additional_questions
        if current.phase == ConversationPhase.ASKING_ADDITIONAL and remaining > 0:
            remaining -= 1

        self._transition(
            total_questions_asked=new_total,
            remaining_additional_questions=remaining,
        )
        return new_total == INITIAL_LIMIT and current.remaining_additional_questions == 0

    def ask_for_more_questions(self) -> bool:
        return self._move_to(ConversationPhase.MORE_QUESTIONS_PROMPT)

    def ask_for_question_count(self) -> bool:
        return self._move_to(ConversationPhase.MORE_QUESTIONS_COUNT)

    def request_more_questions(self, requested_count: int) -> bool:
        """Open an additional-question budget; False leaves state untouched."""
        if requested_count < 1 or requested_count > MAX_ADDITIONAL_REQUEST:
            return False

        remaining_capacity = SESSION_CAP - INITIAL_LIMIT
        actual_count = min(requested_count, remaining_capacity)
        return self._move_to(
            ConversationPhase.ASKING_ADDITIONAL,
            additional_questions_requested=actual_count,
            remaining_additional_questions=actual_count,
        )

    def complete_conversation(self) -> bool:
        return self._move_to(ConversationPhase.COMPLETE, conversation_complete=True)

    def reset(self) -> None:
        self._state = ConversationStateData()
