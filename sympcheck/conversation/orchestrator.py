"""ConversationOrchestrator: drives one symptom conversation end to end.

Ties the ledger, the phase state machine and the reasoning gateway together.
Every public coroutine resolves to a ``FlowResult``; failures never escape.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from sympcheck.config import settings
from sympcheck.conversation.ledger import ConversationLedger
from sympcheck.conversation.state import (
    ANSWERING_PHASES,
    SESSION_CAP,
    ConversationStateMachine,
)
from sympcheck.llm.client import RateLimitExceeded
from sympcheck.llm.gateway import get_interactive_response
from sympcheck.models import (
    ConversationPhase,
    ConversationStateData,
    ErrorResponse,
    FlowAction,
    FlowResult,
    FollowUpAnswer,
    InteractiveRequest,
    QuestionResponse,
    SummaryAnswer,
    SummaryResponse,
)

logger = logging.getLogger(__name__)

FetchResponse = Callable[
    [InteractiveRequest], Awaitable[QuestionResponse | SummaryResponse | ErrorResponse]
]

DUPLICATE_LIMIT_MESSAGE = "Unable to fetch a new question. Please try again."
INVALID_COUNT_MESSAGE = "Please enter a number between 1 and 10."
RATE_LIMIT_MESSAGE = "Too many requests to the symptom service. Please wait a moment and try again."
FETCH_FAILED_MESSAGE = "Failed to fetch next question"
SESSION_RESET_MESSAGE = "Conversation was reset."
FALLBACK_SUMMARY_TEXT = "Follow-up finished."
OUT_OF_TURN_MESSAGE = "That step is not available at this point in the conversation."


class _StaleResult(Exception):
    """A gateway call finished after the conversation was reset."""


class ConversationOrchestrator:
    def __init__(self, fetch_response: FetchResponse | None = None) -> None:
        self._fetch_response = fetch_response if fetch_response is not None else get_interactive_response
        self._ledger = ConversationLedger()
        self._state_machine = ConversationStateMachine()
        self._loading = False
        self._epoch = 0

    # --- read-only views ---

    @property
    def state(self) -> ConversationStateData:
        return self._state_machine.state

    @property
    def loading(self) -> bool:
        return self._loading

    def get_answers(self) -> list[FollowUpAnswer]:
        return self._ledger.get_answers()

    def get_skipped_questions(self) -> list[str]:
        return self._ledger.get_skipped_questions()

    def get_asked_questions(self) -> list[str]:
        return self._ledger.get_asked_questions()

    # --- public flow ---

    def start_conversation(self, symptom: str) -> None:
        self._ledger.reset()
        self._state_machine.start_conversation(symptom)
        logger.info("Conversation started (symptom=%r)", symptom)

    async def get_first_question(self) -> FlowResult:
        if self._state_machine.state.phase not in ANSWERING_PHASES:
            return self._out_of_turn("get_first_question")
        return await self._fetch_next_question()

    async def submit_answer(self, answer: str) -> FlowResult:
        if self._state_machine.state.phase not in ANSWERING_PHASES:
            return self._out_of_turn("submit_answer")
        self._ledger.record_answer(self._ledger.last_asked_question or "Initial", answer)
        return await self._after_interaction()

    async def skip_question(self) -> FlowResult:
        if self._state_machine.state.phase not in ANSWERING_PHASES:
            return self._out_of_turn("skip_question")
        current = self._ledger.last_asked_question
        if current:
            self._ledger.record_skipped_question(current)
        return await self._after_interaction()

    async def respond_to_more_questions_prompt(self, want_more: bool) -> FlowResult:
        if self._state_machine.state.phase != ConversationPhase.MORE_QUESTIONS_PROMPT:
            return self._out_of_turn("respond_to_more_questions_prompt")

        if not want_more:
            self._state_machine.complete_conversation()
            return await self._request_summary()

        self._state_machine.ask_for_question_count()
        return FlowResult(action=FlowAction.SHOW_COUNT_PROMPT)

    async def respond_to_count_prompt(self, count: int) -> FlowResult:
        if self._state_machine.state.phase != ConversationPhase.MORE_QUESTIONS_COUNT:
            return self._out_of_turn("respond_to_count_prompt")
        if not self._state_machine.request_more_questions(count):
            return FlowResult(action=FlowAction.ERROR, error=INVALID_COUNT_MESSAGE)
        return await self._fetch_next_question()

    def reset(self) -> None:
        """Forget the conversation; any in-flight gateway result is discarded."""
        self._epoch += 1
        self._ledger.reset()
        self._state_machine.reset()
        self._loading = False

    # --- internals ---

    def _out_of_turn(self, step: str) -> FlowResult:
        phase = self._state_machine.state.phase
        logger.warning("Rejected %s in phase %s", step, phase.value)
        return FlowResult(action=FlowAction.ERROR, error=OUT_OF_TURN_MESSAGE)

    async def _after_interaction(self) -> FlowResult:
        phase_before = self._state_machine.state.phase
        base_budget_exhausted = self._state_machine.increment_question_count()
        state = self._state_machine.state

        if base_budget_exhausted and phase_before == ConversationPhase.ASKING_QUESTIONS:
            self._state_machine.ask_for_more_questions()
            return FlowResult(action=FlowAction.SHOW_MORE_PROMPT)

        if state.total_questions_asked >= SESSION_CAP or (
            phase_before == ConversationPhase.ASKING_ADDITIONAL
            and state.remaining_additional_questions == 0
        ):
            self._state_machine.complete_conversation()
            return await self._request_summary()

        return await self._fetch_next_question()

    def _build_request(self, summary_only: bool = False) -> InteractiveRequest:
        state = self._state_machine.state
        if state.remaining_additional_questions > 0:
            requested: int | None = state.remaining_additional_questions
        elif state.additional_questions_requested > 0:
            requested = state.additional_questions_requested
        else:
            requested = None

        return InteractiveRequest(
            symptom=state.initial_symptom,
            answers=self._ledger.get_answers(),
            skipped_questions=self._ledger.get_skipped_questions(),
            summary_only=summary_only,
            requested_additional_questions=requested,
        )

    async def _call_gateway(
        self, request: InteractiveRequest
    ) -> QuestionResponse | SummaryResponse | ErrorResponse:
        epoch = self._epoch
        self._loading = True
        try:
            response = await self._fetch_response(request)
        finally:
            if epoch == self._epoch:
                self._loading = False

        if epoch != self._epoch:
            raise _StaleResult()
        return response

    async def _fetch_next_question(self) -> FlowResult:
        max_depth = settings.duplicate_question_max_depth

        for depth in range(max_depth + 1):
            try:
                response = await self._call_gateway(self._build_request())
            except _StaleResult:
                logger.info("Discarding question fetched before reset")
                return FlowResult(action=FlowAction.ERROR, error=SESSION_RESET_MESSAGE)
            except RateLimitExceeded:
                logger.warning("Rate limited while fetching next question")
                return FlowResult(action=FlowAction.ERROR, error=RATE_LIMIT_MESSAGE)
            except Exception as exc:
                logger.exception("Error fetching next question")
                return FlowResult(action=FlowAction.ERROR, error=str(exc) or FETCH_FAILED_MESSAGE)

            if isinstance(response, QuestionResponse):
                if self._ledger.has_been_asked(response.question):
                    logger.info(
                        "Duplicate question %r (depth %s), fetching another",
                        response.question,
                        depth,
                    )
                    self._ledger.record_skipped_question(response.question)
                    continue

                self._ledger.record_asked_question(response.question)
                return FlowResult(action=FlowAction.SHOW_QUESTION, data=response)

            if isinstance(response, SummaryResponse):
                return FlowResult(action=FlowAction.SHOW_SUMMARY, data=response)

            return FlowResult(
                action=FlowAction.ERROR,
                error=response.message or "An error occurred",
            )

        logger.warning("Gave up after %s duplicate questions", max_depth + 1)
        return FlowResult(action=FlowAction.ERROR, error=DUPLICATE_LIMIT_MESSAGE)

    def _fallback_summary(self) -> SummaryResponse:
        return SummaryResponse(
            symptom=self._state_machine.state.initial_symptom,
            answers=[
                SummaryAnswer(question=a.question, answer=a.answer)
                for a in self._ledger.get_answers()
            ],
            summary_text=FALLBACK_SUMMARY_TEXT,
        )

    async def _request_summary(self) -> FlowResult:
        try:
            response = await self._call_gateway(self._build_request(summary_only=True))
        except _StaleResult:
            logger.info("Discarding summary fetched before reset")
            return FlowResult(action=FlowAction.ERROR, error=SESSION_RESET_MESSAGE)
        except Exception:
            logger.exception("Summary request failed, using answers collected so far")
            return FlowResult(action=FlowAction.SHOW_SUMMARY, data=self._fallback_summary())

        if isinstance(response, SummaryResponse):
            return FlowResult(action=FlowAction.SHOW_SUMMARY, data=response)

        logger.warning("Summary request returned %s, using answers collected so far", response.type)
        return FlowResult(action=FlowAction.SHOW_SUMMARY, data=self._fallback_summary())
