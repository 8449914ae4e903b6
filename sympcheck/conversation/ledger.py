"""ConversationLedger: asked, skipped and answered questions for one conversation."""

from __future__ import annotations

from sympcheck.models import FollowUpAnswer


class ConversationLedger:
    """Sole source of truth for duplicate-question detection.

    Membership checks are exact, case-sensitive matches on question text.
    Every getter hands back a fresh copy so callers cannot mutate the ledger.
    """

    def __init__(self) -> None:
        self._asked: list[str] = []
        self._skipped: list[str] = []
        self._answers: list[FollowUpAnswer] = []

    def record_asked_question(self, question: str) -> None:
        if question not in self._asked:
            self._asked.append(question)

    def record_skipped_question(self, question: str) -> None:
        if question not in self._skipped:
            self._skipped.append(question)

    def record_answer(self, question: str, answer: str) -> None:
        self._answers.append(FollowUpAnswer(question=question, answer=answer))

    def has_been_asked(self, question: str) -> bool:
        return question in self._asked or question in self._skipped

    def get_asked_questions(self) -> list[str]:
        return list(self._asked)

    def get_skipped_questions(self) -> list[str]:
        return list(self._skipped)

    def get_answers(self) -> list[FollowUpAnswer]:
        return [answer.model_copy() for answer in self._answers]

    def get_total_interactions(self) -> int:
        return len(self._answers) + len(self._skipped)

    @property
    def last_asked_question(self) -> str | None:
        return self._asked[-1] if self._asked else None

    def reset(self) -> None:
        """Forget everything for a new conversation."""
        self._asked = []
        self._skipped = []
        self._answers = []
