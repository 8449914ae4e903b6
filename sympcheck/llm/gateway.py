"""Reasoning gateway: turn free-text model output into typed results.

Every call replays the full conversation context; nothing is kept between
calls. Content problems (empty output, unrepairable JSON, empty arrays) are
retried a bounded number of times with the same prompt and end up as an
``ErrorResponse``. Transport problems surface as ``GatewayError`` /
``RateLimitExceeded`` from the client.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from sympcheck.config import settings
from sympcheck.llm.client import GatewayError, chat_completion
from sympcheck.llm.json_utils import is_valid_json, recover_json
from sympcheck.models import (
    ConditionDetail,
    DiagnosisCondition,
    DiagnosisRequest,
    ErrorResponse,
    FollowUpAnswer,
    InteractiveRequest,
    QuestionResponse,
    SummaryAnswer,
    SummaryResponse,
)
from sympcheck.prompts import (
    CONDITION_SYSTEM,
    CONDITION_USER,
    DIAGNOSIS_SYSTEM,
    DIAGNOSIS_USER,
    INTERACTIVE_SYSTEM,
    INTERACTIVE_USER,
    NEXT_QUESTION_INSTRUCTION,
    SUMMARY_INSTRUCTION,
)

logger = logging.getLogger(__name__)

InteractiveVariant = QuestionResponse | SummaryResponse | ErrorResponse

NON_ANSWERS = {"skipped", "prefers not to answer"}


class _ContentRejected(Exception):
    """Model output that cannot be used; retried until attempts run out."""

    def __init__(self, error_code: str, message: str) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message

    def as_error_response(self) -> ErrorResponse:
        return ErrorResponse(error_code=self.error_code, message=self.message)


# --- prompt building ---

def build_forbidden_questions(request: InteractiveRequest) -> list[str]:
    """Asked-or-skipped questions the model must not repeat, first seen first."""
    forbidden: list[str] = []
    seen: set[str] = set()
    for question in [a.question for a in request.answers] + list(request.skipped_questions):
        cleaned = (question or "").strip()
        if not cleaned or cleaned.lower() in seen:
            continue
        seen.add(cleaned.lower())
        forbidden.append(cleaned)
    return forbidden


def _real_answers(answers: list[FollowUpAnswer]) -> list[FollowUpAnswer]:
    return [
        a
        for a in answers
        if a.answer.strip() and a.answer.strip().lower() not in NON_ANSWERS
    ]


def _answers_json(answers: list[FollowUpAnswer]) -> str:
    return json.dumps(
        [{"question": a.question, "answer": a.answer} for a in answers],
        indent=2,
        ensure_ascii=False,
    )


def build_interactive_prompt(request: InteractiveRequest) -> str:
    forbidden = build_forbidden_questions(request)
    forbidden_text = (
        "\n".join(f'{i}. "{q}"' for i, q in enumerate(forbidden, start=1))
        if forbidden
        else "(none)"
    )
    requested = request.requested_additional_questions
    return INTERACTIVE_USER.format(
        symptom=(request.symptom or "").strip(),
        forbidden_questions=forbidden_text,
        answers=_answers_json(_real_answers(request.answers)),
        summary_only=str(request.summary_only).lower(),
        requested_additional_questions=requested if requested is not None else "none",
        instruction=SUMMARY_INSTRUCTION if request.summary_only else NEXT_QUESTION_INSTRUCTION,
    )


def build_diagnosis_prompt(request: DiagnosisRequest) -> str:
    answers_text = "\n".join(f"Q: {a.question}\nA: {a.answer}" for a in request.answers)

    def _value(value: object) -> str:
        return "not provided" if value is None or value == "" else str(value)

    return DIAGNOSIS_USER.format(
        symptom=(request.symptom or "").strip(),
        answers=answers_text or "(none)",
        age=_value(request.age),
        gender=_value(request.gender),
        temperature=_value(request.temperature),
        blood_pressure=_value(request.blood_pressure),
        heart_rate=_value(request.heart_rate),
    )


# --- tolerant field access ---

def _lowered(props: dict[str, Any]) -> dict[str, Any]:
    return {str(k).lower(): v for k, v in props.items()}


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _first_text(props: dict[str, Any], *keys: str) -> str:
    for key in keys:
        text = _text(props.get(key))
        if text:
            return text
    return ""


def _number(value: Any) -> float:
    """Read a number that may come as JSON number or as a string like ``"65%"``."""
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return 0.0
    text = value.strip()
    is_percent = text.endswith("%")
    try:
        parsed = float(text.rstrip("%").strip())
    except ValueError:
        return 0.0
    return parsed / 100.0 if is_percent else parsed


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    return False


def _string_list(value: Any) -> list[str]:
    if isinstance(value, list):
        return [_text(item) for item in value]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


# --- interactive turn ---

def _load_root(raw: str) -> Any:
    if not raw or not raw.strip():
        raise _ContentRejected("empty_response", "Empty response from model")

    recovered = recover_json(raw)
    if not is_valid_json(recovered):
        raise _ContentRejected(
            "invalid_json",
            "The external model returned malformed JSON and could not be repaired.",
        )
    return json.loads(recovered)


def _interactive_root(raw: str) -> dict[str, Any]:
    root = _load_root(raw)
    if isinstance(root, list):
        if not root:
            raise _ContentRejected("empty_array", "Model returned empty array")
        root = root[0]
    if not isinstance(root, dict):
        raise _ContentRejected("unexpected_json", "Unexpected JSON structure from model")
    return root


def _to_question(props: dict[str, Any]) -> QuestionResponse:
    question = props.get("question")
    options = props.get("options")
    return QuestionResponse(
        question=question.strip() if isinstance(question, str) else "",
        options=[_text(o) for o in options] if isinstance(options, list) else [],
        multiple=props.get("multiple") is True,
    )


def _to_summary(props: dict[str, Any]) -> SummaryResponse:
    answers: list[SummaryAnswer] = []
    raw_answers = props.get("answers")
    if isinstance(raw_answers, list):
        for item in raw_answers:
            if not isinstance(item, dict):
                continue
            entry = _lowered(item)
            question = entry.get("question")
            answer = entry.get("answer")
            if isinstance(question, str) and question.strip():
                answers.append(
                    SummaryAnswer(
                        question=question,
                        answer=answer if isinstance(answer, str) else "",
                    )
                )

    symptom = props.get("symptom")
    summary_text = props.get("summarytext")
    return SummaryResponse(
        symptom=symptom if isinstance(symptom, str) else "",
        answers=answers,
        summary_text=summary_text if isinstance(summary_text, str) else "",
    )


def _to_error(props: dict[str, Any]) -> ErrorResponse:
    error_code = props.get("errorcode")
    message = props.get("message")
    return ErrorResponse(
        error_code=error_code if isinstance(error_code, str) else "",
        message=message if isinstance(message, str) else "",
    )


def classify_interactive_payload(root: dict[str, Any]) -> InteractiveVariant:
    """Map a JSON object onto exactly one response variant.

    The ``type`` discriminator wins; otherwise the shape decides. Anything
    else degrades to an ``unknown_shape`` error.
    """
    props = _lowered(root)
    kind = props.get("type")
    kind = kind.strip().lower() if isinstance(kind, str) else None

    if kind == "question" or "question" in props:
        return _to_question(props)
    if kind == "summary" or "summarytext" in props:
        return _to_summary(props)
    if kind == "error" or "errorcode" in props:
        return _to_error(props)

    return ErrorResponse(
        error_code="unknown_shape",
        message="Model returned valid JSON but shape was not recognized.",
    )


def _interactive_variant(raw: str) -> InteractiveVariant:
    variant = classify_interactive_payload(_interactive_root(raw))
    if isinstance(variant, QuestionResponse) and not variant.question:
        raise _ContentRejected("empty_question", "Model returned a question without text")
    return variant


async def get_interactive_response(request: InteractiveRequest) -> InteractiveVariant:
    """Fetch the next question (or the summary) for a conversation snapshot.

    Raises ``RateLimitExceeded`` on HTTP 429 and ``GatewayError`` on other
    transport failures; every content failure becomes an ``ErrorResponse``.
    """
    if not (request.symptom or "").strip():
        raise ValueError("Symptom required")

    prompt = build_interactive_prompt(request)
    max_attempts = max(1, settings.gateway_max_attempts)
    rejection: _ContentRejected | None = None

    for attempt in range(1, max_attempts + 1):
        if rejection is not None:
            await asyncio.sleep(settings.gateway_retry_backoff_seconds * (attempt - 1))

        raw = await chat_completion(
            system_prompt=INTERACTIVE_SYSTEM,
            user_prompt=prompt,
            call_type="interactive_summary" if request.summary_only else "interactive_question",
        )
        try:
            variant = _interactive_variant(raw)
        except _ContentRejected as exc:
            rejection = exc
            logger.warning(
                "Interactive response rejected (%s) on attempt %s/%s. Raw: %s",
                exc.error_code,
                attempt,
                max_attempts,
                raw[:200],
            )
            continue

        return variant

    assert rejection is not None
    return rejection.as_error_response()


# --- differential diagnosis ---

def map_condition(element: Any) -> DiagnosisCondition | None:
    """Tolerantly map one model record; None when it carries nothing at all."""
    if not isinstance(element, dict):
        return None
    props = _lowered(element)

    condition = DiagnosisCondition(
        label=_first_text(props, "label", "name"),
        score=_number(props.get("score")),
        icd=_first_text(props, "icd", "icd10", "icd_code"),
        details=_first_text(props, "details", "description"),
        physician=_first_text(props, "physician", "specialty"),
        reasoning=_first_text(props, "reasoning"),
        is_emergency=_flag(props.get("isemergency", props.get("emergency"))),
    )

    if not any(
        (
            condition.label,
            condition.score,
            condition.icd,
            condition.details,
            condition.physician,
            condition.reasoning,
        )
    ):
        return None
    return condition


def _conditions_from_raw(raw: str) -> list[DiagnosisCondition]:
    root = _load_root(raw)

    if isinstance(root, dict):
        wrapped = next((value for value in root.values() if isinstance(value, list)), None)
        elements = wrapped if wrapped is not None else [root]
    elif isinstance(root, list):
        elements = root
    else:
        raise _ContentRejected("unexpected_json", "Unexpected JSON structure from model")

    conditions = [c for c in (map_condition(element) for element in elements) if c is not None]
    if not conditions:
        raise _ContentRejected("empty_conditions", "Model returned empty conditions")
    return conditions


async def diagnose_symptoms(request: DiagnosisRequest) -> list[DiagnosisCondition]:
    """Ask for a differential list; raises ``GatewayError`` once attempts run out."""
    if not (request.symptom or "").strip():
        raise ValueError("Symptom required")

    prompt = build_diagnosis_prompt(request)
    max_attempts = max(1, settings.gateway_max_attempts)
    rejection: _ContentRejected | None = None

    for attempt in range(1, max_attempts + 1):
        if rejection is not None:
            await asyncio.sleep(settings.diagnosis_retry_backoff_seconds * (attempt - 1))

        raw = await chat_completion(
            system_prompt=DIAGNOSIS_SYSTEM,
            user_prompt=prompt,
            call_type="diagnosis",
        )
        try:
            return _conditions_from_raw(raw)
        except _ContentRejected as exc:
            rejection = exc
            logger.warning(
                "Diagnosis response rejected (%s) on attempt %s/%s. Raw: %s",
                exc.error_code,
                attempt,
                max_attempts,
                raw[:200],
            )

    assert rejection is not None
    raise GatewayError(rejection.message)


# --- condition details ---

async def get_condition_details(condition_id: str) -> ConditionDetail | None:
    """Describe one named condition; None when the model returns nothing usable."""
    if not condition_id or not condition_id.strip():
        raise ValueError("Condition ID is required")

    raw = await chat_completion(
        system_prompt=CONDITION_SYSTEM,
        user_prompt=CONDITION_USER.format(condition_id=condition_id.strip()),
        call_type="condition_details",
    )
    if not raw.strip():
        return None

    recovered = recover_json(raw)
    if not is_valid_json(recovered):
        raise GatewayError("Condition details response was not valid JSON")

    root = json.loads(recovered)
    if isinstance(root, list):
        root = root[0] if root else None
    if not isinstance(root, dict):
        return None

    props = _lowered(root)
    return ConditionDetail(
        id=_first_text(props, "id") or condition_id.strip(),
        name=_first_text(props, "name"),
        specialties=_string_list(props.get("specialties")),
        description=_first_text(props, "description"),
        common_causes=_string_list(props.get("commoncauses", props.get("common_causes"))),
        red_flags=_string_list(props.get("redflags", props.get("red_flags"))),
        investigations=_string_list(props.get("investigations")),
        disclaimer=_first_text(props, "disclaimer"),
    )
