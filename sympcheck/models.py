from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


# --- WebSocket message types ---

class WSMessageType(str, Enum):
    SHOW_QUESTION = "show-question"
    SHOW_SUMMARY = "show-summary"
    SHOW_MORE_PROMPT = "show-more-prompt"
    SHOW_COUNT_PROMPT = "show-count-prompt"
    DIAGNOSIS = "diagnosis"
    SESSION_RESET = "session_reset"
    STATUS = "status"
    ERROR = "error"


class WSMessage(BaseModel):
    type: WSMessageType
    data: dict


# --- Interactive turn request ---

class FollowUpAnswer(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(default="", alias="Question")
    answer: str = Field(default="", alias="Answer")


class InteractiveRequest(BaseModel):
    """Full conversation context replayed to the gateway on every turn."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    symptom: str | None = Field(default=None, alias="Symptom")
    answers: list[FollowUpAnswer] = Field(default_factory=list, alias="Answers")
    skipped_questions: list[str] = Field(default_factory=list, alias="SkippedQuestions")
    summary_only: bool = Field(default=False, alias="summaryOnly")
    requested_additional_questions: int | None = Field(
        default=None, alias="requestedAdditionalQuestions"
    )


# --- Gateway response variants ---

class SummaryAnswer(BaseModel):
    question: str
    answer: str = ""


class QuestionResponse(BaseModel):
    type: Literal["question"] = "question"
    question: str = ""
    options: list[str] = Field(default_factory=list)
    multiple: bool = False


class SummaryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["summary"] = "summary"
    symptom: str = ""
    answers: list[SummaryAnswer] = Field(default_factory=list)
    summary_text: str = Field(default="", alias="summaryText")


class ErrorResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["error"] = "error"
    error_code: str = Field(default="", alias="errorCode")
    message: str = ""


ModelResponseVariant = Annotated[
    Union[QuestionResponse, SummaryResponse, ErrorResponse],
    Field(discriminator="type"),
]


# --- Diagnosis ---

class DiagnosisRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    symptom: str | None = Field(default=None, alias="Symptom")
    answers: list[FollowUpAnswer] = Field(default_factory=list, alias="Answers")
    age: int | None = Field(default=None, alias="Age")
    gender: str | None = Field(default=None, alias="Gender")
    temperature: float | None = Field(default=None, alias="Temperature")
    blood_pressure: str | None = Field(default=None, alias="BloodPressure")
    heart_rate: int | None = Field(default=None, alias="HeartRate")


class DiagnosisCondition(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    label: str = ""
    score: float = 0.0
    icd: str = ""
    details: str = ""
    physician: str = ""
    reasoning: str = ""
    is_emergency: bool = Field(default=False, alias="isEmergency")


class ConditionDetail(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    name: str = ""
    specialties: list[str] = Field(default_factory=list)
    description: str = ""
    common_causes: list[str] = Field(default_factory=list, alias="commonCauses")
    red_flags: list[str] = Field(default_factory=list, alias="redFlags")
    investigations: list[str] = Field(default_factory=list)
    disclaimer: str = ""


# --- Conversation state ---

class ConversationPhase(str, Enum):
    INITIAL = "initial"
    ASKING_QUESTIONS = "asking-questions"
    MORE_QUESTIONS_PROMPT = "more-questions-prompt"
    MORE_QUESTIONS_COUNT = "more-questions-count"
    ASKING_ADDITIONAL = "asking-additional"
    COMPLETE = "complete"


class ConversationStateData(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: ConversationPhase = ConversationPhase.INITIAL
    initial_symptom: str = ""
    total_questions_asked: int = Field(default=0, ge=0)
    remaining_additional_questions: int = Field(default=0, ge=0)
    additional_questions_requested: int = Field(default=0, ge=0)
    conversation_complete: bool = False


class FlowAction(str, Enum):
    SHOW_QUESTION = "show-question"
    SHOW_SUMMARY = "show-summary"
    SHOW_MORE_PROMPT = "show-more-prompt"
    SHOW_COUNT_PROMPT = "show-count-prompt"
    ERROR = "error"


class FlowResult(BaseModel):
    action: FlowAction
    data: QuestionResponse | SummaryResponse | None = None
    error: str | None = None
