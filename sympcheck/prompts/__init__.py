"""Centralized prompt templates for all gateway calls.

Import any prompt constant directly:
    from sympcheck.prompts import INTERACTIVE_SYSTEM, DIAGNOSIS_USER
"""

from sympcheck.prompts.interactive import (
    INTERACTIVE_SYSTEM,
    INTERACTIVE_USER,
    NEXT_QUESTION_INSTRUCTION,
    SUMMARY_INSTRUCTION,
)
from sympcheck.prompts.diagnosis import DIAGNOSIS_SYSTEM, DIAGNOSIS_USER
from sympcheck.prompts.condition import CONDITION_SYSTEM, CONDITION_USER

__all__ = [
    "INTERACTIVE_SYSTEM",
    "INTERACTIVE_USER",
    "NEXT_QUESTION_INSTRUCTION",
    "SUMMARY_INSTRUCTION",
    "DIAGNOSIS_SYSTEM",
    "DIAGNOSIS_USER",
    "CONDITION_SYSTEM",
    "CONDITION_USER",
]
