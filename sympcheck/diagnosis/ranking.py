"""Score threshold + ordering for differential-diagnosis output."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from pydantic import ValidationError

from sympcheck.config import settings
from sympcheck.models import DiagnosisCondition

logger = logging.getLogger(__name__)


def normalize_conditions(raw: Any) -> list[DiagnosisCondition]:
    """Accept a bare list or a ``{"conditions": [...]}`` wrapper of dicts or models."""
    if raw is None:
        return []
    if isinstance(raw, dict):
        raw = raw.get("conditions", raw.get("Conditions", []))
    if not isinstance(raw, Iterable) or isinstance(raw, (str, bytes)):
        return []

    conditions: list[DiagnosisCondition] = []
    for item in raw:
        if isinstance(item, DiagnosisCondition):
            conditions.append(item)
            continue
        if not isinstance(item, dict):
            continue
        try:
            conditions.append(DiagnosisCondition.model_validate(item))
        except ValidationError as exc:
            logger.warning("Dropping malformed condition %r: %s", item, exc)
    return conditions


def rank_conditions(raw: Any, threshold: float | None = None) -> list[DiagnosisCondition]:
    """Keep conditions scoring at least ``threshold``, highest score first.

    Order is by score alone; emergency flags do not move a condition up.
    """
    cutoff = settings.diagnosis_score_threshold if threshold is None else threshold
    kept = [c for c in normalize_conditions(raw) if c.score >= cutoff]
    return sorted(kept, key=lambda c: c.score, reverse=True)
