"""
Score computation: per-field entries plus a deduction -> bounded total.

Only the fields of the event's *current* criteria (JUDGED) or rounds
(QUIZ) contribute. Stale keys left over from an earlier configuration are
ignored, so recomputing a stored score is a pure function of
(current fields, stored entries).
"""

from __future__ import annotations

import math
from typing import Any, Dict, Mapping, Optional

import numpy as np

from tabulator.errors import ValidationFailure
from tabulator.models import JudgedFormat, QuizFormat
from tabulator.utils import to_number

WEIGHT_TOTAL = 100


def _entry_vector(fields, entries: Optional[Mapping[str, Any]]) -> np.ndarray:
    entries = entries or {}
    return np.array([to_number(entries.get(f.id)) for f in fields], dtype=float)


def clamp_entries(event_format, entries: Optional[Mapping[str, Any]]) -> Dict[str, float]:
    """
    Sanitize a judge's entries for storage.

    Keeps keys of active fields only. JUDGED entries are clamped to
    [0, criterion.weight]; QUIZ entries to >= 0 with no upper bound.
    """
    entries = entries or {}
    fields = [f for f in event_format.fields if f.id in entries]
    raw = _entry_vector(fields, entries)
    if isinstance(event_format, JudgedFormat):
        caps = np.array([c.weight for c in fields], dtype=float)
        clamped = np.clip(raw, 0.0, caps)
    else:
        clamped = np.maximum(raw, 0.0)
    return {f.id: float(v) for f, v in zip(fields, clamped)}


def raw_total(event_format, entries: Optional[Mapping[str, Any]]) -> float:
    """Sum of clamped entries over the active field set, before deductions."""
    fields = event_format.fields
    values = _entry_vector(fields, entries)
    if isinstance(event_format, QuizFormat):
        points = np.array([r.points for r in fields], dtype=float)
        return float((np.maximum(values, 0.0) * points).sum())
    caps = np.array([c.weight for c in fields], dtype=float)
    return float(np.clip(values, 0.0, caps).sum())


def compute_total(event_format, entries: Optional[Mapping[str, Any]], deduction: Any = 0.0) -> float:
    """
    Final total = max(0, raw total - deduction).

    A negative or non-numeric deduction counts as 0.
    """
    deduction = max(0.0, to_number(deduction))
    return max(0.0, raw_total(event_format, entries) - deduction)


def display_total(event_format, total: float) -> float:
    # QUIZ totals are shown as whole points, half up
    if isinstance(event_format, QuizFormat):
        return float(math.floor(total + 0.5))
    return round(total, 2)


def max_possible(event_format) -> Optional[float]:
    """Highest achievable total for JUDGED events; QUIZ totals are open-ended."""
    if isinstance(event_format, JudgedFormat):
        return float(sum(c.weight for c in event_format.criteria))
    return None


def validate_format(event_format) -> None:
    """
    Rules the event editor enforces before an event is saved.

    Field names must be non-blank and ids unique; JUDGED criteria weights
    must total 100.
    """
    fields = event_format.fields
    ids = [f.id for f in fields]
    if len(set(ids)) != len(ids):
        raise ValidationFailure("Field ids must be unique within an event.")
    blank = [f.id for f in fields if not f.name.strip()]
    if blank:
        raise ValidationFailure(f"Every field needs a name (missing for {', '.join(blank)}).")
    if isinstance(event_format, JudgedFormat):
        total_weight = sum(c.weight for c in event_format.criteria)
        if not math.isclose(total_weight, WEIGHT_TOTAL):
            raise ValidationFailure(
                f"Criteria weights must total {WEIGHT_TOTAL}, got {total_weight:g}."
            )
