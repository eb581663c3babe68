from __future__ import annotations

import logging
import math
from collections import Counter
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from tabulator.errors import LockedEvent, UniquenessViolation, ValidationFailure
from tabulator.models import Score, UserRole
from tabulator.scoring import clamp_entries, compute_total

logger = logging.getLogger(__name__)

MAX_CRITIQUE_LENGTH = 2000


def _validate_deduction(deduction: Any) -> float:
    if deduction is None or deduction == "":
        return 0.0
    if isinstance(deduction, bool):
        raise ValidationFailure("Deduction must be a number.")
    try:
        value = float(deduction)
    except (TypeError, ValueError):
        raise ValidationFailure(f"Deduction must be a number, got {deduction!r}.")
    if not math.isfinite(value) or value < 0:
        raise ValidationFailure(f"Deduction must be a non-negative number, got {deduction!r}.")
    return value


def submit_score(
    store,
    judge_id: str,
    participant_id: str,
    event_id: str,
    entries: Mapping[str, Any],
    deduction: Any = 0.0,
    critique: Optional[str] = None,
    repository=None,
) -> Score:
    """
    Record a judge's score for a participant.

    Replaces the judge's earlier score for the same participant in place
    (same id). On success the repository, if given, gets the new score by
    id; on any failure nothing is written and the repository is untouched.

    Raises:
        EventNotFound, ParticipantNotFound: unknown ids
        LockedEvent: the event is locked
        ValidationFailure: bad input or the store rejected the write
    """
    event = store.get_event(event_id)
    if event.is_locked:
        raise LockedEvent(event_id)

    participant = store.get_participant(participant_id)
    if participant.event_id != event_id:
        raise ValidationFailure(
            f"Participant {participant_id} is not enrolled in event {event_id}."
        )

    judge = store.get_profile(judge_id)
    if judge is not None and judge.role == UserRole.JUDGE:
        if judge.assigned_event_id and judge.assigned_event_id != event_id:
            raise ValidationFailure(f"Judge {judge_id} is assigned to another event.")

    if not isinstance(entries, Mapping):
        raise ValidationFailure("Entries must map field ids to numbers.")
    deductions = _validate_deduction(deduction)

    critique = (critique or "").strip() or None
    if critique and len(critique) > MAX_CRITIQUE_LENGTH:
        raise ValidationFailure(f"Critique too long (max {MAX_CRITIQUE_LENGTH} chars).")

    clean = clamp_entries(event.format, entries)
    total = compute_total(event.format, clean, deductions)

    # lock re-checked and (judge, participant) upserted atomically in the store
    score = store.upsert_score(
        judge_id=judge_id,
        participant_id=participant_id,
        event_id=event_id,
        entries=clean,
        deductions=deductions,
        total_score=total,
        critique=critique,
    )

    if repository is not None:
        repository.apply_score(score)

    logger.info(
        f"Judge {judge_id} scored participant {participant_id} in event {event_id}: "
        f"total={total:g} (score {score.id})"
    )
    return score


def find_duplicate_scores(scores: Iterable[Score]) -> List[Tuple[str, str]]:
    """(judge_id, participant_id) pairs holding more than one score."""
    counts = Counter((s.judge_id, s.participant_id) for s in scores)
    return [pair for pair, n in counts.items() if n > 1]


def audit_uniqueness(scores: Iterable[Score]) -> None:
    """
    Raise UniquenessViolation when any pair has duplicate scores.

    Duplicates are a data-integrity defect to reconcile by hand; nothing
    here tries to repair them.
    """
    duplicates = find_duplicate_scores(scores)
    if duplicates:
        logger.error(f"Duplicate scores detected for {duplicates}")
        raise UniquenessViolation(duplicates)
