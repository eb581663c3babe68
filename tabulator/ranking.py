from __future__ import annotations

from typing import Iterable, List, Optional

import pandas as pd
from pydantic import BaseModel

from tabulator.models import Criterion, Event, JudgedFormat, Participant, Score
from tabulator.scoring import compute_total
from tabulator.utils import to_number


class RankedParticipant(BaseModel):
    position: int
    participant: Participant
    aggregate_score: float
    tie_break_value: float
    tie_break_flag: bool
    judge_count: int


def tie_break_criterion(event_format) -> Optional[Criterion]:
    """
    Highest-weight criterion of a JUDGED event.

    Equal maximum weights resolve to the first in stored order. QUIZ
    events have none.
    """
    if not isinstance(event_format, JudgedFormat) or not event_format.criteria:
        return None
    best = event_format.criteria[0]
    for criterion in event_format.criteria[1:]:
        if criterion.weight > best.weight:
            best = criterion
    return best


def rank_event(event: Event, participants: Iterable[Participant], scores: Iterable[Score]) -> List[RankedParticipant]:
    """
    Order an event's participants by their mean judge total.

    Each judge total is recomputed from the event's current fields and the
    stored entries, so scores submitted before a criteria edit count only
    the fields still configured.

    Equal means are ordered by the mean raw entry on the tie-break
    criterion; rows still equal keep their input order. A row is flagged
    when its mean equals the row above and the tie-break value differs.
    """
    entrants = [p for p in participants if p.event_id == event.id]
    if not entrants:
        return []

    criterion = tie_break_criterion(event.format)
    score_rows = [
        {
            "participant_id": s.participant_id,
            "total": compute_total(event.format, s.entries, s.deductions),
            "tie_break": to_number(s.entries.get(criterion.id)) if criterion else 0.0,
        }
        for s in scores
        if s.event_id == event.id
    ]
    per_participant = (
        pd.DataFrame(score_rows, columns=["participant_id", "total", "tie_break"])
        .astype({"participant_id": str, "total": float, "tie_break": float})
        .groupby("participant_id")
        .agg(aggregate=("total", "mean"), tie_break=("tie_break", "mean"), judges=("total", "size"))
    )

    board = pd.DataFrame(
        {
            "participant_id": [p.id for p in entrants],
            "order": range(len(entrants)),
        }
    ).join(per_participant, on="participant_id")
    board[["aggregate", "tie_break", "judges"]] = board[["aggregate", "tie_break", "judges"]].fillna(0)

    # Sort: higher mean wins; tie-breaker: higher tie-break entry; then input order
    board = board.sort_values(
        by=["aggregate", "tie_break", "order"],
        ascending=[False, False, True],
        kind="mergesort",
    ).reset_index(drop=True)

    same_as_above = board["aggregate"].eq(board["aggregate"].shift())
    board["flag"] = same_as_above & board["tie_break"].ne(board["tie_break"].shift())

    return [
        RankedParticipant(
            position=i,
            participant=entrants[int(row.order)],
            aggregate_score=float(row.aggregate),
            tie_break_value=float(row.tie_break),
            tie_break_flag=bool(row.flag),
            judge_count=int(row.judges),
        )
        for i, row in enumerate(board.itertuples(index=False), start=1)
    ]


def results_frame(ranked: List[RankedParticipant]) -> pd.DataFrame:
    """Ranking as a table for CSV export."""
    return pd.DataFrame(
        {
            "FinalRank": [r.position for r in ranked],
            "Participant": [r.participant.name for r in ranked],
            "District": [r.participant.district for r in ranked],
            "AverageScore": [round(r.aggregate_score, 2) for r in ranked],
            "TieBreakValue": [round(r.tie_break_value, 2) for r in ranked],
            "TieBreakApplied": [r.tie_break_flag for r in ranked],
            "Judges": [r.judge_count for r in ranked],
        },
        columns=["FinalRank", "Participant", "District", "AverageScore",
                 "TieBreakValue", "TieBreakApplied", "Judges"],
    )
