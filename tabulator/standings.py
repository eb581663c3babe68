from __future__ import annotations

import logging
from typing import Dict, Iterable, List

import pandas as pd
from pydantic import BaseModel

from tabulator.models import Event, Participant, Score
from tabulator.ranking import rank_event

logger = logging.getLogger(__name__)


class DistrictStanding(BaseModel):
    position: int
    district: str
    event_ranks: Dict[str, int]
    mean_rank: float
    events_entered: int


def rank_districts(ranked, roster: List[str]) -> Dict[str, int]:
    """
    District ranks for one event from its participant ranking.

    Ties on the district average keep roster order.
    """
    n = len(roster)
    rows = [(r.participant.district, r.aggregate_score) for r in ranked]
    averages = (
        pd.DataFrame(rows, columns=["district", "aggregate"])
        .astype({"district": str, "aggregate": float})
        .groupby("district")["aggregate"]
        .mean()
    )

    board = pd.DataFrame({"district": roster, "order": range(n)})
    board["average"] = board["district"].map(averages)
    competing = board.dropna(subset=["average"]).sort_values(
        by=["average", "order"], ascending=[False, True], kind="mergesort"
    )

    ranks = {district: n for district in roster}
    for rank, district in enumerate(competing["district"], start=1):
        ranks[district] = rank
    return ranks


def compute_standings(
    events: Iterable[Event],
    participants: Iterable[Participant],
    scores: Iterable[Score],
    districts: Iterable[str],
) -> List[DistrictStanding]:
    roster = list(dict.fromkeys(districts))  # dedupe preserve order
    if not roster:
        return []
    events = list(events)
    participants = list(participants)
    scores = list(scores)

    known = set(roster)
    outside = {p.district for p in participants} - known
    if outside:
        logger.warning(f"Ignoring districts outside the roster: {', '.join(sorted(outside))}")

    per_event: Dict[str, Dict[str, int]] = {}
    for event in events:
        ranked = [r for r in rank_event(event, participants, scores) if r.participant.district in known]
        per_event[event.id] = rank_districts(ranked, roster)

    n = len(roster)
    table = pd.DataFrame(
        {
            "district": roster,
            "order": range(n),
            "mean_rank": [
                sum(ranks[d] for ranks in per_event.values()) / len(per_event) if per_event else 0.0
                for d in roster
            ],
        }
    ).sort_values(by=["mean_rank", "order"], ascending=[True, True], kind="mergesort")

    fielded = {(p.event_id, p.district) for p in participants}
    entered = {d: sum(1 for e in events if (e.id, d) in fielded) for d in roster}

    return [
        DistrictStanding(
            position=i,
            district=row.district,
            event_ranks={event_id: ranks[row.district] for event_id, ranks in per_event.items()},
            mean_rank=float(row.mean_rank),
            events_entered=entered[row.district],
        )
        for i, row in enumerate(table.itertuples(index=False), start=1)
    ]
