"""Shared fixtures: a temporary record store and sample events."""

import pytest

from tabulator.models import Criterion, Event, JudgedFormat, Participant, QuizFormat, Round, Score
from tabulator.store import RecordStore


@pytest.fixture
def store(tmp_path):
    s = RecordStore(str(tmp_path / "judging.sqlite"))
    s.init_db()
    return s


@pytest.fixture
def quiz_event():
    return Event(
        id="quiz-a",
        name="Quiz A",
        format=QuizFormat(rounds=[
            Round(id="R1", name="Easy", points=1),
            Round(id="R2", name="Average", points=2),
        ]),
    )


@pytest.fixture
def judged_event():
    return Event(
        id="vocal",
        name="Vocal Solo",
        format=JudgedFormat(criteria=[
            Criterion(id="C1", name="Voice Quality", weight=60),
            Criterion(id="C2", name="Stage Presence", weight=40),
        ]),
    )


def default_entries(event_id, total):
    """Entries that add up to ``total`` under the sample event formats."""
    if event_id == "vocal":
        c1 = min(total, 60)
        return {"C1": c1, "C2": total - c1}
    if event_id == "quiz-a":
        return {"R1": total}
    return {"T": total}


@pytest.fixture
def make_score():
    counter = {"n": 0}

    def _make(participant_id, total, event_id="vocal", judge_id=None, entries=None, score_id=None):
        counter["n"] += 1
        return Score(
            id=score_id or f"s{counter['n']}",
            judge_id=judge_id or f"j{counter['n']}",
            participant_id=participant_id,
            event_id=event_id,
            entries=default_entries(event_id, total) if entries is None else entries,
            total_score=total,
        )

    return _make


@pytest.fixture
def seeded(store, quiz_event, judged_event):
    """Store holding both sample events with two participants each."""
    store.insert_event(quiz_event)
    store.insert_event(judged_event)
    for p in [
        Participant(id="P", name="Ana Reyes", district="District I", event_id="quiz-a"),
        Participant(id="Q", name="Ben Cruz", district="District II", event_id="quiz-a"),
        Participant(id="V1", name="Carla Santos", district="District I", event_id="vocal"),
        Participant(id="V2", name="Dan Lim", district="District III", event_id="vocal"),
    ]:
        store.insert_participant(p)
    return store
