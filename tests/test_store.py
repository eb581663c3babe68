"""
Tests for the sqlite record store and its validation boundary.
"""

import sqlite3
from concurrent.futures import ThreadPoolExecutor

import pytest

from tabulator.errors import EventNotFound, MalformedRecord, StoreBusy, ValidationFailure
from tabulator.models import EventType, JudgedFormat, Participant, QuizFormat
from tabulator.store import RecordStore


def raw_insert(store, sql, params):
    with store.db() as conn:
        conn.execute(sql, params)


class TestEvents:

    def test_tagged_format_round_trip(self, store, quiz_event, judged_event):
        store.insert_event(quiz_event)
        store.insert_event(judged_event)
        quiz, judged = store.list_events()
        assert isinstance(quiz.format, QuizFormat)
        assert quiz.type == EventType.QUIZ
        assert [r.points for r in quiz.format.rounds] == [1, 2]
        assert isinstance(judged.format, JudgedFormat)
        assert [c.weight for c in judged.format.criteria] == [60, 40]

    def test_duplicate_id_rejected(self, store, quiz_event):
        store.insert_event(quiz_event)
        with pytest.raises(ValidationFailure):
            store.insert_event(quiz_event)

    def test_set_lock(self, store, quiz_event):
        store.insert_event(quiz_event)
        assert store.set_event_lock("quiz-a", True).is_locked is True
        assert store.get_event("quiz-a").is_locked is True
        assert store.set_event_lock("quiz-a", False).is_locked is False

    def test_toggle_lock(self, store, quiz_event):
        store.insert_event(quiz_event)
        assert store.toggle_event_lock("quiz-a").is_locked is True
        assert store.toggle_event_lock("quiz-a").is_locked is False
        with pytest.raises(EventNotFound):
            store.toggle_event_lock("nope")

    def test_concurrent_toggles_all_apply(self, store, quiz_event):
        store.insert_event(quiz_event)
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda _: store.toggle_event_lock("quiz-a"), range(16)))
        assert store.get_event("quiz-a").is_locked is False
        store.toggle_event_lock("quiz-a")
        assert store.get_event("quiz-a").is_locked is True

    def test_missing_event(self, store):
        with pytest.raises(EventNotFound):
            store.get_event("nope")
        with pytest.raises(EventNotFound):
            store.set_event_lock("nope", True)

    def test_update_event(self, store, judged_event):
        store.insert_event(judged_event)
        store.update_event(judged_event.model_copy(update={"name": "Vocal Duet"}))
        assert store.get_event("vocal").name == "Vocal Duet"

    def test_delete_cascades(self, seeded):
        seeded.upsert_score("J", "V1", "vocal", {"C1": 10.0}, 0.0, 10.0)
        seeded.upsert_score("J", "P", "quiz-a", {"R1": 1.0}, 0.0, 1.0)
        seeded.delete_event("vocal")
        assert [e.id for e in seeded.list_events()] == ["quiz-a"]
        assert {p.event_id for p in seeded.list_participants()} == {"quiz-a"}
        assert [s.event_id for s in seeded.list_scores()] == ["quiz-a"]


class TestMalformedRecords:

    def test_bad_criteria_json(self, store):
        raw_insert(store,
                   "INSERT INTO events(id, name, type, criteria, rounds, is_locked, created_at) VALUES(?,?,?,?,?,?,?)",
                   ("bad", "Bad", "JUDGED", "{not json", "[]", 0, "2024-01-01"))
        with pytest.raises(MalformedRecord):
            store.list_events()

    def test_unknown_event_type(self, store):
        raw_insert(store,
                   "INSERT INTO events(id, name, type, criteria, rounds, is_locked, created_at) VALUES(?,?,?,?,?,?,?)",
                   ("odd", "Odd", "PAGEANT", "[]", "[]", 0, "2024-01-01"))
        with pytest.raises(MalformedRecord):
            store.get_event("odd")

    def test_criterion_missing_weight(self, store):
        raw_insert(store,
                   "INSERT INTO events(id, name, type, criteria, rounds, is_locked, created_at) VALUES(?,?,?,?,?,?,?)",
                   ("w", "W", "JUDGED", '[{"id": "c", "name": "Mastery"}]', "[]", 0, "2024-01-01"))
        with pytest.raises(MalformedRecord):
            store.get_event("w")

    def test_score_entries_not_numeric(self, store):
        raw_insert(store,
                   "INSERT INTO scores(id, judge_id, participant_id, event_id, entries, deductions, total_score, updated_at) "
                   "VALUES(?,?,?,?,?,?,?,?)",
                   ("s", "J", "P", "e", '{"C1": "lots"}', 0, 0, "2024-01-01"))
        with pytest.raises(MalformedRecord):
            store.list_scores()


class TestScoresTable:

    def test_pair_uniqueness_enforced(self, store):
        sql = ("INSERT INTO scores(id, judge_id, participant_id, event_id, entries, deductions, total_score, updated_at) "
               "VALUES(?,?,?,?,?,?,?,?)")
        raw_insert(store, sql, ("s1", "J", "P", "e", "{}", 0, 0, "2024-01-01"))
        with pytest.raises(sqlite3.IntegrityError):
            raw_insert(store, sql, ("s2", "J", "P", "e", "{}", 0, 0, "2024-01-01"))

    def test_upsert_keeps_id(self, seeded):
        first = seeded.upsert_score("J", "P", "quiz-a", {"R1": 1.0}, 0.0, 1.0)
        second = seeded.upsert_score("J", "P", "quiz-a", {"R1": 3.0}, 1.0, 2.0, critique="Close")
        assert first.id == second.id
        assert second.entries == {"R1": 3.0}
        assert second.critique == "Close"

    def test_negative_total_rejected(self, seeded):
        with pytest.raises(ValidationFailure):
            seeded.upsert_score("J", "P", "quiz-a", {}, 0.0, -1.0)

    def test_init_db_idempotent(self, store):
        store.init_db()
        store.init_db()
        assert store.list_scores() == []

    def test_write_lock_timeout_reported_as_busy(self, seeded):
        busy = RecordStore(seeded.db_path, busy_timeout=0.1)
        holder = sqlite3.connect(seeded.db_path, isolation_level=None)
        try:
            holder.execute("BEGIN IMMEDIATE")
            with pytest.raises(StoreBusy):
                busy.upsert_score("J", "P", "quiz-a", {"R1": 1.0}, 0.0, 1.0)
        finally:
            holder.execute("ROLLBACK")
            holder.close()
        assert busy.list_scores() == []


class TestParticipants:

    def test_search_by_name_or_district(self, seeded):
        assert [p.id for p in seeded.list_participants(search="ana")] == ["P"]
        assert [p.id for p in seeded.list_participants(event_id="vocal", search="district i")] == ["V1", "V2"]
        assert [p.id for p in seeded.list_participants(event_id="vocal", search="  ")] == ["V1", "V2"]

    def test_enroll_requires_event(self, store):
        with pytest.raises(EventNotFound):
            store.insert_participant(Participant(id="x", name="X", district="District I", event_id="ghost"))


class TestSettings:

    def test_put_and_get(self, store):
        assert store.get_setting("allow_admin_registration", False) is False
        store.put_setting("allow_admin_registration", True)
        assert store.get_setting("allow_admin_registration") is True
        store.put_setting("allow_admin_registration", False)
        assert store.list_settings() == {"allow_admin_registration": False}
