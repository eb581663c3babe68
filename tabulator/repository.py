from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Dict, List, Optional

from tabulator.models import Event, Participant, Score, User
from tabulator.realtime import ChangeKind, ScoreChange, reconcile

logger = logging.getLogger(__name__)

COLLECTIONS = ("events", "participants", "scores", "profiles", "settings")

# store method feeding each collection on initial load
FETCHERS = {
    "events": "list_events",
    "participants": "list_participants",
    "scores": "list_scores",
    "profiles": "list_profiles",
    "settings": "list_settings",
}

# keeps late initial-load fetches alive after the startup wait gives up
_background_loads: set = set()


class Repository:
    def __init__(self):
        self._lock = threading.Lock()
        self._events: List[Event] = []
        self._participants: List[Participant] = []
        self._scores: List[Score] = []
        self._profiles: List[User] = []
        self._settings: Dict[str, Any] = {}
        self.loaded: set = set()
        self.failed: set = set()

    # -----------------------
    # Bulk state
    # -----------------------
    def replace_collection(self, name: str, items) -> None:
        if name not in COLLECTIONS:
            raise KeyError(name)
        with self._lock:
            setattr(self, f"_{name}", dict(items) if name == "settings" else list(items))
            self.loaded.add(name)
            self.failed.discard(name)

    def mark_failed(self, name: str) -> None:
        with self._lock:
            self.failed.add(name)

    @property
    def events(self) -> List[Event]:
        with self._lock:
            return list(self._events)

    @property
    def participants(self) -> List[Participant]:
        with self._lock:
            return list(self._participants)

    @property
    def scores(self) -> List[Score]:
        with self._lock:
            return list(self._scores)

    @property
    def profiles(self) -> List[User]:
        with self._lock:
            return list(self._profiles)

    @property
    def settings(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._settings)

    # -----------------------
    # Writes
    # -----------------------
    def apply_change(self, change: ScoreChange) -> None:
        with self._lock:
            self._scores = reconcile(self._scores, change)

    def apply_score(self, score: Score) -> None:
        self.apply_change(ScoreChange(kind=ChangeKind.UPDATED, score=score))

    def upsert_event(self, event: Event) -> None:
        with self._lock:
            self._events = [e for e in self._events if e.id != event.id] + [event]

    def remove_event(self, event_id: str) -> None:
        with self._lock:
            self._events = [e for e in self._events if e.id != event_id]
            self._participants = [p for p in self._participants if p.event_id != event_id]
            self._scores = [s for s in self._scores if s.event_id != event_id]

    def add_participant(self, participant: Participant) -> None:
        with self._lock:
            self._participants = [p for p in self._participants if p.id != participant.id] + [participant]

    # -----------------------
    # Queries
    # -----------------------
    def get_event(self, event_id: str) -> Optional[Event]:
        with self._lock:
            return next((e for e in self._events if e.id == event_id), None)

    def participants_for_event(self, event_id: str) -> List[Participant]:
        with self._lock:
            return [p for p in self._participants if p.event_id == event_id]

    def scores_for_event(self, event_id: str) -> List[Score]:
        with self._lock:
            return [s for s in self._scores if s.event_id == event_id]

    def scores_for_participant(self, participant_id: str) -> List[Score]:
        with self._lock:
            return [s for s in self._scores if s.participant_id == participant_id]

    def scores_by_judge(self, judge_id: str) -> List[Score]:
        with self._lock:
            return [s for s in self._scores if s.judge_id == judge_id]

    def score_for_pair(self, judge_id: str, participant_id: str) -> Optional[Score]:
        with self._lock:
            return next(
                (s for s in self._scores if s.judge_id == judge_id and s.participant_id == participant_id),
                None,
            )


async def load_repository(store, repository: Optional[Repository] = None, timeout: Optional[float] = None) -> Repository:
    """
    Fetch every collection concurrently into ``repository``.

    A failed fetch is logged and leaves its collection empty; the others
    still populate. ``timeout`` bounds only how long this call waits:
    fetches still running afterwards complete in the background and fill
    in their collection when they finish.
    """
    repository = repository if repository is not None else Repository()

    async def fetch(name: str) -> None:
        method = getattr(store, FETCHERS[name])
        try:
            items = await asyncio.to_thread(method)
        except Exception as e:
            logger.error(f"Initial load of {name} failed: {e}", exc_info=True)
            repository.mark_failed(name)
            return
        repository.replace_collection(name, items)
        logger.info(f"Loaded {len(items)} {name}")

    tasks = [asyncio.create_task(fetch(name)) for name in COLLECTIONS]
    _done, pending = await asyncio.wait(tasks, timeout=timeout)
    if pending:
        logger.warning(
            f"Initial load still running after {timeout}s for {len(pending)} collection(s); "
            f"continuing in the background"
        )
        for task in pending:
            _background_loads.add(task)
            task.add_done_callback(_background_loads.discard)
    return repository
