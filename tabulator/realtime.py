from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Iterable, List

from pydantic import BaseModel

from tabulator.models import Score

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"


class ScoreChange(BaseModel):
    kind: ChangeKind
    score: Score


def reconcile(scores: Iterable[Score], change: ScoreChange) -> List[Score]:
    """Return a new score list with change.score replacing any entry of the same id."""
    incoming = change.score
    merged = [s for s in scores if s.id != incoming.id]
    merged.append(incoming)
    return merged


Subscriber = Callable[[ScoreChange], None]


class ScoreFeed:
    """In-process publish/subscribe hub for score changes."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, change: ScoreChange) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            # one broken subscriber must not starve the others
            try:
                callback(change)
            except Exception:
                logger.error(
                    f"Score feed subscriber {callback!r} failed on {change.kind.value} "
                    f"of score {change.score.id}",
                    exc_info=True,
                )

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


class ReconciliationListener:
    """
    Applies feed changes to a repository.

    Delivery order is not guaranteed relative to local writes. A stale
    update applied after a newer local write wins until the next change
    for that score arrives.
    """

    def __init__(self, repository):
        self.repository = repository
        self.applied = 0
        self._unsubscribe = None

    def __call__(self, change: ScoreChange) -> None:
        self.repository.apply_change(change)
        self.applied += 1
        logger.debug(f"Reconciled {change.kind.value} score {change.score.id}")

    def attach(self, feed: ScoreFeed) -> "ReconciliationListener":
        self.detach()
        self._unsubscribe = feed.subscribe(self)
        return self

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
