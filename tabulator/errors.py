class TabulatorError(Exception):
    """Base class for every tabulator error."""
    pass


class LockedEvent(TabulatorError):
    """Submission attempted against a locked event."""
    def __init__(self, event_id):
        self.event_id = event_id
        super().__init__(f"Event {event_id} is locked. Submission rejected.")


class ValidationFailure(TabulatorError):
    """Input or store constraint rejected a write."""
    pass


class EventNotFound(TabulatorError):
    def __init__(self, event_id):
        self.event_id = event_id
        super().__init__(f"Event {event_id} not found")


class ParticipantNotFound(TabulatorError):
    def __init__(self, participant_id):
        self.participant_id = participant_id
        super().__init__(f"Participant {participant_id} not found")


class MalformedRecord(TabulatorError):
    """A stored row failed validation at the store boundary."""
    def __init__(self, table, record_id, detail):
        self.table = table
        self.record_id = record_id
        super().__init__(f"Malformed {table} record {record_id!r}: {detail}")


class UniquenessViolation(TabulatorError):
    """More than one score exists for a (judge, participant) pair."""
    def __init__(self, pairs):
        self.pairs = list(pairs)
        super().__init__(f"Duplicate scores for {len(self.pairs)} judge/participant pair(s)")


class ProfileResolutionFailure(TabulatorError):
    """Profile lookup for the current user failed."""
    pass


class StoreBusy(TabulatorError):
    """The database write lock could not be taken within the busy timeout."""
    def __init__(self, detail):
        super().__init__(f"Record store busy, retry the request: {detail}")
