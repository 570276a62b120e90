from typing import Optional


class ReconciliationError(Exception):
    """Base class for failures inside the reconciliation core.

    These are never caused by bad client input; the HTTP layer maps them to
    a 500 without exposing the message.
    """


class ContactNotFound(ReconciliationError):
    def __init__(self, contact_id: int):
        super().__init__(f"Contact {contact_id} does not exist")
        self.contact_id = contact_id


class DataIntegrityError(ReconciliationError):
    """Stored contacts break a cluster invariant (dangling link, cycle,
    orphaned secondary, zero or several primaries)."""

    def __init__(self, message: str, contact_id: Optional[int] = None):
        super().__init__(message)
        self.contact_id = contact_id
