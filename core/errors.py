"""
errors.py
----------
Exceptions raised by the clearing engine.

None of these are fatal to a batch. InvalidRecord is scoped to one record and
ConcurrentGenerationBlocked means "try again next cycle".
"""


class InvalidRecord(ValueError):
    """A transaction, bill or template record is missing a required field."""

    def __init__(self, message: str, record_id=None, field: str | None = None):
        super().__init__(message)
        self.record_id = record_id
        self.field = field


class ConcurrentGenerationBlocked(RuntimeError):
    """The per-user generation lock is held by another run."""

    def __init__(self, user_id: str):
        super().__init__(f"Bill generation already in progress for user '{user_id}'")
        self.user_id = user_id
