from typing import Optional


class BulkDealsError(Exception):
    """Base class for errors raised by the bulk processing service."""


class RemoteServiceError(BulkDealsError):
    """A generation service answered with a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RecordNotFoundError(BulkDealsError):
    def __init__(self, table: str, record_id: str):
        super().__init__(f"{table} record not found: {record_id}")
        self.table = table
        self.record_id = record_id


class BatchNotFoundError(BulkDealsError):
    def __init__(self, batch_id: str):
        super().__init__(f"Batch not found: {batch_id}")
        self.batch_id = batch_id


class BatchStateError(BulkDealsError):
    """The batch is not in a state that allows the requested transition."""

    def __init__(self, batch_id: str, status: str):
        super().__init__(f"Batch {batch_id} cannot be processed from status '{status}'")
        self.batch_id = batch_id
        self.status = status


class DailyLimitExceededError(BulkDealsError):
    def __init__(self, limit: int):
        super().__init__(f"Daily limit of {limit} batches reached")
        self.limit = limit
