"""Scheduler exceptions."""

class SchedulerError(Exception):
    """Base exception for settlement scheduling."""
    pass

class JobNotFoundError(SchedulerError):
    """Raised when an auction has no scheduled job."""
    def __init__(self, auction_id):
        self.auction_id = auction_id
        super().__init__(f"No scheduled job for auction {auction_id}")

class JobStateError(SchedulerError):
    """Raised when a job is not in a state that allows the operation."""
    pass
