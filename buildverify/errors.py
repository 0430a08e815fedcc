"""
Error taxonomy for the dispatch service.

Request-path errors are turned into response shapes by the dispatcher;
background errors are logged and absorbed.
"""


class BuildVerifyError(Exception):
    """Base class for all buildverify errors."""
    pass


class DuplicateLookupError(BuildVerifyError):
    """Raised when the store cannot answer the dedup lookup."""
    pass


class PersistenceError(BuildVerifyError):
    """Raised when a job or result write (or result read) fails."""
    pass


class WorkerError(BuildVerifyError):
    """Raised when the verification worker fails."""
    pass


class InconsistentStateError(BuildVerifyError):
    """Raised when a completed job has no verified result."""

    def __init__(self, program_id: str):
        self.program_id = program_id
        super().__init__(f"Job for program {program_id} is completed but has no verified result")


class InvalidTransitionError(BuildVerifyError):
    """Raised on a status update for an unknown or already terminal job."""
    pass
