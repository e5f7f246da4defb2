"""
Pipeline exception types.

Processing functions report their own failures through ProcessResult;
these exceptions cover the infrastructure seams around them.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ObjectNotFoundError(PipelineError):
    """Raised when an object key does not exist in the object store."""

    def __init__(self, key: str):
        super().__init__(f"Object not found: {key}")
        self.key = key


class QueueUnavailableError(PipelineError):
    """Raised when a job cannot be handed to the queue."""


class ConfigurationError(PipelineError):
    """Raised when settings name a backend that cannot be built."""
