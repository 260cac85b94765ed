class GenerationError(Exception):
    """Raised when the generator cannot produce a program at all."""


class RandomRetryLimitError(GenerationError):
    """Raised when a filtered draw rejects every candidate it is offered."""
