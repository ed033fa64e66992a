# rentwatch/errors.py

"""Exception taxonomy for the scrape-parse-ingest pipeline."""


class RentwatchError(Exception):
    """Base class for all pipeline errors."""


class NavigationError(RentwatchError):
    """A page could not be loaded into a stable, rendered state.

    ``transient`` records whether the last underlying failure looked
    like a recoverable rendering race (detached frame, destroyed
    execution context) rather than a hard failure.
    """

    def __init__(
        self,
        url: str,
        message: str,
        attempts: int = 0,
        transient: bool = False,
    ) -> None:
        super().__init__(
            f"Navigation to {url} failed after {attempts} "
            f"attempt(s): {message}"
        )
        self.url = url
        self.attempts = attempts
        self.transient = transient


class ExtractionLowSignal(RentwatchError):
    """A candidate node carried neither a price nor a square footage.

    Raised and caught inside the extractor; skipped nodes are counted,
    never surfaced to callers.
    """


class IngestionConflict(RentwatchError):
    """A write transaction lost the race for the database lock."""


class ConfigurationError(RentwatchError):
    """Invalid configuration, e.g. an out-of-range alert threshold."""
