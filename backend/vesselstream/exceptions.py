"""Exception hierarchy for vesselstream.

Only startup conditions raise out of the service; failures inside the
streaming loop are logged and absorbed where they happen.
"""
from __future__ import annotations


class VesselStreamError(Exception):
    """Base class for all vesselstream errors."""


class MissingCredentialsError(VesselStreamError):
    """A mandatory credential (the feed API key) is not configured."""


class StoreBootstrapError(VesselStreamError):
    """The store could not be reached or initialised at startup."""


class FeedUnavailableError(VesselStreamError):
    """The feed could not be reconnected within the configured attempt budget."""

    def __init__(self, attempts: int, last_error: str | None = None):
        self.attempts = attempts
        self.last_error = last_error
        msg = f"Feed unavailable after {attempts} reconnection attempts"
        if last_error:
            msg += f": {last_error}"
        super().__init__(msg)
