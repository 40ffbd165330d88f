# src/nexustrack/domain/errors.py
"""
Error taxonomy shared by the polling engine and the admin surface.

Upstream (content service) and destination (Discord) failures are split into
transient ones, which are simply retried on the next cycle, and terminal ones,
which change persisted state (error counters, unreachable channels).
"""


class NexusTrackError(Exception):
    """Base class for all application errors."""


class ConfigurationError(NexusTrackError):
    """Required credentials or settings are missing for a whole subsystem."""


# --- Upstream ---

class UpstreamError(NexusTrackError):
    """Any failure talking to the content service."""

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class UpstreamTransientError(UpstreamError):
    """Timeout, rate limit or 5xx. Retry next cycle, error counters untouched."""


class UpstreamStructuralError(UpstreamError):
    """Malformed response, GraphQL errors or a missing required field."""


# --- Destination ---

class DestinationError(NexusTrackError):
    """Any failure posting to a channel's webhook."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DestinationUnreachableError(DestinationError):
    """Missing permission or unknown webhook/channel. Terminal for the channel."""


class DestinationTransientError(DestinationError):
    """Rate limit, timeout or 5xx. The watermark stays put and we try again later."""


class PayloadRejectedError(DestinationError):
    """The destination refused the rich payload (HTTP 400)."""


# --- Admin surface ---

class TrackingError(NexusTrackError):
    """A track/untrack/trigger request failed; the message is shown to the user."""
