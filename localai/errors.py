"""Error taxonomy for the Local AI client.

None of these escape the public API: each is caught at the boundary of the
component that raises it and turned into a log line, a :class:`HealthResult`
or a terminal stream event.
"""

from __future__ import annotations


class LocalAIError(Exception):
    """Base class for all client errors."""


class DiscoveryError(LocalAIError):
    """An advertisement could not be resolved to a usable host/port."""


class HealthCheckError(LocalAIError):
    """The ``/health`` endpoint answered, but not with a healthy status."""


class StreamError(LocalAIError):
    """Base class for failures inside a chat stream."""


class StreamTransportError(StreamError):
    """Non-200 status, or a fault while writing the request or reading the body."""


class StreamProtocolError(StreamError):
    """A body line that is not a valid chunk."""
