from __future__ import annotations


class BuildwatchError(Exception):
    """Base class for every failure raised by buildwatch."""


class TransportError(BuildwatchError):
    """The real-time channel failed to open, dropped, or refused a send."""


class BuildTriggerError(BuildwatchError):
    """The build-start request failed or returned an unusable job record."""


class AnalysisError(BuildwatchError):
    """The analysis request failed or returned a malformed payload."""


class ProtocolError(BuildwatchError):
    """An inbound channel frame could not be parsed or has an unknown type."""


class InvalidTransitionError(BuildwatchError):
    """A session state change not allowed by VALID_TRANSITIONS."""
