"""Error hierarchy for the timetable relay.

Every failure that reaches the HTTP layer is a RelayError; the service turns
it into a 500 response with an {"ok": false, "error": ...} body.
"""


class RelayError(RuntimeError):
    """Base exception for all relay failures."""

    pass


class ConfigurationError(RelayError):
    """A required URL or API key is not configured."""

    pass


class UpstreamError(RelayError):
    """The spreadsheet query service failed, timed out or sent a bad body."""

    pass


class ProviderError(RelayError):
    """A completion or transcription provider failed.

    Raised by fallback chains only after every provider has been tried.
    """

    pass
