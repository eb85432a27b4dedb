class HubError(Exception):
    """Error reported back to the calling connection only, as a ``Receive Error`` event."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class HubValidationError(HubError):
    """A required field was empty."""


class MissingPresenceError(HubError):
    """The caller has no presence entry (never joined, or already left)."""

    def __init__(self, message: str = "User info not found!"):
        super().__init__(message)


class InvalidInvocation(Exception):
    """A frame could not be dispatched: malformed JSON, unknown target or wrong arguments."""
