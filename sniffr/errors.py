class SniffrError(Exception):
    """Base class for errors raised by the element finder."""


class ConfigurationError(SniffrError):
    """The service is misconfigured (for example no remote-service credentials).

    Fatal for the request and never retried; operators have to fix the deployment.
    """


class UpstreamError(SniffrError):
    """The remote inference call failed at the transport level or returned non-2xx."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class HighlightError(SniffrError):
    """The element to highlight is gone from the page."""
