"""Exceptions raised by the DataCite registry engine."""

from typing import Any, Dict, Optional


class RegistryError(Exception):
    """
    Base exception for DataCite registry errors.

    Every error carries a context dictionary (resource id, DOI, prefix,
    endpoint, HTTP status, response body excerpt) so an operator can act on
    it without reproducing the call.
    """

    def __init__(self, message: str, response_json: Any = None, **context: Any):
        super().__init__(message)
        self.message = message
        self.response_json = response_json
        self.context: Dict[str, Any] = {
            key: value for key, value in context.items() if value is not None
        }

    @property
    def status_code(self) -> Optional[int]:
        """HTTP status of the failed call, if a response was obtained."""
        return self.context.get("status")

    @property
    def body(self) -> Optional[str]:
        """Response body excerpt of the failed call, if any."""
        return self.context.get("body")

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value}" for key, value in self.context.items())
        return f"{self.message} ({details})"


class ConfigurationError(RegistryError):
    """Raised when the registry configuration is incomplete or inconsistent."""
    pass


class InvalidPrefixError(RegistryError):
    """Raised when a DOI prefix is not allowed in the selected environment."""
    pass


class MissingLandingPageError(RegistryError):
    """Raised when a resource has no public landing page URL."""
    pass


class MissingIdentifierError(RegistryError):
    """Raised when a metadata update is requested for a resource without DOI."""
    pass


class PaginationError(RegistryError):
    """Raised when cursor pagination does not make progress."""
    pass


class TransportError(RegistryError):
    """Base class for failures of the HTTP transport."""
    pass


class TransportTransientError(TransportError):
    """Raised when a retryable failure persisted through all attempts."""
    pass


class TransportPermanentError(TransportError):
    """Raised when the registry rejected a request (4xx) or answered unusably."""
    pass


class AuthenticationError(TransportPermanentError):
    """Raised when authentication fails."""
    pass


class MalformedUpstreamResponseError(TransportPermanentError):
    """Raised when the registry response is not JSON or lacks expected fields."""
    pass
