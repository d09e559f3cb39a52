"""Authenticated, retrying HTTP transport for the DataCite REST API."""

import logging
import time
from typing import Any, Dict, Iterable, Optional

import requests
from requests.auth import HTTPBasicAuth

from doisync.__version__ import __version__
from doisync.api.exceptions import (
    AuthenticationError,
    MalformedUpstreamResponseError,
    TransportPermanentError,
    TransportTransientError,
)
from doisync.api.retry import classify


logger = logging.getLogger(__name__)


def _as_builtin_fault(error: requests.exceptions.RequestException) -> Exception:
    """Map requests' connection/timeout exceptions onto the built-in ones."""
    if isinstance(error, requests.exceptions.Timeout):
        return TimeoutError(str(error))
    if isinstance(error, requests.exceptions.ConnectionError):
        return ConnectionError(str(error))
    return error


class RegistryTransport:
    """
    Single authenticated sender for DataCite API calls.

    Wraps a ``requests.Session`` with basic auth, JSON:API headers and a
    timeout. Each logical call is attempted up to ``MAX_ATTEMPTS`` times;
    the retry classifier decides after every failed attempt whether another
    attempt is worth the quota.
    """

    MEDIA_TYPE = "application/vnd.api+json"
    USER_AGENT = f"DOISYNC/{__version__} (GFZ Data Services)"

    TIMEOUT = 30  # Registration calls, in seconds
    LOOKUP_TIMEOUT = 10  # Pure metadata lookups, in seconds
    MAX_ATTEMPTS = 3
    MUTATION_RETRY_DELAY = 0.1
    BULK_RETRY_DELAY = 0.5
    PAGE_DELAY = 0.2  # 5 requests/second, below DataCite's ~6 req/s limit
    BODY_EXCERPT_LENGTH = 500

    def __init__(
        self,
        endpoint: str,
        username: str,
        password: str,
        timeout: float = TIMEOUT,
        retry_delay: float = MUTATION_RETRY_DELAY,
        max_attempts: int = MAX_ATTEMPTS,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the transport.

        Args:
            endpoint: API base URL (e.g. "https://api.datacite.org")
            username: DataCite repository account
            password: DataCite password
            timeout: Default request timeout in seconds
            retry_delay: Pause between attempts in seconds
            max_attempts: Attempts per logical call
            session: Optional preconfigured requests session
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.endpoint = endpoint.rstrip('/')
        self.username = username
        self.timeout = timeout
        self.retry_delay = retry_delay
        self.max_attempts = max_attempts

        self.session = session or requests.Session()
        self.session.auth = HTTPBasicAuth(username, password)
        self.session.headers.update({
            "Accept": self.MEDIA_TYPE,
            "Content-Type": self.MEDIA_TYPE,
            "User-Agent": self.USER_AGENT,
        })

    @classmethod
    def for_context(cls, context, **kwargs) -> 'RegistryTransport':
        """Build a transport for a resolved environment context."""
        return cls(
            context.endpoint,
            context.credentials.username,
            context.credentials.password,
            **kwargs
        )

    def _excerpt(self, response: requests.Response) -> str:
        return response.text[:self.BODY_EXCERPT_LENGTH]

    @staticmethod
    def _error_json(response: requests.Response) -> Optional[Any]:
        """Return the parsed error body, or None if it is not JSON."""
        try:
            return response.json()
        except ValueError:
            return None

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        expected_statuses: Iterable[int] = (),
        context: Optional[Dict[str, Any]] = None
    ) -> requests.Response:
        """
        Send one logical request, retrying transient failures.

        Args:
            method: HTTP method
            path: Path below the endpoint (e.g. "/dois")
            params: Query parameters
            json: JSON body
            timeout: Timeout override in seconds
            expected_statuses: Non-2xx statuses the caller handles itself (e.g. 404)
            context: Extra diagnostic context attached to raised errors

        Returns:
            The successful (or expected) response

        Raises:
            AuthenticationError: On HTTP 401
            TransportPermanentError: On other 4xx and unrecognized failures
            TransportTransientError: When retryable failures exhausted all attempts
        """
        url = f"{self.endpoint}{path}"
        error_context = dict(context or {})
        error_context.setdefault("endpoint", self.endpoint)
        expected = set(expected_statuses)

        last_status = None
        last_body = None
        last_json = None
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self.session.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    timeout=timeout or self.timeout
                )
            except requests.exceptions.SSLError as e:
                logger.error(f"{method} {url} failed with a TLS error: {e}")
                raise TransportPermanentError(
                    f"TLS handshake with DataCite failed: {e}", url=url, **error_context
                ) from e
            except requests.exceptions.RequestException as e:
                decision = classify(_as_builtin_fault(e))
                logger.warning(
                    f"{method} {url} failed (attempt {attempt}/{self.max_attempts}): {e}"
                )
                if not decision.should_retry:
                    raise TransportPermanentError(
                        f"Request to DataCite failed: {e}", url=url, **error_context
                    ) from e
                last_error = e
                last_status = None
                last_body = None
                last_json = None
            else:
                status = response.status_code
                if 200 <= status < 300 or status in expected:
                    return response

                body = self._excerpt(response)
                decision = classify(response)
                if not decision.should_retry:
                    logger.error(f"DataCite API error on {method} {url}: HTTP {status} - {body}")
                    error_class = AuthenticationError if status == 401 else TransportPermanentError
                    message = (
                        f"Authentication failed for DataCite user {self.username}"
                        if status == 401 else f"DataCite API error (HTTP {status})"
                    )
                    raise error_class(
                        message,
                        response_json=self._error_json(response),
                        url=url, status=status, body=body, **error_context
                    )

                logger.warning(
                    f"{method} {url} returned HTTP {status} "
                    f"(attempt {attempt}/{self.max_attempts}): {body}"
                )
                last_error = None
                last_status = status
                last_body = body
                last_json = self._error_json(response)

            if attempt < self.max_attempts:
                time.sleep(self.retry_delay)

        logger.error(f"Giving up on {method} {url} after {self.max_attempts} attempts")
        error = TransportTransientError(
            f"DataCite request failed after {self.max_attempts} attempts",
            response_json=last_json,
            url=url,
            status=last_status,
            body=last_body,
            error=str(last_error) if last_error else None,
            **error_context
        )
        if last_error is not None:
            raise error from last_error
        raise error

    def get(self, path: str, **kwargs) -> requests.Response:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs) -> requests.Response:
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs) -> requests.Response:
        return self.request("PUT", path, **kwargs)

    def json_body(self, response: requests.Response, **context) -> Dict[str, Any]:
        """
        Parse a response body as a JSON object.

        Raises:
            MalformedUpstreamResponseError: If the body is not a JSON object
        """
        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Invalid JSON response from {response.url}: {e}")
            raise MalformedUpstreamResponseError(
                "Invalid JSON response from DataCite API",
                status=response.status_code,
                body=self._excerpt(response),
                endpoint=self.endpoint,
                **context
            ) from e

        if not isinstance(data, dict):
            raise MalformedUpstreamResponseError(
                "DataCite API response is not a JSON object",
                status=response.status_code,
                body=self._excerpt(response),
                endpoint=self.endpoint,
                **context
            )
        return data

    def pace(self):
        """Delay before the next page request of a bulk listing."""
        time.sleep(self.PAGE_DELAY)

    def close(self):
        """Close the underlying HTTP session."""
        self.session.close()
