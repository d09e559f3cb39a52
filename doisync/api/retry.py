"""Retry classification for failed registry calls.

The classifier only looks at plain Python objects: built-in exceptions,
exception messages and anything exposing an integer ``status_code``. The
transport translates library specific exceptions before asking.
"""

import socket
from enum import Enum
from typing import Any, Optional


class RetryDecision(Enum):
    """Outcome of classifying a failed attempt."""

    RETRY = "retry"
    FAIL_PERMANENT = "fail-permanent"
    FAIL_UNKNOWN = "fail-unknown"

    @property
    def should_retry(self) -> bool:
        return self is RetryDecision.RETRY


# Message fragments that indicate a connection level fault
CONNECTION_FAILURE_PATTERNS = ("connection", "timeout", "timed out", "reset by peer")

_CONNECTION_FAULT_TYPES = (ConnectionError, TimeoutError, socket.timeout)


def _status_of(failure: Any) -> Optional[int]:
    """Return the HTTP status carried by a response or an HTTP exception."""
    status = getattr(failure, "status_code", None)
    if isinstance(status, int):
        return status

    response = getattr(failure, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status

    return None


def is_connection_fault(failure: Any) -> bool:
    """
    Check whether a failure is a raw transport fault.

    Args:
        failure: Exception raised while sending a request

    Returns:
        True for connect/reset/timeout faults, detected by type or message
    """
    if isinstance(failure, _CONNECTION_FAULT_TYPES):
        return True

    if isinstance(failure, BaseException):
        message = str(failure).lower()
        return any(pattern in message for pattern in CONNECTION_FAILURE_PATTERNS)

    return False


def classify(failure: Any) -> RetryDecision:
    """
    Decide whether a failed attempt is worth repeating.

    Rules are applied in order:

    1. Connection/timeout faults are retried.
    2. 5xx responses are retried (server side, likely transient).
    3. 4xx responses fail permanently (retrying cannot succeed).
    4. Anything else unrecognized fails permanently.

    Args:
        failure: An exception, or a response object with ``status_code``

    Returns:
        RetryDecision for the attempt
    """
    status = _status_of(failure)

    if status is None:
        if is_connection_fault(failure):
            return RetryDecision.RETRY
        return RetryDecision.FAIL_PERMANENT

    if 500 <= status <= 599:
        return RetryDecision.RETRY

    if 400 <= status <= 499:
        return RetryDecision.FAIL_PERMANENT

    # A response that is neither a client nor a server error
    return RetryDecision.FAIL_UNKNOWN
