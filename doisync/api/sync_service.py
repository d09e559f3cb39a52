"""Automatic DataCite metadata synchronization after a resource was saved."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from doisync.api.exceptions import RegistryError
from doisync.api.registration import RegistrationClient


logger = logging.getLogger(__name__)


STATUS_MESSAGES = {
    401: "DataCite authentication failed. Please contact support.",
    403: "Access denied by DataCite. Please contact support.",
    404: "DOI not found at DataCite. It may have been deleted.",
    422: "Invalid metadata format. Please review your data.",
    429: "Too many requests to DataCite. Please wait and try again.",
}


class SyncStatus(Enum):
    NOT_REQUIRED = "not_required"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class SyncResult:
    """Outcome of a sync attempt."""
    status: SyncStatus
    doi: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def not_required(cls) -> 'SyncResult':
        return cls(SyncStatus.NOT_REQUIRED)

    @classmethod
    def succeeded(cls, doi: str) -> 'SyncResult':
        return cls(SyncStatus.SUCCEEDED, doi=doi)

    @classmethod
    def failed(cls, doi: Optional[str], error_message: str) -> 'SyncResult':
        return cls(SyncStatus.FAILED, doi=doi, error_message=error_message)

    @property
    def is_success(self) -> bool:
        return self.status is not SyncStatus.FAILED


def extract_error_message(error: RegistryError) -> str:
    """
    Build a human-readable message from a failed DataCite call.

    Prefers the first ``errors[].title`` (or ``detail``) of a JSON:API error
    body, then a message for the HTTP status.
    """
    status = error.status_code
    if status is None:
        return "Unable to connect to DataCite API. Please try again later."

    body = error.response_json
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            first = errors[0]
            return first.get("title") or first.get("detail") or "DataCite API error"

    if status in STATUS_MESSAGES:
        return STATUS_MESSAGES[status]
    if 500 <= status <= 599:
        return "DataCite service is temporarily unavailable."
    return f"DataCite API error (HTTP {status})"


class SyncService:
    """
    Pushes metadata of registered resources to DataCite after a save.

    Sync failures never propagate: the resource is already saved locally,
    so every outcome is reported as a SyncResult.
    """

    def __init__(self, registration_client: RegistrationClient):
        self.registration_client = registration_client

    def sync_if_registered(
        self,
        resource: Any,
        attributes: Optional[Mapping[str, Any]] = None
    ) -> SyncResult:
        """
        Update the DataCite metadata of a resource if it has a DOI.

        Args:
            resource: The freshly saved resource
            attributes: Exported DataCite attributes (default: exporter output)

        Returns:
            SyncResult describing the attempt
        """
        resource_id = getattr(resource, "id", None)
        doi = getattr(resource, "doi", None)

        if not doi:
            logger.debug(f"DataCite sync skipped: resource #{resource_id} has no DOI")
            return SyncResult.not_required()

        if not getattr(resource, "landing_page_url", None):
            logger.warning(
                f"DataCite sync skipped: resource #{resource_id} has DOI {doi} but no landing page"
            )
            return SyncResult.failed(doi, "Landing page is required to update DataCite metadata.")

        logger.info(
            f"Starting automatic DataCite sync for resource #{resource_id} ({doi}, "
            f"test mode: {self.registration_client.is_test_mode()})"
        )

        try:
            self.registration_client.update_metadata(resource, attributes)
        except RegistryError as e:
            message = extract_error_message(e)
            logger.error(
                f"DataCite sync failed for resource #{resource_id} ({doi}): "
                f"{message} (status: {e.status_code})"
            )
            return SyncResult.failed(doi, message)
        except Exception as e:
            logger.exception(f"Unexpected error during DataCite sync for resource #{resource_id}: {e}")
            return SyncResult.failed(doi, "An unexpected error occurred while syncing with DataCite.")

        logger.info(f"DataCite sync completed successfully for {doi}")
        return SyncResult.succeeded(doi)
