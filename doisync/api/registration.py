"""DOI registration and metadata updates against the DataCite API."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional
from urllib.parse import quote

from doisync.api.environment import EnvironmentContext
from doisync.api.exceptions import (
    InvalidPrefixError,
    MalformedUpstreamResponseError,
    MissingIdentifierError,
    MissingLandingPageError,
    RegistryError,
    TransportTransientError,
)
from doisync.api.transport import RegistryTransport


logger = logging.getLogger(__name__)

# Attributes that would propose an identifier; DataCite assigns it on create
IDENTIFIER_ATTRIBUTES = ("doi", "id")


@dataclass
class Resource:
    """The parts of a repository resource the registry cares about."""
    id: Any
    doi: Optional[str] = None
    landing_page_url: Optional[str] = None


class MutationState(Enum):
    """Lifecycle of a single registration or update call."""

    VALIDATING = "validating"
    SENDING = "sending"
    SUCCEEDED = "succeeded"
    FAILED_PERMANENT = "failed-permanent"
    FAILED_TRANSIENT_EXHAUSTED = "failed-transient-exhausted"


def flatten_export(exported: Mapping[str, Any]) -> Dict[str, Any]:
    """Return the attribute mapping of an export, unwrapping a JSON:API document."""
    data = exported.get("data")
    if isinstance(data, Mapping) and isinstance(data.get("attributes"), Mapping):
        return dict(data["attributes"])
    return dict(exported)


@dataclass
class RegistrationRequest:
    """A request to mint a new DOI for a resource."""
    resource_id: Any
    prefix: str
    url: str
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        attributes = {
            key: value for key, value in self.attributes.items()
            if key not in IDENTIFIER_ATTRIBUTES
        }
        attributes.update({
            "prefix": self.prefix,
            "url": self.url,
            "event": "publish",
        })
        return {"data": {"type": "dois", "attributes": attributes}}


@dataclass
class UpdateRequest:
    """A request to replace the metadata of an existing DOI."""
    resource_id: Any
    doi: str
    url: str
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        attributes = dict(self.attributes)
        # Re-asserting the published state keeps the DOI findable
        attributes.update({"url": self.url, "event": "publish"})
        return {"data": {"type": "dois", "id": self.doi, "attributes": attributes}}


class RegistrationClient:
    """
    Client for minting DOIs and updating their metadata.

    The client only accepts an already resolved EnvironmentContext, so the
    endpoint, credentials and allowed prefixes it uses are always the ones
    chosen by the environment selector for the calling user.
    """

    PATH = "/dois"

    def __init__(
        self,
        context: EnvironmentContext,
        transport: Optional[RegistryTransport] = None,
        exporter: Optional[Callable[[Any], Mapping[str, Any]]] = None
    ):
        """
        Initialize the registration client.

        Args:
            context: Environment resolved for the calling user
            transport: Optional transport, built from the context otherwise
            exporter: Callable turning a resource into DataCite attributes
        """
        if not isinstance(context, EnvironmentContext):
            raise TypeError("RegistrationClient requires a resolved EnvironmentContext")

        self.context = context
        self.transport = transport or RegistryTransport.for_context(
            context,
            timeout=RegistryTransport.TIMEOUT,
            retry_delay=RegistryTransport.MUTATION_RETRY_DELAY
        )
        self.exporter = exporter
        self.last_state: Optional[MutationState] = None

        logger.info(
            f"DataCite registration client initialized for "
            f"{'TEST' if context.is_test_mode else 'PRODUCTION'} API"
        )

    @property
    def endpoint(self) -> str:
        return self.context.endpoint

    def is_test_mode(self) -> bool:
        return self.context.is_test_mode

    def get_allowed_prefixes(self) -> List[str]:
        return self.context.get_allowed_prefixes()

    def _fail(self, error: RegistryError) -> RegistryError:
        self.last_state = MutationState.FAILED_PERMANENT
        logger.error(str(error))
        return error

    def _export(self, resource: Any, attributes: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        if attributes is None:
            if self.exporter is None:
                raise ValueError("No attributes given and no exporter configured")
            attributes = self.exporter(resource)
        return flatten_export(attributes)

    def register(
        self,
        resource: Any,
        prefix: str,
        attributes: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Register a new DOI for a resource.

        Args:
            resource: Resource with ``id`` and ``landing_page_url``
            prefix: DOI prefix to mint under (must be allowed in this environment)
            attributes: Exported DataCite attributes (default: exporter output)

        Returns:
            The registered DOI record as returned by DataCite

        Raises:
            InvalidPrefixError: If the prefix is not allowed
            MissingLandingPageError: If the resource has no landing page
            TransportError: If the API request fails
        """
        self.last_state = MutationState.VALIDATING
        resource_id = getattr(resource, "id", None)

        if not self.context.allows_prefix(prefix):
            raise self._fail(InvalidPrefixError(
                f"Invalid prefix '{prefix}'. Allowed prefixes: "
                f"{', '.join(self.context.allowed_prefixes)}",
                resource_id=resource_id, prefix=prefix, endpoint=self.endpoint
            ))

        url = getattr(resource, "landing_page_url", None)
        if not url:
            raise self._fail(MissingLandingPageError(
                f"Resource #{resource_id} must have a landing page before registering a DOI.",
                resource_id=resource_id, prefix=prefix
            ))

        request = RegistrationRequest(
            resource_id=resource_id,
            prefix=prefix,
            url=url,
            attributes=self._export(resource, attributes)
        )

        logger.info(
            f"Registering DOI for resource #{resource_id} with prefix {prefix} "
            f"(test mode: {self.context.is_test_mode}, url: {url}, endpoint: {self.endpoint})"
        )

        record = self._send(
            "POST", self.PATH, request.to_payload(),
            {"resource_id": resource_id, "prefix": prefix}
        )
        logger.info(f"DOI registered successfully for resource #{resource_id}: {record['id']}")
        return record

    def update_metadata(
        self,
        resource: Any,
        attributes: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Update the metadata of an existing DOI.

        Args:
            resource: Resource with ``id``, ``doi`` and ``landing_page_url``
            attributes: Exported DataCite attributes (default: exporter output)

        Returns:
            The updated DOI record as returned by DataCite

        Raises:
            MissingIdentifierError: If the resource has no DOI
            MissingLandingPageError: If the resource has no landing page
            TransportError: If the API request fails
        """
        self.last_state = MutationState.VALIDATING
        resource_id = getattr(resource, "id", None)
        doi = getattr(resource, "doi", None)

        if not doi:
            raise self._fail(MissingIdentifierError(
                f"Resource #{resource_id} must have a DOI to update metadata.",
                resource_id=resource_id
            ))

        url = getattr(resource, "landing_page_url", None)
        if not url:
            raise self._fail(MissingLandingPageError(
                f"Resource #{resource_id} must have a landing page to update metadata.",
                resource_id=resource_id, doi=doi
            ))

        request = UpdateRequest(
            resource_id=resource_id,
            doi=doi,
            url=url,
            attributes=self._export(resource, attributes)
        )

        logger.info(
            f"Updating DOI metadata for {doi} (resource #{resource_id}, "
            f"test mode: {self.context.is_test_mode})"
        )

        record = self._send(
            "PUT", f"{self.PATH}/{quote(doi, safe='')}", request.to_payload(),
            {"resource_id": resource_id, "doi": doi}
        )
        logger.info(f"DOI metadata updated successfully: {doi}")
        return record

    def _send(
        self,
        method: str,
        path: str,
        payload: Dict[str, Any],
        context: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Send a mutation and return the DOI record of the response."""
        self.last_state = MutationState.SENDING
        logger.debug(f"DataCite {method} payload: {payload}")

        try:
            response = self.transport.request(method, path, json=payload, context=context)
            data = self.transport.json_body(response, **context)
            record = data.get("data")
            if not isinstance(record, dict) or not record.get("id"):
                raise MalformedUpstreamResponseError(
                    "DataCite response contains no DOI record",
                    status=response.status_code,
                    body=response.text[:RegistryTransport.BODY_EXCERPT_LENGTH],
                    endpoint=self.endpoint,
                    **context
                )
        except TransportTransientError as e:
            self.last_state = MutationState.FAILED_TRANSIENT_EXHAUSTED
            logger.error(
                f"DataCite {method} {path} failed after retries: "
                f"status {e.status_code}, body {e.body}, context {e.context}"
            )
            raise
        except RegistryError as e:
            self.last_state = MutationState.FAILED_PERMANENT
            logger.error(
                f"DataCite {method} {path} failed: "
                f"status {e.status_code}, body {e.body}, context {e.context}"
            )
            raise

        self.last_state = MutationState.SUCCEEDED
        return record
