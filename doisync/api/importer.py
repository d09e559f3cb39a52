"""Bulk import of DOI records from DataCite across several prefixes."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, List, Optional, Sequence
from urllib.parse import quote

from doisync.api.exceptions import (
    ConfigurationError,
    MalformedUpstreamResponseError,
    RegistryError,
)
from doisync.api.pager import CursorPager, PrefixResult, listing_member
from doisync.api.transport import RegistryTransport


logger = logging.getLogger(__name__)


@dataclass
class PrefixCount:
    """Server-reported number of DOIs for one prefix."""
    prefix: str
    total: int = 0
    error: Optional[RegistryError] = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.error is None


class BulkImporter:
    """
    Imports all DOIs registered under a set of prefixes.

    Prefixes are processed strictly one after another so that all requests
    share a single rate budget. A failure in one prefix is recorded in
    ``results`` and never aborts the remaining prefixes.
    """

    PATH = "/dois"

    def __init__(
        self,
        transport: RegistryTransport,
        client_id: str,
        prefixes: Sequence[str],
        pager: Optional[CursorPager] = None
    ):
        """
        Initialize the importer.

        Args:
            transport: Transport for the listing (bulk retry delay recommended)
            client_id: DataCite client id the DOIs are registered with
            prefixes: Ordered DOI prefixes to import
            pager: Optional pager, built from transport and client_id otherwise
        """
        self.transport = transport
        self.client_id = client_id
        self.prefixes = tuple(prefixes)
        self.pager = pager or CursorPager(transport, client_id)
        self.results: List[PrefixResult] = []

    @classmethod
    def from_settings(cls, settings) -> 'BulkImporter':
        """
        Build an importer for the production registry.

        Imports are read-only and always run against production, whatever
        the global test mode says.

        Raises:
            ConfigurationError: If endpoint, client id or credentials are unusable
        """
        environment = settings.production
        if not environment.endpoint.startswith("https://"):
            raise ConfigurationError(
                "DataCite production endpoint must use HTTPS",
                endpoint=environment.endpoint
            )

        client_id = settings.client_id or environment.username
        if not client_id:
            raise ConfigurationError(
                "DataCite client id is not configured. Please set DATACITE_CLIENT_ID."
            )

        if not environment.username or not environment.password:
            logger.error(
                f"DataCite import credentials missing (username empty: "
                f"{not environment.username}, password empty: {not environment.password})"
            )
            raise ConfigurationError(
                "DataCite production credentials are not configured. "
                "Please set DATACITE_PRODUCTION_USERNAME and DATACITE_PRODUCTION_PASSWORD.",
                endpoint=environment.endpoint
            )

        transport = RegistryTransport(
            environment.endpoint,
            environment.username,
            environment.password,
            retry_delay=RegistryTransport.BULK_RETRY_DELAY
        )
        pager = CursorPager(transport, client_id, max_pages=settings.max_pages)

        logger.debug(
            f"DataCite import initialized for {environment.endpoint} "
            f"with prefixes {', '.join(environment.prefixes)}"
        )
        return cls(transport, client_id, environment.prefixes, pager=pager)

    def get_prefixes(self) -> List[str]:
        """Return the configured prefixes in import order."""
        return list(self.prefixes)

    def import_all(
        self,
        prefixes: Optional[Sequence[str]] = None
    ) -> Generator[Dict[str, Any], None, None]:
        """
        Stream the DOI records of all prefixes.

        All records of one prefix are yielded before any record of the next.
        The per-prefix outcomes are collected in ``results``, which is reset
        at the start of each run.

        Args:
            prefixes: Prefixes to import (default: the configured ones)

        Yields:
            DOI records exactly as returned by DataCite
        """
        self.results = []

        for prefix in (self.prefixes if prefixes is None else prefixes):
            result = yield from self.pager.pages(prefix)
            self.results.append(result)

            if not result.ok:
                logger.warning(
                    f"Import of prefix {prefix} incomplete after {result.pages} pages: {result.error}"
                )

    @property
    def failed_prefixes(self) -> List[PrefixResult]:
        """Results of the last run whose prefix could not be fully imported."""
        return [result for result in self.results if not result.ok]

    def count_by_prefix(self, prefixes: Optional[Sequence[str]] = None) -> List[PrefixCount]:
        """
        Query the total number of DOIs for each prefix.

        Uses page[size]=1 (not 0, which DataCite rejects) to keep the
        transfer minimal; only ``meta.total`` is read. A prefix whose count
        cannot be determined contributes 0 and carries the error.

        Args:
            prefixes: Prefixes to count (default: the configured ones)

        Returns:
            One PrefixCount per prefix, in order
        """
        counts = []

        for prefix in (self.prefixes if prefixes is None else prefixes):
            try:
                response = self.transport.get(
                    self.PATH,
                    params={
                        "client-id": self.client_id,
                        "prefix": prefix,
                        "page[size]": 1,
                    },
                    context={"prefix": prefix}
                )
                data = self.transport.json_body(response, prefix=prefix)
                total = listing_member(
                    data, "meta", prefix=prefix, endpoint=self.transport.endpoint
                ).get("total")
                if not isinstance(total, int):
                    raise MalformedUpstreamResponseError(
                        "DOI listing response has no meta.total",
                        prefix=prefix, endpoint=self.transport.endpoint
                    )
                counts.append(PrefixCount(prefix=prefix, total=total))
                logger.debug(f"DOI count for prefix {prefix}: {total}")
            except RegistryError as e:
                logger.warning(f"Failed to get DOI count for prefix {prefix}: {e}")
                counts.append(PrefixCount(prefix=prefix, error=e))

        return counts

    def total_count(self, prefixes: Optional[Sequence[str]] = None) -> int:
        """
        Get the total number of DOIs across all prefixes.

        Returns:
            Sum of the per-prefix totals (failed prefixes count as 0)
        """
        return sum(count.total for count in self.count_by_prefix(prefixes))

    def fetch_single_doi(self, doi: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a single DOI record.

        Args:
            doi: The DOI identifier (e.g. "10.5880/GFZ.1.1.2021.001")

        Returns:
            The record ("data" member of the response), or None if not found

        Raises:
            TransportError: If the lookup fails for another reason
        """
        response = self.transport.get(
            f"{self.PATH}/{quote(doi, safe='')}",
            timeout=RegistryTransport.LOOKUP_TIMEOUT,
            expected_statuses=(404,),
            context={"doi": doi}
        )

        if response.status_code == 404:
            logger.info(f"DOI not found: {doi}")
            return None

        return self.transport.json_body(response, doi=doi).get("data")
