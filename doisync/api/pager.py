"""Cursor-based pagination over the DataCite DOI listing."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, List, Optional
from urllib.parse import parse_qs, urlparse

from doisync.api.exceptions import (
    MalformedUpstreamResponseError,
    PaginationError,
    RegistryError,
)
from doisync.api.transport import RegistryTransport


logger = logging.getLogger(__name__)


@dataclass
class PageResult:
    """One page of DOI records as returned by the registry."""
    records: List[Dict[str, Any]]
    next_cursor: Optional[str] = None
    total: Optional[int] = None

    @property
    def has_next(self) -> bool:
        return self.next_cursor is not None


@dataclass
class PrefixResult:
    """Outcome of paging through all records of one prefix."""
    prefix: str
    pages: int = 0
    records: int = 0
    error: Optional[RegistryError] = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        """Return True if every page of the prefix was fetched."""
        return self.error is None


def listing_member(data: Dict[str, Any], key: str, **context) -> Dict[str, Any]:
    """
    Return an object member (``links``, ``meta``) of a listing response.

    A missing or null member counts as empty.

    Raises:
        MalformedUpstreamResponseError: If the member is not a JSON object
    """
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedUpstreamResponseError(
            f"DOI listing field '{key}' is not an object", **context
        )
    return value


def extract_next_cursor(next_url: Optional[str]) -> Optional[str]:
    """
    Extract the cursor from the "next" link of a listing response.

    Accepts the bracket form (``page[cursor]=...``, also percent-encoded)
    and the flat form (``cursor=...``); the bracket form wins when both are
    present.

    Args:
        next_url: Value of ``links.next`` or None

    Returns:
        The cursor, or None if there is no further page
    """
    if not next_url:
        return None

    query = parse_qs(urlparse(next_url).query)
    for key in ("page[cursor]", "cursor"):
        values = query.get(key)
        if values and values[0]:
            return values[0]

    return None


class CursorPager:
    """
    Lazy, cursor-driven stream of DOI records for a single prefix.

    Each step of the stream performs at most one page request; nothing is
    fetched ahead of the consumer.
    """

    PATH = "/dois"
    INITIAL_CURSOR = "1"  # DataCite requires page[cursor]=1 for the first page
    PAGE_SIZE = 100
    MAX_PAGE_SIZE = 1000
    MAX_PAGES = 10000

    def __init__(
        self,
        transport: RegistryTransport,
        client_id: str,
        page_size: int = PAGE_SIZE,
        max_pages: int = MAX_PAGES
    ):
        """
        Initialize the pager.

        Args:
            transport: Transport used for the page requests
            client_id: DataCite client id the listing is filtered by
            page_size: Default records per page (clamped to MAX_PAGE_SIZE)
            max_pages: Ceiling of pages fetched per prefix and run
        """
        self.transport = transport
        self.client_id = client_id
        self.page_size = self.clamp_page_size(page_size)
        self.max_pages = max_pages

    @classmethod
    def clamp_page_size(cls, page_size: int) -> int:
        return max(1, min(int(page_size), cls.MAX_PAGE_SIZE))

    def fetch_page(
        self,
        prefix: str,
        cursor: str = INITIAL_CURSOR,
        page_size: Optional[int] = None
    ) -> PageResult:
        """
        Fetch a single page of DOIs.

        Args:
            prefix: DOI prefix to list
            cursor: Pagination cursor returned by the previous page
            page_size: Records per page, silently clamped to 1000

        Returns:
            PageResult with the records and the next cursor

        Raises:
            TransportError: If the request fails
            MalformedUpstreamResponseError: If the response cannot be parsed
        """
        size = self.clamp_page_size(page_size or self.page_size)
        params = {
            "client-id": self.client_id,
            "prefix": prefix,
            "page[cursor]": cursor,
            "page[size]": size,
        }
        logger.debug(f"Requesting page for prefix {prefix} with cursor {cursor}")

        response = self.transport.get(self.PATH, params=params, context={"prefix": prefix})
        data = self.transport.json_body(response, prefix=prefix)

        records = data.get("data") or []
        if not isinstance(records, list):
            raise MalformedUpstreamResponseError(
                "DOI listing field 'data' is not a list",
                prefix=prefix, endpoint=self.transport.endpoint
            )
        context = {"prefix": prefix, "endpoint": self.transport.endpoint}
        next_url = listing_member(data, "links", **context).get("next")
        if next_url is not None and not isinstance(next_url, str):
            raise MalformedUpstreamResponseError(
                "DOI listing field 'links.next' is not a string", cursor=cursor, **context
            )
        total = listing_member(data, "meta", **context).get("total")

        return PageResult(
            records=records,
            next_cursor=extract_next_cursor(next_url),
            total=total if isinstance(total, int) else None
        )

    def pages(
        self,
        prefix: str,
        start_cursor: str = INITIAL_CURSOR,
        page_size: Optional[int] = None
    ) -> Generator[Dict[str, Any], None, PrefixResult]:
        """
        Stream all DOI records of a prefix in server order.

        Failures do not propagate past the stream: they end it and are
        recorded in the returned PrefixResult (available as the value of
        ``yield from``).

        Args:
            prefix: DOI prefix to list
            start_cursor: Cursor of the first page to fetch
            page_size: Records per page

        Yields:
            Individual DOI records

        Returns:
            PrefixResult with the number of completed pages and records
        """
        result = PrefixResult(prefix=prefix)
        cursor: Optional[str] = start_cursor

        logger.info(f"Starting DOI fetch for prefix {prefix}")

        while cursor is not None:
            if result.pages >= self.max_pages:
                result.error = PaginationError(
                    f"Page limit of {self.max_pages} reached", prefix=prefix, cursor=cursor
                )
                logger.error(f"Stopping prefix {prefix}: {result.error}")
                break

            try:
                page = self.fetch_page(prefix, cursor, page_size)
            except RegistryError as e:
                result.error = e
                logger.error(
                    f"Failed to fetch page {result.pages + 1} for prefix {prefix} "
                    f"(cursor {cursor}): {e}"
                )
                break

            result.pages += 1
            logger.debug(
                f"Fetched page {result.pages} for prefix {prefix}: "
                f"{len(page.records)} records, has next: {page.has_next}"
            )

            for record in page.records:
                result.records += 1
                yield record

            if page.next_cursor is not None and page.next_cursor == cursor:
                result.error = PaginationError(
                    "Registry returned the same cursor twice", prefix=prefix, cursor=cursor
                )
                logger.error(f"Stopping prefix {prefix}: {result.error}")
                break

            cursor = page.next_cursor
            if cursor is not None:
                self.transport.pace()

        logger.info(
            f"Completed DOI fetch for prefix {prefix}: "
            f"{result.pages} pages, {result.records} records"
        )
        return result
