"""Unit tests for cursor pagination."""

from unittest.mock import call
from urllib.parse import parse_qs, urlparse

import pytest
import responses

from doisync.api.exceptions import (
    MalformedUpstreamResponseError,
    PaginationError,
    TransportPermanentError,
)
from doisync.api.pager import CursorPager, extract_next_cursor
from doisync.api.transport import RegistryTransport


BASE_URL = "https://api.datacite.org"
DOIS_URL = f"{BASE_URL}/dois"


def make_page(dois, next_cursor=None, total=None):
    """Build a DOI listing response body."""
    body = {
        "data": [
            {"id": doi.lower(), "type": "dois", "attributes": {"doi": doi}}
            for doi in dois
        ],
        "links": {},
        "meta": {},
    }
    if next_cursor is not None:
        body["links"]["next"] = (
            f"{DOIS_URL}?client-id=tib.gfz&page%5Bcursor%5D={next_cursor}&page%5Bsize%5D=100"
        )
    if total is not None:
        body["meta"]["total"] = total
    return body


def drain(stream):
    """Consume a record stream, returning its records and its result."""
    records = []
    while True:
        try:
            records.append(next(stream))
        except StopIteration as stop:
            return records, stop.value


def query_of(index):
    return parse_qs(urlparse(responses.calls[index].request.url).query)


@pytest.fixture
def pager():
    transport = RegistryTransport(BASE_URL, "TIB.GFZ", "test_password")
    return CursorPager(transport, "tib.gfz")


class TestExtractNextCursor:
    """Test cursor extraction from next links."""

    def test_encoded_bracket_form(self):
        url = f"{DOIS_URL}?page%5Bcursor%5D=MTYzNTQ2MjQ0MDAwMCwxMC41ODgw&page%5Bsize%5D=100"

        assert extract_next_cursor(url) == "MTYzNTQ2MjQ0MDAwMCwxMC41ODgw"

    def test_plain_bracket_form(self):
        assert extract_next_cursor(f"{DOIS_URL}?page[cursor]=abc&page[size]=100") == "abc"

    def test_flat_form(self):
        assert extract_next_cursor(f"{DOIS_URL}?cursor=xyz") == "xyz"

    def test_bracket_form_wins(self):
        assert extract_next_cursor(f"{DOIS_URL}?cursor=flat&page%5Bcursor%5D=bracket") == "bracket"

    @pytest.mark.parametrize("url", [
        None,
        "",
        f"{DOIS_URL}?page%5Bsize%5D=100",
        f"{DOIS_URL}?page%5Bcursor%5D=",
    ])
    def test_no_cursor(self, url):
        assert extract_next_cursor(url) is None


class TestFetchPage:
    """Test single page requests."""

    @responses.activate
    def test_request_parameters(self, pager):
        responses.add(
            responses.GET, DOIS_URL,
            json=make_page(["10.5880/GFZ.1"], next_cursor="c2", total=250), status=200
        )

        page = pager.fetch_page("10.5880")

        query = query_of(0)
        assert query["client-id"] == ["tib.gfz"]
        assert query["prefix"] == ["10.5880"]
        assert query["page[cursor]"] == ["1"]
        assert query["page[size]"] == ["100"]
        assert len(page.records) == 1
        assert page.next_cursor == "c2"
        assert page.has_next is True
        assert page.total == 250

    @responses.activate
    def test_page_size_clamped(self, pager):
        responses.add(responses.GET, DOIS_URL, json=make_page([]), status=200)

        page = pager.fetch_page("10.5880", page_size=5000)

        assert query_of(0)["page[size]"] == ["1000"]
        assert page.has_next is False

    def test_clamp_page_size_bounds(self):
        assert CursorPager.clamp_page_size(0) == 1
        assert CursorPager.clamp_page_size(250) == 250
        assert CursorPager.clamp_page_size(1001) == 1000

    @responses.activate
    def test_data_not_a_list(self, pager):
        responses.add(responses.GET, DOIS_URL, json={"data": {"id": "x"}}, status=200)

        with pytest.raises(MalformedUpstreamResponseError):
            pager.fetch_page("10.5880")


class TestPages:
    """Test the lazy record stream of a prefix."""

    @responses.activate
    def test_follows_cursors_until_exhausted(self, pager, mock_sleep):
        """Test that cursors 1 -> c2 -> c3 -> none take exactly three requests."""
        responses.add(responses.GET, DOIS_URL, json=make_page(["10.5880/A", "10.5880/B"], "c2"))
        responses.add(responses.GET, DOIS_URL, json=make_page(["10.5880/C"], "c3"))
        responses.add(responses.GET, DOIS_URL, json=make_page(["10.5880/D"]))

        records, result = drain(pager.pages("10.5880"))

        assert [r["attributes"]["doi"] for r in records] == [
            "10.5880/A", "10.5880/B", "10.5880/C", "10.5880/D"
        ]
        assert len(responses.calls) == 3
        assert [query_of(i)["page[cursor]"] for i in range(3)] == [["1"], ["c2"], ["c3"]]
        assert mock_sleep.call_args_list == [call(0.2), call(0.2)]
        assert result.ok
        assert result.pages == 3
        assert result.records == 4

    @responses.activate
    def test_lazy_fetching(self, pager, mock_sleep):
        """Test that no page is requested before the consumer asks for it."""
        responses.add(responses.GET, DOIS_URL, json=make_page(["10.5880/A"], "c2"))
        responses.add(responses.GET, DOIS_URL, json=make_page(["10.5880/B"]))

        stream = pager.pages("10.5880")
        assert len(responses.calls) == 0

        next(stream)
        assert len(responses.calls) == 1

        stream.close()
        assert len(responses.calls) == 1

    @responses.activate
    def test_empty_page_with_next_cursor_continues(self, pager, mock_sleep):
        responses.add(responses.GET, DOIS_URL, json=make_page([], "c2"))
        responses.add(responses.GET, DOIS_URL, json=make_page(["10.5880/A"]))

        records, result = drain(pager.pages("10.5880"))

        assert len(records) == 1
        assert result.pages == 2
        assert result.ok

    @responses.activate
    def test_empty_prefix(self, pager, mock_sleep):
        responses.add(responses.GET, DOIS_URL, json=make_page([]))

        records, result = drain(pager.pages("10.5880"))

        assert records == []
        assert result.ok
        assert result.pages == 1
        mock_sleep.assert_not_called()

    @responses.activate
    def test_repeated_cursor_stops(self, pager, mock_sleep):
        responses.add(responses.GET, DOIS_URL, json=make_page(["10.5880/A"], "c2"))
        responses.add(responses.GET, DOIS_URL, json=make_page(["10.5880/B"], "c2"))

        records, result = drain(pager.pages("10.5880"))

        assert len(records) == 2
        assert len(responses.calls) == 2
        assert isinstance(result.error, PaginationError)
        assert result.error.context["cursor"] == "c2"

    @responses.activate
    def test_page_ceiling(self, mock_sleep):
        transport = RegistryTransport(BASE_URL, "TIB.GFZ", "test_password")
        pager = CursorPager(transport, "tib.gfz", max_pages=2)
        responses.add(responses.GET, DOIS_URL, json=make_page(["10.5880/A"], "c2"))
        responses.add(responses.GET, DOIS_URL, json=make_page(["10.5880/B"], "c3"))
        responses.add(responses.GET, DOIS_URL, json=make_page(["10.5880/C"]))

        records, result = drain(pager.pages("10.5880"))

        assert len(records) == 2
        assert len(responses.calls) == 2
        assert isinstance(result.error, PaginationError)
        assert not result.ok

    @responses.activate
    def test_error_mid_stream_keeps_yielded_records(self, pager, mock_sleep):
        responses.add(responses.GET, DOIS_URL, json=make_page(["10.5880/A", "10.5880/B"], "c2"))
        responses.add(responses.GET, DOIS_URL, json={"errors": [{"title": "Forbidden"}]}, status=403)

        records, result = drain(pager.pages("10.5880"))

        assert len(records) == 2
        assert result.pages == 1
        assert isinstance(result.error, TransportPermanentError)
        assert result.error.status_code == 403
        assert result.error.context["prefix"] == "10.5880"

    @responses.activate
    def test_start_cursor(self, pager, mock_sleep):
        responses.add(responses.GET, DOIS_URL, json=make_page(["10.5880/Z"]))

        drain(pager.pages("10.5880", start_cursor="resume"))

        assert query_of(0)["page[cursor]"] == ["resume"]


class TestMalformedListing:
    """Test listings whose links or meta members have the wrong shape."""

    @pytest.mark.parametrize("body", [
        {"data": [], "links": "garbage"},
        {"data": [], "links": ["next"]},
        {"data": [], "meta": "garbage"},
        {"data": [], "links": {"next": 42}},
    ])
    @responses.activate
    def test_fetch_page_rejects_member(self, pager, body):
        responses.add(responses.GET, DOIS_URL, json=body, status=200)

        with pytest.raises(MalformedUpstreamResponseError) as exc_info:
            pager.fetch_page("10.5880")

        assert exc_info.value.context["prefix"] == "10.5880"
        assert exc_info.value.context["endpoint"] == BASE_URL

    @responses.activate
    def test_null_members_are_empty(self, pager):
        responses.add(
            responses.GET, DOIS_URL, json={"data": [], "links": None, "meta": None}, status=200
        )

        page = pager.fetch_page("10.5880")

        assert page.has_next is False
        assert page.total is None

    @responses.activate
    def test_stream_ends_with_error(self, pager, mock_sleep):
        responses.add(
            responses.GET, DOIS_URL,
            json={"data": [{"id": "10.5880/gfz.a"}], "links": "garbage"}, status=200
        )

        records, result = drain(pager.pages("10.5880"))

        assert records == []
        assert isinstance(result.error, MalformedUpstreamResponseError)
