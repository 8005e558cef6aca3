from __future__ import annotations

import json
import time
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx
from bs4.builder import ParserRejectedMarkup

from wayback_meta.core.categories import SUSPECT_LABEL
from wayback_meta.core.config import settings
from wayback_meta.models.snapshot.document import ExtractedMetadata, SnapshotRecord
from wayback_meta.workers.classifier import coerce_label, request_category
from wayback_meta.workers.extractor import extract_metadata, strip_archive_chrome
from wayback_meta.workers.fetcher import FetchError, UpstreamStatusError, fetch
from wayback_meta.workers.wayback import (
    INDEX_FIELDS,
    IndexFormatError,
    build_discovery_query,
    build_index_query,
    collapse_digests,
    discover_urls,
    fetch_snapshot_records,
    parse_index_rows,
    snapshot_url,
)

_URL = "https://example.com/"
_HEADER = list(INDEX_FIELDS)


def _row(ts: str, digest: str, url: str = "http://example.com/") -> list[str]:
    return [ts, url, "text/html", "200", digest, "1234"]


def _record(ts: str, digest: str) -> SnapshotRecord:
    return SnapshotRecord(
        timestamp=ts,
        original_url="http://example.com/",
        mime_type="text/html",
        status_code=200,
        digest=digest,
        length=1234,
    )


# ---------------------------------------------------------------------------
# Fetcher tests
# ---------------------------------------------------------------------------


class TestFetcher:
    @respx.mock
    async def test_successful_fetch(self):
        respx.get(_URL).mock(return_value=httpx.Response(200, text="<html></html>"))
        response = await fetch(_URL)
        assert response.status_code == 200
        assert response.text == "<html></html>"

    @respx.mock
    async def test_sends_identifying_user_agent_and_extra_headers(self):
        route = respx.get(_URL).mock(return_value=httpx.Response(200))
        await fetch(_URL, headers={"X-Trace": "abc"})
        request = route.calls.last.request
        assert request.headers["User-Agent"] == settings.user_agent
        assert request.headers["X-Trace"] == "abc"

    @respx.mock
    async def test_503_twice_then_200_backs_off_exponentially(self):
        route = respx.get(_URL).mock(
            side_effect=[
                httpx.Response(503),
                httpx.Response(503),
                httpx.Response(200, text="ok"),
            ]
        )
        with patch("wayback_meta.workers.fetcher._sleep", new_callable=AsyncMock) as sleep:
            response = await fetch(_URL, backoff_base=0.4)
        assert response.status_code == 200
        assert route.call_count == 3
        waits = [call.args[0] for call in sleep.await_args_list]
        assert waits == [pytest.approx(0.4), pytest.approx(0.8)]

    @respx.mock
    async def test_backoff_introduces_real_delay(self):
        respx.get(_URL).mock(
            side_effect=[httpx.Response(503), httpx.Response(503), httpx.Response(200)]
        )
        base = 0.02
        started = time.monotonic()
        await fetch(_URL, backoff_base=base)
        assert time.monotonic() - started >= base + base * 2

    @respx.mock
    async def test_404_fails_immediately(self):
        route = respx.get(_URL).mock(return_value=httpx.Response(404, text="gone"))
        with patch("wayback_meta.workers.fetcher._sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(FetchError) as info:
                await fetch(_URL)
        assert route.call_count == 1
        sleep.assert_not_awaited()
        cause = info.value.last_cause
        assert isinstance(cause, UpstreamStatusError)
        assert cause.status_code == 404
        assert "HTTP 404" in str(info.value)
        assert "gone" in str(info.value)

    @respx.mock
    async def test_429_is_retried(self):
        route = respx.get(_URL).mock(
            side_effect=[httpx.Response(429), httpx.Response(200)]
        )
        response = await fetch(_URL)
        assert response.status_code == 200
        assert route.call_count == 2

    @respx.mock
    async def test_exhausted_5xx_carries_truncated_body(self):
        route = respx.get(_URL).mock(return_value=httpx.Response(500, text="x" * 500))
        with pytest.raises(FetchError) as info:
            await fetch(_URL, max_retries=2)
        assert route.call_count == 3
        cause = info.value.last_cause
        assert isinstance(cause, UpstreamStatusError)
        assert cause.body == "x" * 200
        assert info.value.url == _URL

    @respx.mock
    async def test_timeout_retries_and_raises(self):
        route = respx.get(_URL).mock(side_effect=httpx.ConnectTimeout("timed out"))
        with pytest.raises(FetchError) as info:
            await fetch(_URL, max_retries=1)
        assert route.call_count == 2
        assert isinstance(info.value.last_cause, httpx.ConnectTimeout)

    @respx.mock
    async def test_connect_error_uses_configured_retry_bound(self, monkeypatch):
        monkeypatch.setattr(settings, "http_max_retries", 2)
        route = respx.get(_URL).mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(FetchError, match="refused"):
            await fetch(_URL)
        assert route.call_count == 3

    async def test_invalid_url_raises_fetch_error(self):
        with patch("wayback_meta.workers.fetcher.get_http_client") as mock_get:
            mock_client = AsyncMock()
            mock_client.get = AsyncMock(side_effect=httpx.InvalidURL("invalid url"))
            mock_get.return_value = mock_client
            with pytest.raises(FetchError, match="invalid URL"):
                await fetch("not-a-url")
        assert mock_client.get.await_count == 1


# ---------------------------------------------------------------------------
# Index query tests
# ---------------------------------------------------------------------------


class TestIndexQuery:
    def test_query_parameters(self):
        query = build_index_query("example.com", 5)
        assert query.url == settings.cdx_api_url
        assert query.params == (
            ("url", "example.com"),
            ("output", "json"),
            ("filter", "mimetype:text/html"),
            ("filter", "statuscode:200"),
            ("fl", "timestamp,original,mimetype,statuscode,digest,length"),
            ("fastLatest", "true"),
            ("limit", "-5"),
        )

    def test_dedupe_adds_digest_collapse(self):
        query = build_index_query("example.com", 3, dedupe=True)
        assert ("collapse", "digest") in query.params
        assert ("limit", "-3") in query.params

    def test_full_url_encodes_repeated_params(self):
        url = httpx.URL(build_index_query("exa mple.com/a&b", 2).full_url)
        assert url.params.get_list("filter") == ["mimetype:text/html", "statuscode:200"]
        assert url.params["url"] == "exa mple.com/a&b"

    def test_non_positive_count_rejected(self):
        with pytest.raises(ValueError):
            build_index_query("example.com", 0)

    def test_discovery_query(self):
        query = build_discovery_query("example.com", 100)
        params = dict(query.params)
        assert params["url"] == "example.com/*"
        assert params["collapse"] == "urlkey"
        assert params["fl"] == "timestamp,original"
        assert params["limit"] == "100"

    def test_snapshot_url_uses_id_mode(self):
        assert (
            snapshot_url("20240102030405", "http://example.com/page")
            == "https://web.archive.org/web/20240102030405id_/http://example.com/page"
        )

    def test_snapshot_url_custom_base(self):
        assert snapshot_url("1", "u", "http://archive.test/") == "http://archive.test/web/1id_/u"


class TestParseIndexRows:
    def test_header_discarded_and_rows_decoded(self):
        records = parse_index_rows([_HEADER, _row("20240101000000", "AAA")])
        assert records == [_record("20240101000000", "AAA")]

    def test_non_numeric_length_decodes_to_zero(self):
        row = ["20240101000000", "http://example.com/", "text/html", "200", "AAA", "-"]
        assert parse_index_rows([_HEADER, row])[0].length == 0

    @pytest.mark.parametrize("payload", [[], None, ""])
    def test_empty_payload(self, payload):
        assert parse_index_rows(payload) == []

    def test_header_only(self):
        assert parse_index_rows([_HEADER]) == []

    def test_header_mismatch_rejected(self):
        with pytest.raises(IndexFormatError):
            parse_index_rows([["timestamp", "original"], ["1", "u"]])

    def test_short_row_rejected(self):
        with pytest.raises(IndexFormatError):
            parse_index_rows([_HEADER, ["20240101000000", "http://example.com/"]])

    def test_non_list_rejected(self):
        with pytest.raises(IndexFormatError):
            parse_index_rows({"rows": []})

    @pytest.mark.parametrize("payload", [[1], [1, ["20240101000000"]], ["timestamp"], [None]])
    def test_non_list_header_rejected(self, payload):
        with pytest.raises(IndexFormatError):
            parse_index_rows(payload)

    @pytest.mark.parametrize("timestamp", ["2024", "2024-01-01T00:00", "20240101000000x", ""])
    def test_malformed_timestamp_rejected(self, timestamp):
        row = [timestamp, "http://example.com/", "text/html", "200", "AAA", "1234"]
        with pytest.raises(IndexFormatError, match="malformed index row"):
            parse_index_rows([_HEADER, row])

    def test_collapse_digests_only_drops_consecutive(self):
        records = [
            _record("20240104000000", "A"),
            _record("20240103000000", "A"),
            _record("20240102000000", "B"),
            _record("20240101000000", "A"),
        ]
        assert [r.timestamp for r in collapse_digests(records)] == [
            "20240104000000",
            "20240102000000",
            "20240101000000",
        ]


class TestFetchSnapshotRecords:
    @respx.mock
    async def test_returns_every_row(self):
        route = respx.get(settings.cdx_api_url).mock(
            return_value=httpx.Response(
                200,
                json=[_HEADER, _row("20240103000000", "A"), _row("20240102000000", "B")],
            )
        )
        records = await fetch_snapshot_records("example.com", 2)
        assert [r.digest for r in records] == ["A", "B"]
        params = route.calls.last.request.url.params
        assert params["limit"] == "-2"
        assert "collapse" not in params

    @respx.mock
    async def test_dedupe_never_repeats_consecutive_digest(self):
        route = respx.get(settings.cdx_api_url).mock(
            return_value=httpx.Response(
                200,
                json=[
                    _HEADER,
                    _row("20240104000000", "A"),
                    _row("20240103000000", "A"),
                    _row("20240102000000", "B"),
                ],
            )
        )
        records = await fetch_snapshot_records("example.com", 3, dedupe=True)
        assert route.calls.last.request.url.params["collapse"] == "digest"
        digests = [r.digest for r in records]
        assert all(a != b for a, b in zip(digests, digests[1:]))

    @respx.mock
    async def test_empty_body_means_no_records(self):
        respx.get(settings.cdx_api_url).mock(return_value=httpx.Response(200, text=""))
        assert await fetch_snapshot_records("example.com", 5) == []

    @respx.mock
    async def test_non_json_body_rejected(self):
        respx.get(settings.cdx_api_url).mock(
            return_value=httpx.Response(200, text="<html>maintenance</html>")
        )
        with pytest.raises(IndexFormatError):
            await fetch_snapshot_records("example.com", 5)

    @respx.mock
    async def test_index_failure_raises_fetch_error(self):
        respx.get(settings.cdx_api_url).mock(return_value=httpx.Response(400, text="bad"))
        with pytest.raises(FetchError):
            await fetch_snapshot_records("example.com", 5)

    @respx.mock
    async def test_discover_urls(self):
        respx.get(settings.cdx_api_url).mock(
            return_value=httpx.Response(
                200,
                json=[
                    ["timestamp", "original"],
                    ["20240101000000", "http://example.com/"],
                    ["20240102000000", "http://example.com/about"],
                ],
            )
        )
        urls = await discover_urls("example.com")
        assert [u.original_url for u in urls] == [
            "http://example.com/",
            "http://example.com/about",
        ]
        assert urls[1].archive_url.endswith("/web/20240102000000id_/http://example.com/about")

    @pytest.mark.parametrize(
        "payload",
        [[1], [["timestamp", "original"], ["not-a-timestamp", "http://example.com/"]]],
    )
    @respx.mock
    async def test_discover_urls_rejects_malformed_table(self, payload):
        respx.get(settings.cdx_api_url).mock(return_value=httpx.Response(200, json=payload))
        with pytest.raises(IndexFormatError):
            await discover_urls("example.com")


# ---------------------------------------------------------------------------
# Extractor tests
# ---------------------------------------------------------------------------


_FULL_DOC = """<!DOCTYPE html>
<html><head>
  <title>  Example Domain  </title>
  <meta name="description" content="An example page">
  <link rel="canonical" href="https://example.com/">
  <meta name="robots" content="noindex, nofollow">
  <meta property="og:title" content="OG Example">
  <meta property="og:description" content="OG description">
</head><body><h1>One</h1><div><h1>Two</h1></div><h1>Three</h1></body></html>
"""


class TestExtractor:
    def test_title_and_headings_without_meta(self):
        meta = extract_metadata("<title>Hello</title><h1>a</h1><h1>b</h1>")
        assert meta.model_dump() == {
            "title": "Hello",
            "description": "",
            "canonical_url": "",
            "robots": "",
            "og_title": "",
            "og_description": "",
            "h1_count": 2,
        }

    def test_all_fields(self):
        meta = extract_metadata(_FULL_DOC)
        assert meta.title == "Example Domain"
        assert meta.description == "An example page"
        assert meta.canonical_url == "https://example.com/"
        assert meta.robots == "noindex, nofollow"
        assert meta.og_title == "OG Example"
        assert meta.og_description == "OG description"
        assert meta.h1_count == 3

    def test_first_title_wins(self):
        assert extract_metadata("<title>First</title><title>Second</title>").title == "First"

    def test_bytes_input(self):
        assert extract_metadata(b"<title>Bytes</title>").title == "Bytes"

    @pytest.mark.parametrize(
        "markup",
        ["", "not html at all", "<html><head><title>Unclosed", "<<<>>><meta name=>", "\x00\xff"],
    )
    def test_malformed_markup_never_raises(self, markup):
        meta = extract_metadata(markup)
        assert meta.h1_count >= 0

    def test_meta_without_content_is_empty(self):
        assert extract_metadata('<meta name="description">').description == ""

    def test_strip_archive_chrome(self):
        html = (
            "<html><head>"
            '<script src="https://web.archive.org/_static/js/wombat.js"></script>'
            '<link rel="stylesheet" href="https://web.archive.org/_static/css/banner.css">'
            "<title>Kept</title></head><body>"
            '<div id="wm-ipp-base"><div id="wm-ipp">toolbar</div></div>'
            '<div id="donato">donate</div>'
            '<div class="wb-autocomplete-suggestions"></div>'
            "<h1>Content</h1></body></html>"
        )
        cleaned = strip_archive_chrome(html)
        assert "web.archive.org" not in cleaned
        assert "toolbar" not in cleaned
        assert "donate" not in cleaned
        assert "wb-autocomplete" not in cleaned
        assert "<h1>Content</h1>" in cleaned
        assert extract_metadata(cleaned).title == "Kept"

    def test_marked_section_falls_back_to_lenient_parser(self):
        html = (
            "<html><head><title>Kept Title</title></head>"
            "<body><h1>a</h1><![ if !IE ]>x<![ endif ]></body></html>"
        )
        meta = extract_metadata(html)
        assert meta.title == "Kept Title"
        assert meta.h1_count == 1
        cleaned = strip_archive_chrome(html)
        assert cleaned is not None
        assert extract_metadata(cleaned).title == "Kept Title"

    def test_document_rejected_by_every_parser(self):
        with patch(
            "wayback_meta.workers.extractor.BeautifulSoup",
            side_effect=ParserRejectedMarkup("rejected"),
        ):
            assert extract_metadata("<title>x</title>") == ExtractedMetadata()
            assert strip_archive_chrome("<title>x</title>") is None


# ---------------------------------------------------------------------------
# External classifier tests
# ---------------------------------------------------------------------------


def _completion(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


class TestExternalClassifier:
    @respx.mock
    async def test_valid_label_returned(self):
        route = respx.post(settings.classifier_api_url).mock(return_value=_completion(" Gambling\n"))
        label = await request_category("Best odds", "Bet now", "odds.example", "secret")
        assert label == "Gambling"
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer secret"
        body = json.loads(request.content)
        assert body["model"] == settings.classifier_model
        assert "Best odds" in body["messages"][0]["content"]
        assert "odds.example" in body["messages"][0]["content"]

    @respx.mock
    async def test_unknown_label_coerced_to_suspect(self):
        respx.post(settings.classifier_api_url).mock(return_value=_completion("Probably spam?"))
        assert await request_category("t", "d", "x.example", "k") == SUSPECT_LABEL

    @respx.mock
    async def test_empty_reply_is_no_enrichment(self):
        respx.post(settings.classifier_api_url).mock(return_value=_completion("   "))
        assert await request_category("t", "d", "x.example", "k") is None

    @respx.mock
    async def test_http_error_is_swallowed(self):
        respx.post(settings.classifier_api_url).mock(return_value=httpx.Response(500))
        assert await request_category("t", "d", "x.example", "k") is None

    @respx.mock
    async def test_transport_error_is_swallowed(self):
        respx.post(settings.classifier_api_url).mock(side_effect=httpx.ConnectError("down"))
        assert await request_category("t", "d", "x.example", "k") is None

    @respx.mock
    async def test_malformed_reply_is_swallowed(self):
        respx.post(settings.classifier_api_url).mock(
            return_value=httpx.Response(200, json={"unexpected": True})
        )
        assert await request_category("t", "d", "x.example", "k") is None

    async def test_missing_title_or_credential_skips_call(self):
        with patch("wayback_meta.workers.classifier.get_http_client") as mock_get:
            assert await request_category("", "d", "x.example", "k") is None
            assert await request_category("t", "d", "x.example", "") is None
        mock_get.assert_not_called()

    def test_coerce_label(self):
        assert coerce_label('"Tech"') == "Tech"
        assert coerce_label("tech") == SUSPECT_LABEL
