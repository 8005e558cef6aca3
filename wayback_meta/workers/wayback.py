"""Wayback Machine CDX index access.

Builds CDX queries, decodes the ``output=json`` table into
:class:`SnapshotRecord` objects and constructs ``id_`` snapshot URLs.
Network access goes through :func:`wayback_meta.workers.fetcher.fetch`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

import httpx
from pydantic import ValidationError

from wayback_meta.core.config import settings
from wayback_meta.models.snapshot.document import DiscoveredURL, SnapshotRecord
from wayback_meta.workers.fetcher import fetch

logger = logging.getLogger(__name__)

INDEX_FIELDS: tuple[str, ...] = (
    "timestamp",
    "original",
    "mimetype",
    "statuscode",
    "digest",
    "length",
)
DISCOVERY_FIELDS: tuple[str, ...] = ("timestamp", "original")

_HTML_OK_FILTERS = (
    ("filter", "mimetype:text/html"),
    ("filter", "statuscode:200"),
)


class IndexFormatError(ValueError):
    """The CDX answer does not match the requested table layout."""


@dataclass(frozen=True)
class IndexQuery:
    """A CDX request: endpoint plus ordered (possibly repeated) parameters."""

    url: str
    params: tuple[tuple[str, str], ...]

    @property
    def full_url(self) -> str:
        return str(httpx.URL(self.url, params=list(self.params)))


def build_index_query(domain: str, count: int, dedupe: bool = False) -> IndexQuery:
    """Query for the last *count* HTML captures of *domain* with status 200.

    ``limit=-N`` asks the index for the N most recent rows.  With *dedupe*,
    ``collapse=digest`` merges consecutive captures of identical content so
    the answer holds the last N distinct content versions.
    """
    if count < 1:
        raise ValueError(f"count must be positive, got {count}")
    params: list[tuple[str, str]] = [
        ("url", domain),
        ("output", "json"),
        *_HTML_OK_FILTERS,
        ("fl", ",".join(INDEX_FIELDS)),
        ("fastLatest", "true"),
        ("limit", f"-{count}"),
    ]
    if dedupe:
        params.append(("collapse", "digest"))
    return IndexQuery(url=settings.cdx_api_url, params=tuple(params))


def build_discovery_query(domain: str, limit: int) -> IndexQuery:
    """Query for the distinct archived HTML URLs under *domain*."""
    params = (
        ("url", f"{domain}/*"),
        ("output", "json"),
        *_HTML_OK_FILTERS,
        ("fl", ",".join(DISCOVERY_FIELDS)),
        ("limit", str(limit)),
        ("collapse", "urlkey"),
    )
    return IndexQuery(url=settings.cdx_api_url, params=params)


def snapshot_url(
    timestamp: str, original_url: str, archive_base: str | None = None
) -> str:
    """URL of the unmodified archived document (``id_`` mode, no playback chrome)."""
    base = (archive_base or settings.archive_base_url).rstrip("/")
    return f"{base}/web/{timestamp}id_/{original_url}"


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _table_rows(payload: Any, fields: tuple[str, ...]) -> list[list[Any]]:
    """Validate the header row against *fields* and return the data rows."""
    if payload in (None, ""):
        return []
    if not isinstance(payload, list):
        raise IndexFormatError(f"expected a JSON array, got {type(payload).__name__}")
    if not payload:
        return []

    header, *rows = payload
    if not isinstance(header, list) or header != list(fields):
        raise IndexFormatError(f"unexpected header {header!r}, expected {list(fields)!r}")
    for row in rows:
        if not isinstance(row, list) or len(row) != len(fields):
            raise IndexFormatError(f"malformed index row {row!r}")
    return rows


def parse_index_rows(
    payload: Any, fields: tuple[str, ...] = INDEX_FIELDS
) -> list[SnapshotRecord]:
    """Decode a CDX JSON table into records, discarding the header row."""
    records = []
    for row in _table_rows(payload, fields):
        values = dict(zip(fields, row))
        try:
            record = SnapshotRecord(
                timestamp=str(values["timestamp"]),
                original_url=str(values["original"]),
                mime_type=str(values["mimetype"]),
                status_code=_to_int(values["statuscode"]),
                digest=str(values["digest"]),
                length=_to_int(values["length"]),
            )
        except ValidationError as exc:
            raise IndexFormatError(f"malformed index row {row!r}: {exc}") from exc
        records.append(record)
    return records


def collapse_digests(records: Iterable[SnapshotRecord]) -> list[SnapshotRecord]:
    """Drop records whose digest repeats the immediately preceding one."""
    collapsed: list[SnapshotRecord] = []
    for record in records:
        if collapsed and collapsed[-1].digest == record.digest:
            continue
        collapsed.append(record)
    return collapsed


async def _query(query: IndexQuery) -> Any:
    response = await fetch(
        query.url, params=list(query.params), timeout=settings.index_timeout
    )
    if not response.text.strip():
        return []
    try:
        return response.json()
    except ValueError as exc:
        raise IndexFormatError(f"index answer is not JSON: {exc}") from exc


async def fetch_snapshot_records(
    domain: str, count: int, dedupe: bool = False
) -> list[SnapshotRecord]:
    """Return the last *count* snapshot records of *domain*, most recent first.

    Raises:
        FetchError: the index could not be reached after retries.
        IndexFormatError: the index answered with an unexpected table.
    """
    records = parse_index_rows(await _query(build_index_query(domain, count, dedupe)))
    if dedupe:
        records = collapse_digests(records)
    logger.debug("Index returned %d record(s) for %s", len(records), domain)
    return records


async def discover_urls(domain: str, limit: int | None = None) -> list[DiscoveredURL]:
    """List the distinct archived HTML URLs of *domain* from its index."""
    query = build_discovery_query(domain, limit or settings.discovery_limit)
    urls = []
    for ts, original in _table_rows(await _query(query), DISCOVERY_FIELDS):
        try:
            urls.append(
                DiscoveredURL(
                    timestamp=str(ts),
                    original_url=str(original),
                    archive_url=snapshot_url(str(ts), str(original)),
                )
            )
        except ValidationError as exc:
            raise IndexFormatError(f"malformed index row {[ts, original]!r}: {exc}") from exc
    return urls
