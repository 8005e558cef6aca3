from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class SnapshotRecord(BaseModel):
    """One row of the CDX index, decoded positionally.

    Immutable once created; see ``wayback_meta.workers.wayback.INDEX_FIELDS``
    for the column order.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: str = Field(pattern=r"^\d{14}$")
    original_url: str
    mime_type: str
    status_code: int
    digest: str
    length: int = 0


class ExtractedMetadata(BaseModel):
    """Structured fields pulled from one archived HTML document.

    Every string defaults to ``""``; a missing element is not an error.
    """

    title: str = ""
    description: str = ""
    canonical_url: str = ""
    robots: str = ""
    og_title: str = ""
    og_description: str = ""
    h1_count: int = Field(default=0, ge=0)


class SnapshotResult(SnapshotRecord, ExtractedMetadata):
    """Index row + extracted metadata for one snapshot.

    ``error`` is set only when fetching or extracting failed; the metadata
    fields then hold their defaults so batches stay positionally aligned.
    """

    model_config = ConfigDict(frozen=False)

    archive_url: str
    category: str | None = None
    heuristic_category: str | None = None
    suspicious: bool | None = None
    html: str | None = None
    error: str | None = None

    @classmethod
    def from_parts(
        cls,
        record: SnapshotRecord,
        archive_url: str,
        metadata: ExtractedMetadata | None = None,
        **extra: object,
    ) -> SnapshotResult:
        fields = record.model_dump()
        if metadata is not None:
            fields.update(metadata.model_dump())
        return cls(archive_url=archive_url, **fields, **extra)


class DomainResult(BaseModel):
    domain: str
    snapshots: list[SnapshotResult] = Field(default_factory=list)


class DiscoveredURL(BaseModel):
    timestamp: str = Field(pattern=r"^\d{14}$")
    original_url: str
    archive_url: str
