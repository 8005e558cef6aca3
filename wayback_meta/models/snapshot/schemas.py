from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import AliasChoices, BaseModel, Field, field_validator

from wayback_meta.core.config import settings
from wayback_meta.models.snapshot.document import DiscoveredURL, DomainResult


class ExtractRequest(BaseModel):
    """Request body for POST /api/extract and POST /api/extract/bulk.

    The legacy field names (``n``, ``unique``, ``analyzeContent``, ``apiKey``)
    are accepted as aliases.
    """

    domains: list[str]
    count: int = Field(default=5, ge=1, validation_alias=AliasChoices("count", "n"))
    dedupe: bool = Field(default=False, validation_alias=AliasChoices("dedupe", "unique"))
    classify: bool = Field(
        default=False, validation_alias=AliasChoices("classify", "analyzeContent")
    )
    credential: str | None = Field(
        default=None, validation_alias=AliasChoices("credential", "apiKey")
    )
    include_html: bool = False

    @field_validator("domains")
    @classmethod
    def _clean_domains(cls, value: list[str]) -> list[str]:
        # Strip, drop blanks and repeats, keep first-seen order.
        domains = list(dict.fromkeys(d.strip() for d in value if d and d.strip()))
        if not domains:
            raise ValueError("at least one domain is required")
        if len(domains) > settings.max_domains:
            raise ValueError(
                f"too many domains: {len(domains)} (max {settings.max_domains})"
            )
        return domains

    @field_validator("count")
    @classmethod
    def _cap_count(cls, value: int) -> int:
        if value > settings.max_snapshots:
            raise ValueError(
                f"count must be at most {settings.max_snapshots}, got {value}"
            )
        return value


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------


class ProgressEvent(BaseModel):
    type: Literal["progress"] = "progress"
    domain: str


class ResultEvent(BaseModel):
    type: Literal["result"] = "result"
    data: DomainResult


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    domain: str
    message: str


StreamEvent = Annotated[
    Union[ProgressEvent, ResultEvent, ErrorEvent], Field(discriminator="type")
]


# ---------------------------------------------------------------------------
# Bulk / discovery responses
# ---------------------------------------------------------------------------


class DomainError(BaseModel):
    domain: str
    error: str


class BulkMeta(BaseModel):
    total: int
    successful: int
    failed: int


class BulkExtractResponse(BaseModel):
    data: list[DomainResult]
    errors: list[DomainError]
    meta: BulkMeta


class DiscoverResponse(BaseModel):
    domain: str
    urls: list[DiscoveredURL]
