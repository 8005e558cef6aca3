from __future__ import annotations

import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from wayback_meta.core.config import settings
from wayback_meta.models.common import ErrorResponse
from wayback_meta.models.snapshot.schemas import (
    BulkExtractResponse,
    DiscoverResponse,
    ExtractRequest,
)
from wayback_meta.services.extraction.protocol import MEDIA_TYPE, encode_event
from wayback_meta.services.extraction.service import ExtractionService
from wayback_meta.workers.fetcher import FetchError
from wayback_meta.workers.wayback import IndexFormatError, discover_urls

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["extraction"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def _get_service() -> ExtractionService:
    """FastAPI dependency that builds an ``ExtractionService`` for each request."""
    return ExtractionService()


def _resolve_credential(request: ExtractRequest) -> str | None:
    """Classifier credential for this request: request value, then configured key."""
    if not request.classify:
        return None
    if request.credential:
        return request.credential
    if settings.classifier_api_key is not None:
        return settings.classifier_api_key.get_secret_value()
    return None


# ---------------------------------------------------------------------------
# POST /api/extract
# ---------------------------------------------------------------------------


@router.post(
    "/extract",
    response_class=StreamingResponse,
    summary="Stream snapshot metadata for a batch of domains",
)
async def post_extract(
    request: ExtractRequest,
    service: ExtractionService = Depends(_get_service),
) -> StreamingResponse:
    """Process every domain and stream newline-delimited JSON events.

    Each domain yields a ``progress`` event, then either a ``result`` event
    (snapshot failures embedded) or an ``error`` event when its index query
    failed.

    - **200** : stream started
    - **422** : empty domain list, too many domains or invalid count
    """
    credential = _resolve_credential(request)
    logger.info(
        "Extract stream: %d domain(s), count=%d, dedupe=%s, classify=%s",
        len(request.domains),
        request.count,
        request.dedupe,
        request.classify,
    )

    async def body() -> AsyncIterator[str]:
        async for event in service.stream(request, credential):
            yield encode_event(event)

    return StreamingResponse(body(), media_type=MEDIA_TYPE)


# ---------------------------------------------------------------------------
# POST /api/extract/bulk
# ---------------------------------------------------------------------------


@router.post(
    "/extract/bulk",
    response_model=BulkExtractResponse,
    summary="Extract snapshot metadata for a batch of domains in one response",
)
async def post_extract_bulk(
    request: ExtractRequest,
    service: ExtractionService = Depends(_get_service),
) -> BulkExtractResponse:
    """Blocking variant of ``POST /api/extract`` for callers without stream support.

    - **200** : batch complete; per-domain failures listed under ``errors``
    - **422** : empty domain list, too many domains or invalid count
    """
    return await service.collect(request, _resolve_credential(request))


# ---------------------------------------------------------------------------
# GET /api/discover/{domain}
# ---------------------------------------------------------------------------


@router.get(
    "/discover/{domain}",
    response_model=DiscoverResponse,
    responses={502: {"model": ErrorResponse}},
    summary="List the distinct archived URLs of a domain",
)
async def get_discover(
    domain: str,
    limit: int | None = Query(default=None, ge=1, le=10000),
) -> DiscoverResponse:
    """Return archived HTML URLs under *domain*, one entry per distinct URL.

    - **200** : URLs listed (possibly empty)
    - **502** : the archive index could not be queried
    """
    try:
        urls = await discover_urls(domain, limit)
    except (FetchError, IndexFormatError) as exc:
        logger.warning("URL discovery failed for %s: %s", domain, exc)
        raise HTTPException(status_code=502, detail=f"URL discovery failed for {domain}: {exc}")
    return DiscoverResponse(domain=domain, urls=urls)
