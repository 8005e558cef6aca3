from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from wayback_meta.core.config import settings
from wayback_meta.models.snapshot.document import (
    DomainResult,
    SnapshotRecord,
    SnapshotResult,
)
from wayback_meta.models.snapshot.schemas import (
    BulkExtractResponse,
    BulkMeta,
    DomainError,
    ErrorEvent,
    ExtractRequest,
    ProgressEvent,
    ResultEvent,
    StreamEvent,
)
from wayback_meta.services.classification.service import ClassificationEngine
from wayback_meta.workers.extractor import extract_metadata, strip_archive_chrome
from wayback_meta.workers.fetcher import FetchError, fetch
from wayback_meta.workers.wayback import fetch_snapshot_records, snapshot_url

logger = logging.getLogger(__name__)


class ExtractionService:
    """Drives index query -> per-snapshot fetch + extract -> classification."""

    def __init__(self, classifier: ClassificationEngine | None = None) -> None:
        self._classifier = classifier or ClassificationEngine()

    # ------------------------------------------------------------------
    # Single domain
    # ------------------------------------------------------------------

    async def process_domain(
        self,
        domain: str,
        count: int,
        dedupe: bool = False,
        classify: bool = False,
        credential: str | None = None,
        include_html: bool = False,
    ) -> DomainResult:
        """Return one :class:`SnapshotResult` per index row of *domain*.

        Snapshot failures are embedded in their result's ``error`` field.

        Raises:
            FetchError: the index query failed after retries.
            IndexFormatError: the index answered with an unexpected table.
        """
        records = await fetch_snapshot_records(domain, count, dedupe)
        if not records:
            logger.info("No archived HTML for %s under current filters.", domain)
            return DomainResult(domain=domain, snapshots=[])

        async def run(record: SnapshotRecord) -> SnapshotResult:
            return await self._process_snapshot(
                domain, record, classify, credential, include_html
            )

        concurrency = settings.snapshot_concurrency
        if concurrency > 1:
            semaphore = asyncio.Semaphore(concurrency)

            async def bounded(record: SnapshotRecord) -> SnapshotResult:
                async with semaphore:
                    return await run(record)

            snapshots = list(await asyncio.gather(*(bounded(r) for r in records)))
        else:
            snapshots = []
            for i, record in enumerate(records):
                if i:
                    await asyncio.sleep(settings.snapshot_delay)
                snapshots.append(await run(record))

        failed = sum(1 for s in snapshots if s.error)
        logger.info(
            "Processed %s: %d snapshot(s), %d failed.", domain, len(snapshots), failed
        )
        return DomainResult(domain=domain, snapshots=snapshots)

    async def _process_snapshot(
        self,
        domain: str,
        record: SnapshotRecord,
        classify: bool,
        credential: str | None,
        include_html: bool,
    ) -> SnapshotResult:
        archive_url = snapshot_url(record.timestamp, record.original_url)
        try:
            response = await fetch(archive_url)
            html = response.text
            result = SnapshotResult.from_parts(
                record,
                archive_url,
                extract_metadata(html),
                html=self._cleaned_html(archive_url, html) if include_html else None,
            )
        except FetchError as exc:
            logger.warning("Snapshot fetch failed for %s: %s", archive_url, exc)
            return SnapshotResult.from_parts(record, archive_url, error=str(exc))
        except Exception as exc:
            logger.exception("Unexpected error processing snapshot %s", archive_url)
            return SnapshotResult.from_parts(record, archive_url, error=str(exc) or repr(exc))

        if classify and result.title:
            await self._classify(domain, result, credential)
        return result

    @staticmethod
    def _cleaned_html(archive_url: str, html: str) -> str | None:
        try:
            return strip_archive_chrome(html)
        except Exception:
            logger.exception("Archive chrome cleanup failed for %s", archive_url)
            return None

    async def _classify(
        self, domain: str, result: SnapshotResult, credential: str | None
    ) -> None:
        try:
            labels = await self._classifier.classify(
                domain, result.title, result.description, credential
            )
        except Exception:
            logger.exception("Classification failed for %s", result.archive_url)
            return
        result.heuristic_category = labels.heuristic
        result.category = labels.category
        result.suspicious = labels.suspicious

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def stream(
        self, request: ExtractRequest, credential: str | None = None
    ) -> AsyncIterator[StreamEvent]:
        """Yield a progress event and then a result or error event per domain.

        Domains run concurrently (bounded by ``settings.domain_concurrency``),
        so events of different domains interleave.  Closing the iterator
        cancels domains still in flight.
        """
        queue: asyncio.Queue = asyncio.Queue()
        semaphore = asyncio.Semaphore(max(1, settings.domain_concurrency))

        async def worker(domain: str) -> None:
            async with semaphore:
                await queue.put(ProgressEvent(domain=domain))
                try:
                    result = await self.process_domain(
                        domain,
                        request.count,
                        dedupe=request.dedupe,
                        classify=request.classify,
                        credential=credential,
                        include_html=request.include_html,
                    )
                except FetchError as exc:
                    logger.warning("Index query failed for %s: %s", domain, exc)
                    await queue.put(_error_event(domain, exc))
                except Exception as exc:
                    logger.exception("Processing failed for %s", domain)
                    await queue.put(_error_event(domain, exc))
                else:
                    await queue.put(ResultEvent(data=result))

        tasks = [asyncio.create_task(worker(d)) for d in request.domains]
        try:
            for _ in range(2 * len(tasks)):
                yield await queue.get()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def collect(
        self, request: ExtractRequest, credential: str | None = None
    ) -> BulkExtractResponse:
        """Run the batch to completion and aggregate it, in request order."""
        results: dict[str, DomainResult] = {}
        errors: dict[str, DomainError] = {}
        async for event in self.stream(request, credential):
            if isinstance(event, ResultEvent):
                results[event.data.domain] = event.data
            elif isinstance(event, ErrorEvent):
                errors[event.domain] = DomainError(domain=event.domain, error=event.message)

        order = {domain: i for i, domain in enumerate(request.domains)}
        return BulkExtractResponse(
            data=sorted(results.values(), key=lambda r: order[r.domain]),
            errors=sorted(errors.values(), key=lambda e: order[e.domain]),
            meta=BulkMeta(
                total=len(request.domains),
                successful=len(results),
                failed=len(errors),
            ),
        )


def _error_event(domain: str, exc: BaseException) -> ErrorEvent:
    return ErrorEvent(domain=domain, message=f"Error for {domain}: {exc}")
