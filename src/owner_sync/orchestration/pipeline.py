"""
Pipeline Orchestrator - Page-by-Page Owner Sync

One run walks the deal search results page by page:
1. Fetch a page of deals
2. Enrich each deal with its company's owner history (concurrently)
3. Resolve the owner in effect at each deal's creation date
4. Write the resolved owners back in chunks
5. Advance the cursor and repeat until no cursor remains

Pages are handled strictly one after another. Only a failed page fetch ends
the run early; failed lookups and failed writes are reported and skipped.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import httpx

from ..coreutils.config import SyncConfig
from ..coreutils.errors import PageFetchError
from ..coreutils.request import ResilientTransport, new_client
from ..extract.crm_api import CrmApiClient
from ..extract.enrichment import enrich_page
from ..extract.paginator import iter_pages
from ..extract.schemas import Page
from ..load.batch_writer import BatchWriter
from ..transformation.schemas import WriteOutcome
from ..transformation.transformers import (
    get_summary_stats,
    outcomes_to_frame,
    resolve_page,
)

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_FETCH_FAILURE = 2
EXIT_WRITE_FAILURE = 3


class PipelineState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    ENRICHING = "enriching"
    RESOLVING = "resolving"
    WRITING = "writing"
    ADVANCING = "advancing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RunSummary:
    """Counts and write outcomes for one run"""

    pages: int = 0
    records_fetched: int = 0
    records_enriched: int = 0
    enrichment_failures: int = 0
    updates_resolved: int = 0
    outcomes: List[WriteOutcome] = field(default_factory=list)
    error: Optional[str] = None
    dry_run: bool = False

    @property
    def writes_succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def writes_failed(self) -> int:
        return len(self.outcomes) - self.writes_succeeded

    @property
    def exit_code(self) -> int:
        if self.error is not None:
            return EXIT_FETCH_FAILURE
        if self.outcomes and self.writes_succeeded == 0:
            return EXIT_WRITE_FAILURE
        return EXIT_SUCCESS

    def stats(self) -> Dict[str, Any]:
        write_stats = get_summary_stats(outcomes_to_frame(self.outcomes))
        return {
            "pages": self.pages,
            "records_fetched": self.records_fetched,
            "records_enriched": self.records_enriched,
            "enrichment_failures": self.enrichment_failures,
            "updates_resolved": self.updates_resolved,
            **write_stats,
            "dry_run": self.dry_run,
            "error": self.error,
        }


class SyncOrchestrator:
    """Runs the fetch → enrich → resolve → write loop over all pages"""

    def __init__(
        self,
        config: SyncConfig,
        api: Optional[CrmApiClient] = None,
        dry_run: bool = False,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the orchestrator

        Args:
            config: Run configuration
            api: Ready-made CRM client; built from config when omitted
            dry_run: If true, resolve owners but skip all writes
            http_transport: Optional httpx transport for the built client
            sleep: Coroutine used for backoff delays
        """
        self.config = config
        self.api = api
        self.dry_run = dry_run
        self.http_transport = http_transport
        self.sleep = sleep
        self.state = PipelineState.IDLE
        self.started_at: Optional[datetime] = None

        if self.dry_run:
            logger.info("🔍 DRY RUN MODE: owner updates will not be written")

    @asynccontextmanager
    async def _open_api(self) -> AsyncIterator[CrmApiClient]:
        if self.api is not None:
            yield self.api
            return

        async with new_client(self.config, transport=self.http_transport) as client:
            transport = ResilientTransport.from_config(
                self.config, client, sleep=self.sleep
            )
            yield CrmApiClient(transport, self.config)

    async def process_page(
        self,
        page: Page,
        api: CrmApiClient,
        writer: BatchWriter,
        summary: RunSummary,
    ) -> None:
        """Enrich, resolve and write one page, folding counts into summary"""
        summary.pages += 1
        summary.records_fetched += len(page.records)

        self.state = PipelineState.ENRICHING
        enriched = await enrich_page(api, page.records, self.config.concurrency)
        summary.records_enriched += sum(1 for e in enriched if e.related is not None)
        summary.enrichment_failures += sum(1 for e in enriched if e.is_degraded)

        self.state = PipelineState.RESOLVING
        updates = resolve_page(enriched)
        summary.updates_resolved += len(updates)

        if self.dry_run:
            for update in updates:
                logger.info(
                    f"🔍 DRY RUN: would set deal {update.record_id} owner to "
                    f"{update.owner} (currently {update.previous_owner})"
                )
            return

        self.state = PipelineState.WRITING
        summary.outcomes.extend(await writer.write_all(updates))

    async def run(self) -> RunSummary:
        """
        Run one full synchronization

        Returns:
            RunSummary: Always returned, also when a page fetch failed
        """
        logger.info("🚀 Starting owner sync")
        logger.info("=" * 50)
        self.started_at = datetime.now()
        summary = RunSummary(dry_run=self.dry_run)
        spec = self.config.search_spec()

        async with self._open_api() as api:
            writer = BatchWriter.from_config(api, self.config)
            try:
                self.state = PipelineState.FETCHING
                async for page in iter_pages(api, spec, self.config.page_ceiling):
                    await self.process_page(page, api, writer, summary)
                    self.state = PipelineState.ADVANCING
                    if page.next_cursor is not None:
                        logger.info("Fetching next batch of deals...")
                    self.state = PipelineState.FETCHING
            except PageFetchError as e:
                self.state = PipelineState.FAILED
                summary.error = str(e)
                logger.error(f"❌ Sync aborted after {summary.pages} pages: {e}")
                return summary

        self.state = PipelineState.DONE
        logger.info("✅ All deals have been processed.")
        return summary

    def get_pipeline_status(self) -> dict:
        """
        Get current pipeline status

        Returns:
            dict: Pipeline status information
        """
        return {
            "timestamp": datetime.now().isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "state": self.state.value,
            "dry_run": self.dry_run,
            "page_ceiling": self.config.page_ceiling,
            "batch_size": self.config.batch_size,
        }


def run_sync(config: SyncConfig, dry_run: bool = False) -> RunSummary:
    """Run a full sync from synchronous code"""
    return asyncio.run(SyncOrchestrator(config, dry_run=dry_run).run())
