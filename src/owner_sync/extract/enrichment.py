"""
Enrichment Fan-out - Extract Layer

Attaches the associated company and its owner history to every deal on a
page. Lookups for different deals run concurrently; a failed lookup only
affects the deal it belongs to.
"""

import logging
from typing import List, Sequence

import httpx

from ..coreutils.concurrency import gather_bounded
from ..coreutils.errors import EnrichmentFailure, SyncError
from .crm_api import CrmApiClient
from .schemas import EnrichedRecord, Record

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10


async def enrich_record(api: CrmApiClient, record: Record) -> EnrichedRecord:
    """
    Look up the related entity and its owner history for one record

    Never raises for lookup failures: the record comes back without
    enrichment and with the error recorded.
    """
    try:
        related_id = await api.get_association(record.record_id)
        if related_id is None:
            return EnrichedRecord(record=record)

        related = await api.get_ownership_history(related_id)
        return EnrichedRecord(record=record, related_id=related_id, related=related)

    except (SyncError, httpx.HTTPError) as e:
        failure = EnrichmentFailure(record.record_id, e)
        logger.warning(str(failure))
        return EnrichedRecord(record=record, error=str(failure))


async def enrich_page(
    api: CrmApiClient,
    records: Sequence[Record],
    concurrency: int = DEFAULT_CONCURRENCY,
) -> List[EnrichedRecord]:
    """Enrich all records concurrently; output order matches input order"""
    enriched = await gather_bounded(
        lambda record: enrich_record(api, record), records, concurrency
    )

    degraded = sum(1 for item in enriched if item.is_degraded)
    associated = sum(1 for item in enriched if item.related is not None)
    logger.info(
        f"Enriched {len(enriched)} records: {associated} with history, "
        f"{degraded} failed lookups"
    )
    return enriched
