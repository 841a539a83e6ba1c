"""
Transformers - Page-Level Transform Functions

Applies the attribution resolver across pages and shapes write outcomes into
polars frames for the run summary.
"""

import logging
from typing import Any, Dict, Iterable, Iterator, List, Sequence, TypeVar

import polars as pl

from ..extract.schemas import EnrichedRecord
from .attribution import resolve
from .schemas import OUTCOMES_SCHEMA, ResolvedUpdate, WriteOutcome

logger = logging.getLogger(__name__)

T = TypeVar("T")


def resolve_page(enriched_records: Iterable[EnrichedRecord]) -> List[ResolvedUpdate]:
    """
    Resolve every record on a page, dropping those without usable history

    Args:
        enriched_records: Records in page order

    Returns:
        List[ResolvedUpdate]: One update per resolvable record, in page order
    """
    updates = []
    skipped = 0
    for enriched in enriched_records:
        update = resolve(enriched)
        if update is None:
            skipped += 1
            continue
        updates.append(update)

    logger.info(f"Resolved {len(updates)} owner updates ({skipped} records skipped)")
    return updates


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Split items into consecutive chunks of at most `size`"""
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def outcomes_to_frame(outcomes: Iterable[WriteOutcome]) -> pl.DataFrame:
    """Convert write outcomes to a DataFrame with OUTCOMES_SCHEMA"""
    rows = [
        {
            "record_id": outcome.record_id,
            "owner": outcome.owner,
            "success": outcome.success,
            "error": outcome.error,
        }
        for outcome in outcomes
    ]
    return pl.DataFrame(rows, schema=OUTCOMES_SCHEMA)


def get_summary_stats(outcomes_df: pl.DataFrame) -> Dict[str, Any]:
    """
    Get summary statistics for a run's write outcomes

    Args:
        outcomes_df: Frame built by outcomes_to_frame

    Returns:
        Dict: attempted, succeeded and failed counts plus owners assigned
    """
    if outcomes_df.schema != OUTCOMES_SCHEMA:
        raise ValueError(
            f"Schema mismatch: expected {OUTCOMES_SCHEMA}, got {outcomes_df.schema}"
        )

    succeeded = outcomes_df.filter(pl.col("success"))
    stats = {
        "attempted": outcomes_df.height,
        "succeeded": succeeded.height,
        "failed": outcomes_df.height - succeeded.height,
        "unique_owners_assigned": succeeded.select(pl.col("owner").n_unique()).item()
        if succeeded.height
        else 0,
    }

    logger.debug(f"Generated summary stats: {stats}")
    return stats
