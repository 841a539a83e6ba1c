"""
Attribution Resolver

Owner history is a step function over time. The resolver looks up the step
that covers the record's creation instant.

The history is used in the order the API returned it, which is assumed to be
chronological ascending. It is not re-sorted.
"""

from datetime import datetime
from typing import Optional, Sequence

from ..extract.schemas import EnrichedRecord, OwnershipHistoryEntry
from .schemas import ResolvedUpdate


def _in_interval(
    instant: Optional[datetime],
    start: Optional[datetime],
    end: Optional[datetime],
) -> bool:
    """start <= instant < end; any missing bound never matches"""
    if instant is None or start is None or end is None:
        return False
    return start <= instant < end


def select_entry(
    created_at: Optional[datetime], history: Sequence[OwnershipHistoryEntry]
) -> Optional[OwnershipHistoryEntry]:
    """
    Pick the history entry in effect at created_at

    Returns the first entry whose [timestamp, next timestamp) interval holds
    created_at, otherwise the last entry. Returns None when no entry has both
    a value and a timestamp.
    """
    if not history:
        return None
    if not any(e.value is not None and e.timestamp is not None for e in history):
        return None

    for current, following in zip(history, history[1:]):
        if _in_interval(created_at, current.timestamp, following.timestamp):
            return current

    return history[-1]


def resolve(enriched: EnrichedRecord) -> Optional[ResolvedUpdate]:
    """Decide the owner for one enriched record, or None to leave it alone"""
    if enriched.related is None:
        return None

    selected = select_entry(enriched.record.created_at, enriched.related.history)
    if selected is None:
        return None

    return ResolvedUpdate(
        record_id=enriched.record.record_id,
        owner=selected.value,
        previous_owner=enriched.record.owner,
    )
