"""
Extract Layer Schemas

Wire models validate CRM responses as they arrive; the dataclasses below are
what the rest of the pipeline works with.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, BeforeValidator, Field, field_validator


# =============================================================================
# Wire models
# =============================================================================


def _coerce_id(v):
    if v is None:
        raise ValueError("id is required")
    return str(v)


# CRM ids arrive as strings or numbers depending on the endpoint
CrmId = Annotated[str, BeforeValidator(_coerce_id)]


class SearchResult(BaseModel):
    id: CrmId
    properties: Dict[str, Optional[str]] = Field(default_factory=dict)

    @field_validator("properties", mode="before")
    @classmethod
    def stringify_properties(cls, v):
        if v is None:
            return {}
        return {k: (None if val is None else str(val)) for k, val in v.items()}


class PagingNext(BaseModel):
    after: Optional[str] = None

    @field_validator("after", mode="before")
    @classmethod
    def stringify_after(cls, v):
        return None if v is None else str(v)


class Paging(BaseModel):
    next: Optional[PagingNext] = None


class SearchResponse(BaseModel):
    """Body of POST /crm/v3/objects/{type}/search"""

    results: List[SearchResult]
    paging: Optional[Paging] = None

    @property
    def next_cursor(self) -> Optional[str]:
        if self.paging and self.paging.next and self.paging.next.after:
            return self.paging.next.after
        return None


class AssociationResult(BaseModel):
    id: CrmId


class AssociationResponse(BaseModel):
    """Body of GET /crm/v3/objects/{type}/{id}/associations/{toType}"""

    results: List[AssociationResult] = Field(default_factory=list)


class HistoryValue(BaseModel):
    value: Optional[str] = None
    timestamp: Optional[str] = None

    @field_validator("value", "timestamp", mode="before")
    @classmethod
    def stringify(cls, v):
        return None if v is None else str(v)


class BatchReadResult(BaseModel):
    id: CrmId
    propertiesWithHistory: Dict[str, List[HistoryValue]] = Field(default_factory=dict)


class BatchReadResponse(BaseModel):
    """Body of POST /crm/v3/objects/{type}/batch/read"""

    results: List[BatchReadResult]


class BatchUpdateResponse(BaseModel):
    """Body of POST /crm/v3/objects/{type}/batch/update"""

    results: List[AssociationResult] = Field(default_factory=list)
    errors: List[Dict[str, Any]] = Field(default_factory=list)


# =============================================================================
# Domain types
# =============================================================================


@dataclass(frozen=True)
class Record:
    """A deal as fetched from search. Immutable once fetched."""

    record_id: str
    created_at: Optional[datetime]
    owner: Optional[str]
    properties: Dict[str, Optional[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class Page:
    """One page of search results; next_cursor is None on the last page"""

    records: List[Record]
    next_cursor: Optional[str]
    number: int = 1


@dataclass(frozen=True)
class OwnershipHistoryEntry:
    value: Optional[str]
    timestamp: Optional[datetime]


@dataclass(frozen=True)
class RelatedEntity:
    """The associated company and its owner history in API order"""

    entity_id: str
    history: Tuple[OwnershipHistoryEntry, ...] = ()


@dataclass(frozen=True)
class EnrichedRecord:
    record: Record
    related_id: Optional[str] = None
    related: Optional[RelatedEntity] = None
    error: Optional[str] = None

    @property
    def is_degraded(self) -> bool:
        return self.error is not None
