"""
Transformation Layer Schemas

Decision and outcome types, plus the polars schema used for run summaries.
"""

from dataclasses import dataclass
from typing import Optional

import polars as pl


@dataclass(frozen=True)
class ResolvedUpdate:
    """The owner a record should have. previous_owner is for reporting only."""

    record_id: str
    owner: Optional[str]
    previous_owner: Optional[str] = None


@dataclass(frozen=True)
class WriteOutcome:
    record_id: str
    owner: Optional[str]
    success: bool
    error: Optional[str] = None


OUTCOMES_SCHEMA = pl.Schema(
    [
        ("record_id", pl.String()),
        ("owner", pl.String()),
        ("success", pl.Boolean()),
        ("error", pl.String()),
    ]
)
