"""
Sync configuration.

One SyncConfig value is built at startup (normally from the environment) and
passed to every component that needs it.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .env import env_bool, env_get
from .time import parse_instant, to_iso

DEFAULT_BASE_URL = "https://api.hubapi.com"

# Search API hard limit per page
MAX_PAGE_SIZE = 100


class SyncConfig(BaseModel):
    """Settings for one synchronization run"""

    access_token: str = Field(..., min_length=1, description="Bearer credential")
    base_url: str = Field(DEFAULT_BASE_URL, description="CRM API root URL")

    # Transport
    max_retries: int = Field(60, gt=0, description="Total attempts per request")
    base_delay_ms: int = Field(1000, ge=0, description="First backoff delay")
    max_delay_ms: int = Field(32000, ge=0, description="Cap for any single delay")
    backoff_base: float = Field(2.0, ge=1.0, description="Growth factor per attempt")
    jitter: bool = Field(True, description="Randomize computed backoff delays")
    request_timeout_s: float = Field(30.0, gt=0, description="Per-request timeout")

    # Paging and batching
    page_size: int = Field(100, gt=0, le=MAX_PAGE_SIZE)
    batch_size: int = Field(100, gt=0)
    page_ceiling: int = Field(100, gt=0, description="Max pages fetched per run")
    concurrency: int = Field(10, gt=0, description="Max in-flight lookups")
    use_batch_endpoint: bool = Field(
        False, description="Write each chunk with one batch update call"
    )

    # Remote schema
    record_object: str = "deals"
    related_object: str = "companies"
    owner_property: str = "hubspot_owner_id"
    created_property: str = "createdate"

    # Search filter
    pipeline_id: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")

    @field_validator("created_from", "created_to", mode="before")
    @classmethod
    def parse_dates(cls, v):
        """Accept ISO 8601 strings; naive values are taken as UTC"""
        if v is None or isinstance(v, datetime):
            return parse_instant(v)
        parsed = parse_instant(v)
        if parsed is None:
            raise ValueError(f"Invalid ISO 8601 timestamp: {v!r}")
        return parsed

    @model_validator(mode="after")
    def check_ranges(self):
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        if (
            self.created_from is not None
            and self.created_to is not None
            and self.created_from > self.created_to
        ):
            raise ValueError("created_from must not be after created_to")
        return self

    @classmethod
    def from_env(cls, **overrides: Any) -> "SyncConfig":
        """
        Build the configuration from OWNER_SYNC_* environment variables

        Unset variables fall back to the field defaults. Keyword overrides
        win over the environment.

        Raises:
            pydantic.ValidationError: On missing token or invalid values
        """
        names = {
            "access_token": "OWNER_SYNC_ACCESS_TOKEN",
            "base_url": "OWNER_SYNC_BASE_URL",
            "max_retries": "OWNER_SYNC_MAX_RETRIES",
            "base_delay_ms": "OWNER_SYNC_BASE_DELAY_MS",
            "max_delay_ms": "OWNER_SYNC_MAX_DELAY_MS",
            "backoff_base": "OWNER_SYNC_BACKOFF_BASE",
            "request_timeout_s": "OWNER_SYNC_REQUEST_TIMEOUT_S",
            "page_size": "OWNER_SYNC_PAGE_SIZE",
            "batch_size": "OWNER_SYNC_BATCH_SIZE",
            "page_ceiling": "OWNER_SYNC_PAGE_CEILING",
            "concurrency": "OWNER_SYNC_CONCURRENCY",
            "record_object": "OWNER_SYNC_RECORD_OBJECT",
            "related_object": "OWNER_SYNC_RELATED_OBJECT",
            "owner_property": "OWNER_SYNC_OWNER_PROPERTY",
            "created_property": "OWNER_SYNC_CREATED_PROPERTY",
            "pipeline_id": "OWNER_SYNC_PIPELINE_ID",
            "created_from": "OWNER_SYNC_CREATED_FROM",
            "created_to": "OWNER_SYNC_CREATED_TO",
        }
        values: Dict[str, Any] = {}
        for field, env_name in names.items():
            value = env_get(env_name)
            if value is not None:
                values[field] = value

        values["access_token"] = values.get("access_token", "")
        values["jitter"] = env_bool("OWNER_SYNC_JITTER", True)
        values["use_batch_endpoint"] = env_bool("OWNER_SYNC_USE_BATCH_ENDPOINT", False)
        values.update(overrides)
        return cls(**values)

    def search_spec(self) -> "SearchSpec":
        """Derive the deal search request from the configured filter"""
        filters: List[Dict[str, Any]] = []
        if self.created_from is not None and self.created_to is not None:
            filters.append(
                {
                    "propertyName": self.created_property,
                    "operator": "BETWEEN",
                    "value": to_iso(self.created_from),
                    "highValue": to_iso(self.created_to),
                }
            )
        elif self.created_from is not None:
            filters.append(
                {
                    "propertyName": self.created_property,
                    "operator": "GTE",
                    "value": to_iso(self.created_from),
                }
            )
        elif self.created_to is not None:
            filters.append(
                {
                    "propertyName": self.created_property,
                    "operator": "LTE",
                    "value": to_iso(self.created_to),
                }
            )
        if self.pipeline_id:
            filters.append(
                {"propertyName": "pipeline", "operator": "EQ", "value": self.pipeline_id}
            )

        return SearchSpec(
            filters=filters,
            properties=[self.owner_property, self.created_property],
            page_size=self.page_size,
        )


class SearchSpec(BaseModel):
    """What to search for. The cursor is supplied separately per page."""

    filters: List[Dict[str, Any]] = Field(default_factory=list)
    properties: List[str] = Field(default_factory=list)
    page_size: int = Field(100, gt=0, le=MAX_PAGE_SIZE)

    def to_request_body(self, after: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "filterGroups": [{"filters": self.filters}] if self.filters else [],
            "properties": self.properties,
            "limit": self.page_size,
        }
        if after is not None:
            body["after"] = after
        return body
