"""
Error taxonomy for the sync pipeline.

Only RetryExhausted, PermanentHttpFailure, DataShapeError and PageFetchError
are ever raised across layer boundaries. EnrichmentFailure and WriteFailure
are recorded on the affected record instead of aborting the page.
"""

from typing import List, Optional


class SyncError(Exception):
    """Base class for all pipeline errors"""


class TransientHttpFailure(SyncError):
    """Retryable status seen by the transport. Never escapes send()."""

    def __init__(self, status: int, retry_after: Optional[float] = None):
        self.status = status
        self.retry_after = retry_after
        super().__init__(f"Transient HTTP failure: status={status}")


class RetryExhausted(SyncError):
    """The per-request attempt budget was spent on transient failures"""

    def __init__(self, last_status: Optional[int], attempts: int, url: str = ""):
        self.last_status = last_status
        self.attempts = attempts
        self.url = url
        super().__init__(
            f"Max retries reached after {attempts} attempts "
            f"(last status={last_status}, url={url!r})"
        )


class PermanentHttpFailure(SyncError):
    """Non-2xx status outside the retryable set"""

    def __init__(self, status: int, url: str = "", body: str = ""):
        self.status = status
        self.url = url
        self.body = body
        super().__init__(f"HTTP error! status: {status}, url={url!r}")


class DataShapeError(SyncError):
    """A response is missing an expected field or has the wrong shape"""


class EnrichmentFailure(SyncError):
    """Association or history lookup failed for a single record"""

    def __init__(self, record_id: str, cause: Exception):
        self.record_id = record_id
        self.cause = cause
        super().__init__(f"Enrichment failed for record {record_id}: {cause}")


class WriteFailure(SyncError):
    """A single owner write did not succeed"""

    def __init__(self, record_id: str, cause: Exception):
        self.record_id = record_id
        self.cause = cause
        super().__init__(f"Error updating record {record_id} owner: {cause}")


class FatalPipelineError(SyncError):
    """Aborts the whole run"""


class PageFetchError(FatalPipelineError):
    """A page could not be fetched. Carries the pages fetched before it."""

    def __init__(self, cause: Exception, pages: Optional[List] = None):
        self.cause = cause
        self.pages = list(pages or [])
        super().__init__(
            f"Error fetching page {len(self.pages) + 1}: {cause}"
        )
