"""
Pagination Driver - Extract Layer

Follows the search cursor page by page. Pages are produced lazily so the
caller can finish with one page before the next one is requested.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import AsyncIterator, List, Optional

import httpx

from ..coreutils.config import SearchSpec
from ..coreutils.errors import (
    DataShapeError,
    PageFetchError,
    PermanentHttpFailure,
    RetryExhausted,
)
from .crm_api import CrmApiClient
from .schemas import Page

logger = logging.getLogger(__name__)

# Hard stop for a single run
DEFAULT_PAGE_CEILING = 100


@dataclass
class PageFetchResult:
    """Pages fetched before the run stopped, plus the error that stopped it"""

    pages: List[Page] = field(default_factory=list)
    error: Optional[PageFetchError] = None

    @property
    def records(self):
        return [record for page in self.pages for record in page.records]


async def iter_pages(
    api: CrmApiClient,
    spec: SearchSpec,
    page_ceiling: int = DEFAULT_PAGE_CEILING,
) -> AsyncIterator[Page]:
    """
    Yield pages of search results until the cursor runs out

    Stops quietly when a page has no next cursor, when a response is missing
    its results array, or after page_ceiling pages.

    Raises:
        PageFetchError: A page could not be fetched; carries the earlier pages
    """
    if page_ceiling < 1:
        raise ValueError("page_ceiling must be at least 1")

    cursor: Optional[str] = None
    fetched: List[Page] = []

    while len(fetched) < page_ceiling:
        try:
            page = await api.search(spec, after=cursor)
        except DataShapeError as e:
            logger.error(f"No results found in the response: {e}")
            return
        except (RetryExhausted, PermanentHttpFailure, httpx.HTTPError) as e:
            logger.error(f"Error fetching page {len(fetched) + 1}: {e}")
            raise PageFetchError(e, fetched) from e

        page = replace(page, number=len(fetched) + 1)
        fetched.append(page)
        logger.info(
            f"Fetched page {page.number} with {len(page.records)} records "
            f"(next cursor: {page.next_cursor})"
        )
        yield page

        if page.next_cursor is None:
            return
        cursor = page.next_cursor

    logger.warning(f"Page ceiling of {page_ceiling} reached, stopping pagination")


async def fetch_all_pages(
    api: CrmApiClient,
    spec: SearchSpec,
    page_ceiling: int = DEFAULT_PAGE_CEILING,
) -> PageFetchResult:
    """Collect every page; on a fatal fetch error return the prefix and the error"""
    result = PageFetchResult()
    try:
        async for page in iter_pages(api, spec, page_ceiling):
            result.pages.append(page)
    except PageFetchError as e:
        result.error = e

    logger.info(
        f"Total number of {api.record_object}: {len(result.records)} "
        f"across {len(result.pages)} pages"
    )
    return result
