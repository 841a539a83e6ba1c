"""
CRM API Client - Remote Record Operations

Thin async client over the CRM v3 REST endpoints the pipeline uses: deal
search, deal-to-company association, company owner history and deal owner
updates. Every call goes through the ResilientTransport, so retries and
rate-limit backoff are handled before a response reaches this module.
"""

import logging
import time
from typing import Optional, Sequence, Set, Tuple

import httpx
from pydantic import ValidationError

from ..coreutils.config import SearchSpec, SyncConfig
from ..coreutils.errors import DataShapeError, PermanentHttpFailure
from ..coreutils.request import ApiRequest, ResilientTransport
from ..coreutils.time import parse_instant
from .schemas import (
    AssociationResponse,
    BatchReadResponse,
    BatchUpdateResponse,
    OwnershipHistoryEntry,
    Page,
    Record,
    RelatedEntity,
    SearchResponse,
)

logger = logging.getLogger(__name__)

# API Endpoints
SEARCH_ENDPOINT_TEMPLATE = "/crm/v3/objects/{object_type}/search"
ASSOCIATION_ENDPOINT_TEMPLATE = (
    "/crm/v3/objects/{object_type}/{object_id}/associations/{to_object_type}"
)
BATCH_READ_ENDPOINT_TEMPLATE = "/crm/v3/objects/{object_type}/batch/read"
BATCH_UPDATE_ENDPOINT_TEMPLATE = "/crm/v3/objects/{object_type}/batch/update"
OBJECT_ENDPOINT_TEMPLATE = "/crm/v3/objects/{object_type}/{object_id}"


def _ensure_ok(response: httpx.Response) -> None:
    if not response.is_success:
        raise PermanentHttpFailure(
            response.status_code, str(response.request.url), response.text[:500]
        )


def _parse(model, response: httpx.Response, what: str):
    """Validate a JSON body against a wire model, mapping failures to DataShapeError"""
    try:
        return model.model_validate(response.json())
    except (ValueError, ValidationError) as e:
        raise DataShapeError(f"Unexpected {what} response shape: {e}") from e


class CrmApiClient:
    """Async client for the deal and company endpoints"""

    def __init__(self, transport: ResilientTransport, config: SyncConfig):
        self.transport = transport
        self.record_object = config.record_object
        self.related_object = config.related_object
        self.owner_property = config.owner_property
        self.created_property = config.created_property

    async def search(self, spec: SearchSpec, after: Optional[str] = None) -> Page:
        """
        Fetch one page of records matching the search spec

        Args:
            spec: Filters, properties and page size
            after: Continuation cursor from the previous page, None for the first

        Returns:
            Page: Records plus the next cursor (None on the last page)

        Raises:
            RetryExhausted: Transient failures used up the attempt budget
            PermanentHttpFailure: Non-retryable error status
            DataShapeError: Body has no results array
        """
        url = SEARCH_ENDPOINT_TEMPLATE.format(object_type=self.record_object)
        logger.info(f"Fetching {self.record_object} from: {url} (after={after})")
        start_time = time.time()

        response = await self.transport.send(
            ApiRequest("POST", url, json=spec.to_request_body(after))
        )
        _ensure_ok(response)
        data = _parse(SearchResponse, response, "search")

        records = [
            Record(
                record_id=result.id,
                created_at=parse_instant(result.properties.get(self.created_property)),
                owner=result.properties.get(self.owner_property),
                properties=dict(result.properties),
            )
            for result in data.results
        ]

        logger.debug(f"Fetched from {url}: {time.time() - start_time:.2f} seconds")
        return Page(records=records, next_cursor=data.next_cursor)

    async def get_association(self, record_id: str) -> Optional[str]:
        """
        Find the first related entity associated with a record

        Returns:
            Optional[str]: Related id, or None when there is no association
        """
        url = ASSOCIATION_ENDPOINT_TEMPLATE.format(
            object_type=self.record_object,
            object_id=record_id,
            to_object_type=self.related_object,
        )
        response = await self.transport.send(ApiRequest("GET", url))
        _ensure_ok(response)
        data = _parse(AssociationResponse, response, "association")

        if not data.results:
            return None
        return data.results[0].id

    async def get_ownership_history(self, related_id: str) -> Optional[RelatedEntity]:
        """
        Read the owner property history of one related entity

        Returns:
            Optional[RelatedEntity]: Entity with history in API order, or None
            when the batch read returned no result for the id
        """
        url = BATCH_READ_ENDPOINT_TEMPLATE.format(object_type=self.related_object)
        body = {
            "propertiesWithHistory": [self.owner_property],
            "inputs": [{"id": related_id}],
        }
        response = await self.transport.send(ApiRequest("POST", url, json=body))
        _ensure_ok(response)
        data = _parse(BatchReadResponse, response, "batch read")

        if not data.results:
            return None

        result = data.results[0]
        history = tuple(
            OwnershipHistoryEntry(
                value=entry.value, timestamp=parse_instant(entry.timestamp)
            )
            for entry in result.propertiesWithHistory.get(self.owner_property, [])
        )
        return RelatedEntity(entity_id=result.id, history=history)

    async def update_owner(self, record_id: str, owner: Optional[str]) -> None:
        """
        Set the owner property on a single record

        Raises:
            RetryExhausted: Transient failures used up the attempt budget
            PermanentHttpFailure: The update was rejected
        """
        url = OBJECT_ENDPOINT_TEMPLATE.format(
            object_type=self.record_object, object_id=record_id
        )
        body = {"properties": {self.owner_property: owner}}
        response = await self.transport.send(ApiRequest("PATCH", url, json=body))
        _ensure_ok(response)

    async def batch_update_owners(
        self, updates: Sequence[Tuple[str, Optional[str]]]
    ) -> Set[str]:
        """
        Set the owner property on many records with one call

        Args:
            updates: (record_id, owner) pairs

        Returns:
            Set[str]: Ids the API reports as updated
        """
        url = BATCH_UPDATE_ENDPOINT_TEMPLATE.format(object_type=self.record_object)
        body = {
            "inputs": [
                {"id": record_id, "properties": {self.owner_property: owner}}
                for record_id, owner in updates
            ]
        }
        response = await self.transport.send(ApiRequest("POST", url, json=body))
        # 207 Multi-Status is a partial success
        _ensure_ok(response)
        data = _parse(BatchUpdateResponse, response, "batch update")

        for error in data.errors:
            logger.warning(f"Batch update error: {error.get('message', error)}")

        return {result.id for result in data.results}
