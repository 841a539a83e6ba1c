"""
Batch Writer - Load Layer

Writes resolved owners back to the CRM in fixed-size chunks. Every write is
tracked on its own; a failed write never cancels or rolls back the others.
"""

import asyncio
import logging
from typing import List, Sequence

import httpx

from ..coreutils.config import SyncConfig
from ..coreutils.errors import SyncError, WriteFailure
from ..extract.crm_api import CrmApiClient
from ..transformation.schemas import ResolvedUpdate, WriteOutcome
from ..transformation.transformers import chunked

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


class BatchWriter:
    """Best-effort owner write-back with per-record outcomes"""

    def __init__(
        self,
        api: CrmApiClient,
        batch_size: int = DEFAULT_BATCH_SIZE,
        use_batch_endpoint: bool = False,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.api = api
        self.batch_size = batch_size
        self.use_batch_endpoint = use_batch_endpoint

    @classmethod
    def from_config(cls, api: CrmApiClient, config: SyncConfig) -> "BatchWriter":
        return cls(
            api,
            batch_size=config.batch_size,
            use_batch_endpoint=config.use_batch_endpoint,
        )

    async def write_one(self, update: ResolvedUpdate) -> WriteOutcome:
        try:
            await self.api.update_owner(update.record_id, update.owner)
        except (SyncError, httpx.HTTPError) as e:
            failure = WriteFailure(update.record_id, e)
            logger.error(str(failure))
            return WriteOutcome(update.record_id, update.owner, False, str(e))

        logger.info(
            f"Deal {update.record_id} --> {self.api.owner_property} updated to : "
            f"{update.owner} (was {update.previous_owner})"
        )
        return WriteOutcome(update.record_id, update.owner, True)

    async def write_chunk(self, chunk: Sequence[ResolvedUpdate]) -> List[WriteOutcome]:
        """Write one chunk; outcomes are in chunk order"""
        if self.use_batch_endpoint:
            return await self._write_chunk_batched(chunk)
        return list(await asyncio.gather(*(self.write_one(u) for u in chunk)))

    async def _write_chunk_batched(
        self, chunk: Sequence[ResolvedUpdate]
    ) -> List[WriteOutcome]:
        try:
            updated_ids = await self.api.batch_update_owners(
                [(u.record_id, u.owner) for u in chunk]
            )
        except (SyncError, httpx.HTTPError) as e:
            logger.error(f"Error updating deals batch: {e}")
            return [WriteOutcome(u.record_id, u.owner, False, str(e)) for u in chunk]

        outcomes = []
        for update in chunk:
            if update.record_id in updated_ids:
                logger.info(
                    f"Deal {update.record_id} --> {self.api.owner_property} "
                    f"updated to : {update.owner}"
                )
                outcomes.append(WriteOutcome(update.record_id, update.owner, True))
            else:
                outcomes.append(
                    WriteOutcome(
                        update.record_id,
                        update.owner,
                        False,
                        "not reported as updated by batch endpoint",
                    )
                )
        return outcomes

    async def write_all(self, updates: Sequence[ResolvedUpdate]) -> List[WriteOutcome]:
        """
        Write all updates chunk by chunk

        Args:
            updates: Resolved updates for one page

        Returns:
            List[WriteOutcome]: One outcome per update, in input order
        """
        outcomes: List[WriteOutcome] = []
        for number, chunk in enumerate(chunked(updates, self.batch_size), 1):
            logger.debug(f"Writing chunk {number} ({len(chunk)} updates)")
            outcomes.extend(await self.write_chunk(chunk))

        failed = sum(1 for outcome in outcomes if not outcome.success)
        if failed:
            logger.warning(f"{failed} of {len(outcomes)} owner updates failed")
        return outcomes
