"""MapWatch — Buffered Bulk Writer.

Collectors hand records to the writer as they are fetched. Every
``batch_size`` records a flush starts in a worker thread and fetching
carries on; at most one flush is in flight, so a slow store applies
back-pressure instead of piling up batches.
"""

import asyncio
from typing import List, Optional, Sequence

from sqlmodel import SQLModel

from mapwatch.core.logging import get_logger
from mapwatch.store import BulkResult, DocumentStore

logger = get_logger("workers.bulk_writer")


class BulkWriter:
    def __init__(self, store: DocumentStore, batch_size: int, name: str = ""):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.store = store
        self.batch_size = batch_size
        self.name = name
        self.result = BulkResult()
        self._buffer: List[SQLModel] = []
        self._pending: Optional[asyncio.Task] = None

    async def add(self, records: Sequence[SQLModel]) -> None:
        self._buffer.extend(records)
        while len(self._buffer) >= self.batch_size:
            batch = self._buffer[: self.batch_size]
            self._buffer = self._buffer[self.batch_size :]
            await self._dispatch(batch)

    async def _dispatch(self, batch: List[SQLModel]) -> None:
        await self._drain()
        self._pending = asyncio.create_task(asyncio.to_thread(self.store.bulk_upsert, batch))

    async def _drain(self) -> None:
        if self._pending is None:
            return
        pending, self._pending = self._pending, None
        batch_result = await pending
        if batch_result.failed:
            logger.warning(
                f"[{self.name}] {len(batch_result.failed)} documents failed to index"
            )
        self.result.merge(batch_result)

    async def close(self) -> BulkResult:
        """Flush whatever is buffered and wait for the last write."""
        if self._buffer:
            batch, self._buffer = self._buffer, []
            await self._dispatch(batch)
        await self._drain()
        if self.result.written:
            logger.info(f"[{self.name}] Indexed {self.result.written} documents")
        return self.result
