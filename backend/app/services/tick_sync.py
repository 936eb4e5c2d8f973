from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from app.config import settings
from app.schemas.simulation import SyncStats, TickSyncPayload

logger = logging.getLogger("app.tick_sync")


class TickSyncQueue:
    """Bounded fire-and-forget delivery of tick payloads to the backend.

    enqueue() never blocks the clock: when the queue is full the payload is
    dropped and counted. A single worker task POSTs payloads in order;
    failures are counted and logged, never raised.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        maxsize: Optional[int] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url if url is not None else settings.simulation_sync_url
        self.maxsize = maxsize or settings.simulation_sync_queue_size
        self.timeout_s = timeout_s or settings.simulation_sync_timeout_s
        self._transport = transport
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._client: Optional[httpx.AsyncClient] = None

        self.enqueued = 0
        self.delivered = 0
        self.failed = 0
        self.dropped = 0

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def _ensure_worker(self) -> None:
        # Created lazily so the queue binds to the running loop
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.maxsize)
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())

    def enqueue(self, payload: TickSyncPayload) -> bool:
        if not self.enabled:
            return False
        self._ensure_worker()
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug("Tick sync queue full; dropped payload for %s", payload.shipment_id)
            return False
        self.enqueued += 1
        return True

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            payload = await self._queue.get()
            try:
                await self._send(payload)
            finally:
                self._queue.task_done()

    async def _send(self, payload: TickSyncPayload) -> None:
        try:
            r = await self._client.post(self.url, json=payload.model_dump(by_alias=True))
            r.raise_for_status()
            self.delivered += 1
        except Exception as e:
            self.failed += 1
            logger.warning("Tick sync for %s failed: %s", payload.shipment_id, e)

    def stats(self) -> SyncStats:
        return SyncStats(
            enabled=self.enabled,
            enqueued=self.enqueued,
            delivered=self.delivered,
            failed=self.failed,
            dropped=self.dropped,
            pending=self._queue.qsize() if self._queue is not None else 0,
        )

    async def drain(self) -> None:
        """Wait until every queued payload has been attempted."""
        if self._queue is not None and self._worker is not None and not self._worker.done():
            await self._queue.join()

    async def close(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info(
            "Tick sync closed (delivered=%d failed=%d dropped=%d)",
            self.delivered, self.failed, self.dropped,
        )
