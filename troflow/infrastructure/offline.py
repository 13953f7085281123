"""Offline write queue and the connectivity signal that triggers its replay."""
from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

from troflow.core.config import settings

from .stores import DocumentStore, StoreError, utcnow_iso

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PendingUpdate:
    document_id: str
    form_data: dict[str, Any]
    field_positions: dict[str, Any]
    destination: str = "legal_documents"
    headers: dict[str, str] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    id: int | None = None


class OfflineSyncQueue(Protocol):
    async def queue_update(self, update: PendingUpdate) -> None: ...


class ConnectivityMonitor:
    """Holds the current online/offline signal and notifies listeners on change."""

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._listeners: list[Callable[[bool], None]] = []

    @property
    def online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            listener(online)

    def subscribe(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


class InMemoryOfflineQueue:
    """At-least-once queue of document writes made while offline."""

    def __init__(self) -> None:
        self._updates: dict[int, PendingUpdate] = {}
        self._ids = itertools.count(1)
        self._sync_in_progress = False

    async def queue_update(self, update: PendingUpdate) -> None:
        update.id = next(self._ids)
        self._updates[update.id] = update
        logger.info("Queued offline update %s for document %s", update.id, update.document_id)

    async def pending(self) -> list[PendingUpdate]:
        return list(self._updates.values())

    async def pending_count(self) -> int:
        return len(self._updates)

    async def remove(self, update_id: int) -> None:
        self._updates.pop(update_id, None)

    async def replay(self, sync_fn: Callable[[PendingUpdate], Awaitable[bool]]) -> int:
        """Push queued updates through ``sync_fn``; returns how many were synced.

        An entry is only dropped once ``sync_fn`` reports success. A replay
        that starts while another is running does nothing.
        """

        if self._sync_in_progress:
            return 0
        self._sync_in_progress = True
        synced = 0
        try:
            for update in await self.pending():
                try:
                    ok = await sync_fn(update)
                except (StoreError, asyncio.TimeoutError) as exc:
                    logger.warning(
                        "Offline update %s failed to sync: %s", update.id, str(exc) or exc.__class__.__name__
                    )
                    continue
                except Exception:  # keep draining; the entry stays queued
                    logger.exception("Unexpected error syncing offline update %s", update.id)
                    continue
                if ok and update.id is not None:
                    await self.remove(update.id)
                    synced += 1
        finally:
            self._sync_in_progress = False
        return synced

    def reset(self) -> None:
        self._updates.clear()


class OfflineSyncManager:
    """Replays the offline queue into the document store when connectivity returns."""

    def __init__(
        self,
        queue: InMemoryOfflineQueue,
        store: DocumentStore,
        connectivity: ConnectivityMonitor,
        *,
        timeout_s: float | None = None,
    ) -> None:
        self._queue = queue
        self._timeout_s = settings.REMOTE_TIMEOUT_S if timeout_s is None else timeout_s
        self._store = store
        self._connectivity = connectivity
        self._unsubscribe = connectivity.subscribe(self._on_connectivity_change)
        self._tasks: set[asyncio.Task[int]] = set()

    async def _write(self, update: PendingUpdate) -> bool:
        changes = {
            "content": update.form_data,
            "metadata": {"fieldPositions": update.field_positions},
            "updated_at": utcnow_iso(),
        }
        await asyncio.wait_for(self._store.update(update.document_id, changes), self._timeout_s)
        return True

    async def sync_now(self) -> int:
        if not self._connectivity.online:
            return 0
        synced = await self._queue.replay(self._write)
        if synced:
            logger.info("Synced %s offline change(s)", synced)
        return synced

    def _on_connectivity_change(self, online: bool) -> None:
        if not online:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # nothing to schedule on; the next sync_now call picks the queue up
            return
        task = loop.create_task(self.sync_now())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def close(self) -> None:
        self._unsubscribe()
