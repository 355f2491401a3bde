"""
Append-only permission audit log.

Entries get a monotonic sequence number on append and the most recent
``retention`` entries are kept in memory for reporting. When a durable
store is attached and the writer is running, each entry is also handed to
a single background task that persists entries in sequence order.
"""

import asyncio
import threading
import uuid
from collections import deque
from datetime import datetime
from typing import Deque, Dict, Any, Optional, List, Iterable

from shared.logging import get_logger
from ..clock import Clock, SystemClock
from ..persistence.base import DurableStore
from .models import PermissionAuditLog, PermissionAuditAction, PermissionResult


DEFAULT_RETENTION = 100000


class AuditLog:
    """Append-only audit trail with an asynchronous single writer."""

    def __init__(
        self,
        store: Optional[DurableStore] = None,
        clock: Optional[Clock] = None,
        queue_size: int = 10000,
        retention: Optional[int] = DEFAULT_RETENTION
    ):
        self.logger = get_logger("permissions.audit")
        self.store = store
        self.clock = clock or SystemClock()
        self.queue_size = queue_size
        self.retention = retention

        # Oldest entries are evicted once the retention limit is reached.
        self._entries: Deque[PermissionAuditLog] = deque(maxlen=retention)
        self._sequence = 0
        self._lock = threading.Lock()

        self._queue: Optional[asyncio.Queue] = None
        self._writer: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._dropped = 0

    def append(
        self,
        user_id: str,
        action: PermissionAuditAction,
        result: PermissionResult,
        resource: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> PermissionAuditLog:
        """Record an entry and schedule it for persistence."""
        with self._lock:
            self._sequence += 1
            entry = PermissionAuditLog(
                id=str(uuid.uuid4()),
                sequence=self._sequence,
                timestamp=self.clock.now(),
                user_id=user_id,
                action=action,
                result=result,
                resource=resource,
                context=dict(context) if context else None,
            )
            self._entries.append(entry)

        self._schedule(entry)
        return entry

    def record_change(
        self,
        action: PermissionAuditAction,
        user_id: str,
        changed_by: str,
        details: str,
        resource: Optional[str] = None
    ) -> PermissionAuditLog:
        """Record an administrative mutation."""
        return self.append(
            user_id=user_id,
            action=action,
            result=PermissionResult.GRANTED,
            resource=resource,
            context={"changed_by": changed_by, "details": details},
        )

    def entries(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[PermissionAuditLog]:
        """Entries in sequence order, optionally within ``[start, end]``."""
        with self._lock:
            entries = list(self._entries)

        return [
            entry for entry in entries
            if (start is None or entry.timestamp >= start)
            and (end is None or entry.timestamp <= end)
        ]

    def load(self, entries: Iterable[PermissionAuditLog]):
        """Replace in-memory entries with persisted ones. New appends continue the sequence."""
        loaded = sorted(entries, key=lambda e: e.sequence)
        with self._lock:
            known = {entry.id for entry in loaded}
            pending = [entry for entry in self._entries if entry.id not in known]
            self._entries = deque(loaded + pending, maxlen=self.retention)
            self._sequence = max([self._sequence] + [entry.sequence for entry in loaded])

        self.logger.info("Audit log loaded", entries=len(loaded), pending=len(pending))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def last_sequence(self) -> int:
        with self._lock:
            return self._sequence

    def _schedule(self, entry: PermissionAuditLog):
        if self._queue is None or self._loop is None:
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._enqueue(entry)
        else:
            self._loop.call_soon_threadsafe(self._enqueue, entry)

    def _enqueue(self, entry: PermissionAuditLog):
        try:
            self._queue.put_nowait(entry)
        except asyncio.QueueFull:
            self._dropped += 1
            self.logger.warning(
                "Audit queue full, entry not persisted",
                audit_id=entry.id,
                sequence=entry.sequence,
                dropped=self._dropped,
            )

    async def start(self):
        """Start the background writer on the running loop."""
        if self.store is None or self._writer is not None:
            return

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._writer = asyncio.create_task(self._write_loop())
        self.logger.info("Audit writer started", queue_size=self.queue_size)

    async def flush(self):
        """Wait until every queued entry has been written."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self):
        """Drain the queue and stop the writer."""
        if self._writer is None:
            return

        await self.flush()
        self._writer.cancel()
        try:
            await self._writer
        except asyncio.CancelledError:
            pass

        self._writer = None
        self._queue = None
        self._loop = None
        self.logger.info("Audit writer stopped")

    async def _write_loop(self):
        while True:
            entry = await self._queue.get()
            try:
                await self.store.save(entry)
            except Exception as e:
                self.logger.error(
                    "Failed to persist audit entry",
                    audit_id=entry.id,
                    sequence=entry.sequence,
                    error=str(e),
                )
            finally:
                self._queue.task_done()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total = len(self._entries)
            sequence = self._sequence
        return {
            "entries": total,
            "last_sequence": sequence,
            "queued": self._queue.qsize() if self._queue is not None else 0,
            "dropped": self._dropped,
            "writer_running": self._writer is not None,
            "retention": self.retention,
        }
