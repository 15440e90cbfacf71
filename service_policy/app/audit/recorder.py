"""
Audit recorder: persists every decision and answers stats queries.

Records go through a bounded in-process queue drained by one worker task,
so evaluation never waits on the sink. Stats are recomputed from the
trail on every query; no running aggregate is kept.
"""

import asyncio
import threading
from datetime import datetime
from typing import List, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..policy.models import AuditRecord, AuditStats


class InMemoryAuditLog:
    """Append-only audit sink."""

    def __init__(self):
        self._records: List[AuditRecord] = []
        self._lock = threading.Lock()

    def append(self, record: AuditRecord) -> None:
        with self._lock:
            self._records.append(record)

    def query(self,
              tenant_id: Optional[str] = None,
              user_id: Optional[str] = None,
              start: Optional[datetime] = None,
              end: Optional[datetime] = None,
              allowed: Optional[bool] = None) -> List[AuditRecord]:
        """Records in append order. ``start`` is inclusive, ``end`` exclusive."""
        with self._lock:
            records = list(self._records)
        return [
            r for r in records
            if (tenant_id is None or r.tenant_id == tenant_id)
            and (user_id is None or r.user_id == user_id)
            and (start is None or r.recorded_at >= start)
            and (end is None or r.recorded_at < end)
            and (allowed is None or r.allowed == allowed)
        ]

    def __len__(self) -> int:
        return len(self._records)


class AuditRecorder:
    """Fire-and-forget decision audit."""

    def __init__(self,
                 sink: Optional[InMemoryAuditLog] = None,
                 queue_size: int = 10_000,
                 metrics: Optional[MetricsCollector] = None):
        self.sink = sink if sink is not None else InMemoryAuditLog()
        self.queue_size = queue_size
        self.metrics = metrics
        self.logger = get_logger("policy.audit")
        self.dropped = 0
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    async def start(self):
        """Start the background writer."""
        if self._worker is not None:
            return
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._worker = asyncio.create_task(self._drain())
        self.logger.info("Audit recorder started", queue_size=self.queue_size)

    async def stop(self):
        """Flush pending records and stop the writer."""
        if self._worker is None:
            return
        await self.flush()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._queue = None
        self.logger.info("Audit recorder stopped", dropped=self.dropped)

    def record(self, record: AuditRecord) -> None:
        """Hand a record off without blocking.

        Without a running writer the record goes straight to the sink.
        """
        if self._queue is None:
            self.sink.append(record)
            return

        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            self.dropped += 1
            if self.metrics:
                self.metrics.increment_counter("policy_audit_dropped_total")
            self.logger.error(
                "Audit queue full, record dropped",
                tenant_id=record.tenant_id,
                user_id=record.user_id,
                resource=record.resource,
                allowed=record.allowed,
                correlation_id=record.correlation_id,
            )

    async def flush(self):
        """Wait until every queued record reached the sink."""
        if self._queue is not None:
            await self._queue.join()

    async def _drain(self):
        while True:
            record = await self._queue.get()
            try:
                self.sink.append(record)
            except Exception as e:
                self.logger.error(
                    "Failed to write audit record",
                    tenant_id=record.tenant_id,
                    user_id=record.user_id,
                    correlation_id=record.correlation_id,
                    error=str(e),
                )
            finally:
                self._queue.task_done()

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def stats(self,
                    tenant_id: str,
                    start: Optional[datetime] = None,
                    end: Optional[datetime] = None) -> AuditStats:
        """Aggregate decisions for ``tenant_id`` in ``[start, end)``."""
        records = self.sink.query(tenant_id=tenant_id, start=start, end=end)
        total = len(records)
        allowed = sum(1 for r in records if r.allowed)
        denied = total - allowed
        return AuditStats(
            total_decisions=total,
            allow_decisions=allowed,
            deny_decisions=denied,
            deny_rate=denied / total if total else 0.0,
            average_latency_ms=sum(r.latency_ms for r in records) / total if total else 0.0,
        )

    async def recent(self, tenant_id: str, user_id: str, limit: int = 50) -> List[AuditRecord]:
        """Latest decisions for a user, newest first."""
        records = self.sink.query(tenant_id=tenant_id, user_id=user_id)
        return list(reversed(records[-limit:])) if limit > 0 else []

    async def deny_decisions(self,
                             tenant_id: str,
                             start: Optional[datetime] = None,
                             end: Optional[datetime] = None,
                             limit: int = 100) -> List[AuditRecord]:
        """Latest DENY decisions for a tenant, newest first."""
        records = self.sink.query(tenant_id=tenant_id, start=start, end=end, allowed=False)
        return list(reversed(records[-limit:])) if limit > 0 else []
