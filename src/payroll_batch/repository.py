"""Batch persistence.

The repository is the single owner of stored batches. Callers always get a
private copy; changes become visible only through ``save``.
"""

from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from payroll_batch.clock import Clock, utc_now
from payroll_batch.database import BatchRecord, session_scope
from payroll_batch.errors import (
    BatchNotEditableError,
    BatchNotFoundError,
    ConcurrentModificationError,
)
from payroll_batch.types import BatchStatus, PayrollBatch

logger = logging.getLogger(__name__)


class BatchRepository(Protocol):
    """Storage for payroll batches."""

    def get(self, batch_id: str) -> PayrollBatch:
        """Return a copy of the batch. Raises BatchNotFoundError."""
        ...

    def save(self, batch: PayrollBatch) -> None:
        ...

    def list(self, status: BatchStatus | None = None) -> list[PayrollBatch]:
        ...

    def exists(self, batch_id: str) -> bool:
        ...

    def delete(self, batch_id: str) -> None:
        """Delete a Draft batch. Raises BatchNotEditableError otherwise."""
        ...


class InMemoryBatchRepository:
    """Dict-backed repository. Copies on the way in and out."""

    def __init__(self) -> None:
        self._batches: dict[str, PayrollBatch] = {}
        self._mutex = threading.Lock()

    def get(self, batch_id: str) -> PayrollBatch:
        with self._mutex:
            batch = self._batches.get(batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id)
            return copy.deepcopy(batch)

    def save(self, batch: PayrollBatch) -> None:
        with self._mutex:
            stored = self._batches.get(batch.id)
            current = stored.version if stored is not None else 0
            if batch.version != current:
                raise ConcurrentModificationError(
                    batch.id, batch.version, current if stored is not None else None
                )
            batch.version = current + 1
            self._batches[batch.id] = copy.deepcopy(batch)

    def list(self, status: BatchStatus | None = None) -> list[PayrollBatch]:
        with self._mutex:
            batches = [copy.deepcopy(b) for b in self._batches.values()]
        if status is not None:
            batches = [b for b in batches if b.status == status]
        return sorted(batches, key=lambda b: b.id)

    def exists(self, batch_id: str) -> bool:
        with self._mutex:
            return batch_id in self._batches

    def delete(self, batch_id: str) -> None:
        with self._mutex:
            batch = self._batches.get(batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id)
            if batch.status != BatchStatus.DRAFT:
                raise BatchNotEditableError(batch_id, batch.status.value, "delete batch")
            del self._batches[batch_id]


class SqlBatchRepository:
    """SQLAlchemy-backed repository storing each batch as a JSON document."""

    def __init__(self, session_factory: sessionmaker[Session], clock: Clock = utc_now):
        self.session_factory = session_factory
        self.clock = clock

    def get(self, batch_id: str) -> PayrollBatch:
        with session_scope(self.session_factory) as session:
            record = session.get(BatchRecord, batch_id)
            if record is None:
                raise BatchNotFoundError(batch_id)
            batch = PayrollBatch.from_dict(record.document)
            batch.version = record.version
            return batch

    def save(self, batch: PayrollBatch) -> None:
        """Insert or update the batch, checking it was read at the stored version.

        The UPDATE is guarded by the mapper's version column, so a write from
        another process between our read and flush is caught as well.
        """
        document = batch.to_dict()
        try:
            with session_scope(self.session_factory) as session:
                record = session.get(BatchRecord, batch.id)
                if record is None:
                    if batch.version != 0:
                        raise ConcurrentModificationError(batch.id, batch.version, None)
                    record = BatchRecord(
                        id=batch.id,
                        pay_period=batch.pay_period,
                        status=batch.status.value,
                        version=1,
                        document=document,
                        updated_at=self.clock(),
                    )
                    session.add(record)
                else:
                    if record.version != batch.version:
                        raise ConcurrentModificationError(batch.id, batch.version, record.version)
                    record.pay_period = batch.pay_period
                    record.status = batch.status.value
                    record.document = document
                    record.updated_at = self.clock()
                    record.version = batch.version + 1
                session.flush()
                saved_version = record.version
        except (StaleDataError, IntegrityError) as e:
            raise ConcurrentModificationError(batch.id, batch.version, None) from e
        batch.version = saved_version
        logger.debug("Saved batch %s at version %d", batch.id, saved_version)

    def list(self, status: BatchStatus | None = None) -> list[PayrollBatch]:
        stmt = select(BatchRecord).order_by(BatchRecord.id)
        if status is not None:
            stmt = stmt.where(BatchRecord.status == status.value)
        with session_scope(self.session_factory) as session:
            return [PayrollBatch.from_dict(r.document) for r in session.scalars(stmt)]

    def exists(self, batch_id: str) -> bool:
        with session_scope(self.session_factory) as session:
            return session.get(BatchRecord, batch_id) is not None

    def version(self, batch_id: str) -> int:
        with session_scope(self.session_factory) as session:
            record = session.get(BatchRecord, batch_id)
            if record is None:
                raise BatchNotFoundError(batch_id)
            return record.version

    def delete(self, batch_id: str) -> None:
        with session_scope(self.session_factory) as session:
            record = session.get(BatchRecord, batch_id)
            if record is None:
                raise BatchNotFoundError(batch_id)
            if record.status != BatchStatus.DRAFT.value:
                raise BatchNotEditableError(batch_id, record.status, "delete batch")
            session.delete(record)


class BatchLockRegistry:
    """Per-batch re-entrant locks. Operations on one batch are serialized;
    different batches proceed independently."""

    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}
        self._mutex = threading.Lock()

    def _lock_for(self, batch_id: str) -> threading.RLock:
        with self._mutex:
            lock = self._locks.get(batch_id)
            if lock is None:
                lock = self._locks[batch_id] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, batch_id: str) -> Iterator[None]:
        lock = self._lock_for(batch_id)
        with lock:
            yield
