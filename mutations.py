"""Optimistic create/update/delete for the cached entity collections.

One :class:`EntityController` per entity type keeps the collection query
``(namespace,)`` optimistically in step with the backend:

* create appends a pending record, swaps it for the confirmed row on success
  and restores the previous snapshot on failure;
* update goes straight to the backend and invalidates on success;
* delete marks the record pending-delete in place, drops it on success and
  restores both the collection and the single-record entry on failure.

Every create and delete invalidates the namespace once settled, whatever the
outcome, so the next read re-syncs with the backend. Concurrent mutations on
one namespace are not serialized: two of them interleaving between snapshot
and write-back can lose an optimistic patch until that invalidation refetch.
"""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel

from notifications import Notifier, ToastLevel
from periods import TRANSACTIONS, DateRange, transactions_range_key
from query_cache import QueryCache, QueryKey
from schemas import (
    BudgetIn,
    BudgetPatch,
    CategoryIn,
    CategoryPatch,
    EventIn,
    EventPatch,
    SourceIn,
    SourcePatch,
    TransactionIn,
    TransactionPatch,
)
from services import DataService, SelectFilter

logger = logging.getLogger(__name__)

PENDING_PREFIX = "pending-"
DELETION_PREFIX = "deleting-"

_pending_ids = itertools.count(1)


class RecordStatus(str, Enum):
    confirmed = "confirmed"
    pending_create = "pending_create"
    pending_delete = "pending_delete"


def new_pending_id() -> str:
    return f"{PENDING_PREFIX}{time.time_ns()}-{next(_pending_ids)}"


def deletion_marker(record_id: str) -> str:
    return f"{DELETION_PREFIX}{record_id}"


@dataclass(frozen=True)
class CachedRecord:
    id: str
    data: Mapping[str, Any]
    status: RecordStatus = RecordStatus.confirmed
    # Confirmed id hidden behind a deletion marker.
    target_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CachedRecord":
        return cls(id=str(row["id"]), data=dict(row))

    @property
    def locked(self) -> bool:
        return self.status is not RecordStatus.confirmed

    def mark_deleting(self) -> "CachedRecord":
        return replace(
            self,
            id=deletion_marker(self.id),
            status=RecordStatus.pending_delete,
            target_id=self.id,
        )

    def as_dict(self) -> dict[str, Any]:
        return {**self.data, "id": self.id, "status": self.status.value}


@dataclass(frozen=True)
class EntitySpec:
    name: str
    label: str
    table: str
    create_schema: type[BaseModel]
    patch_schema: type[BaseModel]

    @property
    def key(self) -> QueryKey:
        return (self.name,)


ENTITY_SPECS: tuple[EntitySpec, ...] = (
    EntitySpec("budget", "Budget", "budget", BudgetIn, BudgetPatch),
    EntitySpec("category", "Category", "category", CategoryIn, CategoryPatch),
    EntitySpec("event", "Event", "event", EventIn, EventPatch),
    EntitySpec("source", "Source", "source", SourceIn, SourcePatch),
    EntitySpec(TRANSACTIONS, "Transaction", "transactions", TransactionIn, TransactionPatch),
)


@dataclass
class MutationOutcome:
    ok: bool
    record: Optional[CachedRecord] = None
    error: Optional[str] = None


def _error_message(exc: Exception) -> str:
    return str(exc) or exc.__class__.__name__


class EntityController:
    def __init__(
        self,
        spec: EntitySpec,
        cache: QueryCache,
        backend: DataService,
        notifier: Notifier,
    ) -> None:
        self.spec = spec
        self.cache = cache
        self.backend = backend
        self.notifier = notifier

    @property
    def key(self) -> QueryKey:
        return self.spec.key

    def record_key(self, record_id: str) -> QueryKey:
        return (*self.key, record_id)

    # reads

    async def list(self) -> list[CachedRecord]:
        async def fetch_all() -> list[CachedRecord]:
            rows = await self.backend.select(self.spec.table)
            return [CachedRecord.from_row(row) for row in rows]

        return await self.cache.fetch(self.key, fetch_all) or []

    async def get(self, record_id: str) -> Optional[CachedRecord]:
        async def fetch_one() -> Optional[CachedRecord]:
            rows = await self.backend.select(
                self.spec.table, filter=SelectFilter(eq={"id": record_id})
            )
            return CachedRecord.from_row(rows[0]) if rows else None

        return await self.cache.fetch(self.record_key(record_id), fetch_one)

    def find_cached(self, record_id: str) -> Optional[CachedRecord]:
        for record in self.cache.read(self.key) or []:
            if record.id == record_id or record.target_id == record_id:
                return record
        return None

    # mutations

    def _restore(self, key: QueryKey, snapshot: Any, existed: bool) -> None:
        if existed:
            self.cache.write(key, snapshot)
        else:
            self.cache.remove(key)

    async def create(self, values: Mapping[str, Any]) -> MutationOutcome:
        values = dict(values)
        async with self.cache.mutating(self.key):
            existed = self.key in self.cache
            snapshot = self.cache.read(self.key)

            pending = CachedRecord(
                id=new_pending_id(), data=values, status=RecordStatus.pending_create
            )
            self.cache.write(self.key, lambda old: [*(old or []), pending])
            if not existed:
                # Only the pending record is known; readers must not take it for the list.
                self.cache.invalidate(self.key)
            logger.info(f"create_started: entity={self.spec.name} pending_id={pending.id}")

            try:
                row = await self.backend.insert(self.spec.table, values)
            except Exception as exc:
                message = _error_message(exc)
                logger.warning(f"create_failed: entity={self.spec.name} error={message}")
                self._restore(self.key, snapshot, existed)
                self.notifier.error(message)
                return MutationOutcome(False, error=message)

            confirmed = CachedRecord.from_row(row)
            self.cache.write(
                self.key,
                lambda old: [
                    *(record for record in old or [] if record.id != pending.id),
                    confirmed,
                ],
            )
            logger.info(f"create_confirmed: entity={self.spec.name} id={confirmed.id}")
            self.notifier.success(f"{self.spec.label} Added")
            return MutationOutcome(True, record=confirmed)

    async def update(self, record_id: str, patch: Mapping[str, Any]) -> MutationOutcome:
        try:
            await self.backend.update(self.spec.table, record_id, dict(patch))
        except Exception as exc:
            message = _error_message(exc)
            logger.warning(
                f"update_failed: entity={self.spec.name} id={record_id} error={message}"
            )
            self.notifier.error(message)
            return MutationOutcome(False, error=message)

        logger.info(f"update_confirmed: entity={self.spec.name} id={record_id}")
        self.notifier.success(f"{self.spec.label} Updated")
        self.cache.invalidate(self.key)
        return MutationOutcome(True)

    async def delete(self, record_id: str) -> MutationOutcome:
        toast = self.notifier.loading(f"Deleting {self.spec.label}...")

        cached = self.find_cached(record_id)
        if cached is not None and cached.locked:
            message = f"{self.spec.label} has a pending change"
            logger.warning(
                f"delete_refused: entity={self.spec.name} id={record_id} "
                f"status={cached.status.value}"
            )
            self.notifier.resolve(
                toast, ToastLevel.error, "Deletion failed. Please try again.", message
            )
            return MutationOutcome(False, error=message)

        async with self.cache.mutating(self.key):
            single_key = self.record_key(record_id)
            existed = self.key in self.cache
            snapshot = self.cache.read(self.key)
            single_existed = single_key in self.cache
            single_snapshot = self.cache.read(single_key)

            marker = deletion_marker(record_id)
            if existed:
                self.cache.write(
                    self.key,
                    lambda old: [
                        record.mark_deleting() if record.id == record_id else record
                        for record in old or []
                    ],
                )
            if single_existed:
                self.cache.remove(single_key)
            logger.info(f"delete_started: entity={self.spec.name} id={record_id}")

            try:
                await self.backend.delete(self.spec.table, record_id)
            except Exception as exc:
                message = _error_message(exc)
                logger.warning(
                    f"delete_failed: entity={self.spec.name} id={record_id} error={message}"
                )
                self._restore(self.key, snapshot, existed)
                if single_existed:
                    self.cache.write(single_key, single_snapshot)
                self.notifier.resolve(
                    toast, ToastLevel.error, "Deletion failed. Please try again.", message
                )
                return MutationOutcome(False, error=message)

            if existed:
                self.cache.write(
                    self.key,
                    lambda old: [
                        record
                        for record in old or []
                        if not (
                            record.status is RecordStatus.pending_delete
                            and record.id == marker
                        )
                    ],
                )
            logger.info(f"delete_confirmed: entity={self.spec.name} id={record_id}")
            self.notifier.resolve(toast, ToastLevel.success, "Successfully deleted")
            return MutationOutcome(True)


class TransactionController(EntityController):
    async def list_range(self, date_range: DateRange) -> list[CachedRecord]:
        """Transactions created inside ``date_range`` with their relations embedded."""

        async def fetch_range() -> list[CachedRecord]:
            rows = await self.backend.select(
                self.spec.table,
                embed=("category", "source", "event"),
                filter=SelectFilter(
                    gte={"created_at": date_range.start.isoformat()},
                    lte={"created_at": date_range.end.isoformat()},
                    order_by="created_at",
                ),
            )
            return [CachedRecord.from_row(row) for row in rows]

        return await self.cache.fetch(transactions_range_key(date_range), fetch_range) or []


def build_controllers(
    cache: QueryCache, backend: DataService, notifier: Notifier
) -> dict[str, EntityController]:
    controllers: dict[str, EntityController] = {}
    for spec in ENTITY_SPECS:
        cls = TransactionController if spec.name == TRANSACTIONS else EntityController
        controllers[spec.name] = cls(spec, cache, backend, notifier)
    return controllers
