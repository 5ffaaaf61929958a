"""
site_services.change_feed -- Debounced row-change batches and recomputation.

Responsibility:
    Turn a stream of row-level change events (insert / update / delete on
    procurement, inventory and budget tables) into deduplicated batches,
    map each batch to the requisitions it affects, and recompute their
    balances and active orders from freshly loaded snapshots.

Architecture position:
    Services -- sits between the transport that delivers change events
    (database notifications, a message bus, a polling job) and
    ``ReconciliationService``.  The transport is out of scope; it only
    calls ``ChangeBuffer.push`` and, on its own schedule, ``drain``.

Invariants enforced:
    - Within a batch only the last event per (table, row id) counts; a
      delete cancels an earlier upsert of the same row and vice versa.
    - Events without a row id are dropped.
    - A batch never holds more than ``max_batch_size`` rows; the rest stay
      buffered for the next drain.
    - Recomputation always refetches; nothing is patched incrementally.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from site_config.schema import ChangeFeedSettings
from site_engines.reconciliation import LineBalance
from site_kernel.domain.clock import Clock, SystemClock
from site_kernel.domain.documents import PurchaseOrder
from site_kernel.exceptions import RequisitionNotFoundError
from site_kernel.logging_config import LogContext, get_logger
from site_modules.inventory.orm import LedgerEntryModel
from site_modules.procurement.orm import (
    PurchaseOrderLineModel,
    PurchaseRequestLineModel,
    PurchaseRequestModel,
    RequisitionLineModel,
)
from site_services.reconciliation_service import ReconciliationService

logger = get_logger("services.change_feed")

T = TypeVar("T")


class ChangeOp(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    """
    One row change.

    ``record`` carries the new row for inserts and updates and the old row
    for deletes, when the transport provides it.
    """

    table: str
    op: ChangeOp
    row_id: str
    record: Mapping[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str]:
        return (self.table, self.row_id)

    @property
    def is_delete(self) -> bool:
        return self.op == ChangeOp.DELETE


@dataclass(frozen=True)
class ChangeBatch:
    """Deduplicated events ready for processing."""

    batch_id: UUID
    upserts: tuple[ChangeEvent, ...]
    deletes: tuple[ChangeEvent, ...]

    @property
    def tables(self) -> frozenset[str]:
        return frozenset(e.table for e in self.upserts + self.deletes)

    def upsert_ids(self, table: str) -> frozenset[str]:
        return frozenset(e.row_id for e in self.upserts if e.table == table)

    def delete_ids(self, table: str) -> frozenset[str]:
        return frozenset(e.row_id for e in self.deletes if e.table == table)

    def __len__(self) -> int:
        return len(self.upserts) + len(self.deletes)


class ChangeBuffer:
    """
    Collects change events and releases them as batches.

    A batch is ready once the oldest buffered event is ``debounce_seconds``
    old or the buffer holds ``max_batch_size`` rows.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        debounce_seconds: float = 0.5,
        max_batch_size: int = 500,
    ):
        if max_batch_size <= 0:
            raise ValueError("max_batch_size must be positive")
        self._clock = clock or SystemClock()
        self._debounce = debounce_seconds
        self._max_batch = max_batch_size
        self._events: dict[tuple[str, str], ChangeEvent] = {}
        self._first_at: float | None = None

    @classmethod
    def from_settings(cls, settings: ChangeFeedSettings, clock: Clock | None = None) -> ChangeBuffer:
        return cls(clock, settings.debounce_seconds, settings.max_batch_size)

    def __len__(self) -> int:
        return len(self._events)

    def push(self, event: ChangeEvent) -> None:
        if not event.row_id:
            logger.debug("change_event_dropped", extra={"table": event.table})
            return
        if self._first_at is None:
            self._first_at = self._clock.monotonic()
        self._events[event.key] = event

    def push_all(self, events: Iterable[ChangeEvent]) -> None:
        for event in events:
            self.push(event)

    def ready(self) -> bool:
        if not self._events or self._first_at is None:
            return False
        if len(self._events) >= self._max_batch:
            return True
        return self._clock.monotonic() - self._first_at >= self._debounce

    def drain(self, force: bool = False) -> ChangeBatch | None:
        """Release a batch, or None when nothing is ready."""
        if not self._events or not (force or self.ready()):
            return None

        keys = list(self._events)[: self._max_batch]
        taken = [self._events.pop(key) for key in keys]
        self._first_at = self._clock.monotonic() if self._events else None

        batch = ChangeBatch(
            batch_id=uuid4(),
            upserts=tuple(e for e in taken if not e.is_delete),
            deletes=tuple(e for e in taken if e.is_delete),
        )
        logger.info("change_batch_drained", extra={
            "batch_id": str(batch.batch_id),
            "upserts": len(batch.upserts),
            "deletes": len(batch.deletes),
            "remaining": len(self._events),
        })
        return batch


def merge_updates(
    current: Sequence[T],
    new_items: Iterable[T],
    deleted_ids: Iterable[Any],
    id_field: str = "id",
    sort_key: Callable[[T], Any] | None = None,
) -> list[T]:
    """
    Apply refetched rows and deletions to an id-keyed list.

    Existing items keep their position; new items are appended unless
    ``sort_key`` is given.  Items may be mappings or objects.
    """

    def id_of(item: T) -> str:
        if isinstance(item, Mapping):
            return str(item[id_field])
        return str(getattr(item, id_field))

    deleted = {str(i) for i in deleted_ids}
    merged: dict[str, T] = {}
    for item in current:
        key = id_of(item)
        if key not in deleted:
            merged[key] = item
    for item in new_items:
        merged[id_of(item)] = item

    result = list(merged.values())
    if sort_key is not None:
        result.sort(key=sort_key)
    return result


# ---------------------------------------------------------------------------
# Recomputation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RecomputeResult:
    batch_id: UUID
    balances: Mapping[UUID, tuple[LineBalance, ...]]
    active_orders: tuple[PurchaseOrder, ...]
    missing: tuple[UUID, ...] = ()

    @property
    def requisition_ids(self) -> tuple[UUID, ...]:
        return tuple(self.balances)


def _as_uuid(value: Any) -> UUID | None:
    if value is None or value == "":
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class RecomputeDispatcher:
    """
    Maps a ``ChangeBatch`` to affected requisitions and recomputes them.

    Linkage is read from the event record when present and looked up in
    the database otherwise.  Tables with no requisition linkage (budget,
    stock levels, catalog) are ignored.
    """

    def __init__(self, session: Session, service: ReconciliationService | None = None):
        self._session = session
        self._service = service or ReconciliationService(session)
        self._lookups: dict[str, Callable[[ChangeEvent], set[UUID]]] = {
            "requisitions": self._from_requisition,
            "requisition_lines": self._from_requisition_line,
            "purchase_requests": self._from_purchase_request,
            "purchase_request_lines": self._from_request_line,
            "purchase_orders": self._from_purchase_order,
            "purchase_order_lines": self._from_order_line,
            "inventory_ledger_entries": self._from_ledger_entry,
        }

    # -- linkage ----------------------------------------------------------

    def _record_requisition(self, event: ChangeEvent) -> UUID | None:
        return _as_uuid(event.record.get("requisition_id"))

    def _from_requisition(self, event: ChangeEvent) -> set[UUID]:
        rid = _as_uuid(event.row_id)
        return {rid} if rid is not None else set()

    def _from_requisition_line(self, event: ChangeEvent) -> set[UUID]:
        rid = self._record_requisition(event)
        if rid is None:
            model = self._session.get(RequisitionLineModel, _as_uuid(event.row_id))
            rid = model.requisition_id if model is not None else None
        return {rid} if rid is not None else set()

    def _from_purchase_request(self, event: ChangeEvent) -> set[UUID]:
        rid = self._record_requisition(event)
        if rid is None:
            model = self._session.get(PurchaseRequestModel, _as_uuid(event.row_id))
            rid = model.requisition_id if model is not None else None
        return {rid} if rid is not None else set()

    def _from_request_line(self, event: ChangeEvent) -> set[UUID]:
        rid = self._record_requisition(event)
        if rid is None:
            model = self._session.get(PurchaseRequestLineModel, _as_uuid(event.row_id))
            rid = model.requisition_id if model is not None else None
        return {rid} if rid is not None else set()

    def _requisitions_of_request_lines(self, request_line_ids: Iterable[UUID]) -> set[UUID]:
        ids = [i for i in request_line_ids if i is not None]
        if not ids:
            return set()
        stmt = select(PurchaseRequestLineModel.requisition_id).where(
            PurchaseRequestLineModel.id.in_(ids)
        )
        return set(self._session.scalars(stmt))

    def _from_purchase_order(self, event: ChangeEvent) -> set[UUID]:
        order_id = _as_uuid(event.row_id)
        stmt = select(PurchaseOrderLineModel.purchase_request_line_id).where(
            PurchaseOrderLineModel.purchase_order_id == order_id
        )
        return self._requisitions_of_request_lines(self._session.scalars(stmt))

    def _from_order_line(self, event: ChangeEvent) -> set[UUID]:
        request_line_id = _as_uuid(event.record.get("purchase_request_line_id"))
        if request_line_id is None:
            model = self._session.get(PurchaseOrderLineModel, _as_uuid(event.row_id))
            request_line_id = model.purchase_request_line_id if model is not None else None
        return self._requisitions_of_request_lines([request_line_id])

    def _from_ledger_entry(self, event: ChangeEvent) -> set[UUID]:
        rid = self._record_requisition(event)
        if rid is None:
            model = self._session.get(LedgerEntryModel, _as_uuid(event.row_id))
            rid = model.requisition_id if model is not None else None
        return {rid} if rid is not None else set()

    def affected_requisitions(self, batch: ChangeBatch) -> tuple[UUID, ...]:
        affected: set[UUID] = set()
        for event in batch.upserts + batch.deletes:
            lookup = self._lookups.get(event.table)
            if lookup is None:
                continue
            if event.table == "requisitions" and event.is_delete:
                continue
            affected |= lookup(event)
        return tuple(sorted(affected, key=str))

    # -- dispatch ---------------------------------------------------------

    def dispatch(self, batch: ChangeBatch) -> RecomputeResult:
        """Refetch and recompute every requisition touched by ``batch``."""
        with LogContext.bind(change_batch_id=str(batch.batch_id)):
            requisition_ids = self.affected_requisitions(batch)
            balances: dict[UUID, tuple[LineBalance, ...]] = {}
            missing: list[UUID] = []
            for requisition_id in requisition_ids:
                try:
                    balances[requisition_id] = self._service.line_balances(requisition_id)
                except RequisitionNotFoundError:
                    missing.append(requisition_id)

            active: dict[UUID, PurchaseOrder] = {}
            for requisition_id in balances:
                for order in self._service.list_active_purchase_orders(requisition_id=requisition_id):
                    active.setdefault(order.id, order)

            logger.info("change_batch_recomputed", extra={
                "tables": sorted(batch.tables),
                "requisitions": len(balances),
                "missing": len(missing),
                "active_orders": len(active),
            })
            return RecomputeResult(
                batch_id=batch.batch_id,
                balances=balances,
                active_orders=tuple(active.values()),
                missing=tuple(missing),
            )
