"""
Procurement Module Service (``site_modules.procurement.service``).

Responsibility
--------------
Create requisitions (with the budget soft gate), purchase requests (SC)
and purchase orders (OC), and cancel purchase orders.  Budget checks are
delegated to ``site_engines.budget``; ordering coverage to
``site_engines.reconciliation``; material consumption statistics to
``site_engines.consumption``.

Architecture position
---------------------
**Modules layer** -- thin ERP glue.  ``ProcurementService`` is the sole
public entry point for procurement writes.  It composes
``BudgetService`` (with ``auto_commit=False``) so utilisation and the
requisition share one transaction.

Invariants enforced
-------------------
* Each public method owns the transaction boundary (``commit`` on
  success, ``rollback`` on failure or exception).
* Quantities are validated before anything is added to the session.
* Over-ordering an SC line is allowed and logged; OC line quantities must
  be positive.
* Purchase order ``sequence`` is assigned here, strictly increasing.

Failure modes
-------------
* ``OverBudgetError`` / ``UnbudgetedMaterialError`` under a blocking
  policy when the caller has not confirmed.
* ``InvalidQuantityError`` for zero/negative quantities.
* ``MissingLinkageError`` when an OC item references an SC line of a
  different purchase request, or when no SC item matches the catalog.
* ``*NotFoundError`` for unknown ids.

Usage::

    service = ProcurementService(session, clock=clock, policy=config.reconciliation)
    result = service.create_requisition(header, lines, actor_id=actor_id)
    for line_id, check in result.warnings:
        ...
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from site_config.schema import OverBudgetPolicy, ReconciliationPolicy
from site_engines.budget import BudgetCheck, BudgetStatus, check_budget
from site_engines.consumption import ConsumptionStatistics, consumption_statistics
from site_engines.reconciliation import OrderableLine, list_orderable_request_lines
from site_kernel.domain.clock import Clock, SystemClock
from site_kernel.domain.documents import (
    PurchaseOrder,
    PurchaseOrderStatus,
    PurchaseRequestStatus,
    Requisition,
    RequisitionLineStatus,
)
from site_kernel.domain.item_ref import ByDescription, ById, ItemCatalog, ItemKind
from site_kernel.domain.quantity import ZERO, quantity_sum, require_positive
from site_kernel.exceptions import (
    MissingLinkageError,
    OverBudgetError,
    PurchaseOrderNotFoundError,
    PurchaseRequestLineNotFoundError,
    PurchaseRequestNotFoundError,
    RequisitionNotFoundError,
    UnbudgetedMaterialError,
)
from site_kernel.logging_config import LogContext, get_logger
from site_modules.budget.service import BudgetService
from site_modules.procurement.catalog import load_catalog
from site_modules.procurement.models import (
    PurchaseOrderItem,
    PurchaseRequestItem,
    PurchaseRequestResult,
    RequisitionHeader,
    RequisitionLineInput,
    RequisitionResult,
    SkippedItem,
)
from site_modules.procurement.orm import (
    PurchaseOrderLineModel,
    PurchaseOrderModel,
    PurchaseRequestLineModel,
    PurchaseRequestModel,
    RequisitionLineModel,
    RequisitionModel,
)

logger = get_logger("modules.procurement.service")


class ProcurementService:
    """
    Requisitions, purchase requests and purchase orders.

    Contract
    --------
    * Every write returns frozen kernel documents read back from the
      persisted rows.
    * The budget policy comes from ``site_config``; the default is WARN.

    Guarantees
    ----------
    * Session is committed on success and rolled back on any exception.
    * Clock is injectable for deterministic testing.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: ReconciliationPolicy | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or ReconciliationPolicy()
        self._budget = BudgetService(session, auto_commit=False)

    # =========================================================================
    # Requisitions
    # =========================================================================

    def _gate_budget(
        self,
        header: RequisitionHeader,
        lines: Sequence[RequisitionLineInput],
        confirmed: bool,
    ) -> list[BudgetCheck | None]:
        """Check every material line; raise under a blocking policy."""
        checks: list[BudgetCheck | None] = []
        if header.front_specialty_id is None:
            return [None] * len(lines)

        entries = self._budget.get_entries(header.front_specialty_id)
        in_form: dict[str, Decimal] = {}
        for line in lines:
            ref = line.item_ref
            if line.kind != ItemKind.MATERIAL or not isinstance(ref, ById):
                checks.append(None)
                continue
            material_key = str(ref.item_id)
            check = check_budget(
                entries,
                ref.item_id,
                header.front_specialty_id,
                requested_qty=line.quantity,
                pending_in_form_qty=in_form.get(material_key, ZERO),
                near_threshold=self._policy.near_budget_threshold,
            )
            in_form[material_key] = in_form.get(material_key, ZERO) + line.quantity
            checks.append(check)

            if confirmed:
                continue
            if (
                check.status is BudgetStatus.OVER
                and self._policy.over_budget_policy is OverBudgetPolicy.BLOCK
            ):
                raise OverBudgetError(
                    ref.item_id, header.front_specialty_id, check.projected, check.budgeted
                )
            if check.status is BudgetStatus.UNBUDGETED and not self._policy.allow_unbudgeted:
                raise UnbudgetedMaterialError(ref.item_id, header.front_specialty_id)
        return checks

    def create_requisition(
        self,
        header: RequisitionHeader,
        lines: Sequence[RequisitionLineInput],
        actor_id: UUID,
        confirmed: bool = False,
    ) -> RequisitionResult:
        """
        Persist a requisition and accumulate budget utilisation.

        Preconditions:
            - Every line quantity is > 0.
        Postconditions:
            - Material lines with a budget row increase its utilisation.
            - The returned result carries each material line's budget check.
        Raises:
            OverBudgetError: BLOCK policy, projected > budgeted, not confirmed.
            UnbudgetedMaterialError: unbudgeted material refused by policy.
        """
        quantities = [
            require_positive(line.quantity, "quantity_requested", index)
            for index, line in enumerate(lines)
        ]
        lines = [
            RequisitionLineInput(
                kind=line.kind,
                quantity=qty,
                item_ref=line.item_ref,
                unit=line.unit,
                description=line.description,
            )
            for line, qty in zip(lines, quantities)
        ]

        try:
            checks = self._gate_budget(header, lines, confirmed)

            number = (self._session.scalar(select(func.max(RequisitionModel.number))) or 0) + 1
            requisition = RequisitionModel(
                number=number,
                work_site_id=header.work_site_id,
                front_id=header.front_id,
                front_specialty_id=header.front_specialty_id,
                block=header.block,
                specialty=header.specialty,
                requester=header.requester,
                request_date=header.request_date,
                created_by_id=actor_id,
            )
            self._session.add(requisition)
            self._session.flush()

            line_models = []
            for position, line in enumerate(lines, start=1):
                model = RequisitionLineModel(
                    requisition_id=requisition.id,
                    line_number=position,
                    kind=line.kind.value,
                    description=line.description,
                    unit=line.unit,
                    quantity_requested=line.quantity,
                    quantity_fulfilled=ZERO,
                    status=RequisitionLineStatus.PENDING.value,
                    created_by_id=actor_id,
                )
                model.item_ref = line.item_ref
                self._session.add(model)
                line_models.append(model)
            self._session.flush()

            budget_checks = []
            for model, line, check in zip(line_models, lines, checks):
                if check is None:
                    continue
                budget_checks.append((model.id, check))
                if check.status is not BudgetStatus.UNBUDGETED:
                    self._budget.record_utilization(
                        header.front_specialty_id, line.item_ref.item_id, line.quantity, actor_id
                    )

            self._session.commit()
            self._session.refresh(requisition)

            with LogContext.bind(requisition_id=str(requisition.id)):
                logger.info("requisition_created", extra={
                    "number": number,
                    "lines": len(lines),
                    "budget_warnings": sum(
                        1 for _id, c in budget_checks if c.status is not BudgetStatus.OK
                    ),
                    "confirmed": confirmed,
                })
            return RequisitionResult(
                requisition=requisition.to_dto(),
                budget_checks=tuple(budget_checks),
            )

        except Exception:
            self._session.rollback()
            raise

    def get_requisition(self, requisition_id: UUID) -> Requisition:
        model = self._session.get(RequisitionModel, requisition_id)
        if model is None:
            raise RequisitionNotFoundError(requisition_id)
        return model.to_dto()

    def list_requisitions(self, work_site_id: UUID | None = None) -> tuple[Requisition, ...]:
        stmt = select(RequisitionModel).order_by(RequisitionModel.number)
        if work_site_id is not None:
            stmt = stmt.where(RequisitionModel.work_site_id == work_site_id)
        return tuple(model.to_dto() for model in self._session.scalars(stmt))

    def consumption_statistics(
        self,
        as_of: date,
        work_site_id: UUID | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        category: str | None = None,
    ) -> ConsumptionStatistics:
        """Material consumption figures over a work site's requisitions."""
        return consumption_statistics(
            self.list_requisitions(work_site_id),
            load_catalog(self._session),
            as_of,
            start_date=start_date,
            end_date=end_date,
            category=category,
        )

    # =========================================================================
    # Purchase requests (SC)
    # =========================================================================

    @staticmethod
    def _resolve_item(catalog: ItemCatalog, item: PurchaseRequestItem) -> ById | None:
        if item.material_id is not None:
            found = catalog.get(ById(item.kind, item.material_id))
            if found is not None:
                return found.ref
        if item.description:
            found = catalog.get(ByDescription(item.description, item.category, item.kind))
            if found is not None:
                return found.ref
        return None

    def create_purchase_request(
        self,
        requisition_id: UUID,
        items: Sequence[PurchaseRequestItem],
        actor_id: UUID,
        number: str | None = None,
        request_date: date | None = None,
    ) -> PurchaseRequestResult:
        """
        Create an SC from a requisition.

        Each item is matched to the catalog by id, falling back to
        description and category.  Items that match nothing are skipped
        and reported in the result.

        Raises:
            RequisitionNotFoundError: unknown requisition.
            MissingLinkageError: no item matched the catalog.
            InvalidQuantityError: an item quantity is zero or negative.
        """
        requisition = self._session.get(RequisitionModel, requisition_id)
        if requisition is None:
            raise RequisitionNotFoundError(requisition_id)

        catalog = load_catalog(self._session)
        resolved: list[tuple[PurchaseRequestItem, ById, Decimal]] = []
        skipped: list[SkippedItem] = []
        for index, item in enumerate(items):
            quantity = require_positive(item.quantity, "quantity", index)
            ref = self._resolve_item(catalog, item)
            if ref is None:
                label = item.description or str(item.material_id)
                skipped.append(SkippedItem(index, label, "no matching catalog item"))
                logger.warning("purchase_request_item_unmatched", extra={
                    "requisition_id": str(requisition_id),
                    "index": index,
                    "description": label,
                })
                continue
            resolved.append((item, ref, quantity))

        if not resolved:
            raise MissingLinkageError(
                "PurchaseRequest", requisition_id, "no item matched the catalog"
            )

        try:
            if number is None:
                count = self._session.scalar(select(func.count(PurchaseRequestModel.id))) or 0
                number = f"SC-{count + 1:05d}"
            request = PurchaseRequestModel(
                number=number,
                requisition_id=requisition_id,
                request_date=request_date or self._clock.now().date(),
                status=PurchaseRequestStatus.PENDING.value,
                created_by_id=actor_id,
            )
            self._session.add(request)
            self._session.flush()

            for position, (item, ref, quantity) in enumerate(resolved, start=1):
                line = PurchaseRequestLineModel(
                    purchase_request_id=request.id,
                    requisition_id=requisition_id,
                    line_number=position,
                    quantity=quantity,
                    unit=item.unit,
                    status=PurchaseRequestStatus.PENDING.value,
                    created_by_id=actor_id,
                )
                line.item_ref = ref
                self._session.add(line)

            self._session.commit()
            self._session.refresh(request)
        except Exception:
            self._session.rollback()
            raise

        logger.info("purchase_request_created", extra={
            "purchase_request_id": str(request.id),
            "number": number,
            "requisition_id": str(requisition_id),
            "lines": len(resolved),
            "skipped": len(skipped),
        })
        return PurchaseRequestResult(purchase_request=request.to_dto(), skipped=tuple(skipped))

    def list_orderable_lines(self, purchase_request_id: UUID) -> tuple[OrderableLine, ...]:
        """SC lines with quantity not yet covered by non-cancelled OCs."""
        request = self._session.get(PurchaseRequestModel, purchase_request_id)
        if request is None:
            raise PurchaseRequestNotFoundError(purchase_request_id)
        line_ids = [line.id for line in request.lines]
        orders = self._session.scalars(
            select(PurchaseOrderModel)
            .join(PurchaseOrderLineModel)
            .where(PurchaseOrderLineModel.purchase_request_line_id.in_(line_ids))
            .distinct()
        )
        return list_orderable_request_lines(
            request.to_dto().lines, tuple(order.to_dto() for order in orders)
        )

    # =========================================================================
    # Purchase orders (OC)
    # =========================================================================

    def create_purchase_order(
        self,
        purchase_request_id: UUID,
        number: str,
        supplier: str,
        order_date: date,
        items: Sequence[PurchaseOrderItem],
        actor_id: UUID,
        expected_date: date | None = None,
    ) -> PurchaseOrder:
        """
        Issue an OC against lines of one SC.

        Ordering more than the SC line approved is allowed.

        Raises:
            PurchaseRequestNotFoundError: unknown SC.
            PurchaseRequestLineNotFoundError: unknown SC line.
            MissingLinkageError: SC line belongs to another SC.
            InvalidQuantityError: zero/negative item quantity.
        """
        request = self._session.get(PurchaseRequestModel, purchase_request_id)
        if request is None:
            raise PurchaseRequestNotFoundError(purchase_request_id)

        validated: list[tuple[PurchaseOrderItem, PurchaseRequestLineModel, Decimal]] = []
        for index, item in enumerate(items):
            quantity = require_positive(item.quantity, "quantity", index)
            request_line = self._session.get(PurchaseRequestLineModel, item.purchase_request_line_id)
            if request_line is None:
                raise PurchaseRequestLineNotFoundError(item.purchase_request_line_id)
            if request_line.purchase_request_id != purchase_request_id:
                raise MissingLinkageError(
                    "PurchaseRequestLine",
                    request_line.id,
                    f"belongs to purchase request {request_line.purchase_request_id}",
                )
            validated.append((item, request_line, quantity))

        try:
            sequence = (self._session.scalar(select(func.max(PurchaseOrderModel.sequence))) or 0) + 1
            order = PurchaseOrderModel(
                number=number,
                supplier=supplier,
                status=PurchaseOrderStatus.ISSUED.value,
                order_date=order_date,
                expected_date=expected_date,
                sequence=sequence,
                purchase_request_id=purchase_request_id,
                created_by_id=actor_id,
            )
            self._session.add(order)
            self._session.flush()

            for position, (item, request_line, quantity) in enumerate(validated, start=1):
                self._session.add(PurchaseOrderLineModel(
                    purchase_order_id=order.id,
                    purchase_request_line_id=request_line.id,
                    line_number=position,
                    quantity=quantity,
                    unit_price=item.unit_price,
                    created_by_id=actor_id,
                ))
            self._session.flush()

            for _item, request_line, _qty in validated:
                ordered = quantity_sum(
                    line.quantity
                    for line in self._session.scalars(
                        select(PurchaseOrderLineModel)
                        .join(PurchaseOrderModel)
                        .where(
                            PurchaseOrderLineModel.purchase_request_line_id == request_line.id,
                            PurchaseOrderModel.status != PurchaseOrderStatus.CANCELLED.value,
                        )
                    )
                )
                if ordered > request_line.quantity:
                    logger.info("purchase_request_line_over_ordered", extra={
                        "purchase_request_line_id": str(request_line.id),
                        "approved": str(request_line.quantity),
                        "ordered": str(ordered),
                    })

            self._session.commit()
            self._session.refresh(order)
        except Exception:
            self._session.rollback()
            raise

        logger.info("purchase_order_created", extra={
            "purchase_order_id": str(order.id),
            "number": number,
            "supplier": supplier,
            "sequence": sequence,
            "lines": len(validated),
        })
        return order.to_dto()

    def cancel_purchase_order(self, order_id: UUID, actor_id: UUID) -> PurchaseOrder:
        """Cancel an OC.  Cancelling twice is a no-op."""
        order = self._session.get(PurchaseOrderModel, order_id)
        if order is None:
            raise PurchaseOrderNotFoundError(order_id)
        if order.status == PurchaseOrderStatus.CANCELLED.value:
            return order.to_dto()

        try:
            previous = order.status
            order.status = PurchaseOrderStatus.CANCELLED.value
            order.updated_by_id = actor_id
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("purchase_order_cancelled", extra={
            "purchase_order_id": str(order_id),
            "number": order.number,
            "previous_status": previous,
        })
        return order.to_dto()
