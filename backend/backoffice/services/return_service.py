"""
Returns Service - customer returns, restocking, damaged-goods write-offs, refunds
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from backoffice.core.clock import Clock, system_clock
from backoffice.core.database import TenantHandle, transactional
from backoffice.core.exceptions import (
    AmbiguousOrMissingSourceError, CrossBranchReferenceError, InvalidStateTransitionError,
    NotFoundError, RefundExceedsRemainingError, ReturnWindowExpiredError,
    ShiftNotOpenError, ValidationError
)
from backoffice.models import (
    ItemCondition, Layby, LaybyItem, PaymentMethod, Quotation, QuotationItem,
    Return, ReturnItem, ReturnRefund, ReturnStatus, Sale, SaleItem, Shift, ShiftStatus
)
from backoffice.schemas import (
    InventoryLossCreate, InventoryLossItemCreate, LossTypeEnum, ReturnCreate,
    ReturnItemCreate, ReturnRefundCreate, ReturnUpdate
)
from backoffice.services.branch_service import get_return_window_days
from backoffice.services.currency_service import CurrencyNormalizer, to_decimal, to_money
from backoffice.services.inventory_loss_service import InventoryLossService
from backoffice.services.inventory_service import InventoryLedger
from backoffice.services.numbering import RETURN_PREFIX, next_document_number

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class ReturnSource:
    """A kind of original transaction a return can reference"""
    label: str
    field: str
    document: type
    line: type
    line_field: str
    line_parent_field: str
    date_field: str


RETURN_SOURCES = (
    ReturnSource("Sale", "sale_id", Sale, SaleItem, "sale_item_id", "sale_id", "sale_date"),
    ReturnSource("Layby", "layby_id", Layby, LaybyItem, "layby_item_id", "layby_id", "layby_date"),
    ReturnSource("Quotation", "quotation_id", Quotation, QuotationItem, "quotation_item_id", "quotation_id", "quotation_date"),
)


def resolve_source(record) -> Tuple[ReturnSource, int]:
    """The single original transaction referenced by ``record``"""
    provided = [source for source in RETURN_SOURCES if getattr(record, source.field, None) is not None]
    if len(provided) != 1:
        raise AmbiguousOrMissingSourceError(len(provided))
    source = provided[0]
    return source, getattr(record, source.field)


class ReturnService:
    """Return lifecycle: draft -> approved -> processed; refunds follow processing"""

    def __init__(self, handle: TenantHandle, clock: Clock = system_clock):
        self.handle = handle
        self.clock = clock

    # ---------- queries ----------

    def _get(self, db: Session, return_id: int, lock: bool = False) -> Return:
        query = db.query(Return).options(
            selectinload(Return.items),
            selectinload(Return.refunds)
        ).filter(Return.id == return_id)
        if lock:
            query = query.with_for_update()
        return_record = query.first()
        if not return_record:
            raise NotFoundError("Return", return_id)
        return return_record

    def get_by_id(self, return_id: int) -> Return:
        """Get a return with its items and refunds"""
        with self.handle.session() as db:
            return self._get(db, return_id)

    def list(self, branch_id: Optional[int] = None, status: Optional[str] = None,
             start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
             limit: int = 50, offset: int = 0) -> List[Return]:
        with self.handle.session() as db:
            query = db.query(Return)
            if branch_id:
                query = query.filter(Return.branch_id == branch_id)
            if status:
                query = query.filter(Return.status == status)
            if start_date:
                query = query.filter(Return.return_date >= start_date)
            if end_date:
                query = query.filter(Return.return_date <= end_date)
            return query.order_by(Return.return_date.desc(), Return.id.desc()).offset(offset).limit(limit).all()

    def report(self, branch_id: int, start_date: datetime, end_date: datetime) -> dict:
        """Processed returns of a branch within a date range"""
        with self.handle.session() as db:
            returns = db.query(Return).options(selectinload(Return.items)).filter(
                Return.branch_id == branch_id,
                Return.status == ReturnStatus.PROCESSED.value,
                Return.return_date >= start_date,
                Return.return_date <= end_date
            ).all()

        total_value = ZERO
        total_refunded = ZERO
        conditions = {ItemCondition.GOOD.value: 0, ItemCondition.DAMAGED.value: 0}
        for return_record in returns:
            total_value += to_decimal(return_record.total_amount)
            total_refunded += to_decimal(return_record.total_refunded)
            for item in return_record.items:
                conditions[item.condition] = conditions.get(item.condition, 0) + 1

        return {
            "start_date": start_date,
            "end_date": end_date,
            "total_returns": len(returns),
            "total_value": to_money(total_value),
            "total_refunded": to_money(total_refunded),
            "total_pending": to_money(total_value - total_refunded),
            "item_conditions": conditions,
        }

    # ---------- draft composition ----------

    def _load_document(self, db: Session, source: ReturnSource, document_id: int, branch_id: int):
        document = db.query(source.document).filter(source.document.id == document_id).first()
        if not document:
            raise NotFoundError(source.label, document_id)
        if document.branch_id != branch_id:
            raise CrossBranchReferenceError(
                f"{source.label} belongs to another branch",
                document_id=document_id,
                branch_id=branch_id,
            )
        return document

    def _check_return_window(self, db: Session, branch_id: int, transaction_date: datetime):
        window_days = get_return_window_days(db, branch_id)
        days_elapsed = (self.clock.now() - transaction_date).days
        if days_elapsed > window_days:
            raise ReturnWindowExpiredError(days_elapsed, window_days)

    def _already_returned(self, db: Session, source: ReturnSource, line_id: int,
                          exclude_return_id: Optional[int]) -> Decimal:
        line_column = getattr(ReturnItem, source.line_field)
        query = db.query(func.sum(ReturnItem.quantity)).filter(line_column == line_id)
        if exclude_return_id is not None:
            query = query.filter(ReturnItem.return_id != exclude_return_id)
        return to_decimal(query.scalar() or 0)

    def _build_items(self, db: Session, source: ReturnSource, document,
                     items_data: Sequence[ReturnItemCreate],
                     exclude_return_id: Optional[int] = None) -> Tuple[List[ReturnItem], Decimal]:
        if not items_data:
            raise ValidationError("At least one item is required")

        ledger = InventoryLedger(db, self.clock)
        requested: Dict[int, Decimal] = {}
        items = []
        total = ZERO

        for item_data in items_data:
            ledger.require_product(item_data.product_id)
            quantity = to_decimal(item_data.quantity)
            if quantity <= 0:
                raise ValidationError("Return quantity must be positive", product_id=item_data.product_id)

            for other in RETURN_SOURCES:
                if other is not source and getattr(item_data, other.line_field) is not None:
                    raise ValidationError(
                        f"Items must reference lines of the original {source.label.lower()}",
                        field=other.line_field,
                    )

            line_id = getattr(item_data, source.line_field)
            if line_id is None:
                raise ValidationError(f"{source.line_field} is required for every item", product_id=item_data.product_id)

            line = db.query(source.line).filter(source.line.id == line_id).first()
            if not line or getattr(line, source.line_parent_field) != document.id:
                raise NotFoundError(f"{source.label} item", line_id)
            if line.product_id != item_data.product_id:
                raise ValidationError(
                    "Product does not match the original line",
                    line_id=line_id,
                    product_id=item_data.product_id,
                )

            requested[line_id] = requested.get(line_id, ZERO) + quantity
            sold = to_decimal(line.quantity)
            returned = self._already_returned(db, source, line_id, exclude_return_id)
            if returned + requested[line_id] > sold:
                raise ValidationError(
                    "Return quantity exceeds the quantity still returnable",
                    line_id=line_id,
                    sold=sold,
                    already_returned=returned,
                    requested=requested[line_id],
                )

            price = to_decimal(line.price)
            refund_amount = to_money(quantity * price)
            items.append(ReturnItem(
                product_id=item_data.product_id,
                quantity=quantity,
                price=price,
                condition=getattr(item_data.condition, "value", item_data.condition),
                condition_notes=item_data.condition_notes,
                refund_amount=refund_amount,
                notes=item_data.notes,
                **{source.line_field: line_id},
            ))
            total += refund_amount

        return items, to_money(total)

    @transactional
    def create(self, db: Session, return_data: ReturnCreate, created_by: str) -> Return:
        source, document_id = resolve_source(return_data)
        InventoryLedger(db, self.clock).require_branch(return_data.branch_id)
        document = self._load_document(db, source, document_id, return_data.branch_id)
        self._check_return_window(db, return_data.branch_id, getattr(document, source.date_field))

        items, total = self._build_items(db, source, document, return_data.items)
        now = self.clock.now()

        return_record = Return(
            return_number=next_document_number(db, Return.return_number, RETURN_PREFIX, now.year),
            branch_id=return_data.branch_id,
            customer_id=document.customer_id,
            reason=return_data.reason,
            notes=return_data.notes,
            total_amount=total,
            total_refunded=ZERO,
            status=ReturnStatus.DRAFT.value,
            return_date=return_data.return_date or now,
            created_by=created_by,
            **{source.field: document_id},
        )
        return_record.items = items
        db.add(return_record)
        db.flush()

        logger.info(
            "return_created tenant=%s return=%s number=%s source=%s:%s total=%s",
            self.handle.tenant_id, return_record.id, return_record.return_number,
            source.field, document_id, total
        )
        return return_record

    @transactional
    def update(self, db: Session, return_id: int, return_data: ReturnUpdate) -> Return:
        return_record = self._get(db, return_id, lock=True)
        if return_record.status != ReturnStatus.DRAFT.value:
            raise InvalidStateTransitionError("return", return_record.status, "update")

        changes = return_data.model_dump(exclude_unset=True, exclude={"items"})
        for key, value in changes.items():
            if value is not None or key == "notes":
                setattr(return_record, key, value)

        if return_data.items is not None:
            source, document_id = resolve_source(return_record)
            document = self._load_document(db, source, document_id, return_record.branch_id)
            items, total = self._build_items(db, source, document, return_data.items, exclude_return_id=return_record.id)
            return_record.items.clear()
            db.flush()
            return_record.items.extend(items)
            return_record.total_amount = total

        db.flush()
        logger.info("return_updated tenant=%s return=%s total=%s", self.handle.tenant_id, return_record.id, return_record.total_amount)
        return return_record

    @transactional
    def delete(self, db: Session, return_id: int) -> None:
        return_record = self._get(db, return_id, lock=True)
        if return_record.status != ReturnStatus.DRAFT.value:
            raise InvalidStateTransitionError("return", return_record.status, "delete")
        db.delete(return_record)
        db.flush()
        logger.info("return_deleted tenant=%s return=%s", self.handle.tenant_id, return_id)

    # ---------- transitions ----------

    @transactional
    def approve(self, db: Session, return_id: int, approved_by: str) -> Return:
        return_record = self._get(db, return_id, lock=True)
        if return_record.status != ReturnStatus.DRAFT.value:
            raise InvalidStateTransitionError("return", return_record.status, "approve")

        return_record.status = ReturnStatus.APPROVED.value
        return_record.approved_by = approved_by
        return_record.approved_at = self.clock.now()
        db.flush()
        logger.info("return_approved tenant=%s return=%s", self.handle.tenant_id, return_record.id)
        return return_record

    @transactional
    def process(self, db: Session, return_id: int, processed_by: str) -> Return:
        """Restock good items and write damaged ones off, all in one transaction"""
        return_record = self._get(db, return_id, lock=True)
        if return_record.status != ReturnStatus.APPROVED.value:
            raise InvalidStateTransitionError("return", return_record.status, "process")

        ledger = InventoryLedger(db, self.clock)
        losses = InventoryLossService(self.handle, self.clock)
        now = self.clock.now()

        for item in return_record.items:
            if item.condition == ItemCondition.GOOD.value:
                ledger.adjust(return_record.branch_id, item.product_id, to_decimal(item.quantity), now)
                continue

            # Damaged goods never re-entered stock, so the loss must not deduct any
            loss = losses.create_loss(
                InventoryLossCreate(
                    branch_id=return_record.branch_id,
                    loss_type=LossTypeEnum.BREAKAGE,
                    reason=f"Returned damaged item from return {return_record.return_number}",
                    reference_number=return_record.return_number,
                    loss_date=now,
                    notes=item.condition_notes,
                    items=[InventoryLossItemCreate(
                        product_id=item.product_id,
                        quantity=item.quantity,
                        notes=item.condition_notes,
                    )],
                ),
                processed_by,
                deducts_stock=False,
            )
            losses.approve(loss.id, processed_by)
            item.inventory_loss_id = loss.id

        return_record.status = ReturnStatus.PROCESSED.value
        return_record.processed_by = processed_by
        return_record.processed_at = now
        db.flush()

        logger.info(
            "return_processed tenant=%s return=%s items=%s",
            self.handle.tenant_id, return_record.id, len(return_record.items)
        )
        return return_record

    # ---------- refunds ----------

    @transactional
    def add_refund(self, db: Session, return_id: int, refund_data: ReturnRefundCreate,
                   created_by: str) -> ReturnRefund:
        return_record = self._get(db, return_id, lock=True)
        if return_record.status != ReturnStatus.PROCESSED.value:
            raise InvalidStateTransitionError(
                "return", return_record.status, "refund",
                "Return must be processed before refunds can be added"
            )
        if to_decimal(refund_data.amount) <= 0:
            raise ValidationError("Refund amount must be positive", amount=refund_data.amount)
        if not db.query(PaymentMethod).filter(PaymentMethod.id == refund_data.payment_method_id).first():
            raise NotFoundError("Payment method", refund_data.payment_method_id)

        amount_in_base, rate = CurrencyNormalizer(db).normalize(refund_data.amount, refund_data.currency_id)
        remaining = to_money(to_decimal(return_record.total_amount) - to_decimal(return_record.total_refunded))
        if amount_in_base > remaining:
            raise RefundExceedsRemainingError(amount_in_base, remaining)

        if refund_data.shift_id is not None:
            shift = db.query(Shift).filter(Shift.id == refund_data.shift_id).first()
            if not shift:
                raise NotFoundError("Shift", refund_data.shift_id)
            if shift.status != ShiftStatus.OPEN.value:
                raise ShiftNotOpenError(shift.id, shift.status)

        refund = ReturnRefund(
            return_id=return_record.id,
            amount=to_money(refund_data.amount),
            currency_id=refund_data.currency_id,
            exchange_rate=rate,
            amount_in_base_currency=amount_in_base,
            payment_method_id=refund_data.payment_method_id,
            shift_id=refund_data.shift_id,
            refund_date=refund_data.refund_date or self.clock.now(),
            reference_number=refund_data.reference_number,
            notes=refund_data.notes,
            created_by=created_by,
        )
        db.add(refund)
        return_record.total_refunded = to_money(to_decimal(return_record.total_refunded) + amount_in_base)
        db.flush()

        logger.info(
            "return_refund_added tenant=%s return=%s refund=%s amount_base=%s refunded=%s",
            self.handle.tenant_id, return_record.id, refund.id, amount_in_base, return_record.total_refunded
        )
        return refund
