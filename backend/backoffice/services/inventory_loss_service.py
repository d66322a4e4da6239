"""
Inventory Loss Service - write-offs of unsellable stock
"""
import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session, selectinload

from backoffice.core.clock import Clock, system_clock
from backoffice.core.database import TenantHandle, transactional
from backoffice.core.exceptions import InvalidStateTransitionError, NotFoundError
from backoffice.models import InventoryLoss, InventoryLossItem, LossStatus
from backoffice.schemas import InventoryLossCreate
from backoffice.services.currency_service import to_decimal, to_money
from backoffice.services.inventory_service import InventoryLedger
from backoffice.services.numbering import LOSS_PREFIX, next_document_number

logger = logging.getLogger(__name__)


class InventoryLossService:
    def __init__(self, handle: TenantHandle, clock: Clock = system_clock):
        self.handle = handle
        self.clock = clock

    def _get(self, db: Session, loss_id: int, lock: bool = False) -> InventoryLoss:
        query = db.query(InventoryLoss).options(selectinload(InventoryLoss.items)).filter(InventoryLoss.id == loss_id)
        if lock:
            query = query.with_for_update()
        loss = query.first()
        if not loss:
            raise NotFoundError("Inventory loss", loss_id)
        return loss

    def get_by_id(self, loss_id: int) -> InventoryLoss:
        with self.handle.session() as db:
            return self._get(db, loss_id)

    def list(self, branch_id: Optional[int] = None, status: Optional[str] = None) -> List[InventoryLoss]:
        with self.handle.session() as db:
            query = db.query(InventoryLoss).options(selectinload(InventoryLoss.items))
            if branch_id:
                query = query.filter(InventoryLoss.branch_id == branch_id)
            if status:
                query = query.filter(InventoryLoss.status == status)
            return query.order_by(InventoryLoss.loss_date.desc(), InventoryLoss.id.desc()).all()

    @transactional
    def create_loss(self, db: Session, data: InventoryLossCreate, created_by: str,
                    deducts_stock: bool = True) -> InventoryLoss:
        """Record a draft loss, valuing every line at the product's standing cost"""
        ledger = InventoryLedger(db, self.clock)
        ledger.require_branch(data.branch_id)
        now = self.clock.now()

        loss = InventoryLoss(
            loss_number=next_document_number(db, InventoryLoss.loss_number, LOSS_PREFIX, now.year),
            branch_id=data.branch_id,
            loss_type=data.loss_type.value,
            reason=data.reason,
            reference_number=data.reference_number,
            status=LossStatus.DRAFT.value,
            deducts_stock=deducts_stock,
            loss_date=data.loss_date or now,
            notes=data.notes,
            created_by=created_by,
        )

        total_value = Decimal("0")
        for item_data in data.items:
            product = ledger.require_product(item_data.product_id)
            cost_price = to_decimal(product.cost)
            line_total = to_money(to_decimal(item_data.quantity) * cost_price)
            loss.items.append(InventoryLossItem(
                product_id=product.id,
                quantity=item_data.quantity,
                cost_price=cost_price,
                line_total=line_total,
                notes=item_data.notes,
            ))
            total_value += line_total

        loss.total_value = to_money(total_value)
        db.add(loss)
        db.flush()

        logger.info(
            "inventory_loss_created tenant=%s loss=%s number=%s branch=%s value=%s",
            self.handle.tenant_id, loss.id, loss.loss_number, loss.branch_id, loss.total_value
        )
        return loss

    @transactional
    def approve(self, db: Session, loss_id: int, approved_by: str) -> InventoryLoss:
        """Approve a draft loss and take its quantities out of stock"""
        loss = self._get(db, loss_id, lock=True)
        if loss.status != LossStatus.DRAFT.value:
            raise InvalidStateTransitionError("inventory loss", loss.status, "approve")

        if loss.deducts_stock:
            ledger = InventoryLedger(db, self.clock)
            for item in loss.items:
                ledger.adjust(loss.branch_id, item.product_id, -to_decimal(item.quantity))

        loss.status = LossStatus.APPROVED.value
        loss.approved_by = approved_by
        loss.approved_at = self.clock.now()
        db.flush()

        logger.info(
            "inventory_loss_approved tenant=%s loss=%s deducted=%s",
            self.handle.tenant_id, loss.id, loss.deducts_stock
        )
        return loss

    @transactional
    def delete(self, db: Session, loss_id: int) -> None:
        loss = self._get(db, loss_id, lock=True)
        if loss.status != LossStatus.DRAFT.value:
            raise InvalidStateTransitionError("inventory loss", loss.status, "delete")
        db.delete(loss)
        db.flush()
