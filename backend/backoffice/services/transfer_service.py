"""
Transfer Service - inter-branch stock transfers
"""
import logging
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from backoffice.core.clock import Clock, system_clock
from backoffice.core.database import TenantHandle, transactional
from backoffice.core.exceptions import (
    InsufficientStockError, InvalidStateTransitionError, NotFoundError, ValidationError
)
from backoffice.models import InventoryTransfer, TransferStatus
from backoffice.schemas import TransferCreate
from backoffice.services.currency_service import to_decimal
from backoffice.services.inventory_service import InventoryLedger

logger = logging.getLogger(__name__)


class TransferService:
    """pending -> approved -> completed, or pending -> rejected"""

    def __init__(self, handle: TenantHandle, clock: Clock = system_clock):
        self.handle = handle
        self.clock = clock

    def _get(self, db: Session, transfer_id: int, lock: bool = False) -> InventoryTransfer:
        query = db.query(InventoryTransfer).filter(InventoryTransfer.id == transfer_id)
        if lock:
            query = query.with_for_update()
        transfer = query.first()
        if not transfer:
            raise NotFoundError("Transfer", transfer_id)
        return transfer

    def get_by_id(self, transfer_id: int) -> InventoryTransfer:
        with self.handle.session() as db:
            return self._get(db, transfer_id)

    def list(self, branch_id: Optional[int] = None, status: Optional[str] = None) -> List[InventoryTransfer]:
        """Get transfers, optionally those leaving or entering one branch"""
        with self.handle.session() as db:
            query = db.query(InventoryTransfer)
            if branch_id:
                query = query.filter(or_(
                    InventoryTransfer.from_branch_id == branch_id,
                    InventoryTransfer.to_branch_id == branch_id
                ))
            if status:
                query = query.filter(InventoryTransfer.status == status)
            return query.order_by(InventoryTransfer.created_at.desc(), InventoryTransfer.id.desc()).all()

    @transactional
    def create(self, db: Session, data: TransferCreate, requested_by: str) -> InventoryTransfer:
        if data.from_branch_id == data.to_branch_id:
            raise ValidationError(
                "Cannot transfer to the same branch",
                branch_id=data.from_branch_id
            )

        ledger = InventoryLedger(db, self.clock)
        ledger.require_branch(data.to_branch_id)
        quantity = to_decimal(data.quantity)

        # Advisory only; complete() checks again under lock
        source = ledger.get_or_zero(data.from_branch_id, data.product_id)
        available = to_decimal(source.quantity)
        if available < quantity:
            raise InsufficientStockError(data.from_branch_id, data.product_id, available, quantity)

        transfer = InventoryTransfer(
            product_id=data.product_id,
            from_branch_id=data.from_branch_id,
            to_branch_id=data.to_branch_id,
            quantity=quantity,
            status=TransferStatus.PENDING.value,
            notes=data.notes,
            requested_by=requested_by,
        )
        db.add(transfer)
        db.flush()

        logger.info(
            "transfer_created tenant=%s transfer=%s product=%s from=%s to=%s quantity=%s",
            self.handle.tenant_id, transfer.id, transfer.product_id,
            transfer.from_branch_id, transfer.to_branch_id, quantity
        )
        return transfer

    @transactional
    def approve_or_reject(self, db: Session, transfer_id: int, approved: bool,
                          decided_by: str, notes: Optional[str] = None) -> InventoryTransfer:
        transfer = self._get(db, transfer_id, lock=True)
        if transfer.status != TransferStatus.PENDING.value:
            raise InvalidStateTransitionError(
                "transfer", transfer.status, "approve" if approved else "reject"
            )

        transfer.status = TransferStatus.APPROVED.value if approved else TransferStatus.REJECTED.value
        transfer.approved_by = decided_by
        transfer.approved_at = self.clock.now()
        if notes:
            transfer.notes = notes
        db.flush()

        logger.info(
            "transfer_decided tenant=%s transfer=%s status=%s",
            self.handle.tenant_id, transfer.id, transfer.status
        )
        return transfer

    @transactional
    def complete(self, db: Session, transfer_id: int, completed_by: Optional[str] = None) -> InventoryTransfer:
        """Move the stock: debit the source, credit the destination, in one transaction"""
        transfer = self._get(db, transfer_id, lock=True)
        if transfer.status != TransferStatus.APPROVED.value:
            raise InvalidStateTransitionError("transfer", transfer.status, "complete")

        ledger = InventoryLedger(db, self.clock)
        quantity = to_decimal(transfer.quantity)
        now = self.clock.now()

        ledger.adjust(transfer.from_branch_id, transfer.product_id, -quantity, now)
        ledger.adjust(transfer.to_branch_id, transfer.product_id, quantity, now)

        transfer.status = TransferStatus.COMPLETED.value
        transfer.completed_by = completed_by
        transfer.completed_at = now
        db.flush()

        logger.info(
            "transfer_completed tenant=%s transfer=%s quantity=%s",
            self.handle.tenant_id, transfer.id, quantity
        )
        return transfer
