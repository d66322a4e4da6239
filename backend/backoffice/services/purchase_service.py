"""
Purchases Service - Purchase orders, supplier payments, goods receipt
"""
import logging
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session, joinedload, selectinload

from backoffice.core.clock import Clock, system_clock
from backoffice.core.database import TenantHandle, transactional
from backoffice.core.exceptions import (
    InvalidStateTransitionError, NotFoundError, OverReceiptError,
    PaymentExceedsDueError, ValidationError
)
from backoffice.models import (
    PaymentMethod, Product, ProductCostHistory, Purchase, PurchaseItem,
    PurchasePayment, PurchaseStatus, Supplier
)
from backoffice.schemas import (
    PurchaseCreate, PurchaseItemCreate, PurchasePaymentCreate, PurchaseUpdate, ReceiveGoods
)
from backoffice.services.currency_service import CurrencyNormalizer, to_decimal, to_money
from backoffice.services.inventory_service import InventoryLedger
from backoffice.services.numbering import PURCHASE_PREFIX, next_document_number

logger = logging.getLogger(__name__)

UNIT_COST = Decimal("0.0001")
ZERO = Decimal("0.00")

# Statuses in which a purchase still accepts goods
RECEIVABLE_STATUSES = (
    PurchaseStatus.SUBMITTED.value,
    PurchaseStatus.PARTIALLY_PAID.value,
    PurchaseStatus.FULLY_PAID.value,
)

# Statuses in which a purchase still accepts payments
PAYABLE_STATUSES = RECEIVABLE_STATUSES + (PurchaseStatus.RECEIVED.value,)


class PurchaseService:
    """Purchase order lifecycle.

    draft -> submitted -> partially_paid -> fully_paid, with goods receipt
    allowed from submitted onwards; once every line is fully received the
    order becomes ``received`` whatever its payment state. A draft without
    payments can be cancelled, which deletes it.
    """

    def __init__(self, handle: TenantHandle, clock: Clock = system_clock):
        self.handle = handle
        self.clock = clock

    # ---------- queries ----------

    def _get(self, db: Session, purchase_id: int, lock: bool = False) -> Purchase:
        query = db.query(Purchase).options(
            selectinload(Purchase.items),
            selectinload(Purchase.payments)
        ).filter(Purchase.id == purchase_id)
        if lock:
            query = query.with_for_update()
        purchase = query.first()
        if not purchase:
            raise NotFoundError("Purchase", purchase_id)
        return purchase

    def get_by_id(self, purchase_id: int) -> Purchase:
        """Get a purchase with its items and payments"""
        with self.handle.session() as db:
            return self._get(db, purchase_id)

    def list(self, branch_id: Optional[int] = None, supplier_id: Optional[int] = None,
             status: Optional[str] = None) -> List[Purchase]:
        with self.handle.session() as db:
            query = db.query(Purchase)
            if branch_id:
                query = query.filter(Purchase.branch_id == branch_id)
            if supplier_id:
                query = query.filter(Purchase.supplier_id == supplier_id)
            if status:
                query = query.filter(Purchase.status == status)
            return query.order_by(Purchase.order_date.desc(), Purchase.id.desc()).all()

    def unpaid(self) -> List[Purchase]:
        """Get submitted purchases that still owe the supplier money"""
        with self.handle.session() as db:
            return db.query(Purchase).filter(
                Purchase.status.in_(PAYABLE_STATUSES),
                Purchase.amount_due > 0
            ).order_by(Purchase.order_date).all()

    def product_purchase_history(self, product_id: int) -> List[PurchaseItem]:
        """Get every purchase line of a product, newest order first"""
        with self.handle.session() as db:
            InventoryLedger(db, self.clock).require_product(product_id)
            return db.query(PurchaseItem).options(
                joinedload(PurchaseItem.purchase)
            ).join(Purchase).filter(
                PurchaseItem.product_id == product_id,
                Purchase.status != PurchaseStatus.CANCELLED.value
            ).order_by(Purchase.order_date.desc(), PurchaseItem.id.desc()).all()

    # ---------- draft composition ----------

    def _build_items(self, db: Session, items_data: Sequence[PurchaseItemCreate]) -> Tuple[List[PurchaseItem], Decimal]:
        if not items_data:
            raise ValidationError("At least one item is required")

        ledger = InventoryLedger(db, self.clock)
        items = []
        subtotal = ZERO
        for item_data in items_data:
            quantity = to_decimal(item_data.quantity)
            total_amount = to_money(item_data.total_amount)
            if quantity <= 0:
                raise ValidationError("Item quantity must be positive", product_id=item_data.product_id)
            if total_amount < 0:
                raise ValidationError("Item amount cannot be negative", product_id=item_data.product_id)

            product = ledger.require_product(item_data.product_id)
            items.append(PurchaseItem(
                product_id=product.id,
                quantity=quantity,
                quantity_received=ZERO,
                current_cost_price=to_decimal(product.cost),
                new_cost_price=(total_amount / quantity).quantize(UNIT_COST),
                total_amount=total_amount,
            ))
            subtotal += total_amount
        return items, to_money(subtotal)

    def _require_supplier(self, db: Session, supplier_id: int) -> Supplier:
        supplier = db.query(Supplier).filter(Supplier.id == supplier_id).first()
        if not supplier:
            raise NotFoundError("Supplier", supplier_id)
        return supplier

    @staticmethod
    def _apply_totals(purchase: Purchase, subtotal: Decimal):
        purchase.subtotal = subtotal
        purchase.total = to_money(subtotal + to_decimal(purchase.shipping_cost) + to_decimal(purchase.tax_amount))
        purchase.amount_paid = ZERO
        purchase.amount_due = purchase.total

    @transactional
    def create(self, db: Session, purchase_data: PurchaseCreate, created_by: str) -> Purchase:
        InventoryLedger(db, self.clock).require_branch(purchase_data.branch_id)
        self._require_supplier(db, purchase_data.supplier_id)
        items, subtotal = self._build_items(db, purchase_data.items)
        now = self.clock.now()

        purchase = Purchase(
            po_number=next_document_number(db, Purchase.po_number, PURCHASE_PREFIX, now.year),
            branch_id=purchase_data.branch_id,
            supplier_id=purchase_data.supplier_id,
            order_date=now,
            expected_delivery_date=purchase_data.expected_delivery_date,
            shipping_cost=to_money(purchase_data.shipping_cost),
            tax_amount=to_money(purchase_data.tax_amount),
            status=PurchaseStatus.DRAFT.value,
            notes=purchase_data.notes,
            created_by=created_by,
        )
        purchase.items = items
        self._apply_totals(purchase, subtotal)
        db.add(purchase)
        db.flush()

        logger.info(
            "purchase_created tenant=%s purchase=%s po=%s total=%s",
            self.handle.tenant_id, purchase.id, purchase.po_number, purchase.total
        )
        return purchase

    @transactional
    def update(self, db: Session, purchase_id: int, purchase_data: PurchaseUpdate) -> Purchase:
        purchase = self._get(db, purchase_id, lock=True)
        if purchase.status != PurchaseStatus.DRAFT.value:
            raise InvalidStateTransitionError("purchase", purchase.status, "update")

        changes = purchase_data.model_dump(exclude_unset=True, exclude={"items"})
        if changes.get("supplier_id") is not None:
            self._require_supplier(db, changes["supplier_id"])
        for key in ("shipping_cost", "tax_amount"):
            if changes.get(key) is not None:
                changes[key] = to_money(changes[key])
        for key, value in changes.items():
            if value is not None or key in ("notes", "expected_delivery_date"):
                setattr(purchase, key, value)

        if purchase_data.items is not None:
            items, subtotal = self._build_items(db, purchase_data.items)
            purchase.items.clear()
            db.flush()
            purchase.items.extend(items)
        else:
            subtotal = to_money(sum((to_decimal(i.total_amount) for i in purchase.items), ZERO))

        self._apply_totals(purchase, subtotal)
        db.flush()
        logger.info("purchase_updated tenant=%s purchase=%s total=%s", self.handle.tenant_id, purchase.id, purchase.total)
        return purchase

    # ---------- transitions ----------

    @transactional
    def submit(self, db: Session, purchase_id: int, submitted_by: str) -> Purchase:
        purchase = self._get(db, purchase_id, lock=True)
        if purchase.status != PurchaseStatus.DRAFT.value:
            raise InvalidStateTransitionError("purchase", purchase.status, "submit")

        purchase.status = PurchaseStatus.SUBMITTED.value
        purchase.submitted_by = submitted_by
        purchase.submitted_at = self.clock.now()
        db.flush()

        logger.info("purchase_submitted tenant=%s purchase=%s", self.handle.tenant_id, purchase.id)
        return purchase

    @transactional
    def cancel(self, db: Session, purchase_id: int) -> None:
        """Delete a draft purchase that has no payments"""
        purchase = self._get(db, purchase_id, lock=True)
        if purchase.status != PurchaseStatus.DRAFT.value:
            raise InvalidStateTransitionError("purchase", purchase.status, "cancel")
        if to_decimal(purchase.amount_paid) != 0 or purchase.payments:
            raise InvalidStateTransitionError(
                "purchase", purchase.status, "cancel",
                "Cannot cancel a purchase that has payments"
            )

        db.delete(purchase)
        db.flush()
        logger.info("purchase_cancelled tenant=%s purchase=%s po=%s", self.handle.tenant_id, purchase_id, purchase.po_number)

    # ---------- payments ----------

    @staticmethod
    def _status_after_payment(purchase: Purchase) -> str:
        if purchase.status == PurchaseStatus.RECEIVED.value:
            return purchase.status
        if to_decimal(purchase.amount_due) == 0:
            return PurchaseStatus.FULLY_PAID.value
        if to_decimal(purchase.amount_paid) > 0:
            return PurchaseStatus.PARTIALLY_PAID.value
        return purchase.status

    @transactional
    def add_payment(self, db: Session, purchase_id: int, payment_data: PurchasePaymentCreate,
                    created_by: str) -> PurchasePayment:
        purchase = self._get(db, purchase_id, lock=True)
        if purchase.status not in PAYABLE_STATUSES:
            raise InvalidStateTransitionError("purchase", purchase.status, "add payment to")
        if to_decimal(payment_data.amount) <= 0:
            raise ValidationError("Payment amount must be positive", amount=payment_data.amount)
        if not db.query(PaymentMethod).filter(PaymentMethod.id == payment_data.payment_method_id).first():
            raise NotFoundError("Payment method", payment_data.payment_method_id)

        amount_in_base, rate = CurrencyNormalizer(db).normalize(payment_data.amount, payment_data.currency_id)
        amount_due = to_decimal(purchase.amount_due)
        if amount_in_base > amount_due:
            raise PaymentExceedsDueError(amount_in_base, amount_due)

        payment = PurchasePayment(
            purchase_id=purchase.id,
            amount=to_money(payment_data.amount),
            currency_id=payment_data.currency_id,
            exchange_rate=rate,
            amount_in_base_currency=amount_in_base,
            payment_method_id=payment_data.payment_method_id,
            payment_date=payment_data.payment_date or self.clock.now(),
            reference_number=payment_data.reference_number,
            notes=payment_data.notes,
            created_by=created_by,
        )
        db.add(payment)

        purchase.amount_paid = to_money(to_decimal(purchase.amount_paid) + amount_in_base)
        purchase.amount_due = to_money(to_decimal(purchase.total) - purchase.amount_paid)
        purchase.status = self._status_after_payment(purchase)
        db.flush()

        logger.info(
            "purchase_payment_added tenant=%s purchase=%s payment=%s amount_base=%s due=%s status=%s",
            self.handle.tenant_id, purchase.id, payment.id, amount_in_base, purchase.amount_due, purchase.status
        )
        return payment

    @transactional
    def delete_payment(self, db: Session, payment_id: int) -> Purchase:
        payment = db.query(PurchasePayment).filter(PurchasePayment.id == payment_id).first()
        if not payment:
            raise NotFoundError("Purchase payment", payment_id)

        purchase = self._get(db, payment.purchase_id, lock=True)
        if purchase.status in (PurchaseStatus.RECEIVED.value, PurchaseStatus.CANCELLED.value):
            raise InvalidStateTransitionError("purchase", purchase.status, "delete payment from")

        purchase.amount_paid = to_money(to_decimal(purchase.amount_paid) - to_decimal(payment.amount_in_base_currency))
        purchase.amount_due = to_money(to_decimal(purchase.total) - purchase.amount_paid)
        if purchase.amount_paid <= 0:
            purchase.status = PurchaseStatus.SUBMITTED.value
        elif purchase.amount_due > 0:
            purchase.status = PurchaseStatus.PARTIALLY_PAID.value
        else:
            purchase.status = PurchaseStatus.FULLY_PAID.value

        purchase.payments.remove(payment)
        db.delete(payment)
        db.flush()

        logger.info(
            "purchase_payment_deleted tenant=%s purchase=%s payment=%s due=%s status=%s",
            self.handle.tenant_id, purchase.id, payment_id, purchase.amount_due, purchase.status
        )
        return purchase

    # ---------- goods receipt ----------

    @transactional
    def receive_goods(self, db: Session, purchase_id: int, receipt: ReceiveGoods, received_by: str) -> Purchase:
        """Record a (partial) delivery: stock goes up, standing cost may change"""
        purchase = self._get(db, purchase_id, lock=True)
        if purchase.status not in RECEIVABLE_STATUSES:
            raise InvalidStateTransitionError("purchase", purchase.status, "receive goods for")
        if not receipt.items:
            raise ValidationError("At least one item is required")

        items_by_id = {item.id: item for item in purchase.items}
        ledger = InventoryLedger(db, self.clock)
        now = self.clock.now()

        for line in receipt.items:
            item = items_by_id.get(line.item_id)
            if item is None:
                raise NotFoundError("Purchase item", line.item_id)

            received_now = to_decimal(line.quantity_received)
            if received_now <= 0:
                raise ValidationError("Received quantity must be positive", item_id=item.id)

            ordered = to_decimal(item.quantity)
            would_receive = to_decimal(item.quantity_received) + received_now
            if would_receive > ordered:
                raise OverReceiptError(item.id, ordered, would_receive)

            was_fully_received = item.is_fully_received
            item.quantity_received = would_receive
            ledger.adjust(purchase.branch_id, item.product_id, received_now, now)

            if not was_fully_received and item.is_fully_received:
                self._update_standing_cost(db, purchase, item, received_by)

        if all(item.is_fully_received for item in purchase.items):
            purchase.status = PurchaseStatus.RECEIVED.value
            purchase.actual_delivery_date = receipt.actual_delivery_date or now
            purchase.received_by = received_by

        db.flush()
        logger.info(
            "goods_received tenant=%s purchase=%s lines=%s status=%s",
            self.handle.tenant_id, purchase.id, len(receipt.items), purchase.status
        )
        return purchase

    def _update_standing_cost(self, db: Session, purchase: Purchase, item: PurchaseItem, changed_by: str):
        new_cost = to_decimal(item.new_cost_price)
        if new_cost == to_decimal(item.current_cost_price):
            return

        product = db.query(Product).filter(Product.id == item.product_id).with_for_update().first()
        old_cost = to_decimal(product.cost)
        if old_cost == new_cost:
            return

        db.add(ProductCostHistory(
            product_id=product.id,
            old_cost=old_cost,
            new_cost=new_cost,
            reason=f"Goods received on {purchase.po_number}",
            purchase_id=purchase.id,
            changed_by=changed_by,
        ))
        product.cost = new_cost
        logger.info(
            "product_cost_updated tenant=%s product=%s old=%s new=%s purchase=%s",
            self.handle.tenant_id, product.id, old_cost, new_cost, purchase.id
        )
