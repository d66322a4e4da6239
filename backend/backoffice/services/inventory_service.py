"""
Inventory Service - Products, Branch Stock (Inventory Ledger)
"""
import logging
from decimal import Decimal
from typing import Iterator, List, Optional

from sqlalchemy.orm import Session, joinedload

from backoffice.core.clock import Clock, system_clock
from backoffice.core.database import TenantHandle, transactional
from backoffice.core.exceptions import (
    DuplicateKeyError, InsufficientStockError, NotFoundError,
    ProductNotFoundError, ValidationError
)
from backoffice.models import Branch, BranchInventory, Product, ProductCostHistory
from backoffice.schemas import ProductCreate
from backoffice.services.currency_service import to_decimal

logger = logging.getLogger(__name__)

NO_STOCK = Decimal("0")


class InventoryLedger:
    """Per-branch, per-product on-hand quantities.

    Works on the caller's session so stock movements commit or roll back
    together with the document that caused them. Rows are locked for the rest
    of the transaction once touched.
    """

    def __init__(self, db: Session, clock: Clock = system_clock):
        self.db = db
        self.clock = clock

    @property
    def tenant_id(self):
        return self.db.info.get("tenant_id")

    def require_product(self, product_id: int) -> Product:
        product = self.db.query(Product).filter(Product.id == product_id).first()
        if not product:
            raise ProductNotFoundError(product_id)
        return product

    def require_branch(self, branch_id: int) -> Branch:
        branch = self.db.query(Branch).filter(Branch.id == branch_id).first()
        if not branch:
            raise NotFoundError("Branch", branch_id)
        return branch

    def _find_row(self, branch_id: int, product_id: int, lock: bool = False) -> Optional[BranchInventory]:
        query = self.db.query(BranchInventory).filter(
            BranchInventory.branch_id == branch_id,
            BranchInventory.product_id == product_id
        )
        if lock:
            query = query.with_for_update()
        return query.first()

    def adjust(self, branch_id: int, product_id: int, delta, now=None) -> BranchInventory:
        """Add ``delta`` (may be negative) to the on-hand quantity"""
        delta = to_decimal(delta)
        self.require_branch(branch_id)
        self.require_product(product_id)

        row = self._find_row(branch_id, product_id, lock=True)
        if row is None:
            if delta < 0:
                raise InsufficientStockError(branch_id, product_id, NO_STOCK, -delta)
            row = BranchInventory(
                branch_id=branch_id,
                product_id=product_id,
                quantity=delta,
                minimum_stock=NO_STOCK,
            )
            self.db.add(row)
        else:
            available = to_decimal(row.quantity)
            if available + delta < 0:
                raise InsufficientStockError(branch_id, product_id, available, -delta)
            row.quantity = available + delta

        if delta > 0:
            row.last_restocked = now or self.clock.now()

        self.db.flush()
        logger.info(
            "stock_adjusted tenant=%s branch=%s product=%s delta=%s quantity=%s",
            self.tenant_id, branch_id, product_id, delta, row.quantity
        )
        return row

    def set_exact(self, branch_id: int, product_id: int, quantity,
                  minimum_stock=None, maximum_stock=None) -> BranchInventory:
        """Administrative correction: replace the on-hand quantity"""
        quantity = to_decimal(quantity)
        if quantity < 0:
            raise ValidationError("Quantity cannot be negative", quantity=quantity)
        if minimum_stock is not None and to_decimal(minimum_stock) < 0:
            raise ValidationError("Minimum stock cannot be negative", minimum_stock=minimum_stock)
        if maximum_stock is not None and to_decimal(maximum_stock) < 0:
            raise ValidationError("Maximum stock cannot be negative", maximum_stock=maximum_stock)

        self.require_branch(branch_id)
        self.require_product(product_id)

        row = self._find_row(branch_id, product_id, lock=True)
        if row is None:
            row = BranchInventory(branch_id=branch_id, product_id=product_id, minimum_stock=NO_STOCK)
            self.db.add(row)

        row.quantity = quantity
        if minimum_stock is not None:
            row.minimum_stock = to_decimal(minimum_stock)
        if maximum_stock is not None:
            row.maximum_stock = to_decimal(maximum_stock)

        self.db.flush()
        logger.info(
            "stock_set tenant=%s branch=%s product=%s quantity=%s",
            self.tenant_id, branch_id, product_id, quantity
        )
        return row

    def low_stock(self, branch_id: int) -> Iterator[BranchInventory]:
        """Rows below minimum stock, largest shortfall first"""
        self.require_branch(branch_id)
        query = self.db.query(BranchInventory).filter(
            BranchInventory.branch_id == branch_id,
            BranchInventory.quantity < BranchInventory.minimum_stock
        ).order_by(
            (BranchInventory.minimum_stock - BranchInventory.quantity).desc(),
            BranchInventory.id
        )
        for row in query.yield_per(100):
            yield row

    def get_or_zero(self, branch_id: int, product_id: int) -> BranchInventory:
        """The stock row, or an unsaved zero-quantity row if none exists"""
        self.require_product(product_id)
        self.require_branch(branch_id)
        row = self._find_row(branch_id, product_id)
        if row is not None:
            return row
        return BranchInventory(
            branch_id=branch_id,
            product_id=product_id,
            quantity=NO_STOCK,
            minimum_stock=NO_STOCK,
            maximum_stock=None,
        )


class InventoryService:
    """Tenant-level entry points to the inventory ledger"""

    def __init__(self, handle: TenantHandle, clock: Clock = system_clock):
        self.handle = handle
        self.clock = clock

    @transactional
    def adjust(self, db: Session, branch_id: int, product_id: int, delta) -> BranchInventory:
        return InventoryLedger(db, self.clock).adjust(branch_id, product_id, delta)

    @transactional
    def set_exact(self, db: Session, branch_id: int, product_id: int, quantity,
                  minimum_stock=None, maximum_stock=None) -> BranchInventory:
        return InventoryLedger(db, self.clock).set_exact(
            branch_id, product_id, quantity, minimum_stock, maximum_stock
        )

    def low_stock(self, branch_id: int) -> Iterator[BranchInventory]:
        """Lazily walk the live low-stock rows of a branch"""
        with self.handle.session() as db:
            yield from InventoryLedger(db, self.clock).low_stock(branch_id)

    def get_or_zero(self, branch_id: int, product_id: int) -> BranchInventory:
        with self.handle.session() as db:
            return InventoryLedger(db, self.clock).get_or_zero(branch_id, product_id)

    def branch_inventory(self, branch_id: int) -> List[BranchInventory]:
        """Get all stock rows of a branch"""
        with self.handle.session() as db:
            InventoryLedger(db, self.clock).require_branch(branch_id)
            return db.query(BranchInventory).options(
                joinedload(BranchInventory.product)
            ).join(Product).filter(
                BranchInventory.branch_id == branch_id
            ).order_by(Product.name).all()


class ProductService:
    def __init__(self, handle: TenantHandle):
        self.handle = handle

    def get_by_id(self, product_id: int) -> Product:
        with self.handle.session() as db:
            product = db.query(Product).filter(Product.id == product_id).first()
            if not product:
                raise ProductNotFoundError(product_id)
            return product

    def get_by_sku(self, sku: str) -> Optional[Product]:
        with self.handle.session() as db:
            return db.query(Product).filter(Product.sku == sku).first()

    def list(self, include_inactive: bool = False) -> List[Product]:
        with self.handle.session() as db:
            query = db.query(Product)
            if not include_inactive:
                query = query.filter(Product.is_active == True)
            return query.order_by(Product.name).all()

    @transactional
    def create(self, db: Session, product_data: ProductCreate) -> Product:
        if db.query(Product).filter(Product.sku == product_data.sku).first():
            raise DuplicateKeyError(f"Product with SKU '{product_data.sku}' already exists", sku=product_data.sku)

        product = Product(
            name=product_data.name,
            sku=product_data.sku,
            description=product_data.description,
            unit=product_data.unit,
            cost=product_data.cost,
            price=product_data.price,
        )
        db.add(product)
        db.flush()
        logger.info("product_created tenant=%s product=%s sku=%s", self.handle.tenant_id, product.id, product.sku)
        return product

    def cost_history(self, product_id: int) -> List[ProductCostHistory]:
        """Get the standing-cost changes of a product, oldest first"""
        with self.handle.session() as db:
            if not db.query(Product).filter(Product.id == product_id).first():
                raise ProductNotFoundError(product_id)
            return db.query(ProductCostHistory).filter(
                ProductCostHistory.product_id == product_id
            ).order_by(ProductCostHistory.id).all()
