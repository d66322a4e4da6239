"""
SQLAlchemy Models for the POS Back Office

One set of tables per tenant store. Monetary columns are Numeric (never float);
quantities are Numeric to allow fractional units.
"""
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Date, Numeric,
    ForeignKey, Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
import enum

from backoffice.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


ZERO = Decimal("0.00")


# ==================== ENUMS ====================

class PurchaseStatus(enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    PARTIALLY_PAID = "partially_paid"
    FULLY_PAID = "fully_paid"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class TransferStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class ExpenseStatus(enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


class RecurringFrequency(enum.Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class BudgetPeriod(enum.Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class ReturnStatus(enum.Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    PROCESSED = "processed"


class ItemCondition(enum.Enum):
    GOOD = "good"
    DAMAGED = "damaged"


class LossStatus(enum.Enum):
    DRAFT = "draft"
    APPROVED = "approved"


class LossType(enum.Enum):
    BREAKAGE = "breakage"
    THEFT = "theft"
    EXPIRY = "expiry"
    SPOILAGE = "spoilage"
    OTHER = "other"


class ShiftStatus(enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


# ==================== SHOP & BRANCHES ====================

class ShopSettings(Base):
    """Shop-wide defaults that branches may inherit"""
    __tablename__ = 'shop_settings'

    id = Column(Integer, primary_key=True)
    business_name = Column(String(255), nullable=False, default="My Shop")
    vat_number = Column(String(50), nullable=True)
    tin_number = Column(String(50), nullable=True)
    business_registration = Column(String(100), nullable=True)
    tax_rate = Column(Numeric(5, 2), default=ZERO)
    address = Column(Text, nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    currency_code = Column(String(10), default="USD")
    receipt_header = Column(Text, nullable=True)
    receipt_footer = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Branch(Base):
    """Shop branch/location"""
    __tablename__ = 'branches'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    code = Column(String(20), nullable=False, unique=True)
    is_active = Column(Boolean, default=True)

    vat_number = Column(String(50), nullable=True)
    tin_number = Column(String(50), nullable=True)
    business_registration = Column(String(100), nullable=True)
    tax_rate = Column(Numeric(5, 2), nullable=True)
    address = Column(Text, nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    currency_code = Column(String(10), nullable=True)
    receipt_header = Column(Text, nullable=True)
    receipt_footer = Column(Text, nullable=True)

    # Inheritance flags: True means "use the shop value"
    use_shop_vat = Column(Boolean, default=True, nullable=False)
    use_shop_tin = Column(Boolean, default=True, nullable=False)
    use_shop_business_reg = Column(Boolean, default=True, nullable=False)
    use_shop_tax_rate = Column(Boolean, default=True, nullable=False)
    use_shop_address = Column(Boolean, default=True, nullable=False)
    use_shop_contact = Column(Boolean, default=True, nullable=False)
    use_shop_currency = Column(Boolean, default=True, nullable=False)
    use_shop_receipts = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    settings = relationship("BranchSettings", back_populates="branch", uselist=False, cascade="all, delete-orphan")
    inventory = relationship("BranchInventory", back_populates="branch", cascade="all, delete-orphan")
    purchases = relationship("Purchase", back_populates="branch")
    expenses = relationship("Expense", back_populates="branch")
    expense_categories = relationship("ExpenseCategory", back_populates="branch")


class BranchSettings(Base):
    """Per-branch operational settings"""
    __tablename__ = 'branch_settings'

    id = Column(Integer, primary_key=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False, unique=True)
    return_window_days = Column(Integer, nullable=True)
    quotation_validity_days = Column(Integer, nullable=True)
    layby_deposit = Column(Numeric(5, 2), nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    branch = relationship("Branch", back_populates="settings")


# ==================== REFERENCE DATA ====================

class Currency(Base):
    """Currency with its rate into the tenant base currency"""
    __tablename__ = 'currencies'

    id = Column(Integer, primary_key=True)
    code = Column(String(10), nullable=False, unique=True)
    name = Column(String(100), nullable=False)
    symbol = Column(String(10), nullable=True)
    exchange_rate = Column(Numeric(18, 6), nullable=False, default=Decimal("1"))
    is_default = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class PaymentMethod(Base):
    """Payment method (cash, card, transfer, ...)"""
    __tablename__ = 'payment_methods'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False, unique=True)
    is_cash = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)


class Supplier(Base):
    """Goods supplier"""
    __tablename__ = 'suppliers'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    purchases = relationship("Purchase", back_populates="supplier")


class Customer(Base):
    """Customer"""
    __tablename__ = 'customers'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=utcnow)


# ==================== CATALOG & INVENTORY ====================

class Product(Base):
    """Product/Item"""
    __tablename__ = 'products'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    sku = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    unit = Column(String(20), default="pcs")
    cost = Column(Numeric(15, 4), nullable=False, default=ZERO)
    price = Column(Numeric(15, 2), nullable=False, default=ZERO)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    inventory = relationship("BranchInventory", back_populates="product")
    cost_history = relationship(
        "ProductCostHistory", back_populates="product",
        order_by="ProductCostHistory.id", cascade="all, delete-orphan"
    )


class ProductCostHistory(Base):
    """Standing-cost change of a product"""
    __tablename__ = 'product_cost_history'

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey('products.id', ondelete='CASCADE'), nullable=False)
    old_cost = Column(Numeric(15, 4), nullable=False)
    new_cost = Column(Numeric(15, 4), nullable=False)
    reason = Column(String(255), nullable=True)
    purchase_id = Column(Integer, ForeignKey('purchases.id', ondelete='SET NULL'), nullable=True)
    changed_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    product = relationship("Product", back_populates="cost_history")


class BranchInventory(Base):
    """On-hand quantity of one product at one branch"""
    __tablename__ = 'branch_inventory'

    id = Column(Integer, primary_key=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    product_id = Column(Integer, ForeignKey('products.id', ondelete='CASCADE'), nullable=False)
    quantity = Column(Numeric(15, 3), nullable=False, default=ZERO)
    minimum_stock = Column(Numeric(15, 3), nullable=False, default=ZERO)
    maximum_stock = Column(Numeric(15, 3), nullable=True)
    last_restocked = Column(DateTime, nullable=True)
    version_id = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    branch = relationship("Branch", back_populates="inventory")
    product = relationship("Product", back_populates="inventory")

    __table_args__ = (
        UniqueConstraint('branch_id', 'product_id', name='uq_branch_inventory_product'),
        CheckConstraint('quantity >= 0', name='ck_branch_inventory_non_negative'),
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def deficit(self) -> Decimal:
        """How far the quantity sits below the minimum stock level"""
        shortfall = Decimal(self.minimum_stock or 0) - Decimal(self.quantity or 0)
        return shortfall if shortfall > 0 else Decimal("0")


class InventoryTransfer(Base):
    """Inter-branch stock transfer request"""
    __tablename__ = 'inventory_transfers'

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey('products.id', ondelete='RESTRICT'), nullable=False)
    from_branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    to_branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    quantity = Column(Numeric(15, 3), nullable=False)
    status = Column(String(20), default=TransferStatus.PENDING.value, nullable=False)
    notes = Column(Text, nullable=True)
    requested_by = Column(String(64), nullable=True)
    approved_by = Column(String(64), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    completed_by = Column(String(64), nullable=True)
    completed_at = Column(DateTime, nullable=True)
    version_id = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    product = relationship("Product")
    from_branch = relationship("Branch", foreign_keys=[from_branch_id])
    to_branch = relationship("Branch", foreign_keys=[to_branch_id])

    __table_args__ = (
        CheckConstraint('from_branch_id <> to_branch_id', name='ck_transfer_distinct_branches'),
        Index('ix_inventory_transfers_status', 'status'),
    )
    __mapper_args__ = {"version_id_col": version_id}


class InventoryLoss(Base):
    """Stock written off (breakage, theft, expiry, damaged returns)"""
    __tablename__ = 'inventory_losses'

    id = Column(Integer, primary_key=True)
    loss_number = Column(String(50), nullable=False, unique=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    loss_type = Column(String(20), nullable=False, default=LossType.OTHER.value)
    reason = Column(Text, nullable=False)
    reference_number = Column(String(100), nullable=True)
    total_value = Column(Numeric(15, 2), default=ZERO)
    status = Column(String(20), default=LossStatus.DRAFT.value, nullable=False)
    # False for goods that never re-entered sellable stock (damaged returns)
    deducts_stock = Column(Boolean, default=True, nullable=False)
    loss_date = Column(DateTime, nullable=False)
    notes = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    approved_by = Column(String(64), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    branch = relationship("Branch")
    items = relationship("InventoryLossItem", back_populates="loss", cascade="all, delete-orphan")


class InventoryLossItem(Base):
    """Inventory loss line"""
    __tablename__ = 'inventory_loss_items'

    id = Column(Integer, primary_key=True)
    loss_id = Column(Integer, ForeignKey('inventory_losses.id', ondelete='CASCADE'), nullable=False)
    product_id = Column(Integer, ForeignKey('products.id', ondelete='RESTRICT'), nullable=False)
    quantity = Column(Numeric(15, 3), nullable=False)
    cost_price = Column(Numeric(15, 4), nullable=False)
    line_total = Column(Numeric(15, 2), nullable=False)
    notes = Column(Text, nullable=True)

    loss = relationship("InventoryLoss", back_populates="items")
    product = relationship("Product")


# ==================== PURCHASES ====================

class Purchase(Base):
    """Purchase order"""
    __tablename__ = 'purchases'

    id = Column(Integer, primary_key=True)
    po_number = Column(String(50), nullable=False, unique=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    supplier_id = Column(Integer, ForeignKey('suppliers.id', ondelete='RESTRICT'), nullable=False)
    order_date = Column(DateTime, nullable=False)
    expected_delivery_date = Column(Date, nullable=True)
    actual_delivery_date = Column(DateTime, nullable=True)
    subtotal = Column(Numeric(15, 2), default=ZERO, nullable=False)
    shipping_cost = Column(Numeric(15, 2), default=ZERO, nullable=False)
    tax_amount = Column(Numeric(15, 2), default=ZERO, nullable=False)
    total = Column(Numeric(15, 2), default=ZERO, nullable=False)
    amount_paid = Column(Numeric(15, 2), default=ZERO, nullable=False)
    amount_due = Column(Numeric(15, 2), default=ZERO, nullable=False)
    status = Column(String(20), default=PurchaseStatus.DRAFT.value, nullable=False)
    notes = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    submitted_by = Column(String(64), nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    received_by = Column(String(64), nullable=True)
    version_id = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    branch = relationship("Branch", back_populates="purchases")
    supplier = relationship("Supplier", back_populates="purchases")
    items = relationship(
        "PurchaseItem", back_populates="purchase",
        order_by="PurchaseItem.id", cascade="all, delete-orphan"
    )
    payments = relationship(
        "PurchasePayment", back_populates="purchase",
        order_by="PurchasePayment.id", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index('ix_purchases_branch_id', 'branch_id'),
        Index('ix_purchases_status', 'status'),
    )
    __mapper_args__ = {"version_id_col": version_id}


class PurchaseItem(Base):
    """Purchase order line"""
    __tablename__ = 'purchase_items'

    id = Column(Integer, primary_key=True)
    purchase_id = Column(Integer, ForeignKey('purchases.id', ondelete='CASCADE'), nullable=False)
    product_id = Column(Integer, ForeignKey('products.id', ondelete='RESTRICT'), nullable=False)
    quantity = Column(Numeric(15, 3), nullable=False)
    quantity_received = Column(Numeric(15, 3), default=ZERO, nullable=False)
    current_cost_price = Column(Numeric(15, 4), nullable=False)
    new_cost_price = Column(Numeric(15, 4), nullable=False)
    total_amount = Column(Numeric(15, 2), nullable=False)

    # Relationships
    purchase = relationship("Purchase", back_populates="items")
    product = relationship("Product")

    __table_args__ = (
        CheckConstraint('quantity_received >= 0', name='ck_purchase_item_received_non_negative'),
        CheckConstraint('quantity_received <= quantity', name='ck_purchase_item_received_le_ordered'),
    )

    @property
    def is_fully_received(self) -> bool:
        return Decimal(self.quantity_received) >= Decimal(self.quantity)


class PurchasePayment(Base):
    """Payment made against a purchase order"""
    __tablename__ = 'purchase_payments'

    id = Column(Integer, primary_key=True)
    purchase_id = Column(Integer, ForeignKey('purchases.id', ondelete='CASCADE'), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    currency_id = Column(Integer, ForeignKey('currencies.id', ondelete='RESTRICT'), nullable=False)
    exchange_rate = Column(Numeric(18, 6), nullable=False)
    amount_in_base_currency = Column(Numeric(15, 2), nullable=False)
    payment_method_id = Column(Integer, ForeignKey('payment_methods.id', ondelete='RESTRICT'), nullable=False)
    payment_date = Column(DateTime, nullable=False)
    reference_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    purchase = relationship("Purchase", back_populates="payments")
    currency = relationship("Currency")
    payment_method = relationship("PaymentMethod")


# ==================== EXPENSES ====================

class ExpenseCategory(Base):
    """Hierarchical expense category, scoped to a branch"""
    __tablename__ = 'expense_categories'

    id = Column(Integer, primary_key=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    parent_id = Column(Integer, ForeignKey('expense_categories.id', ondelete='SET NULL'), nullable=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    is_default = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    branch = relationship("Branch", back_populates="expense_categories")
    parent = relationship("ExpenseCategory", remote_side=[id], back_populates="children")
    children = relationship("ExpenseCategory", back_populates="parent")

    __table_args__ = (
        Index('ix_expense_categories_branch_id', 'branch_id'),
    )


class ExpenseBudget(Base):
    """Budgeted spend for a category over a period"""
    __tablename__ = 'expense_budgets'

    id = Column(Integer, primary_key=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    category_id = Column(Integer, ForeignKey('expense_categories.id', ondelete='CASCADE'), nullable=False)
    period = Column(String(20), nullable=False)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=True)
    quarter = Column(Integer, nullable=True)
    budget_amount = Column(Numeric(15, 2), nullable=False)
    notes = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    category = relationship("ExpenseCategory")

    __table_args__ = (
        UniqueConstraint(
            'branch_id', 'category_id', 'period', 'year', 'month', 'quarter',
            name='uq_expense_budget_period'
        ),
    )


class Expense(Base):
    """Expense record"""
    __tablename__ = 'expenses'

    id = Column(Integer, primary_key=True)
    expense_number = Column(String(50), nullable=False, unique=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    category_id = Column(Integer, ForeignKey('expense_categories.id', ondelete='RESTRICT'), nullable=False)
    vendor = Column(String(255), nullable=True)
    description = Column(Text, nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    currency_id = Column(Integer, ForeignKey('currencies.id', ondelete='RESTRICT'), nullable=False)
    exchange_rate = Column(Numeric(18, 6), nullable=False)
    amount_in_base_currency = Column(Numeric(15, 2), nullable=False)
    amount_paid = Column(Numeric(15, 2), default=ZERO, nullable=False)
    amount_due = Column(Numeric(15, 2), default=ZERO, nullable=False)
    expense_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True)
    paid_date = Column(DateTime, nullable=True)
    status = Column(String(20), default=ExpenseStatus.DRAFT.value, nullable=False)
    is_tax_deductible = Column(Boolean, default=False)
    is_recurring = Column(Boolean, default=False)
    recurring_frequency = Column(String(20), nullable=True)
    recurring_end_date = Column(Date, nullable=True)
    recurring_parent_id = Column(Integer, ForeignKey('expenses.id', ondelete='SET NULL'), nullable=True)
    notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    submitted_by = Column(String(64), nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    approved_by = Column(String(64), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_by = Column(String(64), nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    version_id = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    branch = relationship("Branch", back_populates="expenses")
    category = relationship("ExpenseCategory")
    currency = relationship("Currency")
    recurring_parent = relationship("Expense", remote_side=[id])
    payments = relationship(
        "ExpensePayment", back_populates="expense",
        order_by="ExpensePayment.id", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index('ix_expenses_branch_date', 'branch_id', 'expense_date'),
        Index('ix_expenses_recurring_parent', 'recurring_parent_id', 'expense_date'),
    )
    __mapper_args__ = {"version_id_col": version_id}


class ExpensePayment(Base):
    """Payment made against an expense"""
    __tablename__ = 'expense_payments'

    id = Column(Integer, primary_key=True)
    expense_id = Column(Integer, ForeignKey('expenses.id', ondelete='CASCADE'), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    currency_id = Column(Integer, ForeignKey('currencies.id', ondelete='RESTRICT'), nullable=False)
    exchange_rate = Column(Numeric(18, 6), nullable=False)
    amount_in_base_currency = Column(Numeric(15, 2), nullable=False)
    payment_method_id = Column(Integer, ForeignKey('payment_methods.id', ondelete='RESTRICT'), nullable=False)
    payment_date = Column(DateTime, nullable=False)
    reference_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    expense = relationship("Expense", back_populates="payments")
    currency = relationship("Currency")


# ==================== SALES DOCUMENTS ====================

class Sale(Base):
    """Completed sale (only what returns need)"""
    __tablename__ = 'sales'

    id = Column(Integer, primary_key=True)
    sale_number = Column(String(50), nullable=False, unique=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    customer_id = Column(Integer, ForeignKey('customers.id', ondelete='SET NULL'), nullable=True)
    sale_date = Column(DateTime, nullable=False)
    total = Column(Numeric(15, 2), default=ZERO)

    items = relationship("SaleItem", back_populates="sale", cascade="all, delete-orphan")


class SaleItem(Base):
    __tablename__ = 'sale_items'

    id = Column(Integer, primary_key=True)
    sale_id = Column(Integer, ForeignKey('sales.id', ondelete='CASCADE'), nullable=False)
    product_id = Column(Integer, ForeignKey('products.id', ondelete='RESTRICT'), nullable=False)
    quantity = Column(Numeric(15, 3), nullable=False)
    price = Column(Numeric(15, 2), nullable=False)

    sale = relationship("Sale", back_populates="items")


class Layby(Base):
    """Lay-by agreement (only what returns need)"""
    __tablename__ = 'laybys'

    id = Column(Integer, primary_key=True)
    layby_number = Column(String(50), nullable=False, unique=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    customer_id = Column(Integer, ForeignKey('customers.id', ondelete='SET NULL'), nullable=True)
    layby_date = Column(DateTime, nullable=False)
    total = Column(Numeric(15, 2), default=ZERO)

    items = relationship("LaybyItem", back_populates="layby", cascade="all, delete-orphan")


class LaybyItem(Base):
    __tablename__ = 'layby_items'

    id = Column(Integer, primary_key=True)
    layby_id = Column(Integer, ForeignKey('laybys.id', ondelete='CASCADE'), nullable=False)
    product_id = Column(Integer, ForeignKey('products.id', ondelete='RESTRICT'), nullable=False)
    quantity = Column(Numeric(15, 3), nullable=False)
    price = Column(Numeric(15, 2), nullable=False)

    layby = relationship("Layby", back_populates="items")


class Quotation(Base):
    """Quotation (only what returns need)"""
    __tablename__ = 'quotations'

    id = Column(Integer, primary_key=True)
    quotation_number = Column(String(50), nullable=False, unique=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    customer_id = Column(Integer, ForeignKey('customers.id', ondelete='SET NULL'), nullable=True)
    quotation_date = Column(DateTime, nullable=False)
    total = Column(Numeric(15, 2), default=ZERO)

    items = relationship("QuotationItem", back_populates="quotation", cascade="all, delete-orphan")


class QuotationItem(Base):
    __tablename__ = 'quotation_items'

    id = Column(Integer, primary_key=True)
    quotation_id = Column(Integer, ForeignKey('quotations.id', ondelete='CASCADE'), nullable=False)
    product_id = Column(Integer, ForeignKey('products.id', ondelete='RESTRICT'), nullable=False)
    quantity = Column(Numeric(15, 3), nullable=False)
    price = Column(Numeric(15, 2), nullable=False)

    quotation = relationship("Quotation", back_populates="items")


class Shift(Base):
    """Cash-drawer shift"""
    __tablename__ = 'shifts'

    id = Column(Integer, primary_key=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    cashier_id = Column(String(64), nullable=False)
    opening_balance = Column(Numeric(15, 2), default=ZERO)
    status = Column(String(20), default=ShiftStatus.OPEN.value, nullable=False)
    opened_at = Column(DateTime, default=utcnow)
    closed_at = Column(DateTime, nullable=True)


# ==================== RETURNS ====================

class Return(Base):
    """Customer return against exactly one sale, layby or quotation"""
    __tablename__ = 'returns'

    id = Column(Integer, primary_key=True)
    return_number = Column(String(50), nullable=False, unique=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    sale_id = Column(Integer, ForeignKey('sales.id', ondelete='RESTRICT'), nullable=True)
    layby_id = Column(Integer, ForeignKey('laybys.id', ondelete='RESTRICT'), nullable=True)
    quotation_id = Column(Integer, ForeignKey('quotations.id', ondelete='RESTRICT'), nullable=True)
    customer_id = Column(Integer, ForeignKey('customers.id', ondelete='SET NULL'), nullable=True)
    reason = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    total_amount = Column(Numeric(15, 2), default=ZERO, nullable=False)
    total_refunded = Column(Numeric(15, 2), default=ZERO, nullable=False)
    status = Column(String(20), default=ReturnStatus.DRAFT.value, nullable=False)
    return_date = Column(DateTime, nullable=False)
    created_by = Column(String(64), nullable=True)
    approved_by = Column(String(64), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    processed_by = Column(String(64), nullable=True)
    processed_at = Column(DateTime, nullable=True)
    version_id = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    items = relationship(
        "ReturnItem", back_populates="return_record",
        order_by="ReturnItem.id", cascade="all, delete-orphan"
    )
    refunds = relationship(
        "ReturnRefund", back_populates="return_record",
        order_by="ReturnRefund.id", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint('total_refunded <= total_amount', name='ck_return_refund_le_total'),
        Index('ix_returns_branch_date', 'branch_id', 'return_date'),
    )
    __mapper_args__ = {"version_id_col": version_id}


class ReturnItem(Base):
    """Returned line"""
    __tablename__ = 'return_items'

    id = Column(Integer, primary_key=True)
    return_id = Column(Integer, ForeignKey('returns.id', ondelete='CASCADE'), nullable=False)
    sale_item_id = Column(Integer, ForeignKey('sale_items.id', ondelete='SET NULL'), nullable=True)
    layby_item_id = Column(Integer, ForeignKey('layby_items.id', ondelete='SET NULL'), nullable=True)
    quotation_item_id = Column(Integer, ForeignKey('quotation_items.id', ondelete='SET NULL'), nullable=True)
    product_id = Column(Integer, ForeignKey('products.id', ondelete='RESTRICT'), nullable=False)
    quantity = Column(Numeric(15, 3), nullable=False)
    price = Column(Numeric(15, 2), nullable=False)
    condition = Column(String(20), nullable=False)
    condition_notes = Column(Text, nullable=True)
    refund_amount = Column(Numeric(15, 2), nullable=False)
    inventory_loss_id = Column(Integer, ForeignKey('inventory_losses.id', ondelete='SET NULL'), nullable=True)
    notes = Column(Text, nullable=True)

    return_record = relationship("Return", back_populates="items")
    inventory_loss = relationship("InventoryLoss")


class ReturnRefund(Base):
    """Refund paid out against a processed return"""
    __tablename__ = 'return_refunds'

    id = Column(Integer, primary_key=True)
    return_id = Column(Integer, ForeignKey('returns.id', ondelete='CASCADE'), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    currency_id = Column(Integer, ForeignKey('currencies.id', ondelete='RESTRICT'), nullable=False)
    exchange_rate = Column(Numeric(18, 6), nullable=False)
    amount_in_base_currency = Column(Numeric(15, 2), nullable=False)
    payment_method_id = Column(Integer, ForeignKey('payment_methods.id', ondelete='RESTRICT'), nullable=False)
    shift_id = Column(Integer, ForeignKey('shifts.id', ondelete='SET NULL'), nullable=True)
    refund_date = Column(DateTime, nullable=False)
    reference_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    return_record = relationship("Return", back_populates="refunds")


# ==================== EXPORT ALL MODELS ====================

__all__ = [
    # Enums
    'PurchaseStatus', 'TransferStatus', 'ExpenseStatus', 'RecurringFrequency',
    'BudgetPeriod', 'ReturnStatus', 'ItemCondition', 'LossStatus', 'LossType', 'ShiftStatus',
    # Shop & branches
    'ShopSettings', 'Branch', 'BranchSettings',
    # Reference data
    'Currency', 'PaymentMethod', 'Supplier', 'Customer',
    # Catalog & inventory
    'Product', 'ProductCostHistory', 'BranchInventory', 'InventoryTransfer',
    'InventoryLoss', 'InventoryLossItem',
    # Purchases
    'Purchase', 'PurchaseItem', 'PurchasePayment',
    # Expenses
    'ExpenseCategory', 'ExpenseBudget', 'Expense', 'ExpensePayment',
    # Sales documents
    'Sale', 'SaleItem', 'Layby', 'LaybyItem', 'Quotation', 'QuotationItem', 'Shift',
    # Returns
    'Return', 'ReturnItem', 'ReturnRefund',
    'utcnow',
]
