"""
Pydantic Schemas for API Validation
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Dict, List, Optional
from datetime import datetime, date
from decimal import Decimal
from enum import Enum


# ==================== ENUMS ====================

class InheritableField(str, Enum):
    """Branch fields that can fall back to the shop-wide value"""
    VAT = "vat"
    TIN = "tin"
    BUSINESS_REG = "business_reg"
    TAX_RATE = "tax_rate"
    ADDRESS = "address"
    CONTACT = "contact"
    CURRENCY = "currency"
    RECEIPTS = "receipts"


class RecurringFrequencyEnum(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class BudgetPeriodEnum(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class ItemConditionEnum(str, Enum):
    GOOD = "good"
    DAMAGED = "damaged"


class LossTypeEnum(str, Enum):
    BREAKAGE = "breakage"
    THEFT = "theft"
    EXPIRY = "expiry"
    SPOILAGE = "spoilage"
    OTHER = "other"


# ==================== BRANCH SCHEMAS ====================

class BranchBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    code: str = Field(..., min_length=1, max_length=20)
    vat_number: Optional[str] = None
    tin_number: Optional[str] = None
    business_registration: Optional[str] = None
    tax_rate: Optional[Decimal] = Field(default=None, ge=0)
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    currency_code: Optional[str] = None
    receipt_header: Optional[str] = None
    receipt_footer: Optional[str] = None


class BranchCreate(BranchBase):
    pass


class BranchResponse(BranchBase):
    id: int
    is_active: bool
    use_shop_vat: bool
    use_shop_tin: bool
    use_shop_business_reg: bool
    use_shop_tax_rate: bool
    use_shop_address: bool
    use_shop_contact: bool
    use_shop_currency: bool
    use_shop_receipts: bool

    model_config = ConfigDict(from_attributes=True)


class ShopSettingsUpdate(BaseModel):
    business_name: Optional[str] = Field(default=None, min_length=1)
    vat_number: Optional[str] = None
    tin_number: Optional[str] = None
    business_registration: Optional[str] = None
    tax_rate: Optional[Decimal] = Field(default=None, ge=0)
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    currency_code: Optional[str] = None
    receipt_header: Optional[str] = None
    receipt_footer: Optional[str] = None


class ShopSettingsResponse(ShopSettingsUpdate):
    id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class BranchSettingsUpdate(BaseModel):
    return_window_days: Optional[int] = Field(default=None, ge=0)
    quotation_validity_days: Optional[int] = Field(default=None, ge=0)
    layby_deposit: Optional[Decimal] = Field(default=None, ge=0)


class InheritanceToggle(BaseModel):
    field: InheritableField
    inherit: bool


class EffectiveSettings(BaseModel):
    branch_id: int
    vat_number: Optional[str] = None
    tin_number: Optional[str] = None
    business_registration: Optional[str] = None
    tax_rate: Optional[Decimal] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    currency_code: Optional[str] = None
    receipt_header: Optional[str] = None
    receipt_footer: Optional[str] = None
    return_window_days: int


# ==================== CURRENCY SCHEMAS ====================

class CurrencyBase(BaseModel):
    code: str = Field(..., min_length=1, max_length=10)
    name: str = Field(..., min_length=1, max_length=100)
    symbol: Optional[str] = None
    exchange_rate: Decimal = Field(default=Decimal("1"), gt=0)


class CurrencyCreate(CurrencyBase):
    is_default: bool = False


class CurrencyUpdate(BaseModel):
    name: Optional[str] = None
    symbol: Optional[str] = None
    exchange_rate: Optional[Decimal] = Field(default=None, gt=0)
    is_active: Optional[bool] = None


class CurrencyResponse(CurrencyBase):
    id: int
    is_default: bool
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


# ==================== PRODUCT SCHEMAS ====================

class ProductBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    sku: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    unit: str = "pcs"
    cost: Decimal = Field(default=Decimal("0"), ge=0)
    price: Decimal = Field(default=Decimal("0"), ge=0)


class ProductCreate(ProductBase):
    pass


class ProductResponse(ProductBase):
    id: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class ProductCostHistoryResponse(BaseModel):
    id: int
    product_id: int
    old_cost: Decimal
    new_cost: Decimal
    reason: Optional[str] = None
    purchase_id: Optional[int] = None
    changed_by: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ==================== INVENTORY SCHEMAS ====================

class InventoryAdjust(BaseModel):
    branch_id: int
    product_id: int
    delta: Decimal


class InventorySet(BaseModel):
    branch_id: int
    product_id: int
    quantity: Decimal = Field(..., ge=0)
    minimum_stock: Optional[Decimal] = Field(default=None, ge=0)
    maximum_stock: Optional[Decimal] = Field(default=None, ge=0)


class BranchInventoryResponse(BaseModel):
    id: Optional[int] = None
    branch_id: int
    product_id: int
    quantity: Decimal
    minimum_stock: Decimal
    maximum_stock: Optional[Decimal] = None
    last_restocked: Optional[datetime] = None
    deficit: Decimal

    model_config = ConfigDict(from_attributes=True)


class TransferCreate(BaseModel):
    product_id: int
    from_branch_id: int
    to_branch_id: int
    quantity: Decimal = Field(..., gt=0)
    notes: Optional[str] = None


class TransferDecision(BaseModel):
    approved: bool
    notes: Optional[str] = None


class TransferResponse(BaseModel):
    id: int
    product_id: int
    from_branch_id: int
    to_branch_id: int
    quantity: Decimal
    status: str
    notes: Optional[str] = None
    requested_by: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InventoryLossItemCreate(BaseModel):
    product_id: int
    quantity: Decimal = Field(..., gt=0)
    notes: Optional[str] = None


class InventoryLossCreate(BaseModel):
    branch_id: int
    loss_type: LossTypeEnum = LossTypeEnum.OTHER
    reason: str = Field(..., min_length=1)
    reference_number: Optional[str] = None
    loss_date: Optional[datetime] = None
    notes: Optional[str] = None
    items: List[InventoryLossItemCreate] = Field(..., min_length=1)


class InventoryLossItemResponse(BaseModel):
    id: int
    product_id: int
    quantity: Decimal
    cost_price: Decimal
    line_total: Decimal

    model_config = ConfigDict(from_attributes=True)


class InventoryLossResponse(BaseModel):
    id: int
    loss_number: str
    branch_id: int
    loss_type: str
    reason: str
    reference_number: Optional[str] = None
    total_value: Decimal
    status: str
    deducts_stock: bool
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    items: List[InventoryLossItemResponse] = []

    model_config = ConfigDict(from_attributes=True)


# ==================== PURCHASE SCHEMAS ====================

class PurchaseItemCreate(BaseModel):
    product_id: int
    quantity: Decimal = Field(..., gt=0)
    total_amount: Decimal = Field(..., ge=0)


class PurchaseItemResponse(PurchaseItemCreate):
    id: int
    purchase_id: int
    quantity_received: Decimal
    current_cost_price: Decimal
    new_cost_price: Decimal

    model_config = ConfigDict(from_attributes=True)


class PurchaseBase(BaseModel):
    branch_id: int
    supplier_id: int
    expected_delivery_date: Optional[date] = None
    shipping_cost: Decimal = Field(default=Decimal("0"), ge=0)
    tax_amount: Decimal = Field(default=Decimal("0"), ge=0)
    notes: Optional[str] = None


class PurchaseCreate(PurchaseBase):
    items: List[PurchaseItemCreate] = Field(..., min_length=1)


class PurchaseUpdate(BaseModel):
    supplier_id: Optional[int] = None
    expected_delivery_date: Optional[date] = None
    shipping_cost: Optional[Decimal] = Field(default=None, ge=0)
    tax_amount: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = None
    items: Optional[List[PurchaseItemCreate]] = Field(default=None, min_length=1)


class PurchasePaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    currency_id: int
    payment_method_id: int
    payment_date: Optional[datetime] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None


class PurchasePaymentResponse(BaseModel):
    id: int
    purchase_id: int
    amount: Decimal
    currency_id: int
    exchange_rate: Decimal
    amount_in_base_currency: Decimal
    payment_method_id: int
    payment_date: datetime
    reference_number: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ReceiveItem(BaseModel):
    item_id: int
    quantity_received: Decimal = Field(..., gt=0)


class ReceiveGoods(BaseModel):
    items: List[ReceiveItem] = Field(..., min_length=1)
    actual_delivery_date: Optional[datetime] = None


class PurchaseResponse(PurchaseBase):
    id: int
    po_number: str
    order_date: datetime
    actual_delivery_date: Optional[datetime] = None
    subtotal: Decimal
    total: Decimal
    amount_paid: Decimal
    amount_due: Decimal
    status: str
    created_by: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PurchaseWithDetails(PurchaseResponse):
    items: List[PurchaseItemResponse] = []
    payments: List[PurchasePaymentResponse] = []


# ==================== EXPENSE SCHEMAS ====================

class ExpenseCategoryCreate(BaseModel):
    branch_id: int
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    parent_id: Optional[int] = None


class ExpenseCategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    parent_id: Optional[int] = None
    is_active: Optional[bool] = None


class ExpenseCategoryResponse(BaseModel):
    id: int
    branch_id: int
    parent_id: Optional[int] = None
    name: str
    description: Optional[str] = None
    is_default: bool
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class ExpenseCategoryTree(ExpenseCategoryResponse):
    children: List["ExpenseCategoryTree"] = []


class ExpenseBudgetCreate(BaseModel):
    branch_id: int
    category_id: int
    period: BudgetPeriodEnum
    year: int = Field(..., ge=2000, le=2100)
    month: Optional[int] = Field(default=None, ge=1, le=12)
    quarter: Optional[int] = Field(default=None, ge=1, le=4)
    budget_amount: Decimal = Field(..., gt=0)
    notes: Optional[str] = None


class ExpenseBudgetUpdate(BaseModel):
    budget_amount: Optional[Decimal] = Field(default=None, gt=0)
    notes: Optional[str] = None


class ExpenseBudgetResponse(BaseModel):
    id: int
    branch_id: int
    category_id: int
    period: str
    year: int
    month: Optional[int] = None
    quarter: Optional[int] = None
    budget_amount: Decimal
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class BudgetUtilizationResponse(BaseModel):
    budget: ExpenseBudgetResponse
    category_name: str
    period_start: date
    period_end: date
    actual_spent: Decimal
    remaining: Decimal
    utilization_percentage: Decimal
    is_over_budget: bool


class ExpenseBase(BaseModel):
    category_id: int
    vendor: Optional[str] = None
    description: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    currency_id: int
    expense_date: Optional[date] = None
    due_date: Optional[date] = None
    is_tax_deductible: bool = False
    notes: Optional[str] = None


class ExpenseCreate(ExpenseBase):
    branch_id: int
    is_recurring: bool = False
    recurring_frequency: Optional[RecurringFrequencyEnum] = None
    recurring_end_date: Optional[date] = None


class ExpenseUpdate(BaseModel):
    category_id: Optional[int] = None
    vendor: Optional[str] = None
    description: Optional[str] = Field(default=None, min_length=1)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    currency_id: Optional[int] = None
    expense_date: Optional[date] = None
    due_date: Optional[date] = None
    is_tax_deductible: Optional[bool] = None
    notes: Optional[str] = None


class ExpenseReject(BaseModel):
    reason: Optional[str] = None


class ExpensePaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    currency_id: int
    payment_method_id: int
    payment_date: Optional[datetime] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None


class ExpensePaymentResponse(BaseModel):
    id: int
    expense_id: int
    amount: Decimal
    currency_id: int
    exchange_rate: Decimal
    amount_in_base_currency: Decimal
    payment_method_id: int
    payment_date: datetime

    model_config = ConfigDict(from_attributes=True)


class ExpenseResponse(ExpenseBase):
    id: int
    expense_number: str
    branch_id: int
    exchange_rate: Decimal
    amount_in_base_currency: Decimal
    amount_paid: Decimal
    amount_due: Decimal
    status: str
    is_recurring: bool
    recurring_frequency: Optional[str] = None
    recurring_end_date: Optional[date] = None
    recurring_parent_id: Optional[int] = None
    rejection_reason: Optional[str] = None
    paid_date: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CategoryTotal(BaseModel):
    category_id: int
    category_name: str
    total: Decimal


class StatusTotal(BaseModel):
    status: str
    count: int
    total: Decimal


class ExpenseReport(BaseModel):
    total_expenses: Decimal
    expenses_by_category: List[CategoryTotal]
    expenses_by_status: List[StatusTotal]
    tax_deductible_total: Decimal


# ==================== RETURN SCHEMAS ====================

class ReturnItemCreate(BaseModel):
    sale_item_id: Optional[int] = None
    layby_item_id: Optional[int] = None
    quotation_item_id: Optional[int] = None
    product_id: int
    quantity: Decimal = Field(..., gt=0)
    condition: ItemConditionEnum
    condition_notes: Optional[str] = None
    notes: Optional[str] = None


class ReturnCreate(BaseModel):
    branch_id: int
    sale_id: Optional[int] = None
    layby_id: Optional[int] = None
    quotation_id: Optional[int] = None
    reason: str = Field(..., min_length=1)
    notes: Optional[str] = None
    return_date: Optional[datetime] = None
    items: List[ReturnItemCreate] = Field(..., min_length=1)


class ReturnUpdate(BaseModel):
    reason: Optional[str] = Field(default=None, min_length=1)
    notes: Optional[str] = None
    return_date: Optional[datetime] = None
    items: Optional[List[ReturnItemCreate]] = Field(default=None, min_length=1)


class ReturnRefundCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    currency_id: int
    payment_method_id: int
    shift_id: Optional[int] = None
    refund_date: Optional[datetime] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None


class ReturnItemResponse(BaseModel):
    id: int
    product_id: int
    sale_item_id: Optional[int] = None
    layby_item_id: Optional[int] = None
    quotation_item_id: Optional[int] = None
    quantity: Decimal
    price: Decimal
    condition: str
    refund_amount: Decimal
    inventory_loss_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class ReturnRefundResponse(BaseModel):
    id: int
    return_id: int
    amount: Decimal
    currency_id: int
    exchange_rate: Decimal
    amount_in_base_currency: Decimal
    payment_method_id: int
    shift_id: Optional[int] = None
    refund_date: datetime

    model_config = ConfigDict(from_attributes=True)


class ReturnResponse(BaseModel):
    id: int
    return_number: str
    branch_id: int
    sale_id: Optional[int] = None
    layby_id: Optional[int] = None
    quotation_id: Optional[int] = None
    customer_id: Optional[int] = None
    reason: str
    notes: Optional[str] = None
    total_amount: Decimal
    total_refunded: Decimal
    status: str
    return_date: datetime
    created_by: Optional[str] = None
    approved_by: Optional[str] = None
    processed_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ReturnWithDetails(ReturnResponse):
    items: List[ReturnItemResponse] = []
    refunds: List[ReturnRefundResponse] = []


class ReturnReport(BaseModel):
    start_date: datetime
    end_date: datetime
    total_returns: int
    total_value: Decimal
    total_refunded: Decimal
    total_pending: Decimal
    item_conditions: Dict[str, int]


# ==================== COMMON ====================

class MessageResponse(BaseModel):
    message: str
    success: bool = True


class HealthResponse(BaseModel):
    status: str
    app: str
    version: str
