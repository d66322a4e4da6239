# Services Package
from backoffice.services.currency_service import CurrencyNormalizer, CurrencyService
from backoffice.services.branch_service import BranchService
from backoffice.services.inventory_service import InventoryLedger, InventoryService, ProductService
from backoffice.services.inventory_loss_service import InventoryLossService
from backoffice.services.transfer_service import TransferService
from backoffice.services.purchase_service import PurchaseService
from backoffice.services.expense_category_service import ExpenseCategoryService
from backoffice.services.expense_budget_service import ExpenseBudgetService
from backoffice.services.expense_service import ExpenseService
from backoffice.services.return_service import ReturnService

__all__ = [
    'CurrencyNormalizer',
    'CurrencyService',
    'BranchService',
    'InventoryLedger',
    'InventoryService',
    'ProductService',
    'InventoryLossService',
    'TransferService',
    'PurchaseService',
    'ExpenseCategoryService',
    'ExpenseBudgetService',
    'ExpenseService',
    'ReturnService',
]
