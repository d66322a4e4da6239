# API v1 Package
from backoffice.api.v1 import budgets, expenses, inventory, purchases, returns, settings

__all__ = [
    'budgets',
    'expenses',
    'inventory',
    'purchases',
    'returns',
    'settings',
]
