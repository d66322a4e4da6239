"""
Expense Categories Service - per-branch category tree
"""
import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from backoffice.core.database import TenantHandle, transactional
from backoffice.core.exceptions import (
    CategoryHasChildrenError, CircularCategoryReferenceError,
    CrossBranchReferenceError, DuplicateKeyError, NotFoundError, ValidationError
)
from backoffice.models import Branch, ExpenseCategory
from backoffice.schemas import ExpenseCategoryCreate, ExpenseCategoryUpdate

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    ("Rent", "Property rental and lease payments"),
    ("Utilities", "Electricity, water, internet, phone"),
    ("Salaries", "Employee salaries and wages"),
    ("Supplies", "Office and operational supplies"),
    ("Maintenance", "Repairs and maintenance costs"),
    ("Marketing", "Advertising and promotional expenses"),
]


def require_category(db: Session, category_id: int) -> ExpenseCategory:
    category = db.query(ExpenseCategory).filter(ExpenseCategory.id == category_id).first()
    if not category:
        raise NotFoundError("Expense category", category_id)
    return category


def require_branch_category(db: Session, category_id: int, branch_id: int) -> ExpenseCategory:
    """The category, provided it belongs to ``branch_id``"""
    category = require_category(db, category_id)
    if category.branch_id != branch_id:
        raise CrossBranchReferenceError(
            "Category does not belong to this branch",
            category_id=category_id,
            branch_id=branch_id,
            category_branch_id=category.branch_id,
        )
    return category


class ExpenseCategoryService:
    def __init__(self, handle: TenantHandle):
        self.handle = handle

    def get_by_id(self, category_id: int) -> ExpenseCategory:
        with self.handle.session() as db:
            return require_category(db, category_id)

    def list(self, branch_id: int, active_only: bool = False) -> List[ExpenseCategory]:
        with self.handle.session() as db:
            query = db.query(ExpenseCategory).filter(ExpenseCategory.branch_id == branch_id)
            if active_only:
                query = query.filter(ExpenseCategory.is_active == True)
            return query.order_by(ExpenseCategory.name).all()

    def tree(self, branch_id: int) -> List[dict]:
        """Active categories of a branch as nested nodes"""
        with self.handle.session() as db:
            categories = db.query(ExpenseCategory).filter(
                ExpenseCategory.branch_id == branch_id,
                ExpenseCategory.is_active == True
            ).order_by(ExpenseCategory.name).all()

        nodes: Dict[int, dict] = {
            c.id: {
                "id": c.id,
                "branch_id": c.branch_id,
                "parent_id": c.parent_id,
                "name": c.name,
                "description": c.description,
                "is_default": c.is_default,
                "is_active": c.is_active,
                "children": [],
            }
            for c in categories
        }
        roots = []
        for node in nodes.values():
            parent = nodes.get(node["parent_id"]) if node["parent_id"] else None
            if parent is not None:
                parent["children"].append(node)
            else:
                roots.append(node)
        return roots

    def _check_duplicate_name(self, db: Session, branch_id: int, name: str, exclude_id: Optional[int] = None):
        query = db.query(ExpenseCategory).filter(
            ExpenseCategory.branch_id == branch_id,
            ExpenseCategory.name == name,
            ExpenseCategory.is_active == True
        )
        if exclude_id:
            query = query.filter(ExpenseCategory.id != exclude_id)
        if query.first():
            raise DuplicateKeyError(f"Category '{name}' already exists for this branch", name=name, branch_id=branch_id)

    def _would_create_cycle(self, db: Session, category_id: int, parent_id: int) -> bool:
        """Walk up from the proposed parent; meeting the category itself means a cycle"""
        seen = set()
        current_id = parent_id
        while current_id is not None:
            if current_id == category_id:
                return True
            if current_id in seen:
                return True
            seen.add(current_id)
            current_id = db.query(ExpenseCategory.parent_id).filter(
                ExpenseCategory.id == current_id
            ).scalar()
        return False

    def _check_parent(self, db: Session, branch_id: int, parent_id: int, category_id: Optional[int] = None):
        if category_id is not None and parent_id == category_id:
            raise CircularCategoryReferenceError(category_id, parent_id)

        parent = require_category(db, parent_id)
        if parent.branch_id != branch_id:
            raise CrossBranchReferenceError(
                "Parent category must belong to the same branch",
                parent_id=parent_id,
                branch_id=branch_id,
            )
        if not parent.is_active:
            raise ValidationError("Parent category is inactive", parent_id=parent_id)
        if category_id is not None and self._would_create_cycle(db, category_id, parent_id):
            raise CircularCategoryReferenceError(category_id, parent_id)

    def _check_no_active_children(self, db: Session, category_id: int):
        has_active_children = db.query(ExpenseCategory).filter(
            ExpenseCategory.parent_id == category_id,
            ExpenseCategory.is_active == True
        ).first()
        if has_active_children:
            raise CategoryHasChildrenError(category_id)

    @transactional
    def initialize_defaults(self, db: Session, branch_id: int) -> List[ExpenseCategory]:
        """Seed the standard categories for a branch that has none yet"""
        if not db.query(Branch).filter(Branch.id == branch_id).first():
            raise NotFoundError("Branch", branch_id)
        if db.query(ExpenseCategory).filter(ExpenseCategory.branch_id == branch_id).first():
            raise DuplicateKeyError("Default categories already initialized for this branch", branch_id=branch_id)

        categories = [
            ExpenseCategory(branch_id=branch_id, name=name, description=description, is_default=True, is_active=True)
            for name, description in DEFAULT_CATEGORIES
        ]
        db.add_all(categories)
        db.flush()
        logger.info("expense_categories_initialized tenant=%s branch=%s", self.handle.tenant_id, branch_id)
        return categories

    @transactional
    def create(self, db: Session, data: ExpenseCategoryCreate) -> ExpenseCategory:
        if not db.query(Branch).filter(Branch.id == data.branch_id).first():
            raise NotFoundError("Branch", data.branch_id)
        self._check_duplicate_name(db, data.branch_id, data.name)
        if data.parent_id is not None:
            self._check_parent(db, data.branch_id, data.parent_id)

        category = ExpenseCategory(
            branch_id=data.branch_id,
            parent_id=data.parent_id,
            name=data.name,
            description=data.description,
            is_default=False,
            is_active=True,
        )
        db.add(category)
        db.flush()
        logger.info("expense_category_created tenant=%s category=%s parent=%s", self.handle.tenant_id, category.id, category.parent_id)
        return category

    @transactional
    def update(self, db: Session, category_id: int, data: ExpenseCategoryUpdate) -> ExpenseCategory:
        category = db.query(ExpenseCategory).filter(ExpenseCategory.id == category_id).with_for_update().first()
        if not category:
            raise NotFoundError("Expense category", category_id)

        changes = data.model_dump(exclude_unset=True)
        if changes.get("name") and changes["name"] != category.name:
            self._check_duplicate_name(db, category.branch_id, changes["name"], exclude_id=category.id)
        if changes.get("parent_id") is not None:
            self._check_parent(db, category.branch_id, changes["parent_id"], category.id)
        if changes.get("is_active") is False and category.is_active:
            self._check_no_active_children(db, category.id)
        if changes.get("is_active") and not category.is_active:
            self._check_duplicate_name(db, category.branch_id, changes.get("name") or category.name, exclude_id=category.id)
            if "parent_id" not in changes and category.parent_id is not None:
                self._check_parent(db, category.branch_id, category.parent_id, category.id)

        for key, value in changes.items():
            setattr(category, key, value)

        db.flush()
        logger.info("expense_category_updated tenant=%s category=%s parent=%s", self.handle.tenant_id, category.id, category.parent_id)
        return category

    @transactional
    def delete(self, db: Session, category_id: int) -> ExpenseCategory:
        """Deactivate a category that has no active subcategories"""
        category = require_category(db, category_id)
        self._check_no_active_children(db, category_id)

        category.is_active = False
        db.flush()
        logger.info("expense_category_deactivated tenant=%s category=%s", self.handle.tenant_id, category_id)
        return category
