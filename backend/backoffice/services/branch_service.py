"""
Branch Service - Branches, branch settings, shop-value inheritance
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Tuple

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import InstrumentedAttribute

from backoffice.core.config import settings
from backoffice.core.database import TenantHandle, transactional
from backoffice.core.exceptions import DuplicateKeyError, NotFoundError
from backoffice.models import Branch, BranchSettings, ShopSettings
from backoffice.schemas import (
    BranchCreate, BranchSettingsUpdate, EffectiveSettings,
    InheritableField, ShopSettingsUpdate
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InheritanceRule:
    """The branch flag behind an inheritable field and the values it governs"""
    flag: InstrumentedAttribute
    fields: Tuple[str, ...]

    def apply(self, branch: Branch, inherit: bool):
        setattr(branch, self.flag.key, inherit)

    def inherits(self, branch: Branch) -> bool:
        return bool(getattr(branch, self.flag.key))


INHERITANCE_RULES: Dict[InheritableField, InheritanceRule] = {
    InheritableField.VAT: InheritanceRule(Branch.use_shop_vat, ("vat_number",)),
    InheritableField.TIN: InheritanceRule(Branch.use_shop_tin, ("tin_number",)),
    InheritableField.BUSINESS_REG: InheritanceRule(Branch.use_shop_business_reg, ("business_registration",)),
    InheritableField.TAX_RATE: InheritanceRule(Branch.use_shop_tax_rate, ("tax_rate",)),
    InheritableField.ADDRESS: InheritanceRule(Branch.use_shop_address, ("address",)),
    InheritableField.CONTACT: InheritanceRule(Branch.use_shop_contact, ("phone", "email")),
    InheritableField.CURRENCY: InheritanceRule(Branch.use_shop_currency, ("currency_code",)),
    InheritableField.RECEIPTS: InheritanceRule(Branch.use_shop_receipts, ("receipt_header", "receipt_footer")),
}


def get_shop_settings(db: Session) -> ShopSettings:
    """Shop-wide settings; an unsaved default row when none were stored yet"""
    shop = db.query(ShopSettings).order_by(ShopSettings.id).first()
    return shop or ShopSettings(business_name="My Shop")


def get_return_window_days(db: Session, branch_id: int) -> int:
    """Days after a sale during which the branch accepts returns"""
    branch_settings = db.query(BranchSettings).filter(BranchSettings.branch_id == branch_id).first()
    if branch_settings and branch_settings.return_window_days is not None:
        return branch_settings.return_window_days
    return settings.DEFAULT_RETURN_WINDOW_DAYS


class BranchService:
    def __init__(self, handle: TenantHandle):
        self.handle = handle

    def _get(self, db: Session, branch_id: int) -> Branch:
        branch = db.query(Branch).filter(Branch.id == branch_id).first()
        if not branch:
            raise NotFoundError("Branch", branch_id)
        return branch

    def get_by_id(self, branch_id: int) -> Branch:
        with self.handle.session() as db:
            return self._get(db, branch_id)

    def list(self, include_inactive: bool = False) -> List[Branch]:
        with self.handle.session() as db:
            query = db.query(Branch)
            if not include_inactive:
                query = query.filter(Branch.is_active == True)
            return query.order_by(Branch.code).all()

    @transactional
    def create(self, db: Session, branch_data: BranchCreate) -> Branch:
        if db.query(Branch).filter(Branch.code == branch_data.code).first():
            raise DuplicateKeyError(f"Branch code '{branch_data.code}' already exists", code=branch_data.code)

        branch = Branch(**branch_data.model_dump(), is_active=True)
        db.add(branch)
        db.flush()
        logger.info("branch_created tenant=%s branch=%s code=%s", self.handle.tenant_id, branch.id, branch.code)
        return branch

    @transactional
    def update_settings(self, db: Session, branch_id: int, data: BranchSettingsUpdate) -> BranchSettings:
        self._get(db, branch_id)
        branch_settings = db.query(BranchSettings).filter(BranchSettings.branch_id == branch_id).first()
        if branch_settings is None:
            branch_settings = BranchSettings(branch_id=branch_id)
            db.add(branch_settings)

        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(branch_settings, key, value)

        db.flush()
        return branch_settings

    @transactional
    def update_shop_settings(self, db: Session, data: ShopSettingsUpdate) -> ShopSettings:
        shop = db.query(ShopSettings).order_by(ShopSettings.id).first()
        if shop is None:
            shop = ShopSettings(business_name="My Shop")
            db.add(shop)

        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(shop, key, value)

        db.flush()
        return shop

    @transactional
    def toggle_inheritance(self, db: Session, branch_id: int, field: InheritableField, inherit: bool) -> Branch:
        """Switch one field group between the shop value and the branch's own value"""
        branch = self._get(db, branch_id)
        INHERITANCE_RULES[InheritableField(field)].apply(branch, inherit)
        db.flush()
        logger.info(
            "branch_inheritance_toggled tenant=%s branch=%s field=%s inherit=%s",
            self.handle.tenant_id, branch_id, InheritableField(field).value, inherit
        )
        return branch

    def effective_settings(self, branch_id: int) -> EffectiveSettings:
        with self.handle.session() as db:
            branch = self._get(db, branch_id)
            shop = get_shop_settings(db)

            values = {}
            for rule in INHERITANCE_RULES.values():
                source = shop if rule.inherits(branch) else branch
                for name in rule.fields:
                    values[name] = getattr(source, name)

            return EffectiveSettings(
                branch_id=branch.id,
                return_window_days=get_return_window_days(db, branch.id),
                **values
            )
