"""
Currency Service - currencies and base-currency normalization
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from backoffice.core.database import TenantHandle, transactional
from backoffice.core.exceptions import (
    CurrencyNotFoundError, DuplicateKeyError, NotFoundError, ValidationError
)
from backoffice.models import Currency
from backoffice.schemas import CurrencyCreate, CurrencyUpdate

logger = logging.getLogger(__name__)

MONEY = Decimal("0.01")
ONE = Decimal("1")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value or 0)


def to_money(value) -> Decimal:
    """Round to cents, half up"""
    return to_decimal(value).quantize(MONEY, rounding=ROUND_HALF_UP)


class CurrencyNormalizer:
    """Converts transaction amounts into the tenant base currency.

    The returned rate is the one applied; callers persist it next to the
    amount so the conversion can be reconstructed after rates change.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_active(self, currency_id: int) -> Currency:
        currency = self.db.query(Currency).filter(Currency.id == currency_id).first()
        if currency is None or not currency.is_active:
            raise CurrencyNotFoundError(currency_id)
        return currency

    def normalize(self, amount, currency_id: int) -> Tuple[Decimal, Decimal]:
        currency = self.get_active(currency_id)
        rate = to_decimal(currency.exchange_rate)
        return to_money(to_decimal(amount) * rate), rate


class CurrencyService:
    def __init__(self, handle: TenantHandle):
        self.handle = handle

    def get_by_id(self, currency_id: int) -> Currency:
        with self.handle.session() as db:
            currency = db.query(Currency).filter(Currency.id == currency_id).first()
            if not currency:
                raise NotFoundError("Currency", currency_id)
            return currency

    def list(self, active_only: bool = False) -> List[Currency]:
        with self.handle.session() as db:
            query = db.query(Currency)
            if active_only:
                query = query.filter(Currency.is_active == True)
            return query.order_by(Currency.code).all()

    def get_base_currency(self) -> Optional[Currency]:
        with self.handle.session() as db:
            return db.query(Currency).filter(Currency.is_default == True).first()

    def normalize(self, amount, currency_id: int) -> Tuple[Decimal, Decimal]:
        with self.handle.session() as db:
            return CurrencyNormalizer(db).normalize(amount, currency_id)

    @transactional
    def create(self, db: Session, data: CurrencyCreate) -> Currency:
        code = data.code.upper()
        if db.query(Currency).filter(Currency.code == code).first():
            raise DuplicateKeyError(f"Currency code '{code}' already exists", code=code)

        has_default = db.query(Currency).filter(Currency.is_default == True).first() is not None
        make_default = data.is_default or not has_default

        currency = Currency(
            code=code,
            name=data.name,
            symbol=data.symbol,
            exchange_rate=ONE if make_default else data.exchange_rate,
            is_default=False,
            is_active=True,
        )
        db.add(currency)
        db.flush()
        if make_default:
            self._make_default(db, currency)

        logger.info("currency_created tenant=%s code=%s default=%s", self.handle.tenant_id, code, make_default)
        return currency

    @transactional
    def update(self, db: Session, currency_id: int, data: CurrencyUpdate) -> Currency:
        currency = db.query(Currency).filter(Currency.id == currency_id).with_for_update().first()
        if not currency:
            raise NotFoundError("Currency", currency_id)

        changes = data.model_dump(exclude_unset=True)
        if currency.is_default:
            if "exchange_rate" in changes and to_decimal(changes["exchange_rate"]) != ONE:
                raise ValidationError("The base currency rate is fixed at 1", currency_id=currency_id)
            if changes.get("is_active") is False:
                raise ValidationError("The base currency cannot be deactivated", currency_id=currency_id)

        for field, value in changes.items():
            setattr(currency, field, value)

        db.flush()
        logger.info("currency_updated tenant=%s currency=%s", self.handle.tenant_id, currency_id)
        return currency

    @transactional
    def set_default(self, db: Session, currency_id: int) -> Currency:
        currency = db.query(Currency).filter(Currency.id == currency_id).first()
        if not currency:
            raise NotFoundError("Currency", currency_id)
        if not currency.is_active:
            raise ValidationError("An inactive currency cannot become the base currency", currency_id=currency_id)

        self._make_default(db, currency)
        logger.info("base_currency_changed tenant=%s currency=%s", self.handle.tenant_id, currency.code)
        return currency

    def _make_default(self, db: Session, currency: Currency):
        db.query(Currency).filter(
            Currency.is_default == True,
            Currency.id != currency.id
        ).update({Currency.is_default: False}, synchronize_session="fetch")
        currency.is_default = True
        currency.exchange_rate = ONE
        db.flush()
