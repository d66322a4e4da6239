from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from backoffice.core.clock import FixedClock
from backoffice.core.database import TenantStoreResolver
from backoffice.models import (
    Branch, BranchInventory, Currency, Customer, Layby, LaybyItem, PaymentMethod,
    Product, Quotation, QuotationItem, Sale, SaleItem, Shift, ShiftStatus, Supplier
)


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 1, 15, 12, 0, 0))


@pytest.fixture
def tenant_stores(tmp_path):
    stores = TenantStoreResolver(
        url_for=lambda tenant_id: f"sqlite:///{tmp_path / tenant_id}.db",
        echo=False,
    )
    yield stores
    stores.close_all()


@pytest.fixture
def handle(tenant_stores):
    return tenant_stores.get("acme")


def seed_reference_data(handle):
    """Two branches, three currencies, two products with stock, and the usual counterparties"""

    def work(db):
        main = Branch(name="Main Street", code="MAIN")
        north = Branch(name="North Mall", code="NORTH")
        usd = Currency(code="USD", name="US Dollar", symbol="$", exchange_rate=Decimal("1"), is_default=True)
        eur = Currency(code="EUR", name="Euro", symbol="E", exchange_rate=Decimal("1.10"))
        gbp = Currency(code="GBP", name="Pound", symbol="L", exchange_rate=Decimal("1.25"), is_active=False)
        cash = PaymentMethod(name="Cash", is_cash=True)
        supplier = Supplier(name="Acme Wholesale")
        customer = Customer(name="Jane Buyer")
        widget = Product(name="Widget", sku="WID-1", cost=Decimal("10.00"), price=Decimal("25.00"))
        gadget = Product(name="Gadget", sku="GAD-1", cost=Decimal("4.00"), price=Decimal("9.50"))
        db.add_all([main, north, usd, eur, gbp, cash, supplier, customer, widget, gadget])
        db.flush()

        db.add_all([
            BranchInventory(branch_id=main.id, product_id=widget.id, quantity=Decimal("100"), minimum_stock=Decimal("0")),
            BranchInventory(branch_id=main.id, product_id=gadget.id, quantity=Decimal("50"), minimum_stock=Decimal("0")),
            BranchInventory(branch_id=north.id, product_id=widget.id, quantity=Decimal("5"), minimum_stock=Decimal("0")),
        ])
        db.flush()

        return SimpleNamespace(
            main=main.id, north=north.id,
            usd=usd.id, eur=eur.id, gbp=gbp.id,
            cash=cash.id, supplier=supplier.id, customer=customer.id,
            widget=widget.id, gadget=gadget.id,
        )

    return handle.run(work)


@pytest.fixture
def seed(handle):
    return seed_reference_data(handle)


def stock_of(handle, branch_id, product_id) -> Decimal:
    with handle.session() as db:
        quantity = db.query(BranchInventory.quantity).filter(
            BranchInventory.branch_id == branch_id,
            BranchInventory.product_id == product_id
        ).scalar()
    return Decimal(quantity) if quantity is not None else Decimal("0")


@pytest.fixture
def make_sale(handle, seed, clock):
    """Record a sale ``days_ago`` days before the clock; lines are (product_id, quantity, price)"""
    counter = {"n": 0}

    def factory(lines, days_ago=5, branch_id=None):
        counter["n"] += 1

        def work(db):
            sale = Sale(
                sale_number=f"SALE-{counter['n']:04d}",
                branch_id=branch_id or seed.main,
                customer_id=seed.customer,
                sale_date=clock.now() - timedelta(days=days_ago),
            )
            for product_id, quantity, price in lines:
                sale.items.append(SaleItem(product_id=product_id, quantity=Decimal(quantity), price=Decimal(price)))
            db.add(sale)
            db.flush()
            return SimpleNamespace(id=sale.id, item_ids=[item.id for item in sale.items])

        return handle.run(work)

    return factory


@pytest.fixture
def make_layby(handle, seed, clock):
    def factory(lines, days_ago=3):
        def work(db):
            layby = Layby(
                layby_number="LAY-0001",
                branch_id=seed.main,
                customer_id=seed.customer,
                layby_date=clock.now() - timedelta(days=days_ago),
            )
            for product_id, quantity, price in lines:
                layby.items.append(LaybyItem(product_id=product_id, quantity=Decimal(quantity), price=Decimal(price)))
            db.add(layby)
            db.flush()
            return SimpleNamespace(id=layby.id, item_ids=[item.id for item in layby.items])

        return handle.run(work)

    return factory


@pytest.fixture
def make_quotation(handle, seed, clock):
    def factory(lines, days_ago=1):
        def work(db):
            quotation = Quotation(
                quotation_number="QUO-0001",
                branch_id=seed.main,
                customer_id=seed.customer,
                quotation_date=clock.now() - timedelta(days=days_ago),
            )
            for product_id, quantity, price in lines:
                quotation.items.append(QuotationItem(product_id=product_id, quantity=Decimal(quantity), price=Decimal(price)))
            db.add(quotation)
            db.flush()
            return SimpleNamespace(id=quotation.id, item_ids=[item.id for item in quotation.items])

        return handle.run(work)

    return factory


@pytest.fixture
def make_shift(handle, seed, clock):
    def factory(status=ShiftStatus.OPEN):
        def work(db):
            shift = Shift(
                branch_id=seed.main,
                cashier_id="cashier-1",
                opening_balance=Decimal("100"),
                status=status.value,
                opened_at=clock.now(),
            )
            db.add(shift)
            db.flush()
            return shift.id

        return handle.run(work)

    return factory
