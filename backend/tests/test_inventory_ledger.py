from decimal import Decimal

import pytest

from backoffice.core.exceptions import (
    DuplicateKeyError, InsufficientStockError, NotFoundError, ProductNotFoundError, ValidationError
)
from backoffice.schemas import ProductCreate
from backoffice.services.inventory_service import InventoryLedger, InventoryService, ProductService

from conftest import stock_of


def test_adjust_adds_and_removes_stock(handle, seed, clock):
    inventory = InventoryService(handle, clock)

    inventory.adjust(seed.main, seed.widget, Decimal("5"))
    inventory.adjust(seed.main, seed.widget, Decimal("-20"))

    assert stock_of(handle, seed.main, seed.widget) == Decimal("85")


def test_adjust_creates_missing_row_on_credit(handle, seed, clock):
    row = InventoryService(handle, clock).adjust(seed.north, seed.gadget, Decimal("7"))

    assert row.quantity == Decimal("7")
    assert row.last_restocked == clock.now()
    assert stock_of(handle, seed.north, seed.gadget) == Decimal("7")


def test_adjust_never_goes_negative(handle, seed, clock):
    inventory = InventoryService(handle, clock)

    with pytest.raises(InsufficientStockError) as excinfo:
        inventory.adjust(seed.north, seed.widget, Decimal("-6"))

    assert excinfo.value.available == Decimal("5")
    assert excinfo.value.requested == Decimal("6")
    assert stock_of(handle, seed.north, seed.widget) == Decimal("5")


def test_debit_of_missing_row_is_insufficient_stock(handle, seed, clock):
    with pytest.raises(InsufficientStockError):
        InventoryService(handle, clock).adjust(seed.north, seed.gadget, Decimal("-1"))


def test_adjust_unknown_product_or_branch(handle, seed, clock):
    inventory = InventoryService(handle, clock)

    with pytest.raises(ProductNotFoundError):
        inventory.adjust(seed.main, 9999, Decimal("1"))
    with pytest.raises(NotFoundError):
        inventory.adjust(9999, seed.widget, Decimal("1"))


def test_set_exact_replaces_quantity(handle, seed, clock):
    row = InventoryService(handle, clock).set_exact(
        seed.main, seed.widget, Decimal("12"), minimum_stock=Decimal("3")
    )

    assert row.quantity == Decimal("12")
    assert row.minimum_stock == Decimal("3")
    assert stock_of(handle, seed.main, seed.widget) == Decimal("12")


def test_set_exact_rejects_negative_values(handle, seed, clock):
    inventory = InventoryService(handle, clock)

    with pytest.raises(ValidationError):
        inventory.set_exact(seed.main, seed.widget, Decimal("-1"))
    with pytest.raises(ValidationError):
        inventory.set_exact(seed.main, seed.widget, Decimal("1"), minimum_stock=Decimal("-2"))


def test_low_stock_orders_by_largest_shortfall(handle, seed, clock):
    inventory = InventoryService(handle, clock)
    inventory.set_exact(seed.main, seed.gadget, Decimal("1"), minimum_stock=Decimal("4"))
    inventory.set_exact(seed.main, seed.widget, Decimal("2"), minimum_stock=Decimal("10"))

    rows = list(inventory.low_stock(seed.main))

    assert [r.product_id for r in rows] == [seed.widget, seed.gadget]
    assert [r.deficit for r in rows] == [Decimal("8"), Decimal("3")]


def test_low_stock_skips_rows_at_or_above_minimum(handle, seed, clock):
    inventory = InventoryService(handle, clock)
    inventory.set_exact(seed.main, seed.widget, Decimal("10"), minimum_stock=Decimal("10"))

    assert list(inventory.low_stock(seed.main)) == []


def test_get_or_zero_returns_unsaved_zero_row(handle, seed, clock):
    row = InventoryService(handle, clock).get_or_zero(seed.north, seed.gadget)

    assert row.id is None
    assert row.quantity == Decimal("0")
    assert row.deficit == Decimal("0")


def test_ledger_joins_the_callers_transaction(handle, seed, clock):
    def work(db):
        ledger = InventoryLedger(db, clock)
        ledger.adjust(seed.main, seed.widget, Decimal("-10"))
        raise RuntimeError("document failed after the stock movement")

    with pytest.raises(RuntimeError):
        handle.run(work)

    assert stock_of(handle, seed.main, seed.widget) == Decimal("100")


def test_branch_inventory_lists_every_row(handle, seed, clock):
    rows = InventoryService(handle, clock).branch_inventory(seed.main)

    assert {r.product_id for r in rows} == {seed.widget, seed.gadget}


def test_product_sku_is_unique(handle, seed):
    with pytest.raises(DuplicateKeyError):
        ProductService(handle).create(ProductCreate(name="Other", sku="WID-1"))


def test_debit_below_minimum_shows_up_as_low_stock(handle, seed, clock):
    inventory = InventoryService(handle, clock)
    inventory.set_exact(seed.main, seed.widget, Decimal("10"), minimum_stock=Decimal("8"))

    with pytest.raises(InsufficientStockError):
        inventory.adjust(seed.main, seed.widget, Decimal("-11"))
    assert stock_of(handle, seed.main, seed.widget) == Decimal("10")

    inventory.adjust(seed.main, seed.widget, Decimal("-3"))

    [row] = list(inventory.low_stock(seed.main))
    assert row.product_id == seed.widget
    assert row.quantity == Decimal("7")
    assert row.deficit == Decimal("1")
