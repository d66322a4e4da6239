from decimal import Decimal

import pytest

from backoffice.core.exceptions import (
    InvalidStateTransitionError, NotFoundError, OverReceiptError,
    PaymentExceedsDueError
)
from backoffice.models import PurchaseStatus
from backoffice.schemas import (
    PurchaseCreate, PurchaseItemCreate, PurchasePaymentCreate, PurchaseUpdate,
    ReceiveGoods, ReceiveItem
)
from backoffice.services.inventory_service import ProductService
from backoffice.services.purchase_service import PurchaseService

from conftest import stock_of


@pytest.fixture
def purchases(handle, clock):
    return PurchaseService(handle, clock)


def draft(purchases, seed, **overrides):
    data = dict(
        branch_id=seed.main,
        supplier_id=seed.supplier,
        shipping_cost=Decimal("5"),
        tax_amount=Decimal("3"),
        items=[
            PurchaseItemCreate(product_id=seed.widget, quantity=Decimal("10"), total_amount=Decimal("120")),
            PurchaseItemCreate(product_id=seed.gadget, quantity=Decimal("5"), total_amount=Decimal("20")),
        ],
    )
    data.update(overrides)
    return purchases.create(PurchaseCreate(**data), "buyer")


def pay(purchases, purchase_id, amount, currency_id, seed):
    return purchases.add_payment(
        purchase_id,
        PurchasePaymentCreate(amount=Decimal(amount), currency_id=currency_id, payment_method_id=seed.cash),
        "cashier",
    )


def items_by_product(purchase):
    return {item.product_id: item for item in purchase.items}


def test_create_computes_totals_and_number(purchases, seed):
    purchase = draft(purchases, seed)

    assert purchase.po_number == "PO2025-00001"
    assert purchase.status == PurchaseStatus.DRAFT.value
    assert purchase.subtotal == Decimal("140.00")
    assert purchase.total == Decimal("148.00")
    assert purchase.amount_paid == Decimal("0")
    assert purchase.amount_due == Decimal("148.00")

    lines = items_by_product(purchase)
    assert lines[seed.widget].current_cost_price == Decimal("10")
    assert lines[seed.widget].new_cost_price == Decimal("12")
    assert lines[seed.gadget].new_cost_price == Decimal("4")


def test_document_numbers_are_sequential(purchases, seed):
    first = draft(purchases, seed)
    second = draft(purchases, seed)

    assert (first.po_number, second.po_number) == ("PO2025-00001", "PO2025-00002")


def test_create_requires_known_supplier_and_products(purchases, seed):
    with pytest.raises(NotFoundError):
        draft(purchases, seed, supplier_id=9999)
    with pytest.raises(NotFoundError):
        draft(purchases, seed, items=[PurchaseItemCreate(product_id=9999, quantity=Decimal("1"), total_amount=Decimal("1"))])


def test_update_draft_recomputes_totals(purchases, seed):
    purchase = draft(purchases, seed)

    purchases.update(purchase.id, PurchaseUpdate(
        shipping_cost=Decimal("0"),
        items=[PurchaseItemCreate(product_id=seed.widget, quantity=Decimal("2"), total_amount=Decimal("30"))],
    ))

    updated = purchases.get_by_id(purchase.id)
    assert len(updated.items) == 1
    assert updated.subtotal == Decimal("30.00")
    assert updated.total == Decimal("33.00")
    assert updated.amount_due == Decimal("33.00")


def test_only_drafts_can_be_updated_or_cancelled(purchases, seed):
    purchase = draft(purchases, seed)
    purchases.submit(purchase.id, "buyer")

    with pytest.raises(InvalidStateTransitionError):
        purchases.update(purchase.id, PurchaseUpdate(notes="late change"))
    with pytest.raises(InvalidStateTransitionError):
        purchases.cancel(purchase.id)
    with pytest.raises(InvalidStateTransitionError):
        purchases.submit(purchase.id, "buyer")


def test_cancel_deletes_the_draft(purchases, seed):
    purchase = draft(purchases, seed)

    purchases.cancel(purchase.id)

    with pytest.raises(NotFoundError):
        purchases.get_by_id(purchase.id)


def test_payments_move_status_until_fully_paid(purchases, seed):
    purchase = draft(purchases, seed)
    purchases.submit(purchase.id, "buyer")

    pay(purchases, purchase.id, "50", seed.usd, seed)
    partially = purchases.get_by_id(purchase.id)
    assert partially.status == PurchaseStatus.PARTIALLY_PAID.value
    assert partially.amount_due == Decimal("98.00")

    pay(purchases, purchase.id, "98", seed.usd, seed)
    paid = purchases.get_by_id(purchase.id)
    assert paid.status == PurchaseStatus.FULLY_PAID.value
    assert paid.amount_paid == Decimal("148.00")
    assert paid.amount_due == Decimal("0")
    assert len(paid.payments) == 2


def test_payment_in_foreign_currency_is_normalized(purchases, seed):
    purchase = draft(purchases, seed)
    purchases.submit(purchase.id, "buyer")

    payment = pay(purchases, purchase.id, "20", seed.eur, seed)

    assert payment.amount == Decimal("20.00")
    assert payment.exchange_rate == Decimal("1.1")
    assert payment.amount_in_base_currency == Decimal("22.00")
    assert purchases.get_by_id(purchase.id).amount_due == Decimal("126.00")


def test_payment_may_not_exceed_amount_due(purchases, seed):
    purchase = draft(purchases, seed)
    purchases.submit(purchase.id, "buyer")
    pay(purchases, purchase.id, "50", seed.usd, seed)

    # 100 EUR is 110 in base currency, more than the 98 still due
    with pytest.raises(PaymentExceedsDueError):
        pay(purchases, purchase.id, "100", seed.eur, seed)

    after = purchases.get_by_id(purchase.id)
    assert after.amount_due == Decimal("98.00")
    assert len(after.payments) == 1


def test_draft_purchase_does_not_accept_payments(purchases, seed):
    purchase = draft(purchases, seed)

    with pytest.raises(InvalidStateTransitionError):
        pay(purchases, purchase.id, "10", seed.usd, seed)


def test_delete_payment_restores_balance(purchases, seed):
    purchase = draft(purchases, seed)
    purchases.submit(purchase.id, "buyer")
    first = pay(purchases, purchase.id, "48", seed.usd, seed)
    pay(purchases, purchase.id, "100", seed.usd, seed)

    restored = purchases.delete_payment(first.id)

    assert restored.status == PurchaseStatus.PARTIALLY_PAID.value
    assert restored.amount_paid == Decimal("100.00")
    assert restored.amount_due == Decimal("48.00")


def test_partial_receipt_adds_stock_without_cost_change(handle, purchases, seed):
    purchase = draft(purchases, seed)
    purchases.submit(purchase.id, "buyer")
    widget_line = items_by_product(purchase)[seed.widget]

    purchases.receive_goods(purchase.id, ReceiveGoods(items=[ReceiveItem(item_id=widget_line.id, quantity_received=Decimal("4"))]), "clerk")

    after = purchases.get_by_id(purchase.id)
    assert after.status == PurchaseStatus.SUBMITTED.value
    assert items_by_product(after)[seed.widget].quantity_received == Decimal("4")
    assert stock_of(handle, seed.main, seed.widget) == Decimal("104")
    assert ProductService(handle).get_by_id(seed.widget).cost == Decimal("10")


def test_full_receipt_updates_standing_cost_and_status(handle, purchases, seed, clock):
    purchase = draft(purchases, seed)
    purchases.submit(purchase.id, "buyer")
    lines = items_by_product(purchase)

    purchases.receive_goods(purchase.id, ReceiveGoods(items=[
        ReceiveItem(item_id=lines[seed.widget].id, quantity_received=Decimal("4")),
    ]), "clerk")
    purchases.receive_goods(purchase.id, ReceiveGoods(items=[
        ReceiveItem(item_id=lines[seed.widget].id, quantity_received=Decimal("6")),
        ReceiveItem(item_id=lines[seed.gadget].id, quantity_received=Decimal("5")),
    ]), "clerk")

    received = purchases.get_by_id(purchase.id)
    assert received.status == PurchaseStatus.RECEIVED.value
    assert received.actual_delivery_date == clock.now()
    assert stock_of(handle, seed.main, seed.widget) == Decimal("110")
    assert stock_of(handle, seed.main, seed.gadget) == Decimal("55")

    products = ProductService(handle)
    assert products.get_by_id(seed.widget).cost == Decimal("12")
    assert products.get_by_id(seed.gadget).cost == Decimal("4")

    history = products.cost_history(seed.widget)
    assert [(h.old_cost, h.new_cost, h.purchase_id) for h in history] == [
        (Decimal("10"), Decimal("12"), purchase.id)
    ]
    assert products.cost_history(seed.gadget) == []


def test_over_receipt_rolls_back_the_whole_receipt(handle, purchases, seed):
    purchase = draft(purchases, seed)
    purchases.submit(purchase.id, "buyer")
    lines = items_by_product(purchase)

    with pytest.raises(OverReceiptError):
        purchases.receive_goods(purchase.id, ReceiveGoods(items=[
            ReceiveItem(item_id=lines[seed.widget].id, quantity_received=Decimal("4")),
            ReceiveItem(item_id=lines[seed.gadget].id, quantity_received=Decimal("6")),
        ]), "clerk")

    after = purchases.get_by_id(purchase.id)
    assert all(item.quantity_received == 0 for item in after.items)
    assert stock_of(handle, seed.main, seed.widget) == Decimal("100")
    assert stock_of(handle, seed.main, seed.gadget) == Decimal("50")


def test_draft_purchase_cannot_receive_goods(purchases, seed):
    purchase = draft(purchases, seed)
    line = purchase.items[0]

    with pytest.raises(InvalidStateTransitionError):
        purchases.receive_goods(purchase.id, ReceiveGoods(items=[ReceiveItem(item_id=line.id, quantity_received=Decimal("1"))]), "clerk")


def test_receipt_of_unknown_line_fails(purchases, seed):
    purchase = draft(purchases, seed)
    purchases.submit(purchase.id, "buyer")

    with pytest.raises(NotFoundError):
        purchases.receive_goods(purchase.id, ReceiveGoods(items=[ReceiveItem(item_id=9999, quantity_received=Decimal("1"))]), "clerk")


def test_received_purchase_still_accepts_payment(purchases, seed):
    purchase = draft(purchases, seed)
    purchases.submit(purchase.id, "buyer")
    purchases.receive_goods(purchase.id, ReceiveGoods(items=[
        ReceiveItem(item_id=item.id, quantity_received=item.quantity) for item in purchase.items
    ]), "clerk")

    pay(purchases, purchase.id, "148", seed.usd, seed)

    paid = purchases.get_by_id(purchase.id)
    assert paid.status == PurchaseStatus.RECEIVED.value
    assert paid.amount_due == Decimal("0")


def test_unpaid_and_history_queries(purchases, seed):
    open_order = draft(purchases, seed)
    purchases.submit(open_order.id, "buyer")
    draft(purchases, seed)

    assert [p.id for p in purchases.unpaid()] == [open_order.id]

    history = purchases.product_purchase_history(seed.widget)
    assert len(history) == 2
    assert all(line.product_id == seed.widget for line in history)


def test_schema_rejects_empty_items(seed):
    from pydantic import ValidationError as SchemaError

    with pytest.raises(SchemaError):
        PurchaseCreate(branch_id=seed.main, supplier_id=seed.supplier, items=[])


def test_payment_sequence_against_round_total(purchases, seed):
    purchase = draft(purchases, seed, shipping_cost=Decimal("0"), tax_amount=Decimal("0"), items=[
        PurchaseItemCreate(product_id=seed.gadget, quantity=Decimal("25"), total_amount=Decimal("100")),
    ])
    purchases.submit(purchase.id, "buyer")

    pay(purchases, purchase.id, "60", seed.usd, seed)
    after_first = purchases.get_by_id(purchase.id)
    assert after_first.status == PurchaseStatus.PARTIALLY_PAID.value
    assert after_first.amount_due == Decimal("40.00")

    with pytest.raises(PaymentExceedsDueError):
        pay(purchases, purchase.id, "41", seed.usd, seed)

    pay(purchases, purchase.id, "40", seed.usd, seed)
    settled = purchases.get_by_id(purchase.id)
    assert settled.status == PurchaseStatus.FULLY_PAID.value
    assert settled.amount_due == Decimal("0")
    assert settled.amount_paid + settled.amount_due == settled.total
