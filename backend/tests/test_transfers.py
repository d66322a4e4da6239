from decimal import Decimal

import pytest

from backoffice.core.exceptions import (
    InsufficientStockError, InvalidStateTransitionError, NotFoundError, ValidationError
)
from backoffice.models import TransferStatus
from backoffice.schemas import TransferCreate
from backoffice.services.inventory_service import InventoryLedger, InventoryService
from backoffice.services.transfer_service import TransferService

from conftest import stock_of


@pytest.fixture
def transfers(handle, clock):
    return TransferService(handle, clock)


def request_transfer(transfers, seed, quantity="30", product=None, source=None, target=None):
    return transfers.create(TransferCreate(
        product_id=product or seed.widget,
        from_branch_id=source or seed.main,
        to_branch_id=target or seed.north,
        quantity=Decimal(quantity),
    ), "manager")


def test_completed_transfer_moves_stock(handle, transfers, seed, clock):
    transfer = request_transfer(transfers, seed)
    assert transfer.status == TransferStatus.PENDING.value

    transfers.approve_or_reject(transfer.id, True, "regional")
    completed = transfers.complete(transfer.id, "clerk")

    assert completed.status == TransferStatus.COMPLETED.value
    assert completed.completed_at == clock.now()
    assert stock_of(handle, seed.main, seed.widget) == Decimal("70")
    assert stock_of(handle, seed.north, seed.widget) == Decimal("35")


def test_transfer_conserves_total_stock(handle, transfers, seed):
    before = stock_of(handle, seed.main, seed.widget) + stock_of(handle, seed.north, seed.widget)

    transfer = request_transfer(transfers, seed, quantity="12.5")
    transfers.approve_or_reject(transfer.id, True, "regional")
    transfers.complete(transfer.id, "clerk")

    after = stock_of(handle, seed.main, seed.widget) + stock_of(handle, seed.north, seed.widget)
    assert after == before


def test_completion_creates_destination_row(handle, transfers, seed):
    transfer = request_transfer(transfers, seed, quantity="5", product=seed.gadget)
    transfers.approve_or_reject(transfer.id, True, "regional")
    transfers.complete(transfer.id)

    assert stock_of(handle, seed.north, seed.gadget) == Decimal("5")
    assert stock_of(handle, seed.main, seed.gadget) == Decimal("45")


def test_create_rejects_same_branch(transfers, seed):
    with pytest.raises(ValidationError):
        request_transfer(transfers, seed, target=seed.main)


def test_create_checks_available_stock(transfers, seed):
    with pytest.raises(InsufficientStockError):
        request_transfer(transfers, seed, quantity="6", source=seed.north, target=seed.main)


def test_create_unknown_destination(transfers, seed):
    with pytest.raises(NotFoundError):
        request_transfer(transfers, seed, target=9999)


def test_pending_transfer_cannot_complete(transfers, seed):
    transfer = request_transfer(transfers, seed)

    with pytest.raises(InvalidStateTransitionError):
        transfers.complete(transfer.id)


def test_rejected_transfer_is_final(handle, transfers, seed):
    transfer = request_transfer(transfers, seed)
    rejected = transfers.approve_or_reject(transfer.id, False, "regional", notes="not this week")

    assert rejected.status == TransferStatus.REJECTED.value
    assert rejected.notes == "not this week"
    with pytest.raises(InvalidStateTransitionError):
        transfers.complete(transfer.id)
    with pytest.raises(InvalidStateTransitionError):
        transfers.approve_or_reject(transfer.id, True, "regional")
    assert stock_of(handle, seed.main, seed.widget) == Decimal("100")


def test_completion_rechecks_stock(handle, transfers, seed, clock):
    transfer = request_transfer(transfers, seed)
    transfers.approve_or_reject(transfer.id, True, "regional")
    InventoryService(handle, clock).set_exact(seed.main, seed.widget, Decimal("10"))

    with pytest.raises(InsufficientStockError):
        transfers.complete(transfer.id)

    assert transfers.get_by_id(transfer.id).status == TransferStatus.APPROVED.value
    assert stock_of(handle, seed.main, seed.widget) == Decimal("10")
    assert stock_of(handle, seed.north, seed.widget) == Decimal("5")


def test_failed_credit_leaves_no_partial_transfer(handle, transfers, seed, monkeypatch):
    transfer = request_transfer(transfers, seed)
    transfers.approve_or_reject(transfer.id, True, "regional")

    original_adjust = InventoryLedger.adjust

    def credit_fails(self, branch_id, product_id, delta, now=None):
        if delta > 0:
            raise RuntimeError("storage failure while crediting destination")
        return original_adjust(self, branch_id, product_id, delta, now)

    monkeypatch.setattr(InventoryLedger, "adjust", credit_fails)
    with pytest.raises(RuntimeError):
        transfers.complete(transfer.id)
    monkeypatch.undo()

    assert transfers.get_by_id(transfer.id).status == TransferStatus.APPROVED.value
    assert stock_of(handle, seed.main, seed.widget) == Decimal("100")
    assert stock_of(handle, seed.north, seed.widget) == Decimal("5")


def test_list_filters_by_branch_and_status(transfers, seed):
    first = request_transfer(transfers, seed, quantity="1")
    second = request_transfer(transfers, seed, quantity="2")
    transfers.approve_or_reject(second.id, True, "regional")

    assert {t.id for t in transfers.list(branch_id=seed.north)} == {first.id, second.id}
    assert [t.id for t in transfers.list(status=TransferStatus.APPROVED.value)] == [second.id]
