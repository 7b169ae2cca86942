"""Status changes after a sale keep stock consistent."""

import pytest

from duka.extensions import db
from duka.models import Product, StockHistoryEntry
from duka.services.sales_service import (
    InsufficientStockError,
    InvalidStatusTransitionError,
    SaleRequest,
    SaleService,
    SaleValidationError,
    TransactionNotFoundError,
)


@pytest.fixture
def service(app):
    return SaleService(backoff_base=0)


def _sell(service, context, product_id, quantity, status="completed"):
    request = SaleRequest.from_payload({
        "payment_method": "cash",
        "total_amount_cents": 800 * quantity,
        "items": [{"product_id": product_id, "quantity": quantity}],
        "status": status,
    })
    return service.process_sale(request, context).transaction


def _stock(product_id):
    db.session.expire_all()
    return db.session.get(Product, product_id).current_stock


@pytest.mark.parametrize("target", ["cancelled", "refunded"])
def test_cancelling_or_refunding_a_completed_sale_restocks(db_session, service, product, sale_context, target):
    tx = _sell(service, sale_context, product.id, 3)
    assert _stock(product.id) == 7

    result = service.change_status(tx.id, target, actor_name="Owner", reason="customer returned goods")

    assert result.transaction.status == target
    assert result.transaction.status_changed_by == "Owner"
    assert result.transaction.status_reason == "customer returned goods"
    assert result.transaction.status_changed_at is not None
    assert [u.to_summary()["quantity_restocked"] for u in result.stock_updates] == [3]
    assert _stock(product.id) == 10

    returns = db_session.query(StockHistoryEntry).filter_by(type="return").all()
    assert [(e.quantity, e.new_stock, e.reference) for e in returns] == [(3, 10, tx.transaction_number)]


def test_completing_a_pending_sale_takes_stock(db_session, service, product, sale_context):
    tx = _sell(service, sale_context, product.id, 4, status="pending")
    assert _stock(product.id) == 10

    result = service.change_status(tx.id, "completed", actor_name="Owner")

    assert result.transaction.status == "completed"
    assert _stock(product.id) == 6
    assert db_session.query(StockHistoryEntry).filter_by(type="sale").count() == 1


def test_completing_a_pending_sale_checks_availability(db_session, service, product, sale_context):
    tx = _sell(service, sale_context, product.id, 8, status="pending")
    _sell(service, sale_context, product.id, 5)

    with pytest.raises(InsufficientStockError):
        service.change_status(tx.id, "completed", actor_name="Owner")

    assert _stock(product.id) == 5
    db.session.expire_all()
    assert service.ledger.get(tx.id).status == "pending"


def test_cancelling_a_pending_sale_leaves_stock_alone(db_session, service, product, sale_context):
    tx = _sell(service, sale_context, product.id, 2, status="pending")

    result = service.change_status(tx.id, "cancelled", actor_name="Owner")

    assert result.transaction.status == "cancelled"
    assert result.stock_updates == []
    assert _stock(product.id) == 10
    assert db_session.query(StockHistoryEntry).count() == 0


@pytest.mark.parametrize("terminal", ["cancelled", "refunded"])
def test_terminal_statuses_cannot_be_left(db_session, service, product, sale_context, terminal):
    tx = _sell(service, sale_context, product.id, 1)
    service.change_status(tx.id, terminal, actor_name="Owner")

    with pytest.raises(InvalidStatusTransitionError) as exc_info:
        service.change_status(tx.id, "completed", actor_name="Owner")

    assert exc_info.value.status_code == 409
    assert _stock(product.id) == 10


def test_same_status_is_a_no_op(db_session, service, product, sale_context):
    tx = _sell(service, sale_context, product.id, 1)

    result = service.change_status(tx.id, "completed", actor_name="Owner")

    assert result.stock_updates == []
    assert result.transaction.status_changed_at is None
    assert _stock(product.id) == 9


def test_completed_cannot_go_back_to_pending(db_session, service, product, sale_context):
    tx = _sell(service, sale_context, product.id, 1)
    with pytest.raises(InvalidStatusTransitionError):
        service.change_status(tx.id, "pending", actor_name="Owner")


def test_unknown_status_and_transaction(db_session, service, product, sale_context):
    tx = _sell(service, sale_context, product.id, 1)

    with pytest.raises(SaleValidationError):
        service.change_status(tx.id, "lost", actor_name="Owner")

    with pytest.raises(TransactionNotFoundError):
        service.change_status(987654, "cancelled", actor_name="Owner")
