"""Stock ledger: locked mutations with history."""

import pytest

from duka.models import STOCK_ENTRY_TYPES, Product, StockHistoryEntry
from duka.services import stock_service
from duka.services.stock_service import (
    InsufficientStockError,
    ProductNotFoundError,
    StockContext,
    StockLedger,
)


def _history(db_session, product_id):
    return (
        db_session.query(StockHistoryEntry)
        .filter_by(product_id=product_id)
        .order_by(StockHistoryEntry.id.asc())
        .all()
    )


def test_decrement_writes_sale_history(db_session, product):
    ctx = StockContext(reference="TXN-1", actor_name="Jane Till", shop_id=product.shop_id)

    change = StockLedger().decrement(product.id, 3, ctx)
    db_session.commit()

    assert (change.previous_stock, change.new_stock, change.delta) == (10, 7, -3)
    assert change.to_summary()["quantity_sold"] == 3
    assert db_session.get(Product, product.id).current_stock == 7
    assert db_session.get(Product, product.id).last_sold_at is not None

    [entry] = _history(db_session, product.id)
    assert (entry.type, entry.quantity, entry.new_stock, entry.reference) == ("sale", -3, 7, "TXN-1")


def test_decrement_refuses_to_oversell(db_session, product):
    with pytest.raises(InsufficientStockError) as exc_info:
        StockLedger().decrement(product.id, 11, StockContext())
    db_session.rollback()

    err = exc_info.value
    assert (err.available, err.requested, err.status_code) == (10, 11, 400)
    assert err.to_dict()["code"] == "INSUFFICIENT_STOCK"
    assert db_session.get(Product, product.id).current_stock == 10
    assert _history(db_session, product.id) == []


def test_decrement_unknown_product(db_session):
    with pytest.raises(ProductNotFoundError) as exc_info:
        StockLedger().decrement(424242, 1, StockContext())
    db_session.rollback()

    assert exc_info.value.status_code == 404
    assert "424242" in exc_info.value.message


@pytest.mark.parametrize("quantity", [0, -1, 1.5, True, "2"])
def test_quantity_must_be_positive_integer(db_session, product, quantity):
    with pytest.raises(ValueError):
        StockLedger().decrement(product.id, quantity, StockContext())


@pytest.mark.parametrize("entry_type", ["sale", "theft"])
def test_increment_rejects_non_increment_entry_types(db_session, product, entry_type):
    with pytest.raises(ValueError):
        StockLedger().increment(product.id, 1, StockContext(), entry_type=entry_type)


@pytest.mark.parametrize("entry_type", sorted(set(STOCK_ENTRY_TYPES) - {"sale"}))
def test_increment_accepts_every_other_entry_type(db_session, product, entry_type):
    change = StockLedger().increment(product.id, 2, StockContext(), entry_type=entry_type)
    db_session.commit()

    assert change.new_stock == 12
    [entry] = _history(db_session, product.id)
    assert (entry.type, entry.quantity) == (entry_type, 2)


def test_restock_product_is_a_committed_unit_of_work(db_session, product):
    change = stock_service.restock_product(
        product_id=product.id, quantity=5, actor_name="Owner", reference="PO-7"
    )

    db_session.expire_all()
    refreshed = db_session.get(Product, product.id)
    assert change.new_stock == 15
    assert change.to_summary()["quantity_restocked"] == 5
    assert refreshed.current_stock == 15
    assert refreshed.last_restocked_at is not None

    [entry] = _history(db_session, product.id)
    assert (entry.type, entry.quantity, entry.new_stock, entry.actor_name) == ("purchase", 5, 15, "Owner")


def test_adjust_stock_down_and_up(db_session, product):
    stock_service.adjust_stock(product_id=product.id, quantity_delta=-4, actor_name="Owner", notes="breakage")
    stock_service.adjust_stock(product_id=product.id, quantity_delta=1, actor_name="Owner")

    db_session.expire_all()
    assert db_session.get(Product, product.id).current_stock == 7
    assert [(e.type, e.quantity, e.new_stock) for e in _history(db_session, product.id)] == [
        ("adjustment", -4, 6),
        ("adjustment", 1, 7),
    ]


def test_adjust_stock_cannot_go_negative(db_session, product):
    with pytest.raises(InsufficientStockError):
        stock_service.adjust_stock(product_id=product.id, quantity_delta=-11)

    db_session.expire_all()
    assert db_session.get(Product, product.id).current_stock == 10
    assert _history(db_session, product.id) == []


def test_list_stock_history_newest_first(db_session, product):
    stock_service.restock_product(product_id=product.id, quantity=2)
    stock_service.adjust_stock(product_id=product.id, quantity_delta=-1)

    entries = stock_service.list_stock_history(product.id)

    assert [e.type for e in entries] == ["adjustment", "purchase"]


def test_list_stock_history_unknown_product(db_session):
    with pytest.raises(ProductNotFoundError):
        stock_service.list_stock_history(999)
