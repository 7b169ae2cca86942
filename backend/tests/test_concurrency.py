"""
Concurrent sales against a file-backed SQLite database.

Each worker thread gets its own app context (and so its own session and
connection), the way two tills hitting the server at once would.
"""

import os
import tempfile
import threading

import pytest

from duka import create_app
from duka.extensions import db
from duka.models import Product, Shop, StockHistoryEntry, Transaction
from duka.services.sales_service import (
    InsufficientStockError,
    SaleContext,
    SaleRequest,
    get_sale_service,
)


@pytest.fixture
def file_app():
    tmpdir = tempfile.TemporaryDirectory()
    db_path = os.path.join(tmpdir.name, "concurrency.db")
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 15, "check_same_thread": False}},
        "SALE_RETRY_ATTEMPTS": 5,
        "LOG_LEVEL": "WARNING",
    })

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
    tmpdir.cleanup()


def _seed(app, stock):
    with app.app_context():
        shop = Shop(name="Concurrency Shop", location="Test")
        db.session.add(shop)
        db.session.commit()
        product = Product(
            shop_id=shop.id,
            name="Last Loaf",
            category="Bakery",
            buying_price_cents=500,
            min_selling_price_cents=800,
            current_stock=stock,
        )
        db.session.add(product)
        db.session.commit()
        return shop.id, product.id


def _run_concurrently(app, shop_id, product_id, workers, quantity=1):
    results = []
    lock = threading.Lock()
    start = threading.Barrier(workers)

    def worker(n):
        with app.app_context():
            context = SaleContext(
                cashier_id=n,
                cashier_name=f"Till {n}",
                shop_id=shop_id,
                shop_name="Concurrency Shop",
            )
            request = SaleRequest.from_payload({
                "payment_method": "cash",
                "total_amount_cents": 800 * quantity,
                "items": [{"product_id": product_id, "quantity": quantity}],
            })
            start.wait()
            try:
                get_sale_service().process_sale(request, context)
                outcome = "sold"
            except InsufficientStockError as exc:
                outcome = exc
            except Exception as exc:
                outcome = exc
            finally:
                db.session.remove()
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(1, workers + 1)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def test_two_tills_selling_the_last_unit(file_app):
    shop_id, product_id = _seed(file_app, stock=1)

    results = _run_concurrently(file_app, shop_id, product_id, workers=2)

    assert results.count("sold") == 1
    [failure] = [r for r in results if r != "sold"]
    assert isinstance(failure, InsufficientStockError)
    assert (failure.available, failure.requested) == (0, 1)

    with file_app.app_context():
        assert db.session.get(Product, product_id).current_stock == 0
        assert db.session.query(Transaction).count() == 1
        assert db.session.query(StockHistoryEntry).count() == 1


def test_many_tills_never_oversell(file_app):
    shop_id, product_id = _seed(file_app, stock=5)

    results = _run_concurrently(file_app, shop_id, product_id, workers=8)

    sold = results.count("sold")
    assert sold == 5
    assert all(isinstance(r, InsufficientStockError) for r in results if r != "sold")

    with file_app.app_context():
        assert db.session.get(Product, product_id).current_stock == 0
        assert db.session.query(Transaction).count() == sold
        history = db.session.query(StockHistoryEntry).order_by(StockHistoryEntry.id.asc()).all()
        assert [e.new_stock for e in history] == [4, 3, 2, 1, 0]
