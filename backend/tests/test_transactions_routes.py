"""HTTP surface of the sale endpoint and transaction reads."""

from duka.extensions import db
from duka.models import Admin, Product, Transaction
from duka.services.auth_service import hash_password
from conftest import TEST_BCRYPT_ROUNDS, TEST_PASSWORD, auth_headers, get_auth_token, make_product


def _stock(product_id):
    db.session.expire_all()
    return db.session.get(Product, product_id).current_stock


def _sale(product_id, quantity=3, **extra):
    body = {
        "payment_method": "cash",
        "total_amount_cents": 800 * quantity,
        "items": [{"product_id": product_id, "quantity": quantity}],
    }
    body.update(extra)
    return body


def test_cashier_sale_returns_201(client, cashier_headers, product, shop):
    response = client.post("/api/transactions", json=_sale(product.id), headers=cashier_headers)

    assert response.status_code == 201
    body = response.json
    assert body["success"] is True
    assert body["message"] == "Transaction created successfully"
    assert body["data"]["shop_id"] == shop.id
    assert body["data"]["cashier_name"] == "Jane Till"
    assert body["data"]["created_by"] == "cashier"
    assert body["data"]["total_profit_cents"] == 900
    assert body["data"]["items"][0]["profit_margin"] == 37.5
    assert body["stock_updates"] == [{
        "product_id": product.id,
        "product_name": "Sugar 1kg",
        "old_stock": 10,
        "new_stock": 7,
        "quantity_sold": 3,
    }]
    assert _stock(product.id) == 7


def test_cashier_cannot_sell_into_another_shop(client, cashier_headers, db_session, other_shop, shop):
    foreign = make_product(db_session, other_shop, name="Branch Rice")

    # shop_id in the body is ignored for cashiers
    response = client.post(
        "/api/transactions",
        json=_sale(foreign.id, 1, shop_id=other_shop.id),
        headers=cashier_headers,
    )

    assert response.status_code == 404
    assert response.json["code"] == "PRODUCT_NOT_FOUND"
    assert _stock(foreign.id) == 10


def test_admin_sale_needs_a_shop(client, admin_headers, product, shop):
    missing = client.post("/api/transactions", json=_sale(product.id), headers=admin_headers)
    assert missing.status_code == 400
    assert "Shop information is required" in missing.json["errors"]

    ok = client.post("/api/transactions", json=_sale(product.id, shop_id=shop.id), headers=admin_headers)
    assert ok.status_code == 201
    assert ok.json["data"]["created_by"] == "admin"
    assert ok.json["data"]["cashier_name"] == "Owner"


def test_validation_error_body(client, cashier_headers, product):
    response = client.post(
        "/api/transactions",
        json={"payment_method": "barter", "items": []},
        headers=cashier_headers,
    )

    assert response.status_code == 400
    body = response.json
    assert body["success"] is False
    assert body["code"] == "VALIDATION_FAILED"
    assert "Payment method must be cash, mpesa, bank, or card" in body["errors"]
    assert "Valid total amount is required" in body["errors"]
    assert "Transaction items are required" in body["errors"]


def test_non_object_body_is_rejected(client, cashier_headers):
    response = client.post("/api/transactions", json=[1, 2], headers=cashier_headers)
    assert response.status_code == 400
    assert response.json["code"] == "VALIDATION_FAILED"


def test_insufficient_stock_body(client, cashier_headers, product):
    response = client.post("/api/transactions", json=_sale(product.id, 11), headers=cashier_headers)

    assert response.status_code == 400
    body = response.json
    assert body["code"] == "INSUFFICIENT_STOCK"
    assert (body["product_id"], body["product_name"], body["available"], body["requested"]) == (
        product.id, "Sugar 1kg", 10, 11,
    )
    assert _stock(product.id) == 10


def test_unknown_product_body(client, cashier_headers, product):
    body = _sale(product.id)
    body["items"].append({"product_id": "X", "quantity": 1})

    response = client.post("/api/transactions", json=body, headers=cashier_headers)

    assert response.status_code == 404
    assert response.json["code"] == "PRODUCT_NOT_FOUND"
    assert response.json["product_id"] == "X"
    assert _stock(product.id) == 10
    assert db.session.query(Transaction).count() == 0


def test_sale_requires_authentication(client, product):
    response = client.post("/api/transactions", json=_sale(product.id))
    assert response.status_code == 401


def test_list_is_scoped_to_cashier_shop(client, cashier_headers, admin_headers, db_session, product, shop, other_shop):
    foreign = make_product(db_session, other_shop, name="Branch Rice")
    client.post("/api/transactions", json=_sale(product.id, 1), headers=cashier_headers)
    client.post("/api/transactions", json=_sale(foreign.id, 1, shop_id=other_shop.id), headers=admin_headers)

    as_cashier = client.get(f"/api/transactions?shop_id={other_shop.id}", headers=cashier_headers)
    assert as_cashier.status_code == 200
    assert [t["shop_id"] for t in as_cashier.json["items"]] == [shop.id]

    as_admin = client.get("/api/transactions", headers=admin_headers)
    assert as_admin.json["pagination"]["total"] == 2


def test_list_rejects_bad_filters(client, admin_headers):
    response = client.get("/api/transactions?start_date=soon", headers=admin_headers)
    assert response.status_code == 400


def test_get_transaction(client, cashier_headers, product):
    created = client.post("/api/transactions", json=_sale(product.id), headers=cashier_headers).json["data"]

    response = client.get(f"/api/transactions/{created['id']}", headers=cashier_headers)
    assert response.status_code == 200
    assert response.json["data"]["transaction_number"] == created["transaction_number"]

    assert client.get("/api/transactions/999999", headers=cashier_headers).status_code == 404


def test_status_change_is_admin_only_and_restocks(client, cashier_headers, admin_headers, product):
    created = client.post("/api/transactions", json=_sale(product.id), headers=cashier_headers).json["data"]
    url = f"/api/transactions/{created['id']}/status"

    forbidden = client.patch(url, json={"status": "refunded"}, headers=cashier_headers)
    assert forbidden.status_code == 403

    response = client.patch(url, json={"status": "refunded", "reason": "damaged"}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json["data"]["status"] == "refunded"
    assert response.json["data"]["status_reason"] == "damaged"
    assert response.json["stock_updates"][0]["quantity_restocked"] == 3
    assert _stock(product.id) == 10

    again = client.patch(url, json={"status": "completed"}, headers=admin_headers)
    assert again.status_code == 409
    assert again.json["code"] == "INVALID_STATUS_TRANSITION"


def test_summary_endpoint(client, cashier_headers, product, second_product):
    client.post("/api/transactions", json=_sale(product.id, 2), headers=cashier_headers)
    client.post("/api/transactions", json=_sale(product.id, 1, payment_method="mpesa"), headers=cashier_headers)

    response = client.get("/api/transactions/stats/summary", headers=cashier_headers)

    assert response.status_code == 200
    data = response.json["data"]
    assert data["total_transactions"] == 2
    assert data["total_revenue_cents"] == 2400
    assert data["total_profit_cents"] == 900
    assert {m["method"] for m in data["payment_methods"]} == {"cash", "mpesa"}


def test_cashier_filter_excludes_admin_with_same_id(client, db_session, cashier, cashier_headers, product, shop):
    owner = Admin(
        id=cashier.id,
        name="Owner",
        email="owner@duka.local",
        password_hash=hash_password(TEST_PASSWORD, rounds=TEST_BCRYPT_ROUNDS),
    )
    db_session.add(owner)
    db_session.commit()
    owner_headers = auth_headers(get_auth_token(client, "admin", "owner@duka.local"))

    assert client.post("/api/transactions", json=_sale(product.id, 1), headers=cashier_headers).status_code == 201
    assert client.post(
        "/api/transactions", json=_sale(product.id, 1, shop_id=shop.id), headers=owner_headers
    ).status_code == 201

    listed = client.get(f"/api/transactions?cashier_id={cashier.id}", headers=owner_headers)
    assert [t["cashier_name"] for t in listed.json["items"]] == ["Jane Till"]

    summary = client.get(f"/api/transactions/stats/summary?cashier_id={cashier.id}", headers=owner_headers)
    assert summary.json["data"]["total_transactions"] == 1
