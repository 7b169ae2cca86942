"""Pricing and profit arithmetic."""

import pytest

from duka.services.catalog_service import CatalogSnapshot
from duka.services.pricing import (
    LineItemRequest,
    fold_transaction_totals,
    margin_percent,
    price_line_item,
)


def _snapshot(**overrides):
    values = dict(
        product_id=1,
        shop_id=1,
        name="Sugar 1kg",
        category="Groceries",
        barcode="",
        cost_cents=500,
        min_selling_price_cents=800,
        current_stock=10,
        is_active=True,
    )
    values.update(overrides)
    return CatalogSnapshot(**values)


def test_line_uses_minimum_selling_price_without_override():
    line = price_line_item(LineItemRequest(product_id=1, quantity=3), _snapshot())

    assert line.unit_price_cents == 800
    assert line.total_price_cents == 2400
    assert line.cost_cents == 1500
    assert line.profit_cents == 900
    assert line.profit_margin == pytest.approx(37.5)


def test_positive_unit_price_override_wins():
    line = price_line_item(LineItemRequest(product_id=1, quantity=2, unit_price_cents=1000), _snapshot())

    assert line.unit_price_cents == 1000
    assert line.total_price_cents == 2000
    assert line.profit_cents == 1000


def test_zero_unit_price_override_falls_back_to_catalog():
    line = price_line_item(LineItemRequest(product_id=1, quantity=1, unit_price_cents=0), _snapshot())
    assert line.unit_price_cents == 800


def test_explicit_line_total_is_used_and_clamped_at_zero():
    discounted = price_line_item(
        LineItemRequest(product_id=1, quantity=3, total_price_cents=2000), _snapshot()
    )
    assert discounted.total_price_cents == 2000
    assert discounted.profit_cents == 500

    negative = price_line_item(
        LineItemRequest(product_id=1, quantity=1, total_price_cents=-50), _snapshot()
    )
    assert negative.total_price_cents == 0
    assert negative.profit_cents == -500
    assert negative.profit_margin == 0.0


def test_line_carries_catalog_snapshot_fields():
    line = price_line_item(
        LineItemRequest(product_id=7, quantity=1),
        _snapshot(product_id=7, name="Bread", category="Bakery", barcode="PROD-1"),
    )
    assert (line.product_id, line.product_name, line.category, line.barcode) == (7, "Bread", "Bakery", "PROD-1")
    assert line.unit_cost_cents == 500


def test_margin_percent_is_zero_for_non_positive_revenue():
    assert margin_percent(100, 0) == 0.0
    assert margin_percent(-100, -5) == 0.0
    assert margin_percent(25, 100) == pytest.approx(25.0)


def test_fold_sums_lines_when_no_explicit_total():
    snapshot = _snapshot()
    lines = [
        price_line_item(LineItemRequest(product_id=1, quantity=3), snapshot),
        price_line_item(LineItemRequest(product_id=1, quantity=1, unit_price_cents=900), snapshot),
    ]

    totals = fold_transaction_totals(lines)

    assert totals.subtotal_cents == 3300
    assert totals.total_amount_cents == 3300
    assert totals.total_cost_cents == 2000
    assert totals.total_profit_cents == 1300
    assert totals.items_count == 4
    assert totals.profit_margin == pytest.approx(1300 / 3300 * 100)


def test_fold_profit_follows_explicit_header_total():
    lines = [price_line_item(LineItemRequest(product_id=1, quantity=3), _snapshot())]

    totals = fold_transaction_totals(lines, explicit_total_amount_cents=2200)

    assert totals.subtotal_cents == 2400
    assert totals.total_amount_cents == 2200
    assert totals.total_profit_cents == 2200 - 1500


def test_fold_ignores_non_positive_explicit_total():
    lines = [price_line_item(LineItemRequest(product_id=1, quantity=2), _snapshot())]
    assert fold_transaction_totals(lines, explicit_total_amount_cents=0).total_amount_cents == 1600
