"""
Sale pricing and profit arithmetic.

Pure functions: no database access, no clock, no hidden state. Inputs are
validated by the sale service before they get here. Money is integer
cents; margins are percentages as floats.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from .catalog_service import CatalogSnapshot


@dataclass(frozen=True)
class LineItemRequest:
    """One cart line as submitted by the till."""
    product_id: object
    quantity: int
    unit_price_cents: Optional[int] = None
    total_price_cents: Optional[int] = None


@dataclass(frozen=True)
class PricedLineItem:
    product_id: int
    product_name: str
    category: str
    barcode: str
    quantity: int
    unit_price_cents: int
    total_price_cents: int
    unit_cost_cents: int
    cost_cents: int
    profit_cents: int
    profit_margin: float


@dataclass(frozen=True)
class TransactionTotals:
    subtotal_cents: int
    total_amount_cents: int
    total_cost_cents: int
    total_profit_cents: int
    profit_margin: float
    items_count: int


def margin_percent(profit_cents: int, revenue_cents: int) -> float:
    if revenue_cents <= 0:
        return 0.0
    return profit_cents / revenue_cents * 100


def price_line_item(item: LineItemRequest, snapshot: CatalogSnapshot) -> PricedLineItem:
    """
    Price one cart line against its catalog snapshot.

    Unit price is the caller's override when positive, else the catalog
    minimum selling price. An explicit line total (manual line discount)
    wins over unit_price * quantity but is never negative.
    """
    if item.unit_price_cents is not None and item.unit_price_cents > 0:
        unit_price = item.unit_price_cents
    else:
        unit_price = snapshot.min_selling_price_cents

    if item.total_price_cents is not None:
        total_price = max(0, item.total_price_cents)
    else:
        total_price = unit_price * item.quantity

    cost = snapshot.cost_cents * item.quantity
    profit = total_price - cost

    return PricedLineItem(
        product_id=snapshot.product_id,
        product_name=snapshot.name,
        category=snapshot.category,
        barcode=snapshot.barcode,
        quantity=item.quantity,
        unit_price_cents=unit_price,
        total_price_cents=total_price,
        unit_cost_cents=snapshot.cost_cents,
        cost_cents=cost,
        profit_cents=profit,
        profit_margin=margin_percent(profit, total_price),
    )


def fold_transaction_totals(
    priced_items: Iterable[PricedLineItem],
    explicit_total_amount_cents: Optional[int] = None,
) -> TransactionTotals:
    """
    Fold priced lines into transaction-level figures.

    A positive explicit total (header-level discount or tax already applied
    by the till) is used as the total amount; otherwise the line totals are
    summed. Profit is always total amount minus total cost.
    """
    subtotal = 0
    total_cost = 0
    items_count = 0
    for line in priced_items:
        subtotal += line.total_price_cents
        total_cost += line.cost_cents
        items_count += line.quantity

    if explicit_total_amount_cents is not None and explicit_total_amount_cents > 0:
        total_amount = explicit_total_amount_cents
    else:
        total_amount = subtotal

    total_profit = total_amount - total_cost
    return TransactionTotals(
        subtotal_cents=subtotal,
        total_amount_cents=total_amount,
        total_cost_cents=total_cost,
        total_profit_cents=total_profit,
        profit_margin=margin_percent(total_profit, total_amount),
        items_count=items_count,
    )
