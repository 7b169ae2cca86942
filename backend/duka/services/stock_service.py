# Overview: Stock ledger; the only code that writes Product.current_stock.

"""
Duka Stock Invariants (authoritative)

- Product.current_stock is never negative.
- Every write to current_stock appends a StockHistoryEntry in the same DB
  transaction (signed quantity, resulting stock, reason type, reference, actor).
- The availability check happens on the locked row at the moment of the
  write, never on an earlier read.
- StockLedger methods never commit; the caller owns the unit of work.
  The module-level helpers (restock_product, adjust_stock) are complete
  units of work of their own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from ..extensions import db
from ..models import STOCK_ENTRY_TYPES, Product, StockHistoryEntry
from duka.time_utils import utcnow
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

# Every movement type except "sale" adds units
INCREMENT_ENTRY_TYPES = tuple(t for t in STOCK_ENTRY_TYPES if t != "sale")


class StockError(Exception):
    """Base for stock ledger failures that are the caller's to fix."""
    code = "STOCK_ERROR"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, **self.details}


class ProductNotFoundError(StockError):
    """Product id does not resolve to an active product of the shop."""
    code = "PRODUCT_NOT_FOUND"
    status_code = 404

    def __init__(self, product_id):
        super().__init__(
            f"Product not found with ID: {product_id}",
            details={"product_id": product_id},
        )
        self.product_id = product_id


class InsufficientStockError(StockError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: int, product_name: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}, Requested: {requested}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "available": available,
                "requested": requested,
            },
        )
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested


@dataclass(frozen=True)
class StockContext:
    """Who moved stock, where, and why (reference is e.g. a transaction number)."""
    reference: str | None = None
    actor_name: str | None = None
    shop_id: int | None = None
    notes: str | None = None
    occurred_at: datetime | None = None


@dataclass(frozen=True)
class StockChange:
    product_id: int
    product_name: str
    previous_stock: int
    new_stock: int
    delta: int

    def to_summary(self) -> dict:
        summary = {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "old_stock": self.previous_stock,
            "new_stock": self.new_stock,
        }
        if self.delta < 0:
            summary["quantity_sold"] = -self.delta
        else:
            summary["quantity_restocked"] = self.delta
        return summary


def _require_positive_quantity(quantity) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValueError("quantity must be a positive integer")


class StockLedger:
    """Row-locked stock mutations with history. Never commits."""

    def _load_locked(self, product_id: int) -> Product:
        product = (
            lock_for_update(db.session.query(Product).filter_by(id=product_id))
            .populate_existing()
            .first()
        )
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    def _apply(self, product: Product, delta: int, entry_type: str, context: StockContext) -> StockChange:
        previous = product.current_stock or 0
        new_stock = previous + delta
        product.current_stock = new_stock

        db.session.add(StockHistoryEntry(
            product_id=product.id,
            shop_id=context.shop_id or product.shop_id,
            type=entry_type,
            quantity=delta,
            new_stock=new_stock,
            reference=context.reference,
            actor_name=context.actor_name,
            notes=context.notes,
            occurred_at=context.occurred_at or utcnow(),
        ))
        return StockChange(
            product_id=product.id,
            product_name=product.name,
            previous_stock=previous,
            new_stock=new_stock,
            delta=delta,
        )

    def decrement(self, product_id: int, quantity: int, context: StockContext) -> StockChange:
        """
        Take quantity units out of stock for a sale.

        Raises ProductNotFoundError or InsufficientStockError; on either the
        caller must roll back the unit of work.
        """
        _require_positive_quantity(quantity)
        product = self._load_locked(product_id)

        available = product.current_stock or 0
        if available < quantity:
            raise InsufficientStockError(product.id, product.name, available, quantity)

        change = self._apply(product, -quantity, "sale", context)
        product.last_sold_at = context.occurred_at or utcnow()
        db.session.flush()
        return change

    def increment(
        self,
        product_id: int,
        quantity: int,
        context: StockContext,
        *,
        entry_type: str = "purchase",
    ) -> StockChange:
        """Put quantity units back into (or onto) stock: purchase, return or adjustment."""
        _require_positive_quantity(quantity)
        if entry_type not in INCREMENT_ENTRY_TYPES:
            raise ValueError(f"invalid stock entry type for increment: {entry_type}")

        product = self._load_locked(product_id)
        change = self._apply(product, quantity, entry_type, context)
        if entry_type == "purchase":
            product.last_restocked_at = context.occurred_at or utcnow()
        db.session.flush()
        return change

    def adjust(self, product_id: int, quantity_delta: int, context: StockContext) -> StockChange:
        """Signed manual correction (shrinkage, count fixes). Cannot go below zero."""
        if isinstance(quantity_delta, bool) or not isinstance(quantity_delta, int) or quantity_delta == 0:
            raise ValueError("quantity_delta must be a non-zero integer")

        product = self._load_locked(product_id)
        available = product.current_stock or 0
        if available + quantity_delta < 0:
            raise InsufficientStockError(product.id, product.name, available, -quantity_delta)

        change = self._apply(product, quantity_delta, "adjustment", context)
        db.session.flush()
        return change


def restock_product(
    *,
    product_id: int,
    quantity: int,
    actor_name: str | None = None,
    reference: str | None = None,
    notes: str | None = None,
    attempts: int = 3,
) -> StockChange:
    """Receive stock from a supplier (history type 'purchase')."""
    ledger = StockLedger()

    def _op():
        begin_write_transaction()
        change = ledger.increment(
            product_id,
            quantity,
            StockContext(reference=reference, actor_name=actor_name, notes=notes),
            entry_type="purchase",
        )
        db.session.commit()
        return change

    try:
        change = run_with_retry(_op, attempts=attempts)
    except (StockError, ValueError):
        db.session.rollback()
        raise

    logger.info("Restocked product %s: %s -> %s", product_id, change.previous_stock, change.new_stock)
    return change


def adjust_stock(
    *,
    product_id: int,
    quantity_delta: int,
    actor_name: str | None = None,
    notes: str | None = None,
    attempts: int = 3,
) -> StockChange:
    """Apply a signed manual correction (history type 'adjustment')."""
    ledger = StockLedger()

    def _op():
        begin_write_transaction()
        change = ledger.adjust(
            product_id,
            quantity_delta,
            StockContext(reference="manual-adjustment", actor_name=actor_name, notes=notes),
        )
        db.session.commit()
        return change

    try:
        change = run_with_retry(_op, attempts=attempts)
    except (StockError, ValueError):
        db.session.rollback()
        raise

    logger.info("Adjusted product %s by %+d (now %s)", product_id, quantity_delta, change.new_stock)
    return change


def list_stock_history(product_id: int, limit: int = 200) -> list[StockHistoryEntry]:
    if db.session.get(Product, product_id) is None:
        raise ProductNotFoundError(product_id)

    return (
        db.session.query(StockHistoryEntry)
        .filter_by(product_id=product_id)
        .order_by(StockHistoryEntry.occurred_at.desc(), StockHistoryEntry.id.desc())
        .limit(limit)
        .all()
    )
