"""
Sale Service - atomic sale processing

One sale is one unit of work:

    VALIDATING -> PRICING -> RESERVING_STOCK -> PERSISTING -> COMMITTED
        |            |              |                |
        +------------+--------------+----------------+------> ABORTED

Catalog read, stock decrements and the transaction insert all run in the
same DB transaction. Any failure rolls everything back: there is never a
partial stock reduction or an orphan transaction row.

Concurrency: the transaction is opened as a writer (BEGIN IMMEDIATE on
SQLite, row locks elsewhere), so two tills selling the last unit of a
product serialize and exactly one of them wins. Write conflicts are
retried; the wall-clock budget covers all attempts.

Pending sales reserve no stock. Stock moves when a pending sale is later
completed, and comes back when a completed sale is cancelled or refunded.
"""

from __future__ import annotations

import enum
import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Mapping

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import (
    PAYMENT_METHODS,
    TRANSACTION_STATUSES,
    WALK_IN_CUSTOMER,
    Transaction,
    TransactionItem,
)
from duka.time_utils import epoch_millis, parse_iso_datetime, utcnow
from .catalog_service import CatalogReader, normalize_product_id
from .concurrency import begin_write_transaction, run_with_retry
from .pricing import (
    LineItemRequest,
    PricedLineItem,
    TransactionTotals,
    fold_transaction_totals,
    price_line_item,
)
from .stock_service import (
    InsufficientStockError,
    ProductNotFoundError,
    StockChange,
    StockContext,
    StockError,
    StockLedger,
)
from .transaction_ledger import TransactionLedger

logger = logging.getLogger(__name__)

CREATABLE_STATUSES = ("completed", "pending")

# Allowed status moves after creation; cancelled and refunded are terminal
STATUS_TRANSITIONS = {
    "completed": ("cancelled", "refunded"),
    "pending": ("completed", "cancelled"),
    "cancelled": (),
    "refunded": (),
}

__all__ = [
    "SaleService",
    "SaleRequest",
    "SaleContext",
    "SaleResult",
    "SaleError",
    "SaleValidationError",
    "PersistenceFailedError",
    "TransactionNotFoundError",
    "InvalidStatusTransitionError",
    "ProductNotFoundError",
    "InsufficientStockError",
    "build_sale_service",
    "get_sale_service",
]


class SaleState(enum.Enum):
    VALIDATING = "validating"
    PRICING = "pricing"
    RESERVING_STOCK = "reserving_stock"
    PERSISTING = "persisting"
    COMMITTED = "committed"


class SaleError(Exception):
    """Raised for sale operation errors."""
    code = "SALE_ERROR"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, **self.details}


class SaleValidationError(SaleError):
    code = "VALIDATION_FAILED"

    def __init__(self, errors: list[str]):
        super().__init__("Validation failed", details={"errors": list(errors)})
        self.errors = list(errors)


class PersistenceFailedError(SaleError):
    """The unit of work could not commit; nothing was written. Safe to retry."""
    code = "TRANSACTION_FAILED"
    status_code = 500


class SaleTimeoutError(PersistenceFailedError):
    def __init__(self, timeout_seconds: float):
        super().__init__(
            "Transaction timed out and was rolled back",
            details={"timeout_seconds": timeout_seconds},
        )


class TransactionNotFoundError(SaleError):
    code = "TRANSACTION_NOT_FOUND"
    status_code = 404

    def __init__(self, transaction_id):
        super().__init__("Transaction not found", details={"transaction_id": transaction_id})


class InvalidStatusTransitionError(SaleError):
    code = "INVALID_STATUS_TRANSITION"
    status_code = 409

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot change status from {current} to {requested}",
            details={"current_status": current, "requested_status": requested},
        )


@dataclass(frozen=True)
class SaleContext:
    """
    Identity the sale is attributed to, resolved once at the API boundary.

    The service never looks up admins or cashiers itself.
    """
    cashier_id: int | None
    cashier_name: str | None
    shop_id: int | None
    shop_name: str | None = None
    created_by: str = "system"


def _maybe_int(value):
    """Coerce plain integer strings; anything else is returned unchanged for validation."""
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
    return value


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class SaleRequest:
    """
    A cart as submitted by the till. Values are kept as received (after
    light coercion) so validation can report every problem at once.
    """
    payment_method: object = None
    total_amount_cents: object = None
    items: tuple[LineItemRequest, ...] | None = None
    status: object = "completed"
    amount_paid_cents: object = None
    change_given_cents: object = None
    subtotal_cents: object = None
    tax_cents: object = None
    discount_cents: object = None
    customer_name: str | None = None
    customer_phone: str | None = None
    notes: str | None = None
    sale_date: object = None
    transaction_number: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping) -> "SaleRequest":
        raw_items = payload.get("items")
        items = None
        if isinstance(raw_items, list):
            parsed = []
            for raw in raw_items:
                raw = raw if isinstance(raw, Mapping) else {}
                quantity = raw.get("quantity")
                parsed.append(LineItemRequest(
                    product_id=_maybe_int(raw.get("product_id")),
                    quantity=1 if quantity is None else _maybe_int(quantity),
                    unit_price_cents=_maybe_int(raw.get("unit_price_cents")),
                    total_price_cents=_maybe_int(raw.get("total_price_cents")),
                ))
            items = tuple(parsed)

        sale_date = payload.get("sale_date")
        if isinstance(sale_date, str):
            try:
                sale_date = parse_iso_datetime(sale_date)
            except ValueError:
                pass  # left as a string; validation reports it

        def _text(name):
            value = payload.get(name)
            return str(value).strip() if value is not None else None

        return cls(
            payment_method=payload.get("payment_method"),
            total_amount_cents=_maybe_int(payload.get("total_amount_cents")),
            items=items,
            status=payload.get("status") or "completed",
            amount_paid_cents=_maybe_int(payload.get("amount_paid_cents")),
            change_given_cents=_maybe_int(payload.get("change_given_cents")),
            subtotal_cents=_maybe_int(payload.get("subtotal_cents")),
            tax_cents=_maybe_int(payload.get("tax_cents")),
            discount_cents=_maybe_int(payload.get("discount_cents")),
            customer_name=_text("customer_name"),
            customer_phone=_text("customer_phone"),
            notes=_text("notes"),
            sale_date=sale_date,
            transaction_number=_text("transaction_number") or None,
        )


@dataclass
class SaleResult:
    transaction: Transaction
    stock_updates: list[StockChange] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "transaction": self.transaction.to_dict(),
            "stock_updates": [change.to_summary() for change in self.stock_updates],
        }


def validate_sale(request: SaleRequest, context: SaleContext) -> list[str]:
    """Collect every problem with the request; empty list means valid."""
    errors: list[str] = []

    method = request.payment_method
    if not method:
        errors.append("Payment method is required")
    elif not isinstance(method, str) or method.strip().lower() not in PAYMENT_METHODS:
        errors.append("Payment method must be cash, mpesa, bank, or card")

    if not _is_int(request.total_amount_cents) or request.total_amount_cents <= 0:
        errors.append("Valid total amount is required")

    if not request.items:
        errors.append("Transaction items are required")
    else:
        for i, item in enumerate(request.items):
            if item.product_id is None or item.product_id == "":
                errors.append(f"items[{i}].product_id is required")
            if not _is_int(item.quantity) or item.quantity <= 0:
                errors.append(f"items[{i}].quantity must be a positive integer")
            if item.unit_price_cents is not None and (
                not _is_int(item.unit_price_cents) or item.unit_price_cents < 0
            ):
                errors.append(f"items[{i}].unit_price_cents must be a non-negative integer")
            if item.total_price_cents is not None and not _is_int(item.total_price_cents):
                errors.append(f"items[{i}].total_price_cents must be an integer")

    if context.shop_id is None:
        errors.append("Shop information is required")

    if not context.cashier_id or not context.cashier_name:
        errors.append("Cashier information is required")

    if not isinstance(request.status, str) or request.status.lower() not in CREATABLE_STATUSES:
        errors.append("Status must be completed or pending")

    for name in ("amount_paid_cents", "change_given_cents", "subtotal_cents", "tax_cents", "discount_cents"):
        value = getattr(request, name)
        if value is not None and (not _is_int(value) or value < 0):
            errors.append(f"{name} must be a non-negative integer")

    if request.sale_date is not None and not isinstance(request.sale_date, datetime):
        errors.append("sale_date must be an ISO-8601 datetime")

    return errors


_SUFFIX_ALPHABET = string.digits + string.ascii_uppercase


def generate_transaction_number() -> str:
    """TXN-<epoch ms>-<5 base36 chars>. Best-effort unique; no index enforces it."""
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(5))
    return f"TXN-{epoch_millis()}-{suffix}"


def generate_receipt_number() -> str:
    return f"RCP-{epoch_millis()}"


def merge_quantities(lines: Iterable) -> dict[int, int]:
    """Total quantity per product id, in first-seen order."""
    merged: dict[int, int] = {}
    for line in lines:
        merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
    return merged


class SaleService:
    """
    Sale orchestrator.

    Collaborators are injected; build_sale_service() wires the defaults
    once per application.
    """

    def __init__(
        self,
        catalog: CatalogReader | None = None,
        stock: StockLedger | None = None,
        ledger: TransactionLedger | None = None,
        *,
        timeout_seconds: float = 10.0,
        attempts: int = 3,
        backoff_base: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.catalog = catalog or CatalogReader()
        self.stock = stock or StockLedger()
        self.ledger = ledger or TransactionLedger()
        self.timeout_seconds = timeout_seconds
        self.attempts = attempts
        self.backoff_base = backoff_base
        self._clock = clock

    def _check_deadline(self, started: float) -> None:
        if self.timeout_seconds is not None and self._clock() - started > self.timeout_seconds:
            raise SaleTimeoutError(self.timeout_seconds)

    def _run_unit_of_work(self, op, *, label: str):
        try:
            return run_with_retry(op, attempts=self.attempts, backoff_base=self.backoff_base)
        except (SaleError, StockError):
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("%s failed in the datastore", label)
            raise PersistenceFailedError("Failed to process transaction") from exc

    def process_sale(self, request: SaleRequest, context: SaleContext) -> SaleResult:
        """
        Validate, price, decrement stock and persist one sale atomically.

        Raises SaleValidationError, ProductNotFoundError,
        InsufficientStockError or PersistenceFailedError. Whatever is raised,
        nothing from this call is left in the database.
        """
        state = SaleState.VALIDATING
        errors = validate_sale(request, context)
        if errors:
            logger.warning("Sale rejected in %s: %s", state.value, "; ".join(errors))
            raise SaleValidationError(errors)

        status = request.status.lower()
        transaction_number = request.transaction_number or generate_transaction_number()
        started = self._clock()

        def _op() -> SaleResult:
            nonlocal state
            state = SaleState.PRICING
            begin_write_transaction(self.timeout_seconds)

            snapshots = self.catalog.find_by_ids([item.product_id for item in request.items], lock=True)
            self._check_deadline(started)

            priced: list[PricedLineItem] = []
            for item in request.items:
                snapshot = snapshots.get(normalize_product_id(item.product_id))
                if snapshot is None or not snapshot.is_active or snapshot.shop_id != context.shop_id:
                    raise ProductNotFoundError(item.product_id)
                priced.append(price_line_item(item, snapshot))
            totals = fold_transaction_totals(priced, request.total_amount_cents)

            state = SaleState.RESERVING_STOCK
            now = utcnow()
            stock_updates: list[StockChange] = []
            if status == "completed":
                stock_context = StockContext(
                    reference=transaction_number,
                    actor_name=context.cashier_name,
                    shop_id=context.shop_id,
                    occurred_at=now,
                )
                for product_id, quantity in merge_quantities(priced).items():
                    stock_updates.append(self.stock.decrement(product_id, quantity, stock_context))
                    self._check_deadline(started)

            state = SaleState.PERSISTING
            transaction = self._build_transaction(
                request, context, status, transaction_number, priced, totals, now
            )
            self.ledger.insert(transaction)
            self._check_deadline(started)

            db.session.commit()
            state = SaleState.COMMITTED
            return SaleResult(transaction=transaction, stock_updates=stock_updates)

        try:
            result = self._run_unit_of_work(_op, label=f"Sale {transaction_number}")
        except (SaleError, StockError) as exc:
            logger.warning("Sale %s aborted in %s: %s (%s)", transaction_number, state.value, exc.code, exc)
            raise

        tx = result.transaction
        logger.info(
            "Sale %s committed for shop %s by %s: status=%s total=%s cost=%s profit=%s margin=%.2f%% items=%s",
            tx.transaction_number,
            tx.shop_name,
            tx.cashier_name,
            tx.status,
            tx.total_amount_cents,
            tx.total_cost_cents,
            tx.total_profit_cents,
            tx.profit_margin,
            tx.items_count,
        )
        return result

    def _build_transaction(
        self,
        request: SaleRequest,
        context: SaleContext,
        status: str,
        transaction_number: str,
        priced: list[PricedLineItem],
        totals: TransactionTotals,
        now: datetime,
    ) -> Transaction:
        total = totals.total_amount_cents
        subtotal = request.subtotal_cents if request.subtotal_cents is not None else totals.subtotal_cents

        if request.tax_cents is None and request.discount_cents is None:
            # Till sent only a header total: record the gap to the line sum as discount or tax
            gap = subtotal - total
            discount, tax = max(gap, 0), max(-gap, 0)
        else:
            discount = request.discount_cents or 0
            tax = request.tax_cents or 0

        amount_paid = request.amount_paid_cents if request.amount_paid_cents is not None else total
        if request.change_given_cents is not None:
            change = request.change_given_cents
        else:
            change = max(0, amount_paid - total)

        transaction = Transaction(
            transaction_number=transaction_number,
            receipt_number=generate_receipt_number(),
            status=status,
            payment_method=request.payment_method.strip().lower(),
            customer_name=request.customer_name or WALK_IN_CUSTOMER,
            customer_phone=request.customer_phone or "",
            shop_id=context.shop_id,
            shop_name=context.shop_name or f"Shop {context.shop_id}",
            cashier_id=context.cashier_id,
            cashier_name=context.cashier_name,
            subtotal_cents=subtotal,
            tax_cents=tax,
            discount_cents=discount,
            total_amount_cents=total,
            amount_paid_cents=amount_paid,
            change_given_cents=change,
            total_cost_cents=totals.total_cost_cents,
            total_profit_cents=totals.total_profit_cents,
            profit_margin=totals.profit_margin,
            items_count=totals.items_count,
            sale_date=request.sale_date or now,
            notes=request.notes or "",
            created_by=context.created_by,
        )
        for position, line in enumerate(priced, start=1):
            transaction.items.append(TransactionItem(
                position=position,
                product_id=line.product_id,
                product_name=line.product_name,
                category=line.category,
                barcode=line.barcode,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                total_price_cents=line.total_price_cents,
                unit_cost_cents=line.unit_cost_cents,
                cost_cents=line.cost_cents,
                profit_cents=line.profit_cents,
                profit_margin=line.profit_margin,
            ))
        return transaction

    def change_status(
        self,
        transaction_id: int,
        new_status: str,
        *,
        actor_name: str,
        reason: str | None = None,
    ) -> SaleResult:
        """
        Move a transaction to another status, keeping stock consistent.

        completed -> cancelled/refunded puts the sold units back (type 'return').
        pending -> completed takes them out now, with the usual stock checks.
        pending -> cancelled touches no stock. Same status is a no-op.
        """
        requested = (new_status or "").strip().lower()
        if requested not in TRANSACTION_STATUSES:
            raise SaleValidationError(["Invalid status. Must be: completed, pending, cancelled, or refunded"])

        started = self._clock()

        def _op() -> SaleResult:
            begin_write_transaction(self.timeout_seconds)
            transaction = self.ledger.get_for_update(transaction_id)
            if transaction is None:
                raise TransactionNotFoundError(transaction_id)

            current = transaction.status
            if current == requested:
                db.session.commit()
                return SaleResult(transaction=transaction)
            if requested not in STATUS_TRANSITIONS.get(current, ()):
                raise InvalidStatusTransitionError(current, requested)

            now = utcnow()
            stock_context = StockContext(
                reference=transaction.transaction_number,
                actor_name=actor_name,
                shop_id=transaction.shop_id,
                notes=reason,
                occurred_at=now,
            )
            changes: list[StockChange] = []
            for product_id, quantity in merge_quantities(transaction.items).items():
                if current == "completed":
                    changes.append(self.stock.increment(product_id, quantity, stock_context, entry_type="return"))
                elif requested == "completed":
                    changes.append(self.stock.decrement(product_id, quantity, stock_context))
                self._check_deadline(started)

            transaction.status = requested
            transaction.status_changed_at = now
            transaction.status_changed_by = actor_name
            transaction.status_reason = reason
            db.session.commit()
            return SaleResult(transaction=transaction, stock_updates=changes)

        result = self._run_unit_of_work(_op, label=f"Status change of transaction {transaction_id}")
        logger.info(
            "Transaction %s status set to %s by %s",
            result.transaction.transaction_number,
            result.transaction.status,
            actor_name,
        )
        return result


def build_sale_service(config: Mapping) -> SaleService:
    """Wire the sale service from application config."""
    return SaleService(
        CatalogReader(),
        StockLedger(),
        TransactionLedger(),
        timeout_seconds=float(config.get("SALE_TIMEOUT_SECONDS", 10.0)),
        attempts=int(config.get("SALE_RETRY_ATTEMPTS", 3)),
    )


def get_sale_service() -> SaleService:
    """The application's sale service (registered by create_app)."""
    return current_app.extensions["sale_service"]
