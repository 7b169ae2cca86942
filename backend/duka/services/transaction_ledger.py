# Overview: Persistence and read access for sale transactions.

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, time
from typing import Mapping

from sqlalchemy import func

from ..extensions import db
from ..models import Transaction
from duka.time_utils import parse_iso_datetime
from .concurrency import lock_for_update
from .pricing import margin_percent

DIGITAL_PAYMENT_METHODS = ("mpesa", "bank")
MAX_PER_PAGE = 100


@dataclass(frozen=True)
class TransactionFilter:
    """
    Listing criteria. Every field is optional; None means "no constraint".

    payment_method accepts a concrete method or "digital" (mpesa + bank).
    end_date is inclusive.
    """
    shop_id: int | None = None
    cashier_id: int | None = None
    cashier_name: str | None = None
    status: str | None = None
    payment_method: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None

    @classmethod
    def from_query_args(cls, args: Mapping) -> "TransactionFilter":
        """
        Build criteria from request query args.

        "all" is treated like an absent value. status defaults to
        "completed". Date-only values cover the whole day.
        Raises ValueError on malformed ids or dates.
        """
        def _arg(name):
            value = args.get(name)
            if value is None:
                return None
            value = str(value).strip()
            if not value or value.lower() == "all":
                return None
            return value

        def _int(name):
            value = _arg(name)
            if value is None:
                return None
            if not value.isdigit():
                raise ValueError(f"{name} must be an integer")
            return int(value)

        def _date(name, *, end_of_day: bool):
            value = _arg(name)
            if value is None:
                return None
            try:
                parsed = parse_iso_datetime(value)
            except ValueError:
                raise ValueError(f"{name} must be an ISO-8601 date")
            if len(value) == 10 and end_of_day:
                parsed = datetime.combine(parsed.date(), time.max)
            return parsed

        status = args.get("status", "completed")
        return cls(
            shop_id=_int("shop_id"),
            cashier_id=_int("cashier_id"),
            cashier_name=_arg("cashier_name"),
            status=None if status is None or str(status).lower() == "all" else str(status).lower(),
            payment_method=(_arg("payment_method") or "").lower() or None,
            start_date=_date("start_date", end_of_day=False),
            end_date=_date("end_date", end_of_day=True),
        )

    def clauses(self) -> list:
        """Translate the criteria into SQLAlchemy filter clauses."""
        out = []
        if self.shop_id is not None:
            out.append(Transaction.shop_id == self.shop_id)
        if self.cashier_id is not None:
            # Admin sales also carry an account id in cashier_id; ids of the two tables overlap
            out.append(Transaction.cashier_id == self.cashier_id)
            out.append(Transaction.created_by == "cashier")
        if self.cashier_name:
            out.append(Transaction.cashier_name.ilike(f"%{self.cashier_name}%"))
        if self.status:
            out.append(Transaction.status == self.status)
        if self.payment_method == "digital":
            out.append(Transaction.payment_method.in_(DIGITAL_PAYMENT_METHODS))
        elif self.payment_method:
            out.append(Transaction.payment_method == self.payment_method)
        if self.start_date is not None:
            out.append(Transaction.sale_date >= self.start_date)
        if self.end_date is not None:
            out.append(Transaction.sale_date <= self.end_date)
        return out


class TransactionLedger:
    """Append-only store of sale records, on the current session."""

    def insert(self, transaction: Transaction) -> Transaction:
        db.session.add(transaction)
        db.session.flush()
        return transaction

    def get(self, transaction_id: int) -> Transaction | None:
        return db.session.get(Transaction, transaction_id)

    def get_for_update(self, transaction_id: int) -> Transaction | None:
        return (
            lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id))
            .populate_existing()
            .first()
        )

    def list(self, criteria: TransactionFilter, *, page: int = 1, per_page: int = 50) -> dict:
        per_page = min(max(per_page or 50, 1), MAX_PER_PAGE)
        page = max(page or 1, 1)

        query = (
            db.session.query(Transaction)
            .filter(*criteria.clauses())
            .order_by(Transaction.sale_date.desc(), Transaction.id.desc())
        )
        total = query.count()
        total_pages = (total + per_page - 1) // per_page if total > 0 else 1
        rows = query.offset((page - 1) * per_page).limit(per_page).all()

        return {
            "items": [t.to_dict() for t in rows],
            "count": len(rows),
            "pagination": {
                "page": page,
                "per_page": per_page,
                "total": total,
                "total_pages": total_pages,
                "has_next": page < total_pages,
                "has_prev": page > 1,
            },
        }

    def summarize(self, criteria: TransactionFilter) -> dict:
        """Totals and payment-method breakdown over completed transactions."""
        criteria = replace(criteria, status="completed")
        clauses = criteria.clauses()

        row = db.session.query(
            func.count(Transaction.id).label("transactions"),
            func.coalesce(func.sum(Transaction.total_amount_cents), 0).label("revenue"),
            func.coalesce(func.sum(Transaction.total_cost_cents), 0).label("cost"),
            func.coalesce(func.sum(Transaction.total_profit_cents), 0).label("profit"),
            func.coalesce(func.sum(Transaction.items_count), 0).label("items"),
        ).filter(*clauses).one()

        count = int(row.transactions or 0)
        revenue = int(row.revenue or 0)
        profit = int(row.profit or 0)

        by_method = (
            db.session.query(
                Transaction.payment_method,
                func.count(Transaction.id),
                func.coalesce(func.sum(Transaction.total_amount_cents), 0),
                func.coalesce(func.sum(Transaction.total_profit_cents), 0),
            )
            .filter(*clauses)
            .group_by(Transaction.payment_method)
            .order_by(Transaction.payment_method.asc())
            .all()
        )

        return {
            "total_transactions": count,
            "total_revenue_cents": revenue,
            "total_cost_cents": int(row.cost or 0),
            "total_profit_cents": profit,
            "profit_margin": margin_percent(profit, revenue),
            "items_sold": int(row.items or 0),
            "average_transaction_cents": revenue // count if count else 0,
            "payment_methods": [
                {
                    "method": method,
                    "count": int(method_count),
                    "total_amount_cents": int(amount),
                    "total_profit_cents": int(method_profit),
                    "percentage": (int(amount) / revenue * 100) if revenue > 0 else 0.0,
                }
                for method, method_count, amount, method_profit in by_method
            ],
        }
