from __future__ import annotations

from ..extensions import db
from duka.time_utils import to_utc_z

TRANSACTION_STATUSES = ("completed", "pending", "cancelled", "refunded")
PAYMENT_METHODS = ("cash", "mpesa", "bank", "card")
WALK_IN_CUSTOMER = "Walk-in Customer"


class Transaction(db.Model):
    """
    A sale record.

    Written once by the sale service, together with its items and the stock
    decrements, in a single DB transaction. Afterwards only the status
    fields change (see SaleService.change_status).

    Shop and cashier names are denormalized at sale time so renames do not
    rewrite history. All amounts are in cents.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_number", "transaction_number"),
        db.Index("ix_transactions_shop_status_date", "shop_id", "status", "sale_date"),
        db.Index("ix_transactions_cashier_date", "cashier_id", "sale_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Best-effort unique (timestamp + random suffix); no unique index
    transaction_number = db.Column(db.String(64), nullable=False)
    receipt_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="completed", index=True)
    payment_method = db.Column(db.String(16), nullable=False, index=True)

    customer_name = db.Column(db.String(100), nullable=False, default=WALK_IN_CUSTOMER)
    customer_phone = db.Column(db.String(32), nullable=False, default="")

    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    shop_name = db.Column(db.String(100), nullable=False)
    cashier_id = db.Column(db.Integer, nullable=False)
    cashier_name = db.Column(db.String(100), nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False)
    change_given_cents = db.Column(db.Integer, nullable=False, default=0)

    total_cost_cents = db.Column(db.Integer, nullable=False)
    total_profit_cents = db.Column(db.Integer, nullable=False)
    profit_margin = db.Column(db.Float, nullable=False, default=0.0)
    items_count = db.Column(db.Integer, nullable=False, default=0)

    sale_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    notes = db.Column(db.String(500), nullable=False, default="")
    created_by = db.Column(db.String(64), nullable=False, default="system")

    status_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    status_changed_by = db.Column(db.String(100), nullable=True)
    status_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    shop = db.relationship("Shop")
    items = db.relationship(
        "TransactionItem",
        back_populates="transaction",
        order_by="TransactionItem.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} number={self.transaction_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "receipt_number": self.receipt_number,
            "status": self.status,
            "payment_method": self.payment_method,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "shop_id": self.shop_id,
            "shop_name": self.shop_name,
            "cashier_id": self.cashier_id,
            "cashier_name": self.cashier_name,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_amount_cents": self.total_amount_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "change_given_cents": self.change_given_cents,
            "total_cost_cents": self.total_cost_cents,
            "total_profit_cents": self.total_profit_cents,
            "profit_margin": self.profit_margin,
            "items_count": self.items_count,
            "items": [item.to_dict() for item in self.items],
            "sale_date": to_utc_z(self.sale_date),
            "notes": self.notes,
            "created_by": self.created_by,
            "status_changed_at": to_utc_z(self.status_changed_at),
            "status_changed_by": self.status_changed_by,
            "status_reason": self.status_reason,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class TransactionItem(db.Model):
    """
    One priced line of a transaction.

    Owned by its transaction. product_id is a plain reference; name,
    category, barcode and unit cost are snapshots taken at sale time.
    """
    __tablename__ = "transaction_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(100), nullable=False)
    category = db.Column(db.String(50), nullable=False)
    barcode = db.Column(db.String(64), nullable=False, default="")

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    cost_cents = db.Column(db.Integer, nullable=False)
    profit_cents = db.Column(db.Integer, nullable=False)
    profit_margin = db.Column(db.Float, nullable=False, default=0.0)

    transaction = db.relationship("Transaction", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "position": self.position,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "category": self.category,
            "barcode": self.barcode,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "cost_cents": self.cost_cents,
            "profit_cents": self.profit_cents,
            "profit_margin": self.profit_margin,
        }
