from __future__ import annotations

from ..extensions import db
from duka.time_utils import to_utc_z

STOCK_ENTRY_TYPES = ("purchase", "sale", "adjustment", "return")


class Product(db.Model):
    """
    Catalog entry for one shop.

    STOCK INVARIANT:
    - current_stock is never negative (CHECK constraint backs the service checks)
    - every change to current_stock appends a StockHistoryEntry in the same
      DB transaction; the stock services are the only writers

    Products are soft-deactivated (is_active=False) instead of deleted, since
    transaction items keep pointing at them.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("shop_id", "name", name="uq_products_shop_name"),
        db.CheckConstraint("current_stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_shop_active", "shop_id", "is_active"),
        db.Index("ix_products_category", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    name = db.Column(db.String(100), nullable=False)
    category = db.Column(db.String(50), nullable=False)
    barcode = db.Column(db.String(64), nullable=True, unique=True)
    description = db.Column(db.String(500), nullable=True)
    unit = db.Column(db.String(16), nullable=False, default="pcs")

    # Money in cents
    buying_price_cents = db.Column(db.Integer, nullable=False)
    min_selling_price_cents = db.Column(db.Integer, nullable=False)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=5)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    last_sold_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_restocked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    shop = db.relationship("Shop", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def stock_status(self) -> str:
        if self.current_stock == 0:
            return "out_of_stock"
        if self.current_stock <= self.min_stock_level:
            return "low_stock"
        return "in_stock"

    @property
    def needs_reorder(self) -> bool:
        return self.current_stock <= self.min_stock_level

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} shop_id={self.shop_id} stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "shop_name": self.shop.name if self.shop else None,
            "name": self.name,
            "category": self.category,
            "barcode": self.barcode,
            "description": self.description,
            "unit": self.unit,
            "buying_price_cents": self.buying_price_cents,
            "min_selling_price_cents": self.min_selling_price_cents,
            "current_stock": self.current_stock,
            "min_stock_level": self.min_stock_level,
            "stock_status": self.stock_status,
            "needs_reorder": self.needs_reorder,
            "is_active": self.is_active,
            "last_sold_at": to_utc_z(self.last_sold_at),
            "last_restocked_at": to_utc_z(self.last_restocked_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockHistoryEntry(db.Model):
    """
    Append-only record of one stock movement.

    quantity is the signed delta (sales are negative), new_stock is the
    product's current_stock right after the movement.
    """
    __tablename__ = "stock_history"
    __table_args__ = (
        db.Index("ix_stock_history_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=True, index=True)

    # purchase | sale | adjustment | return
    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reference = db.Column(db.String(128), nullable=True, index=True)
    actor_name = db.Column(db.String(100), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_history", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "shop_id": self.shop_id,
            "type": self.type,
            "quantity": self.quantity,
            "new_stock": self.new_stock,
            "reference": self.reference,
            "actor_name": self.actor_name,
            "notes": self.notes,
            "occurred_at": to_utc_z(self.occurred_at),
        }
