# Overview: Batch catalog lookups for the sale unit of work.

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..extensions import db
from ..models import Product
from .concurrency import lock_for_update


@dataclass(frozen=True)
class CatalogSnapshot:
    """Point-in-time view of one product as the sale sees it."""
    product_id: int
    shop_id: int
    name: str
    category: str
    barcode: str
    cost_cents: int
    min_selling_price_cents: int
    current_stock: int
    is_active: bool

    @classmethod
    def from_product(cls, product: Product) -> "CatalogSnapshot":
        return cls(
            product_id=product.id,
            shop_id=product.shop_id,
            name=product.name,
            category=product.category or "Uncategorized",
            barcode=product.barcode or "",
            cost_cents=product.buying_price_cents or 0,
            min_selling_price_cents=product.min_selling_price_cents or 0,
            current_stock=product.current_stock or 0,
            is_active=bool(product.is_active),
        )


def normalize_product_id(value) -> int | None:
    """Return value as a product primary key, or None if it cannot be one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


class CatalogReader:
    """
    Resolves product ids to snapshots in one query on the current session.

    Unknown ids are simply absent from the result; deciding that this is an
    error belongs to the caller. Inactive products are returned with
    is_active=False.
    """

    def find_by_ids(self, ids: Iterable, *, lock: bool = False) -> dict[int, CatalogSnapshot]:
        wanted = sorted({pid for pid in (normalize_product_id(i) for i in ids) if pid is not None})
        if not wanted:
            return {}

        # Lock in primary-key order so concurrent sales never deadlock on each other
        query = db.session.query(Product).filter(Product.id.in_(wanted)).order_by(Product.id.asc())
        if lock:
            query = lock_for_update(query)

        return {p.id: CatalogSnapshot.from_product(p) for p in query.all()}
