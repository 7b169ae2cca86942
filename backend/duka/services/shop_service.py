from __future__ import annotations

from ..extensions import db
from ..models import Shop
from .concurrency import run_with_retry


class ShopError(Exception):
    """Raised when shop operations fail."""
    pass


def create_shop(name: str, location: str, description: str | None = None) -> Shop:
    def _op():
        if not name or not name.strip():
            raise ShopError("Shop name is required")
        if not location or not location.strip():
            raise ShopError("Shop location is required")

        if db.session.query(Shop.id).filter_by(name=name.strip()).first():
            raise ShopError("Shop name already exists")

        shop = Shop(name=name.strip(), location=location.strip(), description=description)
        db.session.add(shop)
        db.session.commit()
        return shop

    return run_with_retry(_op)


def get_shop(shop_id: int) -> Shop | None:
    return db.session.get(Shop, shop_id)


def list_shops() -> list[Shop]:
    return db.session.query(Shop).order_by(Shop.name.asc()).all()
