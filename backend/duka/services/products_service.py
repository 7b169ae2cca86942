# backend/duka/services/products_service.py
"""
Products Service

Products belong to exactly one shop. Cashiers only ever see their own
shop's products; admins may list across shops or filter by shop_id.

Stock is not edited here after creation: restocks and adjustments go
through stock_service so every movement lands in stock history.
"""
from __future__ import annotations

import secrets

from ..extensions import db
from ..models import Product, Shop, StockHistoryEntry
from ..validation import ConflictError, ValidationError
from duka.time_utils import epoch_millis, utcnow


def generate_barcode() -> str:
    """PROD-<epoch ms>-<4 hex chars>, used when a product is created without one."""
    return f"PROD-{epoch_millis()}-{secrets.token_hex(2).upper()}"


def list_products(
    shop_id: int | None = None,
    *,
    include_inactive: bool = False,
    category: str | None = None,
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional pagination.

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    base_query = db.session.query(Product)
    if shop_id is not None:
        base_query = base_query.filter(Product.shop_id == shop_id)
    if not include_inactive:
        base_query = base_query.filter(Product.is_active.is_(True))
    if category:
        base_query = base_query.filter(Product.category == category)
    if search:
        like = f"%{search}%"
        base_query = base_query.filter(db.or_(Product.name.ilike(like), Product.barcode.ilike(like)))
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def get_product(product_id: int) -> Product | None:
    return db.session.get(Product, product_id)


def create_product(*, patch: dict, actor_name: str | None = None) -> Product:
    """
    Create product using a validated patch dict.

    Initial stock, if any, is recorded as a 'purchase' history entry.

    Raises:
        ValueError: If the shop is missing or inactive
        ConflictError: If the name already exists in the shop or the barcode is taken
    """
    shop_id = patch.get("shop_id")
    if shop_id is None:
        raise ValueError("shop_id is required")

    shop = db.session.get(Shop, shop_id)
    if not shop:
        raise ValueError("Shop not found")
    if not shop.is_active:
        raise ValueError("Shop is not active")

    existing = (
        db.session.query(Product.id)
        .filter(Product.shop_id == shop.id, Product.name == patch["name"])
        .first()
    )
    if existing:
        raise ConflictError("A product with this name already exists in this shop.")

    barcode = patch.get("barcode") or generate_barcode()
    if db.session.query(Product.id).filter(Product.barcode == barcode).first():
        raise ConflictError("Barcode already exists.")

    initial_stock = patch.get("current_stock") or 0

    p = Product(
        shop_id=shop.id,
        name=patch["name"],
        category=patch["category"],
        barcode=barcode,
        description=patch.get("description"),
        unit=patch.get("unit") or "pcs",
        buying_price_cents=patch["buying_price_cents"],
        min_selling_price_cents=patch["min_selling_price_cents"],
        current_stock=initial_stock,
        min_stock_level=patch["min_stock_level"] if patch.get("min_stock_level") is not None else 5,
        is_active=patch.get("is_active", True),
    )
    db.session.add(p)
    db.session.flush()

    if initial_stock > 0:
        now = utcnow()
        p.last_restocked_at = now
        db.session.add(StockHistoryEntry(
            product_id=p.id,
            shop_id=p.shop_id,
            type="purchase",
            quantity=initial_stock,
            new_stock=initial_stock,
            reference="initial-stock",
            actor_name=actor_name,
            occurred_at=now,
        ))

    db.session.commit()
    return p


# Stock and shop are not editable here; see restock/adjust in stock_service
PRODUCT_MUTABLE_FIELDS = {
    "name",
    "category",
    "barcode",
    "description",
    "unit",
    "buying_price_cents",
    "min_selling_price_cents",
    "min_stock_level",
    "is_active",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def update_product(*, product_id: int, patch: dict) -> Product | None:
    """
    Update a product from a validated partial patch.

    Returns:
        The updated product, or None if not found

    Raises:
        ValidationError: If the patch touches stock or shop, or prices end up inverted
        ConflictError: If the new name or barcode is already taken
    """
    frozen = sorted(k for k in patch if k not in PRODUCT_MUTABLE_FIELDS)
    if frozen:
        raise ValidationError(f"Field cannot be updated: {', '.join(frozen)}")

    p = db.session.get(Product, product_id)
    if not p:
        return None

    if "name" in patch and patch["name"] != p.name:
        taken = (
            db.session.query(Product.id)
            .filter(Product.shop_id == p.shop_id, Product.name == patch["name"], Product.id != p.id)
            .first()
        )
        if taken:
            raise ConflictError("A product with this name already exists in this shop.")

    if patch.get("barcode") and patch["barcode"] != p.barcode:
        taken = (
            db.session.query(Product.id)
            .filter(Product.barcode == patch["barcode"], Product.id != p.id)
            .first()
        )
        if taken:
            raise ConflictError("Barcode already exists.")

    buying = patch.get("buying_price_cents", p.buying_price_cents)
    selling = patch.get("min_selling_price_cents", p.min_selling_price_cents)
    if selling < buying:
        raise ValidationError("Selling price must be greater than or equal to buying price")

    apply_product_patch(p, patch)
    db.session.commit()
    return p


def deactivate_product(*, product_id: int) -> Product | None:
    """
    Soft-delete a product.

    Transaction items keep referencing it, so the row stays; new sales
    report it as not found.
    """
    p = db.session.get(Product, product_id)
    if not p:
        return None

    if p.is_active:
        p.is_active = False
    db.session.commit()
    return p


def list_low_stock(shop_id: int | None = None, *, critical_only: bool = False) -> dict:
    """Active products at or below their reorder level, emptiest first."""
    query = db.session.query(Product).filter(
        Product.is_active.is_(True),
        Product.current_stock <= Product.min_stock_level,
    )
    if shop_id is not None:
        query = query.filter(Product.shop_id == shop_id)
    if critical_only:
        query = query.filter(Product.current_stock <= 0)

    products = query.order_by(Product.current_stock.asc(), Product.name.asc()).all()
    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "critical_count": sum(1 for p in products if p.current_stock <= 0),
    }
