# Overview: Flask API routes for products and their stock; parses input and returns JSON responses.

# backend/duka/routes/products.py
"""
Product management routes.

SECURITY: All routes require authentication.
- Cashiers read their own shop's products only
- Creating, updating and deactivating products, restocking and adjustments are admin-only
"""
from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_role
from ..models import Product
from ..services import products_service, stock_service
from ..services.session_service import CashierActor
from ..services.stock_service import StockError
from ..validation import (
    PRODUCT_POLICY,
    validate_payload,
    enforce_rules_product,
    ValidationError,
    ConflictError,
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _visible(product: Product | None) -> bool:
    if product is None:
        return False
    if isinstance(g.actor, CashierActor):
        return product.shop_id == g.actor.shop_id
    return True


def _int_value(value):
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


@products_bp.get("")
@require_auth
def list_products():
    """
    List products with optional pagination.

    Query params:
    - shop_id: int (admins only; cashiers always get their own shop)
    - category, search: optional filters
    - include_inactive: "true" to include deactivated products
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    if isinstance(g.actor, CashierActor):
        shop_id = g.actor.shop_id
    else:
        shop_id = request.args.get("shop_id", type=int)

    result = products_service.list_products(
        shop_id,
        include_inactive=request.args.get("include_inactive", "").lower() == "true",
        category=request.args.get("category") or None,
        search=request.args.get("search") or None,
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return jsonify({"success": True, **result}), 200


@products_bp.post("")
@require_auth
@require_role("admin")
def create_product_route():
    """Create a new product in a shop. Requires admin."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400

    try:
        product = products_service.create_product(patch=patch, actor_name=g.actor.name)
    except ConflictError as e:
        return jsonify({"success": False, "error": str(e)}), 409
    except ValueError as e:
        return jsonify({"success": False, "error": str(e)}), 400

    return jsonify({"success": True, "data": product.to_dict()}), 201


@products_bp.get("/low-stock")
@require_auth
def low_stock_route():
    """
    Active products at or below min_stock_level.

    Query params:
    - shop_id: int (admins only; cashiers always get their own shop)
    - critical_only: "true" for out-of-stock products only
    """
    if isinstance(g.actor, CashierActor):
        shop_id = g.actor.shop_id
    else:
        shop_id = request.args.get("shop_id", type=int)

    result = products_service.list_low_stock(
        shop_id,
        critical_only=request.args.get("critical_only", "").lower() == "true",
    )
    return jsonify({"success": True, **result}), 200


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    product = products_service.get_product(product_id)
    if not _visible(product):
        return jsonify({"success": False, "error": "Product not found"}), 404
    return jsonify({"success": True, "data": product.to_dict()}), 200


@products_bp.route("/<int:product_id>", methods=["PUT", "PATCH"])
@require_auth
@require_role("admin")
def update_product_route(product_id: int):
    """Update catalog fields of a product. Stock changes go through restock/adjust."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        product = products_service.update_product(product_id=product_id, patch=patch)
    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"success": False, "error": str(e)}), 409

    if not product:
        return jsonify({"success": False, "error": "Product not found"}), 404

    return jsonify({"success": True, "data": product.to_dict()}), 200


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role("admin")
def delete_product_route(product_id: int):
    """Soft-delete (deactivate) a product. Requires admin."""
    product = products_service.deactivate_product(product_id=product_id)
    if not product:
        return jsonify({"success": False, "error": "Product not found"}), 404

    return jsonify({
        "success": True,
        "message": "Product deactivated",
        "data": product.to_dict(),
    }), 200


@products_bp.post("/<int:product_id>/restock")
@require_auth
@require_role("admin")
def restock_product_route(product_id: int):
    """
    Receive stock for a product.

    Body: {"quantity": int > 0, "reference": "...", "notes": "..."}
    """
    data = request.get_json(silent=True) or {}
    quantity = _int_value(data.get("quantity"))
    if quantity is None or quantity <= 0:
        return jsonify({"success": False, "error": "quantity must be a positive integer"}), 400

    try:
        change = stock_service.restock_product(
            product_id=product_id,
            quantity=quantity,
            actor_name=g.actor.name,
            reference=data.get("reference"),
            notes=data.get("notes"),
        )
    except StockError as exc:
        return jsonify({"success": False, **exc.to_dict()}), exc.status_code

    product = products_service.get_product(product_id)
    return jsonify({
        "success": True,
        "message": "Product restocked successfully",
        "data": product.to_dict(),
        "stock_update": change.to_summary(),
    }), 200


@products_bp.post("/<int:product_id>/adjust")
@require_auth
@require_role("admin")
def adjust_stock_route(product_id: int):
    """
    Apply a signed stock correction.

    Body: {"quantity_delta": non-zero int, "notes": "..."}
    """
    data = request.get_json(silent=True) or {}
    delta = _int_value(data.get("quantity_delta"))
    if delta is None or delta == 0:
        return jsonify({"success": False, "error": "quantity_delta must be a non-zero integer"}), 400

    try:
        change = stock_service.adjust_stock(
            product_id=product_id,
            quantity_delta=delta,
            actor_name=g.actor.name,
            notes=data.get("notes"),
        )
    except StockError as exc:
        return jsonify({"success": False, **exc.to_dict()}), exc.status_code

    product = products_service.get_product(product_id)
    return jsonify({
        "success": True,
        "message": "Stock adjusted",
        "data": product.to_dict(),
        "stock_update": change.to_summary(),
    }), 200


@products_bp.get("/<int:product_id>/stock-history")
@require_auth
def stock_history_route(product_id: int):
    if not _visible(products_service.get_product(product_id)):
        return jsonify({"success": False, "error": "Product not found"}), 404

    limit = min(request.args.get("limit", default=200, type=int), 1000)
    entries = stock_service.list_stock_history(product_id, limit=limit)
    return jsonify({
        "success": True,
        "items": [e.to_dict() for e in entries],
        "count": len(entries),
    }), 200
