# Overview: Flask API routes for sale transactions; parses input and returns JSON responses.

# backend/duka/routes/transactions.py
"""
Transaction API routes.

Identity is resolved here, once: a cashier always sells in their own
shop; an admin names the shop in the request body. The sale service only
sees the resulting SaleContext.

Error bodies: {"success": false, "code": ..., "message": ..., <details>}
"""

from dataclasses import replace

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..services import shop_service
from ..services.sales_service import (
    SaleContext,
    SaleError,
    SaleRequest,
    get_sale_service,
)
from ..services.stock_service import StockError
from ..services.transaction_ledger import TransactionFilter, TransactionLedger
from ..services.session_service import CashierActor


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


def _error_response(exc):
    return jsonify({"success": False, **exc.to_dict()}), exc.status_code


def _sale_context(payload: dict) -> SaleContext:
    actor = g.actor
    if isinstance(actor, CashierActor):
        return SaleContext(
            cashier_id=actor.id,
            cashier_name=actor.name,
            shop_id=actor.shop_id,
            shop_name=actor.shop_name,
            created_by="cashier",
        )

    shop = None
    shop_id = payload.get("shop_id")
    if isinstance(shop_id, str) and shop_id.strip().isdigit():
        shop_id = int(shop_id)
    if isinstance(shop_id, int) and not isinstance(shop_id, bool):
        shop = shop_service.get_shop(shop_id)
    if shop is not None and not shop.is_active:
        shop = None

    return SaleContext(
        cashier_id=actor.id,
        cashier_name=actor.name,
        shop_id=shop.id if shop else None,
        shop_name=shop.name if shop else None,
        created_by="admin",
    )


def _scoped_filter(criteria: TransactionFilter) -> TransactionFilter:
    """Cashiers only ever see their own shop's transactions."""
    if isinstance(g.actor, CashierActor):
        return replace(criteria, shop_id=g.actor.shop_id)
    return criteria


@transactions_bp.post("")
@require_auth
@require_role("admin", "cashier")
def create_transaction_route():
    """
    Record a sale: price the cart, take the stock, store the transaction.

    201 on success; 400 validation or insufficient stock; 404 unknown
    product; 500 if nothing could be committed.
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({
            "success": False,
            "code": "VALIDATION_FAILED",
            "message": "Validation failed",
            "errors": ["Invalid JSON payload"],
        }), 400

    try:
        result = get_sale_service().process_sale(
            SaleRequest.from_payload(payload),
            _sale_context(payload),
        )
    except (SaleError, StockError) as exc:
        return _error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to create transaction")
        return jsonify({
            "success": False,
            "code": "TRANSACTION_FAILED",
            "message": "Failed to process transaction",
        }), 500

    body = result.to_dict()
    return jsonify({
        "success": True,
        "message": "Transaction created successfully",
        "data": body["transaction"],
        "stock_updates": body["stock_updates"],
    }), 201


@transactions_bp.get("")
@require_auth
def list_transactions_route():
    """
    List transactions.

    Query params: shop_id, cashier_id, cashier_name, status (default
    completed, "all" for any), payment_method (or "digital"), start_date,
    end_date, page, per_page (max 100).
    """
    try:
        criteria = _scoped_filter(TransactionFilter.from_query_args(request.args))
    except ValueError as e:
        return jsonify({"success": False, "error": str(e)}), 400

    page = request.args.get("page", default=1, type=int)
    per_page = request.args.get("per_page", default=50, type=int)

    result = TransactionLedger().list(criteria, page=page, per_page=per_page)
    return jsonify({"success": True, **result}), 200


@transactions_bp.get("/stats/summary")
@require_auth
def transaction_summary_route():
    """Revenue, cost, profit and payment-method breakdown over completed sales."""
    try:
        criteria = _scoped_filter(TransactionFilter.from_query_args(request.args))
    except ValueError as e:
        return jsonify({"success": False, "error": str(e)}), 400

    return jsonify({"success": True, "data": TransactionLedger().summarize(criteria)}), 200


@transactions_bp.get("/<int:transaction_id>")
@require_auth
def get_transaction_route(transaction_id: int):
    transaction = TransactionLedger().get(transaction_id)
    if transaction is None:
        return jsonify({"success": False, "error": "Transaction not found"}), 404

    if isinstance(g.actor, CashierActor) and transaction.shop_id != g.actor.shop_id:
        return jsonify({"success": False, "error": "Transaction not found"}), 404

    return jsonify({"success": True, "data": transaction.to_dict()}), 200


@transactions_bp.patch("/<int:transaction_id>/status")
@require_auth
@require_role("admin")
def update_transaction_status_route(transaction_id: int):
    """
    Change a transaction's status.

    Body: {"status": "cancelled" | "refunded" | "completed", "reason": "..."}
    """
    data = request.get_json(silent=True) or {}

    try:
        result = get_sale_service().change_status(
            transaction_id,
            data.get("status"),
            actor_name=g.actor.name,
            reason=data.get("reason"),
        )
    except (SaleError, StockError) as exc:
        return _error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to update transaction status")
        return jsonify({
            "success": False,
            "code": "TRANSACTION_FAILED",
            "message": "Failed to update transaction status",
        }), 500

    body = result.to_dict()
    return jsonify({
        "success": True,
        "message": f"Transaction status updated to {result.transaction.status}",
        "data": body["transaction"],
        "stock_updates": body["stock_updates"],
    }), 200
