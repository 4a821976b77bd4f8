# Overview: Flask API routes for checkout and sale lookup; parses input and returns JSON responses.

# backend/retailops/routes/sales.py
"""Sales API routes with role enforcement"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_role
from ..services import coupon_service, return_service, sales_service
from ..services.errors import FulfillmentError
from . import error_response, parse_day


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def sale_payload(sale) -> dict:
    coupon = coupon_service.get_active_coupon(sale.id)
    return {
        **sale.to_dict(),
        "items": [item.to_dict() for item in sale.items],
        "coupon": coupon.to_dict() if coupon else None,
        "returns": [r.to_dict() for r in return_service.get_sale_returns(sale.id)],
    }


@sales_bp.post("/")
@require_actor
@require_role("cashier")
def create_sale_route():
    """
    Check out a sale and issue its pickup coupon.

    Available to: admin, cashier

    Request body:
    {
        "branch_id": 1,
        "lines": [{"product_id": 3, "quantity": 2}],
        "customer_name": "Dana",  (optional)
        "customer_phone": "555-0100"  (optional)
    }

    Returns:
        201: Sale created in pending status
        400: Invalid input
        404: Unknown branch
    """
    try:
        data = request.get_json(silent=True) or {}
        branch_id = data.get("branch_id")
        lines = data.get("lines")

        if not branch_id or not isinstance(lines, list):
            return jsonify({"error": "branch_id and lines required"}), 400

        sale = sales_service.create_sale(
            branch_id=branch_id,
            cashier_id=g.actor.id,
            lines=lines,
            customer_name=data.get("customer_name"),
            customer_phone=data.get("customer_phone"),
        )
        return jsonify({"sale": sale_payload(sale)}), 201

    except sales_service.SaleError as e:
        body = {"error": str(e)}
        if e.details:
            body["details"] = e.details
        return jsonify(body), 400
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_actor
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": sale_payload(sale)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load sale %s", sale_id)
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/by-receipt/<string:receipt_number>")
@require_actor
def get_sale_by_receipt_route(receipt_number: str):
    try:
        sale = sales_service.get_sale_by_receipt(receipt_number)
        return jsonify({"sale": sale_payload(sale)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load receipt %s", receipt_number)
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/returnable")
@require_actor
@require_role("cashier", "returns_handler")
def returnable_sales_route():
    """
    Today's sales of a branch that can still be returned.

    Query params:
        branch_id (required), q (receipt / customer / phone), day (YYYY-MM-DD)
    """
    branch_id = request.args.get("branch_id", type=int)
    if not branch_id:
        return jsonify({"error": "branch_id is required"}), 400

    try:
        day = parse_day(request.args.get("day"))
    except ValueError:
        return jsonify({"error": "day must be YYYY-MM-DD"}), 400

    try:
        sales = sales_service.search_returnable_sales(branch_id, term=request.args.get("q"), day=day)
        return jsonify({"sales": [s.to_dict() for s in sales]}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to search returnable sales")
        return jsonify({"error": "Internal server error"}), 500
