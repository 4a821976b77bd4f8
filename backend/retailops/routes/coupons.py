# Overview: Flask API routes for the coupon gate; parses input and returns JSON responses.

# backend/retailops/routes/coupons.py
"""
Coupon Gate API Routes

- POS prints the voucher, then records the print (best effort)
- Warehouse scans the receipt number to receive the voucher
- POS reissues a lost voucher while the sale is still pending
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_role
from ..services import aggregation_service, coupon_service
from ..services.errors import FulfillmentError
from . import error_response, parse_day


coupons_bp = Blueprint("coupons", __name__, url_prefix="/api/coupons")


@coupons_bp.post("/<int:coupon_id>/printed")
@require_actor
@require_role("cashier")
def mark_printed_route(coupon_id: int):
    """
    Record that a voucher was sent to the printer.

    Always 200: the voucher is already on paper, so a failed recording comes
    back as ``recorded: false`` with a warning instead of an error.
    """
    try:
        result = coupon_service.mark_printed(coupon_id, g.actor.id)
        return jsonify(result.to_dict()), 200
    except Exception:
        current_app.logger.exception("Failed to record print of coupon %s", coupon_id)
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.post("/receive")
@require_actor
@require_role("warehouse")
def receive_route():
    """
    Receive a voucher at the warehouse by its receipt number.

    Request body:
    {
        "receipt_number": "RCP-20260104-0007"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        receipt_number = data.get("receipt_number")
        if not isinstance(receipt_number, str) or not receipt_number.strip():
            return jsonify({"error": "receipt_number required"}), 400

        coupon = coupon_service.receive_by_receipt_number(receipt_number, g.actor.id)
        return jsonify({"coupon": coupon.to_dict()}), 200

    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to receive coupon")
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.post("/sales/<int:sale_id>/reissue")
@require_actor
@require_role("cashier")
def reissue_route(sale_id: int):
    """
    Revoke the active voucher of a pending sale and issue a new one.

    Request body:
    {
        "reason": "Customer lost the voucher"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        reason = data.get("reason")
        if not isinstance(reason, str) or not reason.strip():
            return jsonify({"error": "reason required"}), 400

        coupon = coupon_service.reissue(sale_id, reason, g.actor.id)
        return jsonify({"coupon": coupon.to_dict()}), 201

    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reissue coupon for sale %s", sale_id)
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.get("/board")
@require_actor
@require_role("cashier")
def print_board_route():
    """Today's active vouchers of a branch, split into unprinted and printed."""
    branch_id = request.args.get("branch_id", type=int)
    try:
        day = parse_day(request.args.get("day"))
    except ValueError:
        return jsonify({"error": "day must be YYYY-MM-DD"}), 400

    try:
        board = aggregation_service.load_print_board(branch_id, day)
        return jsonify(board), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load coupon board")
        return jsonify({"error": "Internal server error"}), 500
