# Overview: Flask API routes for warehouse picking; parses input and returns JSON responses.

# backend/retailops/routes/warehouse.py
"""Warehouse picking API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_role
from ..services import aggregation_service, lifecycle_service, picking_service
from ..services.errors import FulfillmentError
from . import error_response


warehouse_bp = Blueprint("warehouse", __name__, url_prefix="/api/warehouse")


@warehouse_bp.get("/queues")
@require_actor
@require_role("warehouse")
def queues_route():
    """Received vouchers grouped into pending / picking / completed queues."""
    try:
        queues = aggregation_service.load_warehouse_queues(request.args.get("branch_id", type=int))
        return jsonify(queues), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load warehouse queues")
        return jsonify({"error": "Internal server error"}), 500


@warehouse_bp.post("/sales/<int:sale_id>/start-picking")
@require_actor
@require_role("warehouse")
def start_picking_route(sale_id: int):
    """
    Move a sale from pending to picking.

    Returns:
        200: transition applied or already applied
        409: coupon not eligible, or another terminal moved the sale first
    """
    try:
        result = lifecycle_service.start_picking(sale_id, g.actor.id)
        return jsonify({"transition": result.to_dict()}), 200 if result.ok else 409
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to start picking sale %s", sale_id)
        return jsonify({"error": "Internal server error"}), 500


@warehouse_bp.post("/items/<int:item_id>/picked")
@require_actor
@require_role("warehouse")
def set_picked_route(item_id: int):
    """
    Tick or untick one item.

    Request body:
    {
        "picked": true
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        picked = data.get("picked")
        if not isinstance(picked, bool):
            return jsonify({"error": "picked must be true or false"}), 400

        result = picking_service.set_picked(item_id, picked, g.actor.id)
        return jsonify(result.to_dict()), 200

    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update pick state of item %s", item_id)
        return jsonify({"error": "Internal server error"}), 500
