# Overview: Flask API routes for returns operations; parses input and returns JSON responses.

# backend/retailops/routes/returns.py
"""
Return Processing API Routes

DESIGN:
- A return always covers every item of a receipt
- Approval and rejection act on a receipt's rows as one group
- Approval may succeed with warnings (sale status not updated)

ROLES:
- cashier / returns_handler may initiate
- returns_handler approves and rejects
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_role
from ..services import aggregation_service, return_service
from ..services.errors import FulfillmentError
from . import error_response, parse_day, parse_ids


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


# =============================================================================
# INITIATION
# =============================================================================

@returns_bp.post("/sales/<int:sale_id>")
@require_actor
@require_role("cashier", "returns_handler")
def initiate_return_route(sale_id: int):
    """
    Initiate a full-receipt return (one pending row per item).

    Request body:
    {
        "reason": "Wrong item"  (optional)
    }

    Returns:
        201: Return rows created
        409: Receipt returned already, or an item already has an active return
    """
    try:
        data = request.get_json(silent=True) or {}
        reason = data.get("reason")
        if reason is not None and not isinstance(reason, str):
            return jsonify({"error": "reason must be a string"}), 400

        rows = return_service.initiate_full_return(sale_id, reason, g.actor.id)
        return jsonify({"returns": [r.to_dict() for r in rows]}), 201

    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to initiate return for sale %s", sale_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# APPROVAL / REJECTION
# =============================================================================

def _return_ids_from_body():
    data = request.get_json(silent=True) or {}
    return parse_ids(data.get("return_ids"))


@returns_bp.post("/sales/<int:sale_id>/approve")
@require_actor
@require_role("returns_handler")
def approve_group_route(sale_id: int):
    """
    Approve a receipt's return rows and mark the sale returned.

    Request body (optional):
    {
        "return_ids": [1, 2]  (default: every pending row of the receipt)
    }
    """
    try:
        return_ids = _return_ids_from_body()
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        result = return_service.approve_group(sale_id, return_ids, g.actor.id)
        return jsonify(result.to_dict()), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve returns for sale %s", sale_id)
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/sales/<int:sale_id>/reject")
@require_actor
@require_role("returns_handler")
def reject_group_route(sale_id: int):
    """Reject a receipt's still-pending return rows. Same body as approve."""
    try:
        return_ids = _return_ids_from_body()
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        result = return_service.reject_group(sale_id, return_ids, g.actor.id)
        return jsonify(result.to_dict()), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject returns for sale %s", sale_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# VIEWS
# =============================================================================

@returns_bp.get("/pending")
@require_actor
@require_role("returns_handler")
def pending_groups_route():
    try:
        groups = aggregation_service.load_pending_return_groups(request.args.get("branch_id", type=int))
        return jsonify({"groups": [grp.to_dict() for grp in groups]}), 200
    except Exception:
        current_app.logger.exception("Failed to load pending returns")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/approved-today")
@require_actor
@require_role("returns_handler", "cashier")
def approved_today_route():
    try:
        day = parse_day(request.args.get("day"))
    except ValueError:
        return jsonify({"error": "day must be YYYY-MM-DD"}), 400

    try:
        groups = aggregation_service.load_approved_today(request.args.get("branch_id", type=int), day)
        return jsonify({"groups": [grp.to_dict() for grp in groups]}), 200
    except Exception:
        current_app.logger.exception("Failed to load approved returns")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/report")
@require_actor
@require_role("returns_handler")
def returned_items_report_route():
    """
    Returned items grouped per receipt.

    Query params:
        branch_id, start (YYYY-MM-DD), end (YYYY-MM-DD, inclusive)
    """
    try:
        start = parse_day(request.args.get("start"))
        end = parse_day(request.args.get("end"))
    except ValueError:
        return jsonify({"error": "start and end must be YYYY-MM-DD"}), 400
    if start and end and start > end:
        return jsonify({"error": "start must not be after end"}), 400

    try:
        groups = aggregation_service.load_returned_items(request.args.get("branch_id", type=int), start, end)
        return jsonify({"groups": [grp.to_dict() for grp in groups]}), 200
    except Exception:
        current_app.logger.exception("Failed to build returned items report")
        return jsonify({"error": "Internal server error"}), 500
