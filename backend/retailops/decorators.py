# Overview: Request decorators establishing the acting operator for API routes.

from dataclasses import dataclass
from functools import wraps

from flask import request, jsonify, g

ROLES = frozenset({"admin", "cashier", "warehouse", "returns_handler"})


@dataclass(frozen=True)
class Actor:
    id: int
    roles: frozenset

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles

    def has_any(self, *roles: str) -> bool:
        return self.is_admin or any(role in self.roles for role in roles)


def _parse_actor() -> Actor | None:
    raw_id = (request.headers.get("X-Actor-Id") or "").strip()
    try:
        actor_id = int(raw_id)
    except ValueError:
        return None
    if actor_id <= 0:
        return None
    raw_roles = request.headers.get("X-Actor-Roles") or ""
    roles = frozenset(r.strip().lower() for r in raw_roles.split(",") if r.strip()) & ROLES
    return Actor(id=actor_id, roles=roles)


def require_actor(f):
    """
    Require an identified operator.

    The upstream gateway authenticates the operator and forwards:
    - X-Actor-Id: integer operator id
    - X-Actor-Roles: comma separated roles

    Sets g.actor. Returns 401 when the id header is missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = _parse_actor()
        if actor is None:
            return jsonify({"error": "Actor identification required"}), 401
        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require one of the given roles (admin always passes). Use after @require_actor."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            actor = getattr(g, "actor", None)
            if actor is None:
                return jsonify({"error": "Actor identification required"}), 401
            if not actor.has_any(*roles):
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403
            return f(*args, **kwargs)

        return decorated_function

    return decorator
