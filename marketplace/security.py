from functools import wraps
from typing import Dict

import bcrypt
from flask import current_app, g, jsonify
from flask_jwt_extended import create_access_token, current_user, jwt_required

from .extensions import mongo


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, hashed) -> bool:
    if not hashed:
        return False
    if isinstance(hashed, str):
        hashed = hashed.encode("utf-8")
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed)
    except ValueError as exc:
        current_app.logger.error("Password comparison error: %s", exc)
        return False


def issue_token(user_document: Dict) -> str:
    return create_access_token(
        identity=str(user_document["_id"]),
        additional_claims={"is_admin": bool(user_document.get("is_admin"))},
    )


def auth_required(fn):
    """Require a valid bearer token and expose ``g.user = {id, is_admin}``."""

    @wraps(fn)
    @jwt_required()
    def decorated(*args, **kwargs):
        g.user = {
            "id": current_user["_id"],
            "is_admin": bool(current_user.get("is_admin")),
        }
        return fn(*args, **kwargs)

    return decorated


def admin_required(fn):
    """Authenticate, then re-read the admin flag straight from the store."""

    @wraps(fn)
    def decorated(*args, **kwargs):
        user = mongo.db.users.find_one({"_id": g.user["id"]}, {"is_admin": 1})
        if not user:
            return jsonify({"success": False, "message": "User not found"}), 401
        if not user.get("is_admin"):
            return (
                jsonify(
                    {
                        "success": False,
                        "message": "Access denied. Admin privileges required.",
                    }
                ),
                403,
            )
        return fn(*args, **kwargs)

    return auth_required(decorated)
