from bson import ObjectId
from bson.errors import InvalidId
from flask import jsonify
from flask_jwt_extended import JWTManager
from flask_pymongo import PyMongo

mongo = PyMongo()
jwt = JWTManager()


def _auth_error(message: str, status: int = 401):
    return jsonify({"success": False, "message": message}), status


@jwt.user_lookup_loader
def load_current_user(_jwt_header, jwt_data):
    # The admin flag comes from this document, never from the token claims.
    try:
        user_id = ObjectId(str(jwt_data.get("sub")))
    except (InvalidId, TypeError):
        return None
    return mongo.db.users.find_one({"_id": user_id}, {"password": 0})


@jwt.user_lookup_error_loader
def current_user_missing(_jwt_header, _jwt_data):
    return _auth_error("User not found")


@jwt.unauthorized_loader
def missing_token(_reason: str):
    return _auth_error("No token, authorization denied")


@jwt.invalid_token_loader
def invalid_token(_reason: str):
    return _auth_error("Token is not valid")


@jwt.expired_token_loader
def expired_token(_jwt_header, _jwt_payload):
    return _auth_error("Token has expired")
