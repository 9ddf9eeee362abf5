import hmac

from flask import Blueprint, current_app, g, jsonify
from pymongo.errors import DuplicateKeyError

from ..extensions import mongo
from ..payloads import clean_text, is_valid_email, normalize_email, pick, request_payload
from ..security import auth_required, check_password, hash_password, issue_token
from ..serializers import serialize_user_profile, serialize_user_summary, utcnow

bp = Blueprint("auth", __name__)

MIN_PASSWORD_LENGTH = 6
# bcrypt refuses longer secrets.
MAX_PASSWORD_BYTES = 72


def validate_registration(payload):
    name = clean_text(payload.get("name"))
    email = normalize_email(payload.get("email"))
    password = str(payload.get("password") or "")

    if not name or not email or not password:
        return None, "Name, email, and password are required."
    if not is_valid_email(email):
        return None, "Please provide a valid email."
    if len(password) < MIN_PASSWORD_LENGTH:
        return None, f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return None, f"Password must be at most {MAX_PASSWORD_BYTES} bytes long."

    return {"name": name, "email": email, "password": password}, None


def create_user(fields, is_admin: bool = False):
    if mongo.db.users.find_one({"email": fields["email"]}, {"_id": 1}):
        return None, (jsonify({"success": False, "message": "User already exists"}), 400)

    user_document = {
        "name": fields["name"],
        "email": fields["email"],
        "password": hash_password(fields["password"]),
        "is_admin": is_admin,
        "created_at": utcnow(),
        "products": [],
    }
    try:
        result = mongo.db.users.insert_one(user_document)
    except DuplicateKeyError:
        return None, (jsonify({"success": False, "message": "User already exists"}), 400)

    user_document["_id"] = result.inserted_id
    return user_document, None


def token_response(user_document, status: int = 200):
    return (
        jsonify(
            {
                "success": True,
                "token": issue_token(user_document),
                "user": serialize_user_summary(user_document),
            }
        ),
        status,
    )


@bp.route("/register", methods=["POST"])
def register():
    fields, validation_error = validate_registration(request_payload())
    if validation_error:
        return jsonify({"success": False, "message": validation_error}), 400

    user_document, create_error = create_user(fields)
    if create_error:
        return create_error

    current_app.logger.info("Registered user %s", user_document["_id"])
    return token_response(user_document, 201)


@bp.route("/register-admin", methods=["POST"])
def register_admin():
    payload = request_payload()
    admin_key = str(pick(payload, "admin_key", "adminKey", default=""))
    configured_key = current_app.config.get("ADMIN_KEY") or ""

    if not configured_key or not hmac.compare_digest(
        admin_key.encode("utf-8"), configured_key.encode("utf-8")
    ):
        current_app.logger.warning("Admin registration refused: invalid admin key")
        return jsonify({"success": False, "message": "Invalid admin key"}), 403

    fields, validation_error = validate_registration(payload)
    if validation_error:
        return jsonify({"success": False, "message": validation_error}), 400

    user_document, create_error = create_user(fields, is_admin=True)
    if create_error:
        return create_error

    current_app.logger.info("Registered admin %s", user_document["_id"])
    return token_response(user_document, 201)


@bp.route("/login", methods=["POST"])
def login():
    payload = request_payload()
    email = normalize_email(payload.get("email"))
    password = str(payload.get("password") or "")

    if not email or not password:
        return jsonify({"success": False, "message": "Email and password are required."}), 400

    # Same message for unknown email and wrong password.
    user = mongo.db.users.find_one({"email": email})
    if not user or not check_password(password, user.get("password")):
        return jsonify({"success": False, "message": "Invalid credentials"}), 400

    return token_response(user)


@bp.route("/profile", methods=["GET"])
@auth_required
def profile():
    user = mongo.db.users.find_one({"_id": g.user["id"]}, {"password": 0})
    if not user:
        return jsonify({"success": False, "message": "User not found"}), 404
    return jsonify({"success": True, "user": serialize_user_profile(user)})


@bp.route("/verify", methods=["GET"])
@auth_required
def verify():
    return jsonify(
        {
            "success": True,
            "message": "Token is valid",
            "user": {"id": str(g.user["id"]), "is_admin": g.user["is_admin"]},
        }
    )
