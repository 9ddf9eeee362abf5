import math
import re

from flask import Blueprint, current_app, g, jsonify, request
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from ..database import parse_object_id
from ..extensions import mongo
from ..payloads import clean_text, normalize_shipping_address, pick, request_payload
from ..security import admin_required, auth_required
from ..serializers import serialize_product, serialize_products, utcnow
from ..uploads import MAX_PRODUCT_IMAGES, remove_product_images, save_product_images

bp = Blueprint("products", __name__)

PRODUCT_CATEGORIES = ("shoes", "clothes", "accessories", "electronics", "other")
PRODUCT_STATUSES = ("pending", "approved", "rejected", "sold")
MODERATION_STATUSES = ("approved", "rejected")

NOT_AVAILABLE_MESSAGE = (
    "This product is no longer available. It may have been purchased by another user."
)

# Listed to everyone: approved, visible and never sold.
PUBLIC_FILTER = {"status": "approved", "is_active": True, "sold_at": {"$exists": False}}


def error_response(message: str, status: int = 400, **extra):
    return jsonify({"success": False, "message": message, **extra}), status


def parse_price(raw_value):
    if raw_value is None or isinstance(raw_value, bool):
        return None
    try:
        value = float(str(raw_value).strip())
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return value


def validate_product_fields(payload):
    """Return ``(fields, None)`` or ``(None, message)`` for create and update."""
    name = clean_text(payload.get("name"))
    if not name:
        return None, "Product name is required"

    price_value = parse_price(payload.get("price"))
    if price_value is None or price_value <= 0:
        return None, "Please enter a valid price"

    contact_number = clean_text(pick(payload, "contact_number", "contactNumber"))
    if not contact_number:
        return None, "Contact number is required"

    category = clean_text(payload.get("category")).lower() or "other"
    if category not in PRODUCT_CATEGORIES:
        return None, "Invalid category"

    return (
        {
            "name": name,
            "price": price_value,
            "description": clean_text(payload.get("description")),
            "category": category,
            "size": clean_text(payload.get("size")),
            "color": clean_text(payload.get("color")),
            "location": clean_text(payload.get("location")),
            "contact_number": contact_number,
        },
        None,
    )


def fetch_product(product_id: str):
    object_id, id_error = parse_object_id(product_id)
    if id_error:
        return None, id_error

    product_document = mongo.db.products.find_one({"_id": object_id})
    if not product_document:
        return None, error_response("Product not found", 404)

    return product_document, None


def can_manage_product(product_document, user) -> bool:
    if not product_document or not user:
        return False
    if user.get("is_admin"):
        return True
    return product_document.get("seller") == user.get("id")


def newest_first(query):
    return mongo.db.products.find(query).sort("created_at", DESCENDING)


# --- Listing & search ---


@bp.route("/public", methods=["GET"])
def list_public_products():
    products = serialize_products(newest_first(dict(PUBLIC_FILTER)))
    current_app.logger.debug("Found %s public products", len(products))
    return jsonify({"success": True, "products": products})


@bp.route("", methods=["GET"])
@auth_required
def list_products():
    products = serialize_products(newest_first({"status": "approved", "is_active": True}))
    return jsonify(
        {
            "success": True,
            "products": products,
            "message": "Products fetched successfully",
        }
    )


@bp.route("/my-products", methods=["GET"])
@auth_required
def list_my_products():
    products = serialize_products(
        newest_first({"seller": g.user["id"]}), fields=("seller", "buyer")
    )
    return jsonify({"success": True, "products": products})


@bp.route("/pending", methods=["GET"])
@admin_required
def list_pending_products():
    products = serialize_products(newest_first({"status": "pending"}))
    return jsonify({"success": True, "products": products})


@bp.route("/search", methods=["GET"])
def search_products():
    args = request.args
    query = dict(PUBLIC_FILTER)

    text = clean_text(pick(args, "query", "q"))
    if text:
        pattern = re.escape(text)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]

    category = clean_text(args.get("category")).lower()
    if category:
        query["category"] = category

    price_filter = {}
    price_bounds = (
        (("min_price", "minPrice"), "$gte"),
        (("max_price", "maxPrice"), "$lte"),
    )
    for keys, operator in price_bounds:
        raw_value = clean_text(pick(args, *keys))
        if not raw_value:
            continue
        value = parse_price(raw_value)
        if value is None:
            return error_response("Price filters must be valid numbers.")
        price_filter[operator] = value
    if price_filter:
        query["price"] = price_filter

    products = serialize_products(newest_first(query))
    return jsonify(
        {
            "success": True,
            "products": products,
            "message": "Search results fetched successfully",
        }
    )


@bp.route("/<product_id>", methods=["GET"])
def get_product(product_id: str):
    product_document, load_error = fetch_product(product_id)
    if load_error:
        return load_error
    return jsonify({"success": True, "product": serialize_product(product_document)})


# --- Lifecycle ---


@bp.route("", methods=["POST"])
@auth_required
def create_product():
    payload = request_payload()
    fields, validation_error = validate_product_fields(payload)
    if validation_error:
        return error_response(validation_error)

    image_files = [
        image_file
        for image_file in request.files.getlist("images")
        if image_file and image_file.filename
    ]
    if not image_files:
        return error_response("At least one image is required")
    if len(image_files) > MAX_PRODUCT_IMAGES:
        return error_response(f"You can upload at most {MAX_PRODUCT_IMAGES} images.")

    saved_paths, image_error = save_product_images(image_files)
    if image_error:
        return error_response(image_error)

    timestamp = utcnow()
    product_document = {
        **fields,
        "images": saved_paths,
        "status": "pending",
        "is_active": True,
        "seller": g.user["id"],
        "created_at": timestamp,
        "updated_at": timestamp,
    }

    try:
        result = mongo.db.products.insert_one(product_document)
        mongo.db.users.update_one(
            {"_id": g.user["id"]}, {"$addToSet": {"products": result.inserted_id}}
        )
    except PyMongoError as exc:
        remove_product_images(saved_paths)
        current_app.logger.error("Error creating product: %s", exc)
        return error_response(
            "Failed to add product. Please try again.", 500, error=str(exc)
        )

    created_product = mongo.db.products.find_one({"_id": result.inserted_id})
    current_app.logger.info(
        "Product %s created by %s with %s images",
        result.inserted_id,
        g.user["id"],
        len(saved_paths),
    )
    return (
        jsonify(
            {
                "success": True,
                "product": serialize_product(created_product),
                "message": "Product added successfully!",
            }
        ),
        201,
    )


@bp.route("/<product_id>/status", methods=["PUT"])
@admin_required
def update_product_status(product_id: str):
    payload = request_payload()
    status = clean_text(payload.get("status")).lower()
    if status not in MODERATION_STATUSES:
        return error_response(
            'Invalid status. Must be either "approved" or "rejected"'
        )

    object_id, id_error = parse_object_id(product_id)
    if id_error:
        return id_error

    # Sold is terminal; nothing is ever moved back to pending.
    updated_product = mongo.db.products.find_one_and_update(
        {"_id": object_id, "status": {"$ne": "sold"}},
        {"$set": {"status": status, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated_product:
        if mongo.db.products.count_documents({"_id": object_id}, limit=1) == 0:
            return error_response("Product not found", 404)
        return error_response("Sold products can no longer be moderated.")

    current_app.logger.info("Product %s %s by %s", object_id, status, g.user["id"])
    return jsonify(
        {
            "success": True,
            "product": serialize_product(updated_product),
            "message": f"Product {status} successfully",
        }
    )


@bp.route("/<product_id>/toggle-active", methods=["PUT"])
@auth_required
def toggle_product_active(product_id: str):
    product_document, load_error = fetch_product(product_id)
    if load_error:
        return load_error

    if not can_manage_product(product_document, g.user):
        return error_response("Not authorized to modify this product", 403)

    is_active = not bool(product_document.get("is_active"))
    updated_product = mongo.db.products.find_one_and_update(
        {"_id": product_document["_id"]},
        {"$set": {"is_active": is_active, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )

    return jsonify(
        {
            "success": True,
            "message": f"Product {'activated' if is_active else 'deactivated'} successfully",
            "product": serialize_product(updated_product),
        }
    )


@bp.route("/<product_id>", methods=["PUT"])
@auth_required
def update_product(product_id: str):
    product_document, load_error = fetch_product(product_id)
    if load_error:
        return load_error

    if not can_manage_product(product_document, g.user):
        return error_response("Not authorized to modify this product", 403)

    fields, validation_error = validate_product_fields(request_payload())
    if validation_error:
        return error_response(validation_error)

    updated_product = mongo.db.products.find_one_and_update(
        {"_id": product_document["_id"]},
        {"$set": {**fields, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated_product:
        return error_response("Product not found", 404)

    return jsonify(
        {
            "success": True,
            "product": serialize_product(updated_product),
            "message": "Product updated successfully",
        }
    )


@bp.route("/<product_id>", methods=["DELETE"])
@auth_required
def delete_product(product_id: str):
    product_document, load_error = fetch_product(product_id)
    if load_error:
        return load_error

    if not can_manage_product(product_document, g.user):
        return error_response("Not authorized to delete this product", 403)

    mongo.db.products.delete_one({"_id": product_document["_id"]})
    remove_product_images(product_document.get("images"))
    if product_document.get("seller"):
        mongo.db.users.update_one(
            {"_id": product_document["seller"]},
            {"$pull": {"products": product_document["_id"]}},
        )

    current_app.logger.info(
        "Product %s deleted by %s", product_document["_id"], g.user["id"]
    )
    return jsonify({"success": True, "message": "Product deleted successfully"})


# --- Checkout ---


def has_payment_details(payment_info) -> bool:
    if not isinstance(payment_info, dict):
        return False
    required = (("card_number", "cardNumber"), ("expiry_date", "expiryDate"), ("cvv",))
    return all(clean_text(pick(payment_info, *keys)) for keys in required)


@bp.route("/checkout", methods=["POST"])
@auth_required
def checkout():
    payload = request.get_json(silent=True) or {}
    product_document, load_error = fetch_product(pick(payload, "product_id", "productId"))
    if load_error:
        return load_error

    if product_document.get("status") == "sold" or not product_document.get("is_active"):
        return error_response(NOT_AVAILABLE_MESSAGE)

    if product_document.get("status") != "approved":
        return error_response("This product is not available for purchase")

    if not has_payment_details(pick(payload, "payment_info", "paymentInfo")):
        return error_response("Invalid payment information")

    shipping_address = normalize_shipping_address(
        pick(payload, "shipping_address", "shippingAddress")
    )

    sold_at = utcnow()
    # The filter re-checks availability inside the write, so only one
    # concurrent buyer can match.
    sold_product = mongo.db.products.find_one_and_update(
        {"_id": product_document["_id"], "status": "approved", "is_active": True},
        {
            "$set": {
                "status": "sold",
                "buyer": g.user["id"],
                "sold_at": sold_at,
                "shipping_address": shipping_address,
                "is_active": False,
                "updated_at": sold_at,
            }
        },
        return_document=ReturnDocument.AFTER,
    )
    if not sold_product:
        current_app.logger.warning(
            "Checkout lost the race for product %s (buyer %s)",
            product_document["_id"],
            g.user["id"],
        )
        return error_response(NOT_AVAILABLE_MESSAGE)

    current_app.logger.info(
        "Product %s sold to %s", sold_product["_id"], g.user["id"]
    )
    return jsonify(
        {
            "success": True,
            "message": "Purchase completed successfully",
            "product": serialize_product(sold_product),
        }
    )


# --- Admin ---


@bp.route("/admin/stats", methods=["GET"])
@admin_required
def admin_stats():
    products_by_status = {status: 0 for status in PRODUCT_STATUSES}
    for bucket in mongo.db.products.aggregate(
        [{"$group": {"_id": "$status", "count": {"$sum": 1}}}]
    ):
        if bucket.get("_id") in products_by_status:
            products_by_status[bucket["_id"]] = int(bucket.get("count", 0))

    return jsonify(
        {
            "success": True,
            "total_users": mongo.db.users.count_documents({}),
            "total_products": mongo.db.products.count_documents({}),
            "products_by_status": products_by_status,
        }
    )
