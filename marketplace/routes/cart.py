from flask import Blueprint, current_app, g, jsonify

from ..database import parse_object_id
from ..extensions import mongo
from ..payloads import pick, request_payload
from ..security import auth_required
from ..serializers import serialize_cart_items, utcnow

bp = Blueprint("cart", __name__)


def cart_response(items):
    return jsonify({"success": True, "items": serialize_cart_items(items)})


def find_cart():
    return mongo.db.carts.find_one({"user": g.user["id"]})


@bp.route("", methods=["GET"])
@auth_required
def get_cart():
    cart = find_cart()
    if not cart:
        return jsonify({"success": True, "items": []})
    return cart_response(cart.get("items"))


@bp.route("/add", methods=["POST"])
@auth_required
def add_to_cart():
    raw_product_id = pick(request_payload(), "product_id", "productId")
    if not raw_product_id:
        return jsonify({"success": False, "message": "Product ID is required"}), 400

    product_id, id_error = parse_object_id(raw_product_id)
    if id_error:
        return id_error

    if mongo.db.products.count_documents({"_id": product_id}, limit=1) == 0:
        return jsonify({"success": False, "message": "Product not found"}), 404

    cart = find_cart() or {"user": g.user["id"], "items": [], "created_at": utcnow()}
    items = list(cart.get("items") or [])

    for item in items:
        if item.get("product") == product_id:
            item["quantity"] = int(item.get("quantity", 1) or 1) + 1
            break
    else:
        items.append({"product": product_id, "quantity": 1})

    mongo.db.carts.update_one(
        {"user": g.user["id"]},
        {
            "$set": {"items": items, "updated_at": utcnow()},
            "$setOnInsert": {"created_at": cart.get("created_at") or utcnow()},
        },
        upsert=True,
    )
    current_app.logger.debug("Cart of %s now holds %s lines", g.user["id"], len(items))
    return cart_response(items)


@bp.route("/remove/<product_id>", methods=["DELETE"])
@auth_required
def remove_from_cart(product_id: str):
    cart = find_cart()
    if not cart:
        return jsonify({"success": False, "message": "Cart not found"}), 404

    items = [
        item for item in cart.get("items") or [] if str(item.get("product")) != product_id
    ]
    mongo.db.carts.update_one(
        {"_id": cart["_id"]}, {"$set": {"items": items, "updated_at": utcnow()}}
    )
    return cart_response(items)


@bp.route("/clear", methods=["DELETE"])
@auth_required
def clear_cart():
    cart = find_cart()
    if not cart:
        return jsonify({"success": False, "message": "Cart not found"}), 404

    mongo.db.carts.update_one(
        {"_id": cart["_id"]}, {"$set": {"items": [], "updated_at": utcnow()}}
    )
    return jsonify({"success": True, "items": [], "message": "Cart cleared"})
