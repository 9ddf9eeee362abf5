from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from bson import ObjectId

from .extensions import mongo

SHIPPING_ADDRESS_FIELDS = ("street", "city", "state", "zip_code", "country")


def utcnow() -> datetime:
    # Naive UTC, the same shape pymongo hands back.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value) -> Optional[str]:
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat() + "Z"


def id_or_none(value) -> Optional[str]:
    return str(value) if value else None


def serialize_user_summary(user_document) -> Dict:
    if not user_document:
        return {}
    return {
        "id": str(user_document.get("_id")),
        "name": user_document.get("name", "") or "",
        "email": user_document.get("email", "") or "",
        "is_admin": bool(user_document.get("is_admin")),
    }


def serialize_user_profile(user_document) -> Dict:
    if not user_document:
        return {}
    profile = serialize_user_summary(user_document)
    profile["created_at"] = isoformat(user_document.get("created_at"))
    profile["products"] = [str(product_id) for product_id in user_document.get("products") or []]
    return profile


def fetch_user_map(user_ids: Iterable) -> Dict[ObjectId, Dict]:
    unique_ids = {user_id for user_id in user_ids if isinstance(user_id, ObjectId)}
    if not unique_ids:
        return {}
    cursor = mongo.db.users.find(
        {"_id": {"$in": list(unique_ids)}}, {"name": 1, "email": 1}
    )
    return {document["_id"]: document for document in cursor}


def build_product_user_map(product_documents, fields=("seller",)) -> Dict[ObjectId, Dict]:
    user_ids = []
    for document in product_documents:
        for field in fields:
            user_ids.append(document.get(field))
    return fetch_user_map(user_ids)


def _user_reference(user_id, user_map: Dict[ObjectId, Dict]):
    if not user_id:
        return None
    user_document = user_map.get(user_id)
    if not user_document:
        return {"id": str(user_id), "name": "", "email": ""}
    return {
        "id": str(user_id),
        "name": user_document.get("name", "") or "",
        "email": user_document.get("email", "") or "",
    }


def serialize_shipping_address(address) -> Optional[Dict[str, str]]:
    if not isinstance(address, dict):
        return None
    return {field: address.get(field, "") or "" for field in SHIPPING_ADDRESS_FIELDS}


def serialize_product(product_document, user_map: Optional[Dict[ObjectId, Dict]] = None) -> Dict:
    if user_map is None:
        user_map = build_product_user_map([product_document], ("seller", "buyer"))

    try:
        price_value = float(product_document.get("price", 0) or 0)
    except (TypeError, ValueError):
        price_value = 0.0

    return {
        "id": str(product_document.get("_id")),
        "name": product_document.get("name", ""),
        "price": price_value,
        "images": [str(path) for path in product_document.get("images") or [] if path],
        "category": product_document.get("category", "other"),
        "size": product_document.get("size", ""),
        "color": product_document.get("color", ""),
        "location": product_document.get("location", ""),
        "contact_number": product_document.get("contact_number", ""),
        "description": product_document.get("description", ""),
        "status": product_document.get("status", "pending"),
        "is_active": bool(product_document.get("is_active")),
        "seller": _user_reference(product_document.get("seller"), user_map),
        "buyer": _user_reference(product_document.get("buyer"), user_map),
        "sold_at": isoformat(product_document.get("sold_at")),
        "shipping_address": serialize_shipping_address(
            product_document.get("shipping_address")
        ),
        "created_at": isoformat(product_document.get("created_at")),
        "updated_at": isoformat(product_document.get("updated_at")),
    }


def serialize_products(product_documents, fields=("seller",)) -> List[Dict]:
    product_documents = list(product_documents)
    user_map = build_product_user_map(product_documents, fields)
    return [serialize_product(document, user_map) for document in product_documents]


def serialize_product_summary(product_document) -> Optional[Dict]:
    if not product_document:
        return None
    return {
        "id": str(product_document.get("_id")),
        "name": product_document.get("name", ""),
        "price": float(product_document.get("price", 0) or 0),
        "images": list(product_document.get("images") or []),
        "description": product_document.get("description", ""),
        "category": product_document.get("category", "other"),
    }


def serialize_cart_items(items) -> List[Dict]:
    items = list(items or [])
    product_ids = [item.get("product") for item in items if item.get("product")]
    products = {}
    if product_ids:
        cursor = mongo.db.products.find({"_id": {"$in": product_ids}})
        products = {document["_id"]: document for document in cursor}

    return [
        {
            "product_id": id_or_none(item.get("product")),
            "product": serialize_product_summary(products.get(item.get("product"))),
            "quantity": int(item.get("quantity", 1) or 1),
        }
        for item in items
    ]
