import time
from typing import Callable, Optional

from bson import ObjectId
from bson.errors import InvalidId
from flask import Flask, jsonify
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from .extensions import mongo


def parse_object_id(value, label: str = "product"):
    """Return ``(ObjectId, None)`` or ``(None, error_response)``."""
    try:
        return ObjectId(str(value or "").strip()), None
    except (InvalidId, TypeError):
        return None, (
            jsonify({"success": False, "message": f"Invalid {label} identifier."}),
            400,
        )


def ensure_indexes(db) -> None:
    db.users.create_index([("email", ASCENDING)], unique=True)
    db.products.create_index(
        [("status", ASCENDING), ("is_active", ASCENDING), ("created_at", DESCENDING)]
    )
    db.products.create_index([("seller", ASCENDING), ("created_at", DESCENDING)])
    db.carts.create_index([("user", ASCENDING)], unique=True)


def wait_for_database(
    app: Flask,
    max_attempts: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Block until MongoDB answers a ping, then make sure indexes exist.

    Retries forever on a fixed delay unless ``max_attempts`` is given, in
    which case the last driver error is re-raised. Returns the number of
    attempts used.
    """
    delay = float(app.config.get("DB_RETRY_DELAY", 5))
    attempt = 0
    while True:
        attempt += 1
        try:
            mongo.cx.admin.command("ping")
            ensure_indexes(mongo.db)
        except PyMongoError as exc:
            app.logger.error("MongoDB connection error (attempt %s): %s", attempt, exc)
            if max_attempts is not None and attempt >= max_attempts:
                raise
            app.logger.info("Retrying connection in %s seconds...", delay)
            sleep(delay)
            continue

        app.logger.info("MongoDB connected, indexes ensured.")
        return attempt
