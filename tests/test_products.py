import os
from datetime import datetime

import mongomock
from bson import ObjectId
from pymongo.errors import PyMongoError

from conftest import auth_header, image


def stored_files(upload_folder):
    if not upload_folder.exists():
        return []
    return sorted(os.listdir(upload_folder))


def test_create_product_is_pending_and_saves_images(
    create_product, register_user, upload_folder, db
):
    token, user = register_user()

    response = create_product(token, images=[image("a.png"), image("b.jpg")])

    assert response.status_code == 201
    product = response.get_json()["product"]
    assert product["status"] == "pending"
    assert product["is_active"] is True
    assert product["price"] == 49.9
    assert product["contact_number"] == "+1 555 0100"
    assert product["seller"]["id"] == user["id"]
    assert len(product["images"]) == 2
    assert all(path.startswith("/uploads/") for path in product["images"])
    assert len(stored_files(upload_folder)) == 2

    owner = db.users.find_one({"_id": ObjectId(user["id"])})
    assert ObjectId(product["id"]) in owner["products"]


def test_create_product_requires_images(create_product, register_user, upload_folder):
    token, _ = register_user()

    response = create_product(token, images=[])

    assert response.status_code == 400
    assert response.get_json()["message"] == "At least one image is required"
    assert stored_files(upload_folder) == []


def test_create_product_rejects_more_than_five_images(
    create_product, register_user, upload_folder
):
    token, _ = register_user()

    response = create_product(token, images=[image(f"{i}.png") for i in range(6)])

    assert response.status_code == 400
    assert stored_files(upload_folder) == []


def test_create_product_validation(create_product, register_user, upload_folder):
    token, _ = register_user()

    cases = [
        {"name": "  "},
        {"price": "0"},
        {"price": "-3"},
        {"price": "free"},
        {"contact_number": ""},
        {"category": "furniture"},
    ]
    for fields in cases:
        response = create_product(token, **fields)
        assert response.status_code == 400, fields

    assert stored_files(upload_folder) == []


def test_failed_image_removes_already_saved_files(
    create_product, register_user, upload_folder
):
    token, _ = register_user()

    response = create_product(
        token, images=[image("ok.png"), image("notes.txt", b"hello")]
    )

    assert response.status_code == 400
    assert response.get_json()["message"] == "Only image files are allowed!"
    assert stored_files(upload_folder) == []


def test_non_ascii_image_name_keeps_extension(
    create_product, register_user, upload_folder
):
    token, _ = register_user()

    response = create_product(token, images=[image("фото.png")])

    assert response.status_code == 201
    (stored,) = stored_files(upload_folder)
    assert stored.endswith(".png")
    assert response.get_json()["product"]["images"] == [f"/uploads/{stored}"]


def test_oversized_image_is_rejected(app, create_product, register_user, upload_folder):
    app.config["MAX_IMAGE_SIZE"] = 16
    token, _ = register_user()

    response = create_product(token, images=[image("big.png", b"x" * 64)])

    assert response.status_code == 400
    assert stored_files(upload_folder) == []


def test_database_failure_after_upload_cleans_files(
    create_product, register_user, upload_folder, monkeypatch
):
    token, _ = register_user()

    def broken_insert(*args, **kwargs):
        raise PyMongoError("write failed")

    monkeypatch.setattr(mongomock.collection.Collection, "insert_one", broken_insert)

    response = create_product(token)

    assert response.status_code == 500
    assert response.get_json()["error"] == "write failed"
    assert stored_files(upload_folder) == []


def test_create_requires_authentication(client):
    response = client.post(
        "/api/products", data={"name": "x"}, content_type="multipart/form-data"
    )

    assert response.status_code == 401


def test_uploaded_image_is_served(client, create_product, register_user):
    token, _ = register_user()
    path = create_product(token).get_json()["product"]["images"][0]

    response = client.get(path)

    assert response.status_code == 200
    assert response.data.startswith(b"\x89PNG")


def test_moderation_approve_and_reject(
    client, create_product, register_user, register_admin
):
    seller_token, _ = register_user()
    admin_token, _ = register_admin()
    product_id = create_product(seller_token).get_json()["product"]["id"]

    rejected = client.put(
        f"/api/products/{product_id}/status",
        json={"status": "rejected"},
        headers=auth_header(admin_token),
    )

    assert rejected.status_code == 200
    assert rejected.get_json()["product"]["status"] == "rejected"


def test_moderation_cannot_move_back_to_pending(client, approved_product):
    _, admin_token, product = approved_product

    response = client.put(
        f"/api/products/{product['id']}/status",
        json={"status": "pending"},
        headers=auth_header(admin_token),
    )
    fetched = client.get(f"/api/products/{product['id']}")

    assert response.status_code == 400
    assert fetched.get_json()["product"]["status"] == "approved"


def test_moderation_refuses_sold_products(client, approved_product, db):
    _, admin_token, product = approved_product
    db.products.update_one(
        {"_id": ObjectId(product["id"])}, {"$set": {"status": "sold"}}
    )

    response = client.put(
        f"/api/products/{product['id']}/status",
        json={"status": "approved"},
        headers=auth_header(admin_token),
    )

    assert response.status_code == 400
    assert db.products.find_one({"_id": ObjectId(product["id"])})["status"] == "sold"


def test_moderation_requires_admin(client, approved_product):
    seller_token, _, product = approved_product

    response = client.put(
        f"/api/products/{product['id']}/status",
        json={"status": "rejected"},
        headers=auth_header(seller_token),
    )

    assert response.status_code == 403


def test_moderation_unknown_product(client, register_admin):
    admin_token, _ = register_admin()

    response = client.put(
        f"/api/products/{ObjectId()}/status",
        json={"status": "approved"},
        headers=auth_header(admin_token),
    )

    assert response.status_code == 404


def test_toggle_active_by_seller_and_admin(client, approved_product):
    seller_token, admin_token, product = approved_product
    url = f"/api/products/{product['id']}/toggle-active"

    first = client.put(url, headers=auth_header(seller_token))
    second = client.put(url, headers=auth_header(admin_token))

    assert first.get_json()["product"]["is_active"] is False
    assert second.get_json()["product"]["is_active"] is True


def test_toggle_active_forbidden_for_others(client, approved_product, register_user):
    _, _, product = approved_product
    stranger_token, _ = register_user("Eve", "eve@example.com")

    response = client.put(
        f"/api/products/{product['id']}/toggle-active",
        headers=auth_header(stranger_token),
    )

    assert response.status_code == 403


def test_update_product(client, approved_product, register_user):
    seller_token, _, product = approved_product
    stranger_token, _ = register_user("Eve", "eve@example.com")
    payload = {
        "name": "Blue sneakers",
        "price": 30,
        "contactNumber": "555",
        "category": "shoes",
    }

    forbidden = client.put(
        f"/api/products/{product['id']}", json=payload, headers=auth_header(stranger_token)
    )
    invalid = client.put(
        f"/api/products/{product['id']}",
        json={**payload, "price": 0},
        headers=auth_header(seller_token),
    )
    updated = client.put(
        f"/api/products/{product['id']}", json=payload, headers=auth_header(seller_token)
    )

    assert forbidden.status_code == 403
    assert invalid.status_code == 400
    assert updated.status_code == 200
    body = updated.get_json()["product"]
    assert body["name"] == "Blue sneakers"
    assert body["price"] == 30.0
    assert body["color"] == ""
    assert body["status"] == "approved"


def test_delete_removes_images_and_ownership(
    client, create_product, register_user, upload_folder, db
):
    token, user = register_user()
    product = create_product(token, images=[image("a.png"), image("b.png")]).get_json()[
        "product"
    ]
    assert len(stored_files(upload_folder)) == 2

    response = client.delete(f"/api/products/{product['id']}", headers=auth_header(token))

    assert response.status_code == 200
    assert stored_files(upload_folder) == []
    assert db.products.count_documents({}) == 0
    owner = db.users.find_one({"_id": ObjectId(user["id"])})
    assert owner["products"] == []


def test_delete_by_admin_and_forbidden_for_stranger(
    client, approved_product, register_user
):
    _, admin_token, product = approved_product
    stranger_token, _ = register_user("Eve", "eve@example.com")

    forbidden = client.delete(
        f"/api/products/{product['id']}", headers=auth_header(stranger_token)
    )
    deleted = client.delete(
        f"/api/products/{product['id']}", headers=auth_header(admin_token)
    )

    assert forbidden.status_code == 403
    assert deleted.status_code == 200


def test_get_product_errors(client):
    assert client.get("/api/products/not-an-id").status_code == 400
    assert client.get(f"/api/products/{ObjectId()}").status_code == 404


def test_public_listing_excludes_unavailable(
    client, approved_product, create_product, db
):
    seller_token, _, product = approved_product
    pending = create_product(seller_token, name="Pending hat").get_json()["product"]
    inactive = create_product(seller_token, name="Hidden bag").get_json()["product"]
    db.products.update_one(
        {"_id": ObjectId(inactive["id"])},
        {"$set": {"status": "approved", "is_active": False}},
    )

    response = client.get("/api/products/public")

    ids = [item["id"] for item in response.get_json()["products"]]
    assert ids == [product["id"]]
    assert pending["id"] not in ids


def test_authenticated_listing_does_not_filter_sold_at(
    client, approved_product, register_user, db
):
    _, _, product = approved_product
    token, _ = register_user("Bob", "bob@example.com")
    # Approved and active but carrying a sale date: only the public list hides it.
    db.products.update_one(
        {"_id": ObjectId(product["id"])}, {"$set": {"sold_at": datetime(2024, 1, 1)}}
    )

    public = client.get("/api/products/public").get_json()["products"]
    authed = client.get("/api/products", headers=auth_header(token)).get_json()[
        "products"
    ]

    assert public == []
    assert [item["id"] for item in authed] == [product["id"]]


def test_listing_is_newest_first(client, approved_product, create_product, db):
    seller_token, _, first = approved_product
    second = create_product(seller_token, name="Watch").get_json()["product"]
    db.products.update_one(
        {"_id": ObjectId(first["id"])}, {"$set": {"created_at": datetime(2024, 1, 1)}}
    )
    db.products.update_one(
        {"_id": ObjectId(second["id"])},
        {"$set": {"status": "approved", "created_at": datetime(2024, 6, 1)}},
    )

    ids = [item["id"] for item in client.get("/api/products/public").get_json()["products"]]

    assert ids == [second["id"], first["id"]]


def test_my_products_lists_every_status(client, approved_product, create_product):
    seller_token, _, product = approved_product
    create_product(seller_token, name="Pending scarf")

    response = client.get("/api/products/my-products", headers=auth_header(seller_token))

    statuses = sorted(item["status"] for item in response.get_json()["products"])
    assert statuses == ["approved", "pending"]


def test_pending_listing_for_admin(client, approved_product, create_product):
    seller_token, admin_token, _ = approved_product
    pending = create_product(seller_token, name="Lamp", category="other").get_json()[
        "product"
    ]

    response = client.get("/api/products/pending", headers=auth_header(admin_token))

    products = response.get_json()["products"]
    assert [item["id"] for item in products] == [pending["id"]]
    assert products[0]["seller"]["email"] == "seller@example.com"


def test_search_filters(client, approved_product, create_product, db):
    seller_token, _, sneakers = approved_product
    phone = create_product(
        seller_token,
        name="Old phone",
        price="120",
        category="electronics",
        description="Works fine (a.k.a. SHOES-free)",
    ).get_json()["product"]
    db.products.update_one({"_id": ObjectId(phone["id"])}, {"$set": {"status": "approved"}})

    def search(**params):
        response = client.get("/api/products/search", query_string=params)
        assert response.status_code == 200
        return sorted(item["id"] for item in response.get_json()["products"])

    assert search(query="SNEAK") == [sneakers["id"]]
    assert search(query="shoes") == sorted([sneakers["id"], phone["id"]])
    assert search(query="a.k.a.") == [phone["id"]]
    assert search(category="electronics") == [phone["id"]]
    assert search(minPrice="100") == [phone["id"]]
    assert search(max_price="50") == [sneakers["id"]]
    assert search() == sorted([sneakers["id"], phone["id"]])


def test_search_excludes_sold_and_rejects_bad_price(client, approved_product, db):
    _, _, product = approved_product
    db.products.update_one(
        {"_id": ObjectId(product["id"])}, {"$set": {"status": "sold", "is_active": False}}
    )

    sold = client.get("/api/products/search", query_string={"query": "sneakers"})
    bad_price = client.get("/api/products/search", query_string={"min_price": "cheap"})

    assert sold.get_json()["products"] == []
    assert bad_price.status_code == 400


def test_admin_stats(client, approved_product, create_product, register_user):
    seller_token, admin_token, _ = approved_product
    create_product(seller_token, name="Another")

    response = client.get("/api/products/admin/stats", headers=auth_header(admin_token))

    body = response.get_json()
    assert response.status_code == 200
    assert body["total_users"] == 2
    assert body["total_products"] == 2
    assert body["products_by_status"] == {
        "pending": 1,
        "approved": 1,
        "rejected": 0,
        "sold": 0,
    }
