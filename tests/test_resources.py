import pytest
from bson import ObjectId

PRODUCT = {
    "name": "Greek Yogurt",
    "description": "500g tub, best before Friday",
    "price": 4.5,
    "discounted_price": 2.0,
    "category": "dairy",
    "expiry_date": "2026-11-01T00:00:00Z",
    "stock": 12,
}


@pytest.fixture
def product(client, vendor):
    headers, _ = vendor
    res = client.post("/api/v1/products", json=PRODUCT, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()["data"]


# Products

def test_create_product_belongs_to_vendor(client, vendor, product):
    _, vendor_user = vendor
    assert product["vendor_id"] == vendor_user["id"]
    assert product["vendor"]["name"] == "Fresh Mart"
    assert product["image_url"] == "no-photo.jpg"

    listed = client.get("/api/v1/products", params={"category": "dairy"}).json()
    assert listed["count"] == 1
    assert client.get("/api/v1/products", params={"category": "bakery"}).json()["count"] == 0


def test_only_vendors_create_products(client, shopper):
    headers, _ = shopper
    assert client.post("/api/v1/products", json=PRODUCT, headers=headers).status_code == 403
    assert client.post("/api/v1/products", json=PRODUCT).status_code == 401


def test_update_keeps_omitted_discount(client, vendor, product):
    headers, _ = vendor
    res = client.put(f"/api/v1/products/{product['id']}", json={"price": 5.0, "name": None}, headers=headers)

    data = res.json()["data"]
    assert data["price"] == 5.0
    assert data["name"] == "Greek Yogurt"
    assert data["discounted_price"] == 2.0


def test_update_clears_explicit_null_discount(client, vendor, product):
    headers, _ = vendor
    res = client.put(f"/api/v1/products/{product['id']}", json={"discounted_price": None}, headers=headers)

    assert res.status_code == 200
    assert res.json()["data"]["discounted_price"] is None


def test_other_vendor_cannot_modify_product(client, signup, product):
    headers, _ = signup("Rival Grocer", "rival@example.com", role="vendor")

    assert client.put(f"/api/v1/products/{product['id']}", json={"price": 0.1}, headers=headers).status_code == 403
    assert client.delete(f"/api/v1/products/{product['id']}", headers=headers).status_code == 403


def test_delete_product(client, vendor, product):
    headers, _ = vendor
    assert client.delete(f"/api/v1/products/{product['id']}", headers=headers).status_code == 200
    assert client.get(f"/api/v1/products/{product['id']}").status_code == 404


def test_product_id_must_be_valid(client):
    res = client.get("/api/v1/products/not-an-id")
    assert res.status_code == 400
    assert res.json() == {"success": False, "error": "Invalid id"}


# Cart

def test_adding_same_product_merges_quantity(client, shopper, product):
    headers, _ = shopper
    client.post("/api/v1/cart", json={"product_id": product["id"], "quantity": 2}, headers=headers)
    res = client.post("/api/v1/cart", json={"product_id": product["id"], "quantity": 3}, headers=headers)

    items = res.json()["cart"]["items"]
    assert len(items) == 1
    assert items[0]["quantity"] == 5
    assert items[0]["product"]["name"] == "Greek Yogurt"


def test_remove_cart_line_by_line_id(client, vendor, shopper, product):
    headers, _ = shopper
    other = client.post("/api/v1/products", json={**PRODUCT, "name": "Sourdough"}, headers=vendor[0]).json()["data"]
    client.post("/api/v1/cart", json={"product_id": product["id"]}, headers=headers)
    cart = client.post("/api/v1/cart", json={"product_id": other["id"]}, headers=headers).json()["cart"]
    line_id = cart["items"][0]["id"]
    assert line_id != product["id"]

    # a product id is not a line id
    res = client.request("DELETE", "/api/v1/cart", json={"item_id": product["id"]}, headers=headers)
    assert len(res.json()["cart"]["items"]) == 2

    res = client.request("DELETE", "/api/v1/cart", json={"item_id": line_id}, headers=headers)
    assert [i["product_id"] for i in res.json()["cart"]["items"]] == [other["id"]]


def test_cart_uses_token_identity(client, shopper, signup, product):
    headers, user = shopper
    _, other = signup("Oscar", "oscar@example.com")

    assert client.get("/api/v1/cart", headers=headers).json() == {"success": True, "cart": None}
    assert client.get("/api/v1/cart", params={"user_id": user["id"]}, headers=headers).status_code == 200
    assert client.get("/api/v1/cart", params={"user_id": other["id"]}, headers=headers).status_code == 403
    res = client.post("/api/v1/cart", json={"product_id": product["id"], "user_id": other["id"]}, headers=headers)
    assert res.status_code == 403


def test_cart_rejects_unknown_product(client, shopper):
    headers, _ = shopper
    assert client.post("/api/v1/cart", json={"product_id": str(ObjectId())}, headers=headers).status_code == 404


def test_remove_without_cart(client, shopper):
    headers, _ = shopper
    res = client.request("DELETE", "/api/v1/cart", json={"item_id": str(ObjectId())}, headers=headers)
    assert res.status_code == 404


# Orders

def test_place_and_list_orders(client, shopper, signup, product):
    headers, user = shopper
    body = {
        "products": [{"product_id": product["id"], "quantity": 2, "price": 2.0}],
        "total_amount": 4.0,
        "shipping_address": "12 Market Road",
    }

    res = client.post("/api/v1/orders", json=body, headers=headers)

    assert res.status_code == 201
    order = res.json()["order"]
    assert order["status"] == "Pending"
    assert order["user_id"] == user["id"]
    assert order["products"][0]["product"]["name"] == "Greek Yogurt"

    other_headers, _ = signup("Peggy", "peggy@example.com")
    assert client.get("/api/v1/orders", headers=other_headers).json()["orders"] == []
    orders = client.get("/api/v1/orders", headers=headers).json()["orders"]
    assert [o["id"] for o in orders] == [order["id"]]


def test_order_needs_line_items(client, shopper):
    headers, _ = shopper
    res = client.post("/api/v1/orders", json={"products": [], "total_amount": 0, "shipping_address": "x"}, headers=headers)
    assert res.status_code == 400


# Vendors

def test_profile_completion_is_recomputed(client, shopper):
    headers, _ = shopper

    res = client.put("/api/v1/vendors/profile", json={"phone": "98765", "location": "Chennai"}, headers=headers)
    profile = res.json()["profile"]
    assert profile["role"] == "vendor"
    assert profile["profile_completed"] is False

    res = client.post("/api/v1/vendors/profile", json={"id_document": "XXXX-1234"}, headers=headers)
    assert res.json()["profile"]["profile_completed"] is True
    assert client.get("/api/v1/vendors/profile", headers=headers).json()["profile"]["phone"] == "98765"


def test_profile_email_must_stay_unique(client, shopper, signup):
    headers, _ = shopper
    signup("Quinn", "quinn@example.com")
    res = client.put("/api/v1/vendors/profile", json={"email": "quinn@example.com"}, headers=headers)
    assert res.status_code == 409


def test_profile_read_requires_vendor(client, shopper):
    headers, _ = shopper
    assert client.get("/api/v1/vendors/profile", headers=headers).status_code == 404


def test_vendors_with_products(client, vendor, shopper, product):
    data = client.get("/api/v1/vendors/all-with-products").json()["data"]
    assert len(data) == 1
    assert data[0]["vendor"]["name"] == "Fresh Mart"
    assert "password_hash" not in data[0]["vendor"]
    assert [p["id"] for p in data[0]["products"]] == [product["id"]]


def test_medicine_verification(client, vendor, shopper):
    headers, _ = vendor
    status_url = "/api/v1/vendors/medicine-verification-status"
    assert client.get(status_url, headers=headers).json()["is_verified"] is False

    res = client.post("/api/v1/vendors/medicine-auth", json={"pharmacy_license_number": ""}, headers=headers)
    assert res.status_code == 400

    res = client.post(
        "/api/v1/vendors/medicine-auth",
        json={"pharmacy_license_number": "PH-42", "business_name": "Fresh Mart Pharmacy"},
        headers=headers,
    )
    assert res.status_code == 200
    assert client.get(status_url, headers=headers).json()["is_verified"] is True

    assert client.get(status_url, headers=shopper[0]).status_code == 404


def test_health(client):
    assert client.get("/").status_code == 200
    assert client.get("/test").json()["database"] == "ok"


def test_cart_merges_regardless_of_id_case(client, shopper, product):
    headers, _ = shopper
    client.post("/api/v1/cart", json={"product_id": product["id"], "quantity": 2}, headers=headers)
    res = client.post("/api/v1/cart", json={"product_id": product["id"].upper(), "quantity": 3}, headers=headers)

    items = res.json()["cart"]["items"]
    assert len(items) == 1
    assert items[0]["product_id"] == product["id"]
    assert items[0]["quantity"] == 5
    assert items[0]["product"]["name"] == "Greek Yogurt"
