import pytest

from conftest import run
from schemas.catalog import Product


NEW_PRODUCT = {
    "name": "Curso X",
    "type": "course",
    "price_cents": 4900,
    "delivery_type": "drive_link",
    "delivery_value": "https://drive.example.com/x",
}


@pytest.mark.parametrize("method", ["get", "post", "put", "delete"])
@pytest.mark.parametrize("headers", [{}, {"x-admin-token": "wrong"}])
def test_admin_requires_token(client, kv, method, headers):
    response = client.request(method.upper(), "/api/admin-products", json=NEW_PRODUCT, headers=headers)
    assert response.status_code == 401
    assert response.json()["error"] == "unauthorized"
    assert kv.keys() == []


def test_unconfigured_admin_token_rejects_everything(client, kv):
    client.app.state.services.admin._admin_token = ""
    response = client.get("/api/admin-products", headers={"x-admin-token": ""})
    assert response.status_code == 401


def test_create_then_list_round_trip(client, admin_headers):
    created = client.post("/api/admin-products", json=NEW_PRODUCT, headers=admin_headers)
    assert created.status_code == 201
    body = created.json()
    assert body["ok"] is True
    product = body["product"]
    assert product["id"].startswith("curso-x-")
    assert product["is_active"] is True
    assert product["is_featured"] is True

    listed = client.get("/api/admin-products", headers=admin_headers).json()["products"]
    assert listed == [product]


def test_create_normalizes_flags(client, admin_headers):
    payload = {**NEW_PRODUCT, "is_active": "false", "is_featured": "1"}
    product = client.post("/api/admin-products", json=payload, headers=admin_headers).json()["product"]
    assert product["is_active"] is False
    assert product["is_featured"] is True


@pytest.mark.parametrize("payload", [
    {"price_cents": 100},
    {"name": "", "price_cents": 100},
    {"name": "Sin precio"},
    {"name": "Gratis", "price_cents": 0},
])
def test_create_requires_name_and_price(client, admin_headers, payload):
    response = client.post("/api/admin-products", json=payload, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


def test_create_with_existing_id_conflicts(client, admin_headers, seed_products):
    seed_products(Product(id="curso-x", name="Curso X", price_cents=4900))
    response = client.post("/api/admin-products", json={**NEW_PRODUCT, "id": "curso-x"}, headers=admin_headers)
    assert response.status_code == 409
    assert response.json()["error"] == "conflict"


def test_update_merges_supplied_fields(client, admin_headers, seed_products):
    seed_products(Product(
        id="curso-x",
        name="Curso X",
        price_cents=4900,
        delivery_type="drive_link",
        delivery_value="https://drive.example.com/x",
        instructions="Abrí el link",
    ))
    response = client.put(
        "/api/admin-products",
        json={"id": "curso-x", "price_cents": 5900, "is_featured": "0"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    product = response.json()["product"]
    assert product["price_cents"] == 5900
    assert product["is_featured"] is False
    assert product["instructions"] == "Abrí el link"
    assert product["delivery_value"] == "https://drive.example.com/x"


def test_update_unknown_or_missing_id(client, admin_headers):
    missing = client.put("/api/admin-products", json={"price_cents": 1}, headers=admin_headers)
    assert missing.status_code == 400

    unknown = client.put("/api/admin-products", json={"id": "nope", "price_cents": 1}, headers=admin_headers)
    assert unknown.status_code == 404
    assert unknown.json()["error"] == "not_found"


def test_delete_by_body_or_query(client, admin_headers, seed_products):
    seed_products(
        Product(id="a", name="A", price_cents=100),
        Product(id="b", name="B", price_cents=100),
        Product(id="c", name="C", price_cents=100),
    )
    by_body = client.request("DELETE", "/api/admin-products", json={"id": "a"}, headers=admin_headers)
    assert by_body.json() == {"ok": True}

    by_query = client.delete("/api/admin-products?id=b", headers=admin_headers)
    assert by_query.status_code == 200

    remaining = client.get("/api/admin-products", headers=admin_headers).json()["products"]
    assert [p["id"] for p in remaining] == ["c"]


def test_delete_missing_or_unknown_id(client, admin_headers):
    assert client.delete("/api/admin-products", headers=admin_headers).status_code == 400
    assert client.delete("/api/admin-products?id=ghost", headers=admin_headers).status_code == 404


def test_admin_list_includes_inactive_products(client, admin_headers, seed_products):
    seed_products(
        Product(id="on", name="On", price_cents=100),
        Product(id="off", name="Off", price_cents=100, is_active=False),
    )
    listed = client.get("/api/admin-products", headers=admin_headers).json()["products"]
    assert {p["id"] for p in listed} == {"on", "off"}


def test_malformed_json_is_a_validation_error(client, admin_headers):
    response = client.post(
        "/api/admin-products",
        content=b"{not json",
        headers={**admin_headers, "Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


LEGACY_CATALOG = [
    {"id": "legacy-merch", "name": "Remera TSF", "type": "merch", "price_cents": None, "delivery_type": "envio"},
    {"id": "curso-x", "name": "Curso X", "type": "course", "price_cents": 4900, "badge": "nuevo"},
    "junk",
]


@pytest.fixture
def legacy_catalog(kv):
    run(kv.set_json("tsf:products", LEGACY_CATALOG))
    return lambda: run(kv.get_json("tsf:products"))


def test_update_keeps_unrelated_and_unknown_entries(client, admin_headers, legacy_catalog):
    response = client.put("/api/admin-products", json={"id": "curso-x", "price_cents": 5900}, headers=admin_headers)
    assert response.status_code == 200

    stored = legacy_catalog()
    assert stored[0] == LEGACY_CATALOG[0]
    assert stored[1]["price_cents"] == 5900
    assert stored[1]["badge"] == "nuevo"
    assert stored[2] == "junk"


def test_create_and_delete_keep_unrelated_entries(client, admin_headers, legacy_catalog):
    created = client.post("/api/admin-products", json=NEW_PRODUCT, headers=admin_headers).json()["product"]
    client.request("DELETE", "/api/admin-products", json={"id": "curso-x"}, headers=admin_headers)

    stored = legacy_catalog()
    assert stored[:2] == [LEGACY_CATALOG[0], "junk"]
    assert stored[2]["id"] == created["id"]

    listed = client.get("/api/admin-products", headers=admin_headers).json()["products"]
    assert [p["id"] for p in listed] == [created["id"]]


def test_invalid_legacy_entry_cannot_be_updated_into_place(client, admin_headers, legacy_catalog):
    response = client.put("/api/admin-products", json={"id": "legacy-merch", "name": "Remera"}, headers=admin_headers)
    assert response.status_code == 400
    assert legacy_catalog() == LEGACY_CATALOG
