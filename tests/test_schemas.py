import pytest

from schemas.catalog import Product, ProductUpdate, generate_product_id, normalize_bool, slugify
from schemas.fulfillment import CartItem, CheckoutRequest, FulfillmentResult, ProviderSession


@pytest.mark.parametrize("value", [True, "true", "TRUE", 1, "1", "yes", "on"])
def test_normalize_bool_truthy(value):
    assert normalize_bool(value) is True


@pytest.mark.parametrize("value", [False, "false", 0, "0", 2, "", "nope", None, []])
def test_normalize_bool_falsy(value):
    assert normalize_bool(value) is False


def test_slugify_strips_accents_and_punctuation():
    assert slugify("Formación Avanzada – Liquidez & Scalping") == "formacion-avanzada-liquidez-scalping"
    assert slugify("¡¡!!") == "producto"


def test_generated_id_has_slug_prefix_and_avoids_collisions(monkeypatch):
    monkeypatch.setattr("schemas.catalog.time.time", lambda: 1700000000.0)
    first = generate_product_id("Curso X", set())
    assert first == "curso-x-loyw3v28"

    second = generate_product_id("Curso X", {first})
    assert second == f"{first}-1"
    assert generate_product_id("Curso X", {first, second}) == f"{first}-2"


def test_product_update_changes_drop_id_and_normalize_flags():
    update = ProductUpdate.model_validate({"id": "p1", "price_cents": 999, "is_active": "0"})
    changes = update.changes()
    assert changes == {"price_cents": 999, "is_active": False}


def test_product_update_changes_keep_only_supplied_fields():
    update = ProductUpdate.model_validate({"id": "p1", "name": "Nuevo"})
    assert update.changes() == {"name": "Nuevo"}


def test_legacy_product_without_featured_flag_is_featured():
    product = Product.model_validate({"id": "x", "name": "X", "price_cents": 100, "is_featured": None})
    assert product.is_featured is True
    assert product.delivery_type == "generated_access"


def test_physical_or_undelivered_products_grant_no_access():
    shirt = Product(id="remera", name="Remera", type="physical", price_cents=100, delivery_type="none")
    course = Product(id="curso", name="Curso", type="course", price_cents=100)
    no_delivery = Product(id="bot", name="Bot", type="bot", price_cents=100, delivery_type="none")

    assert shirt.grants_digital_access is False
    assert no_delivery.grants_digital_access is False
    assert course.grants_digital_access is True


def test_cart_item_accepts_storefront_aliases():
    item = CartItem.model_validate({"product_id": "curso-x", "name": "Curso X", "price": 4900, "qty": 2})
    assert (item.id, item.price_cents, item.quantity) == ("curso-x", 4900, 2)


def test_checkout_request_tolerates_null_buyer_fields():
    request = CheckoutRequest.model_validate({"items": [], "buyerName": None, "buyerEmail": "a@b.c"})
    assert request.buyer_name is None
    assert request.buyer_email == "a@b.c"


def test_session_buyer_email_falls_back_to_metadata():
    session = ProviderSession(id="cs_1", metadata={"buyerEmail": "meta@example.com"})
    assert session.buyer_email() == "meta@example.com"

    session = ProviderSession(id="cs_2", customer_email="stripe@example.com", metadata={"buyerEmail": "x@y.z"})
    assert session.buyer_email() == "stripe@example.com"

    assert ProviderSession(id="cs_3").buyer_email() is None


def test_fulfillment_result_serializes_access_links_camel_case():
    result = FulfillmentResult(email="a@b.c", already_processed=True)
    assert result.model_dump(by_alias=True) == {"ok": True, "email": "a@b.c", "accessLinks": []}
