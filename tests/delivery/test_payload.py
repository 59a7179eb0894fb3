"""Tests for order payload construction."""

from relay.delivery.payload import Address, OrderItem, build_order_payload, strip_tags
from tests._support.fakes import make_order


class TestBuildOrderPayload:
    def test_sections(self):
        payload = build_order_payload(make_order())
        assert set(payload) == {"source", "order", "customer", "shipping"}
        assert payload["source"] == "storefront"
        assert payload["order"]["external_order_id"] == "42"
        assert payload["order"]["order_number"] == "WC-42"
        assert payload["order"]["payment_status"] == "paid"
        assert payload["customer"]["email"] == "maria@example.com"

    def test_items_strip_html_and_compute_unit_price(self):
        item = build_order_payload(make_order())["order"]["items"][0]
        assert item["name"] == "Olive oil 1L"
        assert item["quantity"] == 2
        assert item["price"] == 20.0
        assert item["total"] == 40.0

    def test_unnamed_item_gets_placeholder(self):
        order = make_order(items=[OrderItem(name="", product_id=7)])
        assert build_order_payload(order)["order"]["items"][0]["name"] == "Product #7"

    def test_shipping_falls_back_to_billing(self):
        address = build_order_payload(make_order())["shipping"]["address"]
        assert address["address_1"] == "Ermou 10"
        assert address["city"] == "Athens"
        assert address["country"] == "GR"

    def test_shipping_address_preferred(self):
        order = make_order(shipping=Address(first_name="Nikos", address_1="Tsimiski 5", city="Thessaloniki"))
        address = build_order_payload(order)["shipping"]["address"]
        assert address["city"] == "Thessaloniki"
        assert address["first_name"] == "Nikos"
        assert address["phone"] == "6912345678"

    def test_weight_from_items_or_override(self):
        assert build_order_payload(make_order())["shipping"]["weight"] == 2.2
        assert build_order_payload(make_order(weight=5))["shipping"]["weight"] == 5.0

    def test_sync_update_flag(self):
        assert "sync_update" not in build_order_payload(make_order())
        assert build_order_payload(make_order(sync_update=True))["sync_update"] is True


class TestOrderState:
    def test_sent_flags(self):
        assert make_order(sent="yes").is_sent
        assert make_order(sent="failed").is_permanently_failed
        assert not make_order().is_sent

    def test_strip_tags(self):
        assert strip_tags("<p>Hello <b>world</b></p> ") == "Hello world"
        assert strip_tags(None) == ""
