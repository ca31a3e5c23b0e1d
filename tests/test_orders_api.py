"""Integration tests for admin order creation and the order views."""

import pytest


@pytest.fixture()
def place_order(client, admin_headers):
    def _place(items, date="2025-03-14T10:00:00Z", customer=None):
        body = {"date": date, "items": items}
        if customer is not None:
            body["customer"] = customer
        return client.post("/admin/orders", json=body, headers=admin_headers)

    return _place


def _orders(client, admin_headers, **params):
    params.setdefault("month", "3")
    params.setdefault("year", "2025")
    response = client.get("/admin/orders", params=params, headers=admin_headers)
    assert response.status_code == 200, response.text
    return response.json()["items"]


class TestCreateOrder:
    def test_reserves_stock_and_snapshots_price(self, make_product, place_order, stock_of):
        product_id = make_product("Monstera", price=65000, stock=5)
        response = place_order([{"product_id": product_id, "qty": 3}])
        assert response.status_code == 201
        assert response.json()["total"] == 3 * 65000
        assert stock_of(product_id) == 2

    def test_insufficient_stock_changes_nothing(self, client, admin_headers, make_product, place_order, stock_of):
        product_id = make_product("Monstera", stock=2)
        response = place_order([{"product_id": product_id, "qty": 10}])
        assert response.status_code == 409
        assert "Monstera" in response.json()["error"]
        assert stock_of(product_id) == 2
        assert _orders(client, admin_headers) == []

    def test_failing_line_rolls_back_earlier_lines(self, client, admin_headers, make_product, place_order, stock_of):
        first = make_product("Pothos", stock=5)
        response = place_order([{"product_id": first, "qty": 2}, {"product_id": 9999, "qty": 1}])
        assert response.status_code == 404
        assert stock_of(first) == 5
        assert _orders(client, admin_headers) == []

    def test_manual_item_needs_a_name(self, place_order):
        response = place_order([{"qty": 2, "unit_price": 100}])
        assert response.status_code == 400

    def test_items_are_required(self, place_order):
        assert place_order([]).status_code == 400

    def test_manual_items_do_not_touch_stock(self, place_order):
        response = place_order([{"name": "Envío", "unit_price": 5000}, {"name": "Abono", "qty": 2, "unit_price": 1500}])
        assert response.status_code == 201
        assert response.json()["total"] == 5000 + 3000

    def test_price_and_name_overrides(self, client, admin_headers, make_product, place_order):
        product_id = make_product("Monstera", price=65000)
        response = place_order([{"product_id": product_id, "qty": 2, "unit_price": 60000, "name": "Monstera (promo)"}])
        assert response.json()["total"] == 120000

        order = client.get(f"/admin/orders/{response.json()['id']}", headers=admin_headers).json()["order"]
        (line,) = order["items"]
        assert (line["name"], line["qty"], line["unit_price"]) == ("Monstera (promo)", 2, 60000)

    def test_snapshot_survives_product_changes(self, client, admin_headers, make_product, place_order):
        product_id = make_product("Monstera", price=65000)
        order_id = place_order([{"product_id": product_id, "qty": 1}]).json()["id"]

        client.put(f"/admin/products/{product_id}", data={"name": "Costilla de Adán", "price": "1"}, headers=admin_headers)
        client.delete(f"/admin/products/{product_id}", headers=admin_headers)

        order = client.get(f"/admin/orders/{order_id}", headers=admin_headers).json()["order"]
        (line,) = order["items"]
        assert line["name"] == "Monstera"
        assert line["unit_price"] == 65000
        assert line["product_id"] is None
        assert order["total"] == 65000


class TestOrderViews:
    def test_list_by_month_with_item_counts(self, client, admin_headers, make_product, place_order):
        product_id = make_product("Pothos", price=28000)
        place_order([{"product_id": product_id, "qty": 2}, {"name": "Maceta", "qty": 1, "unit_price": 500}])
        place_order([{"name": "Abono", "unit_price": 100}], date="2025-04-02T09:00:00Z")

        march = _orders(client, admin_headers)
        assert len(march) == 1
        assert march[0]["items_count"] == 3
        assert march[0]["total"] == 56500
        assert len(_orders(client, admin_headers, month="4")) == 1
        assert _orders(client, admin_headers, year="2024") == []

    def test_search_by_reference_or_customer(self, client, admin_headers, place_order):
        first = place_order([{"name": "Abono", "unit_price": 100}], customer={"full_name": "Lucía Gómez"}).json()["id"]
        place_order([{"name": "Abono", "unit_price": 100}], customer={"full_name": "Pedro 50% Ruiz"})

        assert [o["id"] for o in _orders(client, admin_headers, q=f"#{first}")] == [first]
        assert [o["id"] for o in _orders(client, admin_headers, q=str(first))] == [first]
        assert [o["customer_name"] for o in _orders(client, admin_headers, q="gómez")] == ["Lucía Gómez"]
        assert [o["customer_name"] for o in _orders(client, admin_headers, q="50%")] == ["Pedro 50% Ruiz"]

    def test_unparseable_date_means_now(self, client, admin_headers, place_order):
        assert place_order([{"name": "Abono", "unit_price": 100}], date="someday").status_code == 201
        response = client.get("/admin/orders", headers=admin_headers)
        assert len(response.json()["items"]) == 1

    def test_order_detail(self, client, admin_headers, place_order):
        order_id = place_order(
            [{"name": "Abono", "qty": 2, "unit_price": 100}], customer={"full_name": " Ana ", "phone": "555"}
        ).json()["id"]
        order = client.get(f"/admin/orders/{order_id}", headers=admin_headers).json()["order"]
        assert order["customer_name"] == "Ana"
        assert order["customer_phone"] == "555"
        assert order["total"] == 200
        assert order["date"].startswith("2025-03-14")

    def test_unknown_order(self, client, admin_headers):
        response = client.get("/admin/orders/999", headers=admin_headers)
        assert response.status_code == 404
        assert response.json() == {"error": "Order not found"}


class TestOrderLimits:
    def test_total_beyond_integer_range_is_rejected(self, client, admin_headers, place_order):
        response = place_order([{"name": "Bonsai antiguo", "qty": 1000, "unit_price": 10**17}])
        assert response.status_code == 400
        assert response.json() == {"error": "Order total is too large"}
        assert _orders(client, admin_headers) == []

    def test_overflowing_order_releases_reserved_stock(self, client, admin_headers, make_product, place_order, stock_of):
        product_id = make_product("Monstera", price=65000, stock=5)
        response = place_order(
            [{"product_id": product_id, "qty": 2}, {"name": "Bonsai antiguo", "qty": 1000, "unit_price": 10**17}]
        )
        assert response.status_code == 400
        assert stock_of(product_id) == 5

    def test_huge_quantity_is_insufficient_stock(self, make_product, place_order, stock_of):
        product_id = make_product("Monstera", stock=5)
        response = place_order([{"product_id": product_id, "qty": 10**30}])
        assert response.status_code == 409
        assert stock_of(product_id) == 5

    def test_huge_month_and_order_id(self, client, admin_headers):
        response = client.get("/admin/orders", params={"month": "1e40", "year": "1e40"}, headers=admin_headers)
        assert response.json() == {"items": []}
        assert client.get(f"/admin/orders/{10**20}", headers=admin_headers).status_code == 400


class TestAccentedCustomerSearch:
    def test_customer_search_folds_accented_capitals(self, client, admin_headers, place_order):
        place_order([{"name": "Abono", "unit_price": 100}], customer={"full_name": "ÁNGELA Núñez"})
        names = [o["customer_name"] for o in _orders(client, admin_headers, q="ángela núñez")]
        assert names == ["ÁNGELA Núñez"]
