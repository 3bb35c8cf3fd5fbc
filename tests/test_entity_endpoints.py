import httpx
from sqlalchemy import text

from crm import webhooks


def register_webhook(client, event: str, url: str = "https://hooks.example.com/crm"):
    response = client.post("/api/webhooks", json={"name": "Zapier", "url": url, "event": event})
    assert response.status_code == 200
    return response.json()


def capture_posts(monkeypatch, fail: bool = False):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append({"url": url, "json": json, "timeout": timeout})
        if fail:
            raise httpx.ConnectError("connection refused")
        return httpx.Response(200, request=httpx.Request("POST", url))

    monkeypatch.setattr(webhooks.httpx, "post", fake_post)
    return calls


def test_create_customer_splits_name_and_notifies_webhooks(client_and_engine, monkeypatch):
    client, _ = client_and_engine
    calls = capture_posts(monkeypatch)
    register_webhook(client, "new_customer")
    register_webhook(client, "new_sale", url="https://hooks.example.com/sales")

    response = client.post(
        "/api/customers",
        json={"name": "Ana Maria Diaz", "phone": "+593 0991234567", "city": "Quito"},
    )

    assert response.status_code == 200
    customer = response.json()
    assert customer["first_name"] == "Ana"
    assert customer["last_name"] == "Maria Diaz"
    assert customer["phone_country"] == "+593"
    assert customer["source"] == "import"
    assert len(calls) == 1
    assert calls[0]["url"] == "https://hooks.example.com/crm"
    assert calls[0]["json"]["event"] == "new_customer"
    assert calls[0]["json"]["data"]["id"] == customer["id"]


def test_webhook_failure_does_not_affect_response(client_and_engine, monkeypatch):
    client, engine = client_and_engine
    calls = capture_posts(monkeypatch, fail=True)
    register_webhook(client, "new_customer")

    response = client.post("/api/customers", json={"firstName": "Luis", "lastName": "Mora"})

    assert response.status_code == 200
    assert len(calls) == 1
    with engine.begin() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM customers")).scalar_one() == 1


def test_inactive_webhooks_are_skipped(client_and_engine, monkeypatch):
    client, _ = client_and_engine
    calls = capture_posts(monkeypatch)
    client.post(
        "/api/webhooks",
        json={"name": "Off", "url": "https://hooks.example.com/off", "event": "new_customer", "active": False},
    )

    client.post("/api/customers", json={"firstName": "Eva", "lastName": "Paz"})

    assert calls == []


def test_create_customer_requires_a_name(client_and_engine):
    client, _ = client_and_engine

    response = client.post("/api/customers", json={"email": "x@x.com"})

    assert response.status_code == 400


def test_webhook_crud_and_validation(client_and_engine):
    client, _ = client_and_engine

    created = register_webhook(client, "new_sale")
    bad_event = client.post("/api/webhooks", json={"name": "x", "url": "https://a.b", "event": "deleted"})
    bad_url = client.post("/api/webhooks", json={"name": "x", "url": "ftp://a.b", "event": "new_sale"})
    listed = client.get("/api/webhooks").json()["items"]
    deleted = client.delete(f"/api/webhooks/{created['id']}")
    missing = client.delete(f"/api/webhooks/{created['id']}")

    assert created["active"] is True
    assert bad_event.status_code == 400
    assert bad_url.status_code == 400
    assert [w["id"] for w in listed] == [created["id"]]
    assert deleted.status_code == 204
    assert missing.status_code == 404
    assert client.get("/api/webhooks").json()["items"] == []


def test_create_lead_validates_status_and_follow_up(client_and_engine):
    client, _ = client_and_engine

    created = client.post(
        "/api/leads",
        json={"firstName": "Maria", "lastName": "Lopez", "status": "Propuesta", "nextFollowUp": "2024-04-01"},
    )
    bad_status = client.post("/api/leads", json={"firstName": "X", "status": "archived"})
    bad_date = client.post("/api/leads", json={"firstName": "X", "nextFollowUp": "pronto"})
    listed = client.get("/api/leads", params={"status": "proposal"}).json()["items"]

    assert created.status_code == 200
    assert created.json()["status"] == "proposal"
    assert created.json()["next_follow_up"].startswith("2024-04-01")
    assert bad_status.status_code == 400
    assert bad_date.status_code == 400
    assert [lead["first_name"] for lead in listed] == ["Maria"]


def test_create_sale_from_legacy_notes(client_and_engine, monkeypatch):
    client, _ = client_and_engine
    calls = capture_posts(monkeypatch)
    register_webhook(client, "new_sale")
    customer = client.post("/api/customers", json={"firstName": "Ana", "lastName": "Diaz"}).json()

    response = client.post(
        "/api/sales",
        json={
            "customerId": customer["id"],
            "brand": "bride",
            "notes": "Velo Largo (Accesorios) - $45.00 x 1\nLiga (Accesorios) - $7.50 x 2\n\nNotas: entregar el viernes",
        },
    )

    assert response.status_code == 200
    sale = response.json()
    assert sale["amount"] == 60.0
    assert sale["notes"] == "entregar el viernes"
    assert sale["customer_name"] == "Ana Diaz"
    assert [(i["name"], i["quantity"], i["brand"]) for i in sale["items"]] == [
        ("Velo Largo", 1, "bride"),
        ("Liga", 2, "bride"),
    ]
    assert calls[0]["json"]["event"] == "new_sale"
    assert calls[0]["json"]["data"]["id"] == sale["id"]

    listed = client.get("/api/sales").json()["items"]
    assert listed[0]["itemsNote"] == "Velo Largo (Accesorios) - $45.00 x 1\nLiga (Accesorios) - $7.50 x 2"


def test_create_sale_validation(client_and_engine):
    client, _ = client_and_engine
    customer = client.post("/api/customers", json={"firstName": "Ana", "lastName": "Diaz"}).json()

    unknown_customer = client.post("/api/sales", json={"customerId": 999, "amount": "10"})
    missing_customer = client.post("/api/sales", json={"amount": "10"})
    no_amount = client.post("/api/sales", json={"customerId": customer["id"]})
    bad_quantity = client.post(
        "/api/sales",
        json={"customerId": customer["id"], "items": [{"name": "Bata", "unitPrice": "10", "quantity": 0}]},
    )
    nan_amount = client.post("/api/sales", json={"customerId": customer["id"], "amount": "NaN"})
    infinite_price = client.post(
        "/api/sales",
        json={"customerId": customer["id"], "items": [{"name": "Bata", "unitPrice": "Infinity", "quantity": 1}]},
    )
    nan_product = client.post("/api/products", json={"sku": "X-2", "name": "Bata", "price": "nan"})
    plain = client.post("/api/sales", json={"customerId": customer["id"], "amount": "19.99"})

    assert unknown_customer.status_code == 400
    assert missing_customer.status_code == 400
    assert no_amount.status_code == 400
    assert bad_quantity.status_code == 400
    assert nan_amount.status_code == 400
    assert infinite_price.status_code == 400
    assert nan_product.status_code == 400
    assert plain.status_code == 200
    assert plain.json()["status"] == "completed"
    assert plain.json()["items"] == []


def test_create_products_with_variant_attributes(client_and_engine):
    client, _ = client_and_engine

    parent = client.post(
        "/api/products",
        json={"sku": "PIJ-001", "name": "Pijama Seda", "price": "39.90", "productType": "variable"},
    )
    variation = client.post(
        "/api/products",
        json={
            "sku": "PIJ-001-M-ROJO",
            "name": "Pijama Seda M Rojo",
            "price": "39.90",
            "stock": "4",
            "productType": "variation",
            "parentId": parent.json()["id"],
            "attributes": '[{"name": "pa_talla", "option": "M"}, {"name": "Colour", "option": "Rojo"}]',
        },
    )
    duplicate = client.post("/api/products", json={"sku": "PIJ-001", "name": "Otra", "price": "1"})
    orphan = client.post(
        "/api/products",
        json={"sku": "X-1", "name": "Sin padre", "price": "1", "productType": "variation"},
    )
    listed = client.get("/api/products").json()["items"]

    assert parent.status_code == 200
    assert variation.status_code == 200
    assert variation.json()["attributes"] == {"size": "M", "color": "Rojo"}
    assert variation.json()["stock"] == 4
    assert duplicate.status_code == 400
    assert orphan.status_code == 400
    assert {p["sku"] for p in listed} == {"PIJ-001", "PIJ-001-M-ROJO"}


def test_health(client_and_engine):
    client, _ = client_and_engine

    assert client.get("/health").json() == {"ok": True}
