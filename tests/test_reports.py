from sqlalchemy import text

from crm.reports import UNSPECIFIED, brand_revenue, dashboard_metrics, group_counts, location_stats, monthly_buckets


def test_group_counts_sorts_by_count_and_uses_sentinel():
    items = [
        {"source": "instagram"},
        {"source": None},
        {"source": "facebook"},
        {"source": "instagram"},
        {"source": "  "},
        {"source": "facebook"},
        {"source": "facebook"},
    ]

    assert group_counts(items, "source") == [
        {"source": "facebook", "count": 3},
        {"source": "instagram", "count": 2},
        {"source": UNSPECIFIED, "count": 2},
    ]


def test_group_counts_ties_keep_first_seen_order():
    items = [{"source": "web"}, {"source": "tienda"}, {"source": "referido"}]

    assert [g["source"] for g in group_counts(items, "source")] == ["web", "tienda", "referido"]


def test_empty_inputs_give_empty_lists():
    assert group_counts([], "source") == []
    assert location_stats([], []) == []
    assert brand_revenue([]) == []
    assert monthly_buckets([]) == []


def test_location_stats_counts_customers_and_sums_their_sales():
    customers = [
        {"id": 1, "province": "Pichincha", "city": "Quito"},
        {"id": 2, "province": "Pichincha", "city": "Quito"},
        {"id": 3, "province": "Guayas", "city": "Guayaquil"},
        {"id": 4, "province": None, "city": None},
    ]
    sales = [
        {"customer_id": 1, "amount": "10.50"},
        {"customer_id": 3, "amount": 100},
        {"customer_id": 3, "amount": "20"},
        {"customer_id": 99, "amount": "500"},
    ]

    assert location_stats(customers, sales, "province") == [
        {"name": "Pichincha", "count": 2, "revenue": 10.5},
        {"name": "Guayas", "count": 1, "revenue": 120.0},
        {"name": UNSPECIFIED, "count": 1, "revenue": 0.0},
    ]


def test_brand_revenue_sorted_by_revenue():
    sales = [
        {"brand": "sleepwear", "amount": "30"},
        {"brand": "bride", "amount": "250"},
        {"brand": "sleepwear", "amount": "45.25"},
        {"brand": None, "amount": "5"},
    ]

    assert brand_revenue(sales) == [
        {"brand": "bride", "revenue": 250.0, "count": 1},
        {"brand": "sleepwear", "revenue": 75.25, "count": 2},
        {"brand": UNSPECIFIED, "revenue": 5.0, "count": 1},
    ]


def test_monthly_buckets_are_chronological():
    sales = [
        {"created_at": "2024-03-02 10:00:00", "amount": "10"},
        {"created_at": "2024-01-15 10:00:00", "amount": "5"},
        {"created_at": "2024-03-20 10:00:00", "amount": "2.5"},
        {"created_at": None, "amount": "99"},
    ]

    assert monthly_buckets(sales, value_key="amount") == [
        {"period": "2024-01", "count": 1, "revenue": 5.0},
        {"period": "2024-03", "count": 2, "revenue": 12.5},
    ]


def test_dashboard_metrics():
    customers = [{"created_at": "2024-01-01"}, {"created_at": "2024-03-05"}]
    leads = [{"status": "won"}, {"status": "new"}, {"status": "lost"}, {"status": "contacted"}]
    sales = [{"amount": "30"}, {"amount": "45"}]

    metrics = dashboard_metrics(customers, leads, sales, since="2024-03-01")

    assert metrics == {
        "totalCustomers": 2,
        "totalLeads": 4,
        "totalSales": 2,
        "totalRevenue": 75.0,
        "avgOrderValue": 37.5,
        "conversionRate": 25.0,
        "activeLeads": 2,
        "wonLeads": 1,
        "newCustomers": 1,
    }


def test_dashboard_metrics_without_data():
    metrics = dashboard_metrics([], [], [])

    assert metrics["avgOrderValue"] == 0.0
    assert metrics["conversionRate"] == 0.0


def seed(engine):
    with engine.begin() as conn:
        for customer_id, source, province, brand in [
            (1, "instagram", "Pichincha", "sleepwear"),
            (2, "instagram", "Guayas", "bride"),
            (3, None, "Pichincha", "sleepwear"),
        ]:
            conn.execute(
                text(
                    """
                    INSERT INTO customers (id, name, first_name, last_name, source, province, brand, created_at, updated_at)
                    VALUES (:id, :name, :name, '', :source, :province, :brand, '2024-02-01 10:00:00', '2024-02-01 10:00:00')
                    """
                ),
                {"id": customer_id, "name": f"C{customer_id}", "source": source, "province": province, "brand": brand},
            )
        for sale_id, customer_id, amount, brand, created_at in [
            (1, 1, "20", "sleepwear", "2024-02-03 10:00:00"),
            (2, 2, "300", "bride", "2024-03-03 10:00:00"),
            (3, 3, "15", "sleepwear", "2024-03-04 10:00:00"),
        ]:
            conn.execute(
                text(
                    """
                    INSERT INTO sales (id, customer_id, amount, status, brand, created_at, updated_at)
                    VALUES (:id, :customer_id, :amount, 'completed', :brand, :created_at, :created_at)
                    """
                ),
                {"id": sale_id, "customer_id": customer_id, "amount": amount, "brand": brand, "created_at": created_at},
            )


def test_report_endpoints(client_and_engine):
    client, engine = client_and_engine
    seed(engine)

    sources = client.get("/api/reports/sources").json()["items"]
    locations = client.get("/api/reports/locations").json()["items"]
    brands = client.get("/api/reports/brands").json()["items"]
    monthly = client.get("/api/reports/monthly", params={"dateStart": "2024-03-01"}).json()["items"]
    summary = client.get("/api/reports/summary", params={"brand": "sleepwear"}).json()

    assert sources == [{"source": "instagram", "count": 2}, {"source": UNSPECIFIED, "count": 1}]
    assert locations[0] == {"name": "Pichincha", "count": 2, "revenue": 35.0}
    assert [b["brand"] for b in brands] == ["bride", "sleepwear"]
    assert monthly == [{"period": "2024-03", "count": 2, "revenue": 315.0}]
    assert summary["totalCustomers"] == 2
    assert summary["totalRevenue"] == 35.0


def test_report_endpoints_validate_parameters(client_and_engine):
    client, _ = client_and_engine

    assert client.get("/api/reports/sources", params={"entity": "sales"}).status_code == 400
    assert client.get("/api/reports/locations", params={"level": "country"}).status_code == 400
    assert client.get("/api/reports/monthly", params={"dateEnd": "mañana"}).status_code == 400
