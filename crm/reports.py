from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any

UNSPECIFIED = "Sin especificar"

ACTIVE_LEAD_STATUSES = {"new", "contacted", "qualified", "proposal", "negotiation"}


def _group_key(value: Any) -> str:
    text_value = "" if value is None else str(value).strip()
    return text_value or UNSPECIFIED


def _money(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    return Decimal(str(value))


def _round(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01")))


def _period(value: Any) -> str | None:
    if isinstance(value, (date, datetime)):
        return value.isoformat()[:7]
    text_value = str(value or "").strip()
    if len(text_value) >= 7 and text_value[4] == "-":
        return text_value[:7]
    return None


def group_counts(items: Iterable[Mapping[str, Any]], key: str) -> list[dict[str, Any]]:
    counts: dict[str, int] = {}
    for item in items:
        group = _group_key(item.get(key))
        counts[group] = counts.get(group, 0) + 1
    # sorted() is stable, so ties keep first-seen order.
    return [
        {key: group, "count": count}
        for group, count in sorted(counts.items(), key=lambda pair: pair[1], reverse=True)
    ]


def location_stats(
    customers: Iterable[Mapping[str, Any]],
    sales: Iterable[Mapping[str, Any]],
    level: str = "province",
) -> list[dict[str, Any]]:
    """Customers per province (or city) with the revenue of their sales."""
    if level not in {"province", "city"}:
        raise ValueError(f"Unsupported location level: {level}")

    location_by_customer: dict[Any, str] = {}
    stats: dict[str, dict[str, Any]] = {}
    for customer in customers:
        name = _group_key(customer.get(level))
        location_by_customer[customer.get("id")] = name
        entry = stats.setdefault(name, {"name": name, "count": 0, "revenue": Decimal("0")})
        entry["count"] += 1

    for sale in sales:
        name = location_by_customer.get(sale.get("customer_id"))
        if name is None:
            continue
        stats[name]["revenue"] += _money(sale.get("amount"))

    ordered = sorted(stats.values(), key=lambda entry: entry["count"], reverse=True)
    return [{**entry, "revenue": _round(entry["revenue"])} for entry in ordered]


def brand_revenue(sales: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    stats: dict[str, dict[str, Any]] = {}
    for sale in sales:
        brand = _group_key(sale.get("brand"))
        entry = stats.setdefault(brand, {"brand": brand, "revenue": Decimal("0"), "count": 0})
        entry["revenue"] += _money(sale.get("amount"))
        entry["count"] += 1

    ordered = sorted(stats.values(), key=lambda entry: entry["revenue"], reverse=True)
    return [{**entry, "revenue": _round(entry["revenue"])} for entry in ordered]


def monthly_buckets(
    items: Iterable[Mapping[str, Any]],
    date_key: str = "created_at",
    value_key: str | None = None,
) -> list[dict[str, Any]]:
    buckets: dict[str, dict[str, Any]] = {}
    for item in items:
        period = _period(item.get(date_key))
        if period is None:
            continue
        entry = buckets.setdefault(period, {"period": period, "count": 0, "revenue": Decimal("0")})
        entry["count"] += 1
        if value_key:
            entry["revenue"] += _money(item.get(value_key))

    return [
        {**buckets[period], "revenue": _round(buckets[period]["revenue"])}
        for period in sorted(buckets)
    ]


def _ratio(numerator: Decimal | int, denominator: int, digits: str = "0.01") -> float:
    if not denominator:
        return 0.0
    return float((Decimal(numerator) / Decimal(denominator)).quantize(Decimal(digits)))


def dashboard_metrics(
    customers: list[Mapping[str, Any]],
    leads: list[Mapping[str, Any]],
    sales: list[Mapping[str, Any]],
    since: str | None = None,
) -> dict[str, Any]:
    """Headline numbers for the dashboard.

    ``since`` is an ISO date; customers created on or after it count as new.
    Conversion rate is won leads over all leads, as a percentage.
    """
    total_revenue = sum((_money(sale.get("amount")) for sale in sales), Decimal("0"))
    won_leads = sum(1 for lead in leads if lead.get("status") == "won")
    active_leads = sum(1 for lead in leads if lead.get("status") in ACTIVE_LEAD_STATUSES)

    new_customers = len(customers)
    if since:
        new_customers = sum(1 for customer in customers if str(customer.get("created_at") or "")[:10] >= since)

    return {
        "totalCustomers": len(customers),
        "totalLeads": len(leads),
        "totalSales": len(sales),
        "totalRevenue": _round(total_revenue),
        "avgOrderValue": _ratio(total_revenue, len(sales)),
        "conversionRate": _ratio(won_leads * 100, len(leads), "0.1"),
        "activeLeads": active_leads,
        "wonLeads": won_leads,
        "newCustomers": new_customers,
    }
