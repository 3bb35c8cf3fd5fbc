from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Any

from sqlalchemy import bindparam, text
from sqlalchemy.orm import Session

from crm.line_items import LineItem, to_decimal

CONTACT_SELECT = """
    {alias}.id, {alias}.name, {alias}.first_name, {alias}.last_name, {alias}.id_number,
    {alias}.email, {alias}.phone, {alias}.phone_country, {alias}.phone_number,
    {alias}.street, {alias}.city, {alias}.province, {alias}.delivery_instructions,
    {alias}.source, {alias}.brand, {alias}.notes, {alias}.created_at, {alias}.updated_at
"""


@dataclass
class RecordFilters:
    date_start: date | None = None
    date_end: date | None = None
    brand: str = ""
    province: str = ""
    city: str = ""
    source: str = ""
    status: str = ""

    @classmethod
    def from_mapping(cls, values: dict[str, Any] | None, date_start: date | None = None, date_end: date | None = None):
        values = values or {}
        return cls(
            date_start=date_start,
            date_end=date_end,
            **{
                key: str(values.get(key) or "").strip()
                for key in ("brand", "province", "city", "source", "status")
            },
        )


def filter_clauses(filters: RecordFilters, entity: str, alias: str) -> tuple[str, dict[str, Any]]:
    """WHERE clause for a filtered listing.

    Location and source filters do not apply to sales; status does not apply
    to customers. The end date includes the whole day.
    """
    where_clauses: list[str] = []
    sql_params: dict[str, Any] = {}

    if filters.date_start is not None:
        where_clauses.append(f"{alias}.created_at >= :date_start")
        sql_params["date_start"] = filters.date_start.isoformat()
    if filters.date_end is not None:
        where_clauses.append(f"{alias}.created_at <= :date_end")
        sql_params["date_end"] = f"{filters.date_end.isoformat()} 23:59:59.999999"
    if filters.brand:
        where_clauses.append(f"{alias}.brand = :brand")
        sql_params["brand"] = filters.brand
    if filters.status and entity in {"sales", "leads"}:
        where_clauses.append(f"{alias}.status = :status")
        sql_params["status"] = filters.status
    if entity != "sales":
        for column in ("province", "city", "source"):
            value = getattr(filters, column)
            if value:
                where_clauses.append(f"{alias}.{column} = :{column}")
                sql_params[column] = value

    where_sql = f"WHERE {' AND '.join(where_clauses)}" if where_clauses else ""
    return where_sql, sql_params


def fetch_customers(db: Session, filters: RecordFilters | None = None) -> list[dict[str, Any]]:
    where_sql, sql_params = filter_clauses(filters or RecordFilters(), "customers", "c")
    rows = db.execute(
        text(
            f"""
            SELECT {CONTACT_SELECT.format(alias="c")}
            FROM customers c
            {where_sql}
            ORDER BY c.created_at DESC, c.id DESC
            """
        ),
        sql_params,
    ).mappings().all()
    return [dict(r) for r in rows]


def fetch_leads(db: Session, filters: RecordFilters | None = None) -> list[dict[str, Any]]:
    where_sql, sql_params = filter_clauses(filters or RecordFilters(), "leads", "l")
    rows = db.execute(
        text(
            f"""
            SELECT {CONTACT_SELECT.format(alias="l")},
                   l.status, l.customer_lifecycle_stage, l.converted_to_customer,
                   l.converted_customer_id, l.last_contact, l.next_follow_up
            FROM leads l
            {where_sql}
            ORDER BY l.created_at DESC, l.id DESC
            """
        ),
        sql_params,
    ).mappings().all()
    return [dict(r) for r in rows]


def fetch_sales(
    db: Session,
    filters: RecordFilters | None = None,
    sale_id: int | None = None,
) -> list[dict[str, Any]]:
    where_sql, sql_params = filter_clauses(filters or RecordFilters(), "sales", "s")
    if sale_id is not None:
        where_sql = f"{where_sql} AND s.id = :sale_id" if where_sql else "WHERE s.id = :sale_id"
        sql_params["sale_id"] = sale_id
    rows = db.execute(
        text(
            f"""
            SELECT s.id, s.customer_id, c.name AS customer_name, s.amount, s.status,
                   s.payment_method, s.brand, s.notes, s.created_at, s.updated_at
            FROM sales s
            LEFT JOIN customers c ON c.id = s.customer_id
            {where_sql}
            ORDER BY s.created_at DESC, s.id DESC
            """
        ),
        sql_params,
    ).mappings().all()
    return [dict(r) for r in rows]


def fetch_sale_items(db: Session, sale_ids: list[int]) -> dict[int, list[LineItem]]:
    items: dict[int, list[LineItem]] = defaultdict(list)
    if not sale_ids:
        return items
    rows = db.execute(
        text(
            """
            SELECT sale_id, name, category, unit_price, quantity, brand
            FROM sale_items
            WHERE sale_id IN :sale_ids
            ORDER BY sale_id, position
            """
        ).bindparams(bindparam("sale_ids", expanding=True)),
        {"sale_ids": list(sale_ids)},
    ).mappings().all()
    for r in rows:
        items[int(r["sale_id"])].append(
            LineItem(
                name=r["name"],
                category=r["category"] or "",
                unit_price=to_decimal(r["unit_price"]),
                quantity=int(r["quantity"] or 0),
                brand=r["brand"],
            )
        )
    return items
