from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm.config import Settings
from crm.contacts import full_name
from crm.row_normalizer import clean_text

logger = logging.getLogger(__name__)

VALID_ENTITY_TYPES = {"customers", "leads"}

_CONTACT_COLUMNS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "idNumber": "id_number",
    "email": "email",
    "phone": "phone",
    "phoneCountry": "phone_country",
    "phoneNumber": "phone_number",
    "street": "street",
    "city": "city",
    "province": "province",
    "deliveryInstructions": "delivery_instructions",
    "source": "source",
    "brand": "brand",
    "notes": "notes",
}

ENTITY_COLUMNS: dict[str, dict[str, str]] = {
    "customers": dict(_CONTACT_COLUMNS),
    "leads": {**_CONTACT_COLUMNS, "status": "status"},
}

LEAD_STATUSES = ("new", "contacted", "qualified", "proposal", "negotiation", "won", "lost")

LEAD_STATUS_ALIASES = {
    "nuevo": "new",
    "contactado": "contacted",
    "calificado": "qualified",
    "propuesta": "proposal",
    "negociación": "negotiation",
    "negociacion": "negotiation",
    "ganado": "won",
    "perdido": "lost",
}

_IDENTITY_COLUMNS = {"first_name", "last_name"}


@dataclass
class ImportResult:
    entity_type: str
    created: int = 0
    updated: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return self.created + self.updated

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "count": self.count,
            "created": self.created,
            "updated": self.updated,
            "errors": list(self.errors) or None,
            "message": f"Imported {self.count} {self.entity_type} ({self.created} created, {self.updated} updated).",
        }


def normalize_entity_type(entity_type: Any) -> str:
    value = clean_text(entity_type).lower()
    if value not in VALID_ENTITY_TYPES:
        allowed = ", ".join(sorted(VALID_ENTITY_TYPES))
        raise HTTPException(status_code=400, detail=f"Invalid import type '{entity_type}'. Allowed: {allowed}.")
    return value


def normalize_lead_status(value: str) -> str:
    status = value.strip().lower()
    return LEAD_STATUS_ALIASES.get(status, status)


def _record_label(record: dict[str, Any], index: int) -> str:
    name = full_name(record.get("firstName"), record.get("lastName"))
    return f"Record {index} ({name})" if name else f"Record {index}"


def _db_error_message(exc: SQLAlchemyError) -> str:
    detail = getattr(exc, "orig", None) or exc
    return str(detail).strip().splitlines()[0]


def _record_params(record: dict[str, Any], entity_type: str) -> dict[str, str]:
    params = {column: clean_text(record.get(key)) for key, column in ENTITY_COLUMNS[entity_type].items()}
    if entity_type == "leads" and params["status"]:
        params["status"] = normalize_lead_status(params["status"])
    params["name"] = full_name(params["first_name"], params["last_name"])
    return params


def _insert_sql(entity_type: str) -> str:
    columns = [c for c in ENTITY_COLUMNS[entity_type].values() if c not in {"source", "brand", "status"}]
    values = [f":{c}" if c in _IDENTITY_COLUMNS else f"NULLIF(:{c}, '')" for c in columns]

    columns += ["name", "source", "brand"]
    values += [":name", "COALESCE(NULLIF(:source, ''), :default_source)", "COALESCE(NULLIF(:brand, ''), :default_brand)"]
    if entity_type == "leads":
        columns += ["status", "customer_lifecycle_stage", "converted_to_customer"]
        values += ["COALESCE(NULLIF(:status, ''), 'new')", "'lead'", "FALSE"]

    columns += ["created_at", "updated_at"]
    values += ["NOW()", "NOW()"]
    return (
        f"INSERT INTO {entity_type} ({', '.join(columns)}) "
        f"VALUES ({', '.join(values)}) RETURNING id"
    )


def _merge_sql(entity_type: str) -> str:
    assignments = [
        f"{c} = COALESCE(NULLIF(:{c}, ''), {c})"
        for c in ENTITY_COLUMNS[entity_type].values()
        if c not in _IDENTITY_COLUMNS
    ]
    assignments += ["name = :name", "updated_at = NOW()"]
    return f"UPDATE {entity_type} SET {', '.join(assignments)} WHERE id = :record_id"


def _insert(db: Session, entity_type: str, params: dict[str, str], settings: Settings) -> int:
    record_id = db.execute(
        text(_insert_sql(entity_type)),
        {
            **params,
            "default_source": settings.default_import_source,
            "default_brand": settings.default_brand,
        },
    ).scalar_one()
    return int(record_id)


def insert_record(db: Session, entity_type: str, record: dict[str, Any], settings: Settings) -> int:
    return _insert(db, entity_type, _record_params(record, entity_type), settings)


def upsert_record(db: Session, entity_type: str, record: dict[str, Any], settings: Settings) -> tuple[int, bool]:
    params = _record_params(record, entity_type)
    existing = db.execute(
        text(
            f"""
            SELECT id
            FROM {entity_type}
            WHERE first_name = :first_name
              AND last_name = :last_name
            ORDER BY id
            LIMIT 1
            """
        ),
        {"first_name": params["first_name"], "last_name": params["last_name"]},
    ).mappings().first()

    if existing is None:
        return _insert(db, entity_type, params, settings), True

    record_id = int(existing["id"])
    db.execute(text(_merge_sql(entity_type)), {**params, "record_id": record_id})
    return record_id, False


def import_records(
    db: Session,
    records: list[dict[str, Any]],
    entity_type: str,
    *,
    settings: Settings,
    row_errors: list[str] | None = None,
) -> ImportResult:
    """Upsert normalized records one at a time, committing after each.

    Records are matched on the exact (first name, last name) pair, so a row
    can update a record inserted earlier in the same batch. A database error
    on one record is reported and the batch carries on.
    """
    resolved = normalize_entity_type(entity_type)
    result = ImportResult(entity_type=resolved, errors=list(row_errors or []))

    for index, record in enumerate(records, start=1):
        try:
            _, created = upsert_record(db, resolved, record, settings)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            label = _record_label(record, index)
            logger.warning("Import of %s %s failed: %s", resolved, label, exc)
            result.errors.append(f"{label}: {_db_error_message(exc)}")
            continue

        if created:
            result.created += 1
        else:
            result.updated += 1

    logger.info(
        "Imported %s %s: %s created, %s updated, %s errors",
        result.count,
        resolved,
        result.created,
        result.updated,
        len(result.errors),
    )
    return result
