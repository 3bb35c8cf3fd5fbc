from __future__ import annotations

import csv
import io
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from openpyxl import Workbook
from openpyxl.utils import get_column_letter

from crm.contacts import full_name
from crm.line_items import LineItem, format_line_items_note

COLUMN_WIDTH = 15

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV_MEDIA_TYPE = "text/csv; charset=utf-8"


@dataclass(frozen=True)
class ExportColumn:
    field: str
    header: str


def _columns(*pairs: tuple[str, str]) -> tuple[ExportColumn, ...]:
    return tuple(ExportColumn(field, header) for field, header in pairs)


_CONTACT_PAIRS = (
    ("id", "ID"),
    ("name", "Nombre completo"),
    ("firstName", "Nombre de pila"),
    ("lastName", "Apellido"),
    ("email", "Email"),
    ("phone", "Teléfono"),
    ("city", "Ciudad"),
    ("province", "Provincia"),
    ("street", "Dirección"),
    ("brand", "Marca"),
    ("source", "Origen"),
    ("idNumber", "ID Número"),
    ("deliveryInstructions", "Instrucciones de entrega"),
    ("notes", "Notas"),
)

CUSTOMER_COLUMNS = _columns(*_CONTACT_PAIRS, ("createdAt", "Fecha Creación"))

LEAD_COLUMNS = _columns(
    *_CONTACT_PAIRS,
    ("status", "Estado"),
    ("customerLifecycleStage", "Etapa"),
    ("convertedToCustomer", "Convertido a Cliente"),
    ("convertedCustomerId", "ID Cliente convertido"),
    ("lastContact", "Fecha Último Contacto"),
    ("nextFollowUp", "Fecha Próximo Seguimiento"),
    ("createdAt", "Fecha Creación"),
)

SALE_COLUMNS = _columns(
    ("id", "ID"),
    ("customerId", "ID Cliente"),
    ("customerName", "Nombre Cliente"),
    ("amount", "Monto"),
    ("status", "Estado"),
    ("paymentMethod", "Método de Pago"),
    ("brand", "Marca"),
    ("notes", "Notas"),
    ("createdAt", "Fecha Creación"),
)

# Union of every entity's columns, prefixed by the row kind.
ALL_COLUMNS = _columns(
    ("type", "Tipo"),
    ("id", "ID"),
    ("name", "Nombre completo"),
    ("firstName", "Nombre de pila"),
    ("lastName", "Apellido"),
    ("email", "Email"),
    ("phone", "Teléfono"),
    ("city", "Ciudad"),
    ("province", "Provincia"),
    ("street", "Dirección"),
    ("brand", "Marca"),
    ("source", "Origen"),
    ("status", "Estado"),
    ("idNumber", "ID Número"),
    ("deliveryInstructions", "Instrucciones de entrega"),
    ("amount", "Monto"),
    ("paymentMethod", "Método de Pago"),
    ("notes", "Notas"),
    ("createdAt", "Fecha Creación"),
)

ENTITY_COLUMNS: dict[str, tuple[ExportColumn, ...]] = {
    "customers": CUSTOMER_COLUMNS,
    "leads": LEAD_COLUMNS,
    "sales": SALE_COLUMNS,
}

ROW_KIND_LABELS = {"customers": "Cliente", "sales": "Venta", "leads": "Lead"}


def text_value(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def date_value(value: Any) -> str:
    if value is None or value == "":
        return ""
    if isinstance(value, (date, datetime)):
        return value.isoformat()[:10]
    return str(value)[:10]


def amount_value(value: Any) -> str:
    if value is None or value == "":
        return ""
    return f"{Decimal(str(value)):.2f}"


def phone_value(row: Mapping[str, Any]) -> str:
    number = text_value(row.get("phone_number")).strip()
    if not number:
        return text_value(row.get("phone"))
    country = text_value(row.get("phone_country")).strip()
    return f"{country} {number}" if country else number


def _contact_fields(row: Mapping[str, Any]) -> dict[str, str]:
    return {
        "id": text_value(row.get("id")),
        "name": text_value(row.get("name")) or full_name(row.get("first_name"), row.get("last_name")),
        "firstName": text_value(row.get("first_name")),
        "lastName": text_value(row.get("last_name")),
        "email": text_value(row.get("email")),
        "phone": phone_value(row),
        "city": text_value(row.get("city")),
        "province": text_value(row.get("province")),
        "street": text_value(row.get("street")),
        "brand": text_value(row.get("brand")),
        "source": text_value(row.get("source")),
        "idNumber": text_value(row.get("id_number")),
        "deliveryInstructions": text_value(row.get("delivery_instructions")),
        "notes": text_value(row.get("notes")),
        "createdAt": date_value(row.get("created_at")),
    }


def format_customer_row(row: Mapping[str, Any]) -> dict[str, str]:
    return _contact_fields(row)


def format_lead_row(row: Mapping[str, Any]) -> dict[str, str]:
    formatted = _contact_fields(row)
    formatted.update(
        {
            "status": text_value(row.get("status")),
            "customerLifecycleStage": text_value(row.get("customer_lifecycle_stage")),
            "convertedToCustomer": "Sí" if row.get("converted_to_customer") else "No",
            "convertedCustomerId": text_value(row.get("converted_customer_id")),
            "lastContact": date_value(row.get("last_contact")),
            "nextFollowUp": date_value(row.get("next_follow_up")),
        }
    )
    return formatted


def format_sale_row(row: Mapping[str, Any], items: Iterable[LineItem] = ()) -> dict[str, str]:
    """Flatten a sale row; structured line items are rendered into the notes text."""
    items = list(items)
    notes = text_value(row.get("notes"))
    if items:
        notes = format_line_items_note(items, notes)
    return {
        "id": text_value(row.get("id")),
        "customerId": text_value(row.get("customer_id")),
        "customerName": text_value(row.get("customer_name")),
        "amount": amount_value(row.get("amount")),
        "status": text_value(row.get("status")),
        "paymentMethod": text_value(row.get("payment_method")),
        "brand": text_value(row.get("brand")),
        "notes": notes,
        "createdAt": date_value(row.get("created_at")),
    }


def tag_rows(rows: Iterable[Mapping[str, str]], entity: str) -> list[dict[str, str]]:
    label = ROW_KIND_LABELS[entity]
    tagged = []
    for row in rows:
        extra = {"type": label}
        if entity == "sales":
            extra["name"] = row.get("customerName", "")
        tagged.append({**row, **extra})
    return tagged


def _ordered_values(row: Mapping[str, Any], columns: Iterable[ExportColumn]) -> list[str]:
    return [text_value(row.get(column.field)) for column in columns]


def build_xlsx(
    rows: Iterable[Mapping[str, Any]],
    columns: Iterable[ExportColumn],
    sheet_name: str = "Datos",
) -> bytes:
    columns = list(columns)
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_name
    sheet.append([column.header for column in columns])
    for row in rows:
        values = _ordered_values(row, columns)
        sheet.append(values)
        # Values starting with "=" stay literal text, not formulas.
        for cell in sheet[sheet.max_row]:
            cell.data_type = "s"
    for index in range(1, len(columns) + 1):
        sheet.column_dimensions[get_column_letter(index)].width = COLUMN_WIDTH

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def build_csv(rows: Iterable[Mapping[str, Any]], columns: Iterable[ExportColumn]) -> bytes:
    columns = list(columns)
    buffer = io.StringIO(newline="")
    writer = csv.writer(buffer, lineterminator="\r\n")
    writer.writerow([column.header for column in columns])
    for row in rows:
        writer.writerow(_ordered_values(row, columns))
    return buffer.getvalue().encode("utf-8")
