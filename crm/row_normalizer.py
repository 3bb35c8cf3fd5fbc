from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from fastapi import HTTPException
from openpyxl import load_workbook

from crm.contacts import join_phone_number, parse_phone_number, split_address, split_full_name
from crm.field_mapping import map_header, map_record_keys

logger = logging.getLogger(__name__)

SPREADSHEET_SUFFIXES = (".xlsx", ".xlsm", ".xltx", ".xltm")
DELIMITED_SUFFIXES = (".csv", ".txt")


@dataclass
class NormalizedRows:
    valid_records: list[dict[str, str]] = field(default_factory=list)
    row_errors: list[str] = field(default_factory=list)


def clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).replace("\xa0", " ").strip()


def _cell_text(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return clean_text(value)


def _is_row_populated(row: list[Any] | tuple[Any, ...]) -> bool:
    return any(clean_text(v) for v in row)


def _read_spreadsheet(content: bytes) -> list[list[str]]:
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        raise HTTPException(status_code=400, detail=f"Could not read spreadsheet: {exc}") from exc

    try:
        if not workbook.worksheets:
            return []
        sheet = workbook.worksheets[0]
        return [[_cell_text(v) for v in row] for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


def _decode(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        # Spreadsheet tools on Windows save CSV as cp1252 by default.
        return content.decode("cp1252", errors="replace")


def _read_delimited(content: bytes) -> list[list[str]]:
    text_value = _decode(content)
    sample = text_value[:4096]
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=",;\t")
    except csv.Error:
        dialect = csv.excel
    reader = csv.reader(io.StringIO(text_value, newline=""), dialect)
    return [[clean_text(cell) for cell in row] for row in reader]


def read_upload(content: bytes, filename: str) -> list[list[str]]:
    name = (filename or "").lower()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if name.endswith(SPREADSHEET_SUFFIXES):
        return _read_spreadsheet(content)
    if name.endswith(DELIMITED_SUFFIXES):
        return _read_delimited(content)
    raise HTTPException(status_code=400, detail="Upload an .xlsx or .csv file")


def _complete_identity(record: dict[str, str]) -> None:
    # An explicit first or last name wins; the full name only fills a missing pair.
    name = record.get("name", "")
    if name and not record.get("firstName") and not record.get("lastName"):
        record["firstName"], record["lastName"] = split_full_name(name)

    phone = record.get("phone", "")
    if phone and not record.get("phoneNumber"):
        country, number = parse_phone_number(phone)
        record["phoneCountry"] = record.get("phoneCountry") or country
        record["phoneNumber"] = number
    elif record.get("phoneNumber") and not phone:
        record["phone"] = join_phone_number(record.get("phoneCountry"), record["phoneNumber"])

    address = record.get("address", "")
    if address and not any(record.get(k) for k in ("street", "city", "province")):
        for key, value in split_address(address).items():
            if value and not record.get(key):
                record[key] = value


def _accept(record: dict[str, str], result: NormalizedRows, label: str) -> None:
    _complete_identity(record)
    if not record.get("firstName") and not record.get("lastName"):
        result.row_errors.append(f"{label}: missing first or last name; record skipped.")
        return
    result.valid_records.append(record)


def normalize_rows(rows: list[list[Any]]) -> NormalizedRows:
    """Turn a header row plus data rows into candidate import records.

    Blank rows are skipped silently; rows without any identity field are
    reported in ``row_errors`` and never abort the rest of the file.
    """
    headers = [clean_text(h) for h in rows[0]] if rows else []
    if not any(headers):
        raise HTTPException(status_code=400, detail="The header row has no column names")

    fields = [map_header(h) if h else "" for h in headers]
    result = NormalizedRows()
    for row_num, row in enumerate(rows[1:], start=2):
        if not _is_row_populated(row):
            continue

        record: dict[str, str] = {}
        for idx, field_name in enumerate(fields):
            if not field_name:
                continue
            value = clean_text(row[idx]) if idx < len(row) else ""
            if field_name in record and not value:
                continue
            record[field_name] = value
        _accept(record, result, f"Row {row_num}")

    logger.debug("Normalized %s rows: %s valid, %s errors", len(rows) - 1, len(result.valid_records), len(result.row_errors))
    return result


def normalize_records(records: list[Any]) -> NormalizedRows:
    result = NormalizedRows()
    for index, raw in enumerate(records, start=1):
        if not isinstance(raw, dict):
            result.row_errors.append(f"Record {index}: expected an object; record skipped.")
            continue
        record = {key: clean_text(value) for key, value in map_record_keys(raw).items()}
        if not any(record.values()):
            continue
        _accept(record, result, f"Record {index}")
    return result
