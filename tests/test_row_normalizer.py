from datetime import datetime
from io import BytesIO
from pathlib import Path
import sys

import pytest
from fastapi import HTTPException
from openpyxl import Workbook

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from crm.contacts import join_phone_number, parse_phone_number, split_address, split_full_name
from crm.row_normalizer import normalize_records, normalize_rows, read_upload


def build_xlsx(rows) -> bytes:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


def test_blank_rows_are_skipped_without_errors():
    result = normalize_rows(
        [
            ["Nombre", "Apellido", "Email"],
            ["", "", ""],
            ["Ana", "Diaz", "a@x.com"],
            [None, "  ", None],
        ]
    )

    assert result.row_errors == []
    assert len(result.valid_records) == 1
    assert result.valid_records[0]["firstName"] == "Ana"


def test_rows_without_identity_are_reported_and_rest_continues():
    result = normalize_rows(
        [
            ["Nombre", "Apellido", "Email"],
            ["", "", "solo@x.com"],
            ["Luis", "", ""],
        ]
    )

    assert result.row_errors == ["Row 2: missing first or last name; record skipped."]
    assert [r["firstName"] for r in result.valid_records] == ["Luis"]


def test_header_row_without_names_rejects_file():
    with pytest.raises(HTTPException) as exc_info:
        normalize_rows([["", "  ", None], ["Ana", "Diaz", ""]])

    assert exc_info.value.status_code == 400


def test_unknown_columns_pass_through_and_headerless_columns_are_ignored():
    result = normalize_rows(
        [
            ["Nombre", "Apellido", "Mascota", ""],
            ["Ana", "Diaz", "Luna", "sin encabezado"],
        ]
    )

    record = result.valid_records[0]
    assert record["Mascota"] == "Luna"
    assert "sin encabezado" not in record.values()


def test_empty_cell_does_not_overwrite_earlier_value_of_same_field():
    result = normalize_rows(
        [
            ["Nombre", "Nombres", "Apellido"],
            ["Ana", "", "Diaz"],
        ]
    )

    assert result.valid_records[0]["firstName"] == "Ana"


def test_full_name_phone_and_address_are_split():
    result = normalize_rows(
        [
            ["Nombre completo", "Teléfono", "Dirección completa"],
            ["Ana Maria Diaz", "+593 0991234567", "Av. Amazonas 123, Quito, Pichincha\nCasa azul"],
        ]
    )

    record = result.valid_records[0]
    assert record["firstName"] == "Ana"
    assert record["lastName"] == "Maria Diaz"
    assert record["phoneCountry"] == "+593"
    assert record["phoneNumber"] == "0991234567"
    assert record["street"] == "Av. Amazonas 123"
    assert record["city"] == "Quito"
    assert record["province"] == "Pichincha"
    assert record["deliveryInstructions"] == "Casa azul"


def test_normalize_records_numbers_errors_from_one():
    result = normalize_records(
        [
            {"firstName": "Ana", "lastName": "Diaz"},
            {"email": "x@x.com"},
            "not a record",
            {"firstName": "", "lastName": None},
        ]
    )

    assert len(result.valid_records) == 1
    assert result.row_errors == [
        "Record 2: missing first or last name; record skipped.",
        "Record 3: expected an object; record skipped.",
    ]


def test_read_upload_xlsx_stringifies_cells():
    content = build_xlsx(
        [
            ["Nombre", "Apellido", "Cédula", "Fecha"],
            ["Ana", "Diaz", 1712345678.0, datetime(2024, 3, 5, 10, 30)],
        ]
    )

    rows = read_upload(content, "clientes.xlsx")

    assert rows[1] == ["Ana", "Diaz", "1712345678", "2024-03-05"]


def test_read_upload_csv_sniffs_semicolons_and_bom():
    content = "\ufeffNombre;Apellido;Ciudad\nAna;Díaz;Quito\n".encode("utf-8")

    rows = read_upload(content, "clientes.csv")

    assert rows == [["Nombre", "Apellido", "Ciudad"], ["Ana", "Díaz", "Quito"]]


@pytest.mark.parametrize(("content", "filename"), [(b"", "a.xlsx"), (b"abc", "a.pdf"), (b"not a zip", "a.xlsx")])
def test_read_upload_rejects_bad_files(content, filename):
    with pytest.raises(HTTPException) as exc_info:
        read_upload(content, filename)

    assert exc_info.value.status_code == 400


def test_contact_helpers():
    assert split_full_name("  Ana   Maria Diaz ") == ("Ana", "Maria Diaz")
    assert split_full_name("Ana") == ("Ana", "")
    assert parse_phone_number("0991234567") == ("+593", "0991234567")
    assert parse_phone_number("+593 099-123-4567") == ("+593", "0991234567")
    assert parse_phone_number("") == ("", "")
    assert join_phone_number("+593", "0991234567") == "+5930991234567"
    assert join_phone_number("", "0991234567") == "0991234567"
    assert split_address("Calle 1") == {
        "street": "Calle 1",
        "city": "",
        "province": "",
        "deliveryInstructions": "",
    }


def test_full_name_does_not_override_explicit_name_parts():
    result = normalize_rows(
        [
            ["Nombre completo", "Nombre de pila", "Apellido"],
            ["Diaz", "", "Diaz"],
            ["Ana Maria", "Ana", ""],
        ]
    )

    assert [(r["firstName"], r["lastName"]) for r in result.valid_records] == [("", "Diaz"), ("Ana", "")]
