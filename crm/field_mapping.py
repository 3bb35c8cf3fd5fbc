from __future__ import annotations

from typing import Any

CANONICAL_FIELDS = (
    "firstName",
    "lastName",
    "name",
    "email",
    "phone",
    "phoneCountry",
    "phoneNumber",
    "idNumber",
    "address",
    "street",
    "city",
    "province",
    "deliveryInstructions",
    "source",
    "brand",
    "notes",
    "status",
)

# Keys are compared after strip() + lower(); accented and unaccented spellings
# are both listed because matching is exact.
_SYNONYMS: dict[str, tuple[str, ...]] = {
    "firstName": (
        "firstname", "first name", "first_name", "nombre", "nombres",
        "nombre de pila", "primer nombre",
    ),
    "lastName": (
        "lastname", "last name", "last_name", "apellido", "apellidos",
    ),
    "name": (
        "name", "full name", "fullname", "nombre completo", "cliente",
    ),
    "email": (
        "email", "e-mail", "correo", "correo electrónico", "correo electronico",
    ),
    "phone": (
        "phone", "teléfono", "telefono", "celular", "móvil", "movil", "whatsapp",
    ),
    "phoneCountry": (
        "phonecountry", "phone country", "phone_country", "código de país",
        "codigo de pais", "código país", "codigo pais", "país", "pais",
    ),
    "phoneNumber": (
        "phonenumber", "phone number", "phone_number", "número de teléfono",
        "numero de telefono", "número", "numero",
    ),
    "idNumber": (
        "idnumber", "id number", "id_number", "cédula", "cedula", "pasaporte",
        "cédula/pasaporte", "cedula/pasaporte", "id número", "id numero", "ruc",
    ),
    "address": (
        "address", "dirección completa", "direccion completa", "full address",
    ),
    "street": (
        "street", "calle", "dirección", "direccion",
    ),
    "city": ("city", "ciudad"),
    "province": ("province", "provincia"),
    "deliveryInstructions": (
        "deliveryinstructions", "delivery instructions", "delivery_instructions",
        "instrucciones de entrega", "instrucciones", "referencia",
    ),
    "source": ("source", "fuente", "origen", "canal"),
    "brand": ("brand", "marca"),
    "notes": ("notes", "notas", "observaciones", "comentarios"),
    "status": ("status", "estado"),
}

HEADER_SYNONYMS: dict[str, str] = {
    **{field.lower(): field for field in CANONICAL_FIELDS},
    **{synonym: field for field, synonyms in _SYNONYMS.items() for synonym in synonyms},
}


def map_header(header: Any) -> str:
    raw = "" if header is None else str(header)
    return HEADER_SYNONYMS.get(raw.strip().lower(), raw)


def map_record_keys(record: dict[str, Any]) -> dict[str, Any]:
    mapped: dict[str, Any] = {}
    for key, value in record.items():
        field = map_header(key)
        if field in mapped and _is_blank(value):
            continue
        mapped[field] = value
    return mapped


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""
