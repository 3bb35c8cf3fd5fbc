from __future__ import annotations

import re

DEFAULT_PHONE_COUNTRY = "+593"

_PHONE_PARTS = re.compile(r"^(\d{1,4})(\d{6,15})$")
_NON_DIAL = re.compile(r"[^\d+]")
_NON_DIGIT = re.compile(r"\D")
_SEPARATED_PREFIX = re.compile(r"^\+(\d{1,4})[\s\-.]+(\d[\d\s\-.]{5,})$")


def full_name(first_name: str | None, last_name: str | None) -> str:
    first = (first_name or "").strip()
    last = (last_name or "").strip()
    if not first:
        return last
    if not last:
        return first
    return f"{first} {last}"


def split_full_name(name: str | None) -> tuple[str, str]:
    parts = (name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def parse_phone_number(raw: str | None) -> tuple[str, str]:
    """Split a dialable number into (country prefix, local number).

    An explicit separator after the prefix (``+593 0991234567``) is honoured.
    Numbers that cannot be split are kept whole under the default country,
    and a number with a leading trunk zero (``0991234567``) is treated as local.
    """
    text = (raw or "").strip()
    separated = _SEPARATED_PREFIX.match(text)
    if separated is not None:
        return f"+{separated.group(1)}", _NON_DIGIT.sub("", separated.group(2))

    cleaned = _NON_DIAL.sub("", text)
    digits = cleaned.lstrip("+")
    if not digits:
        return "", ""
    if not cleaned.startswith("+") and digits.startswith("0"):
        return DEFAULT_PHONE_COUNTRY, digits

    match = _PHONE_PARTS.match(digits)
    if match is None:
        return DEFAULT_PHONE_COUNTRY, digits
    return f"+{match.group(1)}", match.group(2)


def join_phone_number(country: str | None, number: str | None) -> str:
    clean_number = _NON_DIGIT.sub("", number or "")
    if not clean_number:
        return ""
    clean_country = _NON_DIGIT.sub("", country or "")
    return f"+{clean_country}{clean_number}" if clean_country else clean_number


def split_address(address: str | None) -> dict[str, str]:
    # "street, city, province\ndelivery instructions"
    lines = (address or "").replace("\r\n", "\n").split("\n")
    parts = [p.strip() for p in lines[0].split(",")]
    street = parts[0] if len(parts) > 0 else ""
    city = parts[1] if len(parts) > 1 else ""
    province = ", ".join(p for p in parts[2:] if p)
    instructions = " ".join(line.strip() for line in lines[1:] if line.strip())
    return {
        "street": street,
        "city": city,
        "province": province,
        "deliveryInstructions": instructions,
    }
