from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

# Historical key names seen in product attribute blobs.
ATTRIBUTE_SYNONYMS = {
    "size": "size",
    "talla": "size",
    "tamaño": "size",
    "tamano": "size",
    "pa_talla": "size",
    "pa_size": "size",
    "color": "color",
    "colour": "color",
    "pa_color": "color",
    "pa_colour": "color",
}


def canonical_attribute(name: Any) -> str:
    key = str(name or "").strip().lower()
    return ATTRIBUTE_SYNONYMS.get(key, key)


def _option_text(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v).strip() for v in value if str(v).strip())
    return "" if value is None else str(value).strip()


def parse_variant_attributes(raw: Any) -> dict[str, str]:
    """Parse a product's attribute blob into ``{"size": ..., "color": ...}``.

    Accepts a JSON string, a mapping, or a list of ``{"name", "option"}``
    entries (``options`` is accepted for list-valued attributes). Unreadable
    input yields an empty dict.
    """
    value = raw
    if isinstance(raw, (bytes, str)):
        if not raw.strip():
            return {}
        try:
            value = json.loads(raw)
        except ValueError:
            logger.debug("Ignoring unparseable product attributes: %r", raw)
            return {}

    parsed: dict[str, str] = {}
    if isinstance(value, dict):
        for key, option in value.items():
            name = canonical_attribute(key)
            text_value = _option_text(option)
            if name and text_value:
                parsed[name] = text_value
    elif isinstance(value, list):
        for entry in value:
            if not isinstance(entry, dict):
                continue
            name = canonical_attribute(entry.get("name") or entry.get("slug"))
            text_value = _option_text(entry.get("option", entry.get("options")))
            if name and text_value:
                parsed[name] = text_value
    return parsed


def dump_variant_attributes(attributes: dict[str, str]) -> str | None:
    if not attributes:
        return None
    return json.dumps(attributes, ensure_ascii=False, sort_keys=True)
