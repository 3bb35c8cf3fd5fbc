from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

NOTES_SEPARATOR = "\n\nNotas: "

_ITEM_LINE = re.compile(
    r"^(?P<name>.+?) \((?P<category>[^()]*)\) - \$(?P<price>-?\d+(?:\.\d+)?) x (?P<quantity>\d+)$"
)


@dataclass
class LineItem:
    name: str
    unit_price: Decimal
    quantity: int = 1
    category: str = ""
    brand: str | None = None

    @property
    def total(self) -> Decimal:
        return self.unit_price * self.quantity


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip() or "0")
        except InvalidOperation as exc:
            raise ValueError(f"Invalid amount: {value!r}") from exc
    # NaN and Infinity parse but cannot be compared or stored.
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount


def items_total(items: list[LineItem]) -> Decimal:
    return sum((item.total for item in items), Decimal("0")).quantize(Decimal("0.01"))


def format_line_item(item: LineItem) -> str:
    return f"{item.name} ({item.category}) - ${item.unit_price:.2f} x {item.quantity}"


def format_line_items_note(items: list[LineItem], notes: str | None = None) -> str:
    """Render items in the legacy one-line-per-product notes format."""
    text = "\n".join(format_line_item(item) for item in items)
    if notes:
        text += f"{NOTES_SEPARATOR}{notes}"
    return text


def parse_line_items_note(text: str | None) -> tuple[list[LineItem], str]:
    """Recover line items from a legacy notes field.

    Returns the parsed items and whatever free text is left over: the part after
    the ``Notas:`` marker plus any lines that are not item lines. Per-item brand
    is not part of the legacy format and comes back as ``None``.
    """
    body, _, trailing = (text or "").replace("\r\n", "\n").partition(NOTES_SEPARATOR)
    items: list[LineItem] = []
    leftover: list[str] = []
    for line in body.split("\n"):
        match = _ITEM_LINE.match(line.strip())
        if match is None:
            if line.strip():
                leftover.append(line.strip())
            continue
        items.append(
            LineItem(
                name=match.group("name"),
                category=match.group("category"),
                unit_price=Decimal(match.group("price")),
                quantity=int(match.group("quantity")),
            )
        )
    if trailing.strip():
        leftover.append(trailing.strip())
    return items, "\n".join(leftover)
