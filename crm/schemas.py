from __future__ import annotations

from typing import Any

from pydantic import BaseModel

# Fields are optional on purpose: handlers check them and answer 400, not 422.


class RecordsImport(BaseModel):
    records: Any = None
    type: Any = None


class ContactIn(BaseModel):
    firstName: str | None = None
    lastName: str | None = None
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    phoneCountry: str | None = None
    phoneNumber: str | None = None
    idNumber: str | None = None
    address: str | None = None
    street: str | None = None
    city: str | None = None
    province: str | None = None
    deliveryInstructions: str | None = None
    source: str | None = None
    brand: str | None = None
    notes: str | None = None


class LeadIn(ContactIn):
    status: str | None = None
    nextFollowUp: str | None = None


class LineItemIn(BaseModel):
    name: str | None = None
    category: str | None = None
    unitPrice: Any = None
    quantity: Any = 1
    brand: str | None = None


class SaleIn(BaseModel):
    customerId: Any = None
    amount: Any = None
    status: str | None = None
    paymentMethod: str | None = None
    brand: str | None = None
    notes: str | None = None
    items: list[LineItemIn] | None = None


class ProductIn(BaseModel):
    sku: str | None = None
    name: str | None = None
    price: Any = None
    stock: Any = None
    brand: str | None = None
    category: str | None = None
    productType: str | None = None
    parentId: Any = None
    attributes: Any = None


class WebhookIn(BaseModel):
    name: str | None = None
    url: str | None = None
    event: str | None = None
    active: bool = True


class CustomExportRequest(BaseModel):
    dataType: str | None = None
    dateStart: str | None = None
    dateEnd: str | None = None
    fields: list[str] | None = None
    filters: dict[str, Any] | None = None
    format: str | None = None
