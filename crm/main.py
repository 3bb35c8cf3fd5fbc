import logging
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

from fastapi import BackgroundTasks, Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import Response
from fastapi.templating import Jinja2Templates
from sqlalchemy import text
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from crm import models  # noqa: F401  registers tables on Base.metadata
from crm import reports, webhooks
from crm.config import Settings, get_settings, settings as app_settings
from crm.database import Base, SessionLocal, engine
from crm.line_items import LineItem, format_line_items_note, items_total, parse_line_items_note, to_decimal
from crm.product_attributes import dump_variant_attributes, parse_variant_attributes
from crm.queries import RecordFilters, fetch_customers, fetch_leads, fetch_sale_items, fetch_sales
from crm.row_normalizer import NormalizedRows, clean_text, normalize_records, normalize_rows, read_upload
from crm.schemas import ContactIn, CustomExportRequest, LeadIn, ProductIn, RecordsImport, SaleIn, WebhookIn
from crm.tabular_export import (
    ALL_COLUMNS,
    CSV_MEDIA_TYPE,
    ENTITY_COLUMNS,
    XLSX_MEDIA_TYPE,
    build_csv,
    build_xlsx,
    format_customer_row,
    format_lead_row,
    format_sale_row,
    tag_rows,
)
from crm.upsert import (
    LEAD_STATUSES,
    ImportResult,
    import_records,
    insert_record,
    normalize_entity_type,
    normalize_lead_status,
)

logging.basicConfig(
    level=app_settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Small Business CRM")
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))
logger = logging.getLogger(__name__)

EXPORT_FORMATS = {"xlsx": XLSX_MEDIA_TYPE, "csv": CSV_MEDIA_TYPE}
EXPORT_FILENAMES = {
    "customers": "clientes",
    "sales": "ventas",
    "leads": "leads",
    "all": "reporte_completo",
}
CUSTOM_EXPORT_FILENAMES = {
    "customers": "clientes_personalizados",
    "leads": "leads_personalizados",
    "sales": "ventas_personalizadas",
}
CUSTOM_EXPORT_DEFAULT_FIELDS = {
    "customers": ["id", "name", "email", "phone", "city", "province", "brand", "source", "createdAt"],
    "leads": ["id", "name", "email", "phone", "status", "city", "province", "brand", "source", "createdAt"],
    "sales": ["id", "customerId", "customerName", "amount", "status", "paymentMethod", "brand", "createdAt"],
}
PRODUCT_TYPES = {"simple", "variable", "variation"}


@app.on_event("startup")
def ensure_tables():
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def parse_optional_int(value, field_name: str) -> int | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    if not cleaned:
        return None
    try:
        return int(cleaned)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {field_name}") from exc


def parse_optional_date(value: str | None, field_name: str) -> date | None:
    cleaned = (value or "").strip()
    if not cleaned:
        return None
    try:
        return date.fromisoformat(cleaned[:10])
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {field_name}. Use YYYY-MM-DD.") from exc


def parse_date_range(date_start: str | None, date_end: str | None) -> tuple[date | None, date | None]:
    start = parse_optional_date(date_start, "dateStart")
    end = parse_optional_date(date_end, "dateEnd")
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="dateStart must be on or before dateEnd")
    return start, end


def parse_amount(value, field_name: str) -> Decimal | None:
    if value is None or str(value).strip() == "":
        return None
    try:
        amount = to_decimal(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {field_name}") from exc
    if amount < 0:
        raise HTTPException(status_code=400, detail=f"{field_name} cannot be negative")
    return amount


def json_safe(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: json_safe(v) for k, v in value.items()}
    if isinstance(value, list):
        return [json_safe(v) for v in value]
    return value


def fetch_record(db: Session, table: str, record_id: int) -> dict:
    row = db.execute(
        text(f"SELECT * FROM {table} WHERE id = :record_id"),
        {"record_id": record_id},
    ).mappings().first()
    return dict(row) if row else {}


def ensure_customer_exists(db: Session, customer_id: int):
    exists = db.execute(
        text("SELECT 1 FROM customers WHERE id = :customer_id"),
        {"customer_id": customer_id},
    ).scalar()
    if not exists:
        raise HTTPException(status_code=400, detail="Invalid customerId")


def file_response(content: bytes, filename: str, export_format: str) -> Response:
    return Response(
        content=content,
        media_type=EXPORT_FORMATS[export_format],
        headers={
            "Content-Disposition": f'attachment; filename="{filename}.{export_format}"',
            "Cache-Control": "no-cache, no-store, must-revalidate",
        },
    )


def resolve_export_format(value: str | None) -> str:
    export_format = (value or "xlsx").strip().lower() or "xlsx"
    if export_format not in EXPORT_FORMATS:
        raise HTTPException(status_code=400, detail="Invalid format. Use xlsx or csv.")
    return export_format


def render_export(rows, columns, filename: str, export_format: str, settings: Settings) -> Response:
    if export_format == "csv":
        content = build_csv(rows, columns)
    else:
        content = build_xlsx(rows, columns, settings.export_sheet_name)
    logger.info("Exporting %s rows to %s.%s (%s bytes)", len(rows), filename, export_format, len(content))
    return file_response(content, filename, export_format)


def formatted_rows(db: Session, entity: str, filters: RecordFilters) -> list[dict[str, str]]:
    if entity == "customers":
        return [format_customer_row(r) for r in fetch_customers(db, filters)]
    if entity == "leads":
        return [format_lead_row(r) for r in fetch_leads(db, filters)]
    sales = fetch_sales(db, filters)
    items = fetch_sale_items(db, [int(s["id"]) for s in sales])
    return [format_sale_row(s, items.get(int(s["id"]), [])) for s in sales]


def run_import(db: Session, normalized: NormalizedRows, entity_type: str, settings: Settings) -> ImportResult:
    return import_records(
        db,
        normalized.valid_records,
        entity_type,
        settings=settings,
        row_errors=normalized.row_errors,
    )


async def read_spreadsheet_upload(upload: UploadFile | None, settings: Settings) -> list[list[str]]:
    if upload is None or not upload.filename:
        raise HTTPException(status_code=400, detail="A spreadsheet file is required")
    content = await upload.read()
    if len(content) > settings.import_max_bytes:
        raise HTTPException(
            status_code=400,
            detail=f"File is larger than the {settings.import_max_bytes // (1024 * 1024)} MB limit",
        )
    return read_upload(content, upload.filename)


@app.get("/health")
def health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"ok": True}


# Import


@app.post("/api/configuration/csv/process")
def process_records(
    payload: RecordsImport,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    if not payload.records or not payload.type:
        raise HTTPException(status_code=400, detail="records and type are required")
    if not isinstance(payload.records, list):
        raise HTTPException(status_code=400, detail="records must be a list of objects")

    entity_type = normalize_entity_type(payload.type)
    result = run_import(db, normalize_records(payload.records), entity_type, settings)
    return result.to_response()


@app.post("/api/configuration/spreadsheet/process")
async def process_spreadsheet(
    file: UploadFile | None = File(None),
    entity_type: str = Form("", alias="type"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    entity_type = normalize_entity_type(entity_type)
    rows = await read_spreadsheet_upload(file, settings)
    result = run_import(db, normalize_rows(rows), entity_type, settings)
    return result.to_response()


@app.get("/import")
def import_page(request: Request):
    return templates.TemplateResponse(
        request,
        "import.html",
        {"request": request, "result": None, "error": "", "uploaded_name": "", "entity_type": "customers"},
    )


@app.post("/import/spreadsheet")
async def import_spreadsheet_page(
    request: Request,
    spreadsheet_file: UploadFile | None = File(None),
    entity_type: str = Form("customers"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    context = {
        "result": None,
        "error": "",
        "uploaded_name": spreadsheet_file.filename if spreadsheet_file else "",
        "entity_type": entity_type,
    }
    try:
        resolved = normalize_entity_type(entity_type)
        rows = await read_spreadsheet_upload(spreadsheet_file, settings)
        result = run_import(db, normalize_rows(rows), resolved, settings)
    except HTTPException as exc:
        db.rollback()
        context["error"] = str(exc.detail)
        return templates.TemplateResponse(request, "import.html", {"request": request, **context}, status_code=400)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Unexpected database error during spreadsheet import")
        context["error"] = "Unexpected import database error."
        return templates.TemplateResponse(request, "import.html", {"request": request, **context}, status_code=500)

    context["result"] = result.to_response()
    return templates.TemplateResponse(request, "import.html", {"request": request, **context})


# Export


def _export_filters(date_start, date_end, brand, province, city, source, status) -> RecordFilters:
    start, end = parse_date_range(date_start, date_end)
    return RecordFilters(
        date_start=start,
        date_end=end,
        brand=brand.strip(),
        province=province.strip(),
        city=city.strip(),
        source=source.strip(),
        status=status.strip(),
    )


@app.get("/api/export/{entity}")
def export_entity(
    entity: str,
    date_start: str = Query(default="", alias="dateStart"),
    date_end: str = Query(default="", alias="dateEnd"),
    brand: str = Query(default=""),
    province: str = Query(default=""),
    city: str = Query(default=""),
    source: str = Query(default=""),
    status: str = Query(default=""),
    export_format: str = Query(default="xlsx", alias="format"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    if entity not in EXPORT_FILENAMES:
        raise HTTPException(status_code=404, detail="Unknown export")
    fmt = resolve_export_format(export_format)
    filters = _export_filters(date_start, date_end, brand, province, city, source, status)

    try:
        if entity == "all":
            # The combined report only honours the date range and brand.
            combined = RecordFilters(date_start=filters.date_start, date_end=filters.date_end, brand=filters.brand)
            rows = []
            for kind in ("customers", "sales", "leads"):
                rows.extend(tag_rows(formatted_rows(db, kind, combined), kind))
            columns = ALL_COLUMNS
        else:
            rows = formatted_rows(db, entity, filters)
            columns = ENTITY_COLUMNS[entity]
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Unexpected database error while exporting %s", entity)
        raise HTTPException(status_code=500, detail=f"Could not export {entity}") from exc

    return render_export(rows, columns, EXPORT_FILENAMES[entity], fmt, settings)


@app.post("/api/export/custom")
def export_custom(
    payload: CustomExportRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    data_type = clean_text(payload.dataType).lower()
    if not data_type:
        raise HTTPException(status_code=400, detail="dataType is required")
    if data_type not in CUSTOM_EXPORT_FILENAMES:
        raise HTTPException(status_code=400, detail=f"Invalid dataType '{payload.dataType}'")
    fmt = resolve_export_format(payload.format)

    available = {column.field: column for column in ENTITY_COLUMNS[data_type]}
    requested = [f for f in (payload.fields or []) if clean_text(f)] or CUSTOM_EXPORT_DEFAULT_FIELDS[data_type]
    unknown = [f for f in requested if f not in available]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown fields for {data_type}: {', '.join(unknown)}")
    columns = [available[f] for f in requested]

    start, end = parse_date_range(payload.dateStart, payload.dateEnd)
    filters = RecordFilters.from_mapping(payload.filters, date_start=start, date_end=end)
    try:
        rows = formatted_rows(db, data_type, filters)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Unexpected database error during custom export of %s", data_type)
        raise HTTPException(status_code=500, detail="Could not build custom export") from exc

    if not rows:
        raise HTTPException(status_code=404, detail="No data found to export")
    return render_export(rows, columns, CUSTOM_EXPORT_FILENAMES[data_type], fmt, settings)


# Reports


def _report_filters(date_start: str, date_end: str, brand: str) -> RecordFilters:
    start, end = parse_date_range(date_start, date_end)
    return RecordFilters(date_start=start, date_end=end, brand=brand.strip())


@app.get("/api/reports/sources")
def report_sources(
    entity: str = Query(default="customers"),
    date_start: str = Query(default="", alias="dateStart"),
    date_end: str = Query(default="", alias="dateEnd"),
    brand: str = Query(default=""),
    db: Session = Depends(get_db),
):
    filters = _report_filters(date_start, date_end, brand)
    if entity == "customers":
        rows = fetch_customers(db, filters)
    elif entity == "leads":
        rows = fetch_leads(db, filters)
    else:
        raise HTTPException(status_code=400, detail="entity must be customers or leads")
    return {"items": reports.group_counts(rows, "source")}


@app.get("/api/reports/locations")
def report_locations(
    level: str = Query(default="province"),
    date_start: str = Query(default="", alias="dateStart"),
    date_end: str = Query(default="", alias="dateEnd"),
    brand: str = Query(default=""),
    db: Session = Depends(get_db),
):
    if level not in {"province", "city"}:
        raise HTTPException(status_code=400, detail="level must be province or city")
    filters = _report_filters(date_start, date_end, brand)
    customers = fetch_customers(db, filters)
    sales = fetch_sales(db, RecordFilters(brand=filters.brand))
    return {"items": reports.location_stats(customers, sales, level)}


@app.get("/api/reports/brands")
def report_brands(
    date_start: str = Query(default="", alias="dateStart"),
    date_end: str = Query(default="", alias="dateEnd"),
    db: Session = Depends(get_db),
):
    sales = fetch_sales(db, _report_filters(date_start, date_end, ""))
    return {"items": reports.brand_revenue(sales)}


@app.get("/api/reports/monthly")
def report_monthly(
    entity: str = Query(default="sales"),
    date_start: str = Query(default="", alias="dateStart"),
    date_end: str = Query(default="", alias="dateEnd"),
    brand: str = Query(default=""),
    db: Session = Depends(get_db),
):
    filters = _report_filters(date_start, date_end, brand)
    if entity == "sales":
        return {"items": reports.monthly_buckets(fetch_sales(db, filters), value_key="amount")}
    if entity == "customers":
        return {"items": reports.monthly_buckets(fetch_customers(db, filters))}
    if entity == "leads":
        return {"items": reports.monthly_buckets(fetch_leads(db, filters))}
    raise HTTPException(status_code=400, detail="entity must be sales, customers or leads")


@app.get("/api/reports/summary")
def report_summary(
    date_start: str = Query(default="", alias="dateStart"),
    date_end: str = Query(default="", alias="dateEnd"),
    brand: str = Query(default=""),
    db: Session = Depends(get_db),
):
    filters = _report_filters(date_start, date_end, brand)
    all_customers = fetch_customers(db, RecordFilters(brand=filters.brand))
    return reports.dashboard_metrics(
        all_customers,
        fetch_leads(db, filters),
        fetch_sales(db, filters),
        since=filters.date_start.isoformat() if filters.date_start else None,
    )


# Customers and leads


def _contact_record(payload: ContactIn) -> dict[str, str]:
    normalized = normalize_records([payload.model_dump(exclude_none=True)])
    if not normalized.valid_records:
        raise HTTPException(status_code=400, detail="firstName or lastName is required")
    return normalized.valid_records[0]


@app.get("/api/customers")
def list_customers(db: Session = Depends(get_db)):
    return {"items": json_safe(fetch_customers(db))}


@app.post("/api/customers")
def create_customer(
    payload: ContactIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    record = _contact_record(payload)
    try:
        customer_id = insert_record(db, "customers", record, settings)
        db.commit()
    except (IntegrityError, DataError) as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail="Could not save customer with the provided values") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Unexpected database error while creating customer")
        raise HTTPException(status_code=500, detail="Unexpected database error while creating customer") from exc

    customer = json_safe(fetch_record(db, "customers", customer_id))
    urls = webhooks.active_webhook_urls(db, "new_customer")
    if urls:
        background_tasks.add_task(
            webhooks.deliver,
            urls,
            {"event": "new_customer", "data": customer},
            settings.webhook_timeout_seconds,
        )
    return customer


@app.get("/api/leads")
def list_leads(
    status: str = Query(default=""),
    db: Session = Depends(get_db),
):
    return {"items": json_safe(fetch_leads(db, RecordFilters(status=status.strip())))}


@app.post("/api/leads")
def create_lead(
    payload: LeadIn,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    status = normalize_lead_status(payload.status or "new")
    if status not in LEAD_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status. Use one of: {', '.join(LEAD_STATUSES)}")
    follow_up = parse_optional_date(payload.nextFollowUp, "nextFollowUp")

    record = _contact_record(payload)
    record["status"] = status
    try:
        lead_id = insert_record(db, "leads", record, settings)
        if follow_up is not None:
            db.execute(
                text("UPDATE leads SET next_follow_up = :follow_up WHERE id = :lead_id"),
                {"follow_up": follow_up.isoformat(), "lead_id": lead_id},
            )
        db.commit()
    except (IntegrityError, DataError) as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail="Could not save lead with the provided values") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Unexpected database error while creating lead")
        raise HTTPException(status_code=500, detail="Unexpected database error while creating lead") from exc

    return json_safe(fetch_record(db, "leads", lead_id))


# Sales


def _line_items(payload: SaleIn, default_brand: str | None) -> tuple[list[LineItem], str]:
    notes = clean_text(payload.notes)
    if not payload.items:
        # Older clients send the items flattened into the notes text.
        items, notes = parse_line_items_note(notes)
        for item in items:
            item.brand = default_brand
        return items, notes

    items = []
    for index, item in enumerate(payload.items, start=1):
        name = clean_text(item.name)
        if not name:
            raise HTTPException(status_code=400, detail=f"Item {index}: name is required")
        unit_price = parse_amount(item.unitPrice, f"price for item {index}")
        quantity = parse_optional_int(item.quantity, f"quantity for item {index}")
        if unit_price is None:
            raise HTTPException(status_code=400, detail=f"Item {index}: unitPrice is required")
        if quantity is None or quantity < 1:
            raise HTTPException(status_code=400, detail=f"Item {index}: quantity must be at least 1")
        items.append(
            LineItem(
                name=name,
                category=clean_text(item.category),
                unit_price=unit_price,
                quantity=quantity,
                brand=clean_text(item.brand) or default_brand,
            )
        )
    return items, notes


def _sale_response(db: Session, sale_id: int) -> dict:
    matches = fetch_sales(db, sale_id=sale_id)
    if not matches:
        return {}
    sale = matches[0]
    items = fetch_sale_items(db, [sale_id]).get(sale_id, [])
    sale["items"] = [
        {
            "name": i.name,
            "category": i.category,
            "unitPrice": i.unit_price,
            "quantity": i.quantity,
            "brand": i.brand,
            "total": i.total,
        }
        for i in items
    ]
    return json_safe(sale)


@app.get("/api/sales")
def list_sales(db: Session = Depends(get_db)):
    sales = fetch_sales(db)
    items = fetch_sale_items(db, [int(s["id"]) for s in sales])
    for sale in sales:
        sale_items = items.get(int(sale["id"]), [])
        sale["items"] = [
            {"name": i.name, "category": i.category, "unitPrice": i.unit_price, "quantity": i.quantity, "brand": i.brand}
            for i in sale_items
        ]
        sale["itemsNote"] = format_line_items_note(sale_items) if sale_items else ""
    return {"items": json_safe(sales)}


@app.post("/api/sales")
def create_sale(
    payload: SaleIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    customer_id = parse_optional_int(payload.customerId, "customerId")
    if customer_id is None:
        raise HTTPException(status_code=400, detail="customerId is required")
    ensure_customer_exists(db, customer_id)

    brand = clean_text(payload.brand) or settings.default_brand
    items, notes = _line_items(payload, brand)
    amount = parse_amount(payload.amount, "amount")
    if amount is None:
        if not items:
            raise HTTPException(status_code=400, detail="amount or items are required")
        amount = items_total(items)

    try:
        sale_id = db.execute(
            text(
                """
                INSERT INTO sales (customer_id, amount, status, payment_method, brand, notes, created_at, updated_at)
                VALUES (:customer_id, :amount, :status, NULLIF(:payment_method, ''), :brand, NULLIF(:notes, ''), NOW(), NOW())
                RETURNING id
                """
            ),
            {
                "customer_id": customer_id,
                "amount": str(amount),
                "status": clean_text(payload.status) or "completed",
                "payment_method": clean_text(payload.paymentMethod),
                "brand": brand,
                "notes": notes,
            },
        ).scalar_one()
        for position, item in enumerate(items, start=1):
            db.execute(
                text(
                    """
                    INSERT INTO sale_items (sale_id, position, name, category, unit_price, quantity, brand)
                    VALUES (:sale_id, :position, :name, NULLIF(:category, ''), :unit_price, :quantity, :brand)
                    """
                ),
                {
                    "sale_id": sale_id,
                    "position": position,
                    "name": item.name,
                    "category": item.category,
                    "unit_price": str(item.unit_price),
                    "quantity": item.quantity,
                    "brand": item.brand,
                },
            )
        db.commit()
    except (IntegrityError, DataError) as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail="Could not save sale with the provided values") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Unexpected database error while creating sale")
        raise HTTPException(status_code=500, detail="Unexpected database error while creating sale") from exc

    sale = _sale_response(db, int(sale_id))
    urls = webhooks.active_webhook_urls(db, "new_sale")
    if urls:
        background_tasks.add_task(
            webhooks.deliver,
            urls,
            {"event": "new_sale", "data": sale},
            settings.webhook_timeout_seconds,
        )
    return sale


# Products


def _product_response(row) -> dict:
    product = dict(row)
    product["attributes"] = parse_variant_attributes(product.get("attributes"))
    return json_safe(product)


@app.get("/api/products")
def list_products(db: Session = Depends(get_db)):
    rows = db.execute(
        text(
            """
            SELECT id, sku, name, price, stock, brand, category, product_type, parent_id,
                   attributes, created_at, updated_at
            FROM products
            ORDER BY name, sku
            """
        )
    ).mappings().all()
    return {"items": [_product_response(r) for r in rows]}


@app.post("/api/products")
def create_product(
    payload: ProductIn,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    sku = clean_text(payload.sku)
    name = clean_text(payload.name)
    if not sku or not name:
        raise HTTPException(status_code=400, detail="sku and name are required")
    price = parse_amount(payload.price, "price")
    if price is None:
        raise HTTPException(status_code=400, detail="price is required")
    stock = parse_optional_int(payload.stock, "stock") or 0
    product_type = clean_text(payload.productType).lower() or "simple"
    if product_type not in PRODUCT_TYPES:
        raise HTTPException(status_code=400, detail="productType must be simple, variable or variation")
    parent_id = parse_optional_int(payload.parentId, "parentId")
    if product_type == "variation" and parent_id is None:
        raise HTTPException(status_code=400, detail="A variation needs a parentId")
    if parent_id is not None:
        exists = db.execute(text("SELECT 1 FROM products WHERE id = :parent_id"), {"parent_id": parent_id}).scalar()
        if not exists:
            raise HTTPException(status_code=400, detail="Invalid parentId")

    try:
        product_id = db.execute(
            text(
                """
                INSERT INTO products (
                  sku, name, price, stock, brand, category, product_type, parent_id, attributes,
                  created_at, updated_at
                )
                VALUES (
                  :sku, :name, :price, :stock, :brand, NULLIF(:category, ''), :product_type, :parent_id,
                  :attributes, NOW(), NOW()
                )
                RETURNING id
                """
            ),
            {
                "sku": sku,
                "name": name,
                "price": str(price),
                "stock": stock,
                "brand": clean_text(payload.brand) or settings.default_brand,
                "category": clean_text(payload.category),
                "product_type": product_type,
                "parent_id": parent_id,
                "attributes": dump_variant_attributes(parse_variant_attributes(payload.attributes)),
            },
        ).scalar_one()
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail="A product with that SKU already exists") from exc
    except DataError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail="Could not save product with the provided values") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Unexpected database error while creating product")
        raise HTTPException(status_code=500, detail="Unexpected database error while creating product") from exc

    return _product_response(fetch_record(db, "products", int(product_id)))


# Webhooks


@app.get("/api/webhooks")
def list_webhooks(db: Session = Depends(get_db)):
    rows = db.execute(
        text("SELECT id, name, url, event, active, created_at FROM webhooks ORDER BY id")
    ).mappings().all()
    return {"items": [json_safe({**dict(r), "active": bool(r["active"])}) for r in rows]}


@app.post("/api/webhooks")
def create_webhook(payload: WebhookIn, db: Session = Depends(get_db)):
    name = clean_text(payload.name)
    url = clean_text(payload.url)
    event = clean_text(payload.event)
    if not name or not url or not event:
        raise HTTPException(status_code=400, detail="name, url and event are required")
    if not url.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="url must start with http:// or https://")
    if event not in webhooks.WEBHOOK_EVENTS:
        raise HTTPException(status_code=400, detail="event must be new_customer or new_sale")

    try:
        webhook_id = db.execute(
            text(
                """
                INSERT INTO webhooks (name, url, event, active, created_at)
                VALUES (:name, :url, :event, :active, NOW())
                RETURNING id
                """
            ),
            {"name": name, "url": url, "event": event, "active": payload.active},
        ).scalar_one()
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Unexpected database error while creating webhook")
        raise HTTPException(status_code=500, detail="Unexpected database error while creating webhook") from exc

    webhook = fetch_record(db, "webhooks", int(webhook_id))
    webhook["active"] = bool(webhook["active"])
    return json_safe(webhook)


@app.delete("/api/webhooks/{webhook_id}", status_code=204)
def delete_webhook(webhook_id: int, db: Session = Depends(get_db)):
    try:
        deleted = db.execute(
            text("DELETE FROM webhooks WHERE id = :webhook_id RETURNING id"),
            {"webhook_id": webhook_id},
        ).scalar()
        if deleted is None:
            raise HTTPException(status_code=404, detail="Webhook not found")
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Unexpected database error while deleting webhook")
        raise HTTPException(status_code=500, detail="Unexpected database error while deleting webhook") from exc
    return Response(status_code=204)
