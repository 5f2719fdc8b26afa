# Overview: Service-layer operations for reporting; read-only aggregates over sales and stock.

"""
All sales figures count completed sales only; cancelled sales are excluded.

Period bucketing happens in Python rather than with dialect-specific SQL date
functions, so the same report runs on SQLite and PostgreSQL.
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timedelta

from sqlalchemy import func

from ..errors import InvalidInputError
from ..extensions import db
from ..models import Customer, Inventory, Product, Sale, SaleItem
from ..time_utils import parse_iso_datetime, to_utc_z

GROUP_BY_CHOICES = ("day", "week", "month")
UNCATEGORIZED = "Uncategorized"


def _parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    try:
        start_dt = parse_iso_datetime(start) if start else None
        end_dt = parse_iso_datetime(end) if end else None
    except ValueError:
        raise InvalidInputError("start and end must be ISO-8601 dates")
    # A bare end date means "through the end of that day"
    if end and end_dt is not None and len(end.strip()) == 10:
        end_dt = end_dt + timedelta(days=1) - timedelta(microseconds=1)
    if start_dt and end_dt and start_dt > end_dt:
        raise InvalidInputError("start must not be after end")
    return start_dt, end_dt


def _completed_sales(start_dt: datetime | None, end_dt: datetime | None):
    query = db.session.query(Sale).filter(Sale.status == "completed")
    if start_dt:
        query = query.filter(Sale.sale_date >= start_dt)
    if end_dt:
        query = query.filter(Sale.sale_date <= end_dt)
    return query


def period_key(dt: datetime, group_by: str) -> str:
    if group_by == "day":
        return dt.strftime("%Y-%m-%d")
    if group_by == "week":
        year, week, _ = dt.isocalendar()
        return f"{year}-W{week:02d}"
    if group_by == "month":
        return dt.strftime("%Y-%m")
    raise InvalidInputError("group_by must be day, week, or month", {"allowed": list(GROUP_BY_CHOICES)})


def _range_dict(start_dt, end_dt) -> dict:
    return {"start": to_utc_z(start_dt), "end": to_utc_z(end_dt)}


def sales_report(*, start: str | None = None, end: str | None = None) -> dict:
    """Summary totals plus a per-day breakdown."""
    start_dt, end_dt = _parse_range(start, end)
    sales = _completed_sales(start_dt, end_dt).order_by(Sale.sale_date.asc()).all()

    items_query = (
        db.session.query(func.coalesce(func.sum(SaleItem.quantity), 0))
        .join(Sale, SaleItem.sale_id == Sale.id)
        .filter(Sale.id.in_([s.id for s in sales]))
    )
    items_sold = int(items_query.scalar() or 0) if sales else 0

    daily: "OrderedDict[str, dict]" = OrderedDict()
    for sale in sales:
        bucket = daily.setdefault(period_key(sale.sale_date, "day"), {"sales_count": 0, "total_cents": 0})
        bucket["sales_count"] += 1
        bucket["total_cents"] += sale.total_cents

    total = sum(s.total_cents for s in sales)
    return {
        **_range_dict(start_dt, end_dt),
        "summary": {
            "sales_count": len(sales),
            "items_sold": items_sold,
            "subtotal_cents": sum(s.subtotal_cents for s in sales),
            "tax_cents": sum(s.tax_cents for s in sales),
            "discount_cents": sum(s.discount_cents for s in sales),
            "total_cents": total,
            "average_sale_cents": total // len(sales) if sales else 0,
        },
        "daily": [{"date": day, **values} for day, values in daily.items()],
    }


def inventory_status() -> dict:
    """Stock position overall and by category. Value uses cost, falling back to price."""
    rows = db.session.query(Inventory, Product).join(Product, Inventory.product_id == Product.id).all()

    by_category: dict[str, dict] = {}
    totals = {"items": 0, "units": 0, "stock_value_cents": 0, "low_stock_count": 0, "out_of_stock_count": 0}
    for inventory, product in rows:
        unit_value = product.cost_cents if product.cost_cents is not None else product.price_cents
        value = inventory.quantity * unit_value
        label = product.category or UNCATEGORIZED
        bucket = by_category.setdefault(label, {"category": label, "items": 0, "units": 0, "stock_value_cents": 0})
        bucket["items"] += 1
        bucket["units"] += inventory.quantity
        bucket["stock_value_cents"] += value

        totals["items"] += 1
        totals["units"] += inventory.quantity
        totals["stock_value_cents"] += value
        if inventory.quantity == 0:
            totals["out_of_stock_count"] += 1
        if inventory.is_low_stock:
            totals["low_stock_count"] += 1

    return {
        "summary": totals,
        "by_category": sorted(by_category.values(), key=lambda b: b["category"]),
    }


def low_stock() -> list[dict]:
    rows = (
        db.session.query(Inventory)
        .join(Product, Inventory.product_id == Product.id)
        .filter(Inventory.quantity <= Inventory.min_stock_level)
        .order_by(Inventory.quantity.asc(), Product.name.asc())
        .all()
    )
    return [
        {
            **inventory.to_dict(include_product=False),
            "product_name": inventory.product.name,
            "shortfall": inventory.min_stock_level - inventory.quantity,
        }
        for inventory in rows
    ]


def top_products(*, start: str | None = None, end: str | None = None, limit: int = 10) -> dict:
    start_dt, end_dt = _parse_range(start, end)
    if limit < 1:
        raise InvalidInputError("limit must be >= 1")

    quantity = func.sum(SaleItem.quantity).label("quantity_sold")
    revenue = func.sum(SaleItem.subtotal_cents).label("revenue_cents")
    query = (
        db.session.query(Product.id, Product.name, Product.category, quantity, revenue)
        .join(SaleItem, SaleItem.product_id == Product.id)
        .join(Sale, SaleItem.sale_id == Sale.id)
        .filter(Sale.status == "completed")
    )
    if start_dt:
        query = query.filter(Sale.sale_date >= start_dt)
    if end_dt:
        query = query.filter(Sale.sale_date <= end_dt)

    rows = (
        query.group_by(Product.id, Product.name, Product.category)
        .order_by(quantity.desc(), Product.id.asc())
        .limit(limit)
        .all()
    )
    return {
        **_range_dict(start_dt, end_dt),
        "rows": [
            {
                "product_id": row.id,
                "name": row.name,
                "category": row.category,
                "quantity_sold": int(row.quantity_sold or 0),
                "revenue_cents": int(row.revenue_cents or 0),
            }
            for row in rows
        ],
    }


def revenue_report(*, start: str | None = None, end: str | None = None, group_by: str = "day") -> dict:
    if group_by not in GROUP_BY_CHOICES:
        raise InvalidInputError("group_by must be day, week, or month", {"allowed": list(GROUP_BY_CHOICES)})
    start_dt, end_dt = _parse_range(start, end)
    sales = _completed_sales(start_dt, end_dt).order_by(Sale.sale_date.asc()).all()

    periods: "OrderedDict[str, dict]" = OrderedDict()
    for sale in sales:
        bucket = periods.setdefault(
            period_key(sale.sale_date, group_by),
            {"sales_count": 0, "revenue_cents": 0, "tax_cents": 0, "discount_cents": 0},
        )
        bucket["sales_count"] += 1
        bucket["revenue_cents"] += sale.total_cents
        bucket["tax_cents"] += sale.tax_cents
        bucket["discount_cents"] += sale.discount_cents

    return {
        **_range_dict(start_dt, end_dt),
        "group_by": group_by,
        "total_revenue_cents": sum(p["revenue_cents"] for p in periods.values()),
        "rows": [{"period": key, **values} for key, values in periods.items()],
    }


def sales_by_category(*, start: str | None = None, end: str | None = None) -> dict:
    start_dt, end_dt = _parse_range(start, end)
    query = (
        db.session.query(
            Product.category,
            func.sum(SaleItem.quantity).label("quantity_sold"),
            func.sum(SaleItem.subtotal_cents).label("revenue_cents"),
            func.count(func.distinct(Sale.id)).label("sales_count"),
        )
        .join(SaleItem, SaleItem.product_id == Product.id)
        .join(Sale, SaleItem.sale_id == Sale.id)
        .filter(Sale.status == "completed")
    )
    if start_dt:
        query = query.filter(Sale.sale_date >= start_dt)
    if end_dt:
        query = query.filter(Sale.sale_date <= end_dt)

    rows = query.group_by(Product.category).all()
    result = [
        {
            "category": row.category or UNCATEGORIZED,
            "quantity_sold": int(row.quantity_sold or 0),
            "revenue_cents": int(row.revenue_cents or 0),
            "sales_count": int(row.sales_count or 0),
        }
        for row in rows
    ]
    result.sort(key=lambda r: (-r["revenue_cents"], r["category"]))
    return {**_range_dict(start_dt, end_dt), "rows": result}


def customers_report(*, start: str | None = None, end: str | None = None, limit: int = 20) -> dict:
    start_dt, end_dt = _parse_range(start, end)
    spent = func.sum(Sale.total_cents).label("total_spent_cents")
    query = (
        db.session.query(
            Customer.id,
            Customer.name,
            Customer.email,
            func.count(Sale.id).label("sales_count"),
            spent,
            func.max(Sale.sale_date).label("last_purchase_at"),
        )
        .join(Sale, Sale.customer_id == Customer.id)
        .filter(Sale.status == "completed")
    )
    if start_dt:
        query = query.filter(Sale.sale_date >= start_dt)
    if end_dt:
        query = query.filter(Sale.sale_date <= end_dt)

    rows = (
        query.group_by(Customer.id, Customer.name, Customer.email)
        .order_by(spent.desc(), Customer.id.asc())
        .limit(limit)
        .all()
    )
    return {
        **_range_dict(start_dt, end_dt),
        "total_customers": db.session.query(func.count(Customer.id)).scalar() or 0,
        "rows": [
            {
                "customer_id": row.id,
                "name": row.name,
                "email": row.email,
                "sales_count": int(row.sales_count or 0),
                "total_spent_cents": int(row.total_spent_cents or 0),
                "last_purchase_at": to_utc_z(row.last_purchase_at),
            }
            for row in rows
        ],
    }
