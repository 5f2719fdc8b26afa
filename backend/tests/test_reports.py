"""Reporting aggregates. Cancelled sales never count."""

from datetime import datetime

import pytest

from grocer.errors import InvalidInputError
from grocer.services import customers_service, reporting_service, sales_service
from grocer.services.sales_service import SaleInput, SaleItemInput


@pytest.fixture
def history(make_product, admin_actor):
    """
    Three completed sales over two months plus one cancelled sale.

    Jan 15: 2 x Milk (200)            -> 400
    Jan 15: 1 x Bread (300)           -> 300, customer Ana
    Feb 02: 3 x Bread (300), tax 50   -> 950, customer Ana
    Feb 03: 5 x Milk, cancelled
    """
    milk, _ = make_product(name="Milk", price_cents=200, quantity=50, category="Dairy", cost_cents=120)
    bread, _ = make_product(name="Bread", price_cents=300, quantity=50, category="Bakery")
    ana = customers_service.create_customer(payload={"name": "Ana"}, actor=admin_actor)

    def sell(when, product, qty, tax_cents=0, customer_id=None):
        return sales_service.create_sale(
            SaleInput(
                items=[SaleItemInput(product_id=product.id, quantity=qty)],
                sale_date=when,
                tax_cents=tax_cents,
                customer_id=customer_id,
            ),
            admin_actor,
        )

    sell(datetime(2024, 1, 15, 9), milk, 2)
    sell(datetime(2024, 1, 15, 18), bread, 1, customer_id=ana.id)
    sell(datetime(2024, 2, 2, 12), bread, 3, customer_id=ana.id, tax_cents=50)
    cancelled = sell(datetime(2024, 2, 3, 12), milk, 5)
    sales_service.cancel_sale(cancelled.id, admin_actor)
    return {"milk": milk, "bread": bread, "ana": ana}


def test_sales_report_summary_and_daily(history):
    report = reporting_service.sales_report()

    assert report["summary"]["sales_count"] == 3
    assert report["summary"]["items_sold"] == 6
    assert report["summary"]["total_cents"] == 1650
    assert report["summary"]["tax_cents"] == 50
    assert report["summary"]["average_sale_cents"] == 550
    assert report["daily"] == [
        {"date": "2024-01-15", "sales_count": 2, "total_cents": 700},
        {"date": "2024-02-02", "sales_count": 1, "total_cents": 950},
    ]


def test_bare_end_date_covers_whole_day(history):
    report = reporting_service.sales_report(start="2024-01-15", end="2024-01-15")
    assert report["summary"]["sales_count"] == 2


def test_inverted_range_rejected(db_session):
    with pytest.raises(InvalidInputError):
        reporting_service.sales_report(start="2024-02-01", end="2024-01-01")


def test_malformed_date_rejected(db_session):
    with pytest.raises(InvalidInputError):
        reporting_service.sales_report(start="last tuesday")


def test_revenue_grouping(history):
    monthly = reporting_service.revenue_report(group_by="month")
    assert [(r["period"], r["revenue_cents"]) for r in monthly["rows"]] == [("2024-01", 700), ("2024-02", 950)]
    assert monthly["total_revenue_cents"] == 1650

    weekly = reporting_service.revenue_report(group_by="week")
    assert [r["period"] for r in weekly["rows"]] == ["2024-W03", "2024-W05"]

    with pytest.raises(InvalidInputError):
        reporting_service.revenue_report(group_by="fortnight")


def test_top_products_excludes_cancelled(history):
    rows = reporting_service.top_products()["rows"]
    assert [(r["name"], r["quantity_sold"], r["revenue_cents"]) for r in rows] == [
        ("Bread", 4, 1200),
        ("Milk", 2, 400),
    ]


def test_sales_by_category(history):
    rows = reporting_service.sales_by_category()["rows"]
    assert rows == [
        {"category": "Bakery", "quantity_sold": 4, "revenue_cents": 1200, "sales_count": 2},
        {"category": "Dairy", "quantity_sold": 2, "revenue_cents": 400, "sales_count": 1},
    ]


def test_customers_report(history):
    report = reporting_service.customers_report()
    assert report["total_customers"] == 1
    (row,) = report["rows"]
    assert row["name"] == "Ana"
    assert row["sales_count"] == 2
    assert row["total_spent_cents"] == 1250
    assert row["last_purchase_at"] == "2024-02-02T12:00:00Z"


def test_inventory_status(history):
    report = reporting_service.inventory_status()
    # Milk: 50 - 2 = 48 at cost 120; Bread: 50 - 4 = 46 at price 300
    assert report["summary"]["units"] == 94
    assert report["summary"]["stock_value_cents"] == 48 * 120 + 46 * 300
    assert [b["category"] for b in report["by_category"]] == ["Bakery", "Dairy"]


def test_low_stock_report(make_product):
    make_product(name="Plenty", quantity=40, min_stock_level=5)
    make_product(name="Tight", quantity=3, min_stock_level=5)
    make_product(name="Gone", quantity=0, min_stock_level=2)

    rows = reporting_service.low_stock()
    assert [(r["product_name"], r["shortfall"]) for r in rows] == [("Gone", 2), ("Tight", 2)]
