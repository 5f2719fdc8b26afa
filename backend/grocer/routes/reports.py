# Overview: Flask API routes for reports; parses input and returns JSON responses.

# backend/grocer/routes/reports.py
"""
Reporting routes (admin, manager, accountant).

Date filters take ISO-8601 (a bare YYYY-MM-DD end date covers that whole day).
Only completed sales are counted.
"""
from flask import Blueprint, request

from ..decorators import require_auth, require_role
from ..services import reporting_service

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")

REPORT_ROLES = ("admin", "manager", "accountant")


def _range():
    return {"start": request.args.get("start"), "end": request.args.get("end")}


@reports_bp.get("/sales")
@require_auth
@require_role(*REPORT_ROLES)
def sales_report_route():
    return reporting_service.sales_report(**_range())


@reports_bp.get("/inventory")
@require_auth
@require_role(*REPORT_ROLES)
def inventory_status_route():
    return reporting_service.inventory_status()


@reports_bp.get("/low-stock")
@require_auth
@require_role(*REPORT_ROLES)
def low_stock_route():
    rows = reporting_service.low_stock()
    return {"items": rows, "count": len(rows)}


@reports_bp.get("/top-products")
@require_auth
@require_role(*REPORT_ROLES)
def top_products_route():
    return reporting_service.top_products(
        **_range(),
        limit=min(request.args.get("limit", default=10, type=int), 100),
    )


@reports_bp.get("/revenue")
@require_auth
@require_role(*REPORT_ROLES)
def revenue_route():
    return reporting_service.revenue_report(**_range(), group_by=request.args.get("group_by", "day"))


@reports_bp.get("/categories")
@require_auth
@require_role(*REPORT_ROLES)
def sales_by_category_route():
    return reporting_service.sales_by_category(**_range())


@reports_bp.get("/customers")
@require_auth
@require_role(*REPORT_ROLES)
def customers_report_route():
    return reporting_service.customers_report(
        **_range(),
        limit=max(min(request.args.get("limit", default=20, type=int), 100), 1),
    )
