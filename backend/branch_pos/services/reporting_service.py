# Overview: Sales statistics computed from the branch Sale/SaleLineItem tables.

from __future__ import annotations

from collections import OrderedDict

from sqlalchemy import func

from ..extensions import branch_router
from ..errors import ValidationError
from ..models import Product, Sale, SaleLineItem
from branch_pos.time_utils import coerce_datetime, end_of_day, is_date_only, to_utc_z

TOP_N = 10


def _parse_range(date_from, date_to):
    """Inclusive range; a date-only upper bound covers that whole day."""
    errors = {}
    start_dt = end_dt = None
    try:
        start_dt = coerce_datetime(date_from, "date_from")
    except ValueError as exc:
        errors["date_from"] = str(exc)
    try:
        end_dt = coerce_datetime(date_to, "date_to")
    except ValueError as exc:
        errors["date_to"] = str(exc)
    if start_dt is None and "date_from" not in errors:
        errors["date_from"] = "is required"
    if end_dt is None and "date_to" not in errors:
        errors["date_to"] = "is required"
    if end_dt is not None and is_date_only(date_to):
        end_dt = end_of_day(end_dt)
    if not errors and start_dt > end_dt:
        errors["date_to"] = "must not be before date_from"
    if errors:
        raise ValidationError("Invalid date range", details=errors)
    return start_dt, end_dt


def get_sales_stats(branch_id: int, date_from, date_to) -> dict:
    """
    Aggregate non-voided sales whose sale_date falls in [date_from, date_to].

    Nothing is persisted; every call reads the sale tables.
    """
    start_dt, end_dt = _parse_range(date_from, date_to)

    handle = branch_router.resolve(branch_id)
    with handle.session() as session:
        in_range = (
            Sale.is_voided.is_(False),
            Sale.sale_date >= start_dt,
            Sale.sale_date <= end_dt,
        )

        totals = session.query(
            func.count(Sale.id).label("sale_count"),
            func.coalesce(func.sum(Sale.total_cents), 0).label("total"),
            func.coalesce(func.sum(Sale.tax_cents), 0).label("tax"),
            func.coalesce(func.sum(Sale.discount_total_cents), 0).label("discounts"),
        ).filter(*in_range).one()

        by_payment = session.query(
            Sale.payment_method,
            func.coalesce(func.sum(Sale.total_cents), 0),
        ).filter(*in_range).group_by(Sale.payment_method).all()

        by_invoice_type = session.query(
            Sale.invoice_type,
            func.coalesce(func.sum(Sale.total_cents), 0),
        ).filter(*in_range).group_by(Sale.invoice_type).all()

        revenue = func.sum(SaleLineItem.line_total_cents)
        top_products = (
            session.query(
                SaleLineItem.product_id,
                Product.name,
                func.sum(SaleLineItem.quantity).label("quantity_sold"),
                revenue.label("revenue"),
            )
            .join(Sale, Sale.id == SaleLineItem.sale_id)
            .outerjoin(Product, Product.id == SaleLineItem.product_id)
            .filter(*in_range)
            .group_by(SaleLineItem.product_id, Product.name)
            .order_by(revenue.desc(), SaleLineItem.product_id.asc())
            .limit(TOP_N)
            .all()
        )

        cashier_total = func.sum(Sale.total_cents)
        top_cashiers = (
            session.query(
                Sale.cashier_id,
                cashier_total.label("total"),
                func.count(Sale.id).label("sale_count"),
            )
            .filter(*in_range)
            .group_by(Sale.cashier_id)
            .order_by(cashier_total.desc(), Sale.cashier_id.asc())
            .limit(TOP_N)
            .all()
        )

        # Daily buckets are built here; date truncation differs per engine
        trend: OrderedDict[str, dict] = OrderedDict()
        rows = (
            session.query(Sale.sale_date, Sale.total_cents)
            .filter(*in_range)
            .order_by(Sale.sale_date.asc())
            .all()
        )
        for sale_date, total_cents in rows:
            day = sale_date.strftime("%Y-%m-%d")
            bucket = trend.setdefault(day, {"date": day, "sales_cents": 0, "transactions": 0})
            bucket["sales_cents"] += int(total_cents or 0)
            bucket["transactions"] += 1

    count = int(totals.sale_count or 0)
    total = int(totals.total or 0)
    return {
        "period": {"from": to_utc_z(start_dt), "to": to_utc_z(end_dt)},
        "total_sales_cents": total,
        "total_transactions": count,
        # nearest-cent rounding (half-up)
        "average_transaction_cents": (total + count // 2) // count if count else 0,
        "total_tax_cents": int(totals.tax or 0),
        "total_discounts_cents": int(totals.discounts or 0),
        "sales_by_payment_method": {method: int(amount or 0) for method, amount in by_payment},
        "sales_by_invoice_type": {kind: int(amount or 0) for kind, amount in by_invoice_type},
        "top_products": [
            {
                "product_id": row.product_id,
                "product_name": row.name,
                "quantity_sold": int(row.quantity_sold or 0),
                "revenue_cents": int(row.revenue or 0),
            }
            for row in top_products
        ],
        "top_cashiers": [
            {
                "cashier_id": row.cashier_id,
                "total_sales_cents": int(row.total or 0),
                "transaction_count": int(row.sale_count or 0),
            }
            for row in top_cashiers
        ],
        "sales_trend": list(trend.values()),
    }
