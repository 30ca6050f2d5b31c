# Overview: Customer purchase aggregates, applied and reversed inside the sale transaction.

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from ..errors import NotFoundError, NotFoundKind
from ..models import Customer
from branch_pos.time_utils import utcnow


def _load(session: Session, customer_id: int) -> Customer:
    customer = session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(NotFoundKind.CUSTOMER, details={"customer_id": customer_id})
    return customer


def apply_sale(session: Session, customer_id: int | None, total_cents: int, occurred_at: datetime | None = None) -> None:
    """
    Count a completed sale: total += sale total, visits += 1, last visit = sale time.

    No-op for anonymous sales (customer_id is None).
    """
    if customer_id is None:
        return
    customer = _load(session, customer_id)
    customer.total_purchases_cents = (customer.total_purchases_cents or 0) + total_cents
    customer.visit_count = (customer.visit_count or 0) + 1
    customer.last_visit_at = occurred_at or utcnow()
    customer.updated_at = utcnow()
    session.flush()


def reverse_sale(session: Session, customer_id: int | None, total_cents: int) -> None:
    """
    Inverse of apply_sale for a voided sale.

    visit_count never drops below zero. last_visit_at is left as-is: it is
    not recomputed from the customer's remaining sales (known limitation).
    """
    if customer_id is None:
        return
    customer = _load(session, customer_id)
    customer.total_purchases_cents = (customer.total_purchases_cents or 0) - total_cents
    customer.visit_count = max(0, (customer.visit_count or 0) - 1)
    customer.updated_at = utcnow()
    session.flush()
