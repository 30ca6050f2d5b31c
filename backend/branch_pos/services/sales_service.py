# Overview: Sales transaction engine; creates, voids, reads and lists branch sales.

"""
Sales Transaction Engine

Every write runs as ONE transaction on the branch database resolved by the
branch router. Either everything below commits together or nothing does.

CREATE:
1. Validate the request (no database access; ValidationError)
2. Open the branch write transaction
3. Check products and customer exist (NotFoundError) before mutating
4. Resolve the tax rate (branch TaxRate setting, else head-office rate)
5. Allocate transaction id (always) and invoice number (Standard only)
6. Price lines, compute totals, persist sale + line items
7. Decrement stock per line (last-commit-wins; negative stock is flagged)
8. Apply customer stats
9. Commit; negative stock on touched products comes back as warnings

VOID:
1. Lock and load the sale (NotFoundError / ConflictError(ALREADY_VOIDED))
2. Restore stock per line, reverse customer stats
3. Mark voided (at/by/reason); line items are never rewritten

STATE MACHINE: created -> voided (terminal).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from flask import current_app

from ..extensions import branch_router
from ..constants import (
    DiscountType,
    InvoiceType,
    OrderType,
    PaymentMethod,
    TAX_RATE_SETTING_KEY,
    WALK_IN_CUSTOMER_NAME,
)
from ..errors import (
    ConflictError,
    ConflictKind,
    InventoryDiscrepancyWarning,
    NotFoundError,
    NotFoundKind,
    ValidationError,
)
from ..models import BranchSetting, Customer, Product, Sale, SaleLineItem
from . import customer_service, inventory_service
from .branch_config import BranchConfig
from .concurrency import Deadline, lock_for_update
from .pricing import compute_totals, percent_to_bps, price_line
from .sequence_service import next_invoice_number, next_transaction_id
from branch_pos.time_utils import coerce_datetime, end_of_day, is_date_only, to_utc_z, utcnow

logger = logging.getLogger(__name__)


DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

MAX_ORDER_NUMBER_LENGTH = 50
MAX_PAYMENT_REFERENCE_LENGTH = 200
MAX_NOTES_LENGTH = 1000
MAX_VOID_REASON_LENGTH = 500


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _enum_or_error(enum_cls, value, key: str, errors: dict):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        errors[key] = f"must be one of {[m.value for m in enum_cls]}"
        return None


@dataclass
class SaleLineRequest:
    product_id: int
    quantity: int
    unit_price_cents: int
    discount_type: DiscountType = DiscountType.NONE
    # percentage: 0-100; fixed_amount: cents per unit
    discount_value: Decimal = Decimal(0)

    @classmethod
    def from_dict(cls, data: dict, index: int, errors: dict) -> SaleLineRequest | None:
        prefix = f"line_items[{index}]"
        if not isinstance(data, dict):
            errors[prefix] = "must be an object"
            return None

        discount_type = _enum_or_error(
            DiscountType, data.get("discount_type") or DiscountType.NONE, f"{prefix}.discount_type", errors
        )
        raw_value = data.get("discount_value", 0)
        try:
            discount_value = Decimal(str(raw_value if raw_value is not None else 0))
        except InvalidOperation:
            errors[f"{prefix}.discount_value"] = "must be a number"
            discount_value = None
        if discount_value is not None and not discount_value.is_finite():
            errors[f"{prefix}.discount_value"] = "must be a finite number"
            discount_value = None

        if discount_type is None or discount_value is None:
            return None
        return cls(
            product_id=data.get("product_id"),
            quantity=data.get("quantity"),
            unit_price_cents=data.get("unit_price_cents"),
            discount_type=discount_type,
            discount_value=discount_value,
        )


@dataclass
class CreateSaleRequest:
    invoice_type: InvoiceType
    payment_method: PaymentMethod
    line_items: list[SaleLineRequest] = field(default_factory=list)
    customer_id: int | None = None
    order_number: str | None = None
    order_type: OrderType | None = None
    payment_reference: str | None = None
    amount_paid_cents: int | None = None
    change_returned_cents: int | None = None
    notes: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> CreateSaleRequest:
        """Build a request from a JSON-style payload. Raises ValidationError."""
        if not isinstance(data, dict):
            raise ValidationError("Sale request must be an object")

        errors: dict = {}
        invoice_type = _enum_or_error(InvoiceType, data.get("invoice_type"), "invoice_type", errors)
        payment_method = _enum_or_error(PaymentMethod, data.get("payment_method"), "payment_method", errors)
        order_type = None
        if data.get("order_type") is not None:
            order_type = _enum_or_error(OrderType, data.get("order_type"), "order_type", errors)

        raw_lines = data.get("line_items")
        lines: list[SaleLineRequest] = []
        if raw_lines is not None and not isinstance(raw_lines, list):
            errors["line_items"] = "must be a list"
        else:
            for i, raw in enumerate(raw_lines or []):
                line = SaleLineRequest.from_dict(raw, i, errors)
                if line is not None:
                    lines.append(line)

        if errors:
            raise ValidationError("Invalid sale request", details=errors)

        return cls(
            invoice_type=invoice_type,
            payment_method=payment_method,
            line_items=lines,
            customer_id=data.get("customer_id"),
            order_number=data.get("order_number"),
            order_type=order_type,
            payment_reference=data.get("payment_reference"),
            amount_paid_cents=data.get("amount_paid_cents"),
            change_returned_cents=data.get("change_returned_cents"),
            notes=data.get("notes"),
        )


@dataclass
class SaleResult:
    """A mapped sale plus non-fatal inventory warnings."""
    sale: dict
    warnings: list[InventoryDiscrepancyWarning] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sale": self.sale,
            "warnings": [w.to_dict() for w in self.warnings],
        }


def _check_text(value, key: str, max_length: int, errors: dict) -> None:
    if value is None:
        return
    if not isinstance(value, str):
        errors[key] = "must be a string"
    elif len(value) > max_length:
        errors[key] = f"must be at most {max_length} characters"


def validate_create_request(request: CreateSaleRequest, cashier_id) -> None:
    """
    Reject malformed requests before any database work.

    All problems are collected into ValidationError.details, keyed by field.
    """
    errors: dict = {}

    if not _is_int(cashier_id):
        errors["cashier_id"] = "is required"
    if not isinstance(request.invoice_type, InvoiceType):
        errors["invoice_type"] = "is required"
    if not isinstance(request.payment_method, PaymentMethod):
        errors["payment_method"] = "is required"
    if request.order_type is not None and not isinstance(request.order_type, OrderType):
        errors["order_type"] = "is invalid"
    if request.customer_id is not None and not _is_int(request.customer_id):
        errors["customer_id"] = "must be an integer"

    if not request.line_items:
        errors["line_items"] = "at least one line item is required"

    for i, line in enumerate(request.line_items):
        prefix = f"line_items[{i}]"
        if not _is_int(line.product_id):
            errors[f"{prefix}.product_id"] = "is required"
        if not _is_int(line.quantity) or line.quantity <= 0:
            errors[f"{prefix}.quantity"] = "must be greater than 0"
        if not _is_int(line.unit_price_cents) or line.unit_price_cents <= 0:
            errors[f"{prefix}.unit_price_cents"] = "must be greater than 0"
            continue

        value = line.discount_value
        if _is_int(value):
            value = Decimal(value)
        if not isinstance(value, Decimal) or not value.is_finite():
            errors[f"{prefix}.discount_value"] = "must be a finite number"
        elif value < 0:
            errors[f"{prefix}.discount_value"] = "cannot be negative"
        elif line.discount_type == DiscountType.NONE and value != 0:
            errors[f"{prefix}.discount_value"] = "must be 0 when there is no discount"
        elif line.discount_type == DiscountType.PERCENTAGE and value > 100:
            errors[f"{prefix}.discount_value"] = "percentage discount must be between 0 and 100"
        elif line.discount_type == DiscountType.FIXED_AMOUNT:
            if value > line.unit_price_cents:
                errors[f"{prefix}.discount_value"] = "fixed discount cannot exceed unit price"
            elif value != value.to_integral_value():
                errors[f"{prefix}.discount_value"] = "fixed discount must be whole cents"

    for key in ("amount_paid_cents", "change_returned_cents"):
        value = getattr(request, key)
        if value is not None and (not _is_int(value) or value < 0):
            errors[key] = "cannot be negative"

    _check_text(request.order_number, "order_number", MAX_ORDER_NUMBER_LENGTH, errors)
    _check_text(request.payment_reference, "payment_reference", MAX_PAYMENT_REFERENCE_LENGTH, errors)
    _check_text(request.notes, "notes", MAX_NOTES_LENGTH, errors)

    if errors:
        raise ValidationError("Invalid sale request", details=errors)


def resolve_tax_rate_bps(session, config: BranchConfig) -> int:
    """
    Tax rate for a new sale: the branch database's TaxRate setting (percent)
    overrides the head-office rate. An unreadable setting falls back.
    """
    raw = (
        session.query(BranchSetting.value)
        .filter(BranchSetting.key == TAX_RATE_SETTING_KEY)
        .scalar()
    )
    if raw is None or not str(raw).strip():
        return config.tax_rate_bps

    try:
        bps = percent_to_bps(str(raw).strip())
    except (InvalidOperation, ValueError):
        bps = -1
    if not (0 <= bps <= 10000):
        logger.warning("Branch %s: ignoring invalid %s setting %r", config.branch_id, TAX_RATE_SETTING_KEY, raw)
        return config.tax_rate_bps
    return bps


def _map_sales(session, sales: list[Sale]) -> list[dict]:
    """
    Sale rows -> result dicts with line items, product and customer names.

    Related rows are batch-loaded with one query per table.
    """
    if not sales:
        return []

    sale_ids = [s.id for s in sales]
    lines = (
        session.query(SaleLineItem)
        .filter(SaleLineItem.sale_id.in_(sale_ids))
        .order_by(SaleLineItem.sale_id.asc(), SaleLineItem.line_number.asc())
        .all()
    )

    product_ids = {line.product_id for line in lines}
    product_names = {}
    if product_ids:
        product_names = dict(
            session.query(Product.id, Product.name).filter(Product.id.in_(product_ids)).all()
        )

    customer_ids = {s.customer_id for s in sales if s.customer_id is not None}
    customer_names = {}
    if customer_ids:
        customer_names = dict(
            session.query(Customer.id, Customer.name).filter(Customer.id.in_(customer_ids)).all()
        )

    lines_by_sale: dict[int, list[dict]] = {sale_id: [] for sale_id in sale_ids}
    for line in lines:
        data = line.to_dict()
        data["product_name"] = product_names.get(line.product_id)
        lines_by_sale[line.sale_id].append(data)

    results = []
    for sale in sales:
        data = sale.to_dict()
        if sale.customer_id is not None:
            data["customer_name"] = customer_names.get(sale.customer_id)
        elif sale.invoice_type == InvoiceType.STANDARD.value:
            data["customer_name"] = WALK_IN_CUSTOMER_NAME
        else:
            data["customer_name"] = None
        data["line_items"] = lines_by_sale[sale.id]
        results.append(data)
    return results


def _discrepancy_warnings(stock_by_product: dict[int, int]) -> list[InventoryDiscrepancyWarning]:
    return [
        InventoryDiscrepancyWarning(product_id=product_id, stock_level=stock)
        for product_id, stock in stock_by_product.items()
        if stock < 0
    ]


def _as_deadline(timeout) -> Deadline:
    if isinstance(timeout, Deadline):
        return timeout
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float))):
        raise ValidationError("Invalid timeout", details={"timeout": "must be a number of seconds"})
    try:
        return Deadline(timeout)
    except ValueError as exc:
        raise ValidationError("Invalid timeout", details={"timeout": str(exc)}) from exc


def create_sale(branch_id: int, request, cashier_id: int, *, timeout=None) -> SaleResult:
    """
    Create a sale in one branch transaction.

    request: CreateSaleRequest or a JSON-style dict.
    timeout: seconds (or a Deadline); checked before commit, expiry rolls back
    and raises BranchConnectionError(TIMEOUT).

    Raises ValidationError, NotFoundError(PRODUCT|CUSTOMER|BRANCH),
    BranchConnectionError.
    """
    if isinstance(request, dict):
        request = CreateSaleRequest.from_dict(request)
    validate_create_request(request, cashier_id)
    deadline = _as_deadline(timeout)

    config = branch_router.get_config(branch_id)
    handle = branch_router.resolve(branch_id, config)
    deadline.check("connect", branch_id)

    max_attempts = int(current_app.config.get("TRANSACTION_ID_MAX_ATTEMPTS", 5))

    with handle.begin() as session:
        # All referenced rows must exist before anything is mutated
        product_ids = sorted({line.product_id for line in request.line_items})
        found = {
            pid for (pid,) in session.query(Product.id).filter(Product.id.in_(product_ids)).all()
        }
        missing = [pid for pid in product_ids if pid not in found]
        if missing:
            raise NotFoundError(
                NotFoundKind.PRODUCT,
                f"Product(s) not found: {', '.join(str(pid) for pid in missing)}",
                details={"product_ids": missing},
            )

        if request.customer_id is not None and session.get(Customer, request.customer_id) is None:
            raise NotFoundError(NotFoundKind.CUSTOMER, details={"customer_id": request.customer_id})

        tax_rate_bps = resolve_tax_rate_bps(session, config)

        now = utcnow()
        transaction_id = next_transaction_id(session, max_attempts=max_attempts, now=now)
        invoice_number = None
        if request.invoice_type == InvoiceType.STANDARD:
            invoice_number = next_invoice_number(session, config.code)

        priced = [
            price_line(item.product_id, item.quantity, item.unit_price_cents, item.discount_type, item.discount_value)
            for item in request.line_items
        ]
        totals = compute_totals(priced, tax_rate_bps)

        sale = Sale(
            transaction_id=transaction_id,
            invoice_number=invoice_number,
            invoice_type=request.invoice_type.value,
            order_number=request.order_number,
            order_type=request.order_type.value if request.order_type else None,
            customer_id=request.customer_id,
            cashier_id=cashier_id,
            sale_date=now,
            subtotal_cents=totals.subtotal_cents,
            discount_total_cents=totals.discount_total_cents,
            tax_rate_bps=totals.tax_rate_bps,
            tax_cents=totals.tax_cents,
            total_cents=totals.total_cents,
            amount_paid_cents=request.amount_paid_cents,
            change_returned_cents=request.change_returned_cents,
            payment_method=request.payment_method.value,
            payment_reference=request.payment_reference,
            notes=request.notes,
            is_voided=False,
            created_at=now,
        )
        session.add(sale)
        session.flush()

        stock_after: dict[int, int] = {}
        for line_number, line in enumerate(priced, start=1):
            session.add(SaleLineItem(
                sale_id=sale.id,
                product_id=line.product_id,
                line_number=line_number,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                discount_type=line.discount_type.value,
                discount_value=line.discount_value,
                discounted_unit_price_cents=line.discounted_unit_price_cents,
                line_discount_cents=line.line_discount_cents,
                line_total_cents=line.line_total_cents,
            ))
            stock_after[line.product_id] = inventory_service.apply_delta(session, line.product_id, -line.quantity)

        customer_service.apply_sale(session, request.customer_id, totals.total_cents, now)
        session.flush()

        deadline.check("commit", branch_id)
        mapped = _map_sales(session, [sale])[0]

    warnings = _discrepancy_warnings(stock_after)
    logger.info(
        "Branch %s: created sale %s (%s, invoice %s, total %s cents, %s warning(s))",
        branch_id, sale.id, transaction_id, invoice_number, totals.total_cents, len(warnings),
    )
    return SaleResult(sale=mapped, warnings=warnings)


def void_sale(branch_id: int, sale_id: int, actor_id: int, reason: str, *, timeout=None) -> SaleResult:
    """
    Void a sale and reverse its stock and customer effects in one transaction.

    Raises ValidationError, NotFoundError(SALE), ConflictError(ALREADY_VOIDED),
    BranchConnectionError.
    """
    errors = {}
    reason = reason.strip() if isinstance(reason, str) else ""
    if not reason:
        errors["reason"] = "is required"
    elif len(reason) > MAX_VOID_REASON_LENGTH:
        errors["reason"] = f"must be at most {MAX_VOID_REASON_LENGTH} characters"
    if not _is_int(actor_id):
        errors["actor_id"] = "is required"
    if errors:
        raise ValidationError("Invalid void request", details=errors)
    deadline = _as_deadline(timeout)

    handle = branch_router.resolve(branch_id)
    deadline.check("connect", branch_id)

    with handle.begin() as session:
        sale = lock_for_update(session.query(Sale).filter(Sale.id == sale_id)).first()
        if sale is None:
            raise NotFoundError(NotFoundKind.SALE, details={"sale_id": sale_id})
        if sale.is_voided:
            raise ConflictError(
                ConflictKind.ALREADY_VOIDED,
                "Sale already voided",
                details={"sale_id": sale_id, "voided_at": to_utc_z(sale.voided_at)},
            )

        lines = (
            session.query(SaleLineItem)
            .filter(SaleLineItem.sale_id == sale.id)
            .order_by(SaleLineItem.line_number.asc())
            .all()
        )
        stock_after: dict[int, int] = {}
        for line in lines:
            stock_after[line.product_id] = inventory_service.apply_delta(session, line.product_id, line.quantity)

        customer_service.reverse_sale(session, sale.customer_id, sale.total_cents)

        sale.is_voided = True
        sale.voided_at = utcnow()
        sale.voided_by = actor_id
        sale.void_reason = reason
        session.flush()

        deadline.check("commit", branch_id)
        mapped = _map_sales(session, [sale])[0]

    logger.info("Branch %s: voided sale %s by %s", branch_id, sale_id, actor_id)
    return SaleResult(sale=mapped, warnings=_discrepancy_warnings(stock_after))


def get_sale(branch_id: int, sale_id: int) -> SaleResult:
    handle = branch_router.resolve(branch_id)
    with handle.session() as session:
        sale = session.get(Sale, sale_id)
        if sale is None:
            raise NotFoundError(NotFoundKind.SALE, details={"sale_id": sale_id})
        return SaleResult(sale=_map_sales(session, [sale])[0])


def list_sales(
    branch_id: int,
    *,
    date_from=None,
    date_to=None,
    customer_id: int | None = None,
    cashier_id: int | None = None,
    invoice_type=None,
    payment_method=None,
    is_voided: bool | None = False,
    search: str | None = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> tuple[list[dict], int]:
    """
    Filtered, paginated sales, newest first.

    is_voided defaults to False (active sales only); pass None for all.
    search matches transaction id or invoice number (substring).
    date_from/date_to are inclusive and accept ISO strings, dates or datetimes;
    a date-only date_to covers that whole day.
    Returns (items, total_count).
    """
    errors = {}
    try:
        start = coerce_datetime(date_from, "date_from")
    except ValueError as exc:
        errors["date_from"] = str(exc)
        start = None
    try:
        end = coerce_datetime(date_to, "date_to")
    except ValueError as exc:
        errors["date_to"] = str(exc)
        end = None
    if end is not None and is_date_only(date_to):
        end = end_of_day(end)
    if customer_id is not None and not _is_int(customer_id):
        errors["customer_id"] = "must be an integer"
    if cashier_id is not None and not _is_int(cashier_id):
        errors["cashier_id"] = "must be an integer"
    if search is not None and not isinstance(search, str):
        errors["search"] = "must be a string"
    if invoice_type is not None:
        invoice_type = _enum_or_error(InvoiceType, invoice_type, "invoice_type", errors)
    if payment_method is not None:
        payment_method = _enum_or_error(PaymentMethod, payment_method, "payment_method", errors)
    if not _is_int(page) or page < 1:
        errors["page"] = "must be >= 1"
    if not _is_int(page_size) or not (1 <= page_size <= MAX_PAGE_SIZE):
        errors["page_size"] = f"must be between 1 and {MAX_PAGE_SIZE}"
    if errors:
        raise ValidationError("Invalid sales filter", details=errors)

    handle = branch_router.resolve(branch_id)
    with handle.session() as session:
        query = session.query(Sale)
        if start is not None:
            query = query.filter(Sale.sale_date >= start)
        if end is not None:
            query = query.filter(Sale.sale_date <= end)
        if customer_id is not None:
            query = query.filter(Sale.customer_id == customer_id)
        if cashier_id is not None:
            query = query.filter(Sale.cashier_id == cashier_id)
        if invoice_type is not None:
            query = query.filter(Sale.invoice_type == invoice_type.value)
        if payment_method is not None:
            query = query.filter(Sale.payment_method == payment_method.value)
        if is_voided is not None:
            query = query.filter(Sale.is_voided.is_(bool(is_voided)))
        if search and search.strip():
            term = search.strip()
            query = query.filter(
                Sale.transaction_id.contains(term, autoescape=True)
                | Sale.invoice_number.contains(term, autoescape=True)
            )

        total_count = query.count()
        sales = (
            query.order_by(Sale.sale_date.desc(), Sale.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return _map_sales(session, sales), total_count
