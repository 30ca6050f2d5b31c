"""
Branch database models.

Every table here lives inside ONE branch database; nothing is shared across
branches and no foreign key crosses a branch boundary. These models use their
own declarative base (not the Flask-SQLAlchemy db.Model of the head office)
because the router binds them to a different engine per branch.

Related rows are loaded with explicit queries; there are no relationship
properties to lazy-load.

Money is stored in integer cents.
"""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase

from ..constants import DiscountType
from branch_pos.time_utils import to_utc_z, utcnow


class BranchModel(DeclarativeBase):
    pass


class Product(BranchModel):
    """
    Sellable product with a mutable stock level.

    STOCK POLICY (last-commit-wins):
    - stock_level is signed and may go negative.
    - has_inventory_discrepancy == (stock_level < 0); recomputed on every
      stock mutation by inventory_service.apply_delta, never set on its own.
    - No version column on purpose: concurrent sales are not checked against
      each other, anomalies are flagged instead of prevented.
    """
    __tablename__ = "products"
    __table_args__ = (
        sa.UniqueConstraint("sku", name="uq_products_sku"),
        sa.Index("ix_products_discrepancy", "has_inventory_discrepancy"),
        {"sqlite_autoincrement": True},
    )

    id = sa.Column(sa.Integer, primary_key=True)
    sku = sa.Column(sa.String(100), nullable=False)
    name = sa.Column(sa.String(200), nullable=False)
    barcode = sa.Column(sa.String(100), nullable=True, index=True)

    selling_price_cents = sa.Column(sa.Integer, nullable=False, default=0)
    cost_price_cents = sa.Column(sa.Integer, nullable=True)

    stock_level = sa.Column(sa.Integer, nullable=False, default=0)
    min_stock_threshold = sa.Column(sa.Integer, nullable=False, default=10)
    has_inventory_discrepancy = sa.Column(sa.Boolean, nullable=False, default=False)

    is_active = sa.Column(sa.Boolean, nullable=False, default=True)
    created_at = sa.Column(sa.DateTime, nullable=False, default=utcnow, server_default=sa.func.now())
    updated_at = sa.Column(sa.DateTime, nullable=False, default=utcnow, server_default=sa.func.now(), onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock_level}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "barcode": self.barcode,
            "selling_price_cents": self.selling_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "stock_level": self.stock_level,
            "min_stock_threshold": self.min_stock_threshold,
            "has_inventory_discrepancy": self.has_inventory_discrepancy,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Customer(BranchModel):
    """
    Branch customer with denormalized purchase aggregates.

    total_purchases_cents / visit_count / last_visit_at are maintained by
    customer_service inside the same transaction as the sale that moves them.
    """
    __tablename__ = "customers"
    __table_args__ = (
        sa.UniqueConstraint("code", name="uq_customers_code"),
        {"sqlite_autoincrement": True},
    )

    id = sa.Column(sa.Integer, primary_key=True)
    code = sa.Column(sa.String(50), nullable=False)
    name = sa.Column(sa.String(200), nullable=False)
    email = sa.Column(sa.String(255), nullable=True)
    phone = sa.Column(sa.String(50), nullable=True)

    total_purchases_cents = sa.Column(sa.Integer, nullable=False, default=0)
    visit_count = sa.Column(sa.Integer, nullable=False, default=0)
    last_visit_at = sa.Column(sa.DateTime, nullable=True)

    is_active = sa.Column(sa.Boolean, nullable=False, default=True)
    created_at = sa.Column(sa.DateTime, nullable=False, default=utcnow, server_default=sa.func.now())
    updated_at = sa.Column(sa.DateTime, nullable=False, default=utcnow, server_default=sa.func.now(), onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "total_purchases_cents": self.total_purchases_cents,
            "visit_count": self.visit_count,
            "last_visit_at": to_utc_z(self.last_visit_at),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Sale(BranchModel):
    """
    Completed sale document.

    LIFECYCLE: created (is_voided=False) -> voided (terminal). A voided sale
    is never deleted and its line items are never rewritten.

    IDENTIFIERS:
    - transaction_id: always present, correlation token (not a strict key)
    - invoice_number: Standard sales only, unique within the branch
    """
    __tablename__ = "sales"
    __table_args__ = (
        # Partial unique index: Touch sales carry no invoice number
        sa.Index(
            "uq_sales_invoice_number",
            "invoice_number",
            unique=True,
            sqlite_where=sa.text("invoice_number IS NOT NULL"),
            postgresql_where=sa.text("invoice_number IS NOT NULL"),
            mssql_where=sa.text("invoice_number IS NOT NULL"),
        ),
        sa.Index("ix_sales_voided_date", "is_voided", "sale_date"),
        {"sqlite_autoincrement": True},
    )

    id = sa.Column(sa.Integer, primary_key=True)

    transaction_id = sa.Column(sa.String(50), nullable=False, index=True)
    invoice_number = sa.Column(sa.String(50), nullable=True)
    invoice_type = sa.Column(sa.String(16), nullable=False, index=True)

    order_number = sa.Column(sa.String(50), nullable=True)
    order_type = sa.Column(sa.String(16), nullable=True)

    customer_id = sa.Column(sa.Integer, sa.ForeignKey("customers.id"), nullable=True, index=True)
    # Head-office user id; users live outside the branch database
    cashier_id = sa.Column(sa.Integer, nullable=False, index=True)

    sale_date = sa.Column(sa.DateTime, nullable=False, default=utcnow, index=True)

    subtotal_cents = sa.Column(sa.Integer, nullable=False)
    discount_total_cents = sa.Column(sa.Integer, nullable=False, default=0)
    tax_rate_bps = sa.Column(sa.Integer, nullable=False, default=0)
    tax_cents = sa.Column(sa.Integer, nullable=False)
    total_cents = sa.Column(sa.Integer, nullable=False)

    amount_paid_cents = sa.Column(sa.Integer, nullable=True)
    change_returned_cents = sa.Column(sa.Integer, nullable=True)

    payment_method = sa.Column(sa.String(32), nullable=False, index=True)
    payment_reference = sa.Column(sa.String(200), nullable=True)
    notes = sa.Column(sa.Text, nullable=True)

    # Void audit trail
    is_voided = sa.Column(sa.Boolean, nullable=False, default=False)
    voided_at = sa.Column(sa.DateTime, nullable=True)
    voided_by = sa.Column(sa.Integer, nullable=True)
    void_reason = sa.Column(sa.String(500), nullable=True)

    created_at = sa.Column(sa.DateTime, nullable=False, default=utcnow, server_default=sa.func.now())

    def __repr__(self) -> str:
        return f"<Sale id={self.id} txn={self.transaction_id!r} voided={self.is_voided}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "invoice_number": self.invoice_number,
            "invoice_type": self.invoice_type,
            "order_number": self.order_number,
            "order_type": self.order_type,
            "customer_id": self.customer_id,
            "cashier_id": self.cashier_id,
            "sale_date": to_utc_z(self.sale_date),
            "subtotal_cents": self.subtotal_cents,
            "discount_total_cents": self.discount_total_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "change_returned_cents": self.change_returned_cents,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "notes": self.notes,
            "is_voided": self.is_voided,
            "voided_at": to_utc_z(self.voided_at),
            "voided_by": self.voided_by,
            "void_reason": self.void_reason,
            "created_at": to_utc_z(self.created_at),
        }


class SaleLineItem(BranchModel):
    """Line item owned by one sale. Written once at sale creation."""
    __tablename__ = "sale_line_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = sa.Column(sa.Integer, primary_key=True)
    sale_id = sa.Column(sa.Integer, sa.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = sa.Column(sa.Integer, sa.ForeignKey("products.id"), nullable=False, index=True)
    line_number = sa.Column(sa.Integer, nullable=False)

    quantity = sa.Column(sa.Integer, nullable=False)
    unit_price_cents = sa.Column(sa.Integer, nullable=False)

    # percentage: 0-100; fixed_amount: cents per unit
    discount_type = sa.Column(sa.String(16), nullable=False, default=DiscountType.NONE.value)
    discount_value = sa.Column(sa.Numeric(12, 2), nullable=False, default=0)
    discounted_unit_price_cents = sa.Column(sa.Integer, nullable=False)
    line_discount_cents = sa.Column(sa.Integer, nullable=False, default=0)
    line_total_cents = sa.Column(sa.Integer, nullable=False)

    created_at = sa.Column(sa.DateTime, nullable=False, default=utcnow, server_default=sa.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "line_number": self.line_number,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_type": self.discount_type,
            "discount_value": str(self.discount_value) if self.discount_value is not None else None,
            "discounted_unit_price_cents": self.discounted_unit_price_cents,
            "line_discount_cents": self.line_discount_cents,
            "line_total_cents": self.line_total_cents,
        }


class SequenceCounter(BranchModel):
    """
    Last issued value of a named branch sequence (e.g., "invoice").

    Allocation bumps the row with a single UPDATE inside the caller's
    transaction; the row lock held until commit serializes allocators.
    """
    __tablename__ = "sequence_counters"
    __table_args__ = (
        sa.UniqueConstraint("name", name="uq_sequence_counters_name"),
        {"sqlite_autoincrement": True},
    )

    id = sa.Column(sa.Integer, primary_key=True)
    name = sa.Column(sa.String(32), nullable=False)
    last_value = sa.Column(sa.Integer, nullable=False, default=0)
    updated_at = sa.Column(sa.DateTime, nullable=False, default=utcnow, server_default=sa.func.now(), onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "last_value": self.last_value,
            "updated_at": to_utc_z(self.updated_at),
        }


class BranchSetting(BranchModel):
    """Key/value settings stored in the branch database (e.g., TaxRate override)."""
    __tablename__ = "settings"
    __table_args__ = (
        sa.UniqueConstraint("key", name="uq_settings_key"),
        {"sqlite_autoincrement": True},
    )

    id = sa.Column(sa.Integer, primary_key=True)
    key = sa.Column(sa.String(128), nullable=False)
    value = sa.Column(sa.Text, nullable=True)
    updated_at = sa.Column(sa.DateTime, nullable=False, default=utcnow, server_default=sa.func.now(), onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "key": self.key,
            "value": self.value,
            "updated_at": to_utc_z(self.updated_at),
        }
