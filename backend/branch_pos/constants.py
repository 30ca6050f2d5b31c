"""Enumerations shared by the head-office registry and branch databases."""

from __future__ import annotations

from enum import Enum


class DatabaseEngine(str, Enum):
    SQLITE = "sqlite"
    MSSQL = "mssql"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"


class SslMode(str, Enum):
    DISABLE = "disable"
    REQUIRE = "require"
    VERIFY_CA = "verify-ca"
    VERIFY_FULL = "verify-full"


class InvoiceType(str, Enum):
    """Touch sales are anonymous; Standard sales receive a sequential invoice number."""

    TOUCH = "touch"
    STANDARD = "standard"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    DIGITAL_WALLET = "digital_wallet"
    BANK_TRANSFER = "bank_transfer"
    MULTIPLE = "multiple"


class DiscountType(str, Enum):
    NONE = "none"
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class OrderType(str, Enum):
    TAKE_OUT = "take_out"
    DINE_IN = "dine_in"
    DELIVERY = "delivery"


# Sequence names stored in the branch sequence_counters table
INVOICE_SEQUENCE = "invoice"

# Branch settings key that overrides the head-office tax rate (percent)
TAX_RATE_SETTING_KEY = "TaxRate"

WALK_IN_CUSTOMER_NAME = "Walk-in Customer"
