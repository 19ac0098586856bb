"""Enumerations shared across Esnaf Defteri modules.

Centralises domain constants so that the entity store, the ledger rules, the
assistant dispatcher and the CLI all agree on the same identifiers and
category names.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Reserved customer id marking an order that is not tied to any account.
CASH_SALE_CUSTOMER_ID = "CASH_SALE"
CASH_SALE_CUSTOMER_NAME = "Peşin Satış"

OPENING_BALANCE_DESCRIPTION = "Başlangıç Bakiyesi / Devir"

DEFAULT_OVERDUE_DAYS = 30


class Collection(str, Enum):
    """Enumerate the entity collections (one worksheet each)."""

    CUSTOMERS = "Customers"
    PRODUCTS = "Products"
    ORDERS = "Orders"
    STOCK_ADJUSTMENTS = "StockAdjustments"
    EXPENSES = "Expenses"
    CASHBOX_ENTRIES = "CashboxEntries"
    SUPPLIERS = "Suppliers"
    STAFF = "Staff"


class OrderStatus(str, Enum):
    """Lifecycle states an order can be recorded with."""

    COMPLETED = "completed"
    PENDING = "pending"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    """Enumerate how money reached the drawer."""

    CASH = "cash"
    CARD = "card"


class ProductType(str, Enum):
    BEEF = "beef"
    PROCESSED = "processed"
    CHICKEN = "chicken"
    DAIRY = "dairy"


class StockAdjustmentCategory(str, Enum):
    """Reasons a stock level was changed by hand."""

    NEW_STOCK = "Yeni Stok Girişi"
    SPOILAGE = "Bozulma"
    THEFT = "Hırsızlık"
    DATA_ENTRY_ERROR = "Veri Giriş Hatası"
    WRONG_PURCHASE = "Hatalı Ürün Alımı"
    DISCOUNT = "İndirim"
    OTHER = "Diğer"


class ExpenseCategory(str, Enum):
    RENT = "Kira"
    BILL = "Fatura"
    SUPPLIES = "Malzeme"
    SALARY = "Maaş"
    OTHER = "Diğer"


class AlertSeverity(str, Enum):
    """Alert severities; ``rank`` orders them for display (high first)."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"high": 0, "medium": 1, "low": 2}[self.value]


MONTH_ABBREVIATIONS = ("Oca", "Şub", "Mar", "Nis", "May", "Haz", "Tem", "Ağu", "Eyl", "Eki", "Kas", "Ara")
DEFAULT_REVENUE_MONTHS = 6


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "CASH_SALE_CUSTOMER_ID",
    "CASH_SALE_CUSTOMER_NAME",
    "OPENING_BALANCE_DESCRIPTION",
    "DEFAULT_OVERDUE_DAYS",
    "MONTH_ABBREVIATIONS",
    "DEFAULT_REVENUE_MONTHS",
    "Collection",
    "OrderStatus",
    "PaymentMethod",
    "ProductType",
    "StockAdjustmentCategory",
    "ExpenseCategory",
    "AlertSeverity",
]
