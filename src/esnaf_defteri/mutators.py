"""Derived-value calculations for customer balances and product stock.

Both mutators are pure: they take the stored value and a signed delta and
return the new value. Negative results are valid (customer credit, or stock
that has been oversold). The ``*_write`` helpers wrap the result into the
store patch that the coordinator commits next to the primary record.
"""

from __future__ import annotations

from decimal import Decimal

from . import data_manager
from .constants import Collection


def apply_balance_delta(balance: Decimal, delta: Decimal) -> Decimal:
    return balance + delta


def apply_stock_delta(stock: Decimal, delta: Decimal) -> Decimal:
    return stock + delta


def balance_write(customer: data_manager.CustomerRow, delta: Decimal) -> data_manager.WriteOperation:
    """Return the patch moving ``customer``'s stored balance by ``delta``."""

    new_balance = apply_balance_delta(customer.balance, delta)
    return data_manager.patch(Collection.CUSTOMERS, customer.customer_id, balance=new_balance)


def stock_write(product: data_manager.ProductRow, delta: Decimal) -> data_manager.WriteOperation:
    """Return the patch moving ``product``'s stored stock by ``delta``."""

    new_stock = apply_stock_delta(product.stock, delta)
    return data_manager.patch(Collection.PRODUCTS, product.product_id, stock=new_stock)
