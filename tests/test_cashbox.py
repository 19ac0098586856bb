"""Tests for the daily cash-drawer reconciliation."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from esnaf_defteri import cashbox, core_logic
from esnaf_defteri.constants import Collection, ExpenseCategory, OrderStatus, PaymentMethod

PREVIOUS_CLOSE = datetime(2024, 1, 1, 20, tzinfo=UTC)


def _open_with(context, amount: str):
    """Record an earlier close so the drawer opens with ``amount``."""

    return cashbox.close_day(context, Decimal(amount), Decimal("0"), timestamp=PREVIOUS_CLOSE)


def _cash_sale(context, total: str, method=PaymentMethod.CASH):
    return core_logic.add_cash_sale(
        context, core_logic.CashSaleCommand(description="Kıyma", total=Decimal(total), payment_method=method)
    )


def _expense(context, amount: str, timestamp=None):
    return core_logic.add_expense(
        context,
        core_logic.ExpenseCommand(
            description="Tüp", amount=Decimal(amount), category=ExpenseCategory.SUPPLIES, timestamp=timestamp
        ),
    )


# ---------------------------------------------------------------------------
# Day summary
# ---------------------------------------------------------------------------


def test_summarize_day_without_history_is_zero(runtime_context):
    """An empty ledger opens and expects nothing."""

    summary = cashbox.summarize_day(runtime_context)

    assert summary.opening_cash == Decimal("0")
    assert summary.expected_cash == Decimal("0")
    assert summary.day == date.today()


def test_close_day_reconciles_expected_cash(runtime_context):
    """Opening cash plus cash in minus cash out is compared with the count."""

    _open_with(runtime_context, "500")
    customer = core_logic.add_customer(
        runtime_context, core_logic.CustomerCommand(name="Ayşe", opening_balance=Decimal("1000"))
    )
    _cash_sale(runtime_context, "2000")
    core_logic.add_payment(
        runtime_context,
        core_logic.PaymentCommand(customer_id=customer.customer_id, total=Decimal("350.50")),
    )
    _cash_sale(runtime_context, "300", method=PaymentMethod.CARD)
    _expense(runtime_context, "450")

    summary = cashbox.summarize_day(runtime_context)
    assert summary.opening_cash == Decimal("500")
    assert summary.cash_in == Decimal("2350.50")
    assert summary.card_in == Decimal("300")
    assert summary.cash_out == Decimal("450")
    assert summary.expected_cash == Decimal("2400.50")
    assert summary.total_in == Decimal("2650.50")

    entry = cashbox.close_day(runtime_context, Decimal("2400.00"), Decimal("300"))

    assert entry.expected_cash == Decimal("2400.50")
    assert entry.cash_difference == Decimal("-0.50")
    assert cashbox.list_cashbox_entries(runtime_context)[0] == entry


def test_latest_close_becomes_next_opening_cash(runtime_context):
    """The counted cash of the newest entry opens the drawer."""

    _open_with(runtime_context, "500")
    cashbox.close_day(runtime_context, Decimal("650"), Decimal("0"))

    assert cashbox.summarize_day(runtime_context).opening_cash == Decimal("650")
    assert len(cashbox.list_cashbox_entries(runtime_context)) == 2


def test_latest_close_is_chosen_across_time_zones(runtime_context):
    """Closes stamped with different offsets are compared in UTC."""

    istanbul = timezone(timedelta(hours=3))
    earlier = cashbox.close_day(
        runtime_context, Decimal("100"), Decimal("0"), timestamp=datetime(2024, 3, 1, 22, 0, tzinfo=istanbul)
    )
    later = cashbox.close_day(
        runtime_context, Decimal("250"), Decimal("0"), timestamp=datetime(2024, 3, 1, 20, 0, tzinfo=UTC)
    )

    assert earlier.date == "2024-03-01T19:00:00+00:00"
    assert cashbox.list_cashbox_entries(runtime_context)[0] == later
    assert cashbox.summarize_day(runtime_context, date(2024, 3, 2)).opening_cash == Decimal("250")


def test_summary_ignores_other_days_and_incomplete_orders(runtime_context):
    """Only today's completed orders and today's expenses are counted."""

    order = _cash_sale(runtime_context, "100")
    core_logic.update_sale(runtime_context, replace(order, status=OrderStatus.PENDING.value))
    _cash_sale(runtime_context, "40")
    _expense(runtime_context, "25", timestamp=datetime(2024, 1, 2, 12, tzinfo=UTC))

    summary = cashbox.summarize_day(runtime_context)

    assert summary.cash_in == Decimal("40")
    assert summary.cash_out == Decimal("0")


def test_credit_sales_do_not_reach_the_drawer(runtime_context):
    """Credit sales carry no payment method and are not drawer income."""

    customer = core_logic.add_customer(runtime_context, core_logic.CustomerCommand(name="Mehmet"))
    core_logic.add_sale(
        runtime_context,
        core_logic.SaleCommand(customer_id=customer.customer_id, description="Sucuk", total=Decimal("80")),
    )

    summary = cashbox.summarize_day(runtime_context)

    assert summary.cash_in == Decimal("0")
    assert summary.card_in == Decimal("0")


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------


def test_close_day_rejects_negative_counts(runtime_context):
    """Counted amounts cannot be negative."""

    with pytest.raises(core_logic.ValidationError):
        cashbox.close_day(runtime_context, Decimal("-1"), Decimal("0"))

    assert cashbox.list_cashbox_entries(runtime_context) == []


def test_update_cashbox_entry_recomputes_difference(runtime_context):
    """Editing a count rederives the cash difference."""

    _open_with(runtime_context, "100")
    entry = cashbox.close_day(runtime_context, Decimal("90"), Decimal("0"))
    assert entry.cash_difference == Decimal("-10")

    updated = cashbox.update_cashbox_entry(
        runtime_context, replace(entry, counted_cash=Decimal("100"), cash_difference=Decimal("999"))
    )

    assert updated.cash_difference == Decimal("0")
    assert cashbox.get_cashbox_entry(runtime_context, entry.entry_id).counted_cash == Decimal("100")


def test_get_cashbox_entry_missing_raises(runtime_context):
    """Unknown entry ids raise NotFoundError."""

    with pytest.raises(core_logic.NotFoundError):
        cashbox.get_cashbox_entry(runtime_context, "CSH-missing")


def test_cashbox_entries_are_stored_in_their_sheet(runtime_context):
    """Entries land in the CashboxEntries collection."""

    entry = _open_with(runtime_context, "10")

    assert core_logic.list_collection(runtime_context, Collection.CASHBOX_ENTRIES) == [entry]


def test_local_date_reads_naive_timestamps_as_utc():
    """Naive and UTC-aware timestamps of the same moment share a local date."""

    aware = datetime(2024, 5, 1, 12, tzinfo=UTC)

    assert cashbox.local_date("2024-05-01T12:00:00") == cashbox.local_date(aware.isoformat())
    assert cashbox.local_date(aware.isoformat()) == aware.astimezone().date()
