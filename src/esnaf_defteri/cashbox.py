"""Daily cash-drawer reconciliation.

The open day is always derived from the live ledger: today's cash and card
intake come from completed orders, today's cash out from expenses, and the
opening cash is whatever was counted at the most recent close. Closing the day
appends a :class:`~esnaf_defteri.data_manager.CashboxEntryRow` with the counted
amounts and the resulting cash difference.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import List, Optional

from . import core_logic, data_manager, log
from .constants import Collection, OrderStatus, PaymentMethod


@dataclass(frozen=True)
class DaySummary:
    """Open state of the cash drawer for one calendar day."""

    day: date
    opening_cash: Decimal
    cash_in: Decimal
    card_in: Decimal
    cash_out: Decimal
    expected_cash: Decimal
    total_in: Decimal


local_date = core_logic.local_date


def list_cashbox_entries(context: core_logic.RuntimeContext) -> List[data_manager.CashboxEntryRow]:
    """Return the owner's day-close records, newest first."""

    return core_logic.list_collection(context, Collection.CASHBOX_ENTRIES)


def get_cashbox_entry(context: core_logic.RuntimeContext, entry_id: str) -> data_manager.CashboxEntryRow:
    for entry in list_cashbox_entries(context):
        if entry.entry_id == entry_id:
            return entry
    log.warning("Cashbox entry '%s' not found", entry_id)
    raise core_logic.NotFoundError(f"Cashbox entry '{entry_id}' not found")


def summarize_day(context: core_logic.RuntimeContext, today: Optional[date] = None) -> DaySummary:
    """Compute the open cash-drawer state for ``today``.

    Args:
        context (core_logic.RuntimeContext): Runtime context providing the
            ledger.
        today (date | None): Local calendar day to summarize. Defaults to the
            current local date.

    Returns:
        DaySummary: ``opening_cash`` is the counted cash of the most recent
            close (zero before the first close). ``cash_in`` and ``card_in``
            sum the absolute totals of the day's completed orders paid that
            way, covering both cash sales and customer payments.
            ``cash_out`` sums the day's expenses and
            ``expected_cash = opening_cash + cash_in - cash_out``.
    """
    today = today or date.today()

    entries = list_cashbox_entries(context)
    opening_cash = entries[0].counted_cash if entries else Decimal("0")

    cash_in = Decimal("0")
    card_in = Decimal("0")
    for order in core_logic.list_collection(context, Collection.ORDERS):
        if order.status != OrderStatus.COMPLETED.value or local_date(order.date) != today:
            continue
        if order.payment_method == PaymentMethod.CASH.value:
            cash_in += abs(order.total)
        elif order.payment_method == PaymentMethod.CARD.value:
            card_in += abs(order.total)

    cash_out = sum(
        (
            expense.amount
            for expense in core_logic.list_collection(context, Collection.EXPENSES)
            if local_date(expense.date) == today
        ),
        Decimal("0"),
    )

    return DaySummary(
        day=today,
        opening_cash=opening_cash,
        cash_in=cash_in,
        card_in=card_in,
        cash_out=cash_out,
        expected_cash=opening_cash + cash_in - cash_out,
        total_in=cash_in + card_in,
    )


def close_day(
    context: core_logic.RuntimeContext,
    counted_cash: Decimal,
    counted_card: Decimal,
    today: Optional[date] = None,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.CashboxEntryRow:
    """Close the day by recording what was counted in the drawer.

    The stored entry snapshots the day summary alongside the counted amounts
    and ``cash_difference = counted_cash - expected_cash``. Closing more than
    once on the same day appends another entry; the latest one becomes the
    next opening cash.

    Raises:
        ValidationError: If either counted amount is negative or not a number.
        PersistenceFailure: If the entry could not be committed.
    """
    counted_cash = core_logic.require_nonnegative_money(counted_cash, "counted_cash")
    counted_card = core_logic.require_nonnegative_money(counted_card, "counted_card")
    summary = summarize_day(context, today)
    moment = core_logic.to_utc(timestamp) if timestamp is not None else datetime.now(UTC)

    entry = data_manager.CashboxEntryRow(
        entry_id=core_logic.generate_id(Collection.CASHBOX_ENTRIES, when=moment),
        owner_id=context.owner_id,
        date=moment.isoformat(),
        opening_cash=summary.opening_cash,
        cash_in=summary.cash_in,
        card_in=summary.card_in,
        cash_out=summary.cash_out,
        expected_cash=summary.expected_cash,
        counted_cash=counted_cash,
        counted_card=counted_card,
        cash_difference=counted_cash - summary.expected_cash,
    )
    core_logic.commit_batch(context, [data_manager.put(entry)])
    log.info(
        "Closed day %s with entry '%s' (expected=%s, counted=%s, difference=%s)",
        summary.day.isoformat(),
        entry.entry_id,
        summary.expected_cash,
        counted_cash,
        entry.cash_difference,
    )
    return entry


def update_cashbox_entry(
    context: core_logic.RuntimeContext, entry: data_manager.CashboxEntryRow
) -> data_manager.CashboxEntryRow:
    """Overwrite a day-close record, recomputing its cash difference.

    ``cash_difference`` is always rederived from the entry's own
    ``counted_cash`` and ``expected_cash``; any value the caller put there is
    ignored.

    Raises:
        NotFoundError: If the entry does not exist.
        ValidationError: If a counted amount is negative.
    """
    get_cashbox_entry(context, entry.entry_id)
    counted_cash = core_logic.require_nonnegative_money(entry.counted_cash, "counted_cash")
    counted_card = core_logic.require_nonnegative_money(entry.counted_card, "counted_card")
    updated = replace(
        entry,
        owner_id=context.owner_id,
        date=core_logic.normalize_date(entry.date),
        counted_cash=counted_cash,
        counted_card=counted_card,
        cash_difference=counted_cash - entry.expected_cash,
    )
    core_logic.commit_batch(context, [data_manager.put(updated)])
    log.info("Updated cashbox entry '%s' (difference=%s)", updated.entry_id, updated.cash_difference)
    return updated
