"""Alert generation over products, customers and orders.

Alerts are computed, never stored. :func:`generate_alerts` is a pure function
over plain record lists; :func:`current_alerts` and :func:`watch_alerts` feed
it from a live :class:`~esnaf_defteri.core_logic.RuntimeContext`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Iterable, List, Optional

from . import core_logic, data_manager, log
from .constants import DEFAULT_OVERDUE_DAYS, AlertSeverity, Collection


@dataclass(frozen=True)
class MonitoringAlert:
    alert_id: str
    severity: AlertSeverity
    title: str
    description: str
    timestamp: str


def format_lira(amount: Decimal) -> str:
    """Format ``amount`` the way Turkish lira is shown, e.g. ``₺1.234,50``."""

    value = Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    whole, fraction = f"{abs(value):f}".split(".")
    groups = []
    while len(whole) > 3:
        groups.insert(0, whole[-3:])
        whole = whole[:-3]
    groups.insert(0, whole)
    return f"{sign}₺{'.'.join(groups)},{fraction}"


def _format_quantity(value: Decimal) -> str:
    text = f"{value:f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def generate_alerts(
    products: Iterable[data_manager.ProductRow],
    customers: Iterable[data_manager.CustomerRow],
    orders: Iterable[data_manager.OrderRow],
    now: Optional[datetime] = None,
    overdue_days: int = DEFAULT_OVERDUE_DAYS,
) -> List[MonitoringAlert]:
    """Derive the warnings a shop owner should see right now.

    Rules:

    * stock below zero raises a ``high`` alert;
    * stock above zero but at or under the product's low-stock threshold
      raises a ``medium`` alert;
    * a customer who owes money and whose latest order is older than
      ``overdue_days`` raises a ``low`` alert. Customers without orders are
      skipped.

    Args:
        products: Product records to check for stock problems.
        customers: Customer records to check for overdue balances.
        orders: Orders used to find each customer's latest activity.
        now (datetime | None): Reference moment; defaults to the current UTC
            time.
        overdue_days (int): Inactivity window before a debt counts as overdue.

    Returns:
        list[MonitoringAlert]: Alerts ordered high, then medium, then low.
    """
    now = now or datetime.now(UTC)
    stamp = now.isoformat()
    alerts: List[MonitoringAlert] = []

    for product in products:
        stock = _format_quantity(product.stock)
        if product.stock < 0:
            alerts.append(
                MonitoringAlert(
                    alert_id=f"neg-stock-{product.product_id}",
                    severity=AlertSeverity.HIGH,
                    title=f"Negatif Stok: {product.name}",
                    description=f"{product.name} stok adedi {stock}. Lütfen hemen inceleyin.",
                    timestamp=stamp,
                )
            )
        elif 0 < product.stock <= product.low_stock_threshold:
            threshold = _format_quantity(product.low_stock_threshold)
            alerts.append(
                MonitoringAlert(
                    alert_id=f"low-stock-{product.product_id}",
                    severity=AlertSeverity.MEDIUM,
                    title=f"Düşük Stok: {product.name}",
                    description=(
                        f"{product.name} stok adedi {stock}, düşük stok eşiği olan {threshold} değerine ulaştı."
                    ),
                    timestamp=stamp,
                )
            )

    latest_activity: Dict[str, datetime] = {}
    for order in orders:
        moment = datetime.fromisoformat(order.date)
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        previous = latest_activity.get(order.customer_id)
        if previous is None or moment > previous:
            latest_activity[order.customer_id] = moment

    cutoff = now - timedelta(days=overdue_days)
    for customer in customers:
        if customer.balance <= 0:
            continue
        last_seen = latest_activity.get(customer.customer_id)
        if last_seen is None or last_seen >= cutoff:
            continue
        alerts.append(
            MonitoringAlert(
                alert_id=f"overdue-{customer.customer_id}",
                severity=AlertSeverity.LOW,
                title=f"Gecikmiş Bakiye: {customer.name}",
                description=(
                    f"{customer.name} adlı müşterinin {format_lira(customer.balance)} borcu var ve "
                    f"{overdue_days} günden uzun süredir işlem yapmadı."
                ),
                timestamp=stamp,
            )
        )

    alerts.sort(key=lambda alert: alert.severity.rank)
    return alerts


def current_alerts(context: core_logic.RuntimeContext, now: Optional[datetime] = None) -> List[MonitoringAlert]:
    """Compute alerts from the live ledger of ``context``'s owner."""

    alerts = generate_alerts(
        core_logic.list_collection(context, Collection.PRODUCTS),
        core_logic.list_collection(context, Collection.CUSTOMERS),
        core_logic.list_collection(context, Collection.ORDERS),
        now=now,
        overdue_days=context.settings.overdue_days,
    )
    log.debug("Generated %d alert(s)", len(alerts))
    return alerts


def watch_alerts(
    context: core_logic.RuntimeContext,
    callback: Callable[[List[MonitoringAlert]], None],
) -> Callable[[], None]:
    """Deliver fresh alerts now and after every change to their inputs.

    Returns:
        Callable[[], None]: Function that stops the watch.
    """

    return core_logic.add_change_listener(
        context,
        (Collection.PRODUCTS, Collection.CUSTOMERS, Collection.ORDERS),
        lambda: callback(current_alerts(context)),
    )
