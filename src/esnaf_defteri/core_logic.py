"""Transaction coordinator for Esnaf Defteri.

This module contains the rule engine that keeps customer balances and product
stock consistent with the orders and stock adjustments that justify them. It
consumes the data layer for all I/O; every primary write and the derived write
it implies are handed to :func:`data_manager.apply_batch` together, so either
both land or neither does.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field, fields, replace
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Type

from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.workbook import Workbook

from . import data_manager, log, mutators
from .constants import (
    CASH_SALE_CUSTOMER_ID,
    CASH_SALE_CUSTOMER_NAME,
    DEFAULT_REVENUE_MONTHS,
    EXPECTED_SCHEMA_VERSION,
    MONTH_ABBREVIATIONS,
    OPENING_BALANCE_DESCRIPTION,
    Collection,
    ExpenseCategory,
    OrderStatus,
    PaymentMethod,
    ProductType,
    StockAdjustmentCategory,
)
from .data_manager import PersistenceFailure


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class NotFoundError(BusinessRuleViolation):
    """Raised when a referenced customer, product, or record is unknown."""


class ValidationError(BusinessRuleViolation, ValueError):
    """Raised when input is malformed; nothing has been written."""


ID_PREFIXES: Mapping[Collection, str] = {
    Collection.CUSTOMERS: "CUS",
    Collection.PRODUCTS: "PRD",
    Collection.ORDERS: "ORD",
    Collection.STOCK_ADJUSTMENTS: "ADJ",
    Collection.EXPENSES: "EXP",
    Collection.CASHBOX_ENTRIES: "CSH",
    Collection.SUPPLIERS: "SUP",
    Collection.STAFF: "STF",
}

# Collections listed newest first; all others are listed by id.
DATED_COLLECTIONS = frozenset(
    {
        Collection.ORDERS,
        Collection.STOCK_ADJUSTMENTS,
        Collection.EXPENSES,
        Collection.CASHBOX_ENTRIES,
    }
)

DEFAULT_PAYMENT_DESCRIPTIONS: Mapping[PaymentMethod, str] = {
    PaymentMethod.CASH: "Nakit Ödeme",
    PaymentMethod.CARD: "Kart Ödeme",
}


@dataclass(eq=False)
class _Listener:
    collections: frozenset
    callback: Callable[[], None]


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, workbook and owner used by the coordinator.

    ``owner_id`` is the opaque identity every read is filtered by and every
    write is stamped with. Caches and live-update listeners are private to the
    context; nothing is shared at module level.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    owner_id: str
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)
    _listeners: List[_Listener] = field(default_factory=list, repr=False, compare=False)


@dataclass(frozen=True)
class CustomerCommand:
    """User intent for creating a customer, optionally with an opening debt."""

    name: str
    email: Optional[str] = None
    opening_balance: Decimal = Decimal("0")
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ProductCommand:
    """User intent for creating a product; stock always starts at zero."""

    name: str
    product_type: ProductType
    price: Decimal
    cost: Decimal
    low_stock_threshold: Decimal = Decimal("0")


@dataclass(frozen=True)
class SaleCommand:
    """User intent for a credit sale that increases a customer's debt."""

    customer_id: str
    description: str
    total: Decimal
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PaymentCommand:
    """User intent for a payment that decreases a customer's debt."""

    customer_id: str
    total: Decimal
    payment_method: PaymentMethod = PaymentMethod.CASH
    description: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class CashSaleCommand:
    """User intent for an over-the-counter sale not tied to any customer."""

    description: str
    total: Decimal
    payment_method: PaymentMethod = PaymentMethod.CASH
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class StockAdjustmentCommand:
    """User intent for a signed stock movement on one product."""

    product_id: str
    quantity: Decimal
    description: str
    category: StockAdjustmentCategory
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ExpenseCommand:
    description: str
    amount: Decimal
    category: ExpenseCategory
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class SupplierCommand:
    name: str
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class StaffCommand:
    name: str
    position: str
    salary: Decimal
    phone: Optional[str] = None


@dataclass(frozen=True)
class LedgerDrift:
    """A stored derived value that disagrees with its transaction log."""

    collection: Collection
    record_id: str
    name: str
    stored: Decimal
    derived: Decimal

    @property
    def difference(self) -> Decimal:
        return self.stored - self.derived


@dataclass(frozen=True)
class MonthlyRevenue:
    year: int
    month: int
    label: str
    revenue: Decimal


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Resolve optional timestamps into consistent, timezone-aware values.

    Args:
        candidate (datetime | None): Caller-provided timestamp, usually sourced
            from a command object.

    Returns:
        datetime: ``candidate`` converted to UTC when provided, otherwise the
            current UTC datetime generated via :func:`datetime.now`.
    """

    return to_utc(candidate) if candidate is not None else datetime.now(UTC)


def to_utc(moment: datetime) -> datetime:
    """Return ``moment`` in UTC. Naive values are taken to be UTC already.

    Stored dates are compared as ISO strings, so every date written to the
    workbook goes through here first.
    """
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def local_date(timestamp_iso: str) -> date:
    """Return the local calendar date of a stored ISO-8601 timestamp.

    Naive timestamps are read as UTC, matching how records are written.
    """
    return to_utc(datetime.fromisoformat(timestamp_iso)).astimezone().date()


def normalize_date(value: Any, field_name: str = "date") -> str:
    """Parse an ISO-8601 date string and return it as a UTC ISO string.

    Raises:
        ValidationError: If ``value`` is not an ISO-8601 timestamp.
    """
    try:
        moment = datetime.fromisoformat(str(value))
    except ValueError:
        log.error("Field '%s' is not an ISO-8601 timestamp: %r", field_name, value)
        raise ValidationError(f"{field_name} must be an ISO-8601 timestamp, got {value!r}") from None
    return to_utc(moment).isoformat()


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    Each collection sheet gets its own bucket, populated lazily on the first
    read and dropped whenever a committed batch touches that collection.

    Args:
        context (RuntimeContext): Runtime state carrying the shared cache
            dictionary.
        name (str): Logical bucket name to fetch or create.

    Returns:
        dict[str, Any]: Mutable mapping used to cache one collection.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state.

    Args:
        context (RuntimeContext): Active runtime context whose cache should be
            pruned.
        *names (str): Bucket identifiers to remove. Missing buckets are
            ignored.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_collection_cache(context: RuntimeContext, collection: Collection) -> Dict[str, Any]:
    """Populate the cache bucket for ``collection`` on demand.

    Returns:
        dict[str, Any]: Bucket containing ``all`` records of the owner in sheet
            order and a ``by_id`` lookup dictionary.
    """

    collection = Collection(collection)
    bucket = _get_cache_bucket(context, collection.value)
    if "all" not in bucket:
        schema = data_manager.schema_for(collection)
        records = list(data_manager.iter_rows(context.workbook, collection, owner_id=context.owner_id))
        bucket["all"] = records
        bucket["by_id"] = {getattr(record, schema.key_attribute): record for record in records}
        log.debug("Populated %s cache with %d entries", collection.value, len(records))
    return bucket


def commit_batch(context: RuntimeContext, operations: Sequence[data_manager.WriteOperation]) -> None:
    """Apply ``operations`` as one batch, then refresh caches and listeners.

    Raises:
        PersistenceFailure: If the batch was rejected or could not be saved.
            Neither the workbook nor the caches change in that case.
    """

    data_manager.apply_batch(
        context.workbook,
        operations,
        owner_id=context.owner_id,
        destination=context.settings.data_file,
    )
    touched = frozenset(operation.collection for operation in operations)
    _invalidate_cache(context, *sorted(collection.value for collection in touched))
    _notify_listeners(context, touched)


def _notify_listeners(context: RuntimeContext, touched: frozenset) -> None:
    # The batch is durable by now, so listener errors are logged and not raised.
    for listener in list(context._listeners):
        if listener.collections & touched:
            try:
                listener.callback()
            except Exception:
                log.exception("Change listener %r failed after commit", listener.callback)


def load_runtime_context(config_path: Optional[Path] = None, *, owner_id: Optional[str] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the coordinator.

    Resolves ``config.ini``, parses settings, opens the Excel workbook and
    checks that every collection sheet is present. The resulting
    :class:`RuntimeContext` is scoped to ``owner_id``, or to the configured
    ``[Defaults] OwnerID`` when none is given.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.
        owner_id (str | None): Owner partition to operate on.

    Returns:
        RuntimeContext: Fully populated context ready for coordinator calls.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options or sheets are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    data_manager.validate_workbook(workbook)
    owner = owner_id or settings.default_owner_id
    log.info("Loaded runtime context for workbook '%s' (owner '%s')", settings.data_file, owner)
    return RuntimeContext(settings=settings, workbook=workbook, owner_id=owner)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook from disk and return a fresh context.

    The new context keeps settings and owner but starts with empty caches and
    no listeners.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook, owner_id=context.owner_id)


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------


def list_collection(
    context: RuntimeContext,
    collection: Collection,
    filters: Optional[Mapping[str, Any]] = None,
) -> List[Any]:
    """Return the owner's records of ``collection`` matching ``filters``.

    Dated collections (orders, stock adjustments, expenses, cashbox entries)
    come back newest first, ties broken by id; everything else is ordered by
    id. Repeated calls without intervening writes return equal lists.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        collection (Collection): Collection to read.
        filters (Mapping[str, Any] | None): Attribute equality filters, e.g.
            ``{"customer_id": "CUS..."}``.

    Returns:
        list: Copy of the matching records.

    Raises:
        ValidationError: If a filter names an attribute the records lack.
    """
    collection = Collection(collection)
    schema = data_manager.schema_for(collection)
    filters = dict(filters or {})
    known = {item.name for item in fields(schema.row_type)}
    unknown = sorted(set(filters) - known)
    if unknown:
        log.error("Unknown %s filter field(s): %s", collection.value, ", ".join(unknown))
        raise ValidationError(f"Unknown {collection.value} filter field(s): {', '.join(unknown)}")

    normalized = {name: _plain(value) for name, value in filters.items()}
    records = [
        record
        for record in _ensure_collection_cache(context, collection)["all"]
        if all(getattr(record, name) == value for name, value in normalized.items())
    ]
    key = schema.key_attribute
    if collection in DATED_COLLECTIONS:
        records.sort(key=lambda record: (record.date, getattr(record, key)), reverse=True)
    else:
        records.sort(key=lambda record: getattr(record, key))
    return records


def subscribe(
    context: RuntimeContext,
    collection: Collection,
    callback: Callable[[List[Any]], None],
    filters: Optional[Mapping[str, Any]] = None,
) -> Callable[[], None]:
    """Stream live updates of a filtered collection to ``callback``.

    The current list is delivered immediately, then again after every
    committed batch that touches ``collection``. Delivery is synchronous and
    happens in the committing call; an exception raised by ``callback`` after
    a commit is logged and does not reach the committing caller.

    Returns:
        Callable[[], None]: Unsubscribe function; calling it twice is harmless.
    """
    collection = Collection(collection)
    filters = dict(filters or {})
    return add_change_listener(
        context,
        (collection,),
        lambda: callback(list_collection(context, collection, filters)),
    )


def add_change_listener(
    context: RuntimeContext,
    collections: Iterable[Collection],
    callback: Callable[[], None],
    *,
    deliver_now: bool = True,
) -> Callable[[], None]:
    """Call ``callback`` once per committed batch touching any of ``collections``."""

    listener = _Listener(collections=frozenset(Collection(item) for item in collections), callback=callback)
    context._listeners.append(listener)
    if deliver_now:
        callback()

    def unsubscribe() -> None:
        if listener in context._listeners:
            context._listeners.remove(listener)

    return unsubscribe


def _find(context: RuntimeContext, collection: Collection, record_id: str) -> Optional[Any]:
    return _ensure_collection_cache(context, collection)["by_id"].get(record_id)


def _require(context: RuntimeContext, collection: Collection, record_id: str, label: str) -> Any:
    record = _find(context, collection, record_id)
    if record is None:
        log.warning("%s '%s' not found", label, record_id)
        raise NotFoundError(f"{label} '{record_id}' not found")
    return record


def get_customer(context: RuntimeContext, customer_id: str) -> data_manager.CustomerRow:
    """Resolve a customer record by its identifier.

    Raises:
        NotFoundError: If ``customer_id`` is absent for this owner.
    """
    return _require(context, Collection.CUSTOMERS, customer_id, "Customer")


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        NotFoundError: If ``product_id`` is absent for this owner.
    """
    return _require(context, Collection.PRODUCTS, product_id, "Product")


def get_order(context: RuntimeContext, order_id: str) -> data_manager.OrderRow:
    return _require(context, Collection.ORDERS, order_id, "Order")


def get_stock_adjustment(context: RuntimeContext, adjustment_id: str) -> data_manager.StockAdjustmentRow:
    return _require(context, Collection.STOCK_ADJUSTMENTS, adjustment_id, "Stock adjustment")


def get_expense(context: RuntimeContext, expense_id: str) -> data_manager.ExpenseRow:
    return _require(context, Collection.EXPENSES, expense_id, "Expense")


def get_supplier(context: RuntimeContext, supplier_id: str) -> data_manager.SupplierRow:
    return _require(context, Collection.SUPPLIERS, supplier_id, "Supplier")


def get_staff_member(context: RuntimeContext, staff_id: str) -> data_manager.StaffRow:
    return _require(context, Collection.STAFF, staff_id, "Staff member")


def find_customer_by_name(context: RuntimeContext, name: str) -> data_manager.CustomerRow:
    """Resolve a customer by name, ignoring case and surrounding whitespace.

    Raises:
        NotFoundError: If no customer of this owner carries ``name``.
    """
    return _find_by_name(context, Collection.CUSTOMERS, name, "Customer")


def find_product_by_name(context: RuntimeContext, name: str) -> data_manager.ProductRow:
    """Resolve a product by name, ignoring case and surrounding whitespace.

    Raises:
        NotFoundError: If no product of this owner carries ``name``.
    """
    return _find_by_name(context, Collection.PRODUCTS, name, "Product")


def _find_by_name(context: RuntimeContext, collection: Collection, name: str, label: str) -> Any:
    wanted = name.strip().casefold()
    for record in list_collection(context, collection):
        if record.name.strip().casefold() == wanted:
            return record
    log.warning("%s named '%s' not found", label, name)
    raise NotFoundError(f"{label} named '{name}' not found")


# ---------------------------------------------------------------------------
# Ledger reports
# ---------------------------------------------------------------------------


def calculate_customer_balances(context: RuntimeContext) -> Dict[str, Decimal]:
    """Derive every customer's balance from the order log.

    Cash sales are excluded. Customers without orders appear with a zero
    balance.

    Returns:
        dict[str, Decimal]: Mapping of ``customer_id`` to the summed order
            totals.
    """
    balances: Dict[str, Decimal] = {
        customer.customer_id: Decimal("0") for customer in list_collection(context, Collection.CUSTOMERS)
    }
    for order in list_collection(context, Collection.ORDERS):
        if order.customer_id == CASH_SALE_CUSTOMER_ID:
            continue
        balances[order.customer_id] = balances.get(order.customer_id, Decimal("0")) + order.total
    return balances


def calculate_stock_levels(context: RuntimeContext) -> Dict[str, Decimal]:
    """Derive every product's stock from the stock adjustment log.

    Returns:
        dict[str, Decimal]: Mapping of ``product_id`` to the summed signed
            quantities.
    """
    levels: Dict[str, Decimal] = {
        product.product_id: Decimal("0") for product in list_collection(context, Collection.PRODUCTS)
    }
    for adjustment in list_collection(context, Collection.STOCK_ADJUSTMENTS):
        levels[adjustment.product_id] = levels.get(adjustment.product_id, Decimal("0")) + adjustment.quantity
    return levels


def find_ledger_drift(context: RuntimeContext) -> List[LedgerDrift]:
    """List customers and products whose stored value disagrees with the log.

    A consistent ledger returns an empty list. Drift appears after manual
    balance overrides, after editing an adjustment's quantity, or after edits
    made to the workbook outside this package.
    """
    drift: List[LedgerDrift] = []
    balances = calculate_customer_balances(context)
    for customer in list_collection(context, Collection.CUSTOMERS):
        derived = balances.get(customer.customer_id, Decimal("0"))
        if customer.balance != derived:
            drift.append(
                LedgerDrift(Collection.CUSTOMERS, customer.customer_id, customer.name, customer.balance, derived)
            )

    levels = calculate_stock_levels(context)
    for product in list_collection(context, Collection.PRODUCTS):
        derived = levels.get(product.product_id, Decimal("0"))
        if product.stock != derived:
            drift.append(LedgerDrift(Collection.PRODUCTS, product.product_id, product.name, product.stock, derived))

    if drift:
        log.warning("Detected %d ledger drift record(s)", len(drift))
    return drift


def calculate_profit_summary(context: RuntimeContext) -> Dict[str, Decimal]:
    """Aggregate revenue, expenses and net profit.

    Revenue is the sum of completed orders with a positive total (credit and
    cash sales; payments are negative and therefore excluded).

    Returns:
        dict[str, Decimal]: Dictionary containing ``total_revenue``,
            ``total_expenses`` and ``net_profit``.
    """
    total_revenue = sum(
        (
            order.total
            for order in list_collection(context, Collection.ORDERS)
            if order.status == OrderStatus.COMPLETED.value and order.total > 0
        ),
        Decimal("0"),
    )
    total_expenses = sum(
        (expense.amount for expense in list_collection(context, Collection.EXPENSES)),
        Decimal("0"),
    )
    return {
        "total_revenue": total_revenue,
        "total_expenses": total_expenses,
        "net_profit": total_revenue - total_expenses,
    }


def calculate_monthly_revenue(
    context: RuntimeContext, months: int = DEFAULT_REVENUE_MONTHS, today: Optional[date] = None
) -> List[MonthlyRevenue]:
    """Sum completed sales per calendar month for the last ``months`` months.

    The series runs oldest first and ends with the month of ``today`` (the
    local date when omitted). Months without sales are reported with zero
    revenue; payments and pending orders are ignored, as in
    :func:`calculate_profit_summary`.

    Raises:
        ValidationError: If ``months`` is not a positive integer.
    """
    if isinstance(months, bool) or not isinstance(months, int) or months < 1:
        log.error("Monthly revenue window must be a positive integer, got %r", months)
        raise ValidationError("months must be a positive integer")

    today = today or date.today()
    buckets: Dict[Tuple[int, int], Decimal] = {}
    for offset in range(months - 1, -1, -1):
        year, month_index = divmod(today.year * 12 + today.month - 1 - offset, 12)
        buckets[(year, month_index + 1)] = Decimal("0")

    for order in list_collection(context, Collection.ORDERS):
        if order.status != OrderStatus.COMPLETED.value or order.total <= 0:
            continue
        day = local_date(order.date)
        key = (day.year, day.month)
        if key in buckets:
            buckets[key] += order.total

    return [
        MonthlyRevenue(year=year, month=month, label=MONTH_ABBREVIATIONS[month - 1], revenue=revenue)
        for (year, month), revenue in buckets.items()
    ]


def calculate_receivables(context: RuntimeContext) -> Dict[str, Any]:
    """Split stored balances into money owed to the shop and owed by it."""

    receivables = Decimal("0")
    payables = Decimal("0")
    receivable_count = 0
    payable_count = 0
    for customer in list_collection(context, Collection.CUSTOMERS):
        if customer.balance > 0:
            receivables += customer.balance
            receivable_count += 1
        elif customer.balance < 0:
            payables += customer.balance
            payable_count += 1
    return {
        "receivables": receivables,
        "receivable_count": receivable_count,
        "payables": payables,
        "payable_count": payable_count,
    }


# ---------------------------------------------------------------------------
# Customers and products
# ---------------------------------------------------------------------------


def add_customer(context: RuntimeContext, command: CustomerCommand) -> data_manager.CustomerRow:
    """Create a customer, seeding an opening balance when one is given.

    A positive ``opening_balance`` is written as an opening-balance order in
    the same batch as the customer so the balance stays equal to the sum of
    the customer's orders.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        command (CustomerCommand): Structured customer intent.

    Returns:
        data_manager.CustomerRow: Newly stored customer.

    Raises:
        ValidationError: If the name is blank or the opening balance negative.
        PersistenceFailure: If the batch could not be committed.
    """
    name = require_text(command.name, "name")
    opening_balance = require_nonnegative_money(command.opening_balance, "opening_balance")
    timestamp = _resolve_timestamp(command.timestamp)

    customer = data_manager.CustomerRow(
        customer_id=generate_id(Collection.CUSTOMERS, when=timestamp),
        owner_id=context.owner_id,
        name=name,
        email=_optional_text(command.email),
        balance=opening_balance,
    )
    operations = [data_manager.put(customer)]
    if opening_balance > 0:
        operations.append(
            data_manager.put(
                data_manager.OrderRow(
                    order_id=generate_id(Collection.ORDERS, when=timestamp),
                    owner_id=context.owner_id,
                    customer_id=customer.customer_id,
                    customer_name=name,
                    description=OPENING_BALANCE_DESCRIPTION,
                    items=1,
                    total=opening_balance,
                    status=OrderStatus.COMPLETED.value,
                    date=timestamp.isoformat(),
                    payment_method=None,
                )
            )
        )
    commit_batch(context, operations)
    log.info("Added customer '%s' (%s) with opening balance %s", customer.customer_id, name, opening_balance)
    return customer


def update_customer(context: RuntimeContext, customer: data_manager.CustomerRow) -> data_manager.CustomerRow:
    """Overwrite a customer's fields.

    This is the only path that may set ``balance`` directly. A balance that
    differs from the stored one is logged as a manual override; the order log
    is not touched, so :func:`find_ledger_drift` will report the difference.

    Raises:
        NotFoundError: If the customer does not exist.
        ValidationError: If the name is blank.
    """
    stored = get_customer(context, customer.customer_id)
    updated = replace(
        customer,
        owner_id=context.owner_id,
        name=require_text(customer.name, "name"),
        email=_optional_text(customer.email),
        balance=_as_decimal(customer.balance, "balance"),
    )
    commit_batch(context, [data_manager.put(updated)])
    if updated.balance != stored.balance:
        log.warning(
            "Manual balance override on customer '%s': %s -> %s",
            updated.customer_id,
            stored.balance,
            updated.balance,
        )
    log.info("Updated customer '%s'", updated.customer_id)
    return updated


def delete_customer(context: RuntimeContext, customer_id: str) -> Optional[data_manager.CustomerRow]:
    """Delete a customer together with every one of its orders.

    The orders and the customer go out in one batch. A missing customer with
    no orders is a no-op.

    Returns:
        data_manager.CustomerRow | None: The removed customer, if it existed.
    """
    customer = _find(context, Collection.CUSTOMERS, customer_id)
    orders = list_collection(context, Collection.ORDERS, {"customer_id": customer_id})
    if customer is None and not orders:
        log.debug("Delete of unknown customer '%s' ignored", customer_id)
        return None

    operations = [data_manager.delete(Collection.ORDERS, order.order_id) for order in orders]
    operations.append(data_manager.delete(Collection.CUSTOMERS, customer_id))
    commit_batch(context, operations)
    log.info("Deleted customer '%s' and %d order(s)", customer_id, len(orders))
    return customer


def add_product(context: RuntimeContext, command: ProductCommand) -> data_manager.ProductRow:
    """Create a product with zero stock.

    Raises:
        ValidationError: If the name is blank, the type unknown, or any price
            field negative.
    """
    product = data_manager.ProductRow(
        product_id=generate_id(Collection.PRODUCTS),
        owner_id=context.owner_id,
        name=require_text(command.name, "name"),
        product_type=require_member(ProductType, command.product_type, "product_type").value,
        stock=Decimal("0"),
        price=require_nonnegative_money(command.price, "price"),
        cost=require_nonnegative_money(command.cost, "cost"),
        low_stock_threshold=require_nonnegative_money(command.low_stock_threshold, "low_stock_threshold"),
    )
    commit_batch(context, [data_manager.put(product)])
    log.info("Added product '%s' (%s)", product.product_id, product.name)
    return product


def update_product(context: RuntimeContext, product: data_manager.ProductRow) -> data_manager.ProductRow:
    """Overwrite a product's descriptive and pricing fields.

    The stored ``stock`` is always kept; stock only moves through stock
    adjustments.

    Raises:
        NotFoundError: If the product does not exist.
        ValidationError: If any field fails validation.
    """
    stored = get_product(context, product.product_id)
    updated = replace(
        product,
        owner_id=context.owner_id,
        name=require_text(product.name, "name"),
        product_type=require_member(ProductType, product.product_type, "product_type").value,
        stock=stored.stock,
        price=require_nonnegative_money(product.price, "price"),
        cost=require_nonnegative_money(product.cost, "cost"),
        low_stock_threshold=require_nonnegative_money(product.low_stock_threshold, "low_stock_threshold"),
    )
    commit_batch(context, [data_manager.put(updated)])
    log.info("Updated product '%s'", updated.product_id)
    return updated


def delete_product(context: RuntimeContext, product_id: str) -> Optional[data_manager.ProductRow]:
    """Delete a product together with every one of its stock adjustments.

    Returns:
        data_manager.ProductRow | None: The removed product, if it existed.
    """
    product = _find(context, Collection.PRODUCTS, product_id)
    adjustments = list_collection(context, Collection.STOCK_ADJUSTMENTS, {"product_id": product_id})
    if product is None and not adjustments:
        log.debug("Delete of unknown product '%s' ignored", product_id)
        return None

    operations = [
        data_manager.delete(Collection.STOCK_ADJUSTMENTS, adjustment.adjustment_id) for adjustment in adjustments
    ]
    operations.append(data_manager.delete(Collection.PRODUCTS, product_id))
    commit_batch(context, operations)
    log.info("Deleted product '%s' and %d stock adjustment(s)", product_id, len(adjustments))
    return product


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


def add_sale(context: RuntimeContext, command: SaleCommand) -> data_manager.OrderRow:
    """Record a completed credit sale and raise the customer's balance.

    The order and the balance patch are committed as one batch. The cash-sale
    sentinel customer id is accepted and skips the balance step.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        command (SaleCommand): Structured sale intent.

    Returns:
        data_manager.OrderRow: Newly stored order.

    Raises:
        NotFoundError: If the customer does not exist.
        ValidationError: If the total is not positive or the description is
            blank.
        PersistenceFailure: If the batch could not be committed.
    """
    total = require_positive_money(command.total, "total")
    description = require_text(command.description, "description")
    customer = None
    customer_name = CASH_SALE_CUSTOMER_NAME
    if command.customer_id != CASH_SALE_CUSTOMER_ID:
        customer = get_customer(context, command.customer_id)
        customer_name = customer.name

    timestamp = _resolve_timestamp(command.timestamp)
    order = data_manager.OrderRow(
        order_id=generate_id(Collection.ORDERS, when=timestamp),
        owner_id=context.owner_id,
        customer_id=command.customer_id,
        customer_name=customer_name,
        description=description,
        items=count_items(description),
        total=total,
        status=OrderStatus.COMPLETED.value,
        date=timestamp.isoformat(),
        payment_method=None,
    )
    operations = [data_manager.put(order)]
    if customer is not None:
        operations.append(mutators.balance_write(customer, total))
    commit_batch(context, operations)
    log.info("Recorded sale '%s' for customer '%s' (total=%s)", order.order_id, command.customer_id, total)
    return order


def add_payment(context: RuntimeContext, command: PaymentCommand) -> data_manager.OrderRow:
    """Record a payment as a negative order and lower the customer's balance.

    When no description is supplied a default naming the payment method is
    used.

    Returns:
        data_manager.OrderRow: Newly stored payment order with ``total`` equal
            to ``-command.total``.

    Raises:
        NotFoundError: If the customer does not exist.
        ValidationError: If the amount is not positive or the payment method
            unknown.
        PersistenceFailure: If the batch could not be committed.
    """
    amount = require_positive_money(command.total, "total")
    method = require_member(PaymentMethod, command.payment_method, "payment_method")
    customer = get_customer(context, command.customer_id)
    description = _optional_text(command.description) or DEFAULT_PAYMENT_DESCRIPTIONS[method]

    timestamp = _resolve_timestamp(command.timestamp)
    order = data_manager.OrderRow(
        order_id=generate_id(Collection.ORDERS, when=timestamp),
        owner_id=context.owner_id,
        customer_id=customer.customer_id,
        customer_name=customer.name,
        description=description,
        items=1,
        total=-amount,
        status=OrderStatus.COMPLETED.value,
        date=timestamp.isoformat(),
        payment_method=method.value,
    )
    commit_batch(context, [data_manager.put(order), mutators.balance_write(customer, -amount)])
    log.info(
        "Recorded %s payment '%s' from customer '%s' (amount=%s)",
        method.value,
        order.order_id,
        customer.customer_id,
        amount,
    )
    return order


def add_cash_sale(context: RuntimeContext, command: CashSaleCommand) -> data_manager.OrderRow:
    """Record an over-the-counter sale. No customer balance is written.

    Raises:
        ValidationError: If the total is not positive, the description blank
            or the payment method unknown.
    """
    total = require_positive_money(command.total, "total")
    description = require_text(command.description, "description")
    method = require_member(PaymentMethod, command.payment_method, "payment_method")

    timestamp = _resolve_timestamp(command.timestamp)
    order = data_manager.OrderRow(
        order_id=generate_id(Collection.ORDERS, when=timestamp),
        owner_id=context.owner_id,
        customer_id=CASH_SALE_CUSTOMER_ID,
        customer_name=CASH_SALE_CUSTOMER_NAME,
        description=description,
        items=count_items(description),
        total=total,
        status=OrderStatus.COMPLETED.value,
        date=timestamp.isoformat(),
        payment_method=method.value,
    )
    commit_batch(context, [data_manager.put(order)])
    log.info("Recorded %s cash sale '%s' (total=%s)", method.value, order.order_id, total)
    return order


def update_sale(context: RuntimeContext, order: data_manager.OrderRow) -> data_manager.OrderRow:
    """Overwrite a stored order and move the customer's balance by the change.

    The balance moves by ``new.total - old.total``. When the order is moved to
    a different customer the old total is taken off the previous customer and
    the new total put on the new one, all in the same batch, and the
    ``customer_name`` snapshot is refreshed. Cash-sale orders never touch a
    balance. If the order keeps a customer that has since been deleted, the
    order is still updated and the balance step skipped.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        order (data_manager.OrderRow): Order carrying the new field values;
            ``order_id`` selects the stored record.

    Returns:
        data_manager.OrderRow: The order as written.

    Raises:
        NotFoundError: If the order does not exist, or it is moved to a
            customer that does not exist. Nothing is written in that case.
        ValidationError: If the description, status, payment method or total
            is malformed.
        PersistenceFailure: If the batch could not be committed.
    """
    stored = get_order(context, order.order_id)
    total = _as_decimal(order.total, "total")
    description = require_text(order.description, "description")
    status = require_member(OrderStatus, order.status, "status")
    method = None
    if order.payment_method not in (None, ""):
        method = require_member(PaymentMethod, order.payment_method, "payment_method").value

    new_customer = None
    customer_name = CASH_SALE_CUSTOMER_NAME
    if order.customer_id == stored.customer_id and order.customer_id != CASH_SALE_CUSTOMER_ID:
        new_customer = _find(context, Collection.CUSTOMERS, order.customer_id)
        if new_customer is None:
            log.warning("Customer '%s' of order '%s' no longer exists", order.customer_id, order.order_id)
            customer_name = stored.customer_name
        else:
            customer_name = new_customer.name
    elif order.customer_id != CASH_SALE_CUSTOMER_ID:
        new_customer = get_customer(context, order.customer_id)
        customer_name = new_customer.name

    updated = replace(
        order,
        owner_id=context.owner_id,
        customer_name=customer_name,
        description=description,
        total=total,
        status=status.value,
        payment_method=method,
        date=normalize_date(order.date),
    )
    operations = [data_manager.put(updated)]
    if stored.customer_id == order.customer_id:
        delta = total - stored.total
        if new_customer is not None and delta != 0:
            operations.append(mutators.balance_write(new_customer, delta))
    else:
        if stored.customer_id != CASH_SALE_CUSTOMER_ID:
            previous = _find(context, Collection.CUSTOMERS, stored.customer_id)
            if previous is None:
                log.warning("Previous customer '%s' of order '%s' no longer exists", stored.customer_id, order.order_id)
            else:
                operations.append(mutators.balance_write(previous, -stored.total))
        if new_customer is not None:
            operations.append(mutators.balance_write(new_customer, total))

    commit_batch(context, operations)
    log.info("Updated order '%s' (total %s -> %s)", order.order_id, stored.total, total)
    return updated


def delete_sale(context: RuntimeContext, order_id: str) -> Optional[data_manager.OrderRow]:
    """Delete an order and reverse its stored total on the customer.

    A missing order is a silent no-op. If the order's customer has vanished
    the order is still deleted and the balance step skipped.

    Returns:
        data_manager.OrderRow | None: The removed order, if it existed.
    """
    order = _find(context, Collection.ORDERS, order_id)
    if order is None:
        log.debug("Delete of unknown order '%s' ignored", order_id)
        return None

    operations = [data_manager.delete(Collection.ORDERS, order_id)]
    if order.customer_id != CASH_SALE_CUSTOMER_ID:
        customer = _find(context, Collection.CUSTOMERS, order.customer_id)
        if customer is None:
            log.warning("Customer '%s' of order '%s' no longer exists", order.customer_id, order_id)
        else:
            operations.append(mutators.balance_write(customer, -order.total))
    commit_batch(context, operations)
    log.info("Deleted order '%s' (reversed total=%s)", order_id, order.total)
    return order


# ---------------------------------------------------------------------------
# Stock adjustments
# ---------------------------------------------------------------------------


def add_stock_adjustment(context: RuntimeContext, command: StockAdjustmentCommand) -> data_manager.StockAdjustmentRow:
    """Record a signed stock movement and apply it to the product's stock.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        command (StockAdjustmentCommand): Structured adjustment intent.
            Positive quantities add stock, negative ones remove it.

    Returns:
        data_manager.StockAdjustmentRow: Newly stored adjustment.

    Raises:
        NotFoundError: If the product does not exist.
        ValidationError: If the quantity is zero, the description blank or
            the category unknown.
        PersistenceFailure: If the batch could not be committed.
    """
    quantity = require_nonzero_quantity(command.quantity)
    description = require_text(command.description, "description")
    category = require_member(StockAdjustmentCategory, command.category, "category")
    product = get_product(context, command.product_id)

    timestamp = _resolve_timestamp(command.timestamp)
    adjustment = data_manager.StockAdjustmentRow(
        adjustment_id=generate_id(Collection.STOCK_ADJUSTMENTS, when=timestamp),
        owner_id=context.owner_id,
        product_id=product.product_id,
        product_name=product.name,
        quantity=quantity,
        description=description,
        category=category.value,
        date=timestamp.isoformat(),
    )
    commit_batch(context, [data_manager.put(adjustment), mutators.stock_write(product, quantity)])
    log.info(
        "Recorded stock adjustment '%s' for product '%s' (quantity=%s)",
        adjustment.adjustment_id,
        product.product_id,
        quantity,
    )
    return adjustment


def update_stock_adjustment(
    context: RuntimeContext, adjustment: data_manager.StockAdjustmentRow
) -> data_manager.StockAdjustmentRow:
    """Overwrite a stored stock adjustment.

    Product stock is deliberately left alone, even when ``quantity`` changes.
    Such edits show up in :func:`find_ledger_drift`.

    Raises:
        NotFoundError: If the adjustment does not exist.
        ValidationError: If any field fails validation.
    """
    stored = get_stock_adjustment(context, adjustment.adjustment_id)
    updated = replace(
        adjustment,
        owner_id=context.owner_id,
        quantity=require_nonzero_quantity(adjustment.quantity),
        description=require_text(adjustment.description, "description"),
        category=require_member(StockAdjustmentCategory, adjustment.category, "category").value,
        date=normalize_date(adjustment.date),
    )
    commit_batch(context, [data_manager.put(updated)])
    if updated.quantity != stored.quantity:
        log.warning(
            "Stock adjustment '%s' quantity changed %s -> %s; product stock left unchanged",
            updated.adjustment_id,
            stored.quantity,
            updated.quantity,
        )
    log.info("Updated stock adjustment '%s'", updated.adjustment_id)
    return updated


def delete_stock_adjustment(context: RuntimeContext, adjustment_id: str) -> Optional[data_manager.StockAdjustmentRow]:
    """Delete an adjustment and take its stored quantity back off the product.

    A missing adjustment is a no-op.
    """
    adjustment = _find(context, Collection.STOCK_ADJUSTMENTS, adjustment_id)
    if adjustment is None:
        log.debug("Delete of unknown stock adjustment '%s' ignored", adjustment_id)
        return None

    operations = [data_manager.delete(Collection.STOCK_ADJUSTMENTS, adjustment_id)]
    product = _find(context, Collection.PRODUCTS, adjustment.product_id)
    if product is None:
        log.warning("Product '%s' of adjustment '%s' no longer exists", adjustment.product_id, adjustment_id)
    else:
        operations.append(mutators.stock_write(product, -adjustment.quantity))
    commit_batch(context, operations)
    log.info("Deleted stock adjustment '%s' (reversed quantity=%s)", adjustment_id, adjustment.quantity)
    return adjustment


# ---------------------------------------------------------------------------
# Expenses, suppliers, staff
# ---------------------------------------------------------------------------


def add_expense(context: RuntimeContext, command: ExpenseCommand) -> data_manager.ExpenseRow:
    """Record a positive expense.

    Raises:
        ValidationError: If the amount is not positive, the description blank
            or the category unknown.
    """
    timestamp = _resolve_timestamp(command.timestamp)
    expense = data_manager.ExpenseRow(
        expense_id=generate_id(Collection.EXPENSES, when=timestamp),
        owner_id=context.owner_id,
        date=timestamp.isoformat(),
        description=require_text(command.description, "description"),
        category=require_member(ExpenseCategory, command.category, "category").value,
        amount=require_positive_money(command.amount, "amount"),
    )
    commit_batch(context, [data_manager.put(expense)])
    log.info("Recorded expense '%s' (amount=%s)", expense.expense_id, expense.amount)
    return expense


def update_expense(context: RuntimeContext, expense: data_manager.ExpenseRow) -> data_manager.ExpenseRow:
    get_expense(context, expense.expense_id)
    updated = replace(
        expense,
        owner_id=context.owner_id,
        description=require_text(expense.description, "description"),
        category=require_member(ExpenseCategory, expense.category, "category").value,
        amount=require_positive_money(expense.amount, "amount"),
        date=normalize_date(expense.date),
    )
    commit_batch(context, [data_manager.put(updated)])
    log.info("Updated expense '%s'", updated.expense_id)
    return updated


def delete_expense(context: RuntimeContext, expense_id: str) -> Optional[data_manager.ExpenseRow]:
    return _delete_single(context, Collection.EXPENSES, expense_id)


def add_supplier(context: RuntimeContext, command: SupplierCommand) -> data_manager.SupplierRow:
    supplier = data_manager.SupplierRow(
        supplier_id=generate_id(Collection.SUPPLIERS),
        owner_id=context.owner_id,
        name=require_text(command.name, "name"),
        contact_person=_optional_text(command.contact_person),
        phone=_optional_text(command.phone),
        email=_optional_text(command.email),
    )
    commit_batch(context, [data_manager.put(supplier)])
    log.info("Added supplier '%s' (%s)", supplier.supplier_id, supplier.name)
    return supplier


def update_supplier(context: RuntimeContext, supplier: data_manager.SupplierRow) -> data_manager.SupplierRow:
    get_supplier(context, supplier.supplier_id)
    updated = replace(
        supplier,
        owner_id=context.owner_id,
        name=require_text(supplier.name, "name"),
        contact_person=_optional_text(supplier.contact_person),
        phone=_optional_text(supplier.phone),
        email=_optional_text(supplier.email),
    )
    commit_batch(context, [data_manager.put(updated)])
    log.info("Updated supplier '%s'", updated.supplier_id)
    return updated


def delete_supplier(context: RuntimeContext, supplier_id: str) -> Optional[data_manager.SupplierRow]:
    return _delete_single(context, Collection.SUPPLIERS, supplier_id)


def add_staff_member(context: RuntimeContext, command: StaffCommand) -> data_manager.StaffRow:
    member = data_manager.StaffRow(
        staff_id=generate_id(Collection.STAFF),
        owner_id=context.owner_id,
        name=require_text(command.name, "name"),
        position=require_text(command.position, "position"),
        salary=require_nonnegative_money(command.salary, "salary"),
        phone=_optional_text(command.phone),
    )
    commit_batch(context, [data_manager.put(member)])
    log.info("Added staff member '%s' (%s)", member.staff_id, member.name)
    return member


def update_staff_member(context: RuntimeContext, member: data_manager.StaffRow) -> data_manager.StaffRow:
    get_staff_member(context, member.staff_id)
    updated = replace(
        member,
        owner_id=context.owner_id,
        name=require_text(member.name, "name"),
        position=require_text(member.position, "position"),
        salary=require_nonnegative_money(member.salary, "salary"),
        phone=_optional_text(member.phone),
    )
    commit_batch(context, [data_manager.put(updated)])
    log.info("Updated staff member '%s'", updated.staff_id)
    return updated


def delete_staff_member(context: RuntimeContext, staff_id: str) -> Optional[data_manager.StaffRow]:
    return _delete_single(context, Collection.STAFF, staff_id)


def _delete_single(context: RuntimeContext, collection: Collection, record_id: str) -> Optional[Any]:
    record = _find(context, collection, record_id)
    if record is None:
        log.debug("Delete of unknown %s record '%s' ignored", collection.value, record_id)
        return None
    commit_batch(context, [data_manager.delete(collection, record_id)])
    log.info("Deleted %s record '%s'", collection.value, record_id)
    return record


# ---------------------------------------------------------------------------
# Identifiers and validation helpers
# ---------------------------------------------------------------------------


def generate_id(collection: Collection, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable record identifier using UTC timestamps.

    Args:
        collection (Collection): Collection the identifier is minted for; it
            selects the prefix from ``ID_PREFIXES``.
        when (datetime | None): Timestamp used for the identifier. When
            ``None`` the current UTC time is used.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}{suffix}``.

    The four hex characters of random suffix keep identifiers unique when one
    batch mints several records from the same timestamp.
    """
    when = when or _resolve_timestamp(None)
    prefix = ID_PREFIXES[Collection(collection)]
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}{secrets.token_hex(2).upper()}"


def count_items(description: str) -> int:
    """Count comma-separated segments of a sale description."""

    return len(description.split(","))


def _as_decimal(value: Any, field_name: str) -> Decimal:
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)) and not isinstance(value, bool):
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            log.error("Field '%s' is not a number: %r", field_name, value)
            raise ValidationError(f"{field_name} must be a number, got {value!r}") from None
    else:
        log.error("Field '%s' is not a number: %r", field_name, value)
        raise ValidationError(f"{field_name} must be a number, got {value!r}")
    if not result.is_finite():
        log.error("Field '%s' is not finite: %r", field_name, value)
        raise ValidationError(f"{field_name} must be finite")
    return result


def require_positive_money(amount: Any, field_name: str = "amount") -> Decimal:
    """Validate that a monetary value is strictly positive.

    Raises:
        ValidationError: If ``amount`` is not a number or is zero or negative.
    """
    value = _as_decimal(amount, field_name)
    if value <= Decimal("0"):
        log.error("Monetary value validation failed for '%s': %s", field_name, value)
        raise ValidationError(f"{field_name} must be greater than zero")
    return value


def require_nonnegative_money(amount: Any, field_name: str = "amount") -> Decimal:
    """Validate that a monetary value is zero or positive.

    Raises:
        ValidationError: If ``amount`` is not a number or is negative.
    """
    value = _as_decimal(amount, field_name)
    if value < Decimal("0"):
        log.error("Monetary value validation failed for '%s': %s", field_name, value)
        raise ValidationError(f"{field_name} must be zero or positive")
    return value


def require_nonzero_quantity(quantity: Any) -> Decimal:
    value = _as_decimal(quantity, "quantity")
    if value == 0:
        log.error("Quantity validation failed: %s", value)
        raise ValidationError("quantity must not be zero")
    return value


def require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        log.error("Field '%s' must be a non-empty string, got %r", field_name, value)
        raise ValidationError(f"{field_name} must not be empty")
    _reject_control_characters(value, field_name)
    return value.strip()


def _reject_control_characters(value: str, field_name: str) -> None:
    if ILLEGAL_CHARACTERS_RE.search(value):
        log.error("Field '%s' contains control characters: %r", field_name, value)
        raise ValidationError(f"{field_name} must not contain control characters")


def require_member(enum_type: Type[Enum], value: Any, field_name: str) -> Any:
    """Coerce ``value`` into a member of ``enum_type``.

    Raises:
        ValidationError: If ``value`` is neither a member nor a member's value.
    """
    if isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        log.error("Unsupported %s provided: %r", field_name, value)
        raise ValidationError(f"Unsupported {field_name}: {value!r} (expected one of: {allowed})") from None


def _optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    _reject_control_characters(value, "text")
    return value or None


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value

