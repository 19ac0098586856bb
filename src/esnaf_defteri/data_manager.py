"""Data access layer for Esnaf Defteri.

This module provides low-level helpers that read from and write to the shop
workbook. Ledger rules belong elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading owner-scoped records from a collection sheet.
4. Write batches: staging ``put``/``patch``/``delete`` operations and applying
   them to the workbook as a single all-or-nothing unit.
"""


from __future__ import annotations

import configparser
import os
import tempfile
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import DEFAULT_OVERDUE_DAYS, Collection


CONFIG_FILE_NAME = "config.ini"
OWNER_HEADER = "OwnerID"


class PersistenceFailure(Exception):
    """Raised when a write batch could not be committed to the workbook."""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    default_owner_id: str
    overdue_days: int = DEFAULT_OVERDUE_DAYS


@dataclass(frozen=True)
class CustomerRow:
    """In-memory view of a row from the ``Customers`` sheet."""

    customer_id: str
    owner_id: str
    name: str
    email: Optional[str]
    balance: Decimal


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    owner_id: str
    name: str
    product_type: str
    stock: Decimal
    price: Decimal
    cost: Decimal
    low_stock_threshold: Decimal


@dataclass(frozen=True)
class OrderRow:
    """In-memory view of a row from the ``Orders`` sheet.

    Positive totals are sales (debt increase), negative totals are payments.
    """

    order_id: str
    owner_id: str
    customer_id: str
    customer_name: str
    description: str
    items: int
    total: Decimal
    status: str
    date: str
    payment_method: Optional[str]


@dataclass(frozen=True)
class StockAdjustmentRow:
    """In-memory view of a row from the ``StockAdjustments`` sheet."""

    adjustment_id: str
    owner_id: str
    product_id: str
    product_name: str
    quantity: Decimal
    description: str
    category: str
    date: str


@dataclass(frozen=True)
class ExpenseRow:
    expense_id: str
    owner_id: str
    date: str
    description: str
    category: str
    amount: Decimal


@dataclass(frozen=True)
class CashboxEntryRow:
    """In-memory view of one day-close record."""

    entry_id: str
    owner_id: str
    date: str
    opening_cash: Decimal
    cash_in: Decimal
    card_in: Decimal
    cash_out: Decimal
    expected_cash: Decimal
    counted_cash: Decimal
    counted_card: Decimal
    cash_difference: Decimal


@dataclass(frozen=True)
class SupplierRow:
    supplier_id: str
    owner_id: str
    name: str
    contact_person: Optional[str]
    phone: Optional[str]
    email: Optional[str]


@dataclass(frozen=True)
class StaffRow:
    staff_id: str
    owner_id: str
    name: str
    position: str
    salary: Decimal
    phone: Optional[str]


@dataclass(frozen=True)
class SheetSchema:
    """Describe how one collection maps onto worksheet columns.

    ``columns`` pairs each header with the dataclass attribute it stores. The
    first column is always the record key and the second the owner id.
    """

    collection: Collection
    row_type: type
    columns: Tuple[Tuple[str, str], ...]
    decimal_fields: frozenset = frozenset()
    integer_fields: frozenset = frozenset()
    optional_fields: frozenset = frozenset()

    @property
    def sheet_name(self) -> str:
        return self.collection.value

    @property
    def headers(self) -> List[str]:
        return [header for header, _ in self.columns]

    @property
    def key_attribute(self) -> str:
        return self.columns[0][1]

    def position_of(self, attribute: str) -> int:
        """Return the zero-based column position storing ``attribute``."""

        for position, (_, candidate) in enumerate(self.columns):
            if candidate == attribute:
                return position
        raise KeyError(f"Unknown {self.sheet_name} field: {attribute}")


SCHEMAS: Mapping[Collection, SheetSchema] = {
    Collection.CUSTOMERS: SheetSchema(
        collection=Collection.CUSTOMERS,
        row_type=CustomerRow,
        columns=(
            ("CustomerID", "customer_id"),
            (OWNER_HEADER, "owner_id"),
            ("Name", "name"),
            ("Email", "email"),
            ("Balance", "balance"),
        ),
        decimal_fields=frozenset({"balance"}),
        optional_fields=frozenset({"email"}),
    ),
    Collection.PRODUCTS: SheetSchema(
        collection=Collection.PRODUCTS,
        row_type=ProductRow,
        columns=(
            ("ProductID", "product_id"),
            (OWNER_HEADER, "owner_id"),
            ("Name", "name"),
            ("Type", "product_type"),
            ("Stock", "stock"),
            ("Price", "price"),
            ("Cost", "cost"),
            ("LowStockThreshold", "low_stock_threshold"),
        ),
        decimal_fields=frozenset({"stock", "price", "cost", "low_stock_threshold"}),
    ),
    Collection.ORDERS: SheetSchema(
        collection=Collection.ORDERS,
        row_type=OrderRow,
        columns=(
            ("OrderID", "order_id"),
            (OWNER_HEADER, "owner_id"),
            ("CustomerID", "customer_id"),
            ("CustomerName", "customer_name"),
            ("Description", "description"),
            ("Items", "items"),
            ("Total", "total"),
            ("Status", "status"),
            ("Date", "date"),
            ("PaymentMethod", "payment_method"),
        ),
        decimal_fields=frozenset({"total"}),
        integer_fields=frozenset({"items"}),
        optional_fields=frozenset({"payment_method"}),
    ),
    Collection.STOCK_ADJUSTMENTS: SheetSchema(
        collection=Collection.STOCK_ADJUSTMENTS,
        row_type=StockAdjustmentRow,
        columns=(
            ("AdjustmentID", "adjustment_id"),
            (OWNER_HEADER, "owner_id"),
            ("ProductID", "product_id"),
            ("ProductName", "product_name"),
            ("Quantity", "quantity"),
            ("Description", "description"),
            ("Category", "category"),
            ("Date", "date"),
        ),
        decimal_fields=frozenset({"quantity"}),
    ),
    Collection.EXPENSES: SheetSchema(
        collection=Collection.EXPENSES,
        row_type=ExpenseRow,
        columns=(
            ("ExpenseID", "expense_id"),
            (OWNER_HEADER, "owner_id"),
            ("Date", "date"),
            ("Description", "description"),
            ("Category", "category"),
            ("Amount", "amount"),
        ),
        decimal_fields=frozenset({"amount"}),
    ),
    Collection.CASHBOX_ENTRIES: SheetSchema(
        collection=Collection.CASHBOX_ENTRIES,
        row_type=CashboxEntryRow,
        columns=(
            ("EntryID", "entry_id"),
            (OWNER_HEADER, "owner_id"),
            ("Date", "date"),
            ("OpeningCash", "opening_cash"),
            ("CashIn", "cash_in"),
            ("CardIn", "card_in"),
            ("CashOut", "cash_out"),
            ("ExpectedCash", "expected_cash"),
            ("CountedCash", "counted_cash"),
            ("CountedCard", "counted_card"),
            ("CashDifference", "cash_difference"),
        ),
        decimal_fields=frozenset(
            {
                "opening_cash",
                "cash_in",
                "card_in",
                "cash_out",
                "expected_cash",
                "counted_cash",
                "counted_card",
                "cash_difference",
            }
        ),
    ),
    Collection.SUPPLIERS: SheetSchema(
        collection=Collection.SUPPLIERS,
        row_type=SupplierRow,
        columns=(
            ("SupplierID", "supplier_id"),
            (OWNER_HEADER, "owner_id"),
            ("Name", "name"),
            ("ContactPerson", "contact_person"),
            ("Phone", "phone"),
            ("Email", "email"),
        ),
        optional_fields=frozenset({"contact_person", "phone", "email"}),
    ),
    Collection.STAFF: SheetSchema(
        collection=Collection.STAFF,
        row_type=StaffRow,
        columns=(
            ("StaffID", "staff_id"),
            (OWNER_HEADER, "owner_id"),
            ("Name", "name"),
            ("Position", "position"),
            ("Salary", "salary"),
            ("Phone", "phone"),
        ),
        decimal_fields=frozenset({"salary"}),
        optional_fields=frozenset({"phone"}),
    ),
}

_ROW_TYPES: Mapping[type, Collection] = {schema.row_type: collection for collection, schema in SCHEMAS.items()}


@dataclass(frozen=True)
class WriteOperation:
    """One staged mutation inside a write batch.

    Build instances with :func:`put`, :func:`patch` and :func:`delete` rather
    than directly so the ``kind``-specific payload is always consistent.
    """

    kind: str
    collection: Collection
    row_id: str
    record: Any = None
    field_values: Mapping[str, Any] = field(default_factory=dict)


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for candidate_dir in (current, *current.parents):
        candidate = candidate_dir / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are expanded against ``base_path`` when
    provided, or against the current working directory as a fallback. The
    ``[Alerts]`` section is optional; ``OverdueDays`` defaults to
    ``DEFAULT_OVERDUE_DAYS``.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``OverdueDays`` is not a positive integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
        default_owner_id = parser.get("Defaults", "OwnerID")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    overdue_days = parser.getint("Alerts", "OverdueDays", fallback=DEFAULT_OVERDUE_DAYS)
    if overdue_days <= 0:
        raise ValueError(f"OverdueDays must be positive, got {overdue_days}")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        default_owner_id=default_owner_id,
        overdue_days=overdue_days,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the shop workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def validate_workbook(workbook: Workbook) -> None:
    """Check that every collection sheet exists with the expected headers.

    Raises:
        KeyError: If a sheet is missing or its header row does not match the
            schema.
    """

    for schema in SCHEMAS.values():
        if schema.sheet_name not in workbook.sheetnames:
            raise KeyError(f"Workbook is missing sheet: {schema.sheet_name}")
        sheet = workbook[schema.sheet_name]
        headers = [cell.value for cell in sheet[1]][: len(schema.columns)]
        if headers != schema.headers:
            raise KeyError(
                f"Unexpected headers on sheet '{schema.sheet_name}': {headers}"
            )


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination`` without ever leaving it half-written.

    The workbook is first serialized into a temporary file beside the target
    and then moved over it with :func:`os.replace`, which is atomic on the same
    filesystem. Parent directories are created on demand.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the serialized
            workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    handle, temp_name = tempfile.mkstemp(prefix=f".{dest.stem}-", suffix=dest.suffix, dir=dest.parent)
    os.close(handle)
    try:
        workbook.save(temp_name)
        os.replace(temp_name, dest)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any in-memory changes."""

    return open_workbook(data_file)


def schema_for(collection: Collection) -> SheetSchema:
    return SCHEMAS[Collection(collection)]


def record_key(record: Any) -> str:
    """Return the primary key of any row dataclass."""

    schema = SCHEMAS[collection_of(record)]
    return getattr(record, schema.key_attribute)


def collection_of(record: Any) -> Collection:
    try:
        return _ROW_TYPES[type(record)]
    except KeyError as exc:
        raise TypeError(f"Not a storable record: {record!r}") from exc


def iter_rows(workbook: Workbook, collection: Collection, *, owner_id: Optional[str] = None) -> Iterable[Any]:
    """Iterate over the records stored on a collection worksheet.

    The header row and fully empty rows are skipped. When ``owner_id`` is
    given, rows belonging to any other owner are never yielded.

    Args:
        workbook (Workbook): Workbook containing the collection sheet.
        collection (Collection): Collection to read.
        owner_id (str | None): Owner partition to restrict the iteration to.

    Yields:
        Row dataclass instances in sheet order.
    """

    schema = schema_for(collection)
    for raw in _read_raw_rows(workbook, schema):
        record = deserialize_row(schema, raw)
        if owner_id is not None and record.owner_id != owner_id:
            continue
        yield record


def list_rows(
    workbook: Workbook,
    collection: Collection,
    *,
    owner_id: str,
    filters: Optional[Mapping[str, Any]] = None,
) -> List[Any]:
    """Return the owner's records whose attributes equal every ``filters`` value."""

    filters = dict(filters or {})
    return [
        record
        for record in iter_rows(workbook, collection, owner_id=owner_id)
        if all(getattr(record, name) == _cell_value(value) for name, value in filters.items())
    ]


def get_row(workbook: Workbook, collection: Collection, row_id: str, *, owner_id: str) -> Optional[Any]:
    """Return one record by key, or ``None`` when absent or owned by someone else."""

    schema = schema_for(collection)
    for record in iter_rows(workbook, collection, owner_id=owner_id):
        if getattr(record, schema.key_attribute) == row_id:
            return record
    return None


def put(record: Any) -> WriteOperation:
    """Stage an insert-or-replace of ``record``."""

    return WriteOperation(kind="put", collection=collection_of(record), row_id=record_key(record), record=record)


def patch(collection: Collection, row_id: str, **field_values: Any) -> WriteOperation:
    """Stage an update of selected fields on an existing record."""

    return WriteOperation(kind="patch", collection=Collection(collection), row_id=row_id, field_values=field_values)


def delete(collection: Collection, row_id: str) -> WriteOperation:
    """Stage a delete; deleting an absent record is not an error."""

    return WriteOperation(kind="delete", collection=Collection(collection), row_id=row_id)


def apply_batch(
    workbook: Workbook,
    operations: Sequence[WriteOperation],
    *,
    owner_id: str,
    destination: Optional[Path] = None,
) -> None:
    """Apply a batch of write operations as one all-or-nothing unit.

    Every operation is first staged against in-memory copies of the affected
    sheets; the workbook itself is only touched once the whole batch staged
    cleanly. When ``destination`` is given the workbook is then saved. A
    failure while writing the sheets or saving restores the previous sheet
    contents before the error is surfaced. Either every write in the batch is
    applied (and durable) or the workbook is left exactly as it was.

    Args:
        workbook (Workbook): Workbook receiving the writes.
        operations (Sequence[WriteOperation]): Staged operations, applied in
            order.
        owner_id (str): Owner partition the batch writes into. Touching a
            record owned by another partition rejects the batch.
        destination (Path | None): Workbook path to persist to after the
            in-memory apply.

    Raises:
        PersistenceFailure: If any operation cannot be staged (patch of a
            missing record, unknown field, foreign owner, text a worksheet
            cannot hold) or the sheets cannot be written or saved.
    """

    if not operations:
        return

    affected: List[Collection] = []
    for operation in operations:
        if operation.collection not in affected:
            affected.append(operation.collection)

    snapshot: Dict[Collection, List[List[Any]]] = {
        collection: _read_raw_rows(workbook, schema_for(collection)) for collection in affected
    }
    staged = {collection: [list(row) for row in rows] for collection, rows in snapshot.items()}

    for operation in operations:
        try:
            _stage_operation(staged[operation.collection], operation, owner_id=owner_id)
        except PersistenceFailure as exc:
            log.error("Rejected batch of %d operation(s): %s", len(operations), exc)
            raise

    try:
        for collection in affected:
            _write_raw_rows(workbook, schema_for(collection), staged[collection])
        if destination is not None:
            save_workbook(workbook, destination)
    except Exception as exc:
        for collection in affected:
            _write_raw_rows(workbook, schema_for(collection), snapshot[collection])
        log.error("Rolled back %d staged operation(s): %s", len(operations), exc)
        target = destination if destination is not None else "workbook"
        raise PersistenceFailure(f"Could not write batch to '{target}': {exc}") from exc


def _stage_operation(rows: List[List[Any]], operation: WriteOperation, *, owner_id: str) -> None:
    """Apply one operation to the staged raw rows of its sheet."""

    schema = schema_for(operation.collection)
    index = _find_index(rows, operation.row_id)
    if index is not None and rows[index][1] != owner_id:
        raise PersistenceFailure(
            f"{schema.sheet_name} record '{operation.row_id}' belongs to another owner"
        )

    if operation.kind == "put":
        if operation.record.owner_id != owner_id:
            raise PersistenceFailure(
                f"Refusing to write {schema.sheet_name} record '{operation.row_id}' for another owner"
            )
        values = serialize_row(operation.record)
        for (_, attribute), value in zip(schema.columns, values):
            _check_storable(schema, attribute, value)
        if index is None:
            rows.append(values)
        else:
            rows[index] = values
    elif operation.kind == "patch":
        if index is None:
            raise PersistenceFailure(f"Cannot patch missing {schema.sheet_name} record '{operation.row_id}'")
        for attribute, value in operation.field_values.items():
            if attribute in (schema.key_attribute, "owner_id"):
                raise PersistenceFailure(f"Field '{attribute}' of {schema.sheet_name} is immutable")
            try:
                position = schema.position_of(attribute)
            except KeyError as exc:
                raise PersistenceFailure(str(exc)) from exc
            value = _cell_value(value)
            _check_storable(schema, attribute, value)
            rows[index][position] = value
    elif operation.kind == "delete":
        if index is not None:
            del rows[index]
    else:
        raise PersistenceFailure(f"Unsupported write operation: {operation.kind}")


def _check_storable(schema: SheetSchema, attribute: str, value: Any) -> None:
    if isinstance(value, str) and ILLEGAL_CHARACTERS_RE.search(value):
        raise PersistenceFailure(f"{schema.sheet_name} field '{attribute}' contains control characters")


def _find_index(rows: Sequence[Sequence[Any]], row_id: str) -> Optional[int]:
    for index, row in enumerate(rows):
        if row[0] is not None and str(row[0]) == row_id:
            return index
    return None


def _read_raw_rows(workbook: Workbook, schema: SheetSchema) -> List[List[Any]]:
    """Return every non-empty data row of a sheet, padded to the schema width."""

    sheet = workbook[schema.sheet_name]
    width = len(schema.columns)
    rows: List[List[Any]] = []
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            values = list(raw[:width])
            values.extend([None] * (width - len(values)))
            rows.append(values)
    return rows


def _write_raw_rows(workbook: Workbook, schema: SheetSchema, rows: Sequence[Sequence[Any]]) -> None:
    """Replace every data row of a sheet with ``rows``, keeping the header."""

    sheet = workbook[schema.sheet_name]
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    for row_index, values in enumerate(rows, start=2):
        for column_index, value in enumerate(values, start=1):
            sheet.cell(row=row_index, column=column_index, value=value)


def _cell_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _to_decimal(raw: Any) -> Decimal:
    if raw is None or raw == "":
        return Decimal("0")
    if isinstance(raw, Decimal):
        return raw
    try:
        return Decimal(str(raw))
    except InvalidOperation as exc:
        raise ValueError(f"Not a numeric cell value: {raw!r}") from exc


def serialize_row(record: Any) -> List[Any]:
    """Convert a row dataclass into its worksheet column ordering.

    Enum members are stored by value and :class:`~decimal.Decimal` amounts are
    kept as-is so Excel preserves their precision.
    """

    schema = SCHEMAS[collection_of(record)]
    return [_cell_value(getattr(record, attribute)) for _, attribute in schema.columns]


def deserialize_row(schema: SheetSchema, raw_row: Sequence[object]) -> Any:
    """Convert a raw worksheet row into the schema's row dataclass.

    Decimal columns become :class:`~decimal.Decimal` (blank cells read as
    zero), integer columns become ``int``, optional text columns stay ``None``
    when blank, and every other column is coerced to ``str`` to avoid
    surprises caused by Excel interpreting identifiers as numbers.
    """

    values: Dict[str, Any] = {}
    for (_, attribute), cell in zip(schema.columns, raw_row):
        if attribute in schema.decimal_fields:
            values[attribute] = _to_decimal(cell)
        elif attribute in schema.integer_fields:
            values[attribute] = int(cell) if cell not in (None, "") else 0
        elif attribute in schema.optional_fields:
            values[attribute] = None if cell in (None, "") else str(cell)
        else:
            values[attribute] = "" if cell is None else str(cell)
    return schema.row_type(**values)
