"""Business logic layer for POS Records.

This module holds the rules applied on top of the flat-file tables: field
validation, the generic repository shared by products, tellers and sales, and
the batched sale workflow. All I/O goes through :mod:`pos_records.data_manager`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Generic, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar

from . import data_manager, log
from .constants import MAX_FIELD_BYTES, MAX_RECORD_ID, MAX_UNIT_PRICE, RECEIPT_SUFFIX
from .data_manager import ProductRow, SaleRow, TableSpec, TellerRow


RowT = TypeVar("RowT")

CENTS = data_manager.CENTS


class PosError(Exception):
    """Base class for every domain error raised by the business layer."""


class RecordNotFoundError(PosError):
    """Raised when a product, teller or sale id cannot be located."""


class ValidationFailure(PosError, ValueError):
    """Raised when input breaks a field rule; the message names the rule."""


class StorageFailure(PosError):
    """Raised when a table or receipt file cannot be written."""


@dataclass(frozen=True)
class RuntimeContext:
    """Configuration shared by every business operation."""

    settings: data_manager.ConfigSettings

    def path_for(self, table: TableSpec) -> Path:
        return data_manager.table_path(self.settings.data_dir, table)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration and make sure every table file exists.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Context ready for repository and sale operations.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    data_manager.ensure_table_files(settings.data_dir)
    log.info("Loaded runtime context for data directory '%s'", settings.data_dir)
    return RuntimeContext(settings=settings)


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current local time, timezone-aware."""

    return candidate if candidate is not None else datetime.now().astimezone()


# ---------------------------------------------------------------------------
# Field rules
# ---------------------------------------------------------------------------


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def require_text(value: Any, *, field_name: str, required: bool = False) -> str:
    """Normalise a text field and check that it fits its fixed-width slot.

    Args:
        value (Any): Raw value; ``None`` is treated as an empty string.
        field_name (str): Name used in error messages.
        required (bool): When ``True`` a blank value is rejected.

    Returns:
        str: The stripped text.

    Raises:
        ValidationFailure: If the value is blank but required, or longer than
            ``MAX_FIELD_BYTES`` once encoded as UTF-8.
    """
    text = "" if value is None else str(value).strip()
    if required and not text:
        log.error("Validation failed: %s is blank", field_name)
        raise ValidationFailure(f"{field_name} must not be blank")
    if "\x00" in text:
        raise ValidationFailure(f"{field_name} must not contain NUL characters")
    if len(text.encode("utf-8")) > MAX_FIELD_BYTES:
        log.error("Validation failed: %s exceeds %d bytes", field_name, MAX_FIELD_BYTES)
        raise ValidationFailure(f"{field_name} must be at most {MAX_FIELD_BYTES} bytes")
    return text


def parse_money(raw: Any) -> Decimal:
    """Parse a non-negative amount and round it to cents.

    Raises:
        ValidationFailure: If ``raw`` is not numeric or is negative.
    """
    if isinstance(raw, bool):
        raise ValidationFailure("Amount must be a number")
    try:
        amount = raw if isinstance(raw, Decimal) else Decimal(str(raw).strip())
    except InvalidOperation as exc:
        log.error("Validation failed: '%s' is not a number", raw)
        raise ValidationFailure(f"Amount must be a number, got '{raw}'") from exc
    if not amount.is_finite():
        raise ValidationFailure(f"Amount must be a number, got '{raw}'")
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValidationFailure("Amount must be zero or positive")
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is at least one.

    Raises:
        ValidationFailure: If ``quantity`` is zero or negative.
    """
    if quantity < 1:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationFailure("Quantity must be at least 1")


def parse_quantity(raw: Any) -> int:
    """Parse a whole-number quantity between one and the stored maximum."""
    quantity = _parse_int(raw, what="Quantity")
    require_positive_quantity(quantity)
    if quantity > MAX_RECORD_ID:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationFailure(f"Quantity must be at most {MAX_RECORD_ID}")
    return quantity


def parse_record_id(raw: Any) -> int:
    """Parse a positive record id."""
    record_id = _parse_int(raw, what="Id")
    if not 1 <= record_id <= MAX_RECORD_ID:
        raise ValidationFailure(f"Id must be between 1 and {MAX_RECORD_ID}")
    return record_id


def _parse_int(raw: Any, *, what: str) -> int:
    if isinstance(raw, bool):
        raise ValidationFailure(f"{what} must be a whole number")
    if isinstance(raw, int):
        return raw
    try:
        return int(str(raw).strip())
    except ValueError as exc:
        log.error("Validation failed: %s '%s' is not a whole number", what, raw)
        raise ValidationFailure(f"{what} must be a whole number, got '{raw}'") from exc


def _text_field(field_name: str, *, required: bool = False) -> Callable[[Any], str]:
    def coerce(raw: Any) -> str:
        return require_text(raw, field_name=field_name, required=required)

    return coerce


def validate_product(row: ProductRow) -> None:
    """Check every field of a product before it is written."""
    require_text(row.name, field_name="name", required=True)
    for name in ("description", "category", "unit"):
        require_text(getattr(row, name), field_name=name)
    if row.unit_price < Decimal("0"):
        raise ValidationFailure("Unit price must be zero or positive")
    if row.unit_price > MAX_UNIT_PRICE:
        raise ValidationFailure(f"Unit price must not exceed {MAX_UNIT_PRICE}")


def validate_teller(row: TellerRow) -> None:
    """Check every field of a teller before it is written."""
    require_text(row.first_name, field_name="first_name", required=True)
    require_text(row.middle_name, field_name="middle_name")
    require_text(row.last_name, field_name="last_name", required=True)


def validate_sale(row: SaleRow) -> None:
    validate_product(row.product)
    require_positive_quantity(row.quantity)


# ---------------------------------------------------------------------------
# Generic repository
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EntitySpec(Generic[RowT]):
    """Per-entity callbacks that parameterise :class:`Repository`.

    ``search_values`` returns the texts a substring search looks at,
    ``coercers`` lists the editable fields with the function that turns user
    input into a typed value, and ``describe`` renders a short label for logs.
    """

    label: str
    table: TableSpec[RowT]
    id_field: str
    search_values: Callable[[RowT], Tuple[str, ...]]
    coercers: Mapping[str, Callable[[Any], Any]]
    validate: Callable[[RowT], None]
    describe: Callable[[RowT], str]
    append_only: bool = False


PRODUCT_ENTITY: EntitySpec[ProductRow] = EntitySpec(
    label="product",
    table=data_manager.PRODUCTS_TABLE,
    id_field="product_id",
    search_values=lambda row: (row.name,),
    coercers={
        "name": _text_field("name", required=True),
        "description": _text_field("description"),
        "category": _text_field("category"),
        "unit": _text_field("unit"),
        "unit_price": parse_money,
    },
    validate=validate_product,
    describe=lambda row: f"#{row.product_id} {row.name}",
)

TELLER_ENTITY: EntitySpec[TellerRow] = EntitySpec(
    label="teller",
    table=data_manager.TELLERS_TABLE,
    id_field="teller_id",
    search_values=lambda row: (row.first_name, row.middle_name, row.last_name),
    coercers={
        "first_name": _text_field("first_name", required=True),
        "middle_name": _text_field("middle_name"),
        "last_name": _text_field("last_name", required=True),
    },
    validate=validate_teller,
    describe=lambda row: f"#{row.teller_id} {row.full_name}",
)

SALE_ENTITY: EntitySpec[SaleRow] = EntitySpec(
    label="sale",
    table=data_manager.SALES_TABLE,
    id_field="sale_id",
    search_values=lambda row: (row.product.name,),
    coercers={},
    validate=validate_sale,
    describe=lambda row: f"#{row.sale_id} {row.product.name} x{row.quantity}",
    append_only=True,
)


class Repository(Generic[RowT]):
    """CRUD and search over one table, every mutation a full rewrite.

    Reads always go back to disk; nothing is cached between calls. Each
    mutating method reads all rows, computes the complete new row set in
    memory and hands it to :func:`data_manager.replace_all`.
    """

    def __init__(self, context: RuntimeContext, entity: EntitySpec[RowT]) -> None:
        self.context = context
        self.entity = entity
        self.path = context.path_for(entity.table)

    def _id_of(self, row: RowT) -> int:
        return self.entity.table.id_of(row)

    def _write(self, rows: Sequence[RowT]) -> None:
        try:
            data_manager.replace_all(self.path, self.entity.table, rows)
        except OSError as exc:
            log.error("Failed to write %s table '%s': %s", self.entity.label, self.path, exc)
            raise StorageFailure(f"Could not write {self.entity.label} table '{self.path}': {exc}") from exc

    def _read_for_write(self) -> List[RowT]:
        try:
            return data_manager.read_all(self.path, self.entity.table, strict=True)
        except (OSError, ValueError) as exc:
            log.error("Refusing to rewrite %s table '%s': %s", self.entity.label, self.path, exc)
            raise StorageFailure(f"Cannot safely rewrite {self.entity.label} table '{self.path}': {exc}") from exc

    def _allocate_id(self, rows: Sequence[RowT]) -> int:
        try:
            return data_manager.allocate_id(rows, self.entity.table)
        except ValueError as exc:
            log.error("%s", exc)
            raise StorageFailure(str(exc)) from exc

    def _require_mutable(self, action: str) -> None:
        if self.entity.append_only:
            raise PosError(f"Cannot {action} a {self.entity.label}: the table is append-only")

    def list(self) -> List[RowT]:
        """Return every row in file order."""
        try:
            return data_manager.read_all(self.path, self.entity.table)
        except OSError as exc:
            log.error("Failed to read %s table '%s': %s", self.entity.label, self.path, exc)
            raise StorageFailure(f"Could not read {self.entity.label} table '{self.path}': {exc}") from exc

    def count(self) -> int:
        try:
            return data_manager.record_count(self.path, self.entity.table)
        except OSError as exc:
            raise StorageFailure(f"Could not read {self.entity.label} table '{self.path}': {exc}") from exc

    def next_id(self) -> int:
        return self._allocate_id(self._read_for_write())

    def find_by_id(self, record_id: int) -> Optional[RowT]:
        """Linear scan for the row carrying ``record_id``."""
        for row in self.list():
            if self._id_of(row) == record_id:
                return row
        return None

    def get(self, record_id: int) -> RowT:
        """Like :meth:`find_by_id` but raise :class:`RecordNotFoundError` on a miss."""
        row = self.find_by_id(record_id)
        if row is None:
            log.warning("%s lookup failed for id %s", self.entity.label.capitalize(), record_id)
            raise RecordNotFoundError(f"Unknown {self.entity.label} id: {record_id}")
        return row

    def search(self, text: str) -> List[RowT]:
        """Case-insensitive substring search over the entity's search fields.

        A row is listed once even when several of its fields match, and rows
        keep their table order.
        """
        needle = text.casefold()
        return [
            row
            for row in self.list()
            if any(needle in value.casefold() for value in self.entity.search_values(row))
        ]

    def add(self, candidate: RowT) -> RowT:
        """Assign the next id to ``candidate`` and append it to the table.

        Any id already on the candidate is overwritten.

        Raises:
            ValidationFailure: If a field breaks its rule.
            StorageFailure: If the table is unreadable or corrupt, has no ids
                left, or cannot be rewritten.
        """
        self._require_mutable("add")
        rows = self._read_for_write()
        new_id = self._allocate_id(rows)
        record = replace(candidate, **{self.entity.id_field: new_id})
        self.entity.validate(record)
        self._write([*rows, record])
        log.info("Added %s %s", self.entity.label, self.entity.describe(record))
        return record

    def update(self, record_id: int, field_values: Mapping[str, Any]) -> RowT:
        """Edit one row in place, keeping any field whose new value is blank.

        Args:
            record_id (int): Id of the row to edit.
            field_values (Mapping[str, Any]): New values keyed by field name.
                ``None`` or whitespace-only strings keep the stored value.

        Returns:
            The row as written.

        Raises:
            RecordNotFoundError: If no row carries ``record_id``.
            KeyError: If a field name is not editable.
            ValidationFailure: If a supplied value breaks its rule.
            StorageFailure: If the table cannot be rewritten.
        """
        self._require_mutable("update")
        for field_name in field_values:
            if field_name not in self.entity.coercers:
                raise KeyError(f"Unknown {self.entity.label} field: {field_name}")

        rows = self._read_for_write()
        index = next((i for i, row in enumerate(rows) if self._id_of(row) == record_id), None)
        if index is None:
            log.warning("%s update failed: id %s not found", self.entity.label.capitalize(), record_id)
            raise RecordNotFoundError(f"Unknown {self.entity.label} id: {record_id}")

        changes = {
            field_name: self.entity.coercers[field_name](raw)
            for field_name, raw in field_values.items()
            if not _is_blank(raw)
        }
        updated = replace(rows[index], **changes)
        self.entity.validate(updated)
        rows[index] = updated
        self._write(rows)
        log.info(
            "Updated %s %s (fields: %s)",
            self.entity.label,
            self.entity.describe(updated),
            ", ".join(sorted(changes)) or "none",
        )
        return updated

    def delete(self, record_id: int) -> Optional[RowT]:
        """Rewrite the table without the row carrying ``record_id``.

        Deleting an id that does not exist still rewrites the unchanged table
        and returns ``None``.
        """
        self._require_mutable("delete")
        rows = self._read_for_write()
        kept = [row for row in rows if self._id_of(row) != record_id]
        removed = [row for row in rows if self._id_of(row) == record_id]
        self._write(kept)
        if not removed:
            log.warning("%s delete: id %s not found, table left unchanged", self.entity.label.capitalize(), record_id)
            return None
        log.info("Deleted %s %s", self.entity.label, self.entity.describe(removed[0]))
        return removed[0]

    def select_from_matches(self, matches: Iterable[RowT], record_id: int) -> RowT:
        """Pick one row out of a search result by id.

        The id must belong to ``matches``; an id from elsewhere in the table is
        rejected rather than acted upon.
        """
        for row in matches:
            if self._id_of(row) == record_id:
                return row
        log.warning("Id %s is not among the matched %s rows", record_id, self.entity.label)
        raise RecordNotFoundError(f"{self.entity.label.capitalize()} id {record_id} is not among the matches")


def product_repository(context: RuntimeContext) -> Repository[ProductRow]:
    return Repository(context, PRODUCT_ENTITY)


def teller_repository(context: RuntimeContext) -> Repository[TellerRow]:
    return Repository(context, TELLER_ENTITY)


def sale_repository(context: RuntimeContext) -> Repository[SaleRow]:
    return Repository(context, SALE_ENTITY)


def new_product(
    *,
    name: Any,
    unit_price: Any,
    description: Any = "",
    category: Any = "",
    unit: Any = "piece",
) -> ProductRow:
    """Build a validated product candidate; its id is assigned on add."""
    candidate = ProductRow(
        product_id=0,
        name=require_text(name, field_name="name", required=True),
        description=require_text(description, field_name="description"),
        category=require_text(category, field_name="category"),
        unit=require_text(unit, field_name="unit"),
        unit_price=parse_money(unit_price),
    )
    validate_product(candidate)
    return candidate


def new_teller(*, first_name: Any, last_name: Any, middle_name: Any = "") -> TellerRow:
    """Build a validated teller candidate; its id is assigned on add."""
    candidate = TellerRow(
        teller_id=0,
        first_name=require_text(first_name, field_name="first_name", required=True),
        middle_name=require_text(middle_name, field_name="middle_name"),
        last_name=require_text(last_name, field_name="last_name", required=True),
    )
    validate_teller(candidate)
    return candidate


def add_product(context: RuntimeContext, **fields: Any) -> ProductRow:
    return product_repository(context).add(new_product(**fields))


def add_teller(context: RuntimeContext, **fields: Any) -> TellerRow:
    return teller_repository(context).add(new_teller(**fields))


# ---------------------------------------------------------------------------
# Sale transactions
# ---------------------------------------------------------------------------


@dataclass
class SaleBatch:
    """Line items entered in one sale session, not yet written.

    Ids run consecutively from ``first_id``; they are not re-derived from the
    table for each item.
    """

    prior_count: int
    first_id: int
    line_items: List[SaleRow] = field(default_factory=list)

    @property
    def next_line_id(self) -> int:
        return self.first_id + len(self.line_items)


@dataclass(frozen=True)
class SaleReceipt:
    """Outcome of a committed sale batch."""

    line_items: Tuple[SaleRow, ...]
    payable: Decimal
    cash: Decimal
    change: Decimal
    timestamp: datetime
    receipt_path: Path
    teller: Optional[TellerRow] = None
    receipt_error: Optional[str] = None


def compute_payable(line_items: Iterable[SaleRow]) -> Decimal:
    """Sum ``unit_price * quantity`` over ``line_items``."""
    return sum((item.line_total for item in line_items), Decimal("0.00"))


def compute_change(payable: Decimal, cash: Decimal) -> Decimal:
    """Return ``cash - payable``.

    Raises:
        ValidationFailure: If ``cash`` does not cover ``payable``.
    """
    if cash < payable:
        log.error("Cash %s does not cover payable amount %s", cash, payable)
        raise ValidationFailure(f"Cash {cash} is less than the payable amount {payable}")
    return cash - payable


def start_sale(context: RuntimeContext) -> SaleBatch:
    """Open a new batch whose ids start at the sale table's next id.

    Raises:
        StorageFailure: If the sale table is unreadable or corrupt.
    """
    sales = sale_repository(context)
    batch = SaleBatch(prior_count=sales.count(), first_id=sales.next_id())
    log.debug("Started sale batch at id %d (%d prior rows)", batch.first_id, batch.prior_count)
    return batch


def add_line_item(context: RuntimeContext, batch: SaleBatch, product_id: Any, quantity: Any) -> SaleRow:
    """Resolve a product and add it to ``batch`` with ``quantity``.

    Raises:
        RecordNotFoundError: If ``product_id`` is not in the product table.
        ValidationFailure: If ``quantity`` is not a whole number of at least 1.
        StorageFailure: If the next line id no longer fits the id field.
    """
    if batch.next_line_id > MAX_RECORD_ID:
        raise StorageFailure(f"Sale table has run out of ids (next would be {batch.next_line_id})")
    product = product_repository(context).get(parse_record_id(product_id))
    item = SaleRow(
        sale_id=batch.next_line_id,
        product=product,
        quantity=parse_quantity(quantity),
    )
    batch.line_items.append(item)
    log.debug("Queued sale line %s", SALE_ENTITY.describe(item))
    return item


def receipt_path_for(context: RuntimeContext, when: datetime) -> Path:
    """Return the daily receipt file for the calendar day of ``when``."""
    return context.settings.receipt_dir / f"{when:%Y-%m-%d}{RECEIPT_SUFFIX}"


def format_receipt(receipt: SaleReceipt, *, store_name: str) -> str:
    """Render a receipt as the block appended to the daily text file."""
    rule = "-" * 64
    lines = [
        "=" * 64,
        store_name,
        f"Date: {receipt.timestamp:%Y-%m-%d %H:%M:%S}",
    ]
    if receipt.teller is not None:
        lines.append(f"Teller: {receipt.teller.full_name} (#{receipt.teller.teller_id})")
    lines.append(rule)
    lines.append(f"{'ID':<6}{'Product':<22}{'Unit':<8}{'Qty':>5}{'Price':>11}{'Total':>12}")
    for item in receipt.line_items:
        lines.append(
            f"{item.sale_id:<6}{item.product.name[:21]:<22}{item.product.unit[:7]:<8}"
            f"{item.quantity:>5}{item.product.unit_price:>11.2f}{item.line_total:>12.2f}"
        )
    lines.append(rule)
    lines.append(f"{'Payable amount:':<20}{receipt.payable:>12.2f}")
    lines.append(f"{'Cash:':<20}{receipt.cash:>12.2f}")
    lines.append(f"{'Change:':<20}{receipt.change:>12.2f}")
    return "\n".join(lines) + "\n\n"


def write_receipt(receipt: SaleReceipt, *, store_name: str) -> None:
    """Append ``receipt`` to its daily text file, creating it if needed."""
    receipt.receipt_path.parent.mkdir(parents=True, exist_ok=True)
    with open(receipt.receipt_path, "a", encoding="utf-8") as handle:
        handle.write(format_receipt(receipt, store_name=store_name))


def finalize_sale(
    context: RuntimeContext,
    batch: SaleBatch,
    cash: Any,
    *,
    teller_id: Optional[Any] = None,
    when: Optional[datetime] = None,
) -> SaleReceipt:
    """Commit a sale batch and append its receipt to the daily text file.

    The binary sale table is written first and is the source of truth: if it
    fails nothing else is touched. A failure writing the text receipt is
    logged and returned on :attr:`SaleReceipt.receipt_error` while the sale
    stays committed.

    Args:
        context (RuntimeContext): Runtime context.
        batch (SaleBatch): Batch built with :func:`start_sale` and
            :func:`add_line_item`.
        cash (Any): Amount tendered; must cover the payable amount.
        teller_id (Any | None): Optional teller printed on the receipt.
        when (datetime | None): Sale time, defaults to now.

    Returns:
        SaleReceipt: Totals, change and where the receipt went.

    Raises:
        ValidationFailure: If the batch is empty or the cash is short.
        RecordNotFoundError: If ``teller_id`` is unknown.
        StorageFailure: If the sale table is corrupt or cannot be written.
    """
    if not batch.line_items:
        raise ValidationFailure("A sale needs at least one line item")

    teller = None
    if teller_id is not None:
        teller = teller_repository(context).get(parse_record_id(teller_id))

    payable = compute_payable(batch.line_items)
    tendered = parse_money(cash)
    change = compute_change(payable, tendered)
    timestamp = _resolve_timestamp(when)

    path = context.path_for(data_manager.SALES_TABLE)
    try:
        current_count = data_manager.record_count(path, data_manager.SALES_TABLE)
        if current_count != batch.prior_count:
            log.warning(
                "Sale table changed during the batch (%d rows, expected %d)",
                current_count,
                batch.prior_count,
            )
        data_manager.append_records(path, data_manager.SALES_TABLE, batch.line_items)
    except (OSError, ValueError) as exc:
        log.error("Failed to write sale table '%s': %s", path, exc)
        raise StorageFailure(f"Could not write sale table '{path}': {exc}") from exc

    log.info(
        "Recorded sale ids %d-%d (payable=%s, cash=%s, change=%s)",
        batch.first_id,
        batch.next_line_id - 1,
        payable,
        tendered,
        change,
    )

    receipt = SaleReceipt(
        line_items=tuple(batch.line_items),
        payable=payable,
        cash=tendered,
        change=change,
        timestamp=timestamp,
        receipt_path=receipt_path_for(context, timestamp),
        teller=teller,
    )
    try:
        write_receipt(receipt, store_name=context.settings.store_name)
    except OSError as exc:
        log.error("Sale committed but receipt '%s' could not be written: %s", receipt.receipt_path, exc)
        return replace(receipt, receipt_error=str(exc))
    return receipt


def record_sale(
    context: RuntimeContext,
    items: Sequence[Tuple[Any, Any]],
    cash: Any,
    *,
    teller_id: Optional[Any] = None,
    when: Optional[datetime] = None,
) -> SaleReceipt:
    """Run a whole sale from ``(product_id, quantity)`` pairs in one call."""
    batch = start_sale(context)
    for product_id, quantity in items:
        add_line_item(context, batch, product_id, quantity)
    return finalize_sale(context, batch, cash, teller_id=teller_id, when=when)
