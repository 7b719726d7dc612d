"""Data access layer for POS Records.

This module owns every byte that reaches the disk. Business rules belong in
:mod:`pos_records.core_logic`.

The public API is organised around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Record codec: packing rows into fixed-size binary blocks and back.
3. Table store: counting, reading and atomically rewriting table files.
4. ID allocation: deriving the next free identifier from a full scan.
"""


from __future__ import annotations

import configparser
import os
import struct
import tempfile
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Callable, Generic, Iterable, List, Optional, Sequence, TypeVar

from . import log
from .constants import FIELD_CAPACITY, MAX_RECORD_ID, TableFile, TableName


CONFIG_FILE_NAME = "config.ini"
CENTS = Decimal("0.01")

RowT = TypeVar("RowT")


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_dir: Path
    receipt_dir: Path
    store_name: str


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of one record from the product table."""

    product_id: int
    name: str
    description: str
    category: str
    unit: str
    unit_price: Decimal


@dataclass(frozen=True)
class TellerRow:
    """In-memory view of one record from the teller table."""

    teller_id: int
    first_name: str
    middle_name: str
    last_name: str

    @property
    def full_name(self) -> str:
        parts = (self.first_name, self.middle_name, self.last_name)
        return " ".join(part for part in parts if part)


@dataclass(frozen=True)
class SaleRow:
    """One sale line item carrying a snapshot of the product it sold."""

    sale_id: int
    product: ProductRow
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.product.unit_price * self.quantity


@dataclass(frozen=True)
class TableSpec(Generic[RowT]):
    """Everything the store needs to read and write one table.

    The same spec is used for reads and writes so the record size can never
    drift between the two directions.
    """

    name: TableName
    file_name: str
    layout: struct.Struct
    serialize: Callable[[RowT], bytes]
    deserialize: Callable[[bytes], RowT]
    id_of: Callable[[RowT], int]

    @property
    def record_size(self) -> int:
        return self.layout.size


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls where tables live.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no ``CONFIG_FILE_NAME`` exists in the working
            directory or any of its parents.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative directories are anchored at ``base_path`` (normally the folder
    holding ``config.ini``), falling back to the current working directory.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Anchor for relative ``DataDir`` and
            ``ReceiptDir`` entries.

    Returns:
        ConfigSettings: Immutable settings with resolved directories.

    Raises:
        KeyError: If one of the required sections or options is missing.
    """

    try:
        data_dir_raw = parser.get("System", "DataDir")
        store_name = parser.get("System", "StoreName")
        receipt_dir_raw = parser.get("Receipts", "ReceiptDir")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    if base_path is None:
        base_path = Path.cwd()

    return ConfigSettings(
        data_dir=_anchor(Path(data_dir_raw), base_path),
        receipt_dir=_anchor(Path(receipt_dir_raw), base_path),
        store_name=store_name,
    )


def _anchor(candidate: Path, base_path: Path) -> Path:
    candidate = candidate.expanduser()
    if not candidate.is_absolute():
        candidate = base_path / candidate
    return candidate.resolve()


# ---------------------------------------------------------------------------
# Record codec
# ---------------------------------------------------------------------------

_TEXT = f"{FIELD_CAPACITY}s"
_PRODUCT_FIELDS = f"i{_TEXT}{_TEXT}{_TEXT}{_TEXT}f"
_TELLER_FIELDS = f"i{_TEXT}{_TEXT}{_TEXT}"

PRODUCT_LAYOUT = struct.Struct("<" + _PRODUCT_FIELDS)
TELLER_LAYOUT = struct.Struct("<" + _TELLER_FIELDS)
SALE_LAYOUT = struct.Struct("<i" + _PRODUCT_FIELDS + "i")


def encode_text(value: str) -> bytes:
    """Encode a text field; ``struct`` zero-pads it to the field capacity."""
    return value.encode("utf-8")


def decode_text(raw: bytes) -> str:
    """Decode a NUL-terminated text field."""
    return raw.split(b"\x00", 1)[0].decode("utf-8", errors="replace")


def decode_price(raw: float) -> Decimal:
    """Turn a stored 32-bit float back into a cent-exact :class:`Decimal`."""
    return Decimal(raw).quantize(CENTS, rounding=ROUND_HALF_UP)


def _product_values(record: ProductRow) -> tuple:
    return (
        record.product_id,
        encode_text(record.name),
        encode_text(record.description),
        encode_text(record.category),
        encode_text(record.unit),
        float(record.unit_price),
    )


def _product_from_values(values: Sequence) -> ProductRow:
    product_id, name, description, category, unit, unit_price = values
    return ProductRow(
        product_id=product_id,
        name=decode_text(name),
        description=decode_text(description),
        category=decode_text(category),
        unit=decode_text(unit),
        unit_price=decode_price(unit_price),
    )


def serialize_product(record: ProductRow) -> bytes:
    """Pack a product into its fixed-size binary block.

    Args:
        record (ProductRow): Product to encode.

    Returns:
        bytes: Exactly ``PRODUCT_LAYOUT.size`` bytes.
    """

    return PRODUCT_LAYOUT.pack(*_product_values(record))


def deserialize_product(raw: bytes) -> ProductRow:
    """Unpack one product block produced by :func:`serialize_product`."""

    return _product_from_values(PRODUCT_LAYOUT.unpack(raw))


def serialize_teller(record: TellerRow) -> bytes:
    """Pack a teller into its fixed-size binary block."""

    return TELLER_LAYOUT.pack(
        record.teller_id,
        encode_text(record.first_name),
        encode_text(record.middle_name),
        encode_text(record.last_name),
    )


def deserialize_teller(raw: bytes) -> TellerRow:
    """Unpack one teller block produced by :func:`serialize_teller`."""

    teller_id, first_name, middle_name, last_name = TELLER_LAYOUT.unpack(raw)
    return TellerRow(
        teller_id=teller_id,
        first_name=decode_text(first_name),
        middle_name=decode_text(middle_name),
        last_name=decode_text(last_name),
    )


def serialize_sale(record: SaleRow) -> bytes:
    """Pack a sale line item, embedding the full product snapshot.

    The product is copied field by field rather than referenced by id, so
    later edits to the product table never rewrite historical sales.
    """

    return SALE_LAYOUT.pack(
        record.sale_id,
        *_product_values(record.product),
        record.quantity,
    )


def deserialize_sale(raw: bytes) -> SaleRow:
    """Unpack one sale block produced by :func:`serialize_sale`."""

    values = SALE_LAYOUT.unpack(raw)
    return SaleRow(
        sale_id=values[0],
        product=_product_from_values(values[1:-1]),
        quantity=values[-1],
    )


PRODUCTS_TABLE: TableSpec[ProductRow] = TableSpec(
    name=TableName.PRODUCTS,
    file_name=TableFile.PRODUCTS.value,
    layout=PRODUCT_LAYOUT,
    serialize=serialize_product,
    deserialize=deserialize_product,
    id_of=lambda row: row.product_id,
)

TELLERS_TABLE: TableSpec[TellerRow] = TableSpec(
    name=TableName.TELLERS,
    file_name=TableFile.TELLERS.value,
    layout=TELLER_LAYOUT,
    serialize=serialize_teller,
    deserialize=deserialize_teller,
    id_of=lambda row: row.teller_id,
)

SALES_TABLE: TableSpec[SaleRow] = TableSpec(
    name=TableName.SALES,
    file_name=TableFile.SALES.value,
    layout=SALE_LAYOUT,
    serialize=serialize_sale,
    deserialize=deserialize_sale,
    id_of=lambda row: row.sale_id,
)

ALL_TABLES: tuple[TableSpec, ...] = (PRODUCTS_TABLE, TELLERS_TABLE, SALES_TABLE)


# ---------------------------------------------------------------------------
# Table store
# ---------------------------------------------------------------------------


def table_path(data_dir: Path, table: TableSpec) -> Path:
    """Return the file backing ``table`` inside ``data_dir``."""

    return Path(data_dir) / table.file_name


def ensure_table_files(data_dir: Path, tables: Iterable[TableSpec] = ALL_TABLES) -> List[Path]:
    """Create the data directory and any missing table file as an empty file.

    Existing tables are left untouched.

    Args:
        data_dir (Path): Directory that holds the table files.
        tables (Iterable[TableSpec]): Tables to guarantee. Defaults to all three.

    Returns:
        list[Path]: Paths of the files that had to be created.
    """

    data_dir = Path(data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)
    created: List[Path] = []
    for table in tables:
        path = table_path(data_dir, table)
        if not path.exists():
            path.touch()
            created.append(path)
            log.info("Created empty %s table at '%s'", table.name.value, path)
    return created


def _rows_in(size: int, table: TableSpec, path: Path) -> int:
    count, remainder = divmod(size, table.record_size)
    if remainder:
        log.error(
            "Table '%s' is %d bytes, not a multiple of the %d-byte record size; "
            "ignoring %d trailing bytes",
            path,
            size,
            table.record_size,
            remainder,
        )
    return count


def _require_whole(size: int, table: TableSpec, path: Path) -> int:
    count, remainder = divmod(size, table.record_size)
    if remainder:
        raise ValueError(
            f"{table.name.value} table '{path}' is corrupt: {size} bytes is not a "
            f"multiple of {table.record_size}"
        )
    return count


def _read_bytes(path: Path) -> bytes:
    try:
        with open(path, "rb") as handle:
            return handle.read()
    except FileNotFoundError:
        log.debug("Table '%s' does not exist yet; treating as empty", path)
    return b""


def record_count(path: Path, table: TableSpec) -> int:
    """Return how many whole records ``path`` holds.

    A missing file counts as an empty table; any other error opening the
    file propagates. A file whose size is not a multiple of the record size
    is reported in the log and the partial tail is dropped by integer
    division.

    Args:
        path (Path): Table file to inspect.
        table (TableSpec): Spec providing the record size.

    Returns:
        int: Number of complete records in the file.
    """

    try:
        with open(path, "rb") as handle:
            size = os.fstat(handle.fileno()).st_size
    except FileNotFoundError:
        return 0
    return _rows_in(size, table, Path(path))


def read_all(path: Path, table: TableSpec[RowT], *, strict: bool = False) -> List[RowT]:
    """Read every record of a table in file order.

    Args:
        path (Path): Table file to read.
        table (TableSpec): Spec describing the record layout.
        strict (bool): Reject a partial trailing record instead of dropping
            it. Callers that rewrite the table read strictly.

    Returns:
        list: Decoded rows, empty when the file is missing or empty.

    Raises:
        OSError: If the file exists but cannot be read.
        ValueError: If ``strict`` and the file size is not a multiple of the
            record size.
    """

    path = Path(path)
    data = _read_bytes(path)
    size = table.record_size
    if strict:
        count = _require_whole(len(data), table, path)
    else:
        count = _rows_in(len(data), table, path)
    view = memoryview(data)
    return [table.deserialize(bytes(view[index * size:(index + 1) * size])) for index in range(count)]


def replace_all(path: Path, table: TableSpec[RowT], records: Iterable[RowT]) -> None:
    """Truncate and rewrite a table with ``records`` in the given order.

    This is the only mutation primitive. The complete byte image is built in
    memory before anything is written, then written to a temporary file next
    to the table, flushed to disk and moved over the table with
    :func:`os.replace`. A failure at any step leaves the existing table as it
    was and removes the temporary file.

    Args:
        path (Path): Table file to replace.
        table (TableSpec): Spec used to encode the rows.
        records (Iterable): Complete new contents of the table.

    Raises:
        OSError: If the temporary file cannot be created, written or moved
            into place.
    """

    path = Path(path)
    payload = b"".join(table.serialize(record) for record in records)

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_name, path)
    except OSError:
        try:
            os.unlink(temp_name)
        except FileNotFoundError:
            pass
        raise

    log.debug(
        "Rewrote %s table '%s' with %d records",
        table.name.value,
        path,
        len(payload) // table.record_size,
    )


def append_records(path: Path, table: TableSpec[RowT], records: Iterable[RowT]) -> List[RowT]:
    """Append ``records`` after the existing rows by rewriting the whole table.

    Returns:
        list: The full row set that was written.

    Raises:
        ValueError: If the existing table is corrupt; nothing is written.
    """

    rows = read_all(path, table, strict=True)
    rows.extend(records)
    replace_all(path, table, rows)
    return rows


def check_table_integrity(path: Path, table: TableSpec) -> int:
    """Verify that a table file holds only whole records.

    Args:
        path (Path): Table file to verify.
        table (TableSpec): Spec providing the record size.

    Returns:
        int: Number of records, ``0`` for a missing file.

    Raises:
        ValueError: If the file size is not a multiple of the record size.
    """

    path = Path(path)
    if not path.exists():
        return 0
    return _require_whole(path.stat().st_size, table, path)


# ---------------------------------------------------------------------------
# ID allocation
# ---------------------------------------------------------------------------


def allocate_id(rows: Sequence[RowT], table: TableSpec[RowT]) -> int:
    """Return ``max(id) + 1`` over ``rows``, or ``1`` when there are none.

    The scan does not assume rows are sorted.

    Raises:
        ValueError: If the next id no longer fits the 32-bit id field.
    """

    if not rows:
        return 1
    candidate = max(table.id_of(row) for row in rows) + 1
    if candidate > MAX_RECORD_ID:
        raise ValueError(f"{table.name.value} table has run out of ids (next would be {candidate})")
    return candidate


def next_id(path: Path, table: TableSpec) -> int:
    """Return the id the next row appended to ``path`` should carry.

    Uniqueness of ids supplied by other means is not enforced here.
    """

    return allocate_id(read_all(path, table, strict=True), table)
