"""Enumerations and fixed values shared across the POS Records layers.

The data access layer (DAL), the business logic layer (BLL) and the CLI all
rely on these names so that table files and record limits are defined once.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Capacity of every fixed-width text field, terminating NUL included.
FIELD_CAPACITY = 250

# Longest encoded (UTF-8) content that still leaves room for the NUL.
MAX_FIELD_BYTES = FIELD_CAPACITY - 1

RECEIPT_SUFFIX = "_sale_transaction.txt"

# Largest unit price a 32-bit float still stores to the exact cent.
MAX_UNIT_PRICE = Decimal("99999.99")

# Ids and quantities are stored as signed 32-bit integers.
MAX_RECORD_ID = 2**31 - 1


class TableName(str, Enum):
    """Enumerate the binary tables managed by the DAL."""

    PRODUCTS = "Products"
    TELLERS = "Tellers"
    SALES = "Sales"


class TableFile(str, Enum):
    """File name backing each table inside the data directory."""

    PRODUCTS = "product_records.bin"
    TELLERS = "teller_records.bin"
    SALES = "sale_records.bin"


class ProductUnit(str, Enum):
    """Common selling units offered as CLI suggestions."""

    PIECE = "piece"
    KILO = "kilo"


class Outcome(str, Enum):
    """Result of a single-row CLI flow (select, persist, report)."""

    SUCCESS = "success"
    NOT_FOUND = "not-found"
    AMBIGUOUS = "ambiguous"


__all__ = [
    "FIELD_CAPACITY",
    "MAX_FIELD_BYTES",
    "RECEIPT_SUFFIX",
    "MAX_UNIT_PRICE",
    "MAX_RECORD_ID",
    "TableName",
    "TableFile",
    "ProductUnit",
    "Outcome",
]
