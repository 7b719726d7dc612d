"""Export the binary tables to an Excel workbook for reporting.

The workbook is a read-only snapshot: it is never read back, and the binary
tables stay the source of truth.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable, Mapping, Sequence

import openpyxl
from openpyxl.styles import Font
from openpyxl.worksheet.worksheet import Worksheet

from . import core_logic, log
from .constants import TableName
from .data_manager import ProductRow, SaleRow, TellerRow


SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    TableName.PRODUCTS.value: [
        "ProductID",
        "Name",
        "Description",
        "Category",
        "Unit",
        "UnitPrice",
    ],
    TableName.TELLERS.value: [
        "TellerID",
        "FirstName",
        "MiddleName",
        "LastName",
    ],
    TableName.SALES.value: [
        "SaleID",
        "ProductID",
        "ProductName",
        "Unit",
        "UnitPrice",
        "Quantity",
        "LineTotal",
    ],
}


def product_cells(row: ProductRow) -> list[object]:
    return [row.product_id, row.name, row.description, row.category, row.unit, row.unit_price]


def teller_cells(row: TellerRow) -> list[object]:
    return [row.teller_id, row.first_name, row.middle_name, row.last_name]


def sale_cells(row: SaleRow) -> list[object]:
    return [
        row.sale_id,
        row.product.product_id,
        row.product.name,
        row.product.unit,
        row.product.unit_price,
        row.quantity,
        row.line_total,
    ]


def _write_sheet(worksheet: Worksheet, columns: Sequence[str], rows: Iterable[object], to_cells: Callable) -> int:
    bold_font = Font(bold=True)
    for column_index, column_name in enumerate(columns, start=1):
        cell = worksheet.cell(row=1, column=column_index)
        cell.value = column_name
        cell.font = bold_font

    written = 0
    for row in rows:
        worksheet.append(to_cells(row))
        written += 1
    return written


def export_workbook(
    context: core_logic.RuntimeContext,
    destination: Path,
    *,
    overwrite: bool = False,
) -> Path:
    """Write products, tellers and sales into one workbook at ``destination``.

    Each table gets its own sheet with a bold header row; the Sales sheet adds
    a ``LineTotal`` column. When ``overwrite`` is ``False`` (the default) an
    existing file is left alone and ``FileExistsError`` is raised.

    Returns:
        Path: Resolved location of the saved workbook.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing workbook: {destination}")

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    sources = {
        TableName.PRODUCTS.value: (core_logic.product_repository(context).list(), product_cells),
        TableName.TELLERS.value: (core_logic.teller_repository(context).list(), teller_cells),
        TableName.SALES.value: (core_logic.sale_repository(context).list(), sale_cells),
    }

    for sheet_name, columns in SHEET_COLUMNS.items():
        rows, to_cells = sources[sheet_name]
        worksheet = workbook.create_sheet(title=sheet_name)
        count = _write_sheet(worksheet, columns, rows, to_cells)
        log.debug("Exported %d rows to sheet '%s'", count, sheet_name)

    workbook.save(destination)
    log.info("Exported tables to workbook '%s'", destination)
    return destination
