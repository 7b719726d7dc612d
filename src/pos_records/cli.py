"""Command-line entry points for POS Records.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into repository calls, and rendering the results as
fixed-width text. Keeping the CLI thin lets tests, scripts or another
front-end reuse the same business layer.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple, TypeVar

from . import core_logic, data_manager, export_excel, log
from .constants import Outcome, ProductUnit
from .data_manager import ProductRow, SaleRow, TellerRow


RowT = TypeVar("RowT")

OUTCOME_EXIT_CODES: Mapping[Outcome, int] = {
    Outcome.SUCCESS: 0,
    Outcome.NOT_FOUND: 2,
    Outcome.AMBIGUOUS: 5,
}


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


@dataclass(frozen=True)
class TargetSelection(Generic[RowT]):
    """Result of picking the single row an update or delete acts on."""

    outcome: Outcome
    row: Optional[RowT] = None
    matches: List[RowT] = field(default_factory=list)


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pos-cli",
        description="Command-line tools for the POS Records tables.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "update-product": register_update_product_command(subparsers),
        "delete-product": register_delete_product_command(subparsers),
        "add-teller": register_add_teller_command(subparsers),
        "update-teller": register_update_teller_command(subparsers),
        "delete-teller": register_delete_teller_command(subparsers),
        "sale": register_sale_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and exports."""
    specs = {
        "products": register_products_command(subparsers),
        "tellers": register_tellers_command(subparsers),
        "sales": register_sales_command(subparsers),
        "check": register_check_command(subparsers),
        "export": register_export_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_target_arguments(parser: argparse.ArgumentParser, *, search_help: str) -> None:
    parser.add_argument("--id", dest="record_id", type=int, default=None, help="Id of the record to act on.")
    parser.add_argument("--match", default=None, help=search_help)


def _add_lookup_arguments(parser: argparse.ArgumentParser, *, search_help: str) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--id", dest="record_id", type=int, default=None, help="Show only this id.")
    group.add_argument("--search", default=None, help=search_help)


def _add_product_field_arguments(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--name", required=required, default=None)
    parser.add_argument("--description", default=None)
    parser.add_argument("--category", default=None)
    parser.add_argument(
        "--unit",
        default=None,
        help=f"Selling unit, e.g. {', '.join(unit.value for unit in ProductUnit)}.",
    )
    parser.add_argument("--unit-price", required=required, default=None)


def _add_teller_field_arguments(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--first-name", required=required, default=None)
    parser.add_argument("--middle-name", default=None)
    parser.add_argument("--last-name", required=required, default=None)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Add a product; its id is assigned automatically."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_product_field_arguments(parser, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_update_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-product``."""
    name = "update-product"
    help_text = "Edit a product; omitted or blank fields keep their value."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_target_arguments(parser, search_help="Find the product by name instead of id.")
        _add_product_field_arguments(parser, required=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_product)


def register_delete_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-product``."""
    name = "delete-product"
    help_text = "Delete a product by id or by name."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_target_arguments(parser, search_help="Find the product by name instead of id.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_product)


def register_add_teller_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-teller``."""
    name = "add-teller"
    help_text = "Add a teller; their id is assigned automatically."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_teller_field_arguments(parser, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_teller)


def register_update_teller_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-teller``."""
    name = "update-teller"
    help_text = "Edit a teller; omitted or blank fields keep their value."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_target_arguments(parser, search_help="Find the teller by any part of their name.")
        _add_teller_field_arguments(parser, required=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_teller)


def register_delete_teller_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-teller``."""
    name = "delete-teller"
    help_text = "Delete a teller by id or by name."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_target_arguments(parser, search_help="Find the teller by any part of their name.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_teller)


def parse_item(raw: str) -> Tuple[str, str]:
    """Split a ``PRODUCT_ID:QTY`` argument; values are validated later."""
    product_id, separator, quantity = raw.partition(":")
    if not separator or not product_id.strip() or not quantity.strip():
        raise argparse.ArgumentTypeError(f"Expected PRODUCT_ID:QTY, got '{raw}'")
    return product_id.strip(), quantity.strip()


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale batch and append its receipt."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_item,
            required=True,
            metavar="PRODUCT_ID:QTY",
            help="Line item; repeat for each product sold.",
        )
        parser.add_argument("--cash", required=True, help="Amount tendered by the customer.")
        parser.add_argument("--teller-id", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``products``."""
    name = "products"
    help_text = "List products, optionally by id or name."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_lookup_arguments(parser, search_help="Case-insensitive text to find in product names.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_products_report)


def register_tellers_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``tellers``."""
    name = "tellers"
    help_text = "List tellers, optionally by id or name."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_lookup_arguments(parser, search_help="Case-insensitive text to find in first, middle or last names.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_tellers_report)


def register_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    name = "sales"
    help_text = "List sale line items, optionally by id or product name."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_lookup_arguments(parser, search_help="Case-insensitive text to find in sold product names.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales_report)


def register_check_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``check``."""
    name = "check"
    help_text = "Verify that every table holds only whole records."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_check)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Export all tables to an Excel workbook."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, required=True)
        parser.add_argument("--force", action="store_true", help="Overwrite an existing workbook.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _clip(text: str, width: int) -> str:
    return text if len(text) <= width else text[: width - 1] + "~"


def format_products(rows: Sequence[ProductRow]) -> str:
    """Render products as a fixed-width table."""
    lines = [f"{'ID':<6}{'Name':<24}{'Category':<16}{'Unit':<8}{'Price':>10}  Description"]
    for row in rows:
        lines.append(
            f"{row.product_id:<6}{_clip(row.name, 23):<24}{_clip(row.category, 15):<16}"
            f"{_clip(row.unit, 7):<8}{row.unit_price:>10.2f}  {_clip(row.description, 40)}"
        )
    return "\n".join(lines)


def format_tellers(rows: Sequence[TellerRow]) -> str:
    """Render tellers as a fixed-width table."""
    lines = [f"{'ID':<6}{'First name':<20}{'Middle name':<20}{'Last name':<20}"]
    for row in rows:
        lines.append(
            f"{row.teller_id:<6}{_clip(row.first_name, 19):<20}"
            f"{_clip(row.middle_name, 19):<20}{_clip(row.last_name, 19):<20}"
        )
    return "\n".join(lines)


def format_sales(rows: Sequence[SaleRow]) -> str:
    """Render sale line items as a fixed-width table."""
    lines = [f"{'ID':<6}{'Product':<24}{'Unit':<8}{'Price':>10}{'Qty':>6}{'Total':>12}"]
    for row in rows:
        lines.append(
            f"{row.sale_id:<6}{_clip(row.product.name, 23):<24}{_clip(row.product.unit, 7):<8}"
            f"{row.product.unit_price:>10.2f}{row.quantity:>6}{row.line_total:>12.2f}"
        )
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Target selection
# ---------------------------------------------------------------------------


def select_target(
    repository: core_logic.Repository[RowT],
    *,
    record_id: Optional[int],
    match: Optional[str],
) -> TargetSelection[RowT]:
    """Pick the single row an update or delete should act on.

    With only ``record_id`` the row is looked up directly. With ``match`` the
    table is searched first; several hits need ``record_id`` as well, and that
    id must be one of the hits.
    """
    if match is None:
        if record_id is None:
            raise core_logic.ValidationFailure("Provide --id or --match to choose a record")
        row = repository.find_by_id(record_id)
        if row is None:
            return TargetSelection(Outcome.NOT_FOUND)
        return TargetSelection(Outcome.SUCCESS, row, [row])

    matches = repository.search(match)
    if not matches:
        return TargetSelection(Outcome.NOT_FOUND)
    if record_id is not None:
        try:
            row = repository.select_from_matches(matches, record_id)
        except core_logic.RecordNotFoundError:
            return TargetSelection(Outcome.NOT_FOUND, matches=matches)
        return TargetSelection(Outcome.SUCCESS, row, matches)
    if len(matches) == 1:
        return TargetSelection(Outcome.SUCCESS, matches[0], matches)
    return TargetSelection(Outcome.AMBIGUOUS, matches=matches)


def _report_unresolved(
    selection: TargetSelection[RowT],
    label: str,
    formatter: Callable[[Sequence[RowT]], str],
) -> int:
    if selection.outcome is Outcome.AMBIGUOUS:
        print(f"Several {label}s match; repeat with --id set to one of:")
        print(formatter(selection.matches))
    elif selection.matches:
        print(f"That id is not among the matching {label}s:")
        print(formatter(selection.matches))
    else:
        print(f"No matching {label} found.")
    return OUTCOME_EXIT_CODES[selection.outcome]


def _run_update(
    repository: core_logic.Repository[RowT],
    args: argparse.Namespace,
    changes: Mapping[str, Any],
    formatter: Callable[[Sequence[RowT]], str],
) -> int:
    selection = select_target(repository, record_id=args.record_id, match=args.match)
    if selection.outcome is not Outcome.SUCCESS:
        return _report_unresolved(selection, repository.entity.label, formatter)
    updated = repository.update(repository.entity.table.id_of(selection.row), changes)
    print(f"Updated {repository.entity.label}:")
    print(formatter([updated]))
    return OUTCOME_EXIT_CODES[Outcome.SUCCESS]


def _run_delete(
    repository: core_logic.Repository[RowT],
    args: argparse.Namespace,
    formatter: Callable[[Sequence[RowT]], str],
) -> int:
    label = repository.entity.label
    if args.match is None:
        if args.record_id is None:
            raise core_logic.ValidationFailure("Provide --id or --match to choose a record")
        removed = repository.delete(args.record_id)
    else:
        selection = select_target(repository, record_id=args.record_id, match=args.match)
        if selection.outcome is not Outcome.SUCCESS:
            return _report_unresolved(selection, label, formatter)
        removed = repository.delete(repository.entity.table.id_of(selection.row))

    if removed is None:
        print(f"No {label} with id {args.record_id}; table unchanged.")
    else:
        print(f"Deleted {label}:")
        print(formatter([removed]))
    return OUTCOME_EXIT_CODES[Outcome.SUCCESS]


def _run_listing(
    repository: core_logic.Repository[RowT],
    args: argparse.Namespace,
    formatter: Callable[[Sequence[RowT]], str],
) -> int:
    if args.record_id is not None:
        row = repository.find_by_id(args.record_id)
        if row is None:
            print(f"No {repository.entity.label} with id {args.record_id}.")
            return OUTCOME_EXIT_CODES[Outcome.NOT_FOUND]
        rows = [row]
    elif args.search is not None:
        rows = repository.search(args.search)
    else:
        rows = repository.list()
    print(formatter(rows))
    print(f"({len(rows)} {repository.entity.label}{'' if len(rows) == 1 else 's'})")
    return OUTCOME_EXIT_CODES[Outcome.SUCCESS]


# ---------------------------------------------------------------------------
# Translation and execution
# ---------------------------------------------------------------------------


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-product request."""
    return {
        "name": args.name,
        "description": args.description or "",
        "category": args.category or "",
        "unit": args.unit or ProductUnit.PIECE.value,
        "unit_price": args.unit_price,
    }


def translate_product_changes(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into product field edits; ``None`` keeps a field."""
    return {
        "name": args.name,
        "description": args.description,
        "category": args.category,
        "unit": args.unit,
        "unit_price": args.unit_price,
    }


def translate_add_teller(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-teller request."""
    return {
        "first_name": args.first_name,
        "middle_name": args.middle_name or "",
        "last_name": args.last_name,
    }


def translate_teller_changes(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into teller field edits; ``None`` keeps a field."""
    return {
        "first_name": args.first_name,
        "middle_name": args.middle_name,
        "last_name": args.last_name,
    }


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = core_logic.add_product(context, **translate_add_product(args))
    print("Added product:")
    print(format_products([product]))
    return 0


def run_update_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _run_update(core_logic.product_repository(context), args, translate_product_changes(args), format_products)


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _run_delete(core_logic.product_repository(context), args, format_products)


def run_add_teller(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-teller workflow in the BLL."""
    teller = core_logic.add_teller(context, **translate_add_teller(args))
    print("Added teller:")
    print(format_tellers([teller]))
    return 0


def run_update_teller(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _run_update(core_logic.teller_repository(context), args, translate_teller_changes(args), format_tellers)


def run_delete_teller(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _run_delete(core_logic.teller_repository(context), args, format_tellers)


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL and print the receipt."""
    receipt = core_logic.record_sale(context, args.items, args.cash, teller_id=args.teller_id)
    print(core_logic.format_receipt(receipt, store_name=context.settings.store_name), end="")
    if receipt.receipt_error is not None:
        print(f"Warning: sale saved but receipt file was not written: {receipt.receipt_error}")
    else:
        print(f"Receipt appended to {receipt.receipt_path}")
    return 0


def run_products_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _run_listing(core_logic.product_repository(context), args, format_products)


def run_tellers_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _run_listing(core_logic.teller_repository(context), args, format_tellers)


def run_sales_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _run_listing(core_logic.sale_repository(context), args, format_sales)


def run_check(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Report the row count of each table, flagging corrupt ones."""
    exit_code = 0
    for table in data_manager.ALL_TABLES:
        path = context.path_for(table)
        try:
            count = data_manager.check_table_integrity(path, table)
        except ValueError as error:
            log.error("%s", error)
            print(f"{table.name.value:<10} CORRUPT  {path}")
            exit_code = 4
            continue
        print(f"{table.name.value:<10} {count:>7}  {path}")
    return exit_code


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the workbook export."""
    destination = export_excel.export_workbook(context, args.output, overwrite=args.force)
    print(f"Exported tables to {destination}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.StorageFailure):
        log.error("%s", error)
        return 4
    if isinstance(error, core_logic.PosError):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
