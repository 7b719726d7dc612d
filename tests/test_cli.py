"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Mapping

import pytest

from pos_records import cli, constants, core_logic, data_manager


WRITE_COMMANDS = {
    "add-product",
    "update-product",
    "delete-product",
    "add-teller",
    "update-teller",
    "delete-teller",
    "sale",
}

READ_COMMANDS = {
    "products",
    "tellers",
    "sales",
    "check",
    "export",
}

# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "pos-cli"
    assert "POS Records" in (parser.description or "")


def test_configure_subcommands_registers_all_commands(cli_parser):
    """configure_subcommands should wire every read and write sub-command."""

    command_table = cli.configure_subcommands(cli_parser)
    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert _registered_choices(cli_parser) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_returns_command_specs(subparsers_action):
    specs = cli.register_write_commands(subparsers_action)
    assert set(specs) == WRITE_COMMANDS
    for spec in specs.values():
        assert isinstance(spec, cli.CommandSpec)
        assert spec.help_text
        assert callable(spec.execute)


def test_register_read_commands_returns_command_specs(subparsers_action):
    specs = cli.register_read_commands(subparsers_action)
    assert set(specs) == READ_COMMANDS
    for name in READ_COMMANDS:
        assert name in subparsers_action.choices


def test_register_add_product_command_configures_arguments():
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    spec = cli.register_add_product_command(subparsers)
    spec.register(subparsers)
    namespace = parser.parse_args(
        ["add-product", "--name", "Milk", "--unit-price", "10.00", "--unit", "piece", "--category", "Dairy"]
    )
    assert namespace.name == "Milk"
    assert namespace.unit_price == "10.00"
    assert namespace.description is None
    assert namespace.command == "add-product"


def test_register_update_teller_command_configures_arguments():
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    spec = cli.register_update_teller_command(subparsers)
    spec.register(subparsers)
    namespace = parser.parse_args(["update-teller", "--match", "ann", "--id", "4", "--last-name", "Reyes"])
    assert namespace.match == "ann"
    assert namespace.record_id == 4
    assert namespace.first_name is None
    assert namespace.last_name == "Reyes"


def test_register_sale_command_collects_items():
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    spec = cli.register_sale_command(subparsers)
    spec.register(subparsers)
    namespace = parser.parse_args(["sale", "--item", "1:2", "--item", " 3 : 1 ", "--cash", "30", "--teller-id", "2"])
    assert namespace.items == [("1", "2"), ("3", "1")]
    assert namespace.cash == "30"
    assert namespace.teller_id == 2


@pytest.mark.parametrize("raw", ["1", "1:", ":2", "abc"])
def test_parse_item_rejects_malformed_values(raw):
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_item(raw)


def test_listing_commands_reject_id_and_search_together():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    with pytest.raises(SystemExit):
        parser.parse_args(["products", "--id", "1", "--search", "milk"])


# ---------------------------------------------------------------------------
# Dispatch and command table
# ---------------------------------------------------------------------------


def test_build_command_table_indexes_specs(command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)
    assert list(table) == ["alpha", "beta", "gamma"]


def test_build_command_table_rejects_duplicates(command_spec_iterable):
    with pytest.raises(ValueError, match="Duplicate command name"):
        cli.build_command_table([*command_spec_iterable, command_spec_iterable[0]])


def test_dispatch_command_runs_executor(context):
    called = {}

    def execute(ctx: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        called["context"] = ctx
        return 7

    spec = cli.CommandSpec("alpha", "help", lambda s: s.add_parser("alpha"), execute)
    result = cli.dispatch_command(context, argparse.Namespace(command="alpha"), {"alpha": spec})
    assert result == 7
    assert called["context"] is context


def test_dispatch_command_unknown_command(context):
    with pytest.raises(KeyError):
        cli.dispatch_command(context, argparse.Namespace(command="nope"), {})
    with pytest.raises(KeyError):
        cli.dispatch_command(context, argparse.Namespace(), {})


# ---------------------------------------------------------------------------
# Target selection
# ---------------------------------------------------------------------------


def test_select_target_by_id(stocked_context):
    repository = core_logic.product_repository(stocked_context)

    found = cli.select_target(repository, record_id=2, match=None)
    missing = cli.select_target(repository, record_id=20, match=None)

    assert found.outcome is constants.Outcome.SUCCESS
    assert found.row.name == "Bread"
    assert missing.outcome is constants.Outcome.NOT_FOUND


def test_select_target_single_match(stocked_context):
    selection = cli.select_target(core_logic.product_repository(stocked_context), record_id=None, match="milk")
    assert selection.outcome is constants.Outcome.SUCCESS
    assert selection.row.product_id == 1


def test_select_target_ambiguous_then_disambiguated(stocked_context):
    repository = core_logic.product_repository(stocked_context)

    ambiguous = cli.select_target(repository, record_id=None, match="b")
    chosen = cli.select_target(repository, record_id=3, match="b")
    outside = cli.select_target(repository, record_id=1, match="b")

    assert ambiguous.outcome is constants.Outcome.AMBIGUOUS
    assert [row.product_id for row in ambiguous.matches] == [2, 3]
    assert chosen.outcome is constants.Outcome.SUCCESS
    assert chosen.row.name == "Banana"
    assert outside.outcome is constants.Outcome.NOT_FOUND


def test_select_target_requires_id_or_match(stocked_context):
    with pytest.raises(core_logic.ValidationFailure):
        cli.select_target(core_logic.product_repository(stocked_context), record_id=None, match=None)


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def test_run_update_product_applies_changes(stocked_context, capsys):
    args = argparse.Namespace(
        record_id=None,
        match="bread",
        name=None,
        description="",
        category=None,
        unit=None,
        unit_price="6.00",
    )

    assert cli.run_update_product(stocked_context, args) == 0

    product = core_logic.product_repository(stocked_context).get(2)
    assert product.unit_price == Decimal("6.00")
    assert product.name == "Bread"
    assert "Updated product" in capsys.readouterr().out


def test_run_delete_teller_ambiguous_lists_matches(stocked_context, capsys):
    core_logic.add_teller(stocked_context, first_name="Annabel", last_name="Lee")
    args = argparse.Namespace(record_id=None, match="ann")

    exit_code = cli.run_delete_teller(stocked_context, args)

    assert exit_code == cli.OUTCOME_EXIT_CODES[constants.Outcome.AMBIGUOUS]
    output = capsys.readouterr().out
    assert "Several tellers match" in output
    assert "Annabel" in output
    assert len(core_logic.teller_repository(stocked_context).list()) == 3


def test_run_delete_product_missing_id_is_noop(stocked_context, capsys):
    args = argparse.Namespace(record_id=55, match=None)

    assert cli.run_delete_product(stocked_context, args) == 0

    assert "table unchanged" in capsys.readouterr().out
    assert len(core_logic.product_repository(stocked_context).list()) == 3


def test_run_products_report_search(stocked_context, capsys):
    args = argparse.Namespace(record_id=None, search="an")

    assert cli.run_products_report(stocked_context, args) == 0

    output = capsys.readouterr().out
    assert "Banana" in output
    assert "Milk" not in output
    assert "(1 product)" in output


def test_run_tellers_report_missing_id(stocked_context, capsys):
    args = argparse.Namespace(record_id=9, search=None)

    assert cli.run_tellers_report(stocked_context, args) == 2
    assert "No teller with id 9" in capsys.readouterr().out


def test_run_sale_prints_receipt(stocked_context, capsys):
    args = argparse.Namespace(items=[("1", "2"), ("2", "1")], cash="30.00", teller_id=None)

    assert cli.run_sale(stocked_context, args) == 0

    output = capsys.readouterr().out
    assert "25.50" in output
    assert "4.50" in output
    assert "Receipt appended to" in output


def test_run_check_flags_corrupt_table(stocked_context, capsys):
    path = stocked_context.path_for(data_manager.TELLERS_TABLE)
    with open(path, "ab") as handle:
        handle.write(b"\x00\x01")

    assert cli.run_check(stocked_context, argparse.Namespace()) == 4
    output = capsys.readouterr().out
    assert "CORRUPT" in output
    assert "Products" in output


def test_format_products_aligns_columns(make_product):
    text = cli.format_products([make_product(product_id=12, name="Milk", unit_price="3.5")])
    header, row = text.splitlines()
    assert header.index("Price") + len("Price") == row.index("3.50") + len("3.50")


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (core_logic.ValidationFailure("invalid"), 2),
        (core_logic.RecordNotFoundError("missing row"), 2),
        (core_logic.StorageFailure("disk"), 4),
        (FileNotFoundError("missing"), 3),
        (KeyError("bad field"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    """handle_cli_error should convert exceptions into exit codes."""

    caplog.set_level("ERROR")
    exit_code = cli.handle_cli_error(error)
    assert exit_code == expected
    assert caplog.records


# ---------------------------------------------------------------------------
# Program entry point
# ---------------------------------------------------------------------------


def test_main_executes_specified_command(monkeypatch, context):
    """main should execute the command parsed from argv."""

    parser = _stub_parser(command="sales")
    command_table = {"sales": cli.CommandSpec("sales", "help", lambda _: parser, lambda *_: 0)}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: context)

    called = {}

    def fake_dispatch(ctx: core_logic.RuntimeContext, args: argparse.Namespace, table: Mapping[str, cli.CommandSpec]) -> int:
        called["context"] = ctx
        called["args"] = args
        return 0

    monkeypatch.setattr(cli, "dispatch_command", fake_dispatch)

    assert cli.main(["sales"]) == 0
    assert called["context"] is context
    assert called["args"].command == "sales"


def test_main_handles_domain_errors(monkeypatch, context):
    parser = _stub_parser(command="sale")
    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: {})
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: context)

    def fake_dispatch(*_: object) -> int:
        raise core_logic.ValidationFailure("Quantity must be at least 1")

    monkeypatch.setattr(cli, "dispatch_command", fake_dispatch)

    assert cli.main(["sale"]) == 2


def test_main_missing_config_exits_with_three(tmp_path):
    assert cli.main(["--config", str(tmp_path / "absent.ini"), "products"]) == 3


def test_main_refuses_to_write_a_corrupt_table(config_bundle):
    base = ["--config", str(config_bundle.config_path)]
    assert cli.main([*base, "add-product", "--name", "Milk", "--unit-price", "10"]) == 0
    products = config_bundle.data_dir / constants.TableFile.PRODUCTS.value
    with open(products, "ab") as handle:
        handle.write(b"\xff")
    before = products.read_bytes()

    assert cli.main([*base, "add-product", "--name", "Bread", "--unit-price", "5"]) == 4
    assert cli.main([*base, "delete-product", "--id", "1"]) == 4
    assert products.read_bytes() == before


def test_main_end_to_end_with_config(config_file: Path, capsys):
    base = ["--config", str(config_file)]

    assert cli.main([*base, "add-product", "--name", "Milk", "--unit-price", "10"]) == 0
    assert cli.main([*base, "add-product", "--name", "Bread", "--unit-price", "5.50"]) == 0
    assert cli.main([*base, "add-product", "--name", "Butter", "--unit-price", "abc"]) == 2
    assert cli.main([*base, "sale", "--item", "1:2", "--item", "2:1", "--cash", "20"]) == 2
    assert cli.main([*base, "sale", "--item", "1:2", "--item", "2:1", "--cash", "30"]) == 0
    capsys.readouterr()

    assert cli.main([*base, "sales"]) == 0
    output = capsys.readouterr().out
    assert "Milk" in output and "Bread" in output
    assert "(2 sales)" in output


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _stub_parser(command: str) -> argparse.ArgumentParser:
    """Create a stub parser that always returns the supplied command."""

    class _Stub(argparse.ArgumentParser):
        def parse_args(self, args: Iterable[str] | None = None, namespace: argparse.Namespace | None = None):  # type: ignore[override]
            return argparse.Namespace(command=command, config=None)

    return _Stub(prog="test")


def _registered_choices(parser: argparse.ArgumentParser) -> set[str]:
    """Return the set of registered sub-command names for assertion helpers."""

    actions = getattr(parser, "_subparsers", None)
    if not actions:
        return set()
    group_actions = actions._group_actions  # type: ignore[attr-defined]
    if not group_actions:
        return set()
    return set(group_actions[0].choices)  # type: ignore[index]
