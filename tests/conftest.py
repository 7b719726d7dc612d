"""Shared pytest fixtures and utilities for POS Records tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from pos_records import cli, core_logic, data_manager  # noqa: E402

DEFAULT_STORE_NAME = "Test Store"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataDir = {data_dir}\n"
    "StoreName = {store_name}\n\n"
    "[Receipts]\n"
    "ReceiptDir = {receipt_dir}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    data_dir: Path
    receipt_dir: Path
    store_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., ConfigBundle]:
    """Provide a callable that writes a config.ini into a fresh folder."""

    def _create_config(
        *,
        make_relative: bool = True,
        store_name: str = DEFAULT_STORE_NAME,
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        data_dir = bundle_dir / "data"
        receipt_dir = bundle_dir / "receipts"
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_dir="data" if make_relative else data_dir,
                receipt_dir="receipts" if make_relative else receipt_dir,
                store_name=store_name,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            data_dir=data_dir,
            receipt_dir=receipt_dir,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_bundle(config_factory: Callable[..., ConfigBundle]) -> ConfigBundle:
    return config_factory()


@pytest.fixture
def config_file(config_bundle: ConfigBundle) -> Path:
    """Convenience fixture returning only the config path."""

    return config_bundle.config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    return core_logic.load_runtime_context(config_file)


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide settings pointing at empty folders under ``tmp_path``."""

    return data_manager.ConfigSettings(
        data_dir=tmp_path / "data",
        receipt_dir=tmp_path / "receipts",
        store_name=DEFAULT_STORE_NAME,
    )


@pytest.fixture
def context(settings: data_manager.ConfigSettings) -> core_logic.RuntimeContext:
    """Assemble a runtime context directly from settings."""

    data_manager.ensure_table_files(settings.data_dir)
    return core_logic.RuntimeContext(settings=settings)


# ---------------------------------------------------------------------------
# Sample records
# ---------------------------------------------------------------------------


@pytest.fixture
def make_product() -> Callable[..., data_manager.ProductRow]:
    """Factory for product rows with sensible defaults."""

    def _make(product_id: int = 1, name: str = "Milk", unit_price: str = "10.00", **overrides: object) -> data_manager.ProductRow:
        values = {
            "product_id": product_id,
            "name": name,
            "description": "Fresh whole milk",
            "category": "Dairy",
            "unit": "piece",
            "unit_price": Decimal(unit_price),
        }
        values.update(overrides)
        return data_manager.ProductRow(**values)

    return _make


@pytest.fixture
def make_teller() -> Callable[..., data_manager.TellerRow]:
    """Factory for teller rows."""

    def _make(teller_id: int = 1, first_name: str = "Anna", middle_name: str = "", last_name: str = "Cruz") -> data_manager.TellerRow:
        return data_manager.TellerRow(
            teller_id=teller_id,
            first_name=first_name,
            middle_name=middle_name,
            last_name=last_name,
        )

    return _make


@pytest.fixture
def stocked_context(context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    """Context whose product and teller tables already hold a few rows."""

    core_logic.add_product(context, name="Milk", unit_price="10.00", category="Dairy")
    core_logic.add_product(context, name="Bread", unit_price="5.50", category="Bakery")
    core_logic.add_product(context, name="Banana", unit_price="1.25", unit="kilo", category="Fruit")
    core_logic.add_teller(context, first_name="Anna", middle_name="Marie", last_name="Cruz")
    core_logic.add_teller(context, first_name="Ben", last_name="Santos")
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="pos-cli", description="POS Records CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
