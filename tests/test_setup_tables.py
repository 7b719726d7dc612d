"""Tests for the installation bootstrap script."""

from __future__ import annotations

from pos_records import data_manager, setup_tables


def test_write_default_config_only_once(tmp_path):
    config_path = tmp_path / "config.ini"

    assert setup_tables.write_default_config(config_path, store_name="Corner Shop") is True
    assert setup_tables.write_default_config(config_path, store_name="Other") is False

    text = config_path.read_text(encoding="utf-8")
    assert "DataDir = data" in text
    assert "StoreName = Corner Shop" in text


def test_run_from_config_creates_tables_and_receipt_dir(tmp_path):
    config_path = tmp_path / "config.ini"

    touched = setup_tables.run_from_config(config_path)

    assert len(touched) == 3
    assert all(path.stat().st_size == 0 for path in touched)
    assert (tmp_path / "receipts").is_dir()
    assert setup_tables.run_from_config(config_path) == []


def test_create_tables_overwrite_truncates(tmp_path, make_product):
    data_dir = tmp_path / "data"
    setup_tables.create_tables(data_dir)
    products = data_manager.table_path(data_dir, data_manager.PRODUCTS_TABLE)
    data_manager.replace_all(products, data_manager.PRODUCTS_TABLE, [make_product()])

    setup_tables.create_tables(data_dir)
    assert data_manager.record_count(products, data_manager.PRODUCTS_TABLE) == 1

    reset = setup_tables.create_tables(data_dir, overwrite=True)
    assert products in reset
    assert data_manager.record_count(products, data_manager.PRODUCTS_TABLE) == 0


def test_main_reports_success(tmp_path, capsys):
    config_path = tmp_path / "nested" / "config.ini"

    assert setup_tables.main(["--config", str(config_path), "--store-name", "Kiosk"]) == 0

    output = capsys.readouterr().out
    assert "[SUCCESS]" in output
    assert (tmp_path / "nested" / "data" / "product_records.bin").exists()


def test_main_reports_bad_config(tmp_path, capsys):
    config_path = tmp_path / "config.ini"
    config_path.write_text("[System]\nDataDir = data\n", encoding="utf-8")

    assert setup_tables.main(["--config", str(config_path)]) == 1
    assert "[ERROR]" in capsys.readouterr().out
