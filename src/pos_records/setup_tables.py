"""Bootstrap a POS Records installation.

The module doubles as a script (``pos-setup``) and as a library used by tests
or other tooling. It writes a default ``config.ini`` when none exists and
creates the three empty table files the configuration points at.
"""

from __future__ import annotations

import argparse
import configparser
import sys
from pathlib import Path
from typing import List, Sequence

from . import data_manager

CONFIG_FILE = data_manager.CONFIG_FILE_NAME

DEFAULT_CONFIG: dict[str, dict[str, str]] = {
    "System": {
        "DataDir": "data",
        "StoreName": "POS Records Store",
    },
    "Receipts": {
        "ReceiptDir": "receipts",
    },
}


def write_default_config(config_path: Path, *, store_name: str | None = None) -> bool:
    """Write ``DEFAULT_CONFIG`` to ``config_path`` unless the file exists.

    Returns:
        bool: ``True`` when a new file was written.
    """

    if config_path.exists():
        return False

    parser = configparser.ConfigParser()
    parser.optionxform = str  # keep the CamelCase option names
    parser.read_dict(DEFAULT_CONFIG)
    if store_name:
        parser.set("System", "StoreName", store_name)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as handle:
        parser.write(handle)
    return True


def create_tables(data_dir: Path, *, overwrite: bool = False) -> List[Path]:
    """Create every table file in ``data_dir``.

    Existing tables are kept unless ``overwrite`` is ``True``, in which case
    they are truncated to zero rows.

    Returns:
        list[Path]: Table files created or truncated.
    """

    if not overwrite:
        return data_manager.ensure_table_files(data_dir)

    data_dir.mkdir(parents=True, exist_ok=True)
    reset: List[Path] = []
    for table in data_manager.ALL_TABLES:
        path = data_manager.table_path(data_dir, table)
        data_manager.replace_all(path, table, [])
        reset.append(path)
    return reset


def run_from_config(config_path: Path, *, overwrite: bool = False, store_name: str | None = None) -> List[Path]:
    """Write the config if needed, then create the tables it points at."""

    write_default_config(config_path, store_name=store_name)
    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.parent)
    settings.receipt_dir.mkdir(parents=True, exist_ok=True)
    return create_tables(settings.data_dir, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize POS Records table files")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--store-name",
        default=None,
        help="Store name written into a newly created config file.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Truncate existing tables to zero rows.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- POS Records Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        touched = run_from_config(config_path, overwrite=args.force, store_name=args.store_name)
    except KeyError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to create tables: {exc}")
        return 1

    for path in touched:
        print(f"  {'reset' if args.force else 'created'}: {path}")
    print("\n[SUCCESS] Tables are ready.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
