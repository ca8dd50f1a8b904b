"""Shared pytest fixtures and utilities for shop back office tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from shop_backoffice import cli, constants, core_logic, data_manager  # noqa: E402
from shop_backoffice.cart import CartItem  # noqa: E402
from shop_backoffice.inventory import Product, Variant  # noqa: E402
from shop_backoffice.orders import Customer  # noqa: E402
from shop_backoffice.setup_workbook import create_store_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_OWNER_ID = "owner-test"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "OwnerID = {owner_id}\n"
    "TaxRate = {tax_rate}\n"
    "AdminTaxRate = {admin_tax_rate}\n"
    "LowStockThreshold = {low_stock_threshold}\n"
    "CartCacheDir = {cart_cache_dir}\n"
    "StrictStatusTransitions = {strict}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    owner_id: str
    schema_version: str
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
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized store workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        owner_id: str = DEFAULT_OWNER_ID,
        filename: str = "store_workbook.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_store_workbook(workbook_path, owner_id=owner_id, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def store_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh store workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Shop",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        owner_id: str = DEFAULT_OWNER_ID,
        tax_rate: str = "0.15",
        admin_tax_rate: str = "0.15",
        low_stock_threshold: int = 5,
        strict: bool = False,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}", owner_id=owner_id)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                store_name=store_name,
                schema_version=schema_version,
                owner_id=owner_id,
                tax_rate=tax_rate,
                admin_tax_rate=admin_tax_rate,
                low_stock_threshold=low_stock_threshold,
                cart_cache_dir="carts",
                strict="true" if strict else "false",
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            owner_id=owner_id,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def shirt() -> Product:
    """A two-variant product owned by the default test owner."""

    return Product(
        product_id="P-SHIRT",
        owner_id=DEFAULT_OWNER_ID,
        name="Linen Shirt",
        category="Clothing",
        supplier="Cape Textiles",
        variants=(
            Variant(type="Shirt", color="Red", size="M", selling_price=Decimal("49.99"),
                    stock_price=Decimal("20.00"), stock_quantity=10),
            Variant(type="Shirt", color="Blue", size="L", selling_price=Decimal("59.99"),
                    stock_price=Decimal("25.00"), stock_quantity=2),
        ),
    )


@pytest.fixture
def mug() -> Product:
    """A single-variant product owned by the default test owner."""

    return Product(
        product_id="P-MUG",
        owner_id=DEFAULT_OWNER_ID,
        name="Enamel Mug",
        category="Kitchen",
        variants=(
            Variant(selling_price=Decimal("21.99"), stock_price=Decimal("8.00"), stock_quantity=4),
        ),
    )


@pytest.fixture
def customer() -> Customer:
    return Customer(name="Thandi Mokoena", phone="0821234567", city="Durban")


@pytest.fixture
def sample_items() -> list[CartItem]:
    return [
        CartItem(item_id="A", name="Widget", price=Decimal("45.99"), quantity=2),
        CartItem(item_id="B", name="Gadget", price=Decimal("29.99"), quantity=1),
    ]


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="shop-cli", description="Shop CLI")


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


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "store_workbook.xlsx",
        store_name="Test Shop",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        owner_id=DEFAULT_OWNER_ID,
        cart_cache_dir=tmp_path / "carts",
    )


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and workbook mocks."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
