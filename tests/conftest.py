import os
import sys
import tempfile
from pathlib import Path
from types import SimpleNamespace

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault(
    "SQLITE_PATH", str(Path(tempfile.mkdtemp(prefix="medshop-tests-")) / "medshop.db")
)
for name in ("DB_HOST", "DB_USER", "DB_NAME", "REDIS_URL"):
    os.environ.pop(name, None)

from medshop.core.config import Settings  # noqa: E402
from medshop.core.database import Database  # noqa: E402


TEST_SECRET = "test-secret"


@pytest.fixture
def anyio_backend():
    return "asyncio"


def make_settings(**overrides) -> Settings:
    values = {"JWT_SECRET": TEST_SECRET}
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
async def database(tmp_path):
    db = Database(make_settings(SQLITE_PATH=str(tmp_path / "medshop.db")))
    await db.connect()
    await db.run_migrations()
    try:
        yield db
    finally:
        await db.disconnect()


@pytest.fixture
async def catalogue(database):
    """One customer, one staff user and a variant stocked in two warehouses.

    The variant holds 10 units: 6 in the central warehouse and 4 in the
    north warehouse, priced at 100000 with a low stock threshold of 3.
    """
    ids = SimpleNamespace(
        admin="00000000-0000-0000-0000-000000000001",
        customer="00000000-0000-0000-0000-000000000002",
        central="00000000-0000-0000-0000-0000000000a1",
        north="00000000-0000-0000-0000-0000000000a2",
        product="00000000-0000-0000-0000-0000000000b1",
        variant="00000000-0000-0000-0000-0000000000c1",
        central_row="00000000-0000-0000-0000-0000000000d1",
        north_row="00000000-0000-0000-0000-0000000000d2",
    )
    await database.execute(
        "INSERT INTO users (id, email, password_hash, role) VALUES (%s, %s, %s, %s)",
        (ids.admin, "admin@example.com", "x", "admin"),
    )
    await database.execute(
        "INSERT INTO users (id, email, password_hash, role, first_name) VALUES (%s, %s, %s, %s, %s)",
        (ids.customer, "buyer@example.com", "x", "customer", "Lan"),
    )
    await database.execute(
        "INSERT INTO customers (id, customer_code) VALUES (%s, %s)",
        (ids.customer, "CUS0001"),
    )
    for warehouse_id, code in ((ids.central, "WH-C"), (ids.north, "WH-N")):
        await database.execute(
            "INSERT INTO warehouses (id, code, name) VALUES (%s, %s, %s)",
            (warehouse_id, code, f"Warehouse {code}"),
        )
    await database.execute(
        "INSERT INTO products (id, name, slug, status) VALUES (%s, %s, %s, %s)",
        (ids.product, "Digital Thermometer", "digital-thermometer", "active"),
    )
    await database.execute(
        """
        INSERT INTO product_variants (
            id, product_id, sku, name, price, cost, stock_quantity, low_stock_threshold
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (ids.variant, ids.product, "THERM-01", "Standard", "100000", "60000", 10, 3),
    )
    for row_id, warehouse_id, quantity in (
        (ids.central_row, ids.central, 6),
        (ids.north_row, ids.north, 4),
    ):
        await database.execute(
            "INSERT INTO inventory (id, warehouse_id, variant_id, quantity) VALUES (%s, %s, %s, %s)",
            (row_id, warehouse_id, ids.variant, quantity),
        )
    return ids
