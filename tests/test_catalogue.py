import pytest

from medshop.core.errors import AppError
from medshop.services.cache import CacheService
from medshop.services.categories import CategoryService, build_tree
from medshop.services.customers import CustomerService
from medshop.services.products import ProductService
from medshop.services.slugs import slugify
from medshop.services.warehouses import WarehouseService


@pytest.mark.parametrize(
    "name, slug",
    [
        ("Máy đo huyết áp", "may-do-huyet-ap"),
        ("  Gloves & Masks  ", "gloves-masks"),
        ("N95 -- Respirator", "n95-respirator"),
        ("!!!", ""),
    ],
)
def test_slugify(name, slug):
    assert slugify(name) == slug


def test_build_tree_nests_children_and_keeps_orphans_as_roots():
    rows = [
        {"id": "a", "parent_id": None},
        {"id": "b", "parent_id": "a"},
        {"id": "c", "parent_id": "b"},
        {"id": "d", "parent_id": "missing"},
    ]

    tree = build_tree(rows)

    assert [node["id"] for node in tree] == ["a", "d"]
    assert tree[0]["children"][0]["id"] == "b"
    assert tree[0]["children"][0]["children"][0]["id"] == "c"


@pytest.fixture
def categories(database):
    return CategoryService(database, CacheService(None))


@pytest.mark.anyio
async def test_category_tree(categories):
    root = await categories.create_category(name="Diagnostics")
    child = await categories.create_category(name="Thermometers", parent_id=root["id"])

    tree = await categories.get_tree()

    assert [node["name"] for node in tree] == ["Diagnostics"]
    assert tree[0]["children"][0]["id"] == child["id"]
    assert child["slug"] == "thermometers"


@pytest.mark.anyio
async def test_tree_is_refreshed_after_changes(categories):
    await categories.create_category(name="Diagnostics")
    assert len(await categories.get_tree()) == 1

    await categories.create_category(name="Wound Care")

    assert len(await categories.get_tree()) == 2


@pytest.mark.anyio
async def test_duplicate_category_name(categories):
    await categories.create_category(name="Wound Care")
    with pytest.raises(AppError) as excinfo:
        await categories.create_category(name="wound care")
    assert excinfo.value.message == "Category with this name already exists"


@pytest.mark.anyio
async def test_unknown_parent(categories):
    with pytest.raises(AppError) as excinfo:
        await categories.create_category(name="Orphan", parent_id="nope")
    assert excinfo.value.status_code == 404
    assert excinfo.value.message == "Parent category not found"


@pytest.mark.anyio
async def test_category_cycles_are_rejected(categories):
    top = await categories.create_category(name="Top")
    middle = await categories.create_category(name="Middle", parent_id=top["id"])
    bottom = await categories.create_category(name="Bottom", parent_id=middle["id"])

    with pytest.raises(AppError) as excinfo:
        await categories.update_category(top["id"], {"parent_id": top["id"]})
    assert excinfo.value.message == "Category cannot be its own parent"

    with pytest.raises(AppError) as excinfo:
        await categories.update_category(top["id"], {"parent_id": bottom["id"]})
    assert excinfo.value.message == "Category cannot be its own ancestor"

    unchanged = await categories.get_category(top["id"])
    assert unchanged["parent_id"] is None


@pytest.mark.anyio
async def test_update_category_renames_slug(categories):
    category = await categories.create_category(name="Masks")

    updated = await categories.update_category(
        category["id"], {"name": "Face Masks", "created_at": "ignored"}
    )

    assert updated["name"] == "Face Masks"
    assert updated["slug"] == "face-masks"

    with pytest.raises(AppError) as excinfo:
        await categories.update_category(category["id"], {"created_at": "ignored"})
    assert excinfo.value.message == "No fields to update"


@pytest.mark.anyio
async def test_update_ignores_nulls_for_required_fields(categories):
    parent = await categories.create_category(name="Diagnostics")
    category = await categories.create_category(
        name="Masks", description="Single use", parent_id=parent["id"], display_order=4
    )

    with pytest.raises(AppError) as excinfo:
        await categories.update_category(category["id"], {"name": None, "display_order": None})
    assert excinfo.value.status_code == 400
    assert excinfo.value.message == "No fields to update"

    updated = await categories.update_category(
        category["id"],
        {
            "name": None,
            "display_order": None,
            "is_active": None,
            "description": None,
            "parent_id": None,
        },
    )

    assert updated["name"] == "Masks"
    assert updated["display_order"] == 4
    assert updated["is_active"] is True
    assert updated["description"] is None
    assert updated["parent_id"] is None


@pytest.mark.anyio
async def test_rename_to_unsluggable_name_is_rejected(categories):
    category = await categories.create_category(name="Masks")

    with pytest.raises(AppError) as excinfo:
        await categories.update_category(category["id"], {"name": "!!!"})

    assert excinfo.value.status_code == 400
    assert excinfo.value.message == "Category name must contain letters or digits"
    assert (await categories.get_category(category["id"]))["slug"] == "masks"


@pytest.mark.anyio
async def test_delete_guards(categories, database, catalogue):
    parent = await categories.create_category(name="Diagnostics")
    child = await categories.create_category(name="Thermometers", parent_id=parent["id"])
    await database.execute(
        "UPDATE products SET category_id = %s WHERE id = %s", (child["id"], catalogue.product)
    )

    with pytest.raises(AppError) as excinfo:
        await categories.delete_category(child["id"])
    assert excinfo.value.message == "Cannot delete category with products"

    with pytest.raises(AppError) as excinfo:
        await categories.delete_category(parent["id"])
    assert excinfo.value.message == "Cannot delete category with subcategories"

    await database.execute(
        "UPDATE products SET category_id = NULL WHERE id = %s", (catalogue.product,)
    )
    await categories.delete_category(child["id"])
    await categories.delete_category(parent["id"])
    assert await categories.get_tree() == []


@pytest.mark.anyio
async def test_reorder(categories):
    first = await categories.create_category(name="Alpha", display_order=0)
    second = await categories.create_category(name="Beta", display_order=1)

    await categories.reorder(
        [{"id": first["id"], "display_order": 5}, {"id": second["id"], "display_order": 2}]
    )

    assert [node["name"] for node in await categories.get_tree()] == ["Beta", "Alpha"]

    with pytest.raises(AppError) as excinfo:
        await categories.reorder([{"id": "ghost", "display_order": 1}])
    assert excinfo.value.message == "Category ghost not found"


@pytest.fixture
def products(database):
    return ProductService(database, CacheService(None))


@pytest.mark.anyio
async def test_create_product_with_clashing_slug(products, catalogue):
    product = await products.create_product(
        {"name": "Digital Thermometer", "status": "active"}, created_by=catalogue.admin
    )

    assert product["slug"].startswith("digital-thermometer-")
    assert product["meta_title"] == "Digital Thermometer"
    assert product["warranty_months"] == 12


@pytest.mark.anyio
async def test_variant_sku_must_be_unique(products, catalogue):
    variant = await products.create_variant(
        catalogue.product, {"sku": "THERM-02", "name": "Kids", "price": 120000}
    )
    assert variant["sku"] == "THERM-02"
    assert variant["low_stock_threshold"] == 10

    with pytest.raises(AppError) as excinfo:
        await products.create_variant(
            catalogue.product, {"sku": "THERM-01", "name": "Copy", "price": 1}
        )
    assert excinfo.value.message == "SKU THERM-01 already exists"

    with pytest.raises(AppError) as excinfo:
        await products.create_variant("missing", {"sku": "X-1", "name": "X", "price": 1})
    assert excinfo.value.status_code == 404


@pytest.mark.anyio
async def test_list_and_search_products(products, catalogue):
    await products.create_product({"name": "Surgical Gloves"}, created_by=None)

    listing = await products.list_products()
    assert [product["name"] for product in listing["products"]] == ["Digital Thermometer"]
    assert listing["pagination"]["totalCount"] == 1

    drafts = await products.list_products(status="draft")
    assert [product["name"] for product in drafts["products"]] == ["Surgical Gloves"]

    found = await products.search_products("thermo")
    assert [product["id"] for product in found] == [catalogue.product]
    assert await products.search_products("   ") == []


@pytest.mark.anyio
async def test_product_detail_includes_variants(products, catalogue):
    product = await products.get_product(catalogue.product)

    assert [variant["sku"] for variant in product["variants"]] == ["THERM-01"]
    assert product["images"] == []

    with pytest.raises(AppError):
        await products.get_product("missing")


@pytest.mark.anyio
async def test_update_and_delete_product(products, catalogue):
    updated = await products.update_product(catalogue.product, {"is_featured": True})
    assert updated["is_featured"] is True

    with pytest.raises(AppError) as excinfo:
        await products.update_product(catalogue.product, {"unknown": 1})
    assert excinfo.value.message == "No fields to update"

    created = await products.create_product({"name": "Bandage Roll"}, created_by=None)
    assert await products.delete_product(created["id"]) == {
        "message": "Product deleted successfully"
    }


@pytest.mark.anyio
async def test_customer_service(database, catalogue):
    customers = CustomerService(database)

    listing = await customers.list_customers(search="buyer")
    assert [customer["customer_code"] for customer in listing["customers"]] == ["CUS0001"]

    updated = await customers.update_customer(catalogue.customer, loyalty_points=50)
    assert updated["loyalty_points"] == 50
    assert updated["first_name"] == "Lan"

    with pytest.raises(AppError) as excinfo:
        await customers.update_customer(catalogue.customer, loyalty_points=-1)
    assert excinfo.value.message == "Loyalty points cannot be negative"

    with pytest.raises(AppError) as excinfo:
        await customers.get_customer("missing")
    assert excinfo.value.status_code == 404


@pytest.mark.anyio
async def test_warehouse_service(database, catalogue):
    warehouses = WarehouseService(database)

    listing = await warehouses.list_warehouses()
    totals = {warehouse["code"]: warehouse["total_units"] for warehouse in listing}
    assert totals == {"WH-C": 6, "WH-N": 4}

    created = await warehouses.create_warehouse(code=" wh-s ", name="South")
    assert created["code"] == "WH-S"

    with pytest.raises(AppError) as excinfo:
        await warehouses.create_warehouse(code="WH-S", name="Again")
    assert excinfo.value.message == "Warehouse code WH-S already exists"
