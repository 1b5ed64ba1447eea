import io
import json

import pytest
from openpyxl import Workbook, load_workbook

from importer import (
    ImportFileError, ImportValidationError, TEMPLATE_COLUMNS, build_template, import_products, read_rows,
    run_import, validate_row, validate_rows,
)

HEADER = "name,description,price,salePrice,stock,category,brand,flavors,variants,featured,mostSelling\n"


def csv_bytes(*rows: str) -> bytes:
    return (HEADER + "\n".join(rows) + "\n").encode("utf-8")


def xlsx_bytes(rows: list[list]) -> bytes:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def test_minimal_row_gets_empty_lists_and_false_flags():
    product, errors = validate_row({
        "name": "Nasty Salt", "description": "Nic salt", "price": "999", "stock": "7",
        "category": "nic-salts", "brand": "Nasty",
    })

    assert errors == []
    assert product.category == "NIC & SALTS"
    assert product.flavors == [] and product.variants == [] and product.ratings == [] and product.images == []
    assert product.featured is False and product.most_selling is False
    assert product.sale_price is None


def test_flavors_variants_and_flags_are_parsed():
    product, errors = validate_row({
        "name": "Elf Bar", "description": "Disposable", "price": 899, "salePrice": 799, "stock": 12,
        "category": "DISPOSABLE", "brand": "Elf", "flavors": "Mint, Watermelon ,",
        "featured": "TRUE", "mostSelling": "0",
    })
    assert errors == []
    assert [f.name for f in product.flavors] == ["Mint", "Watermelon"]
    assert product.featured is True and product.most_selling is False

    kit, errors = validate_row({
        "name": "Xros 3", "description": "Pod kit", "price": 1999, "stock": 4, "category": "podkits",
        "brand": "Vaporesso", "variants": json.dumps([{"name": "Black", "price": 1899, "stock": 2}]),
    })
    assert errors == []
    assert kit.variants[0].price == 1899 and kit.variants[0].stock == 2


def test_json_flavor_stock_flags_are_parsed_as_booleans():
    product, errors = validate_row({
        "name": "Nasty Salt", "description": "Nic salt", "price": "650", "stock": "9",
        "category": "nic-salts", "brand": "Nasty",
        "flavors": json.dumps([
            {"name": "Mint", "inStock": "false"},
            {"name": "Mango", "inStock": "0"},
            {"name": "Grape", "in_stock": "yes"},
            {"name": "Lychee"},
        ]),
        "ratings": json.dumps([{"rating": 5, "isCustomerReview": "false"}]),
    })

    assert errors == []
    assert [(f.name, f.in_stock) for f in product.flavors] == [
        ("Mint", False), ("Mango", False), ("Grape", True), ("Lychee", True),
    ]
    assert product.ratings[0].is_customer_review is False


@pytest.mark.parametrize("overrides, fragment", [
    ({"price": ""}, "'price'"),
    ({"price": "abc"}, "price must be a number"),
    ({"stock": "-1"}, "stock must not be negative"),
    ({"stock": "2.5"}, "stock must be a whole number"),
    ({"salePrice": "999"}, "salePrice must be less than price"),
    ({"category": "cigars"}, "Invalid category"),
    ({"variants": "not json"}, "variants must be a JSON array"),
    ({"featured": "maybe"}, "featured"),
    ({"flavors": "Mint", "variants": '[{"name": "Black"}]'}, "not both"),
    ({"ratings": '[{"rating": 6}]'}, "must be between 1 and 5"),
    ({"ratings": '[{"rating": 0}]'}, "must be between 1 and 5"),
    ({"variants": '[{"name": "B", "price": -1}]'}, "variant 1 price must not be negative"),
    ({"variants": '[{"name": "B", "stock": -2}]'}, "variant 1 stock must not be negative"),
    ({"flavors": '[{"name": "Mint", "inStock": "maybe"}]'}, "flavor 'Mint' inStock"),
    ({"ratings": '[{"rating": 4, "isCustomerReview": "perhaps"}]'}, "rating 1 isCustomerReview"),
])
def test_invalid_rows_are_reported(overrides, fragment):
    row = {
        "name": "Broken", "description": "x", "price": "999", "stock": "3",
        "category": "podkits", "brand": "Acme",
    }
    row.update(overrides)
    product, errors = validate_row(row)
    assert product is None
    assert any(fragment in e for e in errors), errors


def test_validate_rows_numbers_rows_from_one():
    rows = [
        {"name": "Good", "description": "d", "price": "1", "stock": "1", "category": "podkits", "brand": "A"},
        {"name": "Bad", "description": "d", "price": "1", "stock": "1", "category": "nope", "brand": "A"},
    ]
    products, errors = validate_rows(rows)
    assert [p.name for p in products] == ["Good"]
    assert [(e.row, e.name) for e in errors] == [(2, "Bad")]


@pytest.mark.anyio
async def test_any_invalid_row_rejects_the_whole_file(store):
    data = csv_bytes(
        "Good One,desc,999,,5,podkits,Uwell,,,,",
        "Bad Sale,desc,999,1200,5,podkits,Uwell,,,,",
    )
    with pytest.raises(ImportValidationError) as info:
        await run_import(store, "products.csv", data)

    assert [(e.row, e.name) for e in info.value.errors] == [(2, "Bad Sale")]
    assert store.create_calls == []


@pytest.mark.anyio
async def test_valid_csv_imports_every_row(store):
    data = csv_bytes(
        "Caliburn G2,Pod kit,1999,1799,20,podkits,Uwell,,,true,",
        "Elf Bar,Disposable,899,,40,disposable,Elf,\"Mint, Grape\",,,yes",
    )
    report = await run_import(store, "products.csv", data)

    assert report.total == 2 and len(report.imported) == 2 and report.errors == []
    assert report.progress == 100.0
    saved = {d["name"]: d for d in store.docs("products")}
    assert saved["Caliburn G2"]["featured"] is True
    assert [f["name"] for f in saved["Elf Bar"]["flavors"]] == ["Mint", "Grape"]
    assert saved["Elf Bar"]["most_selling"] is True


@pytest.mark.anyio
async def test_failed_write_is_recorded_and_the_rest_continue(store):
    rows = [
        {"name": f"Product {i}", "description": "d", "price": "100", "stock": "1", "category": "podkits", "brand": "A"}
        for i in range(1, 6)
    ]
    products, errors = validate_rows(rows)
    assert errors == []
    store.fail_on = lambda collection, data: data["name"] == "Product 3"
    seen = []

    report = await import_products(store, products, on_progress=seen.append)

    assert len(report.imported) == 4
    assert [(e.row, e.name) for e in report.errors] == [(3, "Product 3")]
    assert len(store.docs("products")) == 4
    assert seen == [20.0, 40.0, 60.0, 80.0, 100.0]


@pytest.mark.anyio
async def test_xlsx_upload(store):
    data = xlsx_bytes([
        ["name", "description", "price", "stock", "category", "brand"],
        ["Nasty Salt", "Nic salt", 650, 9, "NIC & SALTS", "Nasty"],
        [None, None, None, None, None, None],
    ])
    report = await run_import(store, "stock.xlsx", data)
    assert report.total == 1
    assert store.docs("products")[0]["price"] == 650


@pytest.mark.anyio
async def test_file_without_rows_is_rejected(store):
    with pytest.raises(ImportFileError):
        await run_import(store, "empty.csv", HEADER.encode())


def test_unsupported_file_type():
    with pytest.raises(ImportFileError):
        read_rows("products.pdf", b"%PDF")


def test_corrupt_workbook():
    with pytest.raises(ImportFileError):
        read_rows("products.xlsx", b"not a zip file")


def test_template_rows_are_valid_imports():
    data = build_template()
    header = next(load_workbook(io.BytesIO(data)).active.iter_rows(max_row=1, values_only=True))
    assert list(header) == TEMPLATE_COLUMNS

    rows = read_rows("template.xlsx", data)
    products, errors = validate_rows(rows)
    assert errors == []
    assert [p.name for p in products] == ["Sample Pod Kit", "Disposable Vape"]
    assert products[1].ratings[0].customer_name == "Asha"
