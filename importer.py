"""
Bulk product import from a spreadsheet.

The import runs in two passes. Every row is validated first and problems are
collected per row; a single problem anywhere rejects the whole file before
anything is written. Valid files are then written one product at a time, and
a failing write is recorded against its row without stopping the rest.

Columns: name, description, price, stock, category, brand (required) and
salePrice, flavors, variants, featured, mostSelling, imageUrl, images,
ratings (optional). ``variants``, ``images`` and ``ratings`` hold inline JSON;
``flavors`` is comma separated or a JSON array.
"""
from __future__ import annotations
import csv
import io
import json
import logging
import math
from pathlib import Path
from typing import Any, Callable, Optional
from zipfile import BadZipFile

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from pydantic import BaseModel, Field, ValidationError, computed_field

from database import PRODUCTS, DocumentStore
from schemas import Flavor, Product, Rating, Variant, normalize_category

logger = logging.getLogger("uvicorn.error")

REQUIRED_FIELDS = ("name", "description", "price", "stock", "category", "brand")
TEMPLATE_COLUMNS = [
    "name", "description", "price", "salePrice", "stock", "category", "brand",
    "flavors", "variants", "featured", "mostSelling", "imageUrl", "images", "ratings",
]
TEMPLATE_ROWS = [
    {
        "name": "Sample Pod Kit",
        "description": "A high-quality pod kit with adjustable airflow",
        "price": 1999,
        "stock": 50,
        "category": "podkits",
        "brand": "VapeX",
        "variants": json.dumps([
            {"name": "Black", "price": 1999, "stock": 25},
            {"name": "Silver", "price": 1999, "stock": 25},
        ]),
        "featured": "true",
        "imageUrl": "https://example.com/image1.jpg",
    },
    {
        "name": "Disposable Vape",
        "description": "Convenient disposable vape with 5000 puffs",
        "price": 999,
        "salePrice": 899,
        "stock": 100,
        "category": "disposable",
        "brand": "VapeX",
        "flavors": "Mint, Watermelon, Ice Cream",
        "mostSelling": "true",
        "images": json.dumps(["https://example.com/image2.jpg"]),
        "ratings": json.dumps([{"rating": 5, "content": "Smooth draw", "customerName": "Asha"}]),
    },
]


class ImportFileError(Exception):
    pass


class ImportValidationError(Exception):
    def __init__(self, errors: list["RowError"]):
        super().__init__(f"{len(errors)} validation error(s) in import file")
        self.errors = errors


class RowError(BaseModel):
    row: int = Field(..., description="1-based data row number (header excluded)")
    name: str = ""
    message: str


class ImportReport(BaseModel):
    total: int
    imported: list[str] = Field(default_factory=list)
    errors: list[RowError] = Field(default_factory=list)

    @computed_field
    @property
    def progress(self) -> float:
        if not self.total:
            return 100.0
        return round((len(self.imported) + len(self.errors)) / self.total * 100, 2)


# ------------------------------- Parsing -------------------------------

def _clean_row(row: dict[Any, Any]) -> Optional[dict[str, Any]]:
    cleaned = {str(k).strip(): v for k, v in row.items() if k is not None and str(k).strip()}
    if all(_blank(v) for v in cleaned.values()):
        return None
    return cleaned


def read_rows(filename: str, data: bytes) -> list[dict[str, Any]]:
    suffix = Path(filename or "").suffix.lower()
    if suffix == ".csv":
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ImportFileError("CSV files must be UTF-8 encoded") from e
        raw_rows = list(csv.DictReader(io.StringIO(text)))
    elif suffix == ".xlsx":
        try:
            wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        except (InvalidFileException, BadZipFile, KeyError, ValueError) as e:
            raise ImportFileError("Error reading file. Please ensure it's a valid Excel/CSV file.") from e
        try:
            values = list(wb.worksheets[0].iter_rows(values_only=True))
        finally:
            wb.close()
        if not values:
            return []
        header = values[0]
        raw_rows = [dict(zip(header, row)) for row in values[1:]]
    else:
        raise ImportFileError(f"Unsupported file type '{suffix or filename}', upload .xlsx or .csv")
    return [r for r in (_clean_row(row) for row in raw_rows) if r is not None]


# ------------------------------- Validation -------------------------------

def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _number(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("not a number")
    if isinstance(value, (int, float)):
        return float(value)
    return float(str(value).strip())


def _boolean(value: Any) -> bool:
    if _blank(value):
        return False
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes", "1.0"):
        return True
    if text in ("false", "0", "no", "0.0"):
        return False
    raise ValueError(f"'{value}' is not true/false")


def _json_list(value: Any) -> list[Any]:
    parsed = value if isinstance(value, list) else json.loads(str(value))
    if not isinstance(parsed, list):
        raise ValueError("expected a JSON array")
    return parsed


def _non_negative(value: Any, field: str, errors: list[str], integral: bool = False) -> Optional[float]:
    try:
        number = _number(value)
    except ValueError:
        errors.append(f"{field} must be a number")
        return None
    if not math.isfinite(number):
        errors.append(f"{field} must be a number")
        return None
    if number < 0:
        errors.append(f"{field} must not be negative")
        return None
    if integral and not number.is_integer():
        errors.append(f"{field} must be a whole number")
        return None
    return number


def _parse_flavors(value: Any, errors: list[str]) -> list[Flavor]:
    text = value if isinstance(value, list) else str(value).strip()
    if isinstance(text, str) and not text.startswith("["):
        return [Flavor(name=f.strip()) for f in text.split(",") if f.strip()]
    try:
        entries = _json_list(text)
    except ValueError:
        errors.append("flavors must be comma separated or a JSON array")
        return []
    flavors = []
    for entry in entries:
        if isinstance(entry, str) and entry.strip():
            flavors.append(Flavor(name=entry.strip()))
        elif isinstance(entry, dict) and entry.get("name"):
            name = str(entry["name"]).strip()
            raw = entry.get("inStock", entry.get("in_stock"))
            try:
                in_stock = True if raw is None else _boolean(raw)
            except ValueError as e:
                errors.append(f"flavor '{name}' inStock: {e}")
                continue
            flavors.append(Flavor(name=name, in_stock=in_stock))
        else:
            errors.append("each flavor must be a name or an object with a name")
    return flavors


def _parse_variants(value: Any, errors: list[str]) -> list[Variant]:
    try:
        entries = _json_list(value)
    except ValueError:
        errors.append("variants must be a JSON array")
        return []
    variants = []
    for i, entry in enumerate(entries, start=1):
        if not isinstance(entry, dict):
            errors.append(f"variant {i} must be an object")
            continue
        if _blank(entry.get("name")):
            errors.append(f"variant {i} needs a name")
            continue
        price = stock = None
        if entry.get("price") is not None:
            price = _non_negative(entry["price"], f"variant {i} price", errors)
        if entry.get("stock") is not None:
            stock = _non_negative(entry["stock"], f"variant {i} stock", errors, integral=True)
        variants.append(Variant(
            name=str(entry["name"]).strip(),
            price=price,
            stock=int(stock) if stock is not None else None,
        ))
    return variants


def _parse_ratings(value: Any, errors: list[str]) -> list[Rating]:
    try:
        entries = _json_list(value)
    except ValueError:
        errors.append("ratings must be a JSON array")
        return []
    ratings = []
    for i, entry in enumerate(entries, start=1):
        if not isinstance(entry, dict):
            errors.append(f"rating {i} must be an object")
            continue
        try:
            score = _number(entry.get("rating"))
        except (TypeError, ValueError):
            score = None
        if score is None or not score.is_integer() or not 1 <= score <= 5:
            errors.append(f"rating {i} must be between 1 and 5")
            continue
        try:
            is_customer = _boolean(entry.get("isCustomerReview", entry.get("is_customer_review")))
        except ValueError as e:
            errors.append(f"rating {i} isCustomerReview: {e}")
            continue
        data = {
            "rating": int(score),
            "content": entry.get("content") or entry.get("text") or "",
            "customer_name": entry.get("customerName") or entry.get("customer_name") or "Anonymous",
            "is_customer_review": is_customer,
        }
        if entry.get("date"):
            data["date"] = entry["date"]
        try:
            ratings.append(Rating.model_validate(data))
        except ValidationError:
            errors.append(f"rating {i} has an invalid date")
    return ratings


def _parse_images(value: Any, errors: list[str]) -> list[str]:
    try:
        entries = _json_list(value)
    except ValueError:
        errors.append("images must be a JSON array of URLs")
        return []
    if not all(isinstance(url, str) for url in entries):
        errors.append("images must be a JSON array of URLs")
        return []
    return [url.strip() for url in entries if url.strip()]


def validate_row(row: dict[str, Any]) -> tuple[Optional[Product], list[str]]:
    errors: list[str] = []
    for field in REQUIRED_FIELDS:
        if _blank(row.get(field)):
            errors.append(f"Missing required field '{field}'")

    category = None
    if not _blank(row.get("category")):
        try:
            category = normalize_category(row["category"])
        except ValueError:
            errors.append(f"Invalid category '{row['category']}'")

    price = stock = sale_price = None
    if not _blank(row.get("price")):
        price = _non_negative(row["price"], "price", errors)
    if not _blank(row.get("stock")):
        stock = _non_negative(row["stock"], "stock", errors, integral=True)
    if not _blank(row.get("salePrice")):
        sale_price = _non_negative(row["salePrice"], "salePrice", errors)
        if sale_price is not None and price is not None and sale_price >= price:
            errors.append("salePrice must be less than price")

    flavors = _parse_flavors(row["flavors"], errors) if not _blank(row.get("flavors")) else []
    variants = _parse_variants(row["variants"], errors) if not _blank(row.get("variants")) else []
    ratings = _parse_ratings(row["ratings"], errors) if not _blank(row.get("ratings")) else []
    images = _parse_images(row["images"], errors) if not _blank(row.get("images")) else []

    flags = {}
    for column, field in (("featured", "featured"), ("mostSelling", "most_selling")):
        try:
            flags[field] = _boolean(row.get(column))
        except ValueError as e:
            errors.append(f"{column}: {e}")

    if errors:
        return None, errors
    try:
        product = Product(
            name=str(row["name"]).strip(),
            description=str(row["description"]).strip(),
            price=price,
            sale_price=sale_price,
            stock=int(stock),
            category=category,
            brand=str(row["brand"]),
            image_url=str(row.get("imageUrl") or "").strip(),
            images=images,
            flavors=flavors,
            variants=variants,
            ratings=ratings,
            **flags,
        )
    except ValidationError as e:
        return None, [err["msg"].removeprefix("Value error, ") for err in e.errors()]
    return product, []


def validate_rows(rows: list[dict[str, Any]]) -> tuple[list[Product], list[RowError]]:
    products: list[Product] = []
    errors: list[RowError] = []
    for index, row in enumerate(rows, start=1):
        product, messages = validate_row(row)
        name = str(row.get("name") or "").strip()
        errors.extend(RowError(row=index, name=name, message=m) for m in messages)
        if product is not None:
            products.append(product)
    return products, errors


# ------------------------------- Writing -------------------------------

async def import_products(
    store: DocumentStore,
    products: list[Product],
    on_progress: Optional[Callable[[float], None]] = None,
) -> ImportReport:
    """Write products one by one; a failed write is recorded and skipped."""
    report = ImportReport(total=len(products))
    for row, product in enumerate(products, start=1):
        try:
            saved = await store.create(PRODUCTS, product.model_dump())
        except Exception as e:
            logger.error(f"Import row {row} ({product.name}) failed: {e}")
            report.errors.append(RowError(row=row, name=product.name, message=str(e)))
        else:
            report.imported.append(saved["id"])
        if on_progress:
            on_progress(report.progress)
    return report


async def run_import(store: DocumentStore, filename: str, data: bytes) -> ImportReport:
    rows = read_rows(filename, data)
    if not rows:
        raise ImportFileError("The file contains no product rows")
    products, errors = validate_rows(rows)
    if errors:
        logger.warning(f"Rejected import {filename}: {len(errors)} validation error(s)")
        raise ImportValidationError(errors)
    report = await import_products(store, products)
    logger.info(f"Imported {len(report.imported)}/{report.total} products from {filename}")
    return report


def build_template() -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Products"
    ws.append(TEMPLATE_COLUMNS)
    for sample in TEMPLATE_ROWS:
        ws.append([sample.get(column, "") for column in TEMPLATE_COLUMNS])
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
