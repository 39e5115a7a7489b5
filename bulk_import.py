"""
Bulk product import from a spreadsheet.

Rows are processed one at a time and independently: a bad row is recorded
in the failures and the next row is still attempted. Row numbers are the
spreadsheet's own, so the first data row (under the header) is row 2.
"""

import csv
import io
import logging
import math
import os
from typing import Any, Dict, List

from openpyxl import load_workbook
from pydantic import BaseModel, Field, ValidationError as SchemaError
from pymongo.database import Database
from pymongo.errors import PyMongoError

from catalog import find_category_by_name, normalize_seasons, schema_error_message
from database import create_document
from errors import MissingRequiredField, NotFound, ShopError, ValidationError
from schemas import Product as ProductSchema

logger = logging.getLogger(__name__)

HEADER_ROWS = 1

EXCEL_TYPES = {
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/octet-stream",
}
CSV_TYPES = {"text/csv", "application/csv"}


class RowSuccess(BaseModel):
    row: int
    id: str
    name: str


class RowFailure(BaseModel):
    row: int
    name: str
    error: str


class ImportResult(BaseModel):
    total: int = 0
    succeeded: List[RowSuccess] = Field(default_factory=list)
    failed: List[RowFailure] = Field(default_factory=list)

    @property
    def message(self) -> str:
        return (f"Processed {self.total} rows with {len(self.succeeded)} successes "
                f"and {len(self.failed)} errors")


# Reading

def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _rows_from_table(header: List[Any], body) -> List[Dict[str, Any]]:
    keys = [str(h).strip() if not _is_blank(h) else None for h in header]
    rows = []
    for values in body:
        row = {}
        for key, value in zip(keys, values):
            if key is None or _is_blank(value):
                continue
            row[key] = value.strip() if isinstance(value, str) else value
        if row:
            rows.append(row)
    return rows


def read_xlsx(data: bytes) -> List[Dict[str, Any]]:
    """First worksheet as row dicts; empty cells are left out of each row."""
    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as exc:
        raise ValidationError(f"Could not read spreadsheet: {exc}")
    try:
        sheet = workbook.worksheets[0]
        table = sheet.iter_rows(values_only=True)
        header = next(table, None)
        if header is None:
            return []
        return _rows_from_table(list(header), table)
    finally:
        workbook.close()


def read_csv(data: bytes) -> List[Dict[str, Any]]:
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationError("CSV files must be UTF-8 encoded")
    table = csv.reader(io.StringIO(text))
    header = next(table, None)
    if header is None:
        return []
    return _rows_from_table(header, table)


def read_rows(filename: str, content_type: str, data: bytes) -> List[Dict[str, Any]]:
    ext = os.path.splitext(filename or "")[1].lower()
    if ext == ".csv" or content_type in CSV_TYPES:
        rows = read_csv(data)
    elif ext in (".xlsx", ".xlsm") or content_type in EXCEL_TYPES:
        rows = read_xlsx(data)
    else:
        raise ValidationError("Only Excel or CSV files are allowed")
    if not rows:
        raise ValidationError("No data found in the spreadsheet")
    return rows


# Row parsing

def parse_price(value: Any) -> float:
    if value is None or isinstance(value, bool):
        raise MissingRequiredField()
    try:
        price = float(value)
    except (TypeError, ValueError, OverflowError):
        raise MissingRequiredField("Price must be a number")
    if not math.isfinite(price) or price < 0:
        raise MissingRequiredField("Price must be a non-negative number")
    return price


def parse_seasons(value: Any) -> List[str]:
    if _is_blank(value):
        return []
    return normalize_seasons(str(value).split(","))


def is_true(value: Any) -> bool:
    return value is True or value == "true" or (not isinstance(value, bool) and value == 1)


def parse_availability(row: Dict[str, Any]) -> bool:
    """Absent means available; a present value counts only if it is True, "true" or 1."""
    if row.get("availability") is None:
        return True
    return is_true(row["availability"])


def _number(value: Any, cast, field: str):
    if _is_blank(value):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"{field} must be a number")
    if not math.isfinite(number):
        raise ValidationError(f"{field} must be a finite number")
    return cast(number)


def product_from_row(db: Database, row: Dict[str, Any]) -> ProductSchema:
    name = row.get("name")
    if _is_blank(name) or row.get("price") is None:
        raise MissingRequiredField()
    price = parse_price(row["price"])

    category_name = str(row.get("category") or "").strip()
    category_id = None
    if category_name:
        category = find_category_by_name(db, category_name)
        if not category:
            raise NotFound(f"Category not found: {category_name}")
        category_name, category_id = category["name"], str(category["_id"])

    try:
        return ProductSchema(
            name=str(name).strip(),
            price=price,
            description=str(row.get("description") or ""),
            category=category_name,
            category_id=category_id,
            image=str(row.get("image") or ""),
            season=parse_seasons(row.get("season")),
            availability=parse_availability(row),
            featured=is_true(row.get("featured")),
            rating=_number(row.get("rating"), float, "rating"),
            reviews=_number(row.get("reviews"), int, "reviews"),
        )
    except SchemaError as exc:
        raise ValidationError(schema_error_message(exc))


def import_rows(db: Database, rows: List[Dict[str, Any]]) -> ImportResult:
    result = ImportResult(total=len(rows))
    for i, row in enumerate(rows):
        row_number = i + 1 + HEADER_ROWS
        try:
            product = product_from_row(db, row)
            product_id = create_document(db, "product", product)
        except (ShopError, PyMongoError) as exc:
            message = exc.message if isinstance(exc, ShopError) else str(exc)
            name = row.get("name")
            result.failed.append(RowFailure(
                row=row_number,
                name=str(name) if not _is_blank(name) else f"Row {row_number}",
                error=message,
            ))
            logger.warning("Bulk import row %d failed: %s", row_number, message)
            continue
        result.succeeded.append(RowSuccess(row=row_number, id=product_id, name=product.name))
    logger.info(result.message)
    return result
