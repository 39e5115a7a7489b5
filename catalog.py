"""
Catalog store: categories and products (saplings).

A product carries both the category name and the category id; every write
resolves the category by name so the pair always points at the same row.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError as SchemaError
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_documents, serialize_doc, to_object_id
from errors import Conflict, NotFound, ValidationError
from schemas import Category as CategorySchema, Product as ProductSchema

logger = logging.getLogger(__name__)


# Categories

def find_category_by_name(db: Database, name: str) -> Optional[dict]:
    return db["category"].find_one({"name_key": name.strip().lower()})


def list_categories(db: Database) -> List[dict]:
    return [serialize_doc(c) for c in get_documents(db, "category", sort=[("name", 1)])]


def _load_category(db: Database, category_id: str) -> dict:
    obj_id = to_object_id(category_id)
    category = db["category"].find_one({"_id": obj_id}) if obj_id else None
    if not category:
        raise NotFound("Category not found")
    return category


def get_category(db: Database, category_id: str) -> dict:
    return serialize_doc(_load_category(db, category_id))


def _clean_category_name(name: Optional[str]) -> str:
    if not name or not name.strip():
        raise ValidationError("Category name is required")
    return name.strip()


def create_category(db: Database, name: Optional[str]) -> dict:
    name = _clean_category_name(name)
    if find_category_by_name(db, name):
        raise Conflict("Category already exists")
    try:
        category_id = create_document(db, "category", CategorySchema(name=name, name_key=name.lower()))
    except DuplicateKeyError:
        raise Conflict("Category already exists")
    logger.info("Created category %s (%s)", name, category_id)
    return get_category(db, category_id)


def update_category(db: Database, category_id: str, name: Optional[str]) -> dict:
    name = _clean_category_name(name)
    category = _load_category(db, category_id)
    clash = find_category_by_name(db, name)
    if clash and clash["_id"] != category["_id"]:
        raise Conflict("Category name already exists")
    now = datetime.now(timezone.utc)
    try:
        db["category"].update_one(
            {"_id": category["_id"]},
            {"$set": {"name": name, "name_key": name.lower(), "updated_at": now}},
        )
    except DuplicateKeyError:
        raise Conflict("Category name already exists")
    # keep the denormalized name on products in step with the relation
    renamed = db["product"].update_many(
        {"category_id": str(category["_id"])},
        {"$set": {"category": name, "updated_at": now}},
    )
    logger.info("Renamed category %s to %s (%d products)", category_id, name, renamed.modified_count)
    return get_category(db, category_id)


def delete_category(db: Database, category_id: str) -> None:
    category = _load_category(db, category_id)
    if db["product"].find_one({"category_id": str(category["_id"])}):
        raise Conflict("Cannot delete category that is in use by products")
    db["category"].delete_one({"_id": category["_id"]})
    logger.info("Deleted category %s", category_id)


# Products

class ProductFilter(BaseModel):
    category_ids: List[str] = Field(default_factory=list)
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    seasons: List[str] = Field(default_factory=list)
    search: Optional[str] = None
    include_unavailable: bool = False
    featured: bool = False
    limit: Optional[int] = Field(default=None, ge=1)


def build_product_query(f: ProductFilter) -> Dict[str, Any]:
    """Translate a filter into a Mongo query.

    Each option is one clause of a top-level $and; multi-valued options
    (categories, seasons) and the search fields are ORed within their clause.
    """
    clauses: List[Dict[str, Any]] = []
    if not f.include_unavailable:
        clauses.append({"availability": True})
    if f.category_ids:
        clauses.append({"category_id": {"$in": list(f.category_ids)}})
    price_filter: Dict[str, Any] = {}
    if f.min_price is not None:
        price_filter["$gte"] = float(f.min_price)
    if f.max_price is not None:
        price_filter["$lte"] = float(f.max_price)
    if price_filter:
        clauses.append({"price": price_filter})
    if f.seasons:
        clauses.append({"season": {"$in": list(f.seasons)}})
    if f.search:
        pattern = re.escape(f.search)
        clauses.append({"$or": [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]})
    # only featured=true narrows the listing
    if f.featured:
        clauses.append({"featured": True})
    if not clauses:
        return {}
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def list_products(db: Database, f: Optional[ProductFilter] = None) -> List[dict]:
    f = f or ProductFilter()
    cursor = db["product"].find(build_product_query(f)).sort("_id", DESCENDING)
    if f.limit:
        cursor = cursor.limit(f.limit)
    return [serialize_doc(p) for p in cursor]


def find_product(db: Database, product_id: str) -> Optional[dict]:
    obj_id = to_object_id(product_id)
    return db["product"].find_one({"_id": obj_id}) if obj_id else None


def get_product(db: Database, product_id: str) -> dict:
    product = find_product(db, product_id)
    if not product:
        raise NotFound("Product not found")
    return serialize_doc(product)


def normalize_seasons(values) -> List[str]:
    """Title-case season names and drop blanks and repeats, keeping order."""
    seasons: List[str] = []
    for value in values or []:
        season = str(value).strip().title()
        if season and season not in seasons:
            seasons.append(season)
    return seasons


def schema_error_message(exc: SchemaError) -> str:
    err = exc.errors()[0]
    field = ".".join(str(p) for p in err.get("loc", ()))
    return f"{field}: {err['msg']}" if field else err["msg"]


class ProductIn(BaseModel):
    name: Optional[str] = None
    price: Optional[float] = None
    description: Optional[str] = None
    category: Optional[str] = None
    image: Optional[str] = None
    season: List[str] = Field(default_factory=list)
    availability: Optional[bool] = None
    featured: bool = False
    rating: Optional[float] = None
    reviews: Optional[int] = None


def _product_model(db: Database, data: ProductIn) -> ProductSchema:
    if not data.name or data.price is None:
        raise ValidationError("Name and price are required")
    if not data.category:
        raise ValidationError("Category is required")
    category = find_category_by_name(db, data.category)
    if not category:
        raise NotFound("Category not found")
    try:
        return ProductSchema(
            name=data.name,
            price=data.price,
            description=data.description or "",
            category=category["name"],
            category_id=str(category["_id"]),
            image=data.image or "",
            season=normalize_seasons(data.season),
            availability=data.availability if data.availability is not None else True,
            featured=data.featured,
            rating=data.rating or 0,
            reviews=data.reviews or 0,
        )
    except SchemaError as exc:
        raise ValidationError(schema_error_message(exc))


def create_product(db: Database, data: ProductIn) -> dict:
    product_id = create_document(db, "product", _product_model(db, data))
    logger.info("Created product %s (%s)", data.name, product_id)
    return get_product(db, product_id)


def update_product(db: Database, product_id: str, data: ProductIn) -> dict:
    existing = find_product(db, product_id)
    if not existing:
        raise NotFound("Product not found")
    update_dict = _product_model(db, data).model_dump()
    update_dict["updated_at"] = datetime.now(timezone.utc)
    db["product"].update_one({"_id": existing["_id"]}, {"$set": update_dict})
    logger.info("Updated product %s", product_id)
    return get_product(db, product_id)


def delete_product(db: Database, product_id: str) -> None:
    # Cart rows pointing at the product stay; cart snapshots skip them.
    obj_id = to_object_id(product_id)
    res = db["product"].delete_one({"_id": obj_id}) if obj_id else None
    if res is None or res.deleted_count == 0:
        raise NotFound("Product not found")
    logger.info("Deleted product %s", product_id)
