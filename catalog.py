"""
Catalog and coupon management.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from pymongo.database import Database

from database import create_document, get_documents, serialize_doc, to_object_id, utcnow
from errors import CouponNotFound, ProductNotFound, ValidationFailed
from pricing import size_rank
from schemas import Category, Coupon, DiscountType, Product, ProductSize


class ProductIn(BaseModel):
    name: str
    slug: str
    description: str = ""
    short_description: str = ""
    category: Category
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    featured: bool = False
    active: bool = True
    images: List[str] = []
    care_instructions: List[str] = []
    weight_kg: float = 0.3
    height_cm: float = 5
    width_cm: float = 20
    length_cm: float = 25


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    category: Optional[Category] = None
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    featured: Optional[bool] = None
    active: Optional[bool] = None
    images: Optional[List[str]] = None
    care_instructions: Optional[List[str]] = None


class CouponUpdate(BaseModel):
    code: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = Field(None, gt=0)
    min_order_value: Optional[float] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, ge=1)
    category: Optional[Category] = None
    active: Optional[bool] = None
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


def _sizes_for(db: Database, product_id: str) -> List[ProductSize]:
    sizes = [ProductSize(**serialize_doc(d)) for d in db["product_size"].find({"product_id": product_id})]
    return sorted(sizes, key=lambda s: size_rank(s.size_label))


def list_products(db: Database, category: Optional[str] = None, include_inactive: bool = False) -> List[Product]:
    query: Dict[str, Any] = {}
    if not include_inactive:
        query["active"] = True
    if category:
        query["category"] = category
    docs = get_documents(db, "product", query, sort=[("created_at", -1)])
    return [Product(**doc, sizes=_sizes_for(db, doc["id"])) for doc in docs]


def get_product(db: Database, product_id: str, include_inactive: bool = False) -> Product:
    oid = to_object_id(product_id)
    doc = db["product"].find_one({"_id": oid}) if oid else None
    if not doc or (not doc.get("active", True) and not include_inactive):
        raise ProductNotFound("Product not found")
    doc = serialize_doc(doc)
    return Product(**doc, sizes=_sizes_for(db, doc["id"]))


def create_product(db: Database, data: ProductIn) -> Product:
    product_id = create_document(db, "product", data.model_dump())
    return get_product(db, product_id, include_inactive=True)


def update_product(db: Database, product_id: str, data: ProductUpdate) -> Product:
    update_dict = data.model_dump(exclude_unset=True)
    if not update_dict:
        raise ValidationFailed("No fields to update")
    update_dict["updated_at"] = utcnow()
    res = db["product"].update_one({"_id": to_object_id(product_id)}, {"$set": update_dict})
    if res.matched_count == 0:
        raise ProductNotFound("Product not found")
    return get_product(db, product_id, include_inactive=True)


def set_product_active(db: Database, product_id: str, active: bool) -> None:
    """Soft delete / restore. Products are never removed so order history keeps resolving."""
    res = db["product"].update_one(
        {"_id": to_object_id(product_id)}, {"$set": {"active": active, "updated_at": utcnow()}}
    )
    if res.matched_count == 0:
        raise ProductNotFound("Product not found")


def set_size_stock(db: Database, product_id: str, size_label: str, stock: int,
                   sku: Optional[str] = None) -> ProductSize:
    """Admin stock edit: creates the size if the product does not offer it yet."""
    if stock < 0:
        raise ValidationFailed("Stock cannot be negative")
    get_product(db, product_id, include_inactive=True)
    update: Dict[str, Any] = {"stock": stock, "updated_at": utcnow()}
    if sku is not None:
        update["sku"] = sku
    db["product_size"].update_one(
        {"product_id": product_id, "size_label": size_label},
        {"$set": update, "$setOnInsert": {"created_at": utcnow()}},
        upsert=True,
    )
    doc = db["product_size"].find_one({"product_id": product_id, "size_label": size_label})
    return ProductSize(**serialize_doc(doc))


def list_coupons(db: Database) -> List[Coupon]:
    return [Coupon(**doc) for doc in get_documents(db, "coupon", sort=[("created_at", -1)])]


def create_coupon(db: Database, coupon: Coupon) -> Coupon:
    if db["coupon"].find_one({"code": coupon.code}):
        raise ValidationFailed(f"Coupon {coupon.code} already exists")
    coupon_id = create_document(db, "coupon", coupon.model_copy(update={"used_count": 0}))
    return coupon.model_copy(update={"id": coupon_id, "used_count": 0})


def update_coupon(db: Database, coupon_id: str, data: CouponUpdate) -> Coupon:
    oid = to_object_id(coupon_id)
    current = db["coupon"].find_one({"_id": oid}) if oid else None
    if not current:
        raise CouponNotFound("Coupon not found")
    merged = Coupon(**{**serialize_doc(current), **data.model_dump(exclude_unset=True)})
    update_dict = merged.model_dump(exclude={"id", "used_count"})
    update_dict["updated_at"] = utcnow()
    db["coupon"].update_one({"_id": oid}, {"$set": update_dict})
    return merged
