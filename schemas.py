"""
Database Schemas

MongoDB collection schemas as Pydantic models.
Each Pydantic model represents a collection in your database.
Model name lowercased is the collection name; CartItem is stored in "cart_item".

Wire models at the bottom use camelCase aliases (productId, totalPrice, ...)
while the stored documents stay snake_case.
"""

from pydantic import BaseModel, ConfigDict, Field, EmailStr
from pydantic.alias_generators import to_camel
from typing import Literal, Optional, List

SEASONS = ("Spring", "Summer", "Fall", "Winter")

Season = Literal["Spring", "Summer", "Fall", "Winter"]
Role = Literal["customer", "admin"]


class User(BaseModel):
    name: str = Field("", description="Display name")
    email: EmailStr = Field(..., description="Email address, stored lower-cased")
    password_hash: str = Field(..., description="BCrypt hashed password")
    role: Role = Field("customer", description="Role: customer | admin")


class Category(BaseModel):
    name: str = Field(..., min_length=1)
    name_key: str = Field(..., description="Lower-cased name, unique")


class Product(BaseModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0, allow_inf_nan=False)
    description: str = ""
    category: str = Field("", description="Category name, kept in sync with category_id")
    category_id: Optional[str] = None
    image: str = ""
    season: List[Season] = Field(default_factory=list)
    availability: bool = True
    featured: bool = False
    rating: float = Field(default=0, ge=0, le=5, allow_inf_nan=False)
    reviews: int = Field(default=0, ge=0)


class Cart(BaseModel):
    user_id: str


class CartItem(BaseModel):
    cart_id: str
    product_id: str
    quantity: int = Field(1, ge=1)


# Wire models

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserIdentity(CamelModel):
    id: str
    email: str
    role: Role = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class ProductRef(CamelModel):
    """What a caller knows about a product when adding it to a cart.

    Server carts only need the id; guest carts keep the rest for display.
    """
    product_id: str
    name: str = ""
    price: float = 0
    image: Optional[str] = None


class CartLine(CamelModel):
    product_id: str
    name: str
    price: float
    image: Optional[str] = None
    quantity: int = Field(..., ge=1)


class CartSnapshot(CamelModel):
    items: List[CartLine] = Field(default_factory=list)
    total_items: int = 0
    total_price: float = 0
