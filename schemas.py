"""
Data Schemas

Pydantic models shared by the API server and the client services.

Documents stored in MongoDB:
- "products" collection -> Product
- "users" collection -> {_id: uid, email, displayName, wishlist: [Product], purchaseHistory: [PurchaseRecord]}
- "purchases" collection -> PurchaseRecord + userId

Field names follow the JSON wire format (camelCase aliases); Python code
uses the snake_case attribute names.
"""

from datetime import datetime, timezone
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field

ProductId = Union[int, str]


def product_key(product_id: ProductId) -> str:
    """Comparable form of a product id (numeric and string ids match)."""
    return str(product_id)


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "products"
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: ProductId = Field(..., description="Product identifier")
    name: str = Field(..., description="Product name")
    price: float = Field(..., ge=0, description="Price")
    old_price: Optional[float] = Field(None, alias="oldPrice", ge=0, description="Price before discount")
    image: Optional[str] = Field(None, description="Image URL")
    available: bool = Field(True, description="Whether product is available")
    rating: int = Field(0, ge=0, le=5, description="Star rating")
    description: Optional[str] = Field(None, description="Product description")

    @property
    def key(self) -> str:
        return product_key(self.id)

    @property
    def on_sale(self) -> bool:
        return self.old_price is not None and self.old_price > 0

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class CartEntry(Product):
    """A product in the local cart with its quantity."""
    quantity: int = Field(1, ge=1, description="Quantity of the product")

    @classmethod
    def from_product(cls, product: Product, quantity: int = 1) -> "CartEntry":
        data = product.model_dump(by_alias=True)
        data["quantity"] = quantity
        return cls.model_validate(data)

    @property
    def subtotal(self) -> float:
        return self.price * self.quantity


class PurchaseItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: ProductId
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    image: Optional[str] = None


class PurchaseRecord(BaseModel):
    """Append-only record of a completed checkout."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    order_id: str = Field(..., alias="orderId", min_length=1)
    items: List[PurchaseItem]
    total_amount: float = Field(..., alias="totalAmount", ge=0)
    date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class UserSession(BaseModel):
    """Locally materialized signed-in user with wishlist and purchase history."""
    model_config = ConfigDict(populate_by_name=True)

    uid: str
    email: Optional[EmailStr] = None
    display_name: Optional[str] = Field(None, alias="displayName")
    photo_url: Optional[str] = Field(None, alias="photoURL")
    email_verified: bool = Field(False, alias="emailVerified")
    wishlist: List[Product] = Field(default_factory=list)
    purchase_history: List[PurchaseRecord] = Field(default_factory=list, alias="purchaseHistory")
    loading: bool = False
    wishlist_loading: bool = Field(False, alias="wishlistLoading")


# Request bodies accepted by the API server

class WishlistAddRequest(BaseModel):
    product: Optional[dict] = None


class PurchaseAddRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: List[PurchaseItem] = Field(..., min_length=1)
    total_amount: Optional[float] = Field(None, alias="totalAmount", ge=0)
    date: Optional[datetime] = None
    order_id: Optional[str] = Field(None, alias="orderId", min_length=1)
