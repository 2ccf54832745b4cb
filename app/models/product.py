from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime
from sqlalchemy import DateTime
from app.core.clock import utc_now

class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # Basic Info
    title: str = Field(index=True)
    slug: str = Field(index=True, unique=True)
    description: Optional[str] = None

    # Metadata
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))


class ProductVariant(SQLModel, table=True):
    """A purchasable SKU of a product (size, colour, ...). Carts reference variants."""
    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="product.id", index=True)

    sku: str = Field(unique=True, index=True)
    title: Optional[str] = None

    # Pricing - read live by the cart, never copied onto cart lines
    price: float

    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
