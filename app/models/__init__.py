# Import all models to register them with SQLModel
from app.models.user import User
from app.models.product import Product, ProductVariant
from app.models.cart import CartItem

__all__ = [
    "User",
    "Product",
    "ProductVariant",
    "CartItem",
]
