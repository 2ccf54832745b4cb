from typing import Optional
from datetime import datetime
from sqlalchemy import CheckConstraint, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel
from app.core.clock import utc_now
from app.core.config import settings

class CartItem(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("user_id", "product_variant_id", name="uq_cartitem_user_variant"),
        UniqueConstraint("session_id", "product_variant_id", name="uq_cartitem_session_variant"),
        # exactly one owner per line
        CheckConstraint("(user_id IS NULL) <> (session_id IS NULL)", name="ck_cartitem_single_owner"),
        CheckConstraint("quantity >= 1", name="ck_cartitem_positive_quantity"),
        CheckConstraint(f"quantity <= {settings.MAX_LINE_QUANTITY}", name="ck_cartitem_max_quantity"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)

    # Owner: a registered user or a guest session cookie, never both
    user_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)
    session_id: Optional[str] = Field(default=None, max_length=128, index=True)

    product_variant_id: int = Field(foreign_key="productvariant.id")

    # Cart Details
    quantity: int = Field(default=1, ge=1, le=settings.MAX_LINE_QUANTITY)

    # Timestamps
    added_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
