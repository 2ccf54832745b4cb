from typing import List, Optional
from datetime import datetime
from fastapi import Depends
from sqlalchemy import DateTime, Integer, case, literal, update
from sqlalchemy import select as sa_select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select, delete
from pydantic import BaseModel

from app.core.clock import utc_now
from app.core.config import settings
from app.core.exceptions import (
    CartItemNotFound,
    CartMergeFailure,
    CartStoreError,
    CartUnauthorized,
    CartValidationError,
)
from app.core.logging import get_logger, mask_token
from app.db.session import get_session
from app.models.cart import CartItem
from app.models.product import Product, ProductVariant
from app.services.cart_identity import CartOwner, OwnerKind

logger = get_logger(__name__)


class CartLine(BaseModel):
    cart_item_id: int
    product_variant_id: int
    quantity: int
    price: float
    product_title: str


class CartSummary(BaseModel):
    item_count: int
    line_count: int
    total: float


def _owner_clause(owner: CartOwner):
    if owner.kind == OwnerKind.USER:
        return CartItem.user_id == owner.user_id
    return CartItem.session_id == owner.session_id


def _require_owner(owner: Optional[CartOwner]):
    if owner is None:
        raise CartUnauthorized("No user or session found")


def _check_quantity(quantity: Optional[int]):
    if quantity is None or quantity < 1:
        raise CartValidationError("quantity must be at least 1")
    if quantity > settings.MAX_LINE_QUANTITY:
        raise CartValidationError(f"quantity cannot exceed {settings.MAX_LINE_QUANTITY}")


def _owner_conflict_columns(owner: CartOwner) -> List[str]:
    if owner.kind == OwnerKind.USER:
        return ["user_id", "product_variant_id"]
    return ["session_id", "product_variant_id"]


class CartService:
    """
    Cart lines for users and guest sessions.

    Every write commits on success and rolls back on failure. Uniqueness per
    (owner, variant) is enforced by the table constraints and an
    ``INSERT ... ON CONFLICT DO UPDATE``, never by a read-then-write.
    """

    def __init__(self, session: Session):
        self.session = session

    def _insert(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(CartItem.__table__)
        if dialect == "sqlite":
            return sqlite.insert(CartItem.__table__)
        logger.error("Cart upserts are not supported on %s", dialect)
        raise CartStoreError(f"Cart upserts are not supported on {dialect}")

    def _fail(self, action: str, exc: SQLAlchemyError):
        self.session.rollback()
        logger.exception("Cart store failure during %s", action)
        raise CartStoreError(f"Failed to {action}") from exc

    # Queries

    def list_items(self, owner: Optional[CartOwner]) -> List[CartLine]:
        """Lines joined with live variant price and product title, newest first."""
        if owner is None:
            return []
        statement = (
            select(
                CartItem.id,
                CartItem.product_variant_id,
                CartItem.quantity,
                ProductVariant.price,
                Product.title,
            )
            .join(ProductVariant, CartItem.product_variant_id == ProductVariant.id)
            .join(Product, ProductVariant.product_id == Product.id)
            .where(_owner_clause(owner))
            .order_by(CartItem.added_at.desc(), CartItem.id.desc())
        )
        try:
            rows = self.session.exec(statement).all()
        except SQLAlchemyError as e:
            self._fail("fetch cart", e)

        return [
            CartLine(
                cart_item_id=row[0],
                product_variant_id=row[1],
                quantity=row[2],
                price=row[3],
                product_title=row[4],
            )
            for row in rows
        ]

    def summary(self, owner: CartOwner) -> CartSummary:
        lines = self.list_items(owner)
        return CartSummary(
            item_count=sum(line.quantity for line in lines),
            line_count=len(lines),
            total=round(sum(line.price * line.quantity for line in lines), 2),
        )

    # Commands

    def add_item(self, owner: CartOwner, product_variant_id: Optional[int], quantity: int = 1) -> int:
        """Insert a line or increment the existing one. Returns the line id."""
        _require_owner(owner)
        if not product_variant_id:
            raise CartValidationError("product_variant_id is required")
        _check_quantity(quantity)

        variant = self.session.exec(
            select(ProductVariant)
            .join(Product, ProductVariant.product_id == Product.id)
            .where(
                ProductVariant.id == product_variant_id,
                ProductVariant.is_active == True,  # noqa: E712
                Product.is_active == True,  # noqa: E712
            )
        ).first()
        if not variant:
            raise CartValidationError("Product variant not found or unavailable")

        now = utc_now()
        statement = self._insert().values(
            user_id=owner.user_id,
            session_id=owner.session_id,
            product_variant_id=product_variant_id,
            quantity=quantity,
            added_at=now,
            updated_at=now,
        )
        incremented = CartItem.__table__.c.quantity + statement.excluded.quantity
        statement = statement.on_conflict_do_update(
            index_elements=_owner_conflict_columns(owner),
            set_={
                "quantity": incremented,
                "updated_at": statement.excluded.updated_at,
            },
            # an increment past the cap leaves the row untouched and returns nothing
            where=incremented <= settings.MAX_LINE_QUANTITY,
        ).returning(CartItem.__table__.c.id)

        try:
            cart_item_id = self.session.exec(statement).scalar_one_or_none()
            if cart_item_id is None:
                self.session.rollback()
                raise CartValidationError(
                    f"A cart line cannot hold more than {settings.MAX_LINE_QUANTITY} units"
                )
            self.session.commit()
        except SQLAlchemyError as e:
            self._fail("add to cart", e)

        logger.info(
            "Added variant %s x%s to %s cart (line %s)",
            product_variant_id, quantity, owner.kind.value, cart_item_id,
        )
        return cart_item_id

    def set_quantity(self, owner: CartOwner, cart_item_id: Optional[int], quantity: Optional[int]):
        """Overwrite a line's quantity. Non-positive quantities are rejected; use remove_item."""
        _require_owner(owner)
        if not cart_item_id:
            raise CartValidationError("cart_item_id is required")
        _check_quantity(quantity)

        statement = (
            update(CartItem)
            .where(CartItem.id == cart_item_id, _owner_clause(owner))
            .values(quantity=quantity, updated_at=utc_now())
        )
        try:
            result = self.session.exec(statement)
            if result.rowcount == 0:
                self.session.rollback()
                raise CartItemNotFound()
            self.session.commit()
        except SQLAlchemyError as e:
            self._fail("update cart item", e)

        logger.info("Set line %s quantity to %s (%s cart)", cart_item_id, quantity, owner.kind.value)

    def remove_item(self, owner: CartOwner, cart_item_id: Optional[int]):
        _require_owner(owner)
        if not cart_item_id:
            raise CartValidationError("cart_item_id is required")

        statement = delete(CartItem).where(CartItem.id == cart_item_id, _owner_clause(owner))
        try:
            result = self.session.exec(statement)
            if result.rowcount == 0:
                self.session.rollback()
                raise CartItemNotFound()
            self.session.commit()
        except SQLAlchemyError as e:
            self._fail("delete cart item", e)

        logger.info("Removed line %s from %s cart", cart_item_id, owner.kind.value)

    def clear(self, owner: CartOwner) -> int:
        """Remove every line of the owner's cart. Returns how many were removed."""
        _require_owner(owner)
        try:
            result = self.session.exec(delete(CartItem).where(_owner_clause(owner)))
            self.session.commit()
        except SQLAlchemyError as e:
            self._fail("clear cart", e)
        return result.rowcount

    # Login-time merge

    def _fold_guest_lines(self, user_id: int, session_id: str, now: datetime):
        guest_lines = sa_select(
            literal(user_id, Integer()),
            CartItem.product_variant_id,
            CartItem.quantity,
            CartItem.added_at,
            literal(now, DateTime(timezone=True)),
        ).where(CartItem.session_id == session_id)

        statement = self._insert().from_select(
            ["user_id", "product_variant_id", "quantity", "added_at", "updated_at"],
            guest_lines,
        )
        # login must not fail over a full line, so merged quantities are capped
        merged = CartItem.__table__.c.quantity + statement.excluded.quantity
        statement = statement.on_conflict_do_update(
            index_elements=["user_id", "product_variant_id"],
            set_={
                "quantity": case(
                    (merged > settings.MAX_LINE_QUANTITY, settings.MAX_LINE_QUANTITY),
                    else_=merged,
                ),
                "updated_at": statement.excluded.updated_at,
            },
        )
        self.session.exec(statement)

    def _retire_guest_lines(self, session_id: str) -> int:
        result = self.session.exec(delete(CartItem).where(CartItem.session_id == session_id))
        return result.rowcount

    def merge_guest_cart(self, user_id: int, session_id: Optional[str]) -> int:
        """
        Fold every line of a guest session into the user's cart, then drop the guest lines.

        Overlapping variants have their quantities added; the rest are moved over.
        Both steps run in one transaction: on any failure the store is left exactly
        as it was and CartMergeFailure is raised. Returns the number of guest lines merged.
        """
        if not session_id:
            return 0

        try:
            self._fold_guest_lines(user_id, session_id, utc_now())
            merged = self._retire_guest_lines(session_id)
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.exception(
                "Merging guest cart %s into user %s failed, rolled back",
                mask_token(session_id), user_id,
            )
            raise CartMergeFailure("Failed to merge guest cart") from e

        if merged:
            logger.info("Merged %s guest line(s) from %s into user %s", merged, mask_token(session_id), user_id)
        return merged


def get_cart_service(session: Session = Depends(get_session)) -> CartService:
    return CartService(session)
