from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from pydantic import BaseModel, Field

from app.models.user import User
from app.routers.auth import get_current_user_optional
from app.core.config import settings
from app.core.exceptions import (
    CartError,
    CartItemNotFound,
    CartUnauthorized,
    CartValidationError,
)
from app.services.cart import CartLine, CartService, CartSummary, get_cart_service
from app.services.cart_identity import CartOwner, resolve_cart_owner, set_guest_cookie

router = APIRouter()

class CartItemCreate(BaseModel):
    product_variant_id: int = Field(ge=1)
    quantity: int = Field(default=1, ge=1, le=settings.MAX_LINE_QUANTITY)

class CartItemUpdate(BaseModel):
    cart_item_id: int = Field(ge=1)
    quantity: int = Field(ge=1, le=settings.MAX_LINE_QUANTITY)

class CartItemCreated(BaseModel):
    success: bool
    cart_item_id: int

class CartCleared(BaseModel):
    success: bool
    removed: int

def get_cart_owner(
    request: Request,
    response: Response,
    current_user: Optional[User] = Depends(get_current_user_optional),
) -> CartOwner:
    """Resolve who the cart belongs to, minting a guest cookie when needed."""
    owner, minted_token = resolve_cart_owner(
        current_user.id if current_user else None,
        request.cookies.get(settings.GUEST_SESSION_COOKIE),
    )
    if minted_token:
        set_guest_cookie(response, minted_token)
    return owner

def _raise_http(error: CartError):
    if isinstance(error, CartValidationError):
        raise HTTPException(status_code=400, detail=error.message)
    if isinstance(error, CartUnauthorized):
        raise HTTPException(status_code=401, detail=error.message)
    if isinstance(error, CartItemNotFound):
        raise HTTPException(status_code=404, detail=error.message)
    raise HTTPException(status_code=500, detail=error.message)

@router.get("", response_model=List[CartLine])
def get_cart(owner: CartOwner = Depends(get_cart_owner), service: CartService = Depends(get_cart_service)):
    """Get the caller's cart lines, newest first"""
    try:
        return service.list_items(owner)
    except CartError as e:
        _raise_http(e)

@router.get("/summary", response_model=CartSummary)
def get_cart_summary(owner: CartOwner = Depends(get_cart_owner), service: CartService = Depends(get_cart_service)):
    """Item count and total for the mini cart"""
    try:
        return service.summary(owner)
    except CartError as e:
        _raise_http(e)

@router.post("", response_model=CartItemCreated)
def add_to_cart(
    cart_item: CartItemCreate,
    owner: CartOwner = Depends(get_cart_owner),
    service: CartService = Depends(get_cart_service),
):
    """Add a variant to the cart, incrementing the line if it is already there"""
    try:
        cart_item_id = service.add_item(owner, cart_item.product_variant_id, cart_item.quantity)
    except CartError as e:
        _raise_http(e)
    return {"success": True, "cart_item_id": cart_item_id}

@router.patch("")
def update_cart_item(
    cart_update: CartItemUpdate,
    owner: CartOwner = Depends(get_cart_owner),
    service: CartService = Depends(get_cart_service),
):
    """Set a line's quantity"""
    try:
        service.set_quantity(owner, cart_update.cart_item_id, cart_update.quantity)
    except CartError as e:
        _raise_http(e)
    return {"success": True}

@router.delete("/clear", response_model=CartCleared)
def clear_cart(owner: CartOwner = Depends(get_cart_owner), service: CartService = Depends(get_cart_service)):
    """Clear entire cart"""
    try:
        removed = service.clear(owner)
    except CartError as e:
        _raise_http(e)
    return {"success": True, "removed": removed}

@router.delete("")
def remove_from_cart(
    cart_item_id: int = Query(..., ge=1),
    owner: CartOwner = Depends(get_cart_owner),
    service: CartService = Depends(get_cart_service),
):
    """Remove a line from the cart"""
    try:
        service.remove_item(owner, cart_item_id)
    except CartError as e:
        _raise_http(e)
    return {"success": True}
