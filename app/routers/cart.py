"""
Cart endpoints; every route works on the caller's own cart
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from slowapi import Limiter
from slowapi.util import get_remote_address
import logging

from app.config import RATE_LIMIT_ENABLED
from app.database import get_db
from app.schemas.cart import CartItemAdd, CartItemUpdate, CartResponse, CartItemResponse
from app.services.cart_service import CartService
from app.auth.auth_handler import Identity, customer_required
from app.utils.error_handler import WorkflowError

logger = logging.getLogger(__name__)
limiter = Limiter(key_func=get_remote_address, enabled=RATE_LIMIT_ENABLED)

router = APIRouter()


def cart_response(user_id: str, cart) -> CartResponse:
    if not cart:
        return CartResponse(user_id=user_id, items=[], total=0)
    return CartResponse(
        user_id=user_id,
        items=[CartItemResponse.from_orm(item) for item in cart.items],
        total=CartService.total(cart),
    )


@router.get("", response_model=CartResponse)
@limiter.limit("60/minute")
async def get_cart(
    request: Request,
    current_user: Identity = Depends(customer_required),
    db: Session = Depends(get_db)
):
    """Get the caller's cart (empty if none exists yet)"""
    cart = CartService(db).get_cart(current_user.id)
    return cart_response(current_user.id, cart)


@router.post("/items", response_model=CartResponse)
@limiter.limit("30/minute")
async def add_to_cart(
    request: Request,
    item: CartItemAdd,
    current_user: Identity = Depends(customer_required),
    db: Session = Depends(get_db)
):
    """Add a test to the cart"""
    try:
        cart = CartService(db).add_test(current_user.id, item.test_id)
        return cart_response(current_user.id, cart)
    except (HTTPException, WorkflowError):
        raise
    except Exception as e:
        logger.error(f"Add to cart failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to update cart")


@router.put("/items/{test_id}", response_model=CartResponse)
@limiter.limit("30/minute")
async def update_cart_item(
    request: Request,
    test_id: int,
    update: CartItemUpdate,
    current_user: Identity = Depends(customer_required),
    db: Session = Depends(get_db)
):
    """Change the quantity of a cart item"""
    cart = CartService(db).update_quantity(current_user.id, test_id, update.quantity)
    return cart_response(current_user.id, cart)


@router.delete("/items/{test_id}", response_model=CartResponse)
@limiter.limit("30/minute")
async def remove_from_cart(
    request: Request,
    test_id: int,
    current_user: Identity = Depends(customer_required),
    db: Session = Depends(get_db)
):
    """Remove a test from the cart"""
    cart = CartService(db).remove_test(current_user.id, test_id)
    return cart_response(current_user.id, cart)


@router.delete("")
@limiter.limit("30/minute")
async def clear_cart(
    request: Request,
    current_user: Identity = Depends(customer_required),
    db: Session = Depends(get_db)
):
    """Clear the entire cart"""
    CartService(db).clear(current_user.id)
    return {"message": "Cart cleared successfully"}
