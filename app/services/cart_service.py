"""
Cart service: the tests a customer has picked before checkout
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.cart import Cart, CartItem
from app.models.lab_test import LabTest
from app.utils.error_handler import DatabaseError, NotFound

logger = logging.getLogger(__name__)


class CartService:
    """Per-customer cart, created lazily and removed on checkout or clear"""

    def __init__(self, db: Session):
        self.db = db

    def get_cart(self, user_id: str) -> Optional[Cart]:
        return self.db.query(Cart).filter(Cart.user_id == user_id).first()

    def add_test(self, user_id: str, test_id: int) -> Cart:
        """Add a catalog test; adding it again bumps the quantity"""
        test = self.db.query(LabTest).filter(LabTest.id == test_id, LabTest.is_active == True).first()
        if not test:
            raise NotFound("Test not found or not available")

        try:
            cart = self.get_cart(user_id)
            if not cart:
                cart = Cart(user_id=user_id, items=[])
                self.db.add(cart)

            existing = next((item for item in cart.items if item.test_id == test_id), None)
            if existing:
                existing.quantity += 1
            else:
                cart.items.append(CartItem(
                    test_id=test.id,
                    name=test.name,
                    price=test.price,
                    description=test.description,
                    category=test.category,
                    quantity=1,
                ))

            self.db.commit()
            self.db.refresh(cart)
            logger.info(f"Added test {test_id} to cart of user {user_id}")
            return cart
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to add test {test_id} to cart: {e}")
            raise DatabaseError(f"Failed to update cart: {str(e)}", e)

    def _find_item(self, user_id: str, test_id: int) -> CartItem:
        cart = self.get_cart(user_id)
        if not cart:
            raise NotFound("Cart not found")
        item = next((item for item in cart.items if item.test_id == test_id), None)
        if not item:
            raise NotFound("Item not found in cart")
        return item

    def update_quantity(self, user_id: str, test_id: int, quantity: int) -> Cart:
        item = self._find_item(user_id, test_id)
        try:
            item.quantity = quantity
            self.db.commit()
            self.db.refresh(item.cart)
            return item.cart
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to set quantity of test {test_id} in cart: {e}")
            raise DatabaseError(f"Failed to update cart: {str(e)}", e)

    def remove_test(self, user_id: str, test_id: int) -> Optional[Cart]:
        item = self._find_item(user_id, test_id)
        cart = item.cart
        try:
            cart.items.remove(item)
            self.db.commit()
            self.db.refresh(cart)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to remove test {test_id} from cart: {e}")
            raise DatabaseError(f"Failed to update cart: {str(e)}", e)

        logger.info(f"Removed test {test_id} from cart of user {user_id}")
        return cart

    def clear(self, user_id: str) -> bool:
        """Delete the cart outright; returns False when there was none"""
        cart = self.get_cart(user_id)
        if not cart:
            return False
        try:
            self.db.delete(cart)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to clear cart of user {user_id}: {e}")
            raise DatabaseError(f"Failed to clear cart: {str(e)}", e)

        logger.info(f"Cleared cart of user {user_id}")
        return True

    @staticmethod
    def total(cart: Optional[Cart]) -> float:
        if not cart:
            return 0
        return sum(item.price * item.quantity for item in cart.items)
