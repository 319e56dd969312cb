"""
Cart model: a customer's tests selected before checkout
"""

from sqlalchemy import Column, Integer, String, DateTime, Float, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base


class Cart(Base):
    """One cart per customer, created on first add and deleted on checkout"""
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), unique=True, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.id",
    )

    def __repr__(self):
        return f"<Cart(id={self.id}, user_id='{self.user_id}', items={len(self.items)})>"


class CartItem(Base):
    __tablename__ = "cart_items"
    __table_args__ = (UniqueConstraint("cart_id", "test_id", name="uq_cart_items_test"),)

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), index=True, nullable=False)
    test_id = Column(Integer, index=True, nullable=False)
    name = Column(String(200), nullable=False)
    price = Column(Float, nullable=False)
    description = Column(String(500), nullable=True)
    category = Column(String(100), nullable=True)
    quantity = Column(Integer, default=1, nullable=False)

    cart = relationship("Cart", back_populates="items")

    def __repr__(self):
        return f"<CartItem(test_id={self.test_id}, name='{self.name}', quantity={self.quantity})>"
