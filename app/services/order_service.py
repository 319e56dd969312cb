"""
Order service: checkout and order lookups
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.auth.auth_handler import Identity
from app.config import HOME_COLLECTION_CHARGE
from app.models.cart import Cart
from app.models.lab_test import LabTest
from app.models.order import Order, OrderItem, ORDER_STATUSES, PENDING, DENIED, CANCELLED
from app.schemas.order import CheckoutRequest
from app.services import access_control
from app.services.notification_service import notify_safely, ORDER_PLACED
from app.services.order_state_machine import notification_parameters, notification_recipient
from app.services.slot_ledger import SlotLedger
from app.utils.error_handler import (
    DatabaseError, Forbidden, InvalidState, NotFound, SlotConflict, WorkflowError,
)

logger = logging.getLogger(__name__)


def generate_order_number() -> str:
    return f"LAB-{uuid.uuid4().hex[:8].upper()}"


def owned_by(actor: Identity):
    """SQL filter matching orders recorded under any of the actor's identity keys"""
    clauses = [Order.owner_user_id == actor.id]
    if actor.email_key:
        clauses.append(Order.patient_email == actor.email_key)
        clauses.append(Order.owner_email == actor.email_key)
    return or_(*clauses)


class OrderService:
    """Checkout and read access to orders"""

    def __init__(self, db: Session, notifier=None):
        self.db = db
        self.notifier = notifier
        self.slot_ledger = SlotLedger(db)

    def checkout(self, actor: Identity, request: CheckoutRequest) -> Order:
        """Turn the actor's cart into a pending order holding the requested slot"""
        cart = self.db.query(Cart).filter(Cart.user_id == actor.id).first()
        if not cart or not cart.items:
            raise InvalidState("Your cart is empty")

        slot = request.appointment
        if not self.slot_ledger.is_available(slot.date, slot.time_window, slot.service_area):
            raise SlotConflict("This time slot is already booked for your area. Please choose another slot.")

        patient = request.patient_info
        items = []
        for cart_item in cart.items:
            test = self.db.query(LabTest).filter(LabTest.id == cart_item.test_id).first()
            if not test or not test.is_active:
                raise NotFound(f"Test '{cart_item.name}' is no longer available")
            items.append(OrderItem(
                test_id=test.id,
                test_name=cart_item.name,
                lab=test.lab,
                price=cart_item.price,
                quantity=cart_item.quantity,
            ))

        subtotal = sum(item.price * item.quantity for item in items)
        surcharge = HOME_COLLECTION_CHARGE if patient.address else 0
        payment_method = request.payment_method

        order = Order(
            order_number=generate_order_number(),
            patient_name=patient.name,
            patient_email=(patient.email or actor.email or "").lower() or None,
            patient_phone=patient.phone,
            patient_dob=patient.dob,
            patient_age=patient.age,
            patient_gender=patient.gender,
            relation=patient.relation,
            member_id=patient.member_id,
            owner_user_id=actor.id,
            owner_email=actor.email_key,
            address=patient.address,
            city=patient.city,
            state=patient.state,
            pincode=patient.pincode,
            appointment_date=slot.date,
            appointment_window=slot.time_window,
            service_area=slot.service_area,
            subtotal=subtotal,
            home_collection_charge=surcharge,
            total_price=subtotal + surcharge,
            payment_method=payment_method,
            payment_status="Pending" if payment_method == "COD" else "Paid",
            status=PENDING,
            version=1,
            items=items,
        )

        try:
            self.slot_ledger.reserve(order)
            self.db.delete(cart)
            self.db.commit()
        except WorkflowError:
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to place order for user {actor.id}: {e}")
            raise DatabaseError(f"Failed to place order: {str(e)}", e)

        self.db.refresh(order)
        logger.info(
            f"Order {order.order_number} placed by user {actor.id} for "
            f"{order.appointment_date} {order.appointment_window} in {order.service_area}"
        )
        notify_safely(self.notifier, notification_recipient(order), ORDER_PLACED,
                      notification_parameters(order))
        return order

    def get_order(self, order_id: int, actor: Identity) -> Order:
        order = self.db.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise NotFound("Order not found")
        if not access_control.can_access(order, actor):
            raise Forbidden("Not authorized to view this order")
        return order

    def list_for_customer(self, actor: Identity, status: Optional[str] = None) -> List[Order]:
        query = self.db.query(Order).filter(owned_by(actor))
        if status:
            query = query.filter(Order.status == status)
        return query.order_by(Order.created_at.desc(), Order.id.desc()).all()

    def list_all(
        self,
        page: int = 1,
        page_size: int = 20,
        status: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Tuple[List[Order], int]:
        """Paginated staff listing with optional status and created-at filters"""
        query = self.db.query(Order)
        if status:
            query = query.filter(Order.status == status)
        if start_date and end_date:
            query = query.filter(Order.created_at >= start_date, Order.created_at <= end_date)

        total = query.count()
        offset = (page - 1) * page_size
        orders = (
            query.order_by(Order.created_at.desc(), Order.id.desc())
            .offset(offset)
            .limit(page_size)
            .all()
        )
        return orders, total

    def list_pending(self) -> List[Order]:
        return (
            self.db.query(Order)
            .filter(Order.status == PENDING)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .all()
        )

    def list_working(self) -> List[Order]:
        return (
            self.db.query(Order)
            .filter(Order.status != PENDING)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .all()
        )

    def stats(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        trend_days: int = 30,
    ) -> dict:
        """Counts and revenue per status over a created-at range, plus recent daily trends

        Denied and cancelled orders are counted but excluded from total_revenue.
        """
        query = self.db.query(
            Order.status,
            func.count(Order.id),
            func.coalesce(func.sum(Order.total_price), 0),
        )
        if start_date:
            query = query.filter(Order.created_at >= start_date)
        if end_date:
            query = query.filter(Order.created_at <= end_date)
        counted = {status: (count, float(revenue)) for status, count, revenue in query.group_by(Order.status).all()}

        by_status = []
        for status in ORDER_STATUSES:
            count, revenue = counted.get(status, (0, 0.0))
            by_status.append({"status": status, "count": count, "revenue": revenue})

        day = func.date(Order.created_at)
        since = datetime.utcnow() - timedelta(days=trend_days)
        daily_rows = (
            self.db.query(day, func.count(Order.id), func.coalesce(func.sum(Order.total_price), 0))
            .filter(Order.created_at >= since)
            .group_by(day)
            .order_by(day)
            .all()
        )

        return {
            "total_orders": sum(entry["count"] for entry in by_status),
            "total_revenue": sum(
                entry["revenue"] for entry in by_status if entry["status"] not in (DENIED, CANCELLED)
            ),
            "by_status": by_status,
            "daily_trends": [
                {"date": str(date), "orders": count, "revenue": float(revenue)}
                for date, count, revenue in daily_rows
            ],
            "start_date": start_date,
            "end_date": end_date,
        }
