"""
Order state machine

    pending ──► approved ──► sample_collected ──► processing ──► report_submitted ──► completed
       │
       ├──► denied
       └──► cancelled (owning customer only)

denied, cancelled and completed are terminal. processing ──► report_submitted is
only taken by the report manager, which attaches the report in the same write.

Every transition is a conditional UPDATE on the status the caller read, so of two
concurrent actions on the same order only one can win; the other gets Conflict.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.auth.auth_handler import Identity
from app.models.order import (
    Order, ORDER_STATUSES, normalize_status,
    PENDING, APPROVED, DENIED, SAMPLE_COLLECTED, PROCESSING, REPORT_SUBMITTED, COMPLETED, CANCELLED,
)
from app.services import access_control
from app.services.notification_service import notify_safely, ORDER_APPROVED
from app.utils.error_handler import (
    NotFound, Forbidden, InvalidTransition, InvalidState, Conflict, DatabaseError,
)

logger = logging.getLogger(__name__)

TRANSITIONS = {
    PENDING: {APPROVED, DENIED, CANCELLED},
    APPROVED: {SAMPLE_COLLECTED},
    SAMPLE_COLLECTED: {PROCESSING},
    PROCESSING: {REPORT_SUBMITTED},
    REPORT_SUBMITTED: {COMPLETED},
}

# Action each target status requires of the actor
TARGET_ACTIONS = {
    APPROVED: access_control.APPROVE,
    DENIED: access_control.DENY,
    CANCELLED: access_control.CANCEL,
    SAMPLE_COLLECTED: access_control.ADVANCE,
    PROCESSING: access_control.ADVANCE,
    REPORT_SUBMITTED: access_control.ATTACH_REPORT,
    COMPLETED: access_control.ADVANCE,
}

DEFAULT_NOTES = {
    APPROVED: "Order approved by admin",
    DENIED: "Order was denied",
    CANCELLED: "Cancelled by user",
    SAMPLE_COLLECTED: "Sample collected",
    PROCESSING: "Sample is being processed",
    REPORT_SUBMITTED: "Report uploaded",
    COMPLETED: "Order completed",
}


def is_allowed(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


def notification_parameters(order: Order) -> dict:
    return {
        "patient_name": order.patient_name,
        "order_number": order.order_number,
        "appointment_date": order.appointment_date,
        "appointment_window": order.appointment_window,
        "report_url": order.report_url or "",
    }


def notification_recipient(order: Order) -> Optional[str]:
    return order.patient_email or order.owner_email


class OrderStateMachine:
    """Validates and applies order status transitions"""

    def __init__(self, db: Session, notifier=None):
        self.db = db
        self.notifier = notifier

    def load_order(self, order_id: int) -> Order:
        order = self.db.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise NotFound("Order not found")
        return order

    def transition(self, order_id: int, target_status: str, actor: Identity, notes: Optional[str] = None) -> Order:
        """Move an order to target_status on behalf of actor"""
        target = normalize_status(target_status)
        if target not in ORDER_STATUSES:
            raise InvalidTransition(f"Unknown status '{target_status}'")

        order = self.load_order(order_id)
        current = order.status

        if target == CANCELLED:
            if not access_control.can_mutate(order, actor, access_control.CANCEL):
                raise Forbidden("Not authorized to cancel this order")
            if current != PENDING:
                raise InvalidState("Order cannot be cancelled at this stage")
        else:
            if not is_allowed(current, target):
                raise InvalidTransition(f"Cannot move order from '{current}' to '{target}'")
            if not access_control.can_mutate(order, actor, TARGET_ACTIONS[target]):
                raise Forbidden("Operation not permitted")
            if target == REPORT_SUBMITTED:
                raise InvalidState("Upload a report to mark this order as report submitted")

        order = self.apply_transition(order_id, current, target, actor, notes)

        if target == APPROVED:
            notify_safely(self.notifier, notification_recipient(order), ORDER_APPROVED,
                          notification_parameters(order))
        return order

    def approve(self, order_id: int, actor: Identity, notes: Optional[str] = None) -> Order:
        return self.transition(order_id, APPROVED, actor, notes)

    def deny(self, order_id: int, actor: Identity, notes: Optional[str] = None) -> Order:
        return self.transition(order_id, DENIED, actor, notes)

    def cancel(self, order_id: int, actor: Identity, notes: Optional[str] = None) -> Order:
        return self.transition(order_id, CANCELLED, actor, notes)

    def apply_transition(
        self,
        order_id: int,
        expected_status: str,
        target_status: str,
        actor: Identity,
        notes: Optional[str] = None,
        extra_values: Optional[dict] = None,
    ) -> Order:
        """Write the new status only if the stored status is still expected_status

        technician_notes is replaced, not appended.
        """
        self.commit_transition(order_id, expected_status, target_status, actor, notes, extra_values)
        order = self.load_order(order_id)
        logger.info(
            f"Order {order.order_number} moved {expected_status} -> {target_status} by {actor.role} {actor.id}"
        )
        return order

    def commit_transition(
        self,
        order_id: int,
        expected_status: str,
        target_status: str,
        actor: Identity,
        notes: Optional[str] = None,
        extra_values: Optional[dict] = None,
    ):
        """The conditional UPDATE and its commit; raises Conflict when the order moved on"""
        now = datetime.utcnow()
        values = {
            Order.status: target_status,
            Order.technician_notes: notes or DEFAULT_NOTES[target_status],
            Order.version: Order.version + 1,
            Order.updated_at: now,
        }
        if target_status == APPROVED:
            values[Order.approved_by] = actor.id
            values[Order.approved_at] = now
        elif target_status == DENIED:
            values[Order.denied_by] = actor.id
            values[Order.denied_at] = now
        for column, value in (extra_values or {}).items():
            values[getattr(Order, column)] = value

        try:
            updated = (
                self.db.query(Order)
                .filter(Order.id == order_id, Order.status == expected_status)
                .update(values, synchronize_session=False)
            )
            if updated == 0:
                self.db.rollback()
                logger.warning(
                    f"Order {order_id} left '{expected_status}' before it could move to '{target_status}'"
                )
                raise Conflict("Order was modified by another request. Reload it and try again.")
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to update status of order {order_id}: {e}")
            raise DatabaseError(f"Failed to update order status: {str(e)}", e)
