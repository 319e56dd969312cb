"""
Slot ledger: which appointment triples are held by active orders

The availability check and the order insert are separate statements, so two
checkouts for the same triple can both see the slot as free. The partial unique
index on orders (see app.models.order) makes the second insert fail; reserve()
turns that failure into SlotConflict. Callers re-query available windows and retry
with a different triple.
"""

import logging
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import TIME_WINDOWS
from app.models.order import Order, ACTIVE_STATUSES, ACTIVE_SLOT_INDEX
from app.utils.error_handler import SlotConflict

logger = logging.getLogger(__name__)


def _is_slot_violation(error: IntegrityError) -> bool:
    message = str(error.orig)
    # SQLite names the columns, PostgreSQL names the index
    return ACTIVE_SLOT_INDEX in message or "orders.appointment_date" in message


class SlotLedger:
    """Reads and claims (date, time window, service area) commitments"""

    def __init__(self, db: Session):
        self.db = db

    def _active_for(self, date: str, service_area: str):
        return self.db.query(Order).filter(
            Order.appointment_date == date,
            Order.service_area == service_area,
            Order.status.in_(ACTIVE_STATUSES),
        )

    def is_available(self, date: str, time_window: str, service_area: str) -> bool:
        taken = self._active_for(date, service_area).filter(
            Order.appointment_window == time_window
        ).count()
        return taken == 0

    def committed_windows(self, date: str, service_area: str) -> List[str]:
        rows = self._active_for(date, service_area).with_entities(Order.appointment_window).all()
        return sorted({row[0] for row in rows})

    def available_windows(self, date: str, service_area: str) -> List[dict]:
        """Configured windows for the day, flagged free or taken"""
        taken = set(self.committed_windows(date, service_area))
        return [{"time_window": w, "available": w not in taken} for w in TIME_WINDOWS]

    def reserve(self, order: Order) -> Order:
        """Insert the order, claiming its slot

        Must run inside the caller's transaction; on conflict the transaction is
        rolled back and SlotConflict raised.
        """
        self.db.add(order)
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            if _is_slot_violation(e):
                logger.info(
                    f"Slot {order.appointment_date} {order.appointment_window} "
                    f"{order.service_area} taken by a concurrent checkout"
                )
                raise SlotConflict(
                    "This time slot is already booked for your area. "
                    "Please choose another slot."
                )
            raise
        return order
