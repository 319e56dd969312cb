"""
Family members derived from orders a customer placed for other people
"""

import logging
from typing import List

from sqlalchemy.orm import Session

from app.auth.auth_handler import Identity
from app.models.order import Order
from app.schemas.order import FamilyMember, FamilyTestSummary
from app.services.order_service import owned_by

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"


def _or_unknown(value) -> str:
    if value is None or value == "":
        return UNKNOWN
    return str(value)


def member_key(order: Order) -> str:
    """memberId when the order has one, else name/relation/email"""
    if order.member_id:
        return order.member_id
    return f"{order.patient_name}_{order.relation}_{order.patient_email or 'no-email'}"


def summarize(order: Order) -> FamilyTestSummary:
    names = ", ".join(item.test_name for item in order.items)
    return FamilyTestSummary(
        order_id=order.id,
        name=names or "Unknown Test",
        lab=order.items[0].lab if order.items else "Unknown Lab",
        date=order.appointment_date,
        status=order.status or UNKNOWN,
        total_price=order.total_price or 0,
    )


class FamilyAggregator:
    """Read-only projection of a customer's dependents"""

    def __init__(self, db: Session):
        self.db = db

    def list_family(self, actor: Identity) -> List[FamilyMember]:
        orders = (
            self.db.query(Order)
            .filter(owned_by(actor), Order.relation != "self")
            .order_by(Order.created_at.desc(), Order.id.desc())
            .all()
        )

        members = {}
        for order in orders:
            if not order.patient_name:
                continue
            key = member_key(order)
            member = members.get(key)
            if member is None:
                member = FamilyMember(
                    id=key,
                    member_id=order.member_id,
                    name=order.patient_name,
                    relation=order.relation or "family",
                    age=_or_unknown(order.patient_age),
                    gender=_or_unknown(order.patient_gender),
                    email=_or_unknown(order.patient_email),
                    phone=_or_unknown(order.patient_phone),
                    order_count=0,
                    last_checkup=order.appointment_date,
                    tests=[],
                )
                members[key] = member

            member.order_count += 1
            member.tests.append(summarize(order))
            # ISO dates compare correctly as strings
            if order.appointment_date > member.last_checkup:
                member.last_checkup = order.appointment_date

        logger.info(f"Derived {len(members)} family members from {len(orders)} orders for user {actor.id}")
        return sorted(members.values(), key=lambda m: m.last_checkup, reverse=True)
