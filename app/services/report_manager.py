"""
Report attachment: store an uploaded report and bind it to an order

The blob write and the order write are not one transaction. Once the blob is
stored, every failure path deletes it again so no orphaned files remain.
"""

import logging
from typing import Tuple

from sqlalchemy.orm import Session

from app.auth.auth_handler import Identity
from app.models.order import Order, PROCESSING, REPORT_SUBMITTED
from app.schemas.order import ReportReference
from app.services import access_control
from app.services.blob_store import LocalBlobStore, REPORTS
from app.services.notification_service import notify_safely, REPORT_SUBMITTED as REPORT_READY
from app.services.order_state_machine import (
    OrderStateMachine, notification_parameters, notification_recipient,
)
from app.utils.error_handler import NotFound, Forbidden, InvalidTransition, UploadFailed

logger = logging.getLogger(__name__)


class ReportManager:
    """Binds uploaded lab reports to orders"""

    def __init__(self, db: Session, blob_store: LocalBlobStore, notifier=None):
        self.db = db
        self.blob_store = blob_store
        self.notifier = notifier
        self.state_machine = OrderStateMachine(db, notifier)

    def attach_report(
        self, order_id: int, file_bytes: bytes, filename: str, actor: Identity
    ) -> Tuple[ReportReference, Order]:
        """Store the report, then move the order to report_submitted with its reference"""
        if not actor.is_staff:
            raise Forbidden("Only lab staff can upload reports")

        handle = self.blob_store.new_handle(filename)
        try:
            try:
                self.blob_store.write(handle, file_bytes, REPORTS)
            except OSError as e:
                logger.error(f"Could not store report for order {order_id}: {e}")
                raise UploadFailed("File upload failed - report could not be stored")

            if not self.blob_store.exists(handle, REPORTS):
                logger.error(f"Report blob {handle} missing right after save")
                raise UploadFailed("File upload failed - file not found after save")

            reference = ReportReference(url=self.blob_store.url_for(handle, REPORTS), filename=handle)

            order = self.db.query(Order).filter(Order.id == order_id).first()
            if not order:
                raise NotFound("Order not found")
            if not access_control.can_mutate(order, actor, access_control.ATTACH_REPORT):
                raise Forbidden("Only lab staff can upload reports")
            if order.status != PROCESSING:
                raise InvalidTransition(
                    f"Reports can only be attached to orders in '{PROCESSING}', not '{order.status}'"
                )

            self.state_machine.commit_transition(
                order_id,
                PROCESSING,
                REPORT_SUBMITTED,
                actor,
                extra_values={"report_url": reference.url, "report_filename": handle},
            )
        except Exception:
            self._discard(handle)
            raise

        # The order row references the blob from here on; it must not be discarded
        order = self.state_machine.load_order(order_id)
        logger.info(f"Attached report {handle} to order {order.order_number}")
        notify_safely(self.notifier, notification_recipient(order), REPORT_READY,
                      notification_parameters(order))
        return reference, order

    def _discard(self, handle: str):
        try:
            self.blob_store.delete(handle, REPORTS)
        except OSError as e:
            logger.error(f"Failed to delete orphaned report {handle}: {e}")
