"""
Order endpoints: checkout, lookups, status transitions and report upload
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, UploadFile, File
from sqlalchemy.orm import Session
from slowapi import Limiter
from slowapi.util import get_remote_address
from typing import Optional
from datetime import datetime
from pathlib import Path
import logging
import math

from app.config import RATE_LIMIT_ENABLED, MAX_REPORT_SIZE_MB
from app.database import get_db
from app.models.order import ORDER_STATUSES, normalize_status
from app.schemas.order import (
    CheckoutRequest, StatusUpdate, TransitionNotes,
    OrderResponse, OrderListResponse, ReportUploadResponse,
    SlotAvailabilityResponse, FamilyMemberListResponse, OrderStatsResponse,
)
from app.services.activity_logger import ActivityLogger
from app.services.blob_store import get_blob_store
from app.services.family_aggregator import FamilyAggregator
from app.services.notification_service import get_notifier
from app.services.order_service import OrderService
from app.services.order_state_machine import OrderStateMachine
from app.services.report_manager import ReportManager
from app.services.slot_ledger import SlotLedger
from app.auth.auth_handler import Identity, customer_required, staff_required, user_required
from app.utils.error_handler import WorkflowError

logger = logging.getLogger(__name__)
limiter = Limiter(key_func=get_remote_address, enabled=RATE_LIMIT_ENABLED)

router = APIRouter()

ALLOWED_REPORT_TYPES = {
    "image/jpeg": {".jpg", ".jpeg"},
    "image/jpg": {".jpg", ".jpeg"},
    "image/png": {".png"},
    "application/pdf": {".pdf"},
}


def _status_filter(status: Optional[str]) -> Optional[str]:
    if status is None:
        return None
    status = normalize_status(status)
    if status not in ORDER_STATUSES:
        raise HTTPException(status_code=400, detail=f"Status must be one of: {', '.join(ORDER_STATUSES)}")
    return status


async def _audit(request: Request, db: Session, actor: Identity, action: str, order_id: int, status: str):
    await ActivityLogger(db).log_request(
        request, 200, user_id=actor.id, action=action,
        details={"order_id": order_id, "status": status}
    )


@router.get("/slots", response_model=SlotAvailabilityResponse)
@limiter.limit("60/minute")
async def get_available_slots(
    request: Request,
    date: str = Query(..., description="Collection date (YYYY-MM-DD)"),
    area: str = Query(..., description="Service area postal code"),
    current_user: Identity = Depends(user_required),
    db: Session = Depends(get_db)
):
    """Collection windows for a day and area, flagged free or taken"""
    try:
        datetime.strptime(date, "%Y-%m-%d")
    except ValueError:
        raise HTTPException(status_code=422, detail="date must be in format YYYY-MM-DD")
    service_area = area.strip().upper()

    slots = SlotLedger(db).available_windows(date, service_area)
    return SlotAvailabilityResponse(date=date, service_area=service_area, slots=slots)


@router.post("/checkout", response_model=OrderResponse, status_code=201)
@limiter.limit("10/minute")
async def checkout(
    request: Request,
    checkout_request: CheckoutRequest,
    current_user: Identity = Depends(customer_required),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier)
):
    """Place an order from the caller's cart"""
    try:
        order = OrderService(db, notifier).checkout(current_user, checkout_request)
        await _audit(request, db, current_user, "checkout", order.id, order.status)
        return OrderResponse.from_order(order)

    except (HTTPException, WorkflowError):
        raise
    except Exception as e:
        logger.error(f"Failed to place order: {e}")
        raise HTTPException(status_code=500, detail="Failed to place order")


@router.get("/mine")
@limiter.limit("30/minute")
async def get_my_orders(
    request: Request,
    status: Optional[str] = Query(None, description="Filter by status"),
    current_user: Identity = Depends(customer_required),
    db: Session = Depends(get_db)
):
    """Orders recorded under any of the caller's identities"""
    orders = OrderService(db).list_for_customer(current_user, _status_filter(status))
    return {
        "success": True,
        "count": len(orders),
        "orders": [OrderResponse.from_order(o) for o in orders],
    }


@router.get("/family-members", response_model=FamilyMemberListResponse)
@limiter.limit("30/minute")
async def get_family_members(
    request: Request,
    current_user: Identity = Depends(customer_required),
    db: Session = Depends(get_db)
):
    """Family members the caller has booked tests for"""
    members = FamilyAggregator(db).list_family(current_user)
    return FamilyMemberListResponse(success=True, members=members)


@router.get("/", response_model=OrderListResponse)
@limiter.limit("30/minute")
async def get_orders(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    status: Optional[str] = Query(None, description="Filter by status"),
    start_date: Optional[datetime] = Query(None, description="Created on or after"),
    end_date: Optional[datetime] = Query(None, description="Created on or before"),
    current_user: Identity = Depends(staff_required),
    db: Session = Depends(get_db)
):
    """Get paginated list of all orders (staff only)"""
    try:
        orders, total = OrderService(db).list_all(
            page, page_size, _status_filter(status), start_date, end_date
        )
        return OrderListResponse(
            orders=[OrderResponse.from_order(o) for o in orders],
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size)
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to get orders: {e}")
        raise HTTPException(status_code=500, detail="Failed to retrieve orders")


@router.get("/pending")
@limiter.limit("30/minute")
async def get_pending_orders(
    request: Request,
    current_user: Identity = Depends(staff_required),
    db: Session = Depends(get_db)
):
    """Orders waiting for approval"""
    orders = OrderService(db).list_pending()
    return {"success": True, "count": len(orders), "orders": [OrderResponse.from_order(o) for o in orders]}


@router.get("/working")
@limiter.limit("30/minute")
async def get_working_orders(
    request: Request,
    current_user: Identity = Depends(staff_required),
    db: Session = Depends(get_db)
):
    """Orders past the approval step"""
    orders = OrderService(db).list_working()
    return {"success": True, "count": len(orders), "orders": [OrderResponse.from_order(o) for o in orders]}


@router.get("/stats", response_model=OrderStatsResponse)
@limiter.limit("20/minute")
async def get_order_stats(
    request: Request,
    start_date: Optional[datetime] = Query(None, description="Created on or after"),
    end_date: Optional[datetime] = Query(None, description="Created on or before"),
    current_user: Identity = Depends(staff_required),
    db: Session = Depends(get_db)
):
    """Order counts and revenue by status plus 30-day daily trends (staff only)"""
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")
    try:
        return OrderStatsResponse(**OrderService(db).stats(start_date, end_date))
    except Exception as e:
        logger.error(f"Failed to compute order statistics: {e}")
        raise HTTPException(status_code=500, detail="Failed to compute order statistics")


@router.get("/{order_id}", response_model=OrderResponse)
@limiter.limit("30/minute")
async def get_order(
    request: Request,
    order_id: int,
    current_user: Identity = Depends(user_required),
    db: Session = Depends(get_db)
):
    """Get a specific order; customers only see their own"""
    order = OrderService(db).get_order(order_id, current_user)
    return OrderResponse.from_order(order)


@router.put("/{order_id}/status", response_model=OrderResponse)
@limiter.limit("20/minute")
async def update_order_status(
    request: Request,
    order_id: int,
    update: StatusUpdate,
    current_user: Identity = Depends(user_required),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier)
):
    """Move an order along its lifecycle"""
    order = OrderStateMachine(db, notifier).transition(order_id, update.status, current_user, update.notes)
    await _audit(request, db, current_user, "status_update", order.id, order.status)
    return OrderResponse.from_order(order)


@router.put("/{order_id}/approve", response_model=OrderResponse)
@limiter.limit("20/minute")
async def approve_order(
    request: Request,
    order_id: int,
    body: Optional[TransitionNotes] = None,
    current_user: Identity = Depends(staff_required),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier)
):
    """Approve a pending order"""
    notes = body.notes if body else None
    order = OrderStateMachine(db, notifier).approve(order_id, current_user, notes)
    await _audit(request, db, current_user, "approve", order.id, order.status)
    return OrderResponse.from_order(order)


@router.put("/{order_id}/deny", response_model=OrderResponse)
@limiter.limit("20/minute")
async def deny_order(
    request: Request,
    order_id: int,
    body: Optional[TransitionNotes] = None,
    current_user: Identity = Depends(staff_required),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier)
):
    """Deny a pending order"""
    notes = body.notes if body else None
    order = OrderStateMachine(db, notifier).deny(order_id, current_user, notes)
    await _audit(request, db, current_user, "deny", order.id, order.status)
    return OrderResponse.from_order(order)


@router.put("/{order_id}/cancel", response_model=OrderResponse)
@limiter.limit("10/minute")
async def cancel_order(
    request: Request,
    order_id: int,
    body: Optional[TransitionNotes] = None,
    current_user: Identity = Depends(user_required),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier)
):
    """Cancel one of the caller's own pending orders"""
    notes = body.notes if body else None
    order = OrderStateMachine(db, notifier).cancel(order_id, current_user, notes)
    await _audit(request, db, current_user, "cancel", order.id, order.status)
    return OrderResponse.from_order(order)


@router.post("/{order_id}/report", response_model=ReportUploadResponse)
@limiter.limit("5/minute")
async def upload_report(
    request: Request,
    order_id: int,
    report: UploadFile = File(..., description="Lab report (PDF, JPEG or PNG)"),
    current_user: Identity = Depends(staff_required),
    db: Session = Depends(get_db),
    blob_store=Depends(get_blob_store),
    notifier=Depends(get_notifier)
):
    """Upload the lab report for an order in processing"""
    content_type = (report.content_type or "").lower()
    extension = Path(report.filename or "").suffix.lower()
    if extension not in ALLOWED_REPORT_TYPES.get(content_type, set()):
        raise HTTPException(
            status_code=400,
            detail="Only JPEG, JPG, PNG images and PDF files are allowed"
        )

    file_content = await report.read()
    file_size = len(file_content)

    if file_size > MAX_REPORT_SIZE_MB * 1024 * 1024:
        raise HTTPException(
            status_code=400,
            detail=f"File size must be less than {MAX_REPORT_SIZE_MB}MB"
        )

    if file_size == 0:
        raise HTTPException(
            status_code=400,
            detail="File is empty"
        )

    manager = ReportManager(db, blob_store, notifier)
    reference, order = manager.attach_report(order_id, file_content, report.filename, current_user)
    await _audit(request, db, current_user, "upload_report", order.id, order.status)

    return ReportUploadResponse(
        success=True,
        message="Report uploaded successfully",
        report=reference,
        order=OrderResponse.from_order(order)
    )
