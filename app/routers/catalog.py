"""
Lab test catalog endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session
from slowapi import Limiter
from slowapi.util import get_remote_address
from typing import Optional
import logging

from app.config import RATE_LIMIT_ENABLED
from app.database import get_db
from app.models.lab_test import LabTest
from app.schemas.lab_test import LabTestCreate, LabTestUpdate, LabTestResponse, LabTestListResponse
from app.auth.auth_handler import Identity, staff_required

logger = logging.getLogger(__name__)
limiter = Limiter(key_func=get_remote_address, enabled=RATE_LIMIT_ENABLED)

router = APIRouter()

@router.get("/tests", response_model=LabTestListResponse)
@limiter.limit("60/minute")
async def list_tests(
    request: Request,
    category: Optional[str] = Query(None, description="Filter by category"),
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db)
):
    """List catalog tests - publicly accessible"""
    query = db.query(LabTest)
    if category:
        query = query.filter(LabTest.category == category)
    if not include_inactive:
        query = query.filter(LabTest.is_active == True)
    tests = query.order_by(LabTest.name).all()
    return LabTestListResponse(tests=[LabTestResponse.from_orm(t) for t in tests], total=len(tests))

@router.get("/tests/{test_id}", response_model=LabTestResponse)
@limiter.limit("60/minute")
async def get_test(request: Request, test_id: int, db: Session = Depends(get_db)):
    test = db.query(LabTest).filter(LabTest.id == test_id).first()
    if not test:
        raise HTTPException(status_code=404, detail="Test not found")
    return test

@router.post("/tests", response_model=LabTestResponse, status_code=201)
@limiter.limit("20/minute")
async def create_test(
    request: Request,
    test_data: LabTestCreate,
    current_user: Identity = Depends(staff_required),
    db: Session = Depends(get_db)
):
    """Add a test to the catalog (staff only)"""
    try:
        test = LabTest(**test_data.dict())
        db.add(test)
        db.commit()
        db.refresh(test)

        logger.info(f"Created catalog test {test.id} '{test.name}'")
        return test

    except Exception as e:
        db.rollback()
        logger.error(f"Failed to create catalog test: {e}")
        raise HTTPException(status_code=500, detail="Failed to create test")

@router.put("/tests/{test_id}", response_model=LabTestResponse)
@limiter.limit("20/minute")
async def update_test(
    request: Request,
    test_id: int,
    test_update: LabTestUpdate,
    current_user: Identity = Depends(staff_required),
    db: Session = Depends(get_db)
):
    """Edit a catalog test; placed orders keep their own copy of name, lab and price"""
    try:
        test = db.query(LabTest).filter(LabTest.id == test_id).first()
        if not test:
            raise HTTPException(status_code=404, detail="Test not found")

        update_data = test_update.dict(exclude_unset=True)
        for field, value in update_data.items():
            setattr(test, field, value)

        db.commit()
        db.refresh(test)

        logger.info(f"Updated catalog test {test_id}")
        return test

    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to update catalog test {test_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update test")
