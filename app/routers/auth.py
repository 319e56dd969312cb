"""
Authentication endpoints for signup, login and staff account management
"""

from fastapi import APIRouter, Depends, HTTPException, status, Request, Query
from sqlalchemy.orm import Session
from slowapi import Limiter
from slowapi.util import get_remote_address
from datetime import timedelta
import logging

from app.config import RATE_LIMIT_ENABLED, ACCESS_TOKEN_EXPIRE_MINUTES
from app.database import get_db
from app.schemas.user import UserCreate, StaffCreate, StaffUpdate, UserLogin, UserResponse, TokenResponse
from app.services.user_service import UserService
from app.auth.auth_handler import AuthHandler, Identity, SUPERADMIN, get_current_user, admin_required
from app.services.activity_logger import ActivityLogger
from app.utils.error_handler import Forbidden, WorkflowError

logger = logging.getLogger(__name__)
limiter = Limiter(key_func=get_remote_address, enabled=RATE_LIMIT_ENABLED)

router = APIRouter()

@router.post("/signup", response_model=UserResponse, status_code=201)
@limiter.limit("5/minute")  # Strict limit to prevent spam registrations
async def signup(
    request: Request,
    user_data: UserCreate,
    db: Session = Depends(get_db)
):
    """Register a new customer account"""
    try:
        user_service = UserService(db)
        new_user = await user_service.create_user(user_data)

        activity_logger = ActivityLogger(db)
        await activity_logger.log_request(request, 201, user_id=str(new_user.id), action="signup")

        logger.info(f"New customer registered: {new_user.username}")
        return new_user

    except (HTTPException, WorkflowError):
        raise
    except Exception as e:
        logger.error(f"Signup failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create user account"
        )

@router.post("/login", response_model=TokenResponse)
@limiter.limit("10/minute")  # Prevent brute force attacks
async def login(
    request: Request,
    login_data: UserLogin,
    db: Session = Depends(get_db)
):
    """Authenticate user and return access token"""
    try:
        user_service = UserService(db)
        auth_handler = AuthHandler()
        activity_logger = ActivityLogger(db)

        user = await user_service.authenticate_user(login_data)

        if not user:
            await activity_logger.log_request(
                request, 401, action="login_failed",
                error_message=f"Failed login attempt for: {login_data.username_or_email}"
            )
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid username/email or password"
            )

        identity = Identity(id=str(user.id), email=user.email, role=user.role, username=user.username)
        access_token = auth_handler.create_identity_token(
            identity,
            expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
        )

        await activity_logger.log_request(request, 200, user_id=identity.id, action="login")

        return TokenResponse(
            access_token=access_token,
            token_type="bearer",
            expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            user=UserResponse.from_orm(user)
        )

    except (HTTPException, WorkflowError):
        raise
    except Exception as e:
        logger.error(f"Login failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Login failed"
        )

@router.get("/me", response_model=UserResponse)
@limiter.limit("30/minute")
async def get_current_user_info(
    request: Request,
    current_user: Identity = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get current user information"""
    user_service = UserService(db)
    user = await user_service.get_user_by_id(int(current_user.id))

    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    return UserResponse.from_orm(user)

@router.post("/logout")
@limiter.limit("30/minute")
async def logout(
    request: Request,
    current_user: Identity = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Logout user (client should discard token)"""
    activity_logger = ActivityLogger(db)
    await activity_logger.log_request(request, 200, user_id=current_user.id, action="logout")

    logger.info(f"User logged out: {current_user.username}")
    return {"message": "Successfully logged out"}

# Admin endpoints
@router.post("/staff", response_model=UserResponse, status_code=201)
@limiter.limit("10/minute")
async def create_staff(
    request: Request,
    staff_data: StaffCreate,
    current_user: Identity = Depends(admin_required),
    db: Session = Depends(get_db)
):
    """Create a lab staff account (Admin only)"""
    if staff_data.role == SUPERADMIN and current_user.role != SUPERADMIN:
        raise Forbidden("Only a super admin can manage super admin accounts")
    try:
        user_service = UserService(db)
        new_user = await user_service.create_user(staff_data, role=staff_data.role)

        activity_logger = ActivityLogger(db)
        await activity_logger.log_request(
            request, 201, user_id=current_user.id, action="create_staff",
            details={"staff_id": new_user.id, "role": new_user.role}
        )

        logger.info(f"Admin {current_user.username} created {new_user.role} account {new_user.username}")
        return new_user

    except (HTTPException, WorkflowError):
        raise
    except Exception as e:
        logger.error(f"Failed to create staff account: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create staff account"
        )

@router.get("/staff")
@limiter.limit("20/minute")
async def list_staff(
    request: Request,
    current_user: Identity = Depends(admin_required),
    db: Session = Depends(get_db)
):
    """All lab staff accounts, newest first (Admin only)"""
    accounts = await UserService(db).list_staff()
    return {"count": len(accounts), "staff": [UserResponse.from_orm(a) for a in accounts]}

@router.put("/staff/{staff_id}", response_model=UserResponse)
@limiter.limit("10/minute")
async def update_staff(
    request: Request,
    staff_id: int,
    update: StaffUpdate,
    current_user: Identity = Depends(admin_required),
    db: Session = Depends(get_db)
):
    """Change a staff account's name, phone, role, active flag or password (Admin only)"""
    account = await UserService(db).update_staff(staff_id, update, current_user)

    await ActivityLogger(db).log_request(
        request, 200, user_id=current_user.id, action="update_staff",
        details={"staff_id": account.id, "fields": sorted(update.dict(exclude_unset=True))}
    )
    return account

@router.delete("/staff/{staff_id}", response_model=UserResponse)
@limiter.limit("10/minute")
async def deactivate_staff(
    request: Request,
    staff_id: int,
    current_user: Identity = Depends(admin_required),
    db: Session = Depends(get_db)
):
    """Deactivate a staff account; it is kept for the audit trail (Admin only)"""
    account = await UserService(db).deactivate_staff(staff_id, current_user)

    await ActivityLogger(db).log_request(
        request, 200, user_id=current_user.id, action="deactivate_staff",
        details={"staff_id": account.id}
    )
    return account

@router.get("/activity")
@limiter.limit("20/minute")
async def get_activity(
    request: Request,
    limit: int = Query(50, ge=1, le=500),
    user_id: str = Query(None, description="Only activity of this user"),
    current_user: Identity = Depends(admin_required),
    db: Session = Depends(get_db)
):
    """Recent audited activity (Admin only)"""
    activity_logger = ActivityLogger(db)
    entries = activity_logger.get_recent_activities(limit=limit, user_id=user_id)
    return {
        "count": len(entries),
        "activities": [
            {
                "id": entry.id,
                "action": entry.action,
                "endpoint": entry.endpoint,
                "method": entry.method,
                "status_code": entry.status_code,
                "user_id": entry.user_id,
                "error_message": entry.error_message,
                "created_at": entry.created_at,
            }
            for entry in entries
        ],
    }
