"""
Account service: customer signup, staff provisioning and credential checks
"""

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import or_
from fastapi import HTTPException, status
from datetime import datetime
from typing import List, Optional
import logging

from app.models.user import User
from app.schemas.user import UserCreate, UserLogin, StaffUpdate
from app.auth.auth_handler import AuthHandler, Identity, CUSTOMER, SUPERADMIN, STAFF_ROLES
from app.utils.error_handler import DatabaseError, Forbidden, InvalidState, NotFound

logger = logging.getLogger(__name__)

class UserService:
    """Customer and staff accounts share one table and differ only by role"""

    def __init__(self, db: Session):
        self.db = db
        self.auth_handler = AuthHandler()

    def _find(self, username_or_email: str) -> Optional[User]:
        key = username_or_email.strip().lower()
        return self.db.query(User).filter(or_(User.username == key, User.email == key)).first()

    def _ensure_unique(self, username: str, email: str):
        clash = self.db.query(User).filter(
            or_(User.username == username, User.email == email)
        ).first()
        if clash is None:
            return
        if clash.username == username:
            raise InvalidState("Username already registered")
        raise InvalidState("Email already registered")

    async def create_user(self, user_data: UserCreate, role: str = CUSTOMER) -> User:
        """Create an account; signup always passes CUSTOMER, admins pass a staff role"""
        username = user_data.username.lower()
        email = user_data.email.lower()
        self._ensure_unique(username, email)

        account = User(
            username=username,
            email=email,
            hashed_password=self.auth_handler.get_password_hash(user_data.password),
            full_name=user_data.full_name,
            role=role,
            phone_number=user_data.phone_number,
            is_active=True,
        )
        try:
            self.db.add(account)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to create {role} account {username}: {e}")
            raise DatabaseError(f"Failed to create user account: {str(e)}", e)

        self.db.refresh(account)
        logger.info(f"Created {role} account: {account.username} ({account.email})")
        return account

    async def authenticate_user(self, login_data: UserLogin) -> Optional[User]:
        """Return the account for valid credentials, None otherwise"""
        account = self._find(login_data.username_or_email)
        if not account:
            logger.warning(f"Login attempt with non-existent user: {login_data.username_or_email}")
            return None

        if not account.is_active:
            logger.warning(f"Login attempt with inactive user: {account.username}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Account is deactivated"
            )

        if not self.auth_handler.verify_password(login_data.password, account.hashed_password):
            logger.warning(f"Failed login attempt for user: {account.username}")
            return None

        try:
            account.last_login = datetime.utcnow()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DatabaseError(f"Authentication failed: {str(e)}", e)

        logger.info(f"Successful login for {account.role} {account.username}")
        return account

    async def get_user_by_id(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    async def list_staff(self) -> List[User]:
        """All staff accounts, newest first, including deactivated ones"""
        return (
            self.db.query(User)
            .filter(User.role.in_(STAFF_ROLES))
            .order_by(User.created_at.desc(), User.id.desc())
            .all()
        )

    def _get_staff(self, staff_id: int) -> User:
        account = self.db.query(User).filter(User.id == staff_id, User.role.in_(STAFF_ROLES)).first()
        if not account:
            raise NotFound("Staff account not found")
        return account

    @staticmethod
    def _check_manageable(account: User, actor: Identity, new_role: Optional[str] = None):
        # Super admin accounts and the super admin role are managed by super admins only
        if actor.role != SUPERADMIN and SUPERADMIN in (account.role, new_role):
            raise Forbidden("Only a super admin can manage super admin accounts")

    async def update_staff(self, staff_id: int, update: StaffUpdate, actor: Identity) -> User:
        account = self._get_staff(staff_id)
        changes = update.dict(exclude_unset=True)
        self._check_manageable(account, actor, changes.get("role"))
        if changes.get("is_active") is False:
            self._check_deactivatable(account, actor)

        password = changes.pop("password", None)
        if password:
            account.hashed_password = self.auth_handler.get_password_hash(password)
        for field, value in changes.items():
            if value is not None:
                setattr(account, field, value)

        self._commit(account, f"update staff account {account.username}")
        logger.info(f"{actor.role} {actor.id} updated staff account {account.username}: {sorted(changes)}")
        return account

    @staticmethod
    def _check_deactivatable(account: User, actor: Identity):
        if str(account.id) == actor.id:
            raise InvalidState("You cannot deactivate your own account")
        if account.role == SUPERADMIN:
            raise InvalidState("Cannot deactivate a super admin")

    async def deactivate_staff(self, staff_id: int, actor: Identity) -> User:
        """Soft delete: the account stays for the audit trail but can no longer log in"""
        account = self._get_staff(staff_id)
        self._check_manageable(account, actor)
        self._check_deactivatable(account, actor)

        account.is_active = False
        self._commit(account, f"deactivate staff account {account.username}")
        logger.info(f"{actor.role} {actor.id} deactivated staff account {account.username}")
        return account

    def _commit(self, account: User, action: str):
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to {action}: {e}")
            raise DatabaseError(f"Failed to {action}: {str(e)}", e)
        self.db.refresh(account)
