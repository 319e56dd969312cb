"""
Authentication and authorization handler
Verifies bearer tokens and turns them into caller identities
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, FrozenSet
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from jose import JWTError, jwt

from app.config import SECRET_KEY, ACCESS_TOKEN_EXPIRE_MINUTES

ALGORITHM = "HS256"

CUSTOMER = "customer"
LABTECH = "labtech"
ADMIN = "admin"
SUPERADMIN = "superadmin"

STAFF_ROLES = frozenset({LABTECH, ADMIN, SUPERADMIN})
ALL_ROLES = frozenset({CUSTOMER}) | STAFF_ROLES

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=4)
security = HTTPBearer()


@dataclass(frozen=True)
class Identity:
    """A verified caller: who they are and which tier they belong to"""
    id: str
    email: Optional[str]
    role: str
    username: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def email_key(self) -> Optional[str]:
        return self.email.strip().lower() if self.email else None

    def identity_keys(self) -> FrozenSet[str]:
        """Tagged keys this caller may be recorded under on historical orders"""
        keys = {f"id:{self.id}"}
        if self.email_key:
            keys.add(f"email:{self.email_key}")
        return frozenset(keys)


class AuthHandler:
    """Handles authentication and authorization"""

    def __init__(self):
        self.pwd_context = pwd_context

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """Verify a password against its hash"""
        return self.pwd_context.verify(plain_password, hashed_password)

    def get_password_hash(self, password: str) -> str:
        """Hash a password"""
        return self.pwd_context.hash(password)

    def create_access_token(self, data: dict, expires_delta: Optional[timedelta] = None):
        """Create a JWT access token"""
        to_encode = data.copy()
        if expires_delta:
            expire = datetime.utcnow() + expires_delta
        else:
            expire = datetime.utcnow() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

        to_encode.update({"exp": expire})
        encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
        return encoded_jwt

    def create_identity_token(self, identity: Identity, expires_delta: Optional[timedelta] = None) -> str:
        """Create a token carrying everything get_current_user needs"""
        return self.create_access_token(
            {
                "sub": identity.id,
                "username": identity.username,
                "role": identity.role,
                "email": identity.email,
            },
            expires_delta=expires_delta,
        )

    def verify_token(self, token: str) -> dict:
        """Verify and decode a JWT token"""
        try:
            payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
            return payload
        except JWTError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Could not validate credentials",
                headers={"WWW-Authenticate": "Bearer"},
            )

auth_handler = AuthHandler()

def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Identity:
    """Dependency to get current authenticated user"""
    token = credentials.credentials
    payload = auth_handler.verify_token(token)

    user_id = payload.get("sub")
    role = payload.get("role", CUSTOMER)
    if user_id is None or role not in ALL_ROLES:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return Identity(
        id=str(user_id),
        email=payload.get("email"),
        role=role,
        username=payload.get("username"),
    )

# Role-based access control
class RoleChecker:
    """Check user roles for authorization"""

    def __init__(self, allowed_roles):
        self.allowed_roles = set(allowed_roles)

    def __call__(self, user: Identity = Depends(get_current_user)) -> Identity:
        if user.role not in self.allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Operation not permitted"
            )
        return user

# Common role checkers
admin_required = RoleChecker([ADMIN, SUPERADMIN])
staff_required = RoleChecker(STAFF_ROLES)
customer_required = RoleChecker([CUSTOMER])
user_required = RoleChecker(ALL_ROLES)
