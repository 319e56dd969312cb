"""
Pydantic schemas for user operations
"""

from pydantic import BaseModel, Field, validator, EmailStr
from typing import Optional
from datetime import datetime
import re

from app.auth.auth_handler import STAFF_ROLES

def check_full_name(v: str) -> str:
    if not re.match(r"^[a-zA-Z\s'.-]+$", v):
        raise ValueError('Names can only contain letters, spaces, dots, hyphens, and apostrophes')
    return v.strip()

def check_password(v: str) -> str:
    if len(v) < 8:
        raise ValueError('Password must be at least 8 characters long')

    # Check for at least one uppercase, one lowercase, one digit
    if not re.search(r'[A-Z]', v):
        raise ValueError('Password must contain at least one uppercase letter')
    if not re.search(r'[a-z]', v):
        raise ValueError('Password must contain at least one lowercase letter')
    if not re.search(r'\d', v):
        raise ValueError('Password must contain at least one digit')
    if not re.search(r'[!@#$%^&*(),.?":{}|<>]', v):
        raise ValueError('Password must contain at least one special character')

    return v

class UserBase(BaseModel):
    """Base user schema"""
    username: str = Field(..., min_length=3, max_length=50, description="Username (3-50 characters)")
    email: EmailStr = Field(..., description="Valid email address")
    full_name: str = Field(..., min_length=1, max_length=100, description="Full name")
    phone_number: Optional[str] = Field(None, max_length=20, description="Phone number")

    @validator('username')
    def validate_username(cls, v):
        if not re.match(r'^[a-zA-Z0-9_-]+$', v):
            raise ValueError('Username can only contain letters, numbers, underscores, and hyphens')
        return v.lower()

    @validator('phone_number')
    def validate_phone_number(cls, v):
        if v is None:
            return v
        # Remove all non-digit characters for validation
        digits_only = re.sub(r'\D', '', v)
        if len(digits_only) < 10 or len(digits_only) > 15:
            raise ValueError('Phone number must be between 10-15 digits')
        return v

    @validator('full_name')
    def validate_full_name(cls, v):
        return check_full_name(v)

class UserCreate(UserBase):
    """Schema for customer self-registration"""
    password: str = Field(..., min_length=8, max_length=72, description="Password (minimum 8 characters)")
    confirm_password: str = Field(..., description="Password confirmation")

    @validator('password')
    def validate_password(cls, v):
        return check_password(v)

    @validator('confirm_password')
    def passwords_match(cls, v, values, **kwargs):
        if 'password' in values and v != values['password']:
            raise ValueError('Passwords do not match')
        return v

class StaffCreate(UserCreate):
    """Schema for an administrator creating a staff account"""
    role: str = Field("labtech", description="Staff tier")

    @validator('role')
    def validate_role(cls, v):
        if v not in STAFF_ROLES:
            raise ValueError(f'Role must be one of: {", ".join(sorted(STAFF_ROLES))}')
        return v

class StaffUpdate(BaseModel):
    """Fields an administrator may change on a staff account"""
    full_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=20)
    role: Optional[str] = None
    is_active: Optional[bool] = None
    password: Optional[str] = Field(None, min_length=8, max_length=72)

    @validator('full_name')
    def validate_full_name(cls, v):
        return v if v is None else check_full_name(v)

    @validator('role')
    def validate_role(cls, v):
        if v is not None and v not in STAFF_ROLES:
            raise ValueError(f'Role must be one of: {", ".join(sorted(STAFF_ROLES))}')
        return v

    @validator('password')
    def validate_password(cls, v):
        return v if v is None else check_password(v)

class UserLogin(BaseModel):
    """Schema for user login"""
    username_or_email: str = Field(..., description="Username or email address")
    password: str = Field(..., description="Password")

    @validator('username_or_email')
    def validate_username_or_email(cls, v):
        v = v.strip().lower()
        if not v:
            raise ValueError('Username or email is required')
        return v

class UserResponse(UserBase):
    """Schema for user responses (excludes sensitive data)"""
    id: int
    role: str
    is_active: bool
    last_login: Optional[datetime]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True

class TokenResponse(BaseModel):
    """Schema for authentication token response"""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse
