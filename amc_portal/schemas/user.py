from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Literal, Optional
from datetime import datetime
import re

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]+$")
PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]+$")


def _validate_username(v: str) -> str:
    v = v.strip()
    if not 3 <= len(v) <= 50:
        raise ValueError('Username must be between 3 and 50 characters')
    if not USERNAME_PATTERN.match(v):
        raise ValueError('Username can only contain letters, numbers, dots, hyphens, and underscores')
    return v


class UserBase(BaseModel):
    username: str
    email: Optional[EmailStr] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    department: Optional[str] = None


class UserCreate(UserBase):
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    department: Optional[str] = Field(default=None, min_length=1, max_length=50)
    password: str
    role: Literal["admin", "user"] = "user"

    @field_validator('username')
    @classmethod
    def validate_username(cls, v):
        return _validate_username(v)

    @field_validator('password')
    @classmethod
    def validate_password(cls, v):
        if len(v) < 8:
            raise ValueError('Password must be at least 8 characters long')
        if not PASSWORD_PATTERN.match(v):
            raise ValueError(
                'Password must contain at least one uppercase letter, one lowercase letter, '
                'one number, and one special character'
            )
        return v

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v):
        if v and not re.match(r'^\+?\d{7,15}$', v):
            raise ValueError('Please provide a valid phone number')
        return v

    @field_validator('full_name', 'department', mode='before')
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class UserLogin(BaseModel):
    username: str
    password: str

    @field_validator('username')
    @classmethod
    def validate_username(cls, v):
        v = v.strip()
        if not 3 <= len(v) <= 254:
            raise ValueError('Username must be between 3 and 254 characters')
        return v

    @field_validator('password')
    @classmethod
    def validate_password(cls, v):
        if len(v) < 6:
            raise ValueError('Password must be at least 6 characters long')
        return v


class UserResponse(UserBase):
    id: int
    email: Optional[str] = None
    role: str
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator('role', mode='before')
    @classmethod
    def role_value(cls, v):
        return getattr(v, 'value', v)

    class Config:
        from_attributes = True


class UserStatusUpdate(BaseModel):
    is_active: bool
