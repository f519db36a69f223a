from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from app.models import User

PASSWORD_MIN_LENGTH = 8


def _normalize_email(value: str) -> str:
    normalized = value.strip().lower()
    if "@" not in normalized or normalized.startswith("@") or normalized.endswith("@"):
        raise ValueError("A valid email address is required")
    return normalized


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company_name: Optional[str] = None
    job_title: Optional[str] = None
    phone: Optional[str] = None
    profile_image_url: Optional[str] = None


class UserCreate(ProfileUpdate):
    email: str
    password: str = Field(min_length=PASSWORD_MIN_LENGTH)
    role_ids: list[str] = Field(default_factory=list)

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _normalize_email(value)


class UserUpdate(ProfileUpdate):
    email: Optional[str] = None
    status: Optional[str] = None
    role_ids: Optional[list[str]] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_email(value) if value is not None else None

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in {"active", "inactive"}:
            raise ValueError("status must be 'active' or 'inactive'")
        return value


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH)


class AdminPasswordReset(BaseModel):
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH)


def serialize_user(user: User, permissions: set[str] | None = None) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "company_name": user.company_name,
        "job_title": user.job_title,
        "phone": user.phone,
        "profile_image_url": user.profile_image_url,
        "is_email_verified": bool(user.is_email_verified),
        "status": user.status,
        "last_login_at": user.last_login_at.isoformat() if user.last_login_at else None,
        "created_at": user.created_at.isoformat() if user.created_at else None,
        "roles": sorted(
            ({"id": ur.role.id, "name": ur.role.name} for ur in user.user_roles),
            key=lambda r: r["name"],
        ),
    }
    if permissions is not None:
        data["permissions"] = sorted(permissions)
    return data
