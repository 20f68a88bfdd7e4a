"""
Authentication Schemas

Request/response models for login, signup, tenant switching and the
current-session view.
"""
from pydantic import BaseModel, EmailStr, Field
from typing import List, Optional
from datetime import datetime

from tenantcore.models.membership import MembershipRole


class LoginRequest(BaseModel):
    """Login request body."""
    # Not validated; malformed credentials fail with the same 401 as wrong ones
    email: str
    password: str


class SignupRequest(BaseModel):
    """Self-service signup: creates the user and their first workspace."""
    email: EmailStr
    password: str = Field(..., min_length=9, max_length=128)
    name: str = Field(..., min_length=1, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    company_name: str = Field(..., min_length=1, max_length=255)

    class Config:
        json_schema_extra = {
            "example": {
                "email": "owner@example.com",
                "password": "securepassword123",
                "name": "Jane Doe",
                "company_name": "Acme Corp"
            }
        }


class SwitchTenantRequest(BaseModel):
    tenant_id: str = Field(..., alias="tenantId", min_length=1)

    class Config:
        populate_by_name = True


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=9, max_length=128)


class ProfileUpdate(BaseModel):
    """All fields optional."""
    name: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    timezone: Optional[str] = Field(None, max_length=64)


class TenantMembershipResponse(BaseModel):
    tenant_id: str
    name: str
    status: str
    role: MembershipRole


class UserResponse(BaseModel):
    """User response schema (excludes the password hash)."""
    id: str
    email: str
    name: Optional[str]
    phone: Optional[str]
    timezone: Optional[str]
    is_platform_admin: bool
    is_active: bool
    created_at: datetime
    last_login_at: Optional[datetime]

    class Config:
        from_attributes = True


class SessionResponse(BaseModel):
    user: UserResponse
    tenants: List[TenantMembershipResponse]
    active_tenant_id: Optional[str]
    active_tenant_role: Optional[MembershipRole] = None
    must_select_tenant: bool


class LoginResponse(SessionResponse):
    access_token: str
    token_type: str = "bearer"


class SwitchTenantResponse(BaseModel):
    tenants: List[TenantMembershipResponse]
    active_tenant_id: str
