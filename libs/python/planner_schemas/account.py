"""Account-related DTOs shared across Church Planner services."""

from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel, EmailStr


class AccountPublic(BaseModel):
    """Sanitized account projection; never carries the password hash or lockout counters."""

    account_id: str
    email: EmailStr
    name: str | None = None
    role: str
    tenant_id: str | None = None
    created_at: datetime
