"""
User Profile Model.

Pydantic model for the profile returned by ``GET /auth/me`` plus the
fixed placeholder identity installed while guest mode is active.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class UserProfile(BaseModel):
    """Represents the signed-in customer account.

    Only ``username``, ``email`` and ``usercode`` are guaranteed; the
    remaining fields are commercial terms the backend may omit.
    """

    id: Optional[int] = None
    usercode: str = ""
    username: str
    email: str = ""
    phone: Optional[str] = None
    email2: Optional[str] = None
    manager: Optional[str] = None
    discount: Optional[float] = None
    active: Optional[bool] = None
    action: Optional[bool] = None
    discount2: Optional[float] = None
    action2: Optional[bool] = None
    created_at: Optional[str] = None

    model_config = {"from_attributes": True, "extra": "ignore", "frozen": True}


GUEST_PROFILE: UserProfile = UserProfile(username="New User", email="", usercode="")
"""Placeholder identity forced on every identity setter in guest mode."""
