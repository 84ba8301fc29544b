from pydantic import BaseModel, Field
from typing import Any, Optional

from elibrary.core.enums import MembershipName, RoleName


class SessionCreate(BaseModel):
    """Token previously issued by the library API's auth endpoints."""

    token: str = Field(min_length=1)


class UserProfile(BaseModel):
    """The `/users/me` document; identity, role and membership come from here."""

    id: str = Field(alias="_id")
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    membership_id: Optional[Any] = None

    class Config:
        populate_by_name = True
        extra = "allow"

    @property
    def role_name(self) -> RoleName:
        try:
            return RoleName(self.role) if self.role else RoleName.USER
        except ValueError:
            return RoleName.USER

    @property
    def membership_name(self) -> Optional[str]:
        if isinstance(self.membership_id, dict):
            return self.membership_id.get("name")
        return None


class SessionResponse(BaseModel):
    user_id: Optional[str] = None
    role: Optional[RoleName] = None
    membership: MembershipName = MembershipName.BASIC
    authenticated: bool
    cart_count: int = 0
