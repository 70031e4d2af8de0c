from typing import Optional

from pydantic import BaseModel, ConfigDict

from ChatBackend.schemas.common import CamelModel


# Presence/format checks live in AuthService so missing fields get the same messages as bad ones
class SignupRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    email: Optional[str] = None
    password: Optional[str] = None


# Public profile; the password hash never leaves the service
class UserOut(CamelModel):
    id: int
    name: str
    email: str
    initials: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
