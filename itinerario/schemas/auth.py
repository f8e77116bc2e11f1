from pydantic import BaseModel, EmailStr
from typing import Optional, List


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class MeProfile(BaseModel):
    name: str
    avatar_url: Optional[str] = None
    sector_id: Optional[str] = None


class MeResponse(BaseModel):
    id: str
    email: EmailStr
    profile: Optional[MeProfile] = None
    roles: List[str] = []
    is_admin: bool = False
    is_task_applier: bool = False
    can_manage_tasks: bool = False
