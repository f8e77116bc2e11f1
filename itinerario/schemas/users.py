import uuid
from typing import Optional

from pydantic import BaseModel


class CreateUserRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None
    sector_id: Optional[uuid.UUID] = None


class DeleteUserRequest(BaseModel):
    user_id: Optional[str] = None


class UserUpdate(BaseModel):
    name: Optional[str] = None
    role: Optional[str] = None
    sector_id: Optional[uuid.UUID] = None
    clear_sector: bool = False


class SectorCreate(BaseModel):
    name: str
