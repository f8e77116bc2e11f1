import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator


class TaskCreate(BaseModel):
    type: Optional[str] = None
    priority: str = "media"
    sector_id: Optional[uuid.UUID] = None

    client_name: str = ""
    client_phone: Optional[str] = None
    client_address: Optional[str] = None
    client_cep: Optional[str] = None
    client_time_limit: Optional[str] = None
    machine: Optional[str] = None

    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None
    deadline: Optional[datetime] = None
    value: Optional[Decimal] = None
    observations: Optional[str] = None

    assignee_ids: List[uuid.UUID] = Field(default_factory=list)

    @field_validator(
        "client_phone", "client_address", "client_cep", "client_time_limit",
        "machine", "scheduled_time", "observations",
    )
    @classmethod
    def _blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        # Form inputs arrive as "" when left empty
        if v is None:
            return None
        v = v.strip()
        return v or None


class PostponeRequest(BaseModel):
    new_date: Optional[date] = None
    justification: Optional[str] = None


class CancelRequest(BaseModel):
    justification: Optional[str] = None


class StatusChangeRequest(BaseModel):
    status: str
    justification: Optional[str] = None


class AssigneeCompleteRequest(BaseModel):
    completed: bool = True


class AssigneesUpdate(BaseModel):
    user_ids: List[uuid.UUID] = Field(default_factory=list)


class CommentCreate(BaseModel):
    content: str
