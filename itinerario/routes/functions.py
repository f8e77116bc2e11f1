"""
Privileged user-management functions.

Replies are {"success": true, ...} or {"error": "..."} with the matching status code.
"""
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..auth.security import user_from_token
from ..db import get_db
from ..errors import UserAdminError
from ..models.models import User
from ..schemas.users import CreateUserRequest, DeleteUserRequest
from ..services import user_admin


router = APIRouter(prefix="/functions", tags=["functions"])
logger = structlog.get_logger(__name__)


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _caller(request: Request, db: Session) -> Optional[User]:
    """Resolve the bearer token, if any. An unusable token counts as no caller."""
    header = request.headers.get("Authorization")
    if not header:
        return None
    token = header.replace("Bearer ", "", 1).strip()
    try:
        return user_from_token(db, token)
    except HTTPException:
        return None


async def _json_body(request: Request) -> dict:
    try:
        data = await request.json()
    except ValueError:
        raise UserAdminError("JSON inválido", 400)
    if not isinstance(data, dict):
        raise UserAdminError("JSON inválido", 400)
    return data


@router.post("/create-user")
async def create_user(request: Request, db: Session = Depends(get_db)):
    try:
        caller = _caller(request, db)
        user_admin.authorize_create(db, caller)
        payload = CreateUserRequest.model_validate(await _json_body(request))
        user = user_admin.create_user(
            db,
            caller,
            email=payload.email,
            password=payload.password,
            name=payload.name,
            role=payload.role,
            sector_id=payload.sector_id,
        )
    except UserAdminError as exc:
        return _error(exc.message, exc.status_code)
    except ValidationError as exc:
        return _error(exc.errors()[0].get("msg", "Dados inválidos"), 400)
    except Exception as exc:
        logger.error("create_user_crashed", exc_info=True)
        return _error(str(exc), 500)
    return {"success": True, "user_id": str(user.id)}


@router.post("/delete-user")
async def delete_user(request: Request, db: Session = Depends(get_db)):
    try:
        caller = _caller(request, db)
        user_admin.require_admin(db, caller)
        payload = DeleteUserRequest.model_validate(await _json_body(request))
        user_admin.delete_user(db, caller, payload.user_id)
    except UserAdminError as exc:
        return _error(exc.message, exc.status_code)
    except ValidationError as exc:
        return _error(exc.errors()[0].get("msg", "Dados inválidos"), 400)
    except Exception as exc:
        logger.error("delete_user_crashed", exc_info=True)
        return _error(str(exc), 500)
    return {"success": True}
