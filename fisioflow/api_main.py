from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, Field

from .auth_models import User, UserRole
from .auth_security import create_access_token, get_subject
from .auth_service import authenticate, count_users, create_user, get_user_by_id
from .cache import cache
from .config import configure_logging
from .db import init_db
from .deps import get_current_user
from .errors import NotFoundError, ValidationError
from .routers import billing, crm, gamification, insurance, notifications, patients, reports, scheduling, telemedicine
from .seed import seed_admin, seed_base

logger = logging.getLogger(__name__)

app = FastAPI(title="FisioFlow API", version="1.0.0")


# Startup

@app.on_event("startup")
def startup() -> None:
    # tables (users included), reference data and admin account; all idempotent
    configure_logging()
    init_db()
    seed_base()
    seed_admin()


# Error mapping

@app.exception_handler(NotFoundError)
def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    logger.info("rejected %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


# Auth schemas

class RegisterIn(BaseModel):
    username: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)
    full_name: str | None = None
    role: UserRole = UserRole.RECEPTIONIST


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MeOut(BaseModel):
    id: str
    username: str
    full_name: str | None
    role: UserRole
    is_active: bool


def _optional_token(request: Request) -> str | None:
    auth = request.headers.get("Authorization", "")
    scheme, _, token = auth.partition(" ")
    return token if scheme.lower() == "bearer" and token else None


# AUTH endpoints

@app.post("/api/auth/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterIn, request: Request) -> dict[str, Any]:
    """
    Open only while there are no users (the first account becomes admin);
    afterwards an admin token is required.
    """
    if count_users() == 0:
        role = UserRole.ADMIN
    else:
        token = _optional_token(request)
        user_id = get_subject(token) if token else None
        u = get_user_by_id(user_id) if user_id else None
        if not u or not u.is_active:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
        if u.role != UserRole.ADMIN:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only admins can register users")
        role = payload.role

    user_id = create_user(payload.username, payload.password, role=role, full_name=payload.full_name)
    return {"ok": True, "user_id": user_id, "role": role.value}


@app.post("/api/auth/login", response_model=TokenOut)
def login(form: OAuth2PasswordRequestForm = Depends()) -> TokenOut:
    u = authenticate(form.username, form.password)
    if not u:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    token = create_access_token(subject=u.id, extra={"username": u.username, "role": u.role.value})
    return TokenOut(access_token=token)


@app.get("/api/me", response_model=MeOut)
def me(user: User = Depends(get_current_user)) -> MeOut:
    return MeOut(id=user.id, username=user.username, full_name=user.full_name, role=user.role, is_active=user.is_active)


# PUBLIC endpoints (no JWT)

@app.get("/api/health")
def health() -> dict[str, Any]:
    return {"ok": True, "cache": "redis" if cache.enabled else "disabled"}


for r in (patients, scheduling, billing, crm, gamification, telemedicine, insurance, reports, notifications):
    app.include_router(r.router)
