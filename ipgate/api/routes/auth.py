"""Admin authentication endpoints: /api/auth/login and /api/auth/verify."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from ipgate.api.deps import AdminDep, AuthServiceDep
from ipgate.schemas.auth import AdminLogin, AdminRead, Token

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=Token)
async def login(payload: AdminLogin, auth: AuthServiceDep) -> Token:
    """Login endpoint that returns an admin JWT."""
    try:
        return await auth.login(payload)
    except PermissionError as err:
        raise HTTPException(status_code=401, detail="Invalid credentials. Access denied.") from err


@router.get("/verify", response_model=AdminRead)
async def verify(admin: AdminDep) -> AdminRead:
    """Return the admin behind a valid token."""
    return admin
