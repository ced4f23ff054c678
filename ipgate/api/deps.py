"""
FastAPI dependency providers.

Wires infrastructure held on `app.state` (session factory, block store) into
routers via `Depends`:
- Database session (SQLAlchemy AsyncSession)
- Block store
- JWT-based current admin extraction
- Repositories and services

Guidelines:
- Dependency functions should be lightweight and composable.
- Keep HTTP concerns (status codes/messages) in routers, except for the auth guard.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from ipgate.core.security import decode_admin_token, security
from ipgate.repositories.admins import AdminsRepository
from ipgate.schemas.auth import AdminRead
from ipgate.services.auth import AuthService
from ipgate.services.blocks import BlockStore


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session from the application's session factory."""
    async with request.app.state.session_factory() as session:
        yield session


def get_block_store(request: Request) -> BlockStore:
    """Return the block store shared with the gate middleware."""
    store: BlockStore = request.app.state.block_store
    return store


SessionDep = Annotated[AsyncSession, Depends(get_session)]


def get_admins_repo(session: SessionDep) -> AdminsRepository:
    return AdminsRepository(session=session)


def get_auth_service(
    admins_repo: Annotated[AdminsRepository, Depends(get_admins_repo)],
) -> AuthService:
    return AuthService(admins_repo=admins_repo)


AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]


async def get_current_admin(
    token: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    auth: AuthServiceDep,
) -> AdminRead:
    """
    Resolve the admin behind the Authorization header (JWT bearer token).

    Raises:
        HTTPException: 401 if the token is missing, invalid, or names an unknown admin.
    """
    if token is None:
        raise HTTPException(status_code=401, detail="Not authorized. No token provided.")
    try:
        email = decode_admin_token(token.credentials)
        return await auth.get_admin(email)
    except (ValueError, PermissionError) as err:
        raise HTTPException(status_code=401, detail="Not authorized. Invalid token.") from err


# ---- Public dependency aliases (use these in routers) ----

BlockStoreDep = Annotated[BlockStore, Depends(get_block_store)]
AdminDep = Annotated[AdminRead, Depends(get_current_admin)]
