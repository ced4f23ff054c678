"""
Admins repository.

Keeps admin account queries out of API handlers and services. Free of HTTP
concerns and of password hashing (done in `ipgate.core.security`).
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ipgate.db.models import Admin


class AdminsRepository:
    """
    Data access layer for Admin entities.

    Args:
        session: SQLAlchemy async session scoped to the current request/unit-of-work.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_email(self, email: str) -> Admin | None:
        """Fetch an admin by email, or None if not found."""
        stmt = select(Admin).where(Admin.email == email)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def create(self, email: str, password_hash: str) -> Admin:
        """
        Create a new admin.

        Notes:
            - Expects an already-hashed password.
            - Commits within the method (simple unit-of-work model).
        """
        admin = Admin(email=email, password_hash=password_hash)
        self._session.add(admin)
        await self._session.commit()
        await self._session.refresh(admin)
        return admin
