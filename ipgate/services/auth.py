"""
Admin authentication service.

Contains the use-cases for:
- admin login and JWT issuance
- seeding the configured admin account
- resolving the admin behind a token subject

This layer must NOT:
- talk HTTP (status codes, FastAPI exceptions)
- execute SQL queries directly (use repositories)
"""

from __future__ import annotations

from ipgate.core.logging import get_logger
from ipgate.core.security import create_admin_token, hash_password, verify_password
from ipgate.repositories.admins import AdminsRepository
from ipgate.schemas.auth import AdminLogin, AdminRead, Token

logger = get_logger(__name__)


class AuthService:
    """
    Admin authentication use-cases.

    Args:
        admins_repo: Repository used for admin persistence and lookups.
    """

    def __init__(self, admins_repo: AdminsRepository) -> None:
        self._admins_repo = admins_repo

    async def login(self, payload: AdminLogin) -> Token:
        """
        Authenticate an admin and issue a JWT access token.

        Raises:
            PermissionError: "bad_credentials" if email/password is invalid.
        """
        admin = await self._admins_repo.get_by_email(payload.email)
        if admin is None or not verify_password(payload.password, admin.password_hash):
            raise PermissionError("bad_credentials")

        return Token(access_token=create_admin_token(subject=admin.email))

    async def get_admin(self, email: str) -> AdminRead:
        """
        Resolve the admin named by a token subject.

        Raises:
            PermissionError: "unknown_admin" if the account no longer exists.
        """
        admin = await self._admins_repo.get_by_email(email)
        if admin is None:
            raise PermissionError("unknown_admin")
        return AdminRead(id=admin.id, email=admin.email)

    async def ensure_admin(self, email: str, password: str) -> bool:
        """
        Create the admin account unless it already exists.

        Returns:
            True if the account was created.
        """
        if await self._admins_repo.get_by_email(email) is not None:
            return False
        await self._admins_repo.create(email=email, password_hash=hash_password(password))
        logger.info("admin_seeded", email=email)
        return True
