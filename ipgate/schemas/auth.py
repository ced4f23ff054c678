"""Schemas for admin authentication endpoints."""
from __future__ import annotations

from pydantic import BaseModel, EmailStr, Field


class AdminLogin(BaseModel):
    """Input schema for admin login."""
    email: EmailStr
    password: str = Field(min_length=6)


class Token(BaseModel):
    """Output schema for JWT token response."""
    access_token: str
    token_type: str = "bearer"


class AdminRead(BaseModel):
    """Output schema for admin info."""
    id: int
    email: EmailStr
