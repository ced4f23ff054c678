"""Schemas for block records and the admin block-list endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class BlockRead(BaseModel):
    """Output schema for a block record."""
    id: int
    ip: str
    reason: str
    request_count: int
    active: bool
    created_at: datetime
    updated_at: datetime


class BlockLookup(BaseModel):
    """Cached result of a per-identity lookup; `block` is None when no record exists.

    `generation` is the identity's write generation when the entry was filled.
    """
    block: BlockRead | None = None
    generation: int = 0


class BlockList(BaseModel):
    """All block records with the number currently active."""
    records: list[BlockRead]
    total: int
    active: int


class BlockCreate(BaseModel):
    """Input schema for a manual block."""
    ip: str = Field(min_length=1, max_length=64)
    reason: str | None = Field(default=None, max_length=255)


class BlockUpdate(BaseModel):
    """Input schema for toggling or setting a block's state; omitted `active` toggles."""
    active: bool | None = None
    reason: str | None = Field(default=None, max_length=255)


class BlocksStats(BaseModel):
    total: int
    active: int


class BlocksResponse(BaseModel):
    """Envelope for the block list."""
    status: Literal["success"] = "success"
    data: list[BlockRead]
    stats: BlocksStats


class BlockResponse(BaseModel):
    """Envelope for a single block action."""
    status: Literal["success"] = "success"
    message: str
    data: BlockRead | None = None
