"""Admin block-list endpoints under /api/visitors/blocked."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from ipgate.api.deps import AdminDep, BlockStoreDep
from ipgate.core.errors import BlockNotFoundError, StoreUnavailableError
from ipgate.schemas.blocks import (
    BlockCreate,
    BlockResponse,
    BlocksResponse,
    BlocksStats,
    BlockUpdate,
)
from ipgate.services.identity import normalize_ip

router = APIRouter(prefix="/api/visitors/blocked", tags=["blocks"])

STORE_DOWN = "Block store unavailable"


@router.get("", response_model=BlocksResponse)
async def list_blocks(store: BlockStoreDep, admin: AdminDep) -> BlocksResponse:
    """List every block record, newest first."""
    try:
        blocks = await store.list(newest_first=True)
    except StoreUnavailableError as err:
        raise HTTPException(status_code=503, detail=STORE_DOWN) from err
    return BlocksResponse(
        data=blocks.records,
        stats=BlocksStats(total=blocks.total, active=blocks.active),
    )


@router.post("", response_model=BlockResponse)
async def block_ip(payload: BlockCreate, store: BlockStoreDep, admin: AdminDep) -> BlockResponse:
    """Manually block an identity, reactivating an existing record if there is one."""
    try:
        block = await store.set_active(normalize_ip(payload.ip), True, payload.reason)
    except StoreUnavailableError as err:
        raise HTTPException(status_code=503, detail=STORE_DOWN) from err
    return BlockResponse(message="IP blocked", data=block)


@router.patch("/{block_id}", response_model=BlockResponse)
async def update_block(
    block_id: int, store: BlockStoreDep, admin: AdminDep, payload: BlockUpdate | None = None
) -> BlockResponse:
    """Toggle a record (or set it, when `active` is given)."""
    payload = payload or BlockUpdate()
    try:
        block = await store.toggle(block_id, active=payload.active, reason=payload.reason)
    except BlockNotFoundError as err:
        raise HTTPException(status_code=404, detail="Not found") from err
    except StoreUnavailableError as err:
        raise HTTPException(status_code=503, detail=STORE_DOWN) from err
    return BlockResponse(message="IP blocked" if block.active else "IP unblocked", data=block)


@router.delete("/{block_id}", response_model=BlockResponse)
async def delete_block(block_id: int, store: BlockStoreDep, admin: AdminDep) -> BlockResponse:
    """Hard-delete a record."""
    try:
        removed = await store.remove_by_id(block_id)
    except BlockNotFoundError as err:
        raise HTTPException(status_code=404, detail="Not found") from err
    except StoreUnavailableError as err:
        raise HTTPException(status_code=503, detail=STORE_DOWN) from err
    return BlockResponse(message="Block removed", data=removed)
