"""Update review endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from trackerhub.api import deps
from trackerhub.models.updates import (
    ApprovalResult,
    ApproveWithEditsRequest,
    MarkViewedResult,
    UpdatePage,
    UpdateRead,
    UpdateStats,
    ViewMode,
)
from trackerhub.services import lifecycle

router = APIRouter()


@router.get("/updates", response_model=UpdatePage, summary="Page through updates, newest first.")
async def list_updates(
    view_mode: ViewMode = Query(default="active"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> UpdatePage:
    records, total = await lifecycle.list_updates(
        db_session,
        user_id,
        view_mode=view_mode,
        offset=offset,
        limit=limit,
    )
    return UpdatePage(
        updates=[UpdateRead.model_validate(record) for record in records],
        total=total,
        offset=offset,
        limit=limit,
    )


@router.get("/updates/stats", response_model=UpdateStats, summary="Counts by review state.")
async def get_stats(
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> UpdateStats:
    return await lifecycle.get_stats(db_session, user_id)


@router.post("/updates/viewed", response_model=MarkViewedResult, summary="Mark all active updates as viewed.")
async def mark_all_viewed(
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> MarkViewedResult:
    count = await lifecycle.mark_all_viewed(db_session, user_id)
    return MarkViewedResult(count=count)


@router.get("/updates/{update_id}", response_model=UpdateRead, summary="Fetch one update.")
async def get_update(
    update_id: str,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> UpdateRead:
    record = await lifecycle.get_update(db_session, update_id, user_id)
    return UpdateRead.model_validate(record)


@router.post("/updates/{update_id}/approve", response_model=ApprovalResult, summary="Apply all proposals.")
async def approve(
    update_id: str,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> ApprovalResult:
    return await lifecycle.approve(db_session, update_id, user_id)


@router.post(
    "/updates/{update_id}/approve-with-edits",
    response_model=ApprovalResult,
    summary="Apply reviewer-edited proposals.",
)
async def approve_with_edits(
    update_id: str,
    payload: ApproveWithEditsRequest,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> ApprovalResult:
    return await lifecycle.approve_with_edits(db_session, update_id, user_id, payload.edited_proposals)


@router.post("/updates/{update_id}/reject", response_model=UpdateRead, summary="Reject without touching rows.")
async def reject(
    update_id: str,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> UpdateRead:
    record = await lifecycle.reject(db_session, update_id, user_id)
    return UpdateRead.model_validate(record)


@router.post("/updates/{update_id}/archive", response_model=UpdateRead, summary="Archive an update.")
async def archive(
    update_id: str,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> UpdateRead:
    record = await lifecycle.archive(db_session, update_id, user_id)
    return UpdateRead.model_validate(record)


@router.post("/updates/{update_id}/viewed", response_model=UpdateRead, summary="Mark an update as viewed.")
async def mark_viewed(
    update_id: str,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> UpdateRead:
    record = await lifecycle.mark_viewed(db_session, update_id, user_id)
    return UpdateRead.model_validate(record)
