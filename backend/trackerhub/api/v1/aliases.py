"""Row alias management endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from trackerhub.api import deps
from trackerhub.models.tracker import AliasCreate, AliasRead, BulkAliasRequest, BulkAliasResult
from trackerhub.services import aliases, trackers

router = APIRouter()


@router.get(
    "/trackers/{tracker_id}/aliases",
    response_model=dict[str, list[AliasRead]],
    summary="List a tracker's aliases grouped by row id.",
)
async def list_tracker_aliases(
    tracker_id: str,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> dict[str, list[AliasRead]]:
    grouped = await aliases.list_tracker_aliases(db_session, tracker_id, user_id)
    return {row_id: [AliasRead.model_validate(alias) for alias in items] for row_id, items in grouped.items()}


@router.post(
    "/trackers/{tracker_id}/aliases",
    response_model=AliasRead,
    status_code=status.HTTP_201_CREATED,
    summary="Register an alias for a row.",
)
async def add_alias(
    tracker_id: str,
    payload: AliasCreate,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> AliasRead:
    alias = await aliases.add_alias(db_session, tracker_id, user_id, payload.row_id, payload.alias)
    return AliasRead.model_validate(alias)


@router.post(
    "/trackers/{tracker_id}/aliases/bulk",
    response_model=BulkAliasResult,
    summary="Register many aliases, reporting each failure.",
)
async def bulk_add_aliases(
    tracker_id: str,
    payload: BulkAliasRequest,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> BulkAliasResult:
    return await aliases.bulk_add_aliases(db_session, tracker_id, user_id, payload.aliases)


@router.get(
    "/trackers/{tracker_id}/rows/{row_id}/aliases",
    response_model=list[AliasRead],
    summary="List the aliases of one row.",
)
async def list_row_aliases(
    tracker_id: str,
    row_id: str,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> list[AliasRead]:
    await trackers.get_owned_tracker(db_session, tracker_id, user_id)
    results = await aliases.list_row_aliases(db_session, tracker_id, row_id)
    return [AliasRead.model_validate(alias) for alias in results]


@router.delete(
    "/aliases/{alias_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Remove an alias.",
)
async def remove_alias(
    alias_id: int,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> Response:
    await aliases.remove_alias(db_session, alias_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
