"""Row endpoints, including bulk and CSV import."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from trackerhub.api import deps
from trackerhub.core.config import AppSettings
from trackerhub.models.tracker import BulkImportRequest, CsvImportRequest, ImportResult, RowPage, RowRead, RowWrite
from trackerhub.services import bulk_import, rows, trackers

router = APIRouter()


@router.get("/trackers/{tracker_id}/rows", response_model=RowPage, summary="Page through tracker rows.")
async def list_rows(
    tracker_id: str,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> RowPage:
    tracker = await trackers.get_owned_tracker(db_session, tracker_id, user_id)
    page, total = await rows.list_rows(db_session, tracker.id, offset=offset, limit=limit)
    return RowPage(
        rows=[RowRead.model_validate(row) for row in page],
        total=total,
        offset=offset,
        limit=limit,
    )


@router.post(
    "/trackers/{tracker_id}/rows",
    response_model=RowRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add a row.",
)
async def add_row(
    tracker_id: str,
    payload: RowWrite,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> RowRead:
    tracker = await trackers.get_owned_tracker(db_session, tracker_id, user_id)
    row = await rows.add_row(db_session, tracker, user_id, payload.data)
    return RowRead.model_validate(row)


@router.patch("/trackers/{tracker_id}/rows/{row_id}", response_model=RowRead, summary="Merge values into a row.")
async def update_row(
    tracker_id: str,
    row_id: str,
    payload: RowWrite,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> RowRead:
    tracker = await trackers.get_owned_tracker(db_session, tracker_id, user_id)
    row = await rows.update_row(db_session, tracker, user_id, row_id, payload.data)
    return RowRead.model_validate(row)


@router.delete(
    "/trackers/{tracker_id}/rows/{row_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete a row.",
)
async def delete_row(
    tracker_id: str,
    row_id: str,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> Response:
    tracker = await trackers.get_owned_tracker(db_session, tracker_id, user_id)
    await rows.delete_row(db_session, tracker, row_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/trackers/{tracker_id}/import", response_model=ImportResult, summary="Import a batch of rows.")
async def import_rows(
    tracker_id: str,
    payload: BulkImportRequest,
    user_id: str = Depends(deps.get_current_user),
    settings: AppSettings = Depends(deps.get_app_settings),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> ImportResult:
    tracker = await trackers.get_tracker(db_session, tracker_id)
    return await bulk_import.bulk_import(
        db_session,
        tracker,
        user_id,
        payload.rows,
        mode=payload.mode,
        settings=settings,
    )


@router.post("/trackers/{tracker_id}/import/csv", response_model=ImportResult, summary="Import rows from CSV text.")
async def import_csv(
    tracker_id: str,
    payload: CsvImportRequest,
    user_id: str = Depends(deps.get_current_user),
    settings: AppSettings = Depends(deps.get_app_settings),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> ImportResult:
    tracker = await trackers.get_tracker(db_session, tracker_id)
    return await bulk_import.import_csv(
        db_session,
        tracker,
        user_id,
        payload.csv_content,
        mode=payload.mode,
        settings=settings,
    )
