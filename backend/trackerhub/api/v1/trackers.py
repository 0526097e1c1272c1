"""Tracker schema endpoints and CSV export."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from trackerhub.api import deps
from trackerhub.models.tracker import TrackerCreate, TrackerRead, TrackerUpdate
from trackerhub.services import export, rows, trackers

router = APIRouter()


@router.post(
    "/trackers",
    response_model=TrackerRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a tracker with its column schema.",
)
async def create_tracker(
    payload: TrackerCreate,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> TrackerRead:
    tracker = await trackers.create_tracker(db_session, user_id, payload)
    return trackers.to_schema(tracker)


@router.get("/trackers", response_model=list[TrackerRead], summary="List the caller's trackers.")
async def list_trackers(
    active_only: bool = Query(default=False),
    folder_id: str | None = Query(default=None),
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> list[TrackerRead]:
    results = await trackers.list_trackers(db_session, user_id, active_only=active_only, folder_id=folder_id)
    return [trackers.to_schema(tracker) for tracker in results]


@router.get("/trackers/by-slug/{slug}", response_model=TrackerRead, summary="Fetch a tracker by slug.")
async def get_tracker_by_slug(
    slug: str,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> TrackerRead:
    tracker = await trackers.get_tracker_by_slug(db_session, slug)
    await trackers.get_owned_tracker(db_session, tracker.id, user_id)
    return trackers.to_schema(tracker)


@router.get("/trackers/{tracker_id}", response_model=TrackerRead, summary="Fetch a tracker.")
async def get_tracker(
    tracker_id: str,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> TrackerRead:
    tracker = await trackers.get_owned_tracker(db_session, tracker_id, user_id)
    return trackers.to_schema(tracker)


@router.patch("/trackers/{tracker_id}", response_model=TrackerRead, summary="Update tracker settings or schema.")
async def update_tracker(
    tracker_id: str,
    payload: TrackerUpdate,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> TrackerRead:
    tracker = await trackers.update_tracker(db_session, tracker_id, user_id, payload)
    return trackers.to_schema(tracker)


@router.patch(
    "/trackers/{tracker_id}/columns/{column_id}/ai",
    response_model=TrackerRead,
    summary="Toggle whether a column is exposed to extraction.",
)
async def set_column_ai_enabled(
    tracker_id: str,
    column_id: str,
    enabled: bool = Query(...),
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> TrackerRead:
    tracker = await trackers.set_column_ai_enabled(db_session, tracker_id, user_id, column_id, enabled)
    return trackers.to_schema(tracker)


@router.delete(
    "/trackers/{tracker_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete a tracker with its rows and aliases.",
)
async def delete_tracker(
    tracker_id: str,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> Response:
    await trackers.delete_tracker(db_session, tracker_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/trackers/{tracker_id}/export.csv", response_class=Response, summary="Download rows as CSV.")
async def export_tracker(
    tracker_id: str,
    user_id: str = Depends(deps.get_current_user),
    db_session: AsyncSession = Depends(deps.get_db_session),
) -> Response:
    tracker = await trackers.get_owned_tracker(db_session, tracker_id, user_id)
    schema = trackers.to_schema(tracker)
    tracker_rows, _ = await rows.list_rows(db_session, tracker.id, limit=None)

    return Response(
        content=export.export_tracker_csv(schema, tracker_rows),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export.export_filename(schema.slug)}"'},
    )
