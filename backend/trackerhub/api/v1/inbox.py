"""Inbox processing endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from trackerhub.api import deps
from trackerhub.models.email import PipelineResult, ProcessInboxRequest
from trackerhub.services.pipeline import InboxPipeline

router = APIRouter()


@router.post(
    "/inbox/process",
    response_model=PipelineResult,
    summary="Turn recent unprocessed emails into reviewable updates.",
)
async def process_inbox(
    request: ProcessInboxRequest | None = None,
    user_id: str = Depends(deps.get_current_user),
    inbox_pipeline: InboxPipeline = Depends(deps.get_inbox_pipeline),
) -> PipelineResult:
    email_count = request.email_count if request is not None else None
    return await inbox_pipeline.run(user_id, email_count)
