"""Routes for post processing."""

import logging

from fastapi import APIRouter

from postbake.dependencies import OneboxRendererDep, SessionDep, SettingsDep, SizeProberDep
from postbake.models.content import ProcessRequest, ProcessResult
from postbake.services.processor import process

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/posts", tags=["posts"])


@router.post("/process", response_model=ProcessResult)
async def process_post(
    body: ProcessRequest,
    session: SessionDep,
    settings: SettingsDep,
    prober: SizeProberDep,
    onebox_renderer: OneboxRendererDep,
) -> ProcessResult:
    """
    Post-process a cooked post.

    Returns the processed HTML and whether it differs from the input.
    Persisting the result is left to the caller.
    """
    result = await process(
        body.post,
        body.options,
        session=session,
        settings=settings,
        prober=prober,
        onebox_renderer=onebox_renderer,
    )
    logger.info("Processed post %d (dirty=%s)", body.post.id, result.dirty)
    return result
