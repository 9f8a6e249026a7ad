"""
Generation endpoint: adapts HTTP requests to the generation pipeline.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from pipeline.types import PipelineRequest, PipelineResponse

router = APIRouter()
logger = logging.getLogger(__name__)

DISCONNECT_POLL_SECONDS = 0.5
CLIENT_CLOSED_REQUEST = 499


async def _run_until_disconnect(request: Request, pipeline, pipeline_request: PipelineRequest) -> Optional[PipelineResponse]:
    """Run the pipeline, cancelling it if the caller goes away mid-generation."""
    task = asyncio.create_task(pipeline(pipeline_request))
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info("Client disconnected; cancelling generation for %s", request.url.path)
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                return None
    except asyncio.CancelledError:
        task.cancel()
        raise


@router.post("/generate")
async def generate(request: Request):
    """Generate one response for a prompt using the caller's calibration."""
    try:
        body = await request.json()
    except ValueError:
        body = None

    pipeline_request = PipelineRequest(
        method=request.method,
        path=request.url.path,
        headers=dict(request.headers),
        body=body,
    )
    result = await _run_until_disconnect(request, request.app.state.generation_pipeline, pipeline_request)
    if result is None:
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    return JSONResponse(status_code=result.status, content=result.to_dict())
