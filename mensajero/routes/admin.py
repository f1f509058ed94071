from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from mensajero.queue import replay_dlq

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/archive/replay")
async def archive_replay(limit: int = Query(default=100, ge=1, le=1000)) -> JSONResponse:
    """
    Replay dead-lettered archive messages (Redis or SQS DLQ) to the main archive queue.
    Returns number of messages replayed.
    """
    replayed = await replay_dlq(limit=limit)
    return JSONResponse(
        status_code=200,
        content={"status": "ok", "replayed": replayed},
    )
