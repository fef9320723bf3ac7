from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import List, Optional

from controllers.capture_controller import capture_charts, get_config

router = APIRouter()


class CaptureChartsPayload(BaseModel):
    timeframes: Optional[List[str]] = None


@router.post("/capture-charts")
async def post_capture_charts(request: Request, payload: Optional[CaptureChartsPayload] = None):
    """Capture chart screenshots; omit `timeframes` to capture all of them."""
    timeframes = payload.timeframes if payload is not None else None
    try:
        return await capture_charts(request, timeframes)
    except HTTPException:
        raise
    except Exception as exc:
        return JSONResponse(status_code=500, content={"error": str(exc)})


@router.get("/config")
async def read_config(request: Request):
    """Return the current symbol, timeframes and studies."""
    try:
        return get_config(request)
    except Exception as exc:
        raise HTTPException(status_code=500, detail=str(exc))
