# threatlens/routes/analyze.py
import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from ..errors import InvalidInputError

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_INPUT_LENGTH = 4096


# Request/Response models
class AnalyzeRequest(BaseModel):
    input: str = Field(..., max_length=MAX_INPUT_LENGTH)


class AnalyzeResponse(BaseModel):
    domain: Optional[str] = None
    level: str  # "safe" | "low" | "medium" | "high" | "unknown"
    confidence: float
    score: float
    reasons: List[str]
    signals: List[Dict[str, Any]]
    findings: List[Dict[str, Any]]
    timestamp: str
    processing_time_ms: int


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze_input(request: AnalyzeRequest, req: Request):
    """
    Score a URL, a bare domain, or a free-text message (with or without a link).
    """
    start_time = time.time()
    engine = req.app.state.engine

    logger.info(f"Processing analyze request ({len(request.input)} chars)")

    try:
        verdict = await engine.analyze_async(request.input)
    except InvalidInputError as e:
        logger.info(f"Rejected input: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    processing_time = int((time.time() - start_time) * 1000)

    return AnalyzeResponse(**verdict.to_dict(), processing_time_ms=processing_time)


@router.get("/signals/status")
async def signal_status(req: Request):
    """Which signal collectors are enabled, plus cache statistics"""
    return req.app.state.engine.status()
