"""AI assistant endpoints used by the web chat page."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool

from ..config import settings
from ..dependencies import get_ai_gateway
from ..schemas import AiReplyResponse, ChatRequest, CropRecommendationRequest
from ..services.gemini import ConversationTurn, GeminiGateway, Role, TextPart

router = APIRouter(prefix="/ai", tags=["ai"])
logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024  # 1MB


@router.post("/chat", response_model=AiReplyResponse)
def chat(
    payload: ChatRequest,
    gateway: GeminiGateway = Depends(get_ai_gateway),
):
    """Multi-turn chat; the system instruction is added server-side."""
    history = [
        ConversationTurn(role=Role(turn.role), parts=(TextPart(turn.text),))
        for turn in payload.messages
    ]
    return AiReplyResponse(reply=gateway.chat(history, payload.language))


@router.post("/crop-recommendation", response_model=AiReplyResponse)
def crop_recommendation(
    payload: CropRecommendationRequest,
    gateway: GeminiGateway = Depends(get_ai_gateway),
):
    """Prose crop advice for a soil/location/season combination."""
    reply = gateway.recommend_crops(payload.soil_type, payload.location, payload.season, payload.language)
    return AiReplyResponse(reply=reply)


@router.post("/analyze-image", response_model=AiReplyResponse)
async def analyze_image(
    image: UploadFile = File(...),
    question: str = Form("What is wrong with this crop?"),
    gateway: GeminiGateway = Depends(get_ai_gateway),
):
    """Crop disease / pest analysis of an uploaded photo."""
    mime_type = (image.content_type or "").lower()
    if mime_type not in settings.allowed_image_types_list:
        raise HTTPException(
            status_code=400,
            detail=f"Image type not allowed. Allowed: {settings.ALLOWED_IMAGE_TYPES}",
        )

    data = bytearray()
    while chunk := await image.read(_CHUNK_SIZE):
        data.extend(chunk)
        if len(data) > settings.MAX_IMAGE_SIZE:
            raise HTTPException(status_code=413, detail="Image too large")
    if not data:
        raise HTTPException(status_code=400, detail="Empty image")

    logger.info(f"🖼️ Analyzing {len(data)} byte {mime_type} image")
    reply = await run_in_threadpool(gateway.analyze_image, bytes(data), question, mime_type=mime_type)
    return AiReplyResponse(reply=reply)

