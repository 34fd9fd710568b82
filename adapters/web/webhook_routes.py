"""
FastAPI 웹훅 라우터

제공자 푸시 알림을 받아 WebhookIngestor로 전달합니다.
서명이 잘못된 경우를 제외하면 항상 200과 처리 결과를 반환합니다.
"""

import json
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.entities import EmailProvider, WebhookResult
from core.usecases.webhook_ingestion import verify_signature
from adapters.db.database import get_db_session
from adapters.factory import get_adapter_factory
from adapters.logger import create_logger

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = create_logger("webhook_router")

SIGNATURE_HEADER = "x-nylas-signature"


def _decode_body(body: bytes) -> Any:
    """JSON 디코딩 실패 시 None (수신 처리기가 잘못된 페이로드로 처리)"""
    try:
        return json.loads(body)
    except ValueError:
        return None


@router.get("/unified", response_class=PlainTextResponse)
async def verify_unified_webhook(challenge: str = Query(..., description="구독 확인 값")):
    """웹훅 등록 시 제공자가 보내는 확인 요청에 challenge 값을 그대로 응답합니다."""
    return PlainTextResponse(content=challenge)


@router.post("/unified", response_model=WebhookResult)
async def receive_unified_webhook(
    request: Request,
    signature: Optional[str] = Header(None, alias=SIGNATURE_HEADER),
    session: AsyncSession = Depends(get_db_session),
):
    """통합 제공자 웹훅 수신"""
    body = await request.body()
    factory = get_adapter_factory()
    config = factory.get_config()

    if config.get_environment() != "development":
        secret = config.get_unified_webhook_secret()
        if not secret:
            logger.error("웹훅 시크릿이 설정되지 않았습니다")
            raise HTTPException(status_code=500, detail="웹훅 시크릿이 설정되지 않았습니다")
        if not verify_signature(body, signature, secret):
            logger.warning("웹훅 서명 검증 실패")
            raise HTTPException(status_code=401, detail="잘못된 웹훅 서명입니다")

    ingestor = factory.create_webhook_ingestor(session)
    return await ingestor.process_notification(EmailProvider.UNIFIED, _decode_body(body))


@router.post("/gmail", response_model=WebhookResult)
async def receive_gmail_webhook(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
):
    """Gmail Pub/Sub 푸시 수신"""
    body = await request.body()
    ingestor = get_adapter_factory().create_webhook_ingestor(session)
    return await ingestor.process_notification(EmailProvider.GMAIL, _decode_body(body))
