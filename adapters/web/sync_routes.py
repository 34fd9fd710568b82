"""
FastAPI 동기화 라우터

계정 동기화, 동기화 이력, 실시간 동기화(푸시 구독), 발송과 첨부파일 다운로드를 제공합니다.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.entities import (
    ConflictResolution,
    EmailDraft,
    EmailProvider,
    PushSubscription,
    SendResult,
    SyncLog,
    SyncOptions,
    SyncResult,
)
from core.domain.exceptions import (
    AccountInactive,
    AccountNotFound,
    AuthFailed,
    ProviderError,
    QuotaExceeded,
    RateLimited,
    RealTimeSyncError,
    UnsupportedProvider,
)
from adapters.db.database import get_db_session
from adapters.factory import get_adapter_factory
from adapters.logger import create_logger

router = APIRouter(prefix="/sync", tags=["sync"])
logger = create_logger("sync_router")


class SyncRequest(BaseModel):
    """동기화 요청 본문 (모든 값 선택)"""

    full_sync: Optional[bool] = None
    max_emails: Optional[int] = Field(None, ge=1)
    folder_scope: Optional[str] = None
    preferred_adapter: Optional[EmailProvider] = None
    conflict_resolution: Optional[ConflictResolution] = None
    detect_conflicts: bool = True


def to_http_exception(error: Exception) -> HTTPException:
    """도메인 예외를 HTTP 오류로 변환합니다."""
    if isinstance(error, AccountNotFound):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, AccountInactive):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, UnsupportedProvider):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, (RateLimited, QuotaExceeded)):
        return HTTPException(status_code=429, detail=str(error))
    if isinstance(error, (AuthFailed, ProviderError, RealTimeSyncError)):
        return HTTPException(status_code=502, detail=str(error))
    return HTTPException(status_code=500, detail=f"처리 중 오류가 발생했습니다: {str(error)}")


@router.post("/{account_id}", response_model=SyncResult)
async def sync_account(
    account_id: UUID,
    request: Optional[SyncRequest] = None,
    session: AsyncSession = Depends(get_db_session),
):
    """계정을 동기화합니다. 같은 계정의 진행 중인 동기화가 있으면 그 결과를 반환합니다."""
    logger.info(f"동기화 요청: {account_id}")
    usecase = get_adapter_factory().create_email_sync_usecase(session)
    options = SyncOptions(**request.model_dump()) if request else None

    try:
        return await usecase.sync_account(account_id, options)
    except Exception as e:
        raise to_http_exception(e)


@router.get("/{account_id}/logs", response_model=List[SyncLog])
async def list_sync_logs(
    account_id: UUID,
    limit: int = Query(20, ge=1, le=200, description="조회할 로그 수"),
    session: AsyncSession = Depends(get_db_session),
):
    """동기화 이력을 최신순으로 조회합니다."""
    usecase = get_adapter_factory().create_email_sync_usecase(session)
    try:
        return await usecase.list_sync_logs(account_id, limit=limit)
    except Exception as e:
        raise to_http_exception(e)


@router.post("/{account_id}/realtime", response_model=PushSubscription)
async def start_real_time_sync(
    account_id: UUID,
    session: AsyncSession = Depends(get_db_session),
):
    """푸시 구독을 생성합니다."""
    usecase = get_adapter_factory().create_email_sync_usecase(session)
    try:
        return await usecase.start_real_time_sync(account_id)
    except Exception as e:
        raise to_http_exception(e)


@router.delete("/{account_id}/realtime")
async def stop_real_time_sync(
    account_id: UUID,
    session: AsyncSession = Depends(get_db_session),
):
    """푸시 구독을 해제합니다."""
    usecase = get_adapter_factory().create_email_sync_usecase(session)
    try:
        await usecase.stop_real_time_sync(account_id)
    except Exception as e:
        raise to_http_exception(e)
    return {"account_id": str(account_id), "status": "stopped"}


@router.post("/{account_id}/send", response_model=SendResult)
async def send_email(
    account_id: UUID,
    draft: EmailDraft,
    session: AsyncSession = Depends(get_db_session),
):
    """계정으로 메일을 발송합니다."""
    usecase = get_adapter_factory().create_email_sync_usecase(session)
    try:
        return await usecase.send_email(account_id, draft)
    except Exception as e:
        raise to_http_exception(e)


@router.get("/{account_id}/messages/{message_id}/attachments/{attachment_id}")
async def download_attachment(
    account_id: UUID,
    message_id: str,
    attachment_id: str,
    session: AsyncSession = Depends(get_db_session),
):
    """첨부파일 내용을 제공자에서 내려받습니다."""
    usecase = get_adapter_factory().create_email_sync_usecase(session)
    try:
        content = await usecase.download_attachment(account_id, message_id, attachment_id)
    except Exception as e:
        raise to_http_exception(e)
    return Response(content=content, media_type="application/octet-stream")
