"""
FastAPI 충돌 관리 라우터

동기화 충돌 조회, 단건/일괄 해결, 무시 처리를 제공합니다.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.entities import BulkResolutionResult, ConflictResolution, ConflictType, SyncConflict
from core.domain.exceptions import ConflictNotFound, SyncEngineError
from adapters.db.database import get_db_session
from adapters.factory import get_adapter_factory
from adapters.logger import create_logger

router = APIRouter(prefix="/conflicts", tags=["conflicts"])
logger = create_logger("conflict_router")


class ResolveRequest(BaseModel):
    """충돌 해결 요청"""

    resolution: ConflictResolution


class BulkResolveRequest(BaseModel):
    """일괄 충돌 해결 요청"""

    conflict_ids: List[UUID] = Field(..., min_length=1)
    resolution: ConflictResolution


@router.get("", response_model=List[SyncConflict])
async def list_conflicts(
    account_id: Optional[UUID] = Query(None, description="계정 ID"),
    conflict_type: Optional[ConflictType] = Query(None, description="충돌 종류"),
    include_closed: bool = Query(False, description="해결/무시된 충돌 포함"),
    limit: int = Query(100, ge=1, le=500),
    session: AsyncSession = Depends(get_db_session),
):
    """충돌 목록을 조회합니다."""
    usecase = get_adapter_factory().create_conflict_resolution_usecase(session)
    return await usecase.list_conflicts(
        account_id=account_id,
        conflict_type=conflict_type,
        include_closed=include_closed,
        limit=limit,
    )


@router.post("/resolve", response_model=BulkResolutionResult)
async def resolve_conflicts(
    request: BulkResolveRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """여러 충돌을 각각 독립적으로 해결합니다."""
    usecase = get_adapter_factory().create_conflict_resolution_usecase(session)
    result = await usecase.resolve_conflicts(request.conflict_ids, request.resolution)
    logger.info(f"일괄 충돌 해결 요청 처리: 성공 {result.resolved}, 실패 {result.failed}")
    return result


@router.post("/{conflict_id}/resolve", response_model=SyncConflict)
async def resolve_conflict(
    conflict_id: UUID,
    request: ResolveRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """단일 충돌을 해결합니다."""
    usecase = get_adapter_factory().create_conflict_resolution_usecase(session)
    try:
        return await usecase.resolve_conflict(conflict_id, request.resolution)
    except ConflictNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SyncEngineError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.delete("/{conflict_id}", response_model=SyncConflict)
async def dismiss_conflict(
    conflict_id: UUID,
    session: AsyncSession = Depends(get_db_session),
):
    """충돌을 무시 처리합니다. 무시된 충돌도 조회할 수 있습니다."""
    usecase = get_adapter_factory().create_conflict_resolution_usecase(session)
    try:
        return await usecase.dismiss_conflict(conflict_id)
    except ConflictNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
