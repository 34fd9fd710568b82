"""
충돌 감지 및 해결 유즈케이스

로컬과 원격이 마지막 동기화 이후 각자 변경된 경우에만 충돌로 판단합니다.
해결 정책:
- local: 원격 값은 무시하고 로컬 상태를 제공자에 반영 시도
- remote: 로컬 메일을 원격 값으로 덮어씀
- merge: 문자열/불리언은 원격 값 우선(없으면 로컬), 라벨은 합집합
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from ..domain.entities import (
    CONFLICT_TRACKED_FIELDS,
    REMOTE_OVERWRITE_FIELDS,
    BulkResolutionResult,
    ConflictResolution,
    ConflictStatus,
    ConflictType,
    EmailAccount,
    EmailMessage,
    StoredEmail,
    SyncConflict,
)
from ..domain.exceptions import ConflictNotFound, SyncEngineError, UnsupportedProvider
from ..domain.ports import (
    AccountRepositoryPort,
    EmailProviderPort,
    EmailRepositoryPort,
    LoggerPort,
    SyncConflictRepositoryPort,
)
from .adapter_selection import AdapterSelector

STRING_FIELDS = ("subject", "body_text", "body_html")
BOOLEAN_FIELDS = ("is_read", "is_starred")


def tracked_values(source: Any) -> Dict[str, Any]:
    """메일/메시지에서 원격 반영 대상 필드 값을 추출"""
    values = {field: getattr(source, field) for field in REMOTE_OVERWRITE_FIELDS}
    values["labels"] = list(values["labels"] or [])
    return values


def snapshot_fields(values: Dict[str, Any]) -> Dict[str, Any]:
    """동기화 스냅샷으로 저장할 필드"""
    return {
        "synced_is_read": bool(values.get("is_read")),
        "synced_is_starred": bool(values.get("is_starred")),
        "synced_labels": list(values.get("labels") or []),
    }


def merge_labels(local: Iterable[str], remote: Iterable[str]) -> List[str]:
    """라벨 합집합 (먼저 나온 순서 유지)"""
    merged: List[str] = []
    for label in list(local) + list(remote):
        if label not in merged:
            merged.append(label)
    return merged


def merge_values(local: Dict[str, Any], remote: Dict[str, Any]) -> Dict[str, Any]:
    """필드 단위 병합: 원격 값이 있으면 원격, 없으면 로컬. 라벨은 합집합."""
    merged: Dict[str, Any] = {}
    for field in STRING_FIELDS:
        merged[field] = remote.get(field) or local.get(field) or ""
    for field in BOOLEAN_FIELDS:
        remote_value = remote.get(field)
        merged[field] = bool(remote_value) if remote_value is not None else bool(local.get(field))
    merged["labels"] = merge_labels(local.get("labels") or [], remote.get("labels") or [])
    return merged


def modified_fields(email: StoredEmail) -> List[str]:
    """스냅샷 대비 로컬에서 변경된 필드"""
    if not email.has_snapshot():
        return []
    snapshot = email.snapshot()
    changed = []
    for field in CONFLICT_TRACKED_FIELDS:
        if field == "labels":
            if set(email.labels) != set(snapshot["labels"] or []):
                changed.append(field)
        elif getattr(email, field) != snapshot[field]:
            changed.append(field)
    return changed


class ConflictDetector:
    """스냅샷 기반 양방향 변경 충돌 감지기"""

    def detect(self, existing: StoredEmail, remote: EmailMessage) -> Optional[Tuple[ConflictType, List[str]]]:
        if not existing.has_snapshot():
            return None

        snapshot = existing.snapshot()
        fields = []
        for field in CONFLICT_TRACKED_FIELDS:
            base = snapshot[field]
            local_value = getattr(existing, field)
            remote_value = getattr(remote, field)
            if field == "labels":
                base, local_value, remote_value = set(base or []), set(local_value), set(remote_value)

            local_changed = local_value != base
            remote_changed = remote_value != base
            if local_changed and remote_changed and local_value != remote_value:
                fields.append(field)

        if not fields:
            return None
        conflict_type = ConflictType.MOVE if fields == ["labels"] else ConflictType.UPDATE
        return conflict_type, fields


class ConflictResolver:
    """충돌 기록 및 해결 정책 적용"""

    def __init__(
        self,
        email_repository: EmailRepositoryPort,
        conflict_repository: SyncConflictRepositoryPort,
        logger: LoggerPort,
    ):
        self.email_repository = email_repository
        self.conflict_repository = conflict_repository
        self.logger = logger

    async def record(
        self,
        account: EmailAccount,
        existing: StoredEmail,
        remote: Optional[EmailMessage],
        conflict_type: ConflictType,
        fields: List[str],
    ) -> SyncConflict:
        """충돌을 저장합니다. 같은 메일에 미해결 충돌이 있으면 원격 값만 갱신합니다."""
        local_email = existing.model_dump(mode="json")
        remote_email = remote.model_dump(mode="json") if remote is not None else {}

        pending = await self.conflict_repository.find_pending_by_email(existing.id)
        if pending is not None:
            pending.conflict_type = conflict_type
            pending.local_email = local_email
            pending.remote_email = remote_email
            pending.conflict_fields = fields
            pending.detected_at = datetime.utcnow()
            return await self.conflict_repository.update(pending)

        conflict = SyncConflict(
            account_id=account.id,
            email_id=existing.id,
            external_id=existing.external_id,
            conflict_type=conflict_type,
            local_email=local_email,
            remote_email=remote_email,
            conflict_fields=fields,
        )
        self.logger.info(
            f"충돌 감지: {existing.external_id}, 종류={conflict_type.value}, 필드={fields}"
        )
        return await self.conflict_repository.create(conflict)

    async def apply(
        self,
        conflict: SyncConflict,
        resolution: ConflictResolution,
        account: Optional[EmailAccount] = None,
        adapter: Optional[EmailProviderPort] = None,
    ) -> SyncConflict:
        """
        해결 정책을 적용하고 충돌을 resolved로 표시합니다.

        Args:
            conflict: 대상 충돌
            resolution: 해결 정책
            account: 로컬 상태를 반영할 계정
            adapter: 로컬 상태를 반영할 제공자 어댑터 (없으면 반영 생략)

        Returns:
            갱신된 충돌
        """
        local = await self.email_repository.get_by_id(conflict.email_id)
        if local is None:
            raise SyncEngineError(f"충돌 대상 메일을 찾을 수 없습니다: {conflict.email_id}")

        local_values = tracked_values(local)
        remote_values = conflict.remote_email

        if conflict.conflict_type == ConflictType.DELETE:
            # 원격에서 삭제된 메일: remote만 삭제를 따르고 나머지는 로컬 유지
            if resolution == ConflictResolution.REMOTE:
                await self.email_repository.mark_deleted([local.id])
            else:
                await self.email_repository.update_fields(local.id, snapshot_fields(local_values))

        elif resolution == ConflictResolution.REMOTE:
            fields = {
                field: remote_values[field]
                for field in REMOTE_OVERWRITE_FIELDS
                if field in remote_values
            }
            fields.update(snapshot_fields({**local_values, **fields}))
            await self.email_repository.update_fields(local.id, fields)

        elif resolution == ConflictResolution.LOCAL:
            await self._push_local_state(account, adapter, local.external_id, local_values)
            await self.email_repository.update_fields(local.id, snapshot_fields(local_values))

        else:
            merged = merge_values(local_values, remote_values)
            await self._push_local_state(account, adapter, local.external_id, merged)
            fields = dict(merged)
            fields.update(snapshot_fields(merged))
            await self.email_repository.update_fields(local.id, fields)

        conflict.status = ConflictStatus.RESOLVED
        conflict.resolution = resolution
        conflict.resolved_at = datetime.utcnow()
        self.logger.info(f"충돌 해결: {conflict.id}, 정책={resolution.value}")
        return await self.conflict_repository.update(conflict)

    async def _push_local_state(
        self,
        account: Optional[EmailAccount],
        adapter: Optional[EmailProviderPort],
        external_id: str,
        values: Dict[str, Any],
    ) -> None:
        if account is None or adapter is None:
            return
        fields = {field: values[field] for field in CONFLICT_TRACKED_FIELDS}
        try:
            await adapter.push_changes(account, external_id, fields)
        except Exception as e:
            # 반영 실패 시 다음 동기화에서 다시 비교됨
            self.logger.warning(f"로컬 상태 반영 실패: {external_id}, 오류: {str(e)}")


class ConflictResolutionUseCase:
    """충돌 조회/해결/무시 유즈케이스"""

    def __init__(
        self,
        conflict_repository: SyncConflictRepositoryPort,
        account_repository: AccountRepositoryPort,
        resolver: ConflictResolver,
        adapter_selector: AdapterSelector,
        logger: LoggerPort,
    ):
        self.conflict_repository = conflict_repository
        self.account_repository = account_repository
        self.resolver = resolver
        self.adapter_selector = adapter_selector
        self.logger = logger

    async def list_conflicts(
        self,
        account_id: Optional[UUID] = None,
        conflict_type: Optional[ConflictType] = None,
        include_closed: bool = False,
        limit: int = 100,
    ) -> List[SyncConflict]:
        """충돌 목록을 조회합니다. 기본값은 미해결 충돌만 반환합니다."""
        status = None if include_closed else ConflictStatus.PENDING
        return await self.conflict_repository.list_conflicts(
            account_id=account_id,
            conflict_type=conflict_type,
            status=status,
            limit=limit,
        )

    async def resolve_conflict(self, conflict_id: UUID, resolution: ConflictResolution) -> SyncConflict:
        """
        단일 충돌을 해결합니다.

        Raises:
            ConflictNotFound: 충돌이 없는 경우
            SyncEngineError: 이미 처리된 충돌인 경우
        """
        conflict = await self.conflict_repository.get_by_id(conflict_id)
        if conflict is None:
            raise ConflictNotFound(conflict_id)
        if not conflict.is_pending():
            raise SyncEngineError(f"이미 처리된 충돌입니다: {conflict_id} ({conflict.status.value})")

        account = await self.account_repository.get_by_id(conflict.account_id)
        adapter = None
        if account is not None and resolution != ConflictResolution.REMOTE:
            try:
                adapter = self.adapter_selector.select(account)
            except UnsupportedProvider as e:
                self.logger.warning(f"로컬 상태를 반영할 어댑터가 없습니다: {account.id}, {str(e)}")

        return await self.resolver.apply(conflict, resolution, account, adapter)

    async def resolve_conflicts(
        self,
        conflict_ids: List[UUID],
        resolution: ConflictResolution,
    ) -> BulkResolutionResult:
        """여러 충돌을 각각 독립적으로 해결합니다. 하나의 실패가 나머지를 막지 않습니다."""
        resolved = 0
        failed = 0
        for conflict_id in conflict_ids:
            try:
                await self.resolve_conflict(conflict_id, resolution)
                resolved += 1
            except Exception as e:
                failed += 1
                self.logger.error(f"충돌 해결 실패: {conflict_id}, 오류: {str(e)}")

        self.logger.info(f"일괄 충돌 해결: 성공 {resolved}, 실패 {failed}, 전체 {len(conflict_ids)}")
        return BulkResolutionResult(
            resolved=resolved,
            failed=failed,
            total=len(conflict_ids),
            resolution=resolution,
        )

    async def dismiss_conflict(self, conflict_id: UUID) -> SyncConflict:
        """해결 정책을 적용하지 않고 충돌을 무시 처리합니다 (조회는 계속 가능)."""
        conflict = await self.conflict_repository.get_by_id(conflict_id)
        if conflict is None:
            raise ConflictNotFound(conflict_id)

        conflict.status = ConflictStatus.DISMISSED
        conflict.resolved_at = datetime.utcnow()
        self.logger.info(f"충돌 무시: {conflict_id}")
        return await self.conflict_repository.update(conflict)
