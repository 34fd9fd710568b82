"""
원격/로컬 메일 조정 (Reconciliation)

원격 메시지마다 추가/업데이트/변경없음을 판정해 저장소에 반영합니다.
메시지별 오류는 개별적으로 집계되며 배치 처리를 중단시키지 않습니다.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..domain.entities import (
    REMOTE_OVERWRITE_FIELDS,
    ConflictResolution,
    ConflictType,
    EmailAccount,
    EmailMessage,
    FetchBatch,
    StoredEmail,
)
from ..domain.exceptions import PerMessageProcessingError
from ..domain.ports import EmailProviderPort, EmailRepositoryPort, LoggerPort
from .conflict_resolution import (
    ConflictDetector,
    ConflictResolver,
    modified_fields,
    snapshot_fields,
    tracked_values,
)


class ReconcileAction(str, Enum):
    """메시지별 처리 결과"""
    ADDED = "added"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    CONFLICT_PENDING = "conflict_pending"
    CONFLICT_KEPT_LOCAL = "conflict_kept_local"
    CONFLICT_APPLIED = "conflict_applied"


class ReconcileCounters(BaseModel):
    """조정 결과 집계 (added + updated + unchanged + errors == processed)"""

    processed: int = 0
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    conflicts: int = 0
    errors: int = 0
    failed_message_ids: List[str] = Field(default_factory=list)

    def record(self, action: ReconcileAction) -> None:
        if action == ReconcileAction.ADDED:
            self.added += 1
        elif action in (ReconcileAction.UPDATED, ReconcileAction.CONFLICT_APPLIED):
            self.updated += 1
        else:
            self.unchanged += 1

        if action in (
            ReconcileAction.CONFLICT_PENDING,
            ReconcileAction.CONFLICT_KEPT_LOCAL,
            ReconcileAction.CONFLICT_APPLIED,
        ):
            self.conflicts += 1

    def record_error(self, message_id: str) -> None:
        self.errors += 1
        self.failed_message_ids.append(message_id)


def has_changes(existing: StoredEmail, remote: EmailMessage) -> bool:
    """제목, 읽음, 별표, 라벨 집합만 비교 (본문은 재조회 시 달라질 수 있어 제외)"""
    return (
        existing.subject != remote.subject
        or existing.is_read != remote.is_read
        or existing.is_starred != remote.is_starred
        or set(existing.labels) != set(remote.labels)
    )


def remote_update_fields(message: EmailMessage) -> Dict[str, Any]:
    """원격 메시지로 로컬 메일을 덮어쓸 필드"""
    values = tracked_values(message)
    fields = {field: values[field] for field in REMOTE_OVERWRITE_FIELDS}
    fields.update(snapshot_fields(values))
    fields["is_deleted"] = False
    return fields


class Reconciler:
    """원격 메시지 배치를 로컬 저장소와 조정"""

    def __init__(
        self,
        email_repository: EmailRepositoryPort,
        conflict_resolver: ConflictResolver,
        logger: LoggerPort,
        detector: Optional[ConflictDetector] = None,
    ):
        self.email_repository = email_repository
        self.conflict_resolver = conflict_resolver
        self.logger = logger
        self.detector = detector or ConflictDetector()

    async def reconcile(
        self,
        account: EmailAccount,
        batch: FetchBatch,
        resolution: Optional[ConflictResolution] = None,
        detect_conflicts: bool = True,
        adapter: Optional[EmailProviderPort] = None,
    ) -> ReconcileCounters:
        """
        조회된 배치를 로컬 저장소에 반영합니다.

        Args:
            account: 메일 계정
            batch: 원격 조회 결과 (조회 실패한 메시지 ID 포함)
            resolution: 충돌 발생 시 자동 적용할 정책 (None이면 보류)
            detect_conflicts: 충돌 감지 여부
            adapter: 로컬 우선 해결 시 상태를 반영할 어댑터

        Returns:
            조정 결과 집계
        """
        counters = ReconcileCounters()

        for message_id in batch.failed_message_ids:
            counters.processed += 1
            counters.record_error(message_id)

        for message in batch.messages:
            counters.processed += 1
            try:
                action = await self.reconcile_message(
                    account, message, resolution, detect_conflicts, adapter
                )
            except Exception as e:
                error = PerMessageProcessingError(message.id, str(e))
                self.logger.error(str(error))
                counters.record_error(message.id)
                continue
            counters.record(action)

        self.logger.info(
            f"조정 완료: {account.id}, 처리 {counters.processed}, 추가 {counters.added}, "
            f"업데이트 {counters.updated}, 변경없음 {counters.unchanged}, 오류 {counters.errors}"
        )
        return counters

    async def reconcile_message(
        self,
        account: EmailAccount,
        message: EmailMessage,
        resolution: Optional[ConflictResolution] = None,
        detect_conflicts: bool = True,
        adapter: Optional[EmailProviderPort] = None,
    ) -> ReconcileAction:
        """단일 메시지를 추가/업데이트/변경없음으로 판정하고 반영합니다."""
        existing = await self.email_repository.find_by_external_id(account.id, message.id)

        if existing is None:
            await self.email_repository.create_from_message(account.id, message)
            return ReconcileAction.ADDED

        if existing.is_deleted:
            await self.email_repository.update_fields(existing.id, remote_update_fields(message))
            return ReconcileAction.UPDATED

        if not has_changes(existing, message):
            return ReconcileAction.UNCHANGED

        if detect_conflicts:
            detected = self.detector.detect(existing, message)
            if detected is not None:
                conflict_type, fields = detected
                conflict = await self.conflict_resolver.record(
                    account, existing, message, conflict_type, fields
                )
                if resolution is None:
                    return ReconcileAction.CONFLICT_PENDING

                await self.conflict_resolver.apply(conflict, resolution, account, adapter)
                if resolution == ConflictResolution.LOCAL:
                    return ReconcileAction.CONFLICT_KEPT_LOCAL
                return ReconcileAction.CONFLICT_APPLIED

        await self.email_repository.update_fields(existing.id, remote_update_fields(message))
        return ReconcileAction.UPDATED

    async def reconcile_existing(
        self,
        account: EmailAccount,
        message: EmailMessage,
    ) -> Optional[ReconcileAction]:
        """로컬에 있는 메일만 갱신합니다. 없으면 None."""
        existing = await self.email_repository.find_by_external_id(account.id, message.id)
        if existing is None:
            return None
        return await self.reconcile_message(account, message)

    async def reconcile_deletions(
        self,
        account: EmailAccount,
        batch: FetchBatch,
        counters: ReconcileCounters,
        resolution: Optional[ConflictResolution] = None,
        detect_conflicts: bool = True,
        adapter: Optional[EmailProviderPort] = None,
    ) -> int:
        """
        전체 동기화에서 원격 목록에 없는 로컬 메일을 삭제 표시합니다.

        원격 목록을 끝까지 조회한 경우에만 수행하며, 조회 범위 라벨이 없는
        로컬 메일은 건드리지 않습니다. 로컬에서 변경된 메일은 삭제 충돌로 기록합니다.
        """
        if not batch.complete:
            self.logger.debug(f"원격 목록이 완전하지 않아 삭제 감지 생략: {account.id}")
            return 0

        remote_ids = {message.id for message in batch.messages}
        remote_ids.update(batch.failed_message_ids)
        scope = (batch.scope_label or "").lower()

        to_delete = []
        for email in await self.email_repository.list_by_account(account.id):
            if email.external_id in remote_ids:
                continue
            if scope and not any(label.lower() == scope for label in email.labels):
                continue

            changed = modified_fields(email) if detect_conflicts else []
            if not changed:
                to_delete.append(email.id)
                continue

            conflict = await self.conflict_resolver.record(
                account, email, None, ConflictType.DELETE, changed
            )
            counters.conflicts += 1
            if resolution is not None:
                await self.conflict_resolver.apply(conflict, resolution, account, adapter)
                if resolution == ConflictResolution.REMOTE:
                    counters.deleted += 1

        if to_delete:
            counters.deleted += await self.email_repository.mark_deleted(to_delete)

        if counters.deleted:
            self.logger.info(f"원격에서 삭제된 메일 {counters.deleted}개 표시: {account.id}")
        return counters.deleted

    async def apply_deleted(self, account: EmailAccount, external_id: str) -> int:
        """제공자 메시지 ID로 로컬 메일을 삭제합니다."""
        return await self.email_repository.delete_by_external_id(account.id, external_id)
