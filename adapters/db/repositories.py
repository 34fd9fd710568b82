"""
데이터베이스 Repository 어댑터

Core 레이어의 Repository 포트를 구현하는 SQLAlchemy 기반 어댑터들입니다.
SQLite 호환성을 위해 UUID를 문자열로 변환하여 처리합니다.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import and_, desc, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from core.domain.entities import (
    AccountStatus,
    AccountSyncStatus,
    ConflictResolution,
    ConflictStatus,
    ConflictType,
    EmailAccount,
    EmailMessage,
    EmailProvider,
    StoredEmail,
    SyncConflict,
    SyncLog,
    SyncLogStatus,
    SyncResult,
    SyncType,
)
from core.domain.ports import (
    AccountRepositoryPort,
    EmailRepositoryPort,
    SyncConflictRepositoryPort,
    SyncLogRepositoryPort,
)
from .models import EmailAccountModel, EmailModel, SyncConflictModel, SyncLogModel

# update_fields로 변경 가능한 메일 컬럼
EMAIL_UPDATABLE_FIELDS = {
    "thread_id",
    "from_address",
    "to",
    "cc",
    "bcc",
    "subject",
    "body_text",
    "body_html",
    "snippet",
    "date",
    "labels",
    "is_read",
    "is_starred",
    "attachments",
    "is_deleted",
    "synced_is_read",
    "synced_is_starred",
    "synced_labels",
}


async def _commit(session: AsyncSession) -> None:
    """커밋 실패 시 세션을 롤백해 이후 작업이 계속 가능하도록 합니다."""
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        raise


class AccountRepositoryAdapter(AccountRepositoryPort):
    """메일 계정 Repository 어댑터"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, account: EmailAccount) -> EmailAccount:
        """계정을 생성합니다."""
        model = EmailAccountModel(
            id=str(account.id),  # UUID를 문자열로 변환
            email=account.email,
            provider=account.provider.value,  # Enum을 문자열로 변환
            status=account.status.value,
            sync_status=account.sync_status.value,
            access_token=account.access_token,
            refresh_token=account.refresh_token,
            token_expires_at=account.token_expires_at,
            external_id=account.external_id,
            max_emails=account.max_emails,
            folder_scope=account.folder_scope,
            full_sync=account.full_sync,
            last_sync_at=account.last_sync_at,
            push_subscription_id=account.push_subscription_id,
            history_id=account.history_id,
        )

        self.session.add(model)
        await _commit(self.session)
        await self.session.refresh(model)

        return self._model_to_entity(model)

    async def get_by_id(self, account_id: UUID) -> Optional[EmailAccount]:
        """ID로 계정을 조회합니다."""
        model = await self._get_model(account_id)
        if model is None:
            return None
        return self._model_to_entity(model)

    async def get_by_email(self, email: str) -> Optional[EmailAccount]:
        """이메일로 계정을 조회합니다."""
        stmt = select(EmailAccountModel).where(EmailAccountModel.email == email.lower())
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()

        if model is None:
            return None

        return self._model_to_entity(model)

    async def get_by_external_id(self, external_id: str) -> Optional[EmailAccount]:
        """통합 제공자 계정 ID로 계정을 조회합니다."""
        stmt = select(EmailAccountModel).where(EmailAccountModel.external_id == external_id)
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()

        if model is None:
            return None

        return self._model_to_entity(model)

    async def list_active(self) -> List[EmailAccount]:
        """활성 계정 목록을 조회합니다."""
        stmt = (
            select(EmailAccountModel)
            .where(EmailAccountModel.status == AccountStatus.ACTIVE.value)
            .order_by(desc(EmailAccountModel.created_at))
        )
        result = await self.session.execute(stmt)
        models = result.scalars().all()

        return [self._model_to_entity(model) for model in models]

    async def update_sync_status(
        self,
        account_id: UUID,
        sync_status: AccountSyncStatus,
        sync_error: Optional[str] = None,
    ) -> None:
        """동기화 상태를 변경합니다. 오류가 없으면 이전 오류를 지웁니다."""
        model = await self._require_model(account_id)
        model.sync_status = sync_status.value
        model.sync_error = sync_error
        model.updated_at = datetime.utcnow()
        await _commit(self.session)

    async def update_last_sync(self, account_id: UUID, synced_at: datetime) -> None:
        model = await self._require_model(account_id)
        model.last_sync_at = synced_at
        model.updated_at = datetime.utcnow()
        await _commit(self.session)

    async def update_credentials(
        self,
        account_id: UUID,
        access_token: str,
        expires_at: Optional[datetime],
    ) -> None:
        """암호화된 액세스 토큰을 저장합니다."""
        model = await self._require_model(account_id)
        model.access_token = access_token
        model.token_expires_at = expires_at
        model.updated_at = datetime.utcnow()
        await _commit(self.session)

    async def update_push_state(
        self,
        account_id: UUID,
        subscription_id: Optional[str],
        history_id: Optional[str],
    ) -> None:
        model = await self._require_model(account_id)
        model.push_subscription_id = subscription_id
        model.history_id = history_id
        model.updated_at = datetime.utcnow()
        await _commit(self.session)

    async def _get_model(self, account_id: UUID) -> Optional[EmailAccountModel]:
        stmt = select(EmailAccountModel).where(EmailAccountModel.id == str(account_id))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _require_model(self, account_id: UUID) -> EmailAccountModel:
        model = await self._get_model(account_id)
        if model is None:
            raise ValueError(f"계정을 찾을 수 없습니다: {account_id}")
        return model

    def _model_to_entity(self, model: EmailAccountModel) -> EmailAccount:
        """모델을 엔티티로 변환합니다."""
        return EmailAccount(
            id=UUID(model.id),  # 문자열을 UUID로 변환
            email=model.email,
            provider=EmailProvider(model.provider),  # 문자열을 Enum으로 변환
            status=AccountStatus(model.status),
            sync_status=AccountSyncStatus(model.sync_status),
            access_token=model.access_token,
            refresh_token=model.refresh_token,
            token_expires_at=model.token_expires_at,
            external_id=model.external_id,
            max_emails=model.max_emails,
            folder_scope=model.folder_scope,
            full_sync=model.full_sync,
            last_sync_at=model.last_sync_at,
            sync_error=model.sync_error,
            push_subscription_id=model.push_subscription_id,
            history_id=model.history_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


class EmailRepositoryAdapter(EmailRepositoryPort):
    """메일 Repository 어댑터"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_external_id(self, account_id: UUID, external_id: str) -> Optional[StoredEmail]:
        """제공자 메시지 ID로 메일을 조회합니다 (삭제 표시된 메일 포함)."""
        stmt = select(EmailModel).where(
            and_(
                EmailModel.account_id == str(account_id),
                EmailModel.external_id == external_id,
            )
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()

        if model is None:
            return None

        return self._model_to_entity(model)

    async def get_by_id(self, email_id: UUID) -> Optional[StoredEmail]:
        stmt = select(EmailModel).where(EmailModel.id == str(email_id))
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()

        if model is None:
            return None

        return self._model_to_entity(model)

    async def create_from_message(self, account_id: UUID, message: EmailMessage) -> StoredEmail:
        """원격 메시지로 메일을 생성합니다. 동기화 스냅샷도 함께 기록합니다."""
        model = EmailModel(
            account_id=str(account_id),
            external_id=message.id,
            thread_id=message.thread_id,
            from_address=message.from_address,
            to=list(message.to),
            cc=list(message.cc),
            bcc=list(message.bcc),
            subject=message.subject,
            body_text=message.body_text,
            body_html=message.body_html,
            snippet=message.snippet,
            date=message.date,
            labels=list(message.labels),
            is_read=message.is_read,
            is_starred=message.is_starred,
            attachments=[attachment.model_dump() for attachment in message.attachments],
            is_deleted=False,
            synced_is_read=message.is_read,
            synced_is_starred=message.is_starred,
            synced_labels=list(message.labels),
        )

        self.session.add(model)
        await _commit(self.session)
        await self.session.refresh(model)

        return self._model_to_entity(model)

    async def update_fields(self, email_id: UUID, fields: Dict[str, Any]) -> StoredEmail:
        """지정한 필드만 갱신합니다."""
        unknown = set(fields) - EMAIL_UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"갱신할 수 없는 필드입니다: {sorted(unknown)}")

        stmt = select(EmailModel).where(EmailModel.id == str(email_id))
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()

        if model is None:
            raise ValueError(f"메일을 찾을 수 없습니다: {email_id}")

        for field, value in fields.items():
            if field in ("labels", "to", "cc", "bcc", "synced_labels") and value is not None:
                value = list(value)
            setattr(model, field, value)
        model.updated_at = datetime.utcnow()

        await _commit(self.session)
        await self.session.refresh(model)

        return self._model_to_entity(model)

    async def delete_by_external_id(self, account_id: UUID, external_id: str) -> int:
        """제공자 메시지 ID로 메일을 삭제 표시합니다."""
        stmt = (
            update(EmailModel)
            .where(
                and_(
                    EmailModel.account_id == str(account_id),
                    EmailModel.external_id == external_id,
                    EmailModel.is_deleted.is_(False),
                )
            )
            .values(is_deleted=True, updated_at=datetime.utcnow())
        )
        result = await self.session.execute(stmt)
        await _commit(self.session)
        return result.rowcount or 0

    async def list_by_account(self, account_id: UUID, include_deleted: bool = False) -> List[StoredEmail]:
        stmt = select(EmailModel).where(EmailModel.account_id == str(account_id))
        if not include_deleted:
            stmt = stmt.where(EmailModel.is_deleted.is_(False))
        stmt = stmt.order_by(desc(EmailModel.date))

        result = await self.session.execute(stmt)
        models = result.scalars().all()

        return [self._model_to_entity(model) for model in models]

    async def mark_deleted(self, email_ids: List[UUID]) -> int:
        """여러 메일을 삭제 표시합니다."""
        if not email_ids:
            return 0

        stmt = (
            update(EmailModel)
            .where(
                and_(
                    EmailModel.id.in_([str(email_id) for email_id in email_ids]),
                    EmailModel.is_deleted.is_(False),
                )
            )
            .values(is_deleted=True, updated_at=datetime.utcnow())
        )
        result = await self.session.execute(stmt)
        await _commit(self.session)
        return result.rowcount or 0

    def _model_to_entity(self, model: EmailModel) -> StoredEmail:
        """모델을 엔티티로 변환합니다."""
        return StoredEmail(
            id=UUID(model.id),
            account_id=UUID(model.account_id),
            external_id=model.external_id,
            thread_id=model.thread_id,
            from_address=model.from_address or "",
            to=model.to or [],
            cc=model.cc or [],
            bcc=model.bcc or [],
            subject=model.subject or "",
            body_text=model.body_text or "",
            body_html=model.body_html or "",
            snippet=model.snippet or "",
            date=model.date,
            labels=model.labels or [],
            is_read=bool(model.is_read),
            is_starred=bool(model.is_starred),
            attachments=model.attachments or [],
            is_deleted=bool(model.is_deleted),
            synced_is_read=model.synced_is_read,
            synced_is_starred=model.synced_is_starred,
            synced_labels=model.synced_labels,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


class SyncLogRepositoryAdapter(SyncLogRepositoryPort):
    """동기화 로그 Repository 어댑터"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, account_id: UUID, sync_type: SyncType) -> SyncLog:
        """started 상태의 로그를 생성합니다."""
        model = SyncLogModel(
            account_id=str(account_id),
            sync_type=sync_type.value,
            status=SyncLogStatus.STARTED.value,
            started_at=datetime.utcnow(),
        )

        self.session.add(model)
        await _commit(self.session)
        await self.session.refresh(model)

        return self._model_to_entity(model)

    async def finalize(
        self,
        log_id: UUID,
        status: SyncLogStatus,
        result: Optional[SyncResult] = None,
        error_message: Optional[str] = None,
        error_detail: Optional[str] = None,
    ) -> SyncLog:
        """로그를 completed 또는 failed로 종료합니다."""
        stmt = select(SyncLogModel).where(SyncLogModel.id == str(log_id))
        query_result = await self.session.execute(stmt)
        model = query_result.scalar_one_or_none()

        if model is None:
            raise ValueError(f"동기화 로그를 찾을 수 없습니다: {log_id}")

        model.status = status.value
        model.completed_at = result.completed_at if result is not None else datetime.utcnow()
        if result is not None:
            model.emails_processed = result.emails_processed
            model.emails_added = result.emails_added
            model.emails_updated = result.emails_updated
            model.emails_deleted = result.emails_deleted
            model.errors_count = result.errors_count
        model.error_message = error_message
        model.error_detail = error_detail

        await _commit(self.session)
        await self.session.refresh(model)

        return self._model_to_entity(model)

    async def list_by_account(self, account_id: UUID, limit: int = 20) -> List[SyncLog]:
        """계정별 로그를 최신순으로 조회합니다."""
        stmt = (
            select(SyncLogModel)
            .where(SyncLogModel.account_id == str(account_id))
            .order_by(desc(SyncLogModel.started_at))
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        models = result.scalars().all()

        return [self._model_to_entity(model) for model in models]

    def _model_to_entity(self, model: SyncLogModel) -> SyncLog:
        return SyncLog(
            id=UUID(model.id),
            account_id=UUID(model.account_id),
            sync_type=SyncType(model.sync_type),
            status=SyncLogStatus(model.status),
            emails_processed=model.emails_processed or 0,
            emails_added=model.emails_added or 0,
            emails_updated=model.emails_updated or 0,
            emails_deleted=model.emails_deleted or 0,
            errors_count=model.errors_count or 0,
            error_message=model.error_message,
            error_detail=model.error_detail,
            started_at=model.started_at,
            completed_at=model.completed_at,
        )


class SyncConflictRepositoryAdapter(SyncConflictRepositoryPort):
    """동기화 충돌 Repository 어댑터"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, conflict: SyncConflict) -> SyncConflict:
        """충돌을 저장합니다."""
        model = SyncConflictModel(
            id=str(conflict.id),
            account_id=str(conflict.account_id),
            email_id=str(conflict.email_id),
            external_id=conflict.external_id,
            conflict_type=conflict.conflict_type.value,
            local_email=conflict.local_email,
            remote_email=conflict.remote_email,
            conflict_fields=list(conflict.conflict_fields),
            status=conflict.status.value,
            resolution=conflict.resolution.value if conflict.resolution else None,
            detected_at=conflict.detected_at,
            resolved_at=conflict.resolved_at,
        )

        self.session.add(model)
        await _commit(self.session)
        await self.session.refresh(model)

        return self._model_to_entity(model)

    async def get_by_id(self, conflict_id: UUID) -> Optional[SyncConflict]:
        """ID로 충돌을 조회합니다."""
        model = await self._get_model(conflict_id)
        if model is None:
            return None
        return self._model_to_entity(model)

    async def find_pending_by_email(self, email_id: UUID) -> Optional[SyncConflict]:
        stmt = (
            select(SyncConflictModel)
            .where(
                and_(
                    SyncConflictModel.email_id == str(email_id),
                    SyncConflictModel.status == ConflictStatus.PENDING.value,
                )
            )
            .order_by(desc(SyncConflictModel.detected_at))
            .limit(1)
        )
        result = await self.session.execute(stmt)
        model = result.scalars().first()

        if model is None:
            return None

        return self._model_to_entity(model)

    async def list_conflicts(
        self,
        account_id: Optional[UUID] = None,
        conflict_type: Optional[ConflictType] = None,
        status: Optional[ConflictStatus] = None,
        limit: int = 100,
    ) -> List[SyncConflict]:
        """조건에 맞는 충돌을 최신순으로 조회합니다."""
        stmt = select(SyncConflictModel)
        if account_id is not None:
            stmt = stmt.where(SyncConflictModel.account_id == str(account_id))
        if conflict_type is not None:
            stmt = stmt.where(SyncConflictModel.conflict_type == conflict_type.value)
        if status is not None:
            stmt = stmt.where(SyncConflictModel.status == status.value)
        stmt = stmt.order_by(desc(SyncConflictModel.detected_at)).limit(limit)

        result = await self.session.execute(stmt)
        models = result.scalars().all()

        return [self._model_to_entity(model) for model in models]

    async def update(self, conflict: SyncConflict) -> SyncConflict:
        """충돌을 갱신합니다."""
        model = await self._get_model(conflict.id)
        if model is None:
            raise ValueError(f"충돌을 찾을 수 없습니다: {conflict.id}")

        model.conflict_type = conflict.conflict_type.value
        model.local_email = conflict.local_email
        model.remote_email = conflict.remote_email
        model.conflict_fields = list(conflict.conflict_fields)
        model.status = conflict.status.value
        model.resolution = conflict.resolution.value if conflict.resolution else None
        model.detected_at = conflict.detected_at
        model.resolved_at = conflict.resolved_at

        await _commit(self.session)
        await self.session.refresh(model)

        return self._model_to_entity(model)

    async def _get_model(self, conflict_id: UUID) -> Optional[SyncConflictModel]:
        stmt = select(SyncConflictModel).where(SyncConflictModel.id == str(conflict_id))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _model_to_entity(self, model: SyncConflictModel) -> SyncConflict:
        """모델을 엔티티로 변환합니다."""
        return SyncConflict(
            id=UUID(model.id),
            account_id=UUID(model.account_id),
            email_id=UUID(model.email_id),
            external_id=model.external_id,
            conflict_type=ConflictType(model.conflict_type),
            local_email=model.local_email or {},
            remote_email=model.remote_email or {},
            conflict_fields=model.conflict_fields or [],
            status=ConflictStatus(model.status),
            resolution=ConflictResolution(model.resolution) if model.resolution else None,
            detected_at=model.detected_at,
            resolved_at=model.resolved_at,
        )
