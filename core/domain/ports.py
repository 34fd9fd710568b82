"""
포트 인터페이스 정의

클린 아키텍처의 핵심으로, Core 레이어와 외부 어댑터 간의 계약을 정의합니다.
모든 포트는 추상 기본 클래스(ABC)로 정의되어 구현을 강제합니다.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from .entities import (
    AccountSyncStatus,
    ConflictStatus,
    ConflictType,
    EmailAccount,
    EmailDraft,
    EmailMessage,
    EmailProvider,
    FetchBatch,
    HistoryChanges,
    PushSubscription,
    SendResult,
    StoredEmail,
    SyncConflict,
    SyncLog,
    SyncLogStatus,
    SyncOptions,
    SyncResult,
    SyncType,
)


class AccountRepositoryPort(ABC):
    """계정 저장소 포트"""

    @abstractmethod
    async def create(self, account: EmailAccount) -> EmailAccount:
        """계정 생성"""
        pass

    @abstractmethod
    async def get_by_id(self, account_id: UUID) -> Optional[EmailAccount]:
        """ID로 계정 조회"""
        pass

    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[EmailAccount]:
        """이메일로 계정 조회"""
        pass

    @abstractmethod
    async def get_by_external_id(self, external_id: str) -> Optional[EmailAccount]:
        """통합 제공자 계정 ID로 계정 조회"""
        pass

    @abstractmethod
    async def list_active(self) -> List[EmailAccount]:
        """활성 계정 목록 조회"""
        pass

    @abstractmethod
    async def update_sync_status(
        self,
        account_id: UUID,
        sync_status: AccountSyncStatus,
        sync_error: Optional[str] = None,
    ) -> None:
        """동기화 상태 변경"""
        pass

    @abstractmethod
    async def update_last_sync(self, account_id: UUID, synced_at: datetime) -> None:
        """마지막 동기화 시간 기록"""
        pass

    @abstractmethod
    async def update_credentials(
        self,
        account_id: UUID,
        access_token: str,
        expires_at: Optional[datetime],
    ) -> None:
        """암호화된 액세스 토큰 저장"""
        pass

    @abstractmethod
    async def update_push_state(
        self,
        account_id: UUID,
        subscription_id: Optional[str],
        history_id: Optional[str],
    ) -> None:
        """푸시 구독 상태 저장"""
        pass


class EmailRepositoryPort(ABC):
    """메일 저장소 포트"""

    @abstractmethod
    async def find_by_external_id(self, account_id: UUID, external_id: str) -> Optional[StoredEmail]:
        """제공자 메시지 ID로 메일 조회"""
        pass

    @abstractmethod
    async def get_by_id(self, email_id: UUID) -> Optional[StoredEmail]:
        """ID로 메일 조회"""
        pass

    @abstractmethod
    async def create_from_message(self, account_id: UUID, message: EmailMessage) -> StoredEmail:
        """정규 메시지로부터 메일 생성"""
        pass

    @abstractmethod
    async def update_fields(self, email_id: UUID, fields: Dict[str, Any]) -> StoredEmail:
        """메일 필드 업데이트"""
        pass

    @abstractmethod
    async def delete_by_external_id(self, account_id: UUID, external_id: str) -> int:
        """제공자 메시지 ID로 메일 삭제"""
        pass

    @abstractmethod
    async def list_by_account(self, account_id: UUID, include_deleted: bool = False) -> List[StoredEmail]:
        """계정의 메일 목록 조회"""
        pass

    @abstractmethod
    async def mark_deleted(self, email_ids: List[UUID]) -> int:
        """메일을 삭제됨으로 표시"""
        pass


class SyncLogRepositoryPort(ABC):
    """동기화 로그 저장소 포트"""

    @abstractmethod
    async def create(self, account_id: UUID, sync_type: SyncType) -> SyncLog:
        """started 상태의 로그 생성"""
        pass

    @abstractmethod
    async def finalize(
        self,
        log_id: UUID,
        status: SyncLogStatus,
        result: Optional[SyncResult] = None,
        error_message: Optional[str] = None,
        error_detail: Optional[str] = None,
    ) -> SyncLog:
        """로그 종료 처리"""
        pass

    @abstractmethod
    async def list_by_account(self, account_id: UUID, limit: int = 20) -> List[SyncLog]:
        """계정별 로그 조회 (최신순)"""
        pass


class SyncConflictRepositoryPort(ABC):
    """동기화 충돌 저장소 포트"""

    @abstractmethod
    async def create(self, conflict: SyncConflict) -> SyncConflict:
        """충돌 저장"""
        pass

    @abstractmethod
    async def get_by_id(self, conflict_id: UUID) -> Optional[SyncConflict]:
        """ID로 충돌 조회"""
        pass

    @abstractmethod
    async def find_pending_by_email(self, email_id: UUID) -> Optional[SyncConflict]:
        """메일의 미해결 충돌 조회"""
        pass

    @abstractmethod
    async def list_conflicts(
        self,
        account_id: Optional[UUID] = None,
        conflict_type: Optional[ConflictType] = None,
        status: Optional[ConflictStatus] = None,
        limit: int = 100,
    ) -> List[SyncConflict]:
        """충돌 목록 조회"""
        pass

    @abstractmethod
    async def update(self, conflict: SyncConflict) -> SyncConflict:
        """충돌 갱신"""
        pass


class EmailProviderPort(ABC):
    """메일 제공자 어댑터 포트"""

    provider: EmailProvider

    @abstractmethod
    async def fetch(self, account: EmailAccount, options: SyncOptions) -> FetchBatch:
        """원격 메일 조회 (내부 페이지 처리)"""
        pass

    @abstractmethod
    async def get_message(self, account: EmailAccount, message_id: str) -> EmailMessage:
        """단일 메시지 조회"""
        pass

    @abstractmethod
    def parse_message(self, raw: Dict[str, Any]) -> EmailMessage:
        """제공자 메시지를 정규 메시지로 변환"""
        pass

    @abstractmethod
    async def send(self, account: EmailAccount, draft: EmailDraft) -> SendResult:
        """메일 발송"""
        pass

    @abstractmethod
    async def setup_push(self, account: EmailAccount, callback_url: str) -> PushSubscription:
        """푸시 구독 설정"""
        pass

    @abstractmethod
    async def teardown_push(self, account: EmailAccount) -> None:
        """푸시 구독 해제"""
        pass

    @abstractmethod
    async def download_attachment(self, account: EmailAccount, message_id: str, attachment_id: str) -> bytes:
        """첨부파일 다운로드"""
        pass

    @abstractmethod
    async def push_changes(self, account: EmailAccount, external_id: str, fields: Dict[str, Any]) -> None:
        """로컬 상태(읽음/별표/라벨)를 제공자에 반영"""
        pass

    @abstractmethod
    async def list_history(self, account: EmailAccount, start_history_id: str) -> HistoryChanges:
        """히스토리 ID 이후 변경 내역 조회"""
        pass


class EncryptionServicePort(ABC):
    """암호화 서비스 포트"""

    @abstractmethod
    async def encrypt(self, data: str) -> str:
        """데이터 암호화"""
        pass

    @abstractmethod
    async def decrypt(self, encrypted_data: str) -> str:
        """데이터 복호화"""
        pass


class LoggerPort(ABC):
    """로거 포트"""

    @abstractmethod
    def info(self, message: str, **kwargs) -> None:
        """정보 로그"""
        pass

    @abstractmethod
    def warning(self, message: str, **kwargs) -> None:
        """경고 로그"""
        pass

    @abstractmethod
    def error(self, message: str, **kwargs) -> None:
        """오류 로그"""
        pass

    @abstractmethod
    def debug(self, message: str, **kwargs) -> None:
        """디버그 로그"""
        pass


class ConfigPort(ABC):
    """설정 포트"""

    # 환경 설정
    @abstractmethod
    def get_environment(self) -> str:
        """환경 조회 (development, production, testing)"""
        pass

    @abstractmethod
    def is_debug(self) -> bool:
        """디버그 모드 여부"""
        pass

    # 데이터베이스 설정
    @abstractmethod
    def get_database_url(self) -> str:
        """데이터베이스 URL 조회"""
        pass

    # 암호화 설정
    @abstractmethod
    def get_encryption_key(self) -> str:
        """암호화 키 조회"""
        pass

    # Gmail 설정
    @abstractmethod
    def get_gmail_client_id(self) -> str:
        pass

    @abstractmethod
    def get_gmail_client_secret(self) -> str:
        pass

    @abstractmethod
    def get_gmail_api_base_url(self) -> str:
        pass

    @abstractmethod
    def get_gmail_token_url(self) -> str:
        pass

    @abstractmethod
    def get_gmail_pubsub_topic(self) -> Optional[str]:
        pass

    # 통합 제공자 설정
    @abstractmethod
    def get_unified_api_key(self) -> str:
        pass

    @abstractmethod
    def get_unified_api_base_url(self) -> str:
        pass

    @abstractmethod
    def get_unified_webhook_secret(self) -> Optional[str]:
        pass

    # 동기화 정책
    @abstractmethod
    def is_unified_preferred(self) -> bool:
        """통합 제공자 우선 사용 여부"""
        pass

    @abstractmethod
    def is_strict_unimplemented_providers(self) -> bool:
        """미구현 제공자 즉시 실패 여부"""
        pass

    @abstractmethod
    def get_default_conflict_resolution(self) -> Optional[str]:
        """기본 충돌 해결 정책"""
        pass

    @abstractmethod
    def get_sync_max_emails(self) -> int:
        pass

    @abstractmethod
    def get_provider_timeout_seconds(self) -> float:
        pass

    @abstractmethod
    def get_provider_max_retries(self) -> int:
        pass

    @abstractmethod
    def get_provider_retry_base_delay(self) -> float:
        pass

    # 웹훅 설정
    @abstractmethod
    def get_webhook_base_url(self) -> str:
        pass

    # 로깅 설정
    @abstractmethod
    def get_log_level(self) -> str:
        """로그 레벨 조회"""
        pass

    @abstractmethod
    def get_log_format(self) -> str:
        """로그 포맷 조회"""
        pass

    # 웹 서버 설정
    @abstractmethod
    def get_web_host(self) -> str:
        pass

    @abstractmethod
    def get_web_port(self) -> int:
        pass

    @abstractmethod
    def get_web_workers(self) -> int:
        pass
