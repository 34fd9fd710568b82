"""
도메인 엔티티 정의

메일 동기화 엔진의 핵심 개념을 나타내는 엔티티들을 정의합니다.
모든 엔티티는 Pydantic 모델을 기반으로 하여 타입 안정성을 보장합니다.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


# 충돌 감지 대상 필드 (로컬/원격 양쪽에서 독립적으로 바뀔 수 있는 값)
CONFLICT_TRACKED_FIELDS = ("is_read", "is_starred", "labels")

# 원격 변경 적용 시 덮어쓰는 필드
REMOTE_OVERWRITE_FIELDS = ("subject", "body_text", "body_html", "is_read", "is_starred", "labels")


class EmailProvider(str, Enum):
    """메일 제공자 종류"""
    GMAIL = "gmail"
    UNIFIED = "unified"
    EXCHANGE = "exchange"
    IMAP = "imap"


class AccountStatus(str, Enum):
    """계정 상태"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"


class AccountSyncStatus(str, Enum):
    """계정 동기화 상태"""
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class SyncType(str, Enum):
    """동기화 타입"""
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncLogStatus(str, Enum):
    """동기화 로그 상태"""
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class ChangeType(str, Enum):
    """델타 변경 종류"""
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class ConflictType(str, Enum):
    """충돌 종류"""
    UPDATE = "update"
    DELETE = "delete"
    MOVE = "move"


class ConflictResolution(str, Enum):
    """충돌 해결 정책"""
    LOCAL = "local"
    REMOTE = "remote"
    MERGE = "merge"


class ConflictStatus(str, Enum):
    """충돌 처리 상태"""
    PENDING = "pending"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class EmailAccount(BaseModel):
    """메일 계정 엔티티"""

    id: UUID = Field(default_factory=uuid4, description="계정 고유 ID")
    email: str = Field(..., description="계정 이메일 주소")
    provider: EmailProvider = Field(..., description="기본 메일 제공자")
    status: AccountStatus = Field(default=AccountStatus.ACTIVE, description="계정 상태")
    sync_status: AccountSyncStatus = Field(default=AccountSyncStatus.IDLE, description="동기화 상태")
    access_token: Optional[str] = Field(None, description="암호화된 액세스 토큰")
    refresh_token: Optional[str] = Field(None, description="암호화된 리프레시 토큰")
    token_expires_at: Optional[datetime] = Field(None, description="액세스 토큰 만료 시간")
    external_id: Optional[str] = Field(None, description="통합 제공자 계정 ID")
    max_emails: int = Field(default=100, ge=1, description="1회 동기화 최대 메일 수")
    folder_scope: Optional[str] = Field(None, description="동기화 대상 폴더")
    full_sync: bool = Field(default=False, description="기본 전체 동기화 여부")
    last_sync_at: Optional[datetime] = Field(None, description="마지막 동기화 시간")
    sync_error: Optional[str] = Field(None, description="마지막 동기화 오류")
    push_subscription_id: Optional[str] = Field(None, description="푸시 구독 ID")
    history_id: Optional[str] = Field(None, description="마지막으로 처리한 히스토리 ID")
    created_at: datetime = Field(default_factory=datetime.utcnow, description="생성 시간")
    updated_at: datetime = Field(default_factory=datetime.utcnow, description="수정 시간")

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        """이메일 형식 검증"""
        if '@' not in v:
            raise ValueError('유효한 이메일 주소가 아닙니다')
        return v.lower()

    def is_active(self) -> bool:
        """계정이 활성 상태인지 확인"""
        return self.status == AccountStatus.ACTIVE

    def has_unified_link(self) -> bool:
        """통합 제공자와 연결되어 있는지 확인"""
        return bool(self.external_id)

    def is_token_expired(self, skew_seconds: int = 60) -> bool:
        """액세스 토큰이 만료되었는지 확인"""
        if not self.access_token:
            return True
        if self.token_expires_at is None:
            return False
        return datetime.utcnow() + timedelta(seconds=skew_seconds) >= self.token_expires_at

    def apply_credentials(self, access_token: str, expires_at: Optional[datetime]) -> None:
        """갱신된 자격 증명을 반영"""
        self.access_token = access_token
        self.token_expires_at = expires_at
        self.updated_at = datetime.utcnow()


class EmailAttachment(BaseModel):
    """첨부파일 메타데이터 (내용은 별도 다운로드)"""

    filename: str = ""
    mime_type: str = "application/octet-stream"
    size: int = 0
    attachment_id: Optional[str] = None


class EmailMessage(BaseModel):
    """제공자 독립적인 정규 메일 메시지"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="제공자 메시지 ID")
    thread_id: Optional[str] = None
    from_address: str = ""
    to: List[str] = Field(default_factory=list)
    cc: List[str] = Field(default_factory=list)
    bcc: List[str] = Field(default_factory=list)
    subject: str = ""
    body_text: str = ""
    body_html: str = ""
    snippet: str = ""
    date: Optional[datetime] = None
    labels: List[str] = Field(default_factory=list)
    is_read: bool = False
    is_starred: bool = False
    attachments: List[EmailAttachment] = Field(default_factory=list)
    internal_date: Optional[datetime] = None


class StoredEmail(BaseModel):
    """로컬 저장소에 보관된 메일"""

    id: UUID = Field(default_factory=uuid4)
    account_id: UUID
    external_id: str
    thread_id: Optional[str] = None
    from_address: str = ""
    to: List[str] = Field(default_factory=list)
    cc: List[str] = Field(default_factory=list)
    bcc: List[str] = Field(default_factory=list)
    subject: str = ""
    body_text: str = ""
    body_html: str = ""
    snippet: str = ""
    date: Optional[datetime] = None
    labels: List[str] = Field(default_factory=list)
    is_read: bool = False
    is_starred: bool = False
    attachments: List[EmailAttachment] = Field(default_factory=list)
    is_deleted: bool = False

    # 마지막 동기화 시점의 원격 상태
    synced_is_read: Optional[bool] = None
    synced_is_starred: Optional[bool] = None
    synced_labels: Optional[List[str]] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def has_snapshot(self) -> bool:
        """동기화 스냅샷 보유 여부"""
        return (
            self.synced_is_read is not None
            and self.synced_is_starred is not None
            and self.synced_labels is not None
        )

    def snapshot(self) -> Dict[str, Any]:
        """마지막 동기화 시점 값"""
        return {
            "is_read": self.synced_is_read,
            "is_starred": self.synced_is_starred,
            "labels": self.synced_labels,
        }

    def is_locally_modified(self) -> bool:
        """마지막 동기화 이후 로컬에서 변경되었는지 확인"""
        if not self.has_snapshot():
            return False
        return (
            self.is_read != self.synced_is_read
            or self.is_starred != self.synced_is_starred
            or set(self.labels) != set(self.synced_labels or [])
        )


class SyncOptions(BaseModel):
    """동기화 옵션 (비어 있는 값은 계정 설정을 따름)"""

    full_sync: Optional[bool] = None
    max_emails: Optional[int] = Field(None, ge=1)
    folder_scope: Optional[str] = None
    preferred_adapter: Optional[EmailProvider] = None
    conflict_resolution: Optional[ConflictResolution] = None
    detect_conflicts: bool = True


class FetchBatch(BaseModel):
    """원격 조회 결과"""

    messages: List[EmailMessage] = Field(default_factory=list)
    failed_message_ids: List[str] = Field(default_factory=list)
    complete: bool = Field(default=False, description="원격 목록을 끝까지 조회했는지 여부")
    scope_label: Optional[str] = Field(None, description="조회 범위를 나타내는 라벨")


class SyncResult(BaseModel):
    """동기화 결과"""

    account_id: UUID
    success: bool
    emails_processed: int = 0
    emails_added: int = 0
    emails_updated: int = 0
    emails_unchanged: int = 0
    emails_deleted: int = 0
    conflicts_detected: int = 0
    errors_count: int = 0
    started_at: datetime
    completed_at: datetime


class SyncLog(BaseModel):
    """동기화 이력 (실행마다 1건)"""

    id: UUID = Field(default_factory=uuid4)
    account_id: UUID
    sync_type: SyncType
    status: SyncLogStatus = SyncLogStatus.STARTED
    emails_processed: int = 0
    emails_added: int = 0
    emails_updated: int = 0
    emails_deleted: int = 0
    errors_count: int = 0
    error_message: Optional[str] = None
    error_detail: Optional[str] = None
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    def is_finalized(self) -> bool:
        """종료 처리 여부"""
        return self.status != SyncLogStatus.STARTED


class SyncConflict(BaseModel):
    """동기화 충돌"""

    id: UUID = Field(default_factory=uuid4)
    account_id: UUID
    email_id: UUID
    external_id: str
    conflict_type: ConflictType
    local_email: Dict[str, Any] = Field(default_factory=dict)
    remote_email: Dict[str, Any] = Field(default_factory=dict)
    conflict_fields: List[str] = Field(default_factory=list)
    status: ConflictStatus = ConflictStatus.PENDING
    resolution: Optional[ConflictResolution] = None
    detected_at: datetime = Field(default_factory=datetime.utcnow)
    resolved_at: Optional[datetime] = None

    def is_pending(self) -> bool:
        return self.status == ConflictStatus.PENDING


class BulkResolutionResult(BaseModel):
    """일괄 충돌 해결 결과"""

    resolved: int = 0
    failed: int = 0
    total: int = 0
    resolution: ConflictResolution


class UnifiedDelta(BaseModel):
    """통합 제공자 웹훅 델타 항목"""

    object: str
    type: str
    object_data: Dict[str, Any] = Field(default_factory=dict)


class UnifiedWebhookEnvelope(BaseModel):
    """통합 제공자 웹훅 페이로드"""

    kind: Literal["unified"] = "unified"
    deltas: List[UnifiedDelta]


class NativeHistoryPointer(BaseModel):
    """네이티브 제공자 히스토리 포인터 (base64 디코딩 후)"""

    kind: Literal["native"] = "native"
    email_address: str
    history_id: str


class WebhookDelta(BaseModel):
    """정규화된 웹훅 델타"""

    change_type: ChangeType
    external_id: str
    message: Optional[EmailMessage] = None


class HistoryChanges(BaseModel):
    """히스토리 조회 결과"""

    deltas: List[WebhookDelta] = Field(default_factory=list)
    history_id: Optional[str] = None


class WebhookResult(BaseModel):
    """웹훅 처리 결과"""

    account_id: Optional[UUID] = None
    processed: bool = False
    messages_processed: int = 0


class EmailDraft(BaseModel):
    """발송할 메일"""

    to: List[str]
    cc: List[str] = Field(default_factory=list)
    bcc: List[str] = Field(default_factory=list)
    subject: str = ""
    body_text: str = ""
    body_html: Optional[str] = None
    thread_id: Optional[str] = None
    in_reply_to: Optional[str] = None


class SendResult(BaseModel):
    """메일 발송 결과"""

    message_id: str
    thread_id: Optional[str] = None


class PushSubscription(BaseModel):
    """푸시 구독 정보"""

    subscription_id: Optional[str] = None
    status: str = "active"
    history_id: Optional[str] = None
    expires_at: Optional[datetime] = None
