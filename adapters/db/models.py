"""
SQLAlchemy 데이터베이스 모델

도메인 엔티티와 매핑되는 데이터베이스 테이블 모델을 정의합니다.
SQLite 호환성을 위해 UUID는 String으로, 목록 값은 JSON으로 처리합니다.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    JSON,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class EmailAccountModel(Base):
    """메일 계정 테이블 모델"""

    __tablename__ = "email_accounts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    provider = Column(String(50), nullable=False, index=True)  # EmailProvider enum을 문자열로 저장
    status = Column(String(50), nullable=False, default="active", index=True)
    sync_status = Column(String(50), nullable=False, default="idle", index=True)
    access_token = Column(Text)  # 암호화된 값
    refresh_token = Column(Text)  # 암호화된 값
    token_expires_at = Column(DateTime)
    external_id = Column(String(255), unique=True, index=True)  # 통합 제공자 계정 ID
    max_emails = Column(Integer, nullable=False, default=100)
    folder_scope = Column(String(255))
    full_sync = Column(Boolean, nullable=False, default=False)
    last_sync_at = Column(DateTime, index=True)
    sync_error = Column(Text)
    push_subscription_id = Column(String(255))
    history_id = Column(String(64))
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 복합 인덱스
    __table_args__ = (
        Index('idx_email_accounts_status_provider', 'status', 'provider'),
    )

    # 관계 설정
    emails = relationship("EmailModel", back_populates="account")
    sync_logs = relationship("SyncLogModel", back_populates="account")


class EmailModel(Base):
    """메일 테이블 모델"""

    __tablename__ = "emails"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String(36), ForeignKey("email_accounts.id"), nullable=False, index=True)
    external_id = Column(String(255), nullable=False, index=True)  # 제공자 메시지 ID
    thread_id = Column(String(255), index=True)
    from_address = Column(String(500))
    to = Column(JSON)  # 문자열 배열을 JSON으로 저장
    cc = Column(JSON)
    bcc = Column(JSON)
    subject = Column(Text)
    body_text = Column(Text)
    body_html = Column(Text)
    snippet = Column(Text)
    date = Column(DateTime, index=True)
    labels = Column(JSON)
    is_read = Column(Boolean, default=False, index=True)
    is_starred = Column(Boolean, default=False)
    attachments = Column(JSON)  # 첨부파일 메타데이터 (내용은 저장하지 않음)
    is_deleted = Column(Boolean, default=False, index=True)
    # 마지막 동기화 시점 스냅샷 (충돌 감지 기준)
    synced_is_read = Column(Boolean)
    synced_is_starred = Column(Boolean)
    synced_labels = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 복합 인덱스
    __table_args__ = (
        Index('idx_emails_account_external', 'account_id', 'external_id', unique=True),
        Index('idx_emails_account_date', 'account_id', 'date'),
        Index('idx_emails_account_deleted', 'account_id', 'is_deleted'),
    )

    # 관계 설정
    account = relationship("EmailAccountModel", back_populates="emails")


class SyncLogModel(Base):
    """동기화 로그 테이블 모델"""

    __tablename__ = "email_sync_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String(36), ForeignKey("email_accounts.id"), nullable=False, index=True)
    sync_type = Column(String(50), nullable=False, index=True)  # 'full' or 'incremental'
    status = Column(String(50), nullable=False, default="started", index=True)
    emails_processed = Column(Integer, default=0)
    emails_added = Column(Integer, default=0)
    emails_updated = Column(Integer, default=0)
    emails_deleted = Column(Integer, default=0)
    errors_count = Column(Integer, default=0)
    error_message = Column(Text)
    error_detail = Column(Text)
    started_at = Column(DateTime, default=datetime.utcnow, index=True)
    completed_at = Column(DateTime, index=True)

    # 복합 인덱스
    __table_args__ = (
        Index('idx_sync_logs_account_started', 'account_id', 'started_at'),
        Index('idx_sync_logs_account_status', 'account_id', 'status'),
    )

    # 관계 설정
    account = relationship("EmailAccountModel", back_populates="sync_logs")


class SyncConflictModel(Base):
    """동기화 충돌 테이블 모델"""

    __tablename__ = "email_sync_conflicts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String(36), ForeignKey("email_accounts.id"), nullable=False, index=True)
    email_id = Column(String(36), ForeignKey("emails.id"), nullable=False, index=True)
    external_id = Column(String(255), nullable=False)
    conflict_type = Column(String(50), nullable=False, index=True)  # update, delete, move
    local_email = Column(JSON)
    remote_email = Column(JSON)
    conflict_fields = Column(JSON)
    status = Column(String(50), nullable=False, default="pending", index=True)
    resolution = Column(String(50))
    detected_at = Column(DateTime, default=datetime.utcnow, index=True)
    resolved_at = Column(DateTime)

    # 복합 인덱스
    __table_args__ = (
        Index('idx_conflicts_account_status', 'account_id', 'status'),
        Index('idx_conflicts_email_status', 'email_id', 'status'),
    )
