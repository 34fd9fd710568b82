"""
테스트 공통 설정

포트를 구현한 메모리 저장소와 가짜 제공자 어댑터, 테스트 설정을 제공합니다.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

import pytest

from core.domain.entities import (
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
from core.domain.ports import (
    AccountRepositoryPort,
    EmailProviderPort,
    EmailRepositoryPort,
    LoggerPort,
    SyncConflictRepositoryPort,
    SyncLogRepositoryPort,
)
from core.usecases.adapter_selection import AdapterSelector
from core.usecases.conflict_resolution import ConflictResolver
from core.usecases.reconciliation import Reconciler
from config.adapters import TestingConfig


def make_message(message_id: str, **overrides) -> EmailMessage:
    """테스트용 정규 메시지"""
    values: Dict[str, Any] = {
        "id": message_id,
        "thread_id": f"thread-{message_id}",
        "from_address": "sender@example.com",
        "to": ["user@example.com"],
        "subject": f"subject {message_id}",
        "body_text": "hello",
        "labels": ["INBOX"],
        "is_read": False,
        "is_starred": False,
        "date": datetime(2024, 1, 1, 12, 0, 0),
    }
    values.update(overrides)
    return EmailMessage(**values)


class FakeLogger(LoggerPort):
    """메시지를 레벨별로 기록하는 로거"""

    def __init__(self):
        self.records: Dict[str, List[str]] = {"info": [], "warning": [], "error": [], "debug": []}

    def info(self, message: str, **kwargs) -> None:
        self.records["info"].append(message)

    def warning(self, message: str, **kwargs) -> None:
        self.records["warning"].append(message)

    def error(self, message: str, **kwargs) -> None:
        self.records["error"].append(message)

    def debug(self, message: str, **kwargs) -> None:
        self.records["debug"].append(message)


class InMemoryAccountRepository(AccountRepositoryPort):
    def __init__(self):
        self.accounts: Dict[UUID, EmailAccount] = {}
        self.credential_updates: List[UUID] = []
        self.status_history: List[AccountSyncStatus] = []

    def add(self, account: EmailAccount) -> EmailAccount:
        self.accounts[account.id] = account
        return account

    async def create(self, account: EmailAccount) -> EmailAccount:
        return self.add(account)

    async def get_by_id(self, account_id: UUID) -> Optional[EmailAccount]:
        account = self.accounts.get(account_id)
        return account.model_copy(deep=True) if account else None

    async def get_by_email(self, email: str) -> Optional[EmailAccount]:
        for account in self.accounts.values():
            if account.email == email.lower():
                return account.model_copy(deep=True)
        return None

    async def get_by_external_id(self, external_id: str) -> Optional[EmailAccount]:
        for account in self.accounts.values():
            if account.external_id == external_id:
                return account.model_copy(deep=True)
        return None

    async def list_active(self) -> List[EmailAccount]:
        return [account for account in self.accounts.values() if account.is_active()]

    async def update_sync_status(self, account_id, sync_status, sync_error=None) -> None:
        account = self.accounts[account_id]
        account.sync_status = sync_status
        account.sync_error = sync_error
        self.status_history.append(sync_status)

    async def update_last_sync(self, account_id, synced_at) -> None:
        self.accounts[account_id].last_sync_at = synced_at

    async def update_credentials(self, account_id, access_token, expires_at) -> None:
        self.credential_updates.append(account_id)
        self.accounts[account_id].apply_credentials(access_token, expires_at)

    async def update_push_state(self, account_id, subscription_id, history_id) -> None:
        account = self.accounts[account_id]
        account.push_subscription_id = subscription_id
        account.history_id = history_id


class InMemoryEmailRepository(EmailRepositoryPort):
    """fail_on_create_ids에 있는 메시지는 저장 시 실패"""

    def __init__(self):
        self.emails: Dict[UUID, StoredEmail] = {}
        self.fail_on_create_ids: set = set()

    async def find_by_external_id(self, account_id, external_id) -> Optional[StoredEmail]:
        for email in self.emails.values():
            if email.account_id == account_id and email.external_id == external_id:
                return email.model_copy(deep=True)
        return None

    async def get_by_id(self, email_id) -> Optional[StoredEmail]:
        email = self.emails.get(email_id)
        return email.model_copy(deep=True) if email else None

    async def create_from_message(self, account_id, message: EmailMessage) -> StoredEmail:
        if message.id in self.fail_on_create_ids:
            raise RuntimeError(f"저장 실패: {message.id}")
        values = message.model_dump(exclude={"id", "internal_date"})
        email = StoredEmail(
            account_id=account_id,
            external_id=message.id,
            synced_is_read=message.is_read,
            synced_is_starred=message.is_starred,
            synced_labels=list(message.labels),
            **values,
        )
        self.emails[email.id] = email
        return email.model_copy(deep=True)

    async def update_fields(self, email_id, fields: Dict[str, Any]) -> StoredEmail:
        email = self.emails[email_id]
        for field, value in fields.items():
            setattr(email, field, value)
        email.updated_at = datetime.utcnow()
        return email.model_copy(deep=True)

    async def delete_by_external_id(self, account_id, external_id) -> int:
        count = 0
        for email in self.emails.values():
            if email.account_id == account_id and email.external_id == external_id and not email.is_deleted:
                email.is_deleted = True
                count += 1
        return count

    async def list_by_account(self, account_id, include_deleted: bool = False) -> List[StoredEmail]:
        return [
            email.model_copy(deep=True)
            for email in self.emails.values()
            if email.account_id == account_id and (include_deleted or not email.is_deleted)
        ]

    async def mark_deleted(self, email_ids) -> int:
        count = 0
        for email_id in email_ids:
            email = self.emails.get(email_id)
            if email is not None and not email.is_deleted:
                email.is_deleted = True
                count += 1
        return count

    def by_external_id(self, external_id: str) -> StoredEmail:
        return next(email for email in self.emails.values() if email.external_id == external_id)


class InMemorySyncLogRepository(SyncLogRepositoryPort):
    def __init__(self):
        self.logs: Dict[UUID, SyncLog] = {}

    async def create(self, account_id, sync_type: SyncType) -> SyncLog:
        log = SyncLog(account_id=account_id, sync_type=sync_type)
        self.logs[log.id] = log
        return log.model_copy()

    async def finalize(self, log_id, status: SyncLogStatus, result: Optional[SyncResult] = None,
                       error_message=None, error_detail=None) -> SyncLog:
        log = self.logs[log_id]
        log.status = status
        log.completed_at = datetime.utcnow()
        if result is not None:
            log.emails_processed = result.emails_processed
            log.emails_added = result.emails_added
            log.emails_updated = result.emails_updated
            log.emails_deleted = result.emails_deleted
            log.errors_count = result.errors_count
        log.error_message = error_message
        log.error_detail = error_detail
        return log.model_copy()

    async def list_by_account(self, account_id, limit: int = 20) -> List[SyncLog]:
        logs = [log for log in self.logs.values() if log.account_id == account_id]
        return sorted(logs, key=lambda log: log.started_at, reverse=True)[:limit]


class InMemoryConflictRepository(SyncConflictRepositoryPort):
    def __init__(self):
        self.conflicts: Dict[UUID, SyncConflict] = {}

    async def create(self, conflict: SyncConflict) -> SyncConflict:
        self.conflicts[conflict.id] = conflict.model_copy(deep=True)
        return conflict

    async def get_by_id(self, conflict_id) -> Optional[SyncConflict]:
        conflict = self.conflicts.get(conflict_id)
        return conflict.model_copy(deep=True) if conflict else None

    async def find_pending_by_email(self, email_id) -> Optional[SyncConflict]:
        for conflict in self.conflicts.values():
            if conflict.email_id == email_id and conflict.status == ConflictStatus.PENDING:
                return conflict.model_copy(deep=True)
        return None

    async def list_conflicts(self, account_id=None, conflict_type: Optional[ConflictType] = None,
                             status: Optional[ConflictStatus] = None, limit: int = 100) -> List[SyncConflict]:
        result = [
            conflict.model_copy(deep=True)
            for conflict in self.conflicts.values()
            if (account_id is None or conflict.account_id == account_id)
            and (conflict_type is None or conflict.conflict_type == conflict_type)
            and (status is None or conflict.status == status)
        ]
        return result[:limit]

    async def update(self, conflict: SyncConflict) -> SyncConflict:
        self.conflicts[conflict.id] = conflict.model_copy(deep=True)
        return conflict


class FakeProviderAdapter(EmailProviderPort):
    """
    호출을 기록하는 가짜 제공자 어댑터

    gate가 설정되면 fetch가 gate.set()까지 대기합니다.
    """

    def __init__(self, provider: EmailProvider = EmailProvider.GMAIL, batch: Optional[FetchBatch] = None):
        self.provider = provider
        self.batch = batch or FetchBatch()
        self.fetch_error: Optional[Exception] = None
        self.fetch_calls: List[SyncOptions] = []
        self.gate: Optional[asyncio.Event] = None
        self.messages: Dict[str, EmailMessage] = {}
        self.pushed: List[Dict[str, Any]] = []
        self.subscription = PushSubscription(subscription_id="sub-1", status="active", history_id="900")
        self.push_error: Optional[Exception] = None
        self.teardown_calls = 0
        self.history = HistoryChanges()
        self.history_calls: List[str] = []
        self.history_error: Optional[Exception] = None

    async def fetch(self, account, options) -> FetchBatch:
        self.fetch_calls.append(options)
        if self.gate is not None:
            await self.gate.wait()
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.batch

    async def get_message(self, account, message_id) -> EmailMessage:
        return self.messages[message_id]

    def parse_message(self, raw: Dict[str, Any]) -> EmailMessage:
        return EmailMessage(
            id=raw["id"],
            subject=raw.get("subject") or "",
            is_read=not raw.get("unread", False),
            labels=list(raw.get("folders") or []),
        )

    async def send(self, account, draft: EmailDraft) -> SendResult:
        return SendResult(message_id="sent-1", thread_id=draft.thread_id)

    async def setup_push(self, account, callback_url) -> PushSubscription:
        self.callback_url = callback_url
        if self.push_error is not None:
            raise self.push_error
        return self.subscription

    async def teardown_push(self, account) -> None:
        self.teardown_calls += 1
        if self.push_error is not None:
            raise self.push_error

    async def download_attachment(self, account, message_id, attachment_id) -> bytes:
        return b"attachment-bytes"

    async def push_changes(self, account, external_id, fields) -> None:
        self.pushed.append({"external_id": external_id, **fields})

    async def list_history(self, account, start_history_id) -> HistoryChanges:
        self.history_calls.append(start_history_id)
        if self.history_error is not None:
            raise self.history_error
        return self.history


@pytest.fixture
def config():
    return TestingConfig()


@pytest.fixture
def logger():
    return FakeLogger()


@pytest.fixture
def account_repository():
    return InMemoryAccountRepository()


@pytest.fixture
def email_repository():
    return InMemoryEmailRepository()


@pytest.fixture
def sync_log_repository():
    return InMemorySyncLogRepository()


@pytest.fixture
def conflict_repository():
    return InMemoryConflictRepository()


@pytest.fixture
def account(account_repository):
    return account_repository.add(
        EmailAccount(email="user@example.com", provider=EmailProvider.GMAIL, access_token="token")
    )


@pytest.fixture
def gmail_adapter():
    return FakeProviderAdapter(EmailProvider.GMAIL)


@pytest.fixture
def unified_adapter():
    return FakeProviderAdapter(EmailProvider.UNIFIED)


@pytest.fixture
def selector(gmail_adapter, unified_adapter):
    return AdapterSelector({EmailProvider.GMAIL: gmail_adapter, EmailProvider.UNIFIED: unified_adapter})


@pytest.fixture
def resolver(email_repository, conflict_repository, logger):
    return ConflictResolver(email_repository, conflict_repository, logger)


@pytest.fixture
def reconciler(email_repository, resolver, logger):
    return Reconciler(email_repository, resolver, logger)
