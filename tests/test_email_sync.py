"""
동기화 유즈케이스 테스트
"""

import asyncio
from datetime import datetime, timedelta
from uuid import uuid4

import httpx
import pytest

from core.domain.entities import (
    AccountStatus,
    AccountSyncStatus,
    ConflictResolution,
    EmailAccount,
    EmailDraft,
    EmailProvider,
    FetchBatch,
    PushSubscription,
    SyncLogStatus,
    SyncOptions,
    SyncType,
)
from core.domain.exceptions import (
    AccountInactive,
    AccountNotFound,
    AuthFailed,
    RealTimeSyncError,
    UnsupportedProvider,
)
from core.usecases.adapter_selection import AdapterSelector
from core.usecases.email_sync import EmailSyncUseCase, InFlightSyncRegistry
from core.usecases.webhook_ingestion import WebhookIngestor
from adapters.external.encryption_service import EncryptionServiceAdapter
from adapters.providers.base import RefreshLockPool
from adapters.providers.gmail_adapter import GmailProviderAdapter

from .conftest import make_message
from .test_gmail_adapter import API_PREFIX, TOKEN_PATH, Recorder, message_responder, token_response


@pytest.fixture
def in_flight():
    return InFlightSyncRegistry()


@pytest.fixture
def usecase(account_repository, sync_log_repository, reconciler, selector, in_flight, logger):
    ingestor = WebhookIngestor(account_repository, reconciler, selector, logger)
    return EmailSyncUseCase(
        account_repository=account_repository,
        sync_log_repository=sync_log_repository,
        reconciler=reconciler,
        adapter_selector=selector,
        in_flight=in_flight,
        webhook_ingestor=ingestor,
        logger=logger,
        webhook_base_url="http://hooks.test/",
    )


@pytest.fixture
def two_messages(gmail_adapter):
    gmail_adapter.batch = FetchBatch(
        messages=[make_message("m1"), make_message("m2")],
        complete=True,
        scope_label="inbox",
    )
    return gmail_adapter


def only_log(sync_log_repository):
    assert len(sync_log_repository.logs) == 1
    return next(iter(sync_log_repository.logs.values()))


class TestSyncAccount:
    async def test_new_messages_are_added(self, usecase, account, two_messages, account_repository,
                                          sync_log_repository):
        result = await usecase.sync_account(account.id)

        assert result.success is True
        assert result.emails_processed == 2
        assert result.emails_added == 2
        assert result.errors_count == 0
        log = only_log(sync_log_repository)
        assert log.status == SyncLogStatus.COMPLETED
        assert log.emails_added == 2
        stored_account = account_repository.accounts[account.id]
        assert stored_account.sync_status == AccountSyncStatus.IDLE
        assert stored_account.last_sync_at == result.completed_at

    async def test_second_run_is_idempotent(self, usecase, account, two_messages, email_repository):
        await usecase.sync_account(account.id)

        result = await usecase.sync_account(account.id)

        assert result.emails_added == 0
        assert result.emails_unchanged == 2
        assert len(email_repository.emails) == 2

    async def test_persistence_failure_is_isolated(self, usecase, account, two_messages, email_repository,
                                                   sync_log_repository):
        email_repository.fail_on_create_ids.add("m1")

        result = await usecase.sync_account(account.id)

        assert result.emails_processed == 2
        assert result.emails_added == 1
        assert result.errors_count == 1
        assert result.success is False
        assert email_repository.by_external_id("m2")
        log = only_log(sync_log_repository)
        assert log.status == SyncLogStatus.COMPLETED
        assert log.errors_count == 1

    async def test_fetch_failure_finalizes_log_and_marks_account(
        self, usecase, account, gmail_adapter, account_repository, sync_log_repository, in_flight
    ):
        gmail_adapter.fetch_error = AuthFailed("토큰 만료", 401)

        with pytest.raises(AuthFailed):
            await usecase.sync_account(account.id)

        log = only_log(sync_log_repository)
        assert log.status == SyncLogStatus.FAILED
        assert "토큰 만료" in log.error_message
        assert log.error_detail
        stored_account = account_repository.accounts[account.id]
        assert stored_account.sync_status == AccountSyncStatus.ERROR
        assert stored_account.sync_error == "토큰 만료"
        assert account.id not in in_flight

    async def test_unknown_account(self, usecase, sync_log_repository):
        with pytest.raises(AccountNotFound):
            await usecase.sync_account(uuid4())
        assert sync_log_repository.logs == {}

    async def test_inactive_account(self, usecase, account, account_repository, sync_log_repository):
        account_repository.accounts[account.id].status = AccountStatus.INACTIVE

        with pytest.raises(AccountInactive):
            await usecase.sync_account(account.id)
        assert sync_log_repository.logs == {}

    async def test_account_settings_fill_missing_options(self, usecase, account_repository, gmail_adapter,
                                                         sync_log_repository):
        account = account_repository.add(
            EmailAccount(
                email="full@example.com",
                provider=EmailProvider.GMAIL,
                max_emails=25,
                folder_scope="work",
                full_sync=True,
            )
        )

        await usecase.sync_account(account.id, SyncOptions(max_emails=5))

        options = gmail_adapter.fetch_calls[0]
        assert options.max_emails == 5
        assert options.folder_scope == "work"
        assert options.full_sync is True
        assert only_log(sync_log_repository).sync_type == SyncType.FULL

    async def test_default_resolution_is_applied(self, usecase, account, gmail_adapter):
        usecase.default_resolution = ConflictResolution.REMOTE

        await usecase.sync_account(account.id)

        assert gmail_adapter.fetch_calls[0].conflict_resolution == ConflictResolution.REMOTE

    async def test_full_sync_marks_missing_emails_deleted(self, usecase, account, two_messages, email_repository):
        await usecase.sync_account(account.id)
        two_messages.batch = FetchBatch(messages=[make_message("m1")], complete=True, scope_label="inbox")

        result = await usecase.sync_account(account.id, SyncOptions(full_sync=True))

        assert result.emails_deleted == 1
        assert email_repository.by_external_id("m2").is_deleted is True

    async def test_incremental_sync_never_deletes(self, usecase, account, two_messages, email_repository):
        await usecase.sync_account(account.id)
        two_messages.batch = FetchBatch(messages=[make_message("m1")], complete=True, scope_label="inbox")

        result = await usecase.sync_account(account.id, SyncOptions(full_sync=False))

        assert result.emails_deleted == 0
        assert email_repository.by_external_id("m2").is_deleted is False


class TestConcurrentSync:
    async def test_concurrent_calls_share_one_run(self, usecase, account, two_messages, in_flight):
        two_messages.gate = asyncio.Event()

        async def release():
            await asyncio.sleep(0.01)
            assert account.id in in_flight
            two_messages.gate.set()

        r1, r2, _ = await asyncio.gather(
            usecase.sync_account(account.id),
            usecase.sync_account(account.id),
            release(),
        )

        assert r1 is r2
        assert len(two_messages.fetch_calls) == 1
        assert account.id not in in_flight

    async def test_new_run_starts_after_previous_finishes(self, usecase, account, two_messages):
        first = await usecase.sync_account(account.id)
        second = await usecase.sync_account(account.id)

        assert first is not second
        assert len(two_messages.fetch_calls) == 2

    async def test_concurrent_callers_share_failure(self, usecase, account, gmail_adapter, in_flight):
        gmail_adapter.gate = asyncio.Event()
        gmail_adapter.fetch_error = AuthFailed("거부됨", 401)

        async def release():
            await asyncio.sleep(0.01)
            gmail_adapter.gate.set()

        results = await asyncio.gather(
            usecase.sync_account(account.id),
            usecase.sync_account(account.id),
            release(),
            return_exceptions=True,
        )

        assert isinstance(results[0], AuthFailed)
        assert results[0] is results[1]
        assert len(gmail_adapter.fetch_calls) == 1
        assert len(in_flight) == 0


class TestAdapterSelection:
    async def test_unified_link_wins_over_native_provider(self, usecase, account_repository, gmail_adapter,
                                                          unified_adapter):
        account = account_repository.add(
            EmailAccount(email="linked@example.com", provider=EmailProvider.GMAIL, external_id="grant-1")
        )

        await usecase.sync_account(account.id)

        assert len(unified_adapter.fetch_calls) == 1
        assert gmail_adapter.fetch_calls == []

    async def test_explicit_adapter_option_wins(self, usecase, account_repository, gmail_adapter, unified_adapter):
        account = account_repository.add(
            EmailAccount(email="linked@example.com", provider=EmailProvider.GMAIL, external_id="grant-1")
        )

        await usecase.sync_account(account.id, SyncOptions(preferred_adapter=EmailProvider.GMAIL))

        assert len(gmail_adapter.fetch_calls) == 1
        assert unified_adapter.fetch_calls == []

    async def test_global_preference_selects_unified(self, usecase, account, selector, unified_adapter):
        selector.prefer_unified = True

        await usecase.sync_account(account.id)

        assert len(unified_adapter.fetch_calls) == 1

    async def test_unified_without_link_is_unsupported(self, usecase, account, sync_log_repository):
        with pytest.raises(UnsupportedProvider):
            await usecase.sync_account(account.id, SyncOptions(preferred_adapter=EmailProvider.UNIFIED))

        assert only_log(sync_log_repository).status == SyncLogStatus.FAILED

    async def test_unregistered_provider_is_unsupported(self, usecase, account_repository):
        account = account_repository.add(EmailAccount(email="imap@example.com", provider=EmailProvider.IMAP))

        with pytest.raises(UnsupportedProvider):
            await usecase.sync_account(account.id)


class TestRealTimeSync:
    async def test_start_stores_subscription(self, usecase, account, gmail_adapter, account_repository):
        subscription = await usecase.start_real_time_sync(account.id)

        assert subscription.subscription_id == "sub-1"
        assert gmail_adapter.callback_url == "http://hooks.test/webhooks/gmail"
        stored = account_repository.accounts[account.id]
        assert stored.push_subscription_id == "sub-1"
        assert stored.history_id == "900"

    async def test_unsupported_subscription_is_not_stored(self, usecase, account, gmail_adapter,
                                                          account_repository):
        gmail_adapter.subscription = PushSubscription(subscription_id=None, status="unsupported")

        subscription = await usecase.start_real_time_sync(account.id)

        assert subscription.status == "unsupported"
        assert account_repository.accounts[account.id].push_subscription_id is None

    async def test_start_failure_raises_real_time_error(self, usecase, account, gmail_adapter):
        gmail_adapter.push_error = AuthFailed("거부됨", 401)

        with pytest.raises(RealTimeSyncError):
            await usecase.start_real_time_sync(account.id)

    async def test_stop_clears_subscription(self, usecase, account, gmail_adapter, account_repository):
        await usecase.start_real_time_sync(account.id)

        await usecase.stop_real_time_sync(account.id)

        stored = account_repository.accounts[account.id]
        assert gmail_adapter.teardown_calls == 1
        assert stored.push_subscription_id is None
        assert stored.history_id == "900"


class TestOtherOperations:
    async def test_send_email(self, usecase, account):
        result = await usecase.send_email(account.id, EmailDraft(to=["a@example.com"], subject="hi"))

        assert result.message_id == "sent-1"

    async def test_download_attachment(self, usecase, account):
        assert await usecase.download_attachment(account.id, "m1", "att-1") == b"attachment-bytes"

    async def test_list_sync_logs(self, usecase, account, two_messages):
        await usecase.sync_account(account.id)
        await usecase.sync_account(account.id)

        logs = await usecase.list_sync_logs(account.id, limit=1)

        assert len(logs) == 1

    async def test_webhook_notification_never_raises(self, usecase):
        result = await usecase.process_webhook_notification("unified", "not a payload")

        assert result.processed is False
        assert result.messages_processed == 0


class TestExpiredCredentials:
    @pytest.fixture
    def recorder(self):
        return Recorder()

    @pytest.fixture
    def encryption(self, config, logger):
        return EncryptionServiceAdapter(config.get_encryption_key(), logger)

    @pytest.fixture
    def gmail_usecase(self, config, account_repository, sync_log_repository, reconciler, encryption, in_flight,
                      logger, recorder):
        adapter = GmailProviderAdapter(
            config=config,
            account_repository=account_repository,
            encryption_service=encryption,
            logger=logger,
            refresh_locks=RefreshLockPool(),
            transport=httpx.MockTransport(recorder),
        )
        selector = AdapterSelector({EmailProvider.GMAIL: adapter})
        return EmailSyncUseCase(
            account_repository=account_repository,
            sync_log_repository=sync_log_repository,
            reconciler=reconciler,
            adapter_selector=selector,
            in_flight=in_flight,
            webhook_ingestor=WebhookIngestor(account_repository, reconciler, selector, logger),
            logger=logger,
            webhook_base_url="http://hooks.test/",
        )

    async def test_token_rejected_mid_run_is_refreshed_once(
        self, gmail_usecase, account_repository, sync_log_repository, email_repository, encryption, recorder
    ):
        account = account_repository.add(
            EmailAccount(
                email="user@example.com",
                provider=EmailProvider.GMAIL,
                access_token=await encryption.encrypt("old-token"),
                refresh_token=await encryption.encrypt("refresh-token"),
                token_expires_at=datetime.utcnow() + timedelta(hours=1),
            )
        )

        def listing(request):
            return httpx.Response(200, json={"messages": [{"id": "a"}, {"id": "b"}]})

        def message(request):
            # 목록 조회 이후 기존 토큰이 만료됨
            if request.headers["authorization"] == "Bearer old-token":
                return httpx.Response(401, json={"error": "invalid_token"})
            return message_responder(request)

        recorder.route("POST", TOKEN_PATH, token_response)
        recorder.route("GET", f"{API_PREFIX}/messages", listing)
        recorder.route("GET", f"{API_PREFIX}/messages/a", message)
        recorder.route("GET", f"{API_PREFIX}/messages/b", message)

        result = await gmail_usecase.sync_account(account.id)

        assert result.success is True
        assert result.emails_added == 2
        assert recorder.count("POST", TOKEN_PATH) == 1
        assert account_repository.credential_updates == [account.id]
        stored = account_repository.accounts[account.id]
        assert await encryption.decrypt(stored.access_token) == "new-token"
        assert stored.sync_status == AccountSyncStatus.IDLE
        assert only_log(sync_log_repository).status == SyncLogStatus.COMPLETED
        assert email_repository.by_external_id("b").subject == "Hello b"
