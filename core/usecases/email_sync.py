"""
메일 동기화 유즈케이스 (Sync Orchestrator)

계정 단위로 동기화를 실행합니다.
- 같은 계정에 대해 동시에 하나의 실행만 진행되며, 중복 요청은 진행 중인 실행 결과를 공유합니다.
- 실행마다 동기화 로그를 만들고 성공/실패와 관계없이 반드시 종료 처리합니다.
- 실행 전체 실패는 계정 상태를 error로 바꾸고 호출자에게 다시 던집니다.
"""

import asyncio
import traceback
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from ..domain.entities import (
    AccountSyncStatus,
    ConflictResolution,
    EmailAccount,
    EmailDraft,
    EmailProvider,
    PushSubscription,
    SendResult,
    SyncLog,
    SyncLogStatus,
    SyncOptions,
    SyncResult,
    SyncType,
    WebhookResult,
)
from ..domain.exceptions import AccountInactive, AccountNotFound, RealTimeSyncError
from ..domain.ports import (
    AccountRepositoryPort,
    LoggerPort,
    SyncLogRepositoryPort,
)
from .adapter_selection import AdapterSelector
from .reconciliation import Reconciler
from .webhook_ingestion import WebhookIngestor


class InFlightSyncRegistry:
    """계정 ID별 진행 중인 동기화 실행 목록"""

    def __init__(self):
        self._runs: Dict[UUID, "asyncio.Task[SyncResult]"] = {}

    def get(self, account_id: UUID) -> Optional["asyncio.Task[SyncResult]"]:
        task = self._runs.get(account_id)
        if task is None or task.done():
            return None
        return task

    def register(self, account_id: UUID, task: "asyncio.Task[SyncResult]") -> None:
        """실행을 등록합니다. 실행이 끝나면(성공/실패 모두) 자동으로 제거됩니다."""
        self._runs[account_id] = task
        task.add_done_callback(lambda finished: self._release(account_id, finished))

    def _release(self, account_id: UUID, task: "asyncio.Task[SyncResult]") -> None:
        if self._runs.get(account_id) is task:
            del self._runs[account_id]

    def __contains__(self, account_id: UUID) -> bool:
        return self.get(account_id) is not None

    def __len__(self) -> int:
        return sum(1 for task in self._runs.values() if not task.done())


class EmailSyncUseCase:
    """메일 동기화 유즈케이스"""

    def __init__(
        self,
        account_repository: AccountRepositoryPort,
        sync_log_repository: SyncLogRepositoryPort,
        reconciler: Reconciler,
        adapter_selector: AdapterSelector,
        in_flight: InFlightSyncRegistry,
        webhook_ingestor: WebhookIngestor,
        logger: LoggerPort,
        webhook_base_url: str = "",
        default_resolution: Optional[ConflictResolution] = None,
        default_max_emails: int = 100,
    ):
        self.account_repository = account_repository
        self.sync_log_repository = sync_log_repository
        self.reconciler = reconciler
        self.adapter_selector = adapter_selector
        self.in_flight = in_flight
        self.webhook_ingestor = webhook_ingestor
        self.logger = logger
        self.webhook_base_url = webhook_base_url.rstrip("/")
        self.default_resolution = default_resolution
        self.default_max_emails = default_max_emails

    async def sync_account(self, account_id: UUID, options: Optional[SyncOptions] = None) -> SyncResult:
        """
        계정의 메일을 동기화합니다.

        같은 계정의 동기화가 이미 진행 중이면 새로 시작하지 않고
        진행 중인 실행의 결과(동일 객체)를 반환합니다.

        Args:
            account_id: 계정 ID
            options: 동기화 옵션 (없으면 계정 설정 사용)

        Returns:
            동기화 결과

        Raises:
            AccountNotFound: 계정이 없는 경우
            AccountInactive: 계정이 활성 상태가 아닌 경우
            SyncEngineError: 실행 전체가 실패한 경우
        """
        task = self.in_flight.get(account_id)
        if task is not None:
            self.logger.info(f"진행 중인 동기화에 합류: {account_id}")
        else:
            task = asyncio.ensure_future(self._perform_sync(account_id, options))
            self.in_flight.register(account_id, task)

        # 한 호출자가 취소되어도 실행 자체는 계속됨
        return await asyncio.shield(task)

    async def _perform_sync(self, account_id: UUID, options: Optional[SyncOptions]) -> SyncResult:
        account = await self._get_active_account(account_id)
        resolved = self._resolve_options(account, options)
        sync_type = SyncType.FULL if resolved.full_sync else SyncType.INCREMENTAL

        started_at = datetime.utcnow()
        sync_log = await self.sync_log_repository.create(account.id, sync_type)
        self.logger.info(f"메일 동기화 시작: {account.email} ({sync_type.value}, 최대 {resolved.max_emails}개)")

        try:
            await self.account_repository.update_sync_status(account.id, AccountSyncStatus.SYNCING)

            adapter = self.adapter_selector.select(account, resolved.preferred_adapter)
            batch = await adapter.fetch(account, resolved)

            counters = await self.reconciler.reconcile(
                account,
                batch,
                resolution=resolved.conflict_resolution,
                detect_conflicts=resolved.detect_conflicts,
                adapter=adapter,
            )
            if resolved.full_sync:
                await self.reconciler.reconcile_deletions(
                    account,
                    batch,
                    counters,
                    resolution=resolved.conflict_resolution,
                    detect_conflicts=resolved.detect_conflicts,
                    adapter=adapter,
                )

            result = SyncResult(
                account_id=account.id,
                success=counters.errors == 0,
                emails_processed=counters.processed,
                emails_added=counters.added,
                emails_updated=counters.updated,
                emails_unchanged=counters.unchanged,
                emails_deleted=counters.deleted,
                conflicts_detected=counters.conflicts,
                errors_count=counters.errors,
                started_at=started_at,
                completed_at=datetime.utcnow(),
            )

            await self.sync_log_repository.finalize(sync_log.id, SyncLogStatus.COMPLETED, result=result)
            await self.account_repository.update_sync_status(account.id, AccountSyncStatus.IDLE)
            await self.account_repository.update_last_sync(account.id, result.completed_at)

            self.logger.info(
                f"메일 동기화 완료: {account.email}, 처리 {result.emails_processed}, "
                f"추가 {result.emails_added}, 업데이트 {result.emails_updated}, "
                f"삭제 {result.emails_deleted}, 오류 {result.errors_count}"
            )
            return result

        except Exception as e:
            self.logger.error(f"메일 동기화 실패: {account.email}, 오류: {str(e)}")
            await self._fail_run(account, sync_log, e)
            raise

    async def _fail_run(self, account: EmailAccount, sync_log: SyncLog, error: Exception) -> None:
        """실패한 실행의 로그와 계정 상태를 정리합니다. 정리 중 오류는 원래 오류를 가리지 않습니다."""
        try:
            await self.sync_log_repository.finalize(
                sync_log.id,
                SyncLogStatus.FAILED,
                error_message=str(error) or error.__class__.__name__,
                error_detail=traceback.format_exc(),
            )
        except Exception as e:
            self.logger.error(f"동기화 로그 종료 처리 실패: {sync_log.id}, 오류: {str(e)}")

        try:
            await self.account_repository.update_sync_status(
                account.id, AccountSyncStatus.ERROR, str(error) or error.__class__.__name__
            )
        except Exception as e:
            self.logger.error(f"계정 상태 갱신 실패: {account.id}, 오류: {str(e)}")

    def _resolve_options(self, account: EmailAccount, options: Optional[SyncOptions]) -> SyncOptions:
        """비어 있는 옵션을 계정 설정과 전역 기본값으로 채웁니다."""
        options = options or SyncOptions()
        updates: Dict[str, Any] = {}

        if options.full_sync is None:
            updates["full_sync"] = account.full_sync
        if options.max_emails is None:
            updates["max_emails"] = account.max_emails or self.default_max_emails
        if options.folder_scope is None and account.folder_scope:
            updates["folder_scope"] = account.folder_scope
        if options.conflict_resolution is None and self.default_resolution is not None:
            updates["conflict_resolution"] = self.default_resolution

        return options.model_copy(update=updates)

    async def _get_active_account(self, account_id: UUID) -> EmailAccount:
        account = await self.account_repository.get_by_id(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        if not account.is_active():
            raise AccountInactive(account_id, account.status.value)
        return account

    async def process_webhook_notification(
        self,
        provider_kind: Union[EmailProvider, str],
        payload: Any,
    ) -> WebhookResult:
        """푸시 알림 처리 (예외를 던지지 않음)"""
        return await self.webhook_ingestor.process_notification(provider_kind, payload)

    async def start_real_time_sync(self, account_id: UUID) -> PushSubscription:
        """
        푸시 구독을 생성합니다.

        Raises:
            RealTimeSyncError: 제공자 구독 생성이 실패한 경우
        """
        account = await self._get_active_account(account_id)

        try:
            adapter = self.adapter_selector.select(account)
            callback_url = f"{self.webhook_base_url}/webhooks/{adapter.provider.value}"
            subscription = await adapter.setup_push(account, callback_url)
        except Exception as e:
            self.logger.error(f"실시간 동기화 시작 실패: {account.email}, 오류: {str(e)}")
            raise RealTimeSyncError(f"실시간 동기화 시작 실패: {account.email}, {str(e)}") from e

        if subscription.status != "unsupported":
            await self.account_repository.update_push_state(
                account.id,
                subscription.subscription_id,
                subscription.history_id or account.history_id,
            )
        self.logger.info(f"실시간 동기화 시작: {account.email}, 상태={subscription.status}")
        return subscription

    async def stop_real_time_sync(self, account_id: UUID) -> None:
        """
        푸시 구독을 해제합니다.

        Raises:
            RealTimeSyncError: 제공자 구독 해제가 실패한 경우
        """
        account = await self._get_active_account(account_id)

        try:
            adapter = self.adapter_selector.select(account)
            await adapter.teardown_push(account)
        except Exception as e:
            self.logger.error(f"실시간 동기화 중지 실패: {account.email}, 오류: {str(e)}")
            raise RealTimeSyncError(f"실시간 동기화 중지 실패: {account.email}, {str(e)}") from e

        await self.account_repository.update_push_state(account.id, None, account.history_id)
        self.logger.info(f"실시간 동기화 중지: {account.email}")

    async def send_email(self, account_id: UUID, draft: EmailDraft) -> SendResult:
        account = await self._get_active_account(account_id)
        adapter = self.adapter_selector.select(account)
        result = await adapter.send(account, draft)
        self.logger.info(f"메일 발송 완료: {account.email}, 메시지 ID: {result.message_id}")
        return result

    async def download_attachment(self, account_id: UUID, message_id: str, attachment_id: str) -> bytes:
        """첨부파일 내용을 제공자에서 직접 내려받습니다 (동기화와 별도)."""
        account = await self._get_active_account(account_id)
        adapter = self.adapter_selector.select(account)
        return await adapter.download_attachment(account, message_id, attachment_id)

    async def list_sync_logs(self, account_id: UUID, limit: int = 20) -> List[SyncLog]:
        account = await self.account_repository.get_by_id(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return await self.sync_log_repository.list_by_account(account.id, limit=limit)
