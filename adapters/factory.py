"""
어댑터 팩토리

모든 어댑터들을 생성하고 의존성을 주입하는 팩토리 클래스입니다.
클린 아키텍처의 의존성 역전 원칙을 구현합니다.

세션에 묶이지 않는 객체(로거, 암호화 서비스, 토큰 갱신 잠금, 진행 중 동기화 목록)는
팩토리에 캐시되어 프로세스 전체에서 공유됩니다.
"""

from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.entities import ConflictResolution
from core.domain.ports import (
    AccountRepositoryPort,
    ConfigPort,
    EmailRepositoryPort,
    EncryptionServicePort,
    LoggerPort,
    SyncConflictRepositoryPort,
    SyncLogRepositoryPort,
)
from core.usecases.adapter_selection import AdapterSelector
from core.usecases.conflict_resolution import ConflictResolutionUseCase, ConflictResolver
from core.usecases.email_sync import EmailSyncUseCase, InFlightSyncRegistry
from core.usecases.reconciliation import Reconciler
from core.usecases.webhook_ingestion import WebhookIngestor

from .db.repositories import (
    AccountRepositoryAdapter,
    EmailRepositoryAdapter,
    SyncConflictRepositoryAdapter,
    SyncLogRepositoryAdapter,
)
from .external.encryption_service import EncryptionServiceAdapter
from .logger import LoggerAdapter
from .providers import ProviderContext, RefreshLockPool, create_provider_adapters
from config.adapters import get_config


class AdapterFactory:
    """어댑터 팩토리"""

    def __init__(
        self,
        config: Optional[ConfigPort] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or get_config()
        # 제공자 HTTP 전송 계층 (테스트에서 MockTransport 주입)
        self.transport = transport
        self._logger: Optional[LoggerPort] = None
        self._encryption_service: Optional[EncryptionServicePort] = None
        self._refresh_locks = RefreshLockPool()
        self._in_flight = InFlightSyncRegistry()

    def create_logger(self) -> LoggerPort:
        """로거 어댑터를 생성합니다."""
        if self._logger is None:
            self._logger = LoggerAdapter(
                name="mailsync",
                level=self.config.get_log_level(),
                format_string=self.config.get_log_format(),
            )
        return self._logger

    def create_encryption_service(self) -> EncryptionServicePort:
        """암호화 서비스 어댑터를 생성합니다."""
        if self._encryption_service is None:
            logger = self.create_logger()
            self._encryption_service = EncryptionServiceAdapter(
                encryption_key=self.config.get_encryption_key(),
                logger=logger,
            )
        return self._encryption_service

    def get_in_flight_registry(self) -> InFlightSyncRegistry:
        """프로세스 전역 진행 중 동기화 목록"""
        return self._in_flight

    def create_account_repository(self, session: AsyncSession) -> AccountRepositoryPort:
        """계정 Repository 어댑터를 생성합니다."""
        return AccountRepositoryAdapter(session)

    def create_email_repository(self, session: AsyncSession) -> EmailRepositoryPort:
        """메일 Repository 어댑터를 생성합니다."""
        return EmailRepositoryAdapter(session)

    def create_sync_log_repository(self, session: AsyncSession) -> SyncLogRepositoryPort:
        """동기화 로그 Repository 어댑터를 생성합니다."""
        return SyncLogRepositoryAdapter(session)

    def create_conflict_repository(self, session: AsyncSession) -> SyncConflictRepositoryPort:
        """충돌 Repository 어댑터를 생성합니다."""
        return SyncConflictRepositoryAdapter(session)

    def create_adapter_selector(self, session: AsyncSession) -> AdapterSelector:
        """제공자 어댑터 선택기를 생성합니다."""
        context = ProviderContext(
            config=self.config,
            account_repository=self.create_account_repository(session),
            encryption_service=self.create_encryption_service(),
            logger=self.create_logger(),
            refresh_locks=self._refresh_locks,
            transport=self.transport,
        )
        return AdapterSelector(
            create_provider_adapters(context),
            prefer_unified=self.config.is_unified_preferred(),
        )

    def create_conflict_resolver(self, session: AsyncSession) -> ConflictResolver:
        return ConflictResolver(
            email_repository=self.create_email_repository(session),
            conflict_repository=self.create_conflict_repository(session),
            logger=self.create_logger(),
        )

    def create_reconciler(self, session: AsyncSession) -> Reconciler:
        return Reconciler(
            email_repository=self.create_email_repository(session),
            conflict_resolver=self.create_conflict_resolver(session),
            logger=self.create_logger(),
        )

    def create_webhook_ingestor(self, session: AsyncSession) -> WebhookIngestor:
        """웹훅 수신 처리기를 생성합니다."""
        return WebhookIngestor(
            account_repository=self.create_account_repository(session),
            reconciler=self.create_reconciler(session),
            adapter_selector=self.create_adapter_selector(session),
            logger=self.create_logger(),
        )

    def create_email_sync_usecase(self, session: AsyncSession) -> EmailSyncUseCase:
        """메일 동기화 유즈케이스를 생성합니다."""
        default_resolution = self.config.get_default_conflict_resolution()

        return EmailSyncUseCase(
            account_repository=self.create_account_repository(session),
            sync_log_repository=self.create_sync_log_repository(session),
            reconciler=self.create_reconciler(session),
            adapter_selector=self.create_adapter_selector(session),
            in_flight=self._in_flight,
            webhook_ingestor=self.create_webhook_ingestor(session),
            logger=self.create_logger(),
            webhook_base_url=self.config.get_webhook_base_url(),
            default_resolution=ConflictResolution(default_resolution) if default_resolution else None,
            default_max_emails=self.config.get_sync_max_emails(),
        )

    def create_conflict_resolution_usecase(self, session: AsyncSession) -> ConflictResolutionUseCase:
        """충돌 해결 유즈케이스를 생성합니다."""
        return ConflictResolutionUseCase(
            conflict_repository=self.create_conflict_repository(session),
            account_repository=self.create_account_repository(session),
            resolver=self.create_conflict_resolver(session),
            adapter_selector=self.create_adapter_selector(session),
            logger=self.create_logger(),
        )

    def get_config(self) -> ConfigPort:
        """설정 객체를 반환합니다."""
        return self.config


# 전역 팩토리 인스턴스
_factory: Optional[AdapterFactory] = None


def get_adapter_factory() -> AdapterFactory:
    """전역 어댑터 팩토리 인스턴스를 반환합니다."""
    global _factory
    if _factory is None:
        _factory = AdapterFactory()
    return _factory


def initialize_adapter_factory(
    config: Optional[ConfigPort] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AdapterFactory:
    """어댑터 팩토리를 초기화합니다."""
    global _factory
    _factory = AdapterFactory(config, transport)
    return _factory
