"""
제공자 어댑터 레지스트리

제공자 종류별 어댑터 생성 함수를 등록해 두고, 생성 시점에 한 번
{제공자: 어댑터} 매핑을 만들어 Core의 어댑터 선택기에 전달합니다.
"""

from typing import Callable, Dict, List, Optional

import httpx

from core.domain.entities import EmailProvider
from core.domain.ports import (
    AccountRepositoryPort,
    ConfigPort,
    EmailProviderPort,
    EncryptionServicePort,
    LoggerPort,
)
from .base import RefreshLockPool
from .gmail_adapter import GmailProviderAdapter
from .stub_adapters import ExchangeProviderAdapter, ImapProviderAdapter
from .unified_adapter import UnifiedProviderAdapter


class ProviderContext:
    """어댑터 생성에 필요한 의존성 묶음"""

    def __init__(
        self,
        config: ConfigPort,
        account_repository: AccountRepositoryPort,
        encryption_service: EncryptionServicePort,
        logger: LoggerPort,
        refresh_locks: RefreshLockPool,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.account_repository = account_repository
        self.encryption_service = encryption_service
        self.logger = logger
        self.refresh_locks = refresh_locks
        self.transport = transport


ProviderBuilder = Callable[[ProviderContext], EmailProviderPort]

# 제공자 종류 -> 어댑터 생성 함수
_provider_registry: Dict[EmailProvider, ProviderBuilder] = {}


def register_provider(provider: EmailProvider):
    """
    어댑터 생성 함수를 등록하는 데코레이터

    사용 예:
        @register_provider(EmailProvider.GMAIL)
        def _build_gmail(context):
            ...
    """
    def decorator(builder: ProviderBuilder) -> ProviderBuilder:
        _provider_registry[provider] = builder
        return builder
    return decorator


def list_registered_providers() -> List[EmailProvider]:
    """등록된 제공자 목록"""
    return list(_provider_registry.keys())


def create_provider_adapters(context: ProviderContext) -> Dict[EmailProvider, EmailProviderPort]:
    """등록된 모든 제공자의 어댑터를 생성합니다."""
    return {provider: builder(context) for provider, builder in _provider_registry.items()}


@register_provider(EmailProvider.GMAIL)
def _build_gmail(context: ProviderContext) -> EmailProviderPort:
    return GmailProviderAdapter(
        config=context.config,
        account_repository=context.account_repository,
        encryption_service=context.encryption_service,
        logger=context.logger,
        refresh_locks=context.refresh_locks,
        transport=context.transport,
    )


@register_provider(EmailProvider.UNIFIED)
def _build_unified(context: ProviderContext) -> EmailProviderPort:
    return UnifiedProviderAdapter(
        config=context.config,
        logger=context.logger,
        transport=context.transport,
    )


@register_provider(EmailProvider.EXCHANGE)
def _build_exchange(context: ProviderContext) -> EmailProviderPort:
    return ExchangeProviderAdapter(
        logger=context.logger,
        strict=context.config.is_strict_unimplemented_providers(),
    )


@register_provider(EmailProvider.IMAP)
def _build_imap(context: ProviderContext) -> EmailProviderPort:
    return ImapProviderAdapter(
        logger=context.logger,
        strict=context.config.is_strict_unimplemented_providers(),
    )
