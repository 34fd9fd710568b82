"""
메일 제공자 어댑터 패키지

Gmail, 통합 메일 API, 미구현(Exchange/IMAP) 어댑터와 레지스트리를 포함합니다.
"""

from .base import RefreshLockPool
from .gmail_adapter import GmailProviderAdapter
from .registry import ProviderContext, create_provider_adapters
from .stub_adapters import ExchangeProviderAdapter, ImapProviderAdapter
from .unified_adapter import UnifiedProviderAdapter

__all__ = [
    "RefreshLockPool",
    "GmailProviderAdapter",
    "UnifiedProviderAdapter",
    "ExchangeProviderAdapter",
    "ImapProviderAdapter",
    "ProviderContext",
    "create_provider_adapters",
]
