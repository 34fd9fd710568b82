"""
미구현 제공자 어댑터

Exchange/IMAP은 아직 구현되지 않았습니다. 기본 설정에서는 조회와 푸시 설정이
아무 효과 없는 결과를 반환하고, strict 모드에서는 UnsupportedProvider로 즉시 실패합니다.
"""

from typing import Any, Dict

from core.domain.entities import (
    EmailAccount,
    EmailDraft,
    EmailMessage,
    EmailProvider,
    FetchBatch,
    HistoryChanges,
    PushSubscription,
    SendResult,
    SyncOptions,
)
from core.domain.exceptions import UnsupportedProvider
from core.domain.ports import EmailProviderPort, LoggerPort


class UnimplementedProviderAdapter(EmailProviderPort):
    """미구현 제공자 공통 동작"""

    provider: EmailProvider

    def __init__(self, logger: LoggerPort, strict: bool = False):
        self.logger = logger
        self.strict = strict

    def _unsupported(self, operation: str) -> UnsupportedProvider:
        return UnsupportedProvider(f"{self.provider.value} 제공자는 {operation}을(를) 지원하지 않습니다")

    async def fetch(self, account: EmailAccount, options: SyncOptions) -> FetchBatch:
        if self.strict:
            raise self._unsupported("동기화")
        self.logger.warning(f"{self.provider.value} 동기화는 아직 구현되지 않았습니다: {account.email}")
        # complete=False: 빈 목록으로 로컬 메일이 삭제되지 않도록
        return FetchBatch(messages=[], complete=False)

    async def setup_push(self, account: EmailAccount, callback_url: str) -> PushSubscription:
        if self.strict:
            raise self._unsupported("푸시 알림")
        self.logger.warning(f"{self.provider.value} 푸시 알림은 아직 구현되지 않았습니다: {account.email}")
        return PushSubscription(subscription_id=None, status="unsupported")

    async def teardown_push(self, account: EmailAccount) -> None:
        if self.strict:
            raise self._unsupported("푸시 알림")

    async def get_message(self, account: EmailAccount, message_id: str) -> EmailMessage:
        raise self._unsupported("메시지 조회")

    def parse_message(self, raw: Dict[str, Any]) -> EmailMessage:
        raise self._unsupported("메시지 변환")

    async def send(self, account: EmailAccount, draft: EmailDraft) -> SendResult:
        raise self._unsupported("메일 발송")

    async def download_attachment(self, account: EmailAccount, message_id: str, attachment_id: str) -> bytes:
        raise self._unsupported("첨부파일 다운로드")

    async def push_changes(self, account: EmailAccount, external_id: str, fields: Dict[str, Any]) -> None:
        raise self._unsupported("상태 반영")

    async def list_history(self, account: EmailAccount, start_history_id: str) -> HistoryChanges:
        raise self._unsupported("히스토리 조회")


class ExchangeProviderAdapter(UnimplementedProviderAdapter):
    provider = EmailProvider.EXCHANGE


class ImapProviderAdapter(UnimplementedProviderAdapter):
    provider = EmailProvider.IMAP
