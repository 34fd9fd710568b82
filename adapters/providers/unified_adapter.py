"""
통합 메일 API 제공자 어댑터

여러 메일 서비스를 하나의 REST API로 제공하는 통합 제공자와 통신합니다.
계정은 통합 제공자의 grant ID(external_id)로 식별되며, 인증은 API 키를 사용합니다.
"""

from email.utils import formataddr
from typing import Any, Dict, List, Optional

import httpx

from core.domain.entities import (
    EmailAccount,
    EmailAttachment,
    EmailDraft,
    EmailMessage,
    EmailProvider,
    FetchBatch,
    HistoryChanges,
    PushSubscription,
    SendResult,
    SyncOptions,
)
from core.domain.exceptions import (
    AuthFailed,
    PerMessageProcessingError,
    ProviderError,
    UnsupportedProvider,
)
from core.domain.ports import ConfigPort, LoggerPort
from .base import HttpProviderAdapter, from_epoch

UNIFIED_MAX_LIMIT = 200

WEBHOOK_TRIGGERS = ["message.created", "message.updated", "message.deleted"]


class UnifiedProviderAdapter(HttpProviderAdapter):
    """통합 메일 API 어댑터"""

    provider = EmailProvider.UNIFIED

    def __init__(
        self,
        config: ConfigPort,
        logger: LoggerPort,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config, logger, transport)
        self.base_url = config.get_unified_api_base_url()
        self.api_key = config.get_unified_api_key()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }

    def _forbidden_error(self, error_msg: str, status: int) -> ProviderError:
        # 통합 제공자의 403은 접근 거부
        return AuthFailed(error_msg, status)

    def _grant_id(self, account: EmailAccount) -> str:
        if not account.external_id:
            raise UnsupportedProvider(f"통합 제공자와 연결되지 않은 계정입니다: {account.id}")
        return account.external_id

    async def _call(self, method: str, path: str, context: str, **kwargs) -> httpx.Response:
        return await self._request(
            method, f"{self.base_url}{path}", context, headers=self._headers(), **kwargs
        )

    async def fetch(self, account: EmailAccount, options: SyncOptions) -> FetchBatch:
        """커서 기반으로 페이지를 넘기며 최대 max_emails개까지 조회합니다."""
        grant_id = self._grant_id(account)
        total = options.max_emails or self.config.get_sync_max_emails()
        folder = options.folder_scope or "inbox"

        self.logger.info(f"통합 제공자 메시지 조회: {account.email}, folder={folder}, limit={total}")

        messages: List[EmailMessage] = []
        failed: List[str] = []
        cursor: Optional[str] = None
        exhausted = False
        received = 0

        while received < total:
            params: Dict[str, Any] = {
                "limit": min(UNIFIED_MAX_LIMIT, total - received),
                "in": folder,
            }
            if cursor:
                params["page_token"] = cursor

            response = await self._call(
                "GET", f"/grants/{grant_id}/messages", "메시지 목록 조회", params=params
            )
            payload = response.json()
            items = payload.get("data") or []

            for raw in items[: total - received]:
                received += 1
                try:
                    messages.append(self.parse_message(raw))
                except Exception as e:
                    message_id = raw.get("id") if isinstance(raw, dict) else None
                    self.logger.error(f"메시지 변환 실패: {message_id}, 오류: {str(e)}")
                    failed.append(str(message_id or f"<index {received}>"))

            cursor = payload.get("next_cursor")
            if not cursor or not items:
                exhausted = True
                break

        self.logger.info(
            f"통합 제공자 메시지 조회 완료: {account.email}, 성공 {len(messages)}개, 실패 {len(failed)}개"
        )
        return FetchBatch(
            messages=messages,
            failed_message_ids=failed,
            complete=exhausted,
            scope_label=folder,
        )

    async def get_message(self, account: EmailAccount, message_id: str) -> EmailMessage:
        grant_id = self._grant_id(account)
        response = await self._call("GET", f"/grants/{grant_id}/messages/{message_id}", "메시지 조회")
        return self.parse_message(response.json().get("data") or {})

    def parse_message(self, raw: Dict[str, Any]) -> EmailMessage:
        """통합 제공자 메시지를 정규 메시지로 변환"""
        message_id = str(raw.get("id") or "")
        if not message_id:
            raise PerMessageProcessingError("<unknown>", "메시지 ID가 없습니다")

        senders = _participants(raw.get("from"))
        # 본문은 HTML만 제공되므로 일반 텍스트는 스니펫으로 대신함
        body_html = raw.get("body") or ""
        snippet = raw.get("snippet") or ""

        attachments = []
        for item in raw.get("attachments") or []:
            if not isinstance(item, dict):
                continue
            attachments.append(
                EmailAttachment(
                    filename=item.get("filename") or "",
                    mime_type=item.get("content_type") or "application/octet-stream",
                    size=item.get("size") or 0,
                    attachment_id=item.get("id"),
                )
            )

        date = from_epoch(raw.get("date"))
        return EmailMessage(
            id=message_id,
            thread_id=raw.get("thread_id"),
            from_address=senders[0] if senders else "",
            to=_participants(raw.get("to")),
            cc=_participants(raw.get("cc")),
            bcc=_participants(raw.get("bcc")),
            subject=raw.get("subject") or "",
            body_text=snippet,
            body_html=body_html,
            snippet=snippet,
            date=date,
            labels=_folder_names(raw.get("folders")),
            is_read=not bool(raw.get("unread", False)),
            is_starred=bool(raw.get("starred", False)),
            attachments=attachments,
            internal_date=date,
        )

    async def send(self, account: EmailAccount, draft: EmailDraft) -> SendResult:
        grant_id = self._grant_id(account)
        body: Dict[str, Any] = {
            "to": [{"email": address} for address in draft.to],
            "subject": draft.subject,
            "body": draft.body_html or draft.body_text,
        }
        if draft.cc:
            body["cc"] = [{"email": address} for address in draft.cc]
        if draft.bcc:
            body["bcc"] = [{"email": address} for address in draft.bcc]
        if draft.in_reply_to:
            body["reply_to_message_id"] = draft.in_reply_to

        response = await self._call(
            "POST", f"/grants/{grant_id}/messages/send", "메일 발송", json=body
        )
        data = response.json().get("data") or {}
        self.logger.info(f"메일 발송 완료: {account.email}, id={data.get('id')}")
        return SendResult(message_id=data.get("id") or "", thread_id=data.get("thread_id"))

    async def download_attachment(self, account: EmailAccount, message_id: str, attachment_id: str) -> bytes:
        grant_id = self._grant_id(account)
        response = await self._call(
            "GET",
            f"/grants/{grant_id}/attachments/{attachment_id}/download",
            "첨부파일 다운로드",
            params={"message_id": message_id},
        )
        return response.content

    async def push_changes(self, account: EmailAccount, external_id: str, fields: Dict[str, Any]) -> None:
        grant_id = self._grant_id(account)
        body: Dict[str, Any] = {}
        if "is_read" in fields:
            body["unread"] = not fields["is_read"]
        if "is_starred" in fields:
            body["starred"] = bool(fields["is_starred"])
        if "labels" in fields:
            body["folders"] = list(fields["labels"] or [])
        if not body:
            return

        await self._call(
            "PUT", f"/grants/{grant_id}/messages/{external_id}", "메시지 상태 변경", json=body
        )
        self.logger.debug(f"메시지 상태 변경 완료: {external_id}")

    async def setup_push(self, account: EmailAccount, callback_url: str) -> PushSubscription:
        """메시지 생성/수정/삭제 웹훅을 등록합니다."""
        self._grant_id(account)
        response = await self._call(
            "POST",
            "/webhooks",
            "웹훅 등록",
            json={
                "trigger_types": WEBHOOK_TRIGGERS,
                "webhook_url": callback_url,
                "description": f"mail sync for {account.email}",
            },
        )
        data = response.json().get("data") or {}
        self.logger.info(f"웹훅 등록 완료: {account.email}, id={data.get('id')}")
        return PushSubscription(
            subscription_id=data.get("id"),
            status=data.get("status") or "active",
        )

    async def teardown_push(self, account: EmailAccount) -> None:
        if not account.push_subscription_id:
            self.logger.warning(f"해제할 웹훅이 없습니다: {account.email}")
            return
        await self._call("DELETE", f"/webhooks/{account.push_subscription_id}", "웹훅 삭제")
        self.logger.info(f"웹훅 삭제 완료: {account.email}")

    async def list_history(self, account: EmailAccount, start_history_id: str) -> HistoryChanges:
        raise UnsupportedProvider("통합 제공자는 히스토리 조회를 지원하지 않습니다 (웹훅 델타 사용)")


def _participants(value: Any) -> List[str]:
    addresses = []
    for participant in value or []:
        if isinstance(participant, dict):
            address = participant.get("email") or ""
            name = participant.get("name") or ""
            if address:
                addresses.append(formataddr((name, address)) if name else address)
        elif isinstance(participant, str) and participant:
            addresses.append(participant)
    return addresses


def _folder_names(value: Any) -> List[str]:
    names = []
    for folder in value or []:
        if isinstance(folder, dict):
            name = folder.get("name") or folder.get("id")
            if name:
                names.append(str(name))
        elif isinstance(folder, str) and folder:
            names.append(folder)
    return names
