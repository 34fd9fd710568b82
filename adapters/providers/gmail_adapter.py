"""
Gmail API 제공자 어댑터

OAuth2 액세스 토큰으로 Gmail REST API를 호출합니다.
만료된 토큰은 호출 전에 자동으로 갱신되며, 같은 계정의 동시 갱신은
계정별 잠금으로 한 번만 수행됩니다.
"""

import base64
import binascii
from datetime import datetime, timedelta
from email.message import EmailMessage as MimeMessage
from email.utils import formataddr, getaddresses, parsedate_to_datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx

from core.domain.entities import (
    ChangeType,
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
    WebhookDelta,
)
from core.domain.exceptions import (
    AuthFailed,
    CredentialError,
    PerMessageProcessingError,
    ProviderError,
    QuotaExceeded,
    RateLimited,
    UnsupportedProvider,
)
from core.domain.ports import (
    AccountRepositoryPort,
    ConfigPort,
    EncryptionServicePort,
    LoggerPort,
)
from .base import HttpProviderAdapter, RefreshLockPool, from_epoch, to_naive_utc

GMAIL_PAGE_SIZE = 100
GMAIL_MAX_RESULTS = 500

# 플래그로 표현되는 시스템 라벨
FLAG_LABELS = ("UNREAD", "STARRED")


class GmailProviderAdapter(HttpProviderAdapter):
    """Gmail API 어댑터"""

    provider = EmailProvider.GMAIL

    def __init__(
        self,
        config: ConfigPort,
        account_repository: AccountRepositoryPort,
        encryption_service: EncryptionServicePort,
        logger: LoggerPort,
        refresh_locks: RefreshLockPool,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config, logger, transport)
        self.account_repository = account_repository
        self.encryption_service = encryption_service
        self.refresh_locks = refresh_locks
        self.base_url = config.get_gmail_api_base_url()
        self.token_url = config.get_gmail_token_url()

    # ------------------------------------------------------------------
    # 토큰 관리
    # ------------------------------------------------------------------

    async def _get_access_token(self, account: EmailAccount, rejected: Optional[str] = None) -> str:
        """
        유효한 액세스 토큰을 반환합니다.

        토큰이 만료되었거나 제공자가 거부한 경우, 계정별 잠금 안에서
        저장소의 최신 값을 다시 읽어 다른 요청이 이미 갱신했는지 확인한 뒤
        필요할 때만 갱신합니다.

        Args:
            account: 메일 계정
            rejected: 제공자가 거부한 암호화 토큰 (강제 갱신)

        Returns:
            복호화된 액세스 토큰
        """
        if rejected is None and not account.is_token_expired():
            return await self._decrypt(account.access_token)

        async with self.refresh_locks.get(account.id):
            latest = await self.account_repository.get_by_id(account.id) or account
            if (
                latest.access_token
                and latest.access_token != rejected
                and not latest.is_token_expired()
            ):
                account.apply_credentials(latest.access_token, latest.token_expires_at)
                return await self._decrypt(latest.access_token)

            self.logger.info(f"액세스 토큰 갱신: {account.id}")
            access_token, expires_at = await self._refresh_access_token(latest)

            try:
                encrypted_token = await self.encryption_service.encrypt(access_token)
            except CredentialError as e:
                raise AuthFailed(f"갱신된 토큰 암호화 실패: {e}") from e

            await self.account_repository.update_credentials(account.id, encrypted_token, expires_at)
            account.apply_credentials(encrypted_token, expires_at)
            return access_token

    async def _refresh_access_token(self, account: EmailAccount) -> Tuple[str, datetime]:
        """리프레시 토큰으로 새 액세스 토큰을 발급받습니다."""
        if not account.refresh_token:
            raise AuthFailed(f"리프레시 토큰이 없습니다: {account.id}")

        try:
            refresh_token = await self.encryption_service.decrypt(account.refresh_token)
        except CredentialError as e:
            raise AuthFailed(f"리프레시 토큰 복호화 실패: {account.id}") from e

        data = {
            "client_id": self.config.get_gmail_client_id(),
            "client_secret": self.config.get_gmail_client_secret(),
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

        try:
            response = await self._request(
                "POST",
                self.token_url,
                context="토큰 갱신",
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except ProviderError as e:
            raise AuthFailed(f"토큰 갱신 실패: {e}", e.status_code) from e

        payload = response.json()
        access_token = payload.get("access_token")
        if not access_token:
            raise AuthFailed("토큰 응답에 access_token이 없습니다")

        expires_in = int(payload.get("expires_in") or 3600)
        self.logger.debug("토큰 갱신 성공")
        return access_token, datetime.utcnow() + timedelta(seconds=expires_in)

    async def _decrypt(self, encrypted: Optional[str]) -> str:
        try:
            return await self.encryption_service.decrypt(encrypted or "")
        except CredentialError as e:
            raise AuthFailed("액세스 토큰 복호화 실패") from e

    async def _authorized(
        self,
        account: EmailAccount,
        method: str,
        path: str,
        context: str,
        **kwargs,
    ) -> httpx.Response:
        """인증 헤더를 붙여 요청하고, 401이면 토큰을 갱신해 한 번 재시도합니다."""
        url = f"{self.base_url}{path}"
        token = await self._get_access_token(account)
        used_token = account.access_token

        try:
            return await self._request(method, url, context, headers=self._headers(token), **kwargs)
        except AuthFailed:
            if not account.refresh_token:
                raise
            self.logger.warning(f"토큰이 거부되어 갱신 후 재시도: {account.id}")
            token = await self._get_access_token(account, rejected=used_token)
            return await self._request(method, url, context, headers=self._headers(token), **kwargs)

    def _headers(self, access_token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

    # ------------------------------------------------------------------
    # 메시지 조회
    # ------------------------------------------------------------------

    async def fetch(self, account: EmailAccount, options: SyncOptions) -> FetchBatch:
        """
        메시지 ID 목록을 페이지 단위로 조회한 뒤 각 메시지를 full 포맷으로 가져옵니다.

        개별 메시지 조회 실패는 failed_message_ids로 기록되고 나머지는 계속 처리됩니다.
        인증/할당량/요청 한도 오류는 실행 전체를 중단시킵니다.
        """
        limit = min(options.max_emails or self.config.get_sync_max_emails(), GMAIL_MAX_RESULTS)
        folder = options.folder_scope or "inbox"
        query = f"in:{folder}"

        self.logger.info(f"Gmail 메시지 목록 조회: {account.email}, q={query}, limit={limit}")

        message_ids: List[str] = []
        page_token: Optional[str] = None
        exhausted = False

        while len(message_ids) < limit:
            params: Dict[str, Any] = {
                "maxResults": min(GMAIL_PAGE_SIZE, limit - len(message_ids)),
                "q": query,
            }
            if page_token:
                params["pageToken"] = page_token

            response = await self._authorized(
                account, "GET", "/users/me/messages", "메시지 목록 조회", params=params
            )
            payload = response.json()

            for item in payload.get("messages") or []:
                if item.get("id"):
                    message_ids.append(item["id"])

            page_token = payload.get("nextPageToken")
            if not page_token:
                exhausted = True
                break

        messages: List[EmailMessage] = []
        failed: List[str] = []
        for message_id in message_ids[:limit]:
            try:
                messages.append(await self.get_message(account, message_id))
            except (AuthFailed, QuotaExceeded, RateLimited):
                raise
            except Exception as e:
                self.logger.error(f"메시지 조회 실패: {message_id}, 오류: {str(e)}")
                failed.append(message_id)

        self.logger.info(
            f"Gmail 메시지 조회 완료: {account.email}, 성공 {len(messages)}개, 실패 {len(failed)}개"
        )
        return FetchBatch(
            messages=messages,
            failed_message_ids=failed,
            complete=exhausted,
            scope_label=folder,
        )

    async def get_message(self, account: EmailAccount, message_id: str) -> EmailMessage:
        response = await self._authorized(
            account,
            "GET",
            f"/users/me/messages/{message_id}",
            "메시지 조회",
            params={"format": "full"},
        )
        return self.parse_message(response.json())

    def parse_message(self, raw: Dict[str, Any]) -> EmailMessage:
        """Gmail 메시지를 정규 메시지로 변환 (누락된 값은 빈 값으로 대체)"""
        message_id = str(raw.get("id") or "")
        if not message_id:
            raise PerMessageProcessingError("<unknown>", "메시지 ID가 없습니다")

        payload = raw.get("payload") or {}
        headers: Dict[str, str] = {}
        for header in payload.get("headers") or []:
            name = (header.get("name") or "").lower()
            if name and name not in headers:
                headers[name] = header.get("value") or ""

        label_ids = [label for label in raw.get("labelIds") or [] if isinstance(label, str)]
        parts = {"text": "", "html": ""}
        attachments: List[EmailAttachment] = []
        _walk_parts(payload, parts, attachments)

        internal_date = from_epoch(raw.get("internalDate"), millis=True)

        return EmailMessage(
            id=message_id,
            thread_id=raw.get("threadId"),
            from_address=headers.get("from", ""),
            to=_split_addresses(headers.get("to")),
            cc=_split_addresses(headers.get("cc")),
            bcc=_split_addresses(headers.get("bcc")),
            subject=headers.get("subject", ""),
            body_text=parts["text"],
            body_html=parts["html"],
            snippet=raw.get("snippet") or "",
            date=_parse_date(headers.get("date")) or internal_date,
            labels=[label for label in label_ids if label not in FLAG_LABELS],
            is_read="UNREAD" not in label_ids,
            is_starred="STARRED" in label_ids,
            attachments=attachments,
            internal_date=internal_date,
        )

    # ------------------------------------------------------------------
    # 발송 / 첨부파일 / 상태 반영
    # ------------------------------------------------------------------

    async def send(self, account: EmailAccount, draft: EmailDraft) -> SendResult:
        """RFC 2822 메시지를 만들어 base64url raw로 발송합니다."""
        mime = MimeMessage()
        mime["From"] = account.email
        mime["To"] = ", ".join(draft.to)
        if draft.cc:
            mime["Cc"] = ", ".join(draft.cc)
        if draft.bcc:
            mime["Bcc"] = ", ".join(draft.bcc)
        mime["Subject"] = draft.subject
        if draft.in_reply_to:
            mime["In-Reply-To"] = draft.in_reply_to
            mime["References"] = draft.in_reply_to
        mime.set_content(draft.body_text or "")
        if draft.body_html:
            mime.add_alternative(draft.body_html, subtype="html")

        body: Dict[str, Any] = {"raw": base64.urlsafe_b64encode(mime.as_bytes()).decode()}
        if draft.thread_id:
            body["threadId"] = draft.thread_id

        response = await self._authorized(
            account, "POST", "/users/me/messages/send", "메일 발송", json=body
        )
        payload = response.json()
        self.logger.info(f"메일 발송 완료: {account.email}, id={payload.get('id')}")
        return SendResult(message_id=payload.get("id") or "", thread_id=payload.get("threadId"))

    async def download_attachment(self, account: EmailAccount, message_id: str, attachment_id: str) -> bytes:
        response = await self._authorized(
            account,
            "GET",
            f"/users/me/messages/{message_id}/attachments/{attachment_id}",
            "첨부파일 다운로드",
        )
        data = response.json().get("data") or ""
        try:
            return _b64url_bytes(data)
        except (binascii.Error, ValueError) as e:
            raise ProviderError(f"첨부파일 디코딩 실패: {attachment_id}") from e

    async def push_changes(self, account: EmailAccount, external_id: str, fields: Dict[str, Any]) -> None:
        """읽음/별표/라벨 상태를 라벨 추가/제거로 반영합니다."""
        add_labels: List[str] = []
        remove_labels: List[str] = []

        if "is_read" in fields:
            (remove_labels if fields["is_read"] else add_labels).append("UNREAD")
        if "is_starred" in fields:
            (add_labels if fields["is_starred"] else remove_labels).append("STARRED")
        if "labels" in fields:
            current = await self.get_message(account, external_id)
            desired = [label for label in fields["labels"] or [] if label not in FLAG_LABELS]
            add_labels.extend(label for label in desired if label not in current.labels)
            remove_labels.extend(label for label in current.labels if label not in desired)

        if not add_labels and not remove_labels:
            return

        await self._authorized(
            account,
            "POST",
            f"/users/me/messages/{external_id}/modify",
            "라벨 변경",
            json={"addLabelIds": add_labels, "removeLabelIds": remove_labels},
        )
        self.logger.debug(f"라벨 변경 완료: {external_id}, +{add_labels} -{remove_labels}")

    # ------------------------------------------------------------------
    # 푸시 알림
    # ------------------------------------------------------------------

    async def setup_push(self, account: EmailAccount, callback_url: str) -> PushSubscription:
        """
        Pub/Sub 토픽으로 메일함 변경 알림을 구독합니다.

        콜백 URL은 Pub/Sub 푸시 구독 쪽에서 설정되므로 여기서는 기록만 합니다.
        """
        topic = self.config.get_gmail_pubsub_topic()
        if not topic:
            raise UnsupportedProvider("Gmail Pub/Sub 토픽이 설정되지 않았습니다")

        response = await self._authorized(
            account,
            "POST",
            "/users/me/watch",
            "푸시 구독 설정",
            json={"topicName": topic, "labelIds": ["INBOX"], "labelFilterBehavior": "INCLUDE"},
        )
        payload = response.json()
        self.logger.info(f"Gmail 푸시 구독 설정: {account.email}, 콜백={callback_url}")

        history_id = payload.get("historyId")
        return PushSubscription(
            subscription_id=topic,
            status="active",
            history_id=str(history_id) if history_id else None,
            expires_at=from_epoch(payload.get("expiration"), millis=True),
        )

    async def teardown_push(self, account: EmailAccount) -> None:
        await self._authorized(account, "POST", "/users/me/stop", "푸시 구독 해제")
        self.logger.info(f"Gmail 푸시 구독 해제: {account.email}")

    async def list_history(self, account: EmailAccount, start_history_id: str) -> HistoryChanges:
        """히스토리 ID 이후의 추가/삭제/라벨 변경을 델타로 변환합니다."""
        changes: Dict[str, ChangeType] = {}
        latest_history_id: Optional[str] = None
        page_token: Optional[str] = None

        while True:
            params: Dict[str, Any] = {
                "startHistoryId": start_history_id,
                "historyTypes": ["messageAdded", "messageDeleted", "labelAdded", "labelRemoved"],
            }
            if page_token:
                params["pageToken"] = page_token

            response = await self._authorized(
                account, "GET", "/users/me/history", "히스토리 조회", params=params
            )
            payload = response.json()

            for record in payload.get("history") or []:
                for item in record.get("messagesAdded") or []:
                    message_id = (item.get("message") or {}).get("id")
                    if message_id:
                        changes[message_id] = ChangeType.CREATED
                for item in record.get("messagesDeleted") or []:
                    message_id = (item.get("message") or {}).get("id")
                    if message_id:
                        changes[message_id] = ChangeType.DELETED
                for key in ("labelsAdded", "labelsRemoved"):
                    for item in record.get(key) or []:
                        message_id = (item.get("message") or {}).get("id")
                        if message_id and message_id not in changes:
                            changes[message_id] = ChangeType.UPDATED

            if payload.get("historyId"):
                latest_history_id = str(payload["historyId"])
            page_token = payload.get("nextPageToken")
            if not page_token:
                break

        deltas: List[WebhookDelta] = []
        for message_id, change_type in changes.items():
            if change_type == ChangeType.DELETED:
                deltas.append(WebhookDelta(change_type=change_type, external_id=message_id))
                continue
            try:
                message = await self.get_message(account, message_id)
            except (AuthFailed, QuotaExceeded, RateLimited):
                raise
            except Exception as e:
                self.logger.error(f"히스토리 메시지 조회 실패: {message_id}, 오류: {str(e)}")
                continue
            deltas.append(WebhookDelta(change_type=change_type, external_id=message_id, message=message))

        return HistoryChanges(deltas=deltas, history_id=latest_history_id or start_history_id)


def _walk_parts(part: Dict[str, Any], bodies: Dict[str, str], attachments: List[EmailAttachment]) -> None:
    """MIME 파트 트리를 순회하며 본문과 첨부파일 메타데이터를 수집"""
    mime_type = (part.get("mimeType") or "").lower()
    body = part.get("body") or {}
    filename = part.get("filename") or ""

    if filename and (body.get("attachmentId") or body.get("data")):
        attachments.append(
            EmailAttachment(
                filename=filename,
                mime_type=mime_type or "application/octet-stream",
                size=_as_int(body.get("size")),
                attachment_id=body.get("attachmentId"),
            )
        )
    elif mime_type == "text/plain" and body.get("data") and not bodies["text"]:
        bodies["text"] = _b64url_text(body["data"])
    elif mime_type == "text/html" and body.get("data") and not bodies["html"]:
        bodies["html"] = _b64url_text(body["data"])

    for child in part.get("parts") or []:
        if isinstance(child, dict):
            _walk_parts(child, bodies, attachments)


def _b64url_bytes(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _b64url_text(data: str) -> str:
    try:
        return _b64url_bytes(data).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return ""


def _split_addresses(value: Optional[str]) -> List[str]:
    if not value:
        return []
    addresses = []
    for name, address in getaddresses([value]):
        if address:
            addresses.append(formataddr((name, address)) if name else address)
    return addresses


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return to_naive_utc(parsedate_to_datetime(value))
    except (TypeError, ValueError, IndexError):
        return None


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
