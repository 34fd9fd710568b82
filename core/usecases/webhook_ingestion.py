"""
웹훅 수신 유즈케이스

제공자별 푸시 알림을 정규 델타로 디코딩한 뒤 조정기의
생성/수정/삭제 처리를 그대로 사용해 반영합니다.

웹훅 경계에서는 예외를 던지지 않고 항상 결과 값을 반환합니다.
발신 측은 오류 응답을 받으면 재전송하므로, 잘못된 페이로드는
processed=False로 응답해 재전송 루프를 막습니다.
"""

import base64
import binascii
import hashlib
import hmac
import json
from typing import Any, Optional, Set, Tuple, Union

from pydantic import ValidationError

from ..domain.entities import (
    ChangeType,
    EmailAccount,
    EmailProvider,
    NativeHistoryPointer,
    UnifiedDelta,
    UnifiedWebhookEnvelope,
    WebhookDelta,
    WebhookResult,
)
from ..domain.exceptions import MalformedWebhookPayload, ProviderError
from ..domain.ports import AccountRepositoryPort, EmailProviderPort, LoggerPort
from .adapter_selection import AdapterSelector
from .reconciliation import Reconciler

MESSAGE_CONTENT_KEYS = ("subject", "from", "body", "snippet", "folders", "unread")

# 수정 델타는 추적 필드가 모두 있어야 본문으로 그대로 반영
COMPLETE_UPDATE_KEYS = ("subject", "folders", "unread")


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """HMAC-SHA256 서명 검증"""
    if not signature:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


def decode_unified_payload(payload: Any) -> UnifiedWebhookEnvelope:
    """통합 제공자 델타 목록 디코딩"""
    if not isinstance(payload, dict):
        raise MalformedWebhookPayload("웹훅 페이로드가 객체가 아닙니다")
    try:
        return UnifiedWebhookEnvelope(deltas=payload.get("deltas"))
    except ValidationError as e:
        raise MalformedWebhookPayload(f"델타 목록 형식 오류: {e.error_count()}건") from e


def decode_native_payload(payload: Any) -> NativeHistoryPointer:
    """Pub/Sub 푸시 메시지의 base64 히스토리 포인터 디코딩"""
    if not isinstance(payload, dict) or not isinstance(payload.get("message"), dict):
        raise MalformedWebhookPayload("Pub/Sub 메시지가 없습니다")

    data = payload["message"].get("data")
    if not isinstance(data, str) or not data:
        raise MalformedWebhookPayload("Pub/Sub 메시지에 data가 없습니다")

    try:
        normalized = data.replace("-", "+").replace("_", "/")
        decoded = base64.b64decode(normalized + "=" * (-len(normalized) % 4))
        pointer = json.loads(decoded)
    except (binascii.Error, ValueError) as e:
        raise MalformedWebhookPayload("히스토리 포인터 디코딩 실패") from e

    if not isinstance(pointer, dict) or not pointer.get("emailAddress") or not pointer.get("historyId"):
        raise MalformedWebhookPayload("히스토리 포인터에 emailAddress/historyId가 없습니다")

    return NativeHistoryPointer(
        email_address=str(pointer["emailAddress"]).lower(),
        history_id=str(pointer["historyId"]),
    )


class WebhookIngestor:
    """웹훅 수신 처리기"""

    def __init__(
        self,
        account_repository: AccountRepositoryPort,
        reconciler: Reconciler,
        adapter_selector: AdapterSelector,
        logger: LoggerPort,
    ):
        self.account_repository = account_repository
        self.reconciler = reconciler
        self.adapter_selector = adapter_selector
        self.logger = logger

    async def process_notification(
        self,
        provider_kind: Union[EmailProvider, str],
        payload: Any,
    ) -> WebhookResult:
        """
        푸시 알림을 처리합니다.

        Args:
            provider_kind: 알림을 보낸 제공자 (unified 또는 gmail)
            payload: 디코딩된 JSON 본문

        Returns:
            처리 결과 (디코딩 실패 시 processed=False, messages_processed=0)
        """
        try:
            provider = EmailProvider(provider_kind)
            if provider == EmailProvider.UNIFIED:
                return await self._process_unified(decode_unified_payload(payload))
            if provider == EmailProvider.GMAIL:
                return await self._process_native(decode_native_payload(payload))
            raise MalformedWebhookPayload(f"웹훅을 지원하지 않는 제공자입니다: {provider.value}")

        except MalformedWebhookPayload as e:
            self.logger.warning(f"잘못된 웹훅 페이로드: {provider_kind}, {str(e)}")
            return WebhookResult(processed=False, messages_processed=0)
        except Exception as e:
            self.logger.error(f"웹훅 처리 실패: {provider_kind}, 오류: {str(e)}")
            return WebhookResult(processed=False, messages_processed=0)

    async def _process_unified(self, envelope: UnifiedWebhookEnvelope) -> WebhookResult:
        adapter = self.adapter_selector.get(EmailProvider.UNIFIED)
        processed = 0
        account_ids: Set[str] = set()
        last_account: Optional[EmailAccount] = None

        for delta in envelope.deltas:
            try:
                decoded = self._to_canonical(delta, adapter)
                if decoded is None:
                    continue

                grant_id, canonical = decoded
                account = await self.account_repository.get_by_external_id(grant_id)
                if account is None:
                    self.logger.warning(f"웹훅 계정을 찾을 수 없어 건너뜀: {grant_id}")
                    continue

                if await self._apply(account, canonical, adapter):
                    processed += 1
                    account_ids.add(str(account.id))
                    last_account = account

            except Exception as e:
                self.logger.error(f"웹훅 델타 처리 실패: {delta.type}, 오류: {str(e)}")

        self.logger.info(f"통합 제공자 웹훅 처리 완료: 델타 {len(envelope.deltas)}개, 반영 {processed}개")
        return WebhookResult(
            account_id=last_account.id if len(account_ids) == 1 else None,
            processed=True,
            messages_processed=processed,
        )

    def _to_canonical(
        self,
        delta: UnifiedDelta,
        adapter: EmailProviderPort,
    ) -> Optional[Tuple[str, WebhookDelta]]:
        """통합 제공자 델타를 (계정 ID, 정규 델타)로 변환. 메시지 델타가 아니면 None."""
        if delta.object != "message" or not delta.type.startswith("message."):
            return None

        try:
            change_type = ChangeType(delta.type.split(".", 1)[1])
        except ValueError:
            self.logger.debug(f"처리하지 않는 델타 종류: {delta.type}")
            return None

        data = delta.object_data
        grant_id = data.get("account_id") or data.get("grant_id")
        external_id = data.get("id")
        if not grant_id or not external_id:
            raise MalformedWebhookPayload("델타에 계정 ID 또는 메시지 ID가 없습니다")

        message = None
        if change_type != ChangeType.DELETED:
            attributes = data.get("attributes")
            raw = attributes if isinstance(attributes, dict) else data
            if change_type == ChangeType.UPDATED:
                inline = all(key in raw for key in COMPLETE_UPDATE_KEYS)
            else:
                inline = any(key in raw for key in MESSAGE_CONTENT_KEYS)
            if inline:
                message = adapter.parse_message({**raw, "id": external_id})

        return str(grant_id), WebhookDelta(
            change_type=change_type,
            external_id=str(external_id),
            message=message,
        )

    async def _process_native(self, pointer: NativeHistoryPointer) -> WebhookResult:
        account = await self.account_repository.get_by_email(pointer.email_address)
        if account is None:
            self.logger.warning(f"웹훅 계정을 찾을 수 없어 건너뜀: {pointer.email_address}")
            return WebhookResult(processed=True, messages_processed=0)

        if not account.history_id:
            # 비교 기준이 없으면 현재 포인터를 기준점으로 저장
            await self.account_repository.update_push_state(
                account.id, account.push_subscription_id, pointer.history_id
            )
            self.logger.info(f"기준 히스토리 ID 저장: {account.email}, {pointer.history_id}")
            return WebhookResult(account_id=account.id, processed=True, messages_processed=0)

        adapter = self.adapter_selector.get(EmailProvider.GMAIL)
        try:
            changes = await adapter.list_history(account, account.history_id)
        except ProviderError as e:
            if e.status_code != 404:
                raise
            # 기준 ID가 만료됨: 현재 포인터로 재설정하고 전체 동기화로 복구
            await self.account_repository.update_push_state(
                account.id, account.push_subscription_id, pointer.history_id
            )
            self.logger.warning(
                f"히스토리 기준 ID 만료, 전체 동기화 필요: {account.email}, "
                f"{account.history_id} -> {pointer.history_id}"
            )
            return WebhookResult(account_id=account.id, processed=True, messages_processed=0)

        processed = 0
        for delta in changes.deltas:
            try:
                if await self._apply(account, delta, adapter):
                    processed += 1
            except Exception as e:
                self.logger.error(f"히스토리 델타 처리 실패: {delta.external_id}, 오류: {str(e)}")

        await self.account_repository.update_push_state(
            account.id,
            account.push_subscription_id,
            changes.history_id or pointer.history_id,
        )
        self.logger.info(f"히스토리 웹훅 처리 완료: {account.email}, 반영 {processed}개")
        return WebhookResult(account_id=account.id, processed=True, messages_processed=processed)

    async def _apply(self, account: EmailAccount, delta: WebhookDelta, adapter: EmailProviderPort) -> bool:
        """정규 델타 하나를 반영합니다. 반영했으면 True."""
        if delta.change_type == ChangeType.DELETED:
            await self.reconciler.apply_deleted(account, delta.external_id)
            return True

        message = delta.message or await adapter.get_message(account, delta.external_id)

        if delta.change_type == ChangeType.CREATED:
            await self.reconciler.reconcile_message(account, message)
            return True

        action = await self.reconciler.reconcile_existing(account, message)
        if action is None:
            self.logger.debug(f"업데이트 대상 메일이 없어 건너뜀: {delta.external_id}")
            return False
        return True
