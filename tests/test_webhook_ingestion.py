"""
웹훅 수신 처리기 테스트
"""

import base64
import hashlib
import hmac
import json

import pytest

from core.domain.entities import (
    ChangeType,
    EmailAccount,
    EmailProvider,
    FetchBatch,
    HistoryChanges,
    WebhookDelta,
)
from core.domain.exceptions import MalformedWebhookPayload, ProviderError
from core.usecases.webhook_ingestion import WebhookIngestor, decode_native_payload, verify_signature

from .conftest import make_message


@pytest.fixture
def ingestor(account_repository, reconciler, selector, logger):
    return WebhookIngestor(account_repository, reconciler, selector, logger)


@pytest.fixture
def linked_account(account_repository):
    return account_repository.add(
        EmailAccount(email="linked@example.com", provider=EmailProvider.GMAIL, external_id="grant-1")
    )


def unified_payload(*deltas):
    return {"deltas": list(deltas)}


def message_delta(change, message_id="m1", grant_id="grant-1", **data):
    object_data = {"id": message_id, "account_id": grant_id}
    object_data.update(data)
    return {"object": "message", "type": f"message.{change}", "object_data": object_data}


def pubsub_payload(pointer, urlsafe=False):
    encoded = base64.b64encode(json.dumps(pointer).encode()).decode()
    if urlsafe:
        encoded = encoded.replace("+", "-").replace("/", "_").rstrip("=")
    return {"message": {"data": encoded, "messageId": "1"}, "subscription": "projects/test/subscriptions/mail"}


class TestSignature:
    def test_valid_signature(self):
        body = b'{"deltas": []}'
        signature = hmac.new(b"secret", body, hashlib.sha256).hexdigest()

        assert verify_signature(body, signature, "secret") is True

    def test_invalid_or_missing_signature(self):
        assert verify_signature(b"{}", "deadbeef", "secret") is False
        assert verify_signature(b"{}", None, "secret") is False


class TestMalformedPayloads:
    @pytest.mark.parametrize("payload", [None, "text", [], {"deltas": "x"}, {"deltas": [{"type": 1}]}])
    async def test_unified_malformed_returns_unprocessed(self, ingestor, payload):
        result = await ingestor.process_notification(EmailProvider.UNIFIED, payload)

        assert result.processed is False
        assert result.messages_processed == 0

    @pytest.mark.parametrize(
        "payload",
        [None, {}, {"message": {}}, {"message": {"data": "%%%"}}, pubsub_payload({"historyId": "1"})],
    )
    async def test_native_malformed_returns_unprocessed(self, ingestor, payload):
        result = await ingestor.process_notification("gmail", payload)

        assert result.processed is False

    async def test_unknown_provider_kind(self, ingestor):
        result = await ingestor.process_notification("pigeon", {"deltas": []})

        assert result.processed is False


class TestUnifiedNotifications:
    async def test_created_with_inline_content(self, ingestor, linked_account, email_repository):
        payload = unified_payload(
            message_delta("created", attributes={"subject": "hello", "folders": ["INBOX"]})
        )

        result = await ingestor.process_notification(EmailProvider.UNIFIED, payload)

        assert result.processed is True
        assert result.messages_processed == 1
        assert result.account_id == linked_account.id
        assert email_repository.by_external_id("m1").subject == "hello"

    async def test_created_without_content_fetches_message(self, ingestor, linked_account, unified_adapter,
                                                           email_repository):
        unified_adapter.messages["m1"] = make_message("m1", subject="fetched")

        result = await ingestor.process_notification(EmailProvider.UNIFIED, unified_payload(message_delta("created")))

        assert result.messages_processed == 1
        assert email_repository.by_external_id("m1").subject == "fetched"

    async def test_updated_applies_to_existing_email(self, ingestor, reconciler, linked_account, unified_adapter,
                                                     email_repository):
        await reconciler.reconcile(linked_account, FetchBatch(messages=[make_message("m1")]))
        unified_adapter.messages["m1"] = make_message("m1", is_read=True)

        result = await ingestor.process_notification(EmailProvider.UNIFIED, unified_payload(message_delta("updated")))

        assert result.messages_processed == 1
        assert email_repository.by_external_id("m1").is_read is True

    async def test_partial_update_fetches_full_message(self, ingestor, reconciler, linked_account, unified_adapter,
                                                       email_repository):
        stored = make_message("m1", subject="Quarterly report", labels=["INBOX", "Work"], body_text="body")
        await reconciler.reconcile(linked_account, FetchBatch(messages=[stored]))
        unified_adapter.messages["m1"] = stored.model_copy(update={"is_read": True})

        result = await ingestor.process_notification(
            EmailProvider.UNIFIED, unified_payload(message_delta("updated", unread=False))
        )

        assert result.messages_processed == 1
        email = email_repository.by_external_id("m1")
        assert email.is_read is True
        assert email.subject == "Quarterly report"
        assert email.labels == ["INBOX", "Work"]
        assert email.body_text == "body"

    async def test_complete_update_is_applied_inline(self, ingestor, reconciler, linked_account, unified_adapter,
                                                     email_repository):
        await reconciler.reconcile(linked_account, FetchBatch(messages=[make_message("m1")]))

        result = await ingestor.process_notification(
            EmailProvider.UNIFIED,
            unified_payload(message_delta("updated", subject="renamed", folders=["INBOX"], unread=False)),
        )

        assert result.messages_processed == 1
        assert unified_adapter.messages == {}
        email = email_repository.by_external_id("m1")
        assert email.subject == "renamed"
        assert email.is_read is True

    async def test_updated_for_unknown_email_is_skipped(self, ingestor, linked_account, unified_adapter,
                                                        email_repository):
        unified_adapter.messages["m1"] = make_message("m1")

        result = await ingestor.process_notification(EmailProvider.UNIFIED, unified_payload(message_delta("updated")))

        assert result.processed is True
        assert result.messages_processed == 0
        assert email_repository.emails == {}

    async def test_deleted_soft_deletes(self, ingestor, reconciler, linked_account, email_repository):
        await reconciler.reconcile(linked_account, FetchBatch(messages=[make_message("m1")]))

        result = await ingestor.process_notification(EmailProvider.UNIFIED, unified_payload(message_delta("deleted")))

        assert result.messages_processed == 1
        assert email_repository.by_external_id("m1").is_deleted is True

    async def test_unknown_account_is_skipped(self, ingestor, logger):
        payload = unified_payload(message_delta("created", grant_id="someone-else", subject="x"))

        result = await ingestor.process_notification(EmailProvider.UNIFIED, payload)

        assert result.processed is True
        assert result.messages_processed == 0
        assert result.account_id is None
        assert logger.records["warning"]

    async def test_bad_delta_does_not_block_others(self, ingestor, linked_account, email_repository):
        payload = unified_payload(
            {"object": "message", "type": "message.created", "object_data": {"account_id": "grant-1"}},
            {"object": "calendar", "type": "event.created", "object_data": {}},
            message_delta("created", message_id="m2", subject="second"),
        )

        result = await ingestor.process_notification(EmailProvider.UNIFIED, payload)

        assert result.processed is True
        assert result.messages_processed == 1
        assert email_repository.by_external_id("m2").subject == "second"


class TestNativeNotifications:
    async def test_first_pointer_becomes_baseline(self, ingestor, account, account_repository, gmail_adapter):
        payload = pubsub_payload({"emailAddress": "User@Example.com", "historyId": 1000})

        result = await ingestor.process_notification(EmailProvider.GMAIL, payload)

        assert result.processed is True
        assert result.messages_processed == 0
        assert account_repository.accounts[account.id].history_id == "1000"
        assert gmail_adapter.history_calls == []

    async def test_history_deltas_are_applied(self, ingestor, reconciler, account, account_repository,
                                              gmail_adapter, email_repository):
        await reconciler.reconcile(account, FetchBatch(messages=[make_message("m1")]))
        account_repository.accounts[account.id].history_id = "900"
        gmail_adapter.history = HistoryChanges(
            deltas=[
                WebhookDelta(change_type=ChangeType.CREATED, external_id="m5", message=make_message("m5")),
                WebhookDelta(change_type=ChangeType.DELETED, external_id="m1"),
            ],
            history_id="1000",
        )

        result = await ingestor.process_notification(
            EmailProvider.GMAIL, pubsub_payload({"emailAddress": "user@example.com", "historyId": "1000"}, urlsafe=True)
        )

        assert result.account_id == account.id
        assert result.messages_processed == 2
        assert gmail_adapter.history_calls == ["900"]
        assert email_repository.by_external_id("m5")
        assert email_repository.by_external_id("m1").is_deleted is True
        assert account_repository.accounts[account.id].history_id == "1000"

    async def test_expired_history_id_is_rebased(self, ingestor, account, account_repository, gmail_adapter, logger):
        account_repository.accounts[account.id].history_id = "100"
        gmail_adapter.history_error = ProviderError("히스토리 조회 실패: 404", 404)

        result = await ingestor.process_notification(
            EmailProvider.GMAIL, pubsub_payload({"emailAddress": "user@example.com", "historyId": "2000"})
        )

        assert result.processed is True
        assert result.messages_processed == 0
        assert account_repository.accounts[account.id].history_id == "2000"
        assert logger.records["warning"]

        gmail_adapter.history_error = None
        await ingestor.process_notification(
            EmailProvider.GMAIL, pubsub_payload({"emailAddress": "user@example.com", "historyId": "2001"})
        )

        assert gmail_adapter.history_calls == ["100", "2000"]

    async def test_other_history_failures_are_unprocessed(self, ingestor, account, account_repository,
                                                          gmail_adapter):
        account_repository.accounts[account.id].history_id = "100"
        gmail_adapter.history_error = ProviderError("히스토리 조회 실패: 500", 500)

        result = await ingestor.process_notification(
            EmailProvider.GMAIL, pubsub_payload({"emailAddress": "user@example.com", "historyId": "2000"})
        )

        assert result.processed is False
        assert account_repository.accounts[account.id].history_id == "100"

    async def test_unknown_mailbox_is_acknowledged(self, ingestor):
        payload = pubsub_payload({"emailAddress": "nobody@example.com", "historyId": "1"})

        result = await ingestor.process_notification(EmailProvider.GMAIL, payload)

        assert result.processed is True
        assert result.messages_processed == 0


class TestDecodeNativePayload:
    def test_email_is_lowercased(self):
        pointer = decode_native_payload(pubsub_payload({"emailAddress": "A@B.COM", "historyId": 7}))

        assert pointer.email_address == "a@b.com"
        assert pointer.history_id == "7"

    def test_missing_history_id(self):
        with pytest.raises(MalformedWebhookPayload):
            decode_native_payload(pubsub_payload({"emailAddress": "a@b.com"}))
