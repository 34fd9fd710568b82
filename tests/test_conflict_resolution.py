"""
충돌 감지/해결 테스트
"""

from uuid import uuid4

import pytest

from core.domain.entities import ConflictResolution, ConflictStatus, ConflictType, FetchBatch
from core.domain.exceptions import ConflictNotFound, SyncEngineError
from core.usecases.conflict_resolution import (
    ConflictDetector,
    ConflictResolutionUseCase,
    merge_labels,
    merge_values,
)

from .conftest import make_message


@pytest.fixture
def usecase(conflict_repository, account_repository, resolver, selector, logger):
    return ConflictResolutionUseCase(conflict_repository, account_repository, resolver, selector, logger)


async def seed_conflict(reconciler, account, email_repository, conflict_repository,
                        local_labels, remote_labels, base_labels):
    await reconciler.reconcile(account, FetchBatch(messages=[make_message("m1", labels=base_labels)]))
    stored = email_repository.by_external_id("m1")
    await email_repository.update_fields(stored.id, {"labels": local_labels})
    await reconciler.reconcile(account, FetchBatch(messages=[make_message("m1", labels=remote_labels)]))
    return next(iter(conflict_repository.conflicts.values()))


class TestConflictDetector:
    async def test_one_sided_change_is_not_a_conflict(self, reconciler, account, email_repository):
        await reconciler.reconcile(account, FetchBatch(messages=[make_message("m1")]))
        stored = email_repository.by_external_id("m1")

        assert ConflictDetector().detect(stored, make_message("m1", is_read=True)) is None

    async def test_both_sides_change_same_field(self, reconciler, account, email_repository):
        await reconciler.reconcile(account, FetchBatch(messages=[make_message("m1")]))
        stored = email_repository.by_external_id("m1")
        stored.is_starred = True
        stored.labels = ["INBOX", "local"]

        detected = ConflictDetector().detect(
            stored, make_message("m1", is_starred=False, labels=["INBOX", "remote"])
        )

        assert detected == (ConflictType.MOVE, ["labels"])

    async def test_same_new_value_on_both_sides_is_not_a_conflict(self, reconciler, account, email_repository):
        await reconciler.reconcile(account, FetchBatch(messages=[make_message("m1")]))
        stored = email_repository.by_external_id("m1")
        stored.is_read = True

        assert ConflictDetector().detect(stored, make_message("m1", is_read=True)) is None


class TestMerge:
    def test_labels_union_keeps_order(self):
        assert merge_labels(["a", "b"], ["b", "c"]) == ["a", "b", "c"]

    def test_remote_value_wins_when_present(self):
        merged = merge_values(
            {"subject": "local", "body_text": "local body", "body_html": "", "is_read": False,
             "is_starred": True, "labels": ["a"]},
            {"subject": "remote", "body_text": "", "body_html": None, "is_read": True,
             "is_starred": None, "labels": ["b"]},
        )

        assert merged["subject"] == "remote"
        assert merged["body_text"] == "local body"
        assert merged["is_read"] is True
        assert merged["is_starred"] is True
        assert merged["labels"] == ["a", "b"]


class TestConflictResolutionUseCase:
    async def test_merge_resolution_unions_labels(
        self, usecase, reconciler, account, email_repository, conflict_repository, gmail_adapter
    ):
        conflict = await seed_conflict(
            reconciler, account, email_repository, conflict_repository,
            local_labels=["a", "b"], remote_labels=["b", "c"], base_labels=["b"],
        )

        resolved = await usecase.resolve_conflict(conflict.id, ConflictResolution.MERGE)

        stored = email_repository.by_external_id("m1")
        assert set(stored.labels) == {"a", "b", "c"}
        assert stored.synced_labels == stored.labels
        assert resolved.status == ConflictStatus.RESOLVED
        assert resolved.resolution == ConflictResolution.MERGE
        assert gmail_adapter.pushed[0]["external_id"] == "m1"

    async def test_resolved_conflict_cannot_be_resolved_again(
        self, usecase, reconciler, account, email_repository, conflict_repository
    ):
        conflict = await seed_conflict(
            reconciler, account, email_repository, conflict_repository,
            local_labels=["a"], remote_labels=["c"], base_labels=["b"],
        )
        await usecase.resolve_conflict(conflict.id, ConflictResolution.REMOTE)

        with pytest.raises(SyncEngineError):
            await usecase.resolve_conflict(conflict.id, ConflictResolution.LOCAL)

    async def test_unknown_conflict(self, usecase):
        with pytest.raises(ConflictNotFound):
            await usecase.resolve_conflict(uuid4(), ConflictResolution.REMOTE)

    async def test_bulk_resolution_isolates_failures(
        self, usecase, reconciler, account, email_repository, conflict_repository
    ):
        conflict = await seed_conflict(
            reconciler, account, email_repository, conflict_repository,
            local_labels=["a"], remote_labels=["c"], base_labels=["b"],
        )

        result = await usecase.resolve_conflicts([uuid4(), conflict.id], ConflictResolution.REMOTE)

        assert result.total == 2
        assert result.resolved == 1
        assert result.failed == 1
        assert email_repository.by_external_id("m1").labels == ["c"]

    async def test_dismissed_conflict_stays_queryable(
        self, usecase, reconciler, account, email_repository, conflict_repository
    ):
        conflict = await seed_conflict(
            reconciler, account, email_repository, conflict_repository,
            local_labels=["a"], remote_labels=["c"], base_labels=["b"],
        )

        await usecase.dismiss_conflict(conflict.id)

        assert await usecase.list_conflicts(account_id=account.id) == []
        closed = await usecase.list_conflicts(account_id=account.id, include_closed=True)
        assert [item.status for item in closed] == [ConflictStatus.DISMISSED]
        assert email_repository.by_external_id("m1").labels == ["a"]

    async def test_list_filters_by_type(self, usecase, reconciler, account, email_repository, conflict_repository):
        await seed_conflict(
            reconciler, account, email_repository, conflict_repository,
            local_labels=["a"], remote_labels=["c"], base_labels=["b"],
        )

        assert len(await usecase.list_conflicts(conflict_type=ConflictType.MOVE)) == 1
        assert await usecase.list_conflicts(conflict_type=ConflictType.UPDATE) == []

    async def test_delete_conflict_remote_resolution_deletes_local(
        self, usecase, reconciler, account, email_repository, conflict_repository
    ):
        await reconciler.reconcile(account, FetchBatch(messages=[make_message("m1")]))
        stored = email_repository.by_external_id("m1")
        await email_repository.update_fields(stored.id, {"is_read": True})
        batch = FetchBatch(messages=[], complete=True, scope_label="inbox")
        counters = await reconciler.reconcile(account, batch)
        await reconciler.reconcile_deletions(account, batch, counters)
        conflict = next(iter(conflict_repository.conflicts.values()))

        await usecase.resolve_conflict(conflict.id, ConflictResolution.REMOTE)

        assert email_repository.by_external_id("m1").is_deleted is True
