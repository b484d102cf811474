"""
Unit tests for BatchCommitter.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from tenantfill.exceptions import BatchWriteError
from tenantfill.migration.committer import BatchCommitter, CommitResult
from tenantfill.migration.exceptions import CommitError, DuplicateMutationError
from tenantfill.migration.models import Resolution
from tenantfill.stores.in_memory import InMemoryDocumentStore

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

RESOLUTION = Resolution(owner_id="CO-100", resolver_index=1, candidates_checked=2, reference_id="u1")


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore(
        {"chats": {"c1": {"users": ["u2", "u1"]}, "c2": {"users": ["u1"]}}},
        enable_tracing=False,
    )


@pytest.fixture
def committer(store: InMemoryDocumentStore) -> BatchCommitter:
    return BatchCommitter(
        store, "chats", job_id="chats", now=lambda: FIXED_NOW, enable_tracing=False
    )


class TestStaging:
    """Tests for stage_update."""

    def test_adds_provenance(self, committer: BatchCommitter) -> None:
        staged = committer.stage_update(
            "c1", {"company_id": "CO-100"}, resolution=RESOLUTION, batch_number=4
        )

        assert staged == {
            "company_id": "CO-100",
            "migration_source": "chats",
            "migration_owner_id": "CO-100",
            "migration_reference_id": "u1",
            "migration_resolver_index": 1,
            "migration_candidates_checked": 2,
            "migration_batch": 4,
            "migration_timestamp": FIXED_NOW,
        }
        assert committer.pending == 1

    def test_duplicate_record_rejected(self, committer: BatchCommitter) -> None:
        committer.stage_update("c1", {"company_id": "CO-100"}, resolution=RESOLUTION, batch_number=1)

        with pytest.raises(DuplicateMutationError):
            committer.stage_update(
                "c1", {"company_id": "CO-200"}, resolution=RESOLUTION, batch_number=1
            )

        assert committer.staged[0][1]["company_id"] == "CO-100"

    def test_discard(self, committer: BatchCommitter) -> None:
        committer.stage_update("c1", {"company_id": "CO-100"}, resolution=RESOLUTION, batch_number=1)

        dropped = committer.discard()

        assert [record_id for record_id, _ in dropped] == ["c1"]
        assert committer.pending == 0


class TestCommit:
    """Tests for commit and replay."""

    @pytest.mark.asyncio
    async def test_empty_commit_never_writes(
        self, committer: BatchCommitter, store: InMemoryDocumentStore
    ) -> None:
        result = await committer.commit()

        assert result == CommitResult(committed_count=0)
        assert result.written is False
        assert store.write_calls == 0

    @pytest.mark.asyncio
    async def test_commit_writes_all_staged(
        self, committer: BatchCommitter, store: InMemoryDocumentStore
    ) -> None:
        committer.stage_update("c1", {"company_id": "CO-100"}, resolution=RESOLUTION, batch_number=2)
        committer.stage_update("c2", {"company_id": "CO-100"}, resolution=RESOLUTION, batch_number=2)

        result = await committer.commit()

        assert result.committed_count == 2
        assert result.batch_number == 2
        assert store.write_calls == 1
        assert committer.pending == 0
        chats = store.get_collection("chats")
        assert chats["c1"]["company_id"] == "CO-100"
        assert chats["c1"]["users"] == ["u2", "u1"]

    @pytest.mark.asyncio
    async def test_failed_commit_raises_with_mutations(
        self, committer: BatchCommitter, store: InMemoryDocumentStore
    ) -> None:
        committer.stage_update("c1", {"company_id": "CO-100"}, resolution=RESOLUTION, batch_number=3)
        store.fail_next_write("quota exceeded")

        with pytest.raises(CommitError) as exc_info:
            await committer.commit()

        error = exc_info.value
        assert error.batch_number == 3
        assert error.record_ids == ["c1"]
        assert error.mutations[0][1]["company_id"] == "CO-100"
        assert "quota exceeded" in error.original_error
        assert committer.pending == 0
        assert "company_id" not in store.get_collection("chats")["c1"]

    @pytest.mark.asyncio
    async def test_replay(self, committer: BatchCommitter, store: InMemoryDocumentStore) -> None:
        mutations = [("c1", {"company_id": "CO-100", "migration_batch": 3})]

        result = await committer.replay(3, mutations)

        assert result == CommitResult(committed_count=1, batch_number=3)
        assert store.get_collection("chats")["c1"]["migration_batch"] == 3

    @pytest.mark.asyncio
    async def test_replay_nothing(self, committer: BatchCommitter, store: InMemoryDocumentStore) -> None:
        result = await committer.replay(3, [])

        assert result.committed_count == 0
        assert store.write_calls == 0

    @pytest.mark.asyncio
    async def test_only_batch_write_errors_are_converted(self) -> None:
        store = MagicMock()
        store.atomic_batch_write = AsyncMock(side_effect=RuntimeError("bug"))
        committer = BatchCommitter(store, "chats", job_id="chats", enable_tracing=False)
        committer.stage_update("c1", {"company_id": "CO-100"}, resolution=RESOLUTION, batch_number=1)

        with pytest.raises(RuntimeError):
            await committer.commit()

    @pytest.mark.asyncio
    async def test_batch_write_error_from_store_mock(self) -> None:
        store = MagicMock()
        store.atomic_batch_write = AsyncMock(
            side_effect=BatchWriteError("chats", ["c1"], "contention")
        )
        committer = BatchCommitter(store, "chats", job_id="chats", enable_tracing=False)
        committer.stage_update("c1", {"company_id": "CO-100"}, resolution=RESOLUTION, batch_number=1)

        with pytest.raises(CommitError, match="contention"):
            await committer.commit()
