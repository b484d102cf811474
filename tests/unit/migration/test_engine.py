"""
Unit tests for MigrationEngine.

Tests cover:
- Page processing over the seeded chats (per-record outcomes and counters)
- Provenance fields written with each update
- Empty pages and exhausted scans
- Idempotence of a second run
- Commit failures, the failed-page queue and operator retry
- process_all: pause, max_pages, history recording
- reset and the in-flight guard, including pause or reset between pages
- Read retries and unexpected per-record errors
- Cache use, the cache toggle and its rollback
- Stats callbacks and streams

Seeded data (see conftest.py), three records per page:
    c1 users [u2, u1]        -> u2 has empty company_id, u1 resolves CO-100
    c2 already CO-9          -> skipped
    c3 users is a string     -> error (data integrity)
    c4 users empty           -> error
    c5 users [missing, u3]   -> not found, u3 lacks company_id -> skipped
    c6 no users field        -> error (data integrity)
    c7 users [None, 42, u4]  -> null, wrong type, u4 resolves CO-200
"""

import asyncio
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from tenantfill.exceptions import StoreError, ToggleError
from tenantfill.migration.config import EngineConfig, get_job
from tenantfill.migration.engine import MigrationEngine
from tenantfill.migration.exceptions import CommitError, EngineStateError
from tenantfill.migration.history import HistoryStatus, InMemoryMigrationHistoryRepository
from tenantfill.migration.models import EngineState, LogStatus, StatsSnapshot
from tenantfill.stores.in_memory import InMemoryDocumentStore


class TestMigrationEngineInit:
    """Tests for MigrationEngine construction."""

    def test_starts_idle(self, make_engine: Any) -> None:
        engine = make_engine()

        assert engine.state is EngineState.IDLE
        assert engine.cursor.last_seen_key is None
        assert engine.cursor.page_size == 3
        assert engine.failed_pages == ()
        assert engine.snapshot() == StatsSnapshot()

    def test_rejects_job_without_candidates(self, memory_store: InMemoryDocumentStore) -> None:
        with pytest.raises(ValueError, match="companies"):
            MigrationEngine(memory_store, get_job("companies"), enable_tracing=False)

    def test_cursor_property_is_a_copy(self, make_engine: Any) -> None:
        engine = make_engine()

        cursor = engine.cursor
        cursor.exhausted = True

        assert engine.cursor.exhausted is False


class TestProcessNextPage:
    """Tests for a single page over the seeded chats."""

    @pytest.mark.asyncio
    async def test_first_page_outcomes(self, make_engine: Any) -> None:
        engine = make_engine()

        result = await engine.process_next_page()

        assert result.batch_number == 1
        assert result.fetched == 3
        assert result.processed == 3
        assert result.updated == 1
        assert result.skipped == 1
        assert result.errors == 1
        assert result.committed is True
        assert result.is_last_page is False
        assert engine.state is EngineState.IDLE

    @pytest.mark.asyncio
    async def test_page_writes_owner_with_provenance(
        self, make_engine: Any, seeded_store: InMemoryDocumentStore
    ) -> None:
        engine = make_engine()

        await engine.process_next_page()

        chat = seeded_store.get_collection("chats")["c1"]
        assert chat["company_id"] == "CO-100"
        assert chat["migration_source"] == "chats"
        assert chat["migration_owner_id"] == "CO-100"
        assert chat["migration_reference_id"] == "u1"
        assert chat["migration_resolver_index"] == 1
        assert chat["migration_candidates_checked"] == 2
        assert chat["migration_batch"] == 1
        assert "migration_timestamp" in chat

    @pytest.mark.asyncio
    async def test_valid_and_invalid_records_are_untouched(
        self, make_engine: Any, seeded_store: InMemoryDocumentStore
    ) -> None:
        engine = make_engine()

        await engine.process_next_page()

        chats = seeded_store.get_collection("chats")
        assert chats["c2"] == {"company_id": "CO-9", "users": ["u1"]}
        assert chats["c3"] == {"users": "u1"}

    @pytest.mark.asyncio
    async def test_page_without_updates_issues_no_write(
        self, make_engine: Any, seeded_store: InMemoryDocumentStore
    ) -> None:
        engine = make_engine()
        await engine.process_next_page()
        writes_after_first = seeded_store.write_calls

        result = await engine.process_next_page()

        assert result.batch_number == 2
        assert result.updated == 0
        assert result.skipped == 1
        assert result.errors == 2
        assert result.committed is False
        assert seeded_store.write_calls == writes_after_first

    @pytest.mark.asyncio
    async def test_short_page_completes_the_run(
        self, make_engine: Any, seeded_store: InMemoryDocumentStore
    ) -> None:
        engine = make_engine()
        await engine.process_next_page()
        await engine.process_next_page()

        result = await engine.process_next_page()

        assert result.fetched == 1
        assert result.updated == 1
        assert result.is_last_page is True
        assert engine.state is EngineState.COMPLETED
        assert seeded_store.get_collection("chats")["c7"]["company_id"] == "CO-200"
        assert seeded_store.get_collection("chats")["c7"]["migration_resolver_index"] == 2

    @pytest.mark.asyncio
    async def test_full_run_counters(self, make_engine: Any) -> None:
        engine = make_engine()

        for _ in range(3):
            await engine.process_next_page()
        stats = engine.snapshot()

        assert stats.processed_items == 7
        assert stats.updated_items == 2
        assert stats.skipped_items == 2
        assert stats.error_items == 3
        assert stats.current_batch == 3
        assert stats.valid_users_found == 4
        assert stats.users_with_owner == 2
        assert stats.users_without_owner == 2
        assert stats.total_candidates_checked == 7
        assert stats.no_valid_candidate_found == 1
        assert stats.validation_errors == 1
        assert stats.data_integrity_issues == 3

    @pytest.mark.asyncio
    async def test_processed_equals_outcome_sum(self, make_engine: Any) -> None:
        engine = make_engine()

        for _ in range(3):
            await engine.process_next_page()
        stats = engine.snapshot()

        assert stats.processed_items == (
            stats.updated_items + stats.skipped_items + stats.error_items
        )

    @pytest.mark.asyncio
    async def test_exhausted_engine_reports_no_more_data(
        self, make_engine: Any, seeded_store: InMemoryDocumentStore
    ) -> None:
        engine = make_engine()
        for _ in range(3):
            await engine.process_next_page()
        scans = seeded_store.scan_calls

        result = await engine.process_next_page()

        assert result.batch_number == 0
        assert result.is_last_page is True
        assert result.fetched == 0
        assert seeded_store.scan_calls == scans
        assert engine.recent_logs(1)[0].message == "No more data to process"

    @pytest.mark.asyncio
    async def test_empty_collection(
        self, make_engine: Any, memory_store: InMemoryDocumentStore
    ) -> None:
        engine = make_engine(store=memory_store)

        result = await engine.process_next_page()

        assert result.batch_number == 1
        assert result.fetched == 0
        assert result.is_last_page is True
        assert engine.state is EngineState.COMPLETED
        assert memory_store.write_calls == 0
        assert engine.snapshot().current_batch == 0

    @pytest.mark.asyncio
    async def test_wrong_type_owner_is_counted_and_replaced(
        self, make_engine: Any, memory_store: InMemoryDocumentStore
    ) -> None:
        await memory_store.put("iboard_users", "u1", {"company_id": "CO-100"})
        await memory_store.put("chats", "c1", {"company_id": 123, "users": ["u1"]})
        engine = make_engine(store=memory_store)

        result = await engine.process_next_page()

        assert result.updated == 1
        assert engine.snapshot().validation_errors == 1
        assert memory_store.get_collection("chats")["c1"]["company_id"] == "CO-100"

    @pytest.mark.asyncio
    async def test_scalar_candidate_job(
        self, make_engine: Any, memory_store: InMemoryDocumentStore
    ) -> None:
        await memory_store.put("iboard_users", "u1", {"company_id": "CO-100"})
        await memory_store.put("products", "p1", {"seller_id": "u1"})
        await memory_store.put("products", "p2", {"seller_id": None})
        await memory_store.put("products", "p3", {"name": "orphan"})
        engine = make_engine(store=memory_store, job=get_job("products"))

        result = await engine.process_next_page()

        assert result.updated == 1
        assert result.skipped == 1
        assert result.errors == 1
        products = memory_store.get_collection("products")
        assert products["p1"]["company_id"] == "CO-100"
        assert "company_id" not in products["p2"]

    @pytest.mark.asyncio
    async def test_batch_summary_is_logged(self, make_engine: Any) -> None:
        engine = make_engine()

        await engine.process_next_page()

        messages = [entry.message for entry in engine.recent_logs()]
        assert "Batch 1 completed: Processed 3, Updated 1, Skipped 1, Errors 1" in messages
        assert "Batch 1: Successfully committed 1 updates" in messages

    @pytest.mark.asyncio
    async def test_record_errors_are_logged_per_record(self, make_engine: Any) -> None:
        engine = make_engine()

        await engine.process_next_page()

        errors = [e for e in engine.recent_logs() if e.status is LogStatus.ERROR]
        assert [e.subject_id for e in errors] == ["c3"]
        assert "not a list" in errors[0].message
        assert engine.log_counts()[LogStatus.SKIPPED] >= 1

    @pytest.mark.asyncio
    async def test_unexpected_record_error_is_counted(self, make_engine: Any) -> None:
        engine = make_engine()

        with patch.object(engine._resolver, "resolve", side_effect=RuntimeError("boom")):
            result = await engine.process_next_page()

        snapshot = engine.snapshot()
        assert result.errors == 2
        assert snapshot.data_integrity_issues == 2
        [c1_error] = [
            e for e in engine.recent_logs() if e.subject_id == "c1" and e.status is LogStatus.ERROR
        ]
        assert c1_error.message == "Batch 1: Error processing record: boom"
        assert c1_error.metadata["category"] == "data_integrity_issue"

    @pytest.mark.asyncio
    async def test_transient_scan_failure_is_retried(
        self, make_engine: Any, seeded_store: InMemoryDocumentStore
    ) -> None:
        engine = make_engine()
        original = seeded_store.scan
        failures = [StoreError("connection reset")]

        async def flaky_scan(collection: str, options: Any) -> Any:
            if failures:
                raise failures.pop()
            return await original(collection, options)

        with patch.object(seeded_store, "scan", side_effect=flaky_scan) as scan:
            result = await engine.process_next_page()

        assert scan.await_count == 2
        assert result.processed == 3
        assert result.updated == 1
        assert engine.state is EngineState.IDLE

    @pytest.mark.asyncio
    async def test_spans_are_recorded(self, make_engine: Any, mock_tracer: Any) -> None:
        engine = make_engine(tracer=mock_tracer)

        await engine.process_next_page()

        names = mock_tracer.span_names
        assert "tenantfill.engine.process_page" in names
        assert "tenantfill.pager.next_page" in names
        assert "tenantfill.resolver.resolve" in names
        assert "tenantfill.committer.commit" in names


class TestIdempotence:
    """Running a job twice must not rewrite anything."""

    @pytest.mark.asyncio
    async def test_second_run_skips_updated_records(
        self, make_engine: Any, seeded_store: InMemoryDocumentStore
    ) -> None:
        engine = make_engine()
        await engine.process_all()
        writes = seeded_store.write_calls
        first_run = seeded_store.get_collection("chats")

        engine.reset()
        final = await engine.process_all()

        assert final.updated_items == 0
        assert final.skipped_items == 4
        assert final.error_items == 3
        assert seeded_store.write_calls == writes
        assert seeded_store.get_collection("chats") == first_run


class TestCommitFailure:
    """Tests for atomic commit failures and operator retry."""

    @pytest.mark.asyncio
    async def test_failure_queues_page_and_sets_error(
        self, make_engine: Any, seeded_store: InMemoryDocumentStore
    ) -> None:
        engine = make_engine()
        seeded_store.fail_next_write("quota exceeded")

        with pytest.raises(CommitError) as exc_info:
            await engine.process_next_page()

        assert exc_info.value.record_ids == ["c1"]
        assert engine.state is EngineState.ERROR
        assert "quota exceeded" in (engine.last_error or "")
        assert len(engine.failed_pages) == 1
        failed = engine.failed_pages[0]
        assert failed.batch_number == 1
        assert failed.record_ids == ("c1",)
        assert "company_id" not in seeded_store.get_collection("chats")["c1"]

    @pytest.mark.asyncio
    async def test_failure_counts_page_but_not_updates(
        self, make_engine: Any, seeded_store: InMemoryDocumentStore
    ) -> None:
        engine = make_engine()
        seeded_store.fail_next_write()

        with pytest.raises(CommitError):
            await engine.process_next_page()

        stats = engine.snapshot()
        assert stats.processed_items == 3
        assert stats.updated_items == 0
        assert stats.current_batch == 1
        assert engine.cursor.last_seen_key == ("c3",)

    @pytest.mark.asyncio
    async def test_processing_resumes_after_failure(
        self, make_engine: Any, seeded_store: InMemoryDocumentStore
    ) -> None:
        engine = make_engine()
        seeded_store.fail_next_write()
        with pytest.raises(CommitError):
            await engine.process_next_page()

        result = await engine.process_next_page()

        assert result.batch_number == 2
        assert engine.state is EngineState.IDLE
        assert len(engine.failed_pages) == 1

    @pytest.mark.asyncio
    async def test_retry_writes_failed_page(
        self, make_engine: Any, seeded_store: InMemoryDocumentStore
    ) -> None:
        engine = make_engine()
        seeded_store.fail_next_write()
        with pytest.raises(CommitError):
            await engine.process_next_page()

        written = await engine.retry_failed_pages()

        assert written == 1
        assert engine.failed_pages == ()
        assert engine.state is EngineState.IDLE
        assert engine.last_error is None
        assert engine.snapshot().updated_items == 1
        chat = seeded_store.get_collection("chats")["c1"]
        assert chat["company_id"] == "CO-100"
        assert chat["migration_batch"] == 1

    @pytest.mark.asyncio
    async def test_failed_retry_stays_queued(
        self, make_engine: Any, seeded_store: InMemoryDocumentStore
    ) -> None:
        engine = make_engine()
        seeded_store.fail_next_write("first")
        with pytest.raises(CommitError):
            await engine.process_next_page()
        seeded_store.fail_next_write("second")

        written = await engine.retry_failed_pages()

        assert written == 0
        assert len(engine.failed_pages) == 1
        assert "second" in engine.failed_pages[0].error
        assert engine.state is EngineState.ERROR

    @pytest.mark.asyncio
    async def test_retry_with_empty_queue(self, make_engine: Any) -> None:
        engine = make_engine()

        assert await engine.retry_failed_pages() == 0


class TestProcessAll:
    """Tests for the page loop."""

    @pytest.mark.asyncio
    async def test_runs_to_completion(self, make_engine: Any) -> None:
        engine = make_engine()

        final = await engine.process_all()

        assert engine.state is EngineState.COMPLETED
        assert final.processed_items == 7
        assert final.updated_items == 2
        assert final.current_batch == 3

    @pytest.mark.asyncio
    async def test_max_pages(self, make_engine: Any) -> None:
        engine = make_engine()

        final = await engine.process_all(max_pages=2)

        assert final.current_batch == 2
        assert engine.state is EngineState.IDLE

    @pytest.mark.asyncio
    async def test_rejects_non_positive_max_pages(self, make_engine: Any) -> None:
        engine = make_engine()

        with pytest.raises(ValueError):
            await engine.process_all(max_pages=0)

    @pytest.mark.asyncio
    async def test_pause_stops_after_current_page(self, make_engine: Any) -> None:
        engine = make_engine()
        unsubscribe = engine.on_stats_update(lambda _: engine.pause())

        paused = await engine.process_all()
        unsubscribe()

        assert paused.current_batch == 1
        assert engine.state is EngineState.IDLE
        assert engine.is_paused is True

        resumed = await engine.process_all()

        assert resumed.current_batch == 3
        assert engine.state is EngineState.COMPLETED

    @pytest.mark.asyncio
    async def test_commit_failure_stops_loop(
        self, make_engine: Any, seeded_store: InMemoryDocumentStore
    ) -> None:
        engine = make_engine()
        seeded_store.fail_next_write()

        with pytest.raises(CommitError):
            await engine.process_all()

        assert engine.snapshot().current_batch == 1
        assert engine.state is EngineState.ERROR

    @pytest.mark.asyncio
    async def test_completed_engine_returns_snapshot(self, make_engine: Any) -> None:
        engine = make_engine()
        await engine.process_all()

        again = await engine.process_all()

        assert again.processed_items == 7

    @pytest.mark.asyncio
    async def test_throttle_between_pages(self, make_engine: Any) -> None:
        engine = make_engine(config=EngineConfig(page_size=3, throttle_seconds=0.25))

        with patch("tenantfill.migration.engine.asyncio.sleep") as mock_sleep:
            mock_sleep.return_value = None
            await engine.process_all()

        assert [c.args for c in mock_sleep.await_args_list] == [(0.25,), (0.25,)]

    @pytest.mark.asyncio
    async def test_pause_during_throttle_stops_before_next_page(self, make_engine: Any) -> None:
        engine = make_engine(config=EngineConfig(page_size=3, throttle_seconds=0.25))

        async def pause_while_waiting(_: float) -> None:
            engine.pause()

        with patch("tenantfill.migration.engine.asyncio.sleep", side_effect=pause_while_waiting):
            final = await engine.process_all()

        assert final.current_batch == 1
        assert engine.state is EngineState.IDLE
        assert "Processing paused" in [e.message for e in engine.recent_logs()]

    @pytest.mark.asyncio
    async def test_pause_during_real_throttle(self, make_engine: Any) -> None:
        engine = make_engine(config=EngineConfig(page_size=3, throttle_seconds=0.3))
        first_page = asyncio.Event()
        engine.on_stats_update(lambda s: first_page.set() if s.current_batch == 1 else None)

        task = asyncio.create_task(engine.process_all())
        await first_page.wait()
        await asyncio.sleep(0.05)
        engine.pause()
        final = await task

        assert final.current_batch == 1


class TestHistoryRecording:
    """Tests for run history written by process_all."""

    @pytest.mark.asyncio
    async def test_completed_run(self, make_engine: Any) -> None:
        history = InMemoryMigrationHistoryRepository()
        engine = make_engine(history=history)
        await engine.count_total()

        await engine.process_all()

        [entry] = await history.get_history()
        assert entry.migration_type == "chats"
        assert entry.migration_name == "Chat Companies"
        assert entry.status is HistoryStatus.COMPLETED
        assert entry.total_items == 7
        assert entry.batch_size == 3
        assert entry.successful_items == 2
        assert entry.error_items == 3
        assert entry.skipped_items == 2
        assert entry.end_time is not None
        assert entry.metadata["target_collection"] == "chats"

    @pytest.mark.asyncio
    async def test_paused_run_is_cancelled(self, make_engine: Any) -> None:
        history = InMemoryMigrationHistoryRepository()
        engine = make_engine(history=history)

        await engine.process_all(max_pages=1)

        [entry] = await history.get_history()
        assert entry.status is HistoryStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_failed_run(
        self, make_engine: Any, seeded_store: InMemoryDocumentStore
    ) -> None:
        history = InMemoryMigrationHistoryRepository()
        engine = make_engine(history=history)
        seeded_store.fail_next_write("disk full")

        with pytest.raises(CommitError):
            await engine.process_all()

        [entry] = await history.get_history()
        assert entry.status is HistoryStatus.FAILED
        assert any("disk full" in detail for detail in entry.error_details)

    @pytest.mark.asyncio
    async def test_reset_during_throttle_cancels_run(self, make_engine: Any) -> None:
        history = InMemoryMigrationHistoryRepository()
        engine = make_engine(
            history=history, config=EngineConfig(page_size=3, throttle_seconds=0.25)
        )

        async def reset_while_waiting(_: float) -> None:
            engine.reset()

        with patch("tenantfill.migration.engine.asyncio.sleep", side_effect=reset_while_waiting):
            await engine.process_all()

        assert engine.state is EngineState.IDLE
        assert engine.snapshot().current_batch == 0
        assert engine.cursor.last_seen_key is None
        assert [e.message for e in engine.recent_logs()] == ["Migration reset"]
        [entry] = await history.get_history()
        assert entry.status is HistoryStatus.CANCELLED
        assert entry.end_time is not None
        assert entry.successful_items == 1

    @pytest.mark.asyncio
    async def test_run_after_reset_starts_over(self, make_engine: Any) -> None:
        history = InMemoryMigrationHistoryRepository()
        engine = make_engine(history=history)

        async def reset_while_waiting(_: float) -> None:
            engine.reset()

        with patch("tenantfill.migration.engine.asyncio.sleep", side_effect=reset_while_waiting):
            await engine.process_all()
        final = await engine.process_all()

        assert final.processed_items == 7
        assert final.current_batch == 3
        statuses = sorted(entry.status.value for entry in await history.get_history())
        assert statuses == [HistoryStatus.CANCELLED.value, HistoryStatus.COMPLETED.value]


class TestResetAndConcurrency:
    """Tests for reset and the single-page-in-flight guard."""

    @pytest.mark.asyncio
    async def test_reset_clears_run_state(
        self, make_engine: Any, seeded_store: InMemoryDocumentStore
    ) -> None:
        engine = make_engine()
        seeded_store.fail_next_write()
        with pytest.raises(CommitError):
            await engine.process_next_page()

        engine.reset()

        assert engine.state is EngineState.IDLE
        assert engine.cursor.last_seen_key is None
        assert engine.failed_pages == ()
        assert engine.last_error is None
        assert engine.snapshot().processed_items == 0
        assert [e.message for e in engine.recent_logs()] == ["Migration reset"]

    @pytest.mark.asyncio
    async def test_reset_keeps_cache(self, make_engine: Any) -> None:
        engine = make_engine()
        await engine.process_next_page()
        cached = len(engine.cache)

        engine.reset()

        assert cached > 0
        assert len(engine.cache) == cached

    @pytest.mark.asyncio
    async def test_one_page_in_flight(self, make_engine: Any) -> None:
        engine = make_engine()
        gate = asyncio.Event()
        fetch = engine._fetcher.next_page

        async def slow_fetch(cursor: Any) -> Any:
            await gate.wait()
            return await fetch(cursor)

        with patch.object(engine._fetcher, "next_page", side_effect=slow_fetch):
            task = asyncio.create_task(engine.process_next_page())
            await asyncio.sleep(0)

            assert engine.state is EngineState.RUNNING
            with pytest.raises(EngineStateError):
                await engine.process_next_page()
            with pytest.raises(EngineStateError):
                await engine.process_all()
            with pytest.raises(EngineStateError):
                engine.reset()

            gate.set()
            result = await task

        assert result.batch_number == 1
        assert engine.state is EngineState.IDLE

    @pytest.mark.asyncio
    async def test_unexpected_error_sets_error_state(self, make_engine: Any) -> None:
        engine = make_engine()

        with patch.object(engine._fetcher, "next_page", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                await engine.process_next_page()

        assert engine.state is EngineState.ERROR
        assert engine.last_error == "boom"

        result = await engine.process_next_page()
        assert result.batch_number == 1


class TestCacheIntegration:
    """Tests for reference lookups through the cache."""

    @pytest.fixture
    def same_user_store(self) -> InMemoryDocumentStore:
        chats = {f"c{i:02d}": {"users": ["u1"]} for i in range(10)}
        return InMemoryDocumentStore(
            {"iboard_users": {"u1": {"company_id": "CO-100"}}, "chats": chats},
            enable_tracing=False,
        )

    @pytest.mark.asyncio
    async def test_repeated_reference_read_once(
        self, make_engine: Any, same_user_store: InMemoryDocumentStore
    ) -> None:
        engine = make_engine(
            store=same_user_store, config=EngineConfig(page_size=10, throttle_seconds=0)
        )

        result = await engine.process_next_page()

        assert result.updated == 10
        assert same_user_store.read_calls == 1
        stats = engine.get_cache_stats()
        assert stats.hits == 9
        assert stats.misses == 1

    @pytest.mark.asyncio
    async def test_disabled_cache_reads_every_time(
        self, make_engine: Any, same_user_store: InMemoryDocumentStore
    ) -> None:
        engine = make_engine(
            store=same_user_store, config=EngineConfig(page_size=10, throttle_seconds=0)
        )
        await engine.set_cache_enabled(False)

        await engine.process_next_page()

        assert same_user_store.read_calls == 10
        assert engine.get_cache_stats().requests == 0
        assert same_user_store.get_collection("migration_settings")["engine"] == {
            "cache_enabled": False
        }

    @pytest.mark.asyncio
    async def test_toggle_failure_rolls_back(
        self, make_engine: Any, seeded_store: InMemoryDocumentStore
    ) -> None:
        engine = make_engine()
        seeded_store.fail_next_write("permission denied")

        with pytest.raises(ToggleError):
            await engine.set_cache_enabled(False)

        assert engine.toggles.is_enabled("cache_enabled") is True

    @pytest.mark.asyncio
    async def test_expired_entries_are_reloaded(self, make_engine: Any, clock: Any) -> None:
        engine = make_engine(config=EngineConfig(page_size=3, throttle_seconds=0))
        await engine.process_next_page()
        clock.advance(601)

        removed = engine.cleanup_expired_cache_entries()

        assert removed == 2
        assert len(engine.cache) == 0

    @pytest.mark.asyncio
    async def test_clear_cache(self, make_engine: Any) -> None:
        engine = make_engine()
        await engine.process_next_page()

        engine.clear_cache()

        assert len(engine.cache) == 0
        assert engine.get_cache_stats().hits == 0


class TestStatsPublishing:
    """Tests for stats callbacks and streams."""

    @pytest.mark.asyncio
    async def test_handler_receives_snapshots(self, make_engine: Any) -> None:
        engine = make_engine()
        handler = MagicMock()
        engine.on_stats_update(handler)

        await engine.process_next_page()

        handler.assert_called_once()
        snapshot = handler.call_args.args[0]
        assert isinstance(snapshot, StatsSnapshot)
        assert snapshot.processed_items == 3

    @pytest.mark.asyncio
    async def test_unsubscribed_handler_not_called(self, make_engine: Any) -> None:
        engine = make_engine()
        handler = MagicMock()
        unsubscribe = engine.on_stats_update(handler)
        unsubscribe()
        unsubscribe()

        await engine.process_next_page()

        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_break_page(self, make_engine: Any) -> None:
        engine = make_engine()
        engine.on_stats_update(MagicMock(side_effect=RuntimeError("ui gone")))

        result = await engine.process_next_page()

        assert result.batch_number == 1

    @pytest.mark.asyncio
    async def test_count_total_publishes(self, make_engine: Any) -> None:
        engine = make_engine()
        handler = MagicMock()
        engine.on_stats_update(handler)

        total = await engine.count_total()

        assert total == 7
        assert handler.call_args.args[0].total_items == 7
        assert handler.call_args.args[0].progress_percent == 0.0

    @pytest.mark.asyncio
    async def test_stream_yields_current_then_updates(self, make_engine: Any) -> None:
        engine = make_engine()
        stream = engine.stream_stats()

        first = await stream.__anext__()
        await engine.process_next_page()
        second = await stream.__anext__()
        await stream.aclose()

        assert first.processed_items == 0
        assert second.processed_items == 3
        assert engine._streams == set()

    @pytest.mark.asyncio
    async def test_stream_without_current(self, make_engine: Any) -> None:
        engine = make_engine()
        stream = engine.stream_stats(include_current=False)
        pending = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0)

        await engine.count_total()
        snapshot = await asyncio.wait_for(pending, timeout=1)
        await stream.aclose()

        assert snapshot.total_items == 7
