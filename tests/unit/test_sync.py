"""
Tests for bulk sync: candidate selection, the batch engine, progress
accounting and the client-side runner loop.

Testing philosophy:
- The batch engine is stateless, so every multi-batch test drives it
  exactly like a client would: next_cursor() of one result is the input
  of the next call
- The offloader and engine share a fixed clock, so "uploaded during
  this session" is deterministic
"""

import os
from datetime import datetime, timedelta

import pytest

from r2offload.core.media.errors import AuthError, NotConfiguredError, ServerError
from r2offload.core.media.models import (
    BatchCursor,
    BatchResult,
    ItemOutcome,
    MediaRecord,
    OffloadConfig,
    OutcomeKind,
    RemoteMetadata,
    SyncMode,
    UploadMode,
)
from r2offload.core.media.store import RecordFilter
from r2offload.core.offload import MediaOffloader
from r2offload.core.sync import (
    BatchEngine,
    BulkSyncRunner,
    ProgressTracker,
    SyncSelector,
    SyncState,
)
from r2offload.infrastructure.storage import MockObjectStoreClient


class FailingObjectStore(MockObjectStoreClient):
    """Mock store that raises a chosen error for chosen variants."""

    def __init__(self, failures, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures

    def upload(self, record_id, local_path, variant="full", uploaded_at=None):
        if variant in self.failures:
            raise self.failures[variant]
        return super().upload(record_id, local_path, variant, uploaded_at)


class ThumbnailOnlyRegenerator:
    """Pretends to regenerate images and keeps only the thumbnail size."""

    def __init__(self):
        self.calls = []

    def regenerate(self, record):
        self.calls.append(record.id)
        stem = record.variants["full"].rsplit(".", 1)[0]
        return {"thumbnail": f"{stem}-150x150.jpg"}


@pytest.fixture
def make_engine(store, clock):
    def _make(client, regenerator=None, **config) -> BatchEngine:
        offloader = MediaOffloader(client, store, OffloadConfig(**config), clock=clock)
        return BatchEngine(SyncSelector(store), offloader, store, regenerator=regenerator, clock=clock)

    return _make


def mark_primary_synced(store, record, uploaded_at):
    """Give a record remote metadata for its primary only."""
    key = record.attached_file
    store.save_remote_metadata(
        record.id,
        "full",
        RemoteMetadata(key=key, url=f"https://media.example.test/{key}", uploaded_at=uploaded_at),
    )


def batch_result(processed, remaining, kinds, batch_size=10, halt_reason=None, started=None):
    return BatchResult(
        cursor=BatchCursor(batch_size=batch_size),
        processed_count=processed,
        outcomes=[ItemOutcome(i, kind, "") for i, kind in enumerate(kinds)],
        total_remaining=remaining,
        session_started_at=started or datetime(2024, 1, 1),
        halt_reason=halt_reason,
    )


# ---------------------------------------------------------------------------
# Cursor and result values
# ---------------------------------------------------------------------------

class TestBatchCursor:

    def test_negative_offset_rejected(self):
        with pytest.raises(ValueError, match="cannot be negative"):
            BatchCursor(offset=-1)

    @pytest.mark.parametrize("size", [0, 51])
    def test_batch_size_bounds(self, size):
        with pytest.raises(ValueError, match="between 1 and 50"):
            BatchCursor(batch_size=size)

    def test_advance(self):
        assert BatchCursor(offset=10, batch_size=10).advance(7).offset == 17

    def test_skipped_is_info_on_the_wire(self):
        assert OutcomeKind.SKIPPED.wire_kind == "info"
        assert OutcomeKind.SUCCESS.wire_kind == "success"
        assert OutcomeKind.WARNING.wire_kind == "warning"


# ---------------------------------------------------------------------------
# Full mode
# ---------------------------------------------------------------------------

class TestFullSyncBatches:
    """Never-synced records, one batch per call."""

    def test_offsets_stay_stable_across_batches(self, make_engine, make_record, object_store, store):
        """25 records at batch size 10 come back as 10, 10, 5 with nothing skipped."""
        for record_id in range(1, 26):
            make_record(record_id)
        engine = make_engine(object_store)

        first = engine.process_batch(BatchCursor(offset=0, batch_size=10))
        second = engine.process_batch(first.next_cursor())
        third = engine.process_batch(second.next_cursor())

        assert [first.processed_count, second.processed_count, third.processed_count] == [10, 10, 5]
        assert [first.total_remaining, second.total_remaining, third.total_remaining] == [15, 5, 0]
        assert [first.exhausted, second.exhausted, third.exhausted] == [False, False, True]
        assert second.cursor.offset == 10 and third.cursor.offset == 20

        processed_ids = [o.record_id for r in (first, second, third) for o in r.outcomes]
        assert processed_ids == list(range(1, 26))
        assert all(o.kind is OutcomeKind.SUCCESS for r in (first, second, third) for o in r.outcomes)
        assert store.count(RecordFilter.UNSYNCED) == 0

    def test_session_start_is_echoed(self, make_engine, make_record, object_store, clock):
        make_record(1)
        engine = make_engine(object_store)

        result = engine.process_batch(BatchCursor())

        assert result.session_started_at == clock.now
        assert result.next_cursor().session_started_at == clock.now

    def test_naive_session_start_is_treated_as_utc(self, make_engine, make_record, object_store):
        make_record(1)
        engine = make_engine(object_store)

        result = engine.process_batch(BatchCursor(session_started_at=datetime(2024, 6, 1, 9, 0)))

        assert result.session_started_at.utcoffset() == timedelta(0)

    def test_later_anchor_drops_already_synced_records(self, make_engine, make_record, object_store, clock):
        """Without the session anchor, offsets shift past unsynced records."""
        for record_id in range(1, 26):
            make_record(record_id)
        engine = make_engine(object_store)
        engine.process_batch(BatchCursor(offset=0, batch_size=10))

        stale = engine.process_batch(
            BatchCursor(offset=10, batch_size=10, session_started_at=clock.now + timedelta(hours=1))
        )

        assert [o.record_id for o in stale.outcomes] == [21, 22, 23, 24, 25]

    def test_repeated_batch_uploads_nothing(self, make_engine, make_record, object_store):
        for record_id in range(1, 4):
            make_record(record_id)
        engine = make_engine(object_store)
        first = engine.process_batch(BatchCursor(offset=0, batch_size=10))
        puts = object_store.put_count

        again = engine.process_batch(
            BatchCursor(offset=0, batch_size=10, session_started_at=first.session_started_at)
        )

        assert object_store.put_count == puts
        assert [o.kind for o in again.outcomes] == [OutcomeKind.SKIPPED] * 3
        assert again.outcomes[0].message == "Skipped photo1.jpg: already synced"

    def test_messages_name_the_record(self, make_engine, make_record, object_store):
        make_record(1, title="Sunset")
        make_record(2)

        result = make_engine(object_store).process_batch(BatchCursor())

        assert [o.message for o in result.outcomes] == [
            "Synced Sunset -> R2",
            "Synced photo2.jpg -> R2",
        ]

    def test_missing_file_is_an_error_and_batch_continues(self, make_engine, make_record, object_store):
        os.remove(make_record(1).local_path)
        make_record(2)

        result = make_engine(object_store).process_batch(BatchCursor())

        assert result.outcomes[0] == ItemOutcome(1, OutcomeKind.ERROR, "Skipped photo1.jpg: file not found")
        assert result.outcomes[1].kind is OutcomeKind.SUCCESS
        assert result.halt_reason is None

    def test_failed_variant_is_still_success(self, make_engine, make_record):
        make_record(1)
        client = FailingObjectStore({"thumbnail": ServerError("HTTP 500: boom")})

        result = make_engine(client).process_batch(BatchCursor())

        assert result.outcomes[0].kind is OutcomeKind.SUCCESS
        assert result.outcomes[0].message == "Synced photo1.jpg -> R2 (failed variants: thumbnail)"

    def test_primary_failure_message(self, make_engine, make_record):
        make_record(1)
        client = FailingObjectStore({"full": ServerError("HTTP 500: boom")})

        result = make_engine(client).process_batch(BatchCursor())

        assert result.outcomes[0] == ItemOutcome(1, OutcomeKind.ERROR, "Failed to sync photo1.jpg: HTTP 500: boom")
        assert result.halt_reason is None

    def test_auth_error_sets_halt_reason(self, make_engine, make_record):
        """A fatal error doesn't abort the batch but tells the client to stop."""
        for record_id in range(1, 4):
            make_record(record_id)
        client = FailingObjectStore({"full": AuthError("Access denied")})

        result = make_engine(client).process_batch(BatchCursor())

        assert result.processed_count == 3
        assert [o.kind for o in result.outcomes] == [OutcomeKind.ERROR] * 3
        assert result.halt_reason == "Access denied"

    def test_not_configured_raises_before_any_record(self, make_engine, make_record, store):
        make_record(1)
        client = MockObjectStoreClient(configured=False)

        with pytest.raises(NotConfiguredError):
            make_engine(client).process_batch(BatchCursor())

        assert not store.get(1).is_synced

    def test_full_only_mode(self, make_engine, make_record, object_store, store):
        make_record(1)

        make_engine(object_store, upload_mode=UploadMode.FULL_ONLY).process_batch(BatchCursor())

        assert object_store.put_count == 1
        assert store.get(1).is_partially_synced

    def test_regenerate_metadata(self, make_engine, make_record, object_store, store):
        make_record(1)
        regenerator = ThumbnailOnlyRegenerator()

        make_engine(object_store, regenerator=regenerator).process_batch(
            BatchCursor(regenerate_metadata=True)
        )

        assert regenerator.calls == [1]
        assert set(store.get(1).variants) == {"full", "thumbnail"}
        assert object_store.put_count == 2

    def test_run_scheduled_batch(self, make_engine, make_record, object_store):
        for record_id in range(1, 4):
            make_record(record_id)
        engine = make_engine(object_store)

        assert engine.run_scheduled_batch(batch_size=2) == 2
        assert engine.run_scheduled_batch(batch_size=10) == 1


# ---------------------------------------------------------------------------
# Incremental mode
# ---------------------------------------------------------------------------

class TestIncrementalSync:
    """Synced records with variants that never made it to the store."""

    @pytest.fixture
    def earlier(self, clock):
        return clock.now - timedelta(days=30)

    def test_uploads_missing_variants_only(self, make_engine, make_record, object_store, store, earlier):
        record = make_record(1)
        mark_primary_synced(store, record, earlier)

        result = make_engine(object_store).process_batch(BatchCursor(mode=SyncMode.INCREMENTAL))

        assert result.outcomes[0] == ItemOutcome(
            1, OutcomeKind.SUCCESS, "Synced 2 variant(s) of photo1.jpg -> R2"
        )
        assert object_store.put_count == 2
        saved = store.get(1)
        assert saved.remote["full"].uploaded_at == earlier
        assert not saved.is_partially_synced

    def test_ignores_upload_mode(self, make_engine, make_record, object_store, store, earlier):
        record = make_record(1)
        mark_primary_synced(store, record, earlier)

        make_engine(object_store, upload_mode=UploadMode.FULL_ONLY).process_batch(
            BatchCursor(mode=SyncMode.INCREMENTAL)
        )

        assert object_store.put_count == 2

    def test_unsynced_records_are_not_candidates(self, make_engine, make_record, object_store):
        make_record(1)

        result = make_engine(object_store).process_batch(BatchCursor(mode=SyncMode.INCREMENTAL))

        assert result.processed_count == 0
        assert result.exhausted

    def test_paging_is_anchored(self, make_engine, make_record, object_store, store, earlier):
        for record_id in range(1, 4):
            mark_primary_synced(store, make_record(record_id), earlier)
        engine = make_engine(object_store)

        first = engine.process_batch(BatchCursor(batch_size=2, mode=SyncMode.INCREMENTAL))
        second = engine.process_batch(first.next_cursor())

        assert [o.record_id for o in first.outcomes + second.outcomes] == [1, 2, 3]
        assert [first.total_remaining, second.total_remaining] == [1, 0]
        assert second.exhausted

    def test_variant_files_missing_is_a_warning(self, make_engine, make_record, object_store, store, earlier):
        mark_primary_synced(store, make_record(1, create_variant_files=False), earlier)

        result = make_engine(object_store).process_batch(BatchCursor(mode=SyncMode.INCREMENTAL))

        assert result.outcomes[0].kind is OutcomeKind.WARNING
        assert "thumbnail, medium" in result.outcomes[0].message
        assert object_store.put_count == 0

    def test_all_variants_failing_is_an_error(self, make_engine, make_record, store, earlier):
        mark_primary_synced(store, make_record(1), earlier)
        client = FailingObjectStore({
            "thumbnail": AuthError("Access denied"),
            "medium": AuthError("Access denied"),
        })

        result = make_engine(client).process_batch(BatchCursor(mode=SyncMode.INCREMENTAL))

        assert result.outcomes[0].kind is OutcomeKind.ERROR
        assert result.halt_reason == "Access denied"

    def test_non_image_is_skipped(self, make_engine, make_record, object_store):
        record = make_record(1, name="doc.pdf", mime_type="application/pdf")

        outcome, error = make_engine(object_store).sync_incremental(record)

        assert outcome == ItemOutcome(1, OutcomeKind.SKIPPED, "Skipped doc.pdf: not an image")
        assert error is None

    def test_complete_record_is_skipped(self, make_engine, store, object_store):
        record = MediaRecord(id=9, local_path=__file__, mime_type="image/jpeg")
        store.add(record)

        outcome, _ = make_engine(object_store).sync_incremental(record)

        assert outcome.kind is OutcomeKind.SKIPPED
        assert outcome.message.endswith("all variants synced")


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

class TestSyncSelector:

    def test_status_counts(self, make_record, store, clock):
        make_record(1)
        mark_primary_synced(store, make_record(2), clock.now)
        complete = make_record(3, variants={})
        mark_primary_synced(store, complete, clock.now)

        status = SyncSelector(store).status()

        assert (status.total, status.synced, status.unsynced, status.partially_synced) == (3, 2, 1, 1)

    def test_count_candidates_by_mode(self, make_record, store, clock):
        make_record(1)
        mark_primary_synced(store, make_record(2), clock.now)
        selector = SyncSelector(store)

        assert selector.count_candidates(SyncMode.FULL) == 1
        assert selector.count_candidates(SyncMode.INCREMENTAL) == 1
        assert selector.count_candidates(SyncMode.FULL, clock.now) == 2


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------

class TestProgressTracker:

    def test_accumulates_outcomes(self):
        progress = ProgressTracker()

        progress.record(batch_result(4, 6, [
            OutcomeKind.SUCCESS, OutcomeKind.ERROR, OutcomeKind.SKIPPED, OutcomeKind.WARNING,
        ]))

        assert (progress.succeeded, progress.failed, progress.skipped, progress.warnings) == (1, 1, 1, 1)
        assert progress.total == 10
        assert progress.percentage == 40

    def test_total_is_reestimated_each_batch(self):
        progress = ProgressTracker()
        progress.record(batch_result(10, 15, [OutcomeKind.SUCCESS] * 10))
        progress.record(batch_result(10, 8, [OutcomeKind.SUCCESS] * 10))

        assert progress.total == 28
        assert progress.batches == 2

    def test_complete_pins_total(self):
        progress = ProgressTracker()
        progress.record(batch_result(3, 2, [OutcomeKind.SUCCESS] * 3, batch_size=5))

        progress.complete()

        assert progress.total == 3
        assert progress.percentage == 100

    def test_empty(self):
        assert ProgressTracker().percentage == 0
        assert ProgressTracker().summary() == "0/0 processed (0%): 0 synced, 0 failed, 0 skipped, 0 warnings"


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

class TestBulkSyncRunner:
    """Client loop over the stateless engine."""

    @pytest.fixture
    def sleeps(self):
        return []

    def test_runs_to_completion(self, make_engine, make_record, object_store, sleeps):
        for record_id in range(1, 26):
            make_record(record_id)
        engine = make_engine(object_store)
        runner = BulkSyncRunner(engine.process_batch, batch_size=10, sleep=sleeps.append)

        state = runner.run()

        assert state is SyncState.COMPLETED
        assert runner.progress.processed == 25
        assert runner.progress.succeeded == 25
        assert runner.progress.batches == 3
        assert runner.progress.percentage == 100
        assert sleeps == [0.5, 0.5]

    def test_exact_multiple_ends_with_empty_batch(self, make_engine, make_record, object_store, sleeps):
        for record_id in range(1, 21):
            make_record(record_id)
        runner = BulkSyncRunner(make_engine(object_store).process_batch, batch_size=10, sleep=sleeps.append)

        assert runner.run() is SyncState.COMPLETED
        assert runner.progress.batches == 3
        assert runner.progress.processed == 20

    def test_stop_takes_effect_before_next_batch(self, make_engine, make_record, object_store, sleeps):
        for record_id in range(1, 26):
            make_record(record_id)
        runner = BulkSyncRunner(
            make_engine(object_store).process_batch,
            batch_size=10,
            sleep=sleeps.append,
            on_batch=lambda result, progress: runner.stop(),
        )

        assert runner.run() is SyncState.STOPPED
        assert runner.progress.processed == 10

    def test_halt_reason_errors_the_run(self, make_engine, make_record, sleeps):
        for record_id in range(1, 26):
            make_record(record_id)
        client = FailingObjectStore({"full": AuthError("Access denied")})
        runner = BulkSyncRunner(make_engine(client).process_batch, sleep=sleeps.append)

        assert runner.run() is SyncState.ERRORED
        assert runner.error == "Access denied"
        assert runner.progress.batches == 1

    def test_raising_batch_call_errors_the_run(self, sleeps):
        def broken(cursor):
            raise RuntimeError("HTTP 502 from proxy")

        runner = BulkSyncRunner(broken, sleep=sleeps.append)

        assert runner.run() is SyncState.ERRORED
        assert runner.error == "HTTP 502 from proxy"

    def test_cursor_passed_between_batches(self, sleeps):
        cursors = []

        def fake(cursor):
            cursors.append(cursor)
            processed = 5 if cursor.offset == 0 else 2
            return BatchResult(
                cursor=cursor,
                processed_count=processed,
                outcomes=[],
                total_remaining=2 if cursor.offset == 0 else 0,
                session_started_at=datetime(2024, 6, 1),
            )

        runner = BulkSyncRunner(fake, batch_size=5, mode=SyncMode.INCREMENTAL, sleep=sleeps.append)
        runner.run()

        assert [c.offset for c in cursors] == [0, 5]
        assert cursors[0].session_started_at is None
        assert cursors[1].session_started_at == datetime(2024, 6, 1)
        assert all(c.mode is SyncMode.INCREMENTAL for c in cursors)

    @staticmethod
    def _batches_with_delay(delay_ms):
        def fake(cursor):
            return BatchResult(
                cursor=cursor,
                processed_count=cursor.batch_size if cursor.offset < 10 else 0,
                outcomes=[],
                total_remaining=0,
                session_started_at=datetime(2024, 6, 1),
                delay_ms=delay_ms,
            )

        return fake

    def test_follows_server_delay(self, sleeps):
        runner = BulkSyncRunner(self._batches_with_delay(1500), batch_size=5, sleep=sleeps.append)
        runner.run()

        assert sleeps == [1.5, 1.5]

    def test_explicit_delay_overrides_server(self, sleeps):
        runner = BulkSyncRunner(
            self._batches_with_delay(1500), batch_size=5, delay_ms=200, sleep=sleeps.append
        )
        runner.run()

        assert sleeps == [0.2, 0.2]

    def test_server_delay_is_clamped(self, sleeps):
        runner = BulkSyncRunner(self._batches_with_delay(60000), batch_size=5, sleep=sleeps.append)
        runner.run()

        assert sleeps == [5.0, 5.0]

    @pytest.mark.parametrize(
        "batch_size, delay_ms, expected",
        [(0, 1, (1, 100)), (500, 99999, (50, 5000)), (25, 800, (25, 800))],
    )
    def test_settings_are_clamped(self, batch_size, delay_ms, expected):
        runner = BulkSyncRunner(lambda c: None, batch_size=batch_size, delay_ms=delay_ms)
        assert (runner.batch_size, runner.delay_ms) == expected

    def test_cannot_run_twice_concurrently(self):
        runner = BulkSyncRunner(lambda c: None)
        runner.state = SyncState.RUNNING

        with pytest.raises(RuntimeError, match="already running"):
            runner.run()
