"""Tests for FileLifecycleManager."""

from __future__ import annotations

import hashlib
import io
import pytest
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

from sharehub.core.datasource import read_all
from sharehub.core.errors import (
    AccessDeniedError,
    DenyReason,
    ExpiredError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from sharehub.core.files import FileLifecycleManager
from sharehub.core.files.models import (
    AccessContext,
    ExpiredReason,
    Folder,
    UploadMetadata,
    Visibility,
    thumbnail_storage_key,
)


class Clock:
    """Controllable time source."""

    def __init__(self):
        self.now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def manager(datasource, file_repository, folder_repository, dispatcher, clock):
    return FileLifecycleManager(
        datasource,
        file_repository,
        folder_repository,
        dispatcher,
        max_upload_bytes=64 * 1024,
        clock=clock,
    )


def stored_objects(datasource) -> list[str]:
    base = datasource.base_dir
    if not base.exists():
        return []
    return sorted(
        str(p.relative_to(base)) for p in base.rglob("*")
        if p.is_file() and ".tmp" not in p.parts)


async def upload(manager, data=b"hello world", name="notes.txt", owner="alice", **meta):
    return await manager.ingest(data, UploadMetadata(name=name, owner_id=owner, **meta))


class TestIngest:
    @pytest.mark.asyncio
    async def test_ingest_writes_bytes_then_record(self, manager, datasource, dispatcher):
        record = await upload(manager)

        assert record.name == "notes.txt"
        assert record.size_bytes == 11
        assert record.mime_type == "text/plain"
        assert record.visibility == Visibility.PUBLIC
        assert record.checksum == "sha256:" + hashlib.sha256(b"hello world").hexdigest()
        assert record.storage_key.endswith(".txt")
        assert len(record.storage_key) == 12 + len(".txt")

        assert manager.get(record.file_id) == record
        assert await read_all(await datasource.get(record.storage_key)) == b"hello world"
        assert dispatcher.pending_count() == 1

    @pytest.mark.asyncio
    async def test_ingest_streams_file_objects(self, manager, datasource):
        data = b"z" * 10_000
        record = await upload(manager, io.BytesIO(data), name="blob")

        assert record.size_bytes == 10_000
        assert record.mime_type == "application/octet-stream"
        assert "." not in record.storage_key
        assert await read_all(await datasource.get(record.storage_key)) == data

    @pytest.mark.asyncio
    async def test_display_name_is_trimmed(self, manager):
        record = await upload(manager, name="  report.pdf  ")
        assert record.name == "report.pdf"
        assert record.mime_type == "application/pdf"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "   "])
    async def test_empty_name_has_no_side_effects(
            self, manager, datasource, dispatcher, file_repository, name):
        with pytest.raises(ValidationError):
            await upload(manager, name=name)

        assert stored_objects(datasource) == []
        assert dispatcher.pending_count() == 0
        assert file_repository.list_for_owner("alice") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("meta", [
        {"max_views": 0},
        {"max_views": -3},
        {"max_views": True},
        {"max_views": 2**31},
        {"visibility": "unlisted"},
        {"password": ""},
    ])
    async def test_invalid_metadata_rejected(self, manager, datasource, meta):
        with pytest.raises(ValidationError):
            await upload(manager, **meta)
        assert stored_objects(datasource) == []

    @pytest.mark.asyncio
    async def test_largest_max_views_accepted(self, manager):
        record = await upload(manager, max_views=2**31 - 1)

        assert manager.get(record.file_id).max_views == 2**31 - 1

    @pytest.mark.asyncio
    async def test_expiry_must_be_in_future(self, manager, clock, datasource):
        with pytest.raises(ValidationError):
            await upload(manager, expires_at=clock.now)
        assert stored_objects(datasource) == []

    @pytest.mark.asyncio
    async def test_upload_into_foreign_folder_rejected(
            self, manager, folder_repository, datasource):
        folder_repository.create(Folder("bobs-folder", "Bob's", "bob"))

        with pytest.raises(ValidationError):
            await upload(manager, folder_id="bobs-folder")
        with pytest.raises(ValidationError):
            await upload(manager, folder_id="missing-folder")
        assert stored_objects(datasource) == []

    @pytest.mark.asyncio
    async def test_upload_into_own_folder(self, manager, folder_repository):
        folder_repository.create(Folder("docs", "Docs", "alice"))

        record = await upload(manager, folder_id="docs")

        assert record.folder_id == "docs"
        assert folder_repository.get("docs").file_ids == {record.file_id}

    @pytest.mark.asyncio
    async def test_oversized_upload_leaves_nothing(
            self, manager, datasource, file_repository, dispatcher):
        with pytest.raises(ValidationError):
            await upload(manager, b"x" * (64 * 1024 + 1))

        assert stored_objects(datasource) == []
        assert file_repository.list_for_owner("alice") == []
        assert dispatcher.pending_count() == 0

    @pytest.mark.asyncio
    async def test_key_collision_retried(self, manager, datasource, monkeypatch):
        await datasource.put("AAAAAAAAAAAA.txt", b"taken")
        picks = iter("A" * 12 + "B" * 12)
        monkeypatch.setattr(
            "sharehub.core.files.lifecycle.secrets.choice", lambda _: next(picks))

        record = await upload(manager)

        assert record.storage_key == "BBBBBBBBBBBB.txt"
        assert await read_all(await datasource.get("AAAAAAAAAAAA.txt")) == b"taken"

    @pytest.mark.asyncio
    async def test_record_failure_removes_bytes(
            self, manager, datasource, file_repository, monkeypatch):
        def fail(record):
            raise ValueError("database down")
        monkeypatch.setattr(file_repository, "create", fail)

        with pytest.raises(StorageError):
            await upload(manager)

        assert stored_objects(datasource) == []

    @pytest.mark.asyncio
    async def test_enqueue_failure_is_not_fatal(self, manager, dispatcher, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("queue unavailable")
        monkeypatch.setattr(dispatcher, "enqueue", broken)

        record = await upload(manager)

        assert manager.get(record.file_id) is not None

    @pytest.mark.asyncio
    async def test_password_is_hashed(self, manager):
        record = await upload(manager, password="hunter2")

        assert record.has_password
        assert "hunter2" not in record.password_hash
        assert record.to_public_dict()["password"] is True
        assert "password_hash" not in record.to_public_dict()


class TestViews:
    @pytest.mark.asyncio
    async def test_max_views_sequential(self, manager):
        record = await upload(manager, max_views=3)

        for expected in (1, 2, 3):
            assert manager.record_view(record.file_id, AccessContext()).views == expected

        with pytest.raises(ExpiredError):
            manager.record_view(record.file_id, AccessContext())

        stored = manager.get(record.file_id)
        assert stored.views == 3
        assert stored.expired
        assert stored.expired_reason == ExpiredReason.VIEWS

    @pytest.mark.asyncio
    async def test_max_views_concurrent(self, manager):
        record = await upload(manager, max_views=4)

        def attempt(_):
            try:
                manager.record_view(record.file_id, AccessContext())
                return "ok"
            except ExpiredError:
                return "expired"

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(attempt, range(16)))

        assert outcomes.count("ok") == 4
        assert outcomes.count("expired") == 12
        assert manager.get(record.file_id).views == 4

    @pytest.mark.asyncio
    async def test_open_streams_bytes_and_counts(self, manager):
        record = await upload(manager, b"payload")

        opened, stream = await manager.open(record.file_id, AccessContext())

        assert await read_all(stream) == b"payload"
        assert opened.views == 1

    @pytest.mark.asyncio
    async def test_open_missing_file(self, manager):
        with pytest.raises(NotFoundError):
            await manager.open("nope", AccessContext())

    @pytest.mark.asyncio
    async def test_failed_read_does_not_use_a_view(self, manager, datasource, monkeypatch):
        record = await upload(manager, b"payload", max_views=1)
        real_get = datasource.get
        failures = 0

        async def flaky_get(key):
            nonlocal failures
            if failures < 2:
                failures += 1
                raise StorageError("disk unavailable")
            return await real_get(key)

        monkeypatch.setattr(datasource, "get", flaky_get)

        with pytest.raises(StorageError):
            await manager.open(record.file_id, AccessContext())

        stored = manager.get(record.file_id)
        assert stored.views == 0
        assert not stored.expired

        opened, stream = await manager.open(record.file_id, AccessContext())
        assert await read_all(stream) == b"payload"
        assert opened.views == 1

    @pytest.mark.asyncio
    async def test_stream_closed_when_last_view_is_lost(
            self, manager, file_repository, monkeypatch):
        record = await upload(manager, b"payload", max_views=1)
        closed = []

        async def stream():
            try:
                yield b"payload"
            finally:
                closed.append(True)

        async def get(key):
            gen = stream()
            # Start the generator so aclose() runs its cleanup
            assert await gen.__anext__() == b"payload"
            return gen

        monkeypatch.setattr(manager.datasource, "get", get)
        monkeypatch.setattr(file_repository, "increment_views", lambda file_id, now: None)

        with pytest.raises(ExpiredError):
            await manager.open(record.file_id, AccessContext())

        assert closed == [True]

    @pytest.mark.asyncio
    async def test_denied_views_are_not_counted(self, manager):
        record = await upload(manager, password="pw")

        with pytest.raises(AccessDeniedError) as exc_info:
            manager.record_view(record.file_id, AccessContext(password="wrong"))

        assert exc_info.value.reason == DenyReason.BAD_PASSWORD
        assert manager.get(record.file_id).views == 0
        assert manager.record_view(record.file_id, AccessContext(password="pw")).views == 1

    @pytest.mark.asyncio
    async def test_private_then_public(self, manager):
        record = await upload(manager, owner="u1", visibility="private")

        with pytest.raises(AccessDeniedError) as exc_info:
            manager.record_view(record.file_id, AccessContext("u2"))
        assert exc_info.value.reason == DenyReason.FORBIDDEN

        manager.update(record.file_id, "u1", visibility="public")

        assert manager.record_view(record.file_id, AccessContext("u2")).views == 1


class TestExpiry:
    @pytest.mark.asyncio
    async def test_past_expiry_denied_without_sweep(self, manager, clock, datasource):
        record = await upload(manager, expires_at=clock.now + timedelta(hours=1))
        clock.advance(hours=2)

        with pytest.raises(ExpiredError):
            await manager.open(record.file_id, AccessContext())

        stored = manager.get(record.file_id)
        assert stored.expired
        assert stored.expired_reason == ExpiredReason.TIME
        assert stored.views == 0
        # Expiry never removes bytes
        assert await datasource.exists(record.storage_key)

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, manager, clock):
        expiring = await upload(manager, expires_at=clock.now + timedelta(minutes=5))
        lasting = await upload(manager, expires_at=clock.now + timedelta(days=5))
        clock.advance(minutes=10)

        assert manager.expire_sweep() == 1
        assert manager.expire_sweep() == 0

        assert manager.get(expiring.file_id).expired
        assert not manager.get(lasting.file_id).expired
        with pytest.raises(ExpiredError):
            manager.record_view(expiring.file_id, AccessContext())

    @pytest.mark.asyncio
    async def test_raising_limits_does_not_reopen(self, manager):
        record = await upload(manager, max_views=1)
        manager.record_view(record.file_id, AccessContext())

        manager.update(record.file_id, "alice", max_views=10)

        with pytest.raises(ExpiredError):
            manager.record_view(record.file_id, AccessContext())
        assert manager.get(record.file_id).max_views == 10

    @pytest.mark.asyncio
    async def test_edit_after_elapsed_time_records_expiry_first(self, manager, clock):
        record = await upload(manager, expires_at=clock.now + timedelta(minutes=1))
        clock.advance(minutes=2)

        updated = manager.update(
            record.file_id, "alice", expires_at=clock.now + timedelta(days=1))

        assert updated.expired
        assert updated.expired_reason == ExpiredReason.TIME
        with pytest.raises(ExpiredError):
            manager.record_view(record.file_id, AccessContext())


class TestUpdate:
    @pytest.mark.asyncio
    async def test_only_owner_may_edit(self, manager):
        record = await upload(manager)

        with pytest.raises(AccessDeniedError):
            manager.update(record.file_id, "mallory", name="mine now")

    @pytest.mark.asyncio
    async def test_set_and_clear_password(self, manager):
        record = await upload(manager)

        protected = manager.update(record.file_id, "alice", password="pw")
        assert protected.has_password

        cleared = manager.update(record.file_id, "alice", password=None)
        assert not cleared.has_password

    @pytest.mark.asyncio
    async def test_invalid_values_rejected(self, manager):
        record = await upload(manager)

        with pytest.raises(ValidationError):
            manager.update(record.file_id, "alice", name="  ")
        with pytest.raises(ValidationError):
            manager.update(record.file_id, "alice", max_views=0)
        assert manager.get(record.file_id).name == "notes.txt"

    @pytest.mark.asyncio
    async def test_replace_content(self, manager, datasource, dispatcher):
        record = await upload(manager, b"version one", name="pic.png", mime_type="image/png")
        job_before = dispatcher.queue.get(record.file_id)

        replaced = await manager.replace_content(
            record.file_id, "alice", b"version two!")

        assert replaced.storage_key == record.storage_key
        assert replaced.size_bytes == 12
        assert replaced.checksum != record.checksum
        assert await read_all(await datasource.get(record.storage_key)) == b"version two!"

        job_after = dispatcher.queue.get(record.file_id)
        assert dispatcher.pending_count() == 1
        assert job_after.job_id != job_before.job_id


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_removes_everything(self, manager, datasource, dispatcher):
        record = await upload(manager, b"img", name="pic.png")
        thumb_key = thumbnail_storage_key(record.file_id)
        await datasource.put(thumb_key, b"thumb")

        await manager.delete(record.file_id)

        assert not await datasource.exists(record.storage_key)
        assert not await datasource.exists(thumb_key)
        assert dispatcher.pending_count() == 0
        with pytest.raises(NotFoundError):
            manager.get(record.file_id)

    @pytest.mark.asyncio
    async def test_record_removed_before_thumbnail(
            self, manager, datasource, file_repository, monkeypatch):
        record = await upload(manager, b"img", name="pic.png")
        thumb_key = thumbnail_storage_key(record.file_id)
        original = datasource.delete
        record_present = {}

        async def tracking_delete(key):
            record_present[key] = file_repository.get(record.file_id) is not None
            await original(key)

        monkeypatch.setattr(datasource, "delete", tracking_delete)

        await manager.delete(record.file_id)

        assert record_present[record.storage_key] is True
        assert record_present[thumb_key] is False

    @pytest.mark.asyncio
    async def test_delete_missing_raises(self, manager):
        with pytest.raises(NotFoundError):
            await manager.delete("nope")

    @pytest.mark.asyncio
    async def test_delete_succeeds_when_bytes_already_gone(self, manager, datasource):
        record = await upload(manager)
        await datasource.delete(record.storage_key)

        await manager.delete(record.file_id)

        with pytest.raises(NotFoundError):
            manager.get(record.file_id)

    @pytest.mark.asyncio
    async def test_delete_retries_storage_once(self, manager, datasource, monkeypatch):
        record = await upload(manager)
        original = datasource.delete
        calls = []

        async def flaky_delete(key):
            calls.append(key)
            if len(calls) == 1:
                raise StorageError("transient")
            await original(key)

        monkeypatch.setattr(datasource, "delete", flaky_delete)

        await manager.delete(record.file_id)

        assert calls[:2] == [record.storage_key, record.storage_key]
        assert not await datasource.exists(record.storage_key)

    @pytest.mark.asyncio
    async def test_failed_byte_removal_keeps_record(self, manager, datasource, monkeypatch):
        record = await upload(manager)

        async def broken_delete(key):
            raise StorageError("backend down")

        monkeypatch.setattr(datasource, "delete", broken_delete)

        with pytest.raises(StorageError):
            await manager.delete(record.file_id)
        assert manager.get(record.file_id) is not None
