"""Queue operation tests: enqueue, update, remove, prune, stats."""

import sqlite3

import pytest

import uploadcue
from uploadcue import ItemKind, ItemStatus, MemoryStore, QueueItem, StorageError

PHOTO = {"uri": "file:///captures/photo.jpg", "type": "image/jpeg", "name": "photo.jpg"}


class FailingStore(MemoryStore):
    """Memory store whose writes can be switched off."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False
        self.saves = 0

    async def save(self, records):
        if self.fail_writes:
            raise StorageError("storage unavailable")
        self.saves += 1
        await super().save(records)


class TestEnqueue:
    """Tests for adding items."""

    async def test_enqueue_returns_pending_item(self):
        """A new item is pending with no attempts."""
        queue = uploadcue.UploadQueue()

        item = await queue.enqueue(
            "image",
            PHOTO,
            attributes={"description": "North wall", "tags": ["crack"]},
            project_id="p1",
        )

        assert item.id
        assert item.kind == ItemKind.IMAGE
        assert item.status == ItemStatus.PENDING
        assert item.attempt_count == 0
        assert item.last_attempt_at is None
        assert item.last_error is None
        assert item.result is None
        assert item.created_at
        assert item.project_id == "p1"

    async def test_payload_dict_is_normalized(self):
        """A payload dict using `type` becomes a Payload with mime_type."""
        queue = uploadcue.UploadQueue()
        item = await queue.enqueue("image", PHOTO)

        assert item.payload.uri == "file:///captures/photo.jpg"
        assert item.payload.mime_type == "image/jpeg"
        assert item.payload.name == "photo.jpg"

    async def test_enqueue_then_list(self):
        """The item is persisted immediately."""
        queue = uploadcue.UploadQueue()
        item = await queue.enqueue("audio", {"uri": "file:///memo.m4a"})

        items = await queue.list_all()
        assert len(items) == 1
        assert items[0].id == item.id
        assert items[0].status == ItemStatus.PENDING
        assert items[0].attempt_count == 0

    async def test_fifo_order(self):
        """Items list in enqueue order."""
        queue = uploadcue.UploadQueue()
        ids = []
        for kind in ("image", "audio", "metadata"):
            ids.append((await queue.enqueue(kind, {"uri": f"file:///{kind}"})).id)

        assert [item.id for item in await queue.list_all()] == ids

    async def test_ids_are_unique(self):
        """Generated IDs do not collide across many enqueues."""
        queue = uploadcue.UploadQueue()
        for i in range(50):
            await queue.enqueue("metadata", {"uri": f"file:///m{i}.json"})

        ids = [item.id for item in await queue.list_all()]
        assert len(set(ids)) == 50

    async def test_custom_kind_preserved(self):
        """Kinds outside the known set are kept as strings."""
        queue = uploadcue.UploadQueue()
        await queue.enqueue("video", {"uri": "file:///clip.mp4"})

        items = await queue.list_all()
        assert items[0].kind == "video"

    async def test_attributes_passed_through_verbatim(self):
        """Attributes come back exactly as given."""
        queue = uploadcue.UploadQueue()
        attributes = {
            "projectId": "p1",
            "location": {"lat": 52.1, "lng": 4.3},
            "device": {"model": "Pixel"},
            "tags": ["roof", "leak"],
        }
        await queue.enqueue("image", PHOTO, attributes=attributes)

        items = await queue.list_all()
        assert items[0].attributes == attributes

    async def test_enqueue_propagates_storage_error(self):
        """Enqueue fails loudly when the store cannot write."""
        store = FailingStore()
        queue = uploadcue.UploadQueue(store)
        store.fail_writes = True

        with pytest.raises(StorageError):
            await queue.enqueue("image", PHOTO)


class TestUpdateAndRemove:
    """Tests for update_item and remove_item."""

    async def test_update_merges_fields(self):
        """Only the given fields change."""
        queue = uploadcue.UploadQueue()
        item = await queue.enqueue("image", PHOTO, project_id="p1")

        updated = await queue.update_item(item.id, status="failed", last_error="timeout")

        assert updated.status == ItemStatus.FAILED
        assert updated.last_error == "timeout"
        assert updated.project_id == "p1"
        stored = await queue.get(item.id)
        assert stored.status == ItemStatus.FAILED

    async def test_update_unknown_id_returns_none_without_write(self):
        """Unknown IDs are a quiet no-match and leave storage alone."""
        store = FailingStore()
        queue = uploadcue.UploadQueue(store)
        await queue.enqueue("image", PHOTO)
        saves = store.saves

        assert await queue.update_item("missing", status="completed") is None
        assert store.saves == saves

    async def test_update_rejects_unknown_field(self):
        """Field names must exist on QueueItem."""
        queue = uploadcue.UploadQueue()
        item = await queue.enqueue("image", PHOTO)

        with pytest.raises(ValueError, match="colour"):
            await queue.update_item(item.id, colour="red")

    async def test_update_cannot_change_id(self):
        """The ID is not updatable."""
        queue = uploadcue.UploadQueue()
        item = await queue.enqueue("image", PHOTO)

        with pytest.raises(ValueError):
            await queue.update_item(item.id, id="other")

    async def test_remove_existing(self):
        """Removing an item returns True and drops it."""
        queue = uploadcue.UploadQueue()
        first = await queue.enqueue("image", PHOTO)
        second = await queue.enqueue("audio", {"uri": "file:///memo.m4a"})

        assert await queue.remove_item(first.id) is True
        assert [item.id for item in await queue.list_all()] == [second.id]

    async def test_remove_missing(self):
        """Removing an unknown ID returns False."""
        queue = uploadcue.UploadQueue()
        await queue.enqueue("image", PHOTO)

        assert await queue.remove_item("missing") is False
        assert len(await queue.list_all()) == 1

    async def test_remove_propagates_storage_error(self):
        """Remove surfaces write failures."""
        store = FailingStore()
        queue = uploadcue.UploadQueue(store)
        item = await queue.enqueue("image", PHOTO)
        store.fail_writes = True

        with pytest.raises(StorageError):
            await queue.remove_item(item.id)

    async def test_reset_item(self):
        """reset_item restores a fresh attempt budget."""
        queue = uploadcue.UploadQueue()
        item = await queue.enqueue("image", PHOTO)
        await queue.update_item(item.id, status="failed", attempt_count=3, last_error="boom")

        reset = await queue.reset_item(item.id)

        assert reset.status == ItemStatus.PENDING
        assert reset.attempt_count == 0
        assert reset.last_error is None
        assert await queue.reset_item("missing") is None

    async def test_list_by_project(self):
        """Items can be filtered by project."""
        queue = uploadcue.UploadQueue()
        a = await queue.enqueue("image", PHOTO, project_id="p1")
        await queue.enqueue("image", PHOTO, project_id="p2")
        c = await queue.enqueue("audio", PHOTO, project_id="p1")

        assert [item.id for item in await queue.list_by_project("p1")] == [a.id, c.id]


class TestPruneAndStats:
    """Tests for prune_completed and stats."""

    async def test_prune_removes_only_completed(self):
        """Completed items go; everything else stays in order."""
        queue = uploadcue.UploadQueue()
        items = [await queue.enqueue("image", {"uri": f"file:///{i}.jpg"}) for i in range(5)]
        await queue.update_item(items[0].id, status="completed")
        await queue.update_item(items[2].id, status="completed")
        await queue.update_item(items[3].id, status="failed", attempt_count=3)

        removed = await queue.prune_completed()

        assert removed == 2
        remaining = await queue.list_all()
        assert [item.id for item in remaining] == [items[1].id, items[3].id, items[4].id]
        assert remaining[1].status == ItemStatus.FAILED

    async def test_prune_nothing_to_remove(self):
        """No completed items means zero and no write."""
        store = FailingStore()
        queue = uploadcue.UploadQueue(store)
        await queue.enqueue("image", PHOTO)
        saves = store.saves

        assert await queue.prune_completed() == 0
        assert store.saves == saves

    async def test_stats_counts_by_status(self):
        """Stats reflect each status."""
        queue = uploadcue.UploadQueue()
        items = [await queue.enqueue("image", {"uri": f"file:///{i}.jpg"}) for i in range(4)]
        await queue.update_item(items[0].id, status="completed")
        await queue.update_item(items[1].id, status="failed")
        await queue.update_item(items[2].id, status="processing")

        stats = await queue.stats()
        assert stats.as_dict() == {
            "total": 4,
            "pending": 1,
            "processing": 1,
            "failed": 1,
            "completed": 1,
        }

    async def test_stats_idempotent(self):
        """Two stats calls in a row agree."""
        queue = uploadcue.UploadQueue()
        await queue.enqueue("image", PHOTO)
        await queue.enqueue("audio", PHOTO)

        assert await queue.stats() == await queue.stats()

    async def test_total_tracks_enqueues_minus_removals(self):
        """Total equals enqueues minus removals and prunes."""
        queue = uploadcue.UploadQueue()
        items = [await queue.enqueue("image", {"uri": f"file:///{i}.jpg"}) for i in range(6)]
        await queue.remove_item(items[0].id)
        await queue.update_item(items[1].id, status="completed")
        await queue.update_item(items[2].id, status="completed")
        await queue.prune_completed()

        assert (await queue.stats()).total == 3


class TestPersistence:
    """Queue state across restarts."""

    async def test_queue_survives_restart(self, tmp_path):
        """A new queue on the same database sees earlier items."""
        db_path = str(tmp_path / "queue.db")

        queue1 = uploadcue.UploadQueue(uploadcue.SQLiteStore(db_path))
        item = await queue1.enqueue("image", PHOTO, attributes={"a": 1}, project_id="p1")
        await queue1.close()

        queue2 = uploadcue.UploadQueue(uploadcue.SQLiteStore(db_path))
        restored = await queue2.get(item.id)
        await queue2.close()

        assert restored == item

    async def test_stale_processing_reset_on_open(self, tmp_path):
        """Items left processing by a previous process become pending again."""
        path = tmp_path / "queue.json"
        queue1 = uploadcue.UploadQueue(uploadcue.JsonFileStore(path))
        item = await queue1.enqueue("image", PHOTO)
        await queue1.update_item(item.id, status="processing", attempt_count=1)

        queue2 = uploadcue.UploadQueue(uploadcue.JsonFileStore(path))
        restored = await queue2.get(item.id)

        assert restored.status == ItemStatus.PENDING
        assert restored.attempt_count == 1

    async def test_stale_reset_can_be_disabled(self, tmp_path):
        """With reset disabled, processing items stay visible as processing."""
        path = tmp_path / "queue.json"
        queue1 = uploadcue.UploadQueue(uploadcue.JsonFileStore(path))
        item = await queue1.enqueue("image", PHOTO)
        await queue1.update_item(item.id, status="processing", attempt_count=1)

        queue2 = uploadcue.UploadQueue(
            uploadcue.JsonFileStore(path),
            config=uploadcue.QueueConfig(reset_stale_on_load=False),
        )
        assert (await queue2.get(item.id)).status == ItemStatus.PROCESSING

    async def test_unreadable_record_is_dropped(self):
        """A record missing required fields is skipped, others survive."""
        store = MemoryStore()
        good = QueueItem.from_dict({
            "id": "1",
            "kind": "image",
            "payload": {"uri": "file:///a.jpg"},
            "created_at": "2024-01-01T00:00:00+00:00",
        })
        await store.save([{"id": "broken"}, good.to_dict()])

        queue = uploadcue.UploadQueue(store)
        assert [item.id for item in await queue.list_all()] == ["1"]

    async def test_string_attempt_count_is_coerced(self):
        """A counter stored as a string loads as an int and keeps counting."""
        store = MemoryStore()
        await store.save([{
            "id": "1",
            "kind": "image",
            "payload": {"uri": "file:///a.jpg"},
            "status": "failed",
            "attempt_count": "2",
        }])
        queue = uploadcue.UploadQueue(store)

        item = await queue.get("1")
        assert item.attempt_count == 2
        assert queue.is_eligible(item)

        def upload(item):
            raise ConnectionError("timeout")

        result = await queue.process_queue(upload)

        assert result.failed == 1
        stored = await queue.get("1")
        assert stored.attempt_count == 3
        assert stored.status == ItemStatus.FAILED

    async def test_non_numeric_attempt_count_is_dropped(self):
        """A record whose counter is not a number is skipped like other bad records."""
        store = MemoryStore()
        await store.save([
            {"id": "bad", "kind": "image", "payload": {"uri": "file:///a.jpg"}, "attempt_count": "abc"},
            {"id": "good", "kind": "image", "payload": {"uri": "file:///b.jpg"}},
        ])
        queue = uploadcue.UploadQueue(store)

        assert [item.id for item in await queue.list_all()] == ["good"]
        assert (await queue.stats()).total == 1

    async def test_failed_sqlite_write_leaves_no_ghost_item(self, tmp_path, monkeypatch):
        """An enqueue whose commit fails never shows up, now or after the next write."""
        db_path = str(tmp_path / "queue.db")
        store = uploadcue.SQLiteStore(db_path)
        queue = uploadcue.UploadQueue(store)
        kept = await queue.enqueue("image", PHOTO)
        conn = await store._connect()

        async def locked_commit():
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(conn, "commit", locked_commit)
        with pytest.raises(StorageError):
            await queue.enqueue("audio", {"uri": "file:///memo.m4a"})
        monkeypatch.undo()

        assert [item.id for item in await queue.list_all()] == [kept.id]

        later = await queue.enqueue("metadata", {"uri": "file:///meta.json"})
        await queue.close()

        reopened = uploadcue.UploadQueue(uploadcue.SQLiteStore(db_path))
        assert [item.id for item in await reopened.list_all()] == [kept.id, later.id]
        await reopened.close()
