"""Upload queue: durable queue operations and the dispatcher."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, Callable

from uploadcue.config import QueueConfig
from uploadcue.models import (
    MUTABLE_FIELDS,
    ItemKind,
    ItemStatus,
    PassResult,
    Payload,
    ProgressEvent,
    QueueItem,
    QueueStats,
    new_item_id,
    parse_kind,
    utc_now,
)
from uploadcue.network import NetworkGate
from uploadcue.store import MemoryStore, Store, StorageError

logger = logging.getLogger(__name__)


class UploadQueue:
    """
    Offline-tolerant queue of file uploads with at-least-once delivery.

    The store is the source of truth. Every operation reads the whole
    queue, applies its change and writes the whole queue back; returned
    items are snapshots.

    Example:
        queue = uploadcue.UploadQueue(SQLiteStore("queue.db"))
        await queue.enqueue("image", {"uri": "file:///photo.jpg",
                                      "type": "image/jpeg", "name": "photo.jpg"},
                            attributes={"description": "North wall"},
                            project_id="p1")

        async def upload(item):
            return await drive.upload(item.payload.uri)

        result = await queue.process_queue(upload)
    """

    def __init__(
        self,
        store: Store | None = None,
        *,
        config: QueueConfig | None = None,
        gate: NetworkGate | None = None,
    ) -> None:
        self.config = config or QueueConfig()
        self.store = store or MemoryStore()
        self.gate = gate or NetworkGate()

        # Serializes read-modify-write cycles on the store
        self._lock = asyncio.Lock()
        # Only one dispatcher pass at a time
        self._pass_lock = asyncio.Lock()
        self._opened = False
        # Item the running pass has marked processing
        self._in_flight: str | None = None

    async def close(self) -> None:
        """Close the underlying store."""
        await self.store.close()

    # --- Store access ---

    async def _load(self) -> list[QueueItem]:
        """Load items, resetting stale `processing` items on first access."""
        items = []
        for record in await self.store.load():
            try:
                items.append(QueueItem.from_dict(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Dropping unreadable queue record {record.get('id')!r}: {e}")

        if not self._opened:
            if self.config.reset_stale_on_load and not await self._reset_stale(items):
                # Try again on the next access
                return items
            self._opened = True
        return items

    async def _reset_stale(self, items: list[QueueItem]) -> bool:
        # No upload survives a restart, so an item left `processing` by an
        # earlier process is retried. Its attempt count is kept.
        stale = [item for item in items if item.status == ItemStatus.PROCESSING]
        if not stale:
            return True
        for item in stale:
            item.status = ItemStatus.PENDING
        try:
            await self._write(items)
        except StorageError as e:
            for item in stale:
                item.status = ItemStatus.PROCESSING
            logger.warning(f"Could not reset stale items: {e}")
            return False
        logger.warning(
            f"Reset {len(stale)} stale processing item(s) to pending: "
            + ", ".join(item.id for item in stale)
        )
        return True

    async def _write(self, items: list[QueueItem]) -> None:
        await self.store.save([item.to_dict() for item in items])

    async def _mutate(self, item_id: str, **changes: Any) -> QueueItem | None:
        """Apply changes to one item and persist. None if the id is unknown."""
        async with self._lock:
            items = await self._load()
            for item in items:
                if item.id == item_id:
                    _apply(item, changes)
                    await self._write(items)
                    return item
            return None

    # --- Queue operations ---

    async def enqueue(
        self,
        kind: ItemKind | str,
        payload: Payload | dict[str, Any],
        attributes: dict[str, Any] | None = None,
        project_id: str | None = None,
    ) -> QueueItem:
        """
        Add an upload to the end of the queue.

        Args:
            kind: "image", "audio", "metadata" or another category name.
            payload: File reference (uri, MIME type, display name).
            attributes: Opaque metadata passed through to the upload callback.
            project_id: Grouping key.

        Returns:
            The created item, pending with zero attempts.

        Raises:
            StorageError: If the queue could not be persisted.
        """
        item = QueueItem(
            id=new_item_id(),
            kind=parse_kind(kind),
            payload=Payload.coerce(payload),
            attributes=dict(attributes or {}),
            project_id=project_id,
            created_at=utc_now(),
        )
        async with self._lock:
            items = await self._load()
            items.append(item)
            await self._write(items)

        logger.info(f"Enqueued {getattr(item.kind, 'value', item.kind)} item {item.id} (project={project_id})")
        return item

    async def list_all(self) -> list[QueueItem]:
        """All persisted items, oldest first."""
        async with self._lock:
            return await self._load()

    async def get(self, item_id: str) -> QueueItem | None:
        """Get an item by ID."""
        for item in await self.list_all():
            if item.id == item_id:
                return item
        return None

    async def list_by_project(self, project_id: str) -> list[QueueItem]:
        """Items belonging to one project, oldest first."""
        return [item for item in await self.list_all() if item.project_id == project_id]

    async def update_item(self, item_id: str, **fields: Any) -> QueueItem | None:
        """
        Merge fields into an item and persist.

        Returns:
            The updated item, or None if no item has this ID (nothing is written).

        Raises:
            ValueError: If a field name is not an updatable QueueItem field.
            StorageError: If the queue could not be persisted.
        """
        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        return await self._mutate(item_id, **fields)

    async def remove_item(self, item_id: str) -> bool:
        """Delete an item. Returns True if something was removed."""
        async with self._lock:
            items = await self._load()
            remaining = [item for item in items if item.id != item_id]
            if len(remaining) == len(items):
                return False
            await self._write(remaining)
        logger.debug(f"Removed item {item_id}")
        return True

    async def prune_completed(self) -> int:
        """Delete every completed item. Returns how many were removed."""
        async with self._lock:
            items = await self._load()
            remaining = [item for item in items if item.status != ItemStatus.COMPLETED]
            removed = len(items) - len(remaining)
            if removed:
                await self._write(remaining)
        if removed:
            logger.info(f"Pruned {removed} completed item(s)")
        return removed

    async def reset_item(self, item_id: str) -> QueueItem | None:
        """
        Make an item eligible again with a fresh attempt budget.

        This is the manual retry for items that exhausted their attempts.
        """
        item = await self._mutate(
            item_id, status=ItemStatus.PENDING, attempt_count=0, last_error=None
        )
        if item is not None:
            logger.info(f"Reset item {item_id} for retry")
        return item

    async def stats(self) -> QueueStats:
        """Count items by status."""
        items = await self.list_all()
        counts = {status: 0 for status in ItemStatus}
        for item in items:
            counts[item.status] += 1
        return QueueStats(
            total=len(items),
            pending=counts[ItemStatus.PENDING],
            processing=counts[ItemStatus.PROCESSING],
            failed=counts[ItemStatus.FAILED],
            completed=counts[ItemStatus.COMPLETED],
        )

    # --- Dispatcher ---

    def is_eligible(self, item: QueueItem) -> bool:
        """Pending items, and failed items that still have attempts left."""
        if item.status == ItemStatus.PENDING:
            return True
        return item.status == ItemStatus.FAILED and item.attempt_count < self.config.max_attempts

    async def process_queue(
        self,
        upload_fn: Callable[[QueueItem], Any],
        on_progress: Callable[[ProgressEvent], Any] | None = None,
    ) -> PassResult:
        """
        Attempt every eligible item once, in queue order.

        Args:
            upload_fn: Called with each item (sync or async). Raise to signal
                failure; the return value is stored as the item's result (as its
                repr when it is not JSON-serializable).
            on_progress: Optional callback receiving ProgressEvent objects.

        Returns:
            PassResult with counts of completed and failed attempts. Upload
            errors never propagate. If the network gate reports offline, or the
            store fails mid-pass, returns PassResult(0, 0) and puts the item in
            flight back to pending.
        """
        if self._pass_lock.locked():
            logger.warning("A queue pass is already running, skipping")
            return PassResult()

        async with self._pass_lock:
            if not await self.gate.is_connected():
                logger.info("No network connection, skipping queue processing")
                return PassResult()

            try:
                return await self._run_pass(upload_fn, on_progress)
            except StorageError:
                logger.exception("Queue pass aborted by storage failure")
                await self._release_in_flight()
                return PassResult()
            finally:
                self._in_flight = None

    async def _release_in_flight(self) -> None:
        """Return the item an aborted pass left processing to pending."""
        item_id = self._in_flight
        if item_id is None:
            return
        async with self._lock:
            items = await self._load()
            for item in items:
                if item.id == item_id and item.status == ItemStatus.PROCESSING:
                    item.status = ItemStatus.PENDING
                    try:
                        await self._write(items)
                    except StorageError as e:
                        # Stale recovery picks it up on the next access
                        logger.warning(f"Could not release item {item_id}: {e}")
                        self._opened = False
                    else:
                        logger.info(f"Released item {item_id} back to pending")
                    return

    async def _run_pass(
        self,
        upload_fn: Callable[[QueueItem], Any],
        on_progress: Callable[[ProgressEvent], Any] | None,
    ) -> PassResult:
        items = await self.list_all()
        eligible = [item.id for item in items if self.is_eligible(item)]
        logger.info(f"Queue pass started: {len(eligible)} eligible of {len(items)} item(s)")

        processed = 0
        failed = 0

        for item_id in eligible:
            item = await self._begin_attempt(item_id)
            if item is None:
                # Removed or changed since the pass started
                continue
            self._in_flight = item_id

            await _emit(on_progress, ProgressEvent(item=item, status="processing"))

            try:
                result = await _call(upload_fn, item)
            except Exception as e:
                error = str(e) or type(e).__name__
                exhausted = item.attempt_count >= self.config.max_attempts
                status = ItemStatus.FAILED if exhausted else ItemStatus.PENDING
                updated = await self._mutate(item_id, status=status, last_error=error)
                self._in_flight = None
                failed += 1
                logger.warning(
                    f"Upload of item {item_id} failed "
                    f"(attempt {item.attempt_count}/{self.config.max_attempts}, "
                    f"now {status.value}): {error}"
                )
                await _emit(
                    on_progress,
                    ProgressEvent(item=updated or item, status="failed", error=e),
                )
                continue

            updated = await self._mutate(
                item_id,
                status=ItemStatus.COMPLETED,
                result=_storable(item_id, result),
                last_error=None,
            )
            self._in_flight = None
            processed += 1
            logger.debug(f"Uploaded item {item_id} on attempt {item.attempt_count}")
            await _emit(
                on_progress,
                ProgressEvent(item=updated or item, status="completed", result=result),
            )

        logger.info(f"Queue pass finished: {processed} processed, {failed} failed")
        return PassResult(processed=processed, failed=failed)

    async def _begin_attempt(self, item_id: str) -> QueueItem | None:
        """Mark an item processing and persist before the upload starts."""
        async with self._lock:
            items = await self._load()
            for item in items:
                if item.id != item_id:
                    continue
                if not self.is_eligible(item):
                    return None
                item.status = ItemStatus.PROCESSING
                item.last_attempt_at = utc_now()
                item.attempt_count += 1
                await self._write(items)
                return item
            return None


def _apply(item: QueueItem, changes: dict[str, Any]) -> None:
    for name, value in changes.items():
        if name == "status":
            value = ItemStatus(value)
        elif name == "kind":
            value = parse_kind(value)
        elif name == "payload":
            value = Payload.coerce(value)
        setattr(item, name, value)


def _storable(item_id: str, result: Any) -> Any:
    """Upload results are persisted as JSON; anything else is kept as its repr."""
    try:
        json.dumps(result)
    except (TypeError, ValueError) as e:
        logger.warning(f"Result of item {item_id} is not JSON-serializable, storing repr: {e}")
        return repr(result)
    return result


async def _call(func: Callable, *args: Any) -> Any:
    """Call a sync or async callable."""
    if inspect.iscoroutinefunction(func):
        return await func(*args)
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


async def _emit(on_progress: Callable | None, event: ProgressEvent) -> None:
    if on_progress is None:
        return
    try:
        await _call(on_progress, event)
    except Exception as e:
        # Don't let callback errors affect the pass
        logger.warning(f"Progress callback raised: {e}")
