"""Simulation runner for uploadcue-sim.

This module handles the actual simulation logic, decoupled from display.
It updates a SimulationState object that can be rendered by any display.
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from uploadcue import NetworkGate, ProgressEvent, QueueConfig, QueueItem, SQLiteStore, UploadQueue

if TYPE_CHECKING:
    from uploadcue_sim.display import SimulationState

KINDS = ("image", "audio", "metadata")
MIME_TYPES = {"image": "image/jpeg", "audio": "audio/m4a", "metadata": "application/json"}
EXTENSIONS = {"image": "jpg", "audio": "m4a", "metadata": "json"}


@dataclass
class SimConfig:
    """Configuration for a simulation run."""

    count: int = 30
    latency_ms: int = 50
    latency_jitter: float = 0.2  # ±20% variance
    error_rate: float = 0.3
    offline_rate: float = 0.2  # Chance a pass finds the device offline
    passes: int = 20  # Maximum passes before giving up
    interval: float = 0.2  # Seconds between passes
    max_attempts: int = 3
    db_path: str = ":memory:"
    project_id: str = "sim-project"


class SimulationRunner:
    """Runs simulations and updates state for display.

    Usage:
        config = SimConfig(count=30, error_rate=0.3)
        state = SimulationState()
        runner = SimulationRunner(config, state)

        # In your event loop:
        await runner.run()
    """

    def __init__(
        self,
        config: SimConfig,
        state: "SimulationState",
        on_event: Callable[[str, str, str | None, str], None] | None = None,
    ):
        self.config = config
        self.state = state
        self.on_event = on_event or state.add_event

        self._queue: UploadQueue | None = None
        self._running = False

    async def run(self) -> None:
        """Enqueue the workload, then run passes until drained or out of passes."""
        self._running = True
        self.state.start_time = time.time()
        self.state.target_count = self.config.count
        self.state.error_rate = self.config.error_rate
        self.state.offline_rate = self.config.offline_rate
        self.state.max_attempts = self.config.max_attempts

        self._queue = UploadQueue(
            SQLiteStore(self.config.db_path),
            config=QueueConfig(max_attempts=self.config.max_attempts),
            gate=NetworkGate(self._connectivity),
        )

        await self._enqueue_workload()
        await self._update_state()

        while self._running and self.state.passes < self.config.passes:
            result = await self._queue.process_queue(self._upload, self._on_progress)
            self.state.passes += 1
            if not self.state.online:
                self.state.offline_passes += 1
                self.on_event("offline", "network", None, "pass skipped")
            else:
                self.on_event(
                    "pass", f"pass_{self.state.passes}", None,
                    f"{result.processed} ok, {result.failed} failed",
                )

            await self._update_state()
            if self.state.pending == 0:
                break
            await asyncio.sleep(self.config.interval)

        self._running = False

    async def _enqueue_workload(self) -> None:
        for i in range(self.config.count):
            if not self._running:
                break
            kind = KINDS[i % len(KINDS)]
            name = f"capture_{i:04d}.{EXTENSIONS[kind]}"
            item = await self._queue.enqueue(
                kind,
                {"uri": f"file:///sim/{name}", "type": MIME_TYPES[kind], "name": name},
                attributes={"description": f"Simulated {kind} {i}", "index": i},
                project_id=self.config.project_id,
            )
            self.state.submitted += 1
            self.on_event("queued", item.id, kind, name)

    def _connectivity(self) -> bool:
        online = random.random() >= self.config.offline_rate
        self.state.online = online
        return online

    async def _upload(self, item: QueueItem) -> dict:
        """Pretend to upload: sleep for a jittered latency, sometimes fail."""
        started = time.time()
        base_latency = self.config.latency_ms / 1000.0
        if base_latency > 0:
            jitter = self.config.latency_jitter
            await asyncio.sleep(base_latency * random.uniform(1 - jitter, 1 + jitter))

        if random.random() < self.config.error_rate:
            raise ConnectionError("Simulated upload error")

        return {
            "file_id": f"sim-{item.id}",
            "latency_ms": int((time.time() - started) * 1000),
        }

    def _on_progress(self, event: ProgressEvent) -> None:
        item = event.item
        kind = getattr(item.kind, "value", item.kind)
        if event.status == "processing":
            self.state.processing += 1
            detail = f"attempt {item.attempt_count}"
        elif event.status == "completed":
            self.state.processing = max(0, self.state.processing - 1)
            detail = f"{event.result.get('latency_ms', 0)}ms" if event.result else ""
        else:
            self.state.processing = max(0, self.state.processing - 1)
            status = getattr(item.status, "value", item.status)
            detail = f"{event.error} -> {status}"
        self.on_event(event.status, item.id, kind, detail)

    async def _update_state(self) -> None:
        """Update simulation state from the queue."""
        if not self._queue:
            return

        self.state.elapsed = self._elapsed
        stats = await self._queue.stats()
        self.state.pending = stats.pending
        self.state.processing = stats.processing
        self.state.completed = stats.completed
        self.state.failed = stats.failed

    @property
    def _elapsed(self) -> float:
        """Elapsed time since start."""
        return time.time() - self.state.start_time

    def stop(self) -> None:
        """Request simulation stop."""
        self._running = False

    async def cleanup(self) -> None:
        """Clean up resources. Call after interrupt or completion."""
        if self._queue:
            await self._queue.close()
            self._queue = None
        self._running = False
