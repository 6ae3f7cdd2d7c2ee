#!/usr/bin/env python3
"""
Site Photos Uploader

Captures a few placeholder site photos, queues them with project metadata,
and uploads them whenever the network is reachable.

APIs used:
- httpbin: https://httpbin.org/ (echoes multipart uploads back)

Demonstrates:
- Durable queue in an SQLite file (re-run to resume after a failure)
- Connectivity gate in front of each pass
- Retry across passes with a fixed attempt cap
- Progress reporting
"""

import asyncio
import mimetypes
from datetime import datetime, timezone
from pathlib import Path

import httpx
from PIL import Image, ImageDraw

import uploadcue
from uploadcue.network import tcp_probe

# Configuration
OUTPUT_DIR = Path("output")
UPLOAD_URL = "https://httpbin.org/post"
PHOTO_COUNT = 3
PASSES = 5
PASS_INTERVAL = 2.0  # seconds

OUTPUT_DIR.mkdir(exist_ok=True)


def capture_photo(index: int) -> Path:
    """Stand-in for the camera: draw a labelled placeholder image."""
    path = OUTPUT_DIR / f"site_{index}.jpg"
    img = Image.new("RGB", (640, 480), color=(90, 110, 130))
    ImageDraw.Draw(img).text((20, 20), f"Site photo {index}", fill=(255, 255, 255))
    img.save(path, "JPEG")
    return path


async def upload(item: uploadcue.QueueItem) -> dict:
    """Upload one queued file with its attributes as form fields."""
    path = Path(item.payload.uri.removeprefix("file://"))
    mime_type = item.payload.mime_type or mimetypes.guess_type(path.name)[0]

    async with httpx.AsyncClient() as client:
        resp = await client.post(
            UPLOAD_URL,
            files={"file": (item.payload.name or path.name, path.read_bytes(), mime_type)},
            data={
                "project_id": item.project_id or "",
                "description": item.attributes.get("description", ""),
            },
            timeout=30,
        )
        resp.raise_for_status()

    return {"status_code": resp.status_code, "uploaded_at": datetime.now(timezone.utc).isoformat()}


def on_progress(event: uploadcue.ProgressEvent) -> None:
    name = event.item.payload.name
    if event.status == "processing":
        print(f"  [{name}] uploading (attempt {event.item.attempt_count})...", flush=True)
    elif event.status == "completed":
        print(f"  [{name}] ✓ uploaded", flush=True)
    else:
        print(f"  [{name}] ✗ {event.error} -> {event.item.status.value}", flush=True)


async def run():
    queue = uploadcue.UploadQueue(
        uploadcue.SQLiteStore(str(OUTPUT_DIR / "queue.db")),
        gate=uploadcue.NetworkGate(tcp_probe("httpbin.org", 443)),
    )

    # Only capture on the first run; later runs resume the persisted queue
    if (await queue.stats()).total == 0:
        print("Capturing photos...")
        for i in range(PHOTO_COUNT):
            path = capture_photo(i)
            await queue.enqueue(
                "image",
                {"uri": f"file://{path.resolve()}", "type": "image/jpeg", "name": path.name},
                attributes={
                    "description": f"North facade, bay {i + 1}",
                    "tags": ["facade", "inspection"],
                    "captured_at": datetime.now(timezone.utc).isoformat(),
                },
                project_id="site-42",
            )

    for n in range(1, PASSES + 1):
        print(f"\nPass {n}:")
        result = await queue.process_queue(upload, on_progress)
        stats = await queue.stats()
        print(f"  processed={result.processed} failed={result.failed} -> {stats.as_dict()}")
        if stats.pending == 0:
            break
        await asyncio.sleep(PASS_INTERVAL)

    removed = await queue.prune_completed()
    print(f"\nPruned {removed} completed item(s)")
    await queue.close()


def main():
    print("=" * 50)
    print("Site Photos Uploader")
    print("=" * 50)
    asyncio.run(run())


if __name__ == "__main__":
    main()
