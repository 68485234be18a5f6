#!/usr/bin/env python
"""Write documents to the configured CouchDB database and confirm the feed delivers them."""

from __future__ import annotations

import argparse
import contextlib
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import List

import httpx

from couchdb_changes.config import load_settings
from couchdb_changes.feed import Change, InMemorySequenceStore
from couchdb_changes.service import build_feed_client, build_feed_consumer


def _admin_client(settings) -> httpx.Client:
    scheme = "https" if settings.secure else "http"
    auth = None
    if settings.username and settings.password:
        auth = (settings.username, settings.password)
    return httpx.Client(
        base_url=f"{scheme}://{settings.host}:{settings.port}",
        auth=auth,
        timeout=10.0,
    )


def _current_sequence(admin: httpx.Client, db: str) -> str:
    response = admin.get(f"/{db}")
    response.raise_for_status()
    return str(response.json()["update_seq"])


def _write_documents(
    admin: httpx.Client, db: str, count: int, *, delete: bool
) -> List[str]:
    timestamp = datetime.now(timezone.utc).isoformat()
    ids: List[str] = []
    for index in range(count):
        doc_id = f"smoke-{uuid.uuid4().hex[:8]}"
        response = admin.put(
            f"/{db}/{doc_id}",
            json={"kind": "smoke", "index": index, "written_at": timestamp},
        )
        response.raise_for_status()
        ids.append(doc_id)
        if delete:
            rev = response.json()["rev"]
            admin.delete(f"/{db}/{doc_id}", params={"rev": rev}).raise_for_status()
    return ids


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate CouchDB changes and verify the changes feed consumer sees them",
    )
    parser.add_argument(
        "--count",
        type=int,
        default=3,
        help="Number of documents to write (default: 3)",
    )
    parser.add_argument(
        "--delete",
        action="store_true",
        help="Delete each document after writing it",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Seconds to wait for the feed to deliver every change (default: 30)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the target feed without writing documents",
    )
    args = parser.parse_args()

    settings = load_settings()
    if not settings.db:
        parser.error("COUCHDB_DB must be configured")

    if args.dry_run:
        client = build_feed_client(settings)
        print(f"Dry run - would write {args.count} documents and tail {client.describe()}")
        client.close()
        return 0

    admin = _admin_client(settings)
    try:
        since = _current_sequence(admin, settings.db)
        print(f"[smoke] Database {settings.db} at update_seq {since}")

        expected = args.count * (2 if args.delete else 1)
        received: List[Change] = []
        done = threading.Event()

        def _sink(change: Change) -> None:
            received.append(change)
            print(f"[feed] {change.action.value} {change.document_id} seq={change.position}")
            if len(received) >= expected:
                done.set()

        consumer = build_feed_consumer(
            settings,
            sink=_sink,
            sequence_store=InMemorySequenceStore(initial=since),
        )
        failure: List[BaseException] = []

        def _run() -> None:
            try:
                consumer.run()
            except Exception as exc:  # noqa: BLE001
                failure.append(exc)
                done.set()

        worker = threading.Thread(target=_run, name="smoke-feed", daemon=True)
        worker.start()

        ids = _write_documents(admin, settings.db, args.count, delete=args.delete)
        print(f"[smoke] Wrote {len(ids)} documents")

        started = time.monotonic()
        done.wait(timeout=args.timeout)
        elapsed = time.monotonic() - started

        consumer.stop()
        worker.join(timeout=5)
        with contextlib.suppress(Exception):
            consumer.close()

        print(f"[smoke] Metrics: {consumer.metrics.snapshot()}")
        if failure:
            print(f"[smoke] Feed consumer failed: {failure[0]}")
            return 1
        seen = {change.document_id for change in received}
        missing = [doc_id for doc_id in ids if doc_id not in seen]
        if missing:
            print(f"[smoke] Missing changes after {elapsed:.1f}s: {missing}")
            return 1
        print(f"[smoke] All {expected} changes delivered in {elapsed:.1f}s")
        return 0
    finally:
        admin.close()


if __name__ == "__main__":
    raise SystemExit(main())
