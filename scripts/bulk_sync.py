#!/usr/bin/env python3
"""
Run a bulk sync against a running offload API.

Plays the client side of the batch contract: asks for one batch at a
time, prints each record's outcome, waits between batches and stops
when the candidate pool is exhausted. Ctrl+C stops after the batch in
flight.

Usage:
    python scripts/bulk_sync.py --mode full --batch-size 10
    python scripts/bulk_sync.py --mode incremental --url http://localhost:8000

Requires:
    - .env file (or environment) with OFFLOAD_API_KEY, or --api-key
"""

import os
import signal
import sys
from pathlib import Path

# Add project root to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

import httpx
from dotenv import load_dotenv

from r2offload.api.routes.sync import BatchResponse
from r2offload.core.media.models import BatchCursor, BatchResult, SyncMode
from r2offload.core.sync import BulkSyncRunner, ProgressTracker, SyncState

# Load environment variables
load_dotenv()

MARKERS = {
    "success": "[OK]",
    "error": "[ERR]",
    "warning": "[WARN]",
    "info": "[SKIP]",
}


def make_batch_call(client: httpx.Client):
    """
    Build the runner's batch callable on top of the HTTP API.

    HTTP errors raise, which the runner turns into the ERRORED state.
    """
    def call(cursor: BatchCursor) -> BatchResult:
        payload = {
            "offset": cursor.offset,
            "batchSize": cursor.batch_size,
            "mode": cursor.mode.value,
            "regenerateMetadata": cursor.regenerate_metadata,
        }
        if cursor.session_started_at is not None:
            payload["sessionStartedAt"] = cursor.session_started_at.isoformat()

        response = client.post("/api/v1/sync/batch", json=payload)
        response.raise_for_status()
        return BatchResponse.model_validate(response.json()).to_result(cursor)

    return call


def print_batch(result: BatchResult, progress: ProgressTracker) -> None:
    for outcome in result.outcomes:
        print(f"{MARKERS[outcome.kind.wire_kind]} #{outcome.record_id} {outcome.message}")
    print(f"--- {progress.summary()}")


def main():
    import argparse

    parser = argparse.ArgumentParser(description='Bulk sync a media library to R2')
    parser.add_argument('--url', default=os.getenv('OFFLOAD_API_URL', 'http://localhost:8000'),
                        help='Base URL of the offload API')
    parser.add_argument('--api-key', default=os.getenv('OFFLOAD_API_KEY', ''),
                        help='API key (X-API-Key)')
    parser.add_argument('--mode', choices=[m.value for m in SyncMode], default=SyncMode.FULL.value,
                        help='full: never-synced records, incremental: missing variants only')
    parser.add_argument('--batch-size', type=int, default=10, help='Records per batch (1-50)')
    parser.add_argument('--delay-ms', type=int, default=None,
                        help='Pause between batches (100-5000). Defaults to the server setting')
    parser.add_argument('--regenerate', action='store_true', help='Regenerate image variants first')

    args = parser.parse_args()

    if not args.api_key:
        print("ERROR: No API key. Set OFFLOAD_API_KEY or pass --api-key")
        sys.exit(1)

    client = httpx.Client(
        base_url=args.url,
        headers={"X-API-Key": args.api_key},
        timeout=300.0,
    )

    runner = BulkSyncRunner(
        make_batch_call(client),
        mode=SyncMode(args.mode),
        batch_size=args.batch_size,
        delay_ms=args.delay_ms,
        regenerate_metadata=args.regenerate,
        on_batch=print_batch,
    )

    def request_stop(signum, frame):
        print("\nStopping after the current batch...")
        runner.stop()

    signal.signal(signal.SIGINT, request_stop)

    delay = f"{runner.delay_ms} ms" if runner.delay_ms is not None else "server setting"
    print(f"Starting {args.mode} sync against {args.url} "
          f"(batch size {runner.batch_size}, delay {delay})")

    try:
        state = runner.run()
    finally:
        client.close()

    print(f"\n=== Sync {state.value} ===")
    print(runner.progress.summary())
    if runner.error:
        print(f"ERROR: {runner.error}")

    sys.exit(0 if state in (SyncState.COMPLETED, SyncState.STOPPED) else 1)


if __name__ == '__main__':
    main()
