"""
Desktop sync daemon: runs the push worker and the adaptive pull service for
one signed-in user.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from partsmanager.dependencies import (
    get_commit_queue,
    get_local_store,
    get_remote_store,
    get_sync_queue,
)
from partsmanager.pull import PullService
from partsmanager.sync_worker import SyncWorker

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="PartsManager push/pull sync daemon")
    parser.add_argument("user_id", help="Signed-in user whose data is synced")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one push pass and one pull, then exit",
    )
    parser.add_argument(
        "--no-pull",
        action="store_true",
        help="Only push local commits",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    remote = get_remote_store()
    commits = get_commit_queue()
    worker = SyncWorker(remote, commits, get_sync_queue())
    worker.set_context(args.user_id)
    pull = None if args.no_pull else PullService(remote, get_local_store(), commits)

    if args.once:
        result = worker.process_pending_commits(args.user_id)
        logger.info(
            "Push pass: %d synced, %d retried, %d dropped",
            result.synced,
            result.retried,
            result.dropped,
        )
        if pull:
            logger.info("Pulled %d products", pull.pull_changes(args.user_id))
        return 0

    stopped = threading.Event()

    def _shutdown(signum, frame):
        logger.info("Received signal %d, shutting down", signum)
        stopped.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    worker.start()
    if pull:
        pull.start(args.user_id)
    while not stopped.wait(1.0):
        pass
    if pull:
        pull.stop()
    worker.stop(timeout=10)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
