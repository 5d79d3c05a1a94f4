#!/usr/bin/env python3
"""
RQ Worker Startup Script
Starts RQ workers that drain render batches and deliver completion notifications.

Usage:
    python scripts/run_workers.py                    # All queues, one worker
    python scripts/run_workers.py --queues high render
    python scripts/run_workers.py --workers 4        # 4 worker processes
    python scripts/run_workers.py --stats            # Print queue depths and exit
"""

import argparse
import json
import logging
import os
import signal
import socket
import sys
from multiprocessing import Process
from typing import List

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rq import Queue, Worker

from modelsnap.core.logging import configure_logging
from modelsnap.core.redis import Queues, get_redis, redis_health_check
from modelsnap.workers.queue import get_queue_manager

configure_logging()
logger = logging.getLogger("rq.worker")


def worker_name(index: int) -> str:
    return f"{socket.gethostname()}-render-{index}"


def start_worker(queues: List[str], name: str, burst: bool = False):
    """
    Run one RQ worker in this process until shutdown (or empty queues with ``burst``).

    Queues are listened to in the order given, so list the highest priority first.
    """
    redis_conn = get_redis()
    worker = Worker(
        queues=[Queue(queue, connection=redis_conn) for queue in queues],
        connection=redis_conn,
        name=name,
        log_job_description=True,
        job_monitoring_interval=5,
    )

    logger.info(f"Worker {name} listening on {queues}")
    # The scheduler moves delayed re-drains onto their queue when due
    worker.work(with_scheduler=True, burst=burst)


def run_worker_process(queues: List[str], index: int, burst: bool):
    name = worker_name(index)

    def handle_shutdown(signum, frame):
        logger.info(f"{name}: shutdown signal {signum}")
        sys.exit(0)

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)
    start_worker(queues, name, burst)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Start RQ workers for the ModelSnap render pipeline")
    parser.add_argument("--queues", "-q", nargs="+", default=list(Queues.DRAIN_ORDER),
                        help="Queue names, highest priority first (default: all)")
    parser.add_argument("--workers", "-w", type=int, default=1, help="Number of worker processes")
    parser.add_argument("--burst", "-b", action="store_true", help="Exit once the queues are empty")
    parser.add_argument("--check", action="store_true", help="Check the Redis connection and exit")
    parser.add_argument("--stats", action="store_true", help="Print queue depths and exit")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    health = redis_health_check()
    if args.check:
        print(f"Redis: {health}")
        sys.exit(0 if health.get("connected") else 1)
    if not health.get("connected"):
        logger.error(f"Cannot connect to Redis at {health.get('url')}: {health.get('error')}")
        sys.exit(1)
    if args.stats:
        print(json.dumps(get_queue_manager().get_queue_stats(), indent=2))
        return

    logger.info(f"Redis {health.get('redis_version')} connected; starting {args.workers} worker(s)")

    if args.workers == 1:
        start_worker(args.queues, worker_name(0), args.burst)
        return

    processes: List[Process] = []

    def shutdown_all(signum, frame):
        logger.info("Stopping all workers...")
        for p in processes:
            if p.is_alive():
                p.terminate()
        sys.exit(0)

    signal.signal(signal.SIGTERM, shutdown_all)
    signal.signal(signal.SIGINT, shutdown_all)

    for i in range(1, args.workers + 1):
        p = Process(target=run_worker_process, args=(args.queues, i, args.burst), name=f"render-worker-{i}")
        p.start()
        processes.append(p)
        logger.info(f"Started worker process {i}/{args.workers} (PID: {p.pid})")

    for p in processes:
        p.join()


if __name__ == "__main__":
    main()
