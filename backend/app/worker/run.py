"""
Start a Celery worker for one stage, or one worker per stage.

    python -m app.worker.run scrape
    python -m app.worker.run all

Each worker serves a single stage queue with that stage's configured
concurrency, so stage limits stay independent. ``all`` launches one child
process per stage and waits for them.
"""
from __future__ import annotations

import argparse
import logging
import subprocess
import sys

from app.jobs.base import STAGE_QUEUES

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a pipeline stage worker")
    parser.add_argument("stage", choices=[*STAGE_QUEUES, "all"])
    return parser.parse_args(argv)


def stage_command(stage: str) -> list[str]:
    return [sys.executable, "-m", "app.worker.run", stage]


def run_all_stages() -> int:
    procs = [subprocess.Popen(stage_command(stage)) for stage in STAGE_QUEUES]
    logger.info(f"[worker] started {len(procs)} stage workers: {', '.join(STAGE_QUEUES)}")
    try:
        codes = [proc.wait() for proc in procs]
    except KeyboardInterrupt:
        for proc in procs:
            proc.terminate()
        codes = [proc.wait() for proc in procs]
    return max(codes, default=0)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    if args.stage == "all":
        sys.exit(run_all_stages())

    from app.worker.celery_app import celery_app
    from app.worker.tasks import job_queue

    celery_app.worker_main(job_queue.worker_argv(args.stage))


if __name__ == "__main__":
    main()
