"""Operator commands for settlement jobs.

Usage:
    python -m scheduler sweep
    python -m scheduler jobs [--status FAILED] [--limit 20]
    python -m scheduler show AUCTION_ID
    python -m scheduler reprocess AUCTION_ID
"""
import argparse
import asyncio
import logging
import sys
import uuid

from config import get_settings
from database import create_repository, close as db_close
from engine import build_engine
from . import JOB_STATUSES, SchedulerError

def print_job(job):
    print(
        f"{job['auction_id']}  {job['status']:<9}  "
        f"scheduled {job['scheduled_at'].isoformat()}"
        + (f"  executed {job['executed_at'].isoformat()}" if job['executed_at'] else "")
        + (f"  error: {job['error']}" if job['error'] else "")
    )

def print_result(result):
    print(f"Executed: {len(result.executed)}  Failed: {len(result.failed)}  Skipped: {len(result.skipped)}")
    for auction_id in result.failed:
        print(f"  failed: {auction_id}")

async def run(args) -> int:
    settings = get_settings()
    engine = build_engine(await create_repository(settings), settings)
    scheduler = engine.scheduler

    try:
        if args.command == 'sweep':
            print_result(await scheduler.sweep())
        elif args.command == 'jobs':
            jobs = await scheduler.list_jobs(args.status, args.limit)
            if not jobs:
                print("No jobs")
            for job in jobs:
                print_job(job)
        elif args.command == 'show':
            print_job(await scheduler.get_job(args.auction_id))
        elif args.command == 'reprocess':
            result = await scheduler.reprocess_job(args.auction_id)
            print_result(result)
            return 0 if result.executed else 1
        return 0
    except SchedulerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await db_close()

def main():
    parser = argparse.ArgumentParser(prog='python -m scheduler', description=__doc__.splitlines()[0])
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('sweep', help='settle every due job once')

    jobs = subparsers.add_parser('jobs', help='list jobs')
    jobs.add_argument('--status', choices=JOB_STATUSES)
    jobs.add_argument('--limit', type=int, default=50)

    show = subparsers.add_parser('show', help='show the job of one auction')
    show.add_argument('auction_id', type=uuid.UUID)

    reprocess = subparsers.add_parser('reprocess', help='run a FAILED job again')
    reprocess.add_argument('auction_id', type=uuid.UUID)

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    sys.exit(asyncio.run(run(args)))

if __name__ == "__main__":
    main()
